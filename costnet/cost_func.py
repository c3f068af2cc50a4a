"""
Cost functions (aka loss functions) used to train networks by backpropagation.

Every cost function offers:

costfunc.cost(expected, actual) -> Result with single-element output
costfunc.costR(rvector, expected, actualR) -> RResult with single-element output

where expected is the desired output vector and actual the node producing the
network output. Results are lazy where possible, since a cost may be used
solely for its gradient. Expected and actual dimensions must agree; a mismatch
raises a ValueError when the cost is evaluated.

Cost functions may also be chosen by name from COST_FUNCTIONS using
costFunction().
"""

import warnings
import numpy as np
from costnet.autofunc import *
from costnet.dtypes import asvector

#-------------------------------------------------------------------------------
class costFunc (object):
  """
  Base class for cost functions. Inheriting classes hold no state beyond
  their construction arguments and implement cost() and costR().
  """
  def cost(self, expected, actual):
    raise NotImplementedError("costFunc subclass to implement cost method")

  def costR(self, rvector, expected, actual):
    raise NotImplementedError("costFunc subclass to implement costR method")

  def __repr__(self):
    return type(self).__name__ + "()"

#-------------------------------------------------------------------------------
class MeanSquaredCost (costFunc):
  """
  Computes the cost as ||a-x||^2 where a is the actual output and x is the
  expected output.
  """
  def cost(self, expected, actual):
    return meanSquaredResult(actual, expected)

  def costR(self, rvector, expected, actual):
    xVar = RVariable(Variable(-asvector(expected)), rvector)
    return SquaredNormR(AddR(xVar, actual))

#-------------------------------------------------------------------------------
class meanSquaredResult (baseResult):
  """
  Hand-written result node for MeanSquaredCost whose gradient with respect to
  the actual output is the closed form 2*(a-x).
  """
  def __init__(self, actual, expected):
    baseResult.__init__(self)
    self.actual = actual
    self.expected = asvector(expected, copy = True)

  def _evaluate(self):
    diff = self._diff()
    return np.array([np.dot(diff, diff)])

  def _diff(self):
    a, x = commensurate(self.actual.output(), self.expected)
    return a - x

  def constant(self, grad):
    return self.actual.constant(grad)

  def propagateGradient(self, upstream, grad):
    if not self.actual.constant(grad):
      downstream = (2. * upstream[0]) * self._diff()
      self.actual.propagateGradient(downstream, grad)

#-------------------------------------------------------------------------------
def _signMask(diff):
  # -1 where diff < 0, +1 elsewhere (including diff == 0)
  mask = np.ones(len(diff))
  mask[diff < 0] = -1.
  return mask

#-------------------------------------------------------------------------------
class AbsCost (costFunc):
  """
  Implements the L1 cost, i.e. the sum of absolute differences between actual
  and expected values.

  The sign of each difference is evaluated when the cost is built and is held
  constant, so the gradient is sign(a-x) with sign(0) taken as +1.
  """
  def cost(self, expected, actual):
    xVar = Variable(-asvector(expected))
    diff = Add(xVar, actual)
    mask = Variable(_signMask(diff.output()))
    return SumAll(Mul(mask, diff))

  def costR(self, rvector, expected, actual):
    xVar = RVariable(Variable(-asvector(expected)), rvector)
    diff = AddR(xVar, actual)
    mask = RVariable(Variable(_signMask(diff.output())), rvector)
    return SumAllR(MulR(mask, diff))

#-------------------------------------------------------------------------------
class CrossEntropyCost (costFunc):
  """
  Computes the cost using the definition of cross entropy:

  -sum(x*log(a) + (1-x)*log(1-a))

  Actual outputs must lie strictly between 0 and 1.
  """
  def cost(self, expected, actual):
    x = asvector(expected)
    def _cost(a):
      xVar = Variable(x)
      logA = Log(a)
      oneMinusA = AddScaler(Scale(a, -1), 1)
      oneMinusX = AddScaler(Scale(xVar, -1), 1)
      log1A = Log(oneMinusA)
      errorVec = Add(Mul(xVar, logA), Mul(oneMinusX, log1A))
      return Scale(SumAll(errorVec), -1)
    return Pool(actual, _cost)

  def costR(self, rvector, expected, actual):
    x = asvector(expected)
    def _costR(a):
      xVar = RVariable(Variable(x))
      logA = LogR(a)
      oneMinusA = AddScalerR(ScaleR(a, -1), 1)
      oneMinusX = AddScalerR(ScaleR(xVar, -1), 1)
      log1A = LogR(oneMinusA)
      errorVec = AddR(MulR(xVar, logA), MulR(oneMinusX, log1A))
      return ScaleR(SumAllR(errorVec), -1)
    return PoolR(actual, _costR)

#-------------------------------------------------------------------------------
class DotCost (costFunc):
  """
  Computes the negative dot product of the actual and expected vectors. This
  is equivalent to cross entropy cost when the network ends with a log-softmax.
  """
  def cost(self, expected, actual):
    xVar = Variable(expected)
    return Scale(SumAll(Mul(xVar, actual)), -1)

  def costR(self, rvector, expected, actual):
    xVar = RVariable(Variable(expected), rvector)
    return ScaleR(SumAllR(MulR(xVar, actual)), -1)

#-------------------------------------------------------------------------------
class SigmoidCECost (costFunc):
  """
  Applies a sigmoid to the actual output and then the cross entropy cost.
  This is computed with log-sigmoids of a and -a, which is more numerically
  stable than feeding the output of a sigmoid to CrossEntropyCost.
  """
  def cost(self, expected, actual):
    logSig = LogSigmoid(actual)
    invLogSig = LogSigmoid(Scale(actual, -1))
    xVar = Variable(expected)
    oneMinusX = AddScaler(Scale(xVar, -1), 1)
    sums = Add(Mul(xVar, logSig), Mul(oneMinusX, invLogSig))
    return Scale(SumAll(sums), -1)

  def costR(self, rvector, expected, actual):
    logSig = LogSigmoidR(actual)
    invLogSig = LogSigmoidR(ScaleR(actual, -1))
    xVar = RVariable(Variable(expected), rvector)
    oneMinusX = AddScalerR(ScaleR(xVar, -1), 1)
    sums = AddR(MulR(xVar, logSig), MulR(oneMinusX, invLogSig))
    return ScaleR(SumAllR(sums), -1)

#-------------------------------------------------------------------------------
class RegularizingCost (costFunc):
  """
  Adds onto another cost function the squared magnitudes of various variables:

  cost(x, a) = costfunc.cost(x, a) + penalty * sum(||v||^2 for v in variables)

  The penalty terms are summed into the graph, so one backward pass yields
  gradients for both the network output and every regularized variable.
  """
  variables = None # regularized Variables
  penalty = None   # coefficient for the squared magnitudes
  costfunc = None  # delegate cost function

  def __init__(self, variables, penalty, costfunc):
    self.variables = list(variables)
    self.penalty = float(penalty)
    self.costfunc = costfunc
    if self.penalty < 0.:
      warnings.warn("Negative regularization penalty rewards large variable magnitudes.")

  def cost(self, expected, actual):
    cost = self.costfunc.cost(expected, actual)
    for variable in self.variables:
      cost = Add(cost, Scale(SquaredNorm(variable), self.penalty))
    return cost

  def costR(self, rvector, expected, actual):
    cost = self.costfunc.costR(rvector, expected, actual)
    for variable in self.variables:
      norm = SquaredNormR(RVariable(variable, rvector))
      cost = AddR(cost, ScaleR(norm, self.penalty))
    return cost

  def __repr__(self):
    return "RegularizingCost({} variables, penalty={}, costfunc={!r})".format(
            len(self.variables), self.penalty, self.costfunc)

#-------------------------------------------------------------------------------
COST_FUNCTIONS = {'quad': MeanSquaredCost,
                  'abs':  AbsCost,
                  'xent': CrossEntropyCost,
                  'dot':  DotCost,
                  'sigx': SigmoidCECost}

#-------------------------------------------------------------------------------
def costFunction(*args):
  """
  Returns a cost function instance. Three ways:

    costFunction()            # MeanSquaredCost
    costFunction('xent')      # by name from COST_FUNCTIONS
    costFunction(costfunc)    # an existing costFunc instance is returned as is
  """
  nargs = len(args)
  if not(nargs):
    return COST_FUNCTIONS['quad']()
  elif nargs == 1:
    if type(args[0]) is str:
      key = args[0].lower()
      if key not in COST_FUNCTIONS:
        raise ValueError("Unknown cost function '{}': choose from {}".format(
                         args[0], sorted(COST_FUNCTIONS)))
      return COST_FUNCTIONS[key]()
    elif isinstance(args[0], costFunc):
      return args[0]
    else:
      raise ValueError("costFunction single inputs must be a string or costFunc instance")
  else:
    raise ValueError("Unexpected costFunction(inputs arguments) specification.")

#-------------------------------------------------------------------------------
