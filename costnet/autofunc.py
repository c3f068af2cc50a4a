"""
A module for lazily evaluated computation graphs supporting reverse-mode
gradient propagation and forward-mode (R-operator) directional derivatives.

Two node protocols are used throughout:

Result:
  result.output() -> vector (memoized, read-only)
  result.constant(grad) -> True if no gradient needs to flow through result
  result.propagateGradient(upstream, grad)

RResult:
  rresult.output() -> vector
  rresult.rOutput() -> directional derivative of output()
  rresult.constant(rgrad, grad)
  rresult.propagateRGradient(upstream, upstreamR, rgrad, grad)

where grad is a Gradient and rgrad an RGradient mapping Variables to their
accumulated derivatives. For propagateRGradient, grad may be None if only the
R-gradient is wanted. Upstream vectors must never be altered by the receiving
node.

OOP notation convention:

lowerCamelCase: base classes intended to inherited rather than instantiated.
UpperCamelCase: classes intended for instantiation.
"""

import numpy as np
from costnet.dtypes import asvector, zeros_like
from costnet.once import onceCell
import costnet.trans_func as trans_func

#-------------------------------------------------------------------------------
class Gradient (dict):
  """
  Accumulator mapping Variables to gradient vectors for one backward pass.
  Only Variables present as keys receive gradients; all others are treated
  as constants.
  """
  def __init__(self, variables = ()):
    dict.__init__(self)
    for variable in variables:
      self[variable] = zeros_like(variable.vector)

  def zero(self):
    for value in self.values():
      value.fill(0.)

#-------------------------------------------------------------------------------
class RGradient (Gradient):
  """
  Accumulator mapping Variables to the directional derivatives of their
  gradients (i.e. Hessian-vector products) for one backward pass.
  """
  pass

#-------------------------------------------------------------------------------
class RVector (dict):
  """
  Maps Variables to direction vectors. Variables absent from an RVector have a
  zero direction.
  """
  pass

#-------------------------------------------------------------------------------
class Variable (object):
  """
  A leaf node wrapping a mutable vector, typically a parameter or an input.

  Unlike every other node, a Variable's output is not memoized: it returns
  self.vector, which owners may update in place between passes.
  """
  def __init__(self, vector):
    self.vector = asvector(vector)

  def output(self):
    return self.vector

  def constant(self, grad):
    return self not in grad

  def propagateGradient(self, upstream, grad):
    if self in grad:
      grad[self] += upstream

#-------------------------------------------------------------------------------
class RVariable (object):
  """
  The forward-mode counterpart of a Variable: RVariable(variable, rvector)
  outputs variable.vector with directional derivative rvector[variable].
  """
  def __init__(self, variable, rvector = None):
    self.variable = variable
    self._routput = None
    if rvector is not None and variable in rvector:
      self._routput = asvector(rvector[variable])

  def output(self):
    return self.variable.vector

  def rOutput(self):
    if self._routput is None:
      self._routput = zeros_like(self.variable.vector)
    return self._routput

  def constant(self, rgrad, grad):
    if self.variable in rgrad:
      return False
    return grad is None or self.variable not in grad

  def propagateRGradient(self, upstream, upstreamR, rgrad, grad):
    if grad is not None and self.variable in grad:
      grad[self.variable] += upstream
    if self.variable in rgrad:
      rgrad[self.variable] += upstreamR

#-------------------------------------------------------------------------------
class baseResult (object):
  """
  Foundation class for derived graph nodes. Inheriting classes implement
  _evaluate(), which is invoked at most once by output() regardless of how
  many threads call it.
  """
  def __init__(self):
    self._output = onceCell()

  def output(self):
    return self._output.get(self._evaluate)

  def _evaluate(self):
    raise NotImplementedError("baseResult subclass to implement _evaluate method")

  def constant(self, grad):
    raise NotImplementedError("baseResult subclass to implement constant method")

  def propagateGradient(self, upstream, grad):
    raise NotImplementedError("baseResult subclass to implement propagateGradient method")

#-------------------------------------------------------------------------------
class baseRResult (object):
  """
  Foundation class for derived forward-mode graph nodes, memoizing both the
  primal output and its directional derivative.
  """
  def __init__(self):
    self._output = onceCell()
    self._routput = onceCell()

  def output(self):
    return self._output.get(self._evaluate)

  def rOutput(self):
    return self._routput.get(self._rEvaluate)

  def _evaluate(self):
    raise NotImplementedError("baseRResult subclass to implement _evaluate method")

  def _rEvaluate(self):
    raise NotImplementedError("baseRResult subclass to implement _rEvaluate method")

  def constant(self, rgrad, grad):
    raise NotImplementedError("baseRResult subclass to implement constant method")

  def propagateRGradient(self, upstream, upstreamR, rgrad, grad):
    raise NotImplementedError("baseRResult subclass to implement propagateRGradient method")

#-------------------------------------------------------------------------------
class unaryResult (baseResult):
  """
  Base class for nodes of a single input. Inheriting classes implement
  _downstream(upstream) returning the gradient with respect to the input.
  """
  def __init__(self, input):
    baseResult.__init__(self)
    self.input = input

  def constant(self, grad):
    return self.input.constant(grad)

  def propagateGradient(self, upstream, grad):
    if not self.input.constant(grad):
      self.input.propagateGradient(self._downstream(upstream), grad)

  def _downstream(self, upstream):
    raise NotImplementedError("unaryResult subclass to implement _downstream method")

#-------------------------------------------------------------------------------
class unaryRResult (baseRResult):
  """
  Forward-mode counterpart of unaryResult. Inheriting classes implement
  _downstream(upstream, upstreamR) returning the pair of input gradient and
  its directional derivative.
  """
  def __init__(self, input):
    baseRResult.__init__(self)
    self.input = input

  def constant(self, rgrad, grad):
    return self.input.constant(rgrad, grad)

  def propagateRGradient(self, upstream, upstreamR, rgrad, grad):
    if not self.input.constant(rgrad, grad):
      down, downR = self._downstream(upstream, upstreamR)
      self.input.propagateRGradient(down, downR, rgrad, grad)

  def _downstream(self, upstream, upstreamR):
    raise NotImplementedError("unaryRResult subclass to implement _downstream method")

#-------------------------------------------------------------------------------
def commensurate(a, b):
  """
  Returns the pair of vectors a and b, raising a ValueError unless they are of
  equal length. numpy would otherwise broadcast a length-1 vector silently.
  """
  if len(a) != len(b):
    raise ValueError("Vector lengths {} and {} incommensurate".format(len(a), len(b)))
  return a, b

#-------------------------------------------------------------------------------
class Add (baseResult):
  def __init__(self, a, b):
    baseResult.__init__(self)
    self.a, self.b = a, b

  def _evaluate(self):
    a, b = commensurate(self.a.output(), self.b.output())
    return a + b

  def constant(self, grad):
    return self.a.constant(grad) and self.b.constant(grad)

  def propagateGradient(self, upstream, grad):
    if not self.a.constant(grad):
      self.a.propagateGradient(upstream, grad)
    if not self.b.constant(grad):
      self.b.propagateGradient(upstream, grad)

#-------------------------------------------------------------------------------
class AddR (baseRResult):
  def __init__(self, a, b):
    baseRResult.__init__(self)
    self.a, self.b = a, b

  def _evaluate(self):
    a, b = commensurate(self.a.output(), self.b.output())
    return a + b

  def _rEvaluate(self):
    a, b = commensurate(self.a.rOutput(), self.b.rOutput())
    return a + b

  def constant(self, rgrad, grad):
    return self.a.constant(rgrad, grad) and self.b.constant(rgrad, grad)

  def propagateRGradient(self, upstream, upstreamR, rgrad, grad):
    if not self.a.constant(rgrad, grad):
      self.a.propagateRGradient(upstream, upstreamR, rgrad, grad)
    if not self.b.constant(rgrad, grad):
      self.b.propagateRGradient(upstream, upstreamR, rgrad, grad)

#-------------------------------------------------------------------------------
class Mul (baseResult):
  """
  Elementwise product of two nodes of equal length.
  """
  def __init__(self, a, b):
    baseResult.__init__(self)
    self.a, self.b = a, b

  def _evaluate(self):
    a, b = commensurate(self.a.output(), self.b.output())
    return a * b

  def constant(self, grad):
    return self.a.constant(grad) and self.b.constant(grad)

  def propagateGradient(self, upstream, grad):
    a, b = commensurate(self.a.output(), self.b.output())
    if not self.a.constant(grad):
      self.a.propagateGradient(upstream * b, grad)
    if not self.b.constant(grad):
      self.b.propagateGradient(upstream * a, grad)

#-------------------------------------------------------------------------------
class MulR (baseRResult):
  def __init__(self, a, b):
    baseRResult.__init__(self)
    self.a, self.b = a, b

  def _evaluate(self):
    a, b = commensurate(self.a.output(), self.b.output())
    return a * b

  def _rEvaluate(self):
    a, b = commensurate(self.a.output(), self.b.output())
    return self.a.rOutput() * b + a * self.b.rOutput()

  def constant(self, rgrad, grad):
    return self.a.constant(rgrad, grad) and self.b.constant(rgrad, grad)

  def propagateRGradient(self, upstream, upstreamR, rgrad, grad):
    a, b = commensurate(self.a.output(), self.b.output())
    if not self.a.constant(rgrad, grad):
      self.a.propagateRGradient(upstream * b,
                                upstreamR * b + upstream * self.b.rOutput(), rgrad, grad)
    if not self.b.constant(rgrad, grad):
      self.b.propagateRGradient(upstream * a,
                                upstreamR * a + upstream * self.a.rOutput(), rgrad, grad)

#-------------------------------------------------------------------------------
class Scale (unaryResult):
  def __init__(self, input, scaler):
    unaryResult.__init__(self, input)
    self.scaler = float(scaler)

  def _evaluate(self):
    return self.input.output() * self.scaler

  def _downstream(self, upstream):
    return upstream * self.scaler

#-------------------------------------------------------------------------------
class ScaleR (unaryRResult):
  def __init__(self, input, scaler):
    unaryRResult.__init__(self, input)
    self.scaler = float(scaler)

  def _evaluate(self):
    return self.input.output() * self.scaler

  def _rEvaluate(self):
    return self.input.rOutput() * self.scaler

  def _downstream(self, upstream, upstreamR):
    return upstream * self.scaler, upstreamR * self.scaler

#-------------------------------------------------------------------------------
class AddScaler (unaryResult):
  """
  Adds a scalar to every element of the input.
  """
  def __init__(self, input, scaler):
    unaryResult.__init__(self, input)
    self.scaler = float(scaler)

  def _evaluate(self):
    return self.input.output() + self.scaler

  def _downstream(self, upstream):
    return upstream

#-------------------------------------------------------------------------------
class AddScalerR (unaryRResult):
  def __init__(self, input, scaler):
    unaryRResult.__init__(self, input)
    self.scaler = float(scaler)

  def _evaluate(self):
    return self.input.output() + self.scaler

  def _rEvaluate(self):
    return self.input.rOutput().copy()

  def _downstream(self, upstream, upstreamR):
    return upstream, upstreamR

#-------------------------------------------------------------------------------
class SumAll (unaryResult):
  """
  Sums all elements of the input into a single-element vector.
  """
  def _evaluate(self):
    return np.array([np.sum(self.input.output())])

  def _downstream(self, upstream):
    return np.full(len(self.input.output()), upstream[0])

#-------------------------------------------------------------------------------
class SumAllR (unaryRResult):
  def _evaluate(self):
    return np.array([np.sum(self.input.output())])

  def _rEvaluate(self):
    return np.array([np.sum(self.input.rOutput())])

  def _downstream(self, upstream, upstreamR):
    n = len(self.input.output())
    return np.full(n, upstream[0]), np.full(n, upstreamR[0])

#-------------------------------------------------------------------------------
class Log (unaryResult):
  """
  Elementwise natural logarithm. Inputs must be positive.
  """
  def _evaluate(self):
    return np.log(self.input.output())

  def _downstream(self, upstream):
    return upstream / self.input.output()

#-------------------------------------------------------------------------------
class LogR (unaryRResult):
  def _evaluate(self):
    return np.log(self.input.output())

  def _rEvaluate(self):
    return self.input.rOutput() / self.input.output()

  def _downstream(self, upstream, upstreamR):
    x = self.input.output()
    return upstream / x, upstreamR / x - upstream * self.input.rOutput() / (x * x)

#-------------------------------------------------------------------------------
class transResult (unaryResult):
  """
  Elementwise application of a transfer function from
  trans_func.TRANSFER_FUNCTION_DERIVATIVE, selected by the class attribute
  transfunc.
  """
  transfunc = None

  def __init__(self, input):
    unaryResult.__init__(self, input)
    self.transfer, self.transder, _ = trans_func.TRANSFER_FUNCTION_DERIVATIVE[self.transfunc]

  def _evaluate(self):
    return self.transfer(self.input.output())

  def _downstream(self, upstream):
    return upstream * self.transder(self.input.output())

#-------------------------------------------------------------------------------
class transRResult (unaryRResult):
  transfunc = None

  def __init__(self, input):
    unaryRResult.__init__(self, input)
    self.transfer, self.transder, self.transdd = \
        trans_func.TRANSFER_FUNCTION_DERIVATIVE[self.transfunc]

  def _evaluate(self):
    return self.transfer(self.input.output())

  def _rEvaluate(self):
    return self.transder(self.input.output()) * self.input.rOutput()

  def _downstream(self, upstream, upstreamR):
    x = self.input.output()
    der = self.transder(x)
    return upstream * der, upstreamR * der + upstream * self.transdd(x) * self.input.rOutput()

#-------------------------------------------------------------------------------
class Sigmoid (transResult):
  transfunc = 'sigm'

class SigmoidR (transRResult):
  transfunc = 'sigm'

#-------------------------------------------------------------------------------
class LogSigmoid (transResult):
  """
  Elementwise log(sigmoid(x)), computed without evaluating sigmoid(x) so that
  large negative inputs do not underflow.
  """
  transfunc = 'logsigm'

class LogSigmoidR (transRResult):
  transfunc = 'logsigm'

#-------------------------------------------------------------------------------
class SquaredNorm (unaryResult):
  """
  Sum of squared elements as a single-element vector.
  """
  def _evaluate(self):
    x = self.input.output()
    return np.array([np.dot(x, x)])

  def _downstream(self, upstream):
    return (2. * upstream[0]) * self.input.output()

#-------------------------------------------------------------------------------
class SquaredNormR (unaryRResult):
  def _evaluate(self):
    x = self.input.output()
    return np.array([np.dot(x, x)])

  def _rEvaluate(self):
    return np.array([2. * np.dot(self.input.output(), self.input.rOutput())])

  def _downstream(self, upstream, upstreamR):
    x = self.input.output()
    return (2. * upstream[0]) * x, \
           (2. * upstreamR[0]) * x + (2. * upstream[0]) * self.input.rOutput()

#-------------------------------------------------------------------------------
class Slice (unaryResult):
  """
  The contiguous sub-vector input.output()[start:end].
  """
  def __init__(self, input, start, end):
    unaryResult.__init__(self, input)
    self.start, self.end = int(start), int(end)

  def _slice(self):
    return slice(self.start, self.end)

  def _evaluate(self):
    return self.input.output()[self._slice()].copy()

  def _downstream(self, upstream):
    down = zeros_like(self.input.output())
    down[self._slice()] = upstream
    return down

#-------------------------------------------------------------------------------
class SliceR (unaryRResult):
  def __init__(self, input, start, end):
    unaryRResult.__init__(self, input)
    self.start, self.end = int(start), int(end)

  def _slice(self):
    return slice(self.start, self.end)

  def _evaluate(self):
    return self.input.output()[self._slice()].copy()

  def _rEvaluate(self):
    return self.input.rOutput()[self._slice()].copy()

  def _downstream(self, upstream, upstreamR):
    n = len(self.input.output())
    down, downR = np.zeros(n), np.zeros(n)
    down[self._slice()] = upstream
    downR[self._slice()] = upstreamR
    return down, downR

#-------------------------------------------------------------------------------
class Chunk (Slice):
  """
  The index'th of n equal sub-vectors of the input. Bounds are only worked
  out once the input is evaluated, so building a Chunk is lazy.
  """
  def __init__(self, input, index, n):
    unaryResult.__init__(self, input)
    self.index, self.n = int(index), int(n)

  def _slice(self):
    size = _sampleSize(self.input, self.n)
    return slice(self.index*size, (self.index+1)*size)

#-------------------------------------------------------------------------------
class ChunkR (SliceR):
  def __init__(self, input, index, n):
    unaryRResult.__init__(self, input)
    self.index, self.n = int(index), int(n)

  def _slice(self):
    size = _sampleSize(self.input, self.n)
    return slice(self.index*size, (self.index+1)*size)


#-------------------------------------------------------------------------------
class Concat (baseResult):
  """
  Concatenates the outputs of several nodes in order.
  """
  def __init__(self, *inputs):
    baseResult.__init__(self)
    self.inputs = inputs

  def _evaluate(self):
    return np.concatenate([input.output() for input in self.inputs])

  def constant(self, grad):
    return all(input.constant(grad) for input in self.inputs)

  def propagateGradient(self, upstream, grad):
    start = 0
    for input in self.inputs:
      end = start + len(input.output())
      if not input.constant(grad):
        input.propagateGradient(upstream[start:end], grad)
      start = end

#-------------------------------------------------------------------------------
class ConcatR (baseRResult):
  def __init__(self, *inputs):
    baseRResult.__init__(self)
    self.inputs = inputs

  def _evaluate(self):
    return np.concatenate([input.output() for input in self.inputs])

  def _rEvaluate(self):
    return np.concatenate([input.rOutput() for input in self.inputs])

  def constant(self, rgrad, grad):
    return all(input.constant(rgrad, grad) for input in self.inputs)

  def propagateRGradient(self, upstream, upstreamR, rgrad, grad):
    start = 0
    for input in self.inputs:
      end = start + len(input.output())
      if not input.constant(rgrad, grad):
        input.propagateRGradient(upstream[start:end], upstreamR[start:end], rgrad, grad)
      start = end

#-------------------------------------------------------------------------------
class pooledVariable (Variable):
  """
  A Variable standing in for a pooled node inside a Pool expression. Its
  vector is the source node's output, fetched once.
  """
  def __init__(self, source):
    self.source = source
    self._vector = onceCell()

  @property
  def vector(self):
    return self._vector.get(lambda: self.source.output().view())

#-------------------------------------------------------------------------------
class pooledRVariable (RVariable):
  def __init__(self, source):
    self.variable = pooledVariable(source)
    self.source = source
    self._routput = onceCell()

  def output(self):
    return self.variable.vector

  def rOutput(self):
    return self._routput.get(lambda: self.source.rOutput().view())

#-------------------------------------------------------------------------------
class Pool (baseResult):
  """
  Pool(source, f) evaluates f(pooled) where pooled is a Variable standing in
  for source. The source may then be referenced any number of times within f
  while being evaluated once and receiving a single, summed gradient.
  """
  def __init__(self, source, f):
    baseResult.__init__(self)
    self.source = source
    self.pooled = pooledVariable(source)
    self.result = f(self.pooled)

  def _evaluate(self):
    return self.result.output()

  def constant(self, grad):
    return self.source.constant(grad) and self.result.constant(grad)

  def propagateGradient(self, upstream, grad):
    if self.source.constant(grad):
      if not self.result.constant(grad):
        self.result.propagateGradient(upstream, grad)
      return
    grad[self.pooled] = zeros_like(self.pooled.vector)
    self.result.propagateGradient(upstream, grad)
    self.source.propagateGradient(grad.pop(self.pooled), grad)

#-------------------------------------------------------------------------------
class PoolR (baseRResult):
  def __init__(self, source, f):
    baseRResult.__init__(self)
    self.source = source
    self.pooled = pooledRVariable(source)
    self.result = f(self.pooled)

  def _evaluate(self):
    return self.result.output()

  def _rEvaluate(self):
    return self.result.rOutput()

  def constant(self, rgrad, grad):
    return self.source.constant(rgrad, grad) and self.result.constant(rgrad, grad)

  def propagateRGradient(self, upstream, upstreamR, rgrad, grad):
    if self.source.constant(rgrad, grad):
      if not self.result.constant(rgrad, grad):
        self.result.propagateRGradient(upstream, upstreamR, rgrad, grad)
      return
    # the pooled gradient is needed for R-propagation even if grad is None
    key = self.pooled.variable
    pgrad = grad if grad is not None else Gradient()
    pgrad[key] = zeros_like(key.vector)
    rgrad[key] = zeros_like(key.vector)
    self.result.propagateRGradient(upstream, upstreamR, rgrad, pgrad)
    self.source.propagateRGradient(pgrad.pop(key), rgrad.pop(key), rgrad, grad)

#-------------------------------------------------------------------------------
class baseFunc (object):
  """
  A differentiable function of a single node, e.g. a network.

  func.apply(result) -> Result
  func.applyR(rvector, rresult) -> RResult
  """
  def apply(self, input):
    raise NotImplementedError("baseFunc subclass to implement apply method")

  def applyR(self, rvector, input):
    raise NotImplementedError("baseFunc subclass to implement applyR method")

#-------------------------------------------------------------------------------
class FuncBatcher (object):
  """
  Adapts a per-sample function to a batcher: FuncBatcher(func).batch(input, n)
  splits input into n equal sub-vectors, applies func to each and
  concatenates the results. The input is not evaluated until the batch
  output is; a length not divisible by n then raises a ValueError.
  """
  def __init__(self, func):
    self.func = func

  def batch(self, input, n):
    if n < 1:
      raise ValueError("Cannot split input into {} samples".format(n))
    return Pool(input, lambda pooled: Concat(*[self.func.apply(Chunk(pooled, i, n))
                                               for i in range(n)]))

  def batchR(self, rvector, input, n):
    if n < 1:
      raise ValueError("Cannot split input into {} samples".format(n))
    return PoolR(input, lambda pooled: ConcatR(*[self.func.applyR(rvector, ChunkR(pooled, i, n))
                                                 for i in range(n)]))

#-------------------------------------------------------------------------------
def _sampleSize(input, n):
  total = len(input.output())
  if n < 1 or total % n:
    raise ValueError("Input of length {} cannot be split into {} samples".format(total, n))
  return total // n

#-------------------------------------------------------------------------------
