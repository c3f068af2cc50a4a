from costnet import autofunc, cost_func, samples
import numpy as np

# Cost, gradient and Hessian-vector product of a regularized element-wise
# sigmoid layer over a random sample set.

class SigmoidLayer (autofunc.baseFunc):
  def __init__(self, weights):
    self.weights = weights

  def apply(self, input):
    return autofunc.Sigmoid(autofunc.Mul(self.weights, input))

  def applyR(self, rvector, input):
    return autofunc.SigmoidR(autofunc.MulR(autofunc.RVariable(self.weights, rvector), input))

size = 5
n = 20
rng = np.random.default_rng(0)
W = autofunc.Variable(rng.normal(size = size))
layer = SigmoidLayer(W)
costfunc = cost_func.RegularizingCost([W], 1e-3, cost_func.costFunction('xent'))

S = samples.SampleSet(samples.VectorSample(rng.normal(size = size), rng.uniform(size = size) > 0.5)
                      for _ in range(n))

print("Total cost: " + str(samples.totalCost(costfunc, layer, S)))
print("Batched total cost: " + str(samples.totalCostBatcher(costfunc, autofunc.FuncBatcher(layer), S, 8)))

# Gradient and Hessian-vector product with respect to W for the first sample
sample = S.getSample(0)
direction = autofunc.RVector({W: rng.normal(size = size)})
inVar = autofunc.Variable(sample.input)
grad, rgrad = autofunc.Gradient([W]), autofunc.RGradient([W])
output = layer.applyR(direction, autofunc.RVariable(inVar, direction))
cost = costfunc.costR(direction, sample.output, output)
cost.propagateRGradient(np.array([1.]), np.array([0.]), rgrad, grad)

print("Cost: " + str(cost.output()[0]) + ", directional derivative: " + str(cost.rOutput()[0]))
print("Gradient: " + str(grad[W]))
print("Hessian-vector product: " + str(rgrad[W]))
