"""
Labelled sample sets and helpers for totalling the cost of a function or
batcher over them.
"""

import warnings
import numpy as np
from costnet.autofunc import Variable
from costnet.dtypes import asvector, isint

#-------------------------------------------------------------------------------
class VectorSample (object):
  """
  A training sample pairing an input vector with its expected output vector.
  """
  __slots__ = ['input', 'output']

  def __init__(self, input, output):
    self.input = asvector(input)
    self.output = asvector(output)

  def __repr__(self):
    return "VectorSample(input={}, output={})".format(self.input, self.output)

#-------------------------------------------------------------------------------
class SampleSet (object):
  """
  An indexable collection of samples:

  samples.len() or len(samples) -> number of samples
  samples.getSample(i) -> i'th sample
  """
  def __init__(self, samples = ()):
    self.samples = list(samples)

  def len(self):
    return len(self.samples)

  def __len__(self):
    return self.len()

  def getSample(self, i):
    return self.samples[i]

  def append(self, sample):
    self.samples.append(sample)

#-------------------------------------------------------------------------------
def _vectorSample(samples, i):
  sample = samples.getSample(i)
  if not isinstance(sample, VectorSample):
    raise TypeError("Sample {} is a {} rather than a VectorSample".format(
                    i, type(sample).__name__))
  return sample

#-------------------------------------------------------------------------------
def totalCost(costfunc, func, samples):
  """
  Returns the total cost of func over all samples, whose elements must be
  VectorSamples. Each input is wrapped in a Variable and passed to
  func.apply().
  """
  total = 0.
  for i in range(samples.len()):
    sample = _vectorSample(samples, i)
    result = func.apply(Variable(sample.input))
    total += costfunc.cost(sample.output, result).output()[0]
  return total

#-------------------------------------------------------------------------------
def totalCostBatcher(costfunc, batcher, samples, batch_size = 0):
  """
  Like totalCost(), but applies batcher.batch(inputs, n) to the concatenated
  inputs of n samples at a time. If batch_size is 0, all samples are applied
  in one batch; otherwise the last batch may hold fewer than batch_size.
  """
  if not isint(batch_size) or batch_size < 0:
    raise ValueError("Batch size must be a non-negative integer, not {}".format(batch_size))
  batch_size = int(batch_size)
  n = samples.len()
  if n and batch_size > n:
    warnings.warn("Batch size {} exceeds sample count {}.".format(batch_size, n))
  total = 0.
  i = 0
  while i < n:
    bs = batch_size
    if bs == 0 or bs > n - i:
      bs = n - i
    batch = [_vectorSample(samples, j) for j in range(i, i + bs)]
    inputs = np.concatenate([sample.input for sample in batch])
    expected = np.concatenate([sample.output for sample in batch])
    result = batcher.batch(Variable(inputs), bs)
    total += costfunc.cost(expected, result).output()[0]
    i += bs
  return total

#-------------------------------------------------------------------------------
