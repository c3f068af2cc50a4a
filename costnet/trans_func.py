# Elementwise transfer functions and derivatives used by the graph operators.
# Note _all_ functions accept keyword arguments and handle the output keyword
# argument out=z correctly.

import numpy as np
import scipy.special

#-------------------------------------------------------------------------------
sigval = scipy.special.expit

#-------------------------------------------------------------------------------
def sigder(x, **kwds):
  #y = sigval(x); return (1.-y)*y
  z = kwds["out"] if "out" in kwds else np.empty_like(x)
  y = kwds["val"] if "val" in kwds else sigval(x)
  np.subtract(1., y, out=z)
  np.multiply(z, y, out=z)
  return z

#-------------------------------------------------------------------------------
def sigdd(x, **kwds):
  # second derivative of the sigmoid: s(1-s)(1-2s)
  z = kwds["out"] if "out" in kwds else np.empty_like(x)
  y = kwds["val"] if "val" in kwds else sigval(x)
  sigder(x, val=y, out=z)
  np.multiply(z, 1. - 2. * y, out=z)
  return z

#-------------------------------------------------------------------------------
# log(sigmoid(x)) without evaluating sigmoid(x) first
logsigval = scipy.special.log_expit

#-------------------------------------------------------------------------------
def logsigder(x, **kwds):
  # d/dx log(sigmoid(x)) = sigmoid(-x)
  z = kwds["out"] if "out" in kwds else np.empty_like(x)
  np.negative(x, out=z)
  return sigval(z, out=z)

#-------------------------------------------------------------------------------
def logsigdd(x, **kwds):
  # d2/dx2 log(sigmoid(x)) = -sigmoid(x) * sigmoid(-x)
  z = kwds["out"] if "out" in kwds else np.empty_like(x)
  sigder(x, out=z)
  return np.negative(z, out=z)

#-------------------------------------------------------------------------------
TRANSFER_FUNCTION_DERIVATIVE = {'sigm':    (sigval, sigder, sigdd),
                                'logsigm': (logsigval, logsigder, logsigdd)}
#-------------------------------------------------------------------------------
