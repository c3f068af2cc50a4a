# A data types module with functions to support duck-typing of vectors and scalars.

import numpy as np

FLOAT = np.float64 # float type of all coerced vectors

#-------------------------------------------------------------------------------
def Type(x):
  y = type(x)
  if isinstance(x, np.floating):
    return float
  elif isinstance(x, np.integer):
    return int
  elif y is np.bool_:
    return bool
  else:
    return y

#-------------------------------------------------------------------------------
def isarray(x):
  return type(x) in (list, tuple, np.ndarray)

#-------------------------------------------------------------------------------
def isint(x):
  return Type(x) is int

#-------------------------------------------------------------------------------
def isnum(x):
  return Type(x) in (bool, int, float)

#-------------------------------------------------------------------------------
def asvector(x, copy = False):
  """
  Returns x as a flat vector of dtype FLOAT. A copy is made only if copy is
  True or if x is not already a flat FLOAT array.
  """
  if isnum(x):
    x = [x]
  elif not isarray(x):
    raise TypeError("Cannot interpret {} as a vector".format(type(x).__name__))
  if copy:
    return np.array(x, dtype = FLOAT).ravel()
  return np.asarray(x, dtype = FLOAT).ravel()

#-------------------------------------------------------------------------------
def zeros_like(x):
  return np.zeros(len(x), dtype = FLOAT)

#-------------------------------------------------------------------------------
