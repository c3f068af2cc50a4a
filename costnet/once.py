# A compute-once cell for memoizing the outputs of graph nodes.

import threading

#-------------------------------------------------------------------------------
class onceCell (object):
  """
  Holds a value that is computed at most once and then never changes.

  cell.get(compute) returns the stored value if it has been published,
  otherwise it takes the cell's lock, re-checks, calls compute() if the value
  is still missing, publishes it and returns it. Readers that find the value
  published never touch the lock.

  Published ndarrays are flagged read-only so that no consumer can alter a
  node's output after the fact.
  """
  __slots__ = ['_value', '_lock']

  def __init__(self):
    self._value = None
    self._lock = threading.Lock()

  def ready(self):
    return self._value is not None

  def get(self, compute):
    value = self._value
    if value is not None:
      return value
    with self._lock:
      if self._value is None:
        value = compute()
        if value is None:
          raise ValueError("Memoized computation returned None")
        try:
          value.setflags(write = False)
        except AttributeError:
          pass
        self._value = value
      return self._value

#-------------------------------------------------------------------------------
