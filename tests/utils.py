import numpy as np
from numpy.random import randn, uniform

from gradcheck.core.tensor import Tensor

EPS = 1e-3
RTOL = 1e-3
ATOL = 1e-3
DTYPES = [np.float32, np.float64]


def random_tensor(shape, dtype=np.float32, requires_grad=True, low=None, high=None):
  """Standard normal values, or uniform in [low, high) when bounds are given."""
  values = randn(*shape) if low is None else uniform(low, high, size=shape)
  return Tensor(np.asarray(values, dtype=dtype), requires_grad)


def upstream_gradients(shape, dtype=np.float32, count=1):
  return [
    random_tensor(shape, dtype, requires_grad=False, low=-1.0, high=1.0)
    for _ in range(count)
  ]


def constant_eps(inputs, value=EPS):
  return [Tensor.full_like(input_tensor, value) for input_tensor in inputs]


class CountingBarrier:
  """Synchronization barrier that only records how often it ran."""

  def __init__(self):
    self.calls = 0

  def __call__(self):
    self.calls += 1
