import numpy as np

from .device import synchronize
from .tensor import Tensor


def all_close(a: Tensor, b: Tensor, atol: float, rtol: float) -> bool:
  """
  True when ‖a − b‖ ≤ atol + rtol·|b| holds for every element.
  Tensors of different shapes, and NaNs anywhere, never compare close.
  """
  if a.shape != b.shape:
    return False
  synchronize(a.device)
  synchronize(b.device)
  difference = np.abs(a.data.astype(np.float64) - b.data.astype(np.float64))
  tolerance = atol + rtol * np.abs(b.data.astype(np.float64))
  return bool(np.all(difference <= tolerance))
