"""
Closed set of element types the gradient checker can read and write.

Dispatch goes through `visit_dtype`, which hands the native numpy scalar type
of a `Dtype` to a visitor closure:

  visit_dtype(Dtype.FLOAT32, lambda scalar_type: scalar_type(1.5))
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, TypeVar

import numpy as np

from .errors import UnsupportedDtypeError

T = TypeVar("T")


class Dtype(Enum):
  FLOAT32 = "float32"
  FLOAT64 = "float64"

  @property
  def type(self) -> type[np.floating]:
    return _SCALAR_TYPES[self]

  @property
  def itemsize(self) -> int:
    return np.dtype(self.value).itemsize

  @classmethod
  def of(cls, value) -> "Dtype":
    if isinstance(value, Dtype):
      return value
    try:
      name = np.dtype(value).name
    except TypeError as error:
      raise UnsupportedDtypeError(f"Unsupported dtype: {value!r}") from error
    try:
      return cls(name)
    except ValueError as error:
      raise UnsupportedDtypeError(f"Unsupported dtype: {name}") from error


_SCALAR_TYPES = {
  Dtype.FLOAT32: np.float32,
  Dtype.FLOAT64: np.float64,
}


def visit_dtype(dtype, visitor: Callable[[type[np.floating]], T]) -> T:
  return visitor(Dtype.of(dtype).type)
