from __future__ import annotations

import numpy as np

from .dtype import Dtype


def _infer_dtype(value) -> Dtype:
  if isinstance(value, (np.generic, np.ndarray)) and value.dtype == np.float32:
    return Dtype.FLOAT32
  return Dtype.FLOAT64


class Scalar:
  """A single number tagged with one of the supported dtypes."""

  __slots__ = ("value", "dtype")

  def __init__(self, value, dtype: Dtype | str | None = None):
    if isinstance(value, Scalar):
      dtype = value.dtype if dtype is None else dtype
      value = value.value
    self.dtype = _infer_dtype(value) if dtype is None else Dtype.of(dtype)
    self.value = self.dtype.type(value)

  def __repr__(self):
    return f"Scalar({self.value!r}, dtype={self.dtype.value})"

  def __float__(self):
    return float(self.value)

  def __int__(self):
    return int(self.value)

  def __array__(self, dtype=None, copy=None):
    return np.asarray(self.value, dtype=dtype)

  def _coerce(self, other):
    if isinstance(other, Scalar):
      return other.value
    if isinstance(other, (int, float, np.generic)):
      return other
    return None

  def _binary(self, other, operation):
    other_value = self._coerce(other)
    if other_value is None:
      return NotImplemented
    return Scalar(operation(float(self.value), float(other_value)), self.dtype)

  def __neg__(self):
    return Scalar(-self.value, self.dtype)

  def __add__(self, other):
    return self._binary(other, lambda left, right: left + right)

  def __radd__(self, other):
    return self._binary(other, lambda left, right: right + left)

  def __sub__(self, other):
    return self._binary(other, lambda left, right: left - right)

  def __rsub__(self, other):
    return self._binary(other, lambda left, right: right - left)

  def __mul__(self, other):
    return self._binary(other, lambda left, right: left * right)

  def __rmul__(self, other):
    return self._binary(other, lambda left, right: right * left)

  def __truediv__(self, other):
    return self._binary(other, lambda left, right: left / right)

  def __rtruediv__(self, other):
    return self._binary(other, lambda left, right: right / left)

  def __eq__(self, other):
    other_value = self._coerce(other)
    if other_value is None:
      return NotImplemented
    return bool(self.value == other_value)

  def __hash__(self):
    return hash((float(self.value), self.dtype))
