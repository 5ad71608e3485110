"""
A small reverse-mode automatic differentiation core, the system under test
for the gradient checker.

Forward passes record a computation graph; backward walks it in reverse to
accumulate gradients. The pieces are:

1. Tensor:
A node in the computational graph, holding a dense C-contiguous numpy buffer,
a dtype (float32 or float64 for anything the checker touches) and a device tag.
When it requires gradients, backprop stores a `grad`
Tensor of identical shape and dtype on it.

2. Function:
An abstract class that encapsulates forward and backward passes (see `ops.py`).
When an operation is applied to tensors it returns new Tensors
and records itself as their producing node.

Ownership in the graph only points backward:
tensor → producing Function (strong), Function → parent tensors (strong),
Function → its outputs (weak). There are no reference cycles.
"""

import uuid
from typing import List, Optional

import numpy as np

from .device import check_device, get_current_device
from .scalar import Scalar


def _to_array(value, dtype=None):
  if isinstance(value, Scalar):
    value = value.value
  if dtype is None and not (
    isinstance(value, (np.ndarray, np.generic)) and np.issubdtype(value.dtype, np.floating)
  ):
    dtype = np.float32
  return np.asarray(value, dtype=dtype, order="C")


def _as_scalar(self):
  if self.data.size != 1:
    raise TypeError("Only 0-dim Tensors can convert to Python scalars")
  return self.data.item()


class Tensor:
  __slots__ = (
    "data",
    "grad",
    "requires_grad",
    "_ctx",
    "shape",
    "name",
    "device",
    "__weakref__",
  )

  def __init__(
    self,
    data,
    requires_grad: bool = False,
    dtype=None,
    device: Optional[str] = None,
  ):
    self.data = _to_array(data, dtype)
    self.shape = self.data.shape
    self.requires_grad = requires_grad
    self.grad: Optional["Tensor"] = None
    self._ctx = None
    self.device = check_device(get_current_device() if device is None else device)
    self.name: str = f"tensor_{uuid.uuid4().hex[:8]}"

  def __repr__(self):
    return (
      f"Tensor(shape={self.data.shape}, dtype={self.data.dtype}, "
      f"device={self.device}, requires_grad={self.requires_grad})"
    )

  @property
  def dtype(self) -> np.dtype:
    return self.data.dtype

  @property
  def size(self) -> int:
    return self.data.size

  @property
  def ndim(self) -> int:
    return self.data.ndim

  @classmethod
  def empty_like(cls, template: "Tensor") -> "Tensor":
    return cls(np.empty_like(template.data), False, device=template.device)

  @classmethod
  def zeros_like(cls, template: "Tensor") -> "Tensor":
    return cls(np.zeros_like(template.data), False, device=template.device)

  @classmethod
  def full_like(cls, template: "Tensor", value) -> "Tensor":
    fill_value = template.data.dtype.type(float(value))
    return cls(np.full_like(template.data, fill_value), False, device=template.device)

  def copy(self) -> "Tensor":
    """Independent copy: fresh buffer, same flags, no gradient and no graph node."""
    return Tensor(self.data.copy(), self.requires_grad, device=self.device)

  def __deepcopy__(self, memo):
    return self.copy()

  def __neg__(self):
    from .ops import neg

    return neg(self)

  def __add__(self, other):
    from .ops import add

    return add(self, other)

  def __radd__(self, other):
    from .ops import add

    return add(Tensor(other), self)

  def __sub__(self, other):
    from .ops import sub

    return sub(self, other)

  def __rsub__(self, other):
    from .ops import sub

    return sub(Tensor(other), self)

  def __mul__(self, other):
    from .ops import mul

    return mul(self, other)

  def __rmul__(self, other):
    return self.__mul__(other)

  def __truediv__(self, other):
    from .ops import div

    return div(self, other)

  def __rtruediv__(self, other):
    from .ops import div

    return div(Tensor(other), self)

  def __float__(self):
    return _as_scalar(self)

  def __array__(self, dtype=None, copy=None):
    return self.data if dtype is None else self.data.astype(dtype)

  def reshape(self, *shape):
    return Tensor(self.data.reshape(*shape), self.requires_grad, device=self.device)

  def _accumulate_grad(self, gradient_array: np.ndarray) -> None:
    if gradient_array.shape != self.shape:
      gradient_array = np.broadcast_to(gradient_array, self.shape)
    if self.grad is None:
      self.grad = Tensor(
        np.array(gradient_array, dtype=self.dtype), False, device=self.device
      )
    else:
      self.grad.data += gradient_array.astype(self.dtype, copy=False)

  def backward(self, gradient=None):
    """
    Reverse-mode automatic differentiation starting at this tensor.

    The starting gradient is, in order of preference: the `gradient` argument,
    a gradient already seeded on `self.grad`, or ones.

    1. Collect every Function reachable from this tensor with a depth first search,
       in post-order, so a Function always comes after the Functions producing its inputs.
    2. Walk that list in reverse: each Function gathers the gradients of all its outputs
       (zeros for outputs nobody differentiated), computes the local backward,
       and accumulates the results into its parents, since a tensor may feed several branches.

    Functions with several outputs (e.g. `identity`) are a single node, so seeding
    the gradients of all their outputs and starting from any one of them reaches everything.
    """
    if not self.requires_grad:
      return

    if gradient is not None:
      gradient_tensor = gradient if isinstance(gradient, Tensor) else Tensor(gradient)
      self.grad = Tensor(
        np.array(gradient_tensor.data, dtype=self.dtype), False, device=self.device
      )
    elif self.grad is None:
      self.grad = Tensor(np.ones_like(self.data), False, device=self.device)
    if self.grad.shape != self.shape:
      raise ValueError(
        f"Gradient shape {self.grad.shape} does not match tensor shape {self.shape}"
      )

    ordered_functions: List = []
    visited_functions: set[int] = set()

    def depth_first_search(function):
      if id(function) in visited_functions:
        return
      visited_functions.add(id(function))
      for parent_tensor in function.parents:
        if parent_tensor._ctx is not None:
          depth_first_search(parent_tensor._ctx)
      ordered_functions.append(function)

    if self._ctx is not None:
      depth_first_search(self._ctx)

    for function in reversed(ordered_functions):
      output_gradients = function.backward(function.gather_output_gradients())
      if not isinstance(output_gradients, tuple):
        output_gradients = (output_gradients,)
      for parent_tensor, parent_gradient in zip(function.parents, output_gradients):
        if parent_gradient is None or not parent_tensor.requires_grad:
          continue
        parent_tensor._accumulate_grad(np.asarray(parent_gradient))
