"""
Primitives that power the autodiff engine.

Design
∘ Function.apply builds the forward result and records the Function as the producing node.
∘ A Function may return several arrays; all its outputs then share the one node.
∘ Elementwise binary ops share `BinaryFunction`, which unbroadcasts gradients via `_unbroadcast`.
∘ Coverage: element-wise {add, sub, mul, div, neg, tanh} and identity.

Each op stores only what is indispensable for its gradient
keeps memory footprint predictable.
"""

from __future__ import annotations

import weakref
from abc import ABC, abstractmethod

import numpy as np

from .tensor import Tensor


def _unbroadcast(
  gradient_array: np.ndarray, target_shape: tuple[int, ...]
) -> np.ndarray:
  while gradient_array.ndim > len(target_shape):
    gradient_array = gradient_array.sum(axis=0)
  for axis_index, size in enumerate(target_shape):
    if size == 1 and gradient_array.shape[axis_index] != 1:
      gradient_array = gradient_array.sum(axis=axis_index, keepdims=True)
  return gradient_array


class Function(ABC):
  def __init__(self) -> None:
    self.parents: list[Tensor] = []
    self.saved_tensors: tuple[np.ndarray, ...] = ()
    self.outputs: list[weakref.ref] = []
    self.output_specs: list[tuple[tuple[int, ...], np.dtype]] = []
    self.multiple_outputs = False

  def save_for_backward(self, *tensors) -> None:
    self.saved_tensors = tuple(tensors)

  @classmethod
  def apply(cls, *args, **kwargs) -> Tensor | tuple[Tensor, ...]:
    context = cls()
    context.parents = [argument for argument in args if isinstance(argument, Tensor)]
    raw_arguments = [
      argument.data if isinstance(argument, Tensor) else argument for argument in args
    ]
    output_data = cls.forward(context, *raw_arguments, **kwargs)
    requires_grad_flag = any(
      isinstance(argument, Tensor) and argument.requires_grad for argument in args
    )
    device = context.parents[0].device if context.parents else None
    context.multiple_outputs = isinstance(output_data, tuple)
    output_arrays = output_data if context.multiple_outputs else (output_data,)
    output_tensors = tuple(
      Tensor(array, requires_grad_flag, device=device) for array in output_arrays
    )
    if requires_grad_flag:
      for output_tensor in output_tensors:
        output_tensor._ctx = context
      context.outputs = [weakref.ref(output_tensor) for output_tensor in output_tensors]
      context.output_specs = [
        (output_tensor.shape, output_tensor.dtype) for output_tensor in output_tensors
      ]
    return output_tensors if context.multiple_outputs else output_tensors[0]

  def gather_output_gradients(self) -> np.ndarray | tuple[np.ndarray, ...]:
    """Gradients of every output; zeros for outputs that were dropped or never reached."""
    gradients = []
    for reference, (shape, dtype) in zip(self.outputs, self.output_specs):
      output_tensor = reference()
      if output_tensor is None or output_tensor.grad is None:
        gradients.append(np.zeros(shape, dtype=dtype))
      else:
        gradients.append(output_tensor.grad.data)
    return tuple(gradients) if self.multiple_outputs else gradients[0]

  @staticmethod
  @abstractmethod
  def forward(ctx, *args, **kwargs):
    raise NotImplementedError

  @abstractmethod
  def backward(self, gradient_output) -> np.ndarray | tuple[np.ndarray, ...]:
    raise NotImplementedError


class Identity(Function):
  """
  Identity over any number of tensors, recorded as a single graph node.
  Forward copies every input, backward hands every gradient through unchanged.
  """

  @staticmethod
  def forward(ctx, *args, **kwargs):
    return tuple(np.array(input_array, copy=True) for input_array in args)

  def backward(self, gradient_output):
    return tuple(gradient_output)


def identity(*tensors: Tensor) -> tuple[Tensor, ...]:
  return Identity.apply(*tensors)


def _as_tensor(value) -> Tensor:
  return value if isinstance(value, Tensor) else Tensor(value)


class BinaryFunction(Function):
  """
  Elementwise op over two broadcast-compatible operands.

  Subclasses give the local partials ∂y/∂left and ∂y/∂right; the chain rule,
  reduction over broadcast axes and the aliasing of `x op x` are handled here.
  """

  @staticmethod
  def forward(ctx, *args, **kwargs):
    left_operand, right_operand = args
    ctx.save_for_backward(left_operand, right_operand)
    return ctx.compute(left_operand, right_operand)

  @staticmethod
  @abstractmethod
  def compute(left_operand, right_operand):
    raise NotImplementedError

  @abstractmethod
  def partials(self, left_operand, right_operand):
    raise NotImplementedError

  def backward(self, gradient_output):
    left_operand, right_operand = self.saved_tensors
    partial_left, partial_right = self.partials(left_operand, right_operand)
    gradient_left = _unbroadcast(gradient_output * partial_left, left_operand.shape)
    gradient_right = _unbroadcast(gradient_output * partial_right, right_operand.shape)
    if left_operand is right_operand:
      gradient_right = gradient_right.copy()
    return gradient_left, gradient_right


class Add(BinaryFunction):
  @staticmethod
  def compute(left_operand, right_operand):
    return left_operand + right_operand

  def partials(self, left_operand, right_operand):
    return 1.0, 1.0


class Mul(BinaryFunction):
  @staticmethod
  def compute(left_operand, right_operand):
    return left_operand * right_operand

  def partials(self, left_operand, right_operand):
    return right_operand, left_operand


class Div(BinaryFunction):
  """y = a ÷ b, so ∂y/∂a = 1 ÷ b and ∂y/∂b = −a ÷ b²."""

  @staticmethod
  def compute(left_operand, right_operand):
    return left_operand / right_operand

  def partials(self, left_operand, right_operand):
    reciprocal = 1.0 / right_operand
    return reciprocal, -left_operand * reciprocal * reciprocal


class Neg(Function):
  @staticmethod
  def forward(ctx, *args, **kwargs):
    (input_array,) = args
    return -input_array

  def backward(self, gradient_output):
    return -gradient_output


class Tanh(Function):
  """y = tanh(x), ∂y/∂x = 1 − y²; only y is kept for backward."""

  @staticmethod
  def forward(ctx, *args, **kwargs):
    (input_array,) = args
    output_array = np.tanh(input_array)
    ctx.save_for_backward(output_array)
    return output_array

  def backward(self, gradient_output):
    (output_array,) = self.saved_tensors
    return gradient_output * (1.0 - np.square(output_array))


def add(a: Tensor | float, b: Tensor | float) -> Tensor:
  return Add.apply(_as_tensor(a), _as_tensor(b))


def sub(a: Tensor | float, b: Tensor | float) -> Tensor:
  return Add.apply(_as_tensor(a), Neg.apply(_as_tensor(b)))


def mul(a: Tensor | float, b: Tensor | float) -> Tensor:
  return Mul.apply(_as_tensor(a), _as_tensor(b))


def div(a: Tensor | float, b: Tensor | float) -> Tensor:
  return Div.apply(_as_tensor(a), _as_tensor(b))


def neg(x: Tensor) -> Tensor:
  return Neg.apply(x)


def tanh(x: Tensor) -> Tensor:
  return Tanh.apply(x)
