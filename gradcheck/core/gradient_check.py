"""
Gradient checking: compare backpropagated gradients against central finite differences.

Given ys = f(xs) and upstream gradients gys, backprop yields for every input xᵢ
  ∂ℒ/∂xᵢ[k] = Σⱼ ⟨gys[j], ∂ys[j]/∂xᵢ[k]⟩
The numerical estimate replaces the inner derivative by a central difference
  ∂ys[j]/∂xᵢ[k] ≈ (f(xs + e·δᵢₖ)[j] − f(xs − e·δᵢₖ)[j]) ÷ 2e
with e = eps[i][k] and δᵢₖ the one-hot perturbation of element k of input i.
The truncation error is O(e²) for smooth f.

Every perturbed evaluation runs on its own deep copy of the inputs, so neither the
perturbation nor the graph that f records is ever connected to the caller's tensors.

Only elementwise functions are expected to produce reliable estimates.
"""

from __future__ import annotations

from typing import Callable, Sequence

import numpy as np

from .device import synchronize
from .dtype import Dtype, visit_dtype
from .errors import GradientMismatchError
from .numeric import all_close
from .ops import identity
from .scalar import Scalar
from .tensor import Tensor
from ..utils.common import get_config, log_message

TensorFunction = Callable[[Sequence[Tensor]], Sequence[Tensor] | Tensor]


def _check_operands(lhs: Tensor, rhs: Tensor) -> None:
  if lhs.shape != rhs.shape:
    raise ValueError(f"Shape mismatch: {lhs.shape} vs {rhs.shape}")
  if lhs.dtype != rhs.dtype:
    raise ValueError(f"Dtype mismatch: {lhs.dtype} vs {rhs.dtype}")


def _flat(tensor: Tensor) -> np.ndarray:
  return tensor.data.reshape(-1)


def _synchronize_all(*tensors: Tensor) -> None:
  for device in dict.fromkeys(tensor.device for tensor in tensors):
    synchronize(device)


def _elementwise(ufunc, lhs: Tensor, rhs: Tensor, out: Tensor | None) -> Tensor:
  _check_operands(lhs, rhs)
  out = Tensor.empty_like(lhs) if out is None else out
  _check_operands(lhs, out)

  def kernel(scalar_type):
    _synchronize_all(lhs, rhs, out)
    ufunc(_flat(lhs), _flat(rhs), out=_flat(out), dtype=scalar_type)

  visit_dtype(lhs.dtype, kernel)
  return out


def subtract(lhs: Tensor, rhs: Tensor, out: Tensor | None = None) -> Tensor:
  return _elementwise(np.subtract, lhs, rhs, out)


def multiply(lhs: Tensor, rhs: Tensor, out: Tensor | None = None) -> Tensor:
  return _elementwise(np.multiply, lhs, rhs, out)


def divide(lhs: Tensor, rhs: Tensor, out: Tensor | None = None) -> Tensor:
  return _elementwise(np.divide, lhs, rhs, out)


def sum(x: Tensor) -> Scalar:
  """Sum of all elements, accumulated in the tensor's own dtype."""

  def kernel(scalar_type):
    synchronize(x.device)
    return Scalar(_flat(x).sum(dtype=scalar_type), Dtype.of(scalar_type))

  return visit_dtype(x.dtype, kernel)


def norm(x: Tensor) -> Scalar:
  squared_sum = sum(multiply(x, x))
  return Scalar(np.sqrt(np.float64(squared_sum.value)), Dtype.of(x.dtype))


def vector_dot(x: Tensor, y: Tensor) -> Scalar:
  return sum(multiply(x, y))


def get_element(tensor: Tensor, flat_index: int) -> Scalar:
  """Read one element by its row-major flat index."""

  def kernel(scalar_type):
    synchronize(tensor.device)
    return Scalar(scalar_type(tensor.data.flat[flat_index]), Dtype.of(scalar_type))

  _check_flat_index(tensor, flat_index)
  return visit_dtype(tensor.dtype, kernel)


def set_element(tensor: Tensor, flat_index: int, value) -> None:
  """Write one element by its row-major flat index, casting `value` to the tensor's dtype."""

  def kernel(scalar_type):
    synchronize(tensor.device)
    tensor.data.flat[flat_index] = scalar_type(float(value))

  _check_flat_index(tensor, flat_index)
  visit_dtype(tensor.dtype, kernel)


def _check_flat_index(tensor: Tensor, flat_index: int) -> None:
  if not 0 <= flat_index < tensor.size:
    raise IndexError(
      f"Flat index {flat_index} is out of range for a tensor of {tensor.size} elements"
    )


def _as_tensor_list(outputs) -> list[Tensor]:
  if isinstance(outputs, Tensor):
    return [outputs]
  return list(outputs)


def _evaluate_perturbed(
  func: TensorFunction,
  inputs: Sequence[Tensor],
  input_index: int,
  flat_index: int,
  eps_scalar: Scalar,
  multiplier: int,
) -> list[Tensor]:
  perturbed_inputs = [input_tensor.copy() for input_tensor in inputs]
  target = perturbed_inputs[input_index]
  delta = Scalar(float(eps_scalar) * multiplier, Dtype.of(target.dtype))
  set_element(target, flat_index, get_element(target, flat_index) + delta)
  return _as_tensor_list(func(perturbed_inputs))


def _check_eps(inputs: Sequence[Tensor], eps: Sequence[Tensor]) -> None:
  if len(inputs) == 0:
    raise ValueError("At least one input is required")
  if len(eps) != len(inputs):
    raise ValueError(
      f"Invalid number of eps arrays: got {len(eps)}, expected {len(inputs)}"
    )
  for index, (input_tensor, eps_tensor) in enumerate(zip(inputs, eps)):
    if input_tensor.shape != eps_tensor.shape:
      raise ValueError(
        f"Invalid eps shape for input {index}: {eps_tensor.shape} vs {input_tensor.shape}"
      )
    if input_tensor.dtype != eps_tensor.dtype:
      raise ValueError(
        f"Invalid eps dtype for input {index}: {eps_tensor.dtype} vs {input_tensor.dtype}"
      )
    synchronize(eps_tensor.device)
    if np.any(eps_tensor.data == 0):
      raise ValueError(f"eps for input {index} contains zeros")


def _check_output_count(outputs: Sequence[Tensor], grad_outputs: Sequence[Tensor]) -> None:
  if len(outputs) != len(grad_outputs):
    raise ValueError(
      "Number of given output gradients does not match the actual number of outputs: "
      f"{len(grad_outputs)} vs {len(outputs)}"
    )


def calculate_numerical_gradient(
  func: TensorFunction,
  inputs: Sequence[Tensor],
  grad_outputs: Sequence[Tensor],
  eps: Sequence[Tensor],
) -> list[Tensor]:
  """
  Central-difference estimate of ∂ℒ/∂xᵢ for every input, projected on `grad_outputs`.

  Returns one gradient Tensor per input, shaped and typed like that input.
  """
  _check_eps(inputs, eps)

  gradients = []
  for input_index, (input_tensor, eps_tensor) in enumerate(zip(inputs, eps)):
    gradient = Tensor.zeros_like(input_tensor)
    for flat_index in range(input_tensor.size):
      eps_scalar = get_element(eps_tensor, flat_index)
      outputs_minus = _evaluate_perturbed(func, inputs, input_index, flat_index, eps_scalar, -1)
      outputs_plus = _evaluate_perturbed(func, inputs, input_index, flat_index, eps_scalar, 1)
      _check_output_count(outputs_plus, grad_outputs)

      for output_minus, output_plus, grad_output in zip(
        outputs_minus, outputs_plus, grad_outputs
      ):
        denominator = Tensor.full_like(output_plus, eps_scalar * 2)
        quotient = divide(subtract(output_plus, output_minus), denominator)
        contribution = vector_dot(quotient, grad_output)
        set_element(gradient, flat_index, get_element(gradient, flat_index) + contribution)
    gradients.append(gradient)
  return gradients


def default_tolerances(dtype) -> dict:
  """`eps`, `atol` and `rtol` configured for `dtype`."""
  return dict(get_config()["gradient_check"][Dtype.of(dtype).value])


def _describe_mismatch(
  input_index: int, computed: np.ndarray, numerical: np.ndarray, atol: float, rtol: float
) -> str:
  difference = np.abs(computed.astype(np.float64) - numerical.astype(np.float64))
  tolerance = atol + rtol * np.abs(numerical.astype(np.float64))
  excess = np.where(np.isnan(difference), np.inf, difference - tolerance)
  worst = tuple(int(axis) for axis in np.unravel_index(np.argmax(excess), difference.shape))
  return (
    f"too large errors in input {input_index} at {worst}: "
    f"Computed={computed[worst]:.6g}, Numerical={numerical[worst]:.6g}, "
    f"Absolute Error={difference[worst]:.6g}, "
    f"Relative Error={(difference[worst] / (np.abs(numerical[worst]) + 1e-20)):.6g}, "
    f"Allowed Absolute={atol}, Relative={rtol}"
  )


def check_backward_computation(
  func: TensorFunction,
  inputs: Sequence[Tensor],
  grad_outputs: Sequence[Tensor],
  eps: Sequence[Tensor] | None = None,
  atol: float | None = None,
  rtol: float | None = None,
) -> None:
  """
  Backpropagate `grad_outputs` through `func(inputs)` and assert the resulting input
  gradients match the numerical estimate within `atol` + `rtol`·|numerical|.

  Every input must have `requires_grad=True`. Omitted `eps`, `atol` and `rtol`
  fall back to the configured defaults for the dtype of the first input.

  Raises GradientMismatchError on disagreement.
  """
  if len(inputs) == 0:
    raise ValueError("At least one input is required")
  defaults = default_tolerances(inputs[0].dtype)
  atol = defaults["atol"] if atol is None else atol
  rtol = defaults["rtol"] if rtol is None else rtol
  if eps is None:
    eps = [Tensor.full_like(input_tensor, defaults["eps"]) for input_tensor in inputs]
  _check_eps(inputs, eps)
  log_message(f"Checking backward computation over {len(inputs)} input(s)", "DEBUG")

  # One identity node over every output, so a single backward call reaches all of them.
  outputs = identity(*_as_tensor_list(func(inputs)))
  _check_output_count(outputs, grad_outputs)
  if len(outputs) == 0:
    raise ValueError("The function under test returned no outputs")

  for index, (output, grad_output) in enumerate(zip(outputs, grad_outputs)):
    if output.shape != grad_output.shape:
      raise ValueError(
        f"Output gradient {index} has shape {grad_output.shape}, expected {output.shape}"
      )
    if output.dtype != grad_output.dtype:
      raise ValueError(
        f"Output gradient {index} has dtype {grad_output.dtype}, expected {output.dtype}"
      )
    output.grad = Tensor(grad_output.data.copy(), False, device=output.device)

  # Backprop accumulates; start every input from an empty gradient.
  for input_tensor in inputs:
    input_tensor.grad = None
  outputs[0].backward()

  backward_gradients = []
  for index, input_tensor in enumerate(inputs):
    if input_tensor.grad is None:
      raise RuntimeError(
        f"Input {index} has no gradient after backpropagation; "
        "every input must be created with requires_grad=True and take part in the graph"
      )
    backward_gradients.append(input_tensor.grad)

  numerical_gradients = calculate_numerical_gradient(func, inputs, grad_outputs, eps)

  for index, (backward_gradient, numerical_gradient) in enumerate(
    zip(backward_gradients, numerical_gradients)
  ):
    if not all_close(backward_gradient, numerical_gradient, atol, rtol):
      message = _describe_mismatch(
        index, backward_gradient.data, numerical_gradient.data, atol, rtol
      )
      log_message(message, "ERROR")
      raise GradientMismatchError(message)
    log_message(
      f"Input {index} with shape {inputs[index].shape} matches within "
      f"atol={atol}, rtol={rtol}",
      "DEBUG",
      indent=1,
    )
