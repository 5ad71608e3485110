from .core.dtype import Dtype, visit_dtype
from .core.errors import GradientMismatchError, UnsupportedDtypeError
from .core.gradient_check import (
  calculate_numerical_gradient,
  check_backward_computation,
  default_tolerances,
)
from .core.scalar import Scalar
from .core.tensor import Tensor

__all__ = [
  "Dtype",
  "GradientMismatchError",
  "Scalar",
  "Tensor",
  "UnsupportedDtypeError",
  "calculate_numerical_gradient",
  "check_backward_computation",
  "default_tolerances",
  "visit_dtype",
]
