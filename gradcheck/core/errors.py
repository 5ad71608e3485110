class UnsupportedDtypeError(TypeError):
  """Raised when an element-level kernel meets a dtype outside the supported float set."""


class GradientMismatchError(AssertionError):
  """Raised when backpropagated and numerical gradients disagree beyond tolerance."""
