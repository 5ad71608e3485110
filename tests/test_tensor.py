import copy

import numpy as np
import pytest

from gradcheck.core.device import get_current_device, synchronize, using_device
from gradcheck.core.ops import mul
from gradcheck.core.scalar import Scalar
from gradcheck.core.tensor import Tensor


def test_default_dtype_is_float32():
  assert Tensor([1, 2, 3]).dtype == np.float32
  assert Tensor(2.0).dtype == np.float32


@pytest.mark.parametrize("dtype", [np.float32, np.float64])
def test_floating_arrays_keep_their_dtype(dtype):
  assert Tensor(np.zeros(3, dtype=dtype)).dtype == dtype
  assert Tensor(Scalar(1.0, "float64")).dtype == np.float64


def test_storage_is_contiguous():
  tensor = Tensor(np.arange(6, dtype=np.float64).reshape(2, 3).T)
  assert tensor.data.flags["C_CONTIGUOUS"]
  assert tensor.shape == (3, 2)


def test_like_constructors():
  template = Tensor(np.ones((2, 3), dtype=np.float64), True)
  for created in (Tensor.empty_like(template), Tensor.zeros_like(template)):
    assert created.shape == template.shape
    assert created.dtype == template.dtype
    assert not created.requires_grad
  np.testing.assert_array_equal(Tensor.zeros_like(template).data, np.zeros((2, 3)))
  filled = Tensor.full_like(template, Scalar(np.float32(0.5)))
  assert filled.dtype == np.float64
  np.testing.assert_array_equal(filled.data, np.full((2, 3), 0.5))


def test_copy_is_detached():
  x = Tensor(np.ones(3, dtype=np.float64), True)
  y = mul(x, 2.0)
  for duplicate in (y.copy(), copy.deepcopy(y)):
    assert duplicate.requires_grad
    assert duplicate._ctx is None
    assert duplicate.grad is None
    assert not np.shares_memory(duplicate.data, y.data)
    np.testing.assert_array_equal(duplicate.data, y.data)


def test_deepcopy_of_input_list():
  inputs = [Tensor(np.ones(2), True), Tensor(np.zeros(2), True)]
  copies = copy.deepcopy(inputs)
  copies[0].data[0] = 5.0
  assert inputs[0].data[0] == 1.0


def test_backward_uses_seeded_gradient():
  x = Tensor(np.array([1.0, 2.0]), True)
  y = mul(x, x)
  y.grad = Tensor(np.array([1.0, 10.0]))
  y.backward()
  np.testing.assert_array_equal(x.grad.data, [2.0, 40.0])


def test_backward_rejects_wrong_gradient_shape():
  x = Tensor(np.array([1.0, 2.0]), True)
  with pytest.raises(ValueError, match="Gradient shape"):
    mul(x, x).backward(Tensor(np.ones(3)))


def test_graph_holds_no_strong_reference_to_outputs():
  x = Tensor(np.ones(2), True)
  y = mul(x, 3.0)
  context = y._ctx
  output_is_tracked = context.outputs[0]() is y
  assert output_is_tracked
  del y
  assert context.outputs[0]() is None


def test_unknown_device_is_rejected():
  with pytest.raises(ValueError, match="Unknown device"):
    Tensor(np.ones(2), device="tpu")
  with pytest.raises(ValueError, match="Unknown device"):
    synchronize("tpu:0")


def test_using_device(accelerator_barrier):
  assert get_current_device() == "cpu"
  with using_device("accel:0"):
    tensor = Tensor(np.ones(2))
    synchronize()
  assert tensor.device == "accel:0"
  assert accelerator_barrier.calls == 1
  assert get_current_device() == "cpu"


def test_ops_keep_device(accelerator_barrier):
  x = Tensor(np.ones(2), True, device="accel")
  assert mul(x, x).device == "accel"
