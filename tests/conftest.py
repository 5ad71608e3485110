import random

import numpy as np
import pytest

from gradcheck.core.device import register_backend, unregister_backend
from tests.utils import CountingBarrier

SEED = 42


def pytest_configure():
  random.seed(SEED)
  np.random.seed(SEED)


@pytest.fixture
def accelerator_barrier():
  barrier = CountingBarrier()
  register_backend("accel", barrier)
  yield barrier
  unregister_backend("accel")
