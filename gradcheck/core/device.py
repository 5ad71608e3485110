"""
Device tags and synchronization barriers.

A device is named `"<backend>"` or `"<backend>:<index>"`. Raw element buffers
may only be touched after the backend's barrier has run, so that writes still
pending on an asynchronous device become visible to host code.
The CPU backend executes synchronously and registers a no-op barrier.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Iterator

SynchronizationBarrier = Callable[[], None]


def _no_op_barrier() -> None:
  return None


_BACKEND_BARRIERS: dict[str, SynchronizationBarrier] = {"cpu": _no_op_barrier}
_current_device = "cpu"


def backend_name(device: str) -> str:
  return device.split(":", 1)[0]


def register_backend(name: str, barrier: SynchronizationBarrier | None = None) -> None:
  _BACKEND_BARRIERS[name] = barrier if barrier is not None else _no_op_barrier


def unregister_backend(name: str) -> None:
  if name == "cpu":
    raise ValueError("The cpu backend cannot be unregistered")
  _BACKEND_BARRIERS.pop(name, None)


def check_device(device: str) -> str:
  if backend_name(device) not in _BACKEND_BARRIERS:
    raise ValueError(
      f"Unknown device '{device}'. Registered backends: {sorted(_BACKEND_BARRIERS)}"
    )
  return device


def get_current_device() -> str:
  return _current_device


@contextmanager
def using_device(device: str) -> Iterator[str]:
  global _current_device
  previous_device = _current_device
  _current_device = check_device(device)
  try:
    yield _current_device
  finally:
    _current_device = previous_device


def synchronize(device: str | None = None) -> None:
  device = get_current_device() if device is None else device
  _BACKEND_BARRIERS[backend_name(check_device(device))]()
