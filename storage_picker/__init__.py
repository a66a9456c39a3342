"""Datacenter-aware storage node placement."""

from .config import PickerConfig  # noqa: F401
from .runtime import PickerRuntime  # noqa: F401
