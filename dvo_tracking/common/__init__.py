"""
Common package for dense RGB-D tracking.

Subpackages:
- geometry/: SE(3) operations
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "DenseTrackerConfig",
    "constants",
    "default_config",
    "load_config",
]

_LAZY_ATTRS: dict[str, tuple[str, str | None]] = {
    "DenseTrackerConfig": ("dvo_tracking.common.config", "DenseTrackerConfig"),
    "default_config": ("dvo_tracking.common.config", "default_config"),
    "load_config": ("dvo_tracking.common.config", "load_config"),
    # Expose as a submodule without importing it eagerly.
    "constants": ("dvo_tracking.common.constants", None),
}


def __getattr__(name: str) -> Any:
    target = _LAZY_ATTRS.get(name)
    if target is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_name, attr_name = target
    module = import_module(module_name)
    return module if attr_name is None else getattr(module, attr_name)


def __dir__() -> list[str]:
    return sorted(set(globals().keys()) | set(_LAZY_ATTRS.keys()))
