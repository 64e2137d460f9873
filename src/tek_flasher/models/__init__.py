"""
Model registry for TEK keyboards.

Provides USB identities and per-model operator hints.
"""

from .registry import (
    DeviceIdentity,
    KeyboardModel,
    MODELS,
    DEFAULT_MODEL,
    list_models,
    get_model,
)

__all__ = [
    "DeviceIdentity",
    "KeyboardModel",
    "MODELS",
    "DEFAULT_MODEL",
    "list_models",
    "get_model",
]
