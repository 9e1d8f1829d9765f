"""
eant2/cge/activation.py

Activation functions applied by every neuron to the sum of its inputs.
"""

from __future__ import annotations

import math
from enum import Enum

from eant2.errors import ConfigurationError


def _sigmoid(x: float) -> float:
    # Split on sign so exp() never overflows
    if x >= 0.0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


_FUNCTIONS = {
    "linear": lambda x: x,
    "unit_step": lambda x: 1.0 if x > 0.0 else 0.0,
    "sign": lambda x: 1.0 if x > 0.0 else (-1.0 if x < 0.0 else 0.0),
    "sigmoid": _sigmoid,
    "tanh": math.tanh,
    "soft_sign": lambda x: x / (1.0 + abs(x)),
    "bent_identity": lambda x: (math.sqrt(x * x + 1.0) - 1.0) / 2.0 + x,
    "relu": lambda x: x if x > 0.0 else 0.0,
}


class Activation(Enum):
    """Scalar activation function, callable as ``Activation.TANH(0.5)``."""

    LINEAR = "linear"
    UNIT_STEP = "unit_step"
    SIGN = "sign"
    SIGMOID = "sigmoid"
    TANH = "tanh"
    SOFT_SIGN = "soft_sign"
    BENT_IDENTITY = "bent_identity"
    RELU = "relu"

    def __call__(self, x: float) -> float:
        return _FUNCTIONS[self.value](x)

    @classmethod
    def parse(cls, name: str | Activation) -> Activation:
        """Look up an activation by name (case-insensitive)."""
        if isinstance(name, cls):
            return name
        try:
            return cls(str(name).lower())
        except ValueError:
            options = ", ".join(a.value for a in cls)
            raise ConfigurationError(
                f"Unknown activation '{name}' (expected one of: {options})"
            ) from None


DEFAULT_ACTIVATION = Activation.TANH
