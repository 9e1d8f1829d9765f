"""
eant2/evolution/probabilities.py

Relative weights of the four structural mutation categories.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List

import numpy as np

from eant2.errors import ConfigurationError


class MutationType(Enum):
    ADD_CONNECTION = "add_connection"
    REMOVE_CONNECTION = "remove_connection"
    ADD_NEURON = "add_neuron"
    ADD_BIAS = "add_bias"


@dataclass
class MutationProbabilities:
    """
    Weights of each mutation category.

    Any non-negative finite values are accepted as long as one is positive;
    they are normalized to sum to 1 on construction.
    """
    add_connection: float = 3.0
    remove_connection: float = 8.0
    add_neuron: float = 1.0
    add_bias: float = 3.0

    def __post_init__(self):
        values = self.as_list()
        for kind, value in zip(MutationType, values):
            if not isinstance(value, (int, float)) or not math.isfinite(value) or value < 0:
                raise ConfigurationError(
                    f"Mutation weight {kind.value} must be a non-negative finite number, got {value!r}"
                )
        total = float(sum(values))
        if total <= 0:
            raise ConfigurationError("At least one mutation weight must be positive")

        self.add_connection = self.add_connection / total
        self.remove_connection = self.remove_connection / total
        self.add_neuron = self.add_neuron / total
        self.add_bias = self.add_bias / total

    def as_list(self) -> List[float]:
        return [self.add_connection, self.remove_connection, self.add_neuron, self.add_bias]

    def sample(self, rng: np.random.Generator) -> MutationType:
        index = rng.choice(len(MutationType), p=np.asarray(self.as_list()))
        return list(MutationType)[int(index)]

    def to_dict(self) -> Dict[str, float]:
        return {kind.value: value for kind, value in zip(MutationType, self.as_list())}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MutationProbabilities":
        unknown = set(data) - {kind.value for kind in MutationType}
        if unknown:
            raise ConfigurationError(f"Unknown mutation types: {sorted(unknown)}")
        return cls(**data)
