"""
eant2/cmaes/options.py

Termination conditions for a single CMA-ES run.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from eant2.errors import ConfigurationError


class TerminationReason(Enum):
    """Why a CMA-ES run stopped."""
    FITNESS = "fitness"
    GENERATIONS = "generations"
    EVALUATIONS = "evaluations"
    STABILIZED = "stabilized"
    DEGENERATE = "degenerate"  # zero-dimensional problem, nothing to search


@dataclass
class CMAESTermination:
    """
    End conditions checked after every CMA-ES generation.

    Any condition set to None is disabled. The fitness threshold alone
    cannot bound a run, so at least one of ``generations``,
    ``evaluations`` or ``stable_generations`` is required.
    """
    fitness: Optional[float] = None
    generations: Optional[int] = 500
    evaluations: Optional[int] = None
    # Best fitness changing by less than stable_tolerance for
    # stable_generations consecutive generations
    stable_tolerance: float = 1e-4
    stable_generations: Optional[int] = 5

    def __post_init__(self):
        if self.generations is None and self.evaluations is None and self.stable_generations is None:
            raise ConfigurationError(
                "CMA-ES needs a generation, evaluation or stabilization limit"
            )
        for name in ("generations", "evaluations", "stable_generations"):
            value = getattr(self, name)
            if value is not None and value < 1:
                raise ConfigurationError(f"CMA-ES {name} limit must be at least 1, got {value}")
        if self.fitness is not None and math.isnan(self.fitness):
            raise ConfigurationError("CMA-ES fitness threshold cannot be NaN")
        if not self.stable_tolerance >= 0.0:
            raise ConfigurationError(
                f"stable_tolerance must be non-negative, got {self.stable_tolerance}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fitness": self.fitness,
            "generations": self.generations,
            "evaluations": self.evaluations,
            "stable_tolerance": self.stable_tolerance,
            "stable_generations": self.stable_generations,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CMAESTermination":
        defaults = cls()
        return cls(
            fitness=data.get("fitness", defaults.fitness),
            generations=data.get("generations", defaults.generations),
            evaluations=data.get("evaluations", defaults.evaluations),
            stable_tolerance=data.get("stable_tolerance", defaults.stable_tolerance),
            stable_generations=data.get("stable_generations", defaults.stable_generations),
        )
