"""
eant2/cmaes/restart.py

Restart policies wrapped around single CMA-ES runs.

A policy decides, after each run, whether to start another one and with
which population size and initial step size:

- NoRestart:    a single run
- LocalRestart: a fixed number of identical runs
- IPOP:         population grows by a constant factor on every restart
- BIPOP:        interleaves growing large-population runs with cheap
                small-population runs of random size, spending roughly
                the same evaluation budget on both regimes
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from concurrent.futures import Executor
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from eant2.errors import ConfigurationError

from .optimizer import CMAES, DEFAULT_STEP_SIZE, CMAESResult, Objective, default_population_size
from .options import CMAESTermination, TerminationReason

logger = logging.getLogger(__name__)


@dataclass
class RunParameters:
    """Settings for one CMA-ES run."""
    population_size: int
    step_size: float
    regime: str = "default"


RunHistory = List[Tuple[RunParameters, CMAESResult]]


class RestartStrategy(ABC):
    """Decides whether and how to start the next CMA-ES run."""

    name = "abstract"

    def __init__(self, runs: int = 1):
        if runs < 1:
            raise ConfigurationError(f"Restart strategy needs at least one run, got {runs}")
        self.runs = runs

    @abstractmethod
    def next_run(
        self,
        base_population: int,
        step_size: float,
        history: RunHistory,
        rng: np.random.Generator,
    ) -> Optional[RunParameters]:
        """Parameters of the next run, or None to stop."""
        pass

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.name, "runs": self.runs}

    @classmethod
    def from_dict(cls, data: Dict[str, Any] | str) -> "RestartStrategy":
        if isinstance(data, str):
            data = {"type": data}
        data = dict(data)
        kind = str(data.pop("type", "local")).lower()
        strategies = {s.name: s for s in (NoRestart, LocalRestart, IPOP, BIPOP)}
        if kind not in strategies:
            raise ConfigurationError(f"Unknown restart strategy: {kind}")
        try:
            return strategies[kind](**data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid options for {kind} restart: {e}") from e

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(runs={self.runs})"


class NoRestart(RestartStrategy):
    name = "none"

    def __init__(self, runs: int = 1):
        if runs != 1:
            raise ConfigurationError("NoRestart always performs exactly one run")
        super().__init__(runs=1)

    def next_run(self, base_population, step_size, history, rng):
        if history:
            return None
        return RunParameters(base_population, step_size)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.name}


class LocalRestart(RestartStrategy):
    """Repeat the same run ``runs`` times from the same starting point."""

    name = "local"

    def __init__(self, runs: int = 2):
        super().__init__(runs)

    def next_run(self, base_population, step_size, history, rng):
        if len(history) >= self.runs:
            return None
        return RunParameters(base_population, step_size)


class IPOP(RestartStrategy):
    """Increasing-population restarts."""

    name = "ipop"

    def __init__(self, runs: int = 5, increase_factor: float = 2.0):
        super().__init__(runs)
        if not increase_factor > 1.0:
            raise ConfigurationError(f"IPOP increase factor must exceed 1, got {increase_factor}")
        self.increase_factor = increase_factor

    def next_run(self, base_population, step_size, history, rng):
        if len(history) >= self.runs:
            return None
        population = int(round(base_population * self.increase_factor ** len(history)))
        return RunParameters(population, step_size, "large")

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.name, "runs": self.runs, "increase_factor": self.increase_factor}


class BIPOP(RestartStrategy):
    """Bi-population restarts (Hansen 2009)."""

    name = "bipop"

    def __init__(self, runs: int = 5):
        super().__init__(runs)

    def next_run(self, base_population, step_size, history, rng):
        if len(history) >= self.runs:
            return None

        large_runs = sum(1 for params, _ in history if params.regime == "large")
        large_budget = sum(r.evaluations for params, r in history if params.regime == "large")
        small_budget = sum(r.evaluations for params, r in history if params.regime == "small")

        if not history or small_budget >= large_budget:
            return RunParameters(base_population * 2 ** large_runs, step_size, "large")

        # Small regime: random population below the current large one
        large_population = base_population * 2 ** max(large_runs - 1, 0)
        u = rng.random()
        population = int(base_population * (0.5 * large_population / base_population) ** (u ** 2))
        return RunParameters(max(population, 2), step_size * 10 ** (-2 * u), "small")


class Restarter:
    """Runs CMA-ES repeatedly under a restart policy and keeps the best result."""

    def __init__(
        self,
        strategy: Optional[RestartStrategy] = None,
        termination: Optional[CMAESTermination] = None,
        step_size: float = DEFAULT_STEP_SIZE,
        population_size: Optional[int] = None,
    ):
        self.strategy = strategy or LocalRestart()
        self.termination = termination or CMAESTermination()
        self.step_size = step_size
        self.population_size = population_size

    def run(
        self,
        objective: Objective,
        initial_mean: Sequence[float],
        scales: Optional[Sequence[float]] = None,
        rng: Optional[np.random.Generator] = None,
        executor: Optional[Executor] = None,
    ) -> CMAESResult:
        rng = rng or np.random.default_rng()
        dimension = len(initial_mean)
        base_population = self.population_size or default_population_size(dimension)

        history: RunHistory = []
        best: Optional[CMAESResult] = None

        while True:
            params = self.strategy.next_run(base_population, self.step_size, history, rng)
            if params is None:
                break

            optimizer = CMAES(
                initial_mean,
                scales=scales,
                step_size=params.step_size,
                population_size=params.population_size,
                termination=self.termination,
                rng=rng,
            )
            result = optimizer.run(objective, executor)
            history.append((params, result))
            logger.debug(
                f"Run {len(history)} ({params.regime}, lambda={params.population_size}): "
                f"fitness {result.fitness:.6g}"
            )

            if best is None or result.fitness < best.fitness:
                best = result
            if result.reason is TerminationReason.DEGENERATE:
                break
            if self.termination.fitness is not None and best.fitness <= self.termination.fitness:
                break

        total = sum(r.evaluations for _, r in history)
        return replace(best, evaluations=total, runs=len(history))
