"""
eant2/services/worker.py

Optimization worker pool.

CMA-ES optimization of the individuals is the expensive part of every
generation and each individual is independent, so the pool fans them out
over a thread pool:
1. Draw one RNG seed per individual up front
2. Optimize each individual in its own task
3. Report a typed outcome per individual, including numerical failures

Seeds are drawn before any task starts, so results do not depend on the
number of workers or on scheduling.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np

from eant2.cmaes.optimizer import CMAESResult
from eant2.errors import ConfigurationError, NumericalError
from eant2.evolution.config import ExploitationConfig
from eant2.evolution.generation import optimize_individual
from eant2.evolution.individual import Individual

logger = logging.getLogger(__name__)

SEED_BOUND = 2 ** 63 - 1


@dataclass
class OptimizationOutcome:
    """Result of optimizing one individual."""
    index: int
    result: CMAESResult | None = None
    error: NumericalError | None = None
    elapsed: float = 0.0


class OptimizationWorkerPool:
    """
    Optimizes a list of individuals on ``workers`` threads.

    Individuals are never modified here; the caller commits the returned
    results once the whole generation has succeeded.
    """

    def __init__(self, exploitation: ExploitationConfig, workers: int = 1):
        if workers < 1:
            raise ConfigurationError(f"Worker count must be at least 1, got {workers}")
        self.exploitation = exploitation
        self.workers = workers

        self.tasks_completed = 0
        self.tasks_failed = 0
        self.evaluations = 0

    def optimize_one(self, index: int, individual: Individual, seed: int) -> OptimizationOutcome:
        """Optimize a single individual with its own generator."""
        start_time = time.time()
        try:
            result = optimize_individual(individual, self.exploitation, np.random.default_rng(seed))
        except NumericalError as e:
            logger.error(f"Optimization of individual {index} failed: {e}")
            return OptimizationOutcome(index=index, error=e, elapsed=time.time() - start_time)

        logger.debug(
            f"Individual {index}: fitness {result.fitness:.6g} after "
            f"{result.evaluations} evaluations in {result.runs} run(s)"
        )
        return OptimizationOutcome(index=index, result=result, elapsed=time.time() - start_time)

    def optimize(
        self,
        individuals: Sequence[Individual],
        rng: np.random.Generator,
    ) -> list[OptimizationOutcome]:
        """
        Optimize every individual.

        Args:
            individuals: Individuals to optimize
            rng: Generator the per-individual seeds are drawn from

        Returns:
            One outcome per individual, ordered by index
        """
        seeds = [int(s) for s in rng.integers(0, SEED_BOUND, size=len(individuals))]

        if self.workers == 1 or len(individuals) <= 1:
            outcomes = [
                self.optimize_one(i, individual, seed)
                for i, (individual, seed) in enumerate(zip(individuals, seeds))
            ]
        else:
            outcomes = []
            with ThreadPoolExecutor(max_workers=self.workers) as executor:
                futures = [
                    executor.submit(self.optimize_one, i, individual, seed)
                    for i, (individual, seed) in enumerate(zip(individuals, seeds))
                ]
                for future in as_completed(futures):
                    outcomes.append(future.result())
            outcomes.sort(key=lambda outcome: outcome.index)

        for outcome in outcomes:
            if outcome.error is None:
                self.tasks_completed += 1
                self.evaluations += outcome.result.evaluations
            else:
                self.tasks_failed += 1

        return outcomes

    def get_status(self) -> dict[str, Any]:
        return {
            "workers": self.workers,
            "tasks_completed": self.tasks_completed,
            "tasks_failed": self.tasks_failed,
            "evaluations": self.evaluations,
        }
