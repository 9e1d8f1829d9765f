"""
eant2/cmaes/optimizer.py

Covariance Matrix Adaptation Evolution Strategy (CMA-ES).

Minimizes a black-box objective over a real vector. Each generation:
- Sample lambda candidates from N(mean, sigma^2 * C)
- Rank them by fitness (lower is better)
- Move the mean to a weighted average of the best mu candidates
- Adapt the evolution paths, the covariance matrix C and the step size

Search runs in a normalized space: a point x maps to the parameters
``initial_mean + scales * x``. C therefore starts as the identity while
every parameter keeps its own initial search radius.

Reference: Hansen, "The CMA Evolution Strategy: A Tutorial" (2016).
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from eant2.errors import ConfigurationError, InvalidFitnessError, StepSizeError

from .options import CMAESTermination, TerminationReason

logger = logging.getLogger(__name__)

MIN_STEP_SIZE = 1e-290
MAX_STEP_SIZE = 1e290
DEFAULT_STEP_SIZE = 0.3

Objective = Callable[[np.ndarray], float]


def default_population_size(dimension: int) -> int:
    """Hansen's default lambda = 4 + floor(3 ln n)."""
    return 4 + int(3 * math.log(max(dimension, 1)))


def check_fitness(value: float) -> float:
    """Return ``value`` as a float, raising if it cannot be ranked."""
    value = float(value)
    if not math.isfinite(value):
        raise InvalidFitnessError(value)
    return value


@dataclass
class CMAESResult:
    """Outcome of one CMA-ES run."""
    point: np.ndarray
    fitness: float
    generations: int
    evaluations: int
    reason: TerminationReason
    step_size: float
    population_size: int
    runs: int = 1
    history: List[Dict[str, Any]] = field(default_factory=list)


class CMAESState:
    """
    Distribution parameters of one run.

    Holds the mean, step size, covariance matrix with its eigen
    decomposition, both evolution paths, and the fixed strategy constants.
    """

    def __init__(
        self,
        dimension: int,
        population_size: Optional[int] = None,
        step_size: float = DEFAULT_STEP_SIZE,
    ):
        n = dimension
        self.dimension = n
        self.population_size = population_size or default_population_size(n)
        if self.population_size < 2:
            raise ConfigurationError(
                f"CMA-ES population size must be at least 2, got {self.population_size}"
            )
        if not (MIN_STEP_SIZE < step_size < MAX_STEP_SIZE):
            raise ConfigurationError(f"Invalid initial step size {step_size}")

        lam = self.population_size
        self.mu = lam // 2

        # Log-rank recombination weights
        weights = math.log(self.mu + 0.5) - np.log(np.arange(1, self.mu + 1))
        self.weights = weights / weights.sum()
        self.mu_eff = 1.0 / float(np.sum(self.weights ** 2))

        # Adaptation constants
        self.c_c = (4 + self.mu_eff / n) / (n + 4 + 2 * self.mu_eff / n)
        self.c_s = (self.mu_eff + 2) / (n + self.mu_eff + 5)
        self.c_1 = 2 / ((n + 1.3) ** 2 + self.mu_eff)
        self.c_mu = min(
            1 - self.c_1,
            2 * (self.mu_eff - 2 + 1 / self.mu_eff) / ((n + 2) ** 2 + self.mu_eff),
        )
        self.damps = (
            1 + 2 * max(0.0, math.sqrt((self.mu_eff - 1) / (n + 1)) - 1) + self.c_s
        )
        # Expected length of a N(0, I) vector
        self.chi_n = math.sqrt(n) * (1 - 1 / (4 * n) + 1 / (21 * n ** 2))

        # Dynamic state
        self.mean = np.zeros(n)
        self.sigma = float(step_size)
        self.C = np.eye(n)
        self.B = np.eye(n)
        self.D = np.ones(n)
        self.inv_sqrt_C = np.eye(n)
        self.p_s = np.zeros(n)
        self.p_c = np.zeros(n)

        self.generation = 0
        self.evaluations = 0
        self.eigen_evaluations = 0

    def sample(self, rng: np.random.Generator) -> np.ndarray:
        """Draw ``population_size`` points as rows."""
        z = rng.standard_normal((self.population_size, self.dimension))
        y = (z * self.D) @ self.B.T
        return self.mean + self.sigma * y

    def update(self, samples: np.ndarray, order: np.ndarray) -> None:
        """Adapt the distribution from samples ranked best-first by ``order``."""
        n = self.dimension
        selected = samples[order[: self.mu]]
        old_mean = self.mean
        self.mean = self.weights @ selected
        self.evaluations += len(samples)
        self.generation += 1

        step = (self.mean - old_mean) / self.sigma

        # Step-size path
        self.p_s = (1 - self.c_s) * self.p_s + math.sqrt(
            self.c_s * (2 - self.c_s) * self.mu_eff
        ) * (self.inv_sqrt_C @ step)

        # Stall the covariance path while p_s is much longer than expected
        p_s_norm = float(np.linalg.norm(self.p_s))
        decay = 1 - (1 - self.c_s) ** (2 * self.evaluations / self.population_size)
        h_s = 1.0 if p_s_norm / math.sqrt(decay) / self.chi_n < 1.4 + 2 / (n + 1) else 0.0

        # Covariance path
        self.p_c = (1 - self.c_c) * self.p_c + h_s * math.sqrt(
            self.c_c * (2 - self.c_c) * self.mu_eff
        ) * step

        # Rank-one and rank-mu update
        deviations = (selected - old_mean) / self.sigma
        rank_one = np.outer(self.p_c, self.p_c) + (1 - h_s) * self.c_c * (2 - self.c_c) * self.C
        rank_mu = deviations.T @ (self.weights[:, None] * deviations)
        self.C = (1 - self.c_1 - self.c_mu) * self.C + self.c_1 * rank_one + self.c_mu * rank_mu

        # Step size
        try:
            self.sigma *= math.exp((self.c_s / self.damps) * (p_s_norm / self.chi_n - 1))
        except OverflowError:
            raise StepSizeError(math.inf) from None
        if not (MIN_STEP_SIZE <= self.sigma <= MAX_STEP_SIZE):
            raise StepSizeError(self.sigma)

        # Decomposition is O(n^3); refresh it only every few generations
        lag = self.population_size / (self.c_1 + self.c_mu) / n / 10
        if self.evaluations - self.eigen_evaluations > lag:
            self.update_eigensystem()

    def update_eigensystem(self) -> None:
        self.eigen_evaluations = self.evaluations
        self.C = np.triu(self.C) + np.triu(self.C, 1).T
        eigenvalues, self.B = np.linalg.eigh(self.C)
        self.D = np.sqrt(np.maximum(eigenvalues, 1e-300))
        self.inv_sqrt_C = (self.B / self.D) @ self.B.T


class CMAES:
    """
    CMA-ES with an ask/tell interface and a blocking ``run``.

    ``ask`` returns candidate parameter vectors (rows); ``tell`` receives
    their fitnesses in the same order. ``run`` loops until a termination
    condition holds.
    """

    def __init__(
        self,
        initial_mean: Sequence[float],
        scales: Optional[Sequence[float]] = None,
        step_size: float = DEFAULT_STEP_SIZE,
        population_size: Optional[int] = None,
        termination: Optional[CMAESTermination] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        self.initial_mean = np.asarray(initial_mean, dtype=float).reshape(-1)
        n = len(self.initial_mean)
        self.scales = np.ones(n) if scales is None else np.asarray(scales, dtype=float).reshape(-1)
        if len(self.scales) != n:
            raise ConfigurationError(f"Expected {n} scales, got {len(self.scales)}")
        if not np.all(np.isfinite(self.scales)) or np.any(self.scales <= 0):
            raise ConfigurationError("Scales must be positive and finite")

        self.termination = termination or CMAESTermination()
        self.rng = rng or np.random.default_rng()
        self.state = CMAESState(n, population_size, step_size) if n > 0 else None

        self.best_point = self.initial_mean.copy()
        self.best_fitness = math.inf
        self.history: List[Dict[str, Any]] = []

        self._samples: Optional[np.ndarray] = None
        self._previous_generation_best: Optional[float] = None
        self._stable_generations = 0
        self._reason: Optional[TerminationReason] = None

    @property
    def dimension(self) -> int:
        return len(self.initial_mean)

    @property
    def evaluations(self) -> int:
        return self.state.evaluations if self.state else 0

    @property
    def generation(self) -> int:
        return self.state.generation if self.state else 0

    def to_parameters(self, x: np.ndarray) -> np.ndarray:
        """Map normalized points to parameter space."""
        return self.initial_mean + self.scales * x

    def ask(self) -> np.ndarray:
        if self.state is None:
            raise ConfigurationError("Cannot sample a zero-dimensional problem")
        self._samples = self.state.sample(self.rng)
        return self.to_parameters(self._samples)

    def tell(self, fitnesses: Sequence[float]) -> None:
        if self._samples is None:
            raise RuntimeError("tell() called before ask()")
        values = np.array([check_fitness(f) for f in fitnesses])
        if len(values) != len(self._samples):
            raise ValueError(f"Expected {len(self._samples)} fitness values, got {len(values)}")

        # Stable sort: ties keep sample order
        order = np.argsort(values, kind="stable")
        best = int(order[0])
        generation_best = float(values[best])
        if generation_best < self.best_fitness:
            self.best_fitness = generation_best
            self.best_point = self.to_parameters(self._samples[best])

        self.state.update(self._samples, order)
        self._samples = None

        previous = self._previous_generation_best
        if previous is not None and abs(previous - generation_best) < self.termination.stable_tolerance:
            self._stable_generations += 1
        else:
            self._stable_generations = 0
        self._previous_generation_best = generation_best

        self.history.append({
            "generation": self.state.generation,
            "evaluations": self.state.evaluations,
            "best_fitness": generation_best,
            "mean_fitness": float(values.mean()),
            "sigma": self.state.sigma,
        })

    def should_stop(self) -> Optional[TerminationReason]:
        """Return the first termination condition that holds, if any."""
        t = self.termination
        if self.state is None:
            return TerminationReason.DEGENERATE
        if t.fitness is not None and self.best_fitness <= t.fitness:
            return TerminationReason.FITNESS
        if t.generations is not None and self.state.generation >= t.generations:
            return TerminationReason.GENERATIONS
        if t.evaluations is not None and self.state.evaluations >= t.evaluations:
            return TerminationReason.EVALUATIONS
        if t.stable_generations is not None and self._stable_generations >= t.stable_generations:
            return TerminationReason.STABILIZED
        return None

    def run(self, objective: Objective, executor: Optional[Executor] = None) -> CMAESResult:
        """
        Optimize ``objective`` until a termination condition holds.

        With an ``executor``, the candidates of each generation are
        evaluated concurrently and joined before the distribution update.
        """
        if self.state is None:
            fitness = check_fitness(objective(self.initial_mean.copy()))
            return CMAESResult(
                point=self.initial_mean.copy(),
                fitness=fitness,
                generations=0,
                evaluations=1,
                reason=TerminationReason.DEGENERATE,
                step_size=0.0,
                population_size=0,
            )

        reason = None
        while reason is None:
            candidates = self.ask()
            if executor is None:
                fitnesses = [objective(x) for x in candidates]
            else:
                fitnesses = list(executor.map(objective, candidates))
            self.tell(fitnesses)
            reason = self.should_stop()

        # The final mean is often better than any single sample
        mean_point = self.to_parameters(self.state.mean)
        mean_fitness = check_fitness(objective(mean_point))
        self.state.evaluations += 1
        if mean_fitness < self.best_fitness:
            self.best_fitness = mean_fitness
            self.best_point = mean_point

        logger.debug(
            f"CMA-ES stopped ({reason.value}) after {self.state.generation} generations, "
            f"{self.state.evaluations} evaluations, best fitness {self.best_fitness:.6g}"
        )

        return CMAESResult(
            point=self.best_point.copy(),
            fitness=self.best_fitness,
            generations=self.state.generation,
            evaluations=self.state.evaluations,
            reason=reason,
            step_size=self.state.sigma,
            population_size=self.state.population_size,
            history=list(self.history),
        )
