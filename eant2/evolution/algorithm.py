"""
eant2/evolution/algorithm.py

EANT2: Evolutionary Acquisition of Neural Topologies, version 2.

Two nested searches:
- Exploration (outer loop): structural mutation and selection of CGE
  networks, starting from minimal ones and growing them
- Exploitation (inner loop): CMA-ES tuning of every network's weights, so
  each structure is judged by what it can actually achieve

Each generation ages every gene, adds mutated offspring, optimizes all
individuals and keeps a diverse set of the best.

Reference: Siebel & Sommer, "Evolutionary reinforcement learning of
artificial neural networks" (2007).
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from eant2.cge.network import Network
from eant2.errors import EANT2Error

from .config import EANT2Config
from .fitness import FitnessFunction, FitnessLike, as_fitness_function
from .generation import Generation
from .individual import Individual

logger = logging.getLogger(__name__)

GenerationCallback = Callable[["EANT2", Dict[str, Any]], None]


class EANT2:
    """
    The EANT2 algorithm.

    Usage:
        eant = EANT2(EANT2Config(inputs=2, outputs=1))
        network, fitness = eant.run(XorFitness())
    """

    def __init__(self, config: EANT2Config):
        self.config = config
        self.rng = np.random.default_rng(config.seed)
        self.generation = 0
        self.evaluations = 0
        self.history: List[Dict[str, Any]] = []

        self.population: Optional[Generation] = None
        self.best_individual: Optional[Individual] = None
        self.best_fitness = float("inf")
        self.fitness_function: Optional[FitnessFunction] = None
        self._pool = None

    def initialize(self, fitness: FitnessLike) -> None:
        """Create the first population of minimal networks."""
        # Deferred: the worker service itself imports this package
        from eant2.services.worker import OptimizationWorkerPool

        self.fitness_function = as_fitness_function(fitness)
        self._pool = OptimizationWorkerPool(
            self.config.exploitation,
            workers=self.config.exploration.workers,
        )
        self.population = Generation.initialize(self.config, self.fitness_function, self.rng)
        self.generation = 0
        logger.info(
            f"EANT2 initialized: {len(self.population)} individuals, "
            f"{self.config.inputs} inputs, {self.config.outputs} outputs"
        )

    def step(self) -> Dict[str, Any]:
        """Run one generation and return its statistics."""
        if self.population is None:
            raise EANT2Error("step() called before initialize()")

        exploration = self.config.exploration
        start_time = time.time()

        offspring = self.population.reproduce(exploration, self.rng)
        results = offspring.optimize(self._pool, self.rng)
        self.population = offspring.select(exploration)

        self.generation += 1
        evaluations = sum(r.evaluations for r in results)
        self.evaluations += evaluations

        best = self.population.best()
        if best.fitness < self.best_fitness or self.best_individual is None:
            self.best_fitness = best.fitness
            self.best_individual = best.copy()

        fitnesses = self.population.fitnesses()
        sizes = [len(individual) for individual in self.population]
        record = {
            "generation": self.generation,
            "population": len(self.population),
            "candidates": len(offspring),
            "best_fitness": float(best.fitness),
            "mean_fitness": float(fitnesses.mean()),
            "best_size": len(best),
            "mean_size": float(np.mean(sizes)),
            "max_size": int(max(sizes)),
            "evaluations": evaluations,
            "best_overall": self.best_fitness,
            "elapsed": time.time() - start_time,
        }
        self.history.append(record)

        logger.info(
            f"Generation {self.generation}: best fitness {best.fitness:.6g} "
            f"(size {len(best)}), mean {record['mean_fitness']:.6g}, "
            f"{evaluations} evaluations"
        )
        return record

    def should_stop(self) -> bool:
        terminate = self.config.exploration.terminate
        if terminate.fitness is not None and self.best_fitness <= terminate.fitness:
            return True
        return self.generation >= terminate.generations

    def run(
        self,
        fitness: FitnessLike,
        callback: Optional[GenerationCallback] = None,
    ) -> Tuple[Network, float]:
        """
        Evolve networks until a termination condition holds.

        Args:
            fitness: FitnessFunction or callable taking a NetworkView
            callback: Called with ``(self, record)`` after every generation

        Returns:
            Copy of the best network (state cleared) and its fitness
        """
        self.initialize(fitness)

        while True:
            record = self.step()
            if callback is not None:
                callback(self, record)
            if self.should_stop():
                break

        network, best_fitness = self.get_best()
        logger.info(
            f"EANT2 finished after {self.generation} generations: "
            f"fitness {best_fitness:.6g}, {len(network)} genes"
        )
        return network, best_fitness

    def get_best(self) -> Tuple[Network, float]:
        if self.best_individual is None:
            raise EANT2Error("No generation has been evaluated yet")
        network = self.best_individual.network.copy()
        network.clear_state()
        return network, self.best_fitness

    def get_statistics(self) -> Dict[str, Any]:
        stats = {
            "generation": self.generation,
            "evaluations": self.evaluations,
            "algorithm": self.__class__.__name__,
            "best_fitness": self.best_fitness,
        }
        if self.best_individual is not None:
            stats["best_size"] = len(self.best_individual)
        if self._pool is not None:
            stats["workers"] = self._pool.get_status()
        return stats
