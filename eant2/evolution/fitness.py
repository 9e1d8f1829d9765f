"""
eant2/evolution/fitness.py

Fitness functions and the restricted network view they receive.

Fitness is what we minimize. A fitness function gets a NetworkView, runs
the network on its task and returns a finite score (lower is better).
One fitness object is shared, read-only, by every worker thread.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Callable, List, Sequence, Tuple, Union

import numpy as np

from eant2.cge.gene import Gene
from eant2.cge.network import Network
from eant2.cmaes.optimizer import check_fitness


class NetworkView:
    """
    The operations a fitness function may perform on a network.

    Evaluation and recurrent state are available; structure and weights
    are read-only.
    """

    def __init__(self, network: Network):
        self._network = network

    def evaluate(self, inputs: Sequence[float]) -> List[float]:
        return self._network.evaluate(inputs)

    def clear_state(self) -> None:
        self._network.clear_state()

    def recurrent_state_len(self) -> int:
        return self._network.recurrent_state_len()

    def recurrent_state(self) -> List[float]:
        return self._network.recurrent_state()

    def set_recurrent_state(self, state: Sequence[float]) -> None:
        self._network.set_recurrent_state(state)

    def map_recurrent_state(self, fn: Callable[[int, float], float]) -> None:
        self._network.map_recurrent_state(fn)

    @property
    def num_outputs(self) -> int:
        return self._network.num_outputs

    @property
    def genome(self) -> Tuple[Gene, ...]:
        return self._network.genome

    def __len__(self) -> int:
        return len(self._network)


class FitnessFunction(ABC):
    """
    Abstract base for fitness functions.

    Implementations must not keep per-call mutable state: the same object
    is called concurrently from several threads.
    """

    @abstractmethod
    def fitness(self, network: NetworkView) -> float:
        """
        Score a network.

        Args:
            network: View of the network being scored

        Returns:
            Finite score, lower is better
        """
        pass

    def __call__(self, network: NetworkView) -> float:
        return self.fitness(network)


class CallableFitness(FitnessFunction):
    """Adapts a plain ``fn(view) -> float`` to FitnessFunction."""

    def __init__(self, fn: Callable[[NetworkView], float]):
        self.fn = fn

    def fitness(self, network: NetworkView) -> float:
        return self.fn(network)


FitnessLike = Union[FitnessFunction, Callable[[NetworkView], float]]


def as_fitness_function(fitness: FitnessLike) -> FitnessFunction:
    if isinstance(fitness, FitnessFunction):
        return fitness
    if callable(fitness):
        return CallableFitness(fitness)
    raise TypeError(f"Expected a FitnessFunction or callable, got {type(fitness).__name__}")


class NetworkObjective:
    """
    CMA-ES objective over a network's weight vector.

    Every call loads the weights, clears recurrent state and scores the
    network. With ``per_thread_copies`` each calling thread works on its
    own copy of the network, so offspring can be scored concurrently.
    """

    def __init__(self, network: Network, fitness: FitnessFunction, per_thread_copies: bool = False):
        self.network = network
        self.fitness = fitness
        self.per_thread_copies = per_thread_copies
        self._local = threading.local()
        self.calls = 0

    def _network(self) -> Network:
        if not self.per_thread_copies:
            return self.network
        network = getattr(self._local, "network", None)
        if network is None:
            network = self.network.copy()
            self._local.network = network
        return network

    def __call__(self, weights: np.ndarray) -> float:
        network = self._network()
        network.set_weights(weights)
        network.clear_state()
        self.calls += 1
        return check_fitness(self.fitness(NetworkView(network)))


class XorFitness(FitnessFunction):
    """Sum of absolute errors on the XOR truth table."""

    CASES = [
        ([0.0, 0.0], 0.0),
        ([1.0, 0.0], 1.0),
        ([0.0, 1.0], 1.0),
        ([1.0, 1.0], 0.0),
    ]

    def fitness(self, network: NetworkView) -> float:
        error = 0.0
        for inputs, expected in self.CASES:
            result = network.evaluate(inputs)[0]
            # Recurrent connections must not carry answers between cases
            network.clear_state()
            error += abs(result - expected)
        return error


class RunningSumFitness(FitnessFunction):
    """
    Mean squared error of a network asked to output the running sum of
    its single input over a sequence. Solvable only with recurrence.
    """

    def __init__(self, sequences: Sequence[Sequence[float]] = ((1.0, 2.0, -1.0), (0.5, 0.5, 0.5, -2.0))):
        self.sequences = [list(s) for s in sequences]

    def fitness(self, network: NetworkView) -> float:
        error = 0.0
        steps = 0
        for sequence in self.sequences:
            network.clear_state()
            total = 0.0
            for x in sequence:
                total += x
                error += (network.evaluate([x])[0] - total) ** 2
                steps += 1
        return error / max(steps, 1)
