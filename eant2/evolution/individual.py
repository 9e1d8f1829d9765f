"""
eant2/evolution/individual.py

An Individual is one member of the EANT2 population: a CGE network, the
age of each of its genes, and its last measured fitness.

Gene ages count the generations a gene has survived since it was created.
Old genes have settled weights, so CMA-ES searches them with a smaller
initial deviation (1 / (1 + age^2)) than freshly added ones.
"""

from __future__ import annotations

import math
from typing import List, Optional, Sequence

import numpy as np

from eant2.cge.gene import NonNeuronGene
from eant2.cge.network import Network
from eant2.errors import InvariantError

from .fitness import FitnessFunction


class Individual:
    """
    Network plus per-gene ages, kept index-aligned.

    Structural edits must go through the methods below so that genome and
    ages always receive the same splice.
    """

    def __init__(
        self,
        network: Network,
        inputs: int,
        outputs: int,
        fitness_function: FitnessFunction,
        ages: Optional[Sequence[int]] = None,
    ):
        self.network = network
        self.inputs = inputs
        self.outputs = outputs
        self.fitness_function = fitness_function
        self.fitness: float = math.inf
        self._ages: List[int] = list(ages) if ages is not None else [0] * len(network)
        if len(self._ages) != len(network):
            raise InvariantError(
                f"Got {len(self._ages)} ages for a genome of {len(network)} genes"
            )

    @property
    def ages(self) -> List[int]:
        return list(self._ages)

    def __len__(self) -> int:
        return len(self.network)

    def __repr__(self) -> str:
        return f"Individual(genes={len(self.network)}, fitness={self.fitness:.6g})"

    # ------------------------------------------------------------------
    # Matched edits
    # ------------------------------------------------------------------

    def add_non_neuron(self, parent_id: int, gene: NonNeuronGene) -> int:
        index = self.network.add_non_neuron(parent_id, gene)
        self._ages.insert(index, 0)
        return index

    def add_subnetwork(self, parent_id: int, weight: float, inputs: Sequence[NonNeuronGene]) -> int:
        new_id = self.network.add_subnetwork(parent_id, weight, inputs)
        index = self.network.neuron_info(new_id).index
        self._ages[index:index] = [0] * (1 + len(inputs))
        return new_id

    def remove_non_neuron(self, index: int) -> NonNeuronGene:
        gene = self.network.remove_non_neuron(index)
        del self._ages[index]
        return gene

    def increment_ages(self) -> None:
        self._ages = [age + 1 for age in self._ages]

    # ------------------------------------------------------------------
    # Optimization support
    # ------------------------------------------------------------------

    def gene_deviations(self) -> np.ndarray:
        """Initial CMA-ES standard deviation of each weight."""
        ages = np.asarray(self._ages, dtype=float)
        return 1.0 / (1.0 + ages ** 2)

    def set_optimized(self, weights: Sequence[float], fitness: float) -> None:
        self.network.set_weights(weights)
        self.network.clear_state()
        self.fitness = float(fitness)

    def check_alignment(self) -> None:
        if len(self._ages) != len(self.network):
            raise InvariantError(
                f"Ages ({len(self._ages)}) out of step with genome ({len(self.network)})"
            )

    def copy(self) -> Individual:
        clone = Individual(
            self.network.copy(),
            self.inputs,
            self.outputs,
            self.fitness_function,
            self._ages,
        )
        clone.fitness = self.fitness
        return clone
