"""
eant2/evolution/generation.py

One EANT2 generation: the population of individuals and the steps that
turn it into the next one.

- initialize: random minimal networks (or copies of a seed network)
- reproduce:  carry every individual over and add mutated clones
- optimize:   tune every individual's weights with CMA-ES
- select:     keep a diverse set of the best individuals
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Iterator, List, Sequence

import numpy as np

from eant2.cge.activation import Activation
from eant2.cge.gene import INITIAL_WEIGHT_VALUE, Gene, Input, Neuron
from eant2.cge.network import Network
from eant2.cmaes.optimizer import CMAESResult
from eant2.cmaes.restart import Restarter
from eant2.errors import EANT2Error

from .config import EANT2Config, ExplorationConfig, ExploitationConfig
from .fitness import FitnessFunction, NetworkObjective
from .individual import Individual
from .mutation import mutate
from .selection import select

if TYPE_CHECKING:
    from eant2.services.worker import OptimizationWorkerPool

logger = logging.getLogger(__name__)


def random_minimal_network(
    inputs: int,
    outputs: int,
    activation: Activation,
    rng: np.random.Generator,
) -> Network:
    """
    One neuron per output, each reading about half of the network inputs.

    Every output neuron reads at least one input, and every network input
    is read by at least one output neuron.
    """
    genome: List[Gene] = []
    for neuron_id in range(outputs):
        children = [
            Input(input_id, INITIAL_WEIGHT_VALUE)
            for input_id in range(inputs)
            if rng.random() < 0.5
        ]
        if not children:
            children.append(Input(int(rng.integers(inputs)), INITIAL_WEIGHT_VALUE))
        genome.append(Neuron(neuron_id, len(children), INITIAL_WEIGHT_VALUE))
        genome.extend(children)

    network = Network(genome, activation)

    connected = set(network.input_connection_counts())
    for input_id in range(inputs):
        if input_id not in connected:
            parent_id = int(rng.integers(outputs))
            network.add_non_neuron(parent_id, Input(input_id, INITIAL_WEIGHT_VALUE))

    return network


def optimize_individual(
    individual: Individual,
    exploitation: ExploitationConfig,
    rng: np.random.Generator,
) -> CMAESResult:
    """
    Search the weights of ``individual`` with CMA-ES.

    The search runs on a copy of the network; the individual itself is
    left untouched so the caller decides when to commit the result.
    """
    network = individual.network.copy()
    restarter = Restarter(
        strategy=exploitation.restart,
        termination=exploitation.terminate,
        step_size=exploitation.initial_step_size,
        population_size=exploitation.population_size,
    )

    if exploitation.offspring_workers > 1:
        objective = NetworkObjective(network, individual.fitness_function, per_thread_copies=True)
        with ThreadPoolExecutor(max_workers=exploitation.offspring_workers) as executor:
            return restarter.run(objective, network.weights(), individual.gene_deviations(), rng, executor)

    objective = NetworkObjective(network, individual.fitness_function)
    return restarter.run(objective, network.weights(), individual.gene_deviations(), rng)


class Generation:
    """An ordered population sharing one fitness function."""

    def __init__(self, individuals: Sequence[Individual]):
        self.individuals: List[Individual] = list(individuals)

    def __len__(self) -> int:
        return len(self.individuals)

    def __iter__(self) -> Iterator[Individual]:
        return iter(self.individuals)

    @classmethod
    def initialize(
        cls,
        config: EANT2Config,
        fitness: FitnessFunction,
        rng: np.random.Generator,
    ) -> Generation:
        """Create ``population * (1 + offspring)`` starting individuals."""
        exploration = config.exploration
        count = exploration.population * (1 + exploration.offspring)

        individuals = []
        for _ in range(count):
            if config.seed_network is not None:
                network = config.seed_network.copy()
                network.clear_state()
            else:
                network = random_minimal_network(config.inputs, config.outputs, config.activation, rng)
            individuals.append(Individual(network, config.inputs, config.outputs, fitness))

        logger.debug(f"Initialized {count} individuals")
        return cls(individuals)

    def reproduce(self, exploration: ExplorationConfig, rng: np.random.Generator) -> Generation:
        """
        Keep an aged copy of each individual followed by ``offspring``
        mutated clones of it. This generation is left unchanged.
        """
        individuals = []
        mutated = 0
        for individual in self.individuals:
            survivor = individual.copy()
            survivor.increment_ages()
            individuals.append(survivor)
            for _ in range(exploration.offspring):
                child = survivor.copy()
                if mutate(child, exploration.mutation_probabilities, rng):
                    mutated += 1
                individuals.append(child)

        logger.debug(f"Reproduced {len(self.individuals)} individuals, {mutated} offspring mutated")
        return Generation(individuals)

    def optimize(self, optimizer: OptimizationWorkerPool, rng: np.random.Generator) -> List[CMAESResult]:
        """
        Optimize every individual and commit the results.

        Nothing is committed unless every individual succeeded; the first
        error reported by a worker is re-raised.
        """
        outcomes = sorted(optimizer.optimize(self.individuals, rng), key=lambda o: o.index)
        if len(outcomes) != len(self.individuals):
            raise EANT2Error(
                f"Got {len(outcomes)} optimization results for {len(self.individuals)} individuals"
            )

        for outcome in outcomes:
            if outcome.error is not None:
                raise outcome.error

        results = []
        for individual, outcome in zip(self.individuals, outcomes):
            individual.set_optimized(outcome.result.point, outcome.result.fitness)
            results.append(outcome.result)
        return results

    def select(self, exploration: ExplorationConfig) -> Generation:
        survivors = select(
            self.individuals,
            exploration.population,
            exploration.similarity,
            exploration.force_meet_population_size,
        )
        return Generation(survivors)

    def best(self) -> Individual:
        """Individual with the lowest fitness (first one on ties)."""
        if not self.individuals:
            raise EANT2Error("Generation is empty")
        return min(self.individuals, key=lambda individual: individual.fitness)

    def fitnesses(self) -> np.ndarray:
        return np.array([individual.fitness for individual in self.individuals])
