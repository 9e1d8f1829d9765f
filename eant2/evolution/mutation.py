"""
eant2/evolution/mutation.py

Structural mutation operators for EANT2.

A mutation picks a category by weight, then a subtype where the category
has several, enumerates every valid edit of that subtype and applies one
at random. When the enumeration is empty the mutation is a no-op: an
operator may reach a dead end even though another one would have found
something to do.

Every edit goes through the Individual so that gene ages follow the
genome. New genes start with weight INITIAL_WEIGHT_VALUE and age 0.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple, TypeVar

import numpy as np

from eant2.cge.gene import (
    INITIAL_WEIGHT_VALUE,
    Bias,
    ForwardJumper,
    Input,
    Neuron,
    NonNeuronGene,
    RecurrentJumper,
)

from .individual import Individual
from .probabilities import MutationProbabilities, MutationType

logger = logging.getLogger(__name__)

# Chance for each valid forward connection into or out of a new subnetwork
NEW_SUBNETWORK_FORWARD_CONNECTION_PROBABILITY = 0.2

# Chance for each network input to feed a new subnetwork
NEW_SUBNETWORK_INPUT_PROBABILITY = 0.5

T = TypeVar("T")


def _choose(items: Sequence[T], rng: np.random.Generator) -> Optional[T]:
    if not items:
        return None
    return items[int(rng.integers(len(items)))]


def mutate(
    individual: Individual,
    probabilities: MutationProbabilities,
    rng: np.random.Generator,
) -> bool:
    """
    Apply one random structural mutation.

    Returns:
        Whether the genome was changed
    """
    kind = probabilities.sample(rng)
    if kind is MutationType.ADD_CONNECTION:
        changed = add_connection(individual, rng)
    elif kind is MutationType.REMOVE_CONNECTION:
        changed = remove_connection(individual, rng)
    elif kind is MutationType.ADD_NEURON:
        changed = add_subnetwork(individual, rng)
    elif kind is MutationType.ADD_BIAS:
        changed = add_bias(individual, rng)
    else:
        raise ValueError(f"Unknown mutation type {kind}")

    if not changed:
        logger.debug(f"Mutation {kind.value} found nothing to change")
    return changed


def add_connection(individual: Individual, rng: np.random.Generator) -> bool:
    """Add a forward jumper, recurrent jumper or input, chosen uniformly."""
    choice = int(rng.integers(3))
    if choice == 0:
        return add_forward_jumper(individual, rng)
    if choice == 1:
        return add_recurrent_jumper(individual, rng)
    return add_input(individual, rng)


def _children(individual: Individual, parent_id: int) -> List:
    return [gene for _, gene in individual.network.direct_children(parent_id)]


def add_forward_jumper(individual: Individual, rng: np.random.Generator) -> bool:
    network = individual.network
    candidates: List[Tuple[int, int]] = []

    for parent_id in network.neuron_ids():
        depth = network.neuron_info(parent_id).depth
        missing = set(network.get_valid_forward_jumper_sources(depth))
        # A child neuron is already an implicit forward connection
        for gene in _children(individual, parent_id):
            if isinstance(gene, ForwardJumper):
                missing.discard(gene.source_id)
            elif isinstance(gene, Neuron):
                missing.discard(gene.id)
        candidates.extend((parent_id, source) for source in sorted(missing))

    choice = _choose(candidates, rng)
    if choice is None:
        return False
    parent_id, source_id = choice
    individual.add_non_neuron(parent_id, ForwardJumper(source_id, INITIAL_WEIGHT_VALUE))
    return True


def add_recurrent_jumper(individual: Individual, rng: np.random.Generator) -> bool:
    network = individual.network
    neuron_ids = network.neuron_ids()
    candidates: List[Tuple[int, int]] = []

    for parent_id in neuron_ids:
        existing = {
            gene.source_id
            for gene in _children(individual, parent_id)
            if isinstance(gene, RecurrentJumper)
        }
        candidates.extend((parent_id, source) for source in neuron_ids if source not in existing)

    choice = _choose(candidates, rng)
    if choice is None:
        return False
    parent_id, source_id = choice
    individual.add_non_neuron(parent_id, RecurrentJumper(source_id, INITIAL_WEIGHT_VALUE))
    return True


def add_input(individual: Individual, rng: np.random.Generator) -> bool:
    candidates: List[Tuple[int, int]] = []

    for parent_id in individual.network.neuron_ids():
        existing = {
            gene.id for gene in _children(individual, parent_id) if isinstance(gene, Input)
        }
        candidates.extend(
            (parent_id, input_id) for input_id in range(individual.inputs) if input_id not in existing
        )

    choice = _choose(candidates, rng)
    if choice is None:
        return False
    parent_id, input_id = choice
    individual.add_non_neuron(parent_id, Input(input_id, INITIAL_WEIGHT_VALUE))
    return True


def add_subnetwork(individual: Individual, rng: np.random.Generator) -> bool:
    """
    Add a new neuron under a random parent.

    The new neuron reads each network input with probability 0.5 and each
    neuron deeper than itself with probability 0.2; if nothing was picked
    it reads one random network input. Afterwards every shallower neuron
    other than the parent gets a forward jumper from the new neuron with
    probability 0.2.
    """
    network = individual.network
    parent_id = _choose(network.neuron_ids(), rng)
    if parent_id is None or individual.inputs < 1:
        return False

    inputs: List[NonNeuronGene] = []
    for input_id in range(individual.inputs):
        if rng.random() < NEW_SUBNETWORK_INPUT_PROBABILITY:
            inputs.append(Input(input_id, INITIAL_WEIGHT_VALUE))

    subnetwork_depth = network.neuron_info(parent_id).depth + 1
    for source_id in network.get_valid_forward_jumper_sources(subnetwork_depth):
        if rng.random() < NEW_SUBNETWORK_FORWARD_CONNECTION_PROBABILITY:
            inputs.append(ForwardJumper(source_id, INITIAL_WEIGHT_VALUE))

    if not inputs:
        inputs.append(Input(int(rng.integers(individual.inputs)), INITIAL_WEIGHT_VALUE))

    new_id = individual.add_subnetwork(parent_id, INITIAL_WEIGHT_VALUE, inputs)

    targets = [
        info.id
        for info in network.neuron_infos()
        if info.id != parent_id and info.id != new_id and info.depth < subnetwork_depth
    ]
    for target_id in targets:
        if rng.random() < NEW_SUBNETWORK_FORWARD_CONNECTION_PROBABILITY:
            individual.add_non_neuron(target_id, ForwardJumper(new_id, INITIAL_WEIGHT_VALUE))

    return True


def add_bias(individual: Individual, rng: np.random.Generator) -> bool:
    network = individual.network
    candidates = [
        neuron_id
        for neuron_id in network.neuron_ids()
        if not any(isinstance(gene, Bias) for gene in _children(individual, neuron_id))
    ]

    parent_id = _choose(candidates, rng)
    if parent_id is None:
        return False
    individual.add_non_neuron(parent_id, Bias(INITIAL_WEIGHT_VALUE))
    return True


def remove_connection(individual: Individual, rng: np.random.Generator) -> bool:
    """
    Remove a random non-neuron gene whose parent keeps at least one input.

    The last Input gene reading a given network input is never removed,
    so a network cannot lose access to any of its inputs.
    """
    network = individual.network
    input_counts = network.input_connection_counts()
    candidates = [
        index
        for index in network.get_valid_removals()
        if not (isinstance(network[index], Input) and input_counts[network[index].id] <= 1)
    ]

    index = _choose(candidates, rng)
    if index is None:
        return False
    individual.remove_non_neuron(index)
    return True
