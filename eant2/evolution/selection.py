"""
eant2/evolution/selection.py

Diversity-preserving survivor selection.

Individuals are grouped twice: into Duplicate groups (same gene kind at every
position and the same neuron ids) and into Similar groups (same neuron tree, any
connections). Survivors are then picked greedily, best first, while at
most MAX_COPIES members of any Duplicate group and MAX_SIMILAR members of
any Similar group may survive. Ranking prefers lower fitness, or fewer
genes when two fitness values lie within the similarity threshold.

With ``force_meet_population_size`` the caps are relaxed one step at a
time until the population size is reached.
"""

from __future__ import annotations

import functools
import logging
import math
from enum import Enum
from typing import List, Optional, Sequence, Set, Tuple

from eant2.cge.gene import is_neuron
from eant2.cge.network import Network

from .individual import Individual

logger = logging.getLogger(__name__)

MAX_COPIES = 1
MAX_SIMILAR = 2


class Similarity(Enum):
    DUPLICATE = "duplicate"
    SIMILAR = "similar"
    UNIQUE = "unique"


def _neuron_structure(network: Network) -> Set[Tuple[int, int]]:
    """(parent id, neuron id) pairs of every non-root neuron."""
    structure = set()
    for info in network.neuron_infos():
        parent = network.parent_of(info.index)
        if parent is not None:
            structure.add((parent, info.id))
    return structure


def is_similar(a: Network, b: Network) -> bool:
    return _neuron_structure(a) == _neuron_structure(b)


def is_duplicate(a: Network, b: Network) -> bool:
    """Same gene kind at every position and the same id at every neuron."""
    if len(a) != len(b):
        return False
    for gene_a, gene_b in zip(a, b):
        if type(gene_a) is not type(gene_b):
            return False
        if is_neuron(gene_a) and gene_a.id != gene_b.id:
            return False
    return True


def check_similarity(a: Network, b: Network) -> Similarity:
    if is_duplicate(a, b):
        return Similarity.DUPLICATE
    if is_similar(a, b):
        return Similarity.SIMILAR
    return Similarity.UNIQUE


def similar_fitness(a: Individual, b: Individual, threshold: float) -> bool:
    """Whether both fitness values are set and closer than ``threshold``."""
    if not (math.isfinite(a.fitness) and math.isfinite(b.fitness)):
        return False
    return abs(a.fitness - b.fitness) < threshold


def compare(a: Individual, b: Individual, threshold: float) -> int:
    """
    Sort key comparison: negative when ``a`` ranks before ``b``.

    Lower fitness wins, unless the two are within ``threshold`` of each
    other, in which case the shorter genome wins.
    """
    if similar_fitness(a, b, threshold):
        return (len(a) > len(b)) - (len(a) < len(b))
    return (a.fitness > b.fitness) - (a.fitness < b.fitness)


class _Group:
    """Indices of grouped individuals, with the count taken so far."""

    def __init__(self, kind: Similarity, head: int):
        self.kind = kind
        self.members: List[int] = [head]
        self.taken = 0

    def __contains__(self, index: int) -> bool:
        return index in self.members

    def remove(self, index: int) -> None:
        if index in self.members:
            self.members.remove(index)
            self.taken += 1


def _group_individuals(individuals: Sequence[Individual]) -> Tuple[List[_Group], List[_Group]]:
    duplicate: List[_Group] = []
    similar: List[_Group] = []

    for i, individual in enumerate(individuals):
        network = individual.network

        for group in duplicate:
            head = individuals[group.members[0]].network
            if check_similarity(network, head) is Similarity.DUPLICATE:
                group.members.append(i)
                break
        else:
            duplicate.append(_Group(Similarity.DUPLICATE, i))

        for group in similar:
            head = individuals[group.members[0]].network
            if check_similarity(network, head) is not Similarity.UNIQUE:
                group.members.append(i)
                break
        else:
            similar.append(_Group(Similarity.SIMILAR, i))

    return duplicate, similar


def _group_of(groups: List[_Group], index: int) -> Optional[_Group]:
    for group in groups:
        if index in group:
            return group
    return None


def select(
    individuals: Sequence[Individual],
    population_size: int,
    similarity_threshold: float,
    force_meet_population_size: bool = False,
) -> List[Individual]:
    """
    Choose at most ``population_size`` survivors, best first.

    Args:
        individuals: Optimized candidates
        population_size: Target number of survivors
        similarity_threshold: Absolute fitness difference under which two
            individuals are ranked by size instead
        force_meet_population_size: Relax the duplicate/similar caps
            until the target is met (or everyone is selected)

    Returns:
        Selected individuals in selection order
    """
    duplicate, similar = _group_individuals(individuals)

    key = functools.cmp_to_key(
        lambda a, b: compare(individuals[a], individuals[b], similarity_threshold)
    )
    for group in duplicate + similar:
        group.members.sort(key=key)

    max_copies = MAX_COPIES
    max_similar = MAX_SIMILAR
    selected: List[int] = []

    def best_in(group: _Group) -> Optional[int]:
        if group.kind is Similarity.SIMILAR and group.taken >= max_similar:
            return None
        if group.kind is Similarity.DUPLICATE and group.taken >= max_copies:
            return None
        # The member's group of the other category must not be full either
        others, cap = (duplicate, max_copies) if group.kind is Similarity.SIMILAR else (similar, max_similar)
        for index in group.members:
            other = _group_of(others, index)
            if other is None or other.taken < cap:
                return index
        return None

    target = min(population_size, len(individuals))
    while len(selected) < target:
        candidates = [i for i in (best_in(g) for g in similar + duplicate) if i is not None]
        if candidates:
            best = min(candidates, key=key)
            for group in similar + duplicate:
                group.remove(best)
            selected.append(best)
        elif force_meet_population_size:
            if any(g.members and g.taken < max_copies for g in duplicate):
                max_similar += 1
            else:
                max_copies += 1
        else:
            break

    if len(selected) < target:
        logger.warning(
            f"Selection kept {len(selected)} of {len(individuals)} individuals "
            f"(target {population_size})"
        )

    return [individuals[i] for i in selected]
