"""
eant2/evolution/

Structural evolution of CGE networks.

Exploration works on a population of individuals:
- Mutation adds or removes connections, neurons and biases
- Every structure's weights are tuned with CMA-ES
- Selection keeps the best while limiting duplicate and similar networks

Entry point: EANT2(config).run(fitness)
"""

from .config import EANT2Config, EANT2Termination, ExploitationConfig, ExplorationConfig
from .fitness import (
    CallableFitness,
    FitnessFunction,
    NetworkObjective,
    NetworkView,
    RunningSumFitness,
    XorFitness,
    as_fitness_function,
)
from .individual import Individual
from .probabilities import MutationProbabilities, MutationType
from .mutation import mutate
from .selection import Similarity, check_similarity, compare, select
from .generation import Generation, optimize_individual, random_minimal_network
from .algorithm import EANT2

__all__ = [
    "EANT2Config",
    "EANT2Termination",
    "ExploitationConfig",
    "ExplorationConfig",
    "CallableFitness",
    "FitnessFunction",
    "NetworkObjective",
    "NetworkView",
    "RunningSumFitness",
    "XorFitness",
    "as_fitness_function",
    "Individual",
    "MutationProbabilities",
    "MutationType",
    "mutate",
    "Similarity",
    "check_similarity",
    "compare",
    "select",
    "Generation",
    "optimize_individual",
    "random_minimal_network",
    "EANT2",
]
