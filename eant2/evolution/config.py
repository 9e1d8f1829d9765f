"""
eant2/evolution/config.py

Configuration for an EANT2 run.

Options are split the same way the algorithm is:
- ExplorationConfig:  structural search (population, mutation, selection)
- ExploitationConfig: weight tuning of each structure with CMA-ES

Every value is validated on construction; invalid settings raise
ConfigurationError instead of being clamped.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from eant2.cge import encoding
from eant2.cge.activation import DEFAULT_ACTIVATION, Activation
from eant2.cge.network import Network
from eant2.cmaes.optimizer import DEFAULT_STEP_SIZE
from eant2.cmaes.options import CMAESTermination
from eant2.cmaes.restart import LocalRestart, RestartStrategy
from eant2.errors import ConfigurationError

from .probabilities import MutationProbabilities


@dataclass
class EANT2Termination:
    """Stop when the best fitness reaches ``fitness`` or after ``generations``."""
    fitness: Optional[float] = None
    generations: int = 100

    def __post_init__(self):
        if self.generations < 1:
            raise ConfigurationError(f"EANT2 needs at least one generation, got {self.generations}")
        if self.fitness is not None and math.isnan(self.fitness):
            raise ConfigurationError("EANT2 fitness threshold cannot be NaN")

    def to_dict(self) -> Dict[str, Any]:
        return {"fitness": self.fitness, "generations": self.generations}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EANT2Termination":
        return cls(**data)


@dataclass
class ExplorationConfig:
    """Structural search options."""
    population: int = 30
    offspring: int = 2
    # Absolute fitness difference under which the smaller network ranks first
    similarity: float = 0.15
    force_meet_population_size: bool = False
    mutation_probabilities: MutationProbabilities = field(default_factory=MutationProbabilities)
    terminate: EANT2Termination = field(default_factory=EANT2Termination)
    # Threads optimizing individuals concurrently
    workers: int = 1

    def __post_init__(self):
        if self.population < 1:
            raise ConfigurationError(f"Population size must be at least 1, got {self.population}")
        if self.offspring < 1:
            raise ConfigurationError(f"Offspring count must be at least 1, got {self.offspring}")
        if self.workers < 1:
            raise ConfigurationError(f"Worker count must be at least 1, got {self.workers}")
        if not (math.isfinite(self.similarity) and self.similarity >= 0):
            raise ConfigurationError(f"Similarity threshold must be finite and >= 0, got {self.similarity}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "population": self.population,
            "offspring": self.offspring,
            "similarity": self.similarity,
            "force_meet_population_size": self.force_meet_population_size,
            "mutation_probabilities": self.mutation_probabilities.to_dict(),
            "terminate": self.terminate.to_dict(),
            "workers": self.workers,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExplorationConfig":
        data = dict(data)
        if "mutation_probabilities" in data:
            data["mutation_probabilities"] = MutationProbabilities.from_dict(data["mutation_probabilities"])
        if "terminate" in data:
            data["terminate"] = EANT2Termination.from_dict(data["terminate"])
        return cls(**data)


@dataclass
class ExploitationConfig:
    """CMA-ES options used for every individual."""
    restart: RestartStrategy = field(default_factory=LocalRestart)
    terminate: CMAESTermination = field(default_factory=CMAESTermination)
    initial_step_size: float = DEFAULT_STEP_SIZE
    # None uses 4 + floor(3 ln n)
    population_size: Optional[int] = None
    # Threads scoring the candidates of one CMA-ES generation
    offspring_workers: int = 1

    def __post_init__(self):
        if not (math.isfinite(self.initial_step_size) and self.initial_step_size > 0):
            raise ConfigurationError(f"Initial step size must be positive, got {self.initial_step_size}")
        if self.population_size is not None and self.population_size < 2:
            raise ConfigurationError(
                f"CMA-ES population size must be at least 2, got {self.population_size}"
            )
        if self.offspring_workers < 1:
            raise ConfigurationError(
                f"Offspring worker count must be at least 1, got {self.offspring_workers}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "restart": self.restart.to_dict(),
            "terminate": self.terminate.to_dict(),
            "initial_step_size": self.initial_step_size,
            "population_size": self.population_size,
            "offspring_workers": self.offspring_workers,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExploitationConfig":
        data = dict(data)
        if "restart" in data:
            data["restart"] = RestartStrategy.from_dict(data["restart"])
        if "terminate" in data:
            data["terminate"] = CMAESTermination.from_dict(data["terminate"])
        return cls(**data)


@dataclass
class EANT2Config:
    """
    Everything needed to run EANT2 on one problem.

    ``seed`` makes a run reproducible; ``seed_network`` replaces the random
    minimal networks of the first generation with copies of a given one.
    """
    inputs: int
    outputs: int
    activation: Activation = DEFAULT_ACTIVATION
    exploration: ExplorationConfig = field(default_factory=ExplorationConfig)
    exploitation: ExploitationConfig = field(default_factory=ExploitationConfig)
    seed: Optional[int] = None
    seed_network: Optional[Network] = None

    def __post_init__(self):
        if self.inputs < 1 or self.outputs < 1:
            raise ConfigurationError(
                f"Networks need at least one input and one output, got {self.inputs} and {self.outputs}"
            )
        self.activation = Activation.parse(self.activation)
        if self.seed_network is not None and self.seed_network.num_outputs != self.outputs:
            raise ConfigurationError(
                f"Seed network has {self.seed_network.num_outputs} outputs, expected {self.outputs}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inputs": self.inputs,
            "outputs": self.outputs,
            "activation": self.activation.value,
            "exploration": self.exploration.to_dict(),
            "exploitation": self.exploitation.to_dict(),
            "seed": self.seed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EANT2Config":
        data = dict(data)
        for key in ("inputs", "outputs"):
            if key not in data:
                raise ConfigurationError(f"Missing required option: {key}")
        try:
            if "exploration" in data:
                data["exploration"] = ExplorationConfig.from_dict(data["exploration"] or {})
            if "exploitation" in data:
                data["exploitation"] = ExploitationConfig.from_dict(data["exploitation"] or {})
            seed_network = data.get("seed_network")
            if isinstance(seed_network, dict):
                data["seed_network"] = encoding.from_dict(seed_network)
            elif isinstance(seed_network, str):
                data["seed_network"] = encoding.from_file(seed_network)
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "EANT2Config":
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path} does not contain a mapping")
        return cls.from_dict(data)
