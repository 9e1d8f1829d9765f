"""
eant2/services/controller.py

Evolution controller service.

The controller runs EANT2 on one of the built-in tasks:
1. Builds the EANT2 configuration (YAML file plus command line overrides)
2. Steps the algorithm generation by generation
3. Persists generation statistics and best-network snapshots
4. Reports the best network found

Runnable as ``python -m eant2.services.controller --task xor``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

import yaml

from eant2.cge import encoding
from eant2.errors import ConfigurationError
from eant2.evolution.algorithm import EANT2
from eant2.evolution.config import EANT2Config
from eant2.evolution.fitness import FitnessFunction, RunningSumFitness, XorFitness

from .persistence import PersistenceConfig, RunPersistence

logger = logging.getLogger(__name__)

# Task name -> (inputs, outputs, fitness factory)
TASKS: dict[str, tuple[int, int, Callable[[], FitnessFunction]]] = {
    "xor": (2, 1, XorFitness),
    "sum": (1, 1, RunningSumFitness),
}


@dataclass
class ControllerConfig:
    """Configuration for the evolution controller."""
    task: str = "xor"
    config_path: str | None = None

    # Overrides of the EANT2 configuration (None keeps the file/default value)
    population: int | None = None
    generations: int | None = None
    fitness_target: float | None = None
    workers: int | None = None
    seed: int | None = 42

    # Persistence overrides (None keeps the EANT2_* environment value)
    output_dir: str | None = None
    persistence_enabled: bool | None = None
    snapshot_interval: int | None = None


class EvolutionController:
    """
    Runs EANT2 on a task and records the run.

    Owns the generation loop so a run can be stopped between generations.
    """

    def __init__(self, config: ControllerConfig):
        if config.task not in TASKS:
            raise ConfigurationError(f"Unknown task: {config.task}")
        self.config = config

        inputs, outputs, fitness_factory = TASKS[config.task]
        self.fitness = fitness_factory()
        self.eant_config = self._create_eant_config(inputs, outputs)
        self.algorithm = EANT2(self.eant_config)

        self.persistence = RunPersistence(self._create_persistence_config())

        self.running = False
        self.start_time: float | None = None

        logger.info(f"Controller initialized for task {config.task}")

    def _create_eant_config(self, inputs: int, outputs: int) -> EANT2Config:
        data: dict[str, Any] = {}
        if self.config.config_path:
            with open(self.config.config_path) as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ConfigurationError(f"{self.config.config_path} does not contain a mapping")

        data.setdefault("inputs", inputs)
        data.setdefault("outputs", outputs)
        if (data["inputs"], data["outputs"]) != (inputs, outputs):
            raise ConfigurationError(
                f"Task {self.config.task} needs {inputs} inputs and {outputs} outputs"
            )

        exploration = dict(data.get("exploration") or {})
        terminate = dict(exploration.get("terminate") or {})
        if self.config.population is not None:
            exploration["population"] = self.config.population
        if self.config.workers is not None:
            exploration["workers"] = self.config.workers
        if self.config.generations is not None:
            terminate["generations"] = self.config.generations
        if self.config.fitness_target is not None:
            terminate["fitness"] = self.config.fitness_target
        if terminate:
            exploration["terminate"] = terminate
        data["exploration"] = exploration
        if self.config.seed is not None:
            data["seed"] = self.config.seed

        return EANT2Config.from_dict(data)

    def _create_persistence_config(self) -> PersistenceConfig:
        persistence_config = PersistenceConfig.from_env()
        if self.config.output_dir is not None:
            persistence_config.output_dir = self.config.output_dir
        if self.config.persistence_enabled is not None:
            persistence_config.enabled = self.config.persistence_enabled
        if self.config.snapshot_interval is not None:
            persistence_config.snapshot_interval = self.config.snapshot_interval
        return persistence_config

    def step(self) -> dict[str, Any]:
        """
        Execute one generation of evolution.

        Returns generation statistics.
        """
        stats = self.algorithm.step()
        self.persistence.record_generation(stats)

        if self.persistence.should_snapshot(self.algorithm.generation):
            network, fitness = self.algorithm.get_best()
            self.persistence.save_network(network, fitness, self.algorithm.generation)

        return stats

    def run(self) -> dict[str, Any]:
        """
        Run evolution until EANT2's termination conditions hold.

        Returns:
            Final statistics
        """
        self.running = True
        self.start_time = time.time()
        self.persistence.start_run({"task": self.config.task, **self.eant_config.to_dict()})

        self.algorithm.initialize(self.fitness)
        try:
            while self.running:
                self.step()
                if self.algorithm.should_stop():
                    break
        except KeyboardInterrupt:
            logger.info("Evolution interrupted by user")
        finally:
            self.running = False

        total_time = time.time() - self.start_time
        stats = self.algorithm.get_statistics()
        final_stats: dict[str, Any] = {
            "task": self.config.task,
            "total_generations": self.algorithm.generation,
            "total_evaluations": self.algorithm.evaluations,
            "total_time": total_time,
            "best_fitness": stats["best_fitness"],
            "best_network": None,
            "run_id": self.persistence.run_id,
        }

        if self.algorithm.best_individual is not None:
            network, fitness = self.algorithm.get_best()
            final_stats["best_network"] = encoding.to_dict(network, metadata={"fitness": fitness})
            self.persistence.save_network(network, fitness, self.algorithm.generation)

        self.persistence.end_run(
            best_fitness=final_stats["best_fitness"],
            total_generations=self.algorithm.generation,
            total_evaluations=self.algorithm.evaluations,
        )

        logger.info(
            f"Evolution complete: {self.algorithm.generation} generations, "
            f"best fitness: {final_stats['best_fitness']:.4f}"
        )
        return final_stats

    def stop(self) -> None:
        """Stop evolution after the current generation."""
        self.running = False
        logger.info("Stopping evolution...")

    def get_status(self) -> dict[str, Any]:
        elapsed = 0.0
        if self.start_time:
            elapsed = time.time() - self.start_time

        return {
            "running": self.running,
            "task": self.config.task,
            "elapsed_time": elapsed,
            **self.algorithm.get_statistics(),
        }


def run_controller(config: ControllerConfig | None = None, argv: list[str] | None = None) -> dict[str, Any]:
    """
    Run the controller from the command line.

    Prints the best network as JSON and returns the final statistics.
    """
    import argparse
    import json
    import signal

    if config is None:
        parser = argparse.ArgumentParser(description="EANT2 neuroevolution")
        parser.add_argument("--config", default=None, help="YAML file with EANT2 options")
        parser.add_argument("--task", default="xor", choices=sorted(TASKS))
        parser.add_argument("--population", type=int, default=None)
        parser.add_argument("--generations", type=int, default=None)
        parser.add_argument("--fitness-target", type=float, default=None)
        parser.add_argument("--workers", type=int, default=None)
        parser.add_argument("--seed", type=int, default=None)
        parser.add_argument("--output-dir", default=None)
        parser.add_argument("--no-persistence", action="store_true")

        args = parser.parse_args(argv)
        config = ControllerConfig(
            task=args.task,
            config_path=args.config,
            population=args.population,
            generations=args.generations,
            fitness_target=args.fitness_target,
            workers=args.workers,
            seed=args.seed,
            output_dir=args.output_dir,
            persistence_enabled=False if args.no_persistence else None,
        )

    controller = EvolutionController(config)

    # Finish the current generation on SIGTERM
    def signal_handler(sig, frame):
        logger.info("Received shutdown signal")
        controller.stop()

    signal.signal(signal.SIGTERM, signal_handler)

    final_stats = controller.run()
    print(json.dumps(final_stats["best_network"], indent=2))
    return final_stats


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    run_controller()


if __name__ == "__main__":
    main()
