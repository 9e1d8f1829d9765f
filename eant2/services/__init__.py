"""
eant2/services/

Services around the EANT2 algorithm.

- Worker: optimizes individuals on a thread pool, one task per individual
- Persistence: run metadata, generation history and network snapshots
- Controller: runs EANT2 on a task from the command line

The controller steps the algorithm; the algorithm hands each generation's
individuals to the worker pool for CMA-ES optimization.
"""

from .worker import OptimizationOutcome, OptimizationWorkerPool
from .persistence import PersistenceConfig, RunPersistence
from .controller import ControllerConfig, EvolutionController, run_controller

__all__ = [
    "OptimizationOutcome",
    "OptimizationWorkerPool",
    "PersistenceConfig",
    "RunPersistence",
    "ControllerConfig",
    "EvolutionController",
    "run_controller",
]
