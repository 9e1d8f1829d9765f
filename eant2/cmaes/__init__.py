"""
eant2/cmaes/

CMA-ES weight optimizer.

Tunes the continuous parameters of one fixed topology. Used as the inner
loop of EANT2, but works on any objective over a real vector.
"""

from .options import CMAESTermination, TerminationReason
from .optimizer import CMAES, CMAESResult, CMAESState, default_population_size
from .restart import BIPOP, IPOP, LocalRestart, NoRestart, Restarter, RestartStrategy

__all__ = [
    "CMAESTermination",
    "TerminationReason",
    "CMAES",
    "CMAESResult",
    "CMAESState",
    "default_population_size",
    "BIPOP",
    "IPOP",
    "LocalRestart",
    "NoRestart",
    "Restarter",
    "RestartStrategy",
]
