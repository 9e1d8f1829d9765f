"""
eant2/errors.py

Error types raised by the engine.

Configuration errors are raised eagerly when options are built.
Numerical errors abort a single optimization run and travel back to the
orchestrator. Invariant errors mean a genome is malformed, which is a bug
in the code that edited it.
"""


class EANT2Error(Exception):
    """Base class for all engine errors."""


class ConfigurationError(EANT2Error, ValueError):
    """Invalid options (zero sizes, malformed probabilities, ...)."""


class NumericalError(EANT2Error, ArithmeticError):
    """A CMA-ES run can no longer continue."""


class InvalidFitnessError(NumericalError):
    """The objective returned NaN or an infinite value."""

    def __init__(self, value: float):
        super().__init__(f"Fitness function returned a non-finite value: {value}")
        self.value = value


class StepSizeError(NumericalError):
    """The CMA-ES step size left the representable range."""

    def __init__(self, step_size: float):
        super().__init__(f"CMA-ES step size out of bounds: {step_size}")
        self.step_size = step_size


class InvariantError(EANT2Error, RuntimeError):
    """A genome invariant does not hold."""


class EncodingError(EANT2Error, ValueError):
    """A serialized network could not be decoded."""
