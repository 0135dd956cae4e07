from typing import Iterable, Optional


class ConfigurationError(Exception):
    """Raised when the configuration file cannot be loaded or parsed."""


class SimulationError(Exception):
    """Base class for errors raised by the simulation engine."""


class InvalidAllocation(SimulationError):
    """Raised when allocation weights do not sum to 1."""


class IncompleteInputs(SimulationError):
    """Raised when required planning fields are missing or not positive."""

    def __init__(self, message: str, fields: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.fields = list(fields or [])


class DepletionDuringAccumulation(SimulationError):
    """A bucket went negative before retirement. This is an invariant violation."""


class SimulationCancelled(SimulationError):
    """Raised when a run is stopped before any trial completed."""
