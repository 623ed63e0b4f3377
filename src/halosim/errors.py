# halosim/errors.py


class HaloSimError(Exception):
    """Base class for all halosim errors."""


class ResourceAllocationError(HaloSimError):
    """Compute resources could not be allocated during initialization."""


class EngineStateError(HaloSimError):
    """An engine operation was called in a state that does not allow it."""


class ConfigurationError(HaloSimError, ValueError):
    """A configuration value would leave the simulation in a degenerate state."""
