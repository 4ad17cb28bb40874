"""
Exception taxonomy for the proctoring engine.

InvalidStateError and ConfigurationError are caller bugs and are raised
synchronously.  SamplerUnavailable is an environmental failure (camera
permission denied, device unplugged) that the caller may retry.
"""


class ProctorError(Exception):
    """Base class for all engine errors."""


class InvalidStateError(ProctorError):
    """A lifecycle operation was requested from a state that does not allow it."""


class SamplerUnavailable(ProctorError):
    """The signal source could not produce a reading."""


class ConfigurationError(ProctorError, ValueError):
    """A configuration value is out of range or unknown."""
