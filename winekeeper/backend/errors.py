"""
Exceptions raised by the WineKeeper backend.
"""


class CompatibilityToolError(Exception):
    pass


class ToolProvisioningError(CompatibilityToolError):
    """Downloading, extracting or installing part of the Wine runtime failed."""
    pass


class ToolCancelledError(ToolProvisioningError):
    pass


class ProcessSpawnError(CompatibilityToolError):
    """A process could not be started inside the prefix."""
    pass


class WineOutputParseError(CompatibilityToolError):
    """A Wine helper produced output that could not be interpreted."""
    pass


class PrefixStateError(CompatibilityToolError):
    """The prefix or Wine binary directory is not in the state an operation requires."""
    pass
