"""
owl.exceptions
AUTHOR: carter-vin

Error taxonomy for the watcher

Fatal (abort before the heartbeat loop starts):
- ConfigError
- SpawnError

Absorbed at runtime (never stop supervision):
- SampleError -> reported as Unknown state
- SendError   -> tick skipped, loop continues

Verification only:
- DecodeError
"""


class OwlError(Exception):
    """Base for all owl errors."""


class ConfigError(OwlError, ValueError):
    """Options or configuration file could not be resolved."""


class SpawnError(OwlError):
    """The command could not be started."""

    def __init__(self, command: str, reason: str, *, exit_code: int = 127) -> None:
        super().__init__(f"failed to execute {command!r}: {reason}")
        self.command = command
        self.reason = reason
        self.exit_code = exit_code


class SampleError(OwlError):
    """Process state could not be read."""


class SendError(OwlError):
    """A heartbeat datagram could not be sent."""


class DecodeError(OwlError, ValueError):
    """Malformed wire payload."""
