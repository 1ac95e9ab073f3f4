"""
ReplayTap Errors

Exception hierarchy raised by the replay subsystem. None of these abort a
replay run: the replayer turns them into failed test cases.
"""

from typing import Optional


class ReplayError(Exception):
    """Base class for all replay errors."""


class ConfigError(ReplayError, ValueError):
    """Invalid replay or noise configuration."""


class ParseError(ReplayError, ValueError):
    """A captured URL could not be parsed."""

    def __init__(self, url: str, reason: str = ""):
        self.url = url
        message = f"Failed to parse URL: {url!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class MissingTargetHostError(ReplayError):
    """No replacement host is available for redirecting a captured request."""

    def __init__(self, url: str):
        self.url = url
        super().__init__(
            f"Failed to replace host of {url!r}: no target host available "
            f"(could the container address not be determined?)"
        )


class UnsupportedProtocolError(ReplayError):
    """A test case carries a protocol kind no emulator is registered for."""

    def __init__(self, kind: str, test_case: Optional[str] = None):
        self.kind = kind
        self.test_case = test_case
        target = f" for test case {test_case!r}" if test_case else ""
        super().__init__(f"Unsupported protocol kind {kind!r}{target}")


class SimulationError(ReplayError):
    """Replaying a request against the system under test failed."""

    def __init__(self, message: str, test_case: Optional[str] = None):
        self.test_case = test_case
        super().__init__(message)


class SimulationTimeoutError(SimulationError):
    """The system under test did not answer within the timeout."""
