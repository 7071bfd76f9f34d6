"""
Exception types raised by lamekit.

Validation and setup errors are raised synchronously to the caller. Process
and post-processing errors travel through a session's event channel and are
re-raised by the blocking entry points (Lame.encode(), ProcessSession.wait()).
"""

from __future__ import annotations

from typing import Optional


class LameError(Exception):
    """Base class for every error raised by lamekit."""


class InvalidOptionError(LameError, ValueError):
    """An option key is unknown or its value lies outside its domain."""


class LameSetupError(LameError):
    """Input/output setup is invalid (missing file, bad buffer, empty path)."""


class LameProcessError(LameError):
    """
    The LAME subprocess failed.

    Raised for spawn failures, non-zero exits and warning/error lines the
    binary printed. exit_code is set when the failure came from the exit status.
    """

    def __init__(self, message: str, exit_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class UnexpectedOutputError(LameError):
    """Reading the temporary output file did not yield bytes."""


class StreamFinishedError(LameError):
    """A write or end() was attempted on a stream that already finished."""

    def __init__(self, message: str = "lame: Stream has already finished") -> None:
        super().__init__(message)
