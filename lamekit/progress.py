"""
Line classifier for LAME console output.

LAME reports progress differently per direction:
- encode: a frame table row containing "( NN%)|" and an "MM:SS " ETA column
- decode: a "current/total" frame counter

classify() is a pure function over one line; ProcessSession applies it to
every line read from the subprocess.
"""

from __future__ import annotations

import enum
import math
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

# Printed by LAME after it wrote the info tag, i.e. the encode is complete
LAME_TAG_MESSAGE = "Writing LAME Tag...done"

CLI_PREFIX = "lame: "
WARNING_PREFIX = "Warning: "
ERROR_MARKER = "Error "

_ENCODE_PROGRESS_RE = re.compile(r"\(\s*([0-9]{1,2}|100)%\)\|")
_ENCODE_ETA_RE = re.compile(r"[0-9]{1,2}:[0-9][0-9] ")
_DECODE_PROGRESS_RE = re.compile(r"([0-9]{1,10})/([0-9]{1,10})")
_LINE_SPLIT_RE = re.compile(r"[\r\n]+")


class Direction(enum.Enum):
    """Codec direction of a session."""
    ENCODE = "encode"
    DECODE = "decode"

    @classmethod
    def parse(cls, value: Union["Direction", str]) -> "Direction":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown direction: {value!r} (must be 'encode' or 'decode')")


@dataclass(frozen=True)
class Progress:
    """
    Progress report parsed from a line.

    percent is None when the line was a progress line whose value could not
    be computed (decode counter with a zero total). Such results must not
    change any state.
    """
    percent: Optional[int]
    eta: Optional[str] = None


@dataclass(frozen=True)
class Complete:
    """The completion sentinel was printed."""


@dataclass(frozen=True)
class CliWarning:
    """A warning or error line, normalized to start with "lame: "."""
    message: str


@dataclass(frozen=True)
class Unrecognized:
    """Any line that carries no information for the session."""


LineKind = Union[Progress, Complete, CliWarning, Unrecognized]

_UNRECOGNIZED = Unrecognized()
_COMPLETE = Complete()


def split_lines(payload: Union[bytes, str]) -> List[str]:
    """Split a raw output chunk into trimmed, non-empty lines."""
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")
    return [line.strip() for line in _LINE_SPLIT_RE.split(payload) if line.strip()]


def parse_encode_progress_line(content: str) -> Optional[Tuple[int, Optional[str]]]:
    """Return (percent, eta) for an encode frame table row, else None."""
    progress_match = _ENCODE_PROGRESS_RE.search(content)
    if not progress_match:
        return None

    eta_match = _ENCODE_ETA_RE.search(content)
    eta = eta_match.group(0).strip() if eta_match else None
    return int(progress_match.group(1)), eta


def parse_decode_progress_line(content: str) -> Optional[float]:
    """
    Return the decode percentage for a "current/total" counter, else None.

    A zero total yields NaN.
    """
    match = _DECODE_PROGRESS_RE.search(content)
    if not match:
        return None

    current, total = int(match.group(1)), int(match.group(2))
    if total == 0:
        return math.nan
    return float(current * 100 // total)


def normalize_cli_message(content: str) -> Optional[str]:
    """Return the "lame: " prefixed message for warning/error lines, else None."""
    if (
        content.startswith(CLI_PREFIX)
        or content.startswith(WARNING_PREFIX)
        or ERROR_MARKER in content
    ):
        return content if content.startswith(CLI_PREFIX) else f"{CLI_PREFIX}{content}"
    return None


def classify(line: str, direction: Union[Direction, str]) -> LineKind:
    """
    Classify one line of LAME output.

    Args:
        line: A single output line (surrounding whitespace is ignored)
        direction: Direction.ENCODE or Direction.DECODE

    Returns:
        Progress, Complete, CliWarning or Unrecognized
    """
    content = line.strip()
    if not content:
        return _UNRECOGNIZED

    if LAME_TAG_MESSAGE in content:
        return _COMPLETE

    if Direction.parse(direction) is Direction.ENCODE:
        parsed = parse_encode_progress_line(content)
        if parsed is not None:
            return Progress(percent=parsed[0], eta=parsed[1])
    else:
        decoded = parse_decode_progress_line(content)
        if decoded is not None:
            return Progress(percent=None if math.isnan(decoded) else int(decoded))

    message = normalize_cli_message(content)
    if message is not None:
        return CliWarning(message)

    return _UNRECOGNIZED
