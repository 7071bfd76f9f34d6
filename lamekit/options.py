"""
Option validation for the LAME command line.

This module provides LameOptions, which validates a caller supplied option
mapping and translates it into the ordered list of argument tokens expected by
the LAME binary. Each recognised option name owns one handler in
OPTION_HANDLERS; a handler returns None (option contributes nothing) or the
list of tokens to append. Unknown names are rejected.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from lamekit.errors import InvalidOptionError

logger = logging.getLogger(__name__)

Tokens = Optional[List[str]]
Handler = Callable[[Any], Tokens]

SAMPLE_FREQUENCIES = (8, 11.025, 12, 16, 22.05, 24, 32, 44.1, 48)
BIT_WIDTHS = (8, 16, 24, 32)
CHANNEL_MODES = ("s", "j", "f", "d", "m", "l", "r", "a")
BITRATES = (8, 16, 24, 32, 40, 48, 56, 64, 80, 96, 112, 128, 144, 160, 192, 224, 256, 320)
NOASM_VALUES = ("mmx", "3dnow", "sse")
EMPHASIS_VALUES = ("n", 5, "c")
PRESET_KEYWORDS = ("medium", "standard", "extreme", "insane")
FREEFORMAT_ALIASES = ("FreeAmp", "in_mpg123", "l3dec", "LAME", "MAD")
HELP_TOPICS = ("id3", "dev")
PRIORITY_LEVELS = range(0, 5)

# Preset bitrates accepted by "--preset <kbps>" (ABR) and "--preset cbr <kbps>"
PRESET_MIN_BITRATE = 8
PRESET_MAX_BITRATE = 320

META_VALUE_TAGS = {
    "title": "--tt",
    "artist": "--ta",
    "album": "--tl",
    "year": "--ty",
    "comment": "--tc",
    "track": "--tn",
    "genre": "--tg",
    "artwork": "--ti",
    "genre-list": "--genre-list",
    "pad-id3v2-size": "--pad-id3v2-size",
}

META_FLAGS = (
    "add-id3v2",
    "id3v1-only",
    "id3v2-only",
    "id3v2-latin1",
    "id3v2-utf16",
    "space-id3v1",
    "pad-id3v2",
    "ignore-tag-errors",
)

CUSTOM_TAG_FLAG = "--custom-tag"

PRESET_ERROR = (
    "lame: Invalid option: 'preset' must be a supported preset keyword, numeric bitrate, "
    "or preset tuple like 'fast <value>' or 'cbr <bitrate>'."
)


def _invalid(message: str) -> InvalidOptionError:
    return InvalidOptionError(f"lame: Invalid option: {message}")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_finite_number(value: Any) -> bool:
    return _is_number(value) and math.isfinite(value)


def format_value(value: Any) -> str:
    """Render an option value the way the LAME command line expects it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _describe(values: Iterable[Any], quote: bool = False) -> str:
    rendered = [f"'{v}'" if quote and isinstance(v, str) else format_value(v) for v in values]
    return ", ".join(rendered[:-1]) + " or " + rendered[-1]


def _in_domain(value: Any, domain: Tuple[Any, ...]) -> bool:
    if isinstance(value, bool):
        return False
    for candidate in domain:
        if isinstance(candidate, str) != isinstance(value, str):
            continue
        if value == candidate:
            return True
    return False


# ---------------------------------------------------------------------------
# Handler factories
# ---------------------------------------------------------------------------

def _flag(token: str) -> Handler:
    """Flag enabled only by a literal True; any other value contributes nothing."""
    def handler(value: Any) -> Tokens:
        return [token] if value is True else None
    return handler


def _strict_flag(name: str, token: str) -> Handler:
    """Flag that must be a bool (or None) and contributes its token when True."""
    def handler(value: Any) -> Tokens:
        if value is None or value is False:
            return None
        if value is True:
            return [token]
        raise _invalid(f"'{name}' must be boolean.")
    return handler


def _enum(name: str, token: str, domain: Tuple[Any, ...], message: Optional[str] = None) -> Handler:
    error = message or f"'{name}' is not in range of {_describe(domain, quote=True)}."

    def handler(value: Any) -> Tokens:
        if _in_domain(value, domain):
            return [token, format_value(value)]
        raise _invalid(error)
    return handler


def _number_range(name: str, token: str, low: float, high: float, message: str) -> Handler:
    def handler(value: Any) -> Tokens:
        if _is_finite_number(value) and low <= value <= high:
            return [token, format_value(value)]
        raise _invalid(message)
    return handler


def _finite(name: str, token: str) -> Handler:
    def handler(value: Any) -> Tokens:
        if value is None:
            return None
        if not _is_finite_number(value):
            raise _invalid(f"'{name}' must be a finite number.")
        return [token, format_value(value)]
    return handler


def _path(name: str, token: str) -> Handler:
    def handler(value: Any) -> Tokens:
        if value is None:
            return None
        if not isinstance(value, str) or value.strip() == "":
            raise _invalid(f"'{name}' must be a non-empty string path.")
        return [token, value]
    return handler


def _topic(name: str, token: str) -> Handler:
    def handler(value: Any) -> Tokens:
        if value is None or value is False:
            return None
        if value is True:
            return [token]
        if isinstance(value, str) and value in HELP_TOPICS:
            return [token, value]
        raise _invalid(f"'{name}' must be boolean or one of 'id3', 'dev'.")
    return handler


# ---------------------------------------------------------------------------
# Options with bespoke validation
# ---------------------------------------------------------------------------

def _gain(value: Any) -> Tokens:
    if value is None:
        return None
    if _is_finite_number(value) and -20 <= value <= 12:
        return ["--gain", format_value(value)]
    raise _invalid("'gain' must be a number between -20 and 12.")


def _freeformat(value: Any) -> Tokens:
    if value is None or value is False:
        return None
    if value is True:
        return ["--freeformat"]
    if isinstance(value, str):
        # Older releases took a decoder name; the flag itself is all LAME needs
        if value in FREEFORMAT_ALIASES:
            return ["--freeformat"]
        raise _invalid(
            "'freeformat' string value must be one of 'FreeAmp', 'in_mpg123', 'l3dec', 'LAME', 'MAD'."
        )
    raise _invalid("'freeformat' must be boolean.")


def _is_preset_bitrate(word: str) -> bool:
    return word.isdigit() and PRESET_MIN_BITRATE <= int(word) <= PRESET_MAX_BITRATE


def _preset(value: Any) -> Tokens:
    if value is None:
        return None

    if _is_number(value):
        if _is_finite_number(value) and float(value).is_integer() \
                and PRESET_MIN_BITRATE <= value <= PRESET_MAX_BITRATE:
            return ["--preset", format_value(value)]
        raise InvalidOptionError(PRESET_ERROR)

    if not isinstance(value, str):
        raise InvalidOptionError(PRESET_ERROR)

    words = value.split()
    if not words:
        raise _invalid("'preset' cannot be empty.")

    if len(words) == 1:
        word = words[0]
        if word in PRESET_KEYWORDS or _is_preset_bitrate(word):
            return ["--preset", word]
    elif len(words) == 2:
        prefix, word = words
        if prefix == "fast" and (word in PRESET_KEYWORDS or _is_preset_bitrate(word)):
            return ["--preset", prefix, word]
        if prefix == "cbr" and _is_preset_bitrate(word):
            return ["--preset", prefix, word]

    raise InvalidOptionError(PRESET_ERROR)


def _nogap(value: Any) -> Tokens:
    if value is None:
        return None
    if (
        not isinstance(value, (list, tuple))
        or len(value) == 0
        or not all(isinstance(item, str) and item.strip() != "" for item in value)
    ):
        raise _invalid("'nogap' must be a non-empty array of file paths.")
    return ["--nogap", *value]


def _priority(value: Any) -> Tokens:
    if value is None:
        return None
    if _is_finite_number(value) and float(value).is_integer() and int(value) in PRIORITY_LEVELS:
        return ["--priority", format_value(value)]
    raise _invalid("'priority' must be an integer between 0 and 4.")


def _disptime(value: Any) -> Tokens:
    if value is None or value is False:
        return None
    if _is_finite_number(value) and value > 0:
        return ["--disptime", format_value(value)]
    raise _invalid(
        "'disptime' must be a positive number of seconds or false to disable progress output."
    )


def _custom_frame(frame_id: Any, value: Any) -> List[str]:
    if not isinstance(frame_id, str) or frame_id.strip() == "":
        raise _invalid("'meta.custom' frame id must be a non-empty string.")
    return [CUSTOM_TAG_FLAG, f"{frame_id}={format_value(value)}"]


def _custom_frames(payload: Any) -> List[str]:
    if payload is None:
        return []

    tokens: List[str] = []

    if isinstance(payload, Mapping):
        for frame_id, value in payload.items():
            tokens.extend(_custom_frame(frame_id, value))
        return tokens

    if not isinstance(payload, (list, tuple)):
        raise _invalid("'meta.custom' must be an array or object.")

    for entry in payload:
        if isinstance(entry, str):
            frame_id, sep, value = entry.partition("=")
            if not sep:
                raise _invalid("'meta.custom' array entries must be 'id=value'.")
            tokens.extend(_custom_frame(frame_id, value))
        elif isinstance(entry, (list, tuple)) and len(entry) == 2:
            tokens.extend(_custom_frame(entry[0], entry[1]))
        elif isinstance(entry, Mapping) and "id" in entry and "value" in entry:
            tokens.extend(_custom_frame(entry["id"], entry["value"]))
        else:
            raise _invalid(
                "'meta.custom' array entries must be strings, tuples, or objects with id/value."
            )

    return tokens


def _meta(value: Any) -> Tokens:
    """
    Expand the metadata block into ID3 tag arguments.

    Value tags become two tokens, tag flags one token, and every custom frame
    a `--custom-tag id=value` pair.
    """
    if not isinstance(value, Mapping):
        raise _invalid("'meta' must be an object.")

    tokens: List[str] = []
    for key, item in value.items():
        if key in META_VALUE_TAGS:
            if item is None:
                continue
            tokens.extend([META_VALUE_TAGS[key], format_value(item)])
        elif key in META_FLAGS:
            if item:
                tokens.append(f"--{key}")
        elif key == "custom":
            tokens.extend(_custom_frames(item))
        else:
            raise _invalid(f"'meta' unknown property '{key}'")

    return tokens


_SFREQ_RANGE = "is not in range of 8, 11.025, 12, 16, 22.05, 24, 32, 44.1 or 48."
_BITRATE_RANGE = (
    "is not in range of 8, 16, 24, 32, 40, 48, 56, 64, 80, 96, 112, 128, 144, 160, 192, "
    "224, 256 or 320."
)

OPTION_HANDLERS: Dict[str, Handler] = {
    # Input format
    "raw": _flag("-r"),
    "swap-bytes": _flag("-x"),
    "swap-channel": _flag("--swap-channel"),
    "gain": _gain,
    "sfreq": _enum("sfreq", "-s", SAMPLE_FREQUENCIES, f"'sfreq' {_SFREQ_RANGE}"),
    "bitwidth": _enum("bitwidth", "--bitwidth", BIT_WIDTHS),
    "signed": _flag("--signed"),
    "unsigned": _flag("--unsigned"),
    "little-endian": _flag("--little-endian"),
    "big-endian": _flag("--big-endian"),
    "mp1Input": _flag("--mp1input"),
    "mp2Input": _flag("--mp2input"),
    "mp3Input": _flag("--mp3input"),
    # Channels and stream layout
    "mode": _enum("mode", "-m", CHANNEL_MODES),
    "to-mono": _flag("-a"),
    "channel-different-block-sizes": _flag("-d"),
    "freeformat": _freeformat,
    "disable-info-tag": _flag("-t"),
    # Gapless album encoding
    "nogap": _nogap,
    "nogapout": _path("nogapout", "--nogapout"),
    "nogaptags": _strict_flag("nogaptags", "--nogaptags"),
    "out-dir": _path("out-dir", "--out-dir"),
    # Level and ReplayGain
    "comp": _finite("comp", "--comp"),
    "scale": _finite("scale", "--scale"),
    "scale-l": _finite("scale-l", "--scale-l"),
    "scale-r": _finite("scale-r", "--scale-r"),
    "replaygain-fast": _flag("--replaygain-fast"),
    "replaygain-accurate": _flag("--replaygain-accurate"),
    "no-replaygain": _flag("--noreplaygain"),
    "clip-detect": _flag("--clipdetect"),
    # Bitrate / quality / VBR family
    "preset": _preset,
    "noasm": _enum("noasm", "--noasm", NOASM_VALUES),
    "quality": _number_range("quality", "-q", 0, 9, "'quality' is not in range of 0 to 9."),
    "quality-high": _strict_flag("quality-high", "-h"),
    "fast-encoding": _strict_flag("fast-encoding", "-f"),
    "bitrate": _enum("bitrate", "-b", BITRATES, f"'bitrate' {_BITRATE_RANGE}"),
    "max-bitrate": _enum("max-bitrate", "-B", BITRATES, f"'max-bitrate' {_BITRATE_RANGE}"),
    "force-bitrate": _flag("-F"),
    "cbr": _flag("--cbr"),
    "abr": _number_range("abr", "--abr", 8, 310, "'abr' is not in range of 8 to 310."),
    "vbr": _flag("-v"),
    "vbr-quality": _number_range(
        "vbr-quality", "-V", 0, 9, "'vbrQuality' is not in range of 0 to 9."
    ),
    "vbr-old": _strict_flag("vbr-old", "--vbr-old"),
    "vbr-new": _strict_flag("vbr-new", "--vbr-new"),
    "ignore-noise-in-sfb21": _flag("-Y"),
    # Bitstream flags
    "emp": _enum("emp", "-e", EMPHASIS_VALUES, "'emp' is not in range of 'n', 5 or 'c'."),
    "mark-as-copyrighted": _flag("-c"),
    "mark-as-copy": _flag("-o"),
    "crc-error-protection": _flag("-p"),
    "nores": _flag("--nores"),
    "strictly-enforce-ISO": _flag("--strictly-enforce-ISO"),
    # Filters and resampling
    "lowpass": _finite("lowpass", "--lowpass"),
    "lowpass-width": _finite("lowpass-width", "--lowpass-width"),
    "highpass": _finite("highpass", "--highpass"),
    "highpass-width": _finite("highpass-width", "--highpass-width"),
    "resample": _enum("resample", "--resample", SAMPLE_FREQUENCIES, f"'resample' {_SFREQ_RANGE}"),
    "decode-mp3delay": _finite("decode-mp3delay", "--decode-mp3delay"),
    # Process and console behaviour
    "priority": _priority,
    "disptime": _disptime,
    "silent": _strict_flag("silent", "--silent"),
    "quiet": _strict_flag("quiet", "--quiet"),
    "verbose": _strict_flag("verbose", "--verbose"),
    "help": _topic("help", "--help"),
    "usage": _topic("usage", "--usage"),
    "longhelp": _strict_flag("longhelp", "--longhelp"),
    "version": _strict_flag("version", "--version"),
    "license": _strict_flag("license", "--license"),
    "no-histogram": _strict_flag("no-histogram", "--nohist"),
    # ID3 tags
    "meta": _meta,
}


class LameOptions:
    """
    Validated LAME option set.

    Construction validates every key in caller order and builds the argument
    token list once; the instance is immutable afterwards.

    Attributes:
        output: The output target ("buffer", "stream" or a file path)
    """

    def __init__(self, options: Mapping[str, Any]) -> None:
        """
        Validate options and build the argument list.

        Args:
            options: Mapping of option name to value; must contain "output"

        Raises:
            InvalidOptionError: If output is missing, a value is out of its
                domain, or a key is unknown
        """
        if not isinstance(options, Mapping):
            raise _invalid("options must be a mapping.")

        if options.get("output") is None:
            raise _invalid("'output' is required")

        self.output = options["output"]
        self._args: List[str] = []
        self._use_default_disptime = True

        for key, value in options.items():
            if key == "output":
                continue

            handler = OPTION_HANDLERS.get(key)
            if handler is None:
                raise InvalidOptionError(f"Unknown parameter {key}")

            if key == "disptime":
                self._use_default_disptime = False

            tokens = handler(value)
            if tokens:
                self._args.extend(tokens)

        logger.debug(f"Built LAME arguments: {self._args}")

    def get_arguments(self) -> List[str]:
        """Return a copy of the validated argument tokens."""
        return list(self._args)

    def should_use_default_disptime(self) -> bool:
        """True when the caller did not configure the progress interval."""
        return self._use_default_disptime

    def __repr__(self) -> str:
        return f"LameOptions(output={self.output!r}, args={self._args!r})"
