"""
lamekit: drive the LAME MP3 encoder/decoder as a subprocess.

This package provides:
- Lame: whole-file / whole-buffer encode and decode
- LameStream: full-duplex streaming through a LAME process
- ProcessSession: the supervised LAME process with progress tracking
- LameOptions: option validation and argument building
"""

from lamekit.config import LameConfig, get_global_config, load_config
from lamekit.errors import (
    InvalidOptionError,
    LameError,
    LameProcessError,
    LameSetupError,
    StreamFinishedError,
    UnexpectedOutputError,
)
from lamekit.lame import Lame
from lamekit.logging_setup import configure_logging
from lamekit.options import LameOptions
from lamekit.pcm import float_to_pcm
from lamekit.process import (
    ErrorEvent,
    FinishEvent,
    ProcessSession,
    ProgressEvent,
    SessionState,
    Status,
    build_spawn_args,
    create_initial_status,
)
from lamekit.progress import (
    Direction,
    classify,
    normalize_cli_message,
    parse_decode_progress_line,
    parse_encode_progress_line,
)
from lamekit.stream import LameStream, create_decoder_stream, create_encoder_stream

__all__ = [
    "Lame",
    "LameStream",
    "create_encoder_stream",
    "create_decoder_stream",
    "LameOptions",
    "ProcessSession",
    "SessionState",
    "Status",
    "ProgressEvent",
    "FinishEvent",
    "ErrorEvent",
    "build_spawn_args",
    "create_initial_status",
    "Direction",
    "classify",
    "normalize_cli_message",
    "parse_encode_progress_line",
    "parse_decode_progress_line",
    "float_to_pcm",
    "LameConfig",
    "load_config",
    "get_global_config",
    "configure_logging",
    "LameError",
    "InvalidOptionError",
    "LameSetupError",
    "LameProcessError",
    "UnexpectedOutputError",
    "StreamFinishedError",
]
