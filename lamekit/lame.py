"""
Whole-file and whole-buffer conversions through the LAME binary.

Lame persists buffer input to a temporary file, runs one ProcessSession
to completion and reads buffer output back from a temporary file. Temporary
artifacts are removed whether the conversion succeeds or fails.
"""

import logging
import os
import queue
import secrets
from typing import Any, Mapping, Optional, Tuple, Union

import numpy as np

from lamekit import binary
from lamekit.config import LameConfig, get_global_config
from lamekit.errors import InvalidOptionError, LameSetupError, UnexpectedOutputError
from lamekit.options import LameOptions
from lamekit.pcm import float_to_pcm
from lamekit.process import (
    EventListener,
    ProcessSession,
    SessionEvent,
    Status,
    build_spawn_args,
    create_initial_status,
)
from lamekit.progress import Direction

logger = logging.getLogger(__name__)

BUFFER_OUTPUT = "buffer"
STREAM_OUTPUT = "stream"

RAW_DIR_NAME = "raw"
ENCODED_DIR_NAME = "encoded"

STREAM_MODE_MESSAGE = (
    "lame: The streaming output mode requires create_encoder_stream or create_decoder_stream"
)
NOT_PROCESSED_MESSAGE = "Audio is not yet decoded/encoded"

BufferInput = Union[bytes, bytearray, memoryview, np.ndarray]


class Lame:
    """
    Encode or decode one file or in-memory buffer with LAME.

    Example:
        lame = Lame({"output": "buffer", "bitrate": 192})
        mp3 = lame.set_file("input.wav").encode().get_buffer()

    Attributes:
        events: Queue receiving the progress/finish/error events of each run
    """

    def __init__(
        self,
        options: Mapping[str, Any],
        config: Optional[LameConfig] = None,
        on_event: Optional[EventListener] = None,
    ) -> None:
        """
        Validate options.

        Args:
            options: LAME options; "output" is "buffer" or a file path
            config: Configuration (default: global config)
            on_event: Optional listener for progress/finish/error events

        Raises:
            InvalidOptionError: For invalid options or output == "stream"
        """
        if isinstance(options, Mapping) and options.get("output") == STREAM_OUTPUT:
            raise InvalidOptionError(STREAM_MODE_MESSAGE)

        self._config = config or get_global_config()
        self._builder = LameOptions(options)
        self._options = dict(options)
        self._lame_path = self._config.binary_path or binary.resolve_executable()
        self._temp_path = self._config.temp_dir

        self.events: "queue.Queue[SessionEvent]" = queue.Queue()
        self._on_event = on_event
        self._session: Optional[ProcessSession] = None

        self._file_path: Optional[str] = None
        self._file_buffer: Optional[bytes] = None
        self._input_temp_path: Optional[str] = None

        self._progressed_file_path: Optional[str] = None
        self._progressed_buffer: Optional[bytes] = None
        self._output_temp_path: Optional[str] = None

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def set_file(self, path: str) -> "Lame":
        """Use an existing audio file as input."""
        if not path or not os.path.exists(path):
            raise LameSetupError("Audio file (path) does not exist")

        self._file_path = str(path)
        self._file_buffer = None
        return self

    def set_buffer(self, data: BufferInput) -> "Lame":
        """
        Use in-memory audio as input.

        Float arrays (numpy float arrays or float memoryviews) are converted
        to fixed-point PCM using the bitwidth, endianness and signedness
        options. Other arrays are used as their raw bytes.

        Raises:
            LameSetupError: If data is not a supported buffer type
            InvalidOptionError: If the float conversion is not supported for
                the configured sample format
        """
        self._file_buffer = self._normalize_input_buffer(data)
        self._file_path = None
        return self

    def set_lame_path(self, path: str) -> "Lame":
        if not isinstance(path, str) or not path.strip():
            raise LameSetupError("Lame path must be a non-empty string")
        self._lame_path = path
        return self

    def set_temp_path(self, path: str) -> "Lame":
        if not isinstance(path, str) or not path.strip():
            raise LameSetupError("Temp path must be a non-empty string")
        self._temp_path = path
        return self

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def get_file(self) -> str:
        if self._progressed_file_path is None:
            raise LameSetupError(NOT_PROCESSED_MESSAGE)
        return self._progressed_file_path

    def get_buffer(self) -> bytes:
        if self._progressed_buffer is None:
            raise LameSetupError(NOT_PROCESSED_MESSAGE)
        return self._progressed_buffer

    def get_status(self) -> Status:
        if self._session is None:
            return create_initial_status()
        return self._session.status

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def encode(self) -> "Lame":
        """
        Encode the input. Blocks until LAME finished.

        Raises:
            LameSetupError: If no input was set
            LameProcessError: If LAME failed
            UnexpectedOutputError: If the buffer output could not be read back
        """
        return self._execute(Direction.ENCODE)

    def decode(self) -> "Lame":
        """Decode the input. Blocks until LAME finished; see encode()."""
        return self._execute(Direction.DECODE)

    def _execute(self, direction: Direction) -> "Lame":
        if self._file_path is None and self._file_buffer is None:
            raise LameSetupError("Audio file to encode is not set")

        self._progressed_buffer = None
        self._progressed_file_path = None
        try:
            input_path = self._file_path
            if input_path is None:
                input_path = self._persist_input_buffer(direction)
            self._run(input_path, direction)
        finally:
            self._remove_temp_artifacts()
        return self

    def _run(self, input_path: str, direction: Direction) -> None:
        output_path, buffer_output = self._prepare_output_target(direction)
        spawn_args = build_spawn_args(
            self._builder, direction, input_path, output_path, self._config.default_disptime
        )

        session = ProcessSession(
            direction,
            spawn_args,
            executable=self._lame_path,
            progress_sources=("stdout", "stderr"),
            complete_on_tag=True,
            on_event=self._forward_event,
            read_chunk_size=self._config.read_chunk_size,
        )
        self._session = session

        logger.info(f"Running LAME {direction.value}: {input_path} -> {output_path}")
        session.start()
        # Input comes from a file; LAME never reads stdin here
        session.close_stdin()
        try:
            session.wait()
        finally:
            # The tag line can arrive before LAME closed its output file
            session.join()

        if buffer_output:
            self._progressed_buffer = self._read_output(output_path)
        else:
            self._progressed_file_path = output_path
        logger.info(f"LAME {direction.value} finished")

    def _forward_event(self, event: SessionEvent) -> None:
        self.events.put(event)
        listener = self._on_event
        if listener is not None:
            listener(event)

    # ------------------------------------------------------------------
    # Buffers and temporary files
    # ------------------------------------------------------------------

    def _normalize_input_buffer(self, data: Any) -> bytes:
        if isinstance(data, (bytes, bytearray)):
            return bytes(data)

        if isinstance(data, (np.ndarray, memoryview)):
            array = np.asarray(data)
            if np.issubdtype(array.dtype, np.floating):
                return self._convert_float_array(array)
            return np.ascontiguousarray(array).tobytes()

        raise LameSetupError("Audio file (buffer) does not exist")

    def _convert_float_array(self, array: np.ndarray) -> bytes:
        bitwidth = self._options.get("bitwidth", 16)
        big_endian = self._options.get("big-endian") is True

        signed: Optional[bool] = None
        if self._options.get("unsigned") is True:
            signed = False
        elif self._options.get("signed") is True:
            signed = True

        return float_to_pcm(array, bitwidth=bitwidth, big_endian=big_endian, signed=signed)

    def _temp_file_path(self, kind: str, direction: Direction) -> str:
        directory = os.path.join(self._temp_path, kind)
        os.makedirs(directory, exist_ok=True)

        token = secrets.token_hex(16)
        extension = ".mp3" if kind == RAW_DIR_NAME and direction is Direction.DECODE else ""
        return os.path.join(directory, f"{token}{extension}")

    def _persist_input_buffer(self, direction: Direction) -> str:
        path = self._temp_file_path(RAW_DIR_NAME, direction)
        self._input_temp_path = path
        with open(path, "wb") as f:
            f.write(self._file_buffer)
        logger.debug(f"Wrote {len(self._file_buffer)} input bytes to {path}")
        return path

    def _prepare_output_target(self, direction: Direction) -> Tuple[str, bool]:
        output = self._options["output"]
        if output == BUFFER_OUTPUT:
            path = self._temp_file_path(ENCODED_DIR_NAME, direction)
            self._output_temp_path = path
            return path, True

        path = str(output)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        return path, False

    def _read_output(self, path: str) -> bytes:
        with open(path, "rb") as f:
            data = f.read()
        if not isinstance(data, bytes):
            raise UnexpectedOutputError("Unexpected output format received from temporary file")
        return data

    def _remove_temp_artifacts(self) -> None:
        for attr in ("_input_temp_path", "_output_temp_path"):
            path = getattr(self, attr)
            if path is None:
                continue
            setattr(self, attr, None)
            try:
                os.unlink(path)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Could not remove temporary file {path}: {e}")
