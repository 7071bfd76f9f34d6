"""
Full-duplex streaming over a LAME process.

LameStream feeds bytes written by the caller to LAME's stdin and hands
LAME's stdout back through read()/iteration. Both directions apply
backpressure:

- write() blocks while more than high_water_bytes are queued but not yet
  accepted by the process
- the stdout drain stops reading from the process while the read queue
  is full, and continues once the consumer calls read()
"""

import logging
import queue
import threading
import time
from typing import Any, Callable, Iterator, Mapping, Optional

from lamekit.config import LameConfig, get_global_config
from lamekit.errors import InvalidOptionError, StreamFinishedError
from lamekit.options import LameOptions
from lamekit.process import (
    ErrorEvent,
    EventListener,
    FinishEvent,
    ProcessSession,
    SessionEvent,
    Status,
    build_spawn_args,
)
from lamekit.progress import Direction

logger = logging.getLogger(__name__)

STREAM_MODES = ("encode", "decode")
STREAM_OUTPUT = "stream"

INVALID_MODE_MESSAGE = 'lame: LameStream requires a mode of either "encode" or "decode"'
INPUT_CLOSED_MESSAGE = "lame: Input stream closed before drain"

# Poll interval for blocking queue operations that must notice teardown
POLL_INTERVAL = 0.05

# Seconds to let the process report its own error after stdin broke
STDIN_ERROR_GRACE_SECONDS = 2.0

_EOF = object()
_END = object()
_STOP = object()


class LameStream:
    """
    Duplex byte stream through one LAME process.

    The process is spawned on construction with "-" as input and output.
    Progress is parsed from stderr only; stdout carries the audio.

    Output has to be consumed while input is written; with nobody reading,
    LAME stops reading stdin once the read queue is full and write() blocks.

    Example:
        chunks = []
        with create_encoder_stream({"bitrate": 192}) as stream:
            reader = threading.Thread(target=lambda: chunks.extend(stream))
            reader.start()
            stream.write(pcm_bytes)
        reader.join()
        mp3 = b"".join(chunks)

    Attributes:
        mode: "encode" or "decode"
        events: Queue receiving progress, finish and error events
    """

    def __init__(
        self,
        mode: str,
        options: Optional[Mapping[str, Any]] = None,
        binary_path: Optional[str] = None,
        config: Optional[LameConfig] = None,
        on_event: Optional[EventListener] = None,
    ) -> None:
        """
        Validate options and spawn the process.

        Args:
            mode: "encode" or "decode"
            options: LAME options (any "output" entry is replaced by "stream")
            binary_path: Executable to run (default: resolved binary)
            config: Configuration (default: global config)
            on_event: Optional listener for progress/finish/error events

        Raises:
            InvalidOptionError: For an invalid mode or invalid options
        """
        if mode not in STREAM_MODES:
            raise InvalidOptionError(INVALID_MODE_MESSAGE)

        config = config or get_global_config()
        normalized = dict(options or {})
        normalized["output"] = STREAM_OUTPUT

        self.mode = mode
        self.events: "queue.Queue[SessionEvent]" = queue.Queue()
        self._on_event = on_event
        self._options = LameOptions(normalized)
        self._high_water = config.stream_high_water_bytes

        self._cond = threading.Condition()
        self._pending_bytes = 0
        self._input_closed = False
        self._ending = False
        self._finished = False
        self._destroyed = False
        self._error: Optional[BaseException] = None
        self._eof = False
        self._paused = False

        self._write_queue: "queue.Queue[Any]" = queue.Queue()
        self._read_queue: "queue.Queue[Any]" = queue.Queue(maxsize=config.stream_read_queue_chunks)

        spawn_args = build_spawn_args(
            self._options, Direction.parse(mode), "-", "-", config.default_disptime
        )
        self._session = ProcessSession(
            mode,
            spawn_args,
            executable=binary_path or config.binary_path,
            progress_sources=("stderr",),
            complete_on_tag=True,
            on_event=self._handle_session_event,
            on_stdout_data=self._forward_stdout,
            on_stdout_end=self._handle_stdout_end,
            read_chunk_size=config.read_chunk_size,
        )

        self._writer_thread = threading.Thread(
            target=self._writer_loop, daemon=True, name="LameStreamWriter"
        )
        self._writer_thread.start()
        self._session.start()

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def write(self, chunk: bytes) -> None:
        """
        Queue chunk for the process input.

        Blocks while the amount of queued input is above the high-water mark.

        Raises:
            StreamFinishedError: If the stream finished, failed, was ended
                or the process input is closed
        """
        data = bytes(chunk)
        with self._cond:
            if self._finished or self._ending or self._destroyed or self._input_closed:
                raise StreamFinishedError()
            if not data:
                return

            self._pending_bytes += len(data)
            self._write_queue.put(data)

            while self._pending_bytes > self._high_water:
                # The error itself reaches the caller through events and read()
                if self._finished or self._input_closed or self._destroyed:
                    raise StreamFinishedError(INPUT_CLOSED_MESSAGE)
                self._cond.wait()

    def end(self) -> None:
        """Close the process input once every queued chunk was written."""
        with self._cond:
            if self._ending or self._destroyed:
                return
            self._ending = True
        self._write_queue.put(_END)

    def _writer_loop(self) -> None:
        while True:
            item = self._write_queue.get()
            if item is _STOP:
                return
            if item is _END:
                self._session.close_stdin()
                self._mark_input_closed()
                return

            try:
                self._session.write_stdin(item)
            except ValueError:
                logger.debug("lame stdin closed while writing")
                self._mark_input_closed()
                return
            except OSError as e:
                logger.warning(f"Write error on lame stdin: {e}")
                self._mark_input_closed()
                # The process usually reports why it stopped reading
                self._session.join(timeout=STDIN_ERROR_GRACE_SECONDS)
                self._fail(e)
                return

            with self._cond:
                self._pending_bytes -= len(item)
                self._cond.notify_all()

    def _mark_input_closed(self) -> None:
        with self._cond:
            self._input_closed = True
            self._cond.notify_all()

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def read(self, timeout: Optional[float] = None) -> bytes:
        """
        Return the next chunk of process output, or b"" at end of stream.

        Raises:
            TimeoutError: If no chunk arrived within timeout
            LameError: The stream's error
        """
        if self._eof:
            return b""

        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            if self._error is not None:
                raise self._error
            if self._destroyed:
                return b""

            wait = POLL_INTERVAL
            if deadline is not None:
                wait = min(POLL_INTERVAL, max(0.0, deadline - time.monotonic()))
            try:
                item = self._read_queue.get(timeout=wait)
            except queue.Empty:
                if deadline is not None and time.monotonic() >= deadline:
                    raise TimeoutError("lame: Timed out waiting for stream output")
                continue

            if item is _EOF:
                self._eof = True
                # Output ended; the exit status decides whether it was complete
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                if not self._session.join(timeout=remaining):
                    self._eof = False
                    self._read_queue.put(_EOF)
                    raise TimeoutError("lame: Timed out waiting for the process to exit")
                if self._error is not None:
                    raise self._error
                return b""
            return item

    def __iter__(self) -> Iterator[bytes]:
        while True:
            chunk = self.read()
            if not chunk:
                return
            yield chunk

    def _put_output(self, item: Any) -> None:
        while not (self._destroyed or self._error is not None):
            try:
                self._read_queue.put(item, timeout=POLL_INTERVAL)
            except queue.Full:
                if not self._paused:
                    self._paused = True
                    logger.debug("Read queue full, pausing lame stdout")
                continue
            if self._paused:
                self._paused = False
                logger.debug("Resumed lame stdout")
            return

    def _forward_stdout(self, chunk: bytes) -> None:
        self._put_output(chunk)

    def _handle_stdout_end(self) -> None:
        self._put_output(_EOF)

    # ------------------------------------------------------------------
    # Events and teardown
    # ------------------------------------------------------------------

    def _emit(self, event: SessionEvent) -> None:
        self.events.put(event)
        listener = self._on_event
        if listener is not None:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Stream event listener failed: {e}", exc_info=True)

    def _handle_session_event(self, event: SessionEvent) -> None:
        if isinstance(event, ErrorEvent):
            self._fail(event.cause)
            return
        if isinstance(event, FinishEvent):
            with self._cond:
                self._finished = True
                self._cond.notify_all()
        self._emit(event)

    def _fail(self, error: BaseException) -> None:
        with self._cond:
            if self._error is not None or self._destroyed:
                return
            self._error = error
            self._finished = True
            self._cond.notify_all()

        logger.debug(f"LAME stream failed: {error}")
        self._session.detach()
        self._session.kill()
        self._write_queue.put(_STOP)
        self._emit(ErrorEvent(error))

    def destroy(self, error: Optional[BaseException] = None) -> None:
        """
        Kill the process and stop delivering callbacks.

        Args:
            error: Optional error to report as the stream's error event
        """
        if error is not None:
            self._fail(error)
            return

        with self._cond:
            if self._destroyed:
                return
            self._destroyed = True
            self._finished = True
            self._cond.notify_all()

        self._session.detach()
        self._session.kill()
        self._write_queue.put(_STOP)
        logger.debug("LAME stream destroyed")

    def wait(self, timeout: Optional[float] = None) -> Status:
        """Block until the process finished; see ProcessSession.wait()."""
        return self._session.wait(timeout)

    def get_status(self) -> Status:
        """Snapshot of the stream's progress status."""
        status = self._session.status
        if self._error is not None:
            status.finished = True
        return status

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def session(self) -> ProcessSession:
        return self._session

    def __enter__(self) -> "LameStream":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc is not None:
            self.destroy()
        else:
            self.end()


def create_encoder_stream(
    options: Optional[Mapping[str, Any]] = None,
    binary_path: Optional[str] = None,
    config: Optional[LameConfig] = None,
    on_event: Optional[Callable[[SessionEvent], None]] = None,
) -> LameStream:
    """Create a LameStream that encodes PCM/WAV input to MP3."""
    return LameStream("encode", options, binary_path=binary_path, config=config, on_event=on_event)


def create_decoder_stream(
    options: Optional[Mapping[str, Any]] = None,
    binary_path: Optional[str] = None,
    config: Optional[LameConfig] = None,
    on_event: Optional[Callable[[SessionEvent], None]] = None,
) -> LameStream:
    """Create a LameStream that decodes MP3 input to WAV."""
    return LameStream("decode", options, binary_path=binary_path, config=config, on_event=on_event)
