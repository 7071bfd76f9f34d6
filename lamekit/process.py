"""
LAME process session.

This module provides ProcessSession, which owns one invocation of the LAME
binary: it spawns the process, drains stdout/stderr on dedicated threads,
classifies every output line, keeps the session Status and delivers the
session events (progress, finish, error) in order.

State machine:

    NOT_STARTED -> RUNNING -> SUCCEEDED | FAILED

Exactly one terminal event (FinishEvent or ErrorEvent) is delivered per
session. The first error wins; every later error is dropped.
"""

from __future__ import annotations

import enum
import logging
import os
import queue
import subprocess
import threading
from dataclasses import dataclass, replace
from typing import BinaryIO, Callable, Iterator, List, Optional, Sequence, Tuple, Union

from lamekit import binary
from lamekit.errors import LameProcessError
from lamekit.options import LameOptions
from lamekit.progress import (
    CliWarning,
    Complete,
    Direction,
    Progress,
    classify,
    normalize_cli_message,
    split_lines,
)

logger = logging.getLogger(__name__)

# Exit status LAME returns when it dies right after start (missing input/output)
EXIT_CODE_DIED_IMMEDIATELY = 255
# Exit status of a binary that could not be loaded (missing shared libraries)
EXIT_CODE_LINK_FAILURE = 127

DIED_IMMEDIATELY_MESSAGE = (
    "Unexpected termination of the process, possibly directly after the start. "
    "Please check if the input and/or output does not exist."
)

DEFAULT_DISPTIME = 1
DEFAULT_READ_CHUNK_SIZE = 65536

# Keep the last 10KB of stderr for diagnostics
LAST_STDERR_MAX_SIZE = 10 * 1024

FINAL_ETA = "00:00"


class SessionState(enum.Enum):
    """ProcessSession lifecycle states."""
    NOT_STARTED = 1
    RUNNING = 2
    SUCCEEDED = 3
    FAILED = 4


@dataclass
class Status:
    """Progress status of a LAME session."""
    started: bool = False
    finished: bool = False
    progress: int = 0
    eta: Optional[str] = None


def create_initial_status() -> Status:
    return Status()


@dataclass(frozen=True)
class ProgressEvent:
    progress: int
    eta: Optional[str] = None


@dataclass(frozen=True)
class FinishEvent:
    pass


@dataclass(frozen=True)
class ErrorEvent:
    cause: BaseException


SessionEvent = Union[ProgressEvent, FinishEvent, ErrorEvent]
EventListener = Callable[[SessionEvent], None]


def build_spawn_args(
    options: LameOptions,
    direction: Union[Direction, str],
    input_path: str,
    output_path: str,
    default_disptime: int = DEFAULT_DISPTIME,
) -> List[str]:
    """
    Build the argument vector (without the executable) for one LAME run.

    Shape: <input> <output> [option tokens...] [--disptime N] [--decode]

    --disptime is appended only when the options did not configure the
    progress interval themselves.
    """
    args = options.get_arguments()

    if options.should_use_default_disptime() and "--disptime" not in args:
        args.extend(["--disptime", str(default_disptime)])

    if Direction.parse(direction) is Direction.DECODE:
        args.append("--decode")

    return [input_path, output_path, *args]


def exit_error(code: Optional[int], executable: str) -> Optional[LameProcessError]:
    """
    Map a process exit status to the error delivered for it.

    Returns:
        None for a clean exit, otherwise the LameProcessError to deliver
    """
    if code == 0:
        return None

    if code == EXIT_CODE_DIED_IMMEDIATELY:
        return LameProcessError(DIED_IMMEDIATELY_MESSAGE, exit_code=code)

    if code == EXIT_CODE_LINK_FAILURE:
        return LameProcessError(
            f"lame: Failed to execute '{executable}'. Exit code 127 usually indicates missing "
            "shared libraries or an unreadable binary. Run `ldd` on the binary or point "
            "LAME_BINARY at a working executable for details.",
            exit_code=code,
        )

    if code is None or code < 0:
        # Negative return codes mean the process was killed by a signal
        return LameProcessError("lame: Process exited unexpectedly", exit_code=code)

    return LameProcessError(f"lame: Process exited with code {code}", exit_code=code)


class ProcessSession:
    """
    One supervised invocation of the LAME binary.

    The session is the only mutator of its Status. Output callbacks (stdout
    drain, stderr drain, exit waiter) run on their own threads and feed
    classified lines into the session under a single lock, so listeners see
    events in the order lines were observed and the terminal event last.

    Events are delivered two ways:
    - pushed onto `events` (a queue.Queue) for a single consumer
    - passed to the optional on_event callback, serialized under the session lock

    Attributes:
        direction: Direction.ENCODE or Direction.DECODE
        spawn_args: Arguments passed after the executable
        events: Queue receiving every SessionEvent in delivery order
    """

    def __init__(
        self,
        direction: Union[Direction, str],
        spawn_args: Sequence[str],
        executable: Optional[str] = None,
        progress_sources: Sequence[str] = ("stdout", "stderr"),
        complete_on_tag: bool = True,
        on_event: Optional[EventListener] = None,
        on_stdout_data: Optional[Callable[[bytes], None]] = None,
        on_stdout_end: Optional[Callable[[], None]] = None,
        read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE,
        env: Optional[dict] = None,
    ) -> None:
        """
        Initialize a session. Nothing is spawned until start().

        Args:
            direction: Codec direction; selects the progress line format
            spawn_args: Arguments after the executable (see build_spawn_args)
            executable: Binary to run (default: binary.resolve_executable())
            progress_sources: Which of "stdout"/"stderr" carry progress lines
            complete_on_tag: Finish as soon as the LAME tag sentinel is printed
            on_event: Optional listener for every SessionEvent
            on_stdout_data: Optional consumer of raw stdout chunks (stream mode);
                may block to apply backpressure
            on_stdout_end: Optional callback at stdout EOF
            read_chunk_size: Maximum bytes per pipe read
            env: Base environment for the child (default: os.environ)
        """
        self.direction = Direction.parse(direction)
        self.spawn_args = list(spawn_args)
        self.events: "queue.Queue[SessionEvent]" = queue.Queue()

        self._executable = executable
        self._progress_sources = frozenset(progress_sources)
        self._complete_on_tag = complete_on_tag
        self._on_event = on_event
        self._on_stdout_data = on_stdout_data
        self._on_stdout_end = on_stdout_end
        self._read_chunk_size = read_chunk_size
        self._base_env = env

        self._lock = threading.RLock()
        self._state = SessionState.NOT_STARTED
        self._status = create_initial_status()
        self._terminal = False
        self._seen_cli_error = False
        self._outcome: Optional[BaseException] = None
        self._done = threading.Event()
        self._detached = False

        self._process: Optional[subprocess.Popen] = None
        self._stdin: Optional[BinaryIO] = None
        self._stdin_lock = threading.Lock()
        self._returncode: Optional[int] = None

        self._stdout_thread: Optional[threading.Thread] = None
        self._stderr_thread: Optional[threading.Thread] = None
        self._waiter_thread: Optional[threading.Thread] = None

        self._last_stderr = ""

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> "ProcessSession":
        """
        Spawn the binary and start draining its output.

        A spawn failure does not raise; it is delivered as the session's
        ErrorEvent like every other process error.

        Raises:
            RuntimeError: If the session was already started
        """
        with self._lock:
            if self._state is not SessionState.NOT_STARTED:
                raise RuntimeError(f"Cannot start session in state: {self._state}")
            self._state = SessionState.RUNNING
            self._status = Status(started=True, finished=False, progress=0, eta=None)

        executable = self._executable or binary.resolve_executable()
        self._executable = executable
        base_env = self._base_env if self._base_env is not None else os.environ
        env = binary.apply_library_path(base_env, binary.resolve_library_dir())

        cmd = [executable, *self.spawn_args]
        logger.debug(f"Starting LAME: {' '.join(cmd)}")

        try:
            self._process = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                bufsize=0,
                env=env,
            )
        except OSError as e:
            logger.error(f"Failed to start LAME process '{executable}': {e}")
            self._deliver_error(
                LameProcessError(f"lame: Failed to spawn '{executable}': {e.strerror or e}"),
                from_cli=True,
            )
            self._done.set()
            return self

        logger.info(f"Started lame PID={self._process.pid}")
        self._stdin = self._process.stdin

        self._stdout_thread = threading.Thread(
            target=self._stdout_drain, daemon=True, name="LameStdoutDrain"
        )
        self._stderr_thread = threading.Thread(
            target=self._stderr_drain, daemon=True, name="LameStderrDrain"
        )
        self._waiter_thread = threading.Thread(
            target=self._wait_for_exit, daemon=True, name="LameExitWaiter"
        )
        self._stdout_thread.start()
        self._stderr_thread.start()
        self._waiter_thread.start()
        return self

    def wait(self, timeout: Optional[float] = None) -> Status:
        """
        Block until the terminal event was delivered.

        Returns:
            Snapshot of the final Status

        Raises:
            TimeoutError: If timeout expires first
            LameError: The error delivered by the session
        """
        if not self._done.wait(timeout):
            raise TimeoutError("lame: Timed out waiting for the process to finish")
        if self._outcome is not None:
            raise self._outcome
        return self.status

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the process to exit and its output to be fully drained.

        Returns:
            True when the process is gone (or never started)
        """
        thread = self._waiter_thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def iter_events(self, timeout: Optional[float] = None) -> Iterator[SessionEvent]:
        """Yield events from the queue until (and including) the terminal event."""
        while True:
            event = self.events.get(timeout=timeout)
            yield event
            if isinstance(event, (FinishEvent, ErrorEvent)):
                return

    def kill(self) -> None:
        """Kill the process if it is still running. Safe to call more than once."""
        proc = self._process
        if proc is None or proc.poll() is not None:
            return
        try:
            proc.kill()
            logger.info(f"Killed lame PID={proc.pid}")
        except ProcessLookupError:
            logger.debug(f"lame PID={proc.pid} already exited")

    def detach(self) -> None:
        """Drop all callbacks; later output and exits no longer reach listeners."""
        with self._lock:
            self._detached = True
            self._on_event = None
            self._on_stdout_data = None
            self._on_stdout_end = None

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def write_stdin(self, data: bytes) -> None:
        """
        Write all of data to the process input. Blocks while the pipe is full.

        Raises:
            BrokenPipeError: If the process closed its input
            ValueError: If the input was already closed
        """
        with self._stdin_lock:
            stdin = self._stdin
            if stdin is None or stdin.closed:
                raise ValueError("lame: Process input is closed")
            view = memoryview(data)
            while view:
                written = stdin.write(view)
                if written is None:
                    written = 0
                view = view[written:]

    def close_stdin(self) -> None:
        """Close the process input so LAME can flush and exit normally."""
        with self._stdin_lock:
            stdin = self._stdin
            if stdin is None or stdin.closed:
                return
            try:
                stdin.close()
            except BrokenPipeError:
                logger.debug("lame stdin already broken while closing")

    @property
    def stdin_closed(self) -> bool:
        stdin = self._stdin
        return stdin is None or stdin.closed

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def status(self) -> Status:
        """Copy of the current Status."""
        with self._lock:
            return replace(self._status)

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def executable(self) -> Optional[str]:
        return self._executable

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    @property
    def returncode(self) -> Optional[int]:
        return self._returncode

    @property
    def last_stderr(self) -> str:
        """Most recent stderr output (bounded) for diagnostics."""
        return self._last_stderr

    @property
    def done(self) -> bool:
        return self._done.is_set()

    # ------------------------------------------------------------------
    # Event delivery
    # ------------------------------------------------------------------

    def _emit(self, event: SessionEvent) -> None:
        # Caller holds self._lock. The listener runs first so a queue consumer
        # never observes an event the listener has not handled yet.
        listener = self._on_event
        if listener is not None:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Session event listener failed: {e}", exc_info=True)
        self.events.put(event)

    def _apply_line(self, line: str) -> bool:
        """
        Apply one classified line. Returns False once the line was an error.
        """
        result = classify(line, self.direction)

        if isinstance(result, Complete):
            if self._complete_on_tag:
                self._mark_finished()
            return True

        if isinstance(result, Progress):
            with self._lock:
                if self._terminal or result.percent is None:
                    return True
                if result.percent > self._status.progress:
                    self._status.progress = result.percent
                if result.eta:
                    self._status.eta = result.eta
                self._emit(ProgressEvent(self._status.progress, self._status.eta))
            return True

        if isinstance(result, CliWarning):
            logger.warning(f"[LAME] {result.message}")
            self._deliver_error(LameProcessError(result.message), from_cli=True)
            return False

        return True

    def _apply_chunk(self, lines: List[str]) -> None:
        for line in lines:
            if not self._apply_line(line):
                return

    def _mark_finished(self) -> None:
        with self._lock:
            if self._terminal:
                return
            self._terminal = True
            self._state = SessionState.SUCCEEDED
            self._status.finished = True
            self._status.progress = 100
            self._status.eta = FINAL_ETA
            self._emit(ProgressEvent(100, FINAL_ETA))
            self._emit(FinishEvent())
            self._done.set()
        logger.info("LAME session finished")

    def _deliver_error(self, error: BaseException, from_cli: bool) -> None:
        """
        Deliver error as the terminal event unless one was already delivered.

        Exit-status errors (from_cli=False) are also dropped once the binary
        itself reported a warning/error line.
        """
        with self._lock:
            if from_cli:
                self._seen_cli_error = True
            elif self._seen_cli_error:
                return
            if self._terminal:
                logger.debug(f"Suppressed error after terminal event: {error}")
                return
            self._terminal = True
            self._state = SessionState.FAILED
            self._outcome = error
            self._emit(ErrorEvent(error))
            self._done.set()
        logger.error(f"LAME session failed: {error}")

    # ------------------------------------------------------------------
    # Drain threads
    # ------------------------------------------------------------------

    @staticmethod
    def _read_lines(pending: str, chunk: bytes) -> Tuple[str, List[str]]:
        text = pending + chunk.decode("utf-8", errors="replace")
        # Text after the last line break is held back until more output arrives
        cut = max(text.rfind("\n"), text.rfind("\r"))
        if cut < 0:
            return text, []
        return text[cut + 1:], split_lines(text[:cut + 1])

    def _stdout_drain(self) -> None:
        proc = self._process
        if proc is None or proc.stdout is None:
            return
        parse = "stdout" in self._progress_sources
        pending = ""
        try:
            while True:
                chunk = proc.stdout.read(self._read_chunk_size)
                if not chunk:
                    break
                if parse:
                    pending, lines = self._read_lines(pending, chunk)
                    self._apply_chunk(lines)
                consumer = self._on_stdout_data
                if consumer is not None:
                    consumer(chunk)
        except (OSError, ValueError) as e:
            if not self._detached:
                logger.warning(f"Read error on lame stdout: {e}")
                self._deliver_error(e, from_cli=True)
            return
        except Exception as e:
            logger.error(f"Unexpected error in stdout drain: {e}", exc_info=True)
            self._deliver_error(e, from_cli=True)
            return

        if parse and pending:
            self._apply_chunk(split_lines(pending))
        end = self._on_stdout_end
        if end is not None:
            end()

    def _stderr_drain(self) -> None:
        proc = self._process
        if proc is None or proc.stderr is None:
            return
        parse = "stderr" in self._progress_sources
        pending = ""
        try:
            while True:
                chunk = proc.stderr.read(self._read_chunk_size)
                if not chunk:
                    break
                text = chunk.decode("utf-8", errors="replace")
                self._last_stderr = (self._last_stderr + text)[-LAST_STDERR_MAX_SIZE:]
                pending, lines = self._read_lines(pending, chunk)
                for line in lines:
                    logger.debug(f"[LAME] {line}")
                if parse:
                    self._apply_chunk(lines)
        except (OSError, ValueError) as e:
            if not self._detached:
                logger.warning(f"Read error on lame stderr: {e}")
                self._deliver_error(e, from_cli=True)
            return

        if parse and pending:
            self._apply_chunk(split_lines(pending))

    def _wait_for_exit(self) -> None:
        proc = self._process
        if proc is None:
            return
        code = proc.wait()
        # Output must be fully classified before the exit status is
        for thread in (self._stdout_thread, self._stderr_thread):
            if thread is not None:
                thread.join()
        self._returncode = code
        logger.info(f"lame PID={proc.pid} exited with code {code}")
        self._handle_exit(code)

    def _handle_exit(self, code: Optional[int]) -> None:
        executable = self._executable or "lame"
        error = exit_error(code, executable)
        if error is None:
            self._mark_finished()
            return

        if code not in (EXIT_CODE_DIED_IMMEDIATELY, EXIT_CODE_LINK_FAILURE):
            for line in split_lines(self._last_stderr):
                message = normalize_cli_message(line)
                if message is not None:
                    self._deliver_error(LameProcessError(message, exit_code=code), from_cli=True)
                    return

        self._deliver_error(error, from_cli=False)
