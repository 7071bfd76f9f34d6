"""
Configuration management for lamekit.

Reads configuration from a .env file and environment variables with sensible defaults.
"""

import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


# Default .env file location (relative to the working directory)
DEFAULT_ENV_FILE = Path(".env")

logger = logging.getLogger(__name__)


def _load_env_file():
    """Load environment variables from .env file if it exists."""
    env_file = os.getenv("LAME_ENV_FILE", str(DEFAULT_ENV_FILE))
    env_path = Path(env_file)

    if env_path.exists():
        load_dotenv(env_path, override=False)  # Don't override existing env vars


def _default_temp_dir() -> str:
    return os.path.join(tempfile.gettempdir(), "lamekit")


def _parse_int(name: str, default: str) -> int:
    value = os.getenv(name, default)
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Invalid {name}: {value} (must be an integer)")


@dataclass
class LameConfig:
    """lamekit configuration loaded from .env file and environment variables."""

    # Binary
    binary_path: Optional[str] = None

    # Temporary artifacts for buffer mode
    temp_dir: str = field(default_factory=_default_temp_dir)

    # Progress reporting interval injected when options do not set disptime
    default_disptime: int = 1

    # Subprocess I/O
    read_chunk_size: int = 65536
    stream_high_water_bytes: int = 65536
    stream_read_queue_chunks: int = 16

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def load_config(cls) -> "LameConfig":
        """
        Load configuration from environment variables.

        Returns:
            LameConfig instance with loaded values

        Raises:
            ValueError: If configuration is invalid
        """
        # Load .env file first (if it exists)
        _load_env_file()

        binary_path = os.getenv("LAME_BINARY")
        if binary_path == "":
            binary_path = None

        temp_dir = os.getenv("LAME_TEMP_DIR") or _default_temp_dir()

        default_disptime = _parse_int("LAME_DEFAULT_DISPTIME", "1")
        read_chunk_size = _parse_int("LAME_READ_CHUNK_SIZE", "65536")
        stream_high_water_bytes = _parse_int("LAME_STREAM_HIGH_WATER_BYTES", "65536")
        stream_read_queue_chunks = _parse_int("LAME_STREAM_READ_QUEUE_CHUNKS", "16")

        # Logging
        log_level = os.getenv("LAME_LOG_LEVEL", "INFO")
        log_file = os.getenv("LAME_LOG_FILE") or None

        config = cls(
            binary_path=binary_path,
            temp_dir=temp_dir,
            default_disptime=default_disptime,
            read_chunk_size=read_chunk_size,
            stream_high_water_bytes=stream_high_water_bytes,
            stream_read_queue_chunks=stream_read_queue_chunks,
            log_level=log_level,
            log_file=log_file,
        )

        # Validate configuration
        config.validate()

        return config

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: If configuration is invalid
        """
        if self.default_disptime <= 0:
            raise ValueError(f"Invalid default disptime: {self.default_disptime} (must be > 0)")

        if self.read_chunk_size <= 0:
            raise ValueError(f"Invalid read chunk size: {self.read_chunk_size} (must be > 0)")

        if self.stream_high_water_bytes <= 0:
            raise ValueError(
                f"Invalid stream high water mark: {self.stream_high_water_bytes} (must be > 0)"
            )

        if self.stream_read_queue_chunks <= 0:
            raise ValueError(
                f"Invalid stream read queue size: {self.stream_read_queue_chunks} (must be > 0)"
            )

        if not self.temp_dir or not self.temp_dir.strip():
            raise ValueError("Temp directory cannot be empty")

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            raise ValueError(
                f"Invalid log level: {self.log_level} "
                f"(must be one of: {', '.join(valid_log_levels)})"
            )


def load_config() -> LameConfig:
    """
    Load and validate lamekit configuration from environment variables.

    Raises:
        ValueError: If configuration is invalid
    """
    try:
        return LameConfig.load_config()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        raise


_CONFIG: Optional[LameConfig] = None


def get_global_config() -> LameConfig:
    """Get or load the process-wide LameConfig instance."""
    global _CONFIG
    if _CONFIG is None:
        _CONFIG = load_config()
    return _CONFIG


def reset_global_config() -> None:
    """Forget the cached configuration so the next access reloads it."""
    global _CONFIG
    _CONFIG = None
