"""
Locate the LAME executable and its bundled shared libraries.

Resolution order for the executable:
1. LAME_BINARY environment variable (when the file exists)
2. Bundled binary in vendor/lame/<platform>-<arch>/ next to the package
3. "lame" on PATH
"""

import logging
import os
import platform
import sys
from pathlib import Path
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

CUSTOM_BINARY_ENV = "LAME_BINARY"
LIBRARY_DIRECTORY_NAME = "lib"

PACKAGE_ROOT = Path(__file__).resolve().parent.parent


def _platform_key() -> str:
    machine = platform.machine().lower()
    arch = {"x86_64": "x64", "amd64": "x64", "aarch64": "arm64"}.get(machine, machine)
    return f"{sys.platform}-{arch}"


def _vendor_dir() -> Path:
    return PACKAGE_ROOT / "vendor" / "lame" / _platform_key()


def executable_suffix(platform_name: str = sys.platform) -> str:
    return ".exe" if platform_name == "win32" else ""


def resolve_bundled_executable() -> Optional[str]:
    """Return an explicit or bundled executable path, or None when neither exists."""
    explicit = os.environ.get(CUSTOM_BINARY_ENV)
    if explicit and os.path.exists(explicit):
        return explicit

    candidate = _vendor_dir() / f"lame{executable_suffix()}"
    if candidate.exists():
        return str(candidate)

    return None


def resolve_executable() -> str:
    """Resolve the LAME executable, falling back to "lame" on PATH."""
    resolved = resolve_bundled_executable()
    return resolved if resolved is not None else "lame"


def resolve_library_dir() -> Optional[str]:
    """Return the bundled shared library directory, if one ships with the package."""
    candidate = _vendor_dir() / LIBRARY_DIRECTORY_NAME
    if candidate.is_dir():
        return str(candidate)
    return None


def library_path_variable(platform_name: str = sys.platform) -> Optional[str]:
    """Name of the dynamic-library search path variable for a platform."""
    if platform_name.startswith("linux"):
        return "LD_LIBRARY_PATH"
    if platform_name == "darwin":
        return "DYLD_LIBRARY_PATH"
    if platform_name == "win32":
        return "PATH"
    return None


def apply_library_path(
    env: Mapping[str, str],
    library_dir: Optional[str],
    platform_name: str = sys.platform,
) -> dict:
    """
    Return a copy of env with library_dir prefixed onto the search path variable.

    Args:
        env: Base environment (not modified)
        library_dir: Directory of bundled shared libraries, or None
        platform_name: sys.platform style identifier

    Returns:
        New environment dict
    """
    result = dict(env)
    if not library_dir:
        return result

    variable = library_path_variable(platform_name)
    if variable is None:
        return result

    current = result.get(variable)
    result[variable] = f"{library_dir}{os.pathsep}{current}" if current else library_dir
    logger.debug(f"Prefixed {variable} with bundled library dir {library_dir}")
    return result
