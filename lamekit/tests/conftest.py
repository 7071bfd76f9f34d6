"""
Shared pytest fixtures for lamekit tests.
"""
import os
import shutil
import stat
import sys
import threading
from pathlib import Path

import pytest

from lamekit.config import LameConfig, reset_global_config

FAKE_LAME_SCRIPT = Path(__file__).resolve().parent / "fake_lame.py"


@pytest.fixture
def fake_lame(tmp_path):
    """
    Executable wrapper that runs fake_lame.py with the current interpreter.

    Returns:
        str: Path to the wrapper; use it as the LAME binary
    """
    wrapper = tmp_path / "lame"
    wrapper.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_LAME_SCRIPT}" "$@"\n')
    wrapper.chmod(wrapper.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(wrapper)


@pytest.fixture
def fake_scenario(monkeypatch):
    """Select the fake binary's behavior: fake_scenario("warning"), fake_scenario("exit", 2)."""
    def select(name, exit_code=None):
        monkeypatch.setenv("FAKE_LAME_SCENARIO", name)
        if exit_code is not None:
            monkeypatch.setenv("FAKE_LAME_EXIT", str(exit_code))
    return select


@pytest.fixture
def args_file(tmp_path, monkeypatch):
    """Path the fake binary writes its argv to (as JSON)."""
    path = tmp_path / "argv.json"
    monkeypatch.setenv("FAKE_LAME_ARGS_FILE", str(path))
    return path


@pytest.fixture
def config(tmp_path, fake_lame):
    """LameConfig pointing at the fake binary and a per-test temp dir."""
    return LameConfig(
        binary_path=fake_lame,
        temp_dir=str(tmp_path / "lamekit-tmp"),
        stream_high_water_bytes=1024,
        stream_read_queue_chunks=4,
    )


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """Keep LAME_* variables from the developer's shell out of the tests."""
    for name in list(os.environ):
        if name.startswith("LAME_"):
            monkeypatch.delenv(name, raising=False)
    reset_global_config()
    yield
    reset_global_config()


@pytest.fixture
def real_lame():
    """Path of an installed LAME binary; skips the test when there is none."""
    path = shutil.which("lame")
    if path is None:
        pytest.skip("lame binary not installed")
    return path


@pytest.fixture(autouse=False)
def thread_leak_guard():
    """
    Detect non-daemon threads left running by a test.
    """
    before = set(t.ident for t in threading.enumerate())
    yield
    after = set(t.ident for t in threading.enumerate())
    leaked = [
        t for t in threading.enumerate()
        if t.ident in after - before and not t.daemon and t.is_alive()
    ]
    if leaked:
        thread_info = '\n'.join(f"  - {t.name}" for t in leaked)
        assert False, f"Thread leak detected.\nLeaked threads:\n{thread_info}"
