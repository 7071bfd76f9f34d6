"""
Tests for Lame (file and buffer conversions).
"""

import builtins
import io
import json
import os
import wave

import numpy as np
import pytest

from lamekit.config import LameConfig
from lamekit.errors import (
    InvalidOptionError,
    LameProcessError,
    LameSetupError,
    UnexpectedOutputError,
)
from lamekit.lame import Lame
from lamekit.process import FinishEvent, ProgressEvent


def temp_files(config):
    found = []
    for root, _, files in os.walk(config.temp_dir):
        found.extend(os.path.join(root, name) for name in files)
    return found


class TestSetup:
    def test_stream_output_rejected(self, config):
        with pytest.raises(InvalidOptionError) as exc_info:
            Lame({"output": "stream"}, config=config)
        assert "create_encoder_stream or create_decoder_stream" in str(exc_info.value)

    def test_invalid_options(self, config):
        with pytest.raises(InvalidOptionError):
            Lame({"output": "buffer", "quality": 11}, config=config)

    def test_missing_file(self, config, tmp_path):
        with pytest.raises(LameSetupError, match=r"Audio file \(path\) does not exist"):
            Lame({"output": "buffer"}, config=config).set_file(str(tmp_path / "nope.wav"))

    @pytest.mark.parametrize("value", ["raw text", [1, 2, 3], None, 42])
    def test_unsupported_buffer(self, config, value):
        with pytest.raises(LameSetupError, match=r"Audio file \(buffer\) does not exist"):
            Lame({"output": "buffer"}, config=config).set_buffer(value)

    def test_encode_without_input(self, config):
        with pytest.raises(LameSetupError, match="Audio file to encode is not set"):
            Lame({"output": "buffer"}, config=config).encode()

    def test_results_before_conversion(self, config):
        lame = Lame({"output": "buffer"}, config=config)
        with pytest.raises(LameSetupError, match="Audio is not yet decoded/encoded"):
            lame.get_buffer()
        with pytest.raises(LameSetupError, match="Audio is not yet decoded/encoded"):
            lame.get_file()

    def test_status_before_conversion(self, config):
        status = Lame({"output": "buffer"}, config=config).get_status()
        assert (status.started, status.finished, status.progress, status.eta) == (False, False, 0, None)

    @pytest.mark.parametrize("method", ["set_lame_path", "set_temp_path"])
    def test_paths_must_be_non_empty(self, config, method):
        lame = Lame({"output": "buffer"}, config=config)
        with pytest.raises(LameSetupError, match="must be a non-empty string"):
            getattr(lame, method)("  ")

    def test_setters_chain(self, config, fake_lame, tmp_path):
        lame = Lame({"output": "buffer"}, config=config)
        assert lame.set_lame_path(fake_lame).set_temp_path(str(tmp_path)).set_buffer(b"x") is lame


class TestBufferConversion:
    @pytest.mark.timeout(30)
    def test_encode_buffer(self, config, args_file):
        received = []
        lame = Lame({"output": "buffer", "bitrate": 192}, config=config, on_event=received.append)

        assert lame.set_buffer(b"pcm-data").encode() is lame
        assert lame.get_buffer() == b"ID3pcm-data"

        argv = json.loads(args_file.read_text())
        raw_dir = os.path.join(config.temp_dir, "raw")
        encoded_dir = os.path.join(config.temp_dir, "encoded")
        assert os.path.dirname(argv[0]) == raw_dir
        assert os.path.dirname(argv[1]) == encoded_dir
        assert len(os.path.basename(argv[0])) == 32
        assert argv[2:] == ["-b", "192", "--disptime", "1"]

        assert temp_files(config) == []
        assert isinstance(received[-1], FinishEvent)
        assert received[-2] == ProgressEvent(100, "00:00")
        assert lame.get_status().finished is True

    @pytest.mark.timeout(30)
    def test_decode_buffer_uses_mp3_extension(self, config, args_file):
        lame = Lame({"output": "buffer"}, config=config)
        lame.set_buffer(bytearray(b"frames")).decode()

        argv = json.loads(args_file.read_text())
        assert argv[0].endswith(".mp3")
        assert argv[-1] == "--decode"
        assert lame.get_buffer() == b"RIFFframes"
        assert temp_files(config) == []

    @pytest.mark.timeout(30)
    def test_events_queue(self, config):
        lame = Lame({"output": "buffer"}, config=config)
        lame.set_buffer(b"x").encode()
        events = []
        while not lame.events.empty():
            events.append(lame.events.get_nowait())
        assert [e.progress for e in events if isinstance(e, ProgressEvent)] == [25, 50, 75, 100]

    @pytest.mark.timeout(30)
    def test_float_samples_are_converted(self, config):
        samples = np.array([0.0, 1.0, -1.0, 2.0], dtype=np.float32)
        lame = Lame({"output": "buffer", "raw": True, "bitwidth": 16}, config=config)
        lame.set_buffer(samples).encode()

        expected = np.array([0, 32767, -32768, 32767], dtype="<i2").tobytes()
        assert lame.get_buffer() == b"ID3" + expected

    def test_unsigned_float_conversion_rejected_before_spawn(self, config, args_file):
        lame = Lame({"output": "buffer", "bitwidth": 16, "unsigned": True}, config=config)
        with pytest.raises(InvalidOptionError, match="only supports signed samples for bitwidth 16"):
            lame.set_buffer(np.zeros(4, dtype=np.float64))
        assert not args_file.exists()

    @pytest.mark.timeout(30)
    def test_integer_arrays_used_as_raw_bytes(self, config):
        samples = np.array([1, -1], dtype="<i2")
        lame = Lame({"output": "buffer"}, config=config)
        lame.set_buffer(samples).encode()
        assert lame.get_buffer() == b"ID3" + samples.tobytes()


class TestFileConversion:
    @pytest.mark.timeout(30)
    def test_file_to_file_creates_parent_directories(self, config, tmp_path):
        source = tmp_path / "in.wav"
        source.write_bytes(b"wave")
        target = tmp_path / "nested" / "deeper" / "out.mp3"

        lame = Lame({"output": str(target)}, config=config)
        lame.set_file(str(source)).encode()

        assert lame.get_file() == str(target)
        assert target.read_bytes() == b"ID3wave"
        with pytest.raises(LameSetupError):
            lame.get_buffer()


class TestFailures:
    @pytest.mark.timeout(30)
    def test_exit_code_raises_and_cleans_up(self, config, fake_scenario):
        fake_scenario("exit", 2)
        lame = Lame({"output": "buffer"}, config=config)
        with pytest.raises(LameProcessError, match="lame: Process exited with code 2"):
            lame.set_buffer(b"pcm").encode()

        assert temp_files(config) == []
        with pytest.raises(LameSetupError):
            lame.get_buffer()

    @pytest.mark.timeout(30)
    def test_warning_fails_conversion(self, config, fake_scenario):
        fake_scenario("warning")
        lame = Lame({"output": "buffer"}, config=config)
        with pytest.raises(LameProcessError, match="lame: Warning: highpass filter disabled"):
            lame.set_buffer(b"pcm").encode()
        assert temp_files(config) == []

    @pytest.mark.timeout(30)
    def test_error_line_fails_conversion(self, config, fake_scenario):
        fake_scenario("error_line")
        lame = Lame({"output": "buffer"}, config=config)
        with pytest.raises(LameProcessError) as exc_info:
            lame.set_buffer(b"pcm").encode()
        assert str(exc_info.value) == "lame: Error writing output file"

    @pytest.mark.timeout(30)
    def test_missing_binary(self, config, tmp_path):
        lame = Lame({"output": "buffer"}, config=config)
        lame.set_lame_path(str(tmp_path / "missing-lame")).set_buffer(b"pcm")
        with pytest.raises(LameProcessError, match="Failed to spawn"):
            lame.encode()
        assert temp_files(config) == []

    @pytest.mark.timeout(30)
    def test_non_bytes_output_file(self, config, monkeypatch):
        def text_reading_open(path, mode="r", *args, **kwargs):
            if mode == "rb":
                return io.StringIO("not audio")
            return builtins.open(path, mode, *args, **kwargs)

        monkeypatch.setattr("lamekit.lame.open", text_reading_open, raising=False)
        lame = Lame({"output": "buffer"}, config=config)
        with pytest.raises(UnexpectedOutputError) as exc_info:
            lame.set_buffer(b"pcm").encode()

        assert str(exc_info.value) == "Unexpected output format received from temporary file"
        assert temp_files(config) == []

    @pytest.mark.timeout(30)
    def test_failed_rerun_drops_previous_buffer(self, config, fake_scenario):
        lame = Lame({"output": "buffer"}, config=config)
        assert lame.set_buffer(b"pcm").encode().get_buffer() == b"ID3pcm"

        fake_scenario("exit", 2)
        with pytest.raises(LameProcessError):
            lame.encode()
        with pytest.raises(LameSetupError, match="Audio is not yet decoded/encoded"):
            lame.get_buffer()

    @pytest.mark.timeout(30)
    def test_failed_file_output_has_no_result(self, config, fake_scenario, tmp_path):
        fake_scenario("exit", 2)
        lame = Lame({"output": str(tmp_path / "out.mp3")}, config=config)
        with pytest.raises(LameProcessError):
            lame.set_buffer(b"pcm").encode()
        with pytest.raises(LameSetupError):
            lame.get_file()


class TestRealBinary:
    """Round trip through an installed LAME; skipped when none is available."""

    @pytest.mark.timeout(120)
    def test_wav_round_trip(self, real_lame, tmp_path):
        rate = 44100
        t = np.arange(rate // 2) / rate
        tone = (np.sin(2 * np.pi * 440 * t) * 0.5 * 32767).astype("<i2")
        source = tmp_path / "tone.wav"
        with wave.open(str(source), "wb") as wav:
            wav.setnchannels(1)
            wav.setsampwidth(2)
            wav.setframerate(rate)
            wav.writeframes(tone.tobytes())

        config = LameConfig(binary_path=real_lame, temp_dir=str(tmp_path / "tmp"))
        encoder = Lame({"output": "buffer", "bitrate": 128}, config=config)
        mp3 = encoder.set_file(str(source)).encode().get_buffer()
        assert len(mp3) > 0
        assert encoder.get_status().progress == 100

        decoder = Lame({"output": "buffer"}, config=config)
        decoded = decoder.set_buffer(mp3).decode().get_buffer()
        assert decoded[:4] == b"RIFF"

        with wave.open(io.BytesIO(decoded), "rb") as wav:
            assert wav.getframerate() == rate
            assert wav.getnchannels() == 1
            frames = wav.getnframes()
        # Encoder delay and frame padding add at most a few MP3 frames
        assert abs(frames - len(tone)) <= 4 * 1152
        assert abs(frames / rate - 0.5) <= 0.1
