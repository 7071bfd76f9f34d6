"""
Tests for LameOptions: value domains, token order and error messages.
"""

import pytest

from lamekit.errors import InvalidOptionError
from lamekit.options import LameOptions, format_value


def args_for(**options):
    options.setdefault("output", "buffer")
    return LameOptions(options).get_arguments()


class TestRequiredOutput:
    def test_missing_output_is_rejected(self):
        with pytest.raises(InvalidOptionError, match="'output' is required"):
            LameOptions({"bitrate": 128})

    def test_none_output_is_rejected(self):
        with pytest.raises(InvalidOptionError):
            LameOptions({"output": None})

    def test_output_contributes_no_tokens(self):
        assert LameOptions({"output": "buffer"}).get_arguments() == []

    def test_non_mapping_is_rejected(self):
        with pytest.raises(InvalidOptionError):
            LameOptions(["output", "buffer"])


class TestUnknownKeys:
    def test_unknown_key_message(self):
        with pytest.raises(InvalidOptionError) as exc_info:
            LameOptions({"output": "buffer", "bogus": 1})
        assert str(exc_info.value) == "Unknown parameter bogus"


class TestTokenOrder:
    def test_tokens_follow_caller_order(self):
        options = {"output": "buffer", "bitrate": 192, "mode": "j", "raw": True}
        assert LameOptions(options).get_arguments() == ["-b", "192", "-m", "j", "-r"]

    def test_same_options_in_different_order(self):
        options = {"output": "buffer", "raw": True, "mode": "j", "bitrate": 192}
        assert LameOptions(options).get_arguments() == ["-r", "-m", "j", "-b", "192"]

    def test_get_arguments_returns_a_copy(self):
        built = LameOptions({"output": "buffer", "raw": True})
        built.get_arguments().append("--oops")
        assert built.get_arguments() == ["-r"]


class TestFlags:
    @pytest.mark.parametrize("key,token", [
        ("raw", "-r"),
        ("swap-bytes", "-x"),
        ("to-mono", "-a"),
        ("cbr", "--cbr"),
        ("vbr", "-v"),
        ("no-replaygain", "--noreplaygain"),
        ("strictly-enforce-ISO", "--strictly-enforce-ISO"),
    ])
    def test_true_emits_token(self, key, token):
        assert args_for(**{key: True}) == [token]

    def test_non_true_values_contribute_nothing(self):
        assert args_for(raw=False) == []
        assert args_for(raw="yes") == []
        assert args_for(raw=1) == []

    def test_strict_flag_rejects_non_boolean(self):
        with pytest.raises(InvalidOptionError, match="'silent' must be boolean."):
            args_for(silent="yes")

    def test_strict_flag_accepts_false(self):
        assert args_for(**{"quality-high": False}) == []
        assert args_for(**{"quality-high": True}) == ["-h"]


class TestEnumerations:
    def test_bitrate_in_ladder(self):
        assert args_for(bitrate=320) == ["-b", "320"]

    def test_bitrate_outside_ladder(self):
        with pytest.raises(InvalidOptionError) as exc_info:
            args_for(bitrate=100)
        assert str(exc_info.value).startswith("lame: Invalid option: 'bitrate' is not in range of 8, 16")

    def test_sfreq_accepts_fractional_rate(self):
        assert args_for(sfreq=44.1) == ["-s", "44.1"]

    def test_sfreq_rejects_string_rate(self):
        with pytest.raises(InvalidOptionError):
            args_for(sfreq="44.1")

    def test_bool_is_not_a_number(self):
        with pytest.raises(InvalidOptionError):
            args_for(bitwidth=True)

    def test_mode_letters(self):
        assert args_for(mode="m") == ["-m", "m"]
        with pytest.raises(InvalidOptionError):
            args_for(mode="x")

    def test_emphasis_mixes_numbers_and_letters(self):
        assert args_for(emp=5) == ["-e", "5"]
        assert args_for(emp="n") == ["-e", "n"]
        with pytest.raises(InvalidOptionError, match="'emp' is not in range of 'n', 5 or 'c'."):
            args_for(emp="5")


class TestRanges:
    def test_quality_bounds(self):
        assert args_for(quality=0) == ["-q", "0"]
        assert args_for(quality=9) == ["-q", "9"]
        with pytest.raises(InvalidOptionError, match="'quality' is not in range of 0 to 9."):
            args_for(quality=10)

    def test_vbr_quality_message(self):
        with pytest.raises(InvalidOptionError, match="'vbrQuality' is not in range of 0 to 9."):
            args_for(**{"vbr-quality": -1})

    def test_abr_bounds(self):
        assert args_for(abr=310) == ["--abr", "310"]
        with pytest.raises(InvalidOptionError):
            args_for(abr=311)

    def test_gain_bounds(self):
        assert args_for(gain=-20) == ["--gain", "-20"]
        assert args_for(gain=12) == ["--gain", "12"]
        with pytest.raises(InvalidOptionError, match="'gain' must be a number between -20 and 12."):
            args_for(gain=12.5)

    def test_finite_rejects_nan_and_infinity(self):
        with pytest.raises(InvalidOptionError, match="'scale' must be a finite number."):
            args_for(scale=float("nan"))
        with pytest.raises(InvalidOptionError):
            args_for(lowpass=float("inf"))

    def test_priority_integer_levels(self):
        assert args_for(priority=4) == ["--priority", "4"]
        with pytest.raises(InvalidOptionError, match="'priority' must be an integer between 0 and 4."):
            args_for(priority=2.5)


class TestPreset:
    @pytest.mark.parametrize("value,tokens", [
        ("standard", ["--preset", "standard"]),
        ("fast extreme", ["--preset", "fast", "extreme"]),
        ("cbr 192", ["--preset", "cbr", "192"]),
        ("  cbr   192 ", ["--preset", "cbr", "192"]),
        (128, ["--preset", "128"]),
        ("320", ["--preset", "320"]),
    ])
    def test_accepted_forms(self, value, tokens):
        assert args_for(preset=value) == tokens

    def test_blank_preset(self):
        with pytest.raises(InvalidOptionError, match="'preset' cannot be empty."):
            args_for(preset="   ")

    @pytest.mark.parametrize("value", ["loud", "cbr extreme", "fast 999", 7, 321, 128.5, "a b c"])
    def test_rejected_forms(self, value):
        with pytest.raises(InvalidOptionError, match="'preset' must be a supported preset keyword"):
            args_for(preset=value)


class TestFreeformatAndPaths:
    def test_freeformat_aliases(self):
        assert args_for(freeformat=True) == ["--freeformat"]
        assert args_for(freeformat="MAD") == ["--freeformat"]

    def test_freeformat_unknown_alias(self):
        with pytest.raises(InvalidOptionError, match="'freeformat' string value must be one of"):
            args_for(freeformat="winamp")

    def test_nogap_paths(self):
        assert args_for(nogap=["a.wav", "b.wav"]) == ["--nogap", "a.wav", "b.wav"]

    @pytest.mark.parametrize("value", [[], ["a.wav", ""], "a.wav", [1]])
    def test_nogap_invalid(self, value):
        with pytest.raises(InvalidOptionError, match="'nogap' must be a non-empty array of file paths."):
            args_for(nogap=value)

    def test_out_dir_must_be_non_empty(self):
        with pytest.raises(InvalidOptionError, match="'out-dir' must be a non-empty string path."):
            args_for(**{"out-dir": " "})

    def test_help_topics(self):
        assert args_for(help=True) == ["--help"]
        assert args_for(help="id3") == ["--help", "id3"]
        with pytest.raises(InvalidOptionError):
            args_for(help="everything")


class TestDisptime:
    def test_default_disptime_applies_without_key(self):
        assert LameOptions({"output": "buffer"}).should_use_default_disptime() is True

    def test_explicit_disptime(self):
        built = LameOptions({"output": "buffer", "disptime": 2})
        assert built.get_arguments() == ["--disptime", "2"]
        assert built.should_use_default_disptime() is False

    def test_disptime_false_disables_progress_and_default(self):
        built = LameOptions({"output": "buffer", "disptime": False})
        assert built.get_arguments() == []
        assert built.should_use_default_disptime() is False

    @pytest.mark.parametrize("value", [0, -1, "1", True])
    def test_invalid_disptime(self, value):
        with pytest.raises(InvalidOptionError, match="'disptime' must be a positive number"):
            args_for(disptime=value)


class TestMeta:
    def test_value_tags_and_flags(self):
        tokens = args_for(meta={"title": "Song", "artist": "Band", "track": 3, "add-id3v2": True})
        assert tokens == ["--tt", "Song", "--ta", "Band", "--tn", "3", "--add-id3v2"]

    def test_false_flag_and_none_value_are_skipped(self):
        assert args_for(meta={"title": None, "id3v1-only": False}) == []

    def test_custom_frames_from_mapping(self):
        tokens = args_for(meta={"custom": {"TXXX": "note", "TBPM": 120}})
        assert tokens == ["--custom-tag", "TXXX=note", "--custom-tag", "TBPM=120"]

    def test_custom_frames_from_list_entries(self):
        tokens = args_for(meta={"custom": ["TXXX=a=b", ("TCOM", "Me"), {"id": "TKEY", "value": "Am"}]})
        assert tokens == [
            "--custom-tag", "TXXX=a=b",
            "--custom-tag", "TCOM=Me",
            "--custom-tag", "TKEY=Am",
        ]

    def test_custom_frame_needs_id(self):
        with pytest.raises(InvalidOptionError, match="frame id must be a non-empty string"):
            args_for(meta={"custom": {"": "x"}})

    def test_unknown_meta_property(self):
        with pytest.raises(InvalidOptionError, match="'meta' unknown property 'mood'"):
            args_for(meta={"mood": "happy"})

    def test_meta_must_be_mapping(self):
        with pytest.raises(InvalidOptionError, match="'meta' must be an object."):
            args_for(meta="title")


class TestFormatValue:
    def test_integral_float_drops_fraction(self):
        assert format_value(128.0) == "128"
        assert format_value(22.05) == "22.05"

    def test_booleans(self):
        assert format_value(True) == "true"
