"""
Float sample to fixed-point PCM conversion.

Used by Lame.set_buffer() for float arrays destined for raw PCM encoding.
"""

from typing import Optional

import numpy as np

from lamekit.errors import InvalidOptionError

SUPPORTED_BITWIDTHS = (8, 16, 24, 32)


def _clamp(samples: np.ndarray) -> np.ndarray:
    # Non-finite samples become silence
    clean = np.where(np.isfinite(samples), samples, 0.0)
    return np.clip(clean, -1.0, 1.0)


def _round_half_up(values: np.ndarray) -> np.ndarray:
    return np.floor(values + 0.5)


def scale_signed(samples: np.ndarray, bitwidth: int) -> np.ndarray:
    """Scale [-1, 1] samples to signed integers of bitwidth bits."""
    clamped = _clamp(np.asarray(samples, dtype=np.float64))
    negative_scale = float(2 ** (bitwidth - 1))
    positive_max = negative_scale - 1
    scaled = np.where(clamped < 0, clamped * negative_scale, clamped * positive_max)
    return np.clip(_round_half_up(scaled), -negative_scale, positive_max).astype(np.int64)


def scale_unsigned(samples: np.ndarray, bitwidth: int) -> np.ndarray:
    """Scale [-1, 1] samples to unsigned integers of bitwidth bits."""
    clamped = _clamp(np.asarray(samples, dtype=np.float64))
    maximum = float(2 ** bitwidth - 1)
    scaled = _round_half_up((clamped + 1.0) / 2.0 * maximum)
    return np.clip(scaled, 0, maximum).astype(np.int64)


def float_to_pcm(
    samples,
    bitwidth: int = 16,
    big_endian: bool = False,
    signed: Optional[bool] = None,
) -> bytes:
    """
    Convert float samples in [-1, 1] to interleaved fixed-point PCM bytes.

    Out-of-range samples are clamped, NaN and infinities become 0.

    Args:
        samples: Float array (any shape; flattened in C order)
        bitwidth: 8, 16, 24 or 32
        big_endian: Byte order of each sample
        signed: Sample signedness. None picks the default for the bitwidth:
            unsigned for 8 bit, signed otherwise.

    Returns:
        PCM bytes, bitwidth // 8 bytes per sample

    Raises:
        InvalidOptionError: For unsupported bitwidths or unsigned output
            at bitwidths other than 8
    """
    if bitwidth not in SUPPORTED_BITWIDTHS:
        raise InvalidOptionError(
            "lame: Invalid option: 'bitwidth' is not in range of 8, 16, 24 or 32."
        )

    if signed is None:
        signed = bitwidth != 8

    if not signed and bitwidth != 8:
        raise InvalidOptionError(
            f"lame: Float PCM input only supports signed samples for bitwidth {bitwidth}"
        )

    flat = np.ravel(np.asarray(samples, dtype=np.float64))
    order = ">" if big_endian else "<"

    if bitwidth == 8:
        if signed:
            return scale_signed(flat, 8).astype(np.int8).tobytes()
        return scale_unsigned(flat, 8).astype(np.uint8).tobytes()

    values = scale_signed(flat, bitwidth)

    if bitwidth == 24:
        # Two's complement in 32 bits, then keep the three significant bytes
        words = (values & 0xFFFFFF).astype(np.uint32)
        as_bytes = words.astype(f"{order}u4").view(np.uint8).reshape(-1, 4)
        packed = as_bytes[:, 1:] if big_endian else as_bytes[:, :3]
        return packed.tobytes()

    return values.astype(f"{order}i{bitwidth // 8}").tobytes()
