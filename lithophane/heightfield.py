"""Height field construction from brightness samples."""

from __future__ import annotations

import logging
import math
import numbers

import numpy as np

from lithophane.errors import InvalidDimension, InvalidScale

logger = logging.getLogger(__name__)


def validate_scale(scale: float) -> float:
    """Return scale as a float, raising InvalidScale unless it is finite and positive."""
    if isinstance(scale, bool) or not isinstance(scale, numbers.Real):
        raise InvalidScale(f"Scale must be a real number, got {scale!r}")
    scale = float(scale)
    if not math.isfinite(scale) or scale <= 0:
        raise InvalidScale(f"Scale must be finite and positive, got {scale}")
    return scale


def build_heightfield(brightness: np.ndarray, scale: float) -> np.ndarray:
    """Map brightness samples to heights.

    Samples are clipped to [0, 1] and multiplied by scale, so heights lie
    in [0, scale]. Non-finite samples are kept as they are; the mesh
    builder drops the triangles that touch them.

    Args:
        brightness: HxW array of brightness samples in [0, 1]
        scale: Height of a fully bright sample in output units

    Returns:
        Read-only HxW float64 array of heights
    """
    scale = validate_scale(scale)

    brightness = np.asarray(brightness, dtype=np.float64)
    if brightness.ndim != 2:
        raise InvalidDimension(f"Expected a 2D brightness grid, got shape {brightness.shape}")

    # Only finite samples are clipped; NaN and inf pass through unchanged
    clipped = np.where(np.isfinite(brightness), np.clip(brightness, 0.0, 1.0), brightness)
    heights = clipped * scale
    heights.setflags(write=False)

    n_invalid = int(np.count_nonzero(~np.isfinite(heights)))
    if n_invalid:
        logger.warning(f"Height field contains {n_invalid} non-finite samples")

    logger.debug(f"Built {heights.shape[1]}x{heights.shape[0]} height field with scale={scale}")
    return heights
