"""Brightness grid resampling.

This module resizes a brightness grid to a requested output width while
preserving the source aspect ratio. The output width is the main quality
knob of a lithophane: every output cell becomes one vertex of the mesh.
"""

from __future__ import annotations

import logging
import math
import numbers
import time
from typing import Dict, Tuple

import cv2
import numpy as np

from lithophane.errors import InvalidDimension

logger = logging.getLogger(__name__)

MIN_TARGET_SIZE = 2

# Resampling filters by name
INTERPOLATION_METHODS: Dict[str, int] = {
    "nearest": cv2.INTER_NEAREST_EXACT,
    "area": cv2.INTER_AREA,
    "linear": cv2.INTER_LINEAR,
    "cubic": cv2.INTER_CUBIC,
    "lanczos": cv2.INTER_LANCZOS4,
    # Gaussian prefilter, then linear sampling
    "gaussian": cv2.INTER_LINEAR,
}


def target_shape(source_shape: Tuple[int, int], target_width: int) -> Tuple[int, int]:
    """Compute the (height, width) of the resampled grid.

    The height is rounded half up from ``target_width * srcH / srcW`` and
    never drops below two rows.

    Args:
        source_shape: Source grid shape (height, width)
        target_width: Requested number of output columns

    Returns:
        Tuple of (target_height, target_width)

    Raises:
        InvalidDimension: If the target width is below two or the source is empty
    """
    if isinstance(target_width, bool) or not isinstance(target_width, numbers.Integral):
        raise InvalidDimension(f"Target width must be an integer, got {target_width!r}")
    if target_width < MIN_TARGET_SIZE:
        raise InvalidDimension(f"Target width must be at least {MIN_TARGET_SIZE}, got {target_width}")

    src_h, src_w = source_shape
    if src_h <= 0 or src_w <= 0:
        raise InvalidDimension(f"Source grid has zero area: {src_w}x{src_h}")

    target_height = math.floor(target_width * src_h / src_w + 0.5)
    return max(MIN_TARGET_SIZE, target_height), int(target_width)


def gaussian_prefilter(brightness: np.ndarray, target_h: int, target_w: int) -> np.ndarray:
    """Blur a grid before downsampling to suppress aliasing.

    The blur sigma along each axis is (factor - 1) / 2 for a downscale
    factor, so grids that are kept at size or enlarged are returned as is.
    """
    sigma_y = (brightness.shape[0] / target_h - 1.0) / 2.0
    sigma_x = (brightness.shape[1] / target_w - 1.0) / 2.0
    if sigma_x <= 0 and sigma_y <= 0:
        return brightness

    # OpenCV treats a zero sigma as "derive from the other axis"
    return cv2.GaussianBlur(
        brightness,
        (0, 0),
        sigmaX=max(sigma_x, 1e-6),
        sigmaY=max(sigma_y, 1e-6),
        borderType=cv2.BORDER_REPLICATE,
    )


def resample(
    brightness: np.ndarray,
    target_width: int,
    method: str = "nearest"
) -> np.ndarray:
    """Resample a brightness grid to a target width.

    Args:
        brightness: HxW array of brightness samples in [0, 1]
        target_width: Number of output columns (at least 2)
        method: Interpolation filter, one of INTERPOLATION_METHODS

    Returns:
        Read-only float64 array of shape (target_height, target_width)
    """
    if method not in INTERPOLATION_METHODS:
        raise ValueError(
            f"Unknown resampling method '{method}', expected one of {list(INTERPOLATION_METHODS)}"
        )

    brightness = np.asarray(brightness, dtype=np.float64)
    if brightness.ndim != 2:
        raise InvalidDimension(f"Expected a 2D brightness grid, got shape {brightness.shape}")

    start_time = time.perf_counter()
    target_h, target_w = target_shape(brightness.shape, target_width)

    source = np.ascontiguousarray(brightness)
    if method == "gaussian":
        source = gaussian_prefilter(source, target_h, target_w)

    # Border samples are replicated, so sampling never wraps around
    resampled = cv2.resize(
        source,
        (target_w, target_h),
        interpolation=INTERPOLATION_METHODS[method],
    )
    resampled = resampled.reshape(target_h, target_w)

    # Cubic and Lanczos kernels overshoot; NaN samples pass through unchanged
    resampled = np.clip(resampled, 0.0, 1.0)
    resampled.setflags(write=False)

    elapsed_time = time.perf_counter() - start_time
    logger.info(
        f"Resampled {brightness.shape[1]}x{brightness.shape[0]} -> {target_w}x{target_h} "
        f"using {method} (elapsed time: {elapsed_time:.3f}s)"
    )
    return resampled
