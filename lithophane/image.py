"""Image decoding and brightness conversion.

This module is the boundary between image files and the pipeline. It decodes
images with OpenCV and converts them into a brightness grid of floats in
[0, 1], either as perceived lightness (CIE L*) or as plain linear gray.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

import cv2
import numpy as np

from lithophane.errors import IOFailure

logger = logging.getLogger(__name__)

BRIGHTNESS_MODES = ("lightness", "linear")

# Rec. 709 luminance weights for linear R, G, B
LUMINANCE_WEIGHTS = np.array([0.2126, 0.7152, 0.0722])

# CIE constants for the L* curve
CIE_EPSILON = 216.0 / 24389.0
CIE_KAPPA = 24389.0 / 27.0


def load_image(path: Union[str, Path]) -> np.ndarray:
    """Decode an image file into a numpy array.

    Args:
        path: Path to a PNG, JPEG, BMP, TIFF or other OpenCV readable image

    Returns:
        HxW (gray), HxWx3 (BGR) or HxWx4 (BGRA) array in the file's bit depth

    Raises:
        IOFailure: If the file does not exist or cannot be decoded
    """
    path = Path(path)
    if not path.is_file():
        raise IOFailure(f"Image not found: {path}")

    image = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise IOFailure(f"Failed to decode image: {path}")

    logger.info(f"Loaded {path.name}: {image.shape[1]}x{image.shape[0]} ({image.dtype})")
    return image


def normalize_samples(image: np.ndarray) -> np.ndarray:
    """Scale integer samples to floats in [0, 1].

    Float input is assumed to be normalized already and is only clipped.
    """
    if np.issubdtype(image.dtype, np.integer):
        max_value = np.iinfo(image.dtype).max
        return image.astype(np.float64) / max_value
    return np.clip(image.astype(np.float64), 0.0, 1.0)


def srgb_to_linear(srgb: np.ndarray) -> np.ndarray:
    """Convert gamma encoded sRGB values in [0, 1] to linear RGB."""
    return np.where(
        srgb <= 0.04045,
        srgb / 12.92,
        ((srgb + 0.055) / 1.055) ** 2.4,
    )


def luminance_to_lightness(luminance: np.ndarray) -> np.ndarray:
    """Convert relative luminance Y in [0, 1] to perceived lightness L* in [0, 100]."""
    return np.where(
        luminance < CIE_EPSILON,
        luminance * CIE_KAPPA,
        116.0 * np.cbrt(luminance) - 16.0,
    )


def _split_color(image: np.ndarray) -> np.ndarray:
    """Return an HxWx3 RGB array, replicating gray input and dropping alpha."""
    if image.ndim == 2:
        return np.repeat(image[:, :, np.newaxis], 3, axis=2)
    if image.ndim == 3 and image.shape[2] == 1:
        return np.repeat(image, 3, axis=2)
    if image.ndim == 3 and image.shape[2] in (3, 4):
        # OpenCV decodes to BGR(A)
        return image[:, :, 2::-1]
    raise ValueError(f"Unsupported image shape {image.shape}")


def to_brightness(
    image: np.ndarray,
    mode: str = "lightness",
    invert: bool = False
) -> np.ndarray:
    """Convert a decoded image into a brightness grid.

    Args:
        image: Gray, BGR or BGRA image as returned by load_image. Integer
            dtypes are normalized by their maximum, floats must be in [0, 1]
        mode: "lightness" for perceived lightness L*/100 of the sRGB pixel,
            "linear" for the plain gray value
        invert: If True, dark pixels map to high brightness

    Returns:
        HxW float64 array with values in [0, 1]
    """
    if mode not in BRIGHTNESS_MODES:
        raise ValueError(f"Unknown brightness mode '{mode}', expected one of {BRIGHTNESS_MODES}")

    rgb = normalize_samples(_split_color(image))

    if mode == "lightness":
        luminance = srgb_to_linear(rgb) @ LUMINANCE_WEIGHTS
        brightness = luminance_to_lightness(luminance) / 100.0
    else:
        gray = cv2.cvtColor(np.ascontiguousarray(rgb, dtype=np.float32), cv2.COLOR_RGB2GRAY)
        brightness = gray.astype(np.float64)

    brightness = np.clip(brightness, 0.0, 1.0)
    if invert:
        brightness = 1.0 - brightness

    if brightness.size:
        logger.debug(
            f"Brightness ({mode}, invert={invert}): "
            f"min={np.nanmin(brightness):.4f}, max={np.nanmax(brightness):.4f}"
        )
    return brightness
