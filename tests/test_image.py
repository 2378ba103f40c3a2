"""Tests for image decoding and brightness conversion."""

import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path

import cv2
import numpy as np

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from lithophane import image
from lithophane.errors import IOFailure


class TestBrightness(unittest.TestCase):
    """Test conversion of decoded images to brightness grids."""

    def test_black_and_white(self):
        """Black maps to 0 and white to 1 in both modes."""
        gray = np.array([[0, 255]], dtype=np.uint8)
        for mode in image.BRIGHTNESS_MODES:
            brightness = image.to_brightness(gray, mode=mode)
            np.testing.assert_allclose(brightness, [[0.0, 1.0]], atol=1e-6, err_msg=mode)

    def test_mid_gray_lightness(self):
        """sRGB 128 has a perceived lightness of about 53.6."""
        gray = np.full((2, 2), 128, dtype=np.uint8)
        brightness = image.to_brightness(gray, mode="lightness")
        self.assertAlmostEqual(float(brightness[0, 0]), 0.536, delta=0.005)

    def test_mid_gray_linear(self):
        """Linear mode returns the normalized gray value."""
        gray = np.full((2, 2), 128, dtype=np.uint8)
        brightness = image.to_brightness(gray, mode="linear")
        self.assertAlmostEqual(float(brightness[0, 0]), 128 / 255, delta=1e-4)

    def test_channel_order(self):
        """Images are interpreted as BGR, as decoded by OpenCV."""
        blue = np.zeros((1, 1, 3), dtype=np.uint8)
        blue[..., 0] = 255
        red = np.zeros((1, 1, 3), dtype=np.uint8)
        red[..., 2] = 255

        blue_l = float(image.to_brightness(blue)[0, 0])
        red_l = float(image.to_brightness(red)[0, 0])

        self.assertAlmostEqual(blue_l, 0.323, delta=0.01)
        self.assertAlmostEqual(red_l, 0.532, delta=0.01)

    def test_alpha_ignored(self):
        """The alpha channel does not change brightness."""
        rng = np.random.default_rng(3)
        bgr = rng.integers(0, 256, size=(5, 6, 3), dtype=np.uint8)
        bgra = np.dstack([bgr, np.zeros((5, 6), dtype=np.uint8)])
        np.testing.assert_array_equal(image.to_brightness(bgr), image.to_brightness(bgra))

    def test_sixteen_bit(self):
        """16-bit samples are normalized by 65535."""
        gray = np.array([[0, 65535]], dtype=np.uint16)
        np.testing.assert_allclose(image.to_brightness(gray), [[0.0, 1.0]], atol=1e-6)

    def test_float_input_clipped(self):
        """Float images are assumed normalized and clipped to [0, 1]."""
        gray = np.array([[-0.5, 0.5, 1.5]])
        brightness = image.to_brightness(gray, mode="linear")
        np.testing.assert_allclose(brightness, [[0.0, 0.5, 1.0]], atol=1e-6)

    def test_invert(self):
        """Inverted brightness is 1 - brightness."""
        rng = np.random.default_rng(5)
        gray = rng.integers(0, 256, size=(8, 8), dtype=np.uint8)
        normal = image.to_brightness(gray)
        inverted = image.to_brightness(gray, invert=True)
        np.testing.assert_allclose(inverted, 1.0 - normal)

    def test_range_and_shape(self):
        """Output is HxW and within [0, 1]."""
        rng = np.random.default_rng(11)
        bgr = rng.integers(0, 256, size=(9, 13, 3), dtype=np.uint8)
        brightness = image.to_brightness(bgr)
        self.assertEqual(brightness.shape, (9, 13))
        self.assertGreaterEqual(brightness.min(), 0.0)
        self.assertLessEqual(brightness.max(), 1.0)

    def test_invalid_mode_and_shape(self):
        """Unknown modes and image shapes are rejected."""
        with self.assertRaises(ValueError):
            image.to_brightness(np.zeros((2, 2), dtype=np.uint8), mode="hsv")
        with self.assertRaises(ValueError):
            image.to_brightness(np.zeros((2, 2, 2), dtype=np.uint8))


class TestLoadImage(unittest.TestCase):
    """Test image decoding."""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    def test_load_png(self):
        """A written PNG decodes to the same pixels."""
        pixels = np.arange(12, dtype=np.uint8).reshape(3, 4) * 20
        path = os.path.join(self.test_dir, "gray.png")
        cv2.imwrite(path, pixels)

        loaded = image.load_image(path)
        np.testing.assert_array_equal(loaded, pixels)

    def test_missing_file(self):
        """A missing file raises IOFailure."""
        with self.assertRaises(IOFailure):
            image.load_image(os.path.join(self.test_dir, "missing.png"))

    def test_undecodable_file(self):
        """A file that is not an image raises IOFailure."""
        path = os.path.join(self.test_dir, "broken.png")
        with open(path, "wb") as f:
            f.write(b"this is not an image")
        with self.assertRaises(IOFailure):
            image.load_image(path)


if __name__ == "__main__":
    unittest.main()
