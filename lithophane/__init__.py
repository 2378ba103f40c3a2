"""Lithophane generation from grayscale images.

A Python project that turns an image into a height-mapped surface mesh,
where brightness becomes height, and writes it as a binary STL ready for a
3D-printing slicer.
"""

from __future__ import annotations

__version__ = "0.1.0"
