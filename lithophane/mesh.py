"""Height field triangulation.

This module turns a height grid into the top surface of a lithophane: two
triangles per grid cell with flat per-face normals. The surface is open,
with no base and no side walls; closing and thickening it is left to the
slicer.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Iterator, NamedTuple, Tuple

import numpy as np
from tqdm import tqdm

from lithophane.errors import DegenerateMesh, InvalidDimension

logger = logging.getLogger(__name__)


class Triangle(NamedTuple):
    """A single facet: three vertices in winding order and its unit normal."""

    v0: np.ndarray
    v1: np.ndarray
    v2: np.ndarray
    normal: np.ndarray


@dataclass(frozen=True)
class MeshBuffer:
    """Triangles produced by one generation run.

    Attributes:
        triangles: Nx3x3 array, one row of (x, y, z) per vertex
        normals: Nx3 array of unit face normals
        grid_shape: Shape (height, width) of the height grid the mesh was built from
        dropped: Number of triangles rejected by validation
    """

    triangles: np.ndarray
    normals: np.ndarray
    grid_shape: Tuple[int, int]
    dropped: int = 0

    def __len__(self) -> int:
        return self.triangles.shape[0]

    def __getitem__(self, index: int) -> Triangle:
        v0, v1, v2 = self.triangles[index]
        return Triangle(v0, v1, v2, self.normals[index])

    def __iter__(self) -> Iterator[Triangle]:
        for index in range(len(self)):
            yield self[index]

    @property
    def expected_triangles(self) -> int:
        """Triangle count of the full grid, before any were dropped."""
        height, width = self.grid_shape
        return 2 * (width - 1) * (height - 1)


def triangulate_rows(heights: np.ndarray, row_start: int, row_stop: int) -> np.ndarray:
    """Split the grid cells of rows [row_start, row_stop) into triangles.

    For the cell at (x, y) with corners A=(x, y), B=(x+1, y), C=(x, y+1)
    and D=(x+1, y+1), the triangles (A, B, C) and (B, D, C) are emitted in
    that order. Cells are ordered row by row. With x along columns and y
    along rows, both triangles wind so their normals face +z.

    Args:
        heights: HxW height grid
        row_start: First cell row
        row_stop: One past the last cell row (at most H - 1)

    Returns:
        Array of shape (2 * (row_stop - row_start) * (W - 1), 3, 3)
    """
    band = heights[row_start:row_stop + 1]
    ys, xs = np.mgrid[row_start:row_stop + 1, 0:band.shape[1]].astype(np.float64)
    vertices = np.stack((xs, ys, band), axis=-1)

    a = vertices[:-1, :-1]
    b = vertices[:-1, 1:]
    c = vertices[1:, :-1]
    d = vertices[1:, 1:]

    first = np.stack((a, b, c), axis=-2)
    second = np.stack((b, d, c), axis=-2)
    return np.stack((first, second), axis=2).reshape(-1, 3, 3)


def _cross_products(triangles: np.ndarray) -> np.ndarray:
    with np.errstate(invalid="ignore", over="ignore"):
        u = triangles[:, 1] - triangles[:, 0]
        v = triangles[:, 2] - triangles[:, 0]
        return np.cross(u, v)


def face_normals(triangles: np.ndarray) -> np.ndarray:
    """Compute unit normals as normalize(cross(v1 - v0, v2 - v0)).

    Triangles with a zero or non-finite cross product get a zero normal.

    Args:
        triangles: Nx3x3 array of triangle vertices

    Returns:
        Nx3 array of unit normals
    """
    cross = _cross_products(triangles)
    with np.errstate(invalid="ignore", over="ignore"):
        lengths = np.linalg.norm(cross, axis=1)

    normals = np.zeros_like(cross)
    usable = np.isfinite(lengths) & (lengths > 0)
    normals[usable] = cross[usable] / lengths[usable, np.newaxis]
    return normals


def valid_triangles(triangles: np.ndarray) -> np.ndarray:
    """Return a boolean mask of triangles that are safe to emit.

    A triangle is valid when all nine coordinates are finite, its three
    vertices are pairwise distinct, and it spans a non-zero area.
    """
    finite = np.isfinite(triangles).all(axis=(1, 2))

    v0, v1, v2 = triangles[:, 0], triangles[:, 1], triangles[:, 2]
    coincident = (
        np.all(v0 == v1, axis=1)
        | np.all(v1 == v2, axis=1)
        | np.all(v0 == v2, axis=1)
    )

    cross = _cross_products(triangles)
    with np.errstate(invalid="ignore"):
        has_area = np.any(cross != 0, axis=1)

    return finite & ~coincident & has_area


def build_mesh(
    heights: np.ndarray,
    chunk_rows: int = 256,
    progress: bool = False
) -> MeshBuffer:
    """Triangulate a height grid into an open top surface.

    The grid is processed in bands of chunk_rows cell rows. Each triangle
    depends only on its own cell, so the result does not depend on the
    band size.

    Args:
        heights: HxW height grid with H, W >= 2
        chunk_rows: Number of cell rows triangulated at once
        progress: Whether to show a progress bar

    Returns:
        MeshBuffer with at most 2 * (W - 1) * (H - 1) triangles

    Raises:
        InvalidDimension: If the grid is not 2D or smaller than 2x2
        DegenerateMesh: If every triangle was dropped
    """
    heights = np.asarray(heights, dtype=np.float64)
    if heights.ndim != 2:
        raise InvalidDimension(f"Expected a 2D height grid, got shape {heights.shape}")

    grid_h, grid_w = heights.shape
    if grid_h < 2 or grid_w < 2:
        raise InvalidDimension(f"Height grid must be at least 2x2, got {grid_w}x{grid_h}")
    if chunk_rows < 1:
        raise ValueError(f"chunk_rows must be positive, got {chunk_rows}")

    start_time = time.perf_counter()
    n_cell_rows = grid_h - 1
    logger.info(f"Triangulating {grid_w}x{grid_h} height grid")

    triangle_chunks = []
    normal_chunks = []
    dropped = 0

    bands = range(0, n_cell_rows, chunk_rows)
    for row_start in tqdm(bands, desc="Triangulating", disable=not progress):
        row_stop = min(row_start + chunk_rows, n_cell_rows)
        triangles = triangulate_rows(heights, row_start, row_stop)

        # Validate what the file will hold; heights beyond float32 range become inf
        with np.errstate(over="ignore"):
            stored = triangles.astype(np.float32)
        valid = valid_triangles(stored)
        dropped += int(np.count_nonzero(~valid))

        kept = triangles[valid]
        triangle_chunks.append(kept)
        normal_chunks.append(face_normals(kept))

    triangles = np.concatenate(triangle_chunks)
    normals = np.concatenate(normal_chunks)

    if len(triangles) == 0:
        raise DegenerateMesh(f"All {dropped} triangles were dropped as degenerate", dropped=dropped)

    if dropped:
        logger.warning(f"Dropped {dropped} degenerate or non-finite triangles")

    triangles.setflags(write=False)
    normals.setflags(write=False)

    elapsed_time = time.perf_counter() - start_time
    logger.info(
        f"Mesh complete: {len(triangles)} triangles, {dropped} dropped "
        f"(elapsed time: {elapsed_time:.2f}s)"
    )

    return MeshBuffer(
        triangles=triangles,
        normals=normals,
        grid_shape=(grid_h, grid_w),
        dropped=dropped,
    )
