"""End-to-end lithophane generation.

This module chains the four stages: resampling, height mapping,
triangulation and STL serialization. All parameters travel in an explicit
GenerationRequest, and every invocation owns its grids and buffers, so
independent requests can run concurrently without locking.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

import numpy as np

from lithophane import heightfield, mesh, resample, stl
from lithophane.evaluate import GenerationMetrics, Timer
from lithophane.mesh import MeshBuffer

logger = logging.getLogger(__name__)

STL_EXTENSION = ".stl"


@dataclass(frozen=True)
class GenerationRequest:
    """Inputs of one generation run.

    Attributes:
        brightness: HxW brightness grid with values in [0, 1]
        scale: Height of a fully bright sample in output units
        target_width: Number of grid columns after resampling
        method: Resampling filter name
        chunk_rows: Cell rows triangulated per band
        progress: Whether to show a progress bar while triangulating
    """

    brightness: np.ndarray
    scale: float
    target_width: int
    method: str = "nearest"
    chunk_rows: int = 256
    progress: bool = False


@dataclass
class GenerationResult:
    """Everything produced by one generation run."""

    brightness: np.ndarray
    heights: np.ndarray
    mesh: MeshBuffer
    data: bytes
    metrics: GenerationMetrics = field(default_factory=GenerationMetrics)


def default_output_path(image_path: Union[str, Path]) -> Path:
    """Return the image path with its extension replaced by .stl."""
    return Path(image_path).with_suffix(STL_EXTENSION)


def generate(request: GenerationRequest, header: str = stl.DEFAULT_HEADER) -> GenerationResult:
    """Run the full pipeline for a request.

    Any stage failure propagates immediately. Nothing is written to disk.

    Args:
        request: Generation parameters and source brightness grid
        header: STL header text

    Returns:
        GenerationResult holding the intermediate grids, the mesh and the
        serialized STL bytes
    """
    pipeline_timer = Timer("Pipeline")
    pipeline_timer.start()

    metrics = GenerationMetrics()
    source = np.asarray(request.brightness)
    if source.ndim == 2:
        metrics.update("source_size", [source.shape[1], source.shape[0]])

    with Timer("Resample") as timer:
        brightness = resample.resample(source, request.target_width, request.method)
        metrics.update_stage_timing("resample", timer.elapsed)

    with Timer("Height Field") as timer:
        heights = heightfield.build_heightfield(brightness, request.scale)
        metrics.update_stage_timing("heightfield", timer.elapsed)

    with Timer("Mesh") as timer:
        surface = mesh.build_mesh(heights, chunk_rows=request.chunk_rows, progress=request.progress)
        metrics.update_stage_timing("mesh", timer.elapsed)
    metrics.compute_mesh_metrics(surface)

    with Timer("Serialize") as timer:
        data = stl.mesh_to_bytes(surface, header)
        metrics.update_stage_timing("serialize", timer.elapsed)
    metrics.update("file_size_bytes", len(data))

    metrics.update("runtime_s", pipeline_timer.stop())
    logger.info(
        f"Generated {len(surface)} triangles ({len(data)} bytes) "
        f"in {metrics.metrics['runtime_s']:.2f}s"
    )

    return GenerationResult(
        brightness=brightness,
        heights=heights,
        mesh=surface,
        data=data,
        metrics=metrics,
    )


def generate_file(
    request: GenerationRequest,
    output_path: Union[str, Path],
    header: str = stl.DEFAULT_HEADER
) -> GenerationResult:
    """Run the pipeline and write the STL to output_path.

    The file is only created once generation has fully succeeded.
    """
    result = generate(request, header)
    stl.write_stl(result.mesh, output_path, header)
    logger.info(f"Lithophane saved to {output_path}")
    return result
