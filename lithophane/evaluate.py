"""Diagnostics for lithophane generation.

This module provides a stage timer and a metrics container that records
grid sizes, triangle counts (including dropped triangles) and the size of
the serialized file for each generation run.
"""

from __future__ import annotations

import logging
import time
from typing import Dict, Optional, Union

import numpy as np

from lithophane.mesh import MeshBuffer

logger = logging.getLogger(__name__)


def mesh_statistics(mesh: MeshBuffer) -> Dict[str, Union[int, float, list]]:
    """Summarize the geometry of a mesh.

    Args:
        mesh: Generated mesh

    Returns:
        Dictionary with the bounding box, z range, mean normal z component and
        the number of downward facing triangles
    """
    if len(mesh) == 0:
        logger.warning("Empty mesh provided for statistics")
        return {"n_triangles": 0}

    points = mesh.triangles.reshape(-1, 3)
    bbox_min = points.min(axis=0)
    bbox_max = points.max(axis=0)

    # A uniform winding keeps every normal on the +z side
    downward = int(np.count_nonzero(mesh.normals[:, 2] < 0))

    return {
        "n_triangles": len(mesh),
        "bbox_min": bbox_min.tolist(),
        "bbox_max": bbox_max.tolist(),
        "z_min": float(bbox_min[2]),
        "z_max": float(bbox_max[2]),
        "mean_normal_z": float(np.mean(mesh.normals[:, 2])),
        "n_downward": downward,
    }


class Timer:
    """Utility class for timing operations with context manager support."""

    def __init__(self, name: str = "Timer", logger: Optional[logging.Logger] = None):
        """Initialize timer.

        Args:
            name: Timer name for logging
            logger: Logger to use (if None, uses module logger)
        """
        self.name = name
        self.logger = logger or logging.getLogger(__name__)
        self.start_time = None
        self.end_time = None

    def start(self) -> None:
        """Start the timer."""
        self.start_time = time.perf_counter()
        self.end_time = None

    def stop(self) -> float:
        """Stop the timer and return elapsed time in seconds."""
        if self.start_time is None:
            self.logger.warning(f"{self.name}: Timer stopped without being started")
            return 0.0

        self.end_time = time.perf_counter()
        elapsed = self.end_time - self.start_time
        self.logger.debug(f"{self.name}: {elapsed:.4f}s")
        return elapsed

    def __enter__(self) -> "Timer":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    @property
    def elapsed(self) -> float:
        """Elapsed seconds; frozen once the timer is stopped."""
        if self.start_time is None:
            return 0.0
        end_time = self.end_time if self.end_time is not None else time.perf_counter()
        return end_time - self.start_time


class GenerationMetrics:
    """Class for collecting metrics of one lithophane generation."""

    def __init__(self):
        self.metrics = {
            "source_size": None,
            "grid_size": None,
            "expected_triangles": 0,
            "n_triangles": 0,
            "n_dropped": 0,
            "height_min": None,
            "height_max": None,
            "file_size_bytes": 0,
            "runtime_s": 0.0,
            "stage_timings": {},
        }

    def update(self, metric_name: str, value) -> None:
        """Set a single metric."""
        self.metrics[metric_name] = value

    def update_stage_timing(self, stage_name: str, time_s: float) -> None:
        """Record the duration of a pipeline stage in seconds."""
        self.metrics["stage_timings"][stage_name] = time_s

    def compute_mesh_metrics(self, mesh: MeshBuffer) -> None:
        """Record triangle counts and the height range of a mesh.

        Args:
            mesh: Generated mesh
        """
        height, width = mesh.grid_shape
        self.metrics["grid_size"] = [width, height]
        self.metrics["expected_triangles"] = mesh.expected_triangles
        self.metrics["n_triangles"] = len(mesh)
        self.metrics["n_dropped"] = mesh.dropped

        stats = mesh_statistics(mesh)
        self.metrics["height_min"] = stats.get("z_min")
        self.metrics["height_max"] = stats.get("z_max")

    def to_dict(self) -> Dict:
        """Return a copy of the metrics."""
        metrics = self.metrics.copy()
        metrics["stage_timings"] = dict(self.metrics["stage_timings"])
        return metrics

    def summary(self) -> str:
        """Generate a human-readable summary of metrics."""
        lines = ["Lithophane Metrics:"]

        if self.metrics["source_size"] is not None:
            lines.append(f"  Source image: {self.metrics['source_size'][0]}x{self.metrics['source_size'][1]}")
        if self.metrics["grid_size"] is not None:
            lines.append(f"  Height grid: {self.metrics['grid_size'][0]}x{self.metrics['grid_size'][1]}")

        lines.append(
            f"  Triangles: {self.metrics['n_triangles']} of {self.metrics['expected_triangles']}"
        )
        if self.metrics["n_dropped"]:
            lines.append(f"  Dropped triangles: {self.metrics['n_dropped']}")

        if self.metrics["height_min"] is not None:
            lines.append(
                f"  Height range: {self.metrics['height_min']:.3f} .. {self.metrics['height_max']:.3f}"
            )

        lines.append(f"  File size: {self.metrics['file_size_bytes']} bytes")
        lines.append(f"  Total runtime: {self.metrics['runtime_s']:.2f}s")

        if self.metrics["stage_timings"]:
            lines.append("  Stage timings:")
            for stage, time_s in self.metrics["stage_timings"].items():
                lines.append(f"    {stage}: {time_s:.3f}s")

        return "\n".join(lines)
