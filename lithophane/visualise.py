"""Preview renders for lithophanes.

This module renders height maps and meshes to image files with matplotlib,
so a result can be checked before it is sent to the slicer.
"""

from __future__ import annotations

import logging
from typing import Optional

import cv2
import matplotlib.pyplot as plt
import numpy as np
from mpl_toolkits.mplot3d.art3d import Poly3DCollection

from lithophane.mesh import MeshBuffer

logger = logging.getLogger(__name__)


def plot_heightfield(
    heights: np.ndarray,
    output_path: str,
    colormap: str = "gray"
) -> None:
    """Save a height map with a colorbar.

    Args:
        heights: HxW height grid
        output_path: Path to save the image
        colormap: Colormap used for heights
    """
    fig, ax = plt.subplots(figsize=(8, 8))

    # Non-finite samples are shown as transparent
    masked = np.ma.masked_invalid(heights)
    im = ax.imshow(masked, cmap=colormap, interpolation="nearest")
    ax.set_title(f"Height Field ({heights.shape[1]}x{heights.shape[0]})")
    ax.axis("off")

    cbar = plt.colorbar(im, ax=ax, fraction=0.046, pad=0.04)
    cbar.set_label("Height")

    plt.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close(fig)

    logger.info(f"Height field visualization saved to {output_path}")


def plot_mesh_preview(
    mesh: MeshBuffer,
    output_path: str,
    max_triangles: int = 20000,
    colormap: str = "viridis"
) -> None:
    """Render a shaded 3D preview of a mesh.

    Large meshes are subsampled to at most max_triangles faces, which is
    enough to judge the overall relief.

    Args:
        mesh: Mesh to render
        output_path: Path to save the image
        max_triangles: Maximum number of triangles drawn
        colormap: Colormap used for shading by height
    """
    triangles = mesh.triangles
    if len(triangles) > max_triangles:
        step = int(np.ceil(len(triangles) / max_triangles))
        triangles = triangles[::step]
        logger.debug(f"Subsampled preview to {len(triangles)} of {len(mesh)} triangles")

    fig = plt.figure(figsize=(10, 8))
    ax = fig.add_subplot(111, projection="3d")

    # Shade faces by mean height
    z = triangles[:, :, 2].mean(axis=1)
    z_range = np.ptp(z) if len(z) else 0.0
    shade = (z - z.min()) / z_range if z_range > 0 else np.zeros_like(z)

    collection = Poly3DCollection(triangles, facecolors=plt.get_cmap(colormap)(shade), linewidths=0)
    ax.add_collection3d(collection)

    points = triangles.reshape(-1, 3)
    ax.set_xlim(points[:, 0].min(), points[:, 0].max())
    ax.set_ylim(points[:, 1].max(), points[:, 1].min())
    ax.set_zlim(points[:, 2].min(), max(points[:, 2].max(), points[:, 2].min() + 1e-6))

    ax.set_xlabel("X")
    ax.set_ylabel("Y")
    ax.set_zlabel("Z")
    ax.set_title(f"Lithophane Surface ({len(mesh)} triangles)")

    plt.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close(fig)

    logger.info(f"Mesh preview saved to {output_path}")


def plot_comparison(
    image: np.ndarray,
    heights: np.ndarray,
    output_path: str,
    title: Optional[str] = None
) -> None:
    """Show the source image next to the height map derived from it.

    Args:
        image: Gray, BGR or BGRA image as decoded by OpenCV
        heights: HxW height grid
        output_path: Path to save the image
        title: Optional figure title
    """
    fig, axs = plt.subplots(1, 2, figsize=(16, 8))

    if image.ndim == 2:
        axs[0].imshow(image, cmap="gray")
    elif image.shape[2] == 4:
        axs[0].imshow(cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA))
    else:
        axs[0].imshow(cv2.cvtColor(image, cv2.COLOR_BGR2RGB))
    axs[0].set_title("Source Image")
    axs[0].axis("off")

    im = axs[1].imshow(np.ma.masked_invalid(heights), cmap="gray", interpolation="nearest")
    axs[1].set_title(f"Height Field (max: {np.nanmax(heights):.2f})")
    axs[1].axis("off")
    plt.colorbar(im, ax=axs[1], fraction=0.046, pad=0.04)

    if title:
        fig.suptitle(title)

    plt.tight_layout()
    plt.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close(fig)

    logger.info(f"Comparison saved to {output_path}")
