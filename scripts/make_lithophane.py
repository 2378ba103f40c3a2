#!/usr/bin/env python3
"""
Lithophane Generator

This script converts an image into a binary STL lithophane surface: the
image is resampled to the requested width, its brightness is mapped to
height and the resulting grid is triangulated and written next to the
source image.
"""

from __future__ import annotations

import argparse
import copy
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

import yaml

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from lithophane import image, pipeline, resample, visualise
from lithophane.errors import LithophaneError


LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"

logger = logging.getLogger("lithophane")

DEFAULT_CONFIG: Dict = {
    "image": {"mode": "lightness", "invert": False},
    "resample": {"width": 80, "method": "nearest"},
    "heightfield": {"scale": 2.0},
    "mesh": {"chunk_rows": 256, "progress": False},
    "output": {
        "header": "binary STL lithophane surface",
        "report": False,
        "preview": False,
    },
}


def load_config(config_path: Optional[str] = None) -> Dict:
    """Load configuration from a YAML file over the built-in defaults.

    Args:
        config_path: Path to configuration file. If None, config.yaml at the
            repository root is used when present

    Returns:
        Configuration dictionary with every section filled in
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path is None:
        default_path = Path(__file__).resolve().parent.parent / "config.yaml"
        if not default_path.exists():
            return config
        config_path = default_path

    with open(config_path, "r") as f:
        loaded = yaml.safe_load(f) or {}

    for section, values in loaded.items():
        if isinstance(values, dict) and isinstance(config.get(section), dict):
            config[section].update(values)
        else:
            config[section] = values

    return config


def apply_overrides(config: Dict, args: argparse.Namespace) -> Dict:
    """Overwrite configuration values with command-line arguments that were given."""
    overrides = {
        ("image", "mode"): args.mode,
        ("resample", "width"): args.width,
        ("resample", "method"): args.method,
        ("heightfield", "scale"): args.scale,
    }
    for (section, key), value in overrides.items():
        if value is not None:
            config[section][key] = value

    if args.invert:
        config["image"]["invert"] = True
    if args.report:
        config["output"]["report"] = True
    if args.preview:
        config["output"]["preview"] = True

    return config


def run(
    image_path: str,
    output_path: Optional[str] = None,
    config: Optional[Dict] = None
) -> Dict:
    """Generate a lithophane STL from an image file.

    Args:
        image_path: Path to the source image
        output_path: Path of the STL file, defaults to the image path with .stl
        config: Configuration dictionary as returned by load_config

    Returns:
        Dictionary of generation metrics
    """
    if config is None:
        config = load_config()

    output_path = Path(output_path) if output_path else pipeline.default_output_path(image_path)

    source = image.load_image(image_path)
    brightness = image.to_brightness(
        source,
        mode=config["image"]["mode"],
        invert=config["image"]["invert"],
    )

    request = pipeline.GenerationRequest(
        brightness=brightness,
        scale=config["heightfield"]["scale"],
        target_width=config["resample"]["width"],
        method=config["resample"]["method"],
        chunk_rows=config["mesh"]["chunk_rows"],
        progress=config["mesh"]["progress"],
    )
    result = pipeline.generate_file(request, output_path, header=config["output"]["header"])
    metrics = result.metrics.to_dict()

    if config["output"]["preview"]:
        stem = output_path.with_suffix("")
        visualise.plot_comparison(source, result.heights, f"{stem}.heightfield.png", title=Path(image_path).name)
        visualise.plot_mesh_preview(result.mesh, f"{stem}.preview.png")

    if config["output"]["report"]:
        report_path = output_path.with_suffix(".report.json")
        with open(report_path, "w") as f:
            json.dump(metrics, f, indent=2)
        logger.info(f"Report saved to {report_path}")

    logger.info("\n" + result.metrics.summary())
    return metrics


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="Generate a lithophane STL from an image")
    parser.add_argument(
        "--image", "-i", dest="image_path", required=True,
        help="Path to the source image"
    )
    parser.add_argument(
        "--output", "-o", dest="output_path", default=None,
        help="Path of the STL file (default: image path with .stl extension)"
    )
    parser.add_argument(
        "--width", "-w", dest="width", type=int, default=None,
        help="Output grid width in cells"
    )
    parser.add_argument(
        "--scale", "-s", dest="scale", type=float, default=None,
        help="Height of a fully bright pixel"
    )
    parser.add_argument(
        "--method", "-m", dest="method", default=None,
        choices=list(resample.INTERPOLATION_METHODS),
        help="Resampling filter"
    )
    parser.add_argument(
        "--mode", dest="mode", default=None,
        choices=list(image.BRIGHTNESS_MODES),
        help="Brightness conversion"
    )
    parser.add_argument(
        "--invert", dest="invert", action="store_true",
        help="Make dark areas tall"
    )
    parser.add_argument(
        "--config", "-c", dest="config_path", default=None,
        help="Path to configuration file"
    )
    parser.add_argument(
        "--report", dest="report", action="store_true",
        help="Write a JSON report next to the STL"
    )
    parser.add_argument(
        "--preview", dest="preview", action="store_true",
        help="Write preview images next to the STL"
    )
    parser.add_argument(
        "--log-file", dest="log_file", default=None,
        help="Also write log messages to this file"
    )
    parser.add_argument(
        "--verbose", "-v", dest="verbose", action="store_true",
        help="Enable debug logging"
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main function to parse arguments and generate the lithophane."""
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),
        ],
    )
    if args.log_file:
        file_handler = logging.FileHandler(args.log_file)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(file_handler)

    try:
        config = apply_overrides(load_config(args.config_path), args)
        run(args.image_path, args.output_path, config)
    except LithophaneError as e:
        logger.error(f"Lithophane generation failed: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Error generating lithophane: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
