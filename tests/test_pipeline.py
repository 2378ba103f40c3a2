"""Tests for the complete lithophane pipeline.

This module runs the pipeline from a brightness grid or an image file to
the STL bytes, and checks the command-line script, the metrics and the
preview renders.
"""

import json
import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path

import cv2
import matplotlib
import numpy as np

matplotlib.use("Agg")

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from lithophane import evaluate, mesh, pipeline, stl, visualise
from lithophane.errors import DegenerateMesh, InvalidDimension, InvalidScale
from scripts import make_lithophane


class TestPipeline(unittest.TestCase):
    """Test the in-memory pipeline."""

    def setUp(self):
        self.output_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.output_dir)

    def test_two_by_two_scenario(self):
        """A 2x2 checker at scale 2 gives two triangles and a 184 byte file."""
        request = pipeline.GenerationRequest(
            brightness=np.array([[0.0, 1.0], [1.0, 0.0]]),
            scale=2.0,
            target_width=2,
        )
        result = pipeline.generate(request)

        np.testing.assert_array_equal(result.heights, [[0.0, 2.0], [2.0, 0.0]])
        self.assertEqual(len(result.mesh), 2)
        self.assertTrue(set(result.mesh.triangles[:, :, 2].ravel().tolist()).issubset({0.0, 2.0}))
        self.assertEqual(len(result.data), stl.HEADER_SIZE + 4 + 2 * 50)

        _, _, triangles = stl.read_stl(result.data)
        self.assertEqual(len(triangles), 2)

    def test_idempotent(self):
        """Identical requests produce byte-identical output."""
        rng = np.random.default_rng(1)
        brightness = rng.random((60, 90))
        request = pipeline.GenerationRequest(brightness=brightness, scale=3.0, target_width=30, method="area")

        first = pipeline.generate(request)
        second = pipeline.generate(request)
        self.assertEqual(first.data, second.data)

    def test_triangle_bound(self):
        """The mesh never exceeds 2 * (W - 1) * (H - 1) triangles."""
        rng = np.random.default_rng(2)
        brightness = rng.random((40, 50))
        brightness[10:12, 20:25] = np.nan
        request = pipeline.GenerationRequest(brightness=brightness, scale=1.5, target_width=50)
        result = pipeline.generate(request)

        height, width = result.heights.shape
        self.assertEqual((height, width), (40, 50))
        self.assertLess(len(result.mesh), 2 * (width - 1) * (height - 1))
        self.assertEqual(len(result.mesh) + result.mesh.dropped, 2 * (width - 1) * (height - 1))
        self.assertEqual(len(result.data), stl.expected_size(len(result.mesh)))

    def test_metrics(self):
        """Metrics record counts, sizes and stage timings."""
        request = pipeline.GenerationRequest(brightness=np.full((20, 40), 0.5), scale=2.0, target_width=10)
        metrics = pipeline.generate(request).metrics.to_dict()

        self.assertEqual(metrics["source_size"], [40, 20])
        self.assertEqual(metrics["grid_size"], [10, 5])
        self.assertEqual(metrics["n_triangles"], 2 * 9 * 4)
        self.assertEqual(metrics["n_dropped"], 0)
        self.assertEqual(metrics["file_size_bytes"], stl.expected_size(72))
        self.assertAlmostEqual(metrics["height_min"], 1.0)
        self.assertAlmostEqual(metrics["height_max"], 1.0)
        self.assertEqual(
            set(metrics["stage_timings"]), {"resample", "heightfield", "mesh", "serialize"}
        )

    def test_errors_propagate(self):
        """Stage errors abort the run."""
        brightness = np.ones((4, 4))
        with self.assertRaises(InvalidDimension):
            pipeline.generate(pipeline.GenerationRequest(brightness=brightness, scale=1.0, target_width=1))
        with self.assertRaises(InvalidScale):
            pipeline.generate(pipeline.GenerationRequest(brightness=brightness, scale=0.0, target_width=4))
        with self.assertRaises(DegenerateMesh):
            pipeline.generate(pipeline.GenerationRequest(
                brightness=np.full((4, 4), np.nan), scale=1.0, target_width=4
            ))

    def test_generate_file(self):
        """The STL is written only when generation succeeds."""
        path = os.path.join(self.output_dir, "out.stl")
        request = pipeline.GenerationRequest(brightness=np.ones((4, 4)), scale=0.0, target_width=4)
        with self.assertRaises(InvalidScale):
            pipeline.generate_file(request, path)
        self.assertFalse(os.path.exists(path))

        request = pipeline.GenerationRequest(brightness=np.ones((4, 4)), scale=1.0, target_width=4)
        with self.assertLogs("lithophane.stl", level="INFO") as logs:
            result = pipeline.generate_file(request, path)
        self.assertEqual(Path(path).read_bytes(), result.data)
        self.assertTrue(any("Wrote 18 triangles" in line for line in logs.output))

    def test_default_output_path(self):
        """Output keeps the image base name with an .stl extension."""
        self.assertEqual(pipeline.default_output_path("photos/cat.png"), Path("photos/cat.stl"))
        self.assertEqual(pipeline.default_output_path(Path("a.b.jpeg")), Path("a.b.stl"))


class TestScript(unittest.TestCase):
    """Test the command-line script."""

    def setUp(self):
        self.output_dir = tempfile.mkdtemp()

        # Horizontal gradient, 40 wide by 20 high
        gradient = np.tile(np.linspace(0, 255, 40), (20, 1)).astype(np.uint8)
        self.image_path = os.path.join(self.output_dir, "gradient.png")
        cv2.imwrite(self.image_path, gradient)

    def tearDown(self):
        shutil.rmtree(self.output_dir)

    def test_main_writes_stl_and_report(self):
        """The script writes an STL next to the image, plus a report."""
        exit_code = make_lithophane.main(["-i", self.image_path, "-w", "10", "-s", "3", "--report"])
        self.assertEqual(exit_code, 0)

        stl_path = os.path.join(self.output_dir, "gradient.stl")
        self.assertTrue(os.path.exists(stl_path))
        self.assertEqual(os.path.getsize(stl_path), stl.expected_size(2 * 9 * 4))

        report_path = os.path.join(self.output_dir, "gradient.report.json")
        with open(report_path) as f:
            report = json.load(f)
        self.assertEqual(report["n_triangles"], 72)
        self.assertLessEqual(report["height_max"], 3.0)

    def test_main_invalid_width(self):
        """Invalid parameters exit with status 1 and write nothing."""
        output_path = os.path.join(self.output_dir, "bad.stl")
        exit_code = make_lithophane.main(["-i", self.image_path, "-o", output_path, "-w", "1"])
        self.assertEqual(exit_code, 1)
        self.assertFalse(os.path.exists(output_path))

    def test_main_missing_image(self):
        """A missing image exits with status 1."""
        exit_code = make_lithophane.main(["-i", os.path.join(self.output_dir, "none.png")])
        self.assertEqual(exit_code, 1)

    def test_load_config_merges_defaults(self):
        """Values missing from the file come from the defaults."""
        config_path = os.path.join(self.output_dir, "config.yaml")
        with open(config_path, "w") as f:
            f.write("resample:\n  width: 30\nheightfield:\n  scale: 1.25\n")

        config = make_lithophane.load_config(config_path)
        self.assertEqual(config["resample"]["width"], 30)
        self.assertEqual(config["resample"]["method"], "nearest")
        self.assertEqual(config["heightfield"]["scale"], 1.25)
        self.assertEqual(config["image"]["mode"], "lightness")

    def test_overrides(self):
        """Command-line flags take precedence over the configuration."""
        args = make_lithophane.parse_args(["-i", "x.png", "-w", "120", "--method", "area", "--invert"])
        config = make_lithophane.apply_overrides(make_lithophane.load_config(), args)
        self.assertEqual(config["resample"]["width"], 120)
        self.assertEqual(config["resample"]["method"], "area")
        self.assertTrue(config["image"]["invert"])

    def test_every_resampling_method_selectable(self):
        """The --method flag accepts each resampling filter."""
        args = make_lithophane.parse_args(["-i", "x.png", "--method", "gaussian"])
        self.assertEqual(args.method, "gaussian")
        with self.assertRaises(SystemExit):
            make_lithophane.parse_args(["-i", "x.png", "--method", "bogus"])

    def test_run_with_preview(self):
        """Preview images are written next to the STL."""
        config = make_lithophane.load_config()
        config["resample"]["width"] = 8
        config["mesh"]["progress"] = False
        config["output"]["preview"] = True

        output_path = os.path.join(self.output_dir, "lith.stl")
        metrics = make_lithophane.run(self.image_path, output_path, config)

        self.assertEqual(metrics["grid_size"], [8, 4])
        self.assertTrue(os.path.exists(os.path.join(self.output_dir, "lith.preview.png")))
        self.assertTrue(os.path.exists(os.path.join(self.output_dir, "lith.heightfield.png")))


class TestEvaluate(unittest.TestCase):
    """Test timing and mesh statistics."""

    def test_timer(self):
        """Elapsed time is frozen once the timer stops."""
        with evaluate.Timer("test") as timer:
            pass
        elapsed = timer.elapsed
        self.assertGreaterEqual(elapsed, 0.0)
        self.assertEqual(timer.elapsed, elapsed)

    def test_timer_stop_without_start(self):
        """Stopping an unstarted timer reports zero and warns."""
        timer = evaluate.Timer("idle")
        with self.assertLogs("lithophane.evaluate", level="WARNING"):
            self.assertEqual(timer.stop(), 0.0)
        self.assertEqual(timer.elapsed, 0.0)

    def test_mesh_statistics(self):
        """Statistics report the bounding box and no downward normals."""
        surface = mesh.build_mesh(np.array([[0.0, 2.0, 1.0], [2.0, 0.0, 1.0]]))
        stats = evaluate.mesh_statistics(surface)
        self.assertEqual(stats["n_triangles"], 4)
        self.assertEqual(stats["bbox_min"], [0.0, 0.0, 0.0])
        self.assertEqual(stats["bbox_max"], [2.0, 1.0, 2.0])
        self.assertEqual(stats["n_downward"], 0)
        self.assertGreater(stats["mean_normal_z"], 0.0)

    def test_summary(self):
        """Summary lists triangle counts."""
        metrics = evaluate.GenerationMetrics()
        metrics.compute_mesh_metrics(mesh.build_mesh(np.zeros((2, 2))))
        self.assertIn("Triangles: 2 of 2", metrics.summary())


class TestVisualise(unittest.TestCase):
    """Test preview renders."""

    def setUp(self):
        self.output_dir = tempfile.mkdtemp()
        rng = np.random.default_rng(4)
        self.heights = rng.random((12, 16)) * 2.0

    def tearDown(self):
        shutil.rmtree(self.output_dir)

    def test_plot_heightfield(self):
        path = os.path.join(self.output_dir, "heights.png")
        visualise.plot_heightfield(self.heights, path)
        self.assertTrue(os.path.exists(path))

    def test_plot_mesh_preview_subsampled(self):
        path = os.path.join(self.output_dir, "mesh.png")
        visualise.plot_mesh_preview(mesh.build_mesh(self.heights), path, max_triangles=50)
        self.assertTrue(os.path.exists(path))

    def test_plot_comparison(self):
        path = os.path.join(self.output_dir, "comparison.png")
        source = (np.random.default_rng(9).random((12, 16, 3)) * 255).astype(np.uint8)
        visualise.plot_comparison(source, self.heights, path, title="test")
        self.assertTrue(os.path.exists(path))


if __name__ == "__main__":
    unittest.main()
