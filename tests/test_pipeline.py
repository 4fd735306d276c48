"""
Integration tests for the recognition pipeline, the third-source adapter and the CLI
"""

import contextlib
import io
import json
import os
import tempfile
import unittest

import numpy as np
import torch

from digit_vision.inference.features import FeatureRecord
from digit_vision.inference.pipeline import (
    DigitRecognitionPipeline,
    TorchProbabilitySource,
    classify,
    confidence_label,
)
from digit_vision.main import build_parser, main
from digit_vision.models.reference_net import DigitCNN
from digit_vision.models.templates import canonical_template
from digit_vision.training.renderer import StyleDescriptor, render_sample


def canonical_zero():
    style = StyleDescriptor(scale=2.8, thickness=1.0, shear_x=0.0, shear_y=0.0,
                            stretch_x=1.0, stretch_y=1.0, blur=0.0, noise=0.0)
    return render_sample(canonical_template(0), style, jitter=False)[:, :, 0]


class TestRecognition(unittest.TestCase):
    """Test end-to-end classification"""

    def setUp(self):
        self.pipeline = DigitRecognitionPipeline()

    def test_canonical_zero(self):
        result = self.pipeline.recognize(canonical_zero())
        self.assertEqual(result.predicted_digit, 0)
        self.assertGreater(result.confidence, 0.5)
        self.assertEqual(result.features.holes, 1)

    def test_probabilities_valid(self):
        result = self.pipeline.recognize(canonical_zero())
        self.assertEqual(result.probabilities.shape, (10,))
        self.assertAlmostEqual(float(result.probabilities.sum()), 1.0, places=6)
        self.assertTrue(((result.probabilities >= 0) & (result.probabilities <= 1)).all())
        self.assertAlmostEqual(result.confidence, float(result.probabilities.max()), places=6)

    def test_empty_grid_is_uniform(self):
        result = self.pipeline.recognize(np.zeros(784))
        np.testing.assert_allclose(result.probabilities, np.full(10, 0.1), atol=1e-6)
        self.assertEqual(result.features, FeatureRecord.empty())
        self.assertEqual(result.confidence_label, "low")

    def test_wrong_size_raises(self):
        with self.assertRaises(ValueError):
            self.pipeline.recognize(np.zeros(100))

    def test_display_arrays(self):
        result = self.pipeline.recognize(canonical_zero())
        for key in ("feature_vector", "heuristic_scores", "template_scores",
                    "combined", "hidden1", "hidden2", "input_sample"):
            self.assertIn(key, result.aux)
        self.assertEqual(result.aux["hidden1"].shape, (32,))
        self.assertEqual(result.aux["input_sample"].shape, (28,))

    def test_activations_do_not_affect_decision(self):
        a = DigitRecognitionPipeline(activation_seed=1).recognize(canonical_zero())
        b = DigitRecognitionPipeline(activation_seed=2).recognize(canonical_zero())
        np.testing.assert_array_equal(a.probabilities, b.probabilities)
        self.assertFalse(np.array_equal(a.aux["hidden1"], b.aux["hidden1"]))
        c = DigitRecognitionPipeline(activation_seed=1).recognize(canonical_zero())
        np.testing.assert_array_equal(a.aux["hidden1"], c.aux["hidden1"])

    def test_module_level_classify(self):
        self.assertEqual(classify(canonical_zero()).predicted_digit, 0)

    def test_to_dict_is_json_serialisable(self):
        payload = json.loads(json.dumps(self.pipeline.recognize(canonical_zero()).to_dict()))
        self.assertEqual(payload["predicted_digit"], 0)
        self.assertEqual(len(payload["probabilities"]), 10)
        self.assertIn("holes", payload["features"])

    def test_visualize(self):
        result = self.pipeline.recognize(canonical_zero())
        canvas = self.pipeline.visualize(result)
        self.assertEqual(canvas.shape, (280, 560, 3))

    def test_confidence_labels(self):
        self.assertEqual(confidence_label(0.95), "very high")
        self.assertEqual(confidence_label(0.9), "very high")
        self.assertEqual(confidence_label(0.75), "high")
        self.assertEqual(confidence_label(0.5), "medium")
        self.assertEqual(confidence_label(0.49), "low")


class TestThirdSource(unittest.TestCase):
    """Test the optional third probability source"""

    def test_callable_source(self):
        def prefers_zero(grid):
            probs = np.full(10, 0.02)
            probs[0] = 0.82
            return probs

        pipeline = DigitRecognitionPipeline(third_source=prefers_zero)
        result = pipeline.recognize(canonical_zero())
        self.assertEqual(result.predicted_digit, 0)
        self.assertEqual(result.consensus_digit, 0)

    def test_wrong_length_raises(self):
        pipeline = DigitRecognitionPipeline(third_source=lambda grid: np.ones(5))
        with self.assertRaises(ValueError):
            pipeline.recognize(canonical_zero())

    def test_torch_module_source(self):
        torch.manual_seed(0)
        source = TorchProbabilitySource(DigitCNN())
        probs = source(canonical_zero())
        self.assertEqual(probs.shape, (10,))
        self.assertAlmostEqual(float(probs.sum()), 1.0, places=5)

    def test_checkpoint_round_trip(self):
        torch.manual_seed(0)
        model = DigitCNN()
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "cnn.pt")
            torch.save(model.state_dict(), path)
            loaded = TorchProbabilitySource.from_checkpoint(path)
        model.eval()
        x = torch.from_numpy(np.ascontiguousarray(canonical_zero())).view(1, 1, 28, 28)
        expected = model.predict_proba(x)[0].numpy()
        np.testing.assert_allclose(loaded(canonical_zero()), expected, atol=1e-5)


class TestCommandLine(unittest.TestCase):
    """Test the argparse front end"""

    def test_parser(self):
        args = build_parser().parse_args(["classify", "--npy", "grid.npy", "--json"])
        self.assertEqual(args.command, "classify")
        self.assertTrue(args.json)
        args = build_parser().parse_args(["generate", "--per-class", "5", "--workers", "2"])
        self.assertEqual((args.per_class, args.workers, args.messy_every), (5, 2, 3))

    def test_classify_npy(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "zero.npy")
            np.save(path, canonical_zero())
            out = io.StringIO()
            with contextlib.redirect_stdout(out):
                main(["classify", "--npy", path, "--json"])
        self.assertEqual(json.loads(out.getvalue())["predicted_digit"], 0)

    def test_unreadable_image_exits(self):
        with self.assertRaises(SystemExit) as ctx:
            main(["classify", "--image", "/nonexistent/digit.png"])
        self.assertEqual(ctx.exception.code, 1)

    def test_render_and_generate(self):
        with tempfile.TemporaryDirectory() as tmp:
            main(["render", "--digit", "4", "--count", "3", "--out", tmp])
            self.assertEqual(len([f for f in os.listdir(tmp) if f.endswith(".png")]), 3)
            target = os.path.join(tmp, "set.npz")
            main(["generate", "--per-class", "1", "--out", target])
            with np.load(target) as data:
                self.assertEqual(data["x"].shape, (10, 28, 28, 1))
                self.assertEqual(data["y"].shape, (10, 10))


if __name__ == "__main__":
    unittest.main()
