"""
Tests for grid validation and preprocessing
"""

import unittest

import numpy as np

from digit_vision.inference.preprocess import (
    BINARY_THRESHOLD,
    GAMMA_RANGE,
    GRID_SIZE,
    INK_TARGET,
    PADDING,
    TARGET_SIZE,
    bounding_box,
    is_framed,
    normalize_grid,
    solve_gamma,
    to_grid,
)
from digit_vision.models.templates import canonical_template
from digit_vision.training.renderer import StyleDescriptor, render_sample


def small_offcentre_digit():
    """A faint, small "7" pushed into the top-left corner."""
    grid = np.zeros((GRID_SIZE, GRID_SIZE), dtype=np.float32)
    grid[2, 2:10] = 0.6
    for i in range(8):
        grid[3 + i, 9 - i // 2] = 0.6
        grid[3 + i, 8 - i // 2] = 0.6
    return grid


class TestGridValidation(unittest.TestCase):
    """Test input coercion"""

    def test_flat_buffer_accepted(self):
        flat = np.linspace(0, 1, GRID_SIZE * GRID_SIZE)
        grid = to_grid(flat)
        self.assertEqual(grid.shape, (GRID_SIZE, GRID_SIZE))
        self.assertAlmostEqual(float(grid[0, 1]), float(flat[1]), places=6)

    def test_wrong_size_raises(self):
        with self.assertRaises(ValueError):
            to_grid(np.zeros(100))
        with self.assertRaises(ValueError):
            to_grid(np.zeros((27, 27)))

    def test_nan_and_out_of_range_cleaned(self):
        raw = np.zeros((GRID_SIZE, GRID_SIZE))
        raw[0, 0] = np.nan
        raw[0, 1] = 3.0
        raw[0, 2] = -1.0
        grid = to_grid(raw)
        self.assertEqual(grid[0, 0], 0.0)
        self.assertEqual(grid[0, 1], 1.0)
        self.assertEqual(grid[0, 2], 0.0)

    def test_bounding_box(self):
        mask = np.zeros((5, 5), dtype=bool)
        self.assertIsNone(bounding_box(mask))
        mask[1, 2] = mask[3, 4] = True
        self.assertEqual(bounding_box(mask), (1, 3, 2, 4))


class TestNormalizeGrid(unittest.TestCase):
    """Test the preprocessing pass"""

    def test_degenerate_input_gives_zero_grid(self):
        grid = np.zeros((GRID_SIZE, GRID_SIZE), dtype=np.float32)
        grid[10, 10:15] = 1.0  # 5 active cells
        out = normalize_grid(grid)
        np.testing.assert_array_equal(out, np.zeros((GRID_SIZE, GRID_SIZE)))

    def test_shape_and_range(self):
        out = normalize_grid(small_offcentre_digit())
        self.assertEqual(out.shape, (GRID_SIZE, GRID_SIZE))
        self.assertGreaterEqual(out.min(), 0.0)
        self.assertLessEqual(out.max(), 1.0)
        self.assertAlmostEqual(float(out.max()), 1.0, places=5)

    def test_digit_rescaled_and_centred(self):
        out = normalize_grid(small_offcentre_digit())
        y0, y1, x0, x1 = bounding_box(out > BINARY_THRESHOLD)
        # Longer side close to the target size, inside the padding margin
        self.assertGreaterEqual(max(y1 - y0, x1 - x0) + 1, TARGET_SIZE - 2)
        self.assertGreaterEqual(min(y0, x0), PADDING - 2)
        self.assertLessEqual(max(y1, x1), GRID_SIZE - PADDING + 1)
        cy, cx = (y0 + y1) / 2.0, (x0 + x1) / 2.0
        self.assertLess(abs(cy - 13.5), 2.0)
        self.assertLess(abs(cx - 13.5), 2.0)

    def test_input_not_mutated(self):
        grid = small_offcentre_digit()
        before = grid.copy()
        normalize_grid(grid)
        np.testing.assert_array_equal(grid, before)

    def test_second_pass_is_near_identity_for_every_digit(self):
        for scale in (1.9, 2.8):
            style = StyleDescriptor(scale=scale, thickness=1.0)
            for digit in range(10):
                sample = render_sample(canonical_template(digit), style, jitter=False)[:, :, 0]
                once = normalize_grid(sample)
                twice = normalize_grid(once)
                ink = once > BINARY_THRESHOLD
                delta = np.abs(once - twice)[ink]
                self.assertLess(float(delta.max()), 0.03, (scale, digit))

                a, b = ink, twice > BINARY_THRESHOLD
                iou = (a & b).sum() / float((a | b).sum())
                self.assertGreater(iou, 0.97, (scale, digit))

    def test_normalised_output_is_framed(self):
        for digit in (1, 3, 7):
            style = StyleDescriptor(scale=1.9, thickness=1.0)
            sample = render_sample(canonical_template(digit), style, jitter=False)[:, :, 0]
            self.assertFalse(is_framed(bounding_box(sample > BINARY_THRESHOLD)))
            once = normalize_grid(sample)
            self.assertTrue(is_framed(bounding_box(once > BINARY_THRESHOLD)), digit)
        self.assertTrue(is_framed(bounding_box(normalize_grid(small_offcentre_digit())
                                               > BINARY_THRESHOLD)))

    def test_framing_rules(self):
        self.assertTrue(is_framed((4, 23, 4, 23)))
        self.assertTrue(is_framed((3, 24, 8, 19)))
        self.assertFalse(is_framed((0, 19, 0, 19)))      # off-centre
        self.assertFalse(is_framed((9, 18, 9, 18)))      # too small
        self.assertFalse(is_framed((1, 26, 1, 26)))      # too large

    def test_gamma_hits_ink_target(self):
        stretched = (np.linspace(0.0, 1.0, 200) ** 0.3).reshape(10, 20).astype(np.float32)
        gamma = solve_gamma(stretched)
        self.assertTrue(GAMMA_RANGE[0] <= gamma <= GAMMA_RANGE[1])
        curved = np.power(stretched, gamma)
        self.assertAlmostEqual(float(curved[curved > BINARY_THRESHOLD].mean()), INK_TARGET,
                               places=2)
        self.assertAlmostEqual(solve_gamma(curved), 1.0, delta=0.02)

    def test_gamma_is_clipped(self):
        faint = np.zeros((4, 4), dtype=np.float32)
        faint[0, 0] = 1.0
        faint[1:, :] = 0.3
        self.assertEqual(solve_gamma(faint), GAMMA_RANGE[0])
        self.assertEqual(solve_gamma(np.full((4, 4), 0.95, dtype=np.float32)), GAMMA_RANGE[1])
        self.assertEqual(solve_gamma(np.zeros((4, 4))), 1.0)


if __name__ == "__main__":
    unittest.main()
