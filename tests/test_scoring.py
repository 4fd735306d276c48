"""
Tests for the template catalog, template matcher and heuristic scorer
"""

import unittest

import cv2
import numpy as np

from digit_vision.inference.features import FeatureRecord
from digit_vision.inference.scoring import (
    DIGIT_RULES,
    disambiguate,
    raw_scores,
    rule_for,
    score_features,
)
from digit_vision.inference.template_matcher import (
    CRITICAL_MASK,
    match_templates,
    shift_cells,
    weighted_score,
)
from digit_vision.models.templates import (
    NUM_CLASSES,
    TEMPLATE_CATALOG,
    canonical_template,
    fit_to_cells,
    get_templates,
    parse_template,
)


def upscale_template(digit, cell=3):
    """Paste the canonical bitmap of *digit* into a 28×28 grid, 3 px per cell."""
    bitmap = canonical_template(digit).bitmap.astype(np.float32)
    big = cv2.resize(bitmap, (7 * cell, 7 * cell), interpolation=cv2.INTER_NEAREST)
    grid = np.zeros((28, 28), dtype=np.float32)
    off = (28 - 7 * cell) // 2
    grid[off:off + 7 * cell, off:off + 7 * cell] = big
    return grid


class TestTemplates(unittest.TestCase):
    """Test the template catalog"""

    def test_every_class_has_variants(self):
        self.assertEqual(sorted(TEMPLATE_CATALOG), list(range(NUM_CLASSES)))
        for digit in range(NUM_CLASSES):
            variants = get_templates(digit)
            self.assertGreater(len(variants), 1)
            self.assertTrue(all(t.digit == digit for t in variants))
            self.assertEqual(variants[0].shape, (7, 7))

    def test_ragged_rows_are_padded(self):
        bitmap = parse_template(["#", "##", "#.#"])
        self.assertEqual(bitmap.shape, (3, 3))
        np.testing.assert_array_equal(bitmap[0], [1, 0, 0])

    def test_empty_rows_are_rejected(self):
        for rows in ([], [""], ["", ""]):
            with self.assertRaises(ValueError):
                parse_template(rows)

    def test_bitmaps_are_read_only(self):
        with self.assertRaises(ValueError):
            canonical_template(3).bitmap[0, 0] = 1

    def test_out_of_range_digit_raises(self):
        with self.assertRaises(ValueError):
            get_templates(10)
        with self.assertRaises(ValueError):
            get_templates(-1)

    def test_fit_keeps_thin_strokes_thin(self):
        cells = fit_to_cells(parse_template(["#"] * 7))
        self.assertEqual(cells.shape, (7, 7))
        self.assertEqual(int(cells.sum()), 7)
        self.assertTrue(cells[:, 3].all())


class TestTemplateMatcher(unittest.TestCase):
    """Test template matching"""

    def test_empty_grid_scores_zero(self):
        np.testing.assert_array_equal(match_templates(np.zeros((28, 28))), np.zeros(10))

    def test_own_template_scores_perfectly(self):
        cells = canonical_template(8).bitmap.astype(bool)
        self.assertAlmostEqual(weighted_score(cells, cells), 1.0)
        self.assertLess(weighted_score(~cells, cells), 0.0)

    def test_canonical_templates_win(self):
        for digit in (0, 7, 8):
            scores = match_templates(upscale_template(digit))
            self.assertEqual(int(np.argmax(scores)), digit)
            self.assertGreaterEqual(scores.min(), 0.0)

    def test_shift_fills_with_background(self):
        cells = np.ones((7, 7), dtype=bool)
        shifted = shift_cells(cells, 1, -1)
        self.assertFalse(shifted[0].any())
        self.assertFalse(shifted[:, -1].any())
        self.assertEqual(int(shifted.sum()), 36)
        np.testing.assert_array_equal(shift_cells(cells, 0, 0), cells)

    def test_critical_mask_layout(self):
        self.assertTrue(CRITICAL_MASK[0].all() and CRITICAL_MASK[:, 6].all())
        self.assertTrue(CRITICAL_MASK[2:5, 2:5].all())
        self.assertFalse(CRITICAL_MASK[1, 1:6].any())


class TestHeuristicScorer(unittest.TestCase):
    """Test the per-digit rules and disambiguation"""

    def setUp(self):
        self.eight_like = FeatureRecord(
            holes=2, endpoints=0, crossings=1, symmetry=0.9,
            center_density=0.4, closed_loop=True, density=0.2,
            aspect_ratio=0.7, zones=(0.5,) * 9,
        )

    def test_empty_record_scores_zero(self):
        np.testing.assert_array_equal(score_features(FeatureRecord.empty()), np.zeros(10))

    def test_rules_are_independent(self):
        expected = [DIGIT_RULES[d](self.eight_like) for d in range(10)]
        np.testing.assert_allclose(raw_scores(self.eight_like), expected, rtol=1e-6)
        # Same record, same answer, in any order
        for d in reversed(range(10)):
            self.assertAlmostEqual(rule_for(d)(self.eight_like), expected[d])

    def test_rule_lookup_rejects_bad_digit(self):
        with self.assertRaises(ValueError):
            rule_for(10)

    def test_second_hole_discounts_zero(self):
        scores = raw_scores(self.eight_like)
        before = scores.copy()
        out = disambiguate(scores, self.eight_like)
        np.testing.assert_array_equal(scores, before)
        self.assertGreater(before[0], 0.0)
        self.assertAlmostEqual(float(out[0]), 0.5 * float(before[0]), places=5)
        self.assertAlmostEqual(float(out[8]), float(before[8]), places=5)

    def test_hole_position_separates_six_and_nine(self):
        low = FeatureRecord(holes=1, hole_center_y=0.75, endpoints=1, density=0.2,
                            bottom_heavy=True, zones=(0.1, 0.4, 0.1) + (0.4,) * 6)
        high = FeatureRecord(holes=1, hole_center_y=0.25, endpoints=1, density=0.2,
                             top_heavy=True, zones=(0.4,) * 6 + (0.1, 0.4, 0.4))
        self.assertGreater(score_features(low)[6], score_features(low)[9])
        self.assertGreater(score_features(high)[9], score_features(high)[6])

    def test_scores_normalised(self):
        scores = score_features(self.eight_like)
        self.assertAlmostEqual(float(scores.max()), 1.0, places=5)
        self.assertGreaterEqual(float(scores.min()), 0.0)
        self.assertEqual(int(np.argmax(scores)), 8)


def zones_with(**cells):
    """Zone tuple with named cells set, e.g. ``zones_with(z10=0.5)``."""
    zones = [0.0] * 9
    for name, value in cells.items():
        zones[int(name[1]) * 3 + int(name[2])] = value
    return tuple(zones)


class TestPairDisambiguation(unittest.TestCase):
    """Test each confusable pair on a flat score vector"""

    def settle(self, **fields):
        fields.setdefault("aspect_ratio", 1.0)
        fields.setdefault("density", 0.2)
        return disambiguate(np.full(10, 0.5, dtype=np.float32), FeatureRecord(**fields))

    def test_single_large_hole_discounts_eight(self):
        out = self.settle(holes=1, hole_area=0.2, hole_center_y=0.5)
        self.assertAlmostEqual(float(out[8]), 0.25, places=5)
        self.assertAlmostEqual(float(out[0]), 0.5, places=5)

    def test_small_hole_leaves_zero_and_eight(self):
        out = self.settle(holes=1, hole_area=0.03, hole_center_y=0.5)
        self.assertAlmostEqual(float(out[0]), 0.5, places=5)
        self.assertAlmostEqual(float(out[8]), 0.5, places=5)

    def test_crossbar_discounts_one_against_four(self):
        out = self.settle(h_lines=1)
        self.assertAlmostEqual(float(out[1]), 0.25, places=5)
        self.assertAlmostEqual(float(out[4]), 0.5, places=5)

    def test_junction_alone_discounts_one_against_four(self):
        out = self.settle(crossings=1)
        self.assertAlmostEqual(float(out[1]), 0.25, places=5)
        self.assertAlmostEqual(float(out[4]), 0.5, places=5)

    def test_thin_stroke_discounts_four_and_seven(self):
        out = self.settle(aspect_ratio=0.3)
        self.assertAlmostEqual(float(out[1]), 0.5, places=5)
        self.assertAlmostEqual(float(out[4]), 0.25, places=5)
        self.assertAlmostEqual(float(out[7]), 0.35, places=5)

    def test_wide_plain_glyph_leaves_one_four_seven(self):
        out = self.settle(aspect_ratio=0.8)
        for digit in (1, 4, 7):
            self.assertAlmostEqual(float(out[digit]), 0.5, places=5)

    def test_top_bar_discounts_one_against_seven(self):
        out = self.settle(strong_h_lines=1)
        self.assertAlmostEqual(float(out[1]), 0.35, places=5)
        self.assertAlmostEqual(float(out[7]), 0.5, places=5)

    def test_bottom_left_ink_favours_two_over_three(self):
        out = self.settle(zones=zones_with(z20=0.9, z12=0.3, z10=0.3))
        self.assertAlmostEqual(float(out[2]), 0.5, places=5)
        self.assertAlmostEqual(float(out[3]), 0.35, places=5)

    def test_right_middle_ink_favours_three_over_two(self):
        out = self.settle(zones=zones_with(z20=0.2, z12=0.8, z10=0.3))
        self.assertAlmostEqual(float(out[2]), 0.35, places=5)
        self.assertAlmostEqual(float(out[3]), 0.5, places=5)

    def test_close_contrast_leaves_two_and_three(self):
        out = self.settle(zones=zones_with(z20=0.5, z12=0.45, z10=0.3))
        self.assertAlmostEqual(float(out[2]), 0.5, places=5)
        self.assertAlmostEqual(float(out[3]), 0.5, places=5)

    def test_left_middle_stroke_favours_five(self):
        out = self.settle(zones=zones_with(z10=0.6))
        self.assertAlmostEqual(float(out[2]), 0.35, places=5)
        self.assertAlmostEqual(float(out[3]), 0.35, places=5)
        self.assertAlmostEqual(float(out[5]), 0.5, places=5)

    def test_open_left_middle_discounts_five_twice(self):
        out = self.settle(zones=zones_with(z10=0.1))
        self.assertAlmostEqual(float(out[2]), 0.5, places=5)
        self.assertAlmostEqual(float(out[3]), 0.5, places=5)
        self.assertAlmostEqual(float(out[5]), 0.5 * 0.7 * 0.7, places=5)

    def test_left_middle_in_band_leaves_five(self):
        out = self.settle(zones=zones_with(z10=0.3))
        for digit in (2, 3, 5):
            self.assertAlmostEqual(float(out[digit]), 0.5, places=5)

    def test_zero_score_is_untouched_by_pair(self):
        scores = np.full(10, 0.5, dtype=np.float32)
        scores[4] = 0.0
        out = disambiguate(scores, FeatureRecord(h_lines=1, aspect_ratio=1.0, density=0.2))
        self.assertAlmostEqual(float(out[1]), 0.5, places=5)


class TestThickZero(unittest.TestCase):
    """A heavy ring with a dense centre window must still read as 0"""

    def setUp(self):
        self.ring = FeatureRecord(
            holes=1, endpoints=0, crossings=0, symmetry=0.95, center_density=0.4,
            closed_loop=True, density=0.45, aspect_ratio=1.0, hole_center_y=0.5,
            hole_area=0.18, h_lines=2, v_lines=2,
            zones=(0.8, 0.7, 0.8, 0.6, 0.3, 0.6, 0.8, 0.7, 0.8),
        )

    def test_dense_centre_alone_is_not_an_eight(self):
        self.assertLess(DIGIT_RULES[8](self.ring), DIGIT_RULES[0](self.ring))
        self.assertAlmostEqual(DIGIT_RULES[8](self.ring), 0.2, places=5)

    def test_ring_classified_as_zero(self):
        scores = score_features(self.ring)
        self.assertEqual(int(np.argmax(scores)), 0)
        self.assertLess(float(scores[8]), 0.5)


if __name__ == "__main__":
    unittest.main()
