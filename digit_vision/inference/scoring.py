"""
Heuristic Scorer
================

One small rule function per digit.  Each reads the FeatureRecord and
returns an independent plausibility score; no rule sees another rule's
output.  Pairs that the rules alone confuse (0/8, 6/9, 1/4, 1/7, 2/3,
2/5, 3/5) are then settled by ``disambiguate``, which works on a copy of
the score vector and looks only at the sub-feature that tells the pair
apart.  Every pair has a neutral band: when its sub-feature sits between
the two thresholds neither score is touched.

The final vector is divided by its maximum and floored at zero.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

import numpy as np

from digit_vision.inference.features import FeatureRecord
from digit_vision.inference.preprocess import EPS
from digit_vision.models.templates import NUM_CLASSES, check_digit

log = logging.getLogger(__name__)


# ── Thresholds shared by several rules ────────────────────────────────

THIN_ASPECT: float = 0.45        # bbox w/h below this looks like a "1"
NARROW_ASPECT: float = 0.70      # … below this still reads as a serifed "1"
ROUND_ASPECT = (0.55, 1.25)      # plausible range for an oval
EMPTY_ZONE: float = 0.25         # zone density below this counts as empty
FULL_ZONE: float = 0.30          # … above this counts as inked
HOLE_LOW: float = 0.45           # hole centre above this → upper loop (9)
HOLE_HIGH: float = 0.55          # … below this → lower loop (6)
DENSE_CENTER: float = 0.30
OPEN_CENTER: float = 0.20
TOP_BAR_EDGE: float = 0.40
ROUND_HOLE_AREA: float = 0.10    # a hole this large (× bbox) is the inside of an "0"
SMALL_HOLE_AREA: float = 0.05    # … below this it is the closed top of a "4"
LEFT_STROKE = (0.25, 0.35)       # left-middle zone: below → open (2, 3), above → stroke (5)
PAIR_MARGIN: float = 0.20        # minimum zone contrast for a pair verdict

# Multipliers applied to the losing member of a confusable pair.
STRONG_DISCOUNT: float = 0.5
MILD_DISCOUNT: float = 0.7


# ── Rule functions ─────────────────────────────────────────────────────

def score_zero(f: FeatureRecord) -> float:
    s = 0.0
    if f.holes == 1:
        s += 0.35
    elif f.holes >= 2:
        s += 0.05
    if f.closed_loop:
        s += 0.2
    if ROUND_ASPECT[0] <= f.aspect_ratio <= ROUND_ASPECT[1]:
        s += 0.1
    if f.endpoints == 0:
        s += 0.1
    if f.center_density < OPEN_CENTER:
        s += 0.15
    centred = HOLE_LOW - 0.15 <= f.hole_center_y <= HOLE_HIGH + 0.15
    if f.holes and centred and f.hole_area > ROUND_HOLE_AREA:
        s += 0.15
    if f.symmetry > 0.7:
        s += 0.05
    return s


def score_one(f: FeatureRecord) -> float:
    s = 0.0
    if f.aspect_ratio < THIN_ASPECT:
        s += 0.4
    elif f.aspect_ratio < NARROW_ASPECT:
        s += 0.25
    if f.strong_v_lines >= 1 and f.h_lines == 0:
        s += 0.25
    elif f.v_lines >= 1:
        s += 0.1
    if f.holes == 0:
        s += 0.1
    if 1 <= f.endpoints <= 3:
        s += 0.1
    if f.vertical_run > 0.6:
        s += 0.15
    return s


def score_two(f: FeatureRecord) -> float:
    s = 0.0
    if f.holes == 0:
        s += 0.15
    bottom = (f.zone(2, 0) + f.zone(2, 1) + f.zone(2, 2)) / 3.0
    if bottom > 0.4:
        s += 0.2
    if f.diagonals >= 1:
        s += 0.15
    if f.endpoints == 2:
        s += 0.1
    if f.zone(0, 1) > FULL_ZONE and f.zone(1, 0) < EMPTY_ZONE:
        s += 0.2
    if f.zone(2, 0) > FULL_ZONE:
        s += 0.1
    if f.zone(1, 2) < FULL_ZONE + PAIR_MARGIN:
        s += 0.15
    if not f.closed_loop:
        s += 0.05
    return s


def score_three(f: FeatureRecord) -> float:
    s = 0.0
    if f.holes == 0:
        s += 0.15
    if f.right_heavy:
        s += 0.15
    if f.zone(1, 0) < EMPTY_ZONE:
        s += 0.15
    if f.zone(0, 2) > FULL_ZONE and f.zone(2, 2) > FULL_ZONE:
        s += 0.15
    if 2 <= f.endpoints <= 3:
        s += 0.1
    if f.crossings >= 1:
        s += 0.1
    if f.edge_left < f.edge_right:
        s += 0.1
    if f.zone(1, 2) > FULL_ZONE + PAIR_MARGIN:
        s += 0.15
    if not f.closed_loop:
        s += 0.05
    return s


def score_four(f: FeatureRecord) -> float:
    s = 0.0
    if f.h_lines >= 1 and f.v_lines >= 1:
        s += 0.25
    if f.crossings >= 1 and f.aspect_ratio >= NARROW_ASPECT:
        s += 0.2
    if f.holes == 0 or (f.holes == 1 and f.hole_center_y < HOLE_HIGH):
        s += 0.1
    if f.holes == 1 and f.hole_area < SMALL_HOLE_AREA:
        s += 0.15
    if f.zone(2, 0) < EMPTY_ZONE:
        s += 0.2
    if f.zone(0, 0) > 0.2 and f.zone(2, 2) > 0.2:
        s += 0.1
    return s


def score_five(f: FeatureRecord) -> float:
    s = 0.0
    if f.holes == 0:
        s += 0.15
    if f.edge_top > TOP_BAR_EDGE:
        s += 0.1
    if f.aspect_ratio >= NARROW_ASPECT:
        # Upper-left stroke down from the bar, bowl on the lower right.
        if f.zone(1, 0) > LEFT_STROKE[1] and f.zone(0, 0) > FULL_ZONE:
            s += 0.2
        if f.zone(2, 2) > FULL_ZONE and f.zone(0, 0) > FULL_ZONE:
            s += 0.15
        if f.has_hook:
            s += 0.05
    if f.endpoints == 2:
        s += 0.1
    if f.corners >= 1:
        s += 0.05
    return s


def score_six(f: FeatureRecord) -> float:
    s = 0.0
    if f.holes == 1:
        s += 0.25
    if f.holes and f.hole_center_y > HOLE_HIGH:
        s += 0.25
    if f.bottom_heavy:
        s += 0.15
    if f.endpoints == 1:
        s += 0.15
    if f.zone(0, 2) < EMPTY_ZONE:
        s += 0.15
    return s


def score_seven(f: FeatureRecord) -> float:
    s = 0.0
    if f.holes == 0:
        s += 0.15
    if f.aspect_ratio >= NARROW_ASPECT:
        # A bar across the top that turns down on the right.
        top = (f.zone(0, 0) + f.zone(0, 1) + f.zone(0, 2)) / 3.0
        if top > 0.35:
            s += 0.2
        if f.has_hook and f.zone(1, 0) < EMPTY_ZONE:
            s += 0.15
    if f.edge_bottom < EMPTY_ZONE:
        s += 0.15
    if f.zone(2, 2) < EMPTY_ZONE:
        s += 0.15
    if f.endpoints == 2:
        s += 0.1
    if f.top_heavy:
        s += 0.1
    if f.diagonals >= 1:
        s += 0.1
    return s


def score_eight(f: FeatureRecord) -> float:
    s = 0.0
    if f.holes >= 2:
        s += 0.45
    if f.crossings >= 1:
        s += 0.15
    if f.symmetry > 0.6:
        s += 0.1
    # A single hole with ink round it is a thick "0", not a waist.
    if f.center_density > DENSE_CENTER and f.holes != 1:
        s += 0.15
    if f.endpoints == 0:
        s += 0.1
    return s


def score_nine(f: FeatureRecord) -> float:
    s = 0.0
    if f.holes == 1:
        s += 0.25
    if f.holes and f.hole_center_y < HOLE_LOW:
        s += 0.25
    if f.top_heavy:
        s += 0.15
    if f.endpoints == 1:
        s += 0.15
    if f.zone(2, 0) < EMPTY_ZONE:
        s += 0.15
    return s


DIGIT_RULES: Dict[int, Callable[[FeatureRecord], float]] = {
    0: score_zero,
    1: score_one,
    2: score_two,
    3: score_three,
    4: score_four,
    5: score_five,
    6: score_six,
    7: score_seven,
    8: score_eight,
    9: score_nine,
}


def rule_for(digit: int) -> Callable[[FeatureRecord], float]:
    return DIGIT_RULES[check_digit(digit)]


# ── Disambiguation ─────────────────────────────────────────────────────

def _verdict(value: float, low: float, high: float, a: int, b: int) -> Optional[int]:
    """*a* when *value* reaches *high*, *b* when it drops to *low*, else None."""
    if value >= high:
        return a
    if value <= low:
        return b
    return None


def _discount(scores: np.ndarray, a: int, b: int, winner: Optional[int], factor: float) -> None:
    """Scale the loser of pair (a, b) when both are in contention.

    ``winner=None`` means the deciding sub-feature was inconclusive and
    the pair is left alone.
    """
    if winner is None or scores[a] <= 0.0 or scores[b] <= 0.0:
        return
    scores[b if winner == a else a] *= factor


def disambiguate(scores: np.ndarray, f: FeatureRecord) -> np.ndarray:
    """Return a copy of *scores* with confusable pairs resolved."""
    out = np.array(scores, dtype=np.float32, copy=True)

    # 0 ↔ 8: a second hole means 8; one large hole means 0.
    if f.holes >= 2:
        _discount(out, 0, 8, 8, STRONG_DISCOUNT)
    elif f.holes == 1 and f.hole_area >= ROUND_HOLE_AREA:
        _discount(out, 0, 8, 0, STRONG_DISCOUNT)

    # 6 ↔ 9: which half the loop sits in.
    if f.holes:
        _discount(out, 6, 9, _verdict(f.hole_center_y, HOLE_LOW, HOLE_HIGH, 6, 9),
                  STRONG_DISCOUNT)

    # 1 ↔ 4: a "1" has neither a crossbar nor a junction.
    if f.h_lines >= 1 or f.crossings >= 1:
        _discount(out, 1, 4, 4, STRONG_DISCOUNT)
    elif f.aspect_ratio < THIN_ASPECT:
        _discount(out, 1, 4, 1, STRONG_DISCOUNT)

    # 1 ↔ 7: a full-width top bar means 7.
    if f.strong_h_lines >= 1:
        _discount(out, 1, 7, 7, MILD_DISCOUNT)
    elif f.aspect_ratio < NARROW_ASPECT:
        _discount(out, 1, 7, 1, MILD_DISCOUNT)

    # 2 ↔ 3: a "2" ends bottom-left and leaves the right middle open.
    contrast = f.zone(2, 0) - f.zone(1, 2)
    _discount(out, 2, 3, _verdict(contrast, -PAIR_MARGIN, PAIR_MARGIN, 2, 3), MILD_DISCOUNT)

    # 2 ↔ 5 and 3 ↔ 5: only a "5" has a stroke on the left middle.
    left = f.zone(1, 0)
    _discount(out, 2, 5, _verdict(left, LEFT_STROKE[0], LEFT_STROKE[1], 5, 2), MILD_DISCOUNT)
    _discount(out, 3, 5, _verdict(left, LEFT_STROKE[0], LEFT_STROKE[1], 5, 3), MILD_DISCOUNT)

    return out


# ── Public API ─────────────────────────────────────────────────────────

def raw_scores(f: FeatureRecord) -> np.ndarray:
    """Rule outputs before disambiguation and normalisation."""
    return np.array([DIGIT_RULES[d](f) for d in range(NUM_CLASSES)], dtype=np.float32)


def score_features(f: FeatureRecord) -> np.ndarray:
    """ScoreVector in [0, 1]: rules → disambiguation → max-normalise."""
    if f.is_empty:
        return np.zeros(NUM_CLASSES, dtype=np.float32)
    scores = disambiguate(raw_scores(f), f)
    scores = np.maximum(scores / max(float(scores.max()), EPS), 0.0)
    log.debug("heuristic scores: %s", np.round(scores, 3).tolist())
    return scores.astype(np.float32)
