"""
Digit Templates – Canonical Bitmaps per Class
=============================================

Every digit class owns several small binary bitmaps, each describing one
way people tend to write it (round, angular, open, slanted, ...).  The
same catalog serves two consumers:

  • the **template matcher**, which fits every variant into a 7×7 cell
    grid and compares it against the downsampled input, and
  • the **synthetic renderer**, which pushes a variant through an affine
    transform to produce a realistic 28×28 training sample.

Bitmaps are written as rows of ``#`` (ink) and ``.`` (background).  Rows
of unequal length are right-padded with background.  The tables are
built once at import and are read-only afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

import cv2
import numpy as np


# ── Class list ─────────────────────────────────────────────────────────

CLASS_NAMES: list[str] = [str(d) for d in range(10)]

NUM_CLASSES: int = len(CLASS_NAMES)


# ── Data structure ─────────────────────────────────────────────────────

@dataclass(frozen=True, eq=False)
class DigitTemplate:
    """One variant bitmap of a digit class."""
    digit: int                                     # 0–9
    name: str                                      # e.g. "zero/canonical"
    bitmap: np.ndarray = field(repr=False)         # uint8 (H, W), 1 = ink

    @property
    def shape(self) -> Tuple[int, int]:
        return self.bitmap.shape  # type: ignore[return-value]


def parse_template(rows: Sequence[str]) -> np.ndarray:
    """Convert ``#``/``.`` rows into a uint8 bitmap (ragged rows padded)."""
    if not rows:
        raise ValueError("Template needs at least one row")
    width = max(len(r) for r in rows)
    if width == 0:
        raise ValueError("Template rows are all empty")
    bitmap = np.zeros((len(rows), width), dtype=np.uint8)
    for y, row in enumerate(rows):
        for x, ch in enumerate(row):
            if ch == "#":
                bitmap[y, x] = 1
    bitmap.setflags(write=False)
    return bitmap


def check_digit(digit: int) -> int:
    """Validate a class index; an out-of-range index is a caller bug."""
    if not 0 <= int(digit) < NUM_CLASSES:
        raise ValueError(f"Digit must be in 0..{NUM_CLASSES - 1}, got {digit}")
    return int(digit)


# ── Raw catalog ────────────────────────────────────────────────────────
# The first entry of every class is the thick 7×7 canonical rendering;
# the rest are handwriting variants (open loops, slants, short tails…).

_CANONICAL: Dict[int, List[str]] = {
    0: [".#####.", "##...##", "##...##", "##...##", "##...##", "##...##", ".#####."],
    1: ["..##...", ".###...", "..##...", "..##...", "..##...", "..##...", ".####.."],
    2: [".#####.", "##...##", "....##.", "..###..", ".##....", "##.....", "#######"],
    3: [".#####.", "##...##", ".....##", "..####.", ".....##", "##...##", ".#####."],
    4: ["...###.", "..####.", ".##.##.", "##..##.", "#######", "....##.", "....##."],
    5: ["#######", "##.....", "######.", ".....##", ".....##", "##...##", ".#####."],
    6: [".#####.", "##.....", "##.....", "######.", "##...##", "##...##", ".#####."],
    7: ["#######", ".....##", "....##.", "...##..", "..##...", "..##...", "..##..."],
    8: [".#####.", "##...##", "##...##", ".#####.", "##...##", "##...##", ".#####."],
    9: [".#####.", "##...##", "##...##", ".######", ".....##", "....##.", ".####.."],
}

_VARIANTS: Dict[int, List[List[str]]] = {
    0: [
        ["..###..", ".#...#.", "#.....#", "#.....#", "#.....#", ".#...#.", "..###.."],
        ["..##..", ".#..#.", "#....#", "#....#", "#....#", "#....#", ".#..#.", "..##.."],
        [".#####.", "#.....#", "#.....#", "#.....#", ".#####."],
        [".####.", "#....#", "#....#", "#....#", "#....#", "#....#", ".####."],
        [".##.", "#..#", "#..#", "#..#", ".##."],
        [".###.", "#...#", "#...#", "#...#", ".###."],
        ["..##.", ".#..#", "#...#", "#...#", ".#..#", "..##."],
        [".###.", "#....", "#...#", "#...#", ".###."],
        [".##..", "#..#.", "#...#", "#..#.", ".##.."],
        ["..#..", ".#.#.", "#...#", "#...#", ".#.#.", "..#.."],
        [".###.", "#...#", "#....", "#...#", ".###."],
        ["####", "#..#", "#..#", "####"],
        [".#.#.", "#...#", "#...#", "#...#", ".#.#."],
    ],
    1: [
        ["...#...", "..##...", ".#.#...", "...#...", "...#...", "...#...", ".#####."],
        ["..#.", ".##.", "..#.", "..#.", "..#.", "..#.", ".###"],
        ["#", "#", "#", "#", "#", "#", "#"],
        ["..#..", ".##..", "..#..", "..#..", "..#..", "..#..", "..#.."],
        [".#.", ".#.", ".#.", ".#.", ".#.", ".#.", ".#."],
        ["##.", ".#.", ".#.", ".#.", ".#.", ".#.", "###"],
        ["..#", ".#.", ".#.", ".#.", "#..", "#.."],
        [".#", ".#", "#.", "#.", "#.", "#."],
        ["#.", ".#", ".#", ".#", ".#", "#."],
        ["##", "##", ".#", ".#", ".#", "##"],
        [".#.", "##.", ".#.", ".#.", ".##", ".#."],
        ["...#", "..#.", "..#.", ".#..", ".#..", "#..."],
    ],
    2: [
        [".####.", "#....#", ".....#", "....#.", "..##..", ".#....", "######"],
        [".###.", "#...#", "....#", "...#.", "..#..", ".#...", "#####"],
        ["####.", "....#", "...#.", "..#..", ".#...", "#....", "#####"],
        [".##.", "#..#", "...#", "..#.", ".#..", "#...", "####"],
        ["###", "..#", ".#.", "#..", "#..", "###"],
        ["###.", "...#", "..#.", ".#..", "#...", "###."],
        ["..##", "....#", "...#.", "..#..", ".#...", "####"],
        [".##.", "...#", "..#.", ".#..", "#...", "##.."],
        ["###", "..#", ".#.", ".#.", "#..", "###"],
        [".#.", "#.#", "..#", ".#.", "#..", "###"],
        ["##..", "..#.", "..#.", ".#..", "#...", "####"],
    ],
    3: [
        [".####.", "#....#", ".....#", "..###.", ".....#", "#....#", ".####."],
        ["####.", "....#", "....#", ".###.", "....#", "....#", "####."],
        [".###.", "#...#", "....#", "..##.", "....#", "#...#", ".###."],
        ["###.", "...#", "...#", ".##.", "...#", "...#", "###."],
        ["###.", "...#", "###.", "...#", "...#", "###."],
        ["##..", "..#.", "..#.", ".#..", "..#.", "..#.", "##.."],
        ["###", "..#", ".#.", "..#", "..#", "###"],
        [".##.", "...#", "..#.", "...#", "...#", ".##."],
        ["###.", "...#", ".##.", "...#", "..#.", ".#.."],
        [".#..", "..#.", ".#..", "..#.", "..#.", ".#.."],
    ],
    4: [
        ["....#.", "...##.", "..#.#.", ".#..#.", "######", "....#.", "....#."],
        ["#...#", "#...#", "#...#", "#####", "....#", "....#", "....#"],
        ["#..#", "#..#", "#..#", "####", "...#", "...#", "...#"],
        ["#...#", "#...#", "#####", "....#", "....#", "....#"],
        ["#.#", "#.#", "###", "..#", "..#"],
        ["#..#", "#..#", "####", "...#", "...#"],
        ["..#.", ".##.", "#.#.", "####", "..#.", "..#."],
        ["#...#", "#..#.", ".###.", "...#.", "...#."],
        [".#.#", "#..#", "####", "...#", "...#", "..#."],
        ["#..", "#.#", "###", "..#", "..#", "..#"],
    ],
    5: [
        ["######", "#.....", "#.....", ".####.", ".....#", "#....#", ".####."],
        ["#####", "#....", "####.", "....#", "....#", "#...#", ".###."],
        ["#####", "#....", "#....", "####.", "....#", "....#", "####."],
        ["####", "#...", "###.", "...#", "...#", "###."],
        ["####", "#...", "##..", "..#.", "..#.", "##.."],
        ["###.", "#...", "###.", "...#", "..#.", ".#.."],
        ["####", "#...", "#...", "###.", "...#", "###."],
        [".###", ".#..", ".##.", "...#", "...#", ".##."],
        ["###", "#..", "##.", "..#", "..#", "#.."],
    ],
    6: [
        ["..###.", ".#....", "#.....", "#####.", "#....#", "#....#", ".####."],
        [".###.", "#....", "#....", "####.", "#...#", "#...#", ".###."],
        [".##.", "#...", "#...", "###.", "#..#", "#..#", ".##."],
        ["###.", "#...", "###.", "#..#", "#..#", "###."],
        ["..#.", ".#..", "#...", "###.", "#..#", ".##."],
        [".##.", "#...", "##..", "#.#.", "#.#.", ".#.."],
        [".#..", "#...", "###.", "#..#", "#..#", ".##."],
        ["..##", ".#..", "#...", "##..", "#.#.", ".#.."],
        [".#.", "#..", "#..", "##.", "#.#", ".#."],
    ],
    7: [
        ["######", ".....#", "....#.", "...#..", "..#...", "..#...", "..#..."],
        ["#####", "....#", "...#.", "..#..", ".#...", ".#...", ".#..."],
        ["####", "...#", "...#", "..#.", "..#.", ".#..", ".#.."],
        ["###", "..#", "..#", ".#.", ".#.", "#.."],
        ["####", "...#", "..#.", "..#.", ".#..", ".#.."],
        ["###.", "..#.", "..#.", ".#..", ".#..", "#..."],
        ["####", "...#", "..#.", ".#..", "#...", "#..."],
        ["##", ".#", ".#", "#.", "#."],
        ["###", "..#", ".#.", ".#.", "#..", "#.."],
        ["####", "..#.", "..#.", "..#.", ".#..", ".#.."],
    ],
    8: [
        [".####.", "#....#", "#....#", ".####.", "#....#", "#....#", ".####."],
        [".###.", "#...#", "#...#", ".###.", "#...#", "#...#", ".###."],
        [".##.", "#..#", "#..#", ".##.", "#..#", "#..#", ".##."],
        ["###.", "#..#", "###.", "#..#", "#..#", "###."],
        [".##.", "#..#", ".##.", "#..#", "#..#", ".##."],
        [".#.", "#.#", ".#.", "#.#", "#.#", ".#."],
        [".###.", "#...#", ".#.#.", "#...#", "#...#", ".###."],
        [".##.", "#..#", "#..#", ".#..", "#..#", ".##."],
        ["##..", "#.#.", ".##.", "#.#.", "#.#.", ".##."],
        [".#.", "#.#", "#.#", ".#.", "#.#", ".#."],
    ],
    9: [
        [".####.", "#....#", "#....#", ".#####", ".....#", "....#.", ".###.."],
        [".###.", "#...#", "#...#", ".####", "....#", "...#.", ".##.."],
        [".###.", "#...#", "#...#", ".####", "....#", "....#", "....#"],
        ["####", "#..#", "####", "...#", "...#", "...#"],
        [".##.", "#..#", "#..#", ".###", "...#", "..#.", ".#.."],
        [".##.", "#..#", ".###", "...#", "...#", "..#."],
        ["###.", "#..#", "####", "...#", "..#.", ".#.."],
        [".#.", "#.#", "#.#", ".##", "..#", "..#"],
        [".##.", "#..#", ".##.", "..#.", "..#.", ".#.."],
        ["##..", "#.#.", ".##.", "..#.", "..#.", ".#.."],
    ],
}

_DIGIT_WORDS = ("zero", "one", "two", "three", "four",
                "five", "six", "seven", "eight", "nine")


def _build_catalog() -> Dict[int, Tuple[DigitTemplate, ...]]:
    catalog: Dict[int, Tuple[DigitTemplate, ...]] = {}
    for digit in range(NUM_CLASSES):
        word = _DIGIT_WORDS[digit]
        entries = [DigitTemplate(digit, f"{word}/canonical",
                                 parse_template(_CANONICAL[digit]))]
        for i, rows in enumerate(_VARIANTS[digit], start=1):
            entries.append(DigitTemplate(digit, f"{word}/v{i:02d}", parse_template(rows)))
        catalog[digit] = tuple(entries)
    return catalog


TEMPLATE_CATALOG: Dict[int, Tuple[DigitTemplate, ...]] = _build_catalog()


# ── Lookups ────────────────────────────────────────────────────────────

def get_templates(digit: int) -> Tuple[DigitTemplate, ...]:
    """All variants of *digit* (canonical first)."""
    return TEMPLATE_CATALOG[check_digit(digit)]


def canonical_template(digit: int) -> DigitTemplate:
    """The thick 7×7 reference rendering of *digit*."""
    return get_templates(digit)[0]


def all_templates() -> List[DigitTemplate]:
    return [t for d in range(NUM_CLASSES) for t in TEMPLATE_CATALOG[d]]


# ── Cell fitting (used by the template matcher) ───────────────────────

def fit_to_cells(bitmap: np.ndarray, size: int = 7) -> np.ndarray:
    """Fit a bitmap into a ``size × size`` grid, preserving aspect ratio.

    The longer side is stretched to *size* with nearest-neighbour
    sampling, the shorter side scaled by the same factor and centred.
    A 1-column "1" therefore stays a thin centred stroke instead of
    being smeared across the whole grid.
    """
    h, w = bitmap.shape
    factor = size / max(h, w)
    new_w = int(min(size, max(1, round(w * factor))))
    new_h = int(min(size, max(1, round(h * factor))))
    resized = cv2.resize(
        bitmap.astype(np.uint8), (new_w, new_h), interpolation=cv2.INTER_NEAREST,
    )
    out = np.zeros((size, size), dtype=np.uint8)
    y0 = (size - new_h) // 2
    x0 = (size - new_w) // 2
    out[y0:y0 + new_h, x0:x0 + new_w] = resized
    return out
