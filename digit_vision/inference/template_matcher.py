"""
Template Matcher
================

Compares a downsampled 7×7 view of the input against every template
variant of every class.

Scoring per (variant, shift):

  • cells on the outer ring and in the inner 3×3 block are *critical* –
    they decide the overall shape (closed vs open sides, filled vs empty
    centre) – and weigh more than the ring in between;
  • agreeing cells earn ``CRITICAL_MATCH`` / ``INTERIOR_MATCH``,
    disagreeing ones cost ``CRITICAL_MISS`` / ``INTERIOR_MISS``;
  • the sum is divided by the best attainable score.

The template is tried at every shift in {-1, 0, 1}² so a digit sitting one
cell off-centre is not punished.  A second, *fuzzy* score only counts
matched critical cells and is scaled by ``FUZZY_WEIGHT``; each class keeps
``max(best shifted, best fuzzy)``, floored at zero.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Tuple

import cv2
import numpy as np

from digit_vision.inference.preprocess import BINARY_THRESHOLD, bounding_box, to_grid
from digit_vision.models.templates import (
    NUM_CLASSES,
    DigitTemplate,
    all_templates,
    fit_to_cells,
)

log = logging.getLogger(__name__)


MATCH_SIZE: int = 7
MATCH_THRESHOLD: float = 0.3     # Cell of the 7×7 view counts as ink above this
CRITICAL_MATCH: float = 2.0
INTERIOR_MATCH: float = 1.0
CRITICAL_MISS: float = 1.5
INTERIOR_MISS: float = 0.5
FUZZY_WEIGHT: float = 0.9
SHIFTS: Tuple[int, ...] = (-1, 0, 1)


def _critical_mask(size: int = MATCH_SIZE) -> np.ndarray:
    mask = np.zeros((size, size), dtype=bool)
    mask[0, :] = mask[-1, :] = True
    mask[:, 0] = mask[:, -1] = True
    lo = (size - 3) // 2
    mask[lo:lo + 3, lo:lo + 3] = True
    return mask


CRITICAL_MASK: np.ndarray = _critical_mask()
CRITICAL_MASK.setflags(write=False)

_MATCH_WEIGHTS = np.where(CRITICAL_MASK, CRITICAL_MATCH, INTERIOR_MATCH)
_MISS_WEIGHTS = np.where(CRITICAL_MASK, CRITICAL_MISS, INTERIOR_MISS)
_MAX_SCORE = float(_MATCH_WEIGHTS.sum())


def _fit_catalog(templates: Iterable[DigitTemplate]) -> Dict[int, List[np.ndarray]]:
    fitted: Dict[int, List[np.ndarray]] = {d: [] for d in range(NUM_CLASSES)}
    for t in templates:
        cells = fit_to_cells(t.bitmap, MATCH_SIZE).astype(bool)
        cells.setflags(write=False)
        fitted[t.digit].append(cells)
    return fitted


# Built once; read-only afterwards.
_FITTED: Dict[int, List[np.ndarray]] = _fit_catalog(all_templates())


# ── Input view ─────────────────────────────────────────────────────────

def downsample(grid: np.ndarray) -> np.ndarray | None:
    """Square crop around the ink, blur, area-resample to 7×7, threshold.

    Returns None when the grid has no ink.
    """
    box = bounding_box(grid > BINARY_THRESHOLD)
    if box is None:
        return None
    y0, y1, x0, x1 = box
    side = max(y1 - y0 + 1, x1 - x0 + 1)
    cy, cx = (y0 + y1) / 2.0, (x0 + x1) / 2.0
    top = int(round(cy - (side - 1) / 2.0))
    left = int(round(cx - (side - 1) / 2.0))

    # Paste into a zero square so crops hanging off the grid stay square.
    square = np.zeros((side, side), dtype=np.float32)
    h, w = grid.shape
    sy0, sx0 = max(0, top), max(0, left)
    sy1, sx1 = min(h, top + side), min(w, left + side)
    square[sy0 - top:sy1 - top, sx0 - left:sx1 - left] = grid[sy0:sy1, sx0:sx1]

    square = cv2.GaussianBlur(square, (3, 3), 0)
    small = cv2.resize(square, (MATCH_SIZE, MATCH_SIZE), interpolation=cv2.INTER_AREA)
    return small > MATCH_THRESHOLD


def shift_cells(cells: np.ndarray, dy: int, dx: int) -> np.ndarray:
    """Shift a bool grid by ``(dy, dx)``, filling vacated cells with False."""
    out = np.zeros_like(cells)
    h, w = cells.shape
    src = cells[max(0, -dy):h - max(0, dy), max(0, -dx):w - max(0, dx)]
    out[max(0, dy):max(0, dy) + src.shape[0], max(0, dx):max(0, dx) + src.shape[1]] = src
    return out


# ── Scores ─────────────────────────────────────────────────────────────

def weighted_score(view: np.ndarray, template: np.ndarray) -> float:
    agree = view == template
    total = float(_MATCH_WEIGHTS[agree].sum() - _MISS_WEIGHTS[~agree].sum())
    return total / _MAX_SCORE


def fuzzy_score(view: np.ndarray, template: np.ndarray) -> float:
    agree = (view == template) & CRITICAL_MASK
    return FUZZY_WEIGHT * float(agree.sum()) / float(CRITICAL_MASK.sum())


def match_templates(
    grid: np.ndarray,
    templates: Optional[Iterable[DigitTemplate]] = None,
) -> np.ndarray:
    """Return a length-10 ScoreVector (non-negative, unnormalised).

    Parameters
    ----------
    grid : np.ndarray
        Normalised 28×28 PixelGrid.
    templates : iterable of DigitTemplate, optional
        Custom catalog; defaults to the built-in one.
    """
    view = downsample(to_grid(grid))
    scores = np.zeros(NUM_CLASSES, dtype=np.float32)
    if view is None:
        return scores

    fitted = _FITTED if templates is None else _fit_catalog(templates)
    for digit, variants in fitted.items():
        best = 0.0
        for cells in variants:
            for dy in SHIFTS:
                for dx in SHIFTS:
                    best = max(best, weighted_score(view, shift_cells(cells, dy, dx)))
            best = max(best, fuzzy_score(view, cells))
        scores[digit] = best
    log.debug("template scores: %s", np.round(scores, 3).tolist())
    return scores
