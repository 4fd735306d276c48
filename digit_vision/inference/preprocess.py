"""
Image Preprocessing – Crop, Rescale, Recentre, Normalise
=========================================================

Turns whatever the drawing surface hands over (off-centre, tiny, huge,
faint) into a canonical 28×28 grid so the downstream feature and
template stages see comparable input:

  1. Bounding box of cells above ``BINARY_THRESHOLD``.
  2. Crop and uniformly rescale so the longer side becomes
     ``TARGET_SIZE`` (bilinear), pasted centred inside a ``PADDING``
     margin.
  3. One 3×3 box blur for anti-aliasing.
  4. Adaptive contrast: min/max stretch, then a gamma curve chosen so
     the mean ink intensity of the *result* lands on ``INK_TARGET``.

A grid whose ink already fills the padded frame (longer side within
``FRAME_TOLERANCE`` of ``TARGET_SIZE``, centred) is not resampled, so it
is not blurred again either; only the contrast step runs, and on its own
output that step picks a gamma of 1.  A second pass over a normalised
grid is therefore a near no-op.

Near-empty input (fewer than ``MIN_ACTIVE_PIXELS`` active cells) is not
an error – it simply yields an all-zero grid.
"""

from __future__ import annotations

import logging
from typing import Sequence, Tuple, Union

import cv2
import numpy as np

log = logging.getLogger(__name__)


GRID_SIZE: int = 28               # Side of every PixelGrid
BINARY_THRESHOLD: float = 0.25    # Cell is "active" above this
MIN_ACTIVE_PIXELS: int = 10       # Below this the input is degenerate
TARGET_SIZE: int = 20             # Longer bbox side after rescale
PADDING: int = 4                  # Margin kept around the digit
INK_TARGET: float = 0.7           # Mean ink intensity after gamma
GAMMA_RANGE: Tuple[float, float] = (0.5, 2.0)
GAMMA_STEPS: int = 40             # Bisection steps when solving for gamma
FRAME_TOLERANCE: int = 2          # Slack (px) when deciding a grid is already framed
EPS: float = 1e-6

GridLike = Union[np.ndarray, Sequence[float], Sequence[Sequence[float]]]


# ── Input validation ──────────────────────────────────────────────────

def to_grid(pixels: GridLike, size: int = GRID_SIZE) -> np.ndarray:
    """Return a fresh float32 ``(size, size)`` copy of *pixels* in [0, 1].

    Accepts a flat buffer of ``size * size`` values (row-major), a 2-D
    grid, or a ``(size, size, 1)`` sample.  Anything else is a caller
    bug and raises ``ValueError``.
    """
    arr = np.array(pixels, dtype=np.float32)
    if arr.size != size * size:
        raise ValueError(
            f"Expected {size * size} pixels ({size}×{size}), got shape {arr.shape}"
        )
    if arr.ndim not in (1, 2, 3):
        raise ValueError(f"Unsupported grid shape {arr.shape}")
    grid = arr.reshape(size, size)
    grid = np.nan_to_num(grid, nan=0.0, posinf=1.0, neginf=0.0)
    return np.clip(grid, 0.0, 1.0)


def bounding_box(mask: np.ndarray) -> Tuple[int, int, int, int] | None:
    """``(y0, y1, x0, x1)`` inclusive bounds of the True cells, or None."""
    ys, xs = np.nonzero(mask)
    if ys.size == 0:
        return None
    return int(ys.min()), int(ys.max()), int(xs.min()), int(xs.max())


# ── Pipeline steps ─────────────────────────────────────────────────────

def _rescale_to_canvas(grid: np.ndarray, box: Tuple[int, int, int, int]) -> np.ndarray:
    """Crop *box*, scale its longer side to ``TARGET_SIZE`` and centre it."""
    y0, y1, x0, x1 = box
    crop = grid[y0:y1 + 1, x0:x1 + 1]
    h, w = crop.shape
    factor = TARGET_SIZE / max(h, w)
    new_w = int(min(TARGET_SIZE, max(1, round(w * factor))))
    new_h = int(min(TARGET_SIZE, max(1, round(h * factor))))
    resized = cv2.resize(crop, (new_w, new_h), interpolation=cv2.INTER_LINEAR)

    canvas = np.zeros((GRID_SIZE, GRID_SIZE), dtype=np.float32)
    top = PADDING + (TARGET_SIZE - new_h) // 2
    left = PADDING + (TARGET_SIZE - new_w) // 2
    canvas[top:top + new_h, left:left + new_w] = resized
    return canvas


def is_framed(box: Tuple[int, int, int, int]) -> bool:
    """True when the ink box already sits where ``normalize_grid`` puts it."""
    y0, y1, x0, x1 = box
    longer = max(y1 - y0, x1 - x0) + 1
    if abs(longer - TARGET_SIZE) > FRAME_TOLERANCE:
        return False
    lo, hi = PADDING - FRAME_TOLERANCE // 2, GRID_SIZE - 1 - PADDING + FRAME_TOLERANCE // 2
    if min(y0, x0) < lo or max(y1, x1) > hi:
        return False
    centre = (GRID_SIZE - 1) / 2.0
    slack = FRAME_TOLERANCE * 0.75
    return abs((y0 + y1) / 2.0 - centre) <= slack and abs((x0 + x1) / 2.0 - centre) <= slack


def _ink_mean(values: np.ndarray, gamma: float) -> float:
    curved = np.power(values, gamma)
    ink = curved[curved > BINARY_THRESHOLD]
    return float(ink.mean()) if ink.size else 0.0


def solve_gamma(stretched: np.ndarray) -> float:
    """Gamma that puts the mean ink of ``stretched ** gamma`` on ``INK_TARGET``.

    Solved by bisection on log-gamma inside ``GAMMA_RANGE``; a larger
    gamma darkens, so the ink mean falls as gamma grows.  Solving on the
    output rather than the input makes the curve a fixed point: applied
    to its own result it returns (almost exactly) 1.
    """
    values = stretched[stretched > 0.0].astype(np.float64)
    if values.size == 0:
        return 1.0
    lo, hi = np.log(GAMMA_RANGE[0]), np.log(GAMMA_RANGE[1])
    if _ink_mean(values, GAMMA_RANGE[0]) <= INK_TARGET:
        return GAMMA_RANGE[0]
    if _ink_mean(values, GAMMA_RANGE[1]) >= INK_TARGET:
        return GAMMA_RANGE[1]
    for _ in range(GAMMA_STEPS):
        mid = (lo + hi) / 2.0
        if _ink_mean(values, float(np.exp(mid))) > INK_TARGET:
            lo = mid
        else:
            hi = mid
    return float(np.exp((lo + hi) / 2.0))


def adaptive_normalize(grid: np.ndarray) -> np.ndarray:
    """Min/max stretch followed by an ink-level gamma curve."""
    lo, hi = float(grid.min()), float(grid.max())
    if hi - lo < EPS:
        return np.zeros_like(grid)
    stretched = (grid - lo) / (hi - lo)
    gamma = solve_gamma(stretched)
    return np.power(stretched, gamma).astype(np.float32)


def normalize_grid(pixels: GridLike) -> np.ndarray:
    """Full preprocessing pass; pure, returns a new ``(28, 28)`` grid."""
    grid = to_grid(pixels)
    active = grid > BINARY_THRESHOLD
    n_active = int(active.sum())
    if n_active < MIN_ACTIVE_PIXELS:
        log.debug("Degenerate input (%d active cells) → empty grid", n_active)
        return np.zeros((GRID_SIZE, GRID_SIZE), dtype=np.float32)

    box = bounding_box(active)
    if is_framed(box):
        return adaptive_normalize(grid)

    canvas = _rescale_to_canvas(grid, box)
    blurred = cv2.blur(canvas, (3, 3), borderType=cv2.BORDER_CONSTANT)
    return adaptive_normalize(blurred)
