"""
Presentation activations for the network visualiser.

These arrays only drive the animated "hidden layer" display.  They are
derived from the final scores after the decision has been made and are
never read back by the recognizer.  A seeded generator keeps them
reproducible.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

HIDDEN_UNITS: int = 32
ACTIVATION_JITTER: float = 0.2
INPUT_SAMPLE_LENGTH: int = 28


def hidden_activations(
    values: Sequence[float],
    count: int = HIDDEN_UNITS,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """Tile *values* to *count* entries, add uniform jitter, clip to [0, 1]."""
    rng = rng if rng is not None else np.random.default_rng()
    base = np.abs(np.asarray(values, dtype=np.float32).reshape(-1))
    if base.size == 0:
        base = np.zeros(1, dtype=np.float32)
    tiled = np.resize(base, count)
    jitter = rng.uniform(0.0, ACTIVATION_JITTER, size=count).astype(np.float32)
    return np.clip(tiled + jitter, 0.0, 1.0)


def resample_activations(values: Sequence[float], length: int) -> np.ndarray:
    """Fit an activation array to *length* display slots.

    Longer inputs are subsampled at a fixed stride, shorter ones repeat
    cyclically; values are clipped to [0, 1].  Empty input gives zeros.
    """
    arr = np.asarray(values, dtype=np.float32).reshape(-1)
    if arr.size == 0:
        return np.zeros(length, dtype=np.float32)
    if arr.size == length:
        out = arr
    elif arr.size > length:
        idx = np.floor(np.arange(length) * (arr.size / length)).astype(int)
        out = arr[idx]
    else:
        out = arr[np.arange(length) % arr.size]
    return np.clip(np.nan_to_num(out, nan=0.0), 0.0, 1.0)


def input_sample(grid: np.ndarray, length: int = INPUT_SAMPLE_LENGTH) -> np.ndarray:
    """First *length* cells of the row-major grid (the visualiser's input row)."""
    return np.asarray(grid, dtype=np.float32).reshape(-1)[:length].copy()
