"""
Digit Dataset – Synthetic Sample Generator
==========================================

Design philosophy:
  We do **not** have labelled handwriting; we have a catalog of template
  bitmaps per digit.  This module builds a training set from them by:

    1. **Template choice** – for every sample a random variant of the
       target digit is picked.
    2. **Style choice** – every ``messy_every``-th sample uses the
       sloppy-handwriting style, the rest a perturbed reference style.
    3. **Rendering** – ``render_sample`` applies the affine warp and pen
       effects, producing one 28×28×1 image.
    4. **Shuffle** – images and one-hot labels are permuted together
       with a single seeded permutation, so the pairing never breaks.

  Every sample draws from its own generator seeded by ``(seed, index)``;
  rendering order, thread count and DataLoader workers therefore never
  change the output.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Tuple

import numpy as np
import torch
from torch.utils.data import Dataset

from digit_vision.inference.preprocess import GRID_SIZE
from digit_vision.models.templates import NUM_CLASSES, check_digit, get_templates
from digit_vision.training.renderer import messy_style, random_style, render_sample

log = logging.getLogger(__name__)


SAMPLES_PER_CLASS: int = 600
MESSY_EVERY: int = 3


def one_hot(digit: int) -> np.ndarray:
    """Length-10 float32 vector with a single 1 at *digit*."""
    vec = np.zeros(NUM_CLASSES, dtype=np.float32)
    vec[check_digit(digit)] = 1.0
    return vec


def sample_rng(seed: int, index: int) -> np.random.Generator:
    """Independent generator for sample *index* of a run seeded with *seed*."""
    return np.random.default_rng(np.random.SeedSequence([seed, index]))


def render_indexed(
    digit: int,
    index: int,
    seed: int = 0,
    messy_every: int = MESSY_EVERY,
) -> np.ndarray:
    """Render the *index*-th sample of *digit* (deterministic for a seed)."""
    rng = sample_rng(seed, digit * 1_000_003 + index)
    variants = get_templates(digit)
    template = variants[int(rng.integers(len(variants)))]
    messy = messy_every > 0 and index % messy_every == 0
    style = messy_style(rng) if messy else random_style(rng)
    return render_sample(template, style, rng)


def generate_samples(
    per_class: int = SAMPLES_PER_CLASS,
    seed: int = 0,
    messy_every: int = MESSY_EVERY,
    workers: int = 0,
) -> Tuple[np.ndarray, np.ndarray]:
    """Render a shuffled synthetic training set.

    Parameters
    ----------
    per_class : int
        Samples per digit.
    seed : int
        Controls templates, styles, noise and the final shuffle.
    messy_every : int
        Every n-th sample uses the messy style (0 disables it).
    workers : int
        Thread count for rendering; 0 renders in the calling thread.

    Returns
    -------
    (images, labels)
        ``(N, 28, 28, 1)`` float32 and ``(N, 10)`` one-hot float32.
    """
    jobs = [(d, i) for d in range(NUM_CLASSES) for i in range(per_class)]
    log.info("Rendering %d samples (%d per class, seed=%d, workers=%d)",
             len(jobs), per_class, seed, workers)

    def _render(job: Tuple[int, int]) -> np.ndarray:
        return render_indexed(job[0], job[1], seed, messy_every)

    if workers > 0:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            images: List[np.ndarray] = list(pool.map(_render, jobs))
    else:
        images = []
        for d in range(NUM_CLASSES):
            images.extend(_render((d, i)) for i in range(per_class))
            log.info("  digit %d done", d)

    if not images:
        return (np.zeros((0, GRID_SIZE, GRID_SIZE, 1), dtype=np.float32),
                np.zeros((0, NUM_CLASSES), dtype=np.float32))

    x = np.stack(images)
    y = np.stack([one_hot(d) for d, _ in jobs])

    order = np.random.default_rng(seed).permutation(len(x))
    return x[order], y[order]


# ── Torch dataset ─────────────────────────────────────────────────────

class SyntheticDigitDataset(Dataset):
    """Renders labelled digit samples on-the-fly.

    Each ``__getitem__`` call maps the index to ``(digit, sample_index)``
    and renders that sample deterministically, so the dataset behaves
    identically with any number of DataLoader workers.

    Parameters
    ----------
    per_class : int
        Virtual samples per digit.
    seed : int
        Base seed.
    messy_every : int
        Every n-th sample of a digit uses the messy style.
    """

    def __init__(
        self,
        per_class: int = SAMPLES_PER_CLASS,
        seed: int = 0,
        messy_every: int = MESSY_EVERY,
    ) -> None:
        self.per_class = per_class
        self.seed = seed
        self.messy_every = messy_every
        self._order = np.random.default_rng(seed).permutation(per_class * NUM_CLASSES)

    def __len__(self) -> int:
        return self.per_class * NUM_CLASSES

    def label_of(self, idx: int) -> int:
        return int(self._order[idx]) // self.per_class

    def __getitem__(self, idx: int) -> Tuple[torch.Tensor, torch.Tensor]:
        """Return ``(image[1, 28, 28], one_hot[10])``."""
        if not 0 <= idx < len(self):
            raise IndexError(idx)
        flat = int(self._order[idx])
        digit, index = divmod(flat, self.per_class)
        image = render_indexed(digit, index, self.seed, self.messy_every)
        tensor = torch.from_numpy(np.ascontiguousarray(image.transpose(2, 0, 1)))
        return tensor, torch.from_numpy(one_hot(digit))


def save_samples(path: str, images: np.ndarray, labels: np.ndarray) -> None:
    """Write a generated set as a compressed ``.npz`` (``x``, ``y``)."""
    np.savez_compressed(path, x=images, y=labels)
    log.info("Saved %d samples to %s", len(images), path)
