"""
Ensemble Combiner
=================

Fuses the heuristic ScoreVector, the template ScoreVector and an optional
third probability source into one ProbabilityVector.

  1. Every source is divided by its own maximum and floored at zero.
  2. Consensus: each non-flat source votes for its argmax; when two or
     more agree, that digit gets ``CONSENSUS_BONUS × (votes − 1)``.
  3. Weighted sum with ``DEFAULT_WEIGHTS`` (heuristic, template, third).
     The bonus is larger than the third source's weight, so a digit the
     first two sources agree on is never overtaken.
  4. Temperature-scaled softmax, renormalised so the vector sums to 1.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from digit_vision.inference.preprocess import EPS
from digit_vision.models.templates import NUM_CLASSES

log = logging.getLogger(__name__)


DEFAULT_WEIGHTS: Tuple[float, float, float] = (0.72, 0.20, 0.08)
TEMPERATURE: float = 8.0
CONSENSUS_FRACTION: float = 0.65
CONSENSUS_BONUS: float = 0.15


@dataclass(frozen=True)
class EnsembleResult:
    """Outcome of one combination step."""
    probabilities: np.ndarray            # (10,) sums to 1
    combined: np.ndarray                 # (10,) pre-softmax scores
    consensus_digit: Optional[int]       # None when fewer than two votes agree
    consensus_bonus: float
    votes: Tuple[Optional[int], ...]     # per source, None = abstained


# ── Helpers ────────────────────────────────────────────────────────────

def as_score_vector(values: Sequence[float], name: str = "scores") -> np.ndarray:
    """Validate length 10 and coerce to float32; NaN becomes 0."""
    arr = np.asarray(values, dtype=np.float32).reshape(-1)
    if arr.size != NUM_CLASSES:
        raise ValueError(f"{name}: expected {NUM_CLASSES} values, got {arr.size}")
    return np.nan_to_num(arr, nan=0.0, posinf=1.0, neginf=0.0)


def max_normalize(scores: np.ndarray) -> np.ndarray:
    floored = np.maximum(scores, 0.0)
    return (floored / max(float(floored.max()), EPS)).astype(np.float32)


def softmax(values: np.ndarray, temperature: float = TEMPERATURE) -> np.ndarray:
    """``exp((v − max) · T)`` normalised; stable for any input range."""
    v = np.asarray(values, dtype=np.float64)
    exp = np.exp((v - v.max()) * temperature)
    probs = exp / exp.sum()
    probs = np.clip(probs, 0.0, 1.0)
    return (probs / probs.sum()).astype(np.float32)


def vote(scores: np.ndarray) -> Optional[int]:
    """Argmax of a normalised source, or None if the source is uninformative."""
    peak = float(scores.max())
    if peak <= EPS or peak - float(scores.min()) <= EPS:
        return None
    best = int(np.argmax(scores))
    if scores[best] < CONSENSUS_FRACTION * peak:
        return None
    return best


# ── Public API ─────────────────────────────────────────────────────────

def combine(
    heuristic: Sequence[float],
    template: Sequence[float],
    third: Optional[Sequence[float]] = None,
    weights: Tuple[float, float, float] = DEFAULT_WEIGHTS,
    temperature: float = TEMPERATURE,
) -> EnsembleResult:
    """Combine up to three sources into an EnsembleResult.

    Parameters
    ----------
    heuristic, template : sequence of float
        Length-10 ScoreVectors.
    third : sequence of float, optional
        Length-10 probability vector; treated as zeros when omitted.
    weights : (float, float, float)
        Source weights in the order above.
    temperature : float
        Softmax temperature (higher → sharper).
    """
    if len(weights) != 3:
        raise ValueError(f"Expected 3 weights, got {len(weights)}")

    sources = [
        max_normalize(as_score_vector(heuristic, "heuristic")),
        max_normalize(as_score_vector(template, "template")),
    ]
    if third is not None:
        sources.append(max_normalize(as_score_vector(third, "third source")))
    else:
        sources.append(np.zeros(NUM_CLASSES, dtype=np.float32))

    combined = np.zeros(NUM_CLASSES, dtype=np.float32)
    for w, src in zip(weights, sources):
        combined += np.float32(w) * src

    votes = tuple(vote(src) for src in sources)
    cast = [v for v in votes if v is not None]
    consensus_digit: Optional[int] = None
    bonus = 0.0
    if cast:
        counts = np.bincount(cast, minlength=NUM_CLASSES)
        top = int(np.argmax(counts))
        if counts[top] >= 2:
            consensus_digit = top
            bonus = CONSENSUS_BONUS * (int(counts[top]) - 1)
            combined[top] += np.float32(bonus)

    probabilities = softmax(combined, temperature)
    if consensus_digit is not None:
        log.debug("consensus on %d (bonus %.2f)", consensus_digit, bonus)
    return EnsembleResult(
        probabilities=probabilities,
        combined=combined,
        consensus_digit=consensus_digit,
        consensus_bonus=bonus,
        votes=votes,
    )
