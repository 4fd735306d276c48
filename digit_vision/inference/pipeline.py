"""
Inference Pipeline – End-to-End Grid → Digit
============================================

This is the single-call entry point for recognition.

Pipeline stages:
  1. Preprocessing       – crop, rescale, recentre, normalise (28×28)
  2. Feature extraction  – holes, endpoints, lines, zones, ...
  3. Heuristic scoring   – per-digit rules + disambiguation
  4. Template matching   – 7×7 view vs. every template variant
  5. Ensemble            – consensus bonus, weighted sum, softmax

Optional extras:
  • A third probability source (e.g. a trained ``DigitCNN``)
  • Presentation activations for the network visualiser
  • Debug visualisation overlay
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple, Union

import cv2
import numpy as np
import torch
import torch.nn as nn

from digit_vision.inference.activations import (
    HIDDEN_UNITS,
    hidden_activations,
    input_sample,
)
from digit_vision.inference.ensemble import (
    DEFAULT_WEIGHTS,
    TEMPERATURE,
    EnsembleResult,
    as_score_vector,
    combine,
)
from digit_vision.inference.features import FeatureRecord, extract_features
from digit_vision.inference.preprocess import GRID_SIZE, normalize_grid, to_grid
from digit_vision.inference.scoring import score_features
from digit_vision.inference.template_matcher import match_templates
from digit_vision.models.reference_net import DigitCNN
from digit_vision.models.templates import NUM_CLASSES

log = logging.getLogger(__name__)


# ── Confidence labels ─────────────────────────────────────────────────

CONFIDENCE_LEVELS: Tuple[Tuple[float, str], ...] = (
    (0.9, "very high"),
    (0.7, "high"),
    (0.5, "medium"),
)


def confidence_label(confidence: float) -> str:
    for threshold, label in CONFIDENCE_LEVELS:
        if confidence >= threshold:
            return label
    return "low"


# ── Result dataclass ──────────────────────────────────────────────────

@dataclass
class ClassificationResult:
    """Full output of the recognition pipeline."""
    probabilities: np.ndarray                      # (10,) sums to 1
    predicted_digit: int                           # argmax of probabilities
    confidence: float                              # probability of predicted_digit
    features: FeatureRecord                        # structural measurements
    aux: Dict[str, np.ndarray] = field(default_factory=dict)   # display arrays
    consensus_digit: Optional[int] = None
    grid: Optional[np.ndarray] = field(default=None, repr=False)  # normalised input

    @property
    def confidence_label(self) -> str:
        return confidence_label(self.confidence)

    def to_dict(self) -> Dict:
        """JSON-serialisable summary (display arrays included)."""
        return {
            "predicted_digit": self.predicted_digit,
            "confidence": round(self.confidence, 4),
            "confidence_label": self.confidence_label,
            "probabilities": [round(float(p), 4) for p in self.probabilities],
            "consensus_digit": self.consensus_digit,
            "features": {
                name: round(float(v), 4)
                for name, v in zip(FeatureRecord.field_names(), self.features.as_vector())
            },
            "aux": {k: [round(float(x), 4) for x in v] for k, v in self.aux.items()},
        }


# ── Third probability source ──────────────────────────────────────────

class TorchProbabilitySource:
    """Adapts a network (or any callable) to the ensemble's third source.

    Parameters
    ----------
    model : nn.Module | callable
        An ``nn.Module`` mapping ``(B, 1, 28, 28)`` to logits (softmax is
        applied here), or a plain callable mapping a 28×28 grid to ten
        probabilities.
    device : str
        Torch device for module inference.
    """

    def __init__(
        self,
        model: Union[nn.Module, Callable[[np.ndarray], np.ndarray]],
        device: str = "cpu",
    ) -> None:
        self.model = model
        self.device = torch.device(device)
        if isinstance(model, nn.Module):
            model.to(self.device)
            model.eval()

    @classmethod
    def from_checkpoint(cls, path: str | Path, device: str = "cpu") -> "TorchProbabilitySource":
        return cls(DigitCNN.load_from_checkpoint(str(path), device=torch.device(device)), device)

    @torch.no_grad()
    def __call__(self, grid: np.ndarray) -> np.ndarray:
        if isinstance(self.model, nn.Module):
            x = torch.from_numpy(np.ascontiguousarray(grid, dtype=np.float32))
            x = x.view(1, 1, GRID_SIZE, GRID_SIZE).to(self.device)
            probs = torch.softmax(self.model(x), dim=1)[0].cpu().numpy()
        else:
            probs = self.model(grid)
        return as_score_vector(probs, "third source")


# ── Pipeline class ─────────────────────────────────────────────────────

class DigitRecognitionPipeline:
    """End-to-end 28×28 grid → digit pipeline.

    Parameters
    ----------
    weights : (float, float, float)
        Ensemble weights for (heuristic, template, third source).
    temperature : float
        Softmax temperature.
    third_source : callable, optional
        Grid → 10 probabilities (see ``TorchProbabilitySource``).
    activation_seed : int, optional
        Seed for the presentation activations; ``None`` draws fresh
        entropy on each call.
    """

    def __init__(
        self,
        weights: Tuple[float, float, float] = DEFAULT_WEIGHTS,
        temperature: float = TEMPERATURE,
        third_source: Optional[Callable[[np.ndarray], np.ndarray]] = None,
        activation_seed: Optional[int] = 0,
    ) -> None:
        if len(weights) != 3:
            raise ValueError(f"Expected 3 ensemble weights, got {len(weights)}")
        self.weights = tuple(float(w) for w in weights)
        self.temperature = float(temperature)
        self.third_source = third_source
        self.activation_seed = activation_seed

        log.info(
            "Pipeline ready  weights=%s  temperature=%.1f  third_source=%s",
            self.weights,
            self.temperature,
            type(third_source).__name__ if third_source is not None else "none",
        )

    # ── Public API ─────────────────────────────────────────────────────

    def recognize(self, pixels) -> ClassificationResult:
        """Run the full pipeline on a raw PixelGrid.

        Parameters
        ----------
        pixels : array-like
            784 values (flat or 28×28) in [0, 1], ink = high.

        Returns
        -------
        ClassificationResult
        """
        raw = to_grid(pixels)

        # 1. Preprocess
        grid = normalize_grid(raw)

        # 2–4. Independent evidence
        features = extract_features(grid)
        heuristic = score_features(features)
        template = match_templates(grid)
        third = None
        if self.third_source is not None and not features.is_empty:
            third = self.third_source(grid)

        # 5. Combine
        if features.is_empty:
            probabilities = np.full(NUM_CLASSES, 1.0 / NUM_CLASSES, dtype=np.float32)
            ens = EnsembleResult(
                probabilities=probabilities,
                combined=np.zeros(NUM_CLASSES, dtype=np.float32),
                consensus_digit=None,
                consensus_bonus=0.0,
                votes=(None, None, None),
            )
        else:
            ens = combine(heuristic, template, third, self.weights, self.temperature)

        predicted = int(np.argmax(ens.probabilities))
        confidence = float(ens.probabilities[predicted])
        log.debug("predicted=%d confidence=%.3f votes=%s", predicted, confidence, ens.votes)

        return ClassificationResult(
            probabilities=ens.probabilities,
            predicted_digit=predicted,
            confidence=confidence,
            features=features,
            aux=self._display_arrays(raw, features, heuristic, template, ens),
            consensus_digit=ens.consensus_digit,
            grid=grid,
        )

    # ── Display arrays ─────────────────────────────────────────────────

    def _display_arrays(
        self,
        raw: np.ndarray,
        features: FeatureRecord,
        heuristic: np.ndarray,
        template: np.ndarray,
        ens: EnsembleResult,
    ) -> Dict[str, np.ndarray]:
        """Arrays for the visualiser; computed after the decision."""
        rng = np.random.default_rng(self.activation_seed)
        return {
            "feature_vector": features.as_vector(),
            "heuristic_scores": heuristic,
            "template_scores": template,
            "combined": ens.combined,
            "hidden1": hidden_activations(ens.combined, HIDDEN_UNITS, rng),
            "hidden2": hidden_activations(ens.probabilities, HIDDEN_UNITS, rng),
            "input_sample": input_sample(raw),
        }

    # ── Debug visualisation ────────────────────────────────────────────

    def visualize(
        self,
        result: ClassificationResult,
        save_path: Optional[str] = None,
        scale: int = 10,
    ) -> np.ndarray:
        """Draw the normalised grid next to a probability bar chart.

        Parameters
        ----------
        result : ClassificationResult
            Output of ``recognize()``.
        save_path : str, optional
            Save the annotated image to disk.
        scale : int
            Pixel size of one grid cell.

        Returns
        -------
        np.ndarray
            Annotated BGR image.
        """
        side = GRID_SIZE * scale
        grid = result.grid if result.grid is not None else np.zeros((GRID_SIZE, GRID_SIZE))
        digit = cv2.resize(
            (np.clip(grid, 0.0, 1.0) * 255).astype(np.uint8),
            (side, side),
            interpolation=cv2.INTER_NEAREST,
        )
        canvas = np.zeros((side, side * 2, 3), dtype=np.uint8)
        canvas[:, :side] = cv2.cvtColor(digit, cv2.COLOR_GRAY2BGR)

        bar_h = side // NUM_CLASSES
        for d, p in enumerate(result.probabilities):
            y = d * bar_h
            # Colour: green for the prediction, grey otherwise
            color = (0, 200, 0) if d == result.predicted_digit else (160, 160, 160)
            width = int(float(p) * (side - 40))
            cv2.rectangle(canvas, (side + 30, y + 3), (side + 30 + width, y + bar_h - 3), color, -1)
            cv2.putText(
                canvas, str(d),
                (side + 8, y + bar_h - 6),
                cv2.FONT_HERSHEY_SIMPLEX, 0.5, (255, 255, 255), 1,
            )

        cv2.putText(
            canvas, f"{result.predicted_digit} ({result.confidence:.0%})",
            (8, 24),
            cv2.FONT_HERSHEY_SIMPLEX, 0.7, (0, 200, 255), 2,
        )

        if save_path:
            cv2.imwrite(save_path, canvas)
            log.info("Saved debug image to %s", save_path)

        return canvas


# ── Module-level convenience ───────────────────────────────────────────

_DEFAULT_PIPELINE: Optional[DigitRecognitionPipeline] = None


def classify(pixels) -> ClassificationResult:
    """Recognise one PixelGrid with the default configuration."""
    global _DEFAULT_PIPELINE
    if _DEFAULT_PIPELINE is None:
        _DEFAULT_PIPELINE = DigitRecognitionPipeline()
    return _DEFAULT_PIPELINE.recognize(pixels)
