"""
Reference Network – Optional Third Probability Source
=====================================================

The recognizer itself never learns anything.  Deployments that *do*
train a network on the synthetic samples (outside this package) can plug
it into the ensemble as the third, low-weight source.  This module
defines the small CNN such a training loop is expected to produce and
the inference-side helpers to load and query it.

Architecture (28×28×1 input):
  • conv 3×3 ×32 → BN → conv 3×3 ×32 → max-pool → dropout 0.25
  • conv 3×3 ×64 → BN → conv 3×3 ×64 → max-pool → dropout 0.25
  • flatten → dense 256 → dropout 0.5 → dense 10
  • ``forward`` returns raw logits; softmax is applied in
    ``predict_proba``.
"""

from __future__ import annotations

from typing import Optional

import torch
import torch.nn as nn

from digit_vision.models.templates import NUM_CLASSES


class DigitCNN(nn.Module):
    """Two-block convolutional digit classifier.

    Parameters
    ----------
    num_classes : int
        Number of output classes (default 10).
    dropout : float
        Dropout probability before the final layer.
    """

    def __init__(self, num_classes: int = NUM_CLASSES, dropout: float = 0.5) -> None:
        super().__init__()

        self.features = nn.Sequential(
            nn.Conv2d(1, 32, kernel_size=3, padding=1),
            nn.ReLU(inplace=True),
            nn.BatchNorm2d(32),
            nn.Conv2d(32, 32, kernel_size=3, padding=1),
            nn.ReLU(inplace=True),
            nn.MaxPool2d(2),
            nn.Dropout(p=0.25),
            nn.Conv2d(32, 64, kernel_size=3, padding=1),
            nn.ReLU(inplace=True),
            nn.BatchNorm2d(64),
            nn.Conv2d(64, 64, kernel_size=3, padding=1),
            nn.ReLU(inplace=True),
            nn.MaxPool2d(2),
            nn.Dropout(p=0.25),
        )
        self.classifier = nn.Sequential(
            nn.Flatten(),
            nn.Linear(64 * 7 * 7, 256),
            nn.ReLU(inplace=True),
            nn.Dropout(p=dropout),
            nn.Linear(256, num_classes),
        )

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """Return **logits** of shape ``(B, num_classes)`` for ``(B, 1, 28, 28)``."""
        return self.classifier(self.features(x))

    def predict_proba(self, x: torch.Tensor) -> torch.Tensor:
        """Return softmax probabilities of shape ``(B, num_classes)``."""
        with torch.no_grad():
            logits = self.forward(x)
            return torch.softmax(logits, dim=1)

    @classmethod
    def load_from_checkpoint(
        cls,
        path: str,
        device: Optional[torch.device] = None,
        **kwargs,
    ) -> "DigitCNN":
        """Convenience loader that handles map_location automatically."""
        if device is None:
            device = torch.device("cpu")
        model = cls(**kwargs)
        state = torch.load(path, map_location=device, weights_only=True)
        model.load_state_dict(state)
        model.to(device)
        model.eval()
        return model
