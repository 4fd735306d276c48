"""
Synthetic Sample Renderer
=========================

Turns a template bitmap into a 28×28 "handwritten" sample.

Each output pixel is mapped back into template space (inverse mapping):

    centre-relative position, random offset      (±MAX_OFFSET px)
    ÷ stretch
    shear  x += y·shear_x, then y += x·shear_y
    rotate by a random angle                     (±MAX_ANGLE rad)
    ÷ scale, + template centre

and the template is sampled bilinearly (zero outside) with
``cv2.remap``, then multiplied by the stroke thickness.  A second pass
adds what real pens and scanners do: a soft 4-neighbour blur, intensity
jitter on strokes, sparse background specks, additive noise and random
erosion / dilation proportional to the style's ``noise``.

``jitter=False`` switches off every random component so a canonical
template renders identically on every call.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional, Tuple

import cv2
import numpy as np

from digit_vision.inference.preprocess import GRID_SIZE
from digit_vision.models.templates import DigitTemplate


MAX_OFFSET: float = 5.0
MAX_ANGLE: float = 0.25
BLUR_MIX: float = 0.6
STROKE_LEVEL: float = 0.15          # Above: intensity jitter applies
INTENSITY_JITTER: Tuple[float, float] = (0.7, 1.1)
SPECK_LEVEL: float = 0.05
SPECK_PROB: float = 0.015
SPECK_MAX: float = 0.1
EROSION_LEVEL: float = 0.3
EROSION_FACTOR: float = 0.3
DILATION_BAND: Tuple[float, float] = (0.05, 0.2)
DILATION_VALUE: Tuple[float, float] = (0.4, 0.7)


# ── Style descriptor ──────────────────────────────────────────────────

@dataclass(frozen=True)
class StyleDescriptor:
    """Parameters of one rendering "hand"."""
    scale: float = 2.8
    thickness: float = 0.9
    shear_x: float = 0.0
    shear_y: float = 0.0
    stretch_x: float = 1.0
    stretch_y: float = 1.0
    blur: float = 0.0
    noise: float = 0.0


# Reference hands: neat, small, large, slanted both ways, wide, tall,
# thin, bold-blurred, narrow, squat, italic, heavy, very large.
BASE_STYLES: Tuple[StyleDescriptor, ...] = (
    StyleDescriptor(2.8, 0.9),
    StyleDescriptor(2.0, 1.0),
    StyleDescriptor(3.8, 0.8),
    StyleDescriptor(2.8, 0.85, shear_x=0.25, stretch_x=0.9),
    StyleDescriptor(2.8, 0.85, shear_x=-0.2, stretch_x=0.9),
    StyleDescriptor(2.5, 0.9, stretch_x=1.3),
    StyleDescriptor(2.5, 0.85, stretch_y=1.3),
    StyleDescriptor(2.8, 0.55),
    StyleDescriptor(2.8, 1.2, blur=0.5),
    StyleDescriptor(3.0, 0.8, stretch_x=0.7),
    StyleDescriptor(3.0, 0.85, stretch_x=1.4, stretch_y=0.9),
    StyleDescriptor(2.6, 0.7, shear_x=0.15, shear_y=0.05, stretch_x=1.1, blur=0.3),
    StyleDescriptor(2.5, 1.1, blur=0.2),
    StyleDescriptor(4.2, 0.7),
)


def _centered(rng: np.random.Generator, spread: float) -> float:
    """Uniform sample in ``[-spread/2, spread/2)``."""
    return (rng.random() - 0.5) * spread


def random_style(rng: np.random.Generator) -> StyleDescriptor:
    """A base style with small uniform perturbations of every parameter."""
    base = BASE_STYLES[int(rng.integers(len(BASE_STYLES)))]
    return replace(
        base,
        scale=base.scale + _centered(rng, 0.8),
        thickness=base.thickness + _centered(rng, 0.25),
        shear_x=base.shear_x + _centered(rng, 0.2),
        shear_y=base.shear_y + _centered(rng, 0.15),
        stretch_x=base.stretch_x + _centered(rng, 0.3),
        stretch_y=base.stretch_y + _centered(rng, 0.3),
        blur=base.blur + rng.random() * 0.3,
        noise=rng.random() * 0.1,
    )


def messy_style(rng: np.random.Generator) -> StyleDescriptor:
    """Wide-range parameters imitating hurried, sloppy handwriting."""
    return StyleDescriptor(
        scale=2.0 + rng.random() * 2.5,
        thickness=0.4 + rng.random() * 0.9,
        shear_x=_centered(rng, 0.5),
        shear_y=_centered(rng, 0.3),
        stretch_x=0.6 + rng.random() * 0.9,
        stretch_y=0.6 + rng.random() * 0.9,
        blur=rng.random() * 0.6,
        noise=0.05 + rng.random() * 0.2,
    )


# ── Rendering ──────────────────────────────────────────────────────────

def _sample_maps(
    shape: Tuple[int, int],
    style: StyleDescriptor,
    offset: Tuple[float, float],
    angle: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """Template-space coordinates for every output pixel (for ``cv2.remap``)."""
    h, w = shape
    centre = (GRID_SIZE - 1) / 2.0
    ys, xs = np.mgrid[0:GRID_SIZE, 0:GRID_SIZE].astype(np.float32)

    dx = (xs - centre - offset[0]) / style.stretch_x
    dy = (ys - centre - offset[1]) / style.stretch_y
    dx = dx + dy * style.shear_x
    dy = dy + dx * style.shear_y

    cos, sin = np.cos(angle), np.sin(angle)
    rx = dx * cos + dy * sin
    ry = -dx * sin + dy * cos

    map_x = rx / style.scale + (w - 1) / 2.0
    map_y = ry / style.scale + (h - 1) / 2.0
    return map_x.astype(np.float32), map_y.astype(np.float32)


def _pen_effects(
    raw: np.ndarray,
    style: StyleDescriptor,
    rng: np.random.Generator,
    jitter: bool,
) -> np.ndarray:
    val = raw.copy()
    if style.blur > 0:
        mix = style.blur * BLUR_MIX
        neighbours = (raw[:-2, 1:-1] + raw[2:, 1:-1] + raw[1:-1, :-2] + raw[1:-1, 2:]) / 4.0
        val[1:-1, 1:-1] = raw[1:-1, 1:-1] * (1.0 - mix) + neighbours * mix

    if not jitter:
        return np.clip(val, 0.0, 1.0)

    shape = val.shape
    strong = val > STROKE_LEVEL
    val = np.where(strong, val * rng.uniform(*INTENSITY_JITTER, size=shape), val)

    specks = (val < SPECK_LEVEL) & (rng.random(shape) < SPECK_PROB)
    val = np.where(specks, rng.random(shape) * SPECK_MAX, val)

    if style.noise > 0:
        val = val + (rng.random(shape) - 0.5) * style.noise
        eroded = (val > EROSION_LEVEL) & (rng.random(shape) < style.noise * 0.5)
        val = np.where(eroded, val * EROSION_FACTOR, val)
        lo, hi = DILATION_BAND
        dilated = (val > lo) & (val < hi) & (rng.random(shape) < style.noise * 0.3)
        val = np.where(dilated, rng.uniform(*DILATION_VALUE, size=shape), val)

    return np.clip(val, 0.0, 1.0)


def render_sample(
    template: DigitTemplate | np.ndarray,
    style: StyleDescriptor,
    rng: Optional[np.random.Generator] = None,
    jitter: bool = True,
) -> np.ndarray:
    """Render one ``(28, 28, 1)`` float32 sample in [0, 1].

    Parameters
    ----------
    template : DigitTemplate | np.ndarray
        Template variant (any size) or its raw bitmap.
    style : StyleDescriptor
        Geometry and pen parameters.
    rng : np.random.Generator, optional
        Source of randomness; a fresh one is created when omitted.
    jitter : bool
        Random offset, rotation and photometric noise.
    """
    bitmap = template.bitmap if isinstance(template, DigitTemplate) else np.asarray(template)
    rng = rng if rng is not None else np.random.default_rng()

    if jitter:
        offset = (_centered(rng, 2 * MAX_OFFSET), _centered(rng, 2 * MAX_OFFSET))
        angle = _centered(rng, 2 * MAX_ANGLE)
    else:
        offset, angle = (0.0, 0.0), 0.0

    if bitmap.size == 0:
        # Nothing to sample; pen noise still applies to the blank page.
        raw = np.zeros((GRID_SIZE, GRID_SIZE), dtype=np.float32)
    else:
        map_x, map_y = _sample_maps(bitmap.shape, style, offset, angle)
        raw = cv2.remap(
            bitmap.astype(np.float32), map_x, map_y,
            interpolation=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=0,
        )
    raw = raw * np.float32(style.thickness)

    sample = _pen_effects(raw, style, rng, jitter)
    return sample.astype(np.float32).reshape(GRID_SIZE, GRID_SIZE, 1)
