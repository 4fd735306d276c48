"""
Digit Recognition System – Main Entry Point
===========================================

Commands:

  1. **Classify**  – Recognise a single handwritten digit from an image
                     or a saved 28×28 ``.npy`` grid.
  2. **Render**    – Write synthetic samples of one digit as PNG files.
  3. **Generate**  – Render a full shuffled training set to ``.npz``.

Usage examples
--------------

**Classification**::

    python digit_vision.py classify \\
        --image digit.png \\
        --json

**Rendering**::

    python digit_vision.py render \\
        --digit 3 --count 8 --out samples/ --messy

**Dataset generation**::

    python digit_vision.py generate \\
        --per-class 600 --out data.npz --workers 4
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

import cv2
import numpy as np

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
log = logging.getLogger("digit_vision")


# ═══════════════════════════════════════════════════════════════════════
# Input loading
# ═══════════════════════════════════════════════════════════════════════

def load_grid_image(path: str) -> np.ndarray | None:
    """Read an image as a 28×28 ink-high grid, or None if unreadable.

    Light backgrounds (paper scans) are inverted so ink is always high.
    """
    image = cv2.imread(path, cv2.IMREAD_GRAYSCALE)
    if image is None:
        return None
    small = cv2.resize(image, (28, 28), interpolation=cv2.INTER_AREA)
    grid = small.astype(np.float32) / 255.0
    if grid.mean() > 0.5:
        grid = 1.0 - grid
    return grid


# ═══════════════════════════════════════════════════════════════════════
# Classification
# ═══════════════════════════════════════════════════════════════════════

def cmd_classify(args: argparse.Namespace) -> None:
    """Run the recognition pipeline on one input."""
    from digit_vision.inference.pipeline import (
        DigitRecognitionPipeline,
        TorchProbabilitySource,
    )

    # Load input
    if args.image:
        grid = load_grid_image(args.image)
        if grid is None:
            log.error("Could not read image: %s", args.image)
            sys.exit(1)
    else:
        try:
            grid = np.load(args.npy)
        except (OSError, ValueError) as exc:
            log.error("Could not read grid %s: %s", args.npy, exc)
            sys.exit(1)

    # Build pipeline
    third = TorchProbabilitySource.from_checkpoint(args.weights) if args.weights else None
    pipeline = DigitRecognitionPipeline(
        temperature=args.temperature,
        third_source=third,
        activation_seed=args.seed,
    )

    # Run
    try:
        result = pipeline.recognize(grid)
    except ValueError as exc:
        log.error("Invalid input: %s", exc)
        sys.exit(1)

    # Output
    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print("\n" + "=" * 60)
        print("  DIGIT RECOGNITION RESULT")
        print("=" * 60)
        print(f"  Digit          : {result.predicted_digit}")
        print(f"  Confidence     : {result.confidence:.2%} ({result.confidence_label})")
        ranked = np.argsort(result.probabilities)[::-1][:3]
        print("  Top 3          : " + ", ".join(
            f"{d} ({result.probabilities[d]:.1%})" for d in ranked))
        f = result.features
        print(f"  Holes / ends   : {f.holes} / {f.endpoints}")
        print("=" * 60 + "\n")

    # Visualise
    if args.save_debug:
        pipeline.visualize(result, save_path=args.save_debug)


# ═══════════════════════════════════════════════════════════════════════
# Rendering
# ═══════════════════════════════════════════════════════════════════════

def cmd_render(args: argparse.Namespace) -> None:
    """Write synthetic samples of one digit as PNG files."""
    from digit_vision.models.templates import get_templates
    from digit_vision.training.renderer import messy_style, random_style, render_sample

    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    rng = np.random.default_rng(args.seed)
    variants = get_templates(args.digit)

    for i in range(args.count):
        template = variants[int(rng.integers(len(variants)))]
        style = messy_style(rng) if args.messy else random_style(rng)
        sample = render_sample(template, style, rng)
        path = out_dir / f"digit{args.digit}_{i:04d}.png"
        cv2.imwrite(str(path), (sample[:, :, 0] * 255).astype(np.uint8))
    log.info("Wrote %d samples of digit %d to %s", args.count, args.digit, out_dir)


# ═══════════════════════════════════════════════════════════════════════
# Dataset generation
# ═══════════════════════════════════════════════════════════════════════

def cmd_generate(args: argparse.Namespace) -> None:
    """Render a shuffled synthetic training set."""
    from digit_vision.training.dataset import generate_samples, save_samples

    x, y = generate_samples(
        per_class=args.per_class,
        seed=args.seed,
        messy_every=args.messy_every,
        workers=args.workers,
    )
    save_samples(args.out, x, y)


# ═══════════════════════════════════════════════════════════════════════
# CLI
# ═══════════════════════════════════════════════════════════════════════

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="digit_vision",
        description="Handwritten digit recognition without a trained model.",
    )
    sub = parser.add_subparsers(dest="command", help="Available commands")

    # ── classify ──
    p_cls = sub.add_parser("classify", help="Classify a digit image or grid")
    src = p_cls.add_mutually_exclusive_group(required=True)
    src.add_argument("--image", help="Path to a grayscale/colour image")
    src.add_argument("--npy", help="Path to a saved 28×28 float grid")
    p_cls.add_argument("--weights", default=None,
                       help="Optional DigitCNN .pt checkpoint (third source)")
    p_cls.add_argument("--temperature", type=float, default=8.0)
    p_cls.add_argument("--seed", type=int, default=0,
                       help="Seed for the display activations")
    p_cls.add_argument("--json", action="store_true",
                       help="Print the full result as JSON")
    p_cls.add_argument("--save-debug", default=None,
                       help="Save debug image to path")

    # ── render ──
    p_ren = sub.add_parser("render", help="Render synthetic samples of one digit")
    p_ren.add_argument("--digit", type=int, required=True, choices=range(10))
    p_ren.add_argument("--count", type=int, default=8)
    p_ren.add_argument("--out", default="samples")
    p_ren.add_argument("--seed", type=int, default=0)
    p_ren.add_argument("--messy", action="store_true",
                       help="Use the messy handwriting style")

    # ── generate ──
    p_gen = sub.add_parser("generate", help="Generate a synthetic training set")
    p_gen.add_argument("--per-class", type=int, default=600)
    p_gen.add_argument("--out", default="digits.npz")
    p_gen.add_argument("--seed", type=int, default=0)
    p_gen.add_argument("--messy-every", type=int, default=3)
    p_gen.add_argument("--workers", type=int, default=0)

    return parser


def main(argv=None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    dispatch = {
        "classify": cmd_classify,
        "render": cmd_render,
        "generate": cmd_generate,
    }

    dispatch[args.command](args)


if __name__ == "__main__":
    main()
