"""
Digit Recognition System
========================

Recognises a single handwritten digit on a 28×28 grid without any
trained model, and renders synthetic handwriting for training one.

Architecture:
    1. Preprocessing      – crop, rescale to 20 px, recentre, normalise
    2. Feature Extraction – holes, endpoints, crossings, lines, zones
    3. Heuristic Scoring  – one rule per digit + pairwise disambiguation
    4. Template Matching  – 7×7 view vs. weighted, shifted templates
    5. Ensemble           – consensus bonus + temperature softmax
"""

__version__ = "1.0.0"
