"""
Structural Feature Extraction
=============================

Measures a normalised 28×28 grid the way a person would describe a
digit: how many enclosed holes, where the strokes end, whether there is
a long bar across the top, how heavy each third of the glyph is, ...

Two views of the input are used:

  • the **BinaryGrid** (cells above ``BINARY_THRESHOLD``) for region
    measurements – holes, components, densities, lines, symmetry;
  • a one-pixel **stroke skeleton** (Zhang–Suen thinning, re-linked to
    4-connectivity and lightly pruned) for stroke topology – endpoints,
    crossings, corners, curvature.  Counting these on the raw strokes
    would make every thick pen look like a tangle of crossings.

Every helper is a pure function of its array argument; nothing here keeps
state between calls.  Flood fills use an explicit stack so their memory
is bounded by the grid, not by Python's recursion limit.
"""

from __future__ import annotations

import logging
from dataclasses import astuple, dataclass, fields
from typing import Iterable, List, Tuple

import numpy as np

from digit_vision.inference.preprocess import (
    BINARY_THRESHOLD,
    EPS,
    MIN_ACTIVE_PIXELS,
    bounding_box,
    to_grid,
)

log = logging.getLogger(__name__)


# ── Tunable thresholds ────────────────────────────────────────────────

DENSITY_FLOOR: float = 0.01         # Below this ink fraction → empty record
MIN_HOLE_AREA: int = 1              # Smallest background region counted as a hole
LINE_FRACTION: float = 0.45         # Run length (× N) for a row/column "line"
STRONG_LINE_FRACTION: float = 0.65  # … for a "strong" line
DIAGONAL_FRACTION: float = 0.40     # Run length (× N) along a diagonal
MAX_DIAGONALS: int = 4
HEAVY_RATIO: float = 1.25           # Half A is "heavy" when mass_A > ratio · mass_B
EDGE_BAND_FRACTION: float = 0.25    # Border band width, fraction of bbox side
CENTER_WINDOW_FRACTION: float = 0.5 # Side of the centred window, fraction of bbox
HOOK_RUN_FRACTION: float = 0.25     # Minimum horizontal run (× N) of a hook
HOOK_DROP_FRACTION: float = 0.20    # Minimum descent (× N) below the run's end
LOOP_SAMPLES: int = 24
LOOP_RADIUS: float = 0.30           # Circle radius, fraction of N
LOOP_MIN_FRACTION: float = 0.70     # Share of circle samples that must be ink
SPUR_PRUNE_STEPS: int = 2           # Endpoint-erosion passes on the skeleton

Cell = Tuple[int, int]


# ── Feature record ────────────────────────────────────────────────────

@dataclass(frozen=True)
class FeatureRecord:
    """Structural measurements of one PixelGrid.  Never mutated."""
    holes: int = 0
    endpoints: int = 0
    crossings: int = 0
    aspect_ratio: float = 0.0          # bbox width / height
    zones: Tuple[float, ...] = (0.0,) * 9   # 3×3, row-major
    top_heavy: bool = False
    bottom_heavy: bool = False
    left_heavy: bool = False
    right_heavy: bool = False
    symmetry: float = 0.0
    curvature: int = 0
    components: int = 0
    corners: int = 0
    edge_top: float = 0.0
    edge_bottom: float = 0.0
    edge_left: float = 0.0
    edge_right: float = 0.0
    edge_density: float = 0.0
    center_density: float = 0.0
    vertical_run: float = 0.0          # longest vertical run / N
    horizontal_run: float = 0.0        # longest horizontal run / N
    has_hook: bool = False
    closed_loop: bool = False
    h_lines: int = 0
    v_lines: int = 0
    strong_h_lines: int = 0
    strong_v_lines: int = 0
    diagonals: int = 0
    density: float = 0.0
    hole_center_y: float = 0.0         # largest hole, 0 = top … 1 = bottom
    hole_area: float = 0.0             # largest hole / bbox area

    @classmethod
    def empty(cls) -> "FeatureRecord":
        return cls()

    @property
    def is_empty(self) -> bool:
        return self.density == 0.0

    def zone(self, row: int, col: int) -> float:
        return self.zones[row * 3 + col]

    def as_vector(self) -> np.ndarray:
        """Flatten every field into a float32 vector (display only)."""
        values: List[float] = []
        for item in astuple(self):
            if isinstance(item, tuple):
                values.extend(float(v) for v in item)
            else:
                values.append(float(item))
        return np.asarray(values, dtype=np.float32)

    @classmethod
    def field_names(cls) -> List[str]:
        names: List[str] = []
        for f in fields(cls):
            if f.name == "zones":
                names.extend(f"zone_{i}" for i in range(9))
            else:
                names.append(f.name)
        return names


# ── Flood fill ─────────────────────────────────────────────────────────

def _flood(mask: np.ndarray, seeds: Iterable[Cell], visited: np.ndarray) -> List[Cell]:
    """Visit the 4-connected True region of *mask* reachable from *seeds*.

    Marks *visited* in place (the caller owns it) and returns the cells
    reached.  Uses an explicit stack.
    """
    h, w = mask.shape
    stack = list(seeds)
    region: List[Cell] = []
    while stack:
        y, x = stack.pop()
        if y < 0 or y >= h or x < 0 or x >= w:
            continue
        if visited[y, x] or not mask[y, x]:
            continue
        visited[y, x] = True
        region.append((y, x))
        stack.extend(((y - 1, x), (y + 1, x), (y, x - 1), (y, x + 1)))
    return region


def hole_regions(binary: np.ndarray) -> List[List[Cell]]:
    """Background regions not reachable from the border."""
    background = ~binary
    h, w = binary.shape
    visited = np.zeros_like(binary, dtype=bool)

    border: List[Cell] = []
    for i in range(w):
        border.append((0, i))
        border.append((h - 1, i))
    for i in range(h):
        border.append((i, 0))
        border.append((i, w - 1))
    _flood(background, border, visited)

    holes: List[List[Cell]] = []
    for y, x in zip(*np.nonzero(background & ~visited)):
        if visited[y, x]:
            continue
        region = _flood(background, [(int(y), int(x))], visited)
        if len(region) >= MIN_HOLE_AREA:
            holes.append(region)
    return holes


def count_holes(binary: np.ndarray) -> int:
    return len(hole_regions(binary))


def count_components(binary: np.ndarray) -> int:
    """Number of 4-connected foreground components."""
    visited = np.zeros_like(binary, dtype=bool)
    count = 0
    for y, x in zip(*np.nonzero(binary)):
        if not visited[y, x]:
            _flood(binary, [(int(y), int(x))], visited)
            count += 1
    return count


# ── Skeleton ───────────────────────────────────────────────────────────

def _shifted(img: np.ndarray) -> Tuple[np.ndarray, ...]:
    """Neighbour planes P2..P9 (N, NE, E, SE, S, SW, W, NW) of a padded image."""
    return (
        img[:-2, 1:-1], img[:-2, 2:], img[1:-1, 2:], img[2:, 2:],
        img[2:, 1:-1], img[2:, :-2], img[1:-1, :-2], img[:-2, :-2],
    )


def zhang_suen(binary: np.ndarray, max_iter: int = 50) -> np.ndarray:
    """Classic two-sub-iteration Zhang–Suen thinning (8-connected result)."""
    img = np.pad(binary.astype(np.uint8), 1)
    for _ in range(max_iter):
        changed = False
        for step in (0, 1):
            p2, p3, p4, p5, p6, p7, p8, p9 = _shifted(img)
            ring = (p2, p3, p4, p5, p6, p7, p8, p9, p2)
            b = sum(p.astype(np.int32) for p in ring[:8])
            a = sum(((ring[i] == 0) & (ring[i + 1] == 1)).astype(np.int32) for i in range(8))
            if step == 0:
                cond = (p2 * p4 * p6 == 0) & (p4 * p6 * p8 == 0)
            else:
                cond = (p2 * p4 * p8 == 0) & (p2 * p6 * p8 == 0)
            remove = (img[1:-1, 1:-1] == 1) & (b >= 2) & (b <= 6) & (a == 1) & cond
            if remove.any():
                img[1:-1, 1:-1][remove] = 0
                changed = True
        if not changed:
            break
    return img[1:-1, 1:-1].astype(bool)


def _four_connect(skel: np.ndarray) -> np.ndarray:
    """Bridge diagonal-only steps so the skeleton is 4-connected."""
    out = skel.copy()
    a, b = skel[:-1, :-1], skel[:-1, 1:]
    c, d = skel[1:, :-1], skel[1:, 1:]
    out[:-1, 1:] |= a & d & ~b & ~c     # "\" step → fill upper-right
    out[1:, 1:] |= b & c & ~a & ~d      # "/" step → fill lower-right
    return out


def _neighbour_counts_4(mask: np.ndarray) -> np.ndarray:
    p = np.pad(mask, 1).astype(np.int32)
    return p[:-2, 1:-1] + p[2:, 1:-1] + p[1:-1, :-2] + p[1:-1, 2:]


def _prune(skel: np.ndarray, steps: int = SPUR_PRUNE_STEPS) -> np.ndarray:
    """Erode stroke ends *steps* times so short thinning spurs vanish."""
    out = skel.copy()
    for _ in range(steps):
        ends = out & (_neighbour_counts_4(out) == 1)
        if not ends.any():
            break
        out &= ~ends
    return out


def stroke_skeleton(binary: np.ndarray) -> np.ndarray:
    """One-pixel, 4-connected, lightly pruned skeleton of *binary*."""
    return _prune(_four_connect(zhang_suen(binary)))


# ── Stroke topology (skeleton) ────────────────────────────────────────

def _neighbour_planes(mask: np.ndarray) -> Tuple[np.ndarray, ...]:
    """(N, NE, E, SE, S, SW, W, NW) neighbour activity of every cell."""
    return _shifted(np.pad(mask, 1))


def count_endpoints(skel: np.ndarray) -> int:
    """Active cells with exactly one active 4-neighbour."""
    return int((skel & (_neighbour_counts_4(skel) == 1)).sum())


def count_crossings(skel: np.ndarray) -> int:
    """Full crosses count twice, T-junctions once; the sum is halved."""
    n, _, e, _, s, _, w, _ = _neighbour_planes(skel)
    vertical = n & s
    horizontal = e & w
    full = skel & vertical & horizontal
    tee = skel & ((vertical & (e ^ w)) | (horizontal & (n ^ s)))
    return int((2 * full.sum() + tee.sum()) // 2)


def count_corners(skel: np.ndarray) -> int:
    """Cells with exactly two 8-neighbours that are not opposite."""
    n, ne, e, se, s, sw, w, nw = _neighbour_planes(skel)
    total = sum(p.astype(np.int32) for p in (n, ne, e, se, s, sw, w, nw))
    opposite = (n & s) | (e & w) | (ne & sw) | (nw & se)
    return int((skel & (total == 2) & ~opposite).sum())


def count_curvature(skel: np.ndarray) -> int:
    """Cells whose 2–3 active neighbours turn the stroke through an L."""
    n, ne, e, se, s, sw, w, nw = _neighbour_planes(skel)
    total = sum(p.astype(np.int32) for p in (n, ne, e, se, s, sw, w, nw))
    has_v = n | s
    has_h = e | w
    l_shape = has_v & has_h & ~(n & s) & ~(e & w)
    return int((skel & (total >= 2) & (total <= 3) & l_shape).sum())


# ── Lines & runs (binary) ─────────────────────────────────────────────

def longest_run(values: Iterable[bool]) -> int:
    best = run = 0
    for v in values:
        run = run + 1 if v else 0
        if run > best:
            best = run
    return best


def _group_count(flags: Iterable[bool]) -> int:
    """Number of maximal blocks of consecutive True values."""
    count = 0
    prev = False
    for f in flags:
        if f and not prev:
            count += 1
        prev = bool(f)
    return count


def count_lines(binary: np.ndarray) -> Tuple[int, int, int, int]:
    """``(h_lines, v_lines, strong_h_lines, strong_v_lines)``.

    A row's run is measured with ±1 tolerance across the perpendicular
    axis, so a slightly tilted bar still counts.  Adjacent qualifying
    rows (a thick bar) merge into a single line.
    """
    size = binary.shape[0]
    padded = np.pad(binary, 1)
    rows_tol = padded[:-2, 1:-1] | padded[1:-1, 1:-1] | padded[2:, 1:-1]
    cols_tol = padded[1:-1, :-2] | padded[1:-1, 1:-1] | padded[1:-1, 2:]

    row_runs = [longest_run(r) for r in rows_tol]
    col_runs = [longest_run(c) for c in cols_tol.T]

    line, strong = LINE_FRACTION * size, STRONG_LINE_FRACTION * size
    return (
        _group_count(r > line for r in row_runs),
        _group_count(c > line for c in col_runs),
        _group_count(r > strong for r in row_runs),
        _group_count(c > strong for c in col_runs),
    )


def count_diagonals(binary: np.ndarray) -> int:
    """Long runs along diagonal / anti-diagonal offsets, capped."""
    size = binary.shape[0]
    limit = DIAGONAL_FRACTION * size
    total = 0
    for img in (binary, np.fliplr(binary)):
        flags = [
            longest_run(np.diagonal(img, offset=k)) > limit
            for k in range(-(size - 1), size)
        ]
        total += _group_count(flags)
    return min(MAX_DIAGONALS, total)


def longest_runs(binary: np.ndarray) -> Tuple[float, float]:
    """``(vertical, horizontal)`` longest unbroken runs, normalised by N."""
    size = binary.shape[0]
    vertical = max(longest_run(c) for c in binary.T)
    horizontal = max(longest_run(r) for r in binary)
    return vertical / size, horizontal / size


# ── Region measurements (bbox crop) ───────────────────────────────────

def _safe_mean(arr: np.ndarray) -> float:
    return float(arr.mean()) if arr.size else 0.0


def symmetry(binary: np.ndarray) -> float:
    """Left-right mirror agreement of the glyph, in [0, 1].

    Measured on the BinaryGrid cropped to its bounding box and counted
    over ink cells only: ``|ink ∩ mirror| / |ink ∪ mirror|``.  A plain
    cell-by-cell match over the whole grid would be dominated by the
    empty background and by where the glyph sits, so every digit would
    score close to 1.  A perfectly mirrored glyph still scores exactly 1.
    """
    box = bounding_box(binary)
    if box is None:
        return 0.0
    y0, y1, x0, x1 = box
    crop = binary[y0:y1 + 1, x0:x1 + 1]
    mirror = crop[:, ::-1]
    union = (crop | mirror).sum()
    return float((crop & mirror).sum() / max(union, EPS))


def zone_densities(crop: np.ndarray) -> Tuple[float, ...]:
    h, w = crop.shape
    ys = [0, h // 3, (2 * h) // 3, h]
    xs = [0, w // 3, (2 * w) // 3, w]
    return tuple(
        _safe_mean(crop[ys[r]:ys[r + 1], xs[c]:xs[c + 1]])
        for r in range(3) for c in range(3)
    )


def heavy_flags(crop: np.ndarray) -> Tuple[bool, bool, bool, bool]:
    """``(top, bottom, left, right)`` heavy flags from half-mass ratios."""
    h, w = crop.shape
    top = float(crop[:h // 2].sum())
    bottom = float(crop[h - h // 2:].sum())
    left = float(crop[:, :w // 2].sum())
    right = float(crop[:, w - w // 2:].sum())
    return (
        top > HEAVY_RATIO * bottom,
        bottom > HEAVY_RATIO * top,
        left > HEAVY_RATIO * right,
        right > HEAVY_RATIO * left,
    )


def edge_densities(crop: np.ndarray) -> Tuple[float, float, float, float, float, float]:
    """``(top, bottom, left, right, combined, center)`` band densities."""
    h, w = crop.shape
    bh = max(1, int(round(EDGE_BAND_FRACTION * h)))
    bw = max(1, int(round(EDGE_BAND_FRACTION * w)))

    band = np.zeros_like(crop, dtype=bool)
    band[:bh] = band[-bh:] = True
    band[:, :bw] = band[:, -bw:] = True

    ch = max(1, int(round(CENTER_WINDOW_FRACTION * h)))
    cw = max(1, int(round(CENTER_WINDOW_FRACTION * w)))
    cy, cx = (h - ch) // 2, (w - cw) // 2

    return (
        _safe_mean(crop[:bh]),
        _safe_mean(crop[-bh:]),
        _safe_mean(crop[:, :bw]),
        _safe_mean(crop[:, -bw:]),
        _safe_mean(crop[band]),
        _safe_mean(crop[cy:cy + ch, cx:cx + cw]),
    )


# ── Shape heuristics ──────────────────────────────────────────────────

def _descent(binary: np.ndarray, row: int, col: int) -> int:
    """Rows a stroke keeps going down (straight or diagonally) from ``(row, col)``."""
    h, w = binary.shape
    depth = 0
    c = col
    for y in range(row + 1, h):
        window = [x for x in (c, c - 1, c + 1, c - 2) if 0 <= x < w and binary[y, x]]
        if not window:
            break
        c = window[0]
        depth += 1
    return depth


def has_hook(binary: np.ndarray) -> bool:
    """A horizontal run whose end turns into a downward stroke."""
    size = binary.shape[0]
    min_run = HOOK_RUN_FRACTION * size
    min_drop = HOOK_DROP_FRACTION * size
    for y in range(size - 1):
        row = binary[y]
        x = 0
        while x < size:
            if not row[x]:
                x += 1
                continue
            start = x
            while x < size and row[x]:
                x += 1
            end = x - 1
            if end - start + 1 >= min_run:
                if _descent(binary, y, end) >= min_drop or _descent(binary, y, start) >= min_drop:
                    return True
    return False


def has_closed_loop(binary: np.ndarray) -> bool:
    """Most points on a centred circle land on ink (3×3 tolerance)."""
    size = binary.shape[0]
    centre = (size - 1) / 2.0
    radius = LOOP_RADIUS * size
    angles = np.linspace(0.0, 2.0 * np.pi, LOOP_SAMPLES, endpoint=False)
    hits = 0
    for a in angles:
        y = int(round(centre + radius * np.sin(a)))
        x = int(round(centre + radius * np.cos(a)))
        patch = binary[max(0, y - 1):y + 2, max(0, x - 1):x + 2]
        if patch.any():
            hits += 1
    return hits >= LOOP_MIN_FRACTION * LOOP_SAMPLES


# ── Public API ─────────────────────────────────────────────────────────

def binarize(grid: np.ndarray) -> np.ndarray:
    return np.asarray(grid) > BINARY_THRESHOLD


def extract_features(grid: np.ndarray) -> FeatureRecord:
    """Compute the full FeatureRecord of a (normalised) PixelGrid.

    Parameters
    ----------
    grid : np.ndarray
        28×28 float grid in [0, 1] (flat 784 buffers are accepted).

    Returns
    -------
    FeatureRecord
        ``FeatureRecord.empty()`` for degenerate input.
    """
    binary = binarize(to_grid(grid))
    size = binary.shape[0]
    n_active = int(binary.sum())
    density = n_active / float(size * size)
    if n_active < MIN_ACTIVE_PIXELS or density < DENSITY_FLOOR:
        return FeatureRecord.empty()

    y0, y1, x0, x1 = bounding_box(binary)
    crop = binary[y0:y1 + 1, x0:x1 + 1]
    bh, bw = crop.shape

    holes = hole_regions(binary)
    if holes:
        largest = max(holes, key=len)
        cy = float(np.mean([c[0] for c in largest]))
        hole_center_y = (cy - y0) / max(bh - 1, 1)
        hole_area = len(largest) / float(bh * bw)
    else:
        hole_center_y = hole_area = 0.0

    skel = stroke_skeleton(binary)
    h_lines, v_lines, strong_h, strong_v = count_lines(binary)
    v_run, h_run = longest_runs(binary)
    top, bottom, left, right = heavy_flags(crop)
    e_top, e_bottom, e_left, e_right, e_all, centre = edge_densities(crop)

    record = FeatureRecord(
        holes=len(holes),
        endpoints=count_endpoints(skel),
        crossings=count_crossings(skel),
        aspect_ratio=bw / float(max(bh, 1)),
        zones=zone_densities(crop),
        top_heavy=top,
        bottom_heavy=bottom,
        left_heavy=left,
        right_heavy=right,
        symmetry=symmetry(binary),
        curvature=count_curvature(skel),
        components=count_components(binary),
        corners=count_corners(skel),
        edge_top=e_top,
        edge_bottom=e_bottom,
        edge_left=e_left,
        edge_right=e_right,
        edge_density=e_all,
        center_density=centre,
        vertical_run=v_run,
        horizontal_run=h_run,
        has_hook=has_hook(binary),
        closed_loop=has_closed_loop(binary),
        h_lines=h_lines,
        v_lines=v_lines,
        strong_h_lines=strong_h,
        strong_v_lines=strong_v,
        diagonals=count_diagonals(binary),
        density=density,
        hole_center_y=hole_center_y,
        hole_area=hole_area,
    )
    log.debug("features: holes=%d endpoints=%d crossings=%d aspect=%.2f",
              record.holes, record.endpoints, record.crossings, record.aspect_ratio)
    return record
