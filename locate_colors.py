#!/usr/bin/env python3
"""
Locate where palette colors sit in an image.

Approach:
1. Downscale the image to a bounded working resolution
2. Assign each pixel to its nearest target color (if close enough) and add a
   vote weighted by 1 / (1 + distance) to that color's density grid
3. Take the densest grid cell per color; if a color got no votes, use the
   single closest pixel from a coarse scan
4. Push markers that sit too close together apart, keeping them in frame

Every requested color gets a position, even when the image cannot be used.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from color_errors import ColorError, InvalidHex
from colorspace import hex_to_rgb, normalize_hex
from palette_config import LocatorSettings
from pixel_buffer import PixelBuffer


logger = logging.getLogger(__name__)

# Per-channel weights of the match distance (green differences are most visible)
CHANNEL_WEIGHTS = np.array([2.0, 4.0, 3.0])

GOLDEN_ANGLE = math.pi * (3 - math.sqrt(5))

# Distance slack when checking separation
SEPARATION_TOLERANCE = 1e-9


@dataclass(frozen=True)
class ColorPosition:
    """Marker position in relative image coordinates (0-1)."""
    hex: str
    x: float
    y: float

    def to_dict(self) -> dict:
        return {'hex': self.hex, 'x': self.x, 'y': self.y}


def weighted_distance(pixels: np.ndarray, targets: np.ndarray) -> np.ndarray:
    """(n, 3) pixels x (k, 3) targets -> (n, k) weighted RGB distances."""
    diff = pixels[:, np.newaxis, :].astype(np.float64) - targets[np.newaxis, :, :]
    return np.sqrt((diff ** 2 * CHANNEL_WEIGHTS).sum(axis=2))


def build_density_grids(rgb: np.ndarray, targets: np.ndarray,
                        threshold: float, cell_size: int,
                        visible: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Accumulate match votes per target color on a coarse grid.

    Args:
        rgb: (h, w, 3) image
        targets: (k, 3) target colors
        threshold: Maximum weighted distance for a pixel to vote
        cell_size: Grid cell edge in pixels
        visible: Optional (h, w) mask; pixels outside it do not vote

    Returns:
        (k, ceil(h / cell_size), ceil(w / cell_size)) vote densities
    """
    h, w = rgb.shape[:2]
    k = len(targets)
    grid_h = -(-h // cell_size)
    grid_w = -(-w // cell_size)

    flat = rgb.reshape(-1, 3)
    dist = weighted_distance(flat, targets)
    nearest = np.argmin(dist, axis=1)
    nearest_dist = dist[np.arange(len(flat)), nearest]
    match = nearest_dist <= threshold
    if visible is not None:
        match &= visible.reshape(-1)

    ys, xs = np.divmod(np.arange(h * w), w)
    cells = (ys // cell_size) * grid_w + (xs // cell_size)
    flat_index = nearest[match] * (grid_h * grid_w) + cells[match]
    votes = 1.0 / (1.0 + nearest_dist[match])

    grids = np.bincount(flat_index, weights=votes, minlength=k * grid_h * grid_w)
    return grids.reshape(k, grid_h, grid_w)


def densest_cell_position(grid: np.ndarray, cell_size: int,
                          width: int, height: int) -> Optional[tuple]:
    """Center of the highest-density cell in relative coordinates, None if the grid is empty."""
    if grid.size == 0 or not grid.max() > 0:
        return None
    cy, cx = np.unravel_index(int(np.argmax(grid)), grid.shape)

    x0 = cx * cell_size
    y0 = cy * cell_size
    cell_w = min(cell_size, width - x0)
    cell_h = min(cell_size, height - y0)
    return (x0 + cell_w / 2) / width, (y0 + cell_h / 2) / height


def nearest_pixel_position(rgb: np.ndarray, target: np.ndarray, stride: int = 2,
                           visible: Optional[np.ndarray] = None) -> Optional[tuple]:
    """Position of the closest visible pixel among every stride-th pixel."""
    h, w = rgb.shape[:2]
    if h * w == 0:
        return None
    indices = np.arange(0, h * w, max(1, stride))
    if visible is not None:
        indices = indices[visible.reshape(-1)[indices]]
    if len(indices) == 0:
        return None
    dist = weighted_distance(rgb.reshape(-1, 3)[indices], target.reshape(1, 3))[:, 0]
    y, x = divmod(int(indices[int(np.argmin(dist))]), w)
    return (x + 0.5) / w, (y + 0.5) / h


def fallback_position(index: int) -> tuple:
    """Deterministic spread position for a color that could not be located."""
    column = index % 3
    row = (index // 3) % 3
    return 0.2 + 0.3 * column, 0.25 + 0.25 * row


def closest_pair_distance(points) -> float:
    """Smallest pairwise distance, inf for fewer than two points."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    if len(pts) < 2:
        return math.inf
    diff = pts[:, np.newaxis, :] - pts[np.newaxis, :, :]
    dist = np.hypot(diff[..., 0], diff[..., 1])
    dist[np.diag_indices(len(pts))] = np.inf
    return float(dist.min())


def grid_positions(center, n: int, spacing: float, margin: float = 0.02) -> Optional[np.ndarray]:
    """
    n points on a square grid with the given spacing, centered on center
    and shifted to stay inside [margin, 1 - margin]. None when they cannot fit.
    """
    low, high = margin, 1.0 - margin
    cols = math.ceil(math.sqrt(n))
    rows = math.ceil(n / cols)
    width = (cols - 1) * spacing
    height = (rows - 1) * spacing
    if width > high - low or height > high - low:
        return None

    x0 = min(max(center[0] - width / 2, low), high - width)
    y0 = min(max(center[1] - height / 2, low), high - height)
    index = np.arange(n)
    return np.column_stack([x0 + (index % cols) * spacing, y0 + (index // cols) * spacing])


def separate_positions(points, min_separation: float = 0.08, margin: float = 0.02,
                       passes: int = 50) -> list[tuple]:
    """
    Push apart markers closer than min_separation, symmetrically along the
    line joining them, clamping to [margin, 1 - margin].

    Coincident markers are pushed along a direction derived from their indices.
    A marker held at the frame edge leaves the rest of the push to the other.
    Relaxation runs until no pair is too close, for up to max(passes, 5 * n)
    passes. If it still has not settled, the markers are laid out on a grid
    spaced min_separation apart around their centroid.
    """
    pts = np.array(points, dtype=np.float64).reshape(-1, 2)
    n = len(pts)
    if n < 2:
        return [(float(x), float(y)) for x, y in pts]
    low, high = margin, 1.0 - margin
    settled = False

    for _ in range(max(passes, 5 * n)):
        moved = False
        for i in range(n):
            for j in range(i + 1, n):
                dx, dy = pts[j] - pts[i]
                d = math.hypot(dx, dy)
                if d >= min_separation - SEPARATION_TOLERANCE:
                    continue
                if d > 0:
                    u = np.array([dx / d, dy / d])
                else:
                    angle = GOLDEN_ANGLE * (i + j + 1)
                    u = np.array([math.cos(angle), math.sin(angle)])

                gap = min_separation - d
                start_i, start_j = pts[i].copy(), pts[j].copy()
                pts[i] = np.clip(pts[i] - u * gap / 2, low, high)
                pts[j] = np.clip(pts[j] + u * gap / 2, low, high)

                shortfall = gap - float(np.dot(pts[j] - start_j, u)) - float(np.dot(start_i - pts[i], u))
                if shortfall > 0:
                    before = pts[j].copy()
                    pts[j] = np.clip(pts[j] + u * shortfall, low, high)
                    shortfall -= float(np.dot(pts[j] - before, u))
                if shortfall > 0:
                    pts[i] = np.clip(pts[i] - u * shortfall, low, high)
                moved = True
        if not moved:
            settled = True
            break

    if not settled and closest_pair_distance(pts) < min_separation - SEPARATION_TOLERANCE:
        grid = grid_positions(pts.mean(axis=0), n, min_separation, margin)
        if grid is None:
            logger.warning("%d markers cannot be %.3f apart inside the frame", n, min_separation)
        else:
            logger.debug("Separation did not settle for %d markers, using grid layout", n)
            pts = grid

    return [(float(x), float(y)) for x, y in pts]


def locate_colors(pixels: PixelBuffer, colors, settings: LocatorSettings = LocatorSettings()) -> list[ColorPosition]:
    """
    One ColorPosition per requested color, in request order.

    Never raises for a bad color or an unusable image: each color degrades
    independently to a nearest-pixel scan, then to a fixed spread position.
    """
    colors = list(colors)
    if not colors:
        return []

    targets = {}
    for i, c in enumerate(colors):
        try:
            targets[i] = np.array(hex_to_rgb(c), dtype=np.float64)
        except InvalidHex:
            logger.warning("Cannot locate invalid color %r", c)

    rgb = None
    visible = None
    grids = None
    try:
        working = pixels.resized(settings.working_size)
        if working.pixel_count > 0:
            rgb = working.rgb()
            if working.channels >= 4:
                visible = working.data[:, :, 3] >= settings.min_alpha
    except ColorError as e:
        logger.warning("Image unusable for color location: %s", e)

    order = sorted(targets)
    if rgb is not None and order:
        grids = build_density_grids(
            rgb, np.array([targets[i] for i in order]),
            settings.match_threshold, settings.cell_size, visible,
        )

    points = []
    for i in range(len(colors)):
        position = None
        if grids is not None and i in targets:
            try:
                h, w = rgb.shape[:2]
                position = densest_cell_position(grids[order.index(i)], settings.cell_size, w, h)
                if position is None:
                    logger.debug("No density for %s, scanning for nearest pixel", colors[i])
                    position = nearest_pixel_position(rgb, targets[i], settings.scan_stride, visible)
            except (ValueError, IndexError, FloatingPointError) as e:
                logger.warning("Locating %s failed: %s", colors[i], e)
                position = None
        if position is None:
            position = fallback_position(i)
        points.append(position)

    if len(points) > 1:
        points = separate_positions(points, settings.min_separation, settings.margin,
                                    settings.separation_passes)

    result = []
    for i, (x, y) in enumerate(points):
        label = normalize_hex(colors[i]) if i in targets else str(colors[i])
        result.append(ColorPosition(hex=label, x=x, y=y))
    return result
