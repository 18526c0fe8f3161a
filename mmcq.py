#!/usr/bin/env python3
"""
Modified Median Cut Quantization (MMCQ).

Approach:
1. Bin sampled pixels into a 5-bit-per-channel RGB histogram
2. Start from one box around every populated bin
3. Repeatedly split a box at the median of its widest channel
4. Emit the mean color of the pixels in each leaf box
"""

import logging
import math
from dataclasses import dataclass

import numpy as np

from colorspace import RGBColor
from pixel_buffer import PixelBuffer


logger = logging.getLogger(__name__)

SIGBITS = 5
RSHIFT = 8 - SIGBITS
SIDE = 1 << SIGBITS
HISTO_SIZE = 1 << (3 * SIGBITS)

MAX_PALETTE_COLORS = 256

# Share of boxes produced by population order before switching to
# population * volume (classic MMCQ second phase)
FRACT_BY_POPULATION = 0.75

SPLIT_PRIORITIES = ('range', 'population')


@dataclass
class Histogram:
    """Pixel counts and per-channel sums per histogram bin."""
    counts: np.ndarray  # (SIDE, SIDE, SIDE) int
    sums: np.ndarray  # (SIDE, SIDE, SIDE, 3) float
    total: int


@dataclass
class ColorBox:
    """A box of histogram bins, inclusive on both ends, shrunk to its populated extent."""
    lo: tuple
    hi: tuple
    count: int
    color: RGBColor

    @property
    def ranges(self) -> tuple:
        return tuple(h - l for l, h in zip(self.lo, self.hi))

    @property
    def volume(self) -> int:
        return math.prod(r + 1 for r in self.ranges)

    @property
    def splittable(self) -> bool:
        return max(self.ranges) > 0


def build_histogram(pixels: np.ndarray) -> Histogram:
    """Bin an (n, 3) uint8 array of RGB samples."""
    pixels = np.asarray(pixels, dtype=np.uint8).reshape(-1, 3)
    idx = (pixels >> RSHIFT).astype(np.intp)
    flat = (idx[:, 0] << (2 * SIGBITS)) | (idx[:, 1] << SIGBITS) | idx[:, 2]

    counts = np.bincount(flat, minlength=HISTO_SIZE)
    sums = np.stack(
        [np.bincount(flat, weights=pixels[:, k].astype(np.float64), minlength=HISTO_SIZE)
         for k in range(3)],
        axis=-1,
    )
    return Histogram(
        counts=counts.reshape(SIDE, SIDE, SIDE),
        sums=sums.reshape(SIDE, SIDE, SIDE, 3),
        total=int(len(pixels)),
    )


def _region(lo, hi) -> tuple:
    return tuple(slice(l, h + 1) for l, h in zip(lo, hi))


def make_box(hist: Histogram, lo, hi):
    """Build a box over [lo, hi], shrunk to populated bins. None when empty."""
    region = hist.counts[_region(lo, hi)]
    count = int(region.sum())
    if count == 0:
        return None

    occupied = np.nonzero(region)
    new_lo = tuple(int(l + axis.min()) for l, axis in zip(lo, occupied))
    new_hi = tuple(int(l + axis.max()) for l, axis in zip(lo, occupied))

    channel_sums = hist.sums[_region(new_lo, new_hi)].reshape(-1, 3).sum(axis=0)
    mean = channel_sums / count
    color = RGBColor(*(max(0, min(255, int(math.floor(v + 0.5)))) for v in mean))

    return ColorBox(lo=new_lo, hi=new_hi, count=count, color=color)


def split_box(hist: Histogram, box: ColorBox):
    """
    Cut a box at the population median of its widest channel.

    Returns a pair of non-empty boxes, or None if the box holds a single bin.
    """
    ranges = box.ranges
    if max(ranges) == 0:
        return None

    axis = int(np.argmax(ranges))
    region = hist.counts[_region(box.lo, box.hi)]
    other_axes = tuple(a for a in range(3) if a != axis)
    totals = region.sum(axis=other_axes)

    cumulative = np.cumsum(totals)
    cut = int(np.searchsorted(cumulative, box.count / 2))
    # Both end slices are populated after shrinking, so this keeps both halves non-empty
    cut = min(cut, len(totals) - 2)

    left_hi = list(box.hi)
    left_hi[axis] = box.lo[axis] + cut
    right_lo = list(box.lo)
    right_lo[axis] = box.lo[axis] + cut + 1

    return make_box(hist, box.lo, left_hi), make_box(hist, right_lo, box.hi)


def _split_key(priority: str, n_boxes: int, max_colors: int):
    if priority == 'range':
        return lambda b: (max(b.ranges), b.count)
    if n_boxes < math.ceil(FRACT_BY_POPULATION * max_colors):
        return lambda b: b.count
    return lambda b: b.count * b.volume


def quantize_boxes(pixels: np.ndarray, max_colors: int, priority: str = 'range') -> list[ColorBox]:
    """
    Quantize sampled RGB pixels into at most max_colors boxes.

    Args:
        pixels: (n, 3) uint8 array of sampled colors
        max_colors: Palette size target (1-256)
        priority: 'range' splits the box with the widest channel range first;
            'population' splits by pixel count, then by count * volume

    Returns:
        Boxes sorted by pixel count descending. Empty when there are no pixels.
    """
    if not 1 <= max_colors <= MAX_PALETTE_COLORS:
        raise ValueError(f"max_colors must be in 1..{MAX_PALETTE_COLORS}, got {max_colors}")
    if priority not in SPLIT_PRIORITIES:
        raise ValueError(f"Unknown split priority: {priority!r}")

    pixels = np.asarray(pixels, dtype=np.uint8).reshape(-1, 3)
    if len(pixels) == 0:
        return []

    hist = build_histogram(pixels)
    root = make_box(hist, (0, 0, 0), (SIDE - 1, SIDE - 1, SIDE - 1))
    boxes = [root]

    while len(boxes) < max_colors:
        candidates = [b for b in boxes if b.splittable]
        if not candidates:
            break
        box = max(candidates, key=_split_key(priority, len(boxes), max_colors))
        halves = split_box(hist, box)
        boxes.remove(box)
        boxes.extend(b for b in halves if b is not None)

    boxes.sort(key=lambda b: -b.count)
    logger.debug("MMCQ: %d samples -> %d boxes", len(pixels), len(boxes))
    return boxes


def quantize(pixels: PixelBuffer, max_colors: int, stride: int = 1,
             priority: str = 'range', ignore_white: bool = False,
             ignore_black: bool = False) -> list[RGBColor]:
    """
    Reduce a pixel buffer to an ordered palette of representative colors.

    Raises:
        UnsupportedChannelLayout: If the buffer has fewer than 3 channels
    """
    samples = pixels.sample(stride=stride, ignore_white=ignore_white, ignore_black=ignore_black)
    return [box.color for box in quantize_boxes(samples, max_colors, priority=priority)]
