#!/usr/bin/env python3
"""
Swatch extraction and ranking.

Three ways to collect candidate swatches from an image:
- vibrant: six semantic swatches (vibrant / light / dark x vibrant / muted)
  picked from an MMCQ palette by target saturation and lightness
- quantized: the top MMCQ colors with their box populations
- kmeans: k-means cluster centers with their cluster sizes

Candidates then go through the same ranking: area + vibrancy score,
de-duplication, phantom filtering, truncation and weight normalization.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np
from sklearn.cluster import KMeans

from color_names import default_namer
from colorspace import RGBColor, hsl_to_rgb, rgb_to_hex, rgb_to_hsl
from mmcq import quantize_boxes
from palette_config import QuantizerSettings, SwatchSettings
from pixel_buffer import PixelBuffer


logger = logging.getLogger(__name__)


class SwatchKind(str, Enum):
    VIBRANT = 'vibrant'
    LIGHT_VIBRANT = 'light_vibrant'
    DARK_VIBRANT = 'dark_vibrant'
    MUTED = 'muted'
    LIGHT_MUTED = 'light_muted'
    DARK_MUTED = 'dark_muted'


# Fixed tie-in for the ranking score: vivid categories first
VIBRANCY_PRIORITY = {
    SwatchKind.VIBRANT: 100,
    SwatchKind.LIGHT_VIBRANT: 80,
    SwatchKind.DARK_VIBRANT: 60,
    SwatchKind.MUTED: 40,
    SwatchKind.LIGHT_MUTED: 20,
    SwatchKind.DARK_MUTED: 10,
}

# Target lightness / saturation of the six semantic swatches
TARGET_DARK_LUMA = 0.26
MAX_DARK_LUMA = 0.45
MIN_LIGHT_LUMA = 0.55
TARGET_LIGHT_LUMA = 0.74
MIN_NORMAL_LUMA = 0.3
TARGET_NORMAL_LUMA = 0.5
MAX_NORMAL_LUMA = 0.7
TARGET_MUTED_SATURATION = 0.3
MAX_MUTED_SATURATION = 0.4
TARGET_VIBRANT_SATURATION = 1.0
MIN_VIBRANT_SATURATION = 0.35

WEIGHT_SATURATION = 3.0
WEIGHT_LUMA = 6.5
WEIGHT_POPULATION = 0.5

# Guaranteed vibrant slot (quantized strategy)
MIN_SATURATION_FOR_VIBRANT = 0.5
MIN_VIBRANT_SLOT_PERCENTAGE = 3.0

# Accent colors: small, bright or contrasting
MAX_ACCENT_PERCENTAGE = 25.0
ACCENT_DOMINANT_DISTANCE = 50.0
ACCENT_ACCENT_DISTANCE = 40.0


@dataclass(frozen=True)
class SwatchTarget:
    kind: SwatchKind
    target_luma: float
    min_luma: float
    max_luma: float
    target_saturation: float
    min_saturation: float
    max_saturation: float


SWATCH_TARGETS = (
    SwatchTarget(SwatchKind.VIBRANT, TARGET_NORMAL_LUMA, MIN_NORMAL_LUMA, MAX_NORMAL_LUMA,
                 TARGET_VIBRANT_SATURATION, MIN_VIBRANT_SATURATION, 1.0),
    SwatchTarget(SwatchKind.LIGHT_VIBRANT, TARGET_LIGHT_LUMA, MIN_LIGHT_LUMA, 1.0,
                 TARGET_VIBRANT_SATURATION, MIN_VIBRANT_SATURATION, 1.0),
    SwatchTarget(SwatchKind.DARK_VIBRANT, TARGET_DARK_LUMA, 0.0, MAX_DARK_LUMA,
                 TARGET_VIBRANT_SATURATION, MIN_VIBRANT_SATURATION, 1.0),
    SwatchTarget(SwatchKind.MUTED, TARGET_NORMAL_LUMA, MIN_NORMAL_LUMA, MAX_NORMAL_LUMA,
                 TARGET_MUTED_SATURATION, 0.0, MAX_MUTED_SATURATION),
    SwatchTarget(SwatchKind.LIGHT_MUTED, TARGET_LIGHT_LUMA, MIN_LIGHT_LUMA, 1.0,
                 TARGET_MUTED_SATURATION, 0.0, MAX_MUTED_SATURATION),
    SwatchTarget(SwatchKind.DARK_MUTED, TARGET_DARK_LUMA, 0.0, MAX_DARK_LUMA,
                 TARGET_MUTED_SATURATION, 0.0, MAX_MUTED_SATURATION),
)


@dataclass
class Swatch:
    """A candidate color. Saturation and lightness are in [0, 1], percentage in [0, 100]."""
    rgb: RGBColor
    population: float
    kind: SwatchKind
    percentage: float = 0.0
    hex: str = field(init=False)
    saturation: float = field(init=False)
    lightness: float = field(init=False)

    def __post_init__(self):
        self.rgb = RGBColor(*(int(c) for c in self.rgb))
        self.hex = rgb_to_hex(*self.rgb)
        hsl = rgb_to_hsl(*self.rgb)
        self.saturation = hsl.s
        self.lightness = hsl.l


@dataclass
class PaletteResult:
    colors: list = field(default_factory=list)
    weights: list = field(default_factory=list)
    names: list = field(default_factory=list)
    accents: list = field(default_factory=list)
    accent_names: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'colors': list(self.colors),
            'weights': list(self.weights),
            'names': list(self.names),
            'accents': list(self.accents),
            'accent_names': list(self.accent_names),
        }


def rgb_distance(a, b) -> float:
    return math.sqrt(sum((int(x) - int(y)) ** 2 for x, y in zip(a, b)))


# =============================================================================
# Candidate collection
# =============================================================================

def classify_kind(saturation: float, lightness: float) -> SwatchKind:
    """Nearest of the six semantic categories for an arbitrary color."""
    vibrant = saturation >= MIN_VIBRANT_SATURATION
    if lightness < (TARGET_DARK_LUMA + TARGET_NORMAL_LUMA) / 2:
        return SwatchKind.DARK_VIBRANT if vibrant else SwatchKind.DARK_MUTED
    if lightness > (TARGET_NORMAL_LUMA + TARGET_LIGHT_LUMA) / 2:
        return SwatchKind.LIGHT_VIBRANT if vibrant else SwatchKind.LIGHT_MUTED
    return SwatchKind.VIBRANT if vibrant else SwatchKind.MUTED


def _comparison_value(saturation, target_saturation, luma, target_luma,
                      population, max_population) -> float:
    values = (
        (1 - abs(saturation - target_saturation), WEIGHT_SATURATION),
        (1 - abs(luma - target_luma), WEIGHT_LUMA),
        (population / max_population if max_population else 0.0, WEIGHT_POPULATION),
    )
    return sum(v * w for v, w in values) / sum(w for _, w in values)


def _derived_swatch(source: Swatch, kind: SwatchKind,
                    lightness: Optional[float] = None,
                    saturation: Optional[float] = None) -> Swatch:
    hsl = rgb_to_hsl(*source.rgb)
    rgb = hsl_to_rgb(
        hsl.h,
        hsl.s if saturation is None else saturation,
        hsl.l if lightness is None else lightness,
    )
    return Swatch(rgb=rgb, population=0, kind=kind)


def _fill_missing(found: dict) -> None:
    """Derive absent categories from present ones. Derived swatches have population 0."""
    K = SwatchKind
    if K.VIBRANT not in found and K.DARK_VIBRANT not in found and K.LIGHT_VIBRANT not in found:
        if K.DARK_MUTED in found:
            found[K.DARK_VIBRANT] = _derived_swatch(found[K.DARK_MUTED], K.DARK_VIBRANT,
                                                    lightness=TARGET_DARK_LUMA)
        if K.LIGHT_MUTED in found:
            found[K.LIGHT_VIBRANT] = _derived_swatch(found[K.LIGHT_MUTED], K.LIGHT_VIBRANT,
                                                     lightness=TARGET_LIGHT_LUMA)

    if K.VIBRANT not in found:
        source = found.get(K.DARK_VIBRANT) or found.get(K.LIGHT_VIBRANT)
        if source is not None:
            found[K.VIBRANT] = _derived_swatch(source, K.VIBRANT, lightness=TARGET_NORMAL_LUMA)

    if K.VIBRANT in found:
        vibrant = found[K.VIBRANT]
        if K.DARK_VIBRANT not in found:
            found[K.DARK_VIBRANT] = _derived_swatch(vibrant, K.DARK_VIBRANT,
                                                    lightness=TARGET_DARK_LUMA)
        if K.LIGHT_VIBRANT not in found:
            found[K.LIGHT_VIBRANT] = _derived_swatch(vibrant, K.LIGHT_VIBRANT,
                                                     lightness=TARGET_LIGHT_LUMA)
        if K.MUTED not in found:
            found[K.MUTED] = _derived_swatch(vibrant, K.MUTED, lightness=TARGET_NORMAL_LUMA,
                                             saturation=TARGET_MUTED_SATURATION)

    if K.MUTED in found:
        muted = found[K.MUTED]
        if K.DARK_MUTED not in found:
            found[K.DARK_MUTED] = _derived_swatch(muted, K.DARK_MUTED, lightness=TARGET_DARK_LUMA)
        if K.LIGHT_MUTED not in found:
            found[K.LIGHT_MUTED] = _derived_swatch(muted, K.LIGHT_MUTED,
                                                   lightness=TARGET_LIGHT_LUMA)


def vibrant_swatches(samples: np.ndarray, palette_size: int = 64,
                     priority: str = 'range') -> list[Swatch]:
    """
    Pick the six semantic swatches from an MMCQ palette of the samples.

    Each category takes the unused palette color inside its saturation and
    lightness window that best matches its targets, weighted toward
    population. Missing categories are derived from present ones.
    """
    boxes = quantize_boxes(samples, palette_size, priority=priority)
    if not boxes:
        return []

    max_population = max(b.count for b in boxes)
    hsls = [rgb_to_hsl(*b.color) for b in boxes]
    used = set()
    found = {}

    for target in SWATCH_TARGETS:
        best_index, best_value = None, -math.inf
        for i, (box, hsl) in enumerate(zip(boxes, hsls)):
            if i in used:
                continue
            if not (target.min_saturation <= hsl.s <= target.max_saturation):
                continue
            if not (target.min_luma <= hsl.l <= target.max_luma):
                continue
            value = _comparison_value(hsl.s, target.target_saturation, hsl.l, target.target_luma,
                                      box.count, max_population)
            if value > best_value:
                best_index, best_value = i, value

        if best_index is not None:
            used.add(best_index)
            box = boxes[best_index]
            found[target.kind] = Swatch(rgb=box.color, population=box.count, kind=target.kind)

    _fill_missing(found)
    return [found[t.kind] for t in SWATCH_TARGETS if t.kind in found]


def quantized_swatches(samples: np.ndarray, max_colors: int,
                       priority: str = 'range') -> list[Swatch]:
    """Top MMCQ colors with their box populations."""
    swatches = []
    for box in quantize_boxes(samples, max_colors, priority=priority):
        hsl = rgb_to_hsl(*box.color)
        swatches.append(Swatch(rgb=box.color, population=box.count,
                               kind=classify_kind(hsl.s, hsl.l)))
    return swatches


def kmeans_swatches(samples: np.ndarray, clusters: int = 6,
                    max_samples: int = 5000) -> list[Swatch]:
    """K-means cluster centers over at most max_samples evenly spaced samples."""
    samples = np.asarray(samples, dtype=np.uint8).reshape(-1, 3)
    if len(samples) == 0:
        return []

    step = max(1, len(samples) // max_samples)
    points = samples[::step].astype(np.float64)
    k = min(clusters, len(np.unique(points, axis=0)))

    kmeans = KMeans(n_clusters=k, n_init=4, random_state=0)
    labels = kmeans.fit_predict(points)
    counts = np.bincount(labels, minlength=k)

    swatches = []
    for center, count in zip(kmeans.cluster_centers_, counts):
        rgb = RGBColor(*(max(0, min(255, int(math.floor(v + 0.5)))) for v in center))
        hsl = rgb_to_hsl(*rgb)
        swatches.append(Swatch(rgb=rgb, population=int(count), kind=classify_kind(hsl.s, hsl.l)))
    swatches.sort(key=lambda s: -s.population)
    return swatches


def collect_swatches(pixels: PixelBuffer, desired_count: int,
                     quantizer: QuantizerSettings, strategy: str) -> list[Swatch]:
    """
    Sample the buffer and collect candidates with the chosen strategy.

    Raises:
        UnsupportedChannelLayout: If the buffer has fewer than 3 channels
    """
    pixels.require_rgb()
    working = pixels.resized(quantizer.max_dimension)
    samples = working.sample(
        stride=quantizer.quality,
        ignore_white=quantizer.ignore_white,
        ignore_black=quantizer.ignore_black,
        min_alpha=quantizer.min_alpha,
    )
    logger.debug("Sampled %d of %d pixels", len(samples), working.pixel_count)

    if strategy == 'vibrant':
        return vibrant_swatches(samples, quantizer.vibrant_palette_size, quantizer.split_priority)
    if strategy == 'quantized':
        max_colors = min(256, max(1, quantizer.palette_factor * desired_count))
        return quantized_swatches(samples, max_colors, quantizer.split_priority)
    if strategy == 'kmeans':
        return kmeans_swatches(samples, quantizer.kmeans_clusters, quantizer.kmeans_max_samples)
    raise ValueError(f"Unknown strategy: {strategy!r}")


# =============================================================================
# Ranking
# =============================================================================

def _is_well_formed(swatch: Swatch) -> bool:
    if not math.isfinite(swatch.population) or swatch.population < 0:
        return False
    return all(0 <= c <= 255 for c in swatch.rgb)


def assign_percentages(swatches: list[Swatch]) -> None:
    total = sum(s.population for s in swatches)
    for s in swatches:
        s.percentage = s.population / total * 100 if total > 0 else 0.0


def hybrid_score(swatch: Swatch, max_population: float, settings: SwatchSettings) -> float:
    """Area share (0-100, relative to the largest swatch) blended with category vibrancy."""
    area = swatch.population / max_population * 100 if max_population > 0 else 0.0
    return settings.area_weight * area + settings.vibrancy_weight * VIBRANCY_PRIORITY[swatch.kind]


def deduplicate(swatches: list[Swatch], min_distance: float) -> list[Swatch]:
    """Keep a swatch only if it is at least min_distance (RGB) from every kept one."""
    kept = []
    for s in swatches:
        if all(rgb_distance(s.rgb, k.rgb) >= min_distance for k in kept):
            kept.append(s)
    return kept


def filter_phantoms(swatches: list[Swatch], settings: SwatchSettings) -> list[Swatch]:
    """
    Drop near-zero population artifacts.

    Only applies when at least min_basis_count swatches exceed
    basis_percentage; otherwise there is not enough signal to tell noise
    from a legitimately small color.
    """
    basis = [s for s in swatches if s.percentage > settings.basis_percentage]
    if len(basis) < settings.min_basis_count:
        return swatches

    largest = max(s.population for s in swatches)
    if largest <= 0:
        return swatches

    kept = [s for s in swatches if s.population / largest >= settings.phantom_ratio]
    dropped = len(swatches) - len(kept)
    if dropped:
        logger.debug("Phantom filter dropped %d swatches", dropped)
    return kept


def ensure_vibrant_slot(selected: list[Swatch], candidates: list[Swatch],
                        desired_count: int, min_distance: float) -> list[Swatch]:
    """Swap the last slot for the most saturated candidate when a full palette has none."""
    if len(selected) < desired_count:
        return selected
    if any(s.saturation > MIN_SATURATION_FOR_VIBRANT for s in selected):
        return selected

    eligible = [
        c for c in candidates
        if c.saturation > MIN_SATURATION_FOR_VIBRANT
        and 0.2 < c.lightness < 0.85
        and c.percentage > MIN_VIBRANT_SLOT_PERCENTAGE
        and all(rgb_distance(c.rgb, s.rgb) >= min_distance for s in selected)
    ]
    if not eligible:
        return selected

    most_saturated = max(eligible, key=lambda c: c.saturation)
    return selected[:-1] + [most_saturated]


def normalize_weights(swatches: list[Swatch]) -> list[float]:
    """
    Re-normalize percentages of the final set to tenths summing to 100.

    Largest-remainder rounding: every weight is floored to a tenth, and the
    leftover tenths go to the largest remainders (earlier swatches win ties).
    """
    if not swatches:
        return []
    total = sum(s.percentage for s in swatches)
    if total <= 0:
        shares = np.full(len(swatches), 1000.0 / len(swatches))
    else:
        shares = np.array([s.percentage for s in swatches], dtype=np.float64) / total * 1000
    units = np.floor(shares).astype(np.int64)
    leftover = 1000 - int(units.sum())
    if leftover > 0:
        order = np.argsort(-(shares - units), kind='stable')
        units[order[:leftover]] += 1
    return [int(u) / 10 for u in units]


def rank_swatches(candidates: list[Swatch], desired_count: int,
                  settings: SwatchSettings, vibrant_slot: bool = False) -> list[Swatch]:
    """Score, de-duplicate, phantom-filter and truncate candidates."""
    if desired_count < 1:
        raise ValueError(f"desired_count must be positive, got {desired_count}")
    swatches = []
    for s in candidates:
        if _is_well_formed(s):
            swatches.append(s)
        else:
            logger.warning("Skipping malformed swatch %s (population %r)", s.hex, s.population)
    if not swatches:
        return []

    assign_percentages(swatches)
    max_population = max(s.population for s in swatches)
    ranked = sorted(swatches, key=lambda s: -hybrid_score(s, max_population, settings))

    unique = deduplicate(ranked, settings.dedup_distance)
    surviving = filter_phantoms(unique, settings)
    selected = surviving[:desired_count]

    if vibrant_slot:
        selected = ensure_vibrant_slot(selected, surviving, desired_count,
                                       settings.dedup_distance)
    return selected


def find_accents(candidates: list[Swatch], dominant: list[Swatch],
                 limit: int = 3) -> list[Swatch]:
    """
    Small-area colors that glow, are saturated, or contrast with the dominant colors.

    Candidates must already carry percentages.
    """
    if limit <= 0:
        return []
    if dominant:
        avg_lightness = sum(d.lightness for d in dominant) / len(dominant)
    else:
        avg_lightness = 0.5

    scored = []
    for c in candidates:
        if c.percentage >= MAX_ACCENT_PERCENTAGE or c.lightness <= 0.12:
            continue
        glowing = 0.6 < c.lightness < 0.98
        saturated = c.saturation > 0.25
        contrasting = abs(c.lightness - avg_lightness) > 0.2
        if not (glowing or saturated or contrasting):
            continue

        contrast_bonus = abs(c.lightness - avg_lightness) * 100
        glow_bonus = (c.lightness * 100 - 60) * 1.5 if c.lightness > 0.6 else 0.0
        saturation_bonus = c.saturation * 100 * (1.2 if c.saturation > 0.3 else 1.0)
        scored.append((saturation_bonus + contrast_bonus + glow_bonus, c))

    scored.sort(key=lambda item: -item[0])

    accents = []
    for _, c in scored:
        if len(accents) >= limit:
            break
        if any(rgb_distance(d.rgb, c.rgb) < ACCENT_DOMINANT_DISTANCE for d in dominant):
            continue
        if any(rgb_distance(a.rgb, c.rgb) < ACCENT_ACCENT_DISTANCE for a in accents):
            continue
        accents.append(c)
    return accents


def build_palette(candidates: list[Swatch], desired_count: int, settings: SwatchSettings,
                  vibrant_slot: bool = False, namer=None) -> PaletteResult:
    """Rank candidates into a PaletteResult with weights, names and accents."""
    namer = namer or default_namer()
    selected = rank_swatches(candidates, desired_count, settings, vibrant_slot=vibrant_slot)
    if not selected:
        return PaletteResult()

    chosen = {id(s) for s in selected}
    others = [c for c in candidates
              if id(c) not in chosen and _is_well_formed(c) and c.population > 0]
    accents = find_accents(others, selected, settings.accent_count)

    return PaletteResult(
        colors=[s.hex for s in selected],
        weights=normalize_weights(selected),
        names=namer.names_for(s.hex for s in selected),
        accents=[a.hex for a in accents],
        accent_names=namer.names_for(a.hex for a in accents),
    )


def extract_palette(pixels: PixelBuffer, desired_count: int = 5,
                    quantizer: QuantizerSettings = QuantizerSettings(),
                    settings: SwatchSettings = SwatchSettings(),
                    namer=None) -> PaletteResult:
    """
    Extract up to desired_count representative colors with weights and names.

    Returns an empty PaletteResult when no pixels were sampled.

    Raises:
        UnsupportedChannelLayout: If the buffer has fewer than 3 channels
    """
    candidates = collect_swatches(pixels, desired_count, quantizer, settings.strategy)
    return build_palette(candidates, desired_count, settings,
                         vibrant_slot=settings.strategy == 'quantized', namer=namer)
