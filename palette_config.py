"""Pipeline configuration: quantization, swatch ranking, spatial search, bucket tables."""

import json
from dataclasses import dataclass, field, fields, replace
from pathlib import Path


# ---------------------------------------------------------------------------
# Canonical bucket tables ({id, hex}); ids are persisted as search keys
# ---------------------------------------------------------------------------
AI_BUCKETS = (
    ('red', '#FF1744'),
    ('orange', '#FF6D00'),
    ('yellow', '#FFEA00'),
    ('green', '#00E676'),
    ('teal', '#1DE9B6'),
    ('cyan', '#00E5FF'),
    ('blue', '#2979FF'),
    ('indigo', '#651FFF'),
    ('purple', '#D500F9'),
    ('pink', '#FF4081'),
    ('brown', '#8D6E63'),
    ('black', '#121212'),
    ('white', '#FAFAFA'),
)

SIMPLE_BUCKETS = (
    ('yellow', '#FFD60A'),
    ('orange', '#FF9500'),
    ('red', '#FF3B30'),
    ('green', '#34C759'),
    ('teal', '#00C7BE'),
    ('cyan', '#32ADE6'),
    ('blue', '#007AFF'),
    ('indigo', '#5856D6'),
    ('purple', '#AF52DE'),
    ('pink', '#FF2D55'),
    ('brown', '#A2845E'),
    ('gray', '#8E8E93'),
)

BUCKET_TABLES = {
    'ai': AI_BUCKETS,
    'simple': SIMPLE_BUCKETS,
}

STRATEGIES = ('vibrant', 'quantized', 'kmeans')
METRICS = ('euclidean', 'ciede2000')


@dataclass(frozen=True)
class QuantizerSettings:
    quality: int = 3  # Sample every Nth pixel
    max_dimension: int = 300  # Working resolution before sampling
    palette_factor: int = 2  # MMCQ palette size = factor * desired count
    vibrant_palette_size: int = 64  # MMCQ boxes scanned for the six semantic swatches
    split_priority: str = 'range'
    ignore_white: bool = False
    ignore_black: bool = False
    min_alpha: int = 125  # RGBA pixels below this alpha are not sampled
    kmeans_clusters: int = 6
    kmeans_max_samples: int = 5000


@dataclass(frozen=True)
class SwatchSettings:
    strategy: str = 'vibrant'
    dedup_distance: float = 30.0  # RGB distance below which swatches are duplicates
    basis_percentage: float = 5.0  # Swatches above this share form the phantom-filter basis
    min_basis_count: int = 2
    phantom_ratio: float = 0.0001  # Population relative to the largest swatch
    area_weight: float = 0.7
    vibrancy_weight: float = 0.3
    accent_count: int = 3


@dataclass(frozen=True)
class LocatorSettings:
    working_size: int = 200
    match_threshold: float = 80.0  # Weighted RGB distance to count a pixel as a match
    cell_size: int = 10
    min_separation: float = 0.08
    margin: float = 0.02
    scan_stride: int = 2
    separation_passes: int = 50
    min_alpha: int = 125  # Pixels below this alpha neither vote nor get scanned


@dataclass(frozen=True)
class PipelineConfig:
    desired_count: int = 5
    metric: str = 'euclidean'
    buckets: tuple = AI_BUCKETS
    quantizer: QuantizerSettings = field(default_factory=QuantizerSettings)
    swatches: SwatchSettings = field(default_factory=SwatchSettings)
    locator: LocatorSettings = field(default_factory=LocatorSettings)

    def __post_init__(self):
        if self.desired_count < 1:
            raise ValueError(f"desired_count must be positive, got {self.desired_count}")
        if self.metric not in METRICS:
            raise ValueError(f"Unknown metric: {self.metric!r}")
        if self.swatches.strategy not in STRATEGIES:
            raise ValueError(f"Unknown strategy: {self.swatches.strategy!r}")

    def with_overrides(self, **overrides) -> 'PipelineConfig':
        """Copy with top-level fields or 'strategy' replaced. None values are ignored."""
        overrides = {k: v for k, v in overrides.items() if v is not None}
        strategy = overrides.pop('strategy', None)
        if 'buckets' in overrides:
            overrides['buckets'] = resolve_buckets(overrides['buckets'])
        config = replace(self, **overrides)
        if strategy is not None:
            config = replace(config, swatches=replace(config.swatches, strategy=strategy))
        return config


def resolve_buckets(value) -> tuple:
    """A table name ('ai', 'simple') or a list of {id, hex} / (id, hex) entries."""
    if isinstance(value, str):
        if value not in BUCKET_TABLES:
            raise ValueError(f"Unknown bucket table: {value!r}")
        return BUCKET_TABLES[value]

    entries = []
    for entry in value:
        if isinstance(entry, dict):
            if set(entry) != {'id', 'hex'}:
                raise ValueError(f"Bucket entries need exactly 'id' and 'hex': {entry!r}")
            entries.append((entry['id'], entry['hex']))
        else:
            bucket_id, hex_value = entry
            entries.append((bucket_id, hex_value))
    return tuple(entries)


def _build_section(cls, data: dict, section: str):
    if not isinstance(data, dict):
        raise ValueError(f"'{section}' must be an object")
    known = {f.name: f for f in fields(cls)}
    for key, value in data.items():
        if key not in known:
            raise ValueError(f"Unknown key '{section}.{key}'")
        expected = type(known[key].default)
        if expected is float and isinstance(value, int) and not isinstance(value, bool):
            continue
        if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
            raise ValueError(f"'{section}.{key}' must be {expected.__name__}")
    return cls(**data)


def config_from_dict(data: dict) -> PipelineConfig:
    sections = {
        'quantizer': QuantizerSettings,
        'swatches': SwatchSettings,
        'locator': LocatorSettings,
    }
    kwargs = {}
    for key, value in data.items():
        if key in sections:
            kwargs[key] = _build_section(sections[key], value, key)
        elif key == 'buckets':
            kwargs[key] = resolve_buckets(value)
        elif key == 'desired_count':
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValueError("'desired_count' must be int")
            kwargs[key] = value
        elif key == 'metric':
            if not isinstance(value, str):
                raise ValueError("'metric' must be str")
            kwargs[key] = value
        else:
            raise ValueError(f"Unknown key '{key}'")
    return PipelineConfig(**kwargs)


def load_config(path) -> PipelineConfig:
    """Read a JSON config file. Missing keys keep their defaults."""
    try:
        data = json.loads(Path(path).read_text())
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid config file {path}: {e}")
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")
    return config_from_dict(data)
