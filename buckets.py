#!/usr/bin/env python3
"""
Canonical color buckets for indexed search.

A bucket table is a small fixed list of named reference colors. Every color
is assigned to its nearest bucket by squared RGB distance (fast, used at
write time) or CIEDE2000 (perceptual, used for reclassification). The same
table must be used when indexing and when evaluating a search query.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from functools import cached_property
from typing import Optional

import numpy as np

from color_errors import InvalidHex
from colorspace import delta_e_2000, hex_to_rgb, normalize_hex, rgb_to_lab
from palette_config import AI_BUCKETS, resolve_buckets


logger = logging.getLogger(__name__)

SLOT_NAMES = ('dominant_color', 'secondary_color', 'third_color', 'fourth_color', 'fifth_color')


class Metric(str, Enum):
    EUCLIDEAN = 'euclidean'
    CIEDE2000 = 'ciede2000'


@dataclass(frozen=True)
class BucketColor:
    id: str
    hex: str

    @cached_property
    def rgb(self) -> tuple:
        return hex_to_rgb(self.hex)

    @cached_property
    def lab(self) -> np.ndarray:
        return rgb_to_lab(self.rgb)


class BucketClassifier:
    """Nearest-bucket lookup over one immutable table. Safe to share across threads."""

    def __init__(self, table=AI_BUCKETS):
        buckets = []
        for entry in resolve_buckets(table):
            bucket_id, hex_value = entry
            buckets.append(BucketColor(id=str(bucket_id), hex=normalize_hex(hex_value)))

        if not buckets:
            raise ValueError("Bucket table is empty")
        ids = [b.id for b in buckets]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"Duplicate bucket ids: {', '.join(duplicates)}")

        self.buckets = tuple(buckets)
        self._rgb = np.array([b.rgb for b in buckets], dtype=np.float64)

    @property
    def ids(self) -> list[str]:
        return [b.id for b in self.buckets]

    @cached_property
    def _lab(self) -> np.ndarray:
        return np.array([b.lab for b in self.buckets])

    def distances(self, hex_value: str, metric=Metric.EUCLIDEAN) -> np.ndarray:
        """Distance from a color to every bucket, in table order. Raises InvalidHex."""
        metric = Metric(metric)
        rgb = np.array(hex_to_rgb(hex_value), dtype=np.float64)
        if metric is Metric.EUCLIDEAN:
            return ((self._rgb - rgb) ** 2).sum(axis=1)
        return delta_e_2000(rgb_to_lab(rgb), self._lab)

    def classify(self, hex_value: str, metric=Metric.EUCLIDEAN) -> Optional[str]:
        """
        Id of the nearest bucket, or None if hex_value does not parse.

        Ties go to the earliest bucket in the table.
        """
        if not hex_value:
            return None
        try:
            dist = self.distances(hex_value, metric)
        except InvalidHex:
            logger.warning("Cannot classify invalid color %r", hex_value)
            return None
        return self.buckets[int(np.argmin(dist))].id

    def classify_slots(self, colors, metric=Metric.EUCLIDEAN) -> dict:
        """Bucket ids for the first five colors, keyed by slot name (missing slots are None)."""
        colors = list(colors or [])
        return {
            slot: self.classify(colors[i], metric) if i < len(colors) else None
            for i, slot in enumerate(SLOT_NAMES)
        }

    def matches(self, stored_ids, query_hex: str, metric=Metric.EUCLIDEAN) -> bool:
        """True when a record's stored bucket ids contain the bucket of query_hex."""
        bucket = self.classify(query_hex, metric)
        return bucket is not None and bucket in set(i for i in stored_ids if i)
