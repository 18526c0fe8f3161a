#!/usr/bin/env python3
"""
Decoded pixel buffers.

A PixelBuffer is a read-only (height, width, channels) uint8 view shared by
every stage of the pipeline. Decoding files is only done at the CLI boundary.
"""

from dataclasses import dataclass

import numpy as np
from PIL import Image

from color_errors import InvalidPixelBuffer, UnsupportedChannelLayout


# Image size limits (security: prevent decompression bombs)
MAX_IMAGE_PIXELS = 50_000_000  # 50 megapixels
MAX_IMAGE_DIMENSION = 10_000  # 10k pixels per side

# RGBA pixels below this alpha are not sampled
MIN_ALPHA = 125


@dataclass(frozen=True)
class PixelBuffer:
    """Row-major pixel data of shape (height, width, channels)."""
    width: int
    height: int
    channels: int
    data: np.ndarray

    @classmethod
    def from_array(cls, array) -> 'PixelBuffer':
        """Wrap an (h, w) or (h, w, c) uint8 array without copying it."""
        array = np.asarray(array)
        if array.dtype != np.uint8:
            raise InvalidPixelBuffer(f"Expected uint8 pixel data, got {array.dtype}")
        if array.ndim == 2:
            array = array[:, :, np.newaxis]
        if array.ndim != 3:
            raise InvalidPixelBuffer(f"Expected a 2-D or 3-D array, got shape {array.shape}")

        view = array.view()
        view.flags.writeable = False
        h, w, c = view.shape
        return cls(width=w, height=h, channels=c, data=view)

    @classmethod
    def from_bytes(cls, width: int, height: int, channels: int, data: bytes) -> 'PixelBuffer':
        """Wrap raw interleaved bytes."""
        if width < 0 or height < 0 or channels < 1:
            raise InvalidPixelBuffer(f"Bad buffer shape {width}x{height}x{channels}")
        expected = width * height * channels
        if len(data) != expected:
            raise InvalidPixelBuffer(
                f"Buffer has {len(data)} bytes, expected {expected} "
                f"for {width}x{height}x{channels}"
            )
        array = np.frombuffer(data, dtype=np.uint8).reshape(height, width, channels)
        return cls.from_array(array)

    @classmethod
    def from_image(cls, img: Image.Image) -> 'PixelBuffer':
        """Convert a Pillow image to RGB, or RGBA when it carries alpha."""
        has_alpha = img.mode in ('RGBA', 'LA', 'PA') or 'transparency' in img.info
        img = img.convert('RGBA' if has_alpha else 'RGB')
        return cls.from_array(np.array(img))

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    def require_rgb(self) -> None:
        if self.channels < 3:
            raise UnsupportedChannelLayout(self.channels)

    def rgb(self) -> np.ndarray:
        """(h, w, 3) view of the color channels."""
        self.require_rgb()
        return self.data[:, :, :3]

    def resized(self, max_side: int) -> 'PixelBuffer':
        """Downscale to fit inside max_side x max_side, keeping aspect ratio.

        Never enlarges; returns self when already small enough.
        """
        if self.width <= max_side and self.height <= max_side:
            return self
        if self.pixel_count == 0:
            return self

        array = self.data
        if self.channels == 1:
            array = array[:, :, 0]
        img = Image.fromarray(np.ascontiguousarray(array))
        img.thumbnail((max_side, max_side), Image.Resampling.BILINEAR)
        return PixelBuffer.from_array(np.array(img))

    def sample(self, stride: int = 1, ignore_white: bool = False,
               ignore_black: bool = False, min_alpha: int = MIN_ALPHA) -> np.ndarray:
        """
        Sample every `stride`-th pixel as an (n, 3) uint8 array.

        Transparent pixels (alpha < min_alpha) are skipped in RGBA buffers.
        Near-white (all channels > 250) and near-black (all channels < 5)
        pixels are optionally skipped.
        """
        self.require_rgb()
        flat = self.data.reshape(-1, self.channels)[::max(1, int(stride))]

        if self.channels >= 4:
            flat = flat[flat[:, 3] >= min_alpha]

        rgb = flat[:, :3]
        if ignore_white:
            rgb = rgb[~np.all(rgb > 250, axis=1)]
        if ignore_black:
            rgb = rgb[~np.all(rgb < 5, axis=1)]
        return rgb


def open_image(image_path: str) -> PixelBuffer:
    """
    Decode an image file into a PixelBuffer.

    Raises:
        FileNotFoundError: If image file doesn't exist
        ValueError: If file is not a valid image or exceeds size limits
    """
    try:
        img = Image.open(image_path)
    except FileNotFoundError:
        raise FileNotFoundError(f"Image not found: {image_path}")
    except Exception as e:
        raise ValueError(f"Could not open image: {e}")

    # Validate image dimensions (security: prevent decompression bombs)
    width, height = img.size
    if width > MAX_IMAGE_DIMENSION or height > MAX_IMAGE_DIMENSION:
        raise ValueError(
            f"Image dimensions {width}x{height} exceed maximum "
            f"{MAX_IMAGE_DIMENSION}x{MAX_IMAGE_DIMENSION}"
        )
    if width * height > MAX_IMAGE_PIXELS:
        raise ValueError(
            f"Image has {width * height:,} pixels, exceeding maximum {MAX_IMAGE_PIXELS:,}"
        )

    return PixelBuffer.from_image(img)
