"""Exceptions raised by the color pipeline."""


class ColorError(ValueError):
    """Base class for color pipeline errors."""


class InvalidHex(ColorError):
    """A color string is not 3- or 6-digit hex."""

    def __init__(self, value):
        self.value = value
        super().__init__(f"Invalid hex color: {value!r}")


class UnsupportedChannelLayout(ColorError):
    """A pixel buffer has fewer than 3 channels."""

    def __init__(self, channels: int):
        self.channels = channels
        super().__init__(f"Expected at least 3 channels (RGB), got {channels}")


class InvalidPixelBuffer(ColorError):
    """Pixel data does not match its declared shape."""
