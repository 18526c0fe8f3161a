#!/usr/bin/env python3
"""
Color space conversions and color distance.

Hex parsing/formatting, RGB <-> HSL, RGB -> LAB (sRGB, D65) and the
CIEDE2000 color difference. Everything here is stateless.
"""

import math
import re
from typing import NamedTuple

import numpy as np

from color_errors import InvalidHex


# Returned by ciede2000() when either input cannot be parsed
MAX_DISTANCE = 1000.0

_HEX_DIGITS = re.compile(r'[0-9a-fA-F]+')


class RGBColor(NamedTuple):
    r: int
    g: int
    b: int


class HSLColor(NamedTuple):
    """Hue in degrees [0, 360), saturation and lightness in [0, 1]."""
    h: float
    s: float
    l: float


# =============================================================================
# Hex
# =============================================================================

def hex_to_rgb(value: str) -> RGBColor:
    """
    Parse '#RGB' or '#RRGGBB' (leading '#' optional, any case).

    Raises:
        InvalidHex: on any other length or a non-hex character
    """
    if not isinstance(value, str):
        raise InvalidHex(value)

    digits = value.strip()
    if digits.startswith('#'):
        digits = digits[1:]

    if len(digits) not in (3, 6) or not _HEX_DIGITS.fullmatch(digits):
        raise InvalidHex(value)

    if len(digits) == 3:
        digits = ''.join(ch * 2 for ch in digits)

    return RGBColor(int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16))


def _to_channel(v: float) -> int:
    # Half-up rounding, then clamp
    return max(0, min(255, int(math.floor(v + 0.5))))


def rgb_to_hex(r: float, g: float, b: float) -> str:
    """Format an RGB triple as uppercase '#RRGGBB'."""
    return f"#{_to_channel(r):02X}{_to_channel(g):02X}{_to_channel(b):02X}"


def normalize_hex(value: str) -> str:
    """Canonical '#RRGGBB' form of a hex string. Raises InvalidHex."""
    return rgb_to_hex(*hex_to_rgb(value))


def is_valid_hex(value: str) -> bool:
    try:
        hex_to_rgb(value)
    except InvalidHex:
        return False
    return True


# =============================================================================
# HSL
# =============================================================================

def rgb_to_hsl(r: float, g: float, b: float) -> HSLColor:
    """Convert RGB (0-255) to HSL. Achromatic input has hue 0, saturation 0."""
    r, g, b = r / 255.0, g / 255.0, b / 255.0
    high = max(r, g, b)
    low = min(r, g, b)
    lightness = (high + low) / 2

    if high == low:
        return HSLColor(0.0, 0.0, lightness)

    d = high - low
    saturation = d / (2 - high - low) if lightness > 0.5 else d / (high + low)

    if high == r:
        hue = (g - b) / d + (6 if g < b else 0)
    elif high == g:
        hue = (b - r) / d + 2
    else:
        hue = (r - g) / d + 4

    return HSLColor((hue * 60) % 360, saturation, lightness)


def hsl_to_rgb(h: float, s: float, l: float) -> RGBColor:
    """Convert HSL (degrees, 0-1, 0-1) back to an RGB triple."""
    s = min(1.0, max(0.0, s))
    l = min(1.0, max(0.0, l))

    if s == 0:
        v = _to_channel(l * 255)
        return RGBColor(v, v, v)

    def hue_to_channel(p, q, t):
        t %= 1.0
        if t < 1 / 6:
            return p + (q - p) * 6 * t
        if t < 1 / 2:
            return q
        if t < 2 / 3:
            return p + (q - p) * (2 / 3 - t) * 6
        return p

    q = l * (1 + s) if l < 0.5 else l + s - l * s
    p = 2 * l - q
    hk = (h % 360) / 360

    return RGBColor(
        _to_channel(hue_to_channel(p, q, hk + 1 / 3) * 255),
        _to_channel(hue_to_channel(p, q, hk) * 255),
        _to_channel(hue_to_channel(p, q, hk - 1 / 3) * 255),
    )


# =============================================================================
# LAB
# =============================================================================

def rgb_to_lab(rgb) -> np.ndarray:
    """
    Convert RGB (0-255) to LAB color space.

    Accepts a single triple or any array whose last axis has length 3 and
    returns an array of the same shape.
    """
    rgb = np.asarray(rgb, dtype=np.float64)
    shape = rgb.shape
    rgb_norm = rgb.reshape(-1, 3) / 255.0

    # Apply gamma correction
    mask = rgb_norm > 0.04045
    rgb_linear = np.where(mask, ((rgb_norm + 0.055) / 1.055) ** 2.4, rgb_norm / 12.92)

    # RGB to XYZ matrix
    r, g, b = rgb_linear[:, 0], rgb_linear[:, 1], rgb_linear[:, 2]
    x = r * 0.4124564 + g * 0.3575761 + b * 0.1804375
    y = r * 0.2126729 + g * 0.7151522 + b * 0.0721750
    z = r * 0.0193339 + g * 0.1191920 + b * 0.9503041

    # XYZ to LAB (D65 reference white)
    xn, yn, zn = 0.95047, 1.0, 1.08883
    x, y, z = x / xn, y / yn, z / zn

    epsilon = 0.008856
    kappa = 903.3
    fx = np.where(x > epsilon, np.cbrt(x), (kappa * x + 16) / 116)
    fy = np.where(y > epsilon, np.cbrt(y), (kappa * y + 16) / 116)
    fz = np.where(z > epsilon, np.cbrt(z), (kappa * z + 16) / 116)

    L = 116 * fy - 16
    a = 500 * (fx - fy)
    b_val = 200 * (fy - fz)

    return np.column_stack([L, a, b_val]).reshape(shape)


def hex_to_lab(value: str) -> np.ndarray:
    """LAB of a hex color. Raises InvalidHex."""
    return rgb_to_lab(hex_to_rgb(value))


# =============================================================================
# Distances
# =============================================================================

def euclidean_rgb(a, b) -> float:
    """Sum of squared channel differences (no square root)."""
    return float(sum((int(x) - int(y)) ** 2 for x, y in zip(a, b)))


def delta_e_2000(lab1, lab2) -> np.ndarray:
    """
    CIEDE2000 color difference between LAB arrays (kL = kC = kH = 1).

    Inputs broadcast against each other along leading axes; the last axis
    holds (L, a, b). Non-finite results are replaced by MAX_DISTANCE.
    """
    lab1 = np.asarray(lab1, dtype=np.float64)
    lab2 = np.asarray(lab2, dtype=np.float64)
    L1, a1, b1 = lab1[..., 0], lab1[..., 1], lab1[..., 2]
    L2, a2, b2 = lab2[..., 0], lab2[..., 1], lab2[..., 2]

    # Chroma compensation of the a axis
    c_bar = (np.hypot(a1, b1) + np.hypot(a2, b2)) / 2
    c_bar7 = c_bar ** 7
    g = 0.5 * (1 - np.sqrt(c_bar7 / (c_bar7 + 25.0 ** 7)))
    a1p = (1 + g) * a1
    a2p = (1 + g) * a2

    c1p = np.hypot(a1p, b1)
    c2p = np.hypot(a2p, b2)
    h1p = np.degrees(np.arctan2(b1, a1p)) % 360
    h2p = np.degrees(np.arctan2(b2, a2p)) % 360

    chroma_product = c1p * c2p
    achromatic = chroma_product == 0

    delta_L = L2 - L1
    delta_C = c2p - c1p

    dh = h2p - h1p
    dh = np.where(dh > 180, dh - 360, dh)
    dh = np.where(dh < -180, dh + 360, dh)
    dh = np.where(achromatic, 0.0, dh)
    delta_H = 2 * np.sqrt(chroma_product) * np.sin(np.radians(dh / 2))

    L_bar = (L1 + L2) / 2
    c_bar_p = (c1p + c2p) / 2

    h_sum = h1p + h2p
    h_bar = np.where(
        np.abs(h1p - h2p) <= 180,
        h_sum / 2,
        np.where(h_sum < 360, (h_sum + 360) / 2, (h_sum - 360) / 2),
    )
    h_bar = np.where(achromatic, h_sum, h_bar)

    t = (1
         - 0.17 * np.cos(np.radians(h_bar - 30))
         + 0.24 * np.cos(np.radians(2 * h_bar))
         + 0.32 * np.cos(np.radians(3 * h_bar + 6))
         - 0.20 * np.cos(np.radians(4 * h_bar - 63)))

    delta_theta = 30 * np.exp(-(((h_bar - 275) / 25) ** 2))
    c_bar_p7 = c_bar_p ** 7
    r_c = 2 * np.sqrt(c_bar_p7 / (c_bar_p7 + 25.0 ** 7))
    s_l = 1 + (0.015 * (L_bar - 50) ** 2) / np.sqrt(20 + (L_bar - 50) ** 2)
    s_c = 1 + 0.045 * c_bar_p
    s_h = 1 + 0.015 * c_bar_p * t
    r_t = -np.sin(np.radians(2 * delta_theta)) * r_c

    l_term = delta_L / s_l
    c_term = delta_C / s_c
    h_term = delta_H / s_h

    squared = l_term ** 2 + c_term ** 2 + h_term ** 2 + r_t * c_term * h_term
    result = np.sqrt(np.maximum(squared, 0.0))
    return np.where(np.isfinite(result), result, MAX_DISTANCE)


def ciede2000(hex1: str, hex2: str) -> float:
    """
    Perceptual distance between two hex colors.

    Returns MAX_DISTANCE instead of raising when either hex is malformed,
    so nearest-neighbor callers can treat it as maximally distant.
    """
    try:
        lab1 = hex_to_lab(hex1)
        lab2 = hex_to_lab(hex2)
    except InvalidHex:
        return MAX_DISTANCE
    return float(delta_e_2000(lab1, lab2))
