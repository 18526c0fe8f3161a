"""Hex parsing, HSL/LAB conversions and CIEDE2000."""

from __future__ import annotations

import numpy as np
import pytest

from color_errors import InvalidHex
from colorspace import (
    MAX_DISTANCE,
    RGBColor,
    ciede2000,
    delta_e_2000,
    hex_to_lab,
    hex_to_rgb,
    hsl_to_rgb,
    is_valid_hex,
    normalize_hex,
    rgb_to_hex,
    rgb_to_hsl,
    rgb_to_lab,
)


def test_red_hex_round_trip():
    assert hex_to_rgb("#FF0000") == RGBColor(255, 0, 0)
    assert rgb_to_hex(255, 0, 0) == "#FF0000"


def test_short_lowercase_and_bare_hex():
    assert hex_to_rgb("#f00") == (255, 0, 0)
    assert hex_to_rgb("00ff80") == (0, 255, 128)
    assert normalize_hex("#abc") == "#AABBCC"


@pytest.mark.parametrize("value", ["", "#", "#12345", "#1234567", "#GG0000", "red", None, 255])
def test_invalid_hex_raises(value):
    with pytest.raises(InvalidHex):
        hex_to_rgb(value)
    assert not is_valid_hex(value)


def test_invalid_hex_is_a_value_error():
    with pytest.raises(ValueError):
        hex_to_rgb("#zzzzzz")


def test_random_colors_round_trip_through_hex():
    rng = np.random.RandomState(0)
    for r, g, b in rng.randint(0, 256, size=(200, 3)):
        assert hex_to_rgb(rgb_to_hex(r, g, b)) == (r, g, b)


def test_rgb_to_hex_rounds_and_clamps():
    assert rgb_to_hex(254.5, 0.4, -3) == "#FF0000"
    assert rgb_to_hex(300, 12.6, 0) == "#FF0D00"


def test_hsl_of_primaries():
    red = rgb_to_hsl(255, 0, 0)
    assert red.h == pytest.approx(0.0)
    assert red.s == pytest.approx(1.0)
    assert red.l == pytest.approx(0.5)

    blue = rgb_to_hsl(0, 0, 255)
    assert blue.h == pytest.approx(240.0)

    gray = rgb_to_hsl(128, 128, 128)
    assert gray.s == 0.0


def test_hsl_round_trip_stays_close():
    rng = np.random.RandomState(1)
    for r, g, b in rng.randint(0, 256, size=(200, 3)):
        back = hsl_to_rgb(*rgb_to_hsl(r, g, b))
        assert all(abs(int(x) - int(y)) <= 1 for x, y in zip(back, (r, g, b)))


def test_lab_reference_points():
    white = hex_to_lab("#FFFFFF")
    assert white[0] == pytest.approx(100.0, abs=0.1)
    assert abs(white[1]) < 0.1 and abs(white[2]) < 0.1

    black = hex_to_lab("#000000")
    assert black == pytest.approx([0.0, 0.0, 0.0], abs=1e-6)

    red = hex_to_lab("#FF0000")
    assert red == pytest.approx([53.24, 80.09, 67.20], abs=0.1)


def test_rgb_to_lab_keeps_shape():
    image = np.zeros((4, 5, 3), dtype=np.uint8)
    assert rgb_to_lab(image).shape == (4, 5, 3)


# =============================================================================
# CIEDE2000
# =============================================================================

def test_delta_e_matches_published_pairs():
    lab1 = np.array([
        [50.0, 2.6772, -79.7751],
        [50.0, 0.0, 0.0],
        [50.0, 2.5, 0.0],
    ])
    lab2 = np.array([
        [50.0, 0.0, -82.7485],
        [50.0, -1.0, 2.0],
        [73.0, 25.0, -18.0],
    ])
    expected = [2.0425, 2.3669, 27.1492]
    assert delta_e_2000(lab1, lab2) == pytest.approx(expected, abs=1e-4)


def test_delta_e_is_symmetric_and_zero_on_identity():
    rng = np.random.RandomState(2)
    colors = rng.randint(0, 256, size=(50, 3))
    labs = rgb_to_lab(colors)
    other = labs[::-1]
    assert np.allclose(delta_e_2000(labs, labs), 0.0)
    assert np.allclose(delta_e_2000(labs, other), delta_e_2000(other, labs))
    assert np.all(delta_e_2000(labs, other) >= 0)


def test_ciede2000_identity_and_sentinel():
    assert ciede2000("#3366CC", "#3366cc") == pytest.approx(0.0)
    assert ciede2000("#3366CC", "nope") == MAX_DISTANCE
    assert ciede2000("", "#000000") == MAX_DISTANCE


def test_ciede2000_orders_by_perceived_difference():
    assert ciede2000("#FF0000", "#FE0000") < ciede2000("#FF0000", "#00FF00")
