"""Nearest color names."""

from __future__ import annotations

import pytest

from color_names import CSS_COLOR_NAMES, UNKNOWN_NAME, ColorNamer, name_color


@pytest.mark.parametrize("hex_value, expected", [
    ("#FF0000", "Red"),
    ("#ffffff", "White"),
    ("#000000", "Black"),
    ("#FE0101", "Red"),
])
def test_nearest_name(hex_value, expected):
    assert name_color(hex_value) == expected


def test_every_table_entry_names_itself_or_a_twin():
    namer = ColorNamer()
    by_hex = {}
    for name, hex_value in CSS_COLOR_NAMES:
        by_hex.setdefault(hex_value.upper(), set()).add(name)
    for name, hex_value in CSS_COLOR_NAMES:
        assert namer.name(hex_value) in by_hex[hex_value.upper()]


@pytest.mark.parametrize("value", ["", "#12345", "nope", None])
def test_invalid_colors_are_unknown(value):
    assert name_color(value) == UNKNOWN_NAME


def test_custom_table():
    namer = ColorNamer([("Dark", "#101010"), ("Light", "#F0F0F0")])
    assert namer.names_for(["#000000", "#FFFFFF", "bad"]) == ["Dark", "Light", UNKNOWN_NAME]


def test_empty_table_rejected():
    with pytest.raises(ValueError):
        ColorNamer([])
