"""Spatial location of palette colors."""

from __future__ import annotations

import itertools
import math

import numpy as np
import pytest

from locate_colors import (
    build_density_grids,
    closest_pair_distance,
    fallback_position,
    grid_positions,
    locate_colors,
    separate_positions,
)
from palette_config import LocatorSettings
from pixel_buffer import PixelBuffer


def _quadrant_image(color, size=40, background=(255, 255, 255)) -> PixelBuffer:
    pixels = np.zeros((size, size, 3), dtype=np.uint8)
    pixels[:, :] = background
    pixels[:size // 2, :size // 2] = color
    return PixelBuffer.from_array(pixels)


def _min_pairwise_distance(points) -> float:
    return min(math.dist(a, b) for a, b in itertools.combinations(points, 2))


def test_blue_in_top_left_quadrant():
    [position] = locate_colors(_quadrant_image((0, 0, 255)), ["#0000FF"])
    assert position.hex == "#0000FF"
    assert position.x < 0.5 and position.y < 0.5


def test_two_halves_are_found_on_their_side():
    pixels = np.zeros((40, 80, 3), dtype=np.uint8)
    pixels[:, :40] = (220, 30, 30)
    pixels[:, 40:] = (30, 200, 60)
    red, green = locate_colors(PixelBuffer.from_array(pixels), ["#DC1E1E", "#1EC83C"])
    assert red.x < 0.5
    assert green.x > 0.5


def test_large_image_is_downscaled_first():
    [position] = locate_colors(_quadrant_image((0, 0, 255), size=600), ["#0000ff"])
    assert position.hex == "#0000FF"
    assert position.x < 0.5 and position.y < 0.5


def test_unmatched_color_uses_nearest_pixel():
    pixels = np.full((20, 20, 3), 255, dtype=np.uint8)
    [position] = locate_colors(PixelBuffer.from_array(pixels), ["#000000"])
    assert position.x == pytest.approx(0.5 / 20)
    assert position.y == pytest.approx(0.5 / 20)


def test_invalid_color_falls_back():
    [position] = locate_colors(_quadrant_image((0, 0, 255)), ["not-a-color"])
    assert position.hex == "not-a-color"
    assert (position.x, position.y) == fallback_position(0)


def test_single_channel_image_falls_back_for_every_color():
    gray = PixelBuffer.from_array(np.zeros((20, 20), dtype=np.uint8))
    positions = locate_colors(gray, ["#FF0000", "#00FF00", "#0000FF"])
    assert [(p.x, p.y) for p in positions] == [fallback_position(i) for i in range(3)]


def test_empty_image_falls_back():
    empty = PixelBuffer.from_array(np.zeros((0, 0, 3), dtype=np.uint8))
    positions = locate_colors(empty, ["#FF0000", "#00FF00"])
    assert len(positions) == 2


def test_no_colors_no_positions():
    assert locate_colors(_quadrant_image((0, 0, 255)), []) == []


def test_one_position_per_color_in_order():
    colors = ["#0000FF", "#FFFFFF", "#FF0000", "bad", "#00FF00"]
    positions = locate_colors(_quadrant_image((0, 0, 255)), colors)
    assert [p.hex for p in positions] == ["#0000FF", "#FFFFFF", "#FF0000", "bad", "#00FF00"]
    for p in positions:
        assert 0.0 <= p.x <= 1.0 and 0.0 <= p.y <= 1.0


def test_markers_are_separated():
    rng = np.random.RandomState(5)
    pixels = rng.randint(0, 256, size=(50, 50, 3)).astype(np.uint8)
    colors = ["#808080", "#7F7F7F", "#818181", "#808081", "#FF0000"]
    positions = locate_colors(PixelBuffer.from_array(pixels), colors)
    points = [(p.x, p.y) for p in positions]
    assert _min_pairwise_distance(points) >= 0.08 - 1e-3


@pytest.mark.parametrize("start", [(0.5, 0.5), (0.02, 0.02), (0.98, 0.5)])
def test_separation_of_coincident_points(start):
    points = separate_positions([start] * 5)
    assert _min_pairwise_distance(points) >= 0.08 - 1e-3
    for x, y in points:
        assert 0.02 <= x <= 0.98 and 0.02 <= y <= 0.98


def test_separation_leaves_distant_points_alone():
    points = [(0.1, 0.1), (0.9, 0.9)]
    assert separate_positions(points) == points


def test_density_grid_shape_and_votes():
    rgb = np.zeros((25, 15, 3), dtype=np.uint8)
    rgb[:10, :10] = (255, 0, 0)
    grids = build_density_grids(rgb, np.array([[255.0, 0.0, 0.0]]), 80.0, 10)
    assert grids.shape == (1, 3, 2)
    # Exact matches vote 1 each
    assert grids[0, 0, 0] == pytest.approx(100.0)
    assert grids[0].sum() == pytest.approx(100.0)


def test_custom_settings_are_used():
    settings = LocatorSettings(min_separation=0.3)
    positions = locate_colors(_quadrant_image((0, 0, 255)), ["#0000FF", "#0000FE"], settings)
    assert math.dist((positions[0].x, positions[0].y),
                     (positions[1].x, positions[1].y)) >= 0.3 - 1e-3


def _assert_separated_in_frame(points, separation=0.08, margin=0.02):
    assert _min_pairwise_distance(points) >= separation - 1e-6
    for x, y in points:
        assert margin - 1e-9 <= x <= 1 - margin + 1e-9
        assert margin - 1e-9 <= y <= 1 - margin + 1e-9


@pytest.mark.parametrize("count", [10, 15, 20, 40])
@pytest.mark.parametrize("start", [(0.02, 0.02), (0.5, 0.5), (0.98, 0.98)])
def test_many_coincident_markers_are_fully_separated(count, start):
    _assert_separated_in_frame(separate_positions([start] * count))


def test_clustered_markers_are_fully_separated():
    rng = np.random.RandomState(11)
    points = [tuple(p) for p in rng.uniform(0.4, 0.45, size=(20, 2))]
    _assert_separated_in_frame(separate_positions(points))


def test_repeated_color_in_small_corner_block():
    pixels = np.full((300, 300, 3), 255, dtype=np.uint8)
    pixels[:20, :20] = (0, 0, 255)
    positions = locate_colors(PixelBuffer.from_array(pixels), ["#0000FF"] * 12)
    assert len(positions) == 12
    _assert_separated_in_frame([(p.x, p.y) for p in positions])


def test_grid_positions_spacing_and_fit():
    grid = grid_positions((0.02, 0.02), 10, 0.08)
    assert grid.shape == (10, 2)
    assert closest_pair_distance(grid) == pytest.approx(0.08)
    assert grid.min() >= 0.02 - 1e-9
    assert grid_positions((0.5, 0.5), 400, 0.08) is None


def test_closest_pair_distance():
    assert closest_pair_distance([(0.5, 0.5)]) == math.inf
    assert closest_pair_distance([(0.0, 0.0), (0.3, 0.4), (1.0, 1.0)]) == pytest.approx(0.5)


def test_transparent_pixels_do_not_vote():
    pixels = np.zeros((40, 40, 4), dtype=np.uint8)
    pixels[:, :] = (0, 0, 255, 0)
    pixels[20:, 20:, 3] = 255
    [position] = locate_colors(PixelBuffer.from_array(pixels), ["#0000FF"])
    assert position.x > 0.5 and position.y > 0.5


def test_fully_transparent_image_falls_back():
    pixels = np.zeros((40, 40, 4), dtype=np.uint8)
    pixels[:, :] = (0, 0, 255, 0)
    [position] = locate_colors(PixelBuffer.from_array(pixels), ["#0000FF"])
    assert (position.x, position.y) == fallback_position(0)


def test_min_alpha_setting_is_used():
    pixels = np.zeros((40, 40, 4), dtype=np.uint8)
    pixels[:, :] = (0, 0, 255, 100)
    pixels[20:, 20:, 3] = 255
    settings = LocatorSettings(min_alpha=50)
    [position] = locate_colors(PixelBuffer.from_array(pixels), ["#0000FF"], settings)
    # Every pixel is visible, so the first densest cell wins
    assert position.x < 0.5 and position.y < 0.5
