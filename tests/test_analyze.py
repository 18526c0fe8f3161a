"""
Pipeline orchestration and the single-image CLI.

Synthetic striped images keep the expected palette obvious.
"""

from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

import analyze
from analyze import ColorPipeline, render
from buckets import SLOT_NAMES
from palette_config import PipelineConfig, SwatchSettings
from pixel_buffer import PixelBuffer


STRIPES = [(220, 40, 40), (40, 60, 200), (240, 220, 60)]


def _striped_array(colors=STRIPES, size=60) -> np.ndarray:
    pixels = np.zeros((size, size, 3), dtype=np.uint8)
    width = size // len(colors)
    for i, color in enumerate(colors):
        pixels[:, i * width:(i + 1) * width] = color
    return pixels


def _solid(color, size=16) -> PixelBuffer:
    pixels = np.zeros((size, size, 3), dtype=np.uint8)
    pixels[:, :] = color
    return PixelBuffer.from_array(pixels)


def _save(path: Path, array: np.ndarray) -> Path:
    Image.fromarray(array).save(path)
    return path


# =============================================================================
# Pipeline
# =============================================================================

def test_reextract_combines_every_stage():
    pipeline = ColorPipeline(PipelineConfig(swatches=SwatchSettings(strategy="quantized")))
    result = pipeline.reextract(PixelBuffer.from_array(_striped_array()))

    assert set(result.colors) == {"#DC2828", "#283CC8", "#F0DC3C"}
    assert sum(result.weights) == pytest.approx(100.0, abs=0.5)
    assert len(result.names) == len(result.colors)
    assert [p.hex for p in result.positions] == result.colors
    assert list(result.buckets) == list(SLOT_NAMES)
    assert result.buckets["fourth_color"] is None

    by_color = dict(zip(result.colors, result.positions))
    assert by_color["#DC2828"].x < by_color["#283CC8"].x < by_color["#F0DC3C"].x


@pytest.mark.parametrize("count", [0, -1])
def test_non_positive_count_is_rejected(count):
    pipeline = ColorPipeline()
    pixels = PixelBuffer.from_array(_striped_array())
    with pytest.raises(ValueError):
        pipeline.extract_palette(pixels, count)
    with pytest.raises(ValueError):
        pipeline.reextract(pixels, desired_count=count)


def test_explicit_count_overrides_config():
    pipeline = ColorPipeline(PipelineConfig(desired_count=5))
    palette = pipeline.extract_palette(PixelBuffer.from_array(_striped_array()), 1)
    assert len(palette.colors) == 1


def test_reextract_to_dict_is_json_serializable():
    result = ColorPipeline().reextract(PixelBuffer.from_array(_striped_array()))
    data = json.loads(json.dumps(result.to_dict()))
    assert set(data) == {"colors", "weights", "names", "positions", "buckets",
                         "accents", "accent_names"}
    assert all(set(p) == {"hex", "x", "y"} for p in data["positions"])


def test_module_level_helpers():
    assert analyze.classify_bucket("#FF0000") == "red"
    assert analyze.classify_bucket("#FF0000", "ciede2000") == "red"
    assert analyze.classify_bucket("not hex") is None

    palette = analyze.extract_palette(_solid((255, 0, 0)), 5)
    assert palette["colors"][0] == "#FF0000"

    [position] = analyze.locate_colors(_solid((0, 0, 255)), ["#0000FF"])
    assert set(position) == {"hex", "x", "y"}


def test_simple_bucket_table_is_used_for_slots():
    pipeline = ColorPipeline(PipelineConfig().with_overrides(buckets="simple"))
    assert pipeline.classify_bucket("#8E8E93") == "gray"
    assert pipeline.matches_buckets(["gray", None], "#8E8E93")
    assert not pipeline.matches_buckets(["gray"], "#FF0000")


def test_video_palette_concatenates_frames_in_order():
    frames = [_solid((255, 0, 0)), _solid((0, 255, 0)), _solid((0, 0, 255))]
    palette = ColorPipeline().extract_video_palette(frames)
    assert palette.preview_colors == ["#FF0000", "#00FF00", "#0000FF"]
    assert palette.base_colors == palette.preview_colors
    assert palette.frames_processed == 3


def test_video_palette_caps_base_and_skips_bad_frames():
    gray = PixelBuffer.from_array(np.zeros((8, 8), dtype=np.uint8))
    striped = PixelBuffer.from_array(_striped_array())
    palette = ColorPipeline().extract_video_palette([striped, gray, striped])

    assert palette.frames_processed == 2
    assert len(palette.preview_colors) == 6
    assert palette.base_colors == palette.preview_colors[:5]


def test_render_report():
    result = ColorPipeline().reextract(PixelBuffer.from_array(_striped_array()))
    text = render(result)
    assert text.startswith(f"Palette ({len(result.colors)} colors):")
    for hex_value in result.colors:
        assert hex_value in text


def test_render_empty_result():
    empty = PixelBuffer.from_array(np.zeros((0, 0, 3), dtype=np.uint8))
    assert render(ColorPipeline().reextract(empty)) == "No colors found."


def test_render_swatch_image(tmp_path):
    pixels = PixelBuffer.from_array(_striped_array())
    result = ColorPipeline().reextract(pixels)
    output = tmp_path / "swatches.png"
    analyze.render_swatch_image(pixels, result, str(output))

    with Image.open(output) as img:
        assert img.width == 400
        assert img.height > 400


# =============================================================================
# CLI
# =============================================================================

def test_cli_classify(capsys):
    analyze.main(["--classify", "#FF0000"])
    assert capsys.readouterr().out.strip() == "red"

    analyze.main(["--classify", "#8E8E93", "--buckets", "simple"])
    assert capsys.readouterr().out.strip() == "gray"


def test_cli_classify_invalid(capsys):
    with pytest.raises(SystemExit) as exc:
        analyze.main(["--classify", "zzz"])
    assert exc.value.code == 1
    assert "invalid hex" in capsys.readouterr().err


def test_cli_json(tmp_path, capsys):
    image = _save(tmp_path / "stripes.png", _striped_array())
    analyze.main(["-i", str(image), "--json", "--strategy", "quantized", "-n", "3"])

    data = json.loads(capsys.readouterr().out)
    assert set(data["colors"]) == {"#DC2828", "#283CC8", "#F0DC3C"}
    assert len(data["positions"]) == 3


def test_cli_report_and_output(tmp_path, capsys):
    image = _save(tmp_path / "stripes.png", _striped_array())
    analyze.main(["-i", str(image), "-o"])

    out = capsys.readouterr().out
    assert out.startswith("Palette (")
    assert (tmp_path / "stripes-palette.png").exists()


def test_cli_config_file(tmp_path, capsys):
    image = _save(tmp_path / "stripes.png", _striped_array())
    config = tmp_path / "config.json"
    config.write_text(json.dumps({"desired_count": 2, "swatches": {"strategy": "kmeans"}}))

    analyze.main(["-i", str(image), "--json", "-c", str(config)])
    data = json.loads(capsys.readouterr().out)
    assert len(data["colors"]) == 2


def test_cli_bad_config(tmp_path, capsys):
    config = tmp_path / "config.json"
    config.write_text(json.dumps({"unknown": 1}))
    with pytest.raises(SystemExit) as exc:
        analyze.main(["--classify", "#FF0000", "-c", str(config)])
    assert exc.value.code == 2


def test_cli_missing_image(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc:
        analyze.main(["-i", str(tmp_path / "missing.png")])
    assert exc.value.code == 1
    assert "not found" in capsys.readouterr().err
