"""Tests for image_ops.py"""

import subprocess
from pathlib import Path

import pytest
from conftest import make_jpeg, make_png, open_image

from hexworld.generation.image_ops import (
  ImageOpsError,
  MagickImageOps,
  PillowImageOps,
  fit_within,
  get_image_ops,
)

# =============================================================================
# Pillow Backend
# =============================================================================


class TestPillowImageOps:
  ops = PillowImageOps()

  def test_blank_canvas(self) -> None:
    img = open_image(self.ops.blank_canvas(32, 16, "white"))
    assert img.size == (32, 16)
    assert img.getpixel((5, 5)) == (255, 255, 255, 255)

  def test_resize_keeps_aspect(self) -> None:
    data = self.ops.resize(make_png((200, 100)), 100, 100)
    assert self.ops.size(data) == (100, 50)

  def test_resize_upscales(self) -> None:
    assert self.ops.size(self.ops.resize(make_png((10, 10)), 40, 40)) == (40, 40)

  def test_crop_rect(self) -> None:
    base = self.ops.blank_canvas(100, 100, "black")
    red = make_png((10, 10), (255, 0, 0, 255))
    composed = self.ops.composite_over(base, red, 20, 30)
    cropped = open_image(self.ops.crop_rect(composed, 20, 30, 10, 10))
    assert cropped.size == (10, 10)
    assert cropped.getpixel((5, 5)) == (255, 0, 0, 255)

  def test_composite_negative_offset_is_clipped(self) -> None:
    base = self.ops.blank_canvas(20, 20, "white")
    overlay = make_png((10, 10), (0, 0, 255, 255))
    img = open_image(self.ops.composite_over(base, overlay, -5, -5))
    assert img.getpixel((2, 2)) == (0, 0, 255, 255)
    assert img.getpixel((6, 6)) == (255, 255, 255, 255)

  def test_composite_respects_transparency(self) -> None:
    base = self.ops.blank_canvas(10, 10, "white")
    clear = make_png((10, 10), (0, 0, 0, 0))
    img = open_image(self.ops.composite_over(base, clear, 0, 0))
    assert img.getpixel((5, 5)) == (255, 255, 255, 255)

  def test_mask_alpha_scales_mask(self) -> None:
    mask = make_png((4, 4), (0, 0, 0, 255))
    img = open_image(self.ops.mask_alpha(make_png((20, 20)), mask))
    assert img.size == (20, 20)
    assert img.getpixel((10, 10))[3] == 0

  def test_convert_to_jpeg(self) -> None:
    data = self.ops.convert(make_png((8, 8), (10, 20, 30, 0)), "jpeg")
    assert data.startswith(b"\xff\xd8\xff")
    # transparent pixels flatten onto white
    assert open_image(data).getpixel((4, 4))[0] > 240

  def test_convert_to_png(self) -> None:
    assert self.ops.convert(make_jpeg(), "png").startswith(b"\x89PNG")

  def test_convert_unknown_format(self) -> None:
    with pytest.raises(ValueError):
      self.ops.convert(make_png(), "tiff")

  def test_undecodable_input(self) -> None:
    with pytest.raises(ImageOpsError):
      self.ops.size(b"<svg xmlns='http://www.w3.org/2000/svg'></svg>")


def test_fit_within() -> None:
  assert fit_within(512, 256, 100, 100) == (100, 50)
  assert fit_within(100, 400, 100, 100) == (25, 100)


# =============================================================================
# ImageMagick Backend
# =============================================================================


class TestMagickImageOps:
  def test_resize_command(self, tmp_path, monkeypatch) -> None:
    commands = []

    def fake_run(cmd, **kwargs):
      commands.append(cmd)
      Path(cmd[-1].removeprefix("PNG32:")).write_bytes(b"resized")
      return subprocess.CompletedProcess(cmd, 0, b"", b"")

    monkeypatch.setattr(subprocess, "run", fake_run)
    ops = MagickImageOps(temp_root=tmp_path)
    assert ops.resize(make_png(), 100, 100) == b"resized"
    assert commands[0][0] == "magick"
    assert commands[0][2:4] == ["-resize", "100x100"]
    # per-call directories are removed
    assert list(tmp_path.iterdir()) == []

  def test_composite_geometry_signs(self, tmp_path, monkeypatch) -> None:
    commands = []

    def fake_run(cmd, **kwargs):
      commands.append(cmd)
      Path(cmd[-1].removeprefix("PNG32:")).write_bytes(b"out")
      return subprocess.CompletedProcess(cmd, 0, b"", b"")

    monkeypatch.setattr(subprocess, "run", fake_run)
    MagickImageOps(temp_root=tmp_path).composite_over(make_png(), make_png(), -404, 36)
    assert "-404+36" in commands[0]

  def test_nonzero_exit_raises(self, tmp_path, monkeypatch) -> None:
    def fake_run(cmd, **kwargs):
      return subprocess.CompletedProcess(cmd, 1, b"", b"magick: no decode delegate")

    monkeypatch.setattr(subprocess, "run", fake_run)
    with pytest.raises(ImageOpsError, match="no decode delegate"):
      MagickImageOps(temp_root=tmp_path).crop_rect(make_png(), 0, 0, 10, 10)

  def test_missing_executable_raises(self, tmp_path) -> None:
    ops = MagickImageOps(executable="definitely-not-magick", temp_root=tmp_path)
    with pytest.raises(ImageOpsError):
      ops.blank_canvas(10, 10)


class TestGetImageOps:
  def test_pillow_default(self, config) -> None:
    assert isinstance(get_image_ops(config), PillowImageOps)

  def test_magick(self, config) -> None:
    config.image_backend = "magick"
    assert isinstance(get_image_ops(config), MagickImageOps)

  def test_unknown(self, config) -> None:
    config.image_backend = "gimp"
    with pytest.raises(ValueError):
      get_image_ops(config)
