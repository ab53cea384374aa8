"""Tests for the command-line scripts (argv is monkeypatched)"""

import sys

import pytest
from conftest import make_png, open_image

from hexworld.generation import (
  extract_center_hexagon,
  generate_coordinate_image,
  generate_thumbnails,
  import_tile,
)
from hexworld.generation.config import save_world_config
from hexworld.generation.hex_grid import HexCoord


@pytest.fixture
def config_path(config, tmp_path):
  path = tmp_path / "app_config.json"
  save_world_config(config, path)
  return path


def run(monkeypatch, module, *args) -> int:
  monkeypatch.setattr(sys, "argv", [module.__name__, *map(str, args)])
  return module.main()


# =============================================================================
# Thumbnails
# =============================================================================


class TestGenerateThumbnails:
  def test_creates_missing_only(self, store, seed_tile) -> None:
    seed_tile(0, 0)
    seed_tile(2, 0)
    assert generate_thumbnails.generate_all(store) == (2, 0)
    assert generate_thumbnails.generate_all(store) == (0, 0)
    assert generate_thumbnails.generate_all(store, force=True) == (2, 0)

  def test_skips_foreign_files(self, store, seed_tile) -> None:
    seed_tile(0, 0)
    (store.images_dir / "notes.png").write_bytes(make_png())
    (store.images_dir / "readme.txt").write_text("x")
    assert generate_thumbnails.generate_all(store) == (1, 0)

  def test_counts_failures(self, store) -> None:
    store.images_dir.mkdir(parents=True)
    (store.images_dir / "1_1.svg").write_bytes(b"<svg></svg>")
    assert generate_thumbnails.generate_all(store) == (0, 1)

  def test_single_file(self, monkeypatch, config_path, tmp_path) -> None:
    source = tmp_path / "big.png"
    source.write_bytes(make_png((300, 300)))
    output = tmp_path / "out" / "thumb.png"
    assert run(monkeypatch, generate_thumbnails, source, output, "--config", config_path) == 0
    assert open_image(output.read_bytes()).size == (100, 100)


# =============================================================================
# Canvas Tools
# =============================================================================


class TestCanvasScripts:
  def test_generate_coordinate_image(self, monkeypatch, config_path, tmp_path) -> None:
    output = tmp_path / "canvas.png"
    code = run(
      monkeypatch, generate_coordinate_image, 3, -1, output, "--extract", "--config", config_path
    )
    assert code == 0
    assert open_image(output.read_bytes()).size == (512, 512)
    assert (tmp_path / "canvas_mask.png").exists()
    assert open_image((tmp_path / "canvas_center.png").read_bytes()).size == (440, 440)

  def test_extract_center(self, monkeypatch, config_path, tmp_path) -> None:
    source = tmp_path / "generated.png"
    source.write_bytes(make_png((512, 512)))
    assert run(monkeypatch, extract_center_hexagon, source, "--config", config_path) == 0
    center = tmp_path / "generated_center.png"
    assert open_image(center.read_bytes()).size == (440, 440)

  def test_extract_center_missing_input(self, monkeypatch, config_path, tmp_path) -> None:
    code = run(monkeypatch, extract_center_hexagon, tmp_path / "nope.png", "--config", config_path)
    assert code == 1


# =============================================================================
# Import
# =============================================================================


class TestImportTile:
  def test_imports_with_metadata(self, monkeypatch, config_path, store, tmp_path) -> None:
    image = tmp_path / "drawn.png"
    image.write_bytes(make_png((200, 200)))
    code = run(
      monkeypatch, import_tile, 4, 2, image, "--prompt", "harbor", "--config", config_path
    )
    assert code == 0
    assert store.exists(HexCoord(4, 2))
    assert store.metadata(HexCoord(4, 2)).prompt == "harbor"

  def test_refuses_existing(self, monkeypatch, config_path, seed_tile, tmp_path) -> None:
    seed_tile(4, 2)
    image = tmp_path / "drawn.png"
    image.write_bytes(make_png())
    assert run(monkeypatch, import_tile, 4, 2, image, "--config", config_path) == 1
