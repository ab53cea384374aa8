"""Shared fixtures for the hexworld tests."""

import io
from typing import Any

import pytest
import requests
from PIL import Image

from hexworld.generation.config import WorldConfig
from hexworld.generation.hex_grid import HexCoord
from hexworld.generation.provider import InpaintingProvider
from hexworld.generation.tile_store import TileStore


def make_png(size: tuple[int, int] = (64, 64), color=(200, 60, 60, 255)) -> bytes:
  img = Image.new("RGBA", size, color)
  buffer = io.BytesIO()
  img.save(buffer, format="PNG")
  return buffer.getvalue()


def make_jpeg(size: tuple[int, int] = (64, 64), color=(60, 120, 200)) -> bytes:
  img = Image.new("RGB", size, color)
  buffer = io.BytesIO()
  img.save(buffer, format="JPEG")
  return buffer.getvalue()


def open_image(data: bytes) -> Image.Image:
  img = Image.open(io.BytesIO(data))
  img.load()
  return img


class FakeClock:
  """Manually advanced clock for time-dependent ledger behavior."""

  def __init__(self, now: float = 1_700_000_000.0):
    self.now = now

  def __call__(self) -> float:
    return self.now

  def advance(self, seconds: float) -> None:
    self.now += seconds


class FakeProvider(InpaintingProvider):
  """Inpainting provider that returns a solid canvas, or fails on demand."""

  def __init__(self, canvas_size: int = 512, fail_with: Exception | None = None):
    self.canvas_size = canvas_size
    self.fail_with = fail_with
    self.calls: list[dict[str, Any]] = []

  def edit(self, prompt, image_jpeg, mask_jpeg, coord=None) -> dict[str, Any]:
    self.calls.append(
      {"prompt": prompt, "image": image_jpeg, "mask": mask_jpeg, "coord": coord}
    )
    if self.fail_with is not None:
      raise self.fail_with
    return {"data": [{"url": "https://images.example.test/generated.png"}]}

  def result_url(self, response: dict[str, Any]) -> str:
    return response["data"][0]["url"]

  def download(self, url: str) -> bytes:
    return make_png((self.canvas_size, self.canvas_size), (30, 160, 90, 255))


@pytest.fixture
def config(tmp_path) -> WorldConfig:
  return WorldConfig(data_dir=tmp_path / "data")


@pytest.fixture
def store(config) -> TileStore:
  return TileStore.from_config(config)


@pytest.fixture
def clock() -> FakeClock:
  return FakeClock()


@pytest.fixture
def seed_tile(store):
  """Write a plain JPEG tile at a coordinate, bypassing generation."""

  def _seed(x: int, y: int) -> HexCoord:
    coord = HexCoord(x, y)
    store.images_dir.mkdir(parents=True, exist_ok=True)
    (store.images_dir / f"{coord.key}.jpg").write_bytes(make_jpeg((440, 440)))
    return coord

  return _seed


@pytest.fixture
def http_error() -> requests.HTTPError:
  return requests.HTTPError("502 Server Error: Bad Gateway")
