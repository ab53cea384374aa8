"""
Coordinate-addressed tile storage.

Layout under the data directory:
  images/{x}_{y}.{jpg|png|svg}      - full tile (user supplied or generated)
  thumbnails/{x}_{y}.{jpg|png|svg}  - small preview, derived on demand
  metadata/{x}_{y}.json             - {x, y, prompt, createdAt, username}
  templates/                        - biome templates and legacy fallback
  noise/                            - noisier biome templates for compositing

A tile exists only when a full image exists. Reads never fail: resolution
walks an ordered chain of resolvers that ends in a synthesized placeholder.
The full image is claimed first with an exclusive create, so two writers can
never both store the same coordinate; the thumbnail and metadata follow.
Other writes are whole-file atomic replaces.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from PIL import Image, ImageColor, ImageDraw, ImageFont

from hexworld.generation.config import WorldConfig
from hexworld.generation.hex_grid import HexCoord
from hexworld.generation.image_ops import ImageOps, ImageOpsError, PillowImageOps
from hexworld.generation.shared import (
  TILE_SUFFIXES,
  atomic_write_bytes,
  atomic_write_json,
  content_type_for_suffix,
  detect_image_suffix,
  exclusive_write_bytes,
  hexagon_points,
  image_to_png_bytes,
)
from hexworld.generation.terrain import TerrainField, get_biome_template_path

logger = logging.getLogger(__name__)

LEGACY_TEMPLATE_STEM = "hexagon_template"
DEFAULT_BATCH_LIMIT = 500


class TileExistsError(Exception):
  """A tile already exists at the coordinate; tiles are never overwritten."""

  def __init__(self, coord: HexCoord):
    super().__init__(f"Tile already exists at {coord}")
    self.coord = coord


@dataclass
class TileMetadata:
  prompt: str
  created_at: str  # ISO 8601, UTC
  username: str | None = None

  @classmethod
  def now(cls, prompt: str, username: str | None = None) -> "TileMetadata":
    return cls(
      prompt=prompt,
      created_at=datetime.now(timezone.utc).isoformat(),
      username=username,
    )

  def to_dict(self, coord: HexCoord) -> dict[str, Any]:
    return {
      "x": coord.x,
      "y": coord.y,
      "prompt": self.prompt,
      "createdAt": self.created_at,
      "username": self.username,
    }

  @classmethod
  def from_dict(cls, data: dict[str, Any]) -> "TileMetadata":
    return cls(
      prompt=data.get("prompt", ""),
      created_at=data.get("createdAt", ""),
      username=data.get("username"),
    )


@dataclass
class ResolvedImage:
  data: bytes
  content_type: str
  source: str  # name of the resolver that produced it


# =============================================================================
# Resolver Chain
# =============================================================================


class TileResolver(ABC):
  """One step of the fallback chain. Returns None to defer to the next."""

  name = "resolver"

  @abstractmethod
  def resolve(self, store: "TileStore", coord: HexCoord) -> ResolvedImage | None:
    ...

  def _read(self, path: Path | None) -> ResolvedImage | None:
    if path is None:
      return None
    return ResolvedImage(
      data=path.read_bytes(),
      content_type=content_type_for_suffix(path.suffix),
      source=self.name,
    )


class StoredThumbnailResolver(TileResolver):
  name = "thumbnail"

  def resolve(self, store: "TileStore", coord: HexCoord) -> ResolvedImage | None:
    return self._read(store.find_thumbnail(coord))


class DerivedThumbnailResolver(TileResolver):
  """Builds a thumbnail from the full image and keeps it for next time."""

  name = "derived_thumbnail"

  def resolve(self, store: "TileStore", coord: HexCoord) -> ResolvedImage | None:
    source = store.image_path(coord)
    if source is None:
      return None
    data = store.derive_thumbnail(coord, source.read_bytes())
    if data is None:
      return None
    return ResolvedImage(data=data, content_type="image/jpeg", source=self.name)


class FullImageResolver(TileResolver):
  name = "image"

  def resolve(self, store: "TileStore", coord: HexCoord) -> ResolvedImage | None:
    return self._read(store.image_path(coord))


class BiomeTemplateResolver(TileResolver):
  """Biome template chosen from the terrain height at the coordinate."""

  name = "biome"

  def __init__(self, templates_dir: Path, name: str | None = None):
    self.templates_dir = templates_dir
    if name:
      self.name = name

  def resolve(self, store: "TileStore", coord: HexCoord) -> ResolvedImage | None:
    height = store.terrain.get_height_at(coord.x, coord.y)
    return self._read(get_biome_template_path(height, self.templates_dir))


class LegacyTemplateResolver(TileResolver):
  name = "legacy_template"

  def resolve(self, store: "TileStore", coord: HexCoord) -> ResolvedImage | None:
    for suffix in TILE_SUFFIXES:
      path = store.templates_dir / f"{LEGACY_TEMPLATE_STEM}.{suffix}"
      if path.exists():
        return self._read(path)
    return None


class PlaceholderResolver(TileResolver):
  """Bottom of the chain: a colored hexagon labeled with its coordinate."""

  name = "placeholder"

  def resolve(self, store: "TileStore", coord: HexCoord) -> ResolvedImage | None:
    data = render_placeholder(coord, store.placeholder_size)
    return ResolvedImage(data=data, content_type="image/png", source=self.name)


def placeholder_color(coord: HexCoord) -> tuple[int, ...]:
  hue = (coord.x * 137.5 + coord.y * 89.3) % 360
  return ImageColor.getrgb(f"hsl({hue:.1f}, 70%, 60%)")


def _load_label_font(size: int) -> ImageFont.ImageFont:
  try:
    return ImageFont.truetype("DejaVuSans.ttf", size)
  except OSError:
    return ImageFont.load_default()


def render_placeholder(coord: HexCoord, size: int) -> bytes:
  """Transparent PNG with a filled hexagon and an 'x,y' label."""
  img = Image.new("RGBA", (size, size), (0, 0, 0, 0))
  draw = ImageDraw.Draw(img)
  draw.polygon(
    hexagon_points(size), fill=placeholder_color(coord), outline=(255, 255, 255)
  )

  label = f"{coord.x},{coord.y}"
  font = _load_label_font(max(12, size // 8))
  left, top, right, bottom = draw.textbbox((0, 0), label, font=font)
  position = ((size - (right - left)) / 2, (size - (bottom - top)) / 2)
  draw.text(position, label, fill=(255, 255, 255), font=font)
  return image_to_png_bytes(img)


# =============================================================================
# Tile Store
# =============================================================================


class TileStore:
  def __init__(
    self,
    images_dir: Path,
    thumbnails_dir: Path,
    metadata_dir: Path,
    templates_dir: Path,
    noise_dir: Path | None = None,
    image_ops: ImageOps | None = None,
    terrain: TerrainField | None = None,
    thumbnail_size: int = 100,
    placeholder_size: int = 440,
  ):
    self.images_dir = Path(images_dir)
    self.thumbnails_dir = Path(thumbnails_dir)
    self.metadata_dir = Path(metadata_dir)
    self.templates_dir = Path(templates_dir)
    self.noise_dir = Path(noise_dir) if noise_dir else None
    self.image_ops = image_ops or PillowImageOps()
    self.terrain = terrain or TerrainField()
    self.thumbnail_size = thumbnail_size
    self.placeholder_size = placeholder_size

    fallbacks: list[TileResolver] = [
      BiomeTemplateResolver(self.templates_dir),
      LegacyTemplateResolver(),
      PlaceholderResolver(),
    ]
    self.thumbnail_chain: list[TileResolver] = [
      StoredThumbnailResolver(),
      DerivedThumbnailResolver(),
      FullImageResolver(),
      *fallbacks,
    ]
    self.full_chain: list[TileResolver] = [FullImageResolver(), *fallbacks]
    self.noise_chain: list[TileResolver] = list(self.full_chain)
    if self.noise_dir is not None:
      self.noise_chain.insert(1, BiomeTemplateResolver(self.noise_dir, name="noise"))

  @classmethod
  def from_config(
    cls, config: WorldConfig, image_ops: ImageOps | None = None
  ) -> "TileStore":
    return cls(
      images_dir=config.images_dir,
      thumbnails_dir=config.thumbnails_dir,
      metadata_dir=config.metadata_dir,
      templates_dir=config.templates_dir,
      noise_dir=config.noise_dir,
      image_ops=image_ops,
      terrain=TerrainField(seed=config.terrain_seed),
      thumbnail_size=config.thumbnail_size,
      placeholder_size=config.hex_size * 2,
    )

  # ===========================================================================
  # Paths
  # ===========================================================================

  @staticmethod
  def _find(directory: Path, coord: HexCoord) -> Path | None:
    for suffix in TILE_SUFFIXES:
      path = directory / f"{coord.key}.{suffix}"
      if path.exists():
        return path
    return None

  def image_path(self, coord: HexCoord) -> Path | None:
    """Path of the stored full image, or None if there is no tile."""
    return self._find(self.images_dir, coord)

  def find_thumbnail(self, coord: HexCoord) -> Path | None:
    return self._find(self.thumbnails_dir, coord)

  def thumbnail_path(self, coord: HexCoord) -> Path:
    """Where a derived thumbnail for the coordinate is written."""
    return self.thumbnails_dir / f"{coord.key}.jpg"

  def metadata_path(self, coord: HexCoord) -> Path:
    return self.metadata_dir / f"{coord.key}.json"

  def exists(self, coord: HexCoord) -> bool:
    """True if a stored image exists. Fallback renders do not count."""
    return self.image_path(coord) is not None

  # ===========================================================================
  # Reads
  # ===========================================================================

  def _can_decode(self, image: ResolvedImage, coord: HexCoord) -> bool:
    try:
      self.image_ops.size(image.data)
    except ImageOpsError as e:
      logger.warning(f"Skipping {image.source} for {coord}: not a raster image ({e})")
      return False
    return True

  def _run_chain(
    self, chain: list[TileResolver], coord: HexCoord, raster_only: bool = False
  ) -> ResolvedImage:
    for resolver in chain:
      result = resolver.resolve(self, coord)
      if result is None:
        continue
      if raster_only and not self._can_decode(result, coord):
        continue
      return result
    raise RuntimeError(f"No resolver produced an image for {coord}")

  def resolve(self, coord: HexCoord, want_thumbnail: bool = True) -> ResolvedImage:
    """
    Best available image for a coordinate.

    Args:
      coord: Tile coordinate
      want_thumbnail: Prefer the small preview (deriving it if needed)

    Returns:
      ResolvedImage; the placeholder guarantees a result for any coordinate.
    """
    chain = self.thumbnail_chain if want_thumbnail else self.full_chain
    return self._run_chain(chain, coord)

  def resolve_for_compositing(
    self, coord: HexCoord, use_noise: bool = False
  ) -> ResolvedImage:
    """
    Full-size image for the context canvas.

    With use_noise, a coordinate without a tile takes its biome template from
    the noise folder first. Images the raster backend cannot decode (SVG
    tiles, corrupt templates) are skipped in favor of the next resolver.
    """
    chain = self.noise_chain if use_noise else self.full_chain
    return self._run_chain(chain, coord, raster_only=True)

  def resolve_many(
    self,
    coords: list[HexCoord],
    want_thumbnail: bool = True,
    limit: int = DEFAULT_BATCH_LIMIT,
  ) -> list[tuple[HexCoord, ResolvedImage]]:
    if len(coords) > limit:
      raise ValueError(f"Too many coordinates requested (max {limit})")
    return [(c, self.resolve(c, want_thumbnail)) for c in coords]

  def metadata(self, coord: HexCoord) -> TileMetadata | None:
    path = self.metadata_path(coord)
    if not path.exists():
      return None
    try:
      with open(path, encoding="utf-8") as f:
        return TileMetadata.from_dict(json.load(f))
    except (OSError, json.JSONDecodeError) as e:
      logger.warning(f"Failed to read metadata for {coord}: {e}")
      return None

  # ===========================================================================
  # Writes
  # ===========================================================================

  def derive_thumbnail(self, coord: HexCoord, image_data: bytes) -> bytes | None:
    """Write a JPEG thumbnail for the coordinate; None if it cannot be made."""
    try:
      resized = self.image_ops.resize(
        image_data, self.thumbnail_size, self.thumbnail_size
      )
      data = self.image_ops.convert(resized, "jpeg")
    except ImageOpsError as e:
      logger.warning(f"Could not derive thumbnail for {coord}: {e}")
      return None
    atomic_write_bytes(self.thumbnail_path(coord), data)
    logger.info(f"Generated thumbnail for {coord}")
    return data

  def persist(
    self, coord: HexCoord, image_data: bytes, metadata: TileMetadata
  ) -> Path:
    """
    Store a generated tile with its thumbnail and metadata.

    The image is stored as JPEG. Raises TileExistsError if a tile is
    already present, and ImageOpsError if the image cannot be encoded.
    """
    if self.exists(coord):
      raise TileExistsError(coord)

    if detect_image_suffix(image_data) == "jpg":
      full = image_data
    else:
      full = self.image_ops.convert(image_data, "jpeg")
    thumbnail = self.image_ops.convert(
      self.image_ops.resize(full, self.thumbnail_size, self.thumbnail_size), "jpeg"
    )

    path = self._claim_image(coord, "jpg", full)
    atomic_write_bytes(self.thumbnail_path(coord), thumbnail)
    atomic_write_json(self.metadata_path(coord), metadata.to_dict(coord))
    logger.info(f"Saved tile {coord} to {path}")
    return path

  def _claim_image(self, coord: HexCoord, suffix: str, data: bytes) -> Path:
    """
    Store the full image only if no tile exists at the coordinate.

    Raises:
      TileExistsError: If the path is taken, or another request stored the
        tile under a different extension meanwhile
    """
    path = self.images_dir / f"{coord.key}.{suffix}"
    try:
      exclusive_write_bytes(path, data)
    except FileExistsError:
      raise TileExistsError(coord) from None

    for other in TILE_SUFFIXES:
      if other != suffix and (self.images_dir / f"{coord.key}.{other}").exists():
        path.unlink(missing_ok=True)
        raise TileExistsError(coord)
    return path

  def import_tile(
    self, coord: HexCoord, data: bytes, metadata: TileMetadata | None = None
  ) -> Path:
    """
    Store a user-supplied image as-is, under the extension matching its
    encoding (jpg, png or svg).
    """
    suffix = detect_image_suffix(data)
    if suffix is None:
      raise ValueError("Unsupported image data: expected JPEG, PNG or SVG")
    if self.exists(coord):
      raise TileExistsError(coord)

    path = self._claim_image(coord, suffix, data)
    if metadata is not None:
      atomic_write_json(self.metadata_path(coord), metadata.to_dict(coord))
    self.derive_thumbnail(coord, data)
    logger.info(f"Imported tile {coord} ({suffix})")
    return path
