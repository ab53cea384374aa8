"""
Shared utilities for the generation modules.

Contains image encoding helpers, content-type detection and atomic file writes.
"""

import io
import json
import math
import os
import tempfile
from pathlib import Path
from typing import Any

from PIL import Image

# Supported tile encodings, in lookup order
TILE_SUFFIXES = ("jpg", "png", "svg")

CONTENT_TYPES = {
  "jpg": "image/jpeg",
  "jpeg": "image/jpeg",
  "png": "image/png",
  "svg": "image/svg+xml",
}


# =============================================================================
# Image Encoding
# =============================================================================


def image_to_png_bytes(img: Image.Image) -> bytes:
  """Convert a PIL Image to PNG bytes."""
  buffer = io.BytesIO()
  img.save(buffer, format="PNG")
  return buffer.getvalue()


def image_to_jpeg_bytes(img: Image.Image, quality: int = 90) -> bytes:
  """Convert a PIL Image to JPEG bytes, flattening any alpha onto white."""
  if img.mode in ("RGBA", "LA", "P"):
    if img.mode == "P":
      img = img.convert("RGBA")
    rgb_image = Image.new("RGB", img.size, (255, 255, 255))
    rgb_image.paste(img, mask=img.split()[-1])
    img = rgb_image
  elif img.mode != "RGB":
    img = img.convert("RGB")
  buffer = io.BytesIO()
  img.save(buffer, format="JPEG", quality=quality)
  return buffer.getvalue()


def png_bytes_to_image(png_bytes: bytes) -> Image.Image:
  """Convert PNG (or any Pillow-readable) bytes to a PIL Image."""
  img = Image.open(io.BytesIO(png_bytes))
  img.load()
  return img


def hexagon_points(size: int) -> list[tuple[float, float]]:
  """Vertices of a flat-topped hexagon inscribed in a size x size square."""
  r = size / 2
  return [
    (r + r * math.cos(math.radians(angle)), r + r * math.sin(math.radians(angle)))
    for angle in range(0, 360, 60)
  ]


# =============================================================================
# Content Types
# =============================================================================


def content_type_for_suffix(suffix: str) -> str:
  """Content type for a file suffix like 'png' or '.jpg'."""
  return CONTENT_TYPES.get(suffix.lower().lstrip("."), "application/octet-stream")


def detect_image_suffix(data: bytes) -> str | None:
  """
  Detect the tile encoding from the leading bytes.

  Returns 'jpg', 'png', 'svg' or None for anything else.
  """
  if data.startswith(b"\xff\xd8\xff"):
    return "jpg"
  if data.startswith(b"\x89PNG\r\n\x1a\n"):
    return "png"
  head = data[:512].lstrip().lower()
  if head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in head):
    return "svg"
  return None


# =============================================================================
# Atomic Writes
# =============================================================================


def atomic_write_bytes(path: Path, data: bytes) -> None:
  """
  Write bytes so readers never see a partial file.

  The data is fully written to a temp file in the same directory, then moved
  over the destination with os.replace.
  """
  path.parent.mkdir(parents=True, exist_ok=True)
  fd, tmp_name = tempfile.mkstemp(
    dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
  )
  try:
    with os.fdopen(fd, "wb") as f:
      f.write(data)
    os.replace(tmp_name, path)
  except BaseException:
    Path(tmp_name).unlink(missing_ok=True)
    raise


def exclusive_write_bytes(path: Path, data: bytes) -> None:
  """
  Write bytes to a path that must not exist yet.

  The data is fully written to a temp file, then hard-linked into place, so
  the destination appears complete or not at all. Raises FileExistsError if
  the path is already taken.
  """
  path.parent.mkdir(parents=True, exist_ok=True)
  fd, tmp_name = tempfile.mkstemp(
    dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
  )
  try:
    with os.fdopen(fd, "wb") as f:
      f.write(data)
    os.link(tmp_name, path)
  finally:
    Path(tmp_name).unlink(missing_ok=True)


def atomic_write_json(path: Path, data: Any) -> None:
  """Serialize to JSON and write atomically."""
  atomic_write_bytes(path, json.dumps(data, indent=2).encode("utf-8"))
