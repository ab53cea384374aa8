"""
Raster operations used for compositing and thumbnails.

Every operation takes and returns encoded image bytes (PNG unless stated),
so the backend can be swapped without touching the compositor or the store:
- PillowImageOps: in-process, the default
- MagickImageOps: runs the ImageMagick `magick` executable; a non-zero exit
  is a hard failure
"""

import io
import logging
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from hexworld.generation.config import WorldConfig
from hexworld.generation.shared import (
  detect_image_suffix,
  image_to_jpeg_bytes,
  image_to_png_bytes,
)

logger = logging.getLogger(__name__)


class ImageOpsError(RuntimeError):
  """An image operation failed (undecodable input or tool failure)."""


def fit_within(width: int, height: int, box_w: int, box_h: int) -> tuple[int, int]:
  """Largest size with the same aspect ratio that fits inside the box."""
  scale = min(box_w / width, box_h / height)
  return max(1, round(width * scale)), max(1, round(height * scale))


class ImageOps(ABC):
  """Image operations on encoded bytes."""

  @abstractmethod
  def blank_canvas(self, width: int, height: int, color: str = "white") -> bytes:
    """Opaque RGBA canvas filled with a color."""

  @abstractmethod
  def size(self, data: bytes) -> tuple[int, int]:
    """(width, height) of an image."""

  @abstractmethod
  def resize(self, data: bytes, width: int, height: int) -> bytes:
    """Scale to fit inside width x height, keeping the aspect ratio."""

  @abstractmethod
  def crop_rect(self, data: bytes, x: int, y: int, width: int, height: int) -> bytes:
    """Cut out a rectangle."""

  @abstractmethod
  def composite_over(self, base: bytes, overlay: bytes, x: int, y: int) -> bytes:
    """Alpha-composite overlay onto base with its top-left at (x, y)."""

  @abstractmethod
  def mask_alpha(self, data: bytes, mask: bytes) -> bytes:
    """Replace the alpha channel with the mask's intensity (mask scaled to fit)."""

  @abstractmethod
  def convert(self, data: bytes, fmt: str, quality: int = 90) -> bytes:
    """Re-encode as 'png' or 'jpeg'. JPEG output is flattened onto white."""


# =============================================================================
# Pillow Backend
# =============================================================================


class PillowImageOps(ImageOps):
  def _open(self, data: bytes) -> Image.Image:
    try:
      img = Image.open(io.BytesIO(data))
      img.load()
    except (UnidentifiedImageError, OSError) as e:
      raise ImageOpsError(f"Cannot decode image: {e}") from e
    return img

  def _open_rgba(self, data: bytes) -> Image.Image:
    img = self._open(data)
    return img if img.mode == "RGBA" else img.convert("RGBA")

  def blank_canvas(self, width: int, height: int, color: str = "white") -> bytes:
    return image_to_png_bytes(Image.new("RGBA", (width, height), color))

  def size(self, data: bytes) -> tuple[int, int]:
    return self._open(data).size

  def resize(self, data: bytes, width: int, height: int) -> bytes:
    img = self._open_rgba(data)
    new_size = fit_within(img.width, img.height, width, height)
    return image_to_png_bytes(img.resize(new_size, Image.Resampling.LANCZOS))

  def crop_rect(self, data: bytes, x: int, y: int, width: int, height: int) -> bytes:
    img = self._open_rgba(data)
    return image_to_png_bytes(img.crop((x, y, x + width, y + height)))

  def composite_over(self, base: bytes, overlay: bytes, x: int, y: int) -> bytes:
    base_img = self._open_rgba(base)
    overlay_img = self._open_rgba(overlay)
    # paste() clips negative and out-of-bounds offsets
    layer = Image.new("RGBA", base_img.size, (0, 0, 0, 0))
    layer.paste(overlay_img, (x, y))
    return image_to_png_bytes(Image.alpha_composite(base_img, layer))

  def mask_alpha(self, data: bytes, mask: bytes) -> bytes:
    img = self._open_rgba(data)
    mask_img = self._open(mask).convert("L")
    if mask_img.size != img.size:
      mask_img = mask_img.resize(img.size, Image.Resampling.LANCZOS)
    img.putalpha(mask_img)
    return image_to_png_bytes(img)

  def convert(self, data: bytes, fmt: str, quality: int = 90) -> bytes:
    img = self._open(data)
    fmt = fmt.lower()
    if fmt in ("jpg", "jpeg"):
      return image_to_jpeg_bytes(img, quality=quality)
    if fmt == "png":
      return image_to_png_bytes(img)
    raise ValueError(f"Unsupported output format: {fmt}")


# =============================================================================
# ImageMagick Backend
# =============================================================================


class MagickImageOps(ImageOps):
  """
  Runs each operation as a `magick` subprocess.

  Inputs and outputs pass through a temporary directory that lives only for
  the duration of one operation.
  """

  def __init__(self, executable: str = "magick", temp_root: Path | None = None):
    self.executable = executable
    self.temp_root = temp_root

  def _run(self, args: list[str]) -> subprocess.CompletedProcess:
    cmd = [self.executable, *args]
    try:
      result = subprocess.run(cmd, capture_output=True, check=False)
    except OSError as e:
      raise ImageOpsError(f"Cannot run {self.executable}: {e}") from e
    if result.returncode != 0:
      stderr = result.stderr.decode(errors="replace").strip()
      raise ImageOpsError(
        f"{self.executable} exited with {result.returncode}: {stderr}"
      )
    return result

  def _workspace(self) -> tempfile.TemporaryDirectory:
    if self.temp_root is not None:
      self.temp_root.mkdir(parents=True, exist_ok=True)
    return tempfile.TemporaryDirectory(prefix="magick_", dir=self.temp_root)

  @staticmethod
  def _write_input(work: Path, name: str, data: bytes) -> Path:
    suffix = detect_image_suffix(data) or "png"
    path = work / f"{name}.{suffix}"
    path.write_bytes(data)
    return path

  def blank_canvas(self, width: int, height: int, color: str = "white") -> bytes:
    with self._workspace() as tmp:
      out = Path(tmp) / "canvas.png"
      self._run(["-size", f"{width}x{height}", f"xc:{color}", f"PNG32:{out}"])
      return out.read_bytes()

  def size(self, data: bytes) -> tuple[int, int]:
    with self._workspace() as tmp:
      src = self._write_input(Path(tmp), "input", data)
      result = self._run(["identify", "-format", "%w %h", str(src)])
      w, h = result.stdout.decode().split()[:2]
      return int(w), int(h)

  def resize(self, data: bytes, width: int, height: int) -> bytes:
    with self._workspace() as tmp:
      src = self._write_input(Path(tmp), "input", data)
      out = Path(tmp) / "resized.png"
      self._run([str(src), "-resize", f"{width}x{height}", f"PNG32:{out}"])
      return out.read_bytes()

  def crop_rect(self, data: bytes, x: int, y: int, width: int, height: int) -> bytes:
    with self._workspace() as tmp:
      src = self._write_input(Path(tmp), "input", data)
      out = Path(tmp) / "cropped.png"
      self._run(
        [str(src), "-crop", f"{width}x{height}{x:+d}{y:+d}", "+repage", f"PNG32:{out}"]
      )
      return out.read_bytes()

  def composite_over(self, base: bytes, overlay: bytes, x: int, y: int) -> bytes:
    with self._workspace() as tmp:
      base_path = self._write_input(Path(tmp), "base", base)
      overlay_path = self._write_input(Path(tmp), "overlay", overlay)
      out = Path(tmp) / "composite.png"
      self._run(
        [
          str(base_path),
          str(overlay_path),
          "-geometry",
          f"{x:+d}{y:+d}",
          "-composite",
          f"PNG32:{out}",
        ]
      )
      return out.read_bytes()

  def mask_alpha(self, data: bytes, mask: bytes) -> bytes:
    width, height = self.size(data)
    with self._workspace() as tmp:
      src = self._write_input(Path(tmp), "input", data)
      mask_path = self._write_input(Path(tmp), "mask", mask)
      out = Path(tmp) / "masked.png"
      self._run(
        [
          str(src),
          "(",
          str(mask_path),
          "-resize",
          f"{width}x{height}!",
          ")",
          "-alpha",
          "off",
          "-compose",
          "CopyOpacity",
          "-composite",
          f"PNG32:{out}",
        ]
      )
      return out.read_bytes()

  def convert(self, data: bytes, fmt: str, quality: int = 90) -> bytes:
    fmt = fmt.lower()
    if fmt not in ("jpg", "jpeg", "png"):
      raise ValueError(f"Unsupported output format: {fmt}")
    with self._workspace() as tmp:
      src = self._write_input(Path(tmp), "input", data)
      if fmt == "png":
        out = Path(tmp) / "converted.png"
        self._run([str(src), f"PNG32:{out}"])
      else:
        out = Path(tmp) / "converted.jpg"
        self._run(
          [
            str(src),
            "-background",
            "white",
            "-alpha",
            "remove",
            "-quality",
            str(quality),
            str(out),
          ]
        )
      return out.read_bytes()


def get_image_ops(config: WorldConfig) -> ImageOps:
  """Image backend selected by the configuration."""
  if config.image_backend == "pillow":
    return PillowImageOps()
  if config.image_backend == "magick":
    executable = "magick"
    if shutil.which(executable) is None and shutil.which("convert") is not None:
      # ImageMagick 6 installs `convert` instead of `magick`
      executable = "convert"
    return MagickImageOps(executable=executable, temp_root=config.temp_dir)
  raise ValueError(f"Unknown image backend: {config.image_backend}")
