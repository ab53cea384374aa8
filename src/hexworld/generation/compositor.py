"""
Context compositing for hex tile inpainting.

The provider sees a square canvas holding the target hex and its six
neighbors, laid out exactly as the viewer draws them, plus a mask that marks
only the target hex as editable. After generation, the target hex is cut back
out of the returned canvas.

Canvas placement:
  offset = canvas_size / 2 - hex_position(center) - hex_size
  cell top-left = hex_position(cell) + offset

so the center cell's 2*hex_size box sits at (canvas_size/2 - hex_size) on
both axes.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from PIL import Image, ImageDraw

from hexworld.generation.config import WorldConfig
from hexworld.generation.hex_grid import HexCoord, get_neighbors, hex_position
from hexworld.generation.image_ops import ImageOps
from hexworld.generation.shared import hexagon_points, image_to_png_bytes
from hexworld.generation.tile_store import TileStore

logger = logging.getLogger(__name__)

MASK_FILENAME = "mask.png"


@dataclass
class ContextImage:
  """Canvas and inpainting mask for one generation request."""

  image: bytes  # PNG, canvas_size square
  mask: bytes  # PNG, white over the center hex, black elsewhere
  placed: list[HexCoord] = field(default_factory=list)
  sources: dict[str, str] = field(default_factory=dict)  # key -> resolver name


def make_hexagon_mask(size: int) -> bytes:
  """White flat-topped hexagon on black, size x size grayscale PNG."""
  img = Image.new("L", (size, size), 0)
  ImageDraw.Draw(img).polygon(hexagon_points(size), fill=255)
  return image_to_png_bytes(img)


class ContextCompositor:
  def __init__(
    self,
    tile_store: TileStore,
    image_ops: ImageOps,
    hex_size: int = 220,
    canvas_size: int = 512,
    mask_path: Path | None = None,
  ):
    self.tile_store = tile_store
    self.image_ops = image_ops
    self.hex_size = hex_size
    self.canvas_size = canvas_size
    self.mask_path = mask_path
    self._hexagon_mask: bytes | None = None

  @classmethod
  def from_config(
    cls, config: WorldConfig, tile_store: TileStore, image_ops: ImageOps
  ) -> "ContextCompositor":
    return cls(
      tile_store=tile_store,
      image_ops=image_ops,
      hex_size=config.hex_size,
      canvas_size=config.canvas_size,
      mask_path=config.templates_dir / MASK_FILENAME,
    )

  @property
  def cell_size(self) -> int:
    return self.hex_size * 2

  @property
  def center_offset(self) -> int:
    """Top-left of the center cell's box on both canvas axes."""
    return self.canvas_size // 2 - self.hex_size

  def hexagon_mask(self) -> bytes:
    """The cell-shaped mask, from templates/mask.png when present."""
    if self._hexagon_mask is None:
      if self.mask_path is not None and self.mask_path.exists():
        self._hexagon_mask = self.mask_path.read_bytes()
      else:
        self._hexagon_mask = make_hexagon_mask(self.cell_size)
    return self._hexagon_mask

  # ===========================================================================
  # Layout
  # ===========================================================================

  def canvas_position(self, center: HexCoord, coord: HexCoord) -> tuple[int, int]:
    """Top-left pixel of a cell on the canvas centered at `center`."""
    cx, cy = hex_position(center, self.hex_size)
    px, py = hex_position(coord, self.hex_size)
    offset_x = self.canvas_size / 2 - cx - self.hex_size
    offset_y = self.canvas_size / 2 - cy - self.hex_size
    return round(px + offset_x), round(py + offset_y)

  def is_on_canvas(self, position: tuple[int, int]) -> bool:
    """Cells more than a cell width beyond any edge are skipped."""
    low = -self.cell_size
    high = self.canvas_size + self.cell_size
    x, y = position
    return low <= x <= high and low <= y <= high

  # ===========================================================================
  # Build / Extract
  # ===========================================================================

  def build_context(self, center: HexCoord) -> ContextImage:
    """
    Composite the center cell and its neighbors onto a white canvas.

    Cells are drawn center first, then neighbors in get_neighbors() order,
    each over the previous ones. Missing tiles resolve through the store's
    fallback chain; the center cell prefers the noise templates.

    Raises:
      ImageOpsError: If any image operation fails
    """
    canvas = self.image_ops.blank_canvas(self.canvas_size, self.canvas_size, "white")
    mask = self.hexagon_mask()
    context = ContextImage(image=canvas, mask=b"")

    for coord in [center, *get_neighbors(center)]:
      position = self.canvas_position(center, coord)
      if not self.is_on_canvas(position):
        logger.debug(f"Skipping {coord}: position {position} is off canvas")
        continue

      tile = self.tile_store.resolve_for_compositing(
        coord, use_noise=(coord == center)
      )
      masked = self.image_ops.mask_alpha(tile.data, mask)
      cell = self.image_ops.resize(masked, self.cell_size, self.cell_size)
      canvas = self.image_ops.composite_over(canvas, cell, *position)

      context.placed.append(coord)
      context.sources[coord.key] = tile.source

    context.image = canvas
    context.mask = self.build_inpaint_mask()
    logger.info(f"Built context for {center} from {len(context.placed)} cells")
    return context

  def build_inpaint_mask(self) -> bytes:
    """Black canvas with the center cell's hexagon in white."""
    black = self.image_ops.blank_canvas(self.canvas_size, self.canvas_size, "black")
    white_cell = self.image_ops.blank_canvas(self.cell_size, self.cell_size, "white")
    hexagon = self.image_ops.mask_alpha(white_cell, self.hexagon_mask())
    offset = self.center_offset
    return self.image_ops.composite_over(black, hexagon, offset, offset)

  def extract_center(self, generated: bytes) -> bytes:
    """
    Crop the center cell's 2*hex_size box out of a generated canvas.

    Images of another size are first scaled to the canvas size.
    """
    width, height = self.image_ops.size(generated)
    if (width, height) != (self.canvas_size, self.canvas_size):
      logger.info(
        f"Resizing provider output from {width}x{height} to "
        f"{self.canvas_size}x{self.canvas_size}"
      )
      generated = self.image_ops.resize(generated, self.canvas_size, self.canvas_size)
      width, height = self.image_ops.size(generated)

    left = width // 2 - self.hex_size
    top = height // 2 - self.hex_size
    return self.image_ops.crop_rect(generated, left, top, self.cell_size, self.cell_size)
