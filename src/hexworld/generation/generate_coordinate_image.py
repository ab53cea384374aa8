"""
Render the context canvas the inpainting provider would see for a coordinate.

The canvas holds the target hex and its six neighbors, each resolved through
the tile store's fallback chain. Useful for checking layout and templates
without calling the provider.

Usage:
  uv run python src/hexworld/generation/generate_coordinate_image.py X Y [OUTPUT]
  uv run python src/hexworld/generation/generate_coordinate_image.py X Y --extract

Output:
  coordinate_<x>_<y>.png (default), plus <output>_mask.png and, with
  --extract, <output>_center.png holding the cropped center cell.
"""

import argparse
from pathlib import Path

from hexworld.generation.compositor import ContextCompositor
from hexworld.generation.config import load_world_config
from hexworld.generation.hex_grid import HexCoord
from hexworld.generation.image_ops import get_image_ops
from hexworld.generation.tile_store import TileStore


def main() -> int:
  parser = argparse.ArgumentParser(
    description="Render the neighbor-aware context canvas for a hex coordinate."
  )
  parser.add_argument("x", type=int, help="X coordinate of the center hex")
  parser.add_argument("y", type=int, help="Y coordinate of the center hex")
  parser.add_argument(
    "output",
    type=Path,
    nargs="?",
    default=None,
    help="Output PNG path (default: coordinate_<x>_<y>.png)",
  )
  parser.add_argument(
    "--extract",
    action="store_true",
    help="Also write the extracted center cell",
  )
  parser.add_argument(
    "--config",
    type=Path,
    default=None,
    help="Path to app_config.json (default: ./app_config.json)",
  )
  args = parser.parse_args()

  config = load_world_config(args.config)
  image_ops = get_image_ops(config)
  store = TileStore.from_config(config, image_ops=image_ops)
  compositor = ContextCompositor.from_config(config, store, image_ops)

  center = HexCoord(args.x, args.y)
  output = args.output or Path(f"coordinate_{center.key}.png")

  print(f"🧩 Building context for {center}...")
  context = compositor.build_context(center)
  for coord in context.placed:
    print(f"   ✓ {coord}: {context.sources[coord.key]}")

  output.parent.mkdir(parents=True, exist_ok=True)
  output.write_bytes(context.image)
  mask_path = output.with_name(f"{output.stem}_mask.png")
  mask_path.write_bytes(context.mask)
  print(f"💾 Saved {output} and {mask_path}")

  if args.extract:
    center_path = output.with_name(f"{output.stem}_center.png")
    center_path.write_bytes(compositor.extract_center(context.image))
    print(f"💾 Saved center cell to {center_path}")

  return 0


if __name__ == "__main__":
  exit(main())
