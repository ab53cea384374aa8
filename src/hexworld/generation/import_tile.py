"""
Import a hand-made image as the tile for a coordinate.

The image is stored as-is (JPEG, PNG or SVG) and a thumbnail is derived when
the encoding allows it. Existing tiles are never replaced.

Usage:
  uv run python src/hexworld/generation/import_tile.py X Y IMAGE [--prompt TEXT] [--username NAME]
"""

import argparse
from pathlib import Path

from hexworld.generation.config import load_world_config
from hexworld.generation.hex_grid import HexCoord
from hexworld.generation.image_ops import get_image_ops
from hexworld.generation.tile_store import TileExistsError, TileMetadata, TileStore


def main() -> int:
  parser = argparse.ArgumentParser(description="Import an image as a hex tile.")
  parser.add_argument("x", type=int, help="X coordinate")
  parser.add_argument("y", type=int, help="Y coordinate")
  parser.add_argument("image", type=Path, help="Image file (jpg, png or svg)")
  parser.add_argument("--prompt", default=None, help="Prompt stored in the metadata")
  parser.add_argument("--username", default=None, help="Author stored in the metadata")
  parser.add_argument(
    "--config",
    type=Path,
    default=None,
    help="Path to app_config.json (default: ./app_config.json)",
  )
  args = parser.parse_args()

  if not args.image.exists():
    print(f"❌ Error: Image not found: {args.image}")
    return 1

  config = load_world_config(args.config)
  store = TileStore.from_config(config, image_ops=get_image_ops(config))
  coord = HexCoord(args.x, args.y)

  metadata = None
  if args.prompt or args.username:
    metadata = TileMetadata.now(args.prompt or "", args.username)

  try:
    path = store.import_tile(coord, args.image.read_bytes(), metadata)
  except (TileExistsError, ValueError) as e:
    print(f"❌ Error: {e}")
    return 1

  print(f"✅ Imported {args.image} as {coord} -> {path}")
  return 0


if __name__ == "__main__":
  exit(main())
