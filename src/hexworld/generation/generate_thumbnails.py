"""
Create thumbnails for stored tiles.

Usage:
  # Every tile in the images directory that has no thumbnail yet
  uv run python src/hexworld/generation/generate_thumbnails.py all [--force]

  # A single file
  uv run python src/hexworld/generation/generate_thumbnails.py INPUT OUTPUT
"""

import argparse
from pathlib import Path

from hexworld.generation.config import load_world_config
from hexworld.generation.hex_grid import HexCoord
from hexworld.generation.image_ops import ImageOpsError, get_image_ops
from hexworld.generation.shared import TILE_SUFFIXES
from hexworld.generation.tile_store import TileStore


def generate_all(store: TileStore, force: bool = False) -> tuple[int, int]:
  """Returns (created, failed)."""
  created = failed = 0
  for path in sorted(store.images_dir.glob("*.*")):
    if path.suffix.lstrip(".") not in TILE_SUFFIXES:
      continue
    try:
      coord = HexCoord.from_key(path.stem)
    except ValueError:
      print(f"   ⏭️ Skipping {path.name}: not a coordinate file name")
      continue
    if not force and store.find_thumbnail(coord) is not None:
      continue
    if store.derive_thumbnail(coord, path.read_bytes()) is None:
      print(f"   ⚠️ Failed: {path.name}")
      failed += 1
    else:
      print(f"   ✓ {coord}")
      created += 1
  return created, failed


def main() -> int:
  parser = argparse.ArgumentParser(description="Create thumbnails for tile images.")
  parser.add_argument(
    "input",
    help="'all' for every stored tile, or a single image path",
  )
  parser.add_argument(
    "output",
    type=Path,
    nargs="?",
    default=None,
    help="Output path when converting a single image",
  )
  parser.add_argument(
    "--force",
    action="store_true",
    help="Recreate thumbnails that already exist",
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

  if args.input == "all":
    store = TileStore.from_config(config, image_ops=image_ops)
    print(f"🖼️  Generating thumbnails from {store.images_dir}...")
    created, failed = generate_all(store, force=args.force)
    print(f"✅ Created {created} thumbnail(s), {failed} failed")
    return 1 if failed else 0

  if args.output is None:
    parser.error("OUTPUT is required when INPUT is a file")
  source = Path(args.input)
  if not source.exists():
    print(f"❌ Error: Input not found: {source}")
    return 1

  size = config.thumbnail_size
  try:
    resized = image_ops.resize(source.read_bytes(), size, size)
    fmt = "png" if args.output.suffix.lower() == ".png" else "jpeg"
    data = image_ops.convert(resized, fmt)
  except ImageOpsError as e:
    print(f"❌ Error: {e}")
    return 1

  args.output.parent.mkdir(parents=True, exist_ok=True)
  args.output.write_bytes(data)
  print(f"✅ Saved {size}x{size} thumbnail to {args.output}")
  return 0


if __name__ == "__main__":
  exit(main())
