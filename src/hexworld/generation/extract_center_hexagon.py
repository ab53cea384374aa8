"""
Cut the center cell out of a generated canvas.

Usage:
  uv run python src/hexworld/generation/extract_center_hexagon.py INPUT [OUTPUT]
  uv run python src/hexworld/generation/extract_center_hexagon.py INPUT --hex-size 220 --canvas-size 512

Output:
  <input>_center.png next to the input unless OUTPUT is given.
"""

import argparse
from pathlib import Path

from hexworld.generation.compositor import ContextCompositor
from hexworld.generation.config import load_world_config
from hexworld.generation.image_ops import get_image_ops
from hexworld.generation.tile_store import TileStore


def main() -> int:
  parser = argparse.ArgumentParser(
    description="Extract the center hexagon cell from a generated canvas."
  )
  parser.add_argument("input", type=Path, help="Generated canvas image")
  parser.add_argument(
    "output",
    type=Path,
    nargs="?",
    default=None,
    help="Output PNG path (default: <input>_center.png)",
  )
  parser.add_argument("--hex-size", type=int, default=None, help="Hex size in pixels")
  parser.add_argument(
    "--canvas-size", type=int, default=None, help="Canvas size in pixels"
  )
  parser.add_argument(
    "--config",
    type=Path,
    default=None,
    help="Path to app_config.json (default: ./app_config.json)",
  )
  args = parser.parse_args()

  if not args.input.exists():
    print(f"❌ Error: Input not found: {args.input}")
    return 1

  config = load_world_config(args.config)
  if args.hex_size:
    config.hex_size = args.hex_size
  if args.canvas_size:
    config.canvas_size = args.canvas_size

  image_ops = get_image_ops(config)
  compositor = ContextCompositor.from_config(
    config, TileStore.from_config(config, image_ops=image_ops), image_ops
  )

  output = args.output or args.input.with_name(f"{args.input.stem}_center.png")
  output.parent.mkdir(parents=True, exist_ok=True)
  output.write_bytes(compositor.extract_center(args.input.read_bytes()))
  print(f"✅ Extracted {config.hex_size * 2}px center cell to {output}")
  return 0


if __name__ == "__main__":
  exit(main())
