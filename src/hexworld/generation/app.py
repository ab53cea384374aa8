"""
HTTP front door for the hex tile world.

Usage:
  uv run python src/hexworld/generation/app.py [--config app_config.json]

Endpoints:
  GET  /api/health
  GET  /api/hexagon/<x>/<y>               - tile image (?thumbnail=false, ?checkExists=true)
  GET  /api/hexagon/<x>/<y>/metadata      - {x, y, prompt, createdAt, username}
  GET  /api/hexagon/<x>/<y>/can-generate  - eligibility pre-check (authenticated)
  POST /api/hexagons/batch                - {coords: [{x, y}], thumbnail} -> base64 images
  POST /api/generate-tile                 - {x, y, prompt} (authenticated)
  GET  /api/updates?since=<timestamp>     - tiles generated since a time

Authentication happens upstream: the username comes from the Flask session
or from the header set by the SSO proxy (X-Forwarded-User by default).
"""

import argparse
import base64
import logging
import os
import secrets
import time
from pathlib import Path

from flask import Flask, Response, current_app, jsonify, request, session

from hexworld.generation.config import WorldConfig, load_world_config
from hexworld.generation.hex_grid import HexCoord
from hexworld.generation.pipeline import GenerationPipeline

logger = logging.getLogger(__name__)


class TileRequestFilter(logging.Filter):
  """Filter out noisy tile and batch requests from logs."""

  def filter(self, record: logging.LogRecord) -> bool:
    message = record.getMessage()
    if "/api/hexagon/" in message:
      return False
    if "/api/hexagons/batch" in message:
      return False
    if "/api/updates" in message:
      return False
    return True


# Apply filter to werkzeug logger (Flask's HTTP request logger)
werkzeug_logger = logging.getLogger("werkzeug")
werkzeug_logger.addFilter(TileRequestFilter())


def _parse_bool(value: str | None, default: bool) -> bool:
  if value is None:
    return default
  return value.strip().lower() in ("1", "true", "yes", "on")


def _error(message: str, status: int):
  return jsonify({"success": False, "error": message}), status


def _pipeline() -> GenerationPipeline:
  return current_app.config["PIPELINE"]


def _world_config() -> WorldConfig:
  return current_app.config["WORLD_CONFIG"]


def current_username() -> str | None:
  """Authenticated username from the session or the SSO proxy header."""
  username = session.get("username")
  if username:
    return username
  return request.headers.get(_world_config().auth_header) or None


def create_app(
  config: WorldConfig | None = None, pipeline: GenerationPipeline | None = None
) -> Flask:
  """
  Build the Flask app.

  Args:
    config: World configuration (defaults to load_world_config())
    pipeline: Pre-built pipeline, mainly for tests

  Returns:
    Configured Flask application
  """
  if config is None:
    config = load_world_config()
  if pipeline is None:
    pipeline = GenerationPipeline.from_config(config)

  app = Flask(__name__)
  app.secret_key = os.getenv("FLASK_SECRET_KEY") or secrets.token_hex(32)
  app.config["WORLD_CONFIG"] = config
  app.config["PIPELINE"] = pipeline

  # ===========================================================================
  # Tiles
  # ===========================================================================

  @app.route("/api/health")
  def health():
    return jsonify({"status": "ok", "timestamp": time.time()})

  @app.route("/api/hexagon/<x>/<y>")
  def get_hexagon(x: str, y: str):
    """Tile image, or {exists} with ?checkExists=true."""
    try:
      coord = HexCoord.parse(x, y)
    except ValueError as e:
      return _error(str(e), 400)

    store = _pipeline().tile_store
    if _parse_bool(request.args.get("checkExists"), False):
      return jsonify({"exists": store.exists(coord), **coord.to_dict()})

    want_thumbnail = _parse_bool(request.args.get("thumbnail"), True)
    image = store.resolve(coord, want_thumbnail=want_thumbnail)
    response = Response(image.data, mimetype=image.content_type)
    response.headers["X-Tile-Source"] = image.source
    return response

  @app.route("/api/hexagon/<x>/<y>/metadata")
  def get_hexagon_metadata(x: str, y: str):
    try:
      coord = HexCoord.parse(x, y)
    except ValueError as e:
      return _error(str(e), 400)

    metadata = _pipeline().tile_store.metadata(coord)
    if metadata is None:
      return _error(f"No metadata for {coord}", 404)
    return jsonify(metadata.to_dict(coord))

  @app.route("/api/hexagons/batch", methods=["POST"])
  def get_hexagons_batch():
    """Resolve many tiles in one round trip; images are base64-encoded."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not isinstance(data.get("coords"), list):
      return _error("Body must contain a 'coords' list", 400)

    limit = _world_config().max_batch
    if len(data["coords"]) > limit:
      return _error(f"Too many coordinates requested (max {limit})", 400)

    try:
      coords = [HexCoord.parse(item.get("x"), item.get("y")) for item in data["coords"]]
    except (AttributeError, ValueError) as e:
      return _error(f"Invalid coordinate in batch: {e}", 400)

    store = _pipeline().tile_store
    want_thumbnail = bool(data.get("thumbnail", True))
    hexagons = []
    for coord, image in store.resolve_many(coords, want_thumbnail, limit=limit):
      hexagons.append(
        {
          "x": coord.x,
          "y": coord.y,
          "data": base64.b64encode(image.data).decode("ascii"),
          "content_type": image.content_type,
          "source": image.source,
        }
      )
    return jsonify({"success": True, "hexagons": hexagons})

  # ===========================================================================
  # Generation
  # ===========================================================================

  @app.route("/api/hexagon/<x>/<y>/can-generate")
  def can_generate(x: str, y: str):
    username = current_username()
    if not username:
      return _error("Authentication required", 401)
    try:
      coord = HexCoord.parse(x, y)
    except ValueError as e:
      return _error(str(e), 400)

    pipeline = _pipeline()
    result = pipeline.can_generate_at(username, coord)
    return jsonify(
      {
        **result.to_dict(),
        "can_generate": result.success,
        "time_until_next_seconds": pipeline.ledger.get_time_until_next_generation(
          username
        ),
      }
    )

  @app.route("/api/generate-tile", methods=["POST"])
  def generate_tile():
    username = current_username()
    if not username:
      return _error("Authentication required", 401)

    data = request.get_json(silent=True)
    if not data:
      return _error("No data provided", 400)
    if not isinstance(data, dict):
      return _error("Body must be a JSON object", 400)

    logger.info(f"Generation request from {username}: ({data.get('x')}, {data.get('y')})")
    # Runs on the request thread (app.run uses threaded=True)
    result = _pipeline().generate(
      data.get("x"), data.get("y"), data.get("prompt") or "", username
    )
    return jsonify(result.to_dict()), result.http_status

  @app.route("/api/updates")
  def get_updates():
    """Tiles generated after ?since=<unix seconds> (default: all)."""
    try:
      since = float(request.args.get("since", 0))
    except ValueError:
      return _error("'since' must be a number", 400)

    tracker = _pipeline().tracker
    if tracker is None:
      return jsonify({"success": True, "updates": [], "last_update": 0.0})
    return jsonify(
      {
        "success": True,
        "updates": [entry.to_dict() for entry in tracker.get_updated_since(since)],
        "last_update": tracker.last_update(),
        "server_time": time.time(),
      }
    )

  return app


def main():
  parser = argparse.ArgumentParser(description="Serve the hex tile world API.")
  parser.add_argument(
    "--config",
    type=Path,
    default=None,
    help="Path to app_config.json (default: ./app_config.json)",
  )
  parser.add_argument(
    "--host",
    default="127.0.0.1",
    help="Host to bind to (default: 127.0.0.1)",
  )
  parser.add_argument(
    "--port",
    type=int,
    default=3001,
    help="Port to run the Flask server on (default: 3001)",
  )
  parser.add_argument(
    "--debug",
    action="store_true",
    help="Enable Flask debug mode",
  )
  args = parser.parse_args()

  logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
  )

  config = load_world_config(args.config)
  print(f"📁 Data directory: {config.data_dir.resolve()}")
  has_key = "✓" if config.provider.api_key else "✗"
  print(f"   {has_key} {config.provider.name} ({config.provider.model_id})")
  print(f"   Ledger backend: {config.ledger_backend}, images: {config.image_backend}")

  app = create_app(config)
  print(f"🚀 Starting server on http://{args.host}:{args.port}")
  try:
    app.run(host=args.host, port=args.port, debug=args.debug, threaded=True)
  finally:
    app.config["PIPELINE"].shutdown(wait=False)
  return 0


if __name__ == "__main__":
  exit(main())
