"""Tests for the Flask front door (app.py)"""

import base64
import logging

import pytest
from conftest import FakeProvider

from hexworld.generation.app import TileRequestFilter, create_app
from hexworld.generation.hex_grid import HexCoord
from hexworld.generation.pipeline import GenerationPipeline

AUTH = {"X-Forwarded-User": "alice"}


@pytest.fixture
def pipeline(config, clock) -> GenerationPipeline:
  pipeline = GenerationPipeline.from_config(config, provider=FakeProvider(), clock=clock)
  yield pipeline
  pipeline.shutdown()


@pytest.fixture
def client(config, pipeline):
  app = create_app(config, pipeline=pipeline)
  app.config["TESTING"] = True
  return app.test_client()


class TestReads:
  def test_health(self, client) -> None:
    assert client.get("/api/health").get_json()["status"] == "ok"

  def test_placeholder_for_empty_tile(self, client) -> None:
    response = client.get("/api/hexagon/-3/7")
    assert response.status_code == 200
    assert response.mimetype == "image/png"
    assert response.headers["X-Tile-Source"] == "placeholder"

  def test_full_image(self, client, seed_tile) -> None:
    seed_tile(0, 0)
    response = client.get("/api/hexagon/0/0?thumbnail=false")
    assert response.mimetype == "image/jpeg"
    assert response.headers["X-Tile-Source"] == "image"

  def test_check_exists(self, client, seed_tile) -> None:
    seed_tile(0, 0)
    assert client.get("/api/hexagon/0/0?checkExists=true").get_json()["exists"] is True
    assert client.get("/api/hexagon/2/0?checkExists=true").get_json()["exists"] is False

  def test_invalid_coordinates(self, client) -> None:
    response = client.get("/api/hexagon/abc/1")
    assert response.status_code == 400
    assert response.get_json()["success"] is False

  def test_metadata_missing(self, client) -> None:
    assert client.get("/api/hexagon/0/0/metadata").status_code == 404

  def test_batch(self, client, seed_tile) -> None:
    seed_tile(0, 0)
    response = client.post(
      "/api/hexagons/batch",
      json={"coords": [{"x": 0, "y": 0}, {"x": 5, "y": -5}], "thumbnail": False},
    )
    hexagons = response.get_json()["hexagons"]
    assert [(h["x"], h["y"]) for h in hexagons] == [(0, 0), (5, -5)]
    assert hexagons[0]["source"] == "image"
    assert base64.b64decode(hexagons[0]["data"]).startswith(b"\xff\xd8\xff")

  def test_batch_limit(self, client, config) -> None:
    coords = [{"x": i, "y": 0} for i in range(config.max_batch + 1)]
    assert client.post("/api/hexagons/batch", json={"coords": coords}).status_code == 400

  def test_batch_invalid(self, client) -> None:
    assert client.post("/api/hexagons/batch", json={"nope": 1}).status_code == 400
    assert (
      client.post("/api/hexagons/batch", json={"coords": [{"x": "a", "y": 0}]}).status_code
      == 400
    )


class TestGeneration:
  def test_requires_authentication(self, client) -> None:
    response = client.post("/api/generate-tile", json={"x": 2, "y": 0, "prompt": "x"})
    assert response.status_code == 401

  def test_generate_and_updates(self, client, seed_tile, clock) -> None:
    seed_tile(0, 0)
    response = client.post(
      "/api/generate-tile", json={"x": 2, "y": 0, "prompt": "meadow"}, headers=AUTH
    )
    assert response.status_code == 200
    assert response.get_json()["coordinates"] == {"x": 2, "y": 0}

    metadata = client.get("/api/hexagon/2/0/metadata").get_json()
    assert metadata["prompt"] == "meadow"
    assert metadata["username"] == "alice"

    updates = client.get(f"/api/updates?since={clock.now - 1}").get_json()["updates"]
    assert [(u["x"], u["y"]) for u in updates] == [(2, 0)]

  def test_status_codes(self, client, seed_tile) -> None:
    seed_tile(0, 0)
    far = client.post(
      "/api/generate-tile", json={"x": 100, "y": 100, "prompt": "x"}, headers=AUTH
    )
    assert far.status_code == 403
    assert far.get_json()["status"] == "not_adjacent"

    exists = client.post(
      "/api/generate-tile", json={"x": 0, "y": 0, "prompt": "x"}, headers=AUTH
    )
    assert exists.status_code == 409

    client.post("/api/generate-tile", json={"x": 2, "y": 0, "prompt": "x"}, headers=AUTH)
    limited = client.post(
      "/api/generate-tile", json={"x": -2, "y": 0, "prompt": "x"}, headers=AUTH
    )
    assert limited.status_code == 429
    assert limited.get_json()["retry_after_seconds"] == 60

  def test_session_username(self, client, seed_tile) -> None:
    seed_tile(0, 0)
    with client.session_transaction() as session:
      session["username"] = "bob"
    response = client.get("/api/hexagon/2/0/can-generate")
    assert response.status_code == 200
    assert response.get_json()["can_generate"] is True

  def test_can_generate_reports_active(self, client, pipeline, seed_tile) -> None:
    seed_tile(0, 0)
    pipeline.ledger.start_generation("alice", HexCoord(-2, 0))
    data = client.get("/api/hexagon/2/0/can-generate", headers=AUTH).get_json()
    assert data["can_generate"] is False
    assert data["is_generating"] is True
    assert data["conflicting_coordinate"] == {"x": -2, "y": 0}

  @pytest.mark.parametrize("body", [[1], "text", 5])
  def test_non_object_body(self, client, body) -> None:
    generate = client.post("/api/generate-tile", json=body, headers=AUTH)
    assert generate.status_code == 400
    assert generate.get_json()["success"] is False
    assert client.post("/api/hexagons/batch", json=body).status_code == 400

  def test_generates_on_request_thread(self, client, pipeline, seed_tile, monkeypatch) -> None:
    seed_tile(0, 0)

    def no_pool(*args, **kwargs):
      raise AssertionError("request must not wait on the worker pool")

    monkeypatch.setattr(pipeline, "submit", no_pool)
    response = client.post(
      "/api/generate-tile", json={"x": 2, "y": 0, "prompt": "x"}, headers=AUTH
    )
    assert response.status_code == 200

  def test_updates_bad_since(self, client) -> None:
    assert client.get("/api/updates?since=yesterday").status_code == 400


class TestRequestFilter:
  def _record(self, message: str) -> logging.LogRecord:
    return logging.LogRecord("werkzeug", logging.INFO, "", 0, message, None, None)

  def test_hides_tile_requests(self) -> None:
    assert not TileRequestFilter().filter(self._record('"GET /api/hexagon/1/2 HTTP/1.1" 200'))

  def test_keeps_generation_requests(self) -> None:
    assert TileRequestFilter().filter(self._record('"POST /api/generate-tile HTTP/1.1" 200'))
