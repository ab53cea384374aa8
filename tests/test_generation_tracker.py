"""Tests for generation_tracker.py"""

from hexworld.generation.generation_tracker import GenerationTracker
from hexworld.generation.hex_grid import HexCoord


class TestGenerationTracker:
  def test_record_and_get(self, config, clock) -> None:
    tracker = GenerationTracker.from_config(config, clock=clock)
    entry = tracker.record(HexCoord(2, -1), "alice")
    assert entry.timestamp == clock.now
    assert tracker.get_timestamp(HexCoord(2, -1)) == clock.now
    assert tracker.get_timestamp(HexCoord(0, 0)) is None

  def test_get_timestamps_defaults_to_zero(self, config, clock) -> None:
    tracker = GenerationTracker.from_config(config, clock=clock)
    tracker.record(HexCoord(1, 1))
    assert tracker.get_timestamps([HexCoord(1, 1), HexCoord(5, 5)]) == {
      "1_1": clock.now,
      "5_5": 0.0,
    }

  def test_updated_since_sorted(self, config, clock) -> None:
    tracker = GenerationTracker.from_config(config, clock=clock)
    start = clock.now
    tracker.record(HexCoord(0, 0))
    clock.advance(5)
    tracker.record(HexCoord(2, 0))
    clock.advance(5)
    tracker.record(HexCoord(4, 0))

    updates = tracker.get_updated_since(start)
    assert [e.coord for e in updates] == [HexCoord(2, 0), HexCoord(4, 0)]
    assert tracker.last_update() == start + 10

  def test_rerecord_replaces_entry(self, config, clock) -> None:
    tracker = GenerationTracker.from_config(config, clock=clock)
    tracker.record(HexCoord(0, 0), "alice")
    clock.advance(3)
    tracker.record(HexCoord(0, 0), "bob")
    updates = tracker.get_updated_since(0)
    assert len(updates) == 1
    assert updates[0].username == "bob"

  def test_last_update_empty(self, config) -> None:
    assert GenerationTracker.from_config(config).last_update() == 0.0

  def test_cleanup_older_than(self, config, clock) -> None:
    tracker = GenerationTracker.from_config(config, clock=clock)
    tracker.record(HexCoord(0, 0))
    clock.advance(31 * 24 * 60 * 60)
    tracker.record(HexCoord(2, 0))
    assert tracker.cleanup_older_than(30) == 1
    assert tracker.get_timestamp(HexCoord(0, 0)) is None
    assert tracker.get_timestamp(HexCoord(2, 0)) == clock.now

  def test_sqlite_backend(self, config, clock) -> None:
    config.ledger_backend = "sqlite"
    tracker = GenerationTracker.from_config(config, clock=clock)
    tracker.record(HexCoord(7, 3), "carol")
    reopened = GenerationTracker.from_config(config, clock=clock)
    assert reopened.get_timestamp(HexCoord(7, 3)) == clock.now
