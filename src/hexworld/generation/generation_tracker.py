"""Durable log of when each coordinate was last generated, for viewer refreshes."""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from hexworld.generation.config import WorldConfig
from hexworld.generation.hex_grid import HexCoord
from hexworld.generation.kv_store import RecordCollection, Records, open_collection

logger = logging.getLogger(__name__)

TRACKER_COLLECTION = "generation_tracker"


@dataclass
class GenerationEntry:
  x: int
  y: int
  timestamp: float
  username: str | None = None

  @property
  def coord(self) -> HexCoord:
    return HexCoord(self.x, self.y)

  def to_dict(self) -> dict[str, Any]:
    return {
      "key": self.coord.key,
      "x": self.x,
      "y": self.y,
      "timestamp": self.timestamp,
      "username": self.username,
    }

  @classmethod
  def from_dict(cls, data: dict[str, Any]) -> "GenerationEntry":
    return cls(
      x=int(data["x"]),
      y=int(data["y"]),
      timestamp=float(data["timestamp"]),
      username=data.get("username"),
    )


class GenerationTracker:
  def __init__(
    self, collection: RecordCollection, clock: Callable[[], float] = time.time
  ):
    self.collection = collection
    self.clock = clock

  @classmethod
  def from_config(
    cls, config: WorldConfig, clock: Callable[[], float] = time.time
  ) -> "GenerationTracker":
    collection = open_collection(
      config.ledger_backend, config.logs_dir, TRACKER_COLLECTION, "key"
    )
    return cls(collection, clock=clock)

  def record(self, coord: HexCoord, username: str | None = None) -> GenerationEntry:
    entry = GenerationEntry(
      x=coord.x, y=coord.y, timestamp=self.clock(), username=username
    )

    def apply(records: Records) -> None:
      records[coord.key] = entry.to_dict()

    self.collection.mutate(apply)
    logger.info(f"Recorded generation for {coord} at {entry.timestamp:.3f}")
    return entry

  def get_timestamp(self, coord: HexCoord) -> float | None:
    record = self.collection.get(coord.key)
    return float(record["timestamp"]) if record else None

  def get_timestamps(self, coords: list[HexCoord]) -> dict[str, float]:
    """Timestamps keyed by 'x_y'; 0 for coordinates never generated."""
    records = self.collection.load()
    return {
      c.key: float(records[c.key]["timestamp"]) if c.key in records else 0.0
      for c in coords
    }

  def get_updated_since(self, since: float) -> list[GenerationEntry]:
    """Entries newer than `since`, oldest first."""
    entries = [
      GenerationEntry.from_dict(record) for record in self.collection.load().values()
    ]
    return sorted(
      (e for e in entries if e.timestamp > since), key=lambda e: e.timestamp
    )

  def last_update(self) -> float:
    """Timestamp of the newest entry (0 when empty)."""
    records = self.collection.load()
    return max((float(r["timestamp"]) for r in records.values()), default=0.0)

  def cleanup_older_than(self, max_age_days: float = 30) -> int:
    cutoff = self.clock() - max_age_days * 24 * 60 * 60

    def apply(records: Records) -> int:
      old = [key for key, r in records.items() if float(r["timestamp"]) < cutoff]
      for key in old:
        del records[key]
      return len(old)

    removed = self.collection.mutate(apply)
    if removed:
      logger.info(f"Cleaned up {removed} old generation records")
    return removed
