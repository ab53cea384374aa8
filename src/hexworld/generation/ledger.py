"""
Per-user rate limiting and concurrent-generation locking.

Two durable collections back the ledger:
- rate_limits: {username, last_generation} - when the user last generated
- active_generations: {username, started_at, coordinates} - present only
  while a generation is in flight for that user

Both survive restarts. Active records older than the staleness threshold are
purged before every eligibility check, so a crashed generation cannot lock a
user out permanently.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable

from hexworld.generation.config import WorldConfig
from hexworld.generation.hex_grid import HexCoord
from hexworld.generation.kv_store import RecordCollection, Records, open_collection

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT_SECONDS = 60.0
DEFAULT_STALE_SECONDS = 5 * 60.0

RATE_LIMITS_COLLECTION = "rate_limits"
ACTIVE_GENERATIONS_COLLECTION = "active_generations"


@dataclass
class RateLimitEntry:
  username: str
  last_generation: float  # seconds since epoch

  def to_dict(self) -> dict[str, Any]:
    return {"username": self.username, "last_generation": self.last_generation}

  @classmethod
  def from_dict(cls, data: dict[str, Any]) -> "RateLimitEntry":
    return cls(username=data["username"], last_generation=float(data["last_generation"]))


@dataclass
class ActiveGeneration:
  username: str
  started_at: float  # seconds since epoch
  coordinates: HexCoord

  def to_dict(self) -> dict[str, Any]:
    return {
      "username": self.username,
      "started_at": self.started_at,
      "coordinates": self.coordinates.to_dict(),
    }

  @classmethod
  def from_dict(cls, data: dict[str, Any]) -> "ActiveGeneration":
    coords = data["coordinates"]
    return cls(
      username=data["username"],
      started_at=float(data["started_at"]),
      coordinates=HexCoord(int(coords["x"]), int(coords["y"])),
    )


@dataclass
class GenerationDecision:
  """Outcome of a rate/concurrency check."""

  allowed: bool
  reason: str | None = None
  retry_after_seconds: int | None = None
  is_generating: bool = False
  conflicting_coordinate: HexCoord | None = None

  def to_dict(self) -> dict[str, Any]:
    result: dict[str, Any] = {"allowed": self.allowed}
    if self.reason:
      result["reason"] = self.reason
    if self.retry_after_seconds is not None:
      result["retry_after_seconds"] = self.retry_after_seconds
    if self.is_generating:
      result["is_generating"] = True
    if self.conflicting_coordinate is not None:
      result["conflicting_coordinate"] = self.conflicting_coordinate.to_dict()
    return result


class GenerationLedger:
  """
  Gatekeeper for generation requests.

  Policy, in order:
  1. The exempt username always passes and leaves no records.
  2. Stale active-generation records are purged.
  3. A user with an active generation is refused (is_generating=True).
  4. A user who generated within the rate-limit window is refused with the
     remaining wait, rounded up to whole seconds.
  5. Otherwise the request is allowed.
  """

  def __init__(
    self,
    rate_limits: RecordCollection,
    active_generations: RecordCollection,
    rate_limit_seconds: float = DEFAULT_RATE_LIMIT_SECONDS,
    stale_seconds: float = DEFAULT_STALE_SECONDS,
    exempt_username: str | None = None,
    prevent_concurrent_generation: bool = True,
    clock: Callable[[], float] = time.time,
  ):
    self.rate_limits = rate_limits
    self.active_generations = active_generations
    self.rate_limit_seconds = rate_limit_seconds
    self.stale_seconds = stale_seconds
    self.exempt_username = exempt_username
    self.prevent_concurrent_generation = prevent_concurrent_generation
    self.clock = clock

  @classmethod
  def from_config(
    cls, config: WorldConfig, clock: Callable[[], float] = time.time
  ) -> "GenerationLedger":
    return cls(
      rate_limits=open_collection(
        config.ledger_backend, config.logs_dir, RATE_LIMITS_COLLECTION, "username"
      ),
      active_generations=open_collection(
        config.ledger_backend,
        config.logs_dir,
        ACTIVE_GENERATIONS_COLLECTION,
        "username",
      ),
      rate_limit_seconds=config.rate_limit_seconds,
      stale_seconds=config.stale_generation_seconds,
      exempt_username=config.exempt_username,
      prevent_concurrent_generation=config.prevent_concurrent_generation,
      clock=clock,
    )

  def is_exempt(self, username: str) -> bool:
    return self.exempt_username is not None and username == self.exempt_username

  # ===========================================================================
  # Eligibility
  # ===========================================================================

  def can_generate(
    self, username: str, coordinates: HexCoord | None = None
  ) -> GenerationDecision:
    """Check whether the user may start a generation now."""
    if self.is_exempt(username):
      return GenerationDecision(allowed=True)

    self.cleanup_stale_generations()

    if self.prevent_concurrent_generation:
      active = self.get_active_generation(username)
      if active is not None:
        c = active.coordinates
        return GenerationDecision(
          allowed=False,
          reason=(
            f"User is already generating an image at ({c.x}, {c.y}). "
            "Please wait for it to complete."
          ),
          is_generating=True,
          conflicting_coordinate=c,
        )

    wait = self._seconds_until_next(username)
    if wait > 0:
      retry_after = math.ceil(wait)
      return GenerationDecision(
        allowed=False,
        reason=f"Rate limited. Next generation available in {retry_after} seconds.",
        retry_after_seconds=retry_after,
      )

    return GenerationDecision(allowed=True)

  def get_time_until_next_generation(self, username: str) -> int:
    """Whole seconds until the user's rate limit expires (0 if none)."""
    if self.is_exempt(username):
      return 0
    return max(0, math.ceil(self._seconds_until_next(username)))

  def _seconds_until_next(self, username: str) -> float:
    record = self.rate_limits.get(username)
    if record is None:
      return 0.0
    entry = RateLimitEntry.from_dict(record)
    elapsed = self.clock() - entry.last_generation
    return self.rate_limit_seconds - elapsed

  # ===========================================================================
  # Rate Limiting
  # ===========================================================================

  def record_success(self, username: str) -> None:
    """Start the user's rate-limit window now."""
    if self.is_exempt(username):
      return

    entry = RateLimitEntry(username=username, last_generation=self.clock())

    def apply(records: Records) -> None:
      records[username] = entry.to_dict()

    self.rate_limits.mutate(apply)

  # ===========================================================================
  # Active Generations
  # ===========================================================================

  def get_active_generation(self, username: str) -> ActiveGeneration | None:
    record = self.active_generations.get(username)
    return ActiveGeneration.from_dict(record) if record else None

  def start_generation(self, username: str, coordinates: HexCoord) -> None:
    """Register an in-flight generation for the user."""
    if not self.prevent_concurrent_generation or self.is_exempt(username):
      return

    entry = ActiveGeneration(
      username=username, started_at=self.clock(), coordinates=coordinates
    )

    def apply(records: Records) -> None:
      records[username] = entry.to_dict()

    self.active_generations.mutate(apply)
    logger.info(f"Started tracking active generation for {username} at {coordinates}")

  def stop_generation(self, username: str) -> None:
    """Remove the user's in-flight record, whatever state it is in."""

    def apply(records: Records) -> bool:
      return records.pop(username, None) is not None

    if self.active_generations.mutate(apply):
      logger.info(f"Stopped tracking active generation for {username}")

  def cleanup_stale_generations(self) -> list[str]:
    """Purge active records older than the staleness threshold."""
    now = self.clock()

    def apply(records: Records) -> list[str]:
      stale = [
        username
        for username, record in records.items()
        if now - float(record.get("started_at", 0)) > self.stale_seconds
      ]
      for username in stale:
        del records[username]
      return stale

    removed = self.active_generations.mutate(apply)
    for username in removed:
      logger.info(f"Cleaned up stale active generation for user: {username}")
    return removed

  def is_coordinate_being_generated(self, coordinates: HexCoord) -> str | None:
    """
    Username currently generating this coordinate, if any.

    Diagnostic only: it does not reserve the coordinate.
    """
    if not self.prevent_concurrent_generation:
      return None
    self.cleanup_stale_generations()
    for record in self.active_generations.load().values():
      active = ActiveGeneration.from_dict(record)
      if active.coordinates == coordinates:
        return active.username
    return None
