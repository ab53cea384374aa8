"""
End-to-end tile generation.

A request moves through these states:

  idle -> eligibility_checked -> locked -> context_built -> provider_called
       -> result_extracted -> persisted -> unlocked_success

Any failure after the lock is taken ends in unlocked_failure. Leaving the
locked state always releases the user's active-generation record and removes
the request's work directory, whichever step failed. Persistence is the last
step, so a failed request never leaves a tile behind.
"""

import logging
import shutil
import tempfile
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from hexworld.generation.compositor import ContextCompositor
from hexworld.generation.config import WorldConfig
from hexworld.generation.generation_tracker import GenerationTracker
from hexworld.generation.hex_grid import HexCoord, get_neighbors_within_radius_two
from hexworld.generation.image_ops import ImageOps, get_image_ops
from hexworld.generation.ledger import GenerationLedger
from hexworld.generation.provider import (
  GENERATION_LOG_FILENAME,
  ImageRouterProvider,
  InpaintingProvider,
)
from hexworld.generation.tile_store import TileExistsError, TileMetadata, TileStore

logger = logging.getLogger(__name__)

StatusCallback = Callable[["PipelineState", str], None]


class GenerationStatus(str, Enum):
  SUCCESS = "success"
  INVALID = "invalid"
  EXISTS = "exists"
  NOT_ADJACENT = "not_adjacent"
  RATE_LIMITED = "rate_limited"
  ALREADY_GENERATING = "already_generating"
  ERROR = "error"

  @property
  def http_status(self) -> int:
    return _HTTP_STATUS[self]


_HTTP_STATUS = {
  GenerationStatus.SUCCESS: 200,
  GenerationStatus.INVALID: 400,
  GenerationStatus.EXISTS: 409,
  GenerationStatus.NOT_ADJACENT: 403,
  GenerationStatus.RATE_LIMITED: 429,
  GenerationStatus.ALREADY_GENERATING: 429,
  GenerationStatus.ERROR: 500,
}


class PipelineState(str, Enum):
  IDLE = "idle"
  ELIGIBILITY_CHECKED = "eligibility_checked"
  LOCKED = "locked"
  CONTEXT_BUILT = "context_built"
  PROVIDER_CALLED = "provider_called"
  RESULT_EXTRACTED = "result_extracted"
  PERSISTED = "persisted"
  UNLOCKED_SUCCESS = "unlocked_success"
  UNLOCKED_FAILURE = "unlocked_failure"


@dataclass
class GenerationResult:
  status: GenerationStatus
  message: str
  coordinates: HexCoord | None = None
  retry_after_seconds: int | None = None
  conflicting_coordinate: HexCoord | None = None
  image_path: Path | None = None

  @property
  def success(self) -> bool:
    return self.status == GenerationStatus.SUCCESS

  @property
  def http_status(self) -> int:
    return self.status.http_status

  def to_dict(self) -> dict[str, Any]:
    result: dict[str, Any] = {
      "success": self.success,
      "status": self.status.value,
    }
    if self.success:
      result["message"] = self.message
    else:
      result["error"] = self.message
    if self.coordinates is not None:
      result["coordinates"] = self.coordinates.to_dict()
    if self.retry_after_seconds is not None:
      result["retry_after_seconds"] = self.retry_after_seconds
    if self.status == GenerationStatus.ALREADY_GENERATING:
      result["is_generating"] = True
    if self.conflicting_coordinate is not None:
      result["conflicting_coordinate"] = self.conflicting_coordinate.to_dict()
    return result


class GenerationPipeline:
  def __init__(
    self,
    tile_store: TileStore,
    compositor: ContextCompositor,
    ledger: GenerationLedger,
    provider: InpaintingProvider,
    image_ops: ImageOps,
    tracker: GenerationTracker | None = None,
    work_root: Path | None = None,
    max_workers: int = 4,
  ):
    self.tile_store = tile_store
    self.compositor = compositor
    self.ledger = ledger
    self.provider = provider
    self.image_ops = image_ops
    self.tracker = tracker
    self.work_root = work_root
    self.max_workers = max_workers
    self._executor: ThreadPoolExecutor | None = None
    self._executor_lock = threading.Lock()

  @classmethod
  def from_config(
    cls,
    config: WorldConfig,
    provider: InpaintingProvider | None = None,
    clock: Callable[[], float] = time.time,
  ) -> "GenerationPipeline":
    """Wire up every component from one configuration."""
    image_ops = get_image_ops(config)
    tile_store = TileStore.from_config(config, image_ops=image_ops)
    if provider is None:
      provider = ImageRouterProvider(
        config.provider, log_path=config.logs_dir / GENERATION_LOG_FILENAME
      )
    return cls(
      tile_store=tile_store,
      compositor=ContextCompositor.from_config(config, tile_store, image_ops),
      ledger=GenerationLedger.from_config(config, clock=clock),
      provider=provider,
      image_ops=image_ops,
      tracker=GenerationTracker.from_config(config, clock=clock),
      work_root=config.temp_dir,
      max_workers=config.max_workers,
    )

  # ===========================================================================
  # Eligibility
  # ===========================================================================

  def check_eligibility(self, coord: HexCoord) -> GenerationResult | None:
    """
    Tile-level checks that need no user: the coordinate must be empty and
    within two hops of an existing tile. Returns None when eligible.
    """
    if self.tile_store.exists(coord):
      return GenerationResult(
        GenerationStatus.EXISTS,
        f"A tile already exists at {coord}",
        coordinates=coord,
      )
    if not any(self.tile_store.exists(c) for c in get_neighbors_within_radius_two(coord)):
      return GenerationResult(
        GenerationStatus.NOT_ADJACENT,
        f"Tile {coord} is not adjacent to existing tiles",
        coordinates=coord,
      )
    return None

  def can_generate_at(self, username: str, coord: HexCoord) -> GenerationResult:
    """Full pre-check for a user at a coordinate, with no side effects
    beyond the ledger's stale-record sweep."""
    refusal = self.check_eligibility(coord)
    if refusal is not None:
      return refusal
    return self._ledger_check(username, coord) or GenerationResult(
      GenerationStatus.SUCCESS, "Generation allowed", coordinates=coord
    )

  def _ledger_check(self, username: str, coord: HexCoord) -> GenerationResult | None:
    decision = self.ledger.can_generate(username, coord)
    if decision.allowed:
      return None
    if decision.is_generating:
      return GenerationResult(
        GenerationStatus.ALREADY_GENERATING,
        decision.reason or "Already generating",
        coordinates=coord,
        conflicting_coordinate=decision.conflicting_coordinate,
      )
    return GenerationResult(
      GenerationStatus.RATE_LIMITED,
      decision.reason or "Rate limited",
      coordinates=coord,
      retry_after_seconds=decision.retry_after_seconds,
    )

  # ===========================================================================
  # Generation
  # ===========================================================================

  def generate(
    self,
    x: object,
    y: object,
    prompt: str,
    username: str,
    status_callback: StatusCallback | None = None,
  ) -> GenerationResult:
    """
    Generate the tile at (x, y) for a user.

    Never raises for request or pipeline errors; the outcome is reported in
    the returned GenerationResult.
    """

    def update_status(state: PipelineState, message: str = "") -> None:
      if status_callback:
        status_callback(state, message)

    update_status(PipelineState.IDLE)

    try:
      coord = HexCoord.parse(x, y)
    except ValueError as e:
      return GenerationResult(GenerationStatus.INVALID, str(e))
    prompt = prompt.strip() if isinstance(prompt, str) else ""
    if not prompt:
      return GenerationResult(
        GenerationStatus.INVALID, "Prompt is required", coordinates=coord
      )
    if not username:
      return GenerationResult(
        GenerationStatus.INVALID, "Username is required", coordinates=coord
      )

    refusal = self.check_eligibility(coord) or self._ledger_check(username, coord)
    if refusal is not None:
      logger.info(f"Refused generation at {coord} for {username}: {refusal.message}")
      return refusal
    update_status(PipelineState.ELIGIBILITY_CHECKED, f"Eligible: {coord}")

    active = self.ledger.is_coordinate_being_generated(coord)
    if active is not None and active != username:
      logger.warning(f"{username} and {active} are both generating {coord}")

    work_dir: Path | None = None
    succeeded = False
    try:
      self.ledger.start_generation(username, coord)
      update_status(PipelineState.LOCKED, f"Generating {coord} for {username}")

      if self.work_root is not None:
        self.work_root.mkdir(parents=True, exist_ok=True)
      work_dir = Path(tempfile.mkdtemp(prefix=f"gen_{coord.key}_", dir=self.work_root))

      context = self.compositor.build_context(coord)
      (work_dir / "context.png").write_bytes(context.image)
      (work_dir / "mask.png").write_bytes(context.mask)
      update_status(PipelineState.CONTEXT_BUILT, "Built context image")

      response = self.provider.edit(
        prompt,
        self.image_ops.convert(context.image, "jpeg"),
        self.image_ops.convert(context.mask, "jpeg"),
        coord=coord,
      )
      generated = self.provider.download(self.provider.result_url(response))
      (work_dir / "generated.img").write_bytes(generated)
      update_status(PipelineState.PROVIDER_CALLED, "Received generated image")

      tile = self.compositor.extract_center(generated)
      update_status(PipelineState.RESULT_EXTRACTED, "Extracted center tile")

      path = self.tile_store.persist(coord, tile, TileMetadata.now(prompt, username))
      update_status(PipelineState.PERSISTED, f"Saved {path.name}")

      self.ledger.record_success(username)
      if self.tracker is not None:
        self.tracker.record(coord, username)

      succeeded = True
      logger.info(f"Generated tile {coord} for {username}")
      return GenerationResult(
        GenerationStatus.SUCCESS,
        f"Generated tile at {coord}",
        coordinates=coord,
        image_path=path,
      )
    except TileExistsError:
      logger.warning(f"Tile {coord} was created by another request during generation")
      return GenerationResult(
        GenerationStatus.EXISTS,
        f"A tile already exists at {coord}",
        coordinates=coord,
      )
    except Exception:
      logger.exception(f"Generation failed at {coord} for {username}")
      return GenerationResult(
        GenerationStatus.ERROR, "Failed to generate tile", coordinates=coord
      )
    finally:
      self.ledger.stop_generation(username)
      if work_dir is not None:
        self._cleanup(work_dir)
      update_status(
        PipelineState.UNLOCKED_SUCCESS if succeeded else PipelineState.UNLOCKED_FAILURE
      )

  @staticmethod
  def _cleanup(work_dir: Path) -> None:
    try:
      shutil.rmtree(work_dir)
    except OSError as e:
      logger.warning(f"Failed to remove work directory {work_dir}: {e}")

  def submit(
    self,
    x: object,
    y: object,
    prompt: str,
    username: str,
    status_callback: StatusCallback | None = None,
  ) -> "Future[GenerationResult]":
    """Run generate() on the worker pool and return its future."""
    with self._executor_lock:
      if self._executor is None:
        self._executor = ThreadPoolExecutor(
          max_workers=self.max_workers, thread_name_prefix="generation"
        )
      executor = self._executor
    return executor.submit(
      self.generate, x, y, prompt, username, status_callback
    )

  def shutdown(self, wait: bool = True) -> None:
    with self._executor_lock:
      executor, self._executor = self._executor, None
    if executor is not None:
      executor.shutdown(wait=wait)
