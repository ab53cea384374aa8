"""
Configuration for tile generation.

Loads settings from app_config.json (optional) and environment variables.
API keys are never stored in the config file; they are read from the
environment variable named by the provider configuration.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

DEFAULT_CONFIG_FILENAME = "app_config.json"


@dataclass
class ProviderConfig:
  """Configuration for the external inpainting provider."""

  name: str = "ImageRouter"
  model_id: str = "black-forest-labs/flux-krea-dev"
  api_key_env: str = "IMAGEROUTER_API_KEY"
  endpoint: str = "https://api.imagerouter.io/v1/openai/images/edits"
  strength: float = 0.85
  prompt_suffix: str = ", isometric, illustration, cell shading"
  timeout_seconds: float = 300.0

  @property
  def api_key(self) -> str | None:
    """Get the API key from environment variables."""
    return os.getenv(self.api_key_env) if self.api_key_env else None

  def build_prompt(self, user_prompt: str) -> str:
    return f"{user_prompt}{self.prompt_suffix}"

  def to_dict(self) -> dict[str, Any]:
    """Convert to dictionary for JSON serialization (without API key)."""
    return {
      "name": self.name,
      "model_id": self.model_id,
      "api_key_env": self.api_key_env,
      "endpoint": self.endpoint,
      "strength": self.strength,
      "prompt_suffix": self.prompt_suffix,
      "timeout_seconds": self.timeout_seconds,
    }

  @classmethod
  def from_dict(cls, data: dict[str, Any]) -> "ProviderConfig":
    defaults = cls()
    return cls(
      name=data.get("name", defaults.name),
      model_id=data.get("model_id", defaults.model_id),
      api_key_env=data.get("api_key_env", defaults.api_key_env),
      endpoint=data.get("endpoint", defaults.endpoint),
      strength=float(data.get("strength", defaults.strength)),
      prompt_suffix=data.get("prompt_suffix", defaults.prompt_suffix),
      timeout_seconds=float(data.get("timeout_seconds", defaults.timeout_seconds)),
    )


@dataclass
class WorldConfig:
  """Full configuration for the tile world backend."""

  data_dir: Path = Path("data")
  hex_size: int = 220
  canvas_size: int = 512
  thumbnail_size: int = 100
  rate_limit_seconds: float = 60.0
  stale_generation_seconds: float = 300.0
  exempt_username: str | None = None
  prevent_concurrent_generation: bool = True
  ledger_backend: str = "json"  # "json" or "sqlite"
  image_backend: str = "pillow"  # "pillow" or "magick"
  max_workers: int = 4
  max_batch: int = 500
  auth_header: str = "X-Forwarded-User"
  terrain_seed: int = 90210
  provider: ProviderConfig = field(default_factory=ProviderConfig)

  def __post_init__(self):
    self.data_dir = Path(self.data_dir)

  @property
  def images_dir(self) -> Path:
    return self.data_dir / "images"

  @property
  def thumbnails_dir(self) -> Path:
    return self.data_dir / "thumbnails"

  @property
  def metadata_dir(self) -> Path:
    return self.data_dir / "metadata"

  @property
  def templates_dir(self) -> Path:
    return self.data_dir / "templates"

  @property
  def noise_dir(self) -> Path:
    """Noisier biome templates used for the cell being generated."""
    return self.data_dir / "noise"

  @property
  def logs_dir(self) -> Path:
    return self.data_dir / "logs"

  @property
  def temp_dir(self) -> Path:
    return self.data_dir / "temp"

  @property
  def ledger_db_path(self) -> Path:
    return self.logs_dir / "ledger.db"

  def to_dict(self) -> dict[str, Any]:
    """Convert to dictionary for JSON serialization."""
    return {
      "data_dir": str(self.data_dir),
      "hex_size": self.hex_size,
      "canvas_size": self.canvas_size,
      "thumbnail_size": self.thumbnail_size,
      "rate_limit_seconds": self.rate_limit_seconds,
      "stale_generation_seconds": self.stale_generation_seconds,
      "exempt_username": self.exempt_username,
      "prevent_concurrent_generation": self.prevent_concurrent_generation,
      "ledger_backend": self.ledger_backend,
      "image_backend": self.image_backend,
      "max_workers": self.max_workers,
      "max_batch": self.max_batch,
      "auth_header": self.auth_header,
      "terrain_seed": self.terrain_seed,
      "provider": self.provider.to_dict(),
    }


def _env_flag(value: str) -> bool:
  return value.strip().lower() not in ("0", "false", "no", "off", "")


def apply_env_overrides(config: WorldConfig) -> WorldConfig:
  """Override config values from environment variables, when set."""
  if os.getenv("HEXWORLD_DATA_DIR"):
    config.data_dir = Path(os.environ["HEXWORLD_DATA_DIR"])
  if os.getenv("RATE_LIMIT_SECONDS"):
    config.rate_limit_seconds = float(os.environ["RATE_LIMIT_SECONDS"])
  if os.getenv("EXEMPT_USERNAME"):
    config.exempt_username = os.environ["EXEMPT_USERNAME"]
  if os.getenv("PREVENT_CONCURRENT_GENERATION") is not None:
    config.prevent_concurrent_generation = _env_flag(
      os.environ["PREVENT_CONCURRENT_GENERATION"]
    )
  if os.getenv("LEDGER_BACKEND"):
    config.ledger_backend = os.environ["LEDGER_BACKEND"]
  if os.getenv("IMAGE_BACKEND"):
    config.image_backend = os.environ["IMAGE_BACKEND"]
  return config


def load_world_config(config_path: Path | None = None) -> WorldConfig:
  """
  Load the world configuration.

  Args:
    config_path: Path to the config file. If None, looks for app_config.json
      in the current directory.

  Returns:
    WorldConfig with file values (if the file exists) and environment
    overrides applied on top of the defaults.
  """
  load_dotenv()

  if config_path is None:
    config_path = Path(DEFAULT_CONFIG_FILENAME)

  if not config_path.exists():
    return apply_env_overrides(WorldConfig())

  with open(config_path) as f:
    data = json.load(f)

  defaults = WorldConfig()
  config = WorldConfig(
    data_dir=Path(data.get("data_dir", defaults.data_dir)),
    hex_size=int(data.get("hex_size", defaults.hex_size)),
    canvas_size=int(data.get("canvas_size", defaults.canvas_size)),
    thumbnail_size=int(data.get("thumbnail_size", defaults.thumbnail_size)),
    rate_limit_seconds=float(
      data.get("rate_limit_seconds", defaults.rate_limit_seconds)
    ),
    stale_generation_seconds=float(
      data.get("stale_generation_seconds", defaults.stale_generation_seconds)
    ),
    exempt_username=data.get("exempt_username"),
    prevent_concurrent_generation=bool(
      data.get("prevent_concurrent_generation", True)
    ),
    ledger_backend=data.get("ledger_backend", defaults.ledger_backend),
    image_backend=data.get("image_backend", defaults.image_backend),
    max_workers=int(data.get("max_workers", defaults.max_workers)),
    max_batch=int(data.get("max_batch", defaults.max_batch)),
    auth_header=data.get("auth_header", defaults.auth_header),
    terrain_seed=int(data.get("terrain_seed", defaults.terrain_seed)),
    provider=ProviderConfig.from_dict(data.get("provider", {})),
  )
  return apply_env_overrides(config)


def save_world_config(config: WorldConfig, config_path: Path | None = None) -> None:
  """
  Save the configuration to app_config.json.

  Note: This does NOT save API keys - those should remain in environment variables.
  """
  if config_path is None:
    config_path = Path(DEFAULT_CONFIG_FILENAME)

  with open(config_path, "w") as f:
    json.dump(config.to_dict(), f, indent=2)
