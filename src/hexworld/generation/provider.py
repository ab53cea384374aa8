"""
Client for the external inpainting provider.

One generation is three calls: `edit()` uploads the context canvas, mask and
prompt; `result_url()` pulls the generated image URL out of the answer; and
`download()` fetches it. Nothing here retries; a failed call fails the
generation and the user can try again.

Each provider answer is appended to logs/image_generation.log as one JSON
object per line.
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import requests

from hexworld.generation.config import ProviderConfig
from hexworld.generation.hex_grid import HexCoord

logger = logging.getLogger(__name__)

GENERATION_LOG_FILENAME = "image_generation.log"
DOWNLOAD_TIMEOUT_SECONDS = 60


class ProviderError(ValueError):
  """The provider could not be called or returned an unusable answer."""


def append_generation_log(
  log_path: Path,
  coord: HexCoord | None,
  prompt: str,
  response: Any,
  success: bool,
) -> None:
  """Append one provider exchange to the JSON-lines log. Never raises."""
  entry = {
    "timestamp": datetime.now(timezone.utc).isoformat(),
    "coordinates": coord.to_dict() if coord else None,
    "prompt": prompt,
    "response": response,
    "success": success,
  }
  try:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with open(log_path, "a", encoding="utf-8") as f:
      f.write(json.dumps(entry, default=str) + "\n")
  except OSError as e:
    logger.warning(f"Failed to append to {log_path}: {e}")


class InpaintingProvider(ABC):
  """An image-edit service that fills the masked region of an image."""

  @abstractmethod
  def edit(
    self,
    prompt: str,
    image_jpeg: bytes,
    mask_jpeg: bytes,
    coord: HexCoord | None = None,
  ) -> dict[str, Any]:
    """Submit an edit request and return the decoded answer."""

  @abstractmethod
  def result_url(self, response: dict[str, Any]) -> str:
    """URL of the generated image in an answer from edit()."""

  @abstractmethod
  def download(self, url: str) -> bytes:
    """Fetch the generated image."""


class ImageRouterProvider(InpaintingProvider):
  """OpenAI-compatible image edits endpoint (multipart upload, Bearer auth)."""

  def __init__(self, config: ProviderConfig, log_path: Path | None = None):
    self.config = config
    self.log_path = log_path

  def edit(
    self,
    prompt: str,
    image_jpeg: bytes,
    mask_jpeg: bytes,
    coord: HexCoord | None = None,
  ) -> dict[str, Any]:
    """
    Call the edits endpoint.

    Args:
      prompt: User prompt; the configured style suffix is appended
      image_jpeg: Context canvas as JPEG
      mask_jpeg: Inpainting mask as JPEG (white = editable)
      coord: Target coordinate, for the generation log

    Returns:
      The decoded JSON answer

    Raises:
      ProviderError: If no API key is configured or the answer is not JSON
      requests.HTTPError: If the provider answers with a non-2xx status
    """
    api_key = self.config.api_key
    if not api_key:
      raise ProviderError(
        f"API key not found: set {self.config.api_key_env} for {self.config.name}"
      )

    full_prompt = self.config.build_prompt(prompt)
    name = f"coordinate_{coord.key}.jpg" if coord else "coordinate.jpg"
    data = {
      "prompt": full_prompt,
      "model": self.config.model_id,
      "strength": str(self.config.strength),
    }
    files = [
      ("image[]", (name, image_jpeg, "image/jpeg")),
      ("mask[]", ("mask.jpg", mask_jpeg, "image/jpeg")),
    ]

    logger.info(f"Calling {self.config.name} with model {self.config.model_id}")
    response = requests.post(
      self.config.endpoint,
      headers={"Authorization": f"Bearer {api_key}"},
      data=data,
      files=files,
      timeout=self.config.timeout_seconds,
    )

    try:
      result = response.json()
      parsed = isinstance(result, dict)
    except ValueError:
      result = {"text": response.text}
      parsed = False

    if self.log_path is not None:
      append_generation_log(self.log_path, coord, full_prompt, result, response.ok)

    response.raise_for_status()
    if not parsed:
      raise ProviderError(f"Unexpected response from {self.config.name}: {result}")
    return result

  def result_url(self, response: dict[str, Any]) -> str:
    try:
      url = response["data"][0]["url"]
    except (KeyError, IndexError, TypeError):
      raise ProviderError(
        f"No image URL in response. Keys: {list(response.keys())}"
      ) from None
    if not url:
      raise ProviderError("Empty image URL in response")
    return url

  def download(self, url: str) -> bytes:
    logger.info(f"Downloading generated image from {url}")
    response = requests.get(url, timeout=DOWNLOAD_TIMEOUT_SECONDS)
    response.raise_for_status()
    return response.content
