"""
Procedural terrain for tiles that have no user-supplied image.

Heights come from seeded 2D Perlin noise summed over a few octaves, so a
coordinate's height (and therefore its biome) is a pure function of (x, y)
and the seed. Nothing is stored; heights are recomputed on demand.
"""

import math
from enum import Enum
from pathlib import Path

DEFAULT_SEED = 90210

# Shift applied to every sample so the origin is not on a lattice point
OFFSET_X = 14
OFFSET_Y = 24

BASE_FREQUENCY = 0.05
OCTAVES = 4
PERSISTENCE = 0.5


class Perlin2D:
  """
  Classic lattice-gradient noise with a reproducible permutation table.

  The table is shuffled with a 32-bit linear congruential generator, so the
  same seed always yields the same table and the same noise values.
  """

  def __init__(self, seed: int = 1337):
    self.seed = seed
    self.permutation = self._generate_permutation(seed)
    self.p = [self.permutation[i % 256] for i in range(512)]

  @staticmethod
  def _generate_permutation(seed: int) -> list[int]:
    perm = list(range(256))
    state = seed & 0xFFFFFFFF

    def rand() -> float:
      nonlocal state
      state = (state * 1664525 + 1013904223) & 0xFFFFFFFF
      return state / 0xFFFFFFFF

    for i in range(255, 0, -1):
      j = min(math.floor(rand() * (i + 1)), i)
      perm[i], perm[j] = perm[j], perm[i]
    return perm

  @staticmethod
  def _fade(t: float) -> float:
    return t * t * t * (t * (t * 6 - 15) + 10)

  @staticmethod
  def _lerp(t: float, a: float, b: float) -> float:
    return a + t * (b - a)

  @staticmethod
  def _grad(hash_value: int, x: float, y: float) -> float:
    h = hash_value & 3
    u = x if h < 2 else y
    v = y if h < 2 else x
    return (u if (h & 1) == 0 else -u) + (v if (h & 2) == 0 else -v)

  def noise(self, x: float, y: float) -> float:
    """Noise value at (x, y), mapped to [0, 1]."""
    fx = math.floor(x)
    fy = math.floor(y)
    xi = fx & 255
    yi = fy & 255
    xf = x - fx
    yf = y - fy

    u = self._fade(xf)
    v = self._fade(yf)

    p = self.p
    aa = p[p[xi] + yi]
    ab = p[p[xi] + yi + 1]
    ba = p[p[xi + 1] + yi]
    bb = p[p[xi + 1] + yi + 1]

    x1 = self._lerp(u, self._grad(aa, xf, yf), self._grad(ba, xf - 1, yf))
    x2 = self._lerp(u, self._grad(ab, xf, yf - 1), self._grad(bb, xf - 1, yf - 1))

    return (self._lerp(v, x1, x2) + 1) / 2


class TerrainField:
  """Deterministic height field over the hex grid."""

  def __init__(self, seed: int = DEFAULT_SEED):
    self.seed = seed
    self._perlin = Perlin2D(seed)

  def get_height_at(self, x: int, y: int) -> float:
    """
    Normalized height in [0, 1] for a coordinate.

    Sums OCTAVES layers of noise, each at double the frequency and half the
    amplitude of the previous one, then divides by the total amplitude.
    """
    sx = x + OFFSET_X
    sy = y + OFFSET_Y

    amplitude = 1.0
    frequency = BASE_FREQUENCY
    max_amplitude = 0.0
    value = 0.0

    for _ in range(OCTAVES):
      value += self._perlin.noise(sx * frequency, sy * frequency) * amplitude
      max_amplitude += amplitude
      amplitude *= PERSISTENCE
      frequency *= 2

    return min(1.0, max(0.0, value / max_amplitude))


class Biome(Enum):
  """Biomes in ascending threshold order: (threshold, template file)."""

  WATER = (0.50, "water.png")
  SAND = (0.51, "sand.png")
  GRASS = (0.60, "grass.png")
  MOUNTAIN = (0.65, "mountain.png")
  SNOW = (1.75, "snow.png")

  @property
  def threshold(self) -> float:
    return self.value[0]

  @property
  def template_file(self) -> str:
    return self.value[1]


def biome_for(height: float) -> Biome:
  """First biome whose threshold is not exceeded by the height."""
  for biome in Biome:
    if height <= biome.threshold:
      return biome
  return Biome.SNOW


def get_biome_template_path(height: float, templates_dir: Path) -> Path | None:
  """
  Template image for the biome at this height, or None if the asset is missing.

  A missing asset does not fall through to the next biome; callers fall back
  to their own placeholder.
  """
  template = templates_dir / biome_for(height).template_file
  if template.exists():
    return template
  return None


# Shared field with the default seed
_default_field: TerrainField | None = None


def get_default_field() -> TerrainField:
  global _default_field
  if _default_field is None:
    _default_field = TerrainField(DEFAULT_SEED)
  return _default_field


def get_height_at(x: int, y: int) -> float:
  """Height at (x, y) using the default seed."""
  return get_default_field().get_height_at(x, y)
