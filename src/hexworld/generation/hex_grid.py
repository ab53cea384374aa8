"""
Hexagonal grid geometry.

The world is an offset hex grid addressed by integer (x, y) pairs. The layout
is asymmetric: same-row hexes two columns apart sit side by side, while odd
columns are shifted half a row down. The neighbor rule below must match what
the viewer draws, since eligibility for generation depends on adjacency as
rendered.

Layout (pixel position of a hex, before translation):
  px = x * size
  py = y * size * sqrt(3) * 1.36 + (x mod 2) * size * sqrt(3) * 0.68
"""

from __future__ import annotations

import math
from dataclasses import dataclass

# Row spacing factors of the viewer layout
ROW_STEP = 1.36
ODD_COLUMN_SHIFT = 0.68


@dataclass(frozen=True)
class HexCoord:
  """A hex tile coordinate. The grid is unbounded."""

  x: int
  y: int

  def __str__(self) -> str:
    return f"({self.x},{self.y})"

  @property
  def key(self) -> str:
    """Stable string key, used for file names and record keys."""
    return f"{self.x}_{self.y}"

  def to_dict(self) -> dict[str, int]:
    return {"x": self.x, "y": self.y}

  @classmethod
  def from_key(cls, key: str) -> HexCoord:
    """Parse a key like '3_-2'."""
    parts = key.split("_")
    if len(parts) != 2:
      raise ValueError(f"Invalid coordinate key: {key}")
    return cls(int(parts[0]), int(parts[1]))

  @classmethod
  def from_string(cls, s: str) -> HexCoord:
    """Parse a string like '(x,y)' or 'x,y'."""
    s = s.strip().replace("(", "").replace(")", "").replace(" ", "")
    parts = s.split(",")
    if len(parts) != 2:
      raise ValueError(f"Invalid coordinate format: {s}")
    return cls(int(parts[0]), int(parts[1]))

  @classmethod
  def parse(cls, x: object, y: object) -> HexCoord:
    """
    Build a coordinate from loosely typed request values.

    Accepts ints and integer strings. Booleans, floats with a fraction and
    anything else raise ValueError.
    """
    return cls(_parse_int(x, "x"), _parse_int(y, "y"))


def _parse_int(value: object, name: str) -> int:
  if isinstance(value, bool) or value is None:
    raise ValueError(f"Invalid coordinate {name}: {value!r}")
  if isinstance(value, int):
    return value
  if isinstance(value, float):
    if value.is_integer():
      return int(value)
    raise ValueError(f"Invalid coordinate {name}: {value!r}")
  if isinstance(value, str):
    try:
      return int(value.strip())
    except ValueError:
      raise ValueError(f"Invalid coordinate {name}: {value!r}") from None
  raise ValueError(f"Invalid coordinate {name}: {value!r}")


def get_neighbors(coord: HexCoord) -> list[HexCoord]:
  """
  Return the 6 neighbors of a hex, in a fixed order.

  Order: two horizontal (x-2, x+2), two vertical (x-1, x+1 on the same row),
  then the two diagonals whose row depends on the parity of x (the row above
  for even x, the row below for odd x).
  """
  x, y = coord.x, coord.y
  diagonal_y = y - 1 if x % 2 == 0 else y + 1
  return [
    HexCoord(x - 2, y),
    HexCoord(x + 2, y),
    HexCoord(x - 1, y),
    HexCoord(x + 1, y),
    HexCoord(x - 1, diagonal_y),
    HexCoord(x + 1, diagonal_y),
  ]


def get_neighbors_within_radius_two(coord: HexCoord) -> list[HexCoord]:
  """
  Return every hex reachable in one or two neighbor hops.

  The origin is always excluded, even when a two-hop path loops back to it,
  and each coordinate appears once.
  """
  visited: set[str] = {coord.key}
  result: list[HexCoord] = []

  def add(c: HexCoord) -> None:
    if c.key not in visited:
      visited.add(c.key)
      result.append(c)

  first_ring = get_neighbors(coord)
  for n in first_ring:
    add(n)
  for n in first_ring:
    for c in get_neighbors(n):
      add(c)

  return result


def hex_position(coord: HexCoord, size: float) -> tuple[float, float]:
  """Pixel position of a hex's top-left corner in the untranslated layout."""
  px = coord.x * size
  py = (
    coord.y * size * math.sqrt(3) * ROW_STEP
    + (coord.x % 2) * size * math.sqrt(3) * ODD_COLUMN_SHIFT
  )
  return px, py
