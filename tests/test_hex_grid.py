"""
Tests for hex_grid.py

Covers the neighbor rule (which must match the rendered layout), radius-two
reachability, coordinate parsing and the pixel layout formula.
"""

import math

import pytest

from hexworld.generation.hex_grid import (
  HexCoord,
  get_neighbors,
  get_neighbors_within_radius_two,
  hex_position,
)

SAMPLE_COORDS = [HexCoord(x, y) for x in range(-5, 6) for y in range(-4, 5)]

# =============================================================================
# HexCoord Tests
# =============================================================================


class TestHexCoord:
  def test_str(self) -> None:
    assert str(HexCoord(3, -2)) == "(3,-2)"

  def test_key(self) -> None:
    assert HexCoord(3, -2).key == "3_-2"

  def test_from_key_roundtrip(self) -> None:
    assert HexCoord.from_key("-7_12") == HexCoord(-7, 12)

  def test_from_key_invalid(self) -> None:
    with pytest.raises(ValueError):
      HexCoord.from_key("1_2_3")

  def test_from_string_with_parens(self) -> None:
    assert HexCoord.from_string("(4, -1)") == HexCoord(4, -1)

  def test_hashable(self) -> None:
    assert len({HexCoord(1, 1), HexCoord(1, 1), HexCoord(1, 2)}) == 2

  def test_parse_accepts_ints_and_int_strings(self) -> None:
    assert HexCoord.parse(2, "-3") == HexCoord(2, -3)
    assert HexCoord.parse(" 5 ", 4.0) == HexCoord(5, 4)

  @pytest.mark.parametrize("bad", [1.5, "abc", "", None, True, [1]])
  def test_parse_rejects_non_integers(self, bad) -> None:
    with pytest.raises(ValueError):
      HexCoord.parse(bad, 0)


# =============================================================================
# Neighbor Tests
# =============================================================================


class TestGetNeighbors:
  def test_even_column(self) -> None:
    assert get_neighbors(HexCoord(0, 0)) == [
      HexCoord(-2, 0),
      HexCoord(2, 0),
      HexCoord(-1, 0),
      HexCoord(1, 0),
      HexCoord(-1, -1),
      HexCoord(1, -1),
    ]

  def test_odd_column(self) -> None:
    assert get_neighbors(HexCoord(1, 0)) == [
      HexCoord(-1, 0),
      HexCoord(3, 0),
      HexCoord(0, 0),
      HexCoord(2, 0),
      HexCoord(0, 1),
      HexCoord(2, 1),
    ]

  def test_negative_odd_column_uses_row_below(self) -> None:
    neighbors = get_neighbors(HexCoord(-3, 2))
    assert HexCoord(-4, 3) in neighbors
    assert HexCoord(-2, 3) in neighbors

  def test_six_distinct_and_excludes_self(self) -> None:
    for coord in SAMPLE_COORDS:
      neighbors = get_neighbors(coord)
      assert len(set(neighbors)) == 6
      assert coord not in neighbors

  def test_relation_is_symmetric(self) -> None:
    for coord in SAMPLE_COORDS:
      for neighbor in get_neighbors(coord):
        assert coord in get_neighbors(neighbor)


class TestRadiusTwo:
  def test_excludes_origin(self) -> None:
    for coord in SAMPLE_COORDS:
      assert coord not in get_neighbors_within_radius_two(coord)

  def test_no_duplicates(self) -> None:
    for coord in SAMPLE_COORDS:
      result = get_neighbors_within_radius_two(coord)
      assert len(result) == len(set(result))

  def test_contains_direct_neighbors(self) -> None:
    coord = HexCoord(4, -1)
    result = set(get_neighbors_within_radius_two(coord))
    assert set(get_neighbors(coord)) <= result

  def test_same_size_for_both_parities(self) -> None:
    even = get_neighbors_within_radius_two(HexCoord(0, 0))
    odd = get_neighbors_within_radius_two(HexCoord(1, 0))
    assert len(even) == len(odd)

  def test_is_union_of_two_hops(self) -> None:
    coord = HexCoord(1, 1)
    expected = set(get_neighbors(coord))
    for n in get_neighbors(coord):
      expected.update(get_neighbors(n))
    expected.discard(coord)
    assert set(get_neighbors_within_radius_two(coord)) == expected

  def test_far_cell_not_reachable(self) -> None:
    assert HexCoord(100, 100) not in get_neighbors_within_radius_two(HexCoord(0, 0))


# =============================================================================
# Layout Tests
# =============================================================================


class TestHexPosition:
  def test_origin(self) -> None:
    assert hex_position(HexCoord(0, 0), 220) == (0, 0)

  def test_odd_column_shifted_down(self) -> None:
    px, py = hex_position(HexCoord(1, 0), 220)
    assert px == 220
    assert py == pytest.approx(220 * math.sqrt(3) * 0.68)

  def test_row_step(self) -> None:
    _, py = hex_position(HexCoord(0, 2), 100)
    assert py == pytest.approx(2 * 100 * math.sqrt(3) * 1.36)
