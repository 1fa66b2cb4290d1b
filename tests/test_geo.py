import math

import pytest

from geo import (
  MAX_ZOOM,
  MIN_ZOOM,
  SINGLE_POINT_ZOOM,
  bounds_center,
  fit_bounds,
  format_distance,
  haversine_m,
  is_offline,
  path_distance_m,
  valid_lat_lng,
  zoom_for_bounds,
)


def test_haversine_same_point_is_zero():
  assert haversine_m(28.7041, 77.1025, 28.7041, 77.1025) == 0.0


def test_haversine_delhi_to_mumbai():
  distance = haversine_m(28.7041, 77.1025, 19.0760, 72.8777)
  assert distance == pytest.approx(1_150_000, rel=0.02)


def test_path_distance_sums_legs():
  a, b, c = (0.0, 0.0), (0.0, 1.0), (1.0, 1.0)
  expected = haversine_m(*a, *b) + haversine_m(*b, *c)
  assert path_distance_m([a, b, c]) == pytest.approx(expected)
  assert path_distance_m([a]) == 0.0
  assert path_distance_m([]) == 0.0


def test_format_distance():
  assert format_distance(850) == "850 m"
  assert format_distance(0) == "0 m"
  assert format_distance(12345) == "12.3 km"
  assert format_distance(1000) == "1.0 km"


def test_valid_lat_lng_ranges():
  assert valid_lat_lng(90, 180)
  assert valid_lat_lng(-90, -180)
  assert not valid_lat_lng(90.0001, 0)
  assert not valid_lat_lng(0, -180.5)
  assert not valid_lat_lng(math.nan, 0)
  assert not valid_lat_lng(0, math.inf)


def test_is_offline():
  assert is_offline(1000.0, None)
  assert not is_offline(1000.0, 900.0, threshold=300)
  assert is_offline(1000.0, 600.0, threshold=300)


def test_fit_bounds_and_center():
  assert fit_bounds([]) is None
  bounds = fit_bounds([(10.0, 20.0), (12.0, 18.0), (11.0, 25.0)])
  assert bounds == ((10.0, 18.0), (12.0, 25.0))
  assert bounds_center(bounds) == (11.0, 21.5)


def test_single_point_uses_default_zoom():
  bounds = fit_bounds([(12.9716, 77.5946)])
  assert zoom_for_bounds(bounds, 1024, 768) == SINGLE_POINT_ZOOM


def test_zoom_is_clamped():
  world = ((-85.0, -180.0), (85.0, 180.0))
  assert zoom_for_bounds(world, 1024, 768) == MIN_ZOOM
  tiny = ((12.97160, 77.59460), (12.97161, 77.59461))
  assert zoom_for_bounds(tiny, 1024, 768) == MAX_ZOOM


def test_zoom_shrinks_as_bounds_grow():
  city = fit_bounds([(12.90, 77.50), (13.05, 77.70)])
  country = fit_bounds([(8.0, 68.0), (35.0, 97.0)])
  assert zoom_for_bounds(city, 1024, 768) > zoom_for_bounds(country, 1024, 768)


def test_haversine_is_symmetric():
  a = (28.7041, 77.1025)
  b = (12.9716, 77.5946)
  assert haversine_m(*a, *b) == pytest.approx(haversine_m(*b, *a))
