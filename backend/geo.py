import math
from typing import Iterable, List, Optional, Sequence, Tuple

from config import OFFLINE_AFTER_SECONDS

EARTH_RADIUS_M = 6371000.0
TILE_SIZE_PX = 256
MIN_ZOOM = 1
MAX_ZOOM = 18
SINGLE_POINT_ZOOM = 15

LatLng = Tuple[float, float]
Bounds = Tuple[LatLng, LatLng]


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
  phi1 = math.radians(lat1)
  phi2 = math.radians(lat2)
  dphi = math.radians(lat2 - lat1)
  dlambda = math.radians(lng2 - lng1)
  a = math.sin(dphi / 2)**2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2)**2
  c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
  return EARTH_RADIUS_M * c


def path_distance_m(points: Sequence[LatLng]) -> float:
  """Sum of great-circle legs along a path."""
  total = 0.0
  for idx in range(len(points) - 1):
    a = points[idx]
    b = points[idx + 1]
    total += haversine_m(a[0], a[1], b[0], b[1])
  return total


def format_distance(distance_m: float) -> str:
  if distance_m < 1000:
    return f"{int(round(distance_m))} m"
  return f"{distance_m / 1000.0:.1f} km"


def valid_lat_lng(lat: float, lng: float) -> bool:
  if not (math.isfinite(lat) and math.isfinite(lng)):
    return False
  return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def is_offline(now: float, last_updated: Optional[float], threshold: float = OFFLINE_AFTER_SECONDS) -> bool:
  if last_updated is None:
    return True
  return now - last_updated > threshold


def fit_bounds(points: Iterable[LatLng]) -> Optional[Bounds]:
  south = west = math.inf
  north = east = -math.inf
  seen = False
  for lat, lng in points:
    seen = True
    south = min(south, lat)
    north = max(north, lat)
    west = min(west, lng)
    east = max(east, lng)
  if not seen:
    return None
  return (south, west), (north, east)


def bounds_center(bounds: Bounds) -> LatLng:
  (south, west), (north, east) = bounds
  return ((south + north) / 2.0, (west + east) / 2.0)


def _mercator_lat(lat: float) -> float:
  sin = math.sin(math.radians(lat))
  rad_x2 = math.log((1 + sin) / (1 - sin)) / 2 if abs(sin) < 1 else math.copysign(math.pi, sin)
  return max(min(rad_x2, math.pi), -math.pi) / 2


def zoom_for_bounds(bounds: Bounds, width_px: int, height_px: int) -> int:
  """
  Largest Web Mercator zoom at which the bounds fit the viewport.
  """
  (south, west), (north, east) = bounds
  lat_fraction = (_mercator_lat(north) - _mercator_lat(south)) / math.pi
  lng_diff = east - west
  lng_fraction = ((lng_diff + 360) if lng_diff < 0 else lng_diff) / 360.0

  if lat_fraction <= 0 and lng_fraction <= 0:
    return SINGLE_POINT_ZOOM

  candidates: List[float] = []
  if lat_fraction > 0:
    candidates.append(math.log(height_px / TILE_SIZE_PX / lat_fraction) / math.log(2))
  if lng_fraction > 0:
    candidates.append(math.log(width_px / TILE_SIZE_PX / lng_fraction) / math.log(2))
  zoom = int(math.floor(min(candidates)))
  return max(MIN_ZOOM, min(MAX_ZOOM, zoom))
