import json
import math
import re
from typing import Any, Dict, List, Optional, Tuple

from geo import valid_lat_lng

LATLON_KEYS_LAT = ("lat", "latitude")
LATLON_KEYS_LON = ("lng", "lon", "longitude")
DEVICE_ID_KEYS = ("deviceId", "device_id", "mobile", "id")

# fleet/<deviceId>/location
TOPIC_DEVICE_RE = re.compile(r"^[^/]+/([^/]+)/[^/]+$")


def _coerce_float(value: Any) -> Optional[float]:
  if value is None or isinstance(value, bool):
    return None
  if isinstance(value, str):
    value = value.strip()
    if not value:
      return None
  try:
    result = float(value)
  except (TypeError, ValueError):
    return None
  if not math.isfinite(result):
    return None
  return result


def _first_key(obj: Dict[str, Any], keys: Tuple[str, ...]) -> Any:
  for key in keys:
    if key in obj and obj[key] is not None:
      return obj[key]
  return None


def _device_id_from_topic(topic: str) -> Optional[str]:
  match = TOPIC_DEVICE_RE.match(topic or "")
  if not match:
    return None
  return match.group(1).strip() or None


def _safe_preview(data: bytes, limit: int = 120) -> str:
  return data[:limit].decode("utf-8", errors="replace")


def parse_location_payload(topic: str, payload_bytes: bytes) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
  """
  Parse a device's self-reported location message.

  Returns (parsed, error). Parsed holds device_id, lat and lng; range checks
  are left to the store so both transports share one validation path.
  """
  try:
    obj = json.loads(payload_bytes.decode("utf-8"))
  except (UnicodeDecodeError, json.JSONDecodeError) as exc:
    return None, f"invalid_json: {exc}"
  if not isinstance(obj, dict):
    return None, "not_an_object"

  device_id = _first_key(obj, DEVICE_ID_KEYS) or _device_id_from_topic(topic)
  if not isinstance(device_id, str) or not device_id.strip():
    return None, "missing_device_id"

  lat = _coerce_float(_first_key(obj, LATLON_KEYS_LAT))
  lng = _coerce_float(_first_key(obj, LATLON_KEYS_LON))
  if lat is None or lng is None:
    return None, "missing_coordinates"

  return {"device_id": device_id.strip(), "lat": lat, "lng": lng}, None


# =========================
# Route geometry
# =========================
def decode_polyline(encoded: str, precision: int = 5) -> List[Tuple[float, float]]:
  """Decode a Google encoded polyline into (lat, lng) pairs."""
  factor = 10**precision
  points: List[Tuple[float, float]] = []
  index = lat = lng = 0
  length = len(encoded)

  def _next_value() -> int:
    nonlocal index
    result = shift = 0
    while True:
      if index >= length:
        raise ValueError("truncated polyline")
      b = ord(encoded[index]) - 63
      index += 1
      if b < 0 or b > 63:
        raise ValueError(f"invalid polyline character at {index - 1}")
      result |= (b & 0x1f) << shift
      shift += 5
      if b < 0x20:
        break
    return ~(result >> 1) if (result & 1) else (result >> 1)

  while index < length:
    lat += _next_value()
    lng += _next_value()
    points.append((lat / factor, lng / factor))
  return points


def geojson_line_points(geometry: Any) -> List[Tuple[float, float]]:
  """Convert a GeoJSON LineString ([lng, lat] pairs) into (lat, lng) pairs."""
  if not isinstance(geometry, dict):
    raise ValueError("geometry is not an object")
  if geometry.get("type") not in (None, "LineString"):
    raise ValueError(f"unsupported geometry type {geometry.get('type')!r}")
  coords = geometry.get("coordinates")
  if not isinstance(coords, list):
    raise ValueError("geometry has no coordinates")
  points: List[Tuple[float, float]] = []
  for entry in coords:
    if not isinstance(entry, (list, tuple)) or len(entry) < 2:
      raise ValueError("coordinate entry is not a pair")
    lng = _coerce_float(entry[0])
    lat = _coerce_float(entry[1])
    if lat is None or lng is None:
      raise ValueError("coordinate entry is not numeric")
    points.append((lat, lng))
  return points


def validate_path(points: List[Tuple[float, float]]) -> List[Tuple[float, float]]:
  if len(points) < 2:
    raise ValueError(f"path has {len(points)} point(s)")
  for lat, lng in points:
    if not valid_lat_lng(lat, lng):
      raise ValueError(f"path point out of range ({lat}, {lng})")
  return points
