"""
Shared helper functions for routes and services.
"""

import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from decoder import _coerce_float
from geo import format_distance, is_offline
from state import Device, DevicePending, DeviceWithPosition, HistoryPoint, RoutePlan


def iso_from_ts(ts: Optional[float]) -> Optional[str]:
  """Convert Unix timestamp to ISO 8601 string."""
  if ts is None:
    return None
  try:
    return datetime.fromtimestamp(float(ts), tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
  except (TypeError, ValueError, OverflowError, OSError):
    return None


def ts_from_iso(value: Optional[str]) -> Optional[float]:
  """Parse ISO 8601 timestamp string to Unix timestamp."""
  if not value:
    return None
  try:
    text = value.strip()
    if text.endswith("Z"):
      text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text).timestamp()
  except (AttributeError, ValueError):
    return None


def device_payload(device: Device, now: Optional[float] = None) -> Dict[str, Any]:
  """Serialize a device for WebSocket/API responses."""
  now = time.time() if now is None else now
  payload: Dict[str, Any] = {
    "id": device.id,
    "lat": None,
    "lng": None,
    "lastUpdated": iso_from_ts(device.last_updated),
    "ts": device.last_updated,
    "offline": is_offline(now, device.last_updated) if isinstance(device, DeviceWithPosition) else True,
  }
  if isinstance(device, DeviceWithPosition):
    payload["lat"] = device.lat
    payload["lng"] = device.lng
  return payload


def device_from_payload(payload: Dict[str, Any]) -> Device:
  """Inverse of device_payload; a record without both coordinates is pending."""
  device_id = str(payload.get("id") or payload.get("deviceId") or "")
  ts = _coerce_float(payload.get("ts"))
  if ts is None:
    ts = ts_from_iso(payload.get("lastUpdated"))
  lat = _coerce_float(payload.get("lat"))
  lng = _coerce_float(payload.get("lng"))
  if lat is None or lng is None or ts is None:
    return DevicePending(id=device_id, last_updated=ts)
  return DeviceWithPosition(id=device_id, lat=lat, lng=lng, last_updated=ts)


def history_point_payload(point: HistoryPoint) -> Dict[str, Any]:
  return {
    "lat": point.lat,
    "lng": point.lng,
    "timestamp": iso_from_ts(point.timestamp),
    "ts": point.timestamp,
  }


def history_point_from_payload(device_id: str, payload: Dict[str, Any]) -> Optional[HistoryPoint]:
  lat = _coerce_float(payload.get("lat"))
  lng = _coerce_float(payload.get("lng"))
  ts = _coerce_float(payload.get("ts"))
  if ts is None:
    ts = ts_from_iso(payload.get("timestamp"))
  if lat is None or lng is None or ts is None:
    return None
  return HistoryPoint(device_id=device_id, lat=lat, lng=lng, timestamp=ts)


def route_payload(plan: RoutePlan) -> Dict[str, Any]:
  return {
    "points": [[lat, lng] for lat, lng in plan.points],
    "distance_m": round(plan.distance_m, 1),
    "distance_text": format_distance(plan.distance_m),
    "provenance": plan.provenance,
    "provider": plan.provider,
  }


def route_from_payload(payload: Dict[str, Any]) -> RoutePlan:
  points = []
  for entry in payload.get("points") or []:
    lat = _coerce_float(entry[0]) if isinstance(entry, (list, tuple)) and len(entry) >= 2 else None
    lng = _coerce_float(entry[1]) if lat is not None else None
    if lat is None or lng is None:
      raise ValueError(f"invalid route point {entry!r}")
    points.append((lat, lng))
  distance = _coerce_float(payload.get("distance_m"))
  if len(points) < 2 or distance is None or distance < 0:
    raise ValueError("route payload is incomplete")
  return RoutePlan(
    points=points,
    distance_m=distance,
    provenance=str(payload.get("provenance") or ""),
    provider=payload.get("provider"),
  )
