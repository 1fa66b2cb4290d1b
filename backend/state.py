from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional, Tuple, Union

LatLng = Tuple[float, float]

PROVENANCE_ROUTED = "routed"
PROVENANCE_FALLBACK = "straight-line-fallback"


@dataclass(frozen=True)
class DeviceWithPosition:
  id: str
  lat: float
  lng: float
  last_updated: float

  @property
  def position(self) -> LatLng:
    return (self.lat, self.lng)


@dataclass(frozen=True)
class DevicePending:
  """Registered device that has not reported a coordinate yet."""
  id: str
  last_updated: Optional[float] = None


Device = Union[DeviceWithPosition, DevicePending]


@dataclass(frozen=True)
class HistoryPoint:
  device_id: str
  lat: float
  lng: float
  timestamp: float


@dataclass(frozen=True)
class RoutePlan:
  points: List[LatLng]
  distance_m: float
  provenance: str
  provider: Optional[str] = None

  @property
  def is_fallback(self) -> bool:
    return self.provenance == PROVENANCE_FALLBACK


def has_position(device: Optional[Device]) -> bool:
  return isinstance(device, DeviceWithPosition)


stats: Dict[str, Any] = {
  "ingested_total": 0,
  "rejected_total": 0,
  "mqtt_received_total": 0,
  "last_ingest_ts": None,
  "last_ingest_device": None,
  "route_requests_total": 0,
  "route_fallbacks_total": 0,
  "provider_failures": {},
  "subscribers_dropped_total": 0,
}

rejects_last: Deque[Dict[str, Any]] = deque(maxlen=50)


def reset_stats() -> None:
  stats.update(
    {
      "ingested_total": 0,
      "rejected_total": 0,
      "mqtt_received_total": 0,
      "last_ingest_ts": None,
      "last_ingest_device": None,
      "route_requests_total": 0,
      "route_fallbacks_total": 0,
      "provider_failures": {},
      "subscribers_dropped_total": 0,
    }
  )
  rejects_last.clear()
