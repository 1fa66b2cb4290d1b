"""
Calendar-day helpers for the position history log.
"""

from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import HISTORY_TIMEZONE
from errors import ValidationError
from geo import format_distance, path_distance_m
from state import HistoryPoint


def _zone(tz_name: Optional[str]) -> ZoneInfo:
  name = tz_name or HISTORY_TIMEZONE
  try:
    return ZoneInfo(name)
  except (ZoneInfoNotFoundError, ValueError):
    print(f"[history] unknown timezone {name!r}, using UTC")
    return ZoneInfo("UTC")


def parse_day(value: Any) -> date:
  """Parse a YYYY-MM-DD string into a calendar date."""
  if isinstance(value, date) and not isinstance(value, datetime):
    return value
  if not isinstance(value, str) or not value.strip():
    raise ValidationError("Missing date", field="date")
  try:
    return datetime.strptime(value.strip(), "%Y-%m-%d").date()
  except ValueError:
    raise ValidationError(f"Invalid date {value!r}, expected YYYY-MM-DD", field="date")


def day_window(day: date, tz_name: Optional[str] = None) -> Tuple[float, float]:
  """Half-open [start, end) epoch window covering one calendar day."""
  zone = _zone(tz_name)
  start = datetime.combine(day, time.min, tzinfo=zone)
  end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone)
  return start.timestamp(), end.timestamp()


def day_of(ts: float, tz_name: Optional[str] = None) -> date:
  return datetime.fromtimestamp(ts, tz=_zone(tz_name)).date()


def history_summary(points: Sequence[HistoryPoint]) -> Dict[str, Any]:
  """Distance travelled along a history path, in chronological order."""
  chronological: List[HistoryPoint] = sorted(points, key=lambda p: p.timestamp)
  distance_m = path_distance_m([(p.lat, p.lng) for p in chronological])
  return {
    "count": len(chronological),
    "distance_m": round(distance_m, 1),
    "distance_text": format_distance(distance_m),
    "first_ts": chronological[0].timestamp if chronological else None,
    "last_ts": chronological[-1].timestamp if chronological else None,
  }
