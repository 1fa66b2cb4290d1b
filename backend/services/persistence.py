"""
Location store.

Authoritative latest-position table plus an append-only history log, both in
one SQLite database. Every accepted upsert writes the device row and its
history row in a single transaction.
"""

import os
import sqlite3
import threading
import time
from datetime import date
from typing import Any, Callable, List, Optional, Tuple

from config import DEVICE_ID_MAX_LEN, HISTORY_TIMEZONE
from decoder import _coerce_float
from errors import StorageError, ValidationError
from geo import valid_lat_lng
from history import day_window, parse_day
from state import Device, DevicePending, DeviceWithPosition, HistoryPoint

SCHEMA = (
  """
  CREATE TABLE IF NOT EXISTS devices (
    id TEXT PRIMARY KEY,
    lat REAL,
    lng REAL,
    last_updated REAL
  )
  """,
  """
  CREATE TABLE IF NOT EXISTS location_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    device_id TEXT NOT NULL,
    lat REAL NOT NULL,
    lng REAL NOT NULL,
    timestamp REAL NOT NULL
  )
  """,
  "CREATE INDEX IF NOT EXISTS idx_history_device_ts ON location_history(device_id, timestamp)",
)

# Regional demo fleet: North (Delhi, Chandigarh), South (Bangalore, Chennai),
# East (Kolkata, Guwahati), West (Mumbai, Pune).
DEMO_DEVICES: Tuple[Tuple[str, float, float], ...] = (
  ("North-Truck-1", 28.7041, 77.1025),
  ("North-Truck-2", 30.7333, 76.7794),
  ("South-Truck-1", 12.9716, 77.5946),
  ("South-Truck-2", 13.0827, 80.2707),
  ("East-Truck-1", 22.5726, 88.3639),
  ("East-Truck-2", 26.1445, 91.7362),
  ("West-Truck-1", 19.0760, 72.8777),
  ("West-Truck-2", 18.5204, 73.8567),
)


def validate_device_id(device_id: Any) -> str:
  if not isinstance(device_id, str) or not device_id.strip():
    raise ValidationError("Missing deviceId", field="deviceId")
  device_id = device_id.strip()
  if len(device_id) > DEVICE_ID_MAX_LEN:
    raise ValidationError(f"deviceId longer than {DEVICE_ID_MAX_LEN} characters", field="deviceId")
  return device_id


def validate_coordinates(lat: Any, lng: Any) -> Tuple[float, float]:
  if lat is None:
    raise ValidationError("Missing lat", field="lat")
  if lng is None:
    raise ValidationError("Missing lng", field="lng")
  lat_val = _coerce_float(lat)
  lng_val = _coerce_float(lng)
  if lat_val is None:
    raise ValidationError(f"lat is not a number: {lat!r}", field="lat")
  if lng_val is None:
    raise ValidationError(f"lng is not a number: {lng!r}", field="lng")
  if not valid_lat_lng(lat_val, lng_val):
    raise ValidationError(f"Coordinates out of range: ({lat_val}, {lng_val})", field="lat" if abs(lat_val) > 90 else "lng")
  return lat_val, lng_val


def _row_to_device(row: sqlite3.Row) -> Device:
  lat = row["lat"]
  lng = row["lng"]
  if lat is None or lng is None:
    return DevicePending(id=row["id"], last_updated=row["last_updated"])
  return DeviceWithPosition(id=row["id"], lat=lat, lng=lng, last_updated=row["last_updated"])


class LocationStore:
  """SQLite-backed device table and position history."""

  def __init__(self, path: str, clock: Callable[[], float] = time.time, tz_name: Optional[str] = None):
    self.path = path
    self.tz_name = tz_name or HISTORY_TIMEZONE
    self._clock = clock
    self._lock = threading.Lock()
    try:
      if path != ":memory:":
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)
      self._conn = sqlite3.connect(path, check_same_thread=False, timeout=30)
      self._conn.row_factory = sqlite3.Row
      if path != ":memory:":
        self._conn.execute("PRAGMA journal_mode=WAL;")
      with self._conn:
        for ddl in SCHEMA:
          self._conn.execute(ddl)
    except (sqlite3.Error, OSError) as exc:
      raise StorageError(f"failed to open {path}: {exc}") from exc
    print(f"[store] ready path={path} tz={self.tz_name}")

  def close(self) -> None:
    with self._lock:
      try:
        self._conn.close()
      except sqlite3.Error as exc:
        print(f"[store] close failed: {exc}")

  def upsert(self, device_id: Any, lat: Any, lng: Any) -> DeviceWithPosition:
    """
    Record a device's new position.

    Overwrites the latest position and appends one history row with the
    same coordinate and timestamp. The timestamp never goes backwards for a
    device, even if the wall clock does.
    """
    device_id = validate_device_id(device_id)
    lat_val, lng_val = validate_coordinates(lat, lng)

    with self._lock:
      try:
        with self._conn:
          row = self._conn.execute("SELECT last_updated FROM devices WHERE id = ?", (device_id,)).fetchone()
          now = self._clock()
          previous = row["last_updated"] if row is not None else None
          if previous is not None and previous > now:
            now = previous
          self._conn.execute(
            """
            INSERT INTO devices (id, lat, lng, last_updated) VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET lat = excluded.lat, lng = excluded.lng, last_updated = excluded.last_updated
            """,
            (device_id, lat_val, lng_val, now),
          )
          self._conn.execute(
            "INSERT INTO location_history (device_id, lat, lng, timestamp) VALUES (?, ?, ?, ?)",
            (device_id, lat_val, lng_val, now),
          )
      except sqlite3.Error as exc:
        print(f"[store] upsert failed device={device_id}: {exc}")
        raise StorageError(f"upsert failed for {device_id}: {exc}") from exc

    return DeviceWithPosition(id=device_id, lat=lat_val, lng=lng_val, last_updated=now)

  def register(self, device_id: Any) -> Device:
    """Create a pending device if the id is unknown; otherwise return it unchanged."""
    device_id = validate_device_id(device_id)
    with self._lock:
      try:
        with self._conn:
          self._conn.execute(
            "INSERT INTO devices (id, lat, lng, last_updated) VALUES (?, NULL, NULL, ?) ON CONFLICT(id) DO NOTHING",
            (device_id, self._clock()),
          )
          row = self._conn.execute("SELECT * FROM devices WHERE id = ?", (device_id,)).fetchone()
      except sqlite3.Error as exc:
        raise StorageError(f"register failed for {device_id}: {exc}") from exc
    return _row_to_device(row)

  def get(self, device_id: str) -> Optional[Device]:
    with self._lock:
      try:
        row = self._conn.execute("SELECT * FROM devices WHERE id = ?", (device_id,)).fetchone()
      except sqlite3.Error as exc:
        raise StorageError(f"read failed for {device_id}: {exc}") from exc
    return _row_to_device(row) if row is not None else None

  def get_all(self) -> List[Device]:
    with self._lock:
      try:
        rows = self._conn.execute("SELECT * FROM devices").fetchall()
      except sqlite3.Error as exc:
        raise StorageError(f"snapshot read failed: {exc}") from exc
    return [_row_to_device(row) for row in rows]

  def get_history(self, device_id: str, day: Any) -> List[HistoryPoint]:
    """Points recorded on one calendar day, most recent first. Empty when none match."""
    day_value: date = parse_day(day)
    start, end = day_window(day_value, self.tz_name)
    with self._lock:
      try:
        rows = self._conn.execute(
          """
          SELECT device_id, lat, lng, timestamp FROM location_history
          WHERE device_id = ? AND timestamp >= ? AND timestamp < ?
          ORDER BY timestamp DESC, id DESC
          """,
          (device_id, start, end),
        ).fetchall()
      except sqlite3.Error as exc:
        raise StorageError(f"history read failed for {device_id}: {exc}") from exc
    return [
      HistoryPoint(device_id=row["device_id"], lat=row["lat"], lng=row["lng"], timestamp=row["timestamp"])
      for row in rows
    ]

  def history_count(self, device_id: Optional[str] = None) -> int:
    with self._lock:
      try:
        if device_id is None:
          row = self._conn.execute("SELECT COUNT(*) AS c FROM location_history").fetchone()
        else:
          row = self._conn.execute(
            "SELECT COUNT(*) AS c FROM location_history WHERE device_id = ?", (device_id,)
          ).fetchone()
      except sqlite3.Error as exc:
        raise StorageError(f"history count failed: {exc}") from exc
    return int(row["c"])

  def seed_demo_devices(self) -> int:
    """Insert the demo fleet once. Returns how many rows were added."""
    if self.get(DEMO_DEVICES[0][0]) is not None:
      return 0
    added = 0
    with self._lock:
      try:
        with self._conn:
          now = self._clock()
          for device_id, lat, lng in DEMO_DEVICES:
            cur = self._conn.execute(
              "INSERT INTO devices (id, lat, lng, last_updated) VALUES (?, ?, ?, ?) ON CONFLICT(id) DO NOTHING",
              (device_id, lat, lng, now),
            )
            added += cur.rowcount
      except sqlite3.Error as exc:
        raise StorageError(f"seeding failed: {exc}") from exc
    print(f"[store] seeded {added} demo devices")
    return added
