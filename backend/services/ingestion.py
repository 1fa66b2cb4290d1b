"""
Location ingestion shared by the HTTP endpoint and the MQTT listener.
"""

import threading
import time
from typing import Any, Optional

from errors import StorageError, ValidationError
from services.broadcaster import LiveChannel
from services.persistence import LocationStore
from state import DeviceWithPosition, rejects_last, stats

# Held across commit and publish so updates reach the channel in commit order,
# whichever thread ran the write.
_ingest_lock = threading.Lock()


def _record_reject(source: str, device_id: Any, reason: str) -> None:
  stats["rejected_total"] += 1
  rejects_last.append({
    "ts": time.time(),
    "source": source,
    "device_id": device_id if isinstance(device_id, str) else None,
    "reason": reason,
  })


def ingest_location(
  store: LocationStore,
  channel: Optional[LiveChannel],
  device_id: Any,
  lat: Any,
  lng: Any,
  source: str = "http",
) -> DeviceWithPosition:
  """
  Persist a reported position, then broadcast it.

  The store commit (device row and history row) completes before anything
  is published, so subscribers only ever see durable updates.
  """
  missing = [name for name, value in (("deviceId", device_id), ("lat", lat), ("lng", lng)) if value is None or value == ""]
  if missing:
    _record_reject(source, device_id, f"missing {','.join(missing)}")
    print(f"[ingest] rejected source={source} missing={missing}")
    raise ValidationError("Missing data: " + ", ".join(missing), field=missing[0])

  with _ingest_lock:
    try:
      device = store.upsert(device_id, lat, lng)
    except ValidationError as exc:
      _record_reject(source, device_id, str(exc))
      print(f"[ingest] rejected source={source} device={device_id!r}: {exc}")
      raise
    except StorageError as exc:
      _record_reject(source, device_id, "storage_error")
      print(f"[ingest] storage failure source={source} device={device_id!r}: {exc}")
      raise

    stats["ingested_total"] += 1
    stats["last_ingest_ts"] = device.last_updated
    stats["last_ingest_device"] = device.id

    if channel is not None:
      channel.publish(device)
  return device
