"""
Debug routes for development/troubleshooting.
"""

import time

from fastapi import APIRouter, Request

from config import MQTT_ENABLED, OFFLINE_AFTER_SECONDS
from geo import is_offline
from state import DeviceWithPosition, rejects_last, stats

router = APIRouter()


@router.get("/stats")
def get_stats(request: Request):
  """Return ingestion, broadcast and routing counters."""
  now = time.time()
  devices = request.app.state.store.get_all()
  positioned = [d for d in devices if isinstance(d, DeviceWithPosition)]
  offline = [d.id for d in devices if is_offline(now, d.last_updated) or not isinstance(d, DeviceWithPosition)]
  return {
    "stats": stats,
    "devices": len(devices),
    "positioned_devices": len(positioned),
    "offline_devices": sorted(offline),
    "offline_after_seconds": OFFLINE_AFTER_SECONDS,
    "history_points": request.app.state.store.history_count(),
    "subscribers": len(request.app.state.channel.subscribers),
    "pending_broadcasts": request.app.state.channel.update_queue.qsize(),
    "mqtt_enabled": MQTT_ENABLED,
    "server_time": now,
  }


@router.get("/debug/rejects")
def debug_rejects():
  """Most recent rejected ingestions, newest first."""
  return {"rejects": list(reversed(rejects_last))}
