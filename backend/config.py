"""
Environment-driven configuration for the fleet live map.
"""

import os
from typing import List, Optional


def _env_str(name: str, default: str = "") -> str:
  value = os.getenv(name)
  if value is None:
    return default
  return value.strip()


def _env_bool(name: str, default: bool) -> bool:
  value = os.getenv(name)
  if value is None:
    return default
  normalized = value.strip().lower()
  if normalized in ("1", "true", "yes", "y", "on"):
    return True
  if normalized in ("0", "false", "no", "n", "off"):
    return False
  return default


def _env_int(name: str, default: int) -> int:
  value = os.getenv(name)
  if value is None or not value.strip():
    return default
  try:
    return int(value.strip())
  except ValueError:
    return default


def _env_float(name: str, default: float) -> float:
  value = os.getenv(name)
  if value is None or not value.strip():
    return default
  try:
    return float(value.strip())
  except ValueError:
    return default


def _env_list(name: str, default: str) -> List[str]:
  raw = _env_str(name, default)
  return [part.strip() for part in raw.split(",") if part.strip()]


APP_DIR = os.path.dirname(os.path.abspath(__file__))

# =========================
# Storage
# =========================
DATA_DIR = _env_str("DATA_DIR", os.path.join(APP_DIR, "data"))
DATABASE_PATH = _env_str("DATABASE_PATH", os.path.join(DATA_DIR, "tracker.db"))
HISTORY_TIMEZONE = _env_str("HISTORY_TIMEZONE", "UTC")
SEED_DEMO_DEVICES = _env_bool("SEED_DEMO_DEVICES", True)
DEVICE_ID_MAX_LEN = _env_int("DEVICE_ID_MAX_LEN", 64)

# =========================
# Live state
# =========================
OFFLINE_AFTER_SECONDS = _env_float("OFFLINE_AFTER_SECONDS", 15 * 60)
SUBSCRIBER_QUEUE_MAX = _env_int("SUBSCRIBER_QUEUE_MAX", 256)

# =========================
# Routing providers
# =========================
ROUTING_PRIMARY_URL = _env_str("ROUTING_PRIMARY_URL", "https://router.project-osrm.org")
ROUTING_SECONDARY_URL = _env_str(
  "ROUTING_SECONDARY_URL", "https://routing.openstreetmap.de/routed-car"
)
ROUTING_SECONDARY_KIND = _env_str("ROUTING_SECONDARY_KIND", "osrm").lower()
ROUTING_SECONDARY_API_KEY: Optional[str] = _env_str("ROUTING_SECONDARY_API_KEY") or None
ROUTING_TIMEOUT_SECONDS = _env_float("ROUTING_TIMEOUT_SECONDS", 10.0)

# =========================
# MQTT ingestion
# =========================
MQTT_ENABLED = _env_bool("MQTT_ENABLED", False)
MQTT_HOST = _env_str("MQTT_HOST", "localhost")
MQTT_PORT = _env_int("MQTT_PORT", 1883)
MQTT_USERNAME = _env_str("MQTT_USERNAME")
MQTT_PASSWORD = _env_str("MQTT_PASSWORD")
MQTT_TOPICS = _env_list("MQTT_TOPICS", "fleet/+/location")
MQTT_TLS = _env_bool("MQTT_TLS", False)
MQTT_CLIENT_ID = _env_str("MQTT_CLIENT_ID")

# =========================
# HTTP server
# =========================
HOST = _env_str("HOST", "0.0.0.0")
PORT = _env_int("PORT", 3000)
CORS_ORIGINS = _env_list("CORS_ORIGINS", "*")

# =========================
# Viewer
# =========================
VIEW_WIDTH_PX = _env_int("VIEW_WIDTH_PX", 1024)
VIEW_HEIGHT_PX = _env_int("VIEW_HEIGHT_PX", 768)
NOTICE_TTL_SECONDS = _env_float("NOTICE_TTL_SECONDS", 4.0)
