"""
Broker ingestion for devices that publish instead of POSTing.

Each message on `fleet/<deviceId>/location` carries `{"lat": .., "lng": ..}`.
Callbacks run on paho's network thread; parsed positions are handed to the
event loop and go through the same ingestion path as the HTTP endpoint.
"""

import asyncio
from typing import Any, Dict, Optional

import paho.mqtt.client as mqtt

from config import (
  MQTT_CLIENT_ID,
  MQTT_HOST,
  MQTT_PASSWORD,
  MQTT_PORT,
  MQTT_TLS,
  MQTT_TOPICS,
  MQTT_USERNAME,
)
from decoder import _safe_preview, parse_location_payload
from errors import StorageError, ValidationError
from services.broadcaster import LiveChannel
from services.ingestion import _record_reject, ingest_location
from services.persistence import LocationStore
from state import stats

mqtt_client: Optional[mqtt.Client] = None


def on_connect(client, userdata, flags, reason_code, properties=None):
  if reason_code != 0:
    print(f"[mqtt] broker refused connection reason_code={reason_code}")
    return
  # Subscriptions do not survive a reconnect with a clean session.
  for topic in MQTT_TOPICS:
    client.subscribe(topic, qos=0)
  print(f"[mqtt] connected, listening on {len(MQTT_TOPICS)} topic(s): {', '.join(MQTT_TOPICS)}")


def on_disconnect(client, userdata, flags, reason_code, properties=None):
  print(f"[mqtt] connection lost reason_code={reason_code}, paho will retry")


def _ingest_parsed(store: LocationStore, channel: LiveChannel, parsed: Dict[str, Any]) -> None:
  # Runs on the event loop thread. Failures are already logged and recorded as rejects.
  try:
    ingest_location(store, channel, parsed["device_id"], parsed["lat"], parsed["lng"], source="mqtt")
  except (ValidationError, StorageError):
    pass


def on_message(client, userdata, msg: mqtt.MQTTMessage):
  stats["mqtt_received_total"] += 1
  loop: asyncio.AbstractEventLoop = userdata["loop"]

  parsed, error = parse_location_payload(msg.topic, msg.payload)
  if parsed is None:
    print(f"[mqtt] dropped topic={msg.topic} error={error} payload={_safe_preview(msg.payload)!r}")
    loop.call_soon_threadsafe(_record_reject, "mqtt", None, error or "unparsed")
    return

  loop.call_soon_threadsafe(_ingest_parsed, userdata["store"], userdata["channel"], parsed)


def create_client(loop: asyncio.AbstractEventLoop, store: LocationStore, channel: LiveChannel) -> mqtt.Client:
  """Connect to the broker in the background and start paho's network thread."""
  global mqtt_client

  client = mqtt.Client(
    mqtt.CallbackAPIVersion.VERSION2,
    client_id=MQTT_CLIENT_ID or None,
    userdata={"loop": loop, "store": store, "channel": channel},
  )
  if MQTT_USERNAME:
    client.username_pw_set(MQTT_USERNAME, MQTT_PASSWORD or None)
  if MQTT_TLS:
    client.tls_set()

  client.on_connect = on_connect
  client.on_disconnect = on_disconnect
  client.on_message = on_message
  client.reconnect_delay_set(min_delay=1, max_delay=30)

  print(f"[mqtt] connecting to {MQTT_HOST}:{MQTT_PORT} tls={MQTT_TLS}")
  client.connect_async(MQTT_HOST, MQTT_PORT, keepalive=30)
  client.loop_start()
  mqtt_client = client
  return client


def stop_client() -> None:
  global mqtt_client
  client, mqtt_client = mqtt_client, None
  if client is None:
    return
  try:
    client.disconnect()
    client.loop_stop()
  except (OSError, ValueError) as exc:
    print(f"[mqtt] shutdown error: {exc}")
