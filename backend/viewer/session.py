"""
Viewer session: connects one MapStateEngine to the server.

REST calls (history, route, position reports) go through httpx; the live
stream is the /ws endpoint read with the websockets library. The stream
reconnects with exponential backoff, and every new connection starts with a
snapshot that replaces the engine's device set.
"""

import asyncio
import json
from datetime import date
from typing import Any, AsyncIterator, Callable, List, Optional

import httpx
import websockets
from websockets.exceptions import WebSocketException

from config import ROUTING_TIMEOUT_SECONDS
from helpers import device_from_payload, history_point_from_payload, route_from_payload
from state import HistoryPoint, LatLng, RoutePlan
from viewer.engine import DeviceUpdated, MapStateEngine, SnapshotReceived

RECONNECT_MIN_SECONDS = 1.0
RECONNECT_MAX_SECONDS = 30.0


def ws_url_for(base_url: str) -> str:
  base = base_url.rstrip("/")
  if base.startswith("https://"):
    return "wss://" + base[len("https://"):] + "/ws"
  if base.startswith("http://"):
    return "ws://" + base[len("http://"):] + "/ws"
  return base + "/ws"


class ViewerSession:
  def __init__(
    self,
    base_url: str,
    me_id: str,
    http_client: Optional[httpx.AsyncClient] = None,
    engine_factory: Optional[Callable[..., MapStateEngine]] = None,
    ws_url: Optional[str] = None,
  ):
    self.base_url = base_url.rstrip("/")
    self.me_id = me_id
    self.ws_url = ws_url or ws_url_for(self.base_url)
    self._owns_client = http_client is None
    self.http = http_client or httpx.AsyncClient(base_url=self.base_url, timeout=ROUTING_TIMEOUT_SECONDS + 5)
    factory = engine_factory or MapStateEngine
    self.engine = factory(me_id, self.fetch_history, self.resolve_route)
    self.connected = False
    self._engine_task: Optional[asyncio.Task] = None
    self._stream_task: Optional[asyncio.Task] = None
    self._watch_task: Optional[asyncio.Task] = None

  async def __aenter__(self) -> "ViewerSession":
    self.start()
    return self

  async def __aexit__(self, *exc_info: Any) -> None:
    await self.close()

  def start(self) -> None:
    loop = asyncio.get_running_loop()
    if self._engine_task is None:
      self._engine_task = loop.create_task(self.engine.run())
    if self._stream_task is None:
      self._stream_task = loop.create_task(self._stream_loop())

  # -------------------------
  # REST
  # -------------------------
  async def fetch_history(self, device_id: str, day: date) -> List[HistoryPoint]:
    resp = await self.http.get("/api/history", params={"deviceId": device_id, "date": day.isoformat()})
    resp.raise_for_status()
    points = []
    for entry in resp.json().get("history") or []:
      point = history_point_from_payload(device_id, entry)
      if point is not None:
        points.append(point)
    return points

  async def resolve_route(self, origin: LatLng, destination: LatLng) -> RoutePlan:
    params = {
      "fromLat": origin[0],
      "fromLng": origin[1],
      "toLat": destination[0],
      "toLng": destination[1],
    }
    resp = await self.http.get("/api/route", params=params)
    resp.raise_for_status()
    return route_from_payload(resp.json().get("route") or {})

  async def report_position(self, lat: float, lng: float) -> None:
    resp = await self.http.post("/api/update-location", json={"deviceId": self.me_id, "lat": lat, "lng": lng})
    resp.raise_for_status()

  async def watch_positions(self, source: AsyncIterator[LatLng]) -> None:
    """Report each fix from a position source; a failed report is skipped."""
    async for lat, lng in source:
      try:
        await self.report_position(lat, lng)
      except httpx.HTTPError as exc:
        print(f"[viewer] position report failed: {exc!r}")

  def start_watch(self, source: AsyncIterator[LatLng]) -> asyncio.Task:
    if self._watch_task is not None:
      self._watch_task.cancel()
    self._watch_task = asyncio.get_running_loop().create_task(self.watch_positions(source))
    return self._watch_task

  # -------------------------
  # Live stream
  # -------------------------
  def handle_message(self, raw: Any) -> None:
    try:
      message = json.loads(raw)
    except (TypeError, ValueError):
      print(f"[viewer] dropping non-JSON frame {str(raw)[:80]!r}")
      return
    kind = message.get("type") if isinstance(message, dict) else None
    if kind == "snapshot":
      devices = [device_from_payload(d) for d in message.get("devices") or [] if isinstance(d, dict)]
      self.engine.post(SnapshotReceived(devices))
    elif kind == "update" and isinstance(message.get("device"), dict):
      self.engine.post(DeviceUpdated(device_from_payload(message["device"])))
    else:
      print(f"[viewer] ignoring message type {kind!r}")

  async def _stream_loop(self) -> None:
    delay = RECONNECT_MIN_SECONDS
    while True:
      try:
        async with websockets.connect(self.ws_url, ping_interval=20, ping_timeout=20) as ws:
          print(f"[viewer] connected {self.ws_url}")
          self.connected = True
          delay = RECONNECT_MIN_SECONDS
          async for raw in ws:
            self.handle_message(raw)
      except asyncio.CancelledError:
        raise
      except (OSError, WebSocketException) as exc:
        print(f"[viewer] stream error: {exc!r}")
      finally:
        self.connected = False
      print(f"[viewer] reconnecting in {delay:.0f}s")
      await asyncio.sleep(delay)
      delay = min(delay * 2, RECONNECT_MAX_SECONDS)

  async def close(self) -> None:
    for task in (self._watch_task, self._stream_task):
      if task is not None:
        task.cancel()
    await self.engine.close()
    if self._engine_task is not None:
      await self._engine_task
    for task in (self._watch_task, self._stream_task):
      if task is not None:
        try:
          await task
        except asyncio.CancelledError:
          pass
    if self._owns_client:
      await self.http.aclose()
