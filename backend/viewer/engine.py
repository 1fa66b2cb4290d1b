"""
Map state engine.

Owns one viewer's ViewState. Push updates, route completions, history
completions and user actions all arrive as events on a single queue and are
applied one at a time, so no two handlers ever interleave a mutation.

Route and history fetches run as tasks tagged with a token. Every mode
change bumps the token and cancels the task; a completion whose token is no
longer current is dropped on arrival.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from config import NOTICE_TTL_SECONDS, VIEW_HEIGHT_PX, VIEW_WIDTH_PX
from geo import Bounds, SINGLE_POINT_ZOOM, bounds_center, fit_bounds, zoom_for_bounds
from errors import ValidationError
from history import parse_day
from services.routing import straight_line_plan
from state import Device, DeviceWithPosition, HistoryPoint, LatLng, RoutePlan

MODE_LIVE = "live"
MODE_NAV = "nav"
MODE_HISTORY = "history"

NO_HISTORY_NOTICE = "No location history found for this date"

FetchHistory = Callable[[str, date], Awaitable[List[HistoryPoint]]]
ResolveRoute = Callable[[LatLng, LatLng], Awaitable[RoutePlan]]


@dataclass
class Notice:
  id: int
  text: str


@dataclass
class ViewState:
  mode: str = MODE_LIVE
  devices: Dict[str, Device] = field(default_factory=dict)
  selected_device_id: Optional[str] = None
  active_path: Optional[Union[RoutePlan, List[HistoryPoint]]] = None
  route: Optional[RoutePlan] = None
  history_day: Optional[date] = None
  center: Optional[LatLng] = None
  zoom: Optional[int] = None
  bounds: Optional[Bounds] = None
  manual_center: bool = False
  notice: Optional[Notice] = None
  route_pending: bool = False
  history_pending: bool = False

  def path_points(self) -> List[LatLng]:
    if isinstance(self.active_path, RoutePlan):
      return list(self.active_path.points)
    if self.active_path:
      return [(p.lat, p.lng) for p in self.active_path]
    return []

  def positioned(self) -> List[DeviceWithPosition]:
    return [d for d in self.devices.values() if isinstance(d, DeviceWithPosition)]


# =========================
# Events
# =========================
@dataclass
class SnapshotReceived:
  devices: List[Device]


@dataclass
class DeviceUpdated:
  device: Device


@dataclass
class SelectDevice:
  device_id: str


@dataclass
class Deselect:
  pass


@dataclass
class Navigate:
  device_id: Optional[str] = None


@dataclass
class PickHistoryDate:
  device_id: str
  day: Any


@dataclass
class Reset:
  pass


@dataclass
class CenterOnSelf:
  pass


@dataclass
class RouteResolved:
  token: int
  plan: RoutePlan


@dataclass
class RouteFailed:
  token: int
  origin: LatLng
  destination: LatLng
  error: str


@dataclass
class HistoryLoaded:
  token: int
  device_id: str
  day: date
  points: List[HistoryPoint]


@dataclass
class HistoryFailed:
  token: int
  error: str


@dataclass
class NoticeExpired:
  notice_id: int


_STOP = object()


class MapStateEngine:
  def __init__(
    self,
    me_id: str,
    fetch_history: FetchHistory,
    resolve_route: ResolveRoute,
    width_px: int = VIEW_WIDTH_PX,
    height_px: int = VIEW_HEIGHT_PX,
    notice_ttl: float = NOTICE_TTL_SECONDS,
  ):
    self.me_id = me_id
    self.state = ViewState()
    self.width_px = width_px
    self.height_px = height_px
    self.notice_ttl = notice_ttl
    self._fetch_history = fetch_history
    self._resolve_route = resolve_route
    self._events: asyncio.Queue = asyncio.Queue()
    self._route_token = 0
    self._history_token = 0
    self._route_task: Optional[asyncio.Task] = None
    self._history_task: Optional[asyncio.Task] = None
    self._notice_handle: Optional[asyncio.TimerHandle] = None
    self._notice_seq = 0
    self._listeners: List[Callable[[ViewState, Any], None]] = []
    self._closed = False
    self._handlers = {
      SnapshotReceived: self._on_snapshot,
      DeviceUpdated: self._on_device_updated,
      SelectDevice: self._on_select,
      Deselect: self._on_deselect,
      Navigate: self._on_navigate,
      PickHistoryDate: self._on_pick_history,
      Reset: self._on_reset,
      CenterOnSelf: self._on_center_on_self,
      RouteResolved: self._on_route_resolved,
      RouteFailed: self._on_route_failed,
      HistoryLoaded: self._on_history_loaded,
      HistoryFailed: self._on_history_failed,
      NoticeExpired: self._on_notice_expired,
    }

  # -------------------------
  # Event loop
  # -------------------------
  def add_listener(self, callback: Callable[[ViewState, Any], None]) -> None:
    self._listeners.append(callback)

  def post(self, event: Any) -> None:
    if self._closed:
      return
    self._events.put_nowait(event)

  async def run(self) -> None:
    while True:
      event = await self._events.get()
      if event is _STOP:
        break
      self.apply(event)

  def process_pending(self) -> int:
    """Apply every queued event without waiting."""
    count = 0
    while not self._events.empty():
      event = self._events.get_nowait()
      if event is _STOP:
        break
      self.apply(event)
      count += 1
    return count

  def apply(self, event: Any) -> None:
    handler = self._handlers.get(type(event))
    if handler is None:
      print(f"[viewer] ignoring unknown event {event!r}")
      return
    handler(event)
    for callback in list(self._listeners):
      try:
        callback(self.state, event)
      except Exception as exc:
        print(f"[viewer] listener failed: {exc!r}")

  async def close(self) -> None:
    """Tear down on unmount: cancel fetches and timers, stop the loop."""
    if self._closed:
      return
    self._cancel_route()
    self._cancel_history()
    if self._notice_handle is not None:
      self._notice_handle.cancel()
      self._notice_handle = None
    self._closed = True
    self._events.put_nowait(_STOP)

  # -------------------------
  # Helpers
  # -------------------------
  def _me(self) -> Optional[DeviceWithPosition]:
    me = self.state.devices.get(self.me_id)
    return me if isinstance(me, DeviceWithPosition) else None

  def _auto_fit(self, points: List[LatLng]) -> None:
    self.state.manual_center = False
    bounds = fit_bounds(points)
    if bounds is None:
      return
    self.state.bounds = bounds
    self.state.center = bounds_center(bounds)
    self.state.zoom = zoom_for_bounds(bounds, self.width_px, self.height_px)

  def _fit_live(self) -> None:
    self._auto_fit([d.position for d in self.state.positioned()])

  def _show_notice(self, text: str) -> None:
    self._notice_seq += 1
    notice = Notice(id=self._notice_seq, text=text)
    self.state.notice = notice
    if self._notice_handle is not None:
      self._notice_handle.cancel()
    loop = asyncio.get_running_loop()
    self._notice_handle = loop.call_later(self.notice_ttl, self.post, NoticeExpired(notice.id))
    print(f"[viewer] notice: {text}")

  def _cancel_route(self) -> None:
    self._route_token += 1
    self.state.route_pending = False
    if self._route_task is not None and not self._route_task.done():
      self._route_task.cancel()
    self._route_task = None

  def _cancel_history(self) -> None:
    self._history_token += 1
    self.state.history_pending = False
    if self._history_task is not None and not self._history_task.done():
      self._history_task.cancel()
    self._history_task = None

  async def _run_route(self, token: int, origin: LatLng, destination: LatLng) -> None:
    try:
      plan = await self._resolve_route(origin, destination)
    except asyncio.CancelledError:
      raise
    except Exception as exc:
      self.post(RouteFailed(token, origin, destination, str(exc) or exc.__class__.__name__))
      return
    self.post(RouteResolved(token, plan))

  async def _run_history(self, token: int, device_id: str, day: date) -> None:
    try:
      points = await self._fetch_history(device_id, day)
    except asyncio.CancelledError:
      raise
    except Exception as exc:
      self.post(HistoryFailed(token, str(exc) or exc.__class__.__name__))
      return
    self.post(HistoryLoaded(token, device_id, day, list(points)))

  # -------------------------
  # Push stream
  # -------------------------
  def _on_snapshot(self, event: SnapshotReceived) -> None:
    self.state.devices = {d.id: d for d in event.devices}
    if self.state.mode == MODE_LIVE:
      self._fit_live()

  def _on_device_updated(self, event: DeviceUpdated) -> None:
    device = event.device
    current = self.state.devices.get(device.id)
    if (
      current is not None
      and current.last_updated is not None
      and device.last_updated is not None
      and device.last_updated < current.last_updated
    ):
      return
    # Markers follow every push; an active route is not re-resolved here.
    self.state.devices[device.id] = device

  # -------------------------
  # User actions
  # -------------------------
  def _on_select(self, event: SelectDevice) -> None:
    if self.state.mode == MODE_LIVE:
      self.state.selected_device_id = event.device_id
    elif self.state.mode == MODE_NAV and event.device_id != self.state.selected_device_id:
      self._on_navigate(Navigate(event.device_id))

  def _on_deselect(self, event: Deselect) -> None:
    if self.state.mode == MODE_LIVE:
      self.state.selected_device_id = None

  def _on_navigate(self, event: Navigate) -> None:
    if self.state.mode not in (MODE_LIVE, MODE_NAV):
      print(f"[viewer] navigate ignored in {self.state.mode} mode")
      return
    target_id = event.device_id or self.state.selected_device_id
    if not target_id or target_id == self.me_id:
      self._show_notice("Select a device to navigate to")
      return
    me = self._me()
    target = self.state.devices.get(target_id)
    if me is None or not isinstance(target, DeviceWithPosition):
      missing = "Your location" if me is None else f"Location of {target_id}"
      self._show_notice(f"{missing} is not available yet")
      return

    self._cancel_route()
    self._cancel_history()
    token = self._route_token
    self.state.mode = MODE_NAV
    self.state.selected_device_id = target_id
    self.state.route = None
    self.state.active_path = None
    self.state.history_day = None
    self.state.route_pending = True
    self._auto_fit([me.position, target.position])
    self._route_task = asyncio.get_running_loop().create_task(self._run_route(token, me.position, target.position))

  def _on_pick_history(self, event: PickHistoryDate) -> None:
    try:
      day = parse_day(event.day)
    except ValidationError as exc:
      self._show_notice(str(exc))
      return
    self._cancel_history()
    token = self._history_token
    self.state.history_pending = True
    self._history_task = asyncio.get_running_loop().create_task(self._run_history(token, event.device_id, day))

  def _on_reset(self, event: Reset) -> None:
    self._cancel_route()
    self._cancel_history()
    self.state.mode = MODE_LIVE
    self.state.selected_device_id = None
    self.state.active_path = None
    self.state.route = None
    self.state.history_day = None
    self._fit_live()

  def _on_center_on_self(self, event: CenterOnSelf) -> None:
    me = self._me()
    if me is None:
      self._show_notice("Your location is not available yet")
      return
    # Holds until the next auto-fit trigger.
    self.state.manual_center = True
    self.state.center = me.position
    self.state.zoom = SINGLE_POINT_ZOOM

  # -------------------------
  # Completions
  # -------------------------
  def _on_route_resolved(self, event: RouteResolved) -> None:
    if event.token != self._route_token or self.state.mode != MODE_NAV:
      print(f"[viewer] dropping stale route token={event.token}")
      return
    self._route_task = None
    self.state.route_pending = False
    self.state.route = event.plan
    self.state.active_path = event.plan
    fit = []
    me = self._me()
    target = self.state.devices.get(self.state.selected_device_id or "")
    if me is not None:
      fit.append(me.position)
    if isinstance(target, DeviceWithPosition):
      fit.append(target.position)
    self._auto_fit(fit)

  def _on_route_failed(self, event: RouteFailed) -> None:
    if event.token != self._route_token or self.state.mode != MODE_NAV:
      return
    print(f"[viewer] route fetch failed ({event.error}), drawing straight line")
    self._on_route_resolved(RouteResolved(event.token, straight_line_plan(event.origin, event.destination)))

  def _on_history_loaded(self, event: HistoryLoaded) -> None:
    if event.token != self._history_token:
      print(f"[viewer] dropping stale history token={event.token}")
      return
    self._history_task = None
    self.state.history_pending = False
    if not event.points:
      self._show_notice(NO_HISTORY_NOTICE)
      return

    self._cancel_route()
    self.state.mode = MODE_HISTORY
    self.state.selected_device_id = event.device_id
    self.state.route = None
    self.state.active_path = event.points
    self.state.history_day = event.day
    self._auto_fit([(p.lat, p.lng) for p in event.points])

  def _on_history_failed(self, event: HistoryFailed) -> None:
    if event.token != self._history_token:
      return
    self._history_task = None
    self.state.history_pending = False
    self._show_notice(f"Could not load history: {event.error}")

  def _on_notice_expired(self, event: NoticeExpired) -> None:
    if self.state.notice is not None and self.state.notice.id == event.notice_id:
      self.state.notice = None
      self._notice_handle = None
