"""
Live broadcast channel.

Accepted location updates go onto a single FIFO update queue. The broadcaster
task drains it and copies each message into every subscriber's bounded
outbox, so one slow viewer never holds up ingestion or the other viewers.
"""

import asyncio
import time
from typing import Any, Dict, Iterable, List, Optional

import state
from config import SUBSCRIBER_QUEUE_MAX
from helpers import device_payload
from state import Device


def snapshot_message(devices: Iterable[Device]) -> Dict[str, Any]:
  now = time.time()
  return {
    "type": "snapshot",
    "devices": [device_payload(device, now) for device in devices],
    "server_time": now,
  }


def update_message(device: Device) -> Dict[str, Any]:
  return {"type": "update", "device": device_payload(device)}


class Subscriber:
  """One connected viewer and its pending outbound messages."""

  def __init__(self, sub_id: int, queue_max: int):
    self.id = sub_id
    self.outbox: asyncio.Queue = asyncio.Queue(maxsize=max(1, queue_max))
    self.closed = False

  def offer(self, message: Dict[str, Any]) -> bool:
    if self.closed:
      return False
    try:
      self.outbox.put_nowait(message)
    except asyncio.QueueFull:
      return False
    return True

  def close(self) -> None:
    if self.closed:
      return
    self.closed = True
    # Drop whatever is pending and wake the sender with the end marker.
    while not self.outbox.empty():
      self.outbox.get_nowait()
    self.outbox.put_nowait(None)

  async def next_message(self) -> Optional[Dict[str, Any]]:
    """Next message to send, or None once the subscriber has been closed."""
    return await self.outbox.get()

  def pending(self) -> List[Dict[str, Any]]:
    """Drain queued messages without waiting."""
    messages = []
    while not self.outbox.empty():
      message = self.outbox.get_nowait()
      if message is not None:
        messages.append(message)
    return messages


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
  try:
    return asyncio.get_running_loop()
  except RuntimeError:
    return None


class LiveChannel:
  def __init__(self, queue_max: int = SUBSCRIBER_QUEUE_MAX):
    self.queue_max = queue_max
    self.update_queue: asyncio.Queue = asyncio.Queue()
    self.subscribers: Dict[int, Subscriber] = {}
    self._next_id = 0
    self._loop: Optional[asyncio.AbstractEventLoop] = _running_loop()

  def subscribe(self, devices: Iterable[Device]) -> Subscriber:
    """
    Register a subscriber with the snapshot as its first message.

    Registration and snapshot enqueue happen in one synchronous step, so
    every update published after the caller read `devices` reaches this
    subscriber after the snapshot.
    """
    self._next_id += 1
    sub = Subscriber(self._next_id, self.queue_max)
    sub.offer(snapshot_message(devices))
    self.subscribers[sub.id] = sub
    print(f"[ws] subscriber {sub.id} joined (total={len(self.subscribers)})")
    return sub

  def unsubscribe(self, sub: Subscriber) -> None:
    if self.subscribers.pop(sub.id, None) is not None:
      print(f"[ws] subscriber {sub.id} left (total={len(self.subscribers)})")
    sub.close()

  def publish(self, device: Device) -> None:
    """
    Queue an update for every subscriber. Call only after the write is durable.

    Safe to call from worker threads when the channel is bound to a loop; the
    message is handed to the loop in call order.
    """
    message = update_message(device)
    loop = self._loop
    if loop is not None and _running_loop() is not loop:
      loop.call_soon_threadsafe(self.update_queue.put_nowait, message)
    else:
      self.update_queue.put_nowait(message)

  def fan_out(self, message: Dict[str, Any]) -> int:
    delivered = 0
    dead = []
    for sub in list(self.subscribers.values()):
      if sub.offer(message):
        delivered += 1
      else:
        dead.append(sub)
    for sub in dead:
      print(f"[ws] dropping subscriber {sub.id}: outbox full")
      state.stats["subscribers_dropped_total"] += 1
      self.unsubscribe(sub)
    return delivered

  def drain(self) -> int:
    """Fan out everything already queued, without waiting."""
    count = 0
    while not self.update_queue.empty():
      self.fan_out(self.update_queue.get_nowait())
      count += 1
    return count

  async def broadcaster(self) -> None:
    """Main broadcaster loop."""
    self._loop = asyncio.get_running_loop()
    while True:
      message = await self.update_queue.get()
      self.fan_out(message)

  def close_all(self) -> None:
    for sub in list(self.subscribers.values()):
      self.unsubscribe(sub)
