"""
WebSocket endpoint for real-time updates.
"""

import asyncio
import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from errors import StorageError
from services.broadcaster import LiveChannel, Subscriber

router = APIRouter()


async def _pump(ws: WebSocket, sub: Subscriber) -> None:
  """Send queued messages until the subscriber is closed."""
  try:
    while True:
      message = await sub.next_message()
      if message is None:
        break
      await ws.send_text(json.dumps(message))
    # Closed by the channel (outbox overflow); ask the viewer to reconnect.
    await ws.close(code=1013)
  except (WebSocketDisconnect, RuntimeError, OSError) as exc:
    print(f"[ws] subscriber {sub.id} send failed: {exc!r}")


@router.websocket("/ws")
async def ws_endpoint(ws: WebSocket):
  """Snapshot on connect, then one `update` per accepted location."""
  channel: LiveChannel = ws.app.state.channel
  await ws.accept()

  try:
    devices = ws.app.state.store.get_all()
  except StorageError as exc:
    print(f"[ws] snapshot failed: {exc}")
    await ws.close(code=1011)
    return

  # No await between reading the snapshot and subscribing.
  sub = channel.subscribe(devices)
  sender = asyncio.create_task(_pump(ws, sub))

  try:
    while True:
      await ws.receive_text()
  except WebSocketDisconnect:
    pass
  except RuntimeError:
    pass
  finally:
    sender.cancel()
    channel.unsubscribe(sub)
