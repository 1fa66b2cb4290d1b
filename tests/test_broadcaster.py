import asyncio

import pytest

from errors import StorageError, ValidationError
from services.broadcaster import LiveChannel
from services.ingestion import ingest_location
from state import DeviceWithPosition, rejects_last, stats


@pytest.mark.asyncio
async def test_snapshot_is_first_message_then_updates_in_order(store):
  store.upsert("a", 1.0, 1.0)
  channel = LiveChannel(queue_max=16)
  sub = channel.subscribe(store.get_all())

  ingest_location(store, channel, "a", 1.1, 1.1)
  ingest_location(store, channel, "b", 2.0, 2.0)
  ingest_location(store, channel, "a", 1.2, 1.2)
  assert channel.drain() == 3

  messages = sub.pending()
  assert messages[0]["type"] == "snapshot"
  assert [d["id"] for d in messages[0]["devices"]] == ["a"]
  updates = [(m["device"]["id"], m["device"]["lat"]) for m in messages[1:]]
  assert updates == [("a", 1.1), ("b", 2.0), ("a", 1.2)]


@pytest.mark.asyncio
async def test_every_subscriber_gets_every_update(store):
  channel = LiveChannel(queue_max=16)
  first = channel.subscribe([])
  second = channel.subscribe([])
  ingest_location(store, channel, "a", 1.0, 1.0)
  channel.drain()
  assert len(first.pending()) == 2
  assert len(second.pending()) == 2


@pytest.mark.asyncio
async def test_update_published_before_subscribe_is_not_replayed(store):
  channel = LiveChannel(queue_max=16)
  ingest_location(store, channel, "a", 1.0, 1.0)
  channel.drain()
  sub = channel.subscribe(store.get_all())
  channel.drain()
  messages = sub.pending()
  assert len(messages) == 1
  assert messages[0]["devices"][0]["lat"] == 1.0


@pytest.mark.asyncio
async def test_slow_subscriber_is_dropped_without_blocking_others(store):
  channel = LiveChannel(queue_max=2)
  slow = channel.subscribe([])
  fast = channel.subscribe([])

  for i in range(3):
    ingest_location(store, channel, "a", 1.0 + i / 10, 1.0)
    channel.drain()
    fast.pending()

  assert slow.closed
  assert slow.id not in channel.subscribers
  assert fast.id in channel.subscribers
  assert stats["subscribers_dropped_total"] == 1
  assert await slow.next_message() is None


@pytest.mark.asyncio
async def test_broadcaster_task_fans_out(store):
  channel = LiveChannel(queue_max=16)
  sub = channel.subscribe([])
  task = asyncio.create_task(channel.broadcaster())
  try:
    assert (await sub.next_message())["type"] == "snapshot"
    ingest_location(store, channel, "a", 3.0, 4.0)
    message = await asyncio.wait_for(sub.next_message(), timeout=1.0)
    assert message["device"]["lat"] == 3.0
  finally:
    task.cancel()


@pytest.mark.asyncio
async def test_rejected_update_is_not_published(store):
  channel = LiveChannel(queue_max=16)
  with pytest.raises(ValidationError):
    ingest_location(store, channel, "a", 95.0, 1.0)
  with pytest.raises(ValidationError) as info:
    ingest_location(store, channel, "a", None, 1.0)
  assert "lat" in str(info.value)
  assert channel.update_queue.empty()
  assert stats["rejected_total"] == 2
  assert len(rejects_last) == 2


@pytest.mark.asyncio
async def test_storage_failure_is_not_published(store):
  channel = LiveChannel(queue_max=16)
  store.close()
  with pytest.raises(StorageError):
    ingest_location(store, channel, "a", 1.0, 1.0)
  assert channel.update_queue.empty()


def test_ingest_without_channel_still_persists(store, clock):
  device = ingest_location(store, None, "a", 1.0, 2.0, source="test")
  assert device == DeviceWithPosition("a", 1.0, 2.0, clock.now)
  assert stats["ingested_total"] == 1
  assert stats["last_ingest_device"] == "a"


@pytest.mark.asyncio
async def test_seeded_truck_moves(store, clock):
  store.seed_demo_devices()
  before = store.get("North-Truck-1")
  channel = LiveChannel(queue_max=16)
  subs = [channel.subscribe(store.get_all()) for _ in range(2)]
  clock.advance(30)

  ingest_location(store, channel, "North-Truck-1", 28.70, 77.11)
  channel.drain()

  after = {d.id: d for d in store.get_all()}["North-Truck-1"]
  assert (after.lat, after.lng) == (28.70, 77.11)
  assert after.last_updated > before.last_updated
  assert store.history_count("North-Truck-1") == 1
  for sub in subs:
    updates = [m for m in sub.pending() if m["type"] == "update"]
    assert len(updates) == 1
    assert (updates[0]["device"]["lat"], updates[0]["device"]["lng"]) == (28.70, 77.11)
