import os

import pytest

# Keep the app away from the real data dir and the network during tests.
os.environ.setdefault("SEED_DEMO_DEVICES", "0")
os.environ.setdefault("MQTT_ENABLED", "0")
os.environ.setdefault("HISTORY_TIMEZONE", "UTC")

from services.persistence import LocationStore  # noqa: E402
from state import reset_stats  # noqa: E402


class FakeClock:
  def __init__(self, start: float = 1_700_000_000.0):
    self.now = start

  def __call__(self) -> float:
    return self.now

  def advance(self, seconds: float) -> float:
    self.now += seconds
    return self.now


@pytest.fixture(autouse=True)
def _clean_stats():
  reset_stats()
  yield
  reset_stats()


@pytest.fixture
def clock() -> FakeClock:
  return FakeClock()


@pytest.fixture
def store(tmp_path, clock):
  s = LocationStore(str(tmp_path / "tracker.db"), clock=clock, tz_name="UTC")
  yield s
  s.close()
