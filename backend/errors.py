"""
Error taxonomy shared by the store, ingestion and routing layers.
"""

from typing import Optional


class TrackerError(Exception):
  """Base class for all tracker errors."""


class ValidationError(TrackerError):
  """Bad or missing input. Never retried."""

  def __init__(self, message: str, field: Optional[str] = None):
    self.field = field
    super().__init__(message)


class StorageError(TrackerError):
  """Persistence unavailable or a write failed."""


class ProviderError(TrackerError):
  """A routing provider failed (timeout, non-2xx, malformed geometry)."""

  def __init__(self, message: str, provider: str = ""):
    self.provider = provider
    super().__init__(message)
