"""Reconnect schedule for the push channel."""

from __future__ import annotations

from dataclasses import dataclass

from servicedesk.config import Settings


@dataclass(frozen=True)
class ReconnectPolicy:
  """
  Linear backoff with a ceiling and a bounded number of attempts.

  Delays with the defaults: 2s, 4s, 6s and 8s between the five attempts, then
  give up. The 10s ceiling only applies when max_attempts is raised.
  """

  base_delay: float = 2.0
  max_delay: float = 10.0
  max_attempts: int = 5

  def __post_init__(self) -> None:
    if self.base_delay < 0 or self.max_delay < 0:
      raise ValueError("Reconnect delays must be non-negative.")
    if self.max_attempts < 1:
      raise ValueError("max_attempts must be at least 1.")

  def delay_for(self, attempt: int) -> float:
    """Seconds to wait before reconnect attempt number `attempt` (1-based)."""
    if attempt < 1:
      raise ValueError("attempt is 1-based")
    return min(attempt * self.base_delay, self.max_delay)

  def exhausted(self, attempt: int) -> bool:
    return attempt >= self.max_attempts

  @classmethod
  def from_settings(cls, settings: Settings) -> ReconnectPolicy:
    return cls(base_delay=settings.reconnect_base_seconds, max_delay=settings.reconnect_max_seconds, max_attempts=settings.reconnect_max_attempts)
