"""In-process fan-out of push events to subscribed callbacks."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

from servicedesk.realtime.events import EventKind

logger = logging.getLogger(__name__)

Callback = Callable[[Any], Any]
Unsubscribe = Callable[[], None]


class _Registration:
  """Wraps a callback so removal matches this registration, not an equal callback."""

  __slots__ = ("callback",)

  def __init__(self, callback: Callback) -> None:
    self.callback = callback


class SubscriptionRegistry:
  """Maps each event kind to an ordered list of callbacks."""

  def __init__(self) -> None:
    self._subscriptions: dict[EventKind, list[_Registration]] = {}
    self._tasks: set[asyncio.Task[Any]] = set()

  def subscribe(self, kind: EventKind, callback: Callback) -> Unsubscribe:
    """Append a callback and return a closure that removes exactly this registration."""
    registration = _Registration(callback)
    self._subscriptions.setdefault(kind, []).append(registration)

    def unsubscribe() -> None:
      registrations = self._subscriptions.get(kind)
      if not registrations:
        return
      for index, entry in enumerate(registrations):
        if entry is registration:
          del registrations[index]
          break
      if not registrations:
        self._subscriptions.pop(kind, None)

    return unsubscribe

  def dispatch(self, kind: EventKind, payload: Any = None) -> int:
    """Invoke every callback registered for `kind` in order; returns how many succeeded."""
    # Snapshot so callbacks may unsubscribe themselves mid-dispatch.
    registrations = list(self._subscriptions.get(kind, ()))
    delivered = 0
    for registration in registrations:
      try:
        result = registration.callback(payload)
      except Exception:  # noqa: BLE001
        logger.error("Subscriber for %s raised; continuing with remaining subscribers", kind.value, exc_info=True)
        continue
      if inspect.isawaitable(result):
        self._track(kind, result)
      delivered += 1
    return delivered

  def count(self, kind: EventKind) -> int:
    return len(self._subscriptions.get(kind, ()))

  def clear(self) -> None:
    """Drop every registration and cancel pending coroutine callbacks."""
    self._subscriptions.clear()
    for task in list(self._tasks):
      task.cancel()
    self._tasks.clear()

  def _track(self, kind: EventKind, awaitable: Any) -> None:
    task = asyncio.ensure_future(awaitable)
    self._tasks.add(task)

    def _done(finished: asyncio.Task[Any]) -> None:
      self._tasks.discard(finished)
      if finished.cancelled():
        return
      exc = finished.exception()
      if exc is not None:
        logger.error("Async subscriber for %s failed: %s", kind.value, exc, exc_info=exc)

    task.add_done_callback(_done)
