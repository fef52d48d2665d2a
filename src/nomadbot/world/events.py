"""
world/events.py — Event channel with releasable subscriptions

Every WorldAgent owns one EventChannel. Handlers are attached with
subscribe(), which returns a Subscription handle; releasing the handle
guarantees the handler is never invoked again, including deliveries that
were already queued on the loop when the release happened.

Delivery is always deferred with loop.call_soon(): an event emitted while a
tick is running is handled after the current step of that tick, never
re-entrantly inside it.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

from nomadbot.observability.logger import get_logger

log = get_logger(__name__)

Handler = Callable[..., Any]

# Strong refs for coroutine handlers until they finish
_background: set[asyncio.Future] = set()


class Subscription:
    """Handle for one (event, handler) registration."""

    __slots__ = ("event", "handler", "_channel", "_active")

    def __init__(self, channel: "EventChannel", event: str, handler: Handler) -> None:
        self._channel = channel
        self.event = event
        self.handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def release(self) -> None:
        """Detach the handler. Safe to call more than once."""
        if not self._active:
            return
        self._active = False
        self._channel._discard(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.release()


class EventChannel:
    """Minimal named-event dispatcher bound to the running event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._subs: dict[str, list[Subscription]] = {}

    def subscribe(self, event: str, handler: Handler) -> Subscription:
        sub = Subscription(self, event, handler)
        self._subs.setdefault(event, []).append(sub)
        return sub

    def _discard(self, sub: Subscription) -> None:
        subs = self._subs.get(sub.event)
        if subs and sub in subs:
            subs.remove(sub)

    def listener_count(self, event: Optional[str] = None) -> int:
        if event is not None:
            return len(self._subs.get(event, []))
        return sum(len(s) for s in self._subs.values())

    def emit(self, event: str, *args: Any) -> int:
        """Queue delivery of `event` to current subscribers. Returns how many were queued."""
        subs = list(self._subs.get(event, []))
        if not subs:
            return 0
        loop = self._loop or asyncio.get_running_loop()
        for sub in subs:
            loop.call_soon(self._deliver, sub, args)
        return len(subs)

    @staticmethod
    def _deliver(sub: Subscription, args: tuple) -> None:
        if not sub.active:
            return
        try:
            result = sub.handler(*args)
            if asyncio.iscoroutine(result):
                task = asyncio.ensure_future(result)
                _background.add(task)
                task.add_done_callback(_background.discard)
        except Exception as e:
            log.error(
                "events.handler_error",
                event=sub.event,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
