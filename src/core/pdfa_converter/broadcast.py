"""In-memory registry of conversion sessions and their progress streams.

Each session keeps an append-only event log. Subscribers get the full log
replayed first and then live events, so every observer sees the same order no
matter when it attached. Finished sessions are purged after a grace delay.
All mutation happens on the event loop thread.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Protocol

from .models import ProgressEvent
from .utils import generate_session_id


logger = logging.getLogger(__name__)

_CLOSED = object()


class SessionNotFound(KeyError):
    """Raised for unknown or already purged sessions."""


class ProgressSink(Protocol):
    def publish(self, event: ProgressEvent) -> None:  # pragma: no cover - interface
        ...


class Subscription:
    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, event: ProgressEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    async def get(self) -> ProgressEvent | None:
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item  # type: ignore[return-value]

    def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event


@dataclass(slots=True)
class ConversionSession:
    session_id: str
    created_at: float
    events: list[ProgressEvent] = field(default_factory=list)
    observers: set[Subscription] = field(default_factory=set)
    done: bool = False
    done_at: float | None = None


class SessionRegistry:
    def __init__(self, grace_seconds: float = 300.0, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._grace = grace_seconds
        self._clock = clock
        self._sessions: dict[str, ConversionSession] = {}
        self._purge_handles: dict[str, asyncio.TimerHandle] = {}

    def __contains__(self, session_id: object) -> bool:
        self.purge_expired()
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def create_session(self) -> str:
        self.purge_expired()
        session_id = generate_session_id()
        while session_id in self._sessions:
            session_id = generate_session_id()
        self._sessions[session_id] = ConversionSession(session_id=session_id, created_at=self._clock())
        return session_id

    def publish(self, session_id: str, event: ProgressEvent) -> None:
        session = self._get(session_id)
        if session.done:
            logger.debug("Dropping event for finished session %s", session_id)
            return
        session.events.append(event)
        for observer in tuple(session.observers):
            observer.deliver(event)

    def subscribe(self, session_id: str) -> Subscription:
        session = self._get(session_id)
        subscription = Subscription()
        for event in session.events:
            subscription.deliver(event)
        if session.done:
            subscription.close()
        else:
            session.observers.add(subscription)
        return subscription

    def unsubscribe(self, session_id: str, subscription: Subscription) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            session.observers.discard(subscription)

    def history(self, session_id: str) -> list[ProgressEvent]:
        return list(self._get(session_id).events)

    def is_done(self, session_id: str) -> bool:
        return self._get(session_id).done

    def mark_done(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is None or session.done:
            return
        session.done = True
        session.done_at = self._clock()
        for observer in tuple(session.observers):
            observer.close()
        session.observers.clear()
        self._schedule_purge(session_id)

    def purge(self, session_id: str) -> None:
        handle = self._purge_handles.pop(session_id, None)
        if handle is not None:
            handle.cancel()
        session = self._sessions.pop(session_id, None)
        if session is not None:
            for observer in tuple(session.observers):
                observer.close()
            logger.debug("Purged session %s", session_id)

    def purge_expired(self) -> list[str]:
        now = self._clock()
        expired = [
            session.session_id
            for session in self._sessions.values()
            if session.done and session.done_at is not None and now - session.done_at >= self._grace
        ]
        for session_id in expired:
            self.purge(session_id)
        return expired

    def close(self) -> None:
        for session_id in list(self._sessions):
            self.purge(session_id)

    def _schedule_purge(self, session_id: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._purge_handles[session_id] = loop.call_later(self._grace, self.purge, session_id)

    def _get(self, session_id: str) -> ConversionSession:
        self.purge_expired()
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session


def format_sse(event: ProgressEvent) -> str:
    return f"data: {json.dumps(event.to_payload(), ensure_ascii=False)}\n\n"


class SessionSink:
    """Bind a registry to one session so producers only see ``publish(event)``."""

    def __init__(self, registry: SessionRegistry, session_id: str) -> None:
        self._registry = registry
        self.session_id = session_id

    def publish(self, event: ProgressEvent) -> None:
        self._registry.publish(self.session_id, event)


__all__ = [
    "ConversionSession",
    "ProgressSink",
    "SessionNotFound",
    "SessionRegistry",
    "SessionSink",
    "Subscription",
    "format_sse",
]
