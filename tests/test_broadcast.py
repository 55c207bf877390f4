from __future__ import annotations

import asyncio

import pytest

from core.pdfa_converter.broadcast import SessionNotFound, SessionRegistry, SessionSink, format_sse
from core.pdfa_converter.models import (
    BatchResult,
    ConvertedFileResult,
    ErrorEvent,
    LogEvent,
    PartDetail,
    ResultEvent,
)


async def drain(subscription) -> list:
    return [event async for event in subscription]


def test_late_subscriber_sees_the_same_sequence() -> None:
    async def scenario():
        registry = SessionRegistry(grace_seconds=60)
        session_id = registry.create_session()
        early = registry.subscribe(session_id)
        registry.publish(session_id, LogEvent("a"))
        registry.publish(session_id, LogEvent("b"))
        late = registry.subscribe(session_id)
        registry.publish(session_id, ErrorEvent("c"))
        registry.mark_done(session_id)
        return await drain(early), await drain(late)

    early, late = asyncio.run(scenario())
    assert early == late == [LogEvent("a"), LogEvent("b"), ErrorEvent("c")]


def test_subscribing_to_finished_session_replays_and_closes() -> None:
    async def scenario():
        registry = SessionRegistry(grace_seconds=60)
        session_id = registry.create_session()
        registry.publish(session_id, LogEvent("only"))
        registry.mark_done(session_id)
        registry.publish(session_id, LogEvent("ignored"))
        subscription = registry.subscribe(session_id)
        return await drain(subscription)

    assert asyncio.run(scenario()) == [LogEvent("only")]


def test_unsubscribed_observer_gets_no_live_events() -> None:
    async def scenario():
        registry = SessionRegistry(grace_seconds=60)
        session_id = registry.create_session()
        subscription = registry.subscribe(session_id)
        registry.unsubscribe(session_id, subscription)
        registry.publish(session_id, LogEvent("late"))
        subscription.close()
        return await drain(subscription), registry.history(session_id)

    received, history = asyncio.run(scenario())
    assert received == []
    assert history == [LogEvent("late")]


def test_unknown_session() -> None:
    registry = SessionRegistry()
    assert "nope" not in registry
    with pytest.raises(SessionNotFound):
        registry.subscribe("nope")
    with pytest.raises(SessionNotFound):
        registry.publish("nope", LogEvent("x"))


def test_finished_session_expires_after_grace_period() -> None:
    now = [100.0]
    registry = SessionRegistry(grace_seconds=10, clock=lambda: now[0])
    session_id = registry.create_session()
    registry.mark_done(session_id)
    now[0] += 5
    assert session_id in registry
    now[0] += 6
    assert session_id not in registry
    assert len(registry) == 0


def test_purge_is_scheduled_on_the_event_loop() -> None:
    async def scenario():
        registry = SessionRegistry(grace_seconds=0.01)
        session_id = registry.create_session()
        registry.mark_done(session_id)
        await asyncio.sleep(0.05)
        return len(registry)

    assert asyncio.run(scenario()) == 0


def test_session_sink_publishes_to_its_session() -> None:
    registry = SessionRegistry()
    session_id = registry.create_session()
    SessionSink(registry, session_id).publish(LogEvent("hello"))
    assert registry.history(session_id) == [LogEvent("hello")]


def test_event_wire_format() -> None:
    assert format_sse(LogEvent("ciao è")) == 'data: {"type": "log", "message": "ciao è"}\n\n'

    split = ConvertedFileResult(
        original_name="big.pdf",
        output_name="big",
        output_size=300,
        was_split=True,
        parts=2,
        verified=True,
        conformance="PDF/A-2b",
        details=[
            PartDetail("big_parte1.pdf", 200, True, "PDF/A-2b"),
            PartDetail("big_parte2.pdf", 100, True, "PDF/A-2b"),
        ],
    )
    whole = ConvertedFileResult("a.pdf", "a.pdf", 50, False, 1, True, "PDF/A-2b")
    payload = ResultEvent(BatchResult([split, whole])).to_payload()

    assert payload["type"] == "result"
    assert payload["data"]["totalSize"] == 350
    first, second = payload["data"]["files"]
    assert first["parts"] == 2
    assert [part["name"] for part in first["partDetails"]] == ["big_parte1.pdf", "big_parte2.pdf"]
    assert "partDetails" not in second
    assert second["outputName"] == "a.pdf"
