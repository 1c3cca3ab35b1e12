"""Tests for gridcast.viewer.session — viewer connection lifecycle."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from gridcast.viewer.session import (
    ReconnectExhaustedError,
    SessionLifecycleManager,
    SessionState,
)
from tests.conftest import FakeConnector, FakeTransport, wait_for

URL = "ws://test/ws"


class Inbox:
    """on_message / on_error sink."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, dict[str, Any]]] = []
        self.errors: list[tuple[str, Exception]] = []

    async def on_message(self, layout_id: str, message: dict[str, Any]) -> None:
        self.messages.append((layout_id, message))

    def on_error(self, layout_id: str, error: Exception) -> None:
        self.errors.append((layout_id, error))


def _manager(connector: FakeConnector, inbox: Inbox, **kwargs: Any) -> SessionLifecycleManager:
    kwargs.setdefault("reconnect_delay", 0)
    kwargs.setdefault("max_reconnect_attempts", 5)
    return SessionLifecycleManager(
        on_message=inbox.on_message,
        url=URL,
        connector=connector,
        on_error=inbox.on_error,
        **kwargs,
    )


def _msg(kind: str = "layoutUpdate", layout_id: str = "L1") -> str:
    return json.dumps({"type": kind, "data": {"layoutId": layout_id}})


class TestSubscribe:
    @pytest.mark.asyncio
    async def test_sends_subscribe_and_forwards_messages(self) -> None:
        inbox = Inbox()
        transport = FakeTransport(messages=[_msg(), "not json", "[1, 2]", _msg("gridItemUpdate")])
        manager = _manager(FakeConnector(transport), inbox)

        await manager.select("L1")
        await wait_for(lambda: len(inbox.messages) == 2)

        assert json.loads(transport.sent[0]) == {"type": "subscribe", "layoutId": "L1"}
        assert manager.state == SessionState.SUBSCRIBED
        assert manager.populated
        assert [m["type"] for _, m in inbox.messages] == ["layoutUpdate", "gridItemUpdate"]
        assert {layout_id for layout_id, _ in inbox.messages} == {"L1"}

        await manager.close()

    @pytest.mark.asyncio
    async def test_repeat_select_while_pending_is_ignored(self) -> None:
        connector = FakeConnector(FakeTransport(messages=[_msg()]))
        manager = _manager(connector, Inbox())

        await manager.select("L1")
        assert manager.is_pending("L1")
        await manager.select("L1")
        await wait_for(lambda: manager.state == SessionState.SUBSCRIBED)

        assert connector.calls == 1
        assert not manager.is_pending("L1")
        await manager.close()

    @pytest.mark.asyncio
    async def test_handler_failure_does_not_end_session(self) -> None:
        seen: list[dict[str, Any]] = []

        async def flaky(layout_id: str, message: dict[str, Any]) -> None:
            seen.append(message)
            if len(seen) == 1:
                raise RuntimeError("render failed")

        manager = SessionLifecycleManager(
            on_message=flaky,
            url=URL,
            connector=FakeConnector(FakeTransport(messages=[_msg(), _msg()])),
            reconnect_delay=0,
        )
        await manager.select("L1")
        await wait_for(lambda: len(seen) == 2)
        assert manager.state == SessionState.SUBSCRIBED
        await manager.close()


class TestReconnect:
    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self) -> None:
        inbox = Inbox()
        connector = FakeConnector()  # every attempt is refused
        manager = _manager(connector, inbox)

        await manager.select("L1")
        await asyncio.wait_for(manager.wait_closed(), 1)
        await asyncio.sleep(0.01)

        assert connector.calls == 6  # initial attempt + 5 reconnects
        assert manager.reconnect_attempts == 5
        assert manager.state == SessionState.CLOSED
        assert isinstance(manager.last_error, ReconnectExhaustedError)
        assert manager.last_error.attempts == 5
        assert inbox.errors == [("L1", manager.last_error)]

    @pytest.mark.asyncio
    async def test_server_close_reconnects_to_same_layout(self) -> None:
        dropped = FakeTransport(messages=[_msg()], hold=False)
        replacement = FakeTransport(messages=[_msg()])
        connector = FakeConnector(dropped, replacement)
        manager = _manager(connector, Inbox())

        await manager.select("L1")
        await wait_for(lambda: len(replacement.sent) == 1)
        await wait_for(lambda: manager.populated)

        assert connector.calls == 2
        assert json.loads(replacement.sent[0])["layoutId"] == "L1"
        assert manager.state == SessionState.SUBSCRIBED
        assert manager.reconnect_attempts == 1
        await manager.close()

    @pytest.mark.asyncio
    async def test_data_before_each_drop_does_not_reset_counter(self) -> None:
        flapping = [
            FakeTransport(messages=[_msg("layoutData")], hold=False) for _ in range(20)
        ]
        connector = FakeConnector(*flapping)
        manager = _manager(connector, Inbox())

        await manager.select("L1")
        await asyncio.wait_for(manager.wait_closed(), 1)
        await asyncio.sleep(0.01)

        assert connector.calls == 6
        assert manager.reconnect_attempts == 5
        assert manager.state == SessionState.CLOSED
        assert isinstance(manager.last_error, ReconnectExhaustedError)

    @pytest.mark.asyncio
    async def test_fresh_select_resets_counter(self) -> None:
        inbox = Inbox()
        connector = FakeConnector()
        manager = _manager(connector, inbox, max_reconnect_attempts=1)

        await manager.select("L1")
        await asyncio.wait_for(manager.wait_closed(), 1)
        assert manager.reconnect_attempts == 1

        connector.script.append(FakeTransport(messages=[_msg()]))
        await manager.select("L1")
        await wait_for(lambda: manager.populated)

        assert manager.state == SessionState.SUBSCRIBED
        assert manager.reconnect_attempts == 0
        assert manager.last_error is None
        await manager.close()


class TestIntentionalClose:
    @pytest.mark.asyncio
    async def test_switching_layouts_does_not_reconnect_old(self) -> None:
        inbox = Inbox()
        first = FakeTransport(messages=[_msg(layout_id="L1")])
        second = FakeTransport(messages=[_msg(layout_id="L2")])
        connector = FakeConnector(first, second)
        manager = _manager(connector, inbox)

        await manager.select("L1")
        await wait_for(lambda: manager.populated)
        await manager.select("L2")
        await wait_for(lambda: manager.populated)
        await asyncio.sleep(0.02)

        assert connector.calls == 2
        assert json.loads(second.sent[0])["layoutId"] == "L2"
        assert manager.layout_id == "L2"
        assert manager.reconnect_attempts == 0
        assert inbox.messages[-1][0] == "L2"
        await manager.close()

    @pytest.mark.asyncio
    async def test_close_stops_everything(self) -> None:
        transport = FakeTransport(messages=[_msg()])
        connector = FakeConnector(transport)
        manager = _manager(connector, Inbox())

        await manager.select("L1")
        await wait_for(lambda: manager.populated)
        await manager.close()
        await asyncio.wait_for(manager.wait_closed(), 1)
        await asyncio.sleep(0.02)

        assert manager.state == SessionState.CLOSED
        assert manager.layout_id is None
        assert manager.last_error is None
        assert connector.calls == 1


class TestPrepare:
    @pytest.mark.asyncio
    async def test_prepare_runs_before_connecting(self) -> None:
        order: list[str] = []
        connector = FakeConnector(FakeTransport(messages=[_msg()]))

        async def prepare(layout_id: str) -> None:
            order.append(f"prepare:{layout_id}:{connector.calls}")

        manager = _manager(connector, Inbox(), prepare=prepare)
        await manager.select("L1")
        await wait_for(lambda: manager.populated)

        assert order == ["prepare:L1:0"]
        assert connector.calls == 1
        await manager.close()

    @pytest.mark.asyncio
    async def test_prepare_failure_closes_without_connecting(self) -> None:
        inbox = Inbox()
        connector = FakeConnector()

        async def prepare(layout_id: str) -> None:
            raise LookupError("layout not found")

        manager = _manager(connector, inbox, prepare=prepare)
        await manager.select("L1")

        assert manager.state == SessionState.CLOSED
        assert isinstance(manager.last_error, LookupError)
        assert connector.calls == 0
        assert inbox.errors[0][0] == "L1"
        assert not manager.is_pending("L1")
