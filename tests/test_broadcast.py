"""Tests for chatroom.broadcast: fan-out, ordering, and failure isolation."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from fastapi import WebSocketDisconnect

from chatroom.broadcast import BroadcastChannel


def _sent(ws):
    return [c[0][0] for c in ws.send_json.call_args_list]


class TestFanOut:

    @pytest.mark.asyncio
    async def test_to_all_reaches_everyone(self, channel):
        a, b = AsyncMock(), AsyncMock()
        channel.attach("a", a)
        channel.attach("b", b)
        channel.to_all({"type": "message", "n": 1})
        await channel.drain()
        assert _sent(a) == [{"type": "message", "n": 1}]
        assert _sent(b) == [{"type": "message", "n": 1}]
        await channel.close()

    @pytest.mark.asyncio
    async def test_to_all_except_skips_sender(self, channel):
        a, b, c = AsyncMock(), AsyncMock(), AsyncMock()
        for cid, ws in (("a", a), ("b", b), ("c", c)):
            channel.attach(cid, ws)
        channel.to_all_except("a", {"type": "user-typing", "username": "Ann"})
        await channel.drain()
        assert _sent(a) == []
        assert len(_sent(b)) == 1
        assert len(_sent(c)) == 1
        await channel.close()

    @pytest.mark.asyncio
    async def test_to_one_is_private(self, channel):
        a, b = AsyncMock(), AsyncMock()
        channel.attach("a", a)
        channel.attach("b", b)
        channel.to_one("b", {"type": "welcome"})
        await channel.drain()
        assert _sent(a) == []
        assert _sent(b) == [{"type": "welcome"}]
        await channel.close()

    @pytest.mark.asyncio
    async def test_to_one_unknown_connection_is_ignored(self, channel):
        channel.to_one("missing", {"type": "welcome"})
        await channel.drain()
        assert len(channel) == 0


class TestOrdering:

    @pytest.mark.asyncio
    async def test_events_arrive_in_submission_order(self, channel):
        a, b = AsyncMock(), AsyncMock()
        channel.attach("a", a)
        channel.attach("b", b)
        for i in range(20):
            channel.to_all({"type": "message", "n": i})
        await channel.drain()
        assert [e["n"] for e in _sent(a)] == list(range(20))
        assert [e["n"] for e in _sent(b)] == list(range(20))
        await channel.close()

    @pytest.mark.asyncio
    async def test_mixed_private_and_broadcast_keep_order(self, channel):
        a = AsyncMock()
        channel.attach("a", a)
        channel.to_all({"type": "message"})
        channel.to_all({"type": "users"})
        channel.to_one("a", {"type": "welcome"})
        await channel.drain()
        assert [e["type"] for e in _sent(a)] == ["message", "users", "welcome"]
        await channel.close()


class TestFailureIsolation:

    @pytest.mark.asyncio
    async def test_dead_recipient_does_not_affect_others(self, channel):
        dead, ok = AsyncMock(), AsyncMock()
        dead.send_json.side_effect = WebSocketDisconnect(code=1006)
        channel.attach("dead", dead)
        channel.attach("ok", ok)
        channel.to_all({"type": "message", "n": 1})
        channel.to_all({"type": "message", "n": 2})
        await channel.drain()
        assert [e["n"] for e in _sent(ok)] == [1, 2]
        # Only the first send is attempted; afterwards the connection is dead
        assert dead.send_json.await_count == 1
        await channel.close()

    @pytest.mark.asyncio
    async def test_slow_recipient_does_not_block_others(self, channel):
        release = asyncio.Event()

        async def _stall(event):
            await release.wait()

        slow, fast = AsyncMock(), AsyncMock()
        slow.send_json.side_effect = _stall
        channel.attach("slow", slow)
        channel.attach("fast", fast)

        channel.to_all({"type": "message", "n": 1})
        channel.to_all({"type": "message", "n": 2})
        await asyncio.wait_for(channel._connections["fast"].queue.join(), timeout=1)
        assert [e["n"] for e in _sent(fast)] == [1, 2]

        release.set()
        await channel.drain()
        await channel.close()

    @pytest.mark.asyncio
    async def test_full_outbox_drops_for_that_recipient_only(self):
        channel = BroadcastChannel(outbox_size=2)
        release = asyncio.Event()

        async def _stall(event):
            await release.wait()

        slow, fast = AsyncMock(), AsyncMock()
        slow.send_json.side_effect = _stall
        channel.attach("slow", slow)
        channel.attach("fast", fast)

        for i in range(6):
            channel.to_all({"type": "message", "n": i})
            await asyncio.sleep(0)

        release.set()
        await channel.drain()
        assert [e["n"] for e in _sent(fast)] == list(range(6))
        assert slow.send_json.await_count < 6
        await channel.close()


class TestAttachDetach:

    @pytest.mark.asyncio
    async def test_detach_stops_delivery(self, channel):
        a = AsyncMock()
        channel.attach("a", a)
        await channel.detach("a")
        channel.to_all({"type": "message"})
        await channel.drain()
        assert _sent(a) == []
        assert channel.connection_ids() == []

    @pytest.mark.asyncio
    async def test_detach_unknown_is_noop(self, channel):
        await channel.detach("nobody")
        assert len(channel) == 0

    @pytest.mark.asyncio
    async def test_close_detaches_everything(self, channel):
        channel.attach("a", AsyncMock())
        channel.attach("b", AsyncMock())
        await channel.close()
        assert len(channel) == 0
