"""Tests for the SSE client: frame parsing and cookie handling."""

import json

import httpx
import pytest
from conftest import ADMIN

from order_notifier.client.stream_client import StreamClient
from order_notifier.shared.client_utils import iter_sse_text, parse_sse_block, split_sse_blocks, with_reconnect


def make_client(cookies) -> StreamClient:
    return StreamClient("tab-sse", "http://test", cookies, user=ADMIN, http=httpx.AsyncClient(base_url="http://test"))


# =========================================================================
# Frame parsing
# =========================================================================


class TestSseParsing:
    def test_crlf_frames_split(self):
        text = 'event: event\r\ndata: {"a": 1}\r\n\r\n: ping\r\n\r\nevent: event\r\ndata: {"b"'
        blocks, tail = split_sse_blocks(text)
        assert len(blocks) == 2
        assert tail == 'event: event\ndata: {"b"'

    def test_parse_block_fields(self):
        assert parse_sse_block("event: event\ndata: x\ndata: y\nretry: 3000") == ("event", "x\ny", "3000")
        assert parse_sse_block(": comment only") == ("message", "", None)

    def test_iter_skips_comment_frames(self):
        text = ": ping - 2026-01-01\r\n\r\nevent: event\r\ndata: {}\r\n\r\n"
        assert list(iter_sse_text(text)) == [("event", "{}")]


class TestStreamClientFrames:
    @pytest.mark.asyncio
    async def test_message_and_system_frames(self, cookies):
        client = make_client(cookies)
        received = []

        async def on_event(event):
            received.append(event)

        client.set_callbacks(on_event, None)
        await client._parse_sse_block("event: event\ndata: " + json.dumps({"uid": "u1", "event_type": "message"}))
        await client._parse_sse_block("event: event\ndata: " + json.dumps({"event_type": "system", "type": "ping", "timestamp": 1}))

        assert [e.uid for e in received] == ["u1"]
        assert client.events_received == 1
        assert client.stats["pings_received"] == 1
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_other_event_names_and_bad_json_are_ignored(self, cookies):
        client = make_client(cookies)
        await client._parse_sse_block('event: message\ndata: {"uid": "x"}')
        await client._parse_sse_block("event: event\ndata: {not json")
        assert client.events_received == 0
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_retry_field_updates_delay(self, cookies):
        client = make_client(cookies)
        await client._parse_sse_block("retry: 5000")
        assert client.clean_close_delay() == 5.0
        await client.disconnect()


# =========================================================================
# Cookies
# =========================================================================


class TestCookies:
    @pytest.mark.asyncio
    async def test_cookie_header_and_expiry(self, cookies):
        cookies.set("on_ack_u1", "1", ttl_s=300)
        cookies.set("on_ack_u2", "0", ttl_s=300)
        client = make_client(cookies)
        assert client.cookie_header() == "on_ack_u1=1; on_ack_u2=0"

        headers = httpx.Headers([
            ("set-cookie", 'on_ack_u1=""; expires=Thu, 01 Jan 1970 00:00:00 GMT; Max-Age=0; Path=/; SameSite=lax'),
            ("set-cookie", "greeting=hello; Max-Age=60; Path=/"),
        ])
        assert client.apply_set_cookies(headers) == 1
        assert cookies.get("on_ack_u1") is None
        assert cookies.get("on_ack_u2") == "0"
        assert cookies.get("greeting") == "hello"
        await client.disconnect()


# =========================================================================
# Reconnect
# =========================================================================


class TestReconnect:
    @pytest.mark.asyncio
    async def test_retry_received_mid_run_is_honoured(self, cookies):
        client = make_client(cookies)
        client.retry_s = 30.0
        connects = []

        async def connect_once():
            connects.append(client.retry_s)
            # The first stream tells the client to come back quickly
            await client._parse_sse_block("retry: 20")

        await with_reconnect(connect_once, client.stats, 0.5, clean_close_delay_s=client.clean_close_delay)

        assert len(connects) >= 2
        assert connects[1] == 0.02
        await client.disconnect()
