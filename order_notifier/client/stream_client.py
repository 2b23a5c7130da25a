"""
MODULE OVERVIEW:
The Server-Sent Events HTTP client, playing the part of the browser's EventSource.

WHAT IS HAPPENING HERE:
We use HTTPX `stream()` to keep the body open and parse the raw `event:` / `data:`
blocks ourselves. Two browser behaviours matter for the delivery protocol and are
reproduced explicitly:

  - the tab's cookies go out with every connection (that is how `on_ack_<uid>=1`
    reaches the server), and `Set-Cookie` expiries on the response are applied to
    the tab's cookie store before any frame is read;
  - when the server closes the stream (one-shot delivery, or lifetime reached) we
    wait `retry` seconds and connect again.
"""
import json
from http.cookies import CookieError, SimpleCookie

import httpx
from loguru import logger
from pydantic import ValidationError

from order_notifier.client.base_client import BaseConnectionClient
from order_notifier.shared.client_utils import parse_sse_block, split_sse_blocks
from order_notifier.shared.models import Event, SystemEvent, UserContext
from order_notifier.shared.storage import KeyValueStore


class StreamClient(BaseConnectionClient):
    protocol_name: str = "sse"

    def __init__(
        self,
        client_id: str,
        server_base_url: str,
        cookies: KeyValueStore,
        user: UserContext | None = None,
        nonce: str | None = None,
        stream_path: str = "/stream",
        retry_s: float = 3.0,
        http: httpx.AsyncClient | None = None,
    ):
        super().__init__(client_id, server_base_url, user, nonce)
        self.cookies = cookies
        self.stream_path = stream_path
        self.retry_s = retry_s
        self.client = http or httpx.AsyncClient(base_url=self.server_base_url, timeout=None)

    async def disconnect(self) -> None:
        await self.client.aclose()

    def clean_close_delay(self) -> float:
        return self.retry_s

    def cookie_header(self) -> str:
        return "; ".join(f"{name}={self.cookies.get(name)}" for name in self.cookies.keys())

    def apply_set_cookies(self, headers: httpx.Headers) -> int:
        """Mirror the response's cookie writes into the tab's store; returns how many were expired."""
        expired = 0
        for raw in headers.get_list("set-cookie"):
            jar = SimpleCookie()
            try:
                jar.load(raw)
            except CookieError:
                logger.warning(f"client_id={self.client_id} event=bad_set_cookie raw='{raw}'")
                continue
            for name, morsel in jar.items():
                if morsel["max-age"] == "0" or not morsel.value:
                    expired += self.cookies.delete(name)
                else:
                    max_age = morsel["max-age"]
                    self.cookies.set(name, morsel.value, ttl_s=float(max_age) if max_age else None)
        return expired

    async def connect(self) -> None:
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache", **self.identity_headers()}
        cookie = self.cookie_header()
        if cookie:
            headers["Cookie"] = cookie
        params = {"client_id": self.client_id}

        async with self.client.stream("GET", self.stream_path, params=params, headers=headers) as response:
            response.raise_for_status()
            expired = self.apply_set_cookies(response.headers)
            await self._emit_status("ACTIVE")
            logger.debug(f"client_id={self.client_id} event=stream_open markers_expired={expired}")

            buffer = ""
            async for chunk in response.aiter_text():
                self.stats["bytes_received"] += len(chunk)
                blocks, buffer = split_sse_blocks(buffer + chunk)
                for block in blocks:
                    await self._parse_sse_block(block)

        await self._emit_status("WAITING")

    async def _parse_sse_block(self, block: str):
        event_type, data_str, retry = parse_sse_block(block)
        if retry and retry.isdigit():
            self.retry_s = int(retry) / 1000
        if event_type != "event" or not data_str:
            return

        try:
            data = json.loads(data_str)
            if data.get("event_type") == "system":
                await self.on_system(SystemEvent.model_validate(data))
            else:
                await self.on_event(Event.model_validate(data))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"client_id={self.client_id} event=bad_frame reason='{e}'")
