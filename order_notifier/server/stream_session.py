"""
MODULE OVERVIEW:
One SSE connection, from open to close.

WHAT IS HAPPENING HERE:
A session is a bounded polling loop, not a subscription. Every check interval it asks
the factories for something to send:

    OPENING -> POLLING -> EMITTING -> CLOSING -> CLOSED
                  |                      ^
                  +------- timeout ------+

  1. Lifetime exceeded                 -> close("timeout")
  2. Real event pending for this user  -> one frame, close("done")   (one-shot)
  3. Test events on and interval due   -> one frame, close("done")
  4. Otherwise maybe a ping: a short burst right after open so proxies see bytes
     early, then the configured interval, or the fallback keepalive when pings are
     switched off. Pings are never fully disabled.
  5. Sleep for the check interval.

The browser's EventSource reconnects after every close, which is what turns this
into a continuous feed. Clock and sleep are injected so tests can drive the loop
without waiting for real seconds.
"""
import asyncio
import json
import time
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Literal

from loguru import logger
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from order_notifier.server.factories import RealEventFactory, SystemEventFactory, TestEventFactory
from order_notifier.shared.config import NotifierOptions, Settings
from order_notifier.shared.models import Event, SystemEvent
from order_notifier.shared.storage import Clock

CloseReason = Literal["done", "timeout", "disconnected"]

# Every frame goes out under this SSE event name; the body's `event_type` tells them apart
FRAME_EVENT_NAME = "event"


class SessionState(str, Enum):
    OPENING = "opening"
    POLLING = "polling"
    EMITTING = "emitting"
    CLOSING = "closing"
    CLOSED = "closed"


class StreamConfig(BaseModel):
    lifetime_s: float = 300.0
    check_interval_s: float = 2.0
    test_event_interval_s: float = 45.0
    enable_ping: bool = False
    ping_interval_s: float = 15.0
    fallback_ping_s: float = 90.0
    quick_ping_count: int = 3
    quick_ping_interval_s: float = 1.0

    @classmethod
    def build(cls, settings: Settings, options: NotifierOptions) -> "StreamConfig":
        return cls(
            lifetime_s=settings.STREAM_LIFETIME_S,
            check_interval_s=settings.STREAM_CHECK_INTERVAL_MS / 1000,
            test_event_interval_s=settings.TEST_EVENT_INTERVAL_S,
            enable_ping=options.enable_ping,
            ping_interval_s=options.ping_interval,
            fallback_ping_s=settings.FALLBACK_PING_S,
            quick_ping_count=settings.QUICK_PING_COUNT,
            quick_ping_interval_s=settings.QUICK_PING_INTERVAL_S,
        )


class StreamSession:
    def __init__(
        self,
        config: StreamConfig,
        real: RealEventFactory,
        test: TestEventFactory,
        system: SystemEventFactory,
        clock: Clock = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
        session_id: str = "stream",
    ):
        self.config = config
        self.real = real
        self.test = test
        self.system = system
        self._clock = clock
        self._sleep = sleep
        self._is_disconnected = is_disconnected
        self.session_id = session_id

        self.state = SessionState.OPENING
        self.close_reason: CloseReason | None = None
        self.frames_sent = 0
        self.pings_sent = 0

    def _frame(self, item: Event | SystemEvent) -> dict[str, str]:
        self.frames_sent += 1
        return {"event": FRAME_EVENT_NAME, "data": json.dumps(item.to_wire(), ensure_ascii=False)}

    def _close(self, reason: CloseReason) -> None:
        self.state = SessionState.CLOSING
        self.close_reason = reason
        logger.info(
            f"session_id={self.session_id} protocol=sse event=stream_closed reason={reason} "
            f"frames={self.frames_sent} pings={self.pings_sent}"
        )
        self.state = SessionState.CLOSED

    def _ping_due(self, now: float, last_ping: float) -> bool:
        since = now - last_ping
        if self.pings_sent < self.config.quick_ping_count:
            return since >= self.config.quick_ping_interval_s
        if self.config.enable_ping:
            return since >= self.config.ping_interval_s
        return since >= self.config.fallback_ping_s

    async def frames(self) -> AsyncIterator[dict[str, str]]:
        cfg = self.config
        start = self._clock()
        last_ping = start
        last_test = start
        logger.info(f"session_id={self.session_id} protocol=sse event=stream_opened lifetime={cfg.lifetime_s}")
        self.state = SessionState.POLLING

        try:
            while True:
                now = self._clock()
                if now - start > cfg.lifetime_s:
                    self._close("timeout")
                    return

                if self._is_disconnected is not None and await self._is_disconnected():
                    self._close("disconnected")
                    return

                # Buffer reads and lock waits run off the event loop
                event = await run_in_threadpool(self.real.next)
                if event is not None:
                    self.state = SessionState.EMITTING
                    logger.info(f"session_id={self.session_id} uid={event.uid} event=emitted mode=one_shot")
                    yield self._frame(event)
                    self._close("done")
                    return

                if self.test.enabled and now - last_test >= cfg.test_event_interval_s:
                    test_event = self.test.create()
                    self.state = SessionState.EMITTING
                    logger.debug(f"session_id={self.session_id} uid={test_event.uid} event=test_emitted")
                    yield self._frame(test_event)
                    self._close("done")
                    return

                if self._ping_due(now, last_ping):
                    yield self._frame(self.system.create_ping())
                    self.pings_sent += 1
                    last_ping = now
                    logger.debug(f"session_id={self.session_id} event=ping count={self.pings_sent}")

                await self._sleep(cfg.check_interval_s)
        except (asyncio.CancelledError, GeneratorExit):
            # Client went away mid-sleep or mid-send
            if self.state is not SessionState.CLOSED:
                self._close("disconnected")
            raise
