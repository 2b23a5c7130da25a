"""
MODULE OVERVIEW:
The polling fallback: an adaptive timer around POST /poll/orders.

WHAT IS HAPPENING HERE:
Every tick asks the server for the newest order id and compares it with the
`last_order_id` cookie. The first id ever seen is only stored. A different id means
a new order: reset the timer, toast (unless the user already closed that order's
toast) and, on the orders screen with reload on, ask the tab to reload.

When nothing changes the `AdaptiveScheduler` counts idle ticks; every `attempts`
idle ticks it stretches the interval by `step`, up to a ten-minute ceiling. Its
state sits in the tab's local storage, per user, so a page navigation does not
throw the learned interval away. A hard reload of the page does.
"""
import asyncio
from datetime import datetime
from typing import Callable

import httpx
from loguru import logger
from pydantic import BaseModel

from order_notifier.client.base_client import BaseConnectionClient
from order_notifier.client.toasts import POLL_COOKIE_TTL_S, Toast, ToastCenter
from order_notifier.shared.models import ClientConfig, NotificationPayload, PollResponse, UserContext
from order_notifier.shared.storage import KeyValueStore

LAST_ORDER_COOKIE = "last_order_id"
SCHEDULER_STORAGE_KEY = "order_notifier_scheduler"


class AdaptiveScheduler:
    def __init__(
        self,
        base_s: float,
        step_s: float = 60,
        attempts: int = 5,
        ceiling_s: float = 600,
        enabled: bool = True,
        storage: KeyValueStore | None = None,
        user_id: int | None = None,
    ):
        self.base_s = base_s
        self.step_s = step_s
        self.attempts = max(1, attempts)
        self.ceiling_s = ceiling_s
        self.enabled = enabled
        self.storage = storage
        self.storage_key = f"{SCHEDULER_STORAGE_KEY}_{user_id or 0}"

        self.current_interval = base_s
        self.idle_count = 0
        self._restore()

    def _restore(self) -> None:
        if self.storage is None:
            return
        saved = self.storage.get(self.storage_key)
        if isinstance(saved, dict):
            self.current_interval = float(saved.get("current_interval", self.base_s))
            self.idle_count = int(saved.get("idle_count", 0))

    def _persist(self) -> None:
        if self.storage is not None:
            self.storage.set(self.storage_key, {"current_interval": self.current_interval, "idle_count": self.idle_count})

    def record_idle(self) -> float:
        self.idle_count += 1
        if self.enabled and self.idle_count >= self.attempts:
            grown = min(self.current_interval + self.step_s, self.ceiling_s)
            if grown != self.current_interval:
                logger.debug(f"event=interval_grown from={self.current_interval} to={grown} idle={self.idle_count}")
            self.current_interval = grown
            self.idle_count = 0
        self._persist()
        return self.current_interval

    def record_activity(self) -> float:
        return self.reset()

    def reset(self) -> float:
        self.current_interval = self.base_s
        self.idle_count = 0
        self._persist()
        return self.current_interval


class TickResult(BaseModel):
    latest_id: int | None = None
    changed: bool = False
    toast: Toast | None = None
    reload_requested: bool = False
    interval: float


POLL_TOAST = NotificationPayload(title="WooCommerce", message="Nova narudžba je stigla!", type="info", position="top-right")


class OrderPollClient(BaseConnectionClient):
    protocol_name: str = "poll"

    def __init__(
        self,
        client_id: str,
        server_base_url: str,
        config: ClientConfig,
        scheduler: AdaptiveScheduler,
        cookies: KeyValueStore,
        toasts: ToastCenter,
        user: UserContext | None = None,
        on_orders_screen: Callable[[], bool] = lambda: False,
        on_reload: Callable[[], None] | None = None,
        http: httpx.AsyncClient | None = None,
    ):
        super().__init__(client_id, server_base_url, user, config.nonce)
        self.config = config
        self.scheduler = scheduler
        self.cookies = cookies
        self.toasts = toasts
        self.on_orders_screen = on_orders_screen
        self.on_reload = on_reload
        self.client = http or httpx.AsyncClient(base_url=self.server_base_url, timeout=10.0)
        self.last_check: datetime | None = None
        self._task: asyncio.Task | None = None

    async def disconnect(self) -> None:
        await self.client.aclose()

    def should_reload_and_notify(self, latest_id: int) -> bool:
        stored = self.cookies.get(LAST_ORDER_COOKIE)
        if stored is None:
            self.cookies.set(LAST_ORDER_COOKIE, str(latest_id), ttl_s=POLL_COOKIE_TTL_S)
            logger.debug(f"client_id={self.client_id} latest_id={latest_id} event=first_order_stored")
            return False
        if int(stored) != int(latest_id):
            self.cookies.set(LAST_ORDER_COOKIE, str(latest_id), ttl_s=POLL_COOKIE_TTL_S)
            # A dismissal of an older order no longer applies; one of this order
            # (closed on its stream toast) still does
            if not self.toasts.is_dismissed(latest_id):
                self.cookies.delete(self.toasts.dismissal_cookie)
            return True
        return False

    async def tick(self) -> TickResult:
        body = {"statuses": self.config.statuses}
        if self.last_check is not None:
            body["last_check"] = self.last_check.isoformat()

        response = await self.client.post(self.config.poll_url, json=body, headers=self.identity_headers())
        response.raise_for_status()
        poll = PollResponse.model_validate(response.json())
        latest_id = poll.data.latest_id

        if not poll.success or latest_id is None or not self.should_reload_and_notify(latest_id):
            self.stats["empty_responses"] += 1
            interval = self.scheduler.record_idle()
            return TickResult(latest_id=latest_id, interval=interval)

        self.last_check = poll.data.latest_time
        self.scheduler.record_activity()
        toast = None
        if not self.toasts.is_dismissed(latest_id):
            toast = self.toasts.show(POLL_TOAST, order_id=latest_id, source="poll")
            self.stats["events_received"] += 1

        reload_requested = self.config.reload_table and self.on_orders_screen()
        if reload_requested and self.on_reload is not None:
            self.on_reload()
        logger.info(f"client_id={self.client_id} latest_id={latest_id} event=new_order_polled reload={reload_requested}")
        return TickResult(
            latest_id=latest_id,
            changed=True,
            toast=toast,
            reload_requested=reload_requested,
            interval=self.scheduler.current_interval,
        )

    async def connect(self) -> None:
        await self._emit_status("ACTIVE")
        await self.tick()
        await asyncio.sleep(self.scheduler.current_interval)

    def start(self, duration_s: float) -> asyncio.Task:
        """Start the loop; a second call returns the task already running."""
        if self._task is not None and not self._task.done():
            return self._task
        self._task = asyncio.create_task(self.run(duration_s))
        return self._task

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
