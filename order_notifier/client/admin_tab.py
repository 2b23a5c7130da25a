"""
MODULE OVERVIEW:
One admin browser tab, assembled from the client pieces.

WHAT IS HAPPENING HERE:
A tab owns its session storage and shares cookies and local storage with every other
tab of the same browser (pass the same stores in). On start it:

  1. resets the adaptive timer if the page was hard-reloaded;
  2. replays a reload payload left by the previous page, if any;
  3. runs the stream client (only if this tab holds the connection) and the poller.

A stream event goes through the delivery gate first. Admitted events are either
toasted and rebroadcast to sibling tabs, or, when the server asked for a reload,
parked in local storage under `orderNotifierReloadPayload` and shown by the page
that comes up after the reload. Every shown event is acknowledged so the server can
retire it on the next connection.
"""
import asyncio
from typing import Any, Literal

import httpx
from loguru import logger

from order_notifier.client.cross_tab import CrossTabBus
from order_notifier.client.delivery_gate import DeliveryGate
from order_notifier.client.poll_client import AdaptiveScheduler, OrderPollClient
from order_notifier.client.stream_client import StreamClient
from order_notifier.client.toasts import ToastCenter, dismissal_cookie_name
from order_notifier.shared.models import ClientConfig, Event, NotificationPayload, UserContext
from order_notifier.shared.storage import KeyValueStore, MemoryStore

CHANNEL_NAME = "order-notifier"
RELOAD_PAYLOAD_KEY = "orderNotifierReloadPayload"
ORDERS_SCREEN = "orders"

NavigationType = Literal["navigate", "reload", "back_forward"]


class AdminTab:
    def __init__(
        self,
        base_url: str,
        config: ClientConfig,
        user: UserContext,
        cookies: KeyValueStore,
        local_storage: KeyValueStore,
        session_storage: KeyValueStore | None = None,
        screen: str = "dashboard",
        navigation_type: NavigationType = "navigate",
        holds_connection: bool = True,
        per_user_dismissal: bool = False,
        retry_s: float = 3.0,
        ack_ttl_s: float = 300,
        ceiling_s: float = 600,
        tab_id: str = "tab",
        stream_http: httpx.AsyncClient | None = None,
        poll_http: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url
        self.config = config
        self.user = user
        self.cookies = cookies
        self.local_storage = local_storage
        self.session_storage = session_storage or MemoryStore()
        self.screen = screen
        self.navigation_type = navigation_type
        self.tab_id = tab_id
        self.reload_count = 0

        self.bus = CrossTabBus(CHANNEL_NAME, self.session_storage)
        self.bus.on("message", self._on_broadcast)
        self.gate = DeliveryGate(cookies, ttl_s=ack_ttl_s)
        self.toasts = ToastCenter(
            cookies,
            max_notifications=config.max_notifications,
            dismissal_cookie=dismissal_cookie_name(user.user_id if per_user_dismissal else None),
        )
        self.scheduler = AdaptiveScheduler(
            base_s=config.interval,
            step_s=config.adaptive_step,
            attempts=config.adaptive_attempts,
            ceiling_s=ceiling_s,
            enabled=config.adaptive_interval,
            storage=local_storage,
            user_id=user.user_id,
        )
        self.poller = OrderPollClient(
            f"{tab_id}-poll",
            base_url,
            config,
            self.scheduler,
            cookies,
            self.toasts,
            user=user,
            on_orders_screen=self.on_orders_screen,
            on_reload=self.reload,
            http=poll_http,
        )
        self.stream: StreamClient | None = None
        if holds_connection:
            self.stream = StreamClient(
                f"{tab_id}-sse",
                base_url,
                cookies,
                user=user,
                nonce=config.nonce,
                stream_path=config.stream_url,
                retry_s=retry_s,
                http=stream_http,
            )
            self.stream.set_callbacks(self.handle_stream_event, self._on_status)

    def on_orders_screen(self) -> bool:
        return self.screen == ORDERS_SCREEN

    def notifications_enabled(self) -> bool:
        """`orders_only` limits the stream and the poller to the orders screen."""
        return self.config.scope == "everywhere" or self.on_orders_screen()

    async def _on_status(self, status: str) -> None:
        logger.debug(f"tab_id={self.tab_id} event=status status={status}")

    # ==========================
    # PAGE LIFECYCLE
    # ==========================
    def boot(self) -> None:
        if self.navigation_type == "reload":
            logger.debug(f"tab_id={self.tab_id} event=hard_reload action=reset_interval")
            self.scheduler.reset()
        self.check_and_show_reload_payload()

    def reload(self) -> None:
        """What the page does after `location.reload()`: a fresh boot as a reload."""
        self.reload_count += 1
        self.navigation_type = "reload"
        self.boot()

    # ==========================
    # MESSAGES
    # ==========================
    def handle_message(self, payload: dict[str, Any], order_id: int | None = None, uid: str | None = None, source: str = "stream") -> bool:
        if isinstance(payload.get("count"), int):
            self.toasts.set_badge(payload["count"])
            return True
        if payload.get("title") and payload.get("message"):
            self.toasts.show(NotificationPayload.model_validate(payload), order_id=order_id, uid=uid, source=source)
            return True
        logger.warning(f"tab_id={self.tab_id} event=payload_incomplete payload={payload}")
        return False

    def _on_broadcast(self, payload: Any) -> None:
        if isinstance(payload, dict):
            self.handle_message(payload, source="broadcast")

    def save_reload_payload(self, payload: dict[str, Any]) -> None:
        if not payload:
            return
        self.local_storage.set(RELOAD_PAYLOAD_KEY, payload)
        if self.on_orders_screen():
            self.reload()
        else:
            self.check_and_show_reload_payload()

    def check_and_show_reload_payload(self) -> bool:
        payload = self.local_storage.get(RELOAD_PAYLOAD_KEY)
        if not payload:
            return False
        self.local_storage.delete(RELOAD_PAYLOAD_KEY)
        self.bus.send("message", payload)
        self.handle_message(payload, source="reload")
        return True

    async def handle_stream_event(self, event: Event) -> None:
        if not self.gate.admit(event.uid):
            return
        payload = event.payload.model_dump()
        if event.reload:
            self.save_reload_payload(payload)
        else:
            self.bus.send("message", payload)
            self.handle_message(payload, order_id=event.order_id, uid=event.uid)
        self.gate.acknowledge(event.uid)

    # ==========================
    # RUN
    # ==========================
    async def run(self, duration_s: float) -> None:
        if not self.notifications_enabled():
            logger.info(f"tab_id={self.tab_id} screen={self.screen} scope={self.config.scope} event=notifier_inactive")
            self.close()
            return
        self.boot()
        tasks = [self.poller.start(duration_s)]
        if self.stream is not None:
            tasks.append(asyncio.create_task(self.stream.run(duration_s)))
        try:
            await asyncio.gather(*tasks)
        finally:
            self.close()

    def close(self) -> None:
        self.bus.close()
