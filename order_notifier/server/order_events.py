"""
MODULE OVERVIEW:
The producer side: turns order lifecycle facts into buffered notification events.

WHAT IS HAPPENING HERE:
`OrderEventService` builds the payload (title/message plus toast defaults from the
persisted options) and appends one `Event` to the buffer. The buffer enforces
dedup and "newest order only"; this module decides *what* to say.

`NotifierBootstrapper` runs when an authorized admin loads a page. It compares the
last order this user has seen with the newest order in the shop, so somebody who
was away gets one catch-up notification instead of silence:

    never seen anything      -> welcome event for the newest order
    several new orders       -> one "you have N new orders" event
    exactly one new order    -> the regular new-order event

The small handler classes at the bottom adapt both to the hook registry.
"""
import hashlib
import json
import time
import uuid
from typing import Any

from loguru import logger

from order_notifier.server.event_buffer import EventBuffer
from order_notifier.server.factories import user_meta_key
from order_notifier.server.orders import OrderRepository
from order_notifier.server.users import ScreenTracker
from order_notifier.shared.config import NotifierOptions, OptionsRepository
from order_notifier.shared.events import HookRegistry
from order_notifier.shared.models import Event, NotificationPayload, UserContext
from order_notifier.shared.storage import Clock, KeyValueStore

HOOK_ORDER_CREATED = "order.created"
HOOK_ORDER_STATUS_CHANGED = "order.status_changed"
HOOK_CURRENT_SCREEN = "admin.current_screen"
HOOK_PAGE_LOAD = "admin.page_load"


def make_uid(meta: dict[str, Any]) -> str:
    """Order-linked events hash to a stable uid; anything else gets a fresh one."""
    if meta.get("order_id") is not None and meta.get("event_type"):
        return hashlib.sha1(f"{meta['event_type']}{meta['order_id']}".encode()).hexdigest()
    seed = json.dumps(meta, sort_keys=True) + uuid.uuid4().hex
    return hashlib.sha1(seed.encode()).hexdigest()


class OrderEventService:
    def __init__(
        self,
        buffer: EventBuffer,
        options: OptionsRepository,
        orders: OrderRepository,
        screens: ScreenTracker,
        clock: Clock = time.time,
    ):
        self.buffer = buffer
        self.options = options
        self.orders = orders
        self.screens = screens
        self._clock = clock

    def prepare_payload(self, title: str = "", message: str = "", **overrides: Any) -> NotificationPayload:
        opts: NotifierOptions = self.options.load()
        return NotificationPayload(
            title=title,
            message=message,
            type=overrides.get("type", opts.default_notification_type),
            position=overrides.get("position", opts.default_notification_position),
            timeout=overrides.get("timeout", opts.default_notification_timeout),
            icon=overrides.get("icon", opts.default_notification_icon),
        )

    def store_order_event(self, payload: NotificationPayload, order_id: int | None = None, reload: bool = False) -> Event | None:
        meta: dict[str, Any] = {"event_type": "message", "timestamp": int(self._clock())}
        if order_id is not None:
            meta["order_id"] = order_id
        event = Event(
            uid=make_uid(meta),
            timestamp=meta["timestamp"],
            event_type="message",
            order_id=order_id,
            reload=reload,
            payload=payload,
        )
        return event if self.buffer.append(event) else None

    def dispatch_new_order_event(self, order_id: int) -> Event | None:
        data = self.orders.minimal_order_data(order_id)
        if data is None:
            logger.warning(f"order_id={order_id} event=dispatch_skipped reason=no_order_data")
            return None

        reload = self.options.load().reload_table and self.screens.is_order_page_screen()
        payload = self.prepare_payload(
            title=f"Nova narudžba #{data['order_id']}",
            message=f"Primljena je narudžba od {data['billing_name']}.",
        )
        event = self.store_order_event(payload, order_id=order_id, reload=reload)
        logger.info(f"order_id={order_id} event=dispatch kind=new_order reload={reload} stored={event is not None}")
        return event

    def dispatch_welcome_order_event(self, order_id: int) -> Event | None:
        data = self.orders.minimal_order_data(order_id)
        if data is None:
            logger.warning(f"order_id={order_id} event=dispatch_skipped reason=no_order_data")
            return None

        payload = self.prepare_payload(
            title=f"Dobrodošli! Nova narudžba #{data['order_id']}",
            message=f"Primljena prva narudžba od {data['billing_name']}.",
            type="success",
        )
        event = self.store_order_event(payload, order_id=order_id)
        logger.info(f"order_id={order_id} event=dispatch kind=welcome stored={event is not None}")
        return event

    def dispatch_multiple_orders_event(self, count: int) -> Event | None:
        payload = self.prepare_payload(
            title=f"Imate {count} novih narudžbi",
            message="Provjerite listu narudžbi kako biste vidjeli detalje.",
            type="info",
        )
        event = self.store_order_event(payload)
        logger.info(f"count={count} event=dispatch kind=multiple stored={event is not None}")
        return event


class NotifierBootstrapper:
    def __init__(
        self,
        service: OrderEventService,
        orders: OrderRepository,
        user_meta: KeyValueStore,
        options: OptionsRepository,
    ):
        self.service = service
        self.orders = orders
        self.user_meta = user_meta
        self.options = options

    def last_seen_order_id(self, user_id: int | None) -> int | None:
        context = self.user_meta.get(user_meta_key(user_id))
        if isinstance(context, dict) and context.get("last_seen_order_id") is not None:
            return int(context["last_seen_order_id"])
        return None

    def remember(self, user_id: int | None, order_id: int) -> None:
        self.user_meta.set(user_meta_key(user_id), {"last_seen_order_id": order_id})

    def prepare_environment(self, user: UserContext) -> Event | None:
        if not user.authorized:
            return None

        statuses = self.options.load().tracked_statuses()
        seen_id = self.last_seen_order_id(user.user_id)
        current_id = self.orders.last_order_id(statuses)
        logger.debug(f"user_id={user.user_id} seen_id={seen_id} current_id={current_id} event=bootstrap")

        if not current_id:
            return None

        if seen_id is None:
            self.remember(user.user_id, current_id)
            return self.service.dispatch_welcome_order_event(current_id)

        if seen_id == current_id:
            return None

        new_count = len(self.orders.new_orders(statuses, seen_id))
        self.remember(user.user_id, current_id)
        if new_count > 1:
            return self.service.dispatch_multiple_orders_event(new_count)
        return self.service.dispatch_new_order_event(current_id)


# ==========================
# HOOK HANDLERS
# ==========================
class OrderCreatedHandler:
    def __init__(self, service: OrderEventService):
        self.service = service

    def handle(self, order_id: int) -> None:
        self.service.dispatch_new_order_event(order_id)


class OrderStatusChangedHandler:
    def __init__(self, service: OrderEventService, options: OptionsRepository):
        self.service = service
        self.options = options

    def handle(self, order_id: int, old_status: str, new_status: str) -> None:
        logger.info(f"order_id={order_id} event=status_changed old={old_status} new={new_status}")
        if new_status in self.options.load().tracked_statuses():
            self.service.dispatch_new_order_event(order_id)


class PageLoadHandler:
    def __init__(self, bootstrapper: NotifierBootstrapper):
        self.bootstrapper = bootstrapper

    def handle(self, user: UserContext) -> None:
        self.bootstrapper.prepare_environment(user)


def register_hooks(
    registry: HookRegistry,
    service: OrderEventService,
    bootstrapper: NotifierBootstrapper,
    screens: ScreenTracker,
    options: OptionsRepository,
) -> HookRegistry:
    registry.add(HOOK_ORDER_CREATED, OrderCreatedHandler(service))
    registry.add(HOOK_ORDER_STATUS_CHANGED, OrderStatusChangedHandler(service, options))
    registry.add(HOOK_CURRENT_SCREEN, screens, priority=11)
    registry.add_once(HOOK_PAGE_LOAD, PageLoadHandler(bootstrapper))
    return registry
