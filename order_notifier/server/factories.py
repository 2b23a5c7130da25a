"""
MODULE OVERVIEW:
The three event factories a stream session asks, in order, for "something to send".

WHAT IS HAPPENING HERE:
  - RealEventFactory    pending events from the buffer, filtered by delivery markers
  - TestEventFactory    synthetic order-shaped events for checking the pipeline end to end
  - SystemEventFactory  pings / heartbeats that keep intermediaries from closing the socket

The real factory is where the delivery protocol closes its loop: the client sets
`on_ack_<uid>=1` once it has shown a toast, and on the next connection this factory
sees that cookie, flips the event to processed and deletes the cookie.
"""
import random
import time
import uuid

from loguru import logger

from order_notifier.server.event_buffer import EventBuffer
from order_notifier.shared.config import NotifierOptions
from order_notifier.shared.models import (
    MARKER_ACKNOWLEDGED,
    Event,
    NotificationPayload,
    SystemEvent,
    UserContext,
    ack_marker_name,
)
from order_notifier.shared.storage import Clock, KeyValueStore

USER_CONTEXT_META_KEY = "order_notifier_user_context"

DEMO_NAMES = ["Demo Demic", "Ivana Testic", "Marko Proba", "Ana Streamovic"]


def user_meta_key(user_id: int | None) -> str:
    return f"{user_id}:{USER_CONTEXT_META_KEY}"


class RealEventFactory:
    def __init__(
        self,
        buffer: EventBuffer,
        user: UserContext,
        markers: KeyValueStore,
        user_meta: KeyValueStore,
        clock: Clock = time.time,
    ):
        self.buffer = buffer
        self.user = user
        self.markers = markers
        self.user_meta = user_meta
        self._clock = clock

    def is_acknowledged(self, uid: str) -> bool:
        value = self.markers.get(ack_marker_name(uid))
        return value is not None and str(value) == str(MARKER_ACKNOWLEDGED)

    def check_and_mark_processed(self, uid: str) -> bool:
        """If the client acknowledged `uid`, retire the event and drop the marker."""
        if not self.is_acknowledged(uid):
            return False
        self.buffer.mark_processed(uid)
        self.markers.delete(ack_marker_name(uid))
        logger.info(f"user_id={self.user.user_id} uid={uid} event=acknowledged")
        return True

    def reconcile_acknowledged(self) -> int:
        """Retire every acknowledged pending event before the stream response starts."""
        if not self.user.authorized:
            return 0
        return sum(1 for event in self.buffer.pending() if self.check_and_mark_processed(event.uid))

    def next(self) -> Event | None:
        if not self.user.authorized:
            return None

        for event in self.buffer.pending():
            if self.check_and_mark_processed(event.uid):
                continue
            if event.timestamp is None:
                event.timestamp = int(self._clock())
            if event.order_id is not None:
                self._remember_order(event.order_id)
            return event
        return None

    def _remember_order(self, order_id: int) -> None:
        key = user_meta_key(self.user.user_id)
        context = self.user_meta.get(key) or {}
        context["last_seen_order_id"] = order_id
        self.user_meta.set(key, context)


class TestEventFactory:
    # Not a test case, despite the name
    __test__ = False

    def __init__(self, options: NotifierOptions, enabled: bool | None = None, clock: Clock = time.time):
        self.options = options
        self.enabled = options.enable_test_events if enabled is None else enabled
        self._clock = clock

    def create(self) -> Event:
        order_id = random.randint(10000, 99999)
        name = random.choice(DEMO_NAMES)
        return Event(
            uid=f"test_{uuid.uuid4().hex}",
            timestamp=int(self._clock()),
            order_id=order_id,
            payload=NotificationPayload(
                title=f"Nova narudžba #{order_id}",
                message=f"Primljena je narudžba od {name}.",
                type=self.options.default_notification_type,
                position=self.options.default_notification_position,
                timeout=self.options.default_notification_timeout,
                icon=self.options.default_notification_icon,
            ),
        )

    def next(self) -> Event | None:
        return self.create() if self.enabled else None


class SystemEventFactory:
    def __init__(self, clock: Clock = time.time):
        self._clock = clock

    def create_ping(self) -> SystemEvent:
        return SystemEvent(type="ping", timestamp=int(self._clock()))

    def create_heartbeat(self) -> SystemEvent:
        return SystemEvent(type="heartbeat", timestamp=int(self._clock()))

    def next(self) -> SystemEvent:
        return self.create_ping()
