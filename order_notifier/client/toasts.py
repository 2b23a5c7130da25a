"""
MODULE OVERVIEW:
What the tab would draw: a bounded stack of toasts and the orders-menu badge.

WHAT IS HAPPENING HERE:
No rendering happens here. `ToastCenter` keeps the newest `max_notifications` toasts
(older ones fall off, as they would scroll off screen) and remembers what the user
closed: closing a toast tied to an order writes the dismissal cookie so the poller
does not raise the same order again.
"""
import time
import uuid
from collections import deque

from loguru import logger
from pydantic import BaseModel, Field

from order_notifier.shared.models import NotificationPayload
from order_notifier.shared.storage import Clock, KeyValueStore

DISMISSED_COOKIE = "dismissed_order_id"
# Cookies the polling loop writes live for half an hour
POLL_COOKIE_TTL_S = 30 * 60
# Toasts remembered for the dashboard, newest last
HISTORY_LIMIT = 100


def dismissal_cookie_name(user_id: int | None = None) -> str:
    """The global cookie, or a per-user one when a user id is given."""
    return f"{DISMISSED_COOKIE}_{user_id}" if user_id else DISMISSED_COOKIE


class Toast(BaseModel):
    toast_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:8])
    payload: NotificationPayload
    order_id: int | None = None
    uid: str | None = None
    source: str = "stream"
    shown_at: float = 0.0


class ToastCenter:
    def __init__(
        self,
        cookies: KeyValueStore,
        max_notifications: int = 5,
        dismissal_cookie: str = DISMISSED_COOKIE,
        clock: Clock = time.time,
    ):
        self.cookies = cookies
        self.dismissal_cookie = dismissal_cookie
        self.visible: deque[Toast] = deque(maxlen=max_notifications)
        self.history: deque[Toast] = deque(maxlen=HISTORY_LIMIT)
        self.badge_count = 0
        self._clock = clock

    def show(self, payload: NotificationPayload, order_id: int | None = None, uid: str | None = None, source: str = "stream") -> Toast:
        toast = Toast(payload=payload, order_id=order_id, uid=uid, source=source, shown_at=self._clock())
        self.visible.append(toast)
        self.history.append(toast)
        logger.info(f"toast_id={toast.toast_id} source={source} order_id={order_id} event=toast_shown title='{payload.title}'")
        return toast

    def is_dismissed(self, order_id: int) -> bool:
        value = self.cookies.get(self.dismissal_cookie)
        try:
            return value is not None and int(value) == int(order_id)
        except (TypeError, ValueError):
            return False

    def dismiss(self, toast_id: str) -> Toast | None:
        toast = next((t for t in self.visible if t.toast_id == toast_id), None)
        if toast is None:
            return None
        self.visible.remove(toast)
        if toast.order_id is not None:
            self.cookies.set(self.dismissal_cookie, str(toast.order_id), ttl_s=POLL_COOKIE_TTL_S)
        logger.debug(f"toast_id={toast_id} order_id={toast.order_id} event=toast_dismissed")
        return toast

    def set_badge(self, count: int) -> None:
        self.badge_count = max(0, count)

    @property
    def badge_text(self) -> str:
        count = self.badge_count
        if count <= 0:
            return ""
        return f"{count} nova narudžba" if count == 1 else f"{count} nove narudžbe"
