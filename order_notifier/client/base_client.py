from abc import ABC, abstractmethod
import asyncio
from typing import Callable, Awaitable

from order_notifier.shared.client_utils import make_client_stats, with_reconnect
from order_notifier.shared.models import Event, SystemEvent, UserContext


class BaseConnectionClient(ABC):
    """A reconnecting admin-tab connection; subclasses implement one `connect()` attempt."""

    protocol_name: str = "unknown"

    def __init__(self, client_id: str, server_base_url: str, user: UserContext | None = None, nonce: str | None = None):
        self.client_id = client_id
        self.server_base_url = server_base_url.rstrip('/')
        self.user = user or UserContext()
        self.nonce = nonce

        self.on_event_callback: Callable[[Event], Awaitable[None]] | None = None
        self.on_status_change_callback: Callable[[str], Awaitable[None]] | None = None

        self.stats = make_client_stats()
        self._is_running = False

    @property
    def events_received(self): return self.stats["events_received"]

    @property
    def reconnect_count(self): return self.stats["reconnect_count"]

    @property
    def empty_responses(self): return self.stats["empty_responses"]

    @property
    def is_running(self) -> bool:
        return self._is_running

    def identity_headers(self) -> dict[str, str]:
        """What the host would put on the request for the logged-in admin."""
        headers = {}
        if self.user.user_id:
            headers["X-User-Id"] = str(self.user.user_id)
            headers["X-User-Login"] = self.user.username
            headers["X-User-Role"] = self.user.role
        if self.nonce:
            headers["X-WP-Nonce"] = self.nonce
        return headers

    def set_callbacks(self, on_event, on_status_change):
        self.on_event_callback = on_event
        self.on_status_change_callback = on_status_change

    async def _emit_status(self, status: str):
        if self.on_status_change_callback:
            await self.on_status_change_callback(status)

    async def on_event(self, event: Event):
        self.stats["events_received"] += 1
        if self.on_event_callback:
            await self.on_event_callback(event)

    async def on_system(self, event: SystemEvent):
        self.stats["pings_received"] += 1

    @abstractmethod
    async def connect(self) -> None:
        """One connection attempt; returning normally means the server closed cleanly."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    def clean_close_delay(self) -> float:
        return 0.0

    async def run(self, duration_s: float = 60.0) -> None:
        self._is_running = True
        try:
            await with_reconnect(
                self.connect,
                self.stats,
                duration_s,
                clean_close_delay_s=self.clean_close_delay,
                protocol=self.protocol_name,
                client_id=self.client_id
            )
        except asyncio.CancelledError:
            pass
        finally:
            self._is_running = False
            await self.disconnect()
            await self._emit_status("CLOSED")
