"""
MODULE OVERVIEW:
The typed data structures shared by the server and the client, powered by Pydantic v2.

WHAT IS HAPPENING HERE:
`Event` is the one shape every producer (real orders, test events, pings) ends up in,
and the only thing the event buffer stores. The stream puts `Event.to_wire()` on the
wire, the client validates it back. Poll request/response and the client config the
server hands to each tab are defined here too, so neither side can drift.
"""
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

# Cookie name prefix for per-event delivery markers (client sets, server reads)
ACK_MARKER_PREFIX = "on_ack_"

MARKER_PENDING = 0
MARKER_ACKNOWLEDGED = 1


def ack_marker_name(uid: str) -> str:
    return f"{ACK_MARKER_PREFIX}{uid}"


class NotificationPayload(BaseModel):
    title: str = ""
    message: str = ""
    type: str = "info"
    position: str = "top-right"
    # Milliseconds; 0 keeps the toast until it is closed
    timeout: int = 0
    icon: str = ""


# WHAT IS HAPPENING HERE:
# `uid` is deterministic for order-linked events (sha1 of kind + order id) so that
# dispatching the same order twice lands on the same buffer entry.
class Event(BaseModel):
    uid: str
    timestamp: int | None = None
    event_type: Literal["message", "system"] = "message"
    order_id: int | None = None
    reload: bool = False
    is_processed: bool = False
    payload: NotificationPayload = Field(default_factory=NotificationPayload)

    @property
    def is_order_linked(self) -> bool:
        return self.order_id is not None

    def to_wire(self) -> dict[str, Any]:
        """The stream frame body. Processing state stays server-side."""
        data = self.model_dump(exclude={"is_processed"})
        if self.order_id is None:
            data.pop("order_id")
        return data


class SystemEvent(BaseModel):
    event_type: Literal["system"] = "system"
    type: Literal["ping", "heartbeat"]
    timestamp: int

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump()


class EventBufferDocument(BaseModel):
    events: list[Event] = Field(default_factory=list)


class UserContext(BaseModel):
    user_id: int | None = None
    username: str = "guest"
    role: str = "guest"
    authorized: bool = False


class Order(BaseModel):
    id: int
    billing_name: str = ""
    status: str = "pending"
    created_at: datetime


class OrderCreate(BaseModel):
    id: int
    billing_name: str = ""
    status: str = "processing"
    created_at: datetime | None = None


class OrderStatusChange(BaseModel):
    status: str


class HookResult(BaseModel):
    success: bool = True
    data: dict[str, Any] = Field(default_factory=dict)


class ScreenReport(BaseModel):
    screen_id: str


class PollRequest(BaseModel):
    last_check: datetime | None = None
    statuses: list[str] = Field(default_factory=lambda: ["processing"])


class PollData(BaseModel):
    new_order: bool = False
    latest_id: int | None = None
    latest_time: datetime | None = None


class PollResponse(BaseModel):
    success: bool
    data: PollData


# WHAT IS HAPPENING HERE:
# What the server "localizes" into each admin tab on page load: endpoints,
# polling cadence and the flags the client loop needs.
class ClientConfig(BaseModel):
    stream_url: str
    poll_url: str
    interval: int
    statuses: list[str]
    reload_table: bool
    adaptive_interval: bool
    adaptive_attempts: int
    adaptive_step: int
    max_notifications: int
    scope: Literal["orders_only", "everywhere"] = "orders_only"
    nonce: str | None = None


class ErrorResponse(BaseModel):
    success: Literal[False] = False
    data: dict[str, Any]
