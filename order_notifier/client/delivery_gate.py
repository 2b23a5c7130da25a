"""
MODULE OVERVIEW:
The client half of the delivery protocol.

WHAT IS HAPPENING HERE:
Each event uid gets one marker cookie, `on_ack_<uid>`:

    unseen  --admit()-->  0 (pending)  --acknowledge()-->  1 (acknowledged)

`admit` is the dedup gate: only the first sighting of a uid in this browser shows a
toast. Once the toast is up, `acknowledge` flips the marker to 1, and the next stream
connection carries that cookie to the server, which retires the event and expires
the cookie. Markers live for five minutes; if one lapses before the server saw it,
the event is still pending server-side and comes back (at-least-once).
"""
from typing import Literal

from loguru import logger

from order_notifier.shared.models import MARKER_ACKNOWLEDGED, MARKER_PENDING, ack_marker_name
from order_notifier.shared.storage import KeyValueStore

MarkerState = Literal["unseen", "pending", "acknowledged"]


class DeliveryGate:
    def __init__(self, cookies: KeyValueStore, ttl_s: float = 300):
        self.cookies = cookies
        self.ttl_s = ttl_s

    def state(self, uid: str) -> MarkerState:
        value = self.cookies.get(ack_marker_name(uid))
        if value is None:
            return "unseen"
        return "acknowledged" if str(value) == str(MARKER_ACKNOWLEDGED) else "pending"

    def admit(self, uid: str) -> bool:
        if self.state(uid) != "unseen":
            logger.debug(f"uid={uid} event=suppressed reason=marker_present")
            return False
        self.cookies.set(ack_marker_name(uid), str(MARKER_PENDING), ttl_s=self.ttl_s)
        return True

    def acknowledge(self, uid: str) -> None:
        self.cookies.set(ack_marker_name(uid), str(MARKER_ACKNOWLEDGED), ttl_s=self.ttl_s)
        logger.debug(f"uid={uid} event=acknowledged ttl={self.ttl_s}")
