"""
MODULE OVERVIEW:
The minimal order record the notifier needs, and the latest-order lookup that backs
the polling fallback.

WHAT IS HAPPENING HERE:
The commerce platform owns orders; the host tells us about them through the order
hooks and we keep only `{id, billing_name, status, created_at}` keyed by id. The poll
endpoint asks "what is the newest order in these statuses?" many times a minute from
every open tab, so the answer is cached in a transient per status set and dropped
whenever an order is written.
"""
from datetime import datetime, timezone
from typing import Any

from loguru import logger

from order_notifier.shared.models import Order, PollData
from order_notifier.shared.storage import KeyValueStore

ORDER_KEY_PREFIX = "order:"
POLL_CACHE_PREFIX = "wc_new_orders_"


def poll_cache_key(statuses: list[str]) -> str:
    return POLL_CACHE_PREFIX + "_".join(statuses)


class OrderRepository:
    def __init__(self, store: KeyValueStore, transients: KeyValueStore, cache_ttl_s: int = 300):
        self.store = store
        self.transients = transients
        self.cache_ttl_s = cache_ttl_s

    # ==========================
    # WRITES
    # ==========================
    def upsert(self, order: Order) -> Order:
        self.store.set(f"{ORDER_KEY_PREFIX}{order.id}", order.model_dump(mode="json"))
        dropped = self.transients.delete_prefix(POLL_CACHE_PREFIX)
        logger.debug(f"order_id={order.id} status={order.status} event=order_saved cache_dropped={dropped}")
        return order

    def set_status(self, order_id: int, status: str) -> Order | None:
        order = self.get(order_id)
        if order is None:
            return None
        order.status = status
        return self.upsert(order)

    # ==========================
    # READS
    # ==========================
    def get(self, order_id: int) -> Order | None:
        raw = self.store.get(f"{ORDER_KEY_PREFIX}{order_id}")
        return Order.model_validate(raw) if raw else None

    def all(self) -> list[Order]:
        orders = []
        for key in self.store.keys():
            if key.startswith(ORDER_KEY_PREFIX):
                raw = self.store.get(key)
                if raw:
                    orders.append(Order.model_validate(raw))
        return orders

    def query(self, statuses: list[str] | None = None, limit: int | None = None) -> list[Order]:
        """Orders newest first, optionally restricted to `statuses`."""
        orders = [o for o in self.all() if statuses is None or o.status in statuses]
        orders.sort(key=lambda o: (o.created_at, o.id), reverse=True)
        return orders[:limit] if limit is not None else orders

    def latest(self, statuses: list[str]) -> Order | None:
        found = self.query(statuses, limit=1)
        return found[0] if found else None

    def last_order_id(self, statuses: list[str]) -> int:
        latest = self.latest(statuses)
        return latest.id if latest else 0

    def new_orders(self, statuses: list[str], last_id: int) -> list[int]:
        """Ids above `last_id` among the ten newest orders."""
        return [o.id for o in self.query(statuses, limit=10) if o.id > last_id]

    def minimal_order_data(self, order_id: int, with_status: bool = False) -> dict[str, Any] | None:
        order = self.get(order_id)
        if order is None:
            return None
        data: dict[str, Any] = {"order_id": order.id, "billing_name": order.billing_name}
        if with_status:
            data["status"] = order.status
        return data

    # ==========================
    # POLLING
    # ==========================
    def poll_latest(self, statuses: list[str], last_check: datetime | None = None) -> PollData:
        key = poll_cache_key(statuses)
        cached = self.transients.get(key)
        if isinstance(cached, dict):
            latest = Order.model_validate(cached) if cached.get("id") else None
            logger.debug(f"cache_key={key} event=poll_cache_hit")
        else:
            latest = self.latest(statuses)
            self.transients.set(key, latest.model_dump(mode="json") if latest else {}, ttl_s=self.cache_ttl_s)

        if latest is None:
            return PollData(new_order=False)

        new_order = last_check is None or _aware(latest.created_at) > _aware(last_check)
        return PollData(new_order=new_order, latest_id=latest.id, latest_time=latest.created_at)


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)
