"""
MODULE OVERVIEW:
The event buffer: a JSON append log of pending and processed events, shared by every
request that touches notifications.

WHAT IS HAPPENING HERE:
There is no resident copy of the buffer. Each call reads the file, and each
mutation is one read-modify-write under an exclusive `filelock` lock, held for the
file I/O only and never across a stream's sleep. Concurrent requests therefore
interleave whole mutations, never half-written documents.

Policy enforced on append:
  - an event with the same uid already exists, pending or processed -> no-op
    (idempotent dispatch; a retired event is never revived)
  - the new event carries an order id -> every other order-linked event is evicted,
    only the freshest order notification survives
  - processed events older than the retention window are garbage collected
"""
import time
from pathlib import Path
from typing import Callable

from filelock import Timeout
from loguru import logger
from pydantic import ValidationError

from order_notifier.shared.models import Event, EventBufferDocument
from order_notifier.shared.storage import Clock, atomic_write_json, lock_for, read_json, write_json_unlocked

DAY_S = 24 * 3600


class EventBuffer:
    def __init__(
        self,
        path: Path,
        retention_days: int = 14,
        lock_timeout_s: float = 2.0,
        clock: Clock = time.time,
    ):
        self.path = path
        self.retention_days = retention_days
        self.lock_timeout_s = lock_timeout_s
        self._clock = clock

    # ==========================
    # RAW READ / WRITE
    # ==========================
    def read(self) -> EventBufferDocument:
        raw = read_json(self.path)
        if raw is None:
            return EventBufferDocument()
        try:
            return EventBufferDocument.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"path={self.path} event=buffer_corrupt reason='{e.error_count()} errors' action=treat_as_empty")
            return EventBufferDocument()

    def write(self, document: EventBufferDocument) -> bool:
        return atomic_write_json(self.path, document.model_dump(), self.lock_timeout_s)

    def reset(self) -> bool:
        ok = self.write(EventBufferDocument())
        logger.info(f"path={self.path} event=buffer_reset ok={ok}")
        return ok

    def _mutate(self, fn: Callable[[EventBufferDocument], bool]) -> bool:
        """Run `fn` on the current document under the lock; write only if it reports a change."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with lock_for(self.path, self.lock_timeout_s):
                document = self.read()
                if not fn(document):
                    return False
                write_json_unlocked(self.path, document.model_dump())
                return True
        except Timeout:
            logger.error(f"path={self.path} event=write_failed reason=lock_timeout")
        except OSError as e:
            logger.error(f"path={self.path} event=write_failed reason='{e}'")
        return False

    # ==========================
    # MUTATIONS
    # ==========================
    def append(self, event: Event) -> bool:
        """Insert `event`; False when it was a duplicate or the write failed."""

        def apply(document: EventBufferDocument) -> bool:
            existing = next((e for e in document.events if e.uid == event.uid), None)
            if existing is not None:
                # A processed uid stays retired; redispatching the same order is a no-op
                state = "processed" if existing.is_processed else "pending"
                logger.debug(f"uid={event.uid} event=append_skipped reason=duplicate_{state}")
                return False

            events = list(document.events)
            if event.is_order_linked:
                evicted = [e for e in events if e.is_order_linked]
                if evicted:
                    logger.debug(f"uid={event.uid} event=evicted_order_events count={len(evicted)}")
                events = [e for e in events if not e.is_order_linked]

            if event.timestamp is None:
                event.timestamp = int(self._clock())
            events.append(event)
            document.events = events

            if event.is_order_linked:
                self._evict_expired(document)
            return True

        appended = self._mutate(apply)
        if appended:
            logger.info(f"uid={event.uid} order_id={event.order_id} event=appended")
        return appended

    def mark_processed(self, uid: str) -> bool:
        def apply(document: EventBufferDocument) -> bool:
            for event in document.events:
                if event.uid == uid:
                    if event.is_processed:
                        return False
                    event.is_processed = True
                    return True
            logger.debug(f"uid={uid} event=mark_processed_skipped reason=not_found")
            return False

        marked = self._mutate(apply)
        if marked:
            logger.info(f"uid={uid} event=marked_processed")
        return marked

    def cleanup(self, retention_days: int | None = None, now: float | None = None) -> int:
        """Drop processed events at least `retention_days` old. Returns how many went."""
        removed: list[int] = []

        def apply(document: EventBufferDocument) -> bool:
            removed.append(self._evict_expired(document, retention_days, now))
            return removed[0] > 0

        self._mutate(apply)
        return removed[0] if removed else 0

    def _evict_expired(
        self,
        document: EventBufferDocument,
        retention_days: int | None = None,
        now: float | None = None,
    ) -> int:
        retention_s = (retention_days if retention_days is not None else self.retention_days) * DAY_S
        now = self._clock() if now is None else now

        def expired(event: Event) -> bool:
            return event.is_processed and event.timestamp is not None and now - event.timestamp >= retention_s

        before = len(document.events)
        document.events = [e for e in document.events if not expired(e)]
        removed = before - len(document.events)
        if removed:
            logger.debug(f"event=cleanup removed={removed} retention_days={retention_s // DAY_S}")
        return removed

    # ==========================
    # QUERIES
    # ==========================
    def pending(self) -> list[Event]:
        return [e for e in self.read().events if not e.is_processed]

    def next_pending(self) -> Event | None:
        pending = self.pending()
        return pending[0] if pending else None

    def find(self, uid: str) -> Event | None:
        return next((e for e in self.read().events if e.uid == uid), None)
