import asyncio
import random
from typing import Awaitable, Callable, Iterator

import httpx
from loguru import logger
from datetime import datetime, timezone


def make_client_stats() -> dict:
    """
    Returns a fresh stats dictionary with zeroed counters.
    Every client calls this once in __init__.
    Keys: events_received, pings_received, empty_responses, reconnect_count,
          bytes_received, last_event_at, connected_at.
    """
    return {
        "events_received": 0,
        "pings_received": 0,
        "empty_responses": 0,
        "reconnect_count": 0,
        "bytes_received": 0,
        "last_event_at": None,
        "connected_at": datetime.now(timezone.utc).isoformat()
    }


async def with_reconnect(
    connect_fn: Callable[[], Awaitable[None]],
    stats: dict,
    duration_s: float,
    base_delay_s: float = 1.0,
    max_delay_s: float = 32.0,
    clean_close_delay_s: float | Callable[[], float] = 0.0,
    protocol: str = "unknown",
    client_id: str = "unknown",
) -> None:
    """
    Wraps any async connect function with automatic reconnection.

    A clean return (the server closed the stream on purpose) waits
    `clean_close_delay_s` (a number, or a callable read after each close), the way
    EventSource honours `retry`. A network error
    backs off exponentially with jitter, capped at `max_delay_s`.
    """
    loop = asyncio.get_running_loop()
    attempt = 0
    start_time = loop.time()

    while True:
        elapsed = loop.time() - start_time
        if elapsed >= duration_s:
            break

        try:
            # We want to wait for connect_fn, but cap it at the remaining duration
            remaining = duration_s - elapsed
            await asyncio.wait_for(connect_fn(), timeout=remaining)
            attempt = 0
            # Read on every close: the server may have changed `retry` meanwhile
            delay = clean_close_delay_s() if callable(clean_close_delay_s) else clean_close_delay_s
        except asyncio.TimeoutError:
            # Reached max duration normally
            break
        except (ConnectionError, OSError, httpx.HTTPError) as e:
            attempt += 1
            delay = min(base_delay_s * (2 ** attempt), max_delay_s)
            delay += random.uniform(0, delay * 0.1)
            stats["reconnect_count"] += 1
            logger.warning(
                f"protocol={protocol} client_id={client_id} attempt={attempt} "
                f"delay={delay:.2f}s reason='{e}'"
            )

        remaining = duration_s - (loop.time() - start_time)
        if delay > 0 and remaining > 0:
            try:
                await asyncio.wait_for(asyncio.sleep(delay), timeout=remaining)
            except asyncio.TimeoutError:
                break


def split_sse_blocks(buffer: str) -> tuple[list[str], str]:
    """
    Cut complete SSE blocks off the front of `buffer`.
    Returns the blocks and the unfinished tail to keep for the next chunk.
    Servers may terminate lines with CRLF, CR or LF; all are normalised to LF first.
    """
    buffer = buffer.replace("\r\n", "\n").replace("\r", "\n")
    blocks = []
    while "\n\n" in buffer:
        block, buffer = buffer.split("\n\n", 1)
        blocks.append(block)
    return blocks, buffer


def parse_sse_block(block: str) -> tuple[str, str, str | None]:
    """Returns (event name, joined data, retry ms or None). Comment lines are skipped."""
    event_type = "message"
    data_lines = []
    retry = None

    for line in block.split("\n"):
        if not line or line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event_type = value
        elif field == "data":
            data_lines.append(value)
        elif field == "retry":
            retry = value

    return event_type, "\n".join(data_lines), retry


def iter_sse_text(text: str) -> Iterator[tuple[str, str]]:
    """(event, data) for every complete frame in `text` that carries data."""
    blocks, _ = split_sse_blocks(text)
    for block in blocks:
        event_type, data, _ = parse_sse_block(block)
        if data:
            yield event_type, data
