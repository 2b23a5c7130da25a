"""
MODULE OVERVIEW:
One key-value interface for every small piece of state the notifier keeps.

WHAT IS HAPPENING HERE:
A browser has cookies, session storage and local storage; the server has user meta,
transients and a settings row. They all boil down to "get/set/delete a JSON value,
maybe with an expiry". Callers depend on `KeyValueStore` only, and we plug in:

  - MemoryStore         tests, a tab's cookies and session storage
  - JsonFileStore       server-side persisted maps (options, user meta, transients)
  - RequestCookieStore  the cookies one HTTP request arrived with (read + delete)

File-backed writes go through `atomic_write_json`: an exclusive `filelock` lock for
the duration of the write, a temp file, then `os.replace`. Readers never block.
"""
import json
import os
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Iterator

from filelock import FileLock, Timeout
from loguru import logger

Clock = Callable[[], float]


def lock_for(path: Path, timeout_s: float) -> FileLock:
    return FileLock(str(path) + ".lock", timeout=timeout_s)


def read_json(path: Path) -> Any | None:
    """Decode a JSON file, returning None when it is absent or unparsable."""
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.warning(f"path={path} event=read_failed reason='{e}'")
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"path={path} event=corrupt_json reason='{e.msg}' action=treat_as_empty")
        return None


def write_json_unlocked(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    tmp.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
    os.replace(tmp, path)


def atomic_write_json(path: Path, data: Any, lock_timeout_s: float = 2.0) -> bool:
    """Write `data` to `path` while holding the exclusive file lock."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with lock_for(path, lock_timeout_s):
            write_json_unlocked(path, data)
        return True
    except Timeout:
        logger.error(f"path={path} event=write_failed reason=lock_timeout")
    except OSError as e:
        logger.error(f"path={path} event=write_failed reason='{e}'")
    return False


class KeyValueStore(ABC):
    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        ...

    @abstractmethod
    def set(self, key: str, value: Any, ttl_s: float | None = None) -> bool:
        ...

    @abstractmethod
    def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    def keys(self) -> Iterator[str]:
        ...

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def delete_prefix(self, prefix: str) -> int:
        doomed = [k for k in self.keys() if k.startswith(prefix)]
        for key in doomed:
            self.delete(key)
        return len(doomed)


class MemoryStore(KeyValueStore):
    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._items: dict[str, tuple[Any, float | None]] = {}

    def _alive(self, key: str) -> bool:
        item = self._items.get(key)
        if item is None:
            return False
        expires_at = item[1]
        if expires_at is not None and self._clock() >= expires_at:
            del self._items[key]
            return False
        return True

    def get(self, key: str, default: Any = None) -> Any:
        return self._items[key][0] if self._alive(key) else default

    def set(self, key: str, value: Any, ttl_s: float | None = None) -> bool:
        expires_at = self._clock() + ttl_s if ttl_s is not None else None
        self._items[key] = (value, expires_at)
        return True

    def delete(self, key: str) -> bool:
        return self._items.pop(key, None) is not None

    def keys(self) -> Iterator[str]:
        return iter([k for k in list(self._items) if self._alive(k)])


class JsonFileStore(KeyValueStore):
    """A JSON map on disk: `{key: {"value": ..., "expires_at": float | null}}`."""

    def __init__(self, path: Path, clock: Clock = time.time, lock_timeout_s: float = 2.0):
        self.path = path
        self._clock = clock
        self._lock_timeout_s = lock_timeout_s

    def _load(self) -> dict[str, dict]:
        data = read_json(self.path)
        return data if isinstance(data, dict) else {}

    def _live(self, entry: Any) -> bool:
        if not isinstance(entry, dict) or "value" not in entry:
            return False
        expires_at = entry.get("expires_at")
        return expires_at is None or self._clock() < expires_at

    def _mutate(self, fn: Callable[[dict], None]) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with lock_for(self.path, self._lock_timeout_s):
                data = self._load()
                fn(data)
                # Expired entries are dropped on every write
                data = {k: v for k, v in data.items() if self._live(v)}
                write_json_unlocked(self.path, data)
            return True
        except Timeout:
            logger.error(f"path={self.path} event=write_failed reason=lock_timeout")
        except OSError as e:
            logger.error(f"path={self.path} event=write_failed reason='{e}'")
        return False

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._load().get(key)
        return entry["value"] if self._live(entry) else default

    def set(self, key: str, value: Any, ttl_s: float | None = None) -> bool:
        expires_at = self._clock() + ttl_s if ttl_s is not None else None

        def apply(data: dict) -> None:
            data[key] = {"value": value, "expires_at": expires_at}

        return self._mutate(apply)

    def delete(self, key: str) -> bool:
        found = []

        def apply(data: dict) -> None:
            found.append(data.pop(key, None) is not None)

        return self._mutate(apply) and found[0]

    def keys(self) -> Iterator[str]:
        return iter([k for k, v in self._load().items() if self._live(v)])


class RequestCookieStore(KeyValueStore):
    """
    The cookies one request arrived with. Deletions are recorded so the route can
    turn them into expiring `Set-Cookie` headers before the response starts.
    """

    def __init__(self, cookies: dict[str, str]):
        self._cookies = dict(cookies)
        self.deleted: set[str] = set()

    def get(self, key: str, default: Any = None) -> Any:
        return self._cookies.get(key, default)

    def set(self, key: str, value: Any, ttl_s: float | None = None) -> bool:
        # Server-side cookie writes are not part of the delivery protocol
        raise NotImplementedError("request cookies are read-only")

    def delete(self, key: str) -> bool:
        if key in self._cookies:
            del self._cookies[key]
            self.deleted.add(key)
            return True
        return False

    def keys(self) -> Iterator[str]:
        return iter(list(self._cookies))
