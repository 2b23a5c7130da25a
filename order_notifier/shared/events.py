"""
MODULE OVERVIEW:
The host lifecycle hook registry.

WHAT IS HAPPENING HERE:
The host (the commerce platform) tells us about things that happened: an order was
created, an order changed status, an admin opened a screen. Producers fire a hook
by name; handlers registered for that name run in priority order. It is the same
decoupling a pub/sub bus gives, kept synchronous because every handler is a short
read-modify-write on a JSON file.

`add_once` handlers run at most once per *fired scope*: a plain set owned by one
request. A second admin page load in the same request does not bootstrap twice, a
new request does.
"""
from typing import Any, Protocol

from loguru import logger


class HookHandler(Protocol):
    def handle(self, *args: Any) -> None:
        ...


class _Registration:
    __slots__ = ("handler", "priority", "hook_id", "once")

    def __init__(self, handler: HookHandler, priority: int, hook_id: str, once: bool):
        self.handler = handler
        self.priority = priority
        self.hook_id = hook_id
        self.once = once


class HookRegistry:
    def __init__(self):
        self._hooks: dict[str, list[_Registration]] = {}

    @staticmethod
    def _generate_id(hook: str, handler: HookHandler) -> str:
        return f"{hook}::{type(handler).__name__}"

    def add(self, hook: str, handler: HookHandler, priority: int = 10) -> None:
        self._register(hook, handler, priority, None, once=False)

    def add_once(self, hook: str, handler: HookHandler, priority: int = 10, hook_id: str | None = None) -> None:
        self._register(hook, handler, priority, hook_id, once=True)

    def _register(self, hook: str, handler: HookHandler, priority: int, hook_id: str | None, once: bool) -> None:
        hook_id = hook_id or self._generate_id(hook, handler)
        registrations = self._hooks.setdefault(hook, [])
        registrations.append(_Registration(handler, priority, hook_id, once))
        # Stable sort keeps registration order within a priority
        registrations.sort(key=lambda r: r.priority)
        logger.debug(f"hook={hook} event=registered id={hook_id} once={once}")

    def handlers(self, hook: str) -> list[HookHandler]:
        return [r.handler for r in self._hooks.get(hook, [])]

    def fire(self, hook: str, *args: Any, scope: set[str] | None = None) -> int:
        """Run every handler for `hook`; returns how many ran."""
        ran = 0
        for registration in list(self._hooks.get(hook, [])):
            if registration.once and scope is not None:
                if registration.hook_id in scope:
                    logger.debug(f"hook={hook} event=skipped id={registration.hook_id} reason=already_fired")
                    continue
                scope.add(registration.hook_id)
            try:
                registration.handler.handle(*args)
                ran += 1
            except Exception as e:
                logger.error(f"hook={hook} event=handler_error id={registration.hook_id} reason='{e}'")
        return ran
