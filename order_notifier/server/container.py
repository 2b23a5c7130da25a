"""
MODULE OVERVIEW:
Wires the server's collaborators together once per application and exposes them to
routes through FastAPI dependencies.

WHAT IS HAPPENING HERE:
Everything with state lives on disk under `settings.storage_dir`, so the container
only holds *handles*: the buffer, the option/user-meta/transient/order stores and
the services built on top of them. `create_app` builds one and parks it on
`app.state`; routes pull it out with `Depends(get_container)`.

The caller's identity is resolved per request from the host headers, and the
`require_*` dependencies turn "not on the whitelist" or "bad nonce" into the
matching `NotifierError`.
"""
import time

from fastapi import Depends, Query, Request

from order_notifier.server.event_buffer import EventBuffer
from order_notifier.server.order_events import NotifierBootstrapper, OrderEventService, register_hooks
from order_notifier.server.orders import OrderRepository
from order_notifier.server.users import ScreenTracker, resolve_user, verify_nonce
from order_notifier.shared.config import OptionsRepository, Settings
from order_notifier.shared.errors import ForbiddenError, InvalidNonceError
from order_notifier.shared.events import HookRegistry
from order_notifier.shared.models import UserContext
from order_notifier.shared.storage import Clock, JsonFileStore


class NotifierContainer:
    def __init__(self, settings: Settings, clock: Clock = time.time):
        self.settings = settings
        self.clock = clock
        storage = settings.storage_dir
        lock_timeout = settings.BUFFER_LOCK_TIMEOUT_S

        self.buffer = EventBuffer(
            settings.buffer_path,
            retention_days=settings.EVENT_RETENTION_DAYS,
            lock_timeout_s=lock_timeout,
            clock=clock,
        )
        self.options = OptionsRepository(JsonFileStore(storage / "settings.json", clock, lock_timeout))
        self.user_meta = JsonFileStore(storage / "user-meta.json", clock, lock_timeout)
        self.transients = JsonFileStore(storage / "transients.json", clock, lock_timeout)
        self.orders = OrderRepository(
            JsonFileStore(storage / "orders.json", clock, lock_timeout),
            self.transients,
            cache_ttl_s=settings.POLL_CACHE_TTL_S,
        )
        self.screens = ScreenTracker(self.transients)
        self.events = OrderEventService(self.buffer, self.options, self.orders, self.screens, clock)
        self.bootstrapper = NotifierBootstrapper(self.events, self.orders, self.user_meta, self.options)
        self.hooks = register_hooks(HookRegistry(), self.events, self.bootstrapper, self.screens, self.options)


def get_container(request: Request) -> NotifierContainer:
    return request.app.state.container


def get_user(request: Request, container: NotifierContainer = Depends(get_container)) -> UserContext:
    return resolve_user(request.headers, container.options.load().allowed_roles)


def check_nonce(
    request: Request,
    nonce: str | None = Query(None),
    user: UserContext = Depends(get_user),
    container: NotifierContainer = Depends(get_container),
) -> None:
    secret = container.settings.NONCE_SECRET
    if not secret:
        return
    supplied = nonce or request.headers.get("x-wp-nonce")
    if not verify_nonce(secret, user.user_id, supplied):
        raise InvalidNonceError(user_id=user.user_id, path=request.url.path)


def require_role(request: Request, user: UserContext = Depends(get_user)) -> UserContext:
    if not user.authorized:
        raise ForbiddenError(request.url.path, user_id=user.user_id, role=user.role)
    return user


def require_authorized(
    user: UserContext = Depends(require_role),
    _nonce: None = Depends(check_nonce),
) -> UserContext:
    return user
