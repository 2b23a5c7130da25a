"""
MODULE OVERVIEW:
Who is calling, and which admin screen they are looking at.

WHAT IS HAPPENING HERE:
Authentication belongs to the host. By the time a request reaches us the host has
put the logged-in user on it as `X-User-Id`, `X-User-Login` and `X-User-Role`; we
only decide whether that role is on the whitelist. When a nonce secret is
configured, requests must also carry an HMAC of the user id, the same value the
client config endpoint hands out.

The screen tracker stores the admin screen as a small integer code in a transient,
so a stream or dispatch running in another request can ask "is someone on the
orders page?" without any shared memory.
"""
import hashlib
import hmac
from typing import Mapping

from loguru import logger

from order_notifier.shared.models import UserContext
from order_notifier.shared.storage import KeyValueStore

USER_ID_HEADER = "x-user-id"
USER_LOGIN_HEADER = "x-user-login"
USER_ROLE_HEADER = "x-user-role"

GUEST = UserContext()


def resolve_user(headers: Mapping[str, str], allowed_roles: list[str]) -> UserContext:
    raw_id = headers.get(USER_ID_HEADER)
    try:
        user_id = int(raw_id) if raw_id else 0
    except ValueError:
        logger.warning(f"event=bad_user_header value='{raw_id}'")
        user_id = 0
    if not user_id:
        return GUEST

    role = headers.get(USER_ROLE_HEADER) or "guest"
    return UserContext(
        user_id=user_id,
        username=headers.get(USER_LOGIN_HEADER) or "guest",
        role=role,
        authorized=role in allowed_roles,
    )


def make_nonce(secret: str, user_id: int | None) -> str:
    return hmac.new(secret.encode(), str(user_id or 0).encode(), hashlib.sha256).hexdigest()


def verify_nonce(secret: str, user_id: int | None, nonce: str | None) -> bool:
    if not nonce:
        return False
    return hmac.compare_digest(make_nonce(secret, user_id), nonce)


# ==========================
# SCREENS
# ==========================
SCREEN_NONE = "none"
ORDER_PAGE_SCREEN = "woocommerce_page_wc-orders"
COMMERCE_DASHBOARD_SCREEN = "woocommerce_page_wc-admin"
DASHBOARD_SCREEN = "dashboard"

SCREEN_CODES = {
    SCREEN_NONE: 0,
    ORDER_PAGE_SCREEN: 1,
    COMMERCE_DASHBOARD_SCREEN: 2,
    DASHBOARD_SCREEN: 3,
}
SCREEN_CODES_REVERSE = {code: screen for screen, code in SCREEN_CODES.items()}

SCREEN_TRANSIENT_KEY = "on_ctx"


class ScreenTracker:
    def __init__(self, transients: KeyValueStore):
        self.transients = transients

    def capture(self, screen_id: str) -> int:
        code = SCREEN_CODES.get(screen_id, SCREEN_CODES[SCREEN_NONE])
        self.transients.set(SCREEN_TRANSIENT_KEY, code)
        logger.debug(f"screen_id={screen_id} code={code} event=screen_captured")
        return code

    def handle(self, screen_id: str) -> None:
        self.capture(screen_id)

    def current(self) -> str | None:
        code = self.transients.get(SCREEN_TRANSIENT_KEY)
        if not isinstance(code, int):
            return None
        return SCREEN_CODES_REVERSE.get(code)

    def is_order_page_screen(self) -> bool:
        return self.current() == ORDER_PAGE_SCREEN

    def is_commerce_dashboard(self) -> bool:
        return self.current() == COMMERCE_DASHBOARD_SCREEN

    def is_dashboard(self) -> bool:
        return self.current() == DASHBOARD_SCREEN
