import uuid

from fastapi import Response
from loguru import logger

from order_notifier.shared.models import UserContext


def extract_client_id(client_id: str | None, user: UserContext | None = None) -> str:
    """
    If the caller provided a client_id, use it.
    If not, generate a short readable one like 'user-7-a3f2'.
    This keeps concurrent tabs of one admin apart in the logs.
    """
    if client_id:
        return client_id
    owner = f"user-{user.user_id}" if user and user.user_id else "client"
    return f"{owner}-{uuid.uuid4().hex[:4]}"


def log_connection(protocol: str, client_id: str, extra: dict | None = None) -> None:
    """
    Single structured log entry for a stream or poll connection.
    Every route calls this once on connect; streams log their close themselves.
    """
    log_str = f"protocol={protocol} client_id={client_id}"
    for k, v in (extra or {}).items():
        log_str += f" {k}={v}"
    logger.info(log_str)


def apply_cookie_deletions(response: Response, names: set[str]) -> None:
    """Expire every cookie the request handler consumed, before the body starts."""
    for name in sorted(names):
        response.delete_cookie(name, path="/")
        logger.debug(f"cookie={name} event=cookie_expired")
