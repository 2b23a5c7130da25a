"""
MODULE OVERVIEW:
Administrator actions: the settings map, the event buffer and the debug log.
"""
from typing import Any

from fastapi import APIRouter, Body, Depends, status
from fastapi.responses import PlainTextResponse
from loguru import logger
from pydantic import ValidationError

from order_notifier.server.container import NotifierContainer, get_container, require_authorized
from order_notifier.shared.config import NotifierOptions
from order_notifier.shared.debug_log import archived_log_names, clear_debug_log, read_archived_log, read_debug_log
from order_notifier.shared.errors import NotifierError
from order_notifier.shared.models import EventBufferDocument, HookResult, UserContext

router = APIRouter(prefix="/admin")


@router.get("/settings", response_model=NotifierOptions)
def get_settings(
    _user: UserContext = Depends(require_authorized),
    container: NotifierContainer = Depends(get_container),
):
    return container.options.load()


@router.put("/settings", response_model=NotifierOptions)
def put_settings(
    form: dict[str, Any] = Body(...),
    user: UserContext = Depends(require_authorized),
    container: NotifierContainer = Depends(get_container),
):
    merged = {**container.options.load().model_dump(), **form}
    # The stored timeout is already in ms; only a submitted one arrives in seconds
    if "default_notification_timeout" not in form:
        merged["default_notification_timeout"] = merged["default_notification_timeout"] / 1000
    try:
        options = NotifierOptions.from_form(merged)
    except (ValidationError, ValueError) as e:
        raise NotifierError(status.HTTP_422_UNPROCESSABLE_ENTITY, str(e), user_id=user.user_id)
    container.options.save(options)
    logger.info(f"user_id={user.user_id} event=settings_updated keys={sorted(form)}")
    return options


@router.get("/buffer", response_model=EventBufferDocument)
def get_buffer(
    _user: UserContext = Depends(require_authorized),
    container: NotifierContainer = Depends(get_container),
):
    return container.buffer.read()


@router.post("/buffer/reset", response_model=HookResult)
def reset_buffer(
    user: UserContext = Depends(require_authorized),
    container: NotifierContainer = Depends(get_container),
):
    ok = container.buffer.reset()
    logger.info(f"user_id={user.user_id} event=buffer_reset_requested ok={ok}")
    return HookResult(success=ok)


# ==========================
# DEBUG LOG
# ==========================
@router.get("/debug-log", response_class=PlainTextResponse)
def get_debug_log(
    _user: UserContext = Depends(require_authorized),
    container: NotifierContainer = Depends(get_container),
):
    return read_debug_log(container.settings)


@router.delete("/debug-log", response_model=HookResult)
def delete_debug_log(
    _user: UserContext = Depends(require_authorized),
    container: NotifierContainer = Depends(get_container),
):
    return HookResult(success=clear_debug_log(container.settings))


@router.get("/debug-log/archives", response_model=list[str])
def list_archives(
    _user: UserContext = Depends(require_authorized),
    container: NotifierContainer = Depends(get_container),
):
    return archived_log_names(container.settings)


@router.get("/debug-log/archives/{name}", response_class=PlainTextResponse)
def get_archive(
    name: str,
    _user: UserContext = Depends(require_authorized),
    container: NotifierContainer = Depends(get_container),
):
    content = read_archived_log(container.settings, name)
    if content is None:
        raise NotifierError(status.HTTP_404_NOT_FOUND, f"Archive {name} not found.", log_level="info")
    return content
