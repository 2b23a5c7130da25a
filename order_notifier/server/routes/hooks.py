"""
MODULE OVERVIEW:
The host lifecycle hooks, exposed over HTTP.

WHAT IS HAPPENING HERE:
The commerce platform calls these when something happens on its side. Each route
stores what little we keep about the fact, then fires the named hook so the
registered handlers (dispatch, screen tracking, bootstrap) do the actual work.
The fired scope is a fresh set per request: `add_once` handlers run at most once
per page load, however many times the host fires the hook within it.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from order_notifier.server.container import NotifierContainer, check_nonce, get_container, get_user
from order_notifier.server.order_events import (
    HOOK_CURRENT_SCREEN,
    HOOK_ORDER_CREATED,
    HOOK_ORDER_STATUS_CHANGED,
    HOOK_PAGE_LOAD,
)
from order_notifier.shared.errors import OrderNotFoundError
from order_notifier.shared.models import HookResult, Order, OrderCreate, OrderStatusChange, ScreenReport, UserContext

router = APIRouter(dependencies=[Depends(check_nonce)])


@router.post("/orders", response_model=HookResult)
def order_created(body: OrderCreate, container: NotifierContainer = Depends(get_container)):
    order = container.orders.upsert(Order(
        id=body.id,
        billing_name=body.billing_name,
        status=body.status,
        created_at=body.created_at or datetime.now(timezone.utc),
    ))
    ran = container.hooks.fire(HOOK_ORDER_CREATED, order.id)
    return HookResult(data={"order_id": order.id, "handlers": ran})


@router.post("/orders/{order_id}/status", response_model=HookResult)
def order_status_changed(
    order_id: int,
    body: OrderStatusChange,
    container: NotifierContainer = Depends(get_container),
):
    existing = container.orders.get(order_id)
    if existing is None:
        raise OrderNotFoundError(order_id)

    old_status = existing.status
    container.orders.set_status(order_id, body.status)
    ran = container.hooks.fire(HOOK_ORDER_STATUS_CHANGED, order_id, old_status, body.status)
    return HookResult(data={"order_id": order_id, "old_status": old_status, "status": body.status, "handlers": ran})


@router.post("/admin/screen", response_model=HookResult)
def admin_screen(
    body: ScreenReport,
    user: UserContext = Depends(get_user),
    container: NotifierContainer = Depends(get_container),
):
    scope: set[str] = set()
    container.hooks.fire(HOOK_CURRENT_SCREEN, body.screen_id, scope=scope)
    bootstrapped = 0
    if user.authorized:
        bootstrapped = container.hooks.fire(HOOK_PAGE_LOAD, user, scope=scope)
    return HookResult(data={"screen_id": body.screen_id, "screen": container.screens.current(), "bootstrapped": bootstrapped})
