"""
MODULE OVERVIEW:
The polling fallback and the per-tab client configuration.

WHAT IS HAPPENING HERE:
POST /poll/orders answers "what is the newest order in these statuses?" from a
five-minute transient, so a room full of open tabs costs one lookup per status set.
GET /client-config is what a tab reads on page load: endpoints, cadence, the
adaptive knobs and, when a secret is configured, the nonce it must send back.
"""
from fastapi import APIRouter, Depends, Query, Response

from order_notifier.server.container import NotifierContainer, get_container, require_authorized, require_role
from order_notifier.server.users import make_nonce
from order_notifier.shared.models import ClientConfig, PollRequest, PollResponse, UserContext
from order_notifier.shared.route_utils import extract_client_id, log_connection

router = APIRouter()


@router.post("/poll/orders", response_model=PollResponse)
def poll_orders(
    body: PollRequest,
    response: Response,
    client_id: str | None = Query(None),
    user: UserContext = Depends(require_authorized),
    container: NotifierContainer = Depends(get_container),
):
    cid = extract_client_id(client_id, user)
    statuses = body.statuses or container.options.load().tracked_statuses()
    data = container.orders.poll_latest(statuses, body.last_check)
    log_connection("poll:orders", cid, {"new_order": data.new_order, "latest_id": data.latest_id})

    response.headers["Cache-Control"] = "no-store"
    return PollResponse(success=True, data=data)


@router.get("/client-config", response_model=ClientConfig)
def client_config(
    user: UserContext = Depends(require_role),
    container: NotifierContainer = Depends(get_container),
):
    options = container.options.load()
    secret = container.settings.NONCE_SECRET
    return ClientConfig(
        stream_url="/stream",
        poll_url="/poll/orders",
        interval=options.interval,
        statuses=options.tracked_statuses(),
        reload_table=options.reload_table,
        adaptive_interval=options.adaptive_interval,
        adaptive_attempts=options.adaptive_attempts,
        adaptive_step=options.adaptive_step,
        max_notifications=options.max_notifications,
        scope=options.scope,
        nonce=make_nonce(secret, user.user_id) if secret else None,
    )
