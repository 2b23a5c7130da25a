"""
MODULE OVERVIEW:
GET /stream, the Server-Sent Events endpoint.

WHAT IS HAPPENING HERE:
Before any byte of the stream goes out we reconcile delivery markers: every
`on_ack_<uid>=1` cookie the tab sent retires its event and is expired through the
response headers. Headers are gone once the first frame is written, so this cannot
happen inside the loop.

Then one `StreamSession` is handed to `EventSourceResponse`. sse-starlette owns the
socket (disconnect detection, its own comment pings); the session owns what we say.
"""
from fastapi import APIRouter, Depends, Query, Request
from sse_starlette.sse import EventSourceResponse

from order_notifier.server.container import NotifierContainer, get_container, require_authorized
from order_notifier.server.factories import RealEventFactory, SystemEventFactory, TestEventFactory
from order_notifier.server.stream_session import StreamConfig, StreamSession
from order_notifier.shared.models import UserContext
from order_notifier.shared.route_utils import apply_cookie_deletions, extract_client_id, log_connection
from order_notifier.shared.storage import RequestCookieStore

router = APIRouter()

STREAM_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


@router.get("/stream")
def stream_endpoint(
    request: Request,
    client_id: str | None = Query(None),
    user: UserContext = Depends(require_authorized),
    container: NotifierContainer = Depends(get_container),
):
    cid = extract_client_id(client_id, user)
    options = container.options.load()
    markers = RequestCookieStore(request.cookies)

    real = RealEventFactory(container.buffer, user, markers, container.user_meta, container.clock)
    retired = real.reconcile_acknowledged()
    log_connection("sse:connect", cid, {"user_id": user.user_id, "acknowledged": retired})

    session = StreamSession(
        StreamConfig.build(container.settings, options),
        real=real,
        test=TestEventFactory(options, clock=container.clock),
        system=SystemEventFactory(container.clock),
        session_id=cid,
    )
    response = EventSourceResponse(
        session.frames(),
        headers=STREAM_HEADERS,
        ping=int(container.settings.FALLBACK_PING_S),
    )
    apply_cookie_deletions(response, markers.deleted)
    return response
