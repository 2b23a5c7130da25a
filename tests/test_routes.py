"""HTTP tests for the FastAPI app, through Starlette's TestClient."""

import json
from datetime import datetime, timedelta, timezone

import pytest
from conftest import ADMIN_HEADERS, CUSTOMER_HEADERS
from fastapi.testclient import TestClient

from order_notifier.server.container import NotifierContainer
from order_notifier.server.main import create_app
from order_notifier.server.users import ORDER_PAGE_SCREEN, make_nonce
from order_notifier.shared.config import Settings
from order_notifier.shared.models import Event, Order, ack_marker_name
from order_notifier.shared.client_utils import iter_sse_text

T0 = datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc)


def stream_frames(response) -> list[dict]:
    return [json.loads(data) for name, data in iter_sse_text(response.text) if name == "event"]


def post_order(client, order_id, minutes=0, **extra):
    body = {"id": order_id, "billing_name": "Marko", "created_at": (T0 + timedelta(minutes=minutes)).isoformat(), **extra}
    return client.post("/orders", json=body)


# =========================================================================
# Health & access
# =========================================================================


class TestAccess:
    def test_healthz(self, client, container):
        container.buffer.append(Event(uid="a"))
        response = client.get("/healthz")
        assert response.json() == {"status": "ok", "pending_events": 1}
        assert "x-process-time-ms" in response.headers

    @pytest.mark.parametrize("method,path", [("get", "/stream"), ("post", "/poll/orders"), ("get", "/admin/settings")])
    def test_customer_is_forbidden(self, client, method, path):
        kwargs = {"json": {}} if method == "post" else {}
        response = getattr(client, method)(path, headers=CUSTOMER_HEADERS, **kwargs)
        assert response.status_code == 403
        assert response.json() == {"success": False, "data": {"error": "rest_forbidden", "message": f"Not allowed to {path}."}}

    def test_guest_is_forbidden(self, client):
        assert client.get("/stream").status_code == 403


# =========================================================================
# Stream
# =========================================================================


class TestStream:
    def test_pending_event_is_sent_once_per_session(self, client, container):
        container.buffer.append(Event(uid="u1", order_id=500))
        response = client.get("/stream", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        frames = stream_frames(response)
        assert [f["uid"] for f in frames] == ["u1"]
        # still pending until the tab acknowledges it
        assert container.buffer.find("u1").is_processed is False

    def test_acknowledged_cookie_retires_event(self, client, container):
        container.buffer.append(Event(uid="u1", order_id=500))
        client.cookies.set(ack_marker_name("u1"), "1")

        response = client.get("/stream", headers=ADMIN_HEADERS)

        assert stream_frames(response) == []
        assert container.buffer.find("u1").is_processed is True
        assert f"{ack_marker_name('u1')}=" in response.headers["set-cookie"]
        assert "Max-Age=0" in response.headers["set-cookie"]

    def test_pending_cookie_keeps_event(self, client, container):
        container.buffer.append(Event(uid="u1"))
        client.cookies.set(ack_marker_name("u1"), "0")
        response = client.get("/stream", headers=ADMIN_HEADERS)
        assert [f["uid"] for f in stream_frames(response)] == ["u1"]
        assert "set-cookie" not in response.headers

    def test_empty_session_times_out(self, client):
        response = client.get("/stream", headers=ADMIN_HEADERS)
        assert response.status_code == 200
        assert stream_frames(response) == []


# =========================================================================
# Polling & client config
# =========================================================================


class TestPolling:
    def test_no_orders(self, client):
        response = client.post("/poll/orders", json={}, headers=ADMIN_HEADERS)
        assert response.json() == {"success": True, "data": {"new_order": False, "latest_id": None, "latest_time": None}}
        assert response.headers["cache-control"] == "no-store"

    def test_latest_order_and_last_check(self, client):
        post_order(client, 1)
        post_order(client, 2, minutes=5)
        data = client.post("/poll/orders", json={"statuses": ["processing"]}, headers=ADMIN_HEADERS).json()["data"]
        assert data["latest_id"] == 2
        assert data["new_order"] is True

        body = {"statuses": ["processing"], "last_check": data["latest_time"]}
        again = client.post("/poll/orders", json=body, headers=ADMIN_HEADERS).json()["data"]
        assert again["latest_id"] == 2
        assert again["new_order"] is False

    def test_answer_is_cached_until_an_order_is_written(self, client, container):
        post_order(client, 1)
        client.post("/poll/orders", json={}, headers=ADMIN_HEADERS)

        # Written behind the repository's back: the cached answer stands
        container.orders.store.set("order:2", Order(id=2, status="processing", created_at=T0 + timedelta(hours=1)).model_dump(mode="json"))
        assert client.post("/poll/orders", json={}, headers=ADMIN_HEADERS).json()["data"]["latest_id"] == 1

        post_order(client, 3, minutes=90)
        assert client.post("/poll/orders", json={}, headers=ADMIN_HEADERS).json()["data"]["latest_id"] == 3

    def test_client_config(self, client):
        config = client.get("/client-config", headers=ADMIN_HEADERS).json()
        assert config["stream_url"] == "/stream"
        assert config["poll_url"] == "/poll/orders"
        assert config["statuses"] == ["processing"]
        assert config["nonce"] is None
        assert config["scope"] == "orders_only"

    def test_client_config_carries_scope(self, client):
        client.put("/admin/settings", json={"scope": "everywhere"}, headers=ADMIN_HEADERS)
        assert client.get("/client-config", headers=ADMIN_HEADERS).json()["scope"] == "everywhere"


# =========================================================================
# Host hooks
# =========================================================================


class TestHostHooks:
    def test_order_created_dispatches(self, client, container):
        response = post_order(client, 500)
        assert response.json()["data"] == {"order_id": 500, "handlers": 1}
        assert [e.order_id for e in container.buffer.pending()] == [500]

    def test_status_change(self, client, container):
        container.orders.upsert(Order(id=5, status="pending", created_at=T0))
        response = client.post("/orders/5/status", json={"status": "processing"})
        assert response.json()["data"]["old_status"] == "pending"
        assert [e.order_id for e in container.buffer.pending()] == [5]

    def test_status_change_unknown_order(self, client):
        response = client.post("/orders/404/status", json={"status": "processing"})
        assert response.status_code == 404
        assert response.json()["data"]["error"] == "order_not_found"

    def test_screen_report_bootstraps_admin(self, client, container):
        container.orders.upsert(Order(id=9, billing_name="Petra", status="processing", created_at=T0))
        response = client.post("/admin/screen", json={"screen_id": ORDER_PAGE_SCREEN}, headers=ADMIN_HEADERS)
        assert response.json()["data"] == {"screen_id": ORDER_PAGE_SCREEN, "screen": ORDER_PAGE_SCREEN, "bootstrapped": 1}
        assert container.buffer.pending()[0].payload.title == "Dobrodošli! Nova narudžba #9"

    def test_screen_report_from_customer_does_not_bootstrap(self, client, container):
        container.orders.upsert(Order(id=9, status="processing", created_at=T0))
        response = client.post("/admin/screen", json={"screen_id": "dashboard"}, headers=CUSTOMER_HEADERS)
        assert response.json()["data"]["bootstrapped"] == 0
        assert container.buffer.pending() == []


# =========================================================================
# Admin
# =========================================================================


class TestAdmin:
    def test_settings_round_trip_with_clamps(self, client):
        response = client.put(
            "/admin/settings",
            json={"max_notifications": 50, "default_notification_timeout": 5},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 200
        assert response.json()["max_notifications"] == 10
        assert response.json()["default_notification_timeout"] == 5000

        # a later partial update keeps the stored timeout as is
        client.put("/admin/settings", json={"reload_table": True}, headers=ADMIN_HEADERS)
        stored = client.get("/admin/settings", headers=ADMIN_HEADERS).json()
        assert stored["default_notification_timeout"] == 5000
        assert stored["reload_table"] is True

    def test_invalid_settings(self, client):
        response = client.put("/admin/settings", json={"scope": "nowhere"}, headers=ADMIN_HEADERS)
        assert response.status_code == 422
        assert response.json()["success"] is False

    def test_buffer_view_and_reset(self, client, container):
        container.buffer.append(Event(uid="a"))
        assert [e["uid"] for e in client.get("/admin/buffer", headers=ADMIN_HEADERS).json()["events"]] == ["a"]
        assert client.post("/admin/buffer/reset", headers=ADMIN_HEADERS).json()["success"] is True
        assert container.buffer.read().events == []

    def test_debug_log_routes(self, client, settings):
        settings.debug_log_path.write_text("line one\n", encoding="utf-8")
        archive = settings.DATA_DIR / "ON_debug.2026-01-01_10-00-00_000000.log"
        archive.write_text("older\n", encoding="utf-8")

        assert client.get("/admin/debug-log", headers=ADMIN_HEADERS).text == "line one\n"
        assert client.get("/admin/debug-log/archives", headers=ADMIN_HEADERS).json() == [archive.name]
        assert client.get(f"/admin/debug-log/archives/{archive.name}", headers=ADMIN_HEADERS).text == "older\n"
        assert client.get("/admin/debug-log/archives/missing.log", headers=ADMIN_HEADERS).status_code == 404
        assert client.delete("/admin/debug-log", headers=ADMIN_HEADERS).json()["success"] is True
        assert settings.debug_log_path.read_text(encoding="utf-8") == ""


# =========================================================================
# Nonce
# =========================================================================


class TestNonce:
    @pytest.fixture()
    def secured(self, tmp_path, clock):
        settings = Settings(_env_file=None, DATA_DIR=tmp_path, NONCE_SECRET="s3cret", STREAM_LIFETIME_S=0.05,
            STREAM_CHECK_INTERVAL_MS=10, QUICK_PING_COUNT=0,
        )
        with TestClient(create_app(settings, NotifierContainer(settings, clock))) as c:
            yield c

    def test_missing_nonce_is_rejected(self, secured):
        response = secured.post("/poll/orders", json={}, headers=ADMIN_HEADERS)
        assert response.status_code == 403
        assert response.json()["data"]["error"] == "invalid_nonce"

    def test_nonce_from_client_config_is_accepted(self, secured):
        nonce = secured.get("/client-config", headers=ADMIN_HEADERS).json()["nonce"]
        assert nonce == make_nonce("s3cret", 7)
        response = secured.post("/poll/orders", json={}, headers={**ADMIN_HEADERS, "X-WP-Nonce": nonce})
        assert response.status_code == 200
        assert secured.get("/stream", params={"nonce": nonce}, headers=ADMIN_HEADERS).status_code == 200

    def test_host_hooks_need_a_nonce(self, secured):
        assert secured.post("/orders", json={"id": 1}).status_code == 403
