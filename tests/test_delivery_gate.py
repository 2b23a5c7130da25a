"""Tests for the client delivery gate and its round trip with the real factory."""

from conftest import ADMIN

from order_notifier.client.delivery_gate import DeliveryGate
from order_notifier.server.factories import RealEventFactory
from order_notifier.shared.models import Event, ack_marker_name
from order_notifier.shared.storage import MemoryStore, RequestCookieStore


def server_view(cookies: MemoryStore) -> RequestCookieStore:
    """What the server sees: the browser's live cookies on the next request."""
    return RequestCookieStore({name: cookies.get(name) for name in cookies.keys()})


# =========================================================================
# Marker transitions
# =========================================================================


class TestDeliveryGate:
    def test_unseen_to_pending_to_acknowledged(self, cookies):
        gate = DeliveryGate(cookies)
        assert gate.state("u") == "unseen"
        assert gate.admit("u") is True
        assert gate.state("u") == "pending"
        gate.acknowledge("u")
        assert gate.state("u") == "acknowledged"
        assert cookies.get(ack_marker_name("u")) == "1"

    def test_second_admit_is_suppressed(self, cookies):
        gate = DeliveryGate(cookies)
        assert gate.admit("u") is True
        assert gate.admit("u") is False
        gate.acknowledge("u")
        assert gate.admit("u") is False

    def test_marker_expires_after_ttl(self, cookies, clock):
        gate = DeliveryGate(cookies, ttl_s=300)
        gate.admit("u")
        gate.acknowledge("u")
        clock.advance(300)
        assert gate.state("u") == "unseen"


# =========================================================================
# Gate + server round trip
# =========================================================================


class TestAckRoundTrip:
    def test_ack_suppresses_redelivery(self, buffer, cookies, clock):
        buffer.append(Event(uid="u"))
        gate = DeliveryGate(cookies)

        first = RealEventFactory(buffer, ADMIN, server_view(cookies), MemoryStore(clock), clock).next()
        assert gate.admit(first.uid)
        gate.acknowledge(first.uid)

        clock.advance(10)
        markers = server_view(cookies)
        factory = RealEventFactory(buffer, ADMIN, markers, MemoryStore(clock), clock)
        assert factory.reconcile_acknowledged() == 1
        assert factory.next() is None
        assert buffer.find("u").is_processed is True
        assert markers.deleted == {ack_marker_name("u")}

    def test_expired_ack_is_redelivered(self, buffer, cookies, clock):
        buffer.append(Event(uid="u"))
        gate = DeliveryGate(cookies, ttl_s=300)

        first = RealEventFactory(buffer, ADMIN, server_view(cookies), MemoryStore(clock), clock).next()
        gate.admit(first.uid)
        gate.acknowledge(first.uid)

        clock.advance(301)
        again = RealEventFactory(buffer, ADMIN, server_view(cookies), MemoryStore(clock), clock).next()
        assert again is not None and again.uid == "u"
        assert buffer.find("u").is_processed is False
        # the marker is gone too, so the tab shows it again
        assert gate.admit("u") is True
