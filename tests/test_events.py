"""
Tests for registry events and the event bus.
"""

import json

import pytest

from conftest import ISSUER_A, ISSUER_B, OTHER, OWNER


# ════════════════════════════════════════════════════════════════════════════
# EVENT BUS
# ════════════════════════════════════════════════════════════════════════════


class TestEventBus:
    """Tests for the in-process event bus."""

    def test_subscribe_and_publish(self):
        """Subscribed handlers receive matching events."""
        from trustreg.events import EventBus, TrustedIssuerAdded, TrustedIssuerRemoved

        bus = EventBus()
        received = []

        @bus.subscribe(TrustedIssuerAdded)
        def handler(event):
            received.append(event)

        bus.publish(TrustedIssuerAdded(issuer=ISSUER_A, claim_topics=(1,)))
        bus.publish(TrustedIssuerRemoved(issuer=ISSUER_A))

        assert len(received) == 1
        assert received[0].issuer == ISSUER_A

    def test_priority_order(self):
        """Higher priority handlers run first."""
        from trustreg.events import EventBus, TrustedIssuerRemoved

        bus = EventBus()
        order = []

        @bus.subscribe(TrustedIssuerRemoved, priority=1)
        def low(event):
            order.append("low")

        @bus.subscribe(TrustedIssuerRemoved, priority=10)
        def high(event):
            order.append("high")

        bus.publish(TrustedIssuerRemoved(issuer=ISSUER_A))
        assert order == ["high", "low"]

    def test_filter(self):
        """filter_func narrows delivery."""
        from trustreg.events import EventBus, TrustedIssuerRemoved

        bus = EventBus()
        received = []

        @bus.subscribe(TrustedIssuerRemoved, filter_func=lambda e: e.issuer == ISSUER_B)
        def handler(event):
            received.append(event.issuer)

        bus.publish(TrustedIssuerRemoved(issuer=ISSUER_A))
        bus.publish(TrustedIssuerRemoved(issuer=ISSUER_B))
        assert received == [ISSUER_B]

    def test_handler_failure_is_isolated(self):
        """A failing handler neither propagates nor blocks other handlers."""
        from trustreg.events import EventBus, TrustedIssuerRemoved

        errors = []
        bus = EventBus(on_error=errors.append)
        received = []

        @bus.subscribe(TrustedIssuerRemoved, priority=5)
        def broken(event):
            raise RuntimeError("boom")

        @bus.subscribe(TrustedIssuerRemoved)
        def healthy(event):
            received.append(event)

        bus.publish(TrustedIssuerRemoved(issuer=ISSUER_A))

        assert len(received) == 1
        assert len(errors) == 1
        assert isinstance(errors[0].cause, RuntimeError)
        assert bus.metrics["error_count"] == 1
        assert bus.metrics["handled_count"] == 1

    def test_unsubscribe(self):
        """Unsubscribed handlers receive nothing."""
        from trustreg.events import EventBus, TrustedIssuerRemoved

        bus = EventBus()
        received = []

        def handler(event):
            received.append(event)

        bus.subscribe(TrustedIssuerRemoved)(handler)
        assert bus.unsubscribe(handler) is True
        assert bus.unsubscribe(handler) is False

        bus.publish(TrustedIssuerRemoved(issuer=ISSUER_A))
        assert received == []


class TestEventSerialization:
    """Tests for event serialization and digests."""

    def test_to_dict_includes_type(self):
        """to_dict carries the event type and payload."""
        from trustreg.events import OwnershipTransferred

        event = OwnershipTransferred(previous_owner=OWNER, new_owner=OTHER)
        data = event.to_dict()

        assert data["event_type"] == "OwnershipTransferred"
        assert data["previous_owner"] == OWNER
        assert data["new_owner"] == OTHER
        assert json.loads(event.to_json())["new_owner"] == OTHER

    def test_from_dict_round_trip(self):
        """from_dict rebuilds an equal event."""
        from trustreg.events import TrustedIssuerRemoved

        event = TrustedIssuerRemoved(issuer=ISSUER_A)
        assert TrustedIssuerRemoved.from_dict(event.to_dict()) == event

    def test_digest_ignores_metadata(self):
        """Events with the same payload share a digest."""
        from trustreg.events import TrustedIssuerAdded

        first = TrustedIssuerAdded(issuer=ISSUER_A, claim_topics=(1, 2))
        second = TrustedIssuerAdded(issuer=ISSUER_A, claim_topics=(1, 2), correlation_id="corr-x")
        third = TrustedIssuerAdded(issuer=ISSUER_A, claim_topics=(2, 1))

        assert first.event_id != second.event_id
        assert first.digest() == second.digest()
        assert first.digest() != third.digest()


# ════════════════════════════════════════════════════════════════════════════
# REGISTRY NOTIFICATIONS
# ════════════════════════════════════════════════════════════════════════════


class TestRegistryNotifications:
    """The registry publishes one event per successful mutation."""

    def test_add_event(self, registry, recorder):
        """add publishes TrustedIssuerAdded with the stored topics."""
        from trustreg.events import TrustedIssuerAdded

        registry.add_trusted_issuer(OWNER, ISSUER_A, [3, 1, 3])

        assert len(recorder.events) == 1
        event = recorder.events[0]
        assert isinstance(event, TrustedIssuerAdded)
        assert event.issuer == ISSUER_A
        assert event.claim_topics == (3, 1)

    def test_events_follow_mutation_order(self, registry, recorder):
        """Events arrive in the order the mutations happened."""
        registry.add_trusted_issuer(OWNER, ISSUER_A, [1])
        registry.add_trusted_issuer(OWNER, ISSUER_B, [2])
        registry.update_issuer_claim_topics(OWNER, ISSUER_A, [5])
        registry.remove_trusted_issuer(OWNER, ISSUER_B)
        registry.transfer_ownership_on_issuers_registry_contract(OWNER, OTHER)

        assert [e.event_type for e in recorder.events] == [
            "TrustedIssuerAdded",
            "TrustedIssuerAdded",
            "ClaimTopicsUpdated",
            "TrustedIssuerRemoved",
            "OwnershipTransferred",
        ]
        assert recorder.events[2].claim_topics == (5,)
        assert recorder.events[4].previous_owner == OWNER
        assert recorder.events[4].new_owner == OTHER

    def test_failed_mutations_publish_nothing(self, registry, recorder):
        """Rejected mutations emit no events."""
        from trustreg.hardening import RegistryError

        registry.add_trusted_issuer(OWNER, ISSUER_A, [1])
        recorder.events.clear()

        for call in (
            lambda: registry.add_trusted_issuer(OWNER, ISSUER_A, [1]),
            lambda: registry.add_trusted_issuer(OWNER, ISSUER_B, []),
            lambda: registry.remove_trusted_issuer(OWNER, ISSUER_B),
            lambda: registry.update_issuer_claim_topics(OTHER, ISSUER_A, [2]),
            lambda: registry.transfer_ownership_on_issuers_registry_contract(OWNER, OWNER),
        ):
            with pytest.raises(RegistryError):
                call()

        assert recorder.events == []

    def test_failing_subscriber_keeps_mutation(self, registry):
        """A subscriber error does not undo the committed change."""
        from trustreg.events import TrustedIssuerAdded

        @registry.event_bus.subscribe(TrustedIssuerAdded)
        def broken(event):
            raise RuntimeError("subscriber down")

        registry.add_trusted_issuer(OWNER, ISSUER_A, [1])
        assert registry.is_trusted_issuer(ISSUER_A)
        assert registry.event_bus.metrics["error_count"] == 1

    def test_correlation_id_attached(self, registry, recorder):
        """Events carry the correlation id of the current context."""
        from trustreg.observability import correlation_id_var, set_correlation_id

        token = set_correlation_id("corr-registry-test")
        try:
            registry.add_trusted_issuer(OWNER, ISSUER_A, [1])
        finally:
            correlation_id_var.reset(token)

        assert recorder.events[0].correlation_id == "corr-registry-test"

    def test_recorder_type_filter(self, registry, recorder):
        """EventRecorder.of_type selects one event type."""
        from trustreg.events import TrustedIssuerRemoved

        registry.add_trusted_issuer(OWNER, ISSUER_A, [1])
        registry.remove_trusted_issuer(OWNER, ISSUER_A)

        removed = recorder.of_type(TrustedIssuerRemoved)
        assert [e.issuer for e in removed] == [ISSUER_A]
