"""
Event bus, event store and proxy log tests.
"""

import json

import pytest

from eqledger.events import (
    Event,
    EventBus,
    EventHandlerError,
    EventStore,
    RoleGranted,
    TransferBatch,
    TransferSingle,
    Version,
    get_event_bus,
)
from eqledger.hardening import NonexistentToken
from eqledger.host import CallContext


def transfer(value=1):
    return TransferSingle(operator="0xop", from_="0xa", to="0xb", id=7, value=value)


# =============================================================================
# EVENTS
# =============================================================================

class TestEvent:
    """Event records."""

    def test_args_follow_declaration_order(self):
        assert transfer(5).args == ("0xop", "0xa", "0xb", 7, 5)

    def test_event_type(self):
        assert transfer().event_type == "TransferSingle"

    def test_metadata_populated(self):
        event = transfer()
        assert event.event_id
        assert event.event_timestamp
        assert event.correlation_id is None

    def test_to_json(self):
        data = json.loads(transfer().to_json())
        assert data["event_type"] == "TransferSingle"
        assert data["from_"] == "0xa"
        assert data["value"] == 1

    def test_batch_args(self):
        event = TransferBatch(operator="0xop", from_="0xa", to="0xb", ids=(1, 2), values=(3, 4))
        assert event.args[-2:] == ((1, 2), (3, 4))


# =============================================================================
# BUS
# =============================================================================

class TestEventBus:
    """Synchronous pub/sub."""

    def test_subscribe_by_type(self):
        bus = EventBus()
        seen = []

        @bus.subscribe(TransferSingle)
        def on_transfer(event):
            seen.append(event)

        bus.publish(transfer())
        bus.publish(Version(value=1))
        assert len(seen) == 1

    def test_subscribe_all(self):
        bus = EventBus()
        seen = []
        bus.subscribe()(seen.append)
        bus.publish(transfer())
        bus.publish(Version(value=1))
        assert len(seen) == 2

    def test_priority_order(self):
        bus = EventBus()
        order = []
        bus.subscribe(Event, priority=1)(lambda e: order.append("low"))
        bus.subscribe(Event, priority=10)(lambda e: order.append("high"))
        bus.publish(transfer())
        assert order == ["high", "low"]

    def test_filter(self):
        bus = EventBus()
        seen = []
        bus.subscribe(TransferSingle, filter_func=lambda e: e.value > 10)(seen.append)
        bus.publish(transfer(5))
        bus.publish(transfer(50))
        assert [e.value for e in seen] == [50]

    def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        bus.subscribe()(seen.append)
        assert bus.unsubscribe(seen.append)
        bus.publish(transfer())
        assert seen == []
        assert not bus.unsubscribe(seen.append)

    def test_handler_failure_is_reported(self):
        """A failing handler does not stop the others."""
        errors = []
        bus = EventBus(on_error=errors.append)
        seen = []

        @bus.subscribe(priority=5)
        def broken(event):
            raise RuntimeError("handler bug")

        bus.subscribe()(seen.append)
        bus.publish(transfer())

        assert len(seen) == 1
        assert isinstance(errors[0], EventHandlerError)
        assert isinstance(errors[0].cause, RuntimeError)
        assert bus.metrics["error_count"] == 1
        assert bus.metrics["handled_count"] == 1
        assert bus.metrics["published_count"] == 1

    def test_global_bus_is_shared(self):
        assert get_event_bus() is get_event_bus()


# =============================================================================
# STORE
# =============================================================================

class TestEventStore:
    """Append-only streams."""

    def test_append_and_read(self):
        store = EventStore()
        records = store.append("s", [transfer(1), transfer(2)])
        assert [r.version for r in records] == [1, 2]
        assert [e.value for e in store.read_stream("s")] == [1, 2]

    def test_streams_are_separate(self):
        store = EventStore()
        store.append("a", [transfer()])
        store.append("b", [transfer(), transfer()])
        assert store.get_stream_version("a") == 1
        assert store.get_stream_version("b") == 2
        assert store.total_events == 3

    def test_sequence_numbers_are_global(self):
        store = EventStore()
        store.append("a", [transfer()])
        [record] = store.append("b", [transfer()])
        assert record.sequence_number == 2
        assert record.to_dict()["stream_id"] == "b"

    def test_read_filters(self):
        store = EventStore()
        store.append("s", [transfer(1), Version(value=1), transfer(2)])
        assert len(store.read_stream("s", TransferSingle)) == 2
        assert [e.value for e in store.read_stream("s", from_version=2)] == [2]

    def test_unknown_stream_is_empty(self):
        assert EventStore().read_stream("missing") == []


# =============================================================================
# PROXY LOGS
# =============================================================================

class TestProxyLogs:
    """Events of committed calls."""

    def test_logs_in_emission_order(self, token):
        kinds = [e.event_type for e in token.logs()]
        assert kinds == ["RoleGranted", "RoleGranted", "RoleGranted", "Initialized"]
        assert len(token.logs(RoleGranted)) == 3

    def test_bus_sees_committed_events_only(self, token, accounts, token_id):
        seen = []
        token.event_bus.subscribe(TransferSingle)(seen.append)

        token.transact(CallContext(accounts.minter), "mint", accounts.user1, token_id, 10, b"")
        with pytest.raises(NonexistentToken):
            token.transact(CallContext(accounts.minter), "mint", accounts.user1, 123, 10, b"")

        assert len(seen) == 1
        assert seen[0].value == 10

    def test_events_share_call_correlation_id(self, token, accounts):
        correlation_ids = {e.correlation_id for e in token.logs()}
        assert len(correlation_ids) == 1
        assert correlation_ids.pop().startswith("corr-")

    def test_receipt_to_dict(self, token, accounts, token_id):
        receipt = token.transact(CallContext(accounts.minter), "mint", accounts.user1, token_id, 10, b"")
        data = receipt.to_dict()
        assert data["method"] == "mint"
        assert data["caller"] == accounts.minter
        assert receipt.events_of(TransferSingle) == receipt.events
        assert receipt.correlation_id == receipt.events[0].correlation_id
