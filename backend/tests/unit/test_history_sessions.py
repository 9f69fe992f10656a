"""
Unit tests for history and session bookkeeping.

WHAT: Test append-only history and the session lifecycle of a thread
WHY: The audit trail must never be rewritten and sessions must close on terminal transitions
HOW: Call bookkeeping methods directly and through the commands that use them
"""

import pytest
from pydantic import ValidationError

from offer_engine.models.offer import HistoryEntry, HistoryEventType
from offer_engine.utils.exceptions import (
    CounterLimitReachedError,
    OfferValidationError,
    SessionAlreadyActiveError,
    SessionNotFoundError,
)

COUNTER_TERMS = {"unit_price": 90.0, "quantity": 10}


@pytest.mark.unit
class TestHistory:
    """Test the append-only audit trail."""

    def test_append_stamps_current_time(self, store, clock):
        entry = store.append_history("thread_1", {
            "type": "status_changed",
            "new_status": "pending",
            "timestamp": "1999-01-01T00:00:00Z",
        })
        assert entry.timestamp == clock.current
        assert store.get_history("thread_1") == [entry]

    def test_append_accepts_entry_model(self, store, clock):
        original = HistoryEntry(type=HistoryEventType.OFFER_CANCELLED, timestamp=clock.current, action_by="admin")
        clock.advance(minutes=1)
        entry = store.append_history("thread_1", original)
        assert entry.action_by == "admin"
        assert entry.timestamp == clock.current

    def test_invalid_entry_is_refused(self, store):
        with pytest.raises(OfferValidationError):
            store.append_history("thread_1", {"type": "not_an_event"})
        assert store.get_history("thread_1") == []

    def test_entries_are_frozen(self, store, clock):
        entry = store.append_history("thread_1", {"type": "status_changed"})
        with pytest.raises(ValidationError):
            entry.reason = "edited"

    def test_history_never_shrinks_or_changes(self, store, clock, offer_data):
        offer = store.create_offer(offer_data)
        snapshots = [store.get_history(offer.id)]

        first = store.create_counter_offer(offer.id, COUNTER_TERMS, "vendor_1").counter_offer
        snapshots.append(store.get_history(offer.id))
        second = store.create_counter_offer(first.id, COUNTER_TERMS, "buyer_1").counter_offer
        snapshots.append(store.get_history(offer.id))
        with pytest.raises(CounterLimitReachedError):
            store.create_counter_offer(second.id, COUNTER_TERMS, "vendor_1")
        snapshots.append(store.get_history(offer.id))
        store.reject_offer(second.id, "vendor_1", reason="Too low")
        snapshots.append(store.get_history(offer.id))
        clock.advance(hours=48)
        store.expire_offers()
        snapshots.append(store.get_history(offer.id))

        for before, after in zip(snapshots, snapshots[1:]):
            assert len(after) >= len(before)
            assert after[:len(before)] == before

        assert [e.type for e in snapshots[-1]] == [
            HistoryEventType.OFFER_CREATED,
            HistoryEventType.COUNTER_OFFER_CREATED,
            HistoryEventType.COUNTER_OFFER_CREATED,
            HistoryEventType.OFFER_REJECTED,
        ]

    def test_get_history_returns_a_copy(self, store, offer_data):
        offer = store.create_offer(offer_data)
        store.get_history(offer.id).clear()
        assert len(store.get_history(offer.id)) == 1

    def test_counter_history_shares_the_thread_log(self, store, offer_data):
        offer = store.create_offer(offer_data)
        counter = store.create_counter_offer(offer.id, COUNTER_TERMS, "vendor_1").counter_offer
        store.accept_offer(counter.id, "buyer_1")

        assert store.get_history(counter.id) == []
        assert store.get_history(offer.id)[-1].offer_id == counter.id


@pytest.mark.unit
class TestSessions:
    """Test negotiation session lifecycle."""

    def test_start_session(self, store, clock):
        session = store.start_session("thread_1", ["buyer_1", "vendor_1", "buyer_1"])
        assert session.offer_id == "thread_1"
        assert session.participants == ["buyer_1", "vendor_1"]
        assert session.started_at == clock.current
        assert session.is_active

    def test_start_session_never_overwrites_active(self, store):
        first = store.start_session("thread_1", ["buyer_1"])
        with pytest.raises(SessionAlreadyActiveError):
            store.start_session("thread_1", ["someone_else"])
        assert store.get_session("thread_1") == first

    def test_start_session_replaces_closed(self, store):
        first = store.start_session("thread_1", ["buyer_1"])
        store.close_session("thread_1")
        second = store.start_session("thread_1", ["buyer_1"])
        assert second.id != first.id
        assert second.is_active

    def test_touch_session(self, store, clock):
        store.start_session("thread_1", ["buyer_1"])
        clock.advance(minutes=3)
        session = store.touch_session("thread_1", {"message_count": 4})
        assert session.message_count == 4
        assert session.last_activity == clock.current

    def test_touch_missing_session(self, store):
        with pytest.raises(SessionNotFoundError):
            store.touch_session("thread_missing", {"message_count": 1})

    def test_touch_with_invalid_update(self, store):
        store.start_session("thread_1", ["buyer_1"])
        with pytest.raises(OfferValidationError):
            store.touch_session("thread_1", {"message_count": -1})

    def test_close_session_is_idempotent(self, store, clock):
        store.start_session("thread_1", ["buyer_1"])
        closed = store.close_session("thread_1")
        assert closed.is_active is False
        assert closed.ended_at == clock.current

        clock.advance(minutes=1)
        assert store.close_session("thread_1").ended_at == closed.ended_at
        assert store.close_session("thread_missing") is None

    @pytest.mark.parametrize("finish", ["accept", "reject"])
    def test_terminal_transition_closes_session(self, store, clock, offer_data, finish):
        offer = store.create_offer(offer_data)
        counter = store.create_counter_offer(offer.id, COUNTER_TERMS, "vendor_1").counter_offer
        clock.advance(minutes=10)
        if finish == "accept":
            store.accept_offer(counter.id, "buyer_1")
        else:
            store.reject_offer(counter.id, "buyer_1", reason="No thanks")

        session = store.get_session(offer.id)
        assert session.is_active is False
        assert session.ended_at == clock.current

    def test_counter_starts_a_missing_session(self, store, clock):
        offer = store.load_offer({"id": "offer_mirror", "unit_price": 20, "quantity": 3, "created_by": "buyer_1"})
        store.create_counter_offer(offer.id, COUNTER_TERMS, "vendor_1")

        session = store.get_session(offer.id)
        assert session.is_active
        assert session.participants == ["buyer_1", "vendor_1"]
        assert session.message_count == 1

    def test_counter_adds_new_participant(self, store, offer_data):
        offer = store.create_offer({**offer_data, "vendor_id": None})
        store.create_counter_offer(offer.id, COUNTER_TERMS, "vendor_7")
        assert store.get_session(offer.id).participants == ["buyer_1", "vendor_7"]
