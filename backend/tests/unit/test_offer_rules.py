"""
Unit tests for offer guard and derivation rules.

WHAT: Test counter usage, expiry and accept/reject/counter guards
WHY: These functions gate every action a buyer or vendor can take
HOW: Call the pure functions on Offer models and raw camelCase payloads
"""

import pytest
from datetime import datetime, timedelta, timezone

from offer_engine.models.offer import HistoryEntry, HistoryEventType, Offer, OfferStatus
from offer_engine.services.offer_rules import (
    DEFAULT_STATUS_COLOR,
    can_accept_offer,
    can_counter_offer,
    can_reject_offer,
    counter_meta,
    history_description,
    history_title,
    is_offer_expired,
    normalize_status,
    status_color,
    status_label,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_offer(**overrides) -> Offer:
    fields = {
        "unit_price": 100.0,
        "quantity": 10,
        "expires_at": NOW + timedelta(hours=24),
    }
    fields.update(overrides)
    return Offer(**fields)


@pytest.mark.unit
class TestNormalizeStatus:
    """Test status normalization."""

    def test_sent_is_pending(self):
        assert normalize_status("sent") == OfferStatus.PENDING
        assert normalize_status("SENT") == OfferStatus.PENDING

    def test_known_status_passes_through(self):
        assert normalize_status("countered") == OfferStatus.COUNTERED
        assert normalize_status(OfferStatus.EXPIRED) == OfferStatus.EXPIRED

    def test_unknown_status_is_none(self):
        assert normalize_status("bogus") is None
        assert normalize_status(None) is None

    def test_offer_model_normalizes_legacy_status(self):
        assert make_offer(status="sent").status == OfferStatus.PENDING


@pytest.mark.unit
class TestCounterMeta:
    """Test counter usage derivation."""

    def test_none_offer_yields_default(self):
        meta = counter_meta(None)
        assert (meta.max, meta.used, meta.remaining) == (2, 0, 2)

    def test_used_from_counter_offer_count(self):
        meta = counter_meta(make_offer(counter_offer_count=1))
        assert (meta.max, meta.used, meta.remaining) == (2, 1, 1)

    def test_vendor_counter_count_takes_precedence(self):
        meta = counter_meta(make_offer(counter_offer_count=0, vendor_counter_count=2))
        assert meta.used == 2
        assert meta.remaining == 0

    def test_remaining_never_negative(self):
        meta = counter_meta(make_offer(counter_offer_count=5, max_vendor_counters=2))
        assert meta.remaining == 0

    def test_malformed_raw_values_are_clamped(self):
        meta = counter_meta({"maxVendorCounters": "abc", "counterOfferCount": -3})
        assert (meta.max, meta.used, meta.remaining) == (2, 0, 2)

    def test_infinite_values_are_clamped(self):
        meta = counter_meta({"max_vendor_counters": float("inf"), "counter_offer_count": float("nan")})
        assert (meta.max, meta.used, meta.remaining) == (2, 0, 2)

    def test_camel_case_payload(self):
        meta = counter_meta({"maxVendorCounters": 3, "vendorCounterCount": 1})
        assert (meta.max, meta.used, meta.remaining) == (3, 1, 2)


@pytest.mark.unit
class TestExpiry:
    """Test expiry detection."""

    def test_future_expiry_is_live(self):
        assert not is_offer_expired(make_offer(), NOW)

    def test_past_expiry_is_expired_even_if_pending(self):
        offer = make_offer(expires_at=NOW - timedelta(seconds=1))
        assert is_offer_expired(offer, NOW)

    def test_expiry_boundary_is_expired(self):
        assert is_offer_expired(make_offer(expires_at=NOW), NOW)

    def test_flag_and_status_mark_expired(self):
        assert is_offer_expired(make_offer(is_expired=True), NOW)
        assert is_offer_expired(make_offer(status="expired"), NOW)

    def test_naive_timestamps_are_utc(self):
        offer = make_offer(expires_at=datetime(2024, 5, 1, 11, 0))
        assert is_offer_expired(offer, NOW)

    def test_naive_now_is_utc(self):
        offer = make_offer(expires_at=datetime(2024, 5, 2, tzinfo=timezone.utc))
        assert not is_offer_expired(offer, datetime(2024, 5, 1, 12))
        assert is_offer_expired(offer, datetime(2024, 5, 2, 0))
        assert can_accept_offer(offer, datetime(2024, 5, 1, 12))
        assert can_reject_offer(offer, datetime(2024, 5, 1, 12))
        assert can_counter_offer(offer, datetime(2024, 5, 1, 12))

    def test_iso_string_in_raw_payload(self):
        payload = {"status": "pending", "expiresAt": "2024-05-01T11:00:00Z"}
        assert is_offer_expired(payload, NOW)


@pytest.mark.unit
class TestGuards:
    """Test accept/reject/counter permissions."""

    @pytest.mark.parametrize("status", ["pending", "sent", "countered"])
    def test_open_statuses_allow_actions(self, status):
        offer = make_offer(status=status)
        assert can_accept_offer(offer, NOW)
        assert can_reject_offer(offer, NOW)
        assert can_counter_offer(offer, NOW)

    @pytest.mark.parametrize("status", ["accepted", "rejected", "expired", "cancelled"])
    def test_terminal_statuses_block_actions(self, status):
        offer = make_offer(status=status)
        assert not can_accept_offer(offer, NOW)
        assert not can_reject_offer(offer, NOW)
        assert not can_counter_offer(offer, NOW)

    def test_missing_offer_blocks_actions(self):
        assert not can_accept_offer(None, NOW)
        assert not can_reject_offer(None, NOW)
        assert not can_counter_offer(None, NOW)

    def test_expired_pending_offer_blocks_actions(self):
        offer = make_offer(expires_at=NOW - timedelta(minutes=5))
        assert not can_accept_offer(offer, NOW)
        assert not can_counter_offer(offer, NOW)

    def test_exhausted_limit_blocks_counter_only(self):
        offer = make_offer(counter_offer_count=2, max_vendor_counters=2)
        assert not can_counter_offer(offer, NOW)
        assert can_accept_offer(offer, NOW)
        assert can_reject_offer(offer, NOW)

    def test_unknown_raw_status_is_closed(self):
        assert not can_accept_offer({"status": "draft"}, NOW)


@pytest.mark.unit
class TestPresentation:
    """Test status and history display helpers."""

    def test_status_colors(self):
        assert status_color("pending") == "#FFA500"
        assert status_color("sent") == "#FFA500"
        assert status_color(OfferStatus.ACCEPTED) == "#4CAF50"
        assert status_color("nonsense") == DEFAULT_STATUS_COLOR

    def test_status_labels(self):
        assert status_label("countered") == "Countered"
        assert status_label(None) == "Unknown"

    def test_history_text(self):
        entry = HistoryEntry(
            type=HistoryEventType.COUNTER_OFFER_CREATED,
            timestamp=NOW,
            action_by="vendor_1",
            action_by_name="Basket Co",
            new_price=90.0,
        )
        assert history_title(entry) == "Counter Offer Made"
        assert history_description(entry) == "Counter offer of 90.00 created by Basket Co"

    def test_history_text_falls_back_to_actor_id(self):
        entry = HistoryEntry(type=HistoryEventType.OFFER_ACCEPTED, timestamp=NOW, action_by="buyer_1")
        assert history_description(entry) == "Offer accepted by buyer_1"
