"""
Offer derivation and guard rules.

WHAT: Pure decision helpers that gate every accept/reject/counter action
WHY: UI and store must agree on one definition of what is allowed
HOW: Side-effect-free functions over an Offer (or a raw mapping) and the clock
"""

import math
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Union

from ..core.config import settings
from ..models.offer import (
    LEGACY_STATUS_ALIASES,
    OPEN_STATUSES,
    CounterMeta,
    HistoryEntry,
    HistoryEventType,
    Offer,
    OfferStatus,
)

OfferLike = Union[Offer, Mapping[str, Any]]

DEFAULT_STATUS_COLOR = "#757575"
DEFAULT_STATUS_LABEL = "Unknown"

STATUS_COLORS = {
    OfferStatus.PENDING: "#FFA500",
    OfferStatus.ACCEPTED: "#4CAF50",
    OfferStatus.REJECTED: "#F44336",
    OfferStatus.COUNTERED: "#2196F3",
    OfferStatus.EXPIRED: "#9E9E9E",
    OfferStatus.CANCELLED: "#9E9E9E",
}

STATUS_LABELS = {
    OfferStatus.PENDING: "Pending",
    OfferStatus.ACCEPTED: "Accepted",
    OfferStatus.REJECTED: "Rejected",
    OfferStatus.COUNTERED: "Countered",
    OfferStatus.EXPIRED: "Expired",
    OfferStatus.CANCELLED: "Cancelled",
}

HISTORY_TITLES = {
    HistoryEventType.OFFER_CREATED: "Offer Created",
    HistoryEventType.COUNTER_OFFER_CREATED: "Counter Offer Made",
    HistoryEventType.OFFER_ACCEPTED: "Offer Accepted",
    HistoryEventType.OFFER_REJECTED: "Offer Rejected",
    HistoryEventType.OFFER_EXPIRED: "Offer Expired",
    HistoryEventType.OFFER_CANCELLED: "Offer Cancelled",
    HistoryEventType.STATUS_CHANGED: "Status Updated",
}

# Raw UI payloads arrive camelCased, engine records are snake_cased
_CAMEL_KEYS = {
    "status": "status",
    "counter_offer_count": "counterOfferCount",
    "vendor_counter_count": "vendorCounterCount",
    "max_vendor_counters": "maxVendorCounters",
    "is_expired": "isExpired",
    "expires_at": "expiresAt",
}


def _field(offer: OfferLike, name: str) -> Any:
    """Read a field from an Offer model or a snake/camel-cased mapping."""
    if isinstance(offer, Offer):
        return getattr(offer, name)
    if name in offer:
        return offer[name]
    return offer.get(_CAMEL_KEYS.get(name, name))


def _safe_count(value: Any, fallback: int) -> int:
    """Clamp a counter value to a finite, non-negative integer."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(number) or number < 0:
        return fallback
    return int(number)


def _now(now: Optional[datetime]) -> datetime:
    return _aware(now) if now else datetime.now(timezone.utc)


def _as_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _aware(value: datetime) -> datetime:
    # Naive timestamps are treated as UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def normalize_status(value: Any) -> Optional[OfferStatus]:
    """
    Resolve a status value to its canonical OfferStatus.

    The legacy 'sent' spelling maps onto PENDING. Unknown values return None
    so guard logic treats them as closed rather than guessing.
    """
    if value is None:
        return None
    if isinstance(value, OfferStatus):
        return value
    raw = str(value).strip().lower()
    raw = LEGACY_STATUS_ALIASES.get(raw, raw)
    try:
        return OfferStatus(raw)
    except ValueError:
        return None


def counter_meta(offer: Optional[OfferLike]) -> CounterMeta:
    """
    Counter-offer usage for an offer's thread.

    Args:
        offer: Offer model or raw mapping (None yields an unused default)

    Returns:
        CounterMeta with max, used and remaining; never negative
    """
    default_max = settings.DEFAULT_MAX_VENDOR_COUNTERS
    if offer is None:
        return CounterMeta(max=default_max, used=0, remaining=default_max)

    raw_max = _field(offer, "max_vendor_counters")
    max_counters = _safe_count(default_max if raw_max is None else raw_max, default_max)

    raw_used = _field(offer, "vendor_counter_count")
    if raw_used is None:
        raw_used = _field(offer, "counter_offer_count")
    used = _safe_count(0 if raw_used is None else raw_used, 0)

    return CounterMeta(max=max_counters, used=used, remaining=max(0, max_counters - used))


def is_offer_expired(offer: Optional[OfferLike], now: Optional[datetime] = None) -> bool:
    """True if the offer is flagged expired or its validity window has passed."""
    if offer is None:
        return False
    if _field(offer, "is_expired"):
        return True
    if normalize_status(_field(offer, "status")) == OfferStatus.EXPIRED:
        return True
    expires_at = _as_datetime(_field(offer, "expires_at"))
    return expires_at is not None and _aware(expires_at) <= _now(now)


def _is_open(offer: Optional[OfferLike], now: Optional[datetime]) -> bool:
    if offer is None or is_offer_expired(offer, now):
        return False
    return normalize_status(_field(offer, "status")) in OPEN_STATUSES


def can_accept_offer(offer: Optional[OfferLike], now: Optional[datetime] = None) -> bool:
    """Whether the offer can still be accepted."""
    return _is_open(offer, now)


def can_reject_offer(offer: Optional[OfferLike], now: Optional[datetime] = None) -> bool:
    """Whether the offer can still be rejected."""
    return _is_open(offer, now)


def can_counter_offer(offer: Optional[OfferLike], now: Optional[datetime] = None) -> bool:
    """Whether a counter-offer can still be made against this offer."""
    return _is_open(offer, now) and counter_meta(offer).remaining > 0


def status_color(status: Any) -> str:
    """Display color for a status; unknown values get the default grey."""
    return STATUS_COLORS.get(normalize_status(status), DEFAULT_STATUS_COLOR)


def status_label(status: Any) -> str:
    """Display label for a status; unknown values read 'Unknown'."""
    return STATUS_LABELS.get(normalize_status(status), DEFAULT_STATUS_LABEL)


def history_title(entry: HistoryEntry) -> str:
    return HISTORY_TITLES.get(entry.type, "Activity")


def history_description(entry: HistoryEntry) -> str:
    """Human-readable one-liner for a history entry."""
    actor = entry.action_by_name or entry.action_by or "User"
    if entry.type == HistoryEventType.OFFER_CREATED:
        return f"Offer created by {actor}"
    if entry.type == HistoryEventType.COUNTER_OFFER_CREATED:
        return f"Counter offer of {entry.new_price or 0:.2f} created by {actor}"
    if entry.type == HistoryEventType.OFFER_ACCEPTED:
        return f"Offer accepted by {actor}"
    if entry.type == HistoryEventType.OFFER_REJECTED:
        return f"Offer rejected by {actor}"
    if entry.type == HistoryEventType.OFFER_EXPIRED:
        return "Offer has expired"
    if entry.type == HistoryEventType.OFFER_CANCELLED:
        return f"Offer cancelled by {actor}"
    if entry.type == HistoryEventType.STATUS_CHANGED:
        return f"Status changed to {entry.new_status or 'Unknown'}"
    return entry.message or "Activity logged"
