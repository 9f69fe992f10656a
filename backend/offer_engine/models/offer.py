"""
Offer negotiation domain models.

WHAT: Core data structures for offers, history entries and negotiation sessions
WHY: Consistent typing across the store, rule helpers and API schemas
HOW: Pydantic v2 models with str enums for the status taxonomy
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

# Legacy spelling used by some callers for a freshly sent offer
LEGACY_STATUS_ALIASES = {"sent": "pending"}


def generate_id(prefix: str) -> str:
    """Generate a prefixed unique id (offer_xxx, counter_xxx, session_xxx)."""
    return f"{prefix}_{uuid4().hex[:12]}"


class OfferStatus(str, Enum):
    """Fine-grained status of an offer record."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COUNTERED = "countered"
    EXPIRED = "expired"
    CANCELLED = "cancelled"  # Reserved, no command reaches it


class OfferType(str, Enum):
    """Position of an offer record in its negotiation thread."""

    INITIAL = "initial"
    COUNTER = "counter"
    FINAL = "final"


class FlowState(str, Enum):
    """Coarse lifecycle stage used for UI step indicators."""

    DRAFT = "draft"
    ACTIVE = "active"
    NEGOTIATING = "negotiating"
    COMPLETED = "completed"
    EXPIRED = "expired"


class HistoryEventType(str, Enum):
    """Kinds of entries in a thread's audit trail."""

    OFFER_CREATED = "offer_created"
    COUNTER_OFFER_CREATED = "counter_offer_created"
    OFFER_ACCEPTED = "offer_accepted"
    OFFER_REJECTED = "offer_rejected"
    OFFER_EXPIRED = "offer_expired"
    OFFER_CANCELLED = "offer_cancelled"
    STATUS_CHANGED = "status_changed"


TERMINAL_STATUSES = frozenset({
    OfferStatus.ACCEPTED,
    OfferStatus.REJECTED,
    OfferStatus.EXPIRED,
    OfferStatus.CANCELLED,
})

# Statuses in which accept/reject/counter are still open
OPEN_STATUSES = frozenset({OfferStatus.PENDING, OfferStatus.COUNTERED})


def offer_total(unit_price: float, quantity: int, discount: Optional[float] = None) -> float:
    """Total value of a proposal after its percentage discount."""
    subtotal = unit_price * quantity
    return subtotal - subtotal * ((discount or 0) / 100)


class OfferTerms(BaseModel):
    """Commercial terms of a proposal (used for both offers and counters)."""

    unit_price: float = Field(gt=0.0, allow_inf_nan=False)
    quantity: int = Field(gt=0)
    discount: Optional[float] = Field(default=None, ge=0.0, le=100.0, allow_inf_nan=False)
    terms: Optional[str] = None
    delivery_terms: Optional[str] = None
    payment_terms: Optional[str] = None
    message: Optional[str] = None


class OfferCreate(OfferTerms):
    """Input for creating the initial offer of a negotiation thread."""

    product: Optional[dict[str, Any]] = None
    vendor_id: Optional[str] = None
    vendor_name: Optional[str] = None
    chat_id: Optional[str] = None
    created_by: Optional[str] = None
    max_vendor_counters: Optional[int] = Field(default=None, ge=0)


class Offer(BaseModel):
    """A proposal exchanged between buyer and vendor."""

    id: str = Field(default_factory=lambda: generate_id("offer"))
    status: OfferStatus = OfferStatus.PENDING
    type: OfferType = OfferType.INITIAL
    flow_state: FlowState = FlowState.ACTIVE

    # Commercial terms
    unit_price: float
    quantity: int
    discount: Optional[float] = None
    terms: Optional[str] = None
    delivery_terms: Optional[str] = None
    payment_terms: Optional[str] = None
    message: Optional[str] = None

    # Context references (opaque to the engine)
    product: Optional[dict[str, Any]] = None
    vendor_id: Optional[str] = None
    vendor_name: Optional[str] = None
    chat_id: Optional[str] = None
    created_by: Optional[str] = None

    # Strike limit bookkeeping
    counter_offer_count: int = 0
    vendor_counter_count: Optional[int] = None
    max_vendor_counters: int = 2

    # Thread links
    thread_id: Optional[str] = None
    original_offer_id: Optional[str] = None
    parent_offer_id: Optional[str] = None
    counter_offers: list[str] = Field(default_factory=list)

    # Timeline
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_expired: bool = False

    # Terminal outcome fields
    accepted_at: Optional[datetime] = None
    accepted_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    expired_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def normalize_legacy_status(cls, v):
        """Map the legacy 'sent' spelling onto 'pending'."""
        if isinstance(v, str):
            return LEGACY_STATUS_ALIASES.get(v.lower(), v.lower())
        return v

    @computed_field
    @property
    def total_value(self) -> float:
        """Proposal value after discount."""
        return offer_total(self.unit_price, self.quantity, self.discount)

    @property
    def root_id(self) -> str:
        """Id of the negotiation thread this record belongs to."""
        return self.thread_id or self.id


class HistoryEntry(BaseModel):
    """One immutable entry in a negotiation thread's audit trail."""

    model_config = ConfigDict(frozen=True)

    type: HistoryEventType
    timestamp: datetime
    offer_id: Optional[str] = None
    action_by: Optional[str] = None
    action_by_name: Optional[str] = None
    counter_offer_id: Optional[str] = None
    previous_price: Optional[float] = None
    new_price: Optional[float] = None
    new_status: Optional[str] = None
    reason: Optional[str] = None
    message: Optional[str] = None


class NegotiationSession(BaseModel):
    """Transient bookkeeping for an active negotiation thread."""

    id: str = Field(default_factory=lambda: generate_id("session"))
    offer_id: str
    participants: list[str] = Field(default_factory=list)
    started_at: datetime
    last_activity: datetime
    message_count: int = Field(default=0, ge=0)
    is_active: bool = True
    ended_at: Optional[datetime] = None
    last_counter_offer_at: Optional[datetime] = None


class CounterMeta(BaseModel):
    """Counter-offer usage for a thread: cap, rounds used, rounds left."""

    max: int
    used: int
    remaining: int


class CounterOfferResult(BaseModel):
    """Both records touched by a counter-offer, as committed together."""

    original_offer: Offer
    counter_offer: Offer


class OfferView(BaseModel):
    """Derived read model consumed by every offer-rendering component."""

    offer: Offer
    status: OfferStatus
    flow_state: FlowState
    status_label: str
    status_color: str
    counter_meta: CounterMeta
    can_accept: bool
    can_counter: bool
    can_reject: bool
    history_entries: list[HistoryEntry] = Field(default_factory=list)
    session: Optional[NegotiationSession] = None


class OfferSummary(BaseModel):
    """Aggregate counts over the offers held by the store."""

    total_offers: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    active_threads: int = 0
    accepted_value: float = 0.0
