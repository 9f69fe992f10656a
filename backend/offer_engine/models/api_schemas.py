"""
Pydantic API schemas for the offers endpoints.

WHAT: Request and response models for FastAPI
WHY: Type-safe validation and serialization matching the mobile client payloads
HOW: Pydantic v2 models with validators and constraints
"""

from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field

from .offer import HistoryEntry, NegotiationSession, Offer, OfferView


# ========== Request Schemas ==========

class CreateOfferRequest(BaseModel):
    """Request to open a negotiation with an initial offer."""
    unit_price: float = Field(..., description="Proposed price per unit")
    quantity: int = Field(..., description="Proposed quantity")
    discount: Optional[float] = Field(default=None, description="Discount percent (0-100)")
    terms: Optional[str] = Field(default=None, max_length=2000)
    delivery_terms: Optional[str] = Field(default=None, max_length=1000)
    payment_terms: Optional[str] = Field(default=None, max_length=1000)
    message: Optional[str] = Field(default=None, max_length=1000)
    product: Optional[Dict[str, Any]] = Field(default=None, description="Catalog item snapshot")
    vendor_id: Optional[str] = Field(default=None, max_length=64)
    vendor_name: Optional[str] = Field(default=None, max_length=100)
    chat_id: Optional[str] = Field(default=None, max_length=64)
    created_by: str = Field(..., min_length=1, max_length=64, description="Buyer id")
    created_by_name: Optional[str] = Field(default=None, max_length=100)
    max_vendor_counters: Optional[int] = Field(default=None, description="Override of the strike limit")


class AcceptOfferRequest(BaseModel):
    """Request to accept an offer."""
    actor_id: str = Field(..., min_length=1, max_length=64)
    actor_name: Optional[str] = Field(default=None, max_length=100)


class RejectOfferRequest(BaseModel):
    """Request to reject an offer."""
    actor_id: str = Field(..., min_length=1, max_length=64)
    actor_name: Optional[str] = Field(default=None, max_length=100)
    reason: str = Field(default="", max_length=1000)


class CounterOfferRequest(BaseModel):
    """Request to counter an offer with revised terms."""
    actor_id: str = Field(..., min_length=1, max_length=64)
    actor_name: Optional[str] = Field(default=None, max_length=100)
    terms: Dict[str, Any] = Field(..., description="Revised terms (unit_price, quantity, discount, ...)")


# ========== Response Schemas ==========

class CounterOfferResponse(BaseModel):
    """Both sides of a committed counter-offer."""
    original_offer: OfferView
    counter_offer: OfferView


class OfferListResponse(BaseModel):
    """Filtered list of offers."""
    offers: List[Offer]
    total: int


class ExpireOffersResponse(BaseModel):
    """Result of an on-demand expiry sweep."""
    expired_offers: List[Offer]
    expired_count: int


class ThreadHistoryResponse(BaseModel):
    """Audit trail of one negotiation thread."""
    thread_id: str
    entries: List[HistoryEntry]
    total_entries: int


class ThreadSessionResponse(BaseModel):
    """Session bookkeeping of one negotiation thread."""
    thread_id: str
    session: NegotiationSession
