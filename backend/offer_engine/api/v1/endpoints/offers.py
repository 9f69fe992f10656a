"""
Offer negotiation endpoints.

WHAT: REST surface for the offer/counter-offer commands and read models
WHY: Mobile and web clients drive negotiations over HTTP
HOW: FastAPI router delegating to NegotiationStore; backend sync runs after commit
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

from ..dependencies import get_backend_client, get_store
from ....core.negotiation_store import NegotiationStore
from ....models.api_schemas import (
    AcceptOfferRequest,
    CounterOfferRequest,
    CounterOfferResponse,
    CreateOfferRequest,
    ExpireOffersResponse,
    OfferListResponse,
    RejectOfferRequest,
)
from ....models.offer import OfferSummary, OfferView
from ....services.backend_sync import OfferBackendClient
from ....utils.exceptions import BackendSyncError
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


async def sync_with_backend(push, payload, description: str):
    """
    Background task mirroring a committed transition to the backend.

    A failed sync is logged; engine state is never rolled back.
    """
    try:
        await push(payload)
    except BackendSyncError as e:
        logger.error(f"Backend sync failed for {description}: {e.message}")


@router.post("/offers", response_model=OfferView, status_code=status.HTTP_201_CREATED)
async def create_offer(
    request: CreateOfferRequest,
    background_tasks: BackgroundTasks,
    store: NegotiationStore = Depends(get_store),
    backend: OfferBackendClient = Depends(get_backend_client),
):
    """
    Create an initial offer.

    WHAT: Open a negotiation thread with a pending offer
    WHY: Entry point of every negotiation
    HOW: Validate through the store, mirror to backend in the background
    """
    offer = store.create_offer(
        request.model_dump(exclude={"created_by_name"}),
        actor_id=request.created_by,
        actor_name=request.created_by_name,
    )
    background_tasks.add_task(sync_with_backend, backend.push_offer, offer, f"offer {offer.id}")
    return store.offer_view(offer.id)


@router.get("/offers", response_model=OfferListResponse)
async def list_offers(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    offer_type: Optional[str] = Query(default=None, alias="type"),
    chat_id: Optional[str] = None,
    vendor_id: Optional[str] = None,
    store: NegotiationStore = Depends(get_store),
):
    """List offers filtered by status, type, chat or vendor."""
    store.expire_offers()
    offers = store.list_offers(
        status=status_filter,
        offer_type=offer_type,
        chat_id=chat_id,
        vendor_id=vendor_id,
    )
    return OfferListResponse(offers=offers, total=len(offers))


@router.get("/offers/summary", response_model=OfferSummary)
async def offers_summary(store: NegotiationStore = Depends(get_store)):
    """Counts per status and accepted value."""
    return store.summary()


@router.post("/offers/expire", response_model=ExpireOffersResponse)
async def expire_offers(store: NegotiationStore = Depends(get_store)):
    """Run the expiry sweep on demand."""
    expired = store.expire_offers()
    return ExpireOffersResponse(expired_offers=expired, expired_count=len(expired))


@router.get("/offers/{offer_id}", response_model=OfferView)
async def get_offer(offer_id: str, store: NegotiationStore = Depends(get_store)):
    """
    Get the derived read model of an offer.

    WHAT: Status, counter usage, permissions, history and session
    WHY: Everything an offer card needs in one round-trip
    HOW: store.offer_view() after a fresh expiry sweep
    """
    return store.offer_view(offer_id)


@router.post("/offers/{offer_id}/accept", response_model=OfferView)
async def accept_offer(
    offer_id: str,
    request: AcceptOfferRequest,
    background_tasks: BackgroundTasks,
    store: NegotiationStore = Depends(get_store),
    backend: OfferBackendClient = Depends(get_backend_client),
):
    """Accept an open offer; closes the negotiation session."""
    offer = store.accept_offer(offer_id, request.actor_id, actor_name=request.actor_name)
    background_tasks.add_task(sync_with_backend, backend.push_response, offer, f"accept {offer_id}")
    return store.offer_view(offer_id)


@router.post("/offers/{offer_id}/reject", response_model=OfferView)
async def reject_offer(
    offer_id: str,
    request: RejectOfferRequest,
    background_tasks: BackgroundTasks,
    store: NegotiationStore = Depends(get_store),
    backend: OfferBackendClient = Depends(get_backend_client),
):
    """Reject an open offer; closes the negotiation session."""
    offer = store.reject_offer(
        offer_id,
        request.actor_id,
        reason=request.reason,
        actor_name=request.actor_name,
    )
    background_tasks.add_task(sync_with_backend, backend.push_response, offer, f"reject {offer_id}")
    return store.offer_view(offer_id)


@router.post(
    "/offers/{offer_id}/counter",
    response_model=CounterOfferResponse,
    status_code=status.HTTP_201_CREATED,
)
async def counter_offer(
    offer_id: str,
    request: CounterOfferRequest,
    background_tasks: BackgroundTasks,
    store: NegotiationStore = Depends(get_store),
    backend: OfferBackendClient = Depends(get_backend_client),
):
    """
    Counter an offer.

    WHAT: Create a counter-offer record and mark the original countered
    WHY: Bounded back-and-forth before accept/reject
    HOW: store.create_counter_offer(); 409 COUNTER_LIMIT_REACHED once rounds run out
    """
    result = store.create_counter_offer(
        offer_id,
        request.terms,
        request.actor_id,
        actor_name=request.actor_name,
    )
    background_tasks.add_task(sync_with_backend, backend.push_counter, result, f"counter on {offer_id}")
    return CounterOfferResponse(
        original_offer=store.offer_view(result.original_offer.id),
        counter_offer=store.offer_view(result.counter_offer.id),
    )
