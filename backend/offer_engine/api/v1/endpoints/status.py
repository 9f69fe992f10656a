"""
Status and health check endpoints.

WHAT: Health monitoring for the negotiation engine and backend sync
WHY: Quick diagnostics for frontend and ops
HOW: FastAPI endpoint reading store counts and backend client config
"""

from fastapi import APIRouter, Depends

from ..dependencies import get_backend_client, get_store
from ....core.config import settings
from ....core.negotiation_store import NegotiationStore
from ....services.backend_sync import OfferBackendClient

router = APIRouter()


@router.get("/health")
async def health(
    store: NegotiationStore = Depends(get_store),
    backend: OfferBackendClient = Depends(get_backend_client),
):
    """
    Check engine status.

    Returns:
        JSON with app version, offer count and backend sync status
    """
    return {
        "status": "ok",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "offers": len(store.list_offers()),
        "backend": backend.status(),
    }
