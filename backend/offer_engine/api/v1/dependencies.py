"""
Request-scoped dependencies.

WHAT: Resolve the negotiation store and backend client for an endpoint
WHY: Handlers receive state explicitly instead of importing a module global
HOW: Read the instances the lifespan put on app.state
"""

from fastapi import Request

from ...core.negotiation_store import NegotiationStore
from ...services.backend_sync import OfferBackendClient


def get_store(request: Request) -> NegotiationStore:
    return request.app.state.store


def get_backend_client(request: Request) -> OfferBackendClient:
    return request.app.state.backend_client
