"""
Negotiation thread endpoints.

WHAT: Read access to a thread's audit trail and session bookkeeping
WHY: History viewers and chat headers show who did what, and whether talks are live
HOW: FastAPI router over NegotiationStore queries
"""

from fastapi import APIRouter, Depends

from ..dependencies import get_store
from ....core.negotiation_store import NegotiationStore
from ....models.api_schemas import ThreadHistoryResponse, ThreadSessionResponse
from ....utils.exceptions import SessionNotFoundError

router = APIRouter()


@router.get("/threads/{thread_id}/history", response_model=ThreadHistoryResponse)
async def get_thread_history(thread_id: str, store: NegotiationStore = Depends(get_store)):
    """Ordered history entries of a thread (empty for unknown threads)."""
    entries = store.get_history(thread_id)
    return ThreadHistoryResponse(thread_id=thread_id, entries=entries, total_entries=len(entries))


@router.get("/threads/{thread_id}/session", response_model=ThreadSessionResponse)
async def get_thread_session(thread_id: str, store: NegotiationStore = Depends(get_store)):
    """Negotiation session of a thread."""
    session = store.get_session(thread_id)
    if session is None:
        raise SessionNotFoundError(thread_id)
    return ThreadSessionResponse(thread_id=thread_id, session=session)
