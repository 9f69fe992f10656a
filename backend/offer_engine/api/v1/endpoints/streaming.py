"""
SSE streaming endpoint for negotiation threads.

WHAT: Server-Sent Events stream of a thread's history entries
WHY: Chat screens render offer bubbles as the counterparty acts
HOW: EventSourceResponse wrapping a generator that polls the store's append-only log
"""

import asyncio
import json
import time
from datetime import datetime
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends
from sse_starlette.sse import EventSourceResponse

from ..dependencies import get_store
from ....core.config import settings
from ....core.negotiation_store import NegotiationStore
from ....models.offer import TERMINAL_STATUSES
from ....utils.exceptions import SessionNotFoundError
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _thread_finished(store: NegotiationStore, thread_id: str) -> bool:
    session = store.get_session(thread_id)
    if session is None or not session.is_active:
        return True
    offers = store.thread_offers(thread_id)
    return bool(offers) and all(offer.status in TERMINAL_STATUSES for offer in offers)


async def thread_event_generator(
    store: NegotiationStore,
    thread_id: str,
    poll_interval: Optional[float] = None,
    heartbeat_interval: Optional[float] = None,
) -> AsyncIterator[dict]:
    """
    Generate SSE events for a negotiation thread.

    Replays the existing history, then polls for new entries until the
    thread's session closes or every offer in it is terminal.

    Args:
        store: Negotiation store holding the thread
        thread_id: Id of the thread's initial offer
        poll_interval: Seconds between polls (defaults to settings)
        heartbeat_interval: Seconds between heartbeats (defaults to settings)

    Yields:
        SSE event dicts
    """
    poll_interval = settings.SSE_POLL_INTERVAL if poll_interval is None else poll_interval
    heartbeat_interval = settings.SSE_HEARTBEAT_INTERVAL if heartbeat_interval is None else heartbeat_interval

    logger.info(f"Starting SSE stream for thread {thread_id}")
    yield {
        "event": "connected",
        "data": json.dumps({
            "type": "connected",
            "thread_id": thread_id,
            "timestamp": datetime.now().isoformat()
        })
    }

    sent = 0
    last_heartbeat = time.monotonic()
    try:
        while True:
            # Checked before reading history so the final entries are never dropped
            finished = _thread_finished(store, thread_id)
            entries = store.get_history(thread_id)
            for entry in entries[sent:]:
                yield {"event": "history", "data": entry.model_dump_json()}
            sent = max(sent, len(entries))

            if finished:
                session = store.get_session(thread_id)
                yield {
                    "event": "closed",
                    "data": json.dumps({
                        "type": "closed",
                        "thread_id": thread_id,
                        "total_entries": sent,
                        "ended_at": session.ended_at.isoformat() if session and session.ended_at else None,
                        "timestamp": datetime.now().isoformat()
                    })
                }
                return

            if time.monotonic() - last_heartbeat >= heartbeat_interval:
                last_heartbeat = time.monotonic()
                yield {
                    "event": "heartbeat",
                    "data": json.dumps({"type": "heartbeat", "timestamp": datetime.now().isoformat()})
                }

            await asyncio.sleep(poll_interval)
    finally:
        logger.info(f"SSE stream ended for thread {thread_id}")


@router.get("/threads/{thread_id}/events")
async def stream_thread_events(thread_id: str, store: NegotiationStore = Depends(get_store)):
    """
    Stream a negotiation thread's history via SSE.

    Raises:
        SessionNotFoundError: If the thread has never had a session
    """
    if store.get_session(thread_id) is None:
        raise SessionNotFoundError(thread_id)

    return EventSourceResponse(
        thread_event_generator(store, thread_id),
        media_type="text/event-stream"
    )
