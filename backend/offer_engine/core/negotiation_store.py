"""
Negotiation store for offer threads.

WHAT: Explicit state container owning offers, history logs and negotiation sessions
WHY: Every command must check its preconditions and commit against up-to-date state
HOW: Per-thread locks, copy-on-write records swapped in only after all checks pass
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from .config import settings
from ..models.offer import (
    OPEN_STATUSES,
    CounterMeta,
    CounterOfferResult,
    FlowState,
    HistoryEntry,
    HistoryEventType,
    NegotiationSession,
    Offer,
    OfferCreate,
    OfferStatus,
    OfferSummary,
    OfferTerms,
    OfferType,
    OfferView,
    generate_id,
)
from ..services.offer_rules import (
    can_accept_offer,
    can_counter_offer,
    can_reject_offer,
    counter_meta,
    is_offer_expired,
    normalize_status,
    status_color,
    status_label,
)
from ..utils.exceptions import (
    CannotAcceptError,
    CannotCounterError,
    CannotRejectError,
    CounterLimitReachedError,
    OfferNotFoundError,
    OfferValidationError,
    SessionAlreadyActiveError,
    SessionNotFoundError,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class NegotiationStore:
    """
    Manage offer threads, their audit trail and session bookkeeping.

    WHAT: Command/query surface for the negotiation protocol
    WHY: Bounded buyer/vendor negotiation with a hard cap on counter rounds
    HOW: Thread-keyed dicts guarded by per-thread RLocks plus a registry lock

    A negotiation thread is the initial offer plus all of its counter-offers.
    History and session are keyed by the thread id (the initial offer's id).
    Lock order is always thread lock, then registry lock.
    """

    def __init__(
        self,
        clock: Optional[Callable[[], datetime]] = None,
        offer_ttl_hours: Optional[float] = None,
        default_max_counters: Optional[int] = None,
    ):
        self._clock = clock or utc_now
        ttl_hours = settings.OFFER_TTL_HOURS if offer_ttl_hours is None else offer_ttl_hours
        self.offer_ttl = timedelta(hours=ttl_hours)
        self.default_max_counters = (
            settings.DEFAULT_MAX_VENDOR_COUNTERS if default_max_counters is None else default_max_counters
        )

        self.offers: Dict[str, Offer] = {}
        self.offer_history: Dict[str, List[HistoryEntry]] = {}
        self.negotiation_sessions: Dict[str, NegotiationSession] = {}
        self.active_offer_id: Optional[str] = None

        self._registry_lock = threading.RLock()
        self._thread_locks: Dict[str, threading.RLock] = {}

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def now(self) -> datetime:
        return _aware(self._clock())

    def _thread_lock(self, thread_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._thread_locks.get(thread_id)
            if lock is None:
                lock = threading.RLock()
                self._thread_locks[thread_id] = lock
            return lock

    def _thread_id_for(self, offer_id: str) -> Optional[str]:
        with self._registry_lock:
            offer = self.offers.get(offer_id)
            return offer.root_id if offer else None

    @staticmethod
    def _validate(model: Type[ModelT], data: Any) -> ModelT:
        """Validate command input, translating pydantic errors to OfferValidationError."""
        if isinstance(data, model):
            return data
        if isinstance(data, BaseModel):
            data = data.model_dump()
        try:
            return model.model_validate(data)
        except ValidationError as e:
            field_errors = [
                {
                    "field": ".".join(str(part) for part in error.get("loc", ())),
                    "message": error.get("msg"),
                }
                for error in e.errors()
            ]
            logger.warning(f"Rejected invalid offer terms: {field_errors}")
            raise OfferValidationError("Invalid offer terms", field_errors=field_errors) from e

    def _thread_settled(self, thread_id: str) -> bool:
        """A thread is settled once any of its records has been accepted."""
        with self._registry_lock:
            return any(
                offer.root_id == thread_id and offer.status == OfferStatus.ACCEPTED
                for offer in self.offers.values()
            )

    def _open_counter(self, offer: Offer, now: datetime) -> Optional[str]:
        """Id of a still-open counter-offer made against this record, if any."""
        with self._registry_lock:
            for counter_id in offer.counter_offers:
                counter = self.offers.get(counter_id)
                if (
                    counter is not None
                    and counter.status in OPEN_STATUSES
                    and not is_offer_expired(counter, now)
                ):
                    return counter_id
        return None

    def _open_failure(self, offer: Optional[Offer], now: datetime) -> Optional[str]:
        """Reason an offer cannot take accept/reject/counter, or None if it can."""
        if offer is None:
            return "offer not found"
        if is_offer_expired(offer, now):
            return "offer has expired"
        if offer.status not in OPEN_STATUSES:
            return f"offer is already {offer.status.value}"
        if self._thread_settled(offer.root_id):
            return "negotiation thread already settled"
        superseded_by = self._open_counter(offer, now)
        if superseded_by:
            return f"offer superseded by counter offer {superseded_by}"
        return None

    def _thread_counter_meta(self, offer: Offer) -> CounterMeta:
        """Counter usage for the whole thread; the cap applies per thread, not per role."""
        meta = counter_meta(offer)
        with self._registry_lock:
            thread_used = max(
                (o.counter_offer_count for o in self.offers.values() if o.root_id == offer.root_id),
                default=0,
            )
        used = max(meta.used, thread_used)
        return CounterMeta(max=meta.max, used=used, remaining=max(0, meta.max - used))

    def _append(self, thread_id: str, **fields: Any) -> HistoryEntry:
        entry = HistoryEntry(timestamp=self.now(), **fields)
        with self._registry_lock:
            self.offer_history.setdefault(thread_id, []).append(entry)
        return entry

    def _close_session(self, thread_id: str) -> Optional[NegotiationSession]:
        with self._registry_lock:
            session = self.negotiation_sessions.get(thread_id)
            if session is None or not session.is_active:
                return session
            now = self.now()
            closed = session.model_copy(update={"is_active": False, "ended_at": now})
            self.negotiation_sessions[thread_id] = closed
        logger.info(f"Closed negotiation session {closed.id} for thread {thread_id}")
        return closed

    # ------------------------------------------------------------------
    # Offer lifecycle commands
    # ------------------------------------------------------------------

    def create_offer(
        self,
        data: Union[OfferCreate, Mapping[str, Any]],
        actor_id: Optional[str] = None,
        actor_name: Optional[str] = None,
    ) -> Offer:
        """
        Create the initial offer of a new negotiation thread.

        Args:
            data: OfferCreate or mapping with unit_price, quantity and references
            actor_id: Creator id (falls back to data.created_by)
            actor_name: Creator display name for the history entry

        Returns:
            The stored pending Offer

        Raises:
            OfferValidationError: Non-positive price/quantity or discount out of range
        """
        payload = self._validate(OfferCreate, data)
        now = self.now()
        offer_id = generate_id("offer")
        creator = payload.created_by or actor_id

        offer = Offer(
            id=offer_id,
            status=OfferStatus.PENDING,
            type=OfferType.INITIAL,
            flow_state=FlowState.ACTIVE,
            **payload.model_dump(exclude={"created_by", "max_vendor_counters"}),
            created_by=creator,
            counter_offer_count=0,
            max_vendor_counters=(
                self.default_max_counters
                if payload.max_vendor_counters is None
                else payload.max_vendor_counters
            ),
            thread_id=offer_id,
            created_at=now,
            updated_at=now,
            expires_at=now + self.offer_ttl,
        )

        with self._thread_lock(offer_id):
            with self._registry_lock:
                self.offers[offer_id] = offer
                self.active_offer_id = offer_id
            self._append(
                offer_id,
                type=HistoryEventType.OFFER_CREATED,
                offer_id=offer_id,
                action_by=creator,
                action_by_name=actor_name,
                new_price=offer.unit_price,
                message=offer.message,
            )
            participants = [p for p in (creator, offer.vendor_id) if p]
            self.start_session(offer_id, participants)

        logger.info(
            f"Created offer {offer_id} ({offer.quantity} x {offer.unit_price:.2f}, "
            f"expires {offer.expires_at.isoformat()})"
        )
        return offer

    def accept_offer(self, offer_id: str, actor_id: str, actor_name: Optional[str] = None) -> Offer:
        """
        Accept an open offer and close its thread's session.

        Raises:
            CannotAcceptError: Offer missing, expired, settled or not pending/countered
        """
        thread_id = self._thread_id_for(offer_id)
        if thread_id is None:
            raise CannotAcceptError(offer_id, reason="offer not found")

        with self._thread_lock(thread_id):
            now = self.now()
            offer = self.offers.get(offer_id)
            reason = self._open_failure(offer, now)
            if reason:
                logger.warning(f"Accept refused for offer {offer_id}: {reason}")
                raise CannotAcceptError(offer_id, status=offer.status.value if offer else None, reason=reason)

            accepted = offer.model_copy(update={
                "status": OfferStatus.ACCEPTED,
                "flow_state": FlowState.COMPLETED,
                "accepted_at": now,
                "accepted_by": actor_id,
                "updated_at": now,
            })
            with self._registry_lock:
                self.offers[offer_id] = accepted
            self._append(
                thread_id,
                type=HistoryEventType.OFFER_ACCEPTED,
                offer_id=offer_id,
                action_by=actor_id,
                action_by_name=actor_name,
                new_status=OfferStatus.ACCEPTED.value,
            )
            self._close_session(thread_id)

        logger.info(f"Offer {offer_id} accepted by {actor_id} at {accepted.unit_price:.2f}")
        return accepted

    def reject_offer(
        self,
        offer_id: str,
        actor_id: str,
        reason: str = "",
        actor_name: Optional[str] = None,
    ) -> Offer:
        """
        Reject an open offer and close its thread's session.

        Raises:
            CannotRejectError: Offer missing, expired, settled or not pending/countered
        """
        thread_id = self._thread_id_for(offer_id)
        if thread_id is None:
            raise CannotRejectError(offer_id, reason="offer not found")

        with self._thread_lock(thread_id):
            now = self.now()
            offer = self.offers.get(offer_id)
            failure = self._open_failure(offer, now)
            if failure:
                logger.warning(f"Reject refused for offer {offer_id}: {failure}")
                raise CannotRejectError(offer_id, status=offer.status.value if offer else None, reason=failure)

            rejected = offer.model_copy(update={
                "status": OfferStatus.REJECTED,
                "flow_state": FlowState.COMPLETED,
                "rejected_at": now,
                "rejected_by": actor_id,
                "rejection_reason": str(reason) if reason is not None else "",
                "updated_at": now,
            })
            with self._registry_lock:
                self.offers[offer_id] = rejected
            self._append(
                thread_id,
                type=HistoryEventType.OFFER_REJECTED,
                offer_id=offer_id,
                action_by=actor_id,
                action_by_name=actor_name,
                new_status=OfferStatus.REJECTED.value,
                reason=rejected.rejection_reason,
            )
            self._close_session(thread_id)

        logger.info(f"Offer {offer_id} rejected by {actor_id}")
        return rejected

    def create_counter_offer(
        self,
        original_offer_id: str,
        counter_terms: Union[OfferTerms, Mapping[str, Any]],
        actor_id: str,
        actor_name: Optional[str] = None,
    ) -> CounterOfferResult:
        """
        Counter an open offer, consuming one round of the thread's strike limit.

        The countered record and the new counter record are committed together;
        no reader observes one updated without the other.

        Raises:
            OfferNotFoundError: Unknown original offer
            OfferValidationError: Invalid counter terms
            CannotCounterError: Original offer expired, settled or terminal
            CounterLimitReachedError: Thread already used all counter rounds
        """
        thread_id = self._thread_id_for(original_offer_id)
        if thread_id is None:
            raise OfferNotFoundError(original_offer_id)
        terms = self._validate(OfferTerms, counter_terms)

        with self._thread_lock(thread_id):
            now = self.now()
            original = self.offers.get(original_offer_id)
            if original is None:
                raise OfferNotFoundError(original_offer_id)

            failure = self._open_failure(original, now)
            if failure:
                logger.warning(f"Counter refused for offer {original_offer_id}: {failure}")
                raise CannotCounterError(original_offer_id, status=original.status.value, reason=failure)

            meta = self._thread_counter_meta(original)
            if meta.remaining <= 0:
                logger.warning(
                    f"Counter limit reached for offer {original_offer_id} "
                    f"({meta.used}/{meta.max} used)"
                )
                raise CounterLimitReachedError(original_offer_id, meta.max, meta.used, 0)

            new_count = meta.used + 1
            counter = Offer(
                id=generate_id("counter"),
                status=OfferStatus.PENDING,
                type=OfferType.COUNTER,
                flow_state=FlowState.NEGOTIATING,
                **terms.model_dump(include=set(OfferTerms.model_fields)),
                product=original.product,
                vendor_id=original.vendor_id,
                vendor_name=original.vendor_name,
                chat_id=original.chat_id,
                created_by=actor_id,
                counter_offer_count=new_count,
                max_vendor_counters=meta.max,
                thread_id=thread_id,
                original_offer_id=original.id,
                parent_offer_id=original.id,
                created_at=now,
                updated_at=now,
                expires_at=now + self.offer_ttl,
            )
            countered = original.model_copy(update={
                "status": OfferStatus.COUNTERED,
                "flow_state": FlowState.NEGOTIATING,
                "counter_offer_count": new_count,
                "vendor_counter_count": None if original.vendor_counter_count is None else new_count,
                "counter_offers": [*original.counter_offers, counter.id],
                "updated_at": now,
            })

            with self._registry_lock:
                root = self.offers.get(thread_id)
                if root is not None and root.id != original.id:
                    self.offers[thread_id] = root.model_copy(update={
                        "counter_offer_count": new_count,
                        "vendor_counter_count": None if root.vendor_counter_count is None else new_count,
                        "updated_at": now,
                    })
                self.offers[original.id] = countered
                self.offers[counter.id] = counter
                self.active_offer_id = counter.id

            self._append(
                thread_id,
                type=HistoryEventType.COUNTER_OFFER_CREATED,
                offer_id=original.id,
                counter_offer_id=counter.id,
                action_by=actor_id,
                action_by_name=actor_name,
                previous_price=original.unit_price,
                new_price=counter.unit_price,
                message=terms.message or f"Created counter offer for {counter.unit_price:.2f}",
            )

            session = self.negotiation_sessions.get(thread_id)
            if session is None or not session.is_active:
                session = self.start_session(thread_id, [p for p in (original.created_by, actor_id) if p])
            participants = session.participants if actor_id in session.participants else [*session.participants, actor_id]
            self.touch_session(thread_id, {
                "message_count": session.message_count + 1,
                "last_counter_offer_at": now,
                "participants": participants,
            })

        logger.info(
            f"Counter offer {counter.id} on {original.id} "
            f"({original.unit_price:.2f} -> {counter.unit_price:.2f}, round {new_count}/{meta.max})"
        )
        return CounterOfferResult(original_offer=countered, counter_offer=counter)

    def expire_offers(self) -> List[Offer]:
        """
        Expire every pending offer whose validity window has passed.

        Idempotent: offers already expired are never transitioned twice.

        Returns:
            Offers expired by this call
        """
        now = self.now()
        with self._registry_lock:
            candidates = [
                (offer.id, offer.root_id)
                for offer in self.offers.values()
                if offer.status == OfferStatus.PENDING
                and offer.expires_at is not None
                and _aware(offer.expires_at) <= now
            ]

        expired: List[Offer] = []
        for offer_id, thread_id in candidates:
            with self._thread_lock(thread_id):
                offer = self.offers.get(offer_id)
                # Re-check: a concurrent accept/reject/counter may have won
                if offer is None or offer.status != OfferStatus.PENDING:
                    continue
                updated = offer.model_copy(update={
                    "status": OfferStatus.EXPIRED,
                    "flow_state": FlowState.EXPIRED,
                    "is_expired": True,
                    "expired_at": now,
                    "updated_at": now,
                })
                # Status and its history entry land together for stream readers
                with self._registry_lock:
                    self.offers[offer_id] = updated
                    self._append(
                        thread_id,
                        type=HistoryEventType.OFFER_EXPIRED,
                        offer_id=offer_id,
                        new_status=OfferStatus.EXPIRED.value,
                    )
                expired.append(updated)

        if expired:
            logger.info(f"Expired {len(expired)} offers: {[o.id for o in expired]}")
        return expired

    def load_offer(self, data: Union[Offer, Mapping[str, Any]]) -> Offer:
        """
        Insert or replace a server-confirmed offer record.

        Used when the store mirrors state confirmed by the remote backend.
        """
        offer = self._validate(Offer, data)
        if offer.thread_id is None:
            offer = offer.model_copy(update={"thread_id": offer.original_offer_id or offer.id})
        with self._thread_lock(offer.root_id):
            with self._registry_lock:
                self.offers[offer.id] = offer
        logger.debug(f"Loaded offer {offer.id} (status={offer.status.value})")
        return offer

    def clear_all_offers(self) -> None:
        """Drop all offers, history, sessions and per-thread locks."""
        with self._registry_lock:
            self.offers.clear()
            self.offer_history.clear()
            self.negotiation_sessions.clear()
            self._thread_locks.clear()
            self.active_offer_id = None
        logger.info("Cleared all offers")

    # ------------------------------------------------------------------
    # History & session bookkeeping
    # ------------------------------------------------------------------

    def append_history(self, thread_id: str, entry: Union[HistoryEntry, Mapping[str, Any]]) -> HistoryEntry:
        """Append an entry, stamped with the current time, to a thread's log."""
        if isinstance(entry, HistoryEntry):
            fields = entry.model_dump(exclude={"timestamp"})
        else:
            fields = {k: v for k, v in dict(entry).items() if k != "timestamp"}
        with self._thread_lock(thread_id):
            try:
                return self._append(thread_id, **fields)
            except ValidationError as e:
                raise OfferValidationError(
                    "Invalid history entry",
                    field_errors=[{"field": ".".join(map(str, err["loc"])), "message": err["msg"]} for err in e.errors()],
                ) from e

    def start_session(self, thread_id: str, participants: Iterable[str]) -> NegotiationSession:
        """
        Start the negotiation session for a thread.

        Raises:
            SessionAlreadyActiveError: An active session already exists
        """
        with self._thread_lock(thread_id):
            existing = self.negotiation_sessions.get(thread_id)
            if existing is not None and existing.is_active:
                raise SessionAlreadyActiveError(thread_id)
            now = self.now()
            session = NegotiationSession(
                offer_id=thread_id,
                participants=list(dict.fromkeys(participants)),
                started_at=now,
                last_activity=now,
            )
            with self._registry_lock:
                self.negotiation_sessions[thread_id] = session
        logger.debug(f"Started negotiation session {session.id} for thread {thread_id}")
        return session

    def touch_session(self, thread_id: str, updates: Optional[Mapping[str, Any]] = None) -> NegotiationSession:
        """
        Merge updates into a session and refresh its last activity.

        Raises:
            SessionNotFoundError: No session for this thread
        """
        with self._thread_lock(thread_id):
            session = self.negotiation_sessions.get(thread_id)
            if session is None:
                raise SessionNotFoundError(thread_id)
            merged = {**session.model_dump(), **dict(updates or {}), "last_activity": self.now()}
            try:
                updated = NegotiationSession.model_validate(merged)
            except ValidationError as e:
                raise OfferValidationError(
                    "Invalid session update",
                    field_errors=[{"field": ".".join(map(str, err["loc"])), "message": err["msg"]} for err in e.errors()],
                ) from e
            with self._registry_lock:
                self.negotiation_sessions[thread_id] = updated
        return updated

    def close_session(self, thread_id: str) -> Optional[NegotiationSession]:
        """Mark a thread's session inactive; no-op if missing or already closed."""
        with self._thread_lock(thread_id):
            return self._close_session(thread_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_offer(self, offer_id: str) -> Optional[Offer]:
        with self._registry_lock:
            return self.offers.get(offer_id)

    def require_offer(self, offer_id: str) -> Offer:
        offer = self.get_offer(offer_id)
        if offer is None:
            raise OfferNotFoundError(offer_id)
        return offer

    def list_offers(
        self,
        status: Optional[str] = None,
        offer_type: Optional[str] = None,
        chat_id: Optional[str] = None,
        vendor_id: Optional[str] = None,
    ) -> List[Offer]:
        """Offers matching all given filters, oldest first."""
        wanted_status = None
        if status and status != "all":
            wanted_status = normalize_status(status)
            if wanted_status is None:
                return []
        with self._registry_lock:
            offers = list(self.offers.values())
        return [
            offer for offer in offers
            if (wanted_status is None or offer.status == wanted_status)
            and (not offer_type or offer_type == "all" or offer.type.value == offer_type)
            and (chat_id is None or offer.chat_id == chat_id)
            and (vendor_id is None or offer.vendor_id == vendor_id)
        ]

    def thread_offers(self, thread_id: str) -> List[Offer]:
        with self._registry_lock:
            return [offer for offer in self.offers.values() if offer.root_id == thread_id]

    def get_history(self, thread_id: str) -> List[HistoryEntry]:
        with self._registry_lock:
            return list(self.offer_history.get(thread_id, []))

    def get_session(self, thread_id: str) -> Optional[NegotiationSession]:
        with self._registry_lock:
            return self.negotiation_sessions.get(thread_id)

    def active_offer(self) -> Optional[Offer]:
        with self._registry_lock:
            return self.offers.get(self.active_offer_id) if self.active_offer_id else None

    def set_active_offer(self, offer_id: Optional[str]) -> None:
        if offer_id is not None:
            self.require_offer(offer_id)
        with self._registry_lock:
            self.active_offer_id = offer_id

    def offer_view(self, offer_id: str) -> OfferView:
        """
        Build the derived read model for one offer.

        Runs the expiry sweep first so status and permissions are current.
        """
        self.expire_offers()
        offer = self.require_offer(offer_id)
        now = self.now()
        thread_id = offer.root_id
        with self._registry_lock:
            settled = self._thread_settled(thread_id) and offer.status != OfferStatus.ACCEPTED
            superseded = self._open_counter(offer, now) is not None
            meta = self._thread_counter_meta(offer)
            history = list(self.offer_history.get(thread_id, []))
            session = self.negotiation_sessions.get(thread_id)

        open_ = not settled and not superseded
        return OfferView(
            offer=offer,
            status=offer.status,
            flow_state=offer.flow_state,
            status_label=status_label(offer.status),
            status_color=status_color(offer.status),
            counter_meta=meta,
            can_accept=open_ and can_accept_offer(offer, now),
            can_counter=open_ and can_counter_offer(offer, now) and meta.remaining > 0,
            can_reject=open_ and can_reject_offer(offer, now),
            history_entries=history,
            session=session,
        )

    def summary(self) -> OfferSummary:
        """Counts per status and accepted value across the store."""
        self.expire_offers()
        with self._registry_lock:
            offers = list(self.offers.values())
            active_threads = sum(1 for s in self.negotiation_sessions.values() if s.is_active)

        by_status: Dict[str, int] = {status.value: 0 for status in OfferStatus}
        for offer in offers:
            by_status[offer.status.value] += 1
        accepted_value = sum(o.total_value for o in offers if o.status == OfferStatus.ACCEPTED)

        return OfferSummary(
            total_offers=len(offers),
            by_status=by_status,
            active_threads=active_threads,
            accepted_value=round(accepted_value, 2),
        )
