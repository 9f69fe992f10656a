"""
Periodic expiry sweep.

WHAT: Background timer that expires stale pending offers
WHY: Offers must flip to expired even when nobody reads them
HOW: Self-rescheduling daemon threading.Timer calling store.expire_offers()
"""

import threading
from typing import List, Optional

from .config import settings
from .negotiation_store import NegotiationStore
from ..models.offer import Offer
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ExpirySweeper:
    """Run NegotiationStore.expire_offers() on a fixed interval."""

    def __init__(self, store: NegotiationStore, interval_seconds: Optional[float] = None):
        self.store = store
        self.interval_seconds = (
            settings.EXPIRY_SWEEP_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
        )
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def run_once(self) -> List[Offer]:
        """Sweep now and return the offers that just expired."""
        expired = self.store.expire_offers()
        if expired:
            logger.info(f"Expiry sweep expired {len(expired)} offers")
        else:
            logger.debug("Expiry sweep found nothing to expire")
        return expired

    def _schedule(self):
        self._timer = threading.Timer(self.interval_seconds, self._tick)
        self._timer.daemon = True
        self._timer.start()

    def _tick(self):
        try:
            self.run_once()
        except Exception as e:
            logger.error(f"Expiry sweep failed: {e}", exc_info=True)
        finally:
            with self._lock:
                if self._running:
                    self._schedule()

    def start(self):
        """Start the periodic sweep (no-op if already running)."""
        with self._lock:
            if self._running:
                return
            self._running = True
            self._schedule()
        logger.info(f"Started expiry sweeper (interval: {self.interval_seconds}s)")

    def stop(self):
        """Cancel the pending timer; an in-flight sweep finishes normally."""
        with self._lock:
            self._running = False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        logger.info("Stopped expiry sweeper")
