"""
Scrape Event Bus.

Session-scoped publish/subscribe used to stream scrape progress to whoever is
watching. A scrape attempt emits events keyed by the client-generated
`session_id`; the SSE endpoint subscribes a listener under the same key and
relays what it receives.

Delivery rules:
- Events are delivered synchronously, in emission order, to the listeners
  registered at the moment of `emit`. Nothing is buffered: events emitted
  before a subscription, or for a session nobody listens to, are dropped.
- A failing listener is logged and skipped; it never affects other listeners
  or the emitter.
- Every registration expires after `LISTENER_TTL_SECONDS` even if the client
  never unsubscribes, so leaked listeners cannot accumulate.

The session map is shared by every concurrent scrape and stream, and expiry
timers may fire from another thread, so all mutation happens under a lock and
delivery iterates over a snapshot.
"""

import asyncio
import logging
import threading
from typing import Callable, Dict, Optional, Set, Tuple, Any
from core.models import ScrapeEvent, ScrapeEventData, ScrapeEventType, utcnow

logger = logging.getLogger(__name__)

LISTENER_TTL_SECONDS = 60 * 60

Listener = Callable[[ScrapeEvent], None]


class ScrapeEventBus:
    """In-memory map of session_id -> listeners"""

    def __init__(self, listener_ttl: float = LISTENER_TTL_SECONDS):
        self.listener_ttl = listener_ttl
        self._listeners: Dict[str, Set[Listener]] = {}
        # Pending expiry handles, keyed by (session_id, listener)
        self._expiry: Dict[Tuple[str, Listener], Any] = {}
        self._lock = threading.Lock()

    def subscribe(self, session_id: str, listener: Listener) -> None:
        """Register a listener for a session and schedule its expiry"""
        with self._lock:
            self._listeners.setdefault(session_id, set()).add(listener)
            previous = self._expiry.pop((session_id, listener), None)
            self._expiry[(session_id, listener)] = self._schedule_expiry(
                session_id, listener
            )

        if previous is not None:
            previous.cancel()

        logger.debug(f"Listener subscribed for session {session_id}")

    def unsubscribe(self, session_id: str, listener: Listener) -> None:
        """Remove a listener; drop the session entry once it has none left"""
        with self._lock:
            handle = self._expiry.pop((session_id, listener), None)
            session_listeners = self._listeners.get(session_id)
            if session_listeners is not None:
                session_listeners.discard(listener)
                if not session_listeners:
                    del self._listeners[session_id]

        if handle is not None:
            handle.cancel()

        logger.debug(f"Listener unsubscribed for session {session_id}")

    def emit(
        self,
        session_id: str,
        event_type: ScrapeEventType,
        message: str,
        data: Optional[ScrapeEventData] = None,
    ) -> Optional[ScrapeEvent]:
        """
        Stamp and deliver an event to the session's current listeners.

        Returns:
            The delivered event, or None if nobody was listening.
        """
        with self._lock:
            listeners = list(self._listeners.get(session_id, ()))

        if not listeners:
            return None

        event = ScrapeEvent(
            type=event_type,
            message=message,
            timestamp=utcnow().isoformat().replace("+00:00", "Z"),
            data=data,
        )

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Error in scrape event listener for {session_id}: {e}")

        return event

    def has_listeners(self, session_id: str) -> bool:
        with self._lock:
            return bool(self._listeners.get(session_id))

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "active_sessions": len(self._listeners),
                "active_listeners": sum(len(s) for s in self._listeners.values()),
            }

    def _schedule_expiry(self, session_id: str, listener: Listener):
        def expire():
            logger.info(f"Expiring stale listener for session {session_id}")
            self.unsubscribe(session_id, listener)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            timer = threading.Timer(self.listener_ttl, expire)
            timer.daemon = True
            timer.start()
            return timer

        return loop.call_later(self.listener_ttl, expire)


scrape_events = ScrapeEventBus()
