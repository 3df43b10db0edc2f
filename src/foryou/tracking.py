"""
Event tracking.

Buffers behavioral events per identity and folds them into the stored
profile on flush, in one read-modify-write. There are no timers: the
orchestrators flush before ranking, and callers may flush explicitly.
"""

from collections import defaultdict
from datetime import datetime
from threading import Lock
from typing import Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from core.logging import get_logger
from core.utils import to_iso, utc_now
from foryou.errors import StorageError
from foryou.models import ForYouEvent
from foryou.profile import Profile, apply_event, create_empty_profile, normalize_profile, prune_profile
from foryou.storage import Identity, ProfileStorage


logger = get_logger(__name__)


class EventTracker:
    """
    Per-identity event buffer in front of a ProfileStorage.

    Usage:
        tracker = EventTracker(storage)
        tracker.track(identity, ForYouEvent(type="add_to_cart", handle="red-hoodie"))
        tracker.flush(identity)
    """

    def __init__(self, storage: ProfileStorage):
        self._storage = storage
        self._pending: Dict[str, List[ForYouEvent]] = defaultdict(list)
        self._lock = Lock()

    def track(
        self,
        identity: Identity,
        event: Union[ForYouEvent, Mapping],
        now: Optional[datetime] = None,
    ) -> bool:
        """Buffer one event, stamping it with the current time if unset."""
        if not isinstance(event, ForYouEvent):
            try:
                event = ForYouEvent.model_validate(event)
            except ValidationError as e:
                logger.debug("Ignoring malformed event", error=str(e))
                return False
        if not event.at:
            event = event.model_copy(update={"at": to_iso(now or utc_now())})

        with self._lock:
            self._pending[identity.scope].append(event)
        return True

    def pending(self, identity: Identity) -> int:
        with self._lock:
            return len(self._pending.get(identity.scope, []))

    def flush(self, identity: Identity, now: Optional[datetime] = None) -> Optional[Profile]:
        """
        Apply all pending events for `identity` in order and persist once.

        Returns the saved profile, or None when nothing was pending. An event
        that cannot be applied is dropped and logged; it is never retried.

        Raises:
            StorageError: when the store cannot be read or written; the
                drained events are put back so a later flush can retry
        """
        with self._lock:
            events = self._pending.pop(identity.scope, [])
        if not events:
            return None

        now = now or utc_now()
        try:
            stored = self._storage.get_profile(identity)
        except StorageError:
            self._requeue(identity, events)
            raise

        profile = normalize_profile(stored, now) if stored else create_empty_profile(now)
        dropped = 0
        for event in events:
            try:
                profile = apply_event(profile, event)
            except (ValueError, TypeError, OverflowError) as e:
                dropped += 1
                logger.warning("Dropping unusable event", scope=identity.scope, type=event.type, error=str(e))
        profile = prune_profile(profile, now)

        try:
            self._storage.set_profile(identity, profile)
        except StorageError:
            self._requeue(identity, events)
            raise

        logger.debug("Flushed for-you events", scope=identity.scope, events=len(events), dropped=dropped)
        return profile

    def _requeue(self, identity: Identity, events: List[ForYouEvent]) -> None:
        with self._lock:
            self._pending[identity.scope][:0] = events

    def discard(self, identity: Identity) -> int:
        """Drop pending events for one identity; returns how many were dropped."""
        with self._lock:
            return len(self._pending.pop(identity.scope, []))

    def clear(self) -> None:
        with self._lock:
            self._pending.clear()
