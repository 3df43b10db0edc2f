"""
For-You Feed Service.

Orchestrates one personalized feed page:

1. Flush pending events and load the visitor's profile
2. Resolve collection handles for the visitor's gender
3. In parallel: walk the collections (round-robin, resumable cursor) and
   look up products the visitor recently engaged with (profile backfill).
   If the walk yields nothing, fall back to the newest products.
4. Merge, de-duplicate by id, filter by gender pool
5. On a refresh of page 0, hide recently served handles when enough fresh
   candidates remain
6. Rank: cold-start ordering for profiles with no signal, otherwise the
   personalized ranker with an exploration ratio that grows with depth
7. Put the served handles on cooldown and persist the profile

Ranking failures degrade to cold-start ordering; storage failures are logged
and never fail the page.
"""

import time
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from config.settings import Settings, get_settings
from core.logging import LoggerMixin
from core.telemetry import NoOpTelemetry, Telemetry
from core.utils import clamp, date_key, normalize_key, unique_first, utc_now
from foryou.candidate_factory import normalize_candidates
from foryou.cursors import decode_page_depth
from foryou.errors import StorageError
from foryou.feed_ranker import (
    FeedRankingConfig,
    rank_cold_start_candidates,
    rank_feed_candidates,
)
from foryou.models import Candidate, FeedPage, Gender, RankedCandidate
from foryou.profile import (
    Profile,
    apply_served_cooldown,
    create_empty_profile,
    is_cold_start,
    normalize_gender,
    normalize_profile,
    profile_hash,
    prune_profile,
)
from foryou.retrieval import fetch_products_by_handle, profile_seed_handles, run_isolated
from foryou.sources import CandidateSource, CollectionWalkResult, walk_collections
from foryou.storage import Identity, ProfileStorage
from foryou.tracking import EventTracker


GENDER_COLLECTION_HANDLES: Dict[Gender, List[str]] = {
    Gender.MALE: ["men-1", "men"],
    Gender.FEMALE: ["women-1", "women"],
    Gender.UNKNOWN: ["men-1", "men", "women-1", "women"],
}
FALLBACK_COLLECTION_HANDLES = ["new-arrivals", "new-in", "all", "all-products"]

MEN_TAG = "men"
WOMEN_TAG = "women"

COLLECTION_PER_PAGE = 40
FEED_BACKFILL_HANDLES = 16

# Exploration share by page depth; deeper pages use the last value
EXPLORATION_BY_DEPTH = (0.08, 0.14, 0.2, 0.27, 0.34, 0.42)

NOVELTY_BLOCK_BASE = 24
NOVELTY_BLOCK_STEP = 10
NOVELTY_BLOCK_MAX = 120
NOVELTY_MIN_FRESH = 12
NOVELTY_MAX_FRESH = 36


# =============================================================================
# Pure helpers
# =============================================================================

def exploration_ratio(page_depth: int) -> float:
    return EXPLORATION_BY_DEPTH[min(max(0, page_depth), len(EXPLORATION_BY_DEPTH) - 1)]


def _tag_set(candidate: Candidate) -> set:
    return {normalize_key(str(tag)) for tag in candidate.tags or []}


def matches_gender_pool(candidate: Candidate, gender: Gender) -> bool:
    """Strict pool: own gender tag present and the opposite one absent."""
    if gender == Gender.UNKNOWN:
        return True
    tags = _tag_set(candidate)
    has_men, has_women = MEN_TAG in tags, WOMEN_TAG in tags
    if gender == Gender.MALE:
        return has_men and not has_women
    return has_women and not has_men


def matches_gender_pool_loose(candidate: Candidate, gender: Gender) -> bool:
    """Loose pool: only the opposite gender tag excludes."""
    if gender == Gender.UNKNOWN:
        return True
    tags = _tag_set(candidate)
    return WOMEN_TAG not in tags if gender == Gender.MALE else MEN_TAG not in tags


def filter_gender_pool(candidates: List[Candidate], gender: Gender) -> List[Candidate]:
    if gender == Gender.UNKNOWN:
        return candidates
    strict = [candidate for candidate in candidates if matches_gender_pool(candidate, gender)]
    if strict:
        return strict
    return [candidate for candidate in candidates if matches_gender_pool_loose(candidate, gender)]


def dedupe_by_id(candidates: Iterable[Candidate]) -> List[Candidate]:
    seen = set()
    out = []
    for candidate in candidates:
        key = str(candidate.id).strip()
        if not key or key in seen:
            continue
        seen.add(key)
        out.append(candidate)
    return out


def apply_refresh_novelty_window(
    candidates: List[Candidate],
    profile: Profile,
    page_depth: int,
    refresh_round: int,
    page_size: int,
) -> List[Candidate]:
    """
    On a refresh of page 0, drop the most recently served handles, as long
    as enough fresh candidates remain to fill a page.
    """
    if page_depth != 0 or refresh_round <= 0:
        return candidates

    block_count = min(NOVELTY_BLOCK_MAX, NOVELTY_BLOCK_BASE + refresh_round * NOVELTY_BLOCK_STEP)
    blocked = {key for key in (normalize_key(h) for h in profile.recently_served_handles[:block_count]) if key}
    fresh = [candidate for candidate in candidates if normalize_key(candidate.handle) not in blocked]

    if len(fresh) >= max(NOVELTY_MIN_FRESH, min(NOVELTY_MAX_FRESH, page_size)):
        return fresh
    return candidates


# =============================================================================
# Service
# =============================================================================

class ForYouService(LoggerMixin):
    """
    Personalized feed orchestrator plus profile management.

    Args:
        storage: Profile store
        source: Catalog collaborator
        settings: Page sizes, timeouts and ranking knobs (defaults to get_settings())
        telemetry: Observation sink (defaults to NoOpTelemetry)
        tracker: Event buffer flushed before each page, if given
        clock: Returns "now"; injectable for deterministic tests
    """

    def __init__(
        self,
        storage: ProfileStorage,
        source: CandidateSource,
        settings: Optional[Settings] = None,
        telemetry: Optional[Telemetry] = None,
        tracker: Optional[EventTracker] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.source = source
        self.settings = settings or get_settings()
        self.telemetry = telemetry or NoOpTelemetry()
        self.tracker = tracker
        self.clock = clock
        self.ranking_config = FeedRankingConfig(
            top_window=self.settings.feed_top_window,
            top_vendor_cap=self.settings.feed_top_vendor_cap,
            half_life_days=self.settings.half_life_days,
        )

    # =========================================================
    # Profile management
    # =========================================================

    def get_profile(self, identity: Identity) -> Profile:
        """Stored profile, or an empty one when missing or unreadable."""
        now = self.clock()
        try:
            stored = self.storage.get_profile(identity)
        except StorageError as e:
            self.logger.warning("Profile read failed, using empty profile", scope=identity.scope, error=str(e))
            stored = None
        return normalize_profile(stored, now) if stored else create_empty_profile(now)

    def save_profile(self, identity: Identity, profile: Profile) -> Profile:
        """
        Prune and compact, then persist.

        Raises:
            StorageError: when the store rejects the write
        """
        now = self.clock()
        pruned = prune_profile(normalize_profile(profile, now), now, self.settings.profile_max_bytes)
        self.storage.set_profile(identity, pruned)
        return pruned

    def reset_profile(self, identity: Identity) -> None:
        self.storage.reset_profile(identity)

    def get_gender(self, identity: Identity) -> Gender:
        return self.get_profile(identity).gender

    def set_gender(self, identity: Identity, gender: Any) -> Profile:
        profile = self.get_profile(identity)
        profile.gender = normalize_gender(gender)
        profile.updated_at = self.clock()
        return self.save_profile(identity, profile)

    def ensure_profile_on_login(
        self,
        identity: Identity,
        guest_identity: Optional[Identity] = None,
    ) -> Profile:
        """
        Reconcile the guest profile with a customer's profile at sign-in.

        The customer's profile wins, except that an unknown gender is taken
        from the guest. Persisted when the customer had no stored profile or
        the gender changed.
        """
        guest_identity = guest_identity or Identity.guest()
        now = self.clock()

        try:
            stored = self.storage.get_profile(identity)
        except StorageError as e:
            self.logger.warning("Profile read failed during login merge", error=str(e))
            stored = None
        try:
            guest_stored = self.storage.get_profile(guest_identity)
        except StorageError as e:
            self.logger.warning("Guest profile read failed during login merge", error=str(e))
            guest_stored = None

        current = normalize_profile(stored, now) if stored else create_empty_profile(now)
        guest = normalize_profile(guest_stored, now) if guest_stored else None

        merged = current.copy()
        if current.gender == Gender.UNKNOWN and guest is not None:
            merged.gender = guest.gender
        merged.updated_at = now

        if identity.is_customer and (stored is None or merged.gender != current.gender):
            try:
                return self.save_profile(identity, merged)
            except StorageError as e:
                self.logger.warning("Persisting merged profile failed", scope=identity.scope, error=str(e))
                return merged
        return current

    @staticmethod
    def resolve_collection_handles(gender: Gender, extra_handles: Iterable[str] = ()) -> List[str]:
        """Gender collections, then any extra handles, then the catch-all fallbacks."""
        extras = [handle.strip() for handle in extra_handles if isinstance(handle, str)]
        return unique_first([*GENDER_COLLECTION_HANDLES[gender], *extras, *FALLBACK_COLLECTION_HANDLES])

    # =========================================================
    # Feed
    # =========================================================

    def _flush_pending(self, identity: Identity) -> None:
        if self.tracker is None:
            return
        try:
            self.tracker.flush(identity, self.clock())
        except StorageError as e:
            self.logger.warning("Event flush failed", scope=identity.scope, error=str(e))
        except Exception as e:
            # Pending events must never fail the page
            self.logger.exception("Event flush crashed", scope=identity.scope, error=str(e))

    def _retrieve(
        self,
        profile: Profile,
        handles: List[str],
        pool_size: int,
        cursor: Optional[str],
    ) -> Dict[str, Any]:
        settings = self.settings
        results = run_isolated(
            {
                "collections": lambda: walk_collections(
                    self.source, handles, pool_size, COLLECTION_PER_PAGE, cursor
                ),
                "profile": lambda: fetch_products_by_handle(
                    self.source,
                    profile_seed_handles(profile, FEED_BACKFILL_HANDLES),
                    timeout=settings.source_timeout_seconds,
                    max_workers=settings.fanout_max_workers,
                    telemetry=self.telemetry,
                ),
            },
            timeout=settings.source_timeout_seconds,
            max_workers=settings.fanout_max_workers,
            telemetry=self.telemetry,
        )

        walk: CollectionWalkResult = results["collections"] or CollectionWalkResult()
        collection_items = normalize_candidates(walk.items)
        used_fallback = False
        if not collection_items:
            newest = run_isolated(
                {"newest": lambda: self.source.newest_products(pool_size)},
                timeout=settings.source_timeout_seconds,
                telemetry=self.telemetry,
            )["newest"]
            collection_items = normalize_candidates(newest.items) if newest else []
            used_fallback = True

        return {
            "walk": walk,
            "collection_items": collection_items,
            "profile_items": results["profile"] or [],
            "used_fallback": used_fallback,
        }

    def _rank(
        self,
        profile: Profile,
        candidates: List[Candidate],
        page_size: int,
        page_depth: int,
        day_refresh_key: str,
        now: datetime,
    ) -> List[RankedCandidate]:
        cold_limit = int(clamp(page_size, 10, 80))
        cold_seed = f"{profile.updated_at_iso}|{day_refresh_key}"

        if is_cold_start(profile, now, self.settings.half_life_days):
            return rank_cold_start_candidates(candidates, now, cold_limit, cold_seed)

        try:
            return rank_feed_candidates(
                profile,
                candidates,
                now=now,
                limit=int(clamp(page_size * 3, 60, 200)),
                date_key=day_refresh_key,
                exploration_ratio=exploration_ratio(page_depth),
                page_depth=page_depth,
                config=self.ranking_config,
                telemetry=self.telemetry,
            )
        except Exception:
            self.logger.error("Feed ranking failed, using cold-start ordering", exc_info=True)
            self.telemetry.increment("feed.rank.degraded")
            return rank_cold_start_candidates(candidates, now, cold_limit, cold_seed)

    def get_feed_page(
        self,
        identity: Identity,
        page_size: Optional[int] = None,
        cursor: Optional[str] = None,
        pool_size: Optional[int] = None,
        refresh_key: int = 0,
        include_debug: bool = False,
        extra_handles: Iterable[str] = (),
    ) -> FeedPage:
        """
        Build one personalized feed page.

        Args:
            identity: Visitor identity (guest or customer)
            page_size: Requested page size (default from settings)
            cursor: Opaque cursor from the previous page
            pool_size: Candidate pool target for the collection walk
            refresh_key: Pull-to-refresh round (0 = none)
            include_debug: Attach a debug payload (only when settings.debug)
            extra_handles: Additional collection handles to walk

        Returns:
            FeedPage with items, next cursor, profile hash and gender
        """
        started = time.perf_counter()
        page_size = page_size or self.settings.feed_page_size
        pool_size = pool_size or self.settings.feed_pool_size
        refresh_round = max(0, refresh_key)

        self._flush_pending(identity)
        now = self.clock()
        profile = self.get_profile(identity)
        gender = profile.gender
        handles = self.resolve_collection_handles(gender, extra_handles)
        page_depth = decode_page_depth(cursor)

        retrieved = self._retrieve(profile, handles, pool_size, cursor)
        merged = normalize_candidates([*retrieved["profile_items"], *retrieved["collection_items"]])
        candidates = filter_gender_pool(dedupe_by_id(merged), gender)
        rank_input = apply_refresh_novelty_window(candidates, profile, page_depth, refresh_round, page_size)

        day_refresh_key = f"{date_key(now)}|{refresh_round}"
        ranked = self._rank(profile, rank_input, page_size, page_depth, day_refresh_key, now)

        cooled = apply_served_cooldown(profile, [item.handle for item in ranked], now)
        try:
            cooled = self.save_profile(identity, cooled)
        except StorageError as e:
            self.logger.warning("Persisting served cooldown failed", scope=identity.scope, error=str(e))

        elapsed_ms = (time.perf_counter() - started) * 1000
        self.telemetry.timing("feed.page", elapsed_ms)
        self.logger.info(
            "Feed page served",
            scope=identity.scope,
            gender=gender.value,
            page_depth=page_depth,
            candidates=len(candidates),
            items=len(ranked),
            cold_start=is_cold_start(profile, now, self.settings.half_life_days),
            used_fallback=retrieved["used_fallback"],
            elapsed_ms=round(elapsed_ms, 1),
        )

        debug = None
        if include_debug and self.settings.debug:
            debug = {
                "candidate_count": len(candidates),
                "handle_count": len(handles),
                "page_depth": page_depth,
                "exploration_ratio": exploration_ratio(page_depth),
                "used_fallback": retrieved["used_fallback"],
            }

        return FeedPage(
            items=[item.candidate for item in ranked],
            next_cursor=retrieved["walk"].next_cursor,
            profile_hash=profile_hash(cooled),
            gender=gender,
            debug=debug,
        )
