"""
Similar-product reel service.

Given a seed product, assembles a page of related products from four
sources fetched in parallel (related-product recommendations on page 0,
term search, collection walk, profile backfill), ranks them around the
seed, keeps the first screen on the seed's category and returns an opaque
cursor carrying the served handles so later pages never repeat.
"""

import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from config.settings import Settings, get_settings
from core.logging import LoggerMixin
from core.telemetry import NoOpTelemetry, Telemetry
from core.utils import clamp, normalize_key, utc_now
from foryou.candidate_factory import normalize_candidate, normalize_candidates
from foryou.cursors import ReelCursor
from foryou.errors import StorageError
from foryou.intelligence import IntelligenceCache
from foryou.models import Candidate, ReelPage, SourcePage
from foryou.profile import Profile, create_empty_profile, normalize_profile
from foryou.reel_ranker import (
    ReelRankingConfig,
    apply_early_category_guard,
    dedupe_candidates,
    rank_reel_candidates,
    seed_term_set,
)
from foryou.retrieval import fetch_products_by_handle, profile_seed_handles, run_isolated
from foryou.service import ForYouService
from foryou.sources import CandidateSource, CollectionWalkResult, walk_collections
from foryou.storage import Identity, ProfileStorage
from foryou.tracking import EventTracker


REEL_POOL_TARGET = 220
REEL_MIN_POOL = 80
REEL_COLLECTION_PER_PAGE = 36
REEL_SEARCH_TERMS = 6
REEL_MIN_SEARCH_FIRST = 24
REEL_BACKFILL_HANDLES = 8
DEBUG_SAMPLE_SIZE = 10


class ReelService(LoggerMixin):
    """
    Seed-anchored reel orchestrator.

    Args:
        storage: Profile store (read only; the reel never writes the profile)
        source: Catalog collaborator
        settings: Page size, timeouts, early window (defaults to get_settings())
        telemetry: Observation sink (defaults to NoOpTelemetry)
        cache: Product intelligence cache shared across requests
        tracker: Event buffer flushed before ranking, if given
        clock: Returns "now"
    """

    def __init__(
        self,
        storage: ProfileStorage,
        source: CandidateSource,
        settings: Optional[Settings] = None,
        telemetry: Optional[Telemetry] = None,
        cache: Optional[IntelligenceCache] = None,
        tracker: Optional[EventTracker] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.source = source
        self.settings = settings or get_settings()
        self.telemetry = telemetry or NoOpTelemetry()
        self.cache = cache or IntelligenceCache()
        self.tracker = tracker
        self.clock = clock
        self.ranking_config = ReelRankingConfig(
            early_window=self.settings.reel_early_window,
            page_size=self.settings.reel_page_size,
            half_life_days=self.settings.half_life_days,
        )

    def _load_profile(self, identity: Identity) -> Profile:
        now = self.clock()
        if self.tracker is not None:
            try:
                self.tracker.flush(identity, now)
            except StorageError as e:
                self.logger.warning("Event flush failed", scope=identity.scope, error=str(e))
            except Exception as e:
                self.logger.exception("Event flush crashed", scope=identity.scope, error=str(e))
        try:
            stored = self.storage.get_profile(identity)
        except StorageError as e:
            self.logger.warning("Profile read failed, using empty profile", scope=identity.scope, error=str(e))
            stored = None
        return normalize_profile(stored, now) if stored else create_empty_profile(now)

    def clamp_page_size(self, page_size: Optional[int]) -> int:
        config = self.ranking_config
        return int(clamp(page_size or config.page_size, config.min_page_size, config.max_page_size))

    def get_reel_page(
        self,
        identity: Identity,
        seed_handle: str,
        cursor: Optional[str] = None,
        page_size: Optional[int] = None,
        include_debug: bool = False,
        profile: Optional[Profile] = None,
    ) -> ReelPage:
        """
        Build one reel page around `seed_handle`.

        Page 0 starts with the seed itself. An unknown seed yields an empty
        page with no cursor. Source failures contribute nothing; they never
        fail the page.
        """
        started = time.perf_counter()
        settings = self.settings
        config = self.ranking_config
        page_size = self.clamp_page_size(page_size)
        include_debug = bool(include_debug and settings.debug)
        now = self.clock()

        profile = normalize_profile(profile, now) if profile is not None else self._load_profile(identity)
        gender = profile.gender
        state = ReelCursor.decode(cursor)

        seed_lookup = run_isolated(
            {"seed": lambda: self.source.product_by_handle(seed_handle)},
            timeout=settings.source_timeout_seconds,
            telemetry=self.telemetry,
        )
        seed = normalize_candidate(seed_lookup["seed"])
        if seed is None:
            self.logger.info("Reel seed not found", seed_handle=seed_handle)
            return ReelPage()

        terms = seed_term_set(seed, self.cache)
        handles = ForYouService.resolve_collection_handles(gender)

        tasks: Dict[str, Callable[[], Any]] = {
            "search": lambda: self.source.search_by_terms(
                terms.seed_terms[:REEL_SEARCH_TERMS],
                gender=gender,
                product_type=seed.product_type,
                vendor=seed.vendor,
                first=max(page_size * 2, REEL_MIN_SEARCH_FIRST),
                after=state.search_after,
            ),
            "collection": lambda: walk_collections(
                self.source,
                handles,
                pool_size=min(REEL_POOL_TARGET, max(REEL_MIN_POOL, page_size * 8)),
                per_page=REEL_COLLECTION_PER_PAGE,
                cursor=state.collection_cursor,
            ),
            "profile": lambda: fetch_products_by_handle(
                self.source,
                profile_seed_handles(profile, REEL_BACKFILL_HANDLES),
                timeout=settings.source_timeout_seconds,
                max_workers=settings.fanout_max_workers,
                telemetry=self.telemetry,
            ),
        }
        if state.page == 0:
            tasks["rec"] = lambda: self.source.recommended_for_product(seed.handle, seed.id)

        results = run_isolated(
            tasks,
            timeout=settings.source_timeout_seconds,
            max_workers=settings.fanout_max_workers,
            telemetry=self.telemetry,
        )

        search_page: SourcePage = results["search"] or SourcePage()
        walk: CollectionWalkResult = results["collection"] or CollectionWalkResult()
        by_source: Dict[str, List[Candidate]] = {
            "rec": normalize_candidates(results.get("rec") or []),
            "search": normalize_candidates(search_page.items),
            "collection": normalize_candidates(walk.items),
            "profile": results["profile"] or [],
        }

        seed_key = normalize_key(seed.handle)
        served = [key for key in (normalize_key(h) for h in state.served_handles) if key]
        served_set = set(served)
        raw = [
            candidate
            for name in ("rec", "search", "collection", "profile")
            for candidate in by_source[name]
        ]
        filtered = [
            candidate for candidate in raw
            if normalize_key(candidate.handle)
            and normalize_key(candidate.handle) != seed_key
            and normalize_key(candidate.handle) not in served_set
        ]
        pool, deduped_count = dedupe_candidates(filtered)

        pool_handles = {normalize_key(candidate.handle) for candidate in pool}
        source_counts: Dict[str, int] = {"deduped": deduped_count}
        for name, items in by_source.items():
            source_counts[f"{name}_fetched"] = len(items)
            source_counts[f"{name}_used"] = len(
                {normalize_key(item.handle) for item in items} & pool_handles
            )

        self.logger.debug("Reel retrieval counts", seed_handle=seed.handle, page=state.page, **source_counts)

        ranked = rank_reel_candidates(
            seed,
            pool,
            profile,
            terms,
            page=state.page,
            cache=self.cache,
            now=now,
            include_debug=include_debug,
            config=config,
        )
        guarded = apply_early_category_guard(ranked, terms.seed_primary_category, state.page, page_size, config)

        ranked_items = [item.candidate for item in guarded.items]
        page_items = ([seed, *ranked_items] if state.page == 0 else ranked_items)[:page_size]

        for item in page_items:
            key = normalize_key(item.handle)
            if key and key not in served_set:
                served_set.add(key)
                served.append(key)

        next_state = ReelCursor(
            page=state.page + 1,
            search_after=search_page.cursor if search_page.has_next else None,
            collection_cursor=walk.next_cursor,
            served_handles=served[-config.max_served_track:],
        )
        has_more = bool(next_state.search_after or next_state.collection_cursor or len(page_items) >= page_size)

        rank_ms = (time.perf_counter() - started) * 1000
        self.telemetry.timing("reel.rank", rank_ms)
        self.telemetry.increment("reel.categorySwitchPrevented", guarded.prevented)
        if self.telemetry.debug:
            self.telemetry.debug_rows(
                "reel.similarity.top",
                [
                    {"handle": item.handle, "score": round(item.score, 4), "category": item.category, **(item.debug or {})}
                    for item in ranked[:DEBUG_SAMPLE_SIZE]
                ],
            )

        self.logger.info(
            "Reel page served",
            seed_handle=seed.handle,
            page=state.page,
            pool_size=len(pool),
            items=len(page_items),
            category=terms.seed_primary_category,
            category_switch_prevented=guarded.prevented,
            rank_ms=round(rank_ms, 1),
        )

        debug = None
        if include_debug:
            debug = {
                "pool_size": len(pool),
                "source": source_counts,
                "query": search_page.query,
                "rank_ms": round(rank_ms, 1),
                "category_switch_prevented": guarded.prevented,
                "sample": [
                    {"handle": item.handle, "score": item.score, "category": item.category, "debug": item.debug}
                    for item in guarded.items[:DEBUG_SAMPLE_SIZE]
                ],
            }

        return ReelPage(
            items=page_items,
            cursor=next_state.encode() if has_more else None,
            debug=debug,
        )
