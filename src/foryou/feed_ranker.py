"""
Feed Ranking Engine.

Scores a candidate pool against an affinity profile and selects an ordered,
diversified page.

Scoring per candidate:
    personalized = 2.8*handle + 1.7*vendor + 1.3*type + 0.9*tagSum (+1.25 if recent)
    familiarity  = 2.2*handle + 1.4*vendor + type + 0.7*tagSum
    exploration  = 3*novelty + 1.6*freshness
                   novelty   = 1 / (1 + familiarity)
                   freshness = 1 / (1 + ageDays / 20)
    blended      = personalized*(1-r) + exploration*r*(1 + min(0.4, 0.04*depth))
    score        = blended - cooldownPenalty + jitter(dateKey|updatedAt|handle)

Selection:
1. Sort by score; recently served items go after everything else
2. Each additional pick from the same vendor (or handle, when there is no
   vendor) loses 1.8 per earlier pick
3. Within the top window (12) at most 3 picks per vendor
4. Stop at `limit`, then re-sort by adjusted score

Cold-start ranking ignores the profile: in-stock first, then newest, with a
small seeded jitter so the order is stable within a day.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from core.telemetry import NoOpTelemetry, Telemetry
from core.utils import age_days, clamp, date_key as utc_date_key, normalize_key, parse_timestamp, to_epoch_ms, utc_now
from foryou.hashing import seeded_jitter
from foryou.models import Candidate, RankedCandidate
from foryou.profile import (
    DEFAULT_HALF_LIFE_DAYS,
    UNKNOWN_CATEGORY,
    Profile,
    bucket_sum,
    derive_event_semantics,
    derive_signal_tags,
    effective_score,
)


# =============================================================================
# Configuration
# =============================================================================

@dataclass(frozen=True)
class FeedRankingConfig:
    """Tunable parameters for feed ranking and selection."""

    # --- Personalized score term weights ---
    handle_weight: float = 2.8
    vendor_weight: float = 1.7
    product_type_weight: float = 1.3
    tag_weight: float = 0.9
    recent_boost: float = 1.25

    # --- Familiarity (inverse novelty) term weights ---
    familiarity_handle_weight: float = 2.2
    familiarity_vendor_weight: float = 1.4
    familiarity_product_type_weight: float = 1.0
    familiarity_tag_weight: float = 0.7

    # --- Exploration ---
    novelty_weight: float = 3.0
    freshness_weight: float = 1.6
    freshness_days: float = 20.0
    unknown_age_days: float = 365.0
    max_exploration_ratio: float = 0.5
    depth_step: float = 0.04
    max_depth_amplifier: float = 0.4

    # --- Cooldown / diversity ---
    cooldown_penalty: float = 3.0
    diversity_penalty: float = 1.8
    top_window: int = 12
    top_vendor_cap: int = 3

    jitter_amplitude: float = 0.04
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS
    debug_row_count: int = 15


DEFAULT_FEED_RANKING_CONFIG = FeedRankingConfig()

COLD_START_JITTER = 0.1
COLD_START_STOCK_SCORE = 1000.0


def diversity_key(candidate: Candidate) -> str:
    vendor = normalize_key(candidate.vendor)
    return vendor or f"h:{normalize_key(candidate.handle)}"


# =============================================================================
# Personalized ranking
# =============================================================================

def rank_feed_candidates(
    profile: Profile,
    candidates: Sequence[Candidate],
    now: Optional[datetime] = None,
    limit: int = 40,
    date_key: Optional[str] = None,
    exploration_ratio: float = 0.0,
    page_depth: int = 0,
    config: FeedRankingConfig = DEFAULT_FEED_RANKING_CONFIG,
    telemetry: Optional[Telemetry] = None,
) -> List[RankedCandidate]:
    """
    Rank candidates for a personalized feed page.

    Args:
        profile: Visitor's affinity profile
        candidates: Candidate pool (entries without a handle are skipped)
        now: Reference time for decay and freshness
        limit: Maximum items returned (at least 1)
        date_key: Jitter seed prefix (defaults to the UTC date)
        exploration_ratio: Share of score from exploration, clamped to 0..0.5
        page_depth: How deep the visitor has scrolled (0 = first page)
        config: Weights and selection parameters
        telemetry: Receives the top debug rows when its debug flag is on

    Returns:
        Ranked candidates, sorted by adjusted score
    """
    now = now or utc_now()
    telemetry = telemetry or NoOpTelemetry()
    limit = max(1, limit)
    day_key = date_key or utc_date_key(now)
    depth = max(0, page_depth)
    ratio = clamp(exploration_ratio, 0.0, config.max_exploration_ratio)
    depth_amplifier = 1.0 + min(config.max_depth_amplifier, depth * config.depth_step)
    served = {normalize_key(handle) for handle in profile.recently_served_handles if handle}
    recent = set(profile.signals.recent_handles)
    signals = profile.signals
    updated_at = profile.updated_at_iso

    def score(bucket, key: str) -> float:
        return effective_score(bucket.get(key), now, config.half_life_days) if key else 0.0

    scored: List[Dict[str, Any]] = []
    for candidate in candidates:
        handle = normalize_key(candidate.handle)
        if not handle:
            continue
        vendor = normalize_key(candidate.vendor)
        product_type = normalize_key(candidate.product_type)
        tags = derive_signal_tags(
            candidate.tags or [],
            handle=handle,
            vendor=vendor,
            product_type=product_type,
            title=normalize_key(candidate.title),
        )

        handle_score = score(signals.by_product_handle, handle)
        vendor_score = score(signals.by_vendor, vendor)
        type_score = score(signals.by_product_type, product_type)
        tag_score = bucket_sum(signals.by_tag, tags, now, config.half_life_days)

        semantics = derive_event_semantics(tags, product_type, handle, vendor)
        category_score = (
            score(signals.by_category, semantics.category)
            if semantics.category != UNKNOWN_CATEGORY else 0.0
        )
        material_score = bucket_sum(signals.by_material, semantics.materials, now, config.half_life_days)

        personalized = (
            handle_score * config.handle_weight
            + vendor_score * config.vendor_weight
            + type_score * config.product_type_weight
            + tag_score * config.tag_weight
            + (config.recent_boost if handle in recent else 0.0)
        )
        familiarity = (
            handle_score * config.familiarity_handle_weight
            + vendor_score * config.familiarity_vendor_weight
            + type_score * config.familiarity_product_type_weight
            + tag_score * config.familiarity_tag_weight
        )
        novelty = 1.0 / (1.0 + familiarity)
        age = age_days(parse_timestamp(candidate.created_at), now, config.unknown_age_days)
        freshness = 1.0 / (1.0 + age / config.freshness_days)
        exploration = novelty * config.novelty_weight + freshness * config.freshness_weight
        blended = personalized * (1.0 - ratio) + exploration * ratio * depth_amplifier

        is_served = handle in served
        jitter = seeded_jitter(f"{day_key}|{updated_at}|{handle}", config.jitter_amplitude)

        scored.append({
            "candidate": candidate,
            "handle": handle,
            "served": is_served,
            "score": blended - (config.cooldown_penalty if is_served else 0.0) + jitter,
            "debug": {
                "personalized": personalized,
                "exploration": exploration,
                "blended": blended,
                "category": category_score,
                "material": material_score,
            },
        })

    scored.sort(key=lambda item: item["score"], reverse=True)

    if telemetry.debug:
        telemetry.debug_rows("feed.rank.top", [
            {"handle": item["handle"], **{k: round(v, 4) for k, v in item["debug"].items()}}
            for item in scored[:config.debug_row_count]
        ])

    pool = [item for item in scored if not item["served"]] + [item for item in scored if item["served"]]

    selected: List[RankedCandidate] = []
    picks: Dict[str, int] = {}
    top_picks: Dict[str, int] = {}
    for item in pool:
        if len(selected) >= limit:
            break
        key = diversity_key(item["candidate"])
        seen_count = picks.get(key, 0)
        adjusted = item["score"] - seen_count * config.diversity_penalty

        if len(selected) < config.top_window:
            top_count = top_picks.get(key, 0)
            if top_count >= config.top_vendor_cap:
                continue
            top_picks[key] = top_count + 1

        selected.append(RankedCandidate(
            candidate=item["candidate"],
            score=adjusted,
            debug=item["debug"],
        ))
        picks[key] = seen_count + 1

    selected.sort(key=lambda ranked: ranked.score, reverse=True)
    return selected


# =============================================================================
# Cold start
# =============================================================================

def rank_cold_start_candidates(
    candidates: Sequence[Candidate],
    now: Optional[datetime] = None,
    limit: int = 40,
    profile_seed: str = "unknown",
) -> List[RankedCandidate]:
    """
    Profile-free ordering: availability, then recency, then seeded jitter.

    Deterministic for a fixed (seed, UTC day, handle).
    """
    now = now or utc_now()
    day = utc_date_key(now)

    ranked = []
    for candidate in candidates:
        created = parse_timestamp(candidate.created_at)
        created_score = to_epoch_ms(created) / 1e12 if created else 0.0
        stock_score = -COLD_START_STOCK_SCORE if candidate.available_for_sale is False else COLD_START_STOCK_SCORE
        jitter = seeded_jitter(f"{profile_seed}|{day}|{candidate.handle}", COLD_START_JITTER)
        ranked.append(RankedCandidate(candidate=candidate, score=stock_score + created_score + jitter))

    ranked.sort(key=lambda item: item.score, reverse=True)
    return ranked[:max(0, limit)]
