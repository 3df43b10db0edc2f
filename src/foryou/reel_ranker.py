"""
Reel Ranking Engine.

Ranks candidates around a seed product for a swipeable "reel":

    score = seedSimilarity
          + userAffinity * affinityMultiplier
          + exploration * explorationMultiplier
          - categoryPenalty
          + jitter(seed|candidate|page, +-0.05)

seedSimilarity rewards shared category / sub-category and overlapping
material, fit, style, color and descriptive terms (each overlap capped).
userAffinity is the visitor's decayed interest in the candidate.
exploration is freshness scaled by how close the candidate's category sits
to the seed's in a fixed adjacency graph.

On the first page an early category guard keeps off-category items out of
the opening window unless they score well despite an extra penalty.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from core.utils import age_days, normalize_key, parse_timestamp, unique_first, utc_now
from foryou.content_signals import extract_content_signals
from foryou.hashing import seeded_jitter
from foryou.intelligence import UNKNOWN_CATEGORY, IntelligenceCache
from foryou.models import Candidate, RankedCandidate
from foryou.profile import DEFAULT_HALF_LIFE_DAYS, Profile, bucket_sum, derive_signal_tags, effective_score


GENERIC_SEED_TERMS = frozenset({
    "men", "women", "man", "woman", "new", "sale", "all",
    "arrivals", "arrival", "new-in", "new_arrivals",
})

SEED_COMBINED_LIMIT = 36
SEED_TERM_LIMIT = 40
SEED_TAG_LIMIT = 24

# Directed adjacency; anything not listed (and not equal) is distance 3.
RELATED_CATEGORIES: Dict[str, Tuple[str, ...]] = {
    "bottoms_denim": ("bottoms_pants", "outerwear"),
    "bottoms_pants": ("bottoms_denim", "outerwear"),
    "tops_hoodies": ("tops_shirts", "outerwear"),
    "tops_shirts": ("tops_hoodies", "outerwear"),
    "outerwear": ("tops_hoodies", "tops_shirts", "bottoms_pants", "bottoms_denim"),
    "underwear": ("bottoms_pants",),
    "shoes": ("accessories", "bottoms_pants", "bottoms_denim"),
    "accessories": ("shoes", "tops_shirts", "tops_hoodies"),
    UNKNOWN_CATEGORY: (),
}


# =============================================================================
# Configuration
# =============================================================================

@dataclass(frozen=True)
class ReelRankingConfig:
    """Tunable parameters for reel ranking and the early category guard."""

    # --- Seed similarity ---
    same_category_bonus: float = 10.0
    same_sub_category_bonus: float = 6.0
    material_overlap: Tuple[float, float] = (2.0, 4.0)  # (per overlap, cap)
    fit_overlap: Tuple[float, float] = (1.5, 3.0)
    style_overlap: Tuple[float, float] = (1.5, 3.0)
    color_overlap: Tuple[float, float] = (1.1, 2.0)
    term_overlap: Tuple[float, float] = (0.7, 5.0)
    same_vendor_bonus: float = 3.0
    same_product_type_bonus: float = 3.0

    # --- Multipliers (cold start = few handle signals) ---
    cold_start_handle_keys: int = 2
    cold_affinity_multiplier: float = 0.35
    cold_exploration_multiplier: float = 0.16
    warm_affinity_multiplier: float = 0.5
    warm_exploration_multiplier: float = 0.1

    # --- Exploration / category penalty ---
    freshness_days: float = 28.0
    unknown_age_days: float = 365.0
    adjacent_bonus: Tuple[float, float, float] = (1.1, 0.72, 0.22)  # distance 0, 1, >=2
    near_category_penalty: float = 2.5
    far_category_penalty: float = 6.0

    # --- Early category guard ---
    early_window: int = 10
    guard_penalty: float = 8.0
    guard_drop_threshold: float = -4.0

    half_life_days: float = DEFAULT_HALF_LIFE_DAYS
    jitter_amplitude: float = 0.05
    page_size: int = 14
    min_page_size: int = 8
    max_page_size: int = 24
    max_served_track: int = 320


DEFAULT_REEL_RANKING_CONFIG = ReelRankingConfig()


@dataclass(frozen=True)
class SeedTermSet:
    seed_terms: List[str] = field(default_factory=list)
    seed_derived_tags: List[str] = field(default_factory=list)
    seed_primary_category: str = UNKNOWN_CATEGORY


@dataclass(frozen=True)
class GuardResult:
    items: List[RankedCandidate]
    prevented: int


# =============================================================================
# Seed terms & category graph
# =============================================================================

def seed_term_set(seed: Candidate, cache: IntelligenceCache) -> SeedTermSet:
    """Descriptive terms, derived tags and primary category of the seed."""
    derived = derive_signal_tags(
        seed.tags or [],
        handle=seed.handle,
        vendor=seed.vendor,
        product_type=seed.product_type,
        title=seed.title,
    )
    content = extract_content_signals(
        description_html=seed.description_html,
        description=seed.description,
        image_alt_texts=[seed.featured_image.alt_text if seed.featured_image else None],
        handle=seed.handle,
        title=seed.title,
        vendor=seed.vendor,
        product_type=seed.product_type,
    )
    combined = unique_first(
        (
            term for term in (normalize_key(entry) for entry in [*derived, *content])
            if len(term) >= 3 and term not in GENERIC_SEED_TERMS and not term.isdigit()
        ),
        SEED_COMBINED_LIMIT,
    )
    intelligence = cache.get(seed)
    return SeedTermSet(
        seed_terms=unique_first([*intelligence.normalized_terms, *combined], SEED_TERM_LIMIT),
        seed_derived_tags=unique_first((normalize_key(tag) for tag in derived), SEED_TAG_LIMIT),
        seed_primary_category=intelligence.primary_category,
    )


def category_distance(seed_category: str, candidate_category: str) -> int:
    """0 same, 1 adjacent, 2 when either side is unknown, 3 unrelated."""
    if seed_category == UNKNOWN_CATEGORY or candidate_category == UNKNOWN_CATEGORY:
        return 2
    if seed_category == candidate_category:
        return 0
    if candidate_category in RELATED_CATEGORIES.get(seed_category, ()):
        return 1
    return 3


# =============================================================================
# Score components
# =============================================================================

def overlap_count(a: Iterable[str], b: Iterable[str]) -> int:
    other = {normalize_key(entry) for entry in b if entry}
    if not other:
        return 0
    return sum(1 for entry in a if normalize_key(entry) in other)


def overlap_score(a: Sequence[str], b: Sequence[str], weight_cap: Tuple[float, float]) -> float:
    weight, cap = weight_cap
    return min(cap, overlap_count(a, b) * weight)


def seed_similarity(
    seed: Candidate,
    seed_terms: Sequence[str],
    candidate: Candidate,
    cache: IntelligenceCache,
    config: ReelRankingConfig = DEFAULT_REEL_RANKING_CONFIG,
) -> float:
    seed_info = cache.get(seed)
    info = cache.get(candidate)

    score = 0.0
    if seed_info.primary_category != UNKNOWN_CATEGORY and seed_info.primary_category == info.primary_category:
        score += config.same_category_bonus
    if seed_info.sub_category and seed_info.sub_category == info.sub_category:
        score += config.same_sub_category_bonus

    score += overlap_score(seed_info.material_tokens, info.material_tokens, config.material_overlap)
    score += overlap_score(seed_info.fit_tokens, info.fit_tokens, config.fit_overlap)
    score += overlap_score(seed_info.style_tokens, info.style_tokens, config.style_overlap)
    score += overlap_score(seed_info.color_tokens, info.color_tokens, config.color_overlap)
    score += overlap_score(seed_terms, info.normalized_terms, config.term_overlap)

    seed_vendor = normalize_key(seed.vendor)
    if seed_vendor and seed_vendor == normalize_key(candidate.vendor):
        score += config.same_vendor_bonus
    seed_type = normalize_key(seed.product_type)
    if seed_type and seed_type == normalize_key(candidate.product_type):
        score += config.same_product_type_bonus
    return score


def user_affinity(
    profile: Profile,
    candidate: Candidate,
    cache: IntelligenceCache,
    now: Optional[datetime] = None,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
) -> float:
    """Visitor's decayed interest in the candidate across all seven buckets."""
    now = now or utc_now()
    hl = half_life_days
    signals = profile.signals
    handle = normalize_key(candidate.handle)
    vendor = normalize_key(candidate.vendor)
    product_type = normalize_key(candidate.product_type)
    tags = derive_signal_tags(
        candidate.tags or [],
        handle=handle,
        vendor=vendor,
        product_type=product_type,
        title=normalize_key(candidate.title),
    )
    info = cache.get(candidate)

    return (
        effective_score(signals.by_product_handle.get(handle), now, hl) * 2.0
        + effective_score(signals.by_vendor.get(vendor), now, hl) * 1.4
        + effective_score(signals.by_product_type.get(product_type), now, hl) * 1.1
        + bucket_sum(signals.by_tag, tags, now, hl) * 0.8
        + effective_score(signals.by_category.get(info.primary_category), now, hl) * 1.2
        + bucket_sum(signals.by_material, info.material_tokens, now, hl) * 0.7
        + bucket_sum(signals.by_fit, info.fit_tokens, now, hl) * 0.65
    )


# =============================================================================
# Ranking
# =============================================================================

def rank_reel_candidates(
    seed: Candidate,
    candidates: Sequence[Candidate],
    profile: Profile,
    terms: SeedTermSet,
    page: int = 0,
    cache: Optional[IntelligenceCache] = None,
    now: Optional[datetime] = None,
    include_debug: bool = False,
    config: ReelRankingConfig = DEFAULT_REEL_RANKING_CONFIG,
) -> List[RankedCandidate]:
    """
    Score and sort candidates around the seed.

    The seed itself and candidates without a handle are excluded. Each
    RankedCandidate carries its primary category for the early guard.
    """
    now = now or utc_now()
    cache = cache or IntelligenceCache()
    seed_handle = normalize_key(seed.handle)
    seed_category = terms.seed_primary_category

    cold = len(profile.signals.by_product_handle) <= config.cold_start_handle_keys
    affinity_multiplier = config.cold_affinity_multiplier if cold else config.warm_affinity_multiplier
    exploration_multiplier = config.cold_exploration_multiplier if cold else config.warm_exploration_multiplier
    seed_info = cache.get(seed)

    ranked: List[RankedCandidate] = []
    for candidate in candidates:
        handle = normalize_key(candidate.handle)
        if not handle or handle == seed_handle:
            continue

        info = cache.get(candidate)
        similarity = seed_similarity(seed, terms.seed_terms, candidate, cache, config)
        affinity = user_affinity(profile, candidate, cache, now, config.half_life_days)

        category = info.primary_category
        distance = category_distance(seed_category, category)
        age = age_days(parse_timestamp(candidate.created_at), now, config.unknown_age_days)
        freshness = 1.0 / (1.0 + age / config.freshness_days)
        adjacent_bonus = config.adjacent_bonus[min(distance, 2)]
        exploration = freshness * adjacent_bonus

        if seed_category != UNKNOWN_CATEGORY and category != seed_category:
            penalty = config.far_category_penalty if distance >= 3 else config.near_category_penalty
        else:
            penalty = 0.0

        score = (
            similarity
            + affinity * affinity_multiplier
            + exploration * exploration_multiplier
            - penalty
            + seeded_jitter(f"{seed.handle}|{candidate.handle}|{page}", config.jitter_amplitude)
        )

        debug: Optional[Dict[str, Any]] = None
        if include_debug:
            debug = {
                "seed_similarity": similarity,
                "user_affinity": affinity,
                "exploration": exploration,
                "category_penalty": penalty,
                "adjacent_bonus": adjacent_bonus,
                "category_match": seed_info.primary_category == category,
                "material_overlap": overlap_count(seed_info.material_tokens, info.material_tokens),
                "fit_overlap": overlap_count(seed_info.fit_tokens, info.fit_tokens),
                "style_overlap": overlap_count(seed_info.style_tokens, info.style_tokens),
                "normalized_overlap": overlap_count(terms.seed_terms, info.normalized_terms),
            }

        ranked.append(RankedCandidate(candidate=candidate, score=score, category=category, debug=debug))

    ranked.sort(key=lambda item: item.score, reverse=True)
    return ranked


def apply_early_category_guard(
    ranked: Sequence[RankedCandidate],
    seed_category: str,
    page: int,
    limit: int,
    config: ReelRankingConfig = DEFAULT_REEL_RANKING_CONFIG,
) -> GuardResult:
    """
    Keep the opening window of page 0 on the seed's category.

    While fewer than `early_window` items are accepted, each off-category
    item takes an extra penalty and is dropped if it falls below the drop
    threshold. Order is otherwise preserved; output stops at `limit`.
    """
    out: List[RankedCandidate] = []
    prevented = 0
    guard_active = seed_category != UNKNOWN_CATEGORY and page == 0

    for item in ranked:
        if len(out) >= limit:
            break
        if guard_active and len(out) < config.early_window and item.category != seed_category:
            prevented += 1
            penalized = item.score - config.guard_penalty
            if penalized < config.guard_drop_threshold:
                continue
            debug = None
            if item.debug is not None:
                debug = {**item.debug, "category_penalty": item.debug["category_penalty"] + config.guard_penalty}
            out.append(item.model_copy(update={"score": penalized, "debug": debug}))
            continue
        out.append(item)

    return GuardResult(items=out, prevented=prevented)


def dedupe_candidates(candidates: Iterable[Candidate]) -> Tuple[List[Candidate], int]:
    """De-duplicate by handle (or id). Returns (items, duplicates dropped)."""
    seen = set()
    out: List[Candidate] = []
    deduped = 0
    for candidate in candidates:
        key = normalize_key(candidate.handle) or normalize_key(candidate.id)
        if not key:
            continue
        if key in seen:
            deduped += 1
            continue
        seen.add(key)
        out.append(candidate)
    return out, deduped
