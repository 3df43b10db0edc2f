"""
Tests for the reel ranking engine and the early category guard.
"""

from datetime import timedelta

import pytest

from foryou.intelligence import IntelligenceCache
from foryou.models import RankedCandidate
from foryou.profile import apply_event, create_empty_profile
from foryou.reel_ranker import (
    apply_early_category_guard,
    category_distance,
    dedupe_candidates,
    overlap_count,
    rank_reel_candidates,
    seed_term_set,
    user_affinity,
)


@pytest.fixture
def cache():
    return IntelligenceCache()


@pytest.fixture
def seed(candidate_factory):
    return candidate_factory(
        "jeans-seed", product_type="Jeans", vendor="Denimco",
        tags=["men", "denim", "jeans", "slim"], title="Slim Denim Jeans",
    )


@pytest.fixture
def mixed_pool(candidate_factory):
    jeans = [
        candidate_factory(
            f"jeans-{i}", product_type="Jeans", vendor="Denimco",
            tags=["men", "denim", "jeans", "slim"], title=f"Slim Denim Jeans {i}",
        )
        for i in range(3)
    ]
    hoodies = [
        candidate_factory(
            f"hoodie-{i}", product_type="Hoodie", vendor="Acme",
            tags=["men", "cotton", "hoodie"], title=f"Cotton Hoodie {i}",
        )
        for i in range(6)
    ]
    jackets = [
        candidate_factory(f"jacket-{i}", product_type="Jacket", vendor="Outdoorsy", tags=["men"], title="Parka Jacket")
        for i in range(2)
    ]
    return hoodies + jackets + jeans


def _ranked(candidate_factory, handle: str, score: float, category: str, debug=None) -> RankedCandidate:
    return RankedCandidate(candidate=candidate_factory(handle), score=score, category=category, debug=debug)


class TestSeedTerms:
    """Tests for seed term extraction."""

    def test_seed_category_and_terms(self, seed, cache):
        terms = seed_term_set(seed, cache)
        assert terms.seed_primary_category == "bottoms_denim"
        assert "denim" in terms.seed_terms
        assert "men" not in terms.seed_terms
        assert len(terms.seed_terms) <= 40


class TestCategoryDistance:
    """Tests for the category adjacency graph."""

    def test_distances(self):
        assert category_distance("bottoms_denim", "bottoms_denim") == 0
        assert category_distance("bottoms_denim", "bottoms_pants") == 1
        assert category_distance("shoes", "tops_hoodies") == 3

    def test_unknown_is_two_even_when_equal(self):
        assert category_distance("unknown", "unknown") == 2
        assert category_distance("shoes", "unknown") == 2

    def test_overlap_count_normalizes(self):
        assert overlap_count(["Denim", "slim"], ["denim", "wide"]) == 1
        assert overlap_count(["denim"], []) == 0


class TestRankReelCandidates:
    """Tests for seed-anchored ranking."""

    def test_same_category_ranks_first(self, seed, mixed_pool, cache, now):
        profile = create_empty_profile(now)
        terms = seed_term_set(seed, cache)
        ranked = rank_reel_candidates(seed, mixed_pool, profile, terms, page=0, cache=cache, now=now)

        assert [r.category for r in ranked[:3]] == ["bottoms_denim"] * 3
        assert all(r.handle != seed.handle for r in ranked)

    def test_seed_excluded(self, seed, mixed_pool, cache, now):
        terms = seed_term_set(seed, cache)
        ranked = rank_reel_candidates(seed, [seed, *mixed_pool], create_empty_profile(now), terms, cache=cache, now=now)
        assert seed.handle not in [r.handle for r in ranked]

    def test_deterministic(self, seed, mixed_pool, cache, now):
        terms = seed_term_set(seed, cache)
        profile = create_empty_profile(now)
        first = rank_reel_candidates(seed, mixed_pool, profile, terms, page=1, cache=cache, now=now)
        second = rank_reel_candidates(seed, mixed_pool, profile, terms, page=1, cache=cache, now=now)
        assert [(r.handle, r.score) for r in first] == [(r.handle, r.score) for r in second]

    def test_debug_breakdown(self, seed, mixed_pool, cache, now):
        terms = seed_term_set(seed, cache)
        ranked = rank_reel_candidates(
            seed, mixed_pool, create_empty_profile(now), terms, cache=cache, now=now, include_debug=True,
        )
        debug = ranked[0].debug
        assert debug["category_match"] is True
        assert {"seed_similarity", "user_affinity", "exploration", "category_penalty"} <= set(debug)

    def test_no_debug_by_default(self, seed, mixed_pool, cache, now):
        terms = seed_term_set(seed, cache)
        ranked = rank_reel_candidates(seed, mixed_pool, create_empty_profile(now), terms, cache=cache, now=now)
        assert all(r.debug is None for r in ranked)

    def test_affinity_follows_half_life(self, candidate_factory, cache, now):
        profile = apply_event(
            create_empty_profile(now), {"type": "add_to_cart", "tags": ["cotton"]}, now - timedelta(days=60),
        )
        tee = candidate_factory("tee", vendor="Nobody", product_type="Tee", tags=["cotton"])

        assert user_affinity(profile, tee, cache, now, 365) > 10 * user_affinity(profile, tee, cache, now, 7)


class TestEarlyCategoryGuard:
    """Tests for the first-screen category guard."""

    def test_guard_keeps_first_screen_on_category(self, seed, mixed_pool, cache, now):
        terms = seed_term_set(seed, cache)
        ranked = rank_reel_candidates(seed, mixed_pool, create_empty_profile(now), terms, page=0, cache=cache, now=now)

        guarded = apply_early_category_guard(ranked, terms.seed_primary_category, page=0, limit=14)

        assert [r.category for r in guarded.items[:10]] == ["bottoms_denim"] * len(guarded.items[:10])
        assert guarded.prevented == 8

    def test_penalizes_and_drops(self, candidate_factory):
        ranked = [
            _ranked(candidate_factory, "strong-off", 20.0, "tops_hoodies", {"category_penalty": 0.0}),
            _ranked(candidate_factory, "on-1", 5.0, "bottoms_denim"),
            _ranked(candidate_factory, "on-2", 4.0, "bottoms_denim"),
            _ranked(candidate_factory, "weak-off", 3.0, "shoes"),
        ]
        guarded = apply_early_category_guard(ranked, "bottoms_denim", page=0, limit=10)

        assert [r.handle for r in guarded.items] == ["strong-off", "on-1", "on-2"]
        assert guarded.items[0].score == pytest.approx(12.0)
        assert guarded.items[0].debug["category_penalty"] == pytest.approx(8.0)
        assert guarded.prevented == 2

    def test_inactive_after_first_page(self, candidate_factory):
        ranked = [_ranked(candidate_factory, "off", 1.0, "shoes")]
        guarded = apply_early_category_guard(ranked, "bottoms_denim", page=1, limit=10)
        assert [r.handle for r in guarded.items] == ["off"]
        assert guarded.prevented == 0

    def test_inactive_for_unknown_seed(self, candidate_factory):
        ranked = [_ranked(candidate_factory, "off", -20.0, "shoes")]
        guarded = apply_early_category_guard(ranked, "unknown", page=0, limit=10)
        assert len(guarded.items) == 1

    def test_limit(self, candidate_factory):
        ranked = [_ranked(candidate_factory, f"on-{i}", 10.0 - i, "shoes") for i in range(5)]
        guarded = apply_early_category_guard(ranked, "shoes", page=0, limit=2)
        assert len(guarded.items) == 2


class TestDedupe:
    """Tests for candidate de-duplication."""

    def test_dedupe_by_handle(self, candidate_factory):
        a = candidate_factory("a")
        items, deduped = dedupe_candidates([a, candidate_factory("A"), candidate_factory("b")])
        assert [c.handle for c in items] == ["a", "b"]
        assert deduped == 1
