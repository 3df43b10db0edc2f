"""
Tests for product intelligence and the category classifier.
"""

from foryou.intelligence import (
    UNKNOWN_CATEGORY,
    IntelligenceCache,
    build_product_intelligence,
    classify_category,
    image_filename_tokens,
    infer_primary_category,
)


class TestClassifyCategory:
    """Tests for keyword-based category scoring."""

    def test_exact_keywords(self):
        match = classify_category(["jeans", "denim", "slim"])
        assert match.primary_category == "bottoms_denim"
        assert match.sub_category == "jeans"
        assert match.confidence_score > 0.5

    def test_multiword_keyword_wins(self):
        match = classify_category(["wide", "leg", "pants"])
        assert match.primary_category == "bottoms_denim"
        assert match.sub_category == "wide_leg"

    def test_plural_stem(self):
        match = classify_category(["trouser"])
        assert match.primary_category == "bottoms_pants"

    def test_no_keywords_is_unknown(self):
        match = classify_category(["summer", "dress"])
        assert match.primary_category == UNKNOWN_CATEGORY
        assert match.sub_category is None


class TestBuildProductIntelligence:
    """Tests for attribute extraction from product fields."""

    def test_jeans(self, candidate_factory):
        info = build_product_intelligence(candidate_factory(
            "slim-jeans", product_type="Jeans", tags=["men", "denim", "slim"], title="Slim Denim Jeans",
        ))
        assert info.primary_category == "bottoms_denim"
        assert "denim" in info.material_tokens
        assert "slim" in info.fit_tokens
        assert "men" not in info.normalized_terms
        assert 0.0 < info.quality_score <= 1.0

    def test_hoodie(self, candidate_factory):
        info = build_product_intelligence(candidate_factory(
            "cotton-hoodie", product_type="Hoodie", tags=["cotton"], title="Black Cotton Hoodie",
        ))
        assert info.primary_category == "tops_hoodies"
        assert info.material_tokens == ["cotton"]
        assert info.color_tokens == ["black"]

    def test_image_filename_terms(self):
        assert image_filename_tokens("https://cdn.example.com/a/b/washed_denim-jacket.jpg?v=3") == [
            "washed", "denim", "jacket",
        ]
        assert image_filename_tokens(None) == []


class TestIntelligenceCache:
    """Tests for the bounded memo."""

    def test_memoizes_by_handle(self, candidate_factory):
        cache = IntelligenceCache()
        candidate = candidate_factory("jeans-1", product_type="Jeans")
        assert cache.get(candidate) is cache.get(candidate)
        assert len(cache) == 1

    def test_evicts_oldest(self, candidate_factory):
        cache = IntelligenceCache(max_size=2)
        first = candidate_factory("a")
        cache.get(first)
        cache.get(candidate_factory("b"))
        cache.get(candidate_factory("c"))
        assert len(cache) == 2
        before = cache.get(first)
        assert len(cache) == 2
        assert before is cache.get(first)

    def test_clear(self, candidate_factory):
        cache = IntelligenceCache()
        cache.get(candidate_factory("a"))
        cache.clear()
        assert len(cache) == 0

    def test_infer_primary_category(self, candidate_factory):
        jacket = candidate_factory("parka", product_type="Jacket", title="Parka Jacket")
        assert infer_primary_category(jacket) == "outerwear"
        assert infer_primary_category(jacket, IntelligenceCache()) == "outerwear"
