"""
Tests for candidate sources and the collection walk.
"""

import json

import pytest

from foryou.errors import CandidateSourceError
from foryou.models import Gender
from foryou.sources import InMemoryCandidateSource, build_search_query, clamp_search_first, walk_collections


@pytest.fixture
def big_source(product_factory):
    products = [product_factory(f"p-{i:02d}", days_old=i) for i in range(50)]
    return InMemoryCandidateSource(products=products, collections={"big": [p["handle"] for p in products]})


class TestBuildSearchQuery:

    def test_field_clauses_terms_and_gender(self):
        query = build_search_query(["wide_leg", "denim"], Gender.MALE, "Jeans")
        assert query == 'product_type:"Jeans" "wide leg" "denim" tag:men'

    def test_vendor_and_female(self):
        assert build_search_query(["dress"], Gender.FEMALE, vendor="Bloom") == 'vendor:"Bloom" "dress" tag:women'

    def test_short_and_duplicate_terms_dropped(self):
        query = build_search_query(["ab", "Denim", "denim", *[f"term{i}" for i in range(10)]])
        assert '"ab"' not in query
        assert query.count('"denim"') == 1
        assert len(query.split()) == 8

    def test_empty(self):
        assert build_search_query([]) == ""

    def test_clamp_first(self):
        assert clamp_search_first(1) == 8
        assert clamp_search_first(100) == 40


class TestWalkCollections:
    """Round-robin walk over collection handles."""

    def test_walks_all_handles_until_exhausted(self, source):
        result = walk_collections(source, ["men", "women"])
        assert len(result.items) == 15
        assert result.next_cursor is None

    def test_dedupes_across_collections(self, source):
        result = walk_collections(source, ["men", "all"])
        ids = [item["id"] for item in result.items]
        assert len(ids) == len(set(ids)) == 15

    def test_continuation(self, big_source):
        first = walk_collections(big_source, ["big"], pool_size=20, per_page=20)
        assert len(first.items) == 20
        assert first.next_cursor is not None

        second = walk_collections(big_source, ["big"], pool_size=20, per_page=20, cursor=first.next_cursor)
        first_ids = {item["id"] for item in first.items}
        assert len(second.items) == 20
        assert first_ids.isdisjoint(item["id"] for item in second.items)

    def test_unknown_handle_is_exhausted(self, source):
        result = walk_collections(source, ["no-such-collection"])
        assert result.items == []
        assert result.next_cursor is None

    def test_no_handles(self, source):
        assert walk_collections(source, []).items == []
        assert source.calls == []

    def test_source_errors_propagate(self, sample_catalog):
        failing = InMemoryCandidateSource(**sample_catalog, failing=["collection_page"])
        with pytest.raises(CandidateSourceError):
            walk_collections(failing, ["men"])


class TestInMemoryCandidateSource:

    def test_collection_newest_first(self, source):
        page = source.collection_page("men", 3)
        assert [item["handle"] for item in page.items] == ["hoodie-0", "hoodie-1", "jeans-0"]
        assert page.has_next and page.cursor == "3"

    def test_search_respects_gender_and_terms(self, source):
        page = source.search_by_terms(["denim"], gender=Gender.MALE)
        assert {item["handle"] for item in page.items} == {f"jeans-{i}" for i in range(4)}
        assert page.query == '"denim" tag:men'

    def test_search_product_type_clause(self, source):
        page = source.search_by_terms([], product_type="Dress")
        assert {item["handle"] for item in page.items} == {"dress-0", "dress-1", "dress-2"}

    def test_recommendations_and_lookup(self, source):
        related = source.recommended_for_product("JEANS-0")
        assert [item["handle"] for item in related] == ["jeans-1", "jeans-2", "hoodie-0"]
        assert source.product_by_handle("nope") is None

    def test_from_json_file(self, tmp_path, product_factory):
        path = tmp_path / "catalog.json"
        path.write_text(json.dumps({
            "products": [product_factory("a"), "junk"],
            "collections": {"all": ["a"]},
        }))
        loaded = InMemoryCandidateSource.from_json_file(str(path))
        assert [item["handle"] for item in loaded.collection_page("all", 10).items] == ["a"]

    def test_from_json_file_bare_list(self, tmp_path, product_factory):
        path = tmp_path / "catalog.json"
        path.write_text(json.dumps([product_factory("a"), product_factory("b")]))
        loaded = InMemoryCandidateSource.from_json_file(str(path))
        assert len(loaded.newest_products(10).items) == 2
