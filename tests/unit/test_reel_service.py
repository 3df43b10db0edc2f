"""
Tests for the similar-product reel orchestrator.
"""

import pytest

from foryou.cursors import ReelCursor
from foryou.intelligence import IntelligenceCache
from foryou.reel_service import ReelService
from foryou.sources import InMemoryCandidateSource
from foryou.storage import Identity
from foryou.tracking import EventTracker


class CrashingTracker(EventTracker):
    def flush(self, identity, now=None):
        raise RuntimeError("unexpected event payload")


@pytest.fixture
def guest():
    return Identity.guest()


class TestReelPage:
    """Reel assembly around a seed product."""

    def test_first_page_starts_with_seed(self, reel_service, guest):
        page = reel_service.get_reel_page(guest, "jeans-0")

        handles = [item.handle for item in page.items]
        assert handles[0] == "jeans-0"
        assert set(handles[1:4]) == {"jeans-1", "jeans-2", "jeans-3"}
        assert len(handles) == len(set(handles))

    def test_first_screen_stays_on_category(self, reel_service, telemetry, guest):
        page = reel_service.get_reel_page(guest, "jeans-0", include_debug=True)

        assert all(item.product_type == "Jeans" for item in page.items)
        assert telemetry.counter("reel.categorySwitchPrevented") == page.debug["category_switch_prevented"]
        assert page.debug["category_switch_prevented"] > 0

    def test_first_screen_holds_when_off_category_dominates(
        self, product_factory, storage, settings, telemetry, clock, guest,
    ):
        denim = [
            product_factory(
                handle, product_type="Jeans", vendor="Denimco",
                tags=["men", "denim", "jeans", "slim"], title="Slim Denim Jeans", days_old=40,
            )
            for handle in ("jeans-seed", "jeans-a", "jeans-b", "jeans-c")
        ]
        off_category = [
            product_factory(
                f"hoodie-{i}", product_type="Hoodie", vendor="Acme",
                tags=["men", "cotton", "hoodie"], title=f"Cotton Hoodie {i}", days_old=1,
            )
            for i in range(20)
        ] + [
            product_factory(
                f"jacket-{i}", product_type="Jacket", vendor="Outdoorsy",
                tags=["men", "jacket"], title=f"Parka Jacket {i}", days_old=1,
            )
            for i in range(10)
        ]
        products = off_category + denim
        source = InMemoryCandidateSource(products=products, collections={"men": [p["handle"] for p in products]})
        service = ReelService(storage, source, settings=settings, telemetry=telemetry, cache=IntelligenceCache(), clock=clock)

        page = service.get_reel_page(guest, "jeans-seed", include_debug=True)

        assert page.items[0].handle == "jeans-seed"
        assert {item.handle for item in page.items[1:]} == {"jeans-a", "jeans-b", "jeans-c"}
        assert [row["category"] for row in page.debug["sample"]] == ["bottoms_denim"] * 3
        assert page.debug["category_switch_prevented"] == 30

    def test_event_flush_crash_does_not_fail_page(self, sample_catalog, storage, settings, clock, guest):
        service = ReelService(
            storage, InMemoryCandidateSource(**sample_catalog), settings=settings,
            tracker=CrashingTracker(storage), clock=clock,
        )
        assert service.get_reel_page(guest, "jeans-0").items[0].handle == "jeans-0"

    def test_unknown_seed_yields_empty_page(self, reel_service, guest):
        page = reel_service.get_reel_page(guest, "no-such-product")
        assert page.items == []
        assert page.cursor is None

    def test_later_pages_skip_served_and_seed(self, reel_service, guest):
        cursor = ReelCursor(page=1, served_handles=["jeans-0", "jeans-1"]).encode()

        page = reel_service.get_reel_page(guest, "jeans-0", cursor=cursor)

        handles = [item.handle for item in page.items]
        assert "jeans-0" not in handles
        assert "jeans-1" not in handles
        assert handles[0] in {"jeans-2", "jeans-3"}
        # no guard after the first page
        assert any(handle.startswith("hoodie") for handle in handles)

    def test_cursor_carries_served_handles(self, product_factory, storage, settings, telemetry, clock, guest):
        products = [
            product_factory(f"jeans-{i:02d}", product_type="Jeans", vendor="Denimco", tags=["denim", "jeans"])
            for i in range(30)
        ]
        source = InMemoryCandidateSource(products=products, collections={"men": [p["handle"] for p in products]})
        service = ReelService(storage, source, settings=settings, telemetry=telemetry, clock=clock)

        first = service.get_reel_page(guest, "jeans-00", page_size=8)
        assert len(first.items) == 8
        assert first.cursor is not None

        second = service.get_reel_page(guest, "jeans-00", cursor=first.cursor, page_size=8)
        first_handles = {item.handle for item in first.items}
        assert first_handles.isdisjoint(item.handle for item in second.items)
        assert ReelCursor.decode(second.cursor).served_handles[:8] == [item.handle for item in first.items]

    def test_page_size_clamped(self, reel_service):
        assert reel_service.clamp_page_size(2) == 8
        assert reel_service.clamp_page_size(100) == 24
        assert reel_service.clamp_page_size(None) == 14

    def test_recommendation_failure_is_isolated(self, sample_catalog, storage, settings, telemetry, clock, guest):
        source = InMemoryCandidateSource(**sample_catalog, failing=["recommended_for_product"])
        service = ReelService(storage, source, settings=settings, telemetry=telemetry, cache=IntelligenceCache(), clock=clock)

        page = service.get_reel_page(guest, "jeans-0")

        assert page.items[0].handle == "jeans-0"
        assert len(page.items) > 1
        assert telemetry.counter("source.rec.error") == 1

    def test_recommendations_only_requested_on_first_page(self, sample_catalog, storage, settings, clock, guest):
        source = InMemoryCandidateSource(**sample_catalog)
        service = ReelService(storage, source, settings=settings, clock=clock)

        service.get_reel_page(guest, "jeans-0", cursor=ReelCursor(page=1).encode())

        assert "recommended_for_product" not in source.calls

    def test_debug_payload(self, reel_service, telemetry, guest):
        page = reel_service.get_reel_page(guest, "jeans-0", include_debug=True)

        assert {"pool_size", "source", "query", "rank_ms", "category_switch_prevented", "sample"} <= set(page.debug)
        assert page.debug["source"]["rec_fetched"] == 3
        assert 'product_type:"Jeans"' in page.debug["query"]
        assert telemetry.last_rows("reel.similarity.top")

    def test_explicit_profile_skips_storage(self, reel_service, storage, guest, now):
        from foryou.profile import create_empty_profile
        page = reel_service.get_reel_page(guest, "jeans-0", profile=create_empty_profile(now))
        assert page.items[0].handle == "jeans-0"
        assert storage.get_profile(guest) is None
