"""
Pytest configuration and shared fixtures for the for-you personalization tests.
"""
import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Callable, Generator, List

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), "src"))

# Load environment variables
from dotenv import load_dotenv
load_dotenv(os.path.join(os.path.dirname(os.path.dirname(__file__)), ".env"))


FIXED_NOW = datetime(2026, 2, 10, 12, 0, 0, tzinfo=timezone.utc)


# ============================================================================
# Fixtures: Time
# ============================================================================

@pytest.fixture
def now() -> datetime:
    """Fixed reference time so decay and jitter are reproducible."""
    return FIXED_NOW


@pytest.fixture
def clock(now) -> Callable[[], datetime]:
    return lambda: now


# ============================================================================
# Fixtures: Test Data Factories
# ============================================================================

def make_product(
    handle: str,
    product_type: str = "Hoodie",
    vendor: str = "Acme",
    tags: List[str] = None,
    title: str = None,
    days_old: int = 5,
    available: bool = True,
    now: datetime = FIXED_NOW,
) -> dict:
    """Raw catalog node in the storefront's camelCase shape."""
    return {
        "id": f"gid://shop/Product/{handle}",
        "handle": handle,
        "title": title or handle.replace("-", " ").title(),
        "vendor": vendor,
        "productType": product_type,
        "tags": list(tags or []),
        "createdAt": (now - timedelta(days=days_old)).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "availableForSale": available,
        "featuredImage": {"url": f"https://cdn.example.com/{handle}.jpg", "altText": None},
        "priceRange": {
            "minVariantPrice": {"amount": "49.0", "currencyCode": "USD"},
            "maxVariantPrice": {"amount": "49.0", "currencyCode": "USD"},
        },
    }


@pytest.fixture
def product_factory() -> Callable[..., dict]:
    return make_product


@pytest.fixture
def candidate_factory() -> Callable[..., "Candidate"]:
    """Build a Candidate from make_product's keyword arguments."""
    from foryou.candidate_factory import normalize_candidate

    def factory(handle: str, **kwargs):
        return normalize_candidate(make_product(handle, **kwargs))
    return factory


@pytest.fixture
def sample_catalog() -> dict:
    """
    Small menswear/womenswear catalog.

    Men: six hoodies across three vendors, four jeans, two jackets.
    Women: three dresses.
    """
    products = []
    for i, vendor in enumerate(["Acme", "Acme", "Acme", "Northwind", "Northwind", "Globex"]):
        products.append(make_product(
            f"hoodie-{i}", product_type="Hoodie", vendor=vendor,
            tags=["men", "cotton", "hoodie"], title=f"Cotton Hoodie {i}", days_old=i + 1,
        ))
    for i in range(4):
        products.append(make_product(
            f"jeans-{i}", product_type="Jeans", vendor="Denimco",
            tags=["men", "denim", "jeans", "slim"], title=f"Slim Denim Jeans {i}", days_old=i + 2,
        ))
    for i in range(2):
        products.append(make_product(
            f"jacket-{i}", product_type="Jacket", vendor="Outdoorsy",
            tags=["men", "jacket"], title=f"Parka Jacket {i}", days_old=i + 3,
        ))
    for i in range(3):
        products.append(make_product(
            f"dress-{i}", product_type="Dress", vendor="Bloom",
            tags=["women", "dress"], title=f"Summer Dress {i}", days_old=i + 1,
        ))

    men = [p["handle"] for p in products if "men" in p["tags"]]
    women = [p["handle"] for p in products if "women" in p["tags"]]
    return {
        "products": products,
        "collections": {"men": men, "women": women, "all": [p["handle"] for p in products]},
        "recommendations": {"jeans-0": ["jeans-1", "jeans-2", "hoodie-0"]},
    }


# ============================================================================
# Fixtures: Collaborators
# ============================================================================

@pytest.fixture
def source(sample_catalog):
    from foryou.sources import InMemoryCandidateSource
    return InMemoryCandidateSource(**sample_catalog)


@pytest.fixture
def storage():
    from foryou.storage import InMemoryProfileStorage
    return InMemoryProfileStorage()


@pytest.fixture
def telemetry():
    from core.telemetry import InMemoryTelemetry
    return InMemoryTelemetry(debug=True)


@pytest.fixture
def settings():
    from config.settings import get_settings_for_testing
    return get_settings_for_testing(source_timeout_seconds=5.0)


@pytest.fixture
def tracker(storage):
    from foryou.tracking import EventTracker
    return EventTracker(storage)


@pytest.fixture
def feed_service(storage, source, settings, telemetry, tracker, clock):
    from foryou.service import ForYouService
    return ForYouService(storage, source, settings=settings, telemetry=telemetry, tracker=tracker, clock=clock)


@pytest.fixture
def reel_service(storage, source, settings, telemetry, tracker, clock):
    from foryou.intelligence import IntelligenceCache
    from foryou.reel_service import ReelService
    return ReelService(
        storage, source, settings=settings, telemetry=telemetry,
        cache=IntelligenceCache(), tracker=tracker, clock=clock,
    )


# ============================================================================
# Fixtures: FastAPI Test Client
# ============================================================================

@pytest.fixture
def app(feed_service, reel_service, tracker, settings):
    """FastAPI application wired to the in-memory collaborators."""
    from api.app import create_app
    return create_app(feed_service=feed_service, reel_service=reel_service, tracker=tracker, settings=settings)


@pytest.fixture
def client(app) -> Generator:
    from fastapi.testclient import TestClient
    with TestClient(app) as test_client:
        yield test_client


# ============================================================================
# Markers auto-use
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "redis: marks tests that require a Redis server")


# ============================================================================
# Skip conditions
# ============================================================================

def pytest_collection_modifyitems(config, items):
    """Auto-skip Redis tests if no Redis URL is configured."""
    skip_redis = pytest.mark.skip(reason="Redis tests require TEST_REDIS_URL")

    redis_url = os.getenv("TEST_REDIS_URL")

    for item in items:
        if "redis" in item.keywords and not redis_url:
            item.add_marker(skip_redis)
