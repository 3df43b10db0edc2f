"""
Candidate Sources.

A CandidateSource is the catalog collaborator the orchestrators retrieve
from. It exposes five operations:
- collection_page: one page of a collection, newest first
- search_by_terms: relevance search built from descriptive terms
- recommended_for_product: products related to a given product
- product_by_handle: single product detail lookup
- newest_products: newest products across the catalog

This module also provides the multi-collection round-robin walk used by
both orchestrators, and InMemoryCandidateSource, a catalog-backed source for
development and tests.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from core.logging import get_logger
from core.utils import clamp, normalize_key, parse_timestamp, unique_first
from foryou.cursors import FeedCursor
from foryou.errors import CandidateSourceError
from foryou.models import Gender, SourcePage


logger = get_logger(__name__)

MIN_POOL_SIZE, MAX_POOL_SIZE = 20, 400
MIN_PER_PAGE, MAX_PER_PAGE = 20, 100
ROUNDS_PER_HANDLE = 8

MIN_SEARCH_FIRST, MAX_SEARCH_FIRST = 8, 40
MAX_SEARCH_TERMS = 8


# =============================================================================
# Interface
# =============================================================================

class CandidateSource(ABC):
    """Catalog collaborator. Implementations may raise CandidateSourceError."""

    @abstractmethod
    def collection_page(self, handle: str, page_size: int, after: Optional[str] = None) -> SourcePage:
        ...

    @abstractmethod
    def search_by_terms(
        self,
        terms: Sequence[str],
        gender: Gender = Gender.UNKNOWN,
        product_type: Optional[str] = None,
        vendor: Optional[str] = None,
        first: int = 24,
        after: Optional[str] = None,
    ) -> SourcePage:
        ...

    @abstractmethod
    def recommended_for_product(self, handle: str, product_id: Optional[str] = None) -> List[Any]:
        ...

    @abstractmethod
    def product_by_handle(self, handle: str) -> Optional[Any]:
        ...

    @abstractmethod
    def newest_products(self, page_size: int, after: Optional[str] = None) -> SourcePage:
        ...


# =============================================================================
# Search query
# =============================================================================

def normalize_search_term(value: Any) -> str:
    return " ".join(normalize_key(value).replace("_", " ").split())


def build_search_query(
    terms: Sequence[str],
    gender: Gender = Gender.UNKNOWN,
    product_type: Optional[str] = None,
    vendor: Optional[str] = None,
) -> str:
    """
    Storefront search syntax: field clauses, quoted terms, gender tag.

    >>> build_search_query(["wide_leg", "denim"], Gender.MALE, "Jeans")
    'product_type:"Jeans" "wide leg" "denim" tag:men'
    """
    clauses = []
    if product_type and normalize_search_term(product_type):
        clauses.append(f"product_type:{json.dumps(product_type.strip())}")
    if vendor and normalize_search_term(vendor):
        clauses.append(f"vendor:{json.dumps(vendor.strip())}")

    cleaned = unique_first(
        (term for term in (normalize_search_term(entry) for entry in terms) if len(term) >= 3),
        MAX_SEARCH_TERMS,
    )
    clauses.extend(json.dumps(term) for term in cleaned)

    if gender == Gender.MALE:
        clauses.append("tag:men")
    elif gender == Gender.FEMALE:
        clauses.append("tag:women")
    return " ".join(clauses)


def clamp_search_first(first: int) -> int:
    return int(clamp(first, MIN_SEARCH_FIRST, MAX_SEARCH_FIRST))


# =============================================================================
# Collection walk
# =============================================================================

@dataclass
class CollectionWalkResult:
    items: List[Any] = field(default_factory=list)
    next_cursor: Optional[str] = None


def _record_id(record: Any) -> str:
    if isinstance(record, Mapping):
        value = record.get("id")
    else:
        value = getattr(record, "id", None)
    return str(value) if value not in (None, "") else ""


def walk_collections(
    source: CandidateSource,
    handles: Iterable[str],
    pool_size: int = 200,
    per_page: int = 40,
    cursor: Optional[str] = None,
) -> CollectionWalkResult:
    """
    Round-robin over collection handles until the pool is full.

    Each handle keeps its own continuation token; a handle with no next page
    is marked exhausted and skipped. The walk stops when the pool (clamped
    to 20..400) is full, every handle is exhausted, or after 8 rounds per
    handle. next_cursor is None once every handle is exhausted.

    Raises:
        CandidateSourceError: propagated from the source; callers isolate it
    """
    handles = unique_first(handle.strip() for handle in handles if isinstance(handle, str))
    if not handles:
        return CollectionWalkResult()

    target = int(clamp(pool_size, MIN_POOL_SIZE, MAX_POOL_SIZE))
    page_size = int(clamp(per_page, MIN_PER_PAGE, MAX_PER_PAGE))
    state = FeedCursor.decode(cursor, handles)
    exhausted = set(state.exhausted)

    items: List[Any] = []
    seen = set()
    rounds = 0
    max_rounds = len(handles) * ROUNDS_PER_HANDLE

    while len(items) < target and len(exhausted & set(handles)) < len(handles) and rounds < max_rounds:
        rounds += 1
        idx = state.handle_index % len(handles)
        handle = handles[idx]
        state.handle_index = (idx + 1) % len(handles)
        if handle in exhausted:
            continue

        page = source.collection_page(handle, page_size, state.by_handle.get(handle))
        for record in page.items:
            record_id = _record_id(record)
            if not record_id or record_id in seen:
                continue
            seen.add(record_id)
            items.append(record)
            if len(items) >= target:
                break

        if page.has_next and page.cursor:
            state.by_handle[handle] = page.cursor
        else:
            exhausted.add(handle)
            state.by_handle[handle] = None

    state.exhausted = sorted(exhausted)
    state.page += 1

    logger.debug(
        "Collection walk finished",
        items=len(items),
        rounds=rounds,
        exhausted=len(exhausted),
        handles=len(handles),
    )

    if len(exhausted & set(handles)) >= len(handles):
        return CollectionWalkResult(items=items)
    return CollectionWalkResult(items=items, next_cursor=state.encode())


# =============================================================================
# In-memory catalog source
# =============================================================================

class InMemoryCandidateSource(CandidateSource):
    """
    Catalog-backed source for development and tests.

    Args:
        products: Raw product records (dicts with id, handle, tags, ...)
        collections: Collection handle -> product handles
        recommendations: Product handle -> related product handles
        failing: Operation names that raise CandidateSourceError
    """

    def __init__(
        self,
        products: Iterable[Mapping[str, Any]] = (),
        collections: Optional[Mapping[str, Sequence[str]]] = None,
        recommendations: Optional[Mapping[str, Sequence[str]]] = None,
        failing: Iterable[str] = (),
    ):
        self._products: Dict[str, Dict[str, Any]] = {}
        for product in products:
            handle = normalize_key(product.get("handle"))
            if handle:
                self._products[handle] = dict(product)
        self._collections = {key: list(value) for key, value in (collections or {}).items()}
        self._recommendations = {key: list(value) for key, value in (recommendations or {}).items()}
        self._failing = set(failing)
        self._lock = Lock()
        self.calls: List[str] = []

    @classmethod
    def from_json_file(cls, path: str) -> "InMemoryCandidateSource":
        """
        Load a catalog file: {"products": [...], "collections": {...},
        "recommendations": {...}}. A bare list is read as products.
        """
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, list):
            data = {"products": data}
        products = [record for record in data.get("products") or [] if isinstance(record, Mapping)]
        logger.info("Loaded catalog file", path=path, products=len(products))
        return cls(
            products=products,
            collections=data.get("collections"),
            recommendations=data.get("recommendations"),
        )

    def _record_call(self, name: str) -> None:
        with self._lock:
            self.calls.append(name)
        if name in self._failing:
            raise CandidateSourceError(f"{name} unavailable")

    def _newest_first(self, records: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        def created(record: Dict[str, Any]) -> float:
            ts = parse_timestamp(record.get("createdAt"))
            return ts.timestamp() if ts else 0.0
        return sorted(records, key=created, reverse=True)

    @staticmethod
    def _slice(records: List[Dict[str, Any]], page_size: int, after: Optional[str]) -> SourcePage:
        try:
            offset = max(0, int(after)) if after else 0
        except ValueError:
            offset = 0
        end = offset + max(0, page_size)
        has_next = end < len(records)
        return SourcePage(
            items=records[offset:end],
            cursor=str(end) if has_next else None,
            has_next=has_next,
        )

    def collection_page(self, handle: str, page_size: int, after: Optional[str] = None) -> SourcePage:
        self._record_call("collection_page")
        members = self._collections.get(handle, [])
        records = [self._products[h] for h in members if h in self._products]
        return self._slice(self._newest_first(records), page_size, after)

    def search_by_terms(
        self,
        terms: Sequence[str],
        gender: Gender = Gender.UNKNOWN,
        product_type: Optional[str] = None,
        vendor: Optional[str] = None,
        first: int = 24,
        after: Optional[str] = None,
    ) -> SourcePage:
        self._record_call("search_by_terms")
        query = build_search_query(terms, gender, product_type, vendor)
        if not query:
            return SourcePage()

        wanted = [normalize_search_term(term) for term in terms if len(normalize_search_term(term)) >= 3]
        gender_tag = {Gender.MALE: "men", Gender.FEMALE: "women"}.get(gender)

        def matches(record: Dict[str, Any]) -> bool:
            tags = [normalize_key(tag) for tag in record.get("tags") or []]
            if gender_tag and gender_tag not in tags:
                return False
            text = " ".join([
                normalize_key(record.get("title")),
                normalize_key(record.get("productType")),
                normalize_key(record.get("vendor")),
                " ".join(tags),
            ])
            return any(term in text for term in wanted) or (
                bool(product_type) and normalize_key(record.get("productType")) == normalize_key(product_type)
            )

        hits = [record for record in self._products.values() if matches(record)]
        page = self._slice(hits, clamp_search_first(first), after)
        page.query = query
        return page

    def recommended_for_product(self, handle: str, product_id: Optional[str] = None) -> List[Any]:
        self._record_call("recommended_for_product")
        related = self._recommendations.get(normalize_key(handle), [])
        return [self._products[h] for h in related if h in self._products]

    def product_by_handle(self, handle: str) -> Optional[Any]:
        self._record_call("product_by_handle")
        return self._products.get(normalize_key(handle))

    def newest_products(self, page_size: int, after: Optional[str] = None) -> SourcePage:
        self._record_call("newest_products")
        return self._slice(self._newest_first(self._products.values()), page_size, after)
