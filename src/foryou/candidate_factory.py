"""
Candidate Factory Module

Converts raw catalog records into the canonical Candidate model.

Two record shapes reach the engine:
- list nodes (collection pages, search results, recommendations), which
  already carry priceRange / compareAtPriceRange / images
- product detail records (single product-by-handle lookups), which carry
  variants and media instead and need prices and availability derived

Field names are accepted in camelCase (storefront API) or snake_case.
Normalization never raises; unusable records become None.
"""

import math
from typing import Any, Dict, Iterable, List, Mapping, Optional

from core.logging import get_logger
from core.utils import to_float
from foryou.models import Candidate, CandidateImage, Money, PriceRange


logger = get_logger(__name__)

MAX_DETAIL_IMAGES = 6
DEFAULT_CURRENCY = "USD"


def _pick(record: Mapping, *names: str) -> Any:
    for name in names:
        value = record.get(name)
        if value is not None:
            return value
    return None


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _nodes(value: Any) -> List[Any]:
    """Accept both {'nodes': [...]} connections and plain lists."""
    if isinstance(value, Mapping):
        value = value.get("nodes")
    if isinstance(value, (list, tuple)):
        return [node for node in value if node]
    return []


def _format_amount(amount: float) -> str:
    return str(int(amount)) if float(amount).is_integer() else repr(float(amount))


def image_from_record(record: Any) -> Optional[CandidateImage]:
    if isinstance(record, CandidateImage):
        return record
    if not isinstance(record, Mapping):
        return None
    width = _pick(record, "width")
    height = _pick(record, "height")
    return CandidateImage(
        id=_text(_pick(record, "id")),
        url=_text(_pick(record, "url")),
        alt_text=_text(_pick(record, "altText", "alt_text")),
        width=width if isinstance(width, int) else None,
        height=height if isinstance(height, int) else None,
    )


def money_from_record(record: Any) -> Optional[Money]:
    if not isinstance(record, Mapping):
        return None
    amount = _pick(record, "amount")
    return Money(
        amount=str(amount) if amount is not None else "0",
        currency_code=str(_pick(record, "currencyCode", "currency_code") or DEFAULT_CURRENCY),
    )


def price_range_from_record(record: Any) -> Optional[PriceRange]:
    if isinstance(record, PriceRange):
        return record
    if not isinstance(record, Mapping):
        return None
    return PriceRange(
        min_variant_price=money_from_record(_pick(record, "minVariantPrice", "min_variant_price")),
        max_variant_price=money_from_record(_pick(record, "maxVariantPrice", "max_variant_price")),
    )


def _tags(value: Any) -> Optional[List[str]]:
    if not isinstance(value, (list, tuple)):
        return None
    return [str(tag) for tag in value if tag is not None]


def _identity(record: Mapping) -> Optional[Dict[str, str]]:
    raw_id = _pick(record, "id")
    raw_handle = _pick(record, "handle")
    if raw_id in (None, "") or not isinstance(raw_handle, str) or not raw_handle.strip():
        return None
    return {"id": str(raw_id), "handle": raw_handle}


# =============================================================================
# Public API
# =============================================================================

def candidate_from_node(record: Mapping) -> Optional[Candidate]:
    """
    Convert a list node (collection / search / recommendation) to a Candidate.

    Args:
        record: Raw node with id, handle and the usual product fields

    Returns:
        Candidate, or None if the record has no id or handle
    """
    identity = _identity(record)
    if identity is None:
        return None

    images = [image_from_record(node) for node in _nodes(_pick(record, "images"))]
    available = _pick(record, "availableForSale", "available_for_sale")
    created_at = _pick(record, "createdAt", "created_at")

    return Candidate(
        **identity,
        title=_text(_pick(record, "title")),
        vendor=_text(_pick(record, "vendor")),
        product_type=_text(_pick(record, "productType", "product_type")),
        tags=_tags(_pick(record, "tags")),
        created_at=created_at if isinstance(created_at, str) else None,
        available_for_sale=available if isinstance(available, bool) else None,
        featured_image=image_from_record(_pick(record, "featuredImage", "featured_image")),
        images=[image for image in images if image is not None],
        price_range=price_range_from_record(_pick(record, "priceRange", "price_range")),
        compare_at_price_range=price_range_from_record(
            _pick(record, "compareAtPriceRange", "compare_at_price_range")
        ),
        description=_text(_pick(record, "description")),
        description_html=_text(_pick(record, "descriptionHtml", "description_html")),
    )


def candidate_from_product_detail(record: Mapping) -> Optional[Candidate]:
    """
    Convert a single-product lookup to a Candidate.

    Prices come from the variants: min/max price and min/max compare-at
    price (compare-at falls back to the price range). The candidate is
    available when any variant is not explicitly unavailable. Images come
    from media nodes (first 6).
    """
    identity = _identity(record)
    if identity is None:
        return None

    min_price, max_price = math.inf, 0.0
    min_compare, max_compare = math.inf, 0.0
    currency_code = DEFAULT_CURRENCY
    available = False

    for variant in _nodes(_pick(record, "variants")):
        if not isinstance(variant, Mapping):
            continue
        price = variant.get("price") if isinstance(variant.get("price"), Mapping) else {}
        compare_record = _pick(variant, "compareAtPrice", "compare_at_price")
        compare_at = compare_record if isinstance(compare_record, Mapping) else {}

        amount = to_float(price.get("amount"), 0.0)
        min_price = min(min_price, amount)
        max_price = max(max_price, amount)

        compare = to_float(compare_at.get("amount"), 0.0)
        if compare > 0:
            min_compare = min(min_compare, compare)
            max_compare = max(max_compare, compare)

        code = _pick(price, "currencyCode", "currency_code")
        if code:
            currency_code = str(code)
        if _pick(variant, "availableForSale", "available_for_sale") is not False:
            available = True

    if not math.isfinite(min_price):
        min_price = 0.0
    if max_price <= 0:
        max_price = min_price
    if not math.isfinite(min_compare) or min_compare <= 0:
        min_compare = min_price
    if max_compare <= 0:
        max_compare = min_compare

    def price_range(low: float, high: float) -> PriceRange:
        return PriceRange(
            min_variant_price=Money(amount=_format_amount(low), currency_code=currency_code),
            max_variant_price=Money(amount=_format_amount(high), currency_code=currency_code),
        )

    media_images = []
    for node in _nodes(_pick(record, "media")):
        image = image_from_record(node.get("image")) if isinstance(node, Mapping) else None
        if image is not None:
            media_images.append(image)

    created_at = _pick(record, "createdAt", "created_at")

    return Candidate(
        **identity,
        title=_text(_pick(record, "title")),
        vendor=_text(_pick(record, "vendor")),
        product_type=_text(_pick(record, "productType", "product_type")),
        tags=_tags(_pick(record, "tags")),
        created_at=created_at if isinstance(created_at, str) else None,
        available_for_sale=available,
        featured_image=image_from_record(_pick(record, "featuredImage", "featured_image")),
        images=media_images[:MAX_DETAIL_IMAGES],
        price_range=price_range(min_price, max_price),
        compare_at_price_range=price_range(min_compare, max_compare),
        description=_text(_pick(record, "description")),
        description_html=_text(_pick(record, "descriptionHtml", "description_html")),
    )


def normalize_candidate(record: Any) -> Optional[Candidate]:
    """
    Dispatch on record shape: Candidate passthrough, product detail
    (has variants or media), or list node.
    """
    if isinstance(record, Candidate):
        return record
    if not isinstance(record, Mapping):
        return None
    try:
        if "variants" in record or "media" in record:
            return candidate_from_product_detail(record)
        return candidate_from_node(record)
    except (TypeError, ValueError) as e:
        logger.debug("Dropping unreadable candidate record", error=str(e))
        return None


def normalize_candidates(records: Iterable[Any]) -> List[Candidate]:
    out = []
    for record in records or []:
        candidate = normalize_candidate(record)
        if candidate is not None:
            out.append(candidate)
    return out
