"""
Product Intelligence.

Derives catalog attributes from a candidate's free-form fields:
- primary category (closed set) with a confidence score and sub-category
- material / fit / color / style / use-case tokens
- weighted normalized terms used for seed similarity
- a 0..1 quality score reflecting how rich the product data is

Results are memoized per handle in an IntelligenceCache that callers own
and inject; there is no module-level cache.
"""

import re
from collections import OrderedDict
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, Iterable, List, Optional, Tuple

from core.utils import clamp, normalize_key, unique_first
from foryou.content_signals import extract_content_signals
from foryou.models import Candidate
from foryou.profile import derive_signal_tags


# =============================================================================
# Vocabulary
# =============================================================================

MAX_NORMALIZED_TERMS = 64
MAX_ATTRIBUTE_TOKENS = 12
MAX_IMAGE_TOKENS = 20
DEFAULT_CACHE_SIZE = 800

UNKNOWN_CATEGORY = "unknown"

PRIMARY_CATEGORIES = (
    "bottoms_denim",
    "bottoms_pants",
    "underwear",
    "tops_hoodies",
    "tops_shirts",
    "outerwear",
    "shoes",
    "accessories",
    UNKNOWN_CATEGORY,
)

GENERIC_TERMS = frozenset({
    "men", "women", "male", "female", "unisex",
    "new", "newin", "new_in", "new-arrivals", "new_arrivals", "arrivals", "arrival",
    "all", "sale", "products", "product",
    "the", "with", "from", "this", "that", "and", "for",
})

CATEGORY_RULES: Dict[str, Tuple[str, ...]] = {
    "bottoms_denim": ("jean", "jeans", "denim", "straight leg", "wide leg", "bootcut"),
    "bottoms_pants": ("pant", "pants", "trouser", "trousers", "cargo"),
    "underwear": ("boxer", "brief", "underwear"),
    "tops_hoodies": ("hoodie", "sweatshirt"),
    "tops_shirts": ("shirt", "tee", "t-shirt"),
    "outerwear": ("jacket", "coat", "parka"),
    "shoes": ("sneaker", "boot", "loafer"),
    "accessories": ("belt", "cap", "hat", "bag"),
}

# Flat bonuses for categories that are easy to under-detect
CATEGORY_BONUS = {"bottoms_denim": 1.4, "underwear": 1.2}
DENIM_UNDERWEAR_CONFLICT_PENALTY = 0.8

MULTIWORD_HIT = 2.6
EXACT_HIT = 2.0
PLURAL_STEM_HIT = 1.6

MIN_CATEGORY_SCORE = 2.0
MIN_CATEGORY_CONFIDENCE = 0.34
NO_MATCH_CONFIDENCE = 0.15

MATERIAL_TOKENS = ("cotton", "denim", "polyester", "fleece", "wool")
FIT_TOKENS = ("slim", "regular", "oversized", "relaxed", "straight", "skinny")
COLOR_TOKENS = ("black", "blue", "grey", "beige", "white", "brown")
STYLE_TOKENS = ("vintage", "washed", "distressed", "minimal", "graphic", "embroidered")
USE_CASE_TOKENS = ("summer", "winter", "casual", "formal", "gym", "streetwear")

# Weighted-term source weights
TITLE_WEIGHT = 4.0
PRODUCT_TYPE_WEIGHT = 3.5
DERIVED_TAG_WEIGHT = 3.0
CONTENT_WEIGHT = 2.2
HANDLE_WEIGHT = 2.0
IMAGE_WEIGHT = 2.0
VENDOR_WEIGHT = 0.8

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")
_FILENAME_SPLIT = re.compile(r"[_\-.]+")
_FILE_EXTENSION = re.compile(r"\.[a-z0-9]{2,5}$", re.IGNORECASE)


# =============================================================================
# Data Model
# =============================================================================

@dataclass(frozen=True)
class CategoryMatch:
    primary_category: str
    confidence_score: float
    sub_category: Optional[str] = None


@dataclass(frozen=True)
class ProductIntelligence:
    """Derived catalog attributes for one product."""
    primary_category: str
    confidence_score: float
    sub_category: Optional[str] = None
    style_tokens: List[str] = field(default_factory=list)
    material_tokens: List[str] = field(default_factory=list)
    fit_tokens: List[str] = field(default_factory=list)
    color_tokens: List[str] = field(default_factory=list)
    use_case_tokens: List[str] = field(default_factory=list)
    normalized_terms: List[str] = field(default_factory=list)
    quality_score: float = 0.0


# =============================================================================
# Helpers
# =============================================================================

def _is_useful(token: str) -> bool:
    return len(token) >= 3 and token not in GENERIC_TERMS and not token.isdigit()


def tokenize(value: Optional[str]) -> List[str]:
    return [token for token in _TOKEN_SPLIT.split(normalize_key(value)) if _is_useful(token)]


def image_filename_tokens(url: Optional[str]) -> List[str]:
    if not isinstance(url, str) or not url.strip():
        return []
    segments = [segment for segment in url.split("?")[0].split("/") if segment]
    if not segments:
        return []
    stem = _FILE_EXTENSION.sub("", segments[-1])
    tokens = (token.strip().lower() for token in _FILENAME_SPLIT.split(stem))
    return [token for token in tokens if _is_useful(token)]


def _add_weighted(weights: Dict[str, float], terms: Iterable[str], weight: float) -> None:
    for term in terms:
        key = normalize_key(term)
        if not key or key in GENERIC_TERMS:
            continue
        weights[key] = weights.get(key, 0.0) + weight


def _pick_attribute_tokens(terms: List[str], allowed: Tuple[str, ...]) -> List[str]:
    allowed_set = set(allowed)
    return unique_first((term for term in terms if term in allowed_set), MAX_ATTRIBUTE_TOKENS)


def classify_category(terms: List[str]) -> CategoryMatch:
    """
    Score each category's keywords against the term list.

    Multi-word keywords match as whole phrases, single words exactly or by
    their singular stem. Low scores or ambiguous results yield 'unknown'.
    """
    term_set = set(terms)
    joined = f" {' '.join(terms)} "
    scores: Dict[str, float] = {}
    sub_keywords: Dict[str, str] = {}

    for category, keywords in CATEGORY_RULES.items():
        score = 0.0
        best_keyword = ""
        for keyword in keywords:
            if " " in keyword:
                hit = MULTIWORD_HIT if f" {keyword} " in joined else 0.0
            elif keyword in term_set:
                hit = EXACT_HIT
            elif keyword.endswith("s") and keyword[:-1] in term_set:
                hit = PLURAL_STEM_HIT
            else:
                hit = 0.0
            if hit > 0:
                score += hit
                if not best_keyword or hit > EXACT_HIT:
                    best_keyword = keyword
        if score > 0:
            scores[category] = score + CATEGORY_BONUS.get(category, 0.0)
            sub_keywords[category] = best_keyword.replace(" ", "_")

    if not scores:
        return CategoryMatch(UNKNOWN_CATEGORY, NO_MATCH_CONFIDENCE)

    ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    top_category, top_score = ranked[0]
    second_score = ranked[1][1] if len(ranked) > 1 else 0.0

    adjusted_top = top_score
    if (top_category == "bottoms_denim" and "underwear" in scores) or (
        top_category == "underwear" and "bottoms_denim" in scores
    ):
        adjusted_top -= DENIM_UNDERWEAR_CONFLICT_PENALTY

    confidence = clamp(adjusted_top / (adjusted_top + second_score + 1.0), 0.0, 1.0)
    if adjusted_top < MIN_CATEGORY_SCORE or confidence < MIN_CATEGORY_CONFIDENCE:
        return CategoryMatch(UNKNOWN_CATEGORY, confidence)

    return CategoryMatch(top_category, confidence, sub_keywords.get(top_category))


# =============================================================================
# Build
# =============================================================================

def build_product_intelligence(candidate: Candidate) -> ProductIntelligence:
    """Derive ProductIntelligence for one candidate. Pure; never raises."""
    images = [image for image in [candidate.featured_image, *candidate.images] if image is not None]

    derived_tags = derive_signal_tags(
        candidate.tags or [],
        handle=candidate.handle,
        vendor=candidate.vendor,
        product_type=candidate.product_type,
        title=candidate.title,
    )
    content_signals = extract_content_signals(
        description_html=candidate.description_html,
        description=candidate.description,
        image_alt_texts=[image.alt_text for image in images],
        handle=candidate.handle,
        title=candidate.title,
        vendor=candidate.vendor,
        product_type=candidate.product_type,
    )
    image_tokens = unique_first(
        (token for image in images for token in image_filename_tokens(image.url)),
        MAX_IMAGE_TOKENS,
    )

    weights: Dict[str, float] = {}
    _add_weighted(weights, tokenize(candidate.title), TITLE_WEIGHT)
    _add_weighted(weights, tokenize(candidate.product_type), PRODUCT_TYPE_WEIGHT)
    _add_weighted(weights, derived_tags, DERIVED_TAG_WEIGHT)
    _add_weighted(weights, content_signals, CONTENT_WEIGHT)
    _add_weighted(weights, tokenize(candidate.handle), HANDLE_WEIGHT)
    _add_weighted(weights, image_tokens, IMAGE_WEIGHT)
    _add_weighted(weights, tokenize(candidate.vendor), VENDOR_WEIGHT)

    ranked_terms = sorted(weights.items(), key=lambda item: item[1], reverse=True)
    normalized_terms = [
        term for term, _ in ranked_terms
        if len(term) >= 3 and term not in GENERIC_TERMS
    ][:MAX_NORMALIZED_TERMS]

    category = classify_category(normalized_terms)

    richness = (
        (0.2 if normalize_key(candidate.product_type) else 0.0)
        + min(0.3, len(candidate.tags or []) * 0.05)
        + min(0.3, len(normalized_terms) / 80)
        + min(0.2, category.confidence_score * 0.2)
    )

    return ProductIntelligence(
        primary_category=category.primary_category,
        confidence_score=round(category.confidence_score, 4),
        sub_category=category.sub_category,
        style_tokens=_pick_attribute_tokens(normalized_terms, STYLE_TOKENS),
        material_tokens=_pick_attribute_tokens(normalized_terms, MATERIAL_TOKENS),
        fit_tokens=_pick_attribute_tokens(normalized_terms, FIT_TOKENS),
        color_tokens=_pick_attribute_tokens(normalized_terms, COLOR_TOKENS),
        use_case_tokens=_pick_attribute_tokens(normalized_terms, USE_CASE_TOKENS),
        normalized_terms=normalized_terms,
        quality_score=round(clamp(richness, 0.0, 1.0), 4),
    )


# =============================================================================
# Cache
# =============================================================================

class IntelligenceCache:
    """
    Bounded, insertion-ordered memo of ProductIntelligence keyed by handle.

    The oldest entry is evicted once max_size is exceeded. Thread-safe so
    one cache can be shared by concurrent requests.
    """

    def __init__(self, max_size: int = DEFAULT_CACHE_SIZE):
        self._entries: "OrderedDict[str, ProductIntelligence]" = OrderedDict()
        self._lock = Lock()
        self._max_size = max_size

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, candidate: Candidate) -> ProductIntelligence:
        key = normalize_key(candidate.handle) or normalize_key(candidate.id)
        if not key:
            return build_product_intelligence(candidate)

        with self._lock:
            cached = self._entries.get(key)
        if cached is not None:
            return cached

        built = build_product_intelligence(candidate)
        with self._lock:
            self._entries[key] = built
            while len(self._entries) > self._max_size:
                self._entries.popitem(last=False)
        return built

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


def infer_primary_category(candidate: Candidate, cache: Optional[IntelligenceCache] = None) -> str:
    intelligence = cache.get(candidate) if cache else build_product_intelligence(candidate)
    return intelligence.primary_category
