"""
Pydantic models for the for-you personalization engine.

Models cover:
- Visitor gender and behavioral event types
- Canonical product candidate (source-agnostic)
- Candidate-source pages
- Feed / reel page responses
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Enums
# =============================================================================

class Gender(str, Enum):
    """Which candidate pools a visitor is eligible for."""
    MALE = "male"
    FEMALE = "female"
    UNKNOWN = "unknown"


class EventType(str, Enum):
    """Behavioral events that feed the affinity profile."""
    PRODUCT_OPEN = "product_open"
    ADD_TO_CART = "add_to_cart"
    ADD_TO_WISHLIST = "add_to_wishlist"
    SEARCH_CLICK = "search_click"
    VARIANT_SELECT = "variant_select"
    PDP_SCROLL_75 = "pdp_scroll_75_percent"
    PDP_SCROLL_100 = "pdp_scroll_100_percent"
    TIME_ON_PRODUCT_8S = "time_on_product_>8s"


class ForYouEvent(BaseModel):
    """One tracked interaction. All product fields are optional."""
    type: EventType
    at: Optional[str] = None  # ISO timestamp, filled in when buffered
    handle: Optional[str] = None
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    tags: Optional[List[str]] = None


# =============================================================================
# Candidate
# =============================================================================

class Money(BaseModel):
    model_config = ConfigDict(frozen=True)

    amount: str = "0"
    currency_code: str = "USD"


class PriceRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_variant_price: Optional[Money] = None
    max_variant_price: Optional[Money] = None


class CandidateImage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    url: Optional[str] = None
    alt_text: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None


class Candidate(BaseModel):
    """
    Normalized, source-agnostic product projection.

    Produced only by the candidate factory; ranking scores live on
    RankedCandidate and never on the candidate itself.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    handle: str
    title: Optional[str] = None
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    tags: Optional[List[str]] = None
    created_at: Optional[str] = None
    available_for_sale: Optional[bool] = None
    featured_image: Optional[CandidateImage] = None
    images: List[CandidateImage] = Field(default_factory=list)
    price_range: Optional[PriceRange] = None
    compare_at_price_range: Optional[PriceRange] = None

    # Content fields (seed products only; used for content signals)
    description: Optional[str] = None
    description_html: Optional[str] = None


class RankedCandidate(BaseModel):
    """Ephemeral ranking wrapper. Stripped before anything leaves an engine."""
    candidate: Candidate
    score: float
    category: Optional[str] = None
    debug: Optional[Dict[str, Any]] = None

    @property
    def handle(self) -> str:
        return self.candidate.handle


# =============================================================================
# Sources & Pages
# =============================================================================

class SourcePage(BaseModel):
    """
    One page from a candidate-source collaborator.

    Items are raw records (dicts in whatever shape the source speaks) or
    already-normalized Candidates; the candidate factory handles both.
    """
    items: List[Any] = Field(default_factory=list)
    cursor: Optional[str] = None
    has_next: bool = False
    query: str = ""


class FeedPage(BaseModel):
    items: List[Candidate] = Field(default_factory=list)
    next_cursor: Optional[str] = None
    profile_hash: str = ""
    gender: Gender = Gender.UNKNOWN
    debug: Optional[Dict[str, Any]] = None


class ReelPage(BaseModel):
    items: List[Candidate] = Field(default_factory=list)
    cursor: Optional[str] = None
    debug: Optional[Dict[str, Any]] = None
