"""
Affinity Profile & Signal Model.

The profile is the durable, per-visitor personalization state:

1. Seven score buckets (handle, vendor, product type, tag, category,
   material, fit). Each maps a normalized key to a ScoreEntry with a raw
   score and the time it was last bumped.

2. Exponential time decay on read:
       effective = raw * 0.5 ^ (age_days / half_life_days)
   Nothing is ever deleted by decay; old interest just fades.

3. Event application: one event -> one new Profile. The event type picks a
   weight from a fixed per-bucket table, added to the raw score and clamped
   to [0, 500].

4. Bounded recency lists: recent_handles (<= 50) and the served-cooldown
   list (<= 80), most-recent-first with no duplicates.

All functions are pure: they never mutate the Profile they are given.
The serialized (camelCase) shape is what storage collaborators persist.
"""

import json
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from core.logging import get_logger
from core.utils import (
    MS_PER_DAY,
    clamp,
    normalize_key,
    parse_timestamp,
    to_epoch_ms,
    to_float,
    to_iso,
    unique_first,
    utc_now,
)
from foryou.hashing import hash_hex
from foryou.models import EventType, ForYouEvent, Gender


logger = get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

SCHEMA_VERSION = 2
RECENT_HANDLES_LIMIT = 50
RECENTLY_SERVED_LIMIT = 80
PROFILE_MAX_JSON_BYTES = 48 * 1024
DEFAULT_HALF_LIFE_DAYS = 21
MAX_SCORE = 500.0
COLD_START_THRESHOLD = 0.1
PROFILE_HASH_TOP_KEYS = 12

PRUNE_MAX_AGE_DAYS = 120
PRUNE_BUCKET_LIMIT = 100

SIGNAL_TAG_LIMIT = 24
SIGNAL_TAG_STOPWORDS = frozenset({
    "and", "for", "with", "the", "this", "that", "from",
    "women", "woman", "female", "men", "man", "male", "unisex",
})

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")

# Bucket attribute name -> serialized key
BUCKET_FIELDS: Dict[str, str] = {
    "by_product_handle": "byProductHandle",
    "by_vendor": "byVendor",
    "by_product_type": "byProductType",
    "by_tag": "byTag",
    "by_category": "byCategory",
    "by_material": "byMaterial",
    "by_fit": "byFit",
}


# =============================================================================
# Per-bucket event weights
# =============================================================================

HANDLE_WEIGHT: Dict[EventType, float] = {
    EventType.PRODUCT_OPEN: 2.5,
    EventType.ADD_TO_CART: 4.5,
    EventType.ADD_TO_WISHLIST: 4.0,
    EventType.SEARCH_CLICK: 2.0,
    EventType.VARIANT_SELECT: 1.0,
    EventType.PDP_SCROLL_75: 3.1,
    EventType.PDP_SCROLL_100: 3.7,
    EventType.TIME_ON_PRODUCT_8S: 3.3,
}

VENDOR_WEIGHT: Dict[EventType, float] = {
    EventType.PRODUCT_OPEN: 1.4,
    EventType.ADD_TO_CART: 2.4,
    EventType.ADD_TO_WISHLIST: 2.2,
    EventType.SEARCH_CLICK: 1.0,
    EventType.VARIANT_SELECT: 0.6,
    EventType.PDP_SCROLL_75: 0.9,
    EventType.PDP_SCROLL_100: 1.1,
    EventType.TIME_ON_PRODUCT_8S: 1.0,
}

PRODUCT_TYPE_WEIGHT: Dict[EventType, float] = {
    EventType.PRODUCT_OPEN: 0.9,
    EventType.ADD_TO_CART: 1.8,
    EventType.ADD_TO_WISHLIST: 1.5,
    EventType.SEARCH_CLICK: 0.8,
    EventType.VARIANT_SELECT: 0.5,
    EventType.PDP_SCROLL_75: 0.6,
    EventType.PDP_SCROLL_100: 0.8,
    EventType.TIME_ON_PRODUCT_8S: 0.75,
}

TAG_WEIGHT: Dict[EventType, float] = {
    EventType.PRODUCT_OPEN: 0.5,
    EventType.ADD_TO_CART: 1.1,
    EventType.ADD_TO_WISHLIST: 0.9,
    EventType.SEARCH_CLICK: 0.5,
    EventType.VARIANT_SELECT: 0.3,
    EventType.PDP_SCROLL_75: 0.35,
    EventType.PDP_SCROLL_100: 0.45,
    EventType.TIME_ON_PRODUCT_8S: 0.4,
}

CATEGORY_WEIGHT: Dict[EventType, float] = {
    EventType.PRODUCT_OPEN: 1.25,
    EventType.ADD_TO_CART: 2.5,
    EventType.ADD_TO_WISHLIST: 2.1,
    EventType.SEARCH_CLICK: 1.1,
    EventType.VARIANT_SELECT: 0.8,
    EventType.PDP_SCROLL_75: 1.05,
    EventType.PDP_SCROLL_100: 1.25,
    EventType.TIME_ON_PRODUCT_8S: 1.3,
}

MATERIAL_WEIGHT: Dict[EventType, float] = {
    EventType.PRODUCT_OPEN: 0.8,
    EventType.ADD_TO_CART: 1.8,
    EventType.ADD_TO_WISHLIST: 1.4,
    EventType.SEARCH_CLICK: 0.7,
    EventType.VARIANT_SELECT: 0.55,
    EventType.PDP_SCROLL_75: 0.65,
    EventType.PDP_SCROLL_100: 0.75,
    EventType.TIME_ON_PRODUCT_8S: 0.85,
}

FIT_WEIGHT: Dict[EventType, float] = {
    EventType.PRODUCT_OPEN: 0.65,
    EventType.ADD_TO_CART: 1.45,
    EventType.ADD_TO_WISHLIST: 1.2,
    EventType.SEARCH_CLICK: 0.55,
    EventType.VARIANT_SELECT: 0.5,
    EventType.PDP_SCROLL_75: 0.5,
    EventType.PDP_SCROLL_100: 0.62,
    EventType.TIME_ON_PRODUCT_8S: 0.72,
}


# =============================================================================
# Inferred semantics (category / material / fit)
# =============================================================================

# Checked in order; the first category with any keyword hit wins.
CATEGORY_KEYWORD_PRIORITY = (
    ("bottoms_denim", ("jeans", "denim")),
    ("underwear", ("boxer", "brief", "underwear")),
    ("tops_hoodies", ("hoodie", "sweatshirt", "pullover")),
    ("tops_shirts", ("shirt", "tee", "blouse")),
    ("outerwear", ("jacket", "coat", "parka", "blazer")),
    ("bottoms_pants", ("pants", "trouser", "cargo", "shorts", "skirt")),
    ("shoes", ("shoe", "sneaker", "boot", "loafer")),
    ("accessories", ("hat", "cap", "belt", "bag", "beret", "socks")),
)

MATERIAL_TERMS = ("cotton", "denim", "polyester", "fleece", "wool")
FIT_TERMS = ("slim", "regular", "oversized", "relaxed", "straight", "skinny")

UNKNOWN_CATEGORY = "unknown"


@dataclass(frozen=True)
class EventSemantics:
    category: str
    materials: List[str]
    fits: List[str]


# =============================================================================
# Data Model
# =============================================================================

@dataclass(frozen=True)
class ScoreEntry:
    """Raw accumulated score plus the time it was last bumped."""
    score: float
    last_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"score": self.score, "lastAt": to_iso(self.last_at)}


ScoreBucket = Dict[str, ScoreEntry]


@dataclass
class ProfileSignals:
    by_product_handle: ScoreBucket = field(default_factory=dict)
    by_vendor: ScoreBucket = field(default_factory=dict)
    by_product_type: ScoreBucket = field(default_factory=dict)
    by_tag: ScoreBucket = field(default_factory=dict)
    by_category: ScoreBucket = field(default_factory=dict)
    by_material: ScoreBucket = field(default_factory=dict)
    by_fit: ScoreBucket = field(default_factory=dict)
    recent_handles: List[str] = field(default_factory=list)

    def buckets(self) -> Dict[str, ScoreBucket]:
        return {name: getattr(self, name) for name in BUCKET_FIELDS}

    def copy(self) -> "ProfileSignals":
        # ScoreEntry is frozen, so copying the dicts is enough
        return ProfileSignals(
            **{name: dict(bucket) for name, bucket in self.buckets().items()},
            recent_handles=list(self.recent_handles),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            wire: {key: entry.to_dict() for key, entry in getattr(self, name).items()}
            for name, wire in BUCKET_FIELDS.items()
        }
        out["recentHandles"] = list(self.recent_handles)
        return out


@dataclass
class Profile:
    """
    Durable personalization state for one visitor.

    Treat as a value: every operation in this module returns a new Profile.
    """
    schema_version: int
    updated_at: datetime
    gender: Gender = Gender.UNKNOWN
    signals: ProfileSignals = field(default_factory=ProfileSignals)
    recently_served_handles: List[str] = field(default_factory=list)

    @property
    def updated_at_iso(self) -> str:
        return to_iso(self.updated_at)

    def copy(self) -> "Profile":
        return Profile(
            schema_version=self.schema_version,
            updated_at=self.updated_at,
            gender=self.gender,
            signals=self.signals.copy(),
            recently_served_handles=list(self.recently_served_handles),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the persisted camelCase shape."""
        return {
            "schemaVersion": self.schema_version,
            "updatedAt": self.updated_at_iso,
            "gender": self.gender.value,
            "signals": self.signals.to_dict(),
            "cooldowns": {
                "recentlyServedHandles": list(self.recently_served_handles),
            },
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_json(cls, json_str: str, now: Optional[datetime] = None) -> "Profile":
        return normalize_profile(json_str, now)


# =============================================================================
# Construction & Normalization
# =============================================================================

def create_empty_profile(now: Optional[datetime] = None) -> Profile:
    return Profile(
        schema_version=SCHEMA_VERSION,
        updated_at=now or utc_now(),
        gender=Gender.UNKNOWN,
    )


def normalize_gender(value: Any) -> Gender:
    if isinstance(value, Gender):
        return value
    text = normalize_key(value if isinstance(value, str) else "")
    if text == Gender.MALE.value:
        return Gender.MALE
    if text == Gender.FEMALE.value:
        return Gender.FEMALE
    return Gender.UNKNOWN


def normalize_profile(raw: Any, now: Optional[datetime] = None) -> Profile:
    """
    Defensive parse of untrusted or stored profile data.

    Accepts a Profile, a JSON string, or a dict in the persisted shape.
    Malformed fields are dropped; an unreadable input yields an empty
    profile. Never raises.
    """
    base = create_empty_profile(now)

    if isinstance(raw, Profile):
        raw = raw.to_dict()
    elif isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (TypeError, ValueError):
            return base

    if not isinstance(raw, Mapping):
        return base

    signals = raw.get("signals")
    if not isinstance(signals, Mapping):
        signals = {}
    cooldowns = raw.get("cooldowns")
    if not isinstance(cooldowns, Mapping):
        cooldowns = {}

    return Profile(
        # Other schema versions are read field-by-field and re-stamped
        schema_version=SCHEMA_VERSION,
        updated_at=parse_timestamp(raw.get("updatedAt")) or base.updated_at,
        gender=normalize_gender(raw.get("gender")),
        signals=ProfileSignals(
            **{name: _normalize_bucket(signals.get(wire)) for name, wire in BUCKET_FIELDS.items()},
            recent_handles=_normalize_recent_list(signals.get("recentHandles"), RECENT_HANDLES_LIMIT),
        ),
        recently_served_handles=_normalize_recent_list(
            cooldowns.get("recentlyServedHandles"), RECENTLY_SERVED_LIMIT
        ),
    )


def _normalize_bucket(bucket: Any) -> ScoreBucket:
    if not isinstance(bucket, Mapping):
        return {}
    out: ScoreBucket = {}
    for raw_key, value in bucket.items():
        key = normalize_key(raw_key)
        if not key:
            continue
        if isinstance(value, ScoreEntry):
            score, last_at = value.score, value.last_at
        elif isinstance(value, Mapping):
            score, last_at = value.get("score"), parse_timestamp(value.get("lastAt"))
        else:
            continue
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            continue
        # Integers too large for a float coerce to 0 and are dropped
        score = to_float(score, 0.0)
        if score <= 0 or last_at is None:
            continue
        out[key] = ScoreEntry(score=min(MAX_SCORE, score), last_at=last_at)
    return out


def _normalize_recent_list(items: Any, limit: int) -> List[str]:
    if not isinstance(items, (list, tuple)):
        return []
    return unique_first((normalize_key(item) for item in items), limit)


# =============================================================================
# Decay
# =============================================================================

def effective_score(
    entry: Optional[ScoreEntry],
    now: Optional[datetime] = None,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
) -> float:
    """
    Time-decayed score: raw * 0.5 ^ (age_days / half_life_days).

    Returns 0 for missing entries and non-finite or non-positive raw scores.
    """
    if entry is None:
        return 0.0
    raw = entry.score
    if not isinstance(raw, (int, float)) or not math.isfinite(raw) or raw <= 0:
        return 0.0
    now = now or utc_now()
    age = max(0.0, (to_epoch_ms(now) - to_epoch_ms(entry.last_at)) / MS_PER_DAY)
    return raw * math.pow(0.5, age / max(1.0, half_life_days))


def sum_effective(
    bucket: ScoreBucket,
    now: Optional[datetime] = None,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
) -> float:
    now = now or utc_now()
    return sum(effective_score(entry, now, half_life_days) for entry in bucket.values())


def bucket_sum(
    bucket: ScoreBucket,
    keys: Iterable[str],
    now: datetime,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
) -> float:
    return sum(effective_score(bucket.get(key), now, half_life_days) for key in keys)


def is_cold_start(
    profile: Profile,
    now: Optional[datetime] = None,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
) -> bool:
    """True when handle, vendor and product-type signal are all negligible."""
    now = now or utc_now()
    signals = profile.signals
    return all(
        sum_effective(bucket, now, half_life_days) < COLD_START_THRESHOLD
        for bucket in (signals.by_product_handle, signals.by_vendor, signals.by_product_type)
    )


# =============================================================================
# Tag derivation
# =============================================================================

def tokenize_signal_text(value: str) -> List[str]:
    """Split on non-alphanumerics; drop short, numeric and stop-word tokens."""
    return [
        token for token in _TOKEN_SPLIT.split(value)
        if len(token) >= 3 and token not in SIGNAL_TAG_STOPWORDS and not token.isdigit()
    ]


def derive_signal_tags(
    base_tags: Optional[Iterable[Any]] = None,
    handle: Optional[str] = None,
    vendor: Optional[str] = None,
    product_type: Optional[str] = None,
    title: Optional[str] = None,
) -> List[str]:
    """
    Tags used for the tag bucket.

    Each explicit tag is kept whole and also tokenized; vendor, product type,
    title and handle contribute tokens and adjacent-token bigrams ('a_b').
    """
    out: List[str] = []

    def push_tokens(value: Any) -> None:
        normalized = normalize_key(value)
        if not normalized:
            return
        tokens = tokenize_signal_text(normalized)
        out.extend(tokens)
        out.extend(f"{a}_{b}" for a, b in zip(tokens, tokens[1:]))

    for tag in base_tags or []:
        normalized = normalize_key(tag)
        if normalized:
            out.append(normalized)
        push_tokens(tag)
    push_tokens(vendor)
    push_tokens(product_type)
    push_tokens(title)
    push_tokens(handle)

    return unique_first(out, SIGNAL_TAG_LIMIT)


def derive_event_semantics(
    tags: Iterable[str],
    product_type: str = "",
    handle: str = "",
    vendor: str = "",
) -> EventSemantics:
    tokens = set()
    for entry in [*tags, product_type, handle, vendor]:
        tokens.update(tokenize_signal_text(normalize_key(entry)))

    category = UNKNOWN_CATEGORY
    for name, keywords in CATEGORY_KEYWORD_PRIORITY:
        if any(keyword in tokens for keyword in keywords):
            category = name
            break

    return EventSemantics(
        category=category,
        materials=[term for term in MATERIAL_TERMS if term in tokens],
        fits=[term for term in FIT_TERMS if term in tokens],
    )


# =============================================================================
# Event application
# =============================================================================

def _bump(bucket: ScoreBucket, key: str, delta: float, now: datetime) -> None:
    if not key or not math.isfinite(delta) or delta <= 0:
        return
    current = bucket.get(key)
    next_score = clamp((current.score if current else 0.0) + delta, 0.0, MAX_SCORE)
    bucket[key] = ScoreEntry(score=next_score, last_at=now)


def _push_recent(items: List[str], key: str, limit: int) -> List[str]:
    return [key, *[entry for entry in items if entry != key]][:limit]


def apply_event(
    profile: Profile,
    event: Union[ForYouEvent, Mapping],
    now: Optional[datetime] = None,
) -> Profile:
    """
    Apply one behavioral event and return the resulting Profile.

    Unreadable events leave the profile unchanged.
    """
    if not isinstance(event, ForYouEvent):
        try:
            event = ForYouEvent.model_validate(event)
        except ValidationError as e:
            logger.debug("Ignoring malformed for-you event", error=str(e))
            return profile

    now = now or parse_timestamp(event.at) or utc_now()
    next_profile = profile.copy()
    next_profile.updated_at = now
    signals = next_profile.signals

    handle = normalize_key(event.handle)
    vendor = normalize_key(event.vendor)
    product_type = normalize_key(event.product_type)
    tags = derive_signal_tags(event.tags, handle=handle, vendor=vendor, product_type=product_type)
    semantics = derive_event_semantics(tags, product_type, handle, vendor)
    kind = event.type

    if handle:
        _bump(signals.by_product_handle, handle, HANDLE_WEIGHT[kind], now)
        signals.recent_handles = _push_recent(signals.recent_handles, handle, RECENT_HANDLES_LIMIT)
    if vendor:
        _bump(signals.by_vendor, vendor, VENDOR_WEIGHT[kind], now)
    if product_type:
        _bump(signals.by_product_type, product_type, PRODUCT_TYPE_WEIGHT[kind], now)
    for tag in tags:
        _bump(signals.by_tag, tag, TAG_WEIGHT[kind], now)
    if semantics.category != UNKNOWN_CATEGORY:
        _bump(signals.by_category, semantics.category, CATEGORY_WEIGHT[kind], now)
    for material in semantics.materials:
        _bump(signals.by_material, material, MATERIAL_WEIGHT[kind], now)
    for fit in semantics.fits:
        _bump(signals.by_fit, fit, FIT_WEIGHT[kind], now)

    return next_profile


# =============================================================================
# Cooldown, pruning, hashing
# =============================================================================

def apply_served_cooldown(
    profile: Profile,
    served_handles: Iterable[str],
    now: Optional[datetime] = None,
) -> Profile:
    """Prepend just-served handles to the cooldown list, then prune."""
    now = now or utc_now()
    next_profile = normalize_profile(profile, now)
    merged = [normalize_key(handle) for handle in served_handles]
    merged.extend(next_profile.recently_served_handles)
    next_profile.recently_served_handles = unique_first(merged, RECENTLY_SERVED_LIMIT)
    next_profile.updated_at = now
    return prune_profile(next_profile, now)


def prune_profile(
    profile: Profile,
    now: Optional[datetime] = None,
    max_bytes: int = PROFILE_MAX_JSON_BYTES,
) -> Profile:
    """
    Drop entries older than 120 days, keep the strongest 100 per bucket,
    then compact to the byte budget.
    """
    from foryou.compaction import compact_profile

    now = now or utc_now()
    oldest_allowed = now - timedelta(days=PRUNE_MAX_AGE_DAYS)

    def prune_bucket(bucket: ScoreBucket) -> ScoreBucket:
        kept = [
            (key, entry) for key, entry in bucket.items()
            if entry.last_at >= oldest_allowed and entry.score > 0
        ]
        kept.sort(key=lambda item: effective_score(item[1], now), reverse=True)
        return dict(kept[:PRUNE_BUCKET_LIMIT])

    pruned = profile.copy()
    pruned.updated_at = now
    for name, bucket in profile.signals.buckets().items():
        setattr(pruned.signals, name, prune_bucket(bucket))
    pruned.signals.recent_handles = pruned.signals.recent_handles[:RECENT_HANDLES_LIMIT]
    pruned.recently_served_handles = pruned.recently_served_handles[:RECENTLY_SERVED_LIMIT]

    return compact_profile(normalize_profile(pruned, now), max_bytes, now)


def top_handles_by_score(profile: Profile) -> List[str]:
    entries = sorted(
        profile.signals.by_product_handle.items(),
        key=lambda item: item[1].score,
        reverse=True,
    )
    return [key for key, _ in entries]


def profile_hash(profile: Profile) -> str:
    """Stable digest of gender plus the top keys per bucket (cache key only)."""
    def top_keys(bucket: ScoreBucket) -> List[str]:
        ranked = sorted(bucket.items(), key=lambda item: item[1].score, reverse=True)
        return [key for key, _ in ranked[:PROFILE_HASH_TOP_KEYS]]

    s = profile.signals
    payload = {
        "gender": profile.gender.value,
        "h": top_keys(s.by_product_handle),
        "v": top_keys(s.by_vendor),
        "p": top_keys(s.by_product_type),
        "t": top_keys(s.by_tag),
        "c": top_keys(s.by_category),
        "m": top_keys(s.by_material),
        "f": top_keys(s.by_fit),
    }
    return hash_hex(json.dumps(payload, separators=(",", ":"), ensure_ascii=False))
