"""
Profile Compactor.

Shrinks a profile until its serialized JSON fits a byte budget. Each pass
keeps the strongest entries (by effective score) per bucket under a
decreasing cap; if even the smallest cap is too large, a skeleton is tried,
and finally an empty profile that keeps only the gender.
"""

from datetime import datetime
from typing import Optional

from core.logging import get_logger
from core.utils import utc_now
from foryou.profile import (
    PROFILE_MAX_JSON_BYTES,
    RECENT_HANDLES_LIMIT,
    RECENTLY_SERVED_LIMIT,
    Profile,
    ScoreBucket,
    create_empty_profile,
    effective_score,
    normalize_profile,
)


logger = get_logger(__name__)

COMPACTION_CAPS = (80, 60, 40, 30, 20, 12, 8, 5, 3, 2, 1)

TAG_CAP_FACTOR = 0.6
CATEGORY_CAP_FACTOR = 0.4
MATERIAL_CAP_FACTOR = 0.4
FIT_CAP_FACTOR = 0.35

SKELETON_RECENT_HANDLES = 8
SKELETON_SERVED_HANDLES = 16


def measure_profile_bytes(profile: Profile) -> int:
    """UTF-8 length of the compact JSON serialization."""
    return len(profile.to_json().encode("utf-8"))


def compact_bucket(bucket: ScoreBucket, cap: int, now: datetime) -> ScoreBucket:
    ranked = sorted(bucket.items(), key=lambda item: effective_score(item[1], now), reverse=True)
    return dict(ranked[:max(0, cap)])


def _scaled(cap: int, factor: float) -> int:
    return max(1, int(cap * factor))


def compact_profile(
    profile: Profile,
    max_bytes: int = PROFILE_MAX_JSON_BYTES,
    now: Optional[datetime] = None,
) -> Profile:
    """
    Return a profile whose serialized size is <= max_bytes.

    Always terminates: the last resort is an empty profile (gender kept).
    """
    now = now or utc_now()
    current = normalize_profile(profile, now)
    if measure_profile_bytes(current) <= max_bytes:
        return current

    for cap in COMPACTION_CAPS:
        nxt = current.copy()
        s = nxt.signals
        s.by_product_handle = compact_bucket(s.by_product_handle, cap, now)
        s.by_vendor = compact_bucket(s.by_vendor, cap, now)
        s.by_product_type = compact_bucket(s.by_product_type, cap, now)
        s.by_tag = compact_bucket(s.by_tag, _scaled(cap, TAG_CAP_FACTOR), now)
        s.by_category = compact_bucket(s.by_category, _scaled(cap, CATEGORY_CAP_FACTOR), now)
        s.by_material = compact_bucket(s.by_material, _scaled(cap, MATERIAL_CAP_FACTOR), now)
        s.by_fit = compact_bucket(s.by_fit, _scaled(cap, FIT_CAP_FACTOR), now)
        s.recent_handles = s.recent_handles[:min(RECENT_HANDLES_LIMIT, cap)]
        nxt.recently_served_handles = nxt.recently_served_handles[:min(RECENTLY_SERVED_LIMIT, cap * 2)]
        current = nxt
        if measure_profile_bytes(current) <= max_bytes:
            logger.debug("Compacted profile", cap=cap, max_bytes=max_bytes)
            return current

    skeleton = current.copy()
    s = skeleton.signals
    s.by_product_handle = compact_bucket(s.by_product_handle, 1, now)
    s.by_vendor = compact_bucket(s.by_vendor, 1, now)
    s.by_product_type = compact_bucket(s.by_product_type, 1, now)
    s.by_tag = {}
    s.by_category = compact_bucket(s.by_category, 1, now)
    s.by_material = compact_bucket(s.by_material, 1, now)
    s.by_fit = compact_bucket(s.by_fit, 1, now)
    s.recent_handles = s.recent_handles[:SKELETON_RECENT_HANDLES]
    skeleton.recently_served_handles = skeleton.recently_served_handles[:SKELETON_SERVED_HANDLES]
    if measure_profile_bytes(skeleton) <= max_bytes:
        return skeleton

    logger.warning("Profile reset to fit byte budget", max_bytes=max_bytes)
    empty = create_empty_profile(now)
    empty.gender = profile.gender
    return empty
