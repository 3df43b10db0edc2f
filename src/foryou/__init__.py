"""
For-You personalization module.

Provides the behavioral profile, the personalized feed and the
seed-anchored similar-product reel.
"""

from foryou.errors import CandidateSourceError, ForYouError, StorageError, StorageAuthorizationError
from foryou.models import Candidate, EventType, FeedPage, ForYouEvent, Gender, ReelPage
from foryou.profile import Profile, apply_event, create_empty_profile, normalize_profile
from foryou.reel_service import ReelService
from foryou.service import ForYouService
from foryou.sources import CandidateSource, InMemoryCandidateSource
from foryou.storage import Identity, ProfileStorage, create_profile_storage
from foryou.tracking import EventTracker

__all__ = [
    "Candidate",
    "CandidateSource",
    "CandidateSourceError",
    "EventTracker",
    "EventType",
    "FeedPage",
    "ForYouError",
    "ForYouEvent",
    "ForYouService",
    "Gender",
    "Identity",
    "InMemoryCandidateSource",
    "Profile",
    "ProfileStorage",
    "ReelPage",
    "ReelService",
    "StorageAuthorizationError",
    "StorageError",
    "apply_event",
    "create_empty_profile",
    "create_profile_storage",
    "normalize_profile",
]
