"""
Profile Storage.

Persists affinity profiles per visitor identity.

Backends:
1. InMemory: process-local, for development/testing and as the local cache
2. Redis: shared store for production (when the redis package is installed)
3. Layered: local cache in front of a remote store. Authenticated reads go
   remote-first and refresh the local copy; writes always hit local and are
   best-effort remote. An authorization failure disables remote writes for
   the lifetime of the instance.

Profiles are stored as compact JSON and normalized on read, so a corrupt
entry degrades to an empty profile instead of failing the request.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, Optional

from core.logging import get_logger
from foryou.errors import StorageAuthorizationError, StorageError
from foryou.profile import Profile, normalize_profile


logger = get_logger(__name__)

KEY_PREFIX = "foryou:profile"
GUEST_SCOPE = "guest"

_AUTHORIZATION_ERROR_NAMES = {"AuthenticationError", "AuthenticationWrongNumberOfArgsError", "NoPermissionError"}


# =============================================================================
# Identity
# =============================================================================

@dataclass(frozen=True)
class Identity:
    """Who the profile belongs to: a guest device or a signed-in customer."""
    customer_id: Optional[str] = None
    is_authenticated: bool = False

    @classmethod
    def guest(cls) -> "Identity":
        return cls()

    @classmethod
    def customer(cls, customer_id: str) -> "Identity":
        return cls(customer_id=customer_id, is_authenticated=True)

    @property
    def is_customer(self) -> bool:
        return self.is_authenticated and bool(self.customer_id)

    @property
    def scope(self) -> str:
        return f"customer.{self.customer_id}" if self.customer_id else GUEST_SCOPE


# =============================================================================
# Interface
# =============================================================================

class ProfileStorage(ABC):
    """Profile persistence. Implementations may raise StorageError."""

    @abstractmethod
    def get_profile(self, identity: Identity) -> Optional[Profile]:
        ...

    @abstractmethod
    def set_profile(self, identity: Identity, profile: Profile) -> None:
        ...

    @abstractmethod
    def reset_profile(self, identity: Identity) -> None:
        ...

    def get_stats(self) -> Dict[str, Any]:
        return {"backend": type(self).__name__}


# =============================================================================
# In-Memory Backend
# =============================================================================

class InMemoryProfileStorage(ProfileStorage):
    """
    Process-local profile storage.

    Note: Profiles are lost on restart. Use Redis for anything shared.
    """

    def __init__(self):
        self._profiles: Dict[str, str] = {}
        self._lock = Lock()

    def get_profile(self, identity: Identity) -> Optional[Profile]:
        with self._lock:
            raw = self._profiles.get(identity.scope)
        if raw is None:
            return None
        return normalize_profile(raw)

    def set_profile(self, identity: Identity, profile: Profile) -> None:
        with self._lock:
            self._profiles[identity.scope] = profile.to_json()

    def reset_profile(self, identity: Identity) -> None:
        with self._lock:
            self._profiles.pop(identity.scope, None)

    def get_stats(self) -> Dict[str, Any]:
        return {"backend": "in_memory", "profiles": len(self._profiles)}


# =============================================================================
# Redis Backend
# =============================================================================

def _translate_error(error: Exception) -> StorageError:
    if type(error).__name__ in _AUTHORIZATION_ERROR_NAMES or "NOPERM" in str(error):
        return StorageAuthorizationError(str(error))
    return StorageError(str(error))


class RedisProfileStorage(ProfileStorage):
    """
    Redis-backed profile storage.

    Requires: pip install redis

    Args:
        redis_url: Redis connection URL
        ttl_seconds: Optional expiry per profile (None = keep forever)
        client: Pre-built client (anything with get/set/setex/delete)
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
        client: Any = None,
    ):
        self._ttl = ttl_seconds
        if client is None:
            try:
                import redis
            except ImportError:
                raise ImportError("Redis backend requires 'redis' package. Install with: pip install redis")
            url = redis_url or "redis://localhost:6379/0"
            client = redis.from_url(url, decode_responses=True)
            client.ping()
            logger.info("Connected to Redis profile store", host=url.split("@")[-1])
        self._redis = client

    @staticmethod
    def key(identity: Identity) -> str:
        return f"{KEY_PREFIX}:{identity.scope}"

    def _call(self, operation: Callable[..., Any], *args: Any) -> Any:
        try:
            return operation(*args)
        except Exception as e:
            raise _translate_error(e) from e

    def get_profile(self, identity: Identity) -> Optional[Profile]:
        raw = self._call(self._redis.get, self.key(identity))
        if not raw:
            return None
        return normalize_profile(raw)

    def set_profile(self, identity: Identity, profile: Profile) -> None:
        payload = profile.to_json()
        if self._ttl:
            self._call(self._redis.setex, self.key(identity), self._ttl, payload)
        else:
            self._call(self._redis.set, self.key(identity), payload)

    def reset_profile(self, identity: Identity) -> None:
        self._call(self._redis.delete, self.key(identity))

    def get_stats(self) -> Dict[str, Any]:
        return {"backend": "redis", "ttl_seconds": self._ttl}


# =============================================================================
# Layered (local cache + remote)
# =============================================================================

class LayeredProfileStorage(ProfileStorage):
    """
    Local cache in front of a remote store.

    Guests only ever touch the local store.
    """

    def __init__(self, local: ProfileStorage, remote: ProfileStorage):
        self.local = local
        self.remote = remote
        self.remote_write_disabled = False
        self.remote_write_disable_reason: Optional[str] = None

    def get_profile(self, identity: Identity) -> Optional[Profile]:
        if not identity.is_customer:
            return self.local.get_profile(identity)

        try:
            remote_profile = self.remote.get_profile(identity)
        except StorageError as e:
            logger.warning("Remote profile read failed, using local cache", error=str(e))
            return self.local.get_profile(identity)

        if remote_profile is None:
            return self.local.get_profile(identity)
        self.local.set_profile(identity, remote_profile)
        return remote_profile

    def set_profile(self, identity: Identity, profile: Profile) -> None:
        self.local.set_profile(identity, profile)
        if not identity.is_customer:
            return
        if self.remote_write_disabled:
            logger.debug("Remote profile writes disabled", reason=self.remote_write_disable_reason)
            return

        try:
            self.remote.set_profile(identity, profile)
        except StorageAuthorizationError as e:
            self.remote_write_disabled = True
            self.remote_write_disable_reason = str(e)
            logger.warning("Remote profile store not authorized, disabling remote writes", error=str(e))
        except StorageError as e:
            logger.warning("Remote profile write failed, local cache remains active", error=str(e))

    def reset_profile(self, identity: Identity) -> None:
        self.local.reset_profile(identity)
        if not identity.is_customer:
            return
        try:
            self.remote.reset_profile(identity)
        except StorageError as e:
            logger.warning("Remote profile reset failed", error=str(e))

    def get_stats(self) -> Dict[str, Any]:
        return {
            "backend": "layered",
            "local": self.local.get_stats(),
            "remote": self.remote.get_stats(),
            "remote_write_disabled": self.remote_write_disabled,
        }


# =============================================================================
# Backend selection
# =============================================================================

def create_profile_storage(
    backend: str = "auto",
    redis_url: Optional[str] = None,
    ttl_seconds: Optional[int] = None,
) -> ProfileStorage:
    """
    Build the profile store.

    Args:
        backend: "auto", "redis", or "memory"
        redis_url: Redis URL; "auto" only tries Redis when this is set
        ttl_seconds: Optional per-profile expiry in Redis
    """
    if backend == "memory":
        return InMemoryProfileStorage()

    if backend == "redis":
        return LayeredProfileStorage(InMemoryProfileStorage(), RedisProfileStorage(redis_url, ttl_seconds))

    if not redis_url:
        logger.info("No Redis URL set, using in-memory profile storage")
        return InMemoryProfileStorage()
    try:
        remote = RedisProfileStorage(redis_url, ttl_seconds)
    except Exception as e:
        logger.warning("Redis unavailable, using in-memory profile storage", error=str(e))
        return InMemoryProfileStorage()
    return LayeredProfileStorage(InMemoryProfileStorage(), remote)
