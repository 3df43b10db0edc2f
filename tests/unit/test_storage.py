"""
Tests for profile storage backends.
"""

import os

import pytest

from foryou.errors import StorageAuthorizationError, StorageError
from foryou.profile import apply_event, create_empty_profile
from foryou.storage import (
    Identity,
    InMemoryProfileStorage,
    LayeredProfileStorage,
    ProfileStorage,
    RedisProfileStorage,
    create_profile_storage,
)


class AuthenticationError(Exception):
    """Stands in for the client library's auth error (matched by name)."""


class FakeRemote(ProfileStorage):
    """Remote store whose reads and writes can be made to fail."""

    def __init__(self, read_error=None, write_error=None):
        self.inner = InMemoryProfileStorage()
        self.read_error = read_error
        self.write_error = write_error
        self.writes = 0

    def get_profile(self, identity):
        if self.read_error:
            raise self.read_error
        return self.inner.get_profile(identity)

    def set_profile(self, identity, profile):
        self.writes += 1
        if self.write_error:
            raise self.write_error
        self.inner.set_profile(identity, profile)

    def reset_profile(self, identity):
        self.inner.reset_profile(identity)


class FakeRedisClient:
    def __init__(self, error=None):
        self.data = {}
        self.error = error

    def get(self, key):
        if self.error:
            raise self.error
        return self.data.get(key)

    def set(self, key, value):
        if self.error:
            raise self.error
        self.data[key] = value

    def setex(self, key, ttl, value):
        self.set(key, value)

    def delete(self, key):
        self.data.pop(key, None)


@pytest.fixture
def customer():
    return Identity.customer("42")


@pytest.fixture
def warm_profile(now):
    return apply_event(create_empty_profile(now), {"type": "add_to_cart", "handle": "h"}, now)


class TestIdentity:

    def test_scopes(self):
        assert Identity.guest().scope == "guest"
        assert Identity.customer("42").scope == "customer.42"
        assert Identity.customer("42").is_customer
        assert not Identity.guest().is_customer


class TestInMemoryProfileStorage:

    def test_set_get_reset(self, customer, warm_profile):
        storage = InMemoryProfileStorage()
        assert storage.get_profile(customer) is None

        storage.set_profile(customer, warm_profile)
        assert storage.get_profile(customer).to_dict() == warm_profile.to_dict()
        assert storage.get_profile(Identity.guest()) is None

        storage.reset_profile(customer)
        assert storage.get_profile(customer) is None


class TestRedisProfileStorage:

    def test_round_trip_with_injected_client(self, customer, warm_profile):
        client = FakeRedisClient()
        storage = RedisProfileStorage(client=client, ttl_seconds=60)
        storage.set_profile(customer, warm_profile)
        assert "foryou:profile:customer.42" in client.data
        assert storage.get_profile(customer).to_dict() == warm_profile.to_dict()

    def test_errors_translated(self, customer, warm_profile):
        with pytest.raises(StorageAuthorizationError):
            RedisProfileStorage(client=FakeRedisClient(AuthenticationError("bad password"))).get_profile(customer)
        with pytest.raises(StorageAuthorizationError):
            RedisProfileStorage(client=FakeRedisClient(RuntimeError("NOPERM no access"))).get_profile(customer)
        with pytest.raises(StorageError):
            RedisProfileStorage(client=FakeRedisClient(ConnectionError("down"))).set_profile(customer, warm_profile)

    @pytest.mark.redis
    def test_real_redis(self, customer, warm_profile):
        storage = RedisProfileStorage(os.getenv("TEST_REDIS_URL"))
        storage.set_profile(customer, warm_profile)
        try:
            assert storage.get_profile(customer).to_dict() == warm_profile.to_dict()
        finally:
            storage.reset_profile(customer)


class TestLayeredProfileStorage:
    """Local cache in front of a remote store."""

    def test_guest_never_touches_remote(self, warm_profile):
        remote = FakeRemote()
        layered = LayeredProfileStorage(InMemoryProfileStorage(), remote)
        layered.set_profile(Identity.guest(), warm_profile)
        assert remote.writes == 0
        assert layered.get_profile(Identity.guest()) is not None

    def test_remote_read_refreshes_local(self, customer, warm_profile):
        remote = FakeRemote()
        remote.inner.set_profile(customer, warm_profile)
        local = InMemoryProfileStorage()
        layered = LayeredProfileStorage(local, remote)

        assert layered.get_profile(customer).to_dict() == warm_profile.to_dict()
        assert local.get_profile(customer) is not None

    def test_remote_read_failure_falls_back_to_local(self, customer, warm_profile):
        local = InMemoryProfileStorage()
        local.set_profile(customer, warm_profile)
        layered = LayeredProfileStorage(local, FakeRemote(read_error=StorageError("timeout")))
        assert layered.get_profile(customer).to_dict() == warm_profile.to_dict()

    def test_authorization_failure_disables_remote_writes(self, customer, warm_profile):
        remote = FakeRemote(write_error=StorageAuthorizationError("permission denied"))
        local = InMemoryProfileStorage()
        layered = LayeredProfileStorage(local, remote)

        layered.set_profile(customer, warm_profile)
        layered.set_profile(customer, warm_profile)

        assert remote.writes == 1
        assert layered.remote_write_disabled
        assert local.get_profile(customer) is not None
        assert layered.get_stats()["remote_write_disabled"] is True

    def test_transient_write_failure_keeps_remote_enabled(self, customer, warm_profile):
        remote = FakeRemote(write_error=StorageError("timeout"))
        layered = LayeredProfileStorage(InMemoryProfileStorage(), remote)
        layered.set_profile(customer, warm_profile)
        layered.set_profile(customer, warm_profile)
        assert remote.writes == 2
        assert not layered.remote_write_disabled


class TestCreateProfileStorage:

    def test_memory(self):
        assert isinstance(create_profile_storage("memory"), InMemoryProfileStorage)

    def test_auto_without_url(self):
        assert isinstance(create_profile_storage("auto"), InMemoryProfileStorage)

    def test_auto_with_unreachable_redis_falls_back(self):
        storage = create_profile_storage("auto", redis_url="redis://127.0.0.1:1/0")
        assert isinstance(storage, InMemoryProfileStorage)
