import pytest
from fakeredis import aioredis as fake_aioredis

from keke.database.redis_client import SessionStore
from keke.models.user_model import CurrentUser


@pytest.fixture
def redis():
    return fake_aioredis.FakeRedis(decode_responses=True)


@pytest.fixture
def session_store(redis):
    return SessionStore(redis, ttl=60)


async def test_resolves_current_user(session_store):
    await session_store.create_session("tok-1", CurrentUser(id="p-1", email="amina@example.com"))

    user = await session_store.get_current_user("tok-1")

    assert user == CurrentUser(id="p-1", email="amina@example.com")


async def test_unknown_or_missing_token_is_anonymous(session_store):
    assert await session_store.get_current_user("nope") is None
    assert await session_store.get_current_user(None) is None
    assert await session_store.get_current_user("") is None


async def test_sessions_expire(session_store, redis):
    await session_store.create_session("tok-1", CurrentUser(id="p-1"))

    assert 0 < await redis.ttl("session:tok-1") <= 60


async def test_sign_out_ends_session(session_store):
    await session_store.create_session("tok-1", CurrentUser(id="p-1"))

    assert await session_store.sign_out("tok-1")
    assert await session_store.get_current_user("tok-1") is None
    assert not await session_store.sign_out("tok-1")


async def test_malformed_session_is_ignored(session_store, redis):
    await redis.set("session:tok-bad", "{not json")

    assert await session_store.get_current_user("tok-bad") is None
