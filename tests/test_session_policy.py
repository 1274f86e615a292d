import pytest

from oamguard.session_policy import (
    AgentSessionPolicy,
    NoOpSessionPolicy,
    SessionCleanupError,
    SessionRetentionConfig,
)


@pytest.mark.asyncio
async def test_noop_policy_returns_unbounded():
    config = await NoOpSessionPolicy().get_retention("acme")
    assert config == SessionRetentionConfig.unbounded()
    assert config.ttl_seconds is None


@pytest.mark.asyncio
async def test_noop_cleanup_is_no_op():
    assert await NoOpSessionPolicy().cleanup_expired() == 0


def test_bounded_config_differs_from_unbounded():
    config = SessionRetentionConfig(ttl_seconds=3600)
    assert config.ttl_seconds == 3600
    assert config != SessionRetentionConfig.unbounded()


def test_policy_is_abstract():
    with pytest.raises(TypeError):
        AgentSessionPolicy()


@pytest.mark.asyncio
async def test_custom_policy_cleanup_error_propagates():
    base = NoOpSessionPolicy()

    class Broken(AgentSessionPolicy):
        async def get_retention(self, org_id):
            return SessionRetentionConfig(60)

        async def cleanup_expired(self):
            raise SessionCleanupError("store unavailable")

    policy = Broken()
    retention = await policy.get_retention("acme")
    assert retention.ttl_seconds == 60
    assert retention == SessionRetentionConfig(ttl_seconds=60)
    assert retention != await base.get_retention("acme")
    with pytest.raises(SessionCleanupError, match="store unavailable"):
        await policy.cleanup_expired()
    assert await base.cleanup_expired() == 0