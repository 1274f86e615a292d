import pytest

from oamguard.quota import NoOpOrgRateLimitProvider, OrgRateLimit, OrgRateLimitProvider


@pytest.mark.asyncio
async def test_noop_provider_returns_permissive_limit():
    limit = await NoOpOrgRateLimitProvider().get_limit("acme", "viewer")
    assert limit.suspended is False
    assert limit.requests_per_second >= 1_000
    assert limit == OrgRateLimit.permissive()


def test_permissive_values():
    limit = OrgRateLimit.permissive()
    assert limit.requests_per_second == 10_000
    assert limit.max_concurrent_connections == 100
    assert limit.suspended is False


def test_default_equals_permissive():
    assert OrgRateLimit() == OrgRateLimit.permissive()


def test_provider_is_abstract():
    with pytest.raises(TypeError):
        OrgRateLimitProvider()


@pytest.mark.asyncio
async def test_custom_provider_can_suspend():
    fallback = NoOpOrgRateLimitProvider()

    class Tiered(OrgRateLimitProvider):
        async def get_limit(self, org_id, role):
            if org_id == "blocked":
                return OrgRateLimit(0, 0, True)
            return await fallback.get_limit(org_id, role)

    provider = Tiered()
    blocked = await provider.get_limit("blocked", "viewer")
    assert blocked.suspended is True
    assert blocked != OrgRateLimit.permissive()

    default = await provider.get_limit("acme", "viewer")
    assert default.suspended is False
    assert default == await fallback.get_limit("acme", "viewer")
    assert default == OrgRateLimit.permissive()