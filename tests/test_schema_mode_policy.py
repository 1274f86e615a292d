import pytest

from oamguard.schema_mode_policy import (
    NoOpSchemaModePolicy,
    SchemaModePolicy,
    SchemaModePolicyDecision,
)


@pytest.mark.asyncio
@pytest.mark.parametrize("mode", ["DATA_FIRST", "CODE_FIRST", "HYBRID"])
async def test_noop_policy_allows_all_modes(mode):
    decision = await NoOpSchemaModePolicy().is_allowed("acme", "viewer", mode)
    assert decision == SchemaModePolicyDecision.allow()
    assert decision.allowed is True


def test_deny_carries_reason():
    decision = SchemaModePolicyDecision.deny("only DATA_FIRST is permitted")
    assert decision.allowed is False
    assert decision.reason == "only DATA_FIRST is permitted"
    assert decision != SchemaModePolicyDecision.allow()


def test_allow_has_no_reason():
    assert SchemaModePolicyDecision.allow().reason is None


def test_policy_is_abstract():
    with pytest.raises(TypeError):
        SchemaModePolicy()


@pytest.mark.asyncio
async def test_custom_policy_denies():
    base = NoOpSchemaModePolicy()

    class FreeTier(SchemaModePolicy):
        async def is_allowed(self, org_id, role, requested_mode):
            if requested_mode == "DATA_FIRST":
                return await base.is_allowed(org_id, role, requested_mode)
            return SchemaModePolicyDecision.deny("DATA_FIRST only")

    policy = FreeTier()
    allowed = await policy.is_allowed("o", "r", "DATA_FIRST")
    assert allowed == SchemaModePolicyDecision.allow()
    assert allowed.allowed is True

    denied = await policy.is_allowed("o", "r", "HYBRID")
    assert denied == SchemaModePolicyDecision.deny("DATA_FIRST only")
    assert denied.reason == "DATA_FIRST only"
    assert denied != await base.is_allowed("o", "r", "HYBRID")