"""Per-organisation request quotas.

A provider resolves the budget for an ``(org_id, role)`` pair; when it is
tighter than the server-wide rate limit, the tighter limit applies.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

__all__ = ["OrgRateLimit", "OrgRateLimitProvider", "NoOpOrgRateLimitProvider"]


@dataclass(frozen=True)
class OrgRateLimit:
    """Request budget for one organisation; defaults are the permissive budget."""

    requests_per_second: int = 10_000
    max_concurrent_connections: int = 100
    suspended: bool = False

    @classmethod
    def permissive(cls) -> "OrgRateLimit":
        return cls()


class OrgRateLimitProvider(ABC):
    """Resolves the quota for an organisation acting under a role."""

    @abstractmethod
    async def get_limit(self, org_id: str, role: str) -> OrgRateLimit:
        ...


class NoOpOrgRateLimitProvider(OrgRateLimitProvider):
    """Gives every organisation the permissive budget."""

    async def get_limit(self, org_id: str, role: str) -> OrgRateLimit:
        return OrgRateLimit.permissive()