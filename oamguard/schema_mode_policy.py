"""Which schema modes an organisation may register agents with.

Modes are the names ``"DATA_FIRST"``, ``"CODE_FIRST"`` and ``"HYBRID"``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

__all__ = ["SchemaModePolicyDecision", "SchemaModePolicy", "NoOpSchemaModePolicy"]


@dataclass(frozen=True)
class SchemaModePolicyDecision:
    """Allowed, or denied with a reason explaining what is permitted."""

    allowed: bool
    reason: Optional[str] = None

    @classmethod
    def allow(cls) -> "SchemaModePolicyDecision":
        return cls(True, None)

    @classmethod
    def deny(cls, reason: str) -> "SchemaModePolicyDecision":
        return cls(False, reason)


class SchemaModePolicy(ABC):
    """Decides whether an org and role may register with a schema mode."""

    @abstractmethod
    async def is_allowed(
        self, org_id: str, role: str, requested_mode: str
    ) -> SchemaModePolicyDecision:
        ...


class NoOpSchemaModePolicy(SchemaModePolicy):
    """Allows every mode for every organisation."""

    async def is_allowed(
        self, org_id: str, role: str, requested_mode: str
    ) -> SchemaModePolicyDecision:
        return SchemaModePolicyDecision.allow()