"""Agent session retention and clean-up."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

__all__ = [
    "SessionRetentionConfig",
    "SessionCleanupError",
    "AgentSessionPolicy",
    "NoOpSessionPolicy",
]


@dataclass(frozen=True)
class SessionRetentionConfig:
    """Session lifetime in seconds since last seen; ``None`` keeps sessions forever."""

    ttl_seconds: Optional[int] = None

    @classmethod
    def unbounded(cls) -> "SessionRetentionConfig":
        return cls(None)


class SessionCleanupError(Exception):
    """Raised when expired sessions could not be removed."""


class AgentSessionPolicy(ABC):
    """Manages the lifecycle of agent sessions."""

    @abstractmethod
    async def get_retention(self, org_id: str) -> SessionRetentionConfig:
        """Retention configuration for an organisation."""

    @abstractmethod
    async def cleanup_expired(self) -> int:
        """Delete expired sessions and return how many were removed.

        Raises SessionCleanupError on failure.
        """


class NoOpSessionPolicy(AgentSessionPolicy):
    """Never expires sessions and removes nothing."""

    async def get_retention(self, org_id: str) -> SessionRetentionConfig:
        return SessionRetentionConfig.unbounded()

    async def cleanup_expired(self) -> int:
        return 0