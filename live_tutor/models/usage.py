"""Usage metering models: identities, plan limits, ledger records."""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

# Negative limit values mean "unlimited" for that dimension.
UNLIMITED = -1


class IdentityKind(str, Enum):
    USER = "user"
    GUEST = "guest"


@dataclass(frozen=True)
class Identity:
    """Key that usage is metered against."""
    key: str
    kind: IdentityKind
    plan: str = "guest"


@dataclass(frozen=True)
class PlanLimits:
    slug: str
    sessions_limit: int
    minutes_limit: float
    max_session_minutes: float
    live_enabled: bool = True

    @property
    def unlimited_sessions(self) -> bool:
        return self.sessions_limit < 0

    @property
    def unlimited_minutes(self) -> bool:
        return self.minutes_limit < 0


@dataclass
class UsageRecord:
    """Per-identity consumption for one accounting period (UTC day)."""
    identity_key: str
    period: str
    sessions_used: int = 0
    minutes_used: float = 0.0


@dataclass(frozen=True)
class UsageCheck:
    """Result of a can-start check. Remaining values are -1 when unlimited."""
    allowed: bool
    sessions_used: int
    sessions_limit: int
    sessions_remaining: int
    minutes_used: float
    minutes_limit: float
    minutes_remaining: float
    max_session_minutes: float
    live_enabled: bool = True
    message: Optional[str] = None

    @property
    def unlimited(self) -> bool:
        return self.sessions_limit < 0 and self.minutes_limit < 0
