"""Entry gating: per-caller quotas, plan checks and deep-scan access policy.

None of this is scanning logic. The HTTP layer asks the quota gate before
doing expensive work, and the orchestrator asks the access policy before
starting a deep scan.
"""

import hashlib
import logging
from abc import ABC, abstractmethod
from typing import NamedTuple, Optional

from .errors import AuthorizationRequired
from .models import PaymentStatus, ScanRequest
from .store import QuotaStore

logger = logging.getLogger(__name__)

FREE_PLAN = "free"


class Identity(NamedTuple):
    """Who a quota applies to. ``kind`` is ``user`` or ``ip``."""

    kind: str
    key: str

    @property
    def is_authenticated(self) -> bool:
        return self.kind == "user"


def _digest(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def identity_for(auth_token: Optional[str], client_ip: Optional[str], salt: str) -> Optional[Identity]:
    """User identity when a token is present, otherwise a salted hash of the IP.

    Neither the token nor the address is stored in the clear.
    """
    if auth_token:
        return Identity("user", f"user:{_digest(auth_token)}")
    if client_ip:
        return Identity("ip", f"ip:{_digest(salt + client_ip)}")
    return None


class QuotaGate:
    """Independent scan limits for authenticated users and anonymous addresses."""

    def __init__(self, store: QuotaStore, anonymous_limit: int, authenticated_limit: int, window: int):
        self.store = store
        self.anonymous_limit = anonymous_limit
        self.authenticated_limit = authenticated_limit
        self.window = window

    def limit_for(self, identity: Identity) -> int:
        return self.authenticated_limit if identity.is_authenticated else self.anonymous_limit

    async def used(self, identity: Identity) -> int:
        return await self.store.get(identity.key)

    async def remaining(self, identity: Identity) -> int:
        return max(0, self.limit_for(identity) - await self.used(identity))

    async def would_allow(self, identity: Identity) -> bool:
        """Cheap check before starting work; does not consume anything."""
        return await self.remaining(identity) > 0

    async def consume(self, identity: Identity) -> bool:
        """Use one scan. False when the limit is already reached."""
        if not await self.would_allow(identity):
            return False
        count = await self.store.increment(identity.key, self.window)
        allowed = count <= self.limit_for(identity)
        if not allowed:
            logger.info(f"Quota exhausted for {identity.kind} identity")
        return allowed


class AccessPolicy(ABC):
    """Decides whether a deep scan may start."""

    @abstractmethod
    async def authorize(self, record: ScanRequest) -> None:
        """Raise AuthorizationRequired to refuse."""


class OpenAccessPolicy(AccessPolicy):
    async def authorize(self, record: ScanRequest) -> None:
        return None


class PaymentRequiredPolicy(AccessPolicy):
    """Only requests whose payment has completed may run."""

    async def authorize(self, record: ScanRequest) -> None:
        if record.payment_status != PaymentStatus.completed:
            raise AuthorizationRequired(f"Payment not completed for scan request {record.id}")


class PlanResolver(ABC):
    """Looks up a user's subscription plan."""

    @abstractmethod
    async def plan_for(self, auth_token: str) -> str:
        """Plan name for the user behind ``auth_token``."""


class StaticPlanResolver(PlanResolver):
    """Plans from a fixed token-to-plan mapping; everyone else is on the free plan."""

    def __init__(self, plans: Optional[dict[str, str]] = None, default: str = FREE_PLAN):
        self.plans = plans or {}
        self.default = default

    async def plan_for(self, auth_token: str) -> str:
        return self.plans.get(auth_token, self.default)


def is_paid(plan: str) -> bool:
    return plan != FREE_PLAN


async def require_paid_plan(resolver: PlanResolver, auth_token: str) -> str:
    """Return the caller's plan, raising AuthorizationRequired for the free plan."""
    plan = await resolver.plan_for(auth_token)
    if not is_paid(plan):
        raise AuthorizationRequired("An active subscription is required for this analysis")
    return plan
