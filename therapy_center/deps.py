# therapy_center/deps.py

from dataclasses import dataclass, field
from typing import FrozenSet

from .errors import PermissionDeniedError
from .schemas import UserRole

SESSIONS_READ = "sessions:read"
SESSIONS_WRITE = "sessions:write"
SESSIONS_CANCEL = "sessions:cancel"
AVAILABILITY_READ = "availability:read"
AVAILABILITY_WRITE = "availability:write"
PRICING_READ = "pricing:read"
PRICING_WRITE = "pricing:write"
PATIENTS_READ = "patients:read"
PATIENTS_WRITE = "patients:write"
BILLING_READ = "billing:read"
BILLING_WRITE = "billing:write"

ROLE_CAPABILITIES = {
    UserRole.workspace_admin: frozenset({
        SESSIONS_READ, SESSIONS_WRITE, SESSIONS_CANCEL,
        AVAILABILITY_READ, AVAILABILITY_WRITE,
        PRICING_READ, PRICING_WRITE,
        PATIENTS_READ, PATIENTS_WRITE,
        BILLING_READ, BILLING_WRITE,
    }),
    UserRole.operator: frozenset({
        SESSIONS_READ, SESSIONS_WRITE, SESSIONS_CANCEL,
        AVAILABILITY_READ, AVAILABILITY_WRITE,
        PRICING_READ,
        PATIENTS_READ, PATIENTS_WRITE,
        BILLING_READ,
    }),
    UserRole.therapist: frozenset({
        SESSIONS_READ,
        AVAILABILITY_READ, AVAILABILITY_WRITE,
        PRICING_READ,
        PATIENTS_READ,
    }),
    UserRole.accountant: frozenset({
        SESSIONS_READ,
        PRICING_READ,
        PATIENTS_READ,
        BILLING_READ, BILLING_WRITE,
    }),
}


@dataclass(frozen=True)
class RequestContext:
    """Who is calling, for which tenant, and what they may do. Built per request."""

    tenant_id: str
    user_id: int
    role: UserRole
    capabilities: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def for_user(cls, tenant_id: str, user_id: int, role: UserRole) -> "RequestContext":
        return cls(tenant_id, user_id, role, ROLE_CAPABILITIES.get(role, frozenset()))

    def can(self, capability: str) -> bool:
        return capability in self.capabilities


def require_capability(ctx: RequestContext, capability: str):
    if not ctx.can(capability):
        raise PermissionDeniedError(capability=capability, role=ctx.role.value)


def require_self_or_capability(ctx: RequestContext, therapist_id: int, capability: str):
    """Therapists only touch their own calendar; staff need the capability."""
    require_capability(ctx, capability)
    if ctx.role == UserRole.therapist and ctx.user_id != therapist_id:
        raise PermissionDeniedError(capability=capability, therapist_id=therapist_id)
