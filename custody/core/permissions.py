# custody/core/permissions.py
"""
Capability-based authorization.

The core never looks at role names. External roles are mapped to an
`AccessTier` at the edge (see `custody.core.security`), and each tier grants
a fixed capability set.
"""
from enum import Enum
from typing import Dict, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict

from custody.core.errors import AuthorizationError


class Capability(str, Enum):
    CREATE = "reservation:create"
    CANCEL_OWN = "reservation:cancel_own"
    APPROVE = "reservation:approve"
    REJECT = "reservation:reject"
    CONFIRM_RECEIPT = "custody:confirm_receipt"
    CONFIRM_RETURN = "custody:confirm_return"
    VIEW_ALL = "reservation:view_all"
    MANAGE_ASSETS = "asset:manage"


class AccessTier(str, Enum):
    REQUESTER = "requester"
    APPROVER = "approver"


_REQUESTER_CAPABILITIES = frozenset({Capability.CREATE, Capability.CANCEL_OWN})

TIER_CAPABILITIES: Dict[AccessTier, FrozenSet[Capability]] = {
    AccessTier.REQUESTER: _REQUESTER_CAPABILITIES,
    AccessTier.APPROVER: _REQUESTER_CAPABILITIES | frozenset({
        Capability.APPROVE,
        Capability.REJECT,
        Capability.CONFIRM_RECEIPT,
        Capability.CONFIRM_RETURN,
        Capability.VIEW_ALL,
        Capability.MANAGE_ASSETS,
    }),
}


class Actor(BaseModel):
    """Whoever is driving a transition, as seen by the core."""
    model_config = ConfigDict(frozen=True)

    actor_id: str
    tier: AccessTier
    display_name: Optional[str] = None

    def can(self, capability: Capability) -> bool:
        return capability in TIER_CAPABILITIES[self.tier]


def require_capability(actor: Actor, capability: Capability) -> None:
    if not actor.can(capability):
        raise AuthorizationError(
            f"Actor '{actor.actor_id}' ({actor.tier.value}) lacks capability '{capability.value}'."
        )


def tier_for_role(role: Optional[str], role_tiers: Dict[str, str]) -> Optional[AccessTier]:
    """Translate an externally issued role name into a tier; None when unmapped."""
    if not role:
        return None
    tier_value = role_tiers.get(role.lower())
    if tier_value is None:
        return None
    try:
        return AccessTier(tier_value)
    except ValueError:
        return None
