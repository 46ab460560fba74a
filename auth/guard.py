"""
auth/guard.py -- Role-hierarchy authorization checks.

Roles form a strict total order 1..5. can_act_on() is the only hierarchy
primitive: an actor may act on a target only when the target's role is
strictly lower. Equal roles (which includes acting on oneself) are refused.

The guard raises instead of returning flags so a forgotten check cannot
silently let a call through.
"""

from __future__ import annotations

import logging

from auth.models import Role, SessionClaims
from core.errors import InsufficientRole, InvalidRole, SelfModification, Unauthenticated

logger = logging.getLogger("authsquared.guard")


def coerce_role(value) -> Role:
    """Return value as a Role, failing InvalidRole outside the 1..5 scale."""
    if isinstance(value, bool):
        raise InvalidRole()
    try:
        return Role(int(value))
    except (TypeError, ValueError):
        raise InvalidRole() from None


def require_minimum_role(claims: SessionClaims | None, minimum: Role) -> SessionClaims:
    """Admit claims whose role is at least minimum.

    Fails Unauthenticated when there are no claims, InsufficientRole when the
    role is too low. Returns the claims so callers can chain on them.
    """
    if claims is None:
        raise Unauthenticated()
    if claims.role < minimum:
        logger.info("Account %s (role %d) refused: needs role %d", claims.account_id, claims.role, minimum)
        raise InsufficientRole()
    return claims


def can_act_on(actor_role: int, target_role: int) -> bool:
    """True iff target_role is strictly lower than actor_role."""
    return target_role < actor_role


def require_can_act_on(claims: SessionClaims, target_id: int, target_role: int) -> None:
    """Refuse self-targeting and targets at or above the actor's role."""
    if claims.account_id == target_id:
        raise SelfModification()
    if not can_act_on(claims.role, target_role):
        raise InsufficientRole("Cannot act on an account with an equal or higher role")


def check_role_change(claims: SessionClaims, target_id: int, current_role: int, new_role: int) -> None:
    """Validate an actor assigning new_role to a target currently at current_role.

    Both the target's current role and the requested role must be strictly
    below the actor's. An actor may never change its own role.
    """
    if claims.account_id == target_id:
        raise SelfModification("Cannot change your own role")
    if not can_act_on(claims.role, current_role):
        raise InsufficientRole("Cannot modify an account with an equal or higher role")
    if not can_act_on(claims.role, new_role):
        raise InsufficientRole("Cannot assign a role equal to or higher than your own")
