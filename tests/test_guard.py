"""Unit tests for auth/guard.py -- role hierarchy checks.

Covers:
- can_act_on() over the full 5x5 role grid (strictly lower only)
- require_minimum_role() admits iff role >= minimum, Unauthenticated without claims
- check_role_change() needs both current and requested role below the actor
- Actors can never target themselves
- coerce_role() rejects anything outside the 1..5 integer scale
"""

from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from auth import guard
from auth.models import Role, SessionClaims
from core.errors import InsufficientRole, InvalidRole, SelfModification, Unauthenticated

_NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _claims(role: int, account_id: int = 100) -> SessionClaims:
    return SessionClaims(account_id=account_id, role=Role(role), issued_at=_NOW, expires_at=_NOW + timedelta(days=1))


class TestCanActOn:
    @pytest.mark.parametrize("actor,target", list(itertools.product(range(1, 6), repeat=2)))
    def test_strictly_lower_only(self, actor: int, target: int) -> None:
        assert guard.can_act_on(actor, target) is (target < actor)

    @pytest.mark.parametrize("role", range(1, 6))
    def test_equal_role_refused(self, role: int) -> None:
        assert guard.can_act_on(role, role) is False


class TestRequireMinimumRole:
    def test_missing_claims_is_unauthenticated(self) -> None:
        with pytest.raises(Unauthenticated):
            guard.require_minimum_role(None, Role.USER)

    @pytest.mark.parametrize("role,minimum", list(itertools.product(range(1, 6), repeat=2)))
    def test_admits_iff_role_at_least_minimum(self, role: int, minimum: int) -> None:
        claims = _claims(role)
        if role >= minimum:
            assert guard.require_minimum_role(claims, Role(minimum)) is claims
        else:
            with pytest.raises(InsufficientRole):
                guard.require_minimum_role(claims, Role(minimum))


class TestRoleChange:
    def test_equal_current_role_refused(self) -> None:
        with pytest.raises(InsufficientRole):
            guard.check_role_change(_claims(3), target_id=1, current_role=3, new_role=1)

    def test_promotion_to_actor_role_refused(self) -> None:
        with pytest.raises(InsufficientRole):
            guard.check_role_change(_claims(4), target_id=1, current_role=2, new_role=4)

    def test_promotion_above_actor_refused(self) -> None:
        with pytest.raises(InsufficientRole):
            guard.check_role_change(_claims(3), target_id=1, current_role=1, new_role=5)

    def test_change_within_lower_roles_allowed(self) -> None:
        guard.check_role_change(_claims(4), target_id=1, current_role=2, new_role=3)

    def test_own_role_never_changes(self) -> None:
        with pytest.raises(SelfModification):
            guard.check_role_change(_claims(5, account_id=1), target_id=1, current_role=5, new_role=4)

    def test_require_can_act_on_refuses_self(self) -> None:
        with pytest.raises(SelfModification):
            guard.require_can_act_on(_claims(5, account_id=9), target_id=9, target_role=1)

    def test_require_can_act_on_refuses_peer(self) -> None:
        with pytest.raises(InsufficientRole):
            guard.require_can_act_on(_claims(3), target_id=9, target_role=3)


class TestCoerceRole:
    @pytest.mark.parametrize("value", [1, 2, 3, 4, 5, "3"])
    def test_valid(self, value) -> None:
        assert guard.coerce_role(value) == int(value)

    @pytest.mark.parametrize("value", [0, 6, -1, "admin", None, True])
    def test_invalid(self, value) -> None:
        with pytest.raises(InvalidRole):
            guard.coerce_role(value)
