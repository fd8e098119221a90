"""
access.py - Roles and an in-memory role registry

The vault core only asks "does this account hold this role?". Role storage is
an external concern; RoleRegistry is the in-memory implementation used by the
CLI and the test suite.
"""

from __future__ import annotations
from collections import defaultdict
from typing import Dict, Iterable, Set

from .core import AuthorizationError


PROTOCOL_ADMIN = "PROTOCOL_ADMIN"
STRATEGY_ADMIN = "STRATEGY_ADMIN"
MANAGER = "MANAGER"

ALL_ROLES = frozenset({PROTOCOL_ADMIN, STRATEGY_ADMIN, MANAGER})


class RoleRegistry:
    """
    Map of role -> accounts.

    Example:
        roles = RoleRegistry()
        roles.grant(PROTOCOL_ADMIN, "admin")
        roles.has_role("admin", PROTOCOL_ADMIN)  # True
    """

    def __init__(self, grants: Dict[str, Iterable[str]] = None):
        self._members: Dict[str, Set[str]] = defaultdict(set)
        for role, accounts in (grants or {}).items():
            for account in accounts:
                self.grant(role, account)

    def grant(self, role: str, account: str) -> None:
        if role not in ALL_ROLES:
            raise ValueError(f"Unknown role {role!r}")
        if not account or not account.strip():
            raise ValueError("account cannot be empty")
        self._members[role].add(account)

    def revoke(self, role: str, account: str) -> None:
        self._members[role].discard(account)

    def has_role(self, account: str, role: str) -> bool:
        return account in self._members.get(role, ())

    def members(self, role: str) -> Set[str]:
        return set(self._members.get(role, ()))


def require_role(access, account: str, role: str, error: type) -> None:
    """
    Raise error(...) unless account holds role.

    Args:
        access: Any AccessControl implementation
        account: Calling account
        role: Required role name
        error: AuthorizationError subclass to raise
    """
    if not issubclass(error, AuthorizationError):
        raise TypeError(f"{error!r} is not an AuthorizationError")
    if not access.has_role(account, role):
        raise error(f"{account} lacks role {role}")
