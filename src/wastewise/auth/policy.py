"""Capability-based authorization policy.

Services and routers never inspect an admin list directly; they ask the
injected policy whether an account holds a capability.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping

from wastewise.auth.accounts import normalize_account

ACHIEVEMENTS_ADMIN = "achievements:admin"
NFTS_ADMIN = "nfts:admin"
POINTS_ADMIN = "points:admin"

ALL_CAPABILITIES: frozenset[str] = frozenset({ACHIEVEMENTS_ADMIN, NFTS_ADMIN, POINTS_ADMIN})


class AuthorizationPolicy(ABC):
    """Answers capability questions for an account."""

    @abstractmethod
    def allows(self, account: str, capability: str) -> bool:
        """Return True if ``account`` holds ``capability``."""
        ...


class AllowlistPolicy(AuthorizationPolicy):
    """Grants capabilities from an explicit account -> capabilities mapping."""

    def __init__(self, grants: Mapping[str, Iterable[str]]) -> None:
        self._grants: dict[str, frozenset[str]] = {
            normalize_account(account): frozenset(caps) for account, caps in grants.items()
        }

    @classmethod
    def administrators(cls, accounts: Iterable[str]) -> AllowlistPolicy:
        """Every listed account receives every capability."""
        return cls({account: ALL_CAPABILITIES for account in accounts})

    def allows(self, account: str, capability: str) -> bool:
        return capability in self._grants.get(account.lower(), frozenset())


class DenyAllPolicy(AuthorizationPolicy):
    def allows(self, account: str, capability: str) -> bool:
        return False
