"""FastAPI caller-identity and authorization dependencies."""

from __future__ import annotations

from collections.abc import Callable, Coroutine
from typing import Any

from fastapi import Depends, HTTPException, Security
from fastapi.security import APIKeyHeader

from wastewise.auth.accounts import normalize_account
from wastewise.auth.policy import AllowlistPolicy, AuthorizationPolicy
from wastewise.config import get_settings
from wastewise.errors import Forbidden, ValidationError

_wallet_header = APIKeyHeader(name="X-Wallet-Address", auto_error=False)


async def get_current_account(
    address: str | None = Security(_wallet_header),
) -> str:
    """
    Return the caller's normalised wallet address.

    Ownership is not proven here; the address is taken at face value.
    Raises 401 when missing and 400 when malformed.
    """
    if not address:
        raise HTTPException(status_code=401, detail="X-Wallet-Address header is required")
    try:
        return normalize_account(address)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message) from e


def get_policy() -> AuthorizationPolicy:
    """Authorization policy built from settings. Override in tests or deployments."""
    return AllowlistPolicy.administrators(get_settings().admin_accounts)


def require_capability(capability: str) -> Callable[..., Coroutine[Any, Any, str]]:
    """Dependency factory: the caller's account, or 403 without ``capability``."""

    async def _dependency(
        account: str = Depends(get_current_account),
        policy: AuthorizationPolicy = Depends(get_policy),
    ) -> str:
        if not policy.allows(account, capability):
            raise Forbidden(f"Account lacks capability {capability}")
        return account

    return _dependency
