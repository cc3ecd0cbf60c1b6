"""Wallet account validation and normalisation."""

from __future__ import annotations

import re

from wastewise.errors import ValidationError

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_valid_account(address: str) -> bool:
    """Check EVM address shape (0x + 40 hex). No checksum or ownership proof."""
    return bool(address) and _ADDRESS_RE.match(address) is not None


def normalize_account(address: str | None) -> str:
    """Validate and lower-case a wallet address. Raises ValidationError."""
    if not address or not isinstance(address, str):
        raise ValidationError("Wallet address is required")
    address = address.strip()
    if not is_valid_account(address):
        raise ValidationError(f"Invalid wallet address: {address}")
    return address.lower()


def format_account(address: str) -> str:
    """Shorten an address for log lines, e.g. 0x1234...abcd."""
    if len(address) <= 10:
        return address
    return f"{address[:6]}...{address[-4:]}"
