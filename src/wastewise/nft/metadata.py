"""ERC-721 style metadata for pool items."""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import quote

PLACEHOLDER_IMAGE = "https://picsum.photos/400/400?random={seed}"


def slugify(name: str) -> str:
    """Lower-case, dash-separated slug; falls back to "nft"."""
    slug = re.sub(r"\s+", "-", name.lower().strip())
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    return slug or "nft"


def resolve_image(image_url: str | None, name: str) -> str:
    """Keep http(s) and ipfs URLs; anything else becomes a placeholder image."""
    if image_url and (image_url.startswith("http") or image_url.startswith("ipfs://")):
        return image_url
    return PLACEHOLDER_IMAGE.format(seed=quote(name, safe=""))


def build_metadata(
    name: str,
    description: str | None,
    image_url: str | None,
    rarity: int,
    category: str,
    attributes: list[dict[str, Any]] | None = None,
    frontend_base_url: str = "",
) -> dict[str, Any]:
    """Build the metadata document pinned to the content store."""
    metadata: dict[str, Any] = {
        "name": name,
        "description": description or "",
        "image": resolve_image(image_url, name),
        "attributes": [
            {"trait_type": "Category", "value": category},
            {"trait_type": "Rarity Level", "value": rarity},
            *(attributes or []),
        ],
    }
    if frontend_base_url:
        metadata["external_url"] = f"{frontend_base_url.rstrip('/')}/nft/{slugify(name)}"
    return metadata


def gateway_url(uri: str, gateway: str) -> str:
    """HTTP URL for an ``ipfs://<cid>`` (or bare cid) through a gateway."""
    cid = uri.removeprefix("ipfs://")
    return f"{gateway.rstrip('/')}/ipfs/{quote(cid)}"
