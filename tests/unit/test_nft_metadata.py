"""Unit tests for NFT metadata construction."""

from __future__ import annotations

from wastewise.nft.metadata import build_metadata, gateway_url, resolve_image, slugify


class TestSlugify:
    def test_basic(self):
        assert slugify("  Green Guardian Badge ") == "green-guardian-badge"

    def test_strips_symbols(self):
        assert slugify("Eco #1 (Limited)!") == "eco-1-limited"

    def test_fallback(self):
        assert slugify("!!!") == "nft"


class TestResolveImage:
    def test_keeps_http_and_ipfs(self):
        assert resolve_image("https://img.example/a.png", "x") == "https://img.example/a.png"
        assert resolve_image("ipfs://bafy123", "x") == "ipfs://bafy123"

    def test_placeholder_for_missing_or_local(self):
        assert resolve_image(None, "Leaf Token").startswith("https://picsum.photos/400/400?random=Leaf%20Token")
        assert resolve_image("/tmp/local.png", "Leaf").startswith("https://picsum.photos/")


class TestBuildMetadata:
    def test_standard_attributes_first(self):
        metadata = build_metadata(
            name="Leaf Token",
            description=None,
            image_url="https://img.example/leaf.png",
            rarity=3,
            category="special",
            attributes=[{"trait_type": "Season", "value": "Spring"}],
        )
        assert metadata["name"] == "Leaf Token"
        assert metadata["description"] == ""
        assert metadata["attributes"] == [
            {"trait_type": "Category", "value": "special"},
            {"trait_type": "Rarity Level", "value": 3},
            {"trait_type": "Season", "value": "Spring"},
        ]
        assert "external_url" not in metadata

    def test_external_url_from_frontend_base(self):
        metadata = build_metadata("Leaf Token", "d", None, 1, "general", frontend_base_url="https://app.example/")
        assert metadata["external_url"] == "https://app.example/nft/leaf-token"


class TestGatewayUrl:
    def test_ipfs_uri(self):
        assert gateway_url("ipfs://bafyabc", "https://gateway.pinata.cloud/") == "https://gateway.pinata.cloud/ipfs/bafyabc"

    def test_bare_cid(self):
        assert gateway_url("bafyabc", "https://gw.example") == "https://gw.example/ipfs/bafyabc"
