"""
External collaborators of the NFT engine: chain and content store.

Both are abstract so the allocation engine can be exercised with in-memory
fakes. Every concrete failure is wrapped in UpstreamError carrying the
adapter's reason.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx
import structlog
from web3 import Web3
from web3.logs import DISCARD

from wastewise.errors import UpstreamError

logger = structlog.get_logger()


@dataclass(frozen=True)
class MintReceipt:
    token_ref: str
    tx_ref: str
    block_ref: int


@dataclass(frozen=True)
class TransferReceipt:
    tx_ref: str
    block_ref: int


class ChainAdapter(ABC):
    """Mints and transfers reward tokens. Calls carry no idempotency key."""

    @abstractmethod
    async def mint(
        self,
        to_account: str,
        metadata_uri: str,
        name: str,
        category: str,
        rarity: int,
    ) -> MintReceipt:
        """Mint a token to ``to_account``. Raises UpstreamError."""
        ...

    @abstractmethod
    async def transfer(self, to_account: str, token_ref: str) -> TransferReceipt:
        """Transfer an already minted token. Raises UpstreamError."""
        ...


class ContentStore(ABC):
    """Content-addressed storage for token metadata."""

    @abstractmethod
    async def put(self, content: dict[str, Any] | bytes, name: str) -> str:
        """Store content and return its ``ipfs://`` URI. Raises UpstreamError."""
        ...


# ── web3.py chain adapter ──

CONTRACT_CATEGORIES: dict[str, int] = {"general": 0, "achievement": 1, "special": 2, "limited": 3}

WASTEWISE_NFT_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "mintNFT",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "metadataURI", "type": "string"},
            {"name": "name", "type": "string"},
            {"name": "category", "type": "uint8"},
            {"name": "rarity", "type": "uint8"},
        ],
        "outputs": [{"name": "tokenId", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "transferNFT",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "tokenId", "type": "uint256"},
        ],
        "outputs": [],
    },
    {
        "type": "event",
        "name": "NFTMinted",
        "anonymous": False,
        "inputs": [
            {"name": "tokenId", "type": "uint256", "indexed": True},
            {"name": "to", "type": "address", "indexed": True},
            {"name": "metadataURI", "type": "string", "indexed": False},
            {"name": "category", "type": "uint8", "indexed": False},
            {"name": "rarity", "type": "uint8", "indexed": False},
        ],
    },
]


class Web3ChainAdapter(ChainAdapter):
    """Signs and sends contract transactions from the treasury key.

    web3.py's HTTP provider is synchronous; each call runs in a worker thread.
    """

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        contract_address: str,
        receipt_timeout: int = 120,
    ) -> None:
        self.rpc_url = rpc_url
        self.receipt_timeout = receipt_timeout
        self._private_key = private_key
        self._contract_address = contract_address
        self._web3: Web3 | None = None
        self._contract: Any = None

    def _connect(self) -> None:
        if self._web3 is not None:
            return
        if not self._private_key or not self._contract_address:
            raise UpstreamError("Chain adapter is not configured")
        self._web3 = Web3(Web3.HTTPProvider(self.rpc_url))
        self._contract = self._web3.eth.contract(
            address=Web3.to_checksum_address(self._contract_address),
            abi=WASTEWISE_NFT_ABI,
        )

    def _send(self, function: Any) -> dict[str, Any]:  # noqa: ANN401
        """Build, sign, send and wait for one transaction (blocking)."""
        self._connect()
        assert self._web3 is not None
        account = self._web3.eth.account.from_key(self._private_key)
        transaction = function.build_transaction({
            "from": account.address,
            "nonce": self._web3.eth.get_transaction_count(account.address, "pending"),
            "gasPrice": self._web3.eth.gas_price,
            "chainId": self._web3.eth.chain_id,
        })
        signed = account.sign_transaction(transaction)
        tx_hash = self._web3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = self._web3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        if receipt["status"] == 0:
            msg = f"Transaction {tx_hash.hex()} reverted"
            raise RuntimeError(msg)
        return receipt

    def _mint_sync(self, to_account: str, metadata_uri: str, name: str, category: str, rarity: int) -> MintReceipt:
        self._connect()
        function = self._contract.functions.mintNFT(
            Web3.to_checksum_address(to_account),
            metadata_uri,
            name,
            CONTRACT_CATEGORIES.get(category.lower(), 0),
            max(0, min(rarity, 5) - 1),
        )
        receipt = self._send(function)
        events = self._contract.events.NFTMinted().process_receipt(receipt, errors=DISCARD)
        if not events:
            msg = "NFTMinted event not found in transaction logs"
            raise RuntimeError(msg)
        return MintReceipt(
            token_ref=str(events[0]["args"]["tokenId"]),
            tx_ref=receipt["transactionHash"].hex(),
            block_ref=receipt["blockNumber"],
        )

    def _transfer_sync(self, to_account: str, token_ref: str) -> TransferReceipt:
        self._connect()
        function = self._contract.functions.transferNFT(Web3.to_checksum_address(to_account), int(token_ref))
        receipt = self._send(function)
        return TransferReceipt(tx_ref=receipt["transactionHash"].hex(), block_ref=receipt["blockNumber"])

    async def mint(self, to_account: str, metadata_uri: str, name: str, category: str, rarity: int) -> MintReceipt:
        """Mint via the contract's ``mintNFT`` and read the token id from the NFTMinted event."""
        try:
            result = await asyncio.to_thread(self._mint_sync, to_account, metadata_uri, name, category, rarity)
        except UpstreamError:
            raise
        except Exception as e:
            logger.error("chain_mint_failed", to=to_account, uri=metadata_uri, error=str(e))
            raise UpstreamError(f"Mint failed: {e}") from e
        logger.info("chain_minted", to=to_account, token=result.token_ref, tx=result.tx_ref)
        return result

    async def transfer(self, to_account: str, token_ref: str) -> TransferReceipt:
        """Transfer via the contract's ``transferNFT``."""
        try:
            result = await asyncio.to_thread(self._transfer_sync, to_account, token_ref)
        except UpstreamError:
            raise
        except Exception as e:
            logger.error("chain_transfer_failed", to=to_account, token=token_ref, error=str(e))
            raise UpstreamError(f"Transfer failed: {e}") from e
        logger.info("chain_transferred", to=to_account, token=token_ref, tx=result.tx_ref)
        return result


# ── Pinata content store ──


class PinataContentStore(ContentStore):
    """Pins JSON metadata (or raw files) to IPFS through the Pinata API."""

    def __init__(
        self,
        jwt: str,
        api_url: str = "https://api.pinata.cloud",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._jwt = jwt
        self._transport = transport

    async def put(self, content: dict[str, Any] | bytes, name: str) -> str:
        """Pin content and return ``ipfs://<cid>``."""
        if not self._jwt:
            raise UpstreamError("Content store is not configured")

        headers = {"Authorization": f"Bearer {self._jwt}"}
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                if isinstance(content, bytes):
                    response = await client.post(
                        f"{self.api_url}/pinning/pinFileToIPFS",
                        headers=headers,
                        files={"file": (name, content)},
                        data={"pinataMetadata": json.dumps({"name": name})},
                    )
                else:
                    response = await client.post(
                        f"{self.api_url}/pinning/pinJSONToIPFS",
                        headers=headers,
                        json={"pinataContent": content, "pinataMetadata": {"name": name}},
                    )
                response.raise_for_status()
                cid = response.json()["IpfsHash"]
        except httpx.HTTPStatusError as e:
            logger.error("content_store_http_error", name=name, status=e.response.status_code)
            raise UpstreamError(f"Content store returned HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error("content_store_failed", name=name, error=str(e))
            raise UpstreamError(f"Content store upload failed: {e}") from e

        logger.info("content_pinned", name=name, cid=cid)
        return f"ipfs://{cid}"
