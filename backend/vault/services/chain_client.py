import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from typing import Optional, Protocol

import httpx
from eth_account import Account
from eth_utils import to_checksum_address

from vault.config import settings
from vault.errors import ChainError, TransferUnconfirmedError

logger = logging.getLogger(__name__)

# ERC-20 function selectors
TRANSFER_SELECTOR = "a9059cbb"
BALANCE_OF_SELECTOR = "70a08231"


def to_base_units(amount, decimals: int = 6) -> int:
    """Convert a human amount (1.50) to integer base units (1500000).

    Precision beyond ``decimals`` is truncated, never rounded up.
    """
    quantum = Decimal(1).scaleb(-decimals)
    truncated = Decimal(str(amount)).quantize(quantum, rounding=ROUND_DOWN)
    return int(truncated.scaleb(decimals))


def from_base_units(units: int, decimals: int = 6) -> Decimal:
    return Decimal(int(units)).scaleb(-decimals)


def _pad_address(address: str) -> str:
    return address.lower().removeprefix("0x").rjust(64, "0")


def _pad_uint(value: int) -> str:
    return format(value, "x").rjust(64, "0")


class _RpcTransportError(ChainError):
    """The request may or may not have reached the node."""


class _RpcRejected(ChainError):
    """The node answered with a JSON-RPC error object."""


def _hex_int(value, method: str) -> int:
    try:
        return int(value, 16)
    except (TypeError, ValueError) as e:
        raise ChainError(f"RPC {method} returned malformed result: {value!r}") from e


@dataclass
class TransferReceipt:
    tx_hash: str
    gas_used: int


class ChainClient(Protocol):
    hot_wallet_address: str

    async def balance_of(self, address: str) -> Decimal: ...

    async def transfer(self, destination: str, amount: Decimal) -> TransferReceipt: ...


class PolygonChainClient:
    """USDC reads and hot-wallet transfers over raw JSON-RPC."""

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        private_key: Optional[str] = None,
        token_address: Optional[str] = None,
        decimals: Optional[int] = None,
        chain_id: Optional[int] = None,
    ):
        self.rpc_url = rpc_url if rpc_url is not None else settings.rpc_url
        self.private_key = private_key if private_key is not None else settings.HOT_WALLET_PRIVATE_KEY
        self.token_address = to_checksum_address(token_address or settings.USDC_CONTRACT_ADDRESS)
        self.decimals = decimals if decimals is not None else settings.USDC_DECIMALS
        self.chain_id = chain_id if chain_id is not None else settings.CHAIN_ID
        self.confirm_timeout = settings.TRANSFER_CONFIRM_TIMEOUT_SECONDS
        self.poll_interval = settings.TRANSFER_POLL_INTERVAL_SECONDS
        self.client = httpx.AsyncClient(timeout=30.0)
        self._request_id = 0

    @property
    def hot_wallet_address(self) -> str:
        if not self.private_key:
            raise ChainError("HOT_WALLET_PRIVATE_KEY not set")
        return Account.from_key(self.private_key).address

    async def _rpc(self, method: str, params: list):
        if not self.rpc_url:
            raise ChainError("Polygon RPC URL not configured")
        self._request_id += 1
        try:
            resp = await self.client.post(
                self.rpc_url,
                json={"jsonrpc": "2.0", "method": method, "params": params, "id": self._request_id},
            )
        except httpx.HTTPError as e:
            raise _RpcTransportError(f"RPC {method} failed: {e}") from e
        if resp.status_code != 200:
            # Gateway errors (502/503/504) say nothing about whether the node saw the call
            raise _RpcTransportError(f"RPC {method} failed: HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as e:
            raise _RpcTransportError(f"RPC {method} returned a non-JSON body") from e
        if not isinstance(data, dict):
            raise _RpcTransportError(f"RPC {method} returned an unexpected body")
        if data.get("error"):
            err = data["error"]
            message = err.get("message") if isinstance(err, dict) else str(err)
            raise _RpcRejected(f"RPC {method} error: {message}")
        return data.get("result")

    async def balance_of(self, address: str) -> Decimal:
        result = await self._rpc("eth_call", [
            {"to": self.token_address, "data": "0x" + BALANCE_OF_SELECTOR + _pad_address(address)},
            "latest",
        ])
        if not result or result == "0x":
            raise ChainError(f"Empty balanceOf result for {address}")
        return from_base_units(_hex_int(result, "eth_call"), self.decimals)

    async def transfer(self, destination: str, amount: Decimal) -> TransferReceipt:
        units = to_base_units(amount, self.decimals)
        if units <= 0:
            raise ChainError(f"Transfer amount {amount} is below token precision")

        sender = self.hot_wallet_address
        data = "0x" + TRANSFER_SELECTOR + _pad_address(destination) + _pad_uint(units)

        nonce = _hex_int(await self._rpc("eth_getTransactionCount", [sender, "pending"]), "eth_getTransactionCount")
        gas_price = _hex_int(await self._rpc("eth_gasPrice", []), "eth_gasPrice")
        gas_estimate = _hex_int(await self._rpc("eth_estimateGas", [
            {"from": sender, "to": self.token_address, "data": data},
        ]), "eth_estimateGas")

        tx = {
            "nonce": nonce,
            "gasPrice": gas_price,
            "gas": gas_estimate * 12 // 10,
            "to": self.token_address,
            "value": 0,
            "data": data,
            "chainId": self.chain_id,
        }
        signed = Account.sign_transaction(tx, self.private_key)
        raw_tx = "0x" + bytes(signed.raw_transaction).hex()
        local_hash = "0x" + bytes(signed.hash).hex()

        try:
            tx_hash = await self._rpc("eth_sendRawTransaction", [raw_tx]) or local_hash
        except _RpcRejected:
            raise
        except ChainError as e:
            # Anything short of an explicit rejection may have reached the mempool
            raise TransferUnconfirmedError(e.message, tx_hash=local_hash) from e
        logger.info("[chain] Broadcast USDC transfer %s units to %s tx=%s", units, destination, tx_hash)

        receipt = await self._wait_for_receipt(tx_hash)
        if receipt.get("status") != "0x1":
            raise ChainError(f"Transfer {tx_hash} reverted")
        return TransferReceipt(tx_hash=receipt.get("transactionHash", tx_hash),
                               gas_used=int(receipt.get("gasUsed", "0x0"), 16))

    async def _wait_for_receipt(self, tx_hash: str) -> dict:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.confirm_timeout
        while True:
            try:
                receipt = await self._rpc("eth_getTransactionReceipt", [tx_hash])
            except ChainError as e:
                # Past broadcast: an RPC hiccup says nothing about the outcome
                logger.warning("[chain] Receipt poll failed for %s: %s", tx_hash, e)
                receipt = None
            if receipt:
                return receipt
            if loop.time() >= deadline:
                raise TransferUnconfirmedError(
                    f"Transfer {tx_hash} not confirmed within {self.confirm_timeout}s",
                    tx_hash=tx_hash,
                )
            await asyncio.sleep(self.poll_interval)

    async def close(self):
        await self.client.aclose()
