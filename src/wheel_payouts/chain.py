from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from .errors import RpcError, TransportError, UserCancellation
from .project_constants import RECEIPT_POLL_SECONDS, RECEIPT_TIMEOUT_SECONDS
from .wheel import Sleeper

log = logging.getLogger("chain")

USER_REJECTED = 4001
UNRECOGNIZED_CHAIN = 4902


@dataclass(frozen=True)
class NetworkSpec:
    chain_id: int
    name: str
    rpc_url: str
    native_currency: Dict[str, Any]
    explorer_url: str

    @property
    def chain_id_hex(self) -> str:
        return hex(self.chain_id)

    def add_chain_params(self) -> Dict[str, Any]:
        return {
            "chainId": self.chain_id_hex,
            "chainName": self.name,
            "nativeCurrency": dict(self.native_currency),
            "rpcUrls": [self.rpc_url],
            "blockExplorerUrls": [self.explorer_url],
        }


class WalletRpcClient:
    """
    JSON-RPC over HTTP to a signing wallet (EIP-1193 method set).

    Code 4001 means the user declined in the wallet and surfaces as
    UserCancellation; every other error object is an RpcError.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.rpc_url = rpc_url
        self.client = client or httpx.AsyncClient(timeout=timeout_s)
        self._ids = itertools.count(1)
        self._sleep = sleep

    async def close(self) -> None:
        await self.client.aclose()

    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        data = await self._post(payload)
        return data.get("result")

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            resp = await self.client.post(self.rpc_url, json=payload)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise TransportError(f"{payload['method']} failed: {e}")
        try:
            data = resp.json()
        except ValueError as e:
            raise TransportError(f"{payload['method']} returned invalid JSON: {e}")
        if not isinstance(data, dict):
            raise RpcError(None, f"{payload['method']} returned {data!r}")
        if "error" in data and data["error"] is not None:
            err = data["error"]
            code = err.get("code") if isinstance(err, dict) else None
            message = err.get("message", str(err)) if isinstance(err, dict) else str(err)
            if code == USER_REJECTED:
                raise UserCancellation(message or "User rejected the request")
            raise RpcError(code, message)
        return data

    async def chain_id(self) -> int:
        raw = await self.request("eth_chainId")
        try:
            return int(raw, 16)
        except (TypeError, ValueError):
            raise RpcError(None, f"eth_chainId returned {raw!r}")

    async def accounts(self) -> List[str]:
        return list(await self.request("eth_accounts") or [])

    async def switch_chain(self, network: NetworkSpec) -> None:
        await self.request("wallet_switchEthereumChain", [{"chainId": network.chain_id_hex}])

    async def add_chain(self, network: NetworkSpec) -> None:
        await self.request("wallet_addEthereumChain", [network.add_chain_params()])

    async def eth_call(self, to: str, data: str) -> str:
        return await self.request("eth_call", [{"to": to, "data": data}, "latest"])

    async def send_transaction(self, sender: str, to: str, data: str) -> str:
        tx_hash = await self.request(
            "eth_sendTransaction", [{"from": sender, "to": to, "data": data}]
        )
        log.info("Submitted transaction %s", tx_hash)
        return tx_hash

    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout_s: float = RECEIPT_TIMEOUT_SECONDS,
        poll_s: float = RECEIPT_POLL_SECONDS,
    ) -> Dict[str, Any]:
        deadline = time.monotonic() + timeout_s
        while True:
            receipt = await self.request("eth_getTransactionReceipt", [tx_hash])
            if receipt:
                return receipt
            if time.monotonic() >= deadline:
                raise RpcError(None, f"No receipt for {tx_hash} after {timeout_s:.0f}s")
            await self._sleep(poll_s)
