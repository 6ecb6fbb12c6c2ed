from __future__ import annotations

import logging
from typing import Optional

import httpx

from .errors import ExternalRejection, TransportError
from .helix import error_fields

log = logging.getLogger("registry")


class WalletRegistryClient:
    """Registers a viewer's wallet with the community API before they can spin."""

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout_s)

    async def close(self) -> None:
        await self.client.aclose()

    async def register(self, username: str, wallet: str) -> None:
        """Returns on 200/201; raises ExternalRejection on 4xx, TransportError otherwise."""
        try:
            resp = await self.client.post(
                f"{self.base_url}/wallets",
                json={"username": username, "wallet": wallet},
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Wallet registry unreachable: {e}")

        if resp.status_code in (200, 201):
            log.debug("Registered %s for %s", wallet, username)
            return
        if 400 <= resp.status_code < 500:
            error, details = error_fields(resp)
            raise ExternalRejection(
                f"Wallet registry rejected {wallet}",
                status=resp.status_code,
                error=error or "wallet rejected",
                details=details,
            )
        raise TransportError(f"Wallet registry returned {resp.status_code}")
