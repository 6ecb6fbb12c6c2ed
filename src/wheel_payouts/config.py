from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .project_constants import DEFAULT_AVALANCHE_RPC_URL, DEFAULT_TOKEN_ADDRESS


@dataclass(frozen=True)
class Settings:
    twitch_client_id: str = ""
    twitch_access_token: str = ""
    wallet_api_url: str = ""
    wallet_rpc_url: str = ""
    payout_contract: str = ""
    token_address: str = DEFAULT_TOKEN_ADDRESS
    avalanche_rpc_url: str = DEFAULT_AVALANCHE_RPC_URL

    @staticmethod
    def from_env(
        wallet_rpc_url_override: Optional[str] = None,
        token_address_override: Optional[str] = None,
    ) -> "Settings":
        load_dotenv()

        def env(name: str, default: str = "") -> str:
            return os.getenv(name, default).strip()

        return Settings(
            twitch_client_id=env("TWITCH_CLIENT_ID"),
            twitch_access_token=env("TWITCH_ACCESS_TOKEN"),
            wallet_api_url=env("WALLET_API_URL").rstrip("/"),
            # If user provides --wallet-rpc-url, trust it.
            wallet_rpc_url=wallet_rpc_url_override or env("WALLET_RPC_URL"),
            payout_contract=env("PAYOUT_CONTRACT"),
            token_address=token_address_override
            or env("TOKEN_ADDRESS", DEFAULT_TOKEN_ADDRESS),
            avalanche_rpc_url=env("AVALANCHE_RPC_URL", DEFAULT_AVALANCHE_RPC_URL),
        )

    def require_twitch(self) -> None:
        missing = [
            name
            for name, value in (
                ("TWITCH_CLIENT_ID", self.twitch_client_id),
                ("TWITCH_ACCESS_TOKEN", self.twitch_access_token),
                ("WALLET_API_URL", self.wallet_api_url),
            )
            if not value
        ]
        if missing:
            raise RuntimeError(
                f"Missing {', '.join(missing)}. Put them in .env or export them."
            )

    def require_wallet(self) -> None:
        if not self.wallet_rpc_url:
            raise RuntimeError(
                "Missing WALLET_RPC_URL (or --wallet-rpc-url). Point it at your wallet bridge."
            )
        if not self.payout_contract:
            raise RuntimeError("Missing PAYOUT_CONTRACT. Put it in .env or export it.")
