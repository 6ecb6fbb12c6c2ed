from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .errors import ExternalRejection, RewardIneligible, TransportError
from .project_constants import (
    REWARD_BACKGROUND_COLOR,
    REWARD_COST,
    REWARD_MAX_PER_USER_PER_STREAM,
    REWARD_PROMPT,
    REWARD_TITLE,
    TWITCH_API_URL,
)

log = logging.getLogger("helix")

CANCELED = "CANCELED"
FULFILLED = "FULFILLED"
UNFULFILLED = "UNFULFILLED"


@dataclass(frozen=True)
class RewardSpec:
    title: str = REWARD_TITLE
    cost: int = REWARD_COST
    prompt: str = REWARD_PROMPT
    requires_user_input: bool = True
    per_user_per_stream_cap: int = REWARD_MAX_PER_USER_PER_STREAM

    def payload(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "cost": self.cost,
            "prompt": self.prompt,
            "is_user_input_required": self.requires_user_input,
            "should_redemptions_skip_request_queue": False,
            "is_enabled": True,
            "background_color": REWARD_BACKGROUND_COLOR,
            "is_max_per_user_per_stream_enabled": True,
            "max_per_user_per_stream": self.per_user_per_stream_cap,
        }


@dataclass(frozen=True)
class Redemption:
    id: str
    user_name: str
    user_input: str
    reward_id: str

    @staticmethod
    def from_api(item: Dict[str, Any], reward_id: str) -> "Redemption":
        return Redemption(
            id=str(item["id"]),
            user_name=str(item.get("user_name") or item.get("user_login") or ""),
            user_input=str(item.get("user_input") or ""),
            reward_id=str((item.get("reward") or {}).get("id") or reward_id),
        )


class HelixClient:
    """Channel-points and chat calls against the Twitch Helix API."""

    def __init__(
        self,
        client_id: str,
        access_token: str,
        timeout_s: float = 30.0,
        base_url: str = TWITCH_API_URL,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout_s)
        self._headers = {
            "Authorization": f"Bearer {access_token}",
            "Client-Id": client_id,
        }
        self._broadcaster_id: Optional[str] = None

    async def close(self) -> None:
        await self.client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            resp = await self.client.request(
                method,
                f"{self.base_url}{path}",
                params=params,
                json=json,
                headers=self._headers,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Helix {method} {path} failed: {e}")
        log.debug("Helix %s %s -> %d", method, path, resp.status_code)
        if resp.status_code >= 500 or resp.status_code == 429:
            raise TransportError(f"Helix {method} {path} returned {resp.status_code}")
        return resp

    @staticmethod
    def _rejection(resp: httpx.Response, what: str) -> ExternalRejection:
        error, details = error_fields(resp)
        return ExternalRejection(
            f"{what} rejected ({resp.status_code})",
            status=resp.status_code,
            error=error or what,
            details=details,
        )

    async def get_broadcaster_id(self) -> str:
        """Resolved once per client; the token identifies the channel."""
        if self._broadcaster_id:
            return self._broadcaster_id
        resp = await self._request("GET", "/users")
        if resp.status_code >= 400:
            raise self._rejection(resp, "Twitch authorization")
        data = resp.json().get("data") or []
        if not data:
            raise ExternalRejection("Twitch returned no user for this token", status=resp.status_code)
        self._broadcaster_id = str(data[0]["id"])
        return self._broadcaster_id

    async def find_reward(self, title: str) -> Optional[Dict[str, Any]]:
        broadcaster_id = await self.get_broadcaster_id()
        resp = await self._request(
            "GET",
            "/channel_points/custom_rewards",
            params={"broadcaster_id": broadcaster_id},
        )
        if resp.status_code >= 400:
            raise self._rejection(resp, "Listing custom rewards")
        for reward in resp.json().get("data") or []:
            if str(reward.get("title", "")).lower() == title.lower():
                return reward
        return None

    async def create_reward(self, spec: RewardSpec) -> Dict[str, Any]:
        broadcaster_id = await self.get_broadcaster_id()
        resp = await self._request(
            "POST",
            "/channel_points/custom_rewards",
            params={"broadcaster_id": broadcaster_id},
            json=spec.payload(),
        )
        if resp.status_code >= 400:
            error, details = error_fields(resp)
            raise RewardIneligible(
                "Channel cannot create channel-point rewards (affiliate or partner required)",
                status=resp.status_code,
                error=error or "reward creation failed",
                details=details,
            )
        return resp.json()["data"][0]

    async def ensure_reward(self, spec: RewardSpec) -> str:
        reward = await self.find_reward(spec.title)
        if reward is None:
            log.info("Reward %r not found; creating it", spec.title)
            reward = await self.create_reward(spec)
        return str(reward["id"])

    async def list_redemptions(self, reward_id: str, status: str = UNFULFILLED) -> List[Redemption]:
        broadcaster_id = await self.get_broadcaster_id()
        params: Dict[str, Any] = {
            "broadcaster_id": broadcaster_id,
            "reward_id": reward_id,
            "status": status,
            "first": 50,
        }
        out: List[Redemption] = []
        while True:
            resp = await self._request(
                "GET", "/channel_points/custom_rewards/redemptions", params=params
            )
            if resp.status_code == 403:
                # Rewards can only be managed by the client id that created them.
                raise self._rejection(resp, "Reward belongs to another client id")
            if resp.status_code >= 400:
                raise self._rejection(resp, "Listing redemptions")
            body = resp.json()
            for item in body.get("data") or []:
                out.append(Redemption.from_api(item, reward_id))
            cursor = (body.get("pagination") or {}).get("cursor")
            if not cursor:
                return out
            params["after"] = cursor

    async def update_redemption_status(self, redemption_id: str, reward_id: str, status: str) -> None:
        broadcaster_id = await self.get_broadcaster_id()
        resp = await self._request(
            "PATCH",
            "/channel_points/custom_rewards/redemptions",
            params={
                "id": redemption_id,
                "broadcaster_id": broadcaster_id,
                "reward_id": reward_id,
            },
            json={"status": status},
        )
        if resp.status_code >= 400:
            raise self._rejection(resp, f"Marking redemption {redemption_id} {status}")

    async def send_chat_message(self, message: str) -> None:
        broadcaster_id = await self.get_broadcaster_id()
        resp = await self._request(
            "POST",
            "/chat/messages",
            json={
                "broadcaster_id": broadcaster_id,
                "sender_id": broadcaster_id,
                "message": message,
            },
        )
        if resp.status_code >= 400:
            raise self._rejection(resp, "Sending chat message")


def error_fields(resp: httpx.Response) -> Tuple[str, str]:
    try:
        body = resp.json()
    except ValueError:
        return "", resp.text
    if not isinstance(body, dict):
        return "", str(body)
    return str(body.get("error") or ""), str(body.get("details") or body.get("message") or "")
