from __future__ import annotations

import logging
from typing import List, Protocol, Tuple

from .helix import HelixClient

log = logging.getLogger("notify")


class Notifier(Protocol):
    async def channel_message(self, text: str) -> None: ...

    def alert(self, text: str, level: int = logging.WARNING) -> None: ...


class LogNotifier:
    """Used when no chat is connected; channel messages only reach the log."""

    async def channel_message(self, text: str) -> None:
        log.info("[chat] %s", text)

    def alert(self, text: str, level: int = logging.WARNING) -> None:
        log.log(level, "%s", text)


class ChatNotifier(LogNotifier):
    def __init__(self, helix: HelixClient) -> None:
        self.helix = helix

    async def channel_message(self, text: str) -> None:
        await self.helix.send_chat_message(text)


class RecordingNotifier(LogNotifier):
    """Keeps everything it was asked to send; handy for dry runs."""

    def __init__(self) -> None:
        self.messages: List[str] = []
        self.alerts: List[Tuple[int, str]] = []

    async def channel_message(self, text: str) -> None:
        self.messages.append(text)
        await super().channel_message(text)

    def alert(self, text: str, level: int = logging.WARNING) -> None:
        self.alerts.append((level, text))
        super().alert(text, level)
