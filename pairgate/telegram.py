"""Telegram Bot API lookups used for operator messaging."""

import httpx
from loguru import logger

from pairgate.config.schema import TelegramConfig

APPROVED_MESSAGE = "✅ Access approved! Send a message to start chatting."


class TelegramClient:
    """
    Read-mostly client for the Bot API.

    Failures are logged and reported as None/False; nothing here is part of
    the pairing state machine.
    """

    def __init__(self, config: TelegramConfig, client: httpx.Client | None = None):
        self.config = config
        self._client = client or httpx.Client(timeout=config.timeout_seconds)

    def _url(self, method: str) -> str:
        return f"{self.config.api_base.rstrip('/')}/bot{self.config.token}/{method}"

    def get_bot_username(self) -> str | None:
        """Bot @username via getMe, or None if the token is unset or invalid."""
        if not self.config.token:
            return None
        try:
            resp = self._client.get(self._url("getMe"))
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Could not fetch bot username from Telegram API: {type(e).__name__}")
            return None
        if not data.get("ok"):
            logger.warning(f"Telegram getMe rejected the token: {data.get('description', 'unknown error')}")
            return None
        return data.get("result", {}).get("username")

    def notify_approved(self, chat_id: str, text: str = APPROVED_MESSAGE) -> bool:
        """Tell the user their pairing was approved."""
        if not self.config.token:
            return False
        try:
            resp = self._client.post(self._url("sendMessage"), json={"chat_id": chat_id, "text": text})
            return bool(resp.json().get("ok"))
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Could not notify user {chat_id}: {type(e).__name__}")
            return False

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "TelegramClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
