"""
Telegram Notifier
=================
Sends chat messages through the Telegram Bot API using httpx.

Every send goes through the ``telegram`` rate limit, circuit breaker and
retry policy of the ResilienceRegistry (3 retries, 1s base delay).
``send`` never raises: a notification that cannot be delivered is logged
and reported as False.
"""
import logging
from typing import Optional

import httpx

from autoheal.core.config import TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID
from autoheal.resilience.registry import ResilienceRegistry

logger = logging.getLogger(__name__)

TELEGRAM_SERVICE = "telegram"
_API_BASE = "https://api.telegram.org"
_MAX_MESSAGE_CHARS = 4096


class TelegramNotifier:
    def __init__(
        self,
        resilience: ResilienceRegistry,
        bot_token: Optional[str] = TELEGRAM_BOT_TOKEN,
        chat_id: Optional[str] = TELEGRAM_CHAT_ID,
        http: Optional[httpx.AsyncClient] = None,
        max_retries: int = 3,
        initial_delay: float = 1.0,
    ) -> None:
        self.resilience = resilience
        self.bot_token = bot_token
        self.chat_id = chat_id
        self._http = http
        self.max_retries = max_retries
        self.initial_delay = initial_delay

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    async def _get_http(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(10.0))
        return self._http

    async def close(self) -> None:
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()

    async def _post(self, text: str) -> None:
        http = await self._get_http()
        resp = await http.post(
            f"{_API_BASE}/bot{self.bot_token}/sendMessage",
            json={"chat_id": self.chat_id, "text": text[:_MAX_MESSAGE_CHARS], "parse_mode": "HTML"},
        )
        resp.raise_for_status()

    async def send(self, text: str) -> bool:
        if not self.enabled:
            logger.debug("Telegram not configured, skipping notification: %s", text[:80])
            return False

        try:
            await self.resilience.guarded_call(
                TELEGRAM_SERVICE,
                lambda: self._post(text),
                max_retries=self.max_retries,
                initial_delay=self.initial_delay,
                operation_name="telegram notification",
            )
        except Exception as e:
            logger.warning("Telegram notification failed: %s", e)
            return False
        return True
