"""
LLM Client
==========
Async client for an OpenAI-compatible chat completions endpoint, used as the
default backend of the file fixer.

Resilience:
    When a ResilienceRegistry is supplied, every request goes through the
    ``llm`` rate limit, circuit breaker and retry policy. Without one the
    request is made once.

The client never raises to its caller; failures come back as an LLMReply
with ``success=False`` and ``error`` set.
"""
import logging
import re
from dataclasses import dataclass
from typing import Optional

import httpx

from autoheal.core.config import LLM_API_KEY, LLM_BASE_URL, LLM_MODEL, LLM_TIMEOUT

logger = logging.getLogger(__name__)

LLM_SERVICE = "llm"


@dataclass
class LLMReply:
    text: str = ""
    success: bool = True
    error: str = ""


_FENCE = re.compile(r"```[\w+-]*[ \t]*\n(.*?)```", re.DOTALL)


def extract_code(raw: str) -> str:
    """
    Return the code inside the largest fenced block of ``raw``.

    A reply without fences is returned stripped; an empty reply gives "".
    """
    if not raw or not raw.strip():
        return ""
    blocks = _FENCE.findall(raw)
    if blocks:
        return max(blocks, key=len)
    cleaned = raw.strip()
    if cleaned.startswith("```"):
        # Unterminated fence
        first_newline = cleaned.find("\n")
        return cleaned[first_newline + 1:] if first_newline != -1 else ""
    return cleaned


class LLMClient:
    def __init__(
        self,
        api_key: Optional[str] = LLM_API_KEY,
        base_url: str = LLM_BASE_URL,
        model: str = LLM_MODEL,
        timeout_seconds: float = LLM_TIMEOUT,
        resilience=None,
        http: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = api_key or ""
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.resilience = resilience
        self._http = http

    async def _get_http(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds))
        return self._http

    async def close(self) -> None:
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()

    async def _post(self, system_prompt: str, user_prompt: str) -> str:
        http = await self._get_http()
        resp = await http.post(
            f"{self.base_url}/chat/completions",
            json={
                "model": self.model,
                "messages": [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                "temperature": 0.1,
            },
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        resp.raise_for_status()
        data = resp.json()

        try:
            choices = data.get("choices", [])
            if choices:
                return choices[0].get("message", {}).get("content", "") or ""
        except (IndexError, KeyError, TypeError, AttributeError):
            pass
        return ""

    async def complete(self, system_prompt: str, user_prompt: str) -> LLMReply:
        if not self.api_key:
            return LLMReply(success=False, error="LLM_API_KEY is not configured")

        async def request() -> str:
            return await self._post(system_prompt, user_prompt)

        try:
            if self.resilience is not None:
                text = await self.resilience.guarded_call(LLM_SERVICE, request, max_retries=2)
            else:
                text = await request()
        except httpx.TimeoutException:
            logger.warning("LLM request timed out after %ss", self.timeout_seconds)
            return LLMReply(success=False, error="timeout")
        except httpx.HTTPStatusError as e:
            logger.warning("LLM HTTP %d: %s", e.response.status_code, e.response.text[:200])
            return LLMReply(success=False, error=f"HTTP {e.response.status_code}")
        except Exception as e:
            logger.error("LLM request failed: %s: %s", type(e).__name__, e)
            return LLMReply(success=False, error=str(e))

        return LLMReply(text=text)
