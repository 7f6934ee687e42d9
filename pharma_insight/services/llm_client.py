"""Chat-completion client for OpenAI-compatible endpoints (DeepSeek by default).

Every call returns ``None`` on failure instead of raising: callers fall
back to canned responses, so a missing API key or an unreachable endpoint
never surfaces as a hard error.
"""

from typing import Any

import httpx
from loguru import logger

from pharma_insight.config import (
    LLM_API_KEY,
    LLM_BASE_URL,
    LLM_HEALTH_TIMEOUT,
    LLM_MODEL,
    LLM_TEMPERATURE,
    LLM_TIMEOUT,
)

Message = dict[str, Any]


class ChatCompletionClient:
    """Client for ``POST {base_url}/chat/completions``."""

    def __init__(
        self,
        base_url: str = LLM_BASE_URL,
        model: str = LLM_MODEL,
        timeout: float = LLM_TIMEOUT,
        api_key: str = LLM_API_KEY,
        temperature: float = LLM_TEMPERATURE,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self._available: bool | None = None
        self._headers: dict[str, str] = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"

    @property
    def is_configured(self) -> bool:
        """True when an API key is set. Without one, callers use mock replies."""
        return "Authorization" in self._headers

    def is_available(self) -> bool:
        """Check that the endpoint answers and knows the configured model.

        Caches result after first call.
        """
        if self._available is not None:
            return self._available
        if not self.is_configured:
            self._available = False
            logger.info("[llm] No API key configured, using canned responses")
            return False

        try:
            resp = httpx.get(
                f"{self.base_url}/models",
                headers=self._headers,
                timeout=LLM_HEALTH_TIMEOUT,
            )
            resp.raise_for_status()
            models = [m.get("id", "") for m in resp.json().get("data", [])]
            self._available = self.model in models
            if self._available:
                logger.info("[llm] Available with model {}", self.model)
            else:
                logger.info(
                    "[llm] Reachable but model {} not listed (available: {})",
                    self.model,
                    ", ".join(models),
                )
        except Exception:
            self._available = False
            logger.info("[llm] Not available (connection failed)")

        return self._available

    def chat(
        self,
        messages: list[Message],
        max_tokens: int = 2000,
        tools: list[dict[str, Any]] | None = None,
    ) -> Message | None:
        """Send a conversation and return the assistant message.

        The returned dict has ``content`` and, when the model asked for a
        function call, ``tool_calls``. Returns None on any failure.
        """
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": max_tokens,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        return self._generate(payload)

    def complete(self, system: str, prompt: str, max_tokens: int = 2000) -> str | None:
        """Single-turn helper: system prompt plus one user message."""
        message = self.chat(
            [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            max_tokens=max_tokens,
        )
        if message is None:
            return None
        return message.get("content") or None

    def _generate(self, payload: dict[str, Any]) -> Message | None:
        """POST a chat-completion request. Returns the first choice's message or None."""
        if not self.is_configured:
            return None
        try:
            resp = httpx.post(
                f"{self.base_url}/chat/completions",
                headers=self._headers,
                json=payload,
                timeout=self.timeout,
            )
            resp.raise_for_status()
            choices = resp.json().get("choices", [])
            if not choices:
                logger.debug("[llm] Response had no choices")
                return None
            return choices[0].get("message")
        except Exception:
            logger.opt(exception=True).debug("[llm] Chat completion request failed")
            return None
