"""
Model transport — one chat-completion call against one model.

The orchestrator only knows the ``ModelTransport`` protocol, so tests
inject fakes and deployments can point at any OpenAI-compatible endpoint.
Every failure surfaces as ``ModelCallError`` carrying whether a retry
against the same model is worthwhile.

HTTP status → retry policy:

    408, 429, 5xx      retryable (transient)
    other 4xx          not retryable (auth, bad request, unknown model)
    network errors     retryable
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Protocol, Sequence, Tuple

import httpx

from crisiswatch.app.core.config import settings
from crisiswatch.app.core.errors import ModelCallError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 429})

# Per-model generation parameters; unknown models use the configured defaults.
KNOWN_MODEL_PARAMS: Dict[str, Tuple[int, float]] = {
    "deepseek-ai/DeepSeek-R1": (2000, 0.3),
    "Qwen/Qwen2.5-7B-Instruct": (1500, 0.4),
    "meta-llama/Llama-3.3-70B-Instruct": (1500, 0.4),
}


@dataclass(frozen=True)
class ModelSpec:
    """One entry of the priority-ordered model chain."""
    model_id: str
    max_tokens: int = 2048
    temperature: float = 0.3


def model_chain_from_settings() -> Tuple[ModelSpec, ...]:
    """Priority-ordered, immutable model chain from ``AI_MODELS``."""
    chain = []
    for model_id in settings.AI_MODELS:
        max_tokens, temperature = KNOWN_MODEL_PARAMS.get(
            model_id, (settings.AI_MAX_TOKENS, settings.AI_TEMPERATURE)
        )
        chain.append(ModelSpec(model_id, max_tokens=max_tokens, temperature=temperature))
    return tuple(chain)


def is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUS_CODES or status_code >= 500


class ModelTransport(Protocol):
    async def complete(
        self,
        spec: ModelSpec,
        messages: Sequence[Mapping[str, str]],
    ) -> str: ...


class ChatCompletionTransport:
    """Posts to ``<base_url>/chat/completions`` and returns the message text."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        *,
        timeout: float = 60.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._http_client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls) -> "ChatCompletionTransport":
        return cls(settings.AI_BASE_URL, settings.AI_API_KEY, timeout=settings.AI_CALL_TIMEOUT)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._http_client = httpx.AsyncClient(timeout=self.timeout, headers=headers)
        return self._http_client

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def complete(
        self,
        spec: ModelSpec,
        messages: Sequence[Mapping[str, str]],
    ) -> str:
        payload = {
            "model": spec.model_id,
            "messages": [dict(m) for m in messages],
            "max_tokens": spec.max_tokens,
            "temperature": spec.temperature,
        }
        client = await self._get_client()
        try:
            response = await client.post(f"{self.base_url}/chat/completions", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            raise ModelCallError(
                spec.model_id, f"HTTP {code}",
                retryable=is_retryable_status(code), status_code=code,
            ) from e
        except httpx.TimeoutException as e:
            raise ModelCallError(spec.model_id, "request timed out") from e
        except (httpx.HTTPError, ValueError) as e:
            raise ModelCallError(spec.model_id, str(e) or type(e).__name__) from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ModelCallError(spec.model_id, "response has no message content") from e
        if not content or not str(content).strip():
            raise ModelCallError(spec.model_id, "empty completion")

        usage = data.get("usage") or {}
        logger.debug(
            "Completion from %s (%s tokens)", spec.model_id, usage.get("total_tokens", "?"),
            extra={"model": spec.model_id},
        )
        return str(content)
