"""Model Caller: the adapter between LLM blocks and remote model providers.

A provider alias picked in the editor (`openai`, `groq`, `claude`, ...) maps to
a backend wire format, the concrete API model name and per-1K-token costs.
Two wire formats are supported: OpenAI-compatible chat completions (OpenAI,
Groq, LM Studio) and Anthropic messages.

Failures surface as `ModelCallError` subclasses:
- `ProviderConfigError`: unknown alias or missing API key
- `ProviderAPIError`: non-success HTTP response, carrying the upstream message
- `TransportError`: network failure or per-call deadline exceeded
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import math
from typing import Any, Dict, List, Optional, Protocol

import httpx

from . import config
from .errors import ModelCallError, ProviderAPIError, ProviderConfigError, TransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderSpec:
    alias: str
    backend: str  # "openai" | "groq" | "anthropic" | "lmstudio"
    api_model: str
    input_cost_per_1k: float = 0.0
    output_cost_per_1k: float = 0.0
    label: str = ""


PROVIDERS: Dict[str, ProviderSpec] = {
    "openai": ProviderSpec("openai", "openai", "gpt-4", 0.03, 0.06, "OpenAI GPT-4"),
    "groq": ProviderSpec("groq", "groq", "llama3-70b-8192", 0.0001, 0.0001, "Groq Llama 3 70B"),
    "claude": ProviderSpec("claude", "anthropic", "claude-3-haiku-20240307", 0.008, 0.024, "Claude 3 Haiku"),
    "mixtral": ProviderSpec("mixtral", "groq", "mistral-saba-24b", 0.0001, 0.0001, "Mistral Saba (Groq)"),
    "lmstudio": ProviderSpec("lmstudio", "lmstudio", "local-model", 0.0, 0.0, "LM Studio (local)"),
}

_ENDPOINTS = {
    "openai": "https://api.openai.com/v1/chat/completions",
    "groq": "https://api.groq.com/openai/v1/chat/completions",
    "anthropic": "https://api.anthropic.com/v1/messages",
}

ANTHROPIC_VERSION = "2023-06-01"

SENTIMENT_MODEL = "gpt-3.5-turbo"
SENTIMENT_SYSTEM_PROMPT = (
    "You are a sentiment analysis assistant. Analyze the sentiment of the given text and "
    'respond with exactly one word: "positive", "negative", or "neutral". '
    "Do not include any other text or explanation."
)
VALID_SENTIMENTS = ("positive", "negative", "neutral")

_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


@dataclass(frozen=True)
class ModelOptions:
    temperature: float = 0.7
    max_tokens: int = 1024
    top_p: float = 1.0


@dataclass(frozen=True)
class ModelResponse:
    text: str
    token_count: int


class ModelCaller(Protocol):
    async def call(self, prompt: str, provider: str, options: ModelOptions) -> ModelResponse: ...


def estimate_tokens(text: str) -> int:
    """Rough token estimate (1 token ~ 4 characters)."""
    return math.ceil(len(text or "") / 4)


def get_provider(alias: str) -> ProviderSpec:
    spec = PROVIDERS.get((alias or "").strip().lower())
    if spec is None:
        raise ProviderConfigError(f"Unknown model: {alias}")
    return spec


def estimate_cost(prompt: str, output: str, provider: str) -> float:
    """Estimated USD cost of one call, from the 4-chars-per-token estimate."""
    spec = get_provider(provider)
    cost = (estimate_tokens(prompt) / 1000) * spec.input_cost_per_1k + (
        estimate_tokens(output) / 1000
    ) * spec.output_cost_per_1k
    return round(cost, 4)


def list_providers() -> List[Dict[str, Any]]:
    """Provider aliases with whether their backend is configured."""
    out: List[Dict[str, Any]] = []
    for spec in PROVIDERS.values():
        configured = spec.backend == "lmstudio" or config.resolve_api_key(spec.backend) is not None
        out.append(
            {
                "name": spec.alias,
                "display_name": spec.label or spec.alias,
                "backend": spec.backend,
                "model": spec.api_model,
                "status": "available" if configured else "unconfigured",
            }
        )
    return out


def _upstream_message(response: httpx.Response, default: str) -> str:
    try:
        payload = response.json()
    except ValueError:
        text = response.text.strip()
        return text or f"HTTP {response.status_code}"
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str) and err:
            return err
    return default


class HttpModelCaller:
    """Model Caller backed by `httpx.AsyncClient`.

    `transport` is forwarded to the client so tests can plug in an
    `httpx.MockTransport`. Timeout, retry count and backoff default to the
    environment configuration (see `blockflow.config`).
    """

    def __init__(
        self,
        *,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        backoff: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = config.resolve_llm_timeout() if timeout is None else float(timeout)
        self.retries = config.resolve_llm_retries() if retries is None else max(0, int(retries))
        self.backoff = config.resolve_retry_backoff() if backoff is None else max(0.0, float(backoff))
        self._transport = transport

    async def call(self, prompt: str, provider: str, options: Optional[ModelOptions] = None) -> ModelResponse:
        spec = get_provider(provider)
        opts = options or ModelOptions()
        url, headers = self._endpoint(spec)
        body = self._request_body(spec, self._api_model(spec), [{"role": "user", "content": prompt}], opts)

        payload = await self._post(spec, url, headers, body)
        text = self._response_text(spec, payload)
        tokens = self._response_tokens(spec, payload)
        if not tokens:
            tokens = estimate_tokens(prompt) + estimate_tokens(text)
        return ModelResponse(text=text, token_count=tokens)

    async def complete(
        self,
        messages: List[Dict[str, str]],
        provider: str,
        *,
        model: Optional[str] = None,
        options: Optional[ModelOptions] = None,
    ) -> str:
        """Raw chat call with explicit messages (used by the sentiment classifier)."""
        spec = get_provider(provider)
        url, headers = self._endpoint(spec)
        body = self._request_body(spec, model or self._api_model(spec), messages, options or ModelOptions())
        payload = await self._post(spec, url, headers, body)
        return self._response_text(spec, payload)

    @staticmethod
    def _api_model(spec: ProviderSpec) -> str:
        if spec.backend == "lmstudio":
            return config.resolve_lmstudio_model()
        return spec.api_model

    def _endpoint(self, spec: ProviderSpec) -> tuple[str, Dict[str, str]]:
        headers = {"Content-Type": "application/json"}
        if spec.backend == "lmstudio":
            key = config.resolve_api_key("lmstudio")
            if key:
                headers["Authorization"] = f"Bearer {key}"
            return f"{config.resolve_lmstudio_base_url()}/chat/completions", headers

        key = config.resolve_api_key(spec.backend)
        if not key:
            names = " or ".join(config.API_KEY_ENV_VARS.get(spec.backend, ()))
            raise ProviderConfigError(f"{spec.alias} API key not configured (set {names})")
        if spec.backend == "anthropic":
            headers["x-api-key"] = key
            headers["anthropic-version"] = ANTHROPIC_VERSION
        else:
            headers["Authorization"] = f"Bearer {key}"
        return _ENDPOINTS[spec.backend], headers

    @staticmethod
    def _request_body(
        spec: ProviderSpec, model: str, messages: List[Dict[str, str]], opts: ModelOptions
    ) -> Dict[str, Any]:
        if spec.backend == "anthropic":
            system = "\n".join(m["content"] for m in messages if m.get("role") == "system")
            body: Dict[str, Any] = {
                "model": model,
                "max_tokens": opts.max_tokens,
                "temperature": opts.temperature,
                "top_p": opts.top_p,
                "messages": [m for m in messages if m.get("role") != "system"],
            }
            if system:
                body["system"] = system
            return body
        return {
            "model": model,
            "messages": messages,
            "temperature": opts.temperature,
            "max_tokens": opts.max_tokens,
            "top_p": opts.top_p,
        }

    @staticmethod
    def _response_text(spec: ProviderSpec, payload: Dict[str, Any]) -> str:
        try:
            if spec.backend == "anthropic":
                return str(payload["content"][0]["text"])
            return str(payload["choices"][0]["message"]["content"])
        except (KeyError, IndexError, TypeError):
            raise ProviderAPIError(
                f"{spec.alias} returned an unexpected response shape", provider=spec.alias
            ) from None

    @staticmethod
    def _response_tokens(spec: ProviderSpec, payload: Dict[str, Any]) -> int:
        usage = payload.get("usage") or {}
        if not isinstance(usage, dict):
            return 0
        if spec.backend == "anthropic":
            return int(usage.get("input_tokens") or 0) + int(usage.get("output_tokens") or 0)
        return int(usage.get("total_tokens") or 0)

    async def _post(
        self, spec: ProviderSpec, url: str, headers: Dict[str, str], body: Dict[str, Any]
    ) -> Dict[str, Any]:
        attempts = self.retries + 1
        attempt = 0
        last_error: ModelCallError
        while True:
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    response = await client.post(url, headers=headers, json=body)
            except httpx.TimeoutException as e:
                last_error = TransportError(f"{spec.alias} request timed out after {self.timeout:g}s: {e}")
            except httpx.HTTPError as e:
                last_error = TransportError(f"{spec.alias} request failed: {e}")
            else:
                if response.is_success:
                    try:
                        return response.json()
                    except ValueError:
                        raise ProviderAPIError(
                            f"{spec.alias} returned a non-JSON response",
                            status_code=response.status_code,
                            provider=spec.alias,
                        ) from None
                message = _upstream_message(response, f"{spec.alias} API error")
                last_error = ProviderAPIError(message, status_code=response.status_code, provider=spec.alias)
                if response.status_code not in _RETRYABLE_STATUS:
                    raise last_error

            attempt += 1
            if attempt >= attempts:
                raise last_error
            wait = self.backoff * (2 ** (attempt - 1))
            logger.warning(
                f"{spec.alias} call attempt {attempt}/{attempts} failed ({last_error}); retrying in {wait:g}s"
            )
            await asyncio.sleep(wait)


class SentimentClassifier:
    """Classifies text as positive, negative or neutral with a one-word model reply."""

    def __init__(self, caller: Optional[HttpModelCaller] = None, *, provider: str = "openai", model: str = SENTIMENT_MODEL):
        self.caller = caller or HttpModelCaller()
        self.provider = provider
        self.model = model

    async def classify(self, text: str) -> str:
        answer = await self.caller.complete(
            [
                {"role": "system", "content": SENTIMENT_SYSTEM_PROMPT},
                {"role": "user", "content": text},
            ],
            self.provider,
            model=self.model,
            options=ModelOptions(temperature=0.0, max_tokens=10, top_p=1.0),
        )
        sentiment = (answer or "").strip().lower().strip(".")
        if sentiment not in VALID_SENTIMENTS:
            logger.warning(f"Invalid sentiment response: {answer!r}")
            raise ProviderAPIError("Invalid sentiment analysis result", provider=self.provider)
        return sentiment
