import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..config import Settings
from ..errors import GuestdeskError

logger = logging.getLogger(__name__)


class GenerationError(GuestdeskError):
    code = "GENERATION_ERROR"
    status_code = 502


class GenerationUnavailable(GenerationError):
    """Connection refused or timed out; the caller may retry."""

    code = "GENERATION_UNAVAILABLE"
    status_code = 503


class GenerationRejected(GenerationError):
    """Provider returned an API-level error (auth, quota, bad request...)."""

    code = "GENERATION_REJECTED"

    def __init__(self, message: str, *, upstream_status: Optional[int] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.upstream_status = upstream_status
        if upstream_status is not None:
            self.context.setdefault("upstream_status", upstream_status)


class GenerationEmptyOutput(GenerationError):
    """Provider reported success but produced no text."""

    code = "GENERATION_EMPTY_OUTPUT"

    def __init__(self, message: str, *, finish_reason: Optional[str] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.finish_reason = finish_reason
        self.context.setdefault("finish_reason", finish_reason)


@dataclass
class Completion:
    text: str
    tokens_used: int
    finish_reason: str
    model: str


class GenerationAdapter(ABC):
    provider: str = "base"
    # name of the setting holding the key, for providers that need one
    key_setting: Optional[str] = None

    def __init__(
        self,
        model: str,
        *,
        api_key: str = "",
        temperature: float = 0.7,
        max_tokens: int = 2000,
        timeout: float = 30.0,
    ):
        self.model = model
        self.api_key = api_key
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

    @abstractmethod
    async def _do_complete(self, system_prompt: str, history: List[Dict[str, str]], message: str) -> Completion:
        """Provider call; may raise httpx errors, mapped by complete()."""

    async def health_check(self) -> bool:
        return True

    async def complete(self, system_prompt: str, history: Sequence[Any], message: str) -> Completion:
        if self.key_setting and not self.api_key:
            raise GenerationRejected(
                f"{self.key_setting} is not set. Please configure {self.key_setting} in environment variables.",
                context={"provider": self.provider},
            )
        turns = _as_turns(history)
        started = time.perf_counter()
        logger.info(
            "Calling %s (model=%s, history=%d, system_prompt=%d chars)",
            self.provider, self.model, len(turns), len(system_prompt),
        )
        try:
            result = await self._do_complete(system_prompt, turns, message)
        except GenerationError:
            raise
        except httpx.TimeoutException as e:
            raise GenerationUnavailable(
                f"Request to {self.provider} timed out", context={"provider": self.provider}
            ) from e
        except httpx.TransportError as e:
            raise GenerationUnavailable(
                f"Cannot connect to {self.provider}: {e}", context={"provider": self.provider}
            ) from e
        except httpx.HTTPStatusError as e:
            raise GenerationRejected(
                f"{self.provider} API error {e.response.status_code}: {_error_detail(e.response)}",
                upstream_status=e.response.status_code,
                context={"provider": self.provider},
            ) from e
        except (ValueError, AttributeError) as e:
            # body was not JSON, or JSON that is not an object
            logger.warning("%s returned a malformed response: %s", self.provider, e)
            raise GenerationRejected(
                f"{self.provider} returned a malformed response", context={"provider": self.provider}
            ) from e

        if not result.text.strip():
            logger.warning(
                "%s returned empty content (finish_reason=%s, max_tokens=%d)",
                self.provider, result.finish_reason, self.max_tokens,
            )
            raise GenerationEmptyOutput(
                f"{self.provider} returned no text (finish_reason={result.finish_reason})",
                finish_reason=result.finish_reason,
                context={"provider": self.provider, "max_tokens": self.max_tokens},
            )

        logger.info(
            "%s call finished in %.0fms: %d tokens, finish_reason=%s",
            self.provider, (time.perf_counter() - started) * 1000, result.tokens_used, result.finish_reason,
        )
        return result


def _as_turns(history: Sequence[Any]) -> List[Dict[str, str]]:
    """Accept stored Message rows or plain dicts; only user/assistant turns are replayed."""
    turns = []
    for item in history:
        if isinstance(item, dict):
            role, content = item.get("role"), item.get("content")
        else:
            role, content = item.role, item.content
        if role in ("user", "assistant") and content:
            turns.append({"role": role, "content": content})
    return turns


def _leading_user(turns: List[Dict[str, str]]) -> List[Dict[str, str]]:
    # providers that insist on a user turn first (the stored greeting is an assistant turn)
    i = 0
    while i < len(turns) and turns[i]["role"] != "user":
        i += 1
    return turns[i:]


def _error_detail(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return {"text": resp.text}


class OpenAICompatibleAdapter(GenerationAdapter):
    """/chat/completions over httpx: LM Studio, Perplexity and custom gateways."""

    def __init__(
        self,
        base_url: str,
        model: str,
        *,
        provider: str = "openai-compatible",
        key_setting: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs: Any,
    ):
        super().__init__(model, **kwargs)
        self.provider = provider
        self.key_setting = key_setting
        self.base_url = base_url.rstrip("/")
        self.headers = {"Content-Type": "application/json"}
        if self.api_key:
            self.headers["Authorization"] = f"Bearer {self.api_key}"
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
        )

    async def _do_complete(self, system_prompt, history, message) -> Completion:
        payload = {
            "model": self.model,
            "messages": [{"role": "system", "content": system_prompt}, *history, {"role": "user", "content": message}],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        async with self._client() as client:
            resp = await client.post("/chat/completions", json=payload)
            resp.raise_for_status()
            data = resp.json()

        choice = (data.get("choices") or [{}])[0]
        content = (choice.get("message") or {}).get("content") or ""
        usage = data.get("usage") or {}
        return Completion(
            text=content,
            tokens_used=int(usage.get("total_tokens") or 0),
            finish_reason=choice.get("finish_reason") or "stop",
            model=data.get("model") or self.model,
        )

    async def health_check(self) -> bool:
        try:
            async with self._client() as client:
                resp = await client.get("/models", timeout=5.0)
            return resp.status_code == 200
        except httpx.HTTPError:
            return False


class OpenAIAdapter(GenerationAdapter):
    """Official OpenAI SDK."""

    provider = "openai"
    key_setting = "OPENAI_API_KEY"

    def __init__(self, api_key: str, model: str, *, base_url: Optional[str] = None, **kwargs: Any):
        super().__init__(model, api_key=api_key, **kwargs)
        self.base_url = base_url
        self._sdk_client = None

    def _client(self):
        if self._sdk_client is None:
            from openai import AsyncOpenAI  # lazy import

            self._sdk_client = AsyncOpenAI(
                api_key=self.api_key, base_url=self.base_url, timeout=self.timeout, max_retries=0
            )
        return self._sdk_client

    async def _do_complete(self, system_prompt, history, message) -> Completion:
        import openai

        try:
            chat = await self._client().chat.completions.create(
                model=self.model,
                messages=[{"role": "system", "content": system_prompt}, *history, {"role": "user", "content": message}],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except openai.APIConnectionError as e:  # includes APITimeoutError
            raise GenerationUnavailable(f"Cannot connect to openai: {e}", context={"provider": "openai"}) from e
        except openai.APIStatusError as e:
            raise GenerationRejected(
                f"openai API error {e.status_code}: {e.message}",
                upstream_status=e.status_code,
                context={"provider": "openai"},
            ) from e

        choice = chat.choices[0] if chat.choices else None
        return Completion(
            text=(choice.message.content if choice else "") or "",
            tokens_used=chat.usage.total_tokens if chat.usage else 0,
            finish_reason=(choice.finish_reason if choice else None) or "stop",
            model=chat.model or self.model,
        )

    async def health_check(self) -> bool:
        import openai

        if not self.api_key:
            return False
        try:
            await self._client().models.list()
            return True
        except openai.OpenAIError:
            return False


class AnthropicAdapter(GenerationAdapter):
    provider = "anthropic"
    key_setting = "ANTHROPIC_API_KEY"
    api_version = "2023-06-01"

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        base_url: str = "https://api.anthropic.com/v1",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs: Any,
    ):
        super().__init__(model, api_key=api_key, **kwargs)
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    async def _do_complete(self, system_prompt, history, message) -> Completion:
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
        }
        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "system": system_prompt,
            "messages": [*_leading_user(history), {"role": "user", "content": message}],
        }
        async with httpx.AsyncClient(
            base_url=self.base_url, headers=headers, timeout=httpx.Timeout(self.timeout), transport=self._transport
        ) as client:
            resp = await client.post("/messages", json=payload)
            resp.raise_for_status()
            data = resp.json()

        text = "".join(block.get("text", "") for block in data.get("content") or [] if block.get("type") == "text")
        usage = data.get("usage") or {}
        return Completion(
            text=text,
            tokens_used=int(usage.get("input_tokens") or 0) + int(usage.get("output_tokens") or 0),
            finish_reason=data.get("stop_reason") or "stop",
            model=data.get("model") or self.model,
        )


class GeminiAdapter(GenerationAdapter):
    provider = "gemini"
    key_setting = "GEMINI_API_KEY"

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs: Any,
    ):
        super().__init__(model, api_key=api_key, **kwargs)
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    async def _do_complete(self, system_prompt, history, message) -> Completion:
        turns = [*_leading_user(history), {"role": "user", "content": message}]
        contents = [
            {"role": "model" if t["role"] == "assistant" else "user", "parts": [{"text": t["content"]}]}
            for t in turns
        ]
        # no separate system slot here: it rides on the first user turn
        contents[0]["parts"][0]["text"] = f"{system_prompt}\n\n{contents[0]['parts'][0]['text']}"
        payload = {
            "contents": contents,
            "generationConfig": {"temperature": self.temperature, "maxOutputTokens": self.max_tokens},
        }
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=httpx.Timeout(self.timeout), transport=self._transport
        ) as client:
            resp = await client.post(f"/models/{self.model}:generateContent", params={"key": self.api_key}, json=payload)
            resp.raise_for_status()
            data = resp.json()

        candidate = (data.get("candidates") or [{}])[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        usage = data.get("usageMetadata") or {}
        finish_reason = (candidate.get("finishReason") or "stop").lower()
        if not parts and usage.get("thoughtsTokenCount"):
            logger.warning(
                "Gemini spent %s thinking tokens of %d max_tokens without output",
                usage.get("thoughtsTokenCount"), self.max_tokens,
            )
        return Completion(
            text="".join(p.get("text", "") for p in parts),
            tokens_used=int(usage.get("totalTokenCount") or 0),
            finish_reason=finish_reason,
            model=self.model,
        )


PROVIDERS = ("lm-studio", "openai", "anthropic", "gemini", "perplexity", "custom")


def build_adapter(settings: Settings) -> GenerationAdapter:
    provider = (settings.LLM_PROVIDER or "lm-studio").lower()
    common = dict(
        temperature=settings.LLM_TEMPERATURE,
        max_tokens=settings.LLM_MAX_TOKENS,
        timeout=settings.LLM_TIMEOUT,
    )
    if provider == "openai":
        return OpenAIAdapter(settings.OPENAI_API_KEY, settings.OPENAI_MODEL, base_url=settings.OPENAI_BASE_URL, **common)
    if provider == "anthropic":
        return AnthropicAdapter(
            settings.ANTHROPIC_API_KEY, settings.ANTHROPIC_MODEL, base_url=settings.ANTHROPIC_BASE_URL, **common
        )
    if provider == "gemini":
        return GeminiAdapter(settings.GEMINI_API_KEY, settings.GEMINI_MODEL, base_url=settings.GEMINI_BASE_URL, **common)
    if provider == "perplexity":
        return OpenAICompatibleAdapter(
            settings.PERPLEXITY_BASE_URL,
            settings.PERPLEXITY_MODEL,
            api_key=settings.PERPLEXITY_API_KEY,
            provider="perplexity",
            key_setting="PERPLEXITY_API_KEY",
            **common,
        )
    if provider == "custom":
        return OpenAICompatibleAdapter(
            settings.CUSTOM_BASE_URL, settings.CUSTOM_MODEL, api_key=settings.CUSTOM_API_KEY, provider="custom", **common
        )
    if provider == "lm-studio":
        return OpenAICompatibleAdapter(settings.LM_STUDIO_URL, settings.LLM_MODEL_NAME, provider="lm-studio", **common)
    raise ValueError(f"Unknown LLM_PROVIDER {settings.LLM_PROVIDER!r}; expected one of: {', '.join(PROVIDERS)}")
