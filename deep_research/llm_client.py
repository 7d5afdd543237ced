"""Generation provider selection and OpenAI-compatible client."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from loguru import logger
from openai import AsyncOpenAI, OpenAIError

from deep_research.config import Settings
from deep_research.exceptions import CapabilityError, ProviderConfigurationError
from deep_research.services.logger import log_llm_call
from deep_research.tools.http import sanitize_ssl_keylogfile


@dataclass(frozen=True, slots=True)
class ProviderConfig:
    """Immutable description of one generation provider, fixed per session."""

    model_id: str
    name: str
    description: str
    provider: str
    model: str
    base_url: str
    api_key: str = ""
    temperature: float = 0.2

    @property
    def label(self) -> str:
        return "Lovable" if self.provider == "lovable" else "Grok"

    @property
    def available(self) -> bool:
        return bool(self.api_key.strip())


def supported_models(source: Settings) -> list[ProviderConfig]:
    return [
        ProviderConfig(
            model_id="grok-4-latest",
            name="Grok 4",
            description="Default research model. Fast, current and strong at multi-source reasoning.",
            provider="grok",
            model="grok-4-latest",
            base_url=source.grok_base_url,
            api_key=source.grok_api_key,
            temperature=source.generation_temperature,
        ),
        ProviderConfig(
            model_id="gpt-4.1",
            name="GPT via Lovable gateway",
            description="Alternate model routed through the Lovable AI gateway.",
            provider="lovable",
            model="openai/gpt-5",
            base_url=source.lovable_base_url,
            api_key=source.lovable_api_key,
            temperature=source.generation_temperature,
        ),
    ]


def provider_chain(source: Settings, requested_model: Optional[str] = None) -> list[ProviderConfig]:
    """Ordered candidates: requested model first, then default, then the rest."""
    models = supported_models(source)
    by_id = {m.model_id: m for m in models}
    head = requested_model if requested_model in by_id else source.default_model
    if head not in by_id:
        head = models[0].model_id
    return [by_id[head]] + [m for m in models if m.model_id != head]


def select_provider(chain: list[ProviderConfig]) -> ProviderConfig:
    """Pick the first provider with a credential; called once per session."""
    if not chain:
        raise ProviderConfigurationError("No generation provider configured")
    for candidate in chain:
        if candidate.available:
            if candidate is not chain[0]:
                logger.warning(
                    f"{chain[0].label} AI service not configured, falling back to {candidate.model_id}"
                )
            return candidate
    raise ProviderConfigurationError(f"{chain[0].label} AI service not configured")


def _temperature_for_model(provider: ProviderConfig) -> float:
    # GPT-5-compatible gateways only accept the default temperature.
    if "gpt-5" in (provider.model or "").lower():
        return 1
    return provider.temperature


class GenerationStream:
    """Async context manager over a streaming chat completion."""

    def __init__(self, stream_coro: Any):
        self._stream_coro = stream_coro
        self._stream: Any | None = None
        self.input_tokens = 0
        self.output_tokens = 0

    async def __aenter__(self) -> "GenerationStream":
        self._stream = await self._stream_coro
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._stream is not None and hasattr(self._stream, "close"):
            await self._stream.close()

    async def _iter_text(self) -> AsyncIterator[str]:
        if self._stream is None:
            return
        async for chunk in self._stream:
            usage = getattr(chunk, "usage", None)
            if usage:
                self.input_tokens = getattr(usage, "prompt_tokens", 0) or 0
                self.output_tokens = getattr(usage, "completion_tokens", 0) or 0

            choices = getattr(chunk, "choices", None) or []
            if not choices:
                continue
            delta = getattr(choices[0], "delta", None)
            if not delta:
                continue
            text = getattr(delta, "content", None)
            if text:
                yield text

    @property
    def text_stream(self) -> AsyncIterator[str]:
        return self._iter_text()


class GenerationClient:
    """OpenAI-compatible chat client bound to one selected provider."""

    def __init__(
        self,
        provider: ProviderConfig,
        *,
        client: Any | None = None,
        max_tokens: int = 4096,
    ):
        self.provider = provider
        self.model_name = provider.model_id
        self.max_tokens = max_tokens
        if client is None:
            sanitize_ssl_keylogfile()
            client = AsyncOpenAI(api_key=provider.api_key, base_url=provider.base_url)
        self._client = client

    def _messages(self, system: str, user: str) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]

    async def complete(
        self,
        system: str,
        user: str,
        *,
        json_mode: bool = False,
        caller: str = "generation",
    ) -> str:
        kwargs: dict[str, Any] = {
            "model": self.provider.model,
            "messages": self._messages(system, user),
            "max_tokens": self.max_tokens,
            "temperature": _temperature_for_model(self.provider),
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        started = time.monotonic()
        try:
            response = await self._client.chat.completions.create(**kwargs)
        except OpenAIError as exc:
            log_llm_call(
                model=self.provider.model,
                caller=caller,
                duration_ms=int((time.monotonic() - started) * 1000),
                status="error",
                error=str(exc),
            )
            raise CapabilityError("generation", str(exc)) from exc

        usage = getattr(response, "usage", None)
        log_llm_call(
            model=self.provider.model,
            caller=caller,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        choices = getattr(response, "choices", None) or []
        if not choices:
            return ""
        return getattr(choices[0].message, "content", None) or ""

    async def stream(self, system: str, user: str, *, caller: str = "synthesizer") -> AsyncIterator[str]:
        """Yield text deltas in provider emission order."""
        started = time.monotonic()
        stream = GenerationStream(
            self._client.chat.completions.create(
                model=self.provider.model,
                messages=self._messages(system, user),
                max_tokens=self.max_tokens,
                temperature=_temperature_for_model(self.provider),
                stream=True,
                stream_options={"include_usage": True},
            )
        )
        try:
            async with stream:
                async for text in stream.text_stream:
                    yield text
        except OpenAIError as exc:
            log_llm_call(
                model=self.provider.model,
                caller=caller,
                duration_ms=int((time.monotonic() - started) * 1000),
                status="error",
                error=str(exc),
            )
            raise CapabilityError("generation", str(exc)) from exc

        log_llm_call(
            model=self.provider.model,
            caller=caller,
            input_tokens=stream.input_tokens,
            output_tokens=stream.output_tokens,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
