"""Translation provider abstractions."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from .configuration import BitextConfig, normalise_provider_name
from .errors import ProviderConfigurationError


logger = logging.getLogger(__name__)

BASE_SYSTEM_PROMPT = (
    "You are a professional translator. Translate every line of the user's "
    "message into {language}. Return exactly one translated line for each input "
    "line, in the same order, with no numbering or commentary. An empty input "
    "line must stay an empty line at the same position. "
    "Keep placeholders and inline tags such as <x id=\"1\"/>, <g id=\"2\">…</g> "
    "or <ph id=\"3\">{{0}}</ph> exactly as written, including the code inside "
    "them, and translate only the surrounding text."
)


def build_system_prompt(target_language: str, instructions: Optional[str] = None) -> str:
    prompt = BASE_SYSTEM_PROMPT.format(language=target_language)
    if instructions and instructions.strip():
        prompt = f"{prompt}\n\n{instructions.strip()}"
    return prompt


@dataclass
class ProviderResult:
    """Normalised reply from a translation provider."""

    ok: bool
    text: str = ""
    error_message: Optional[str] = None
    status: Optional[int] = None


class TranslationProvider(ABC):
    """Abstract adapter for translation providers."""

    name = "provider"

    def __init__(self, *, debug: bool = False) -> None:
        self.debug = debug

    @abstractmethod
    async def complete(self, *, system_prompt: str, text: str) -> ProviderResult:
        """Send the flat payload and return the flat reply."""

    def _log_debug(self, label: str, payload: Any) -> None:
        """Emit request/response payloads when provider debugging is enabled."""

        if not self.debug:
            return
        try:
            if isinstance(payload, (dict, list)):
                message = json.dumps(payload, ensure_ascii=False, indent=2)
            else:
                message = str(payload)
        except (TypeError, ValueError):
            message = repr(payload)
        logger.debug("[provider-debug] %s:\n%s", label, message)


class EchoTranslationProvider(TranslationProvider):
    """A provider that returns the payload unchanged (useful for testing)."""

    name = "echo"

    async def complete(self, *, system_prompt: str, text: str) -> ProviderResult:
        self._log_debug("provider.request.payload", text)
        return ProviderResult(ok=True, text=text)


class OpenAIChatProvider(TranslationProvider):
    """Chat-style provider: system and user messages via Chat Completions."""

    name = "openai"
    DEFAULT_MODEL = "gpt-4o-mini"

    def __init__(
        self,
        settings: BitextConfig,
        *,
        azure: bool = False,
        model: Optional[str] = None,
        client: Any = None,
        debug: bool = False,
    ) -> None:
        super().__init__(debug=debug)
        if azure:
            self.name = "azure_openai"
        if client is not None:
            self._client = client
            self.model = model or self.DEFAULT_MODEL
        elif azure:
            self._client, default_model = self._build_azure_client(settings)
            self.model = model or default_model
        else:
            self._client = self._build_openai_client(settings)
            self.model = model or self.DEFAULT_MODEL

    def _build_openai_client(self, settings: BitextConfig) -> Any:
        if not settings.OPENAI_API_KEY:
            raise ProviderConfigurationError(
                "OpenAI configuration missing. Set OPENAI_API_KEY or choose a "
                "different provider."
            )
        from openai import AsyncOpenAI

        return AsyncOpenAI(api_key=settings.OPENAI_API_KEY)

    def _build_azure_client(self, settings: BitextConfig) -> tuple[Any, str]:
        missing = [
            name
            for name, value in {
                "AZURE_OPENAI_API_KEY": settings.AZURE_OPENAI_API_KEY,
                "AZURE_OPENAI_ENDPOINT": settings.AZURE_OPENAI_ENDPOINT,
                "AZURE_OPENAI_API_VERSION": settings.AZURE_OPENAI_API_VERSION,
                "AZURE_OPENAI_DEPLOYMENT_NAME": settings.AZURE_OPENAI_DEPLOYMENT_NAME,
            }.items()
            if not value
        ]
        if missing:
            raise ProviderConfigurationError(
                "Azure OpenAI configuration incomplete. Please set: "
                + ", ".join(missing)
                + "."
            )
        from openai import AsyncAzureOpenAI

        client = AsyncAzureOpenAI(
            api_key=settings.AZURE_OPENAI_API_KEY,
            api_version=settings.AZURE_OPENAI_API_VERSION,
            azure_endpoint=settings.AZURE_OPENAI_ENDPOINT,
        )
        return client, settings.AZURE_OPENAI_DEPLOYMENT_NAME  # type: ignore[return-value]

    async def complete(self, *, system_prompt: str, text: str) -> ProviderResult:
        import openai

        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": text},
        ]
        self._log_debug("provider.request.messages", messages)
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                temperature=0,
                messages=messages,
            )
        except openai.APIStatusError as exc:
            return ProviderResult(
                ok=False,
                error_message=_error_message(exc),
                status=exc.status_code,
            )
        except openai.OpenAIError as exc:
            return ProviderResult(
                ok=False,
                error_message=f"Translation service temporarily unavailable: {exc}",
            )

        content: Optional[str] = None
        for choice in getattr(response, "choices", None) or []:
            message = getattr(choice, "message", None)
            value = getattr(message, "content", None) if message is not None else None
            if value:
                content = str(value)
                break
        self._log_debug("provider.response.content", content)

        if content is None:
            return ProviderResult(
                ok=False,
                error_message="Translation provider response empty or unrecognised.",
            )
        return ProviderResult(ok=True, text=content)


class AnthropicMessagesProvider(TranslationProvider):
    """Message-style provider: a system field plus one user message."""

    name = "anthropic"
    DEFAULT_MODEL = "claude-3-5-sonnet-latest"
    MAX_TOKENS = 4096

    def __init__(
        self,
        settings: BitextConfig,
        *,
        model: Optional[str] = None,
        client: Any = None,
        debug: bool = False,
    ) -> None:
        super().__init__(debug=debug)
        self.model = model or self.DEFAULT_MODEL
        if client is not None:
            self._client = client
            return
        if not settings.ANTHROPIC_API_KEY:
            raise ProviderConfigurationError(
                "Anthropic configuration missing. Set ANTHROPIC_API_KEY or choose a "
                "different provider."
            )
        from anthropic import AsyncAnthropic

        self._client = AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)

    async def complete(self, *, system_prompt: str, text: str) -> ProviderResult:
        import anthropic

        self._log_debug("provider.request.system_prompt", system_prompt)
        self._log_debug("provider.request.payload", text)
        try:
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=self.MAX_TOKENS,
                system=system_prompt,
                messages=[{"role": "user", "content": text}],
            )
        except anthropic.APIStatusError as exc:
            return ProviderResult(
                ok=False,
                error_message=_error_message(exc),
                status=exc.status_code,
            )
        except anthropic.APIError as exc:
            return ProviderResult(
                ok=False,
                error_message=f"Translation service temporarily unavailable: {exc}",
            )

        parts = [
            getattr(block, "text", "")
            for block in getattr(response, "content", None) or []
            if getattr(block, "type", None) == "text"
        ]
        content = "".join(parts)
        self._log_debug("provider.response.content", content)
        if not content:
            return ProviderResult(
                ok=False,
                error_message="Translation provider response empty or unrecognised.",
            )
        return ProviderResult(ok=True, text=content)


def _error_message(exc: Exception) -> str:
    message = getattr(exc, "message", None) or str(exc)
    body = getattr(exc, "body", None)
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            message = str(error["message"])
    return message


def build_provider(
    settings: BitextConfig,
    *,
    name: Optional[str] = None,
    model: Optional[str] = None,
    debug: bool = False,
) -> TranslationProvider:
    """Factory to create providers by name."""

    normalized = normalise_provider_name(name or settings.LLM_PROVIDER)
    model = model or settings.BITEXT_MODEL
    if normalized == "openai":
        return OpenAIChatProvider(settings, model=model, debug=debug)
    if normalized == "azure_openai":
        return OpenAIChatProvider(settings, azure=True, model=model, debug=debug)
    if normalized == "anthropic":
        return AnthropicMessagesProvider(settings, model=model, debug=debug)
    if normalized == "echo":
        return EchoTranslationProvider(debug=debug)
    raise ProviderConfigurationError(f"Unknown translation provider '{name}'.")
