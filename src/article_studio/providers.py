"""Provider abstraction over the hosted Gemini API and OpenAI-compatible endpoints.

Every stage talks to a ``ProviderClient`` and never branches on the backend.
The contract is ``invoke(prompt, system_instruction, config, contract)``:

- ``OutputContract.text()``    free text
- ``OutputContract.json(M)``   JSON matching the pydantic model ``M``
- ``OutputContract.search()``  free text with web-search grounding

Gemini cannot combine a forced schema with search grounding in one call, so
callers that need both issue two calls (see ``workflow.search_topics``).
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Type, TypeVar

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from openai import APIConnectionError, APIStatusError, AsyncOpenAI, BadRequestError
from pydantic import BaseModel, ValidationError

from .config import ProviderConfig, ProviderKind, Settings, get_settings
from .errors import ParseError, provider_error
from .models import NewsSource

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

SEARCH_TEMPERATURE = 0.3
_FENCE_PATTERN = re.compile(r"```[\w-]*[ \t]*\n?(.*?)\n?[ \t]*```", re.DOTALL)


class OutputMode(str, Enum):
    TEXT = "text"
    JSON = "json"
    SEARCH = "search"


class ModelTier(str, Enum):
    FAST = "fast"
    WRITER = "writer"


@dataclass(frozen=True)
class OutputContract:
    mode: OutputMode = OutputMode.TEXT
    schema: Optional[Type[BaseModel]] = None

    @classmethod
    def text(cls) -> "OutputContract":
        return cls(OutputMode.TEXT)

    @classmethod
    def json(cls, schema: Type[BaseModel]) -> "OutputContract":
        return cls(OutputMode.JSON, schema)

    @classmethod
    def search(cls) -> "OutputContract":
        return cls(OutputMode.SEARCH)


@dataclass
class ProviderReply:
    text: str
    sources: List[NewsSource] = field(default_factory=list)


# --- JSON decoding ---------------------------------------------------------


def strip_code_fences(text: str) -> str:
    """Unwrap a reply that is entirely one fenced block (```json ... ```).

    Fences inside the payload (code samples in article markdown) are left
    alone, as is any reply with text outside the wrapping fence.
    """
    stripped = (text or "").strip()
    match = _FENCE_PATTERN.fullmatch(stripped)
    if match:
        return match.group(1).strip()
    return stripped


def decode_json(text: str) -> Any:
    """Decode a model reply as JSON after removing code-fence wrappers.

    An empty reply decodes to ``{}`` so the caller's schema check decides
    whether that is acceptable.
    """
    cleaned = strip_code_fences(text)
    try:
        return json.loads(cleaned or "{}")
    except json.JSONDecodeError as exc:
        raise ParseError(f"Model reply is not valid JSON: {exc.msg}", raw=text) from exc


def parse_model(text: str, schema: Type[M]) -> M:
    """Decode ``text`` and validate it against ``schema``; raise ParseError on mismatch."""
    data = decode_json(text)
    try:
        return schema.model_validate(data)
    except ValidationError as exc:
        raise ParseError(
            f"Model reply does not match {schema.__name__}: {exc.error_count()} error(s)",
            raw=text,
        ) from exc


# --- Clients ---------------------------------------------------------------


class ProviderClient(ABC):
    """Uniform capability surface: produce text, JSON, or grounded text."""

    @abstractmethod
    async def invoke(
        self,
        prompt: str,
        system_instruction: str,
        config: ProviderConfig,
        contract: OutputContract = OutputContract(),
        *,
        tier: ModelTier = ModelTier.FAST,
        temperature: float | None = None,
    ) -> ProviderReply:
        """Run one model call and return its raw text (plus grounding sources)."""

    async def invoke_json(
        self,
        prompt: str,
        system_instruction: str,
        config: ProviderConfig,
        schema: Type[M],
        *,
        tier: ModelTier = ModelTier.FAST,
        temperature: float | None = None,
    ) -> M:
        reply = await self.invoke(
            prompt,
            system_instruction,
            config,
            OutputContract.json(schema),
            tier=tier,
            temperature=temperature,
        )
        return parse_model(reply.text, schema)

    async def aclose(self) -> None:
        """Release SDK resources; a no-op for clients that hold none."""


class GoogleProvider(ProviderClient):
    """Hosted Gemini models through the google-genai SDK."""

    def __init__(self, settings: Settings | None = None, client: genai.Client | None = None):
        self.settings = settings or get_settings()
        self._client = client

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=self.settings.gemini_api_key)
        return self._client

    def _model_for(self, config: ProviderConfig, contract: OutputContract, tier: ModelTier) -> str:
        if contract.mode is OutputMode.SEARCH:
            return self.settings.search_model
        if tier is ModelTier.WRITER:
            return config.writer_model
        return self.settings.fast_model

    async def invoke(
        self,
        prompt: str,
        system_instruction: str,
        config: ProviderConfig,
        contract: OutputContract = OutputContract(),
        *,
        tier: ModelTier = ModelTier.FAST,
        temperature: float | None = None,
    ) -> ProviderReply:
        request_config: dict[str, Any] = {
            "temperature": config.temperature if temperature is None else temperature,
        }
        if system_instruction:
            request_config["system_instruction"] = system_instruction
        if contract.mode is OutputMode.SEARCH:
            request_config["tools"] = [types.Tool(google_search=types.GoogleSearch())]
        elif contract.mode is OutputMode.JSON:
            request_config["response_mime_type"] = "application/json"
            request_config["response_schema"] = contract.schema

        model = self._model_for(config, contract, tier)
        try:
            response = await self.client.aio.models.generate_content(
                model=model,
                contents=prompt,
                config=types.GenerateContentConfig(**request_config),
            )
        except genai_errors.APIError as exc:
            raise provider_error(exc.code, exc.message or str(exc)) from exc
        except httpx.TransportError as exc:
            raise provider_error(None, f"Gemini request failed: {exc}") from exc

        return ProviderReply(text=response.text or "", sources=_grounding_sources(response))


def _grounding_sources(response: Any) -> List[NewsSource]:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []
    metadata = getattr(candidates[0], "grounding_metadata", None)
    chunks = getattr(metadata, "grounding_chunks", None) or []
    sources: List[NewsSource] = []
    for chunk in chunks:
        web = getattr(chunk, "web", None)
        if web is None:
            continue
        sources.append(
            NewsSource(title=getattr(web, "title", None) or "Source", uri=getattr(web, "uri", None) or "#")
        )
    return sources


class CustomProvider(ProviderClient):
    """Any OpenAI-compatible chat-completions endpoint (DeepSeek, Moonshot, local servers)."""

    def __init__(self, client: AsyncOpenAI | None = None):
        self._client = client
        self._clients: dict[tuple[str, str], AsyncOpenAI] = {}

    def _client_for(self, config: ProviderConfig) -> AsyncOpenAI:
        if self._client is not None:
            return self._client
        key = (config.custom_base_url, config.custom_api_key)
        if key not in self._clients:
            # Retries belong to RetryPolicy, not the SDK.
            self._clients[key] = AsyncOpenAI(
                base_url=config.custom_base_url,
                api_key=config.custom_api_key,
                max_retries=0,
            )
        return self._clients[key]

    async def aclose(self) -> None:
        """Close the connection pools of clients this provider created."""
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            await client.close()

    async def invoke(
        self,
        prompt: str,
        system_instruction: str,
        config: ProviderConfig,
        contract: OutputContract = OutputContract(),
        *,
        tier: ModelTier = ModelTier.FAST,
        temperature: float | None = None,
    ) -> ProviderReply:
        if contract.mode is OutputMode.SEARCH:
            logger.warning(
                "Custom provider %s has no web-search grounding; answering from model knowledge.",
                config.custom_model,
            )
        system_text = system_instruction
        if contract.mode is OutputMode.JSON and contract.schema is not None:
            schema_text = json.dumps(contract.schema.model_json_schema(by_alias=True), ensure_ascii=False)
            system_text = (
                f"{system_instruction}\n\n"
                "Respond with one JSON object only, no markdown fences, matching this JSON Schema:\n"
                f"{schema_text}"
            ).strip()

        request_kwargs: dict[str, Any] = {
            "model": config.custom_model,
            "messages": [
                {"role": "system", "content": system_text},
                {"role": "user", "content": prompt},
            ],
            "temperature": config.temperature if temperature is None else temperature,
        }
        if contract.mode is OutputMode.JSON:
            request_kwargs["response_format"] = {"type": "json_object"}

        client = self._client_for(config)
        try:
            completion = await self._create(client, request_kwargs)
        except APIStatusError as exc:
            raise provider_error(exc.status_code, exc.message) from exc
        except APIConnectionError as exc:
            raise provider_error(None, f"Could not reach {config.completions_url}: {exc}") from exc

        choices = getattr(completion, "choices", None) or []
        text = ""
        if choices and choices[0].message is not None:
            text = choices[0].message.content or ""
        return ProviderReply(text=text)

    async def _create(self, client: AsyncOpenAI, request_kwargs: dict[str, Any]) -> Any:
        try:
            return await client.chat.completions.create(**request_kwargs)
        except BadRequestError as exc:
            if "response_format" not in request_kwargs or "response_format" not in str(exc).lower():
                raise
            # Backend without JSON mode; rely on the prompt instructions alone.
            logger.info("Endpoint rejected response_format; retrying without JSON mode.")
            fallback = {k: v for k, v in request_kwargs.items() if k != "response_format"}
            return await client.chat.completions.create(**fallback)


def build_provider(config: ProviderConfig, settings: Settings | None = None) -> ProviderClient:
    """Return the client for the configured backend; fails before any network call."""
    settings = settings or get_settings()
    config.require_ready(settings)
    if config.provider is ProviderKind.CUSTOM:
        return CustomProvider()
    return GoogleProvider(settings)
