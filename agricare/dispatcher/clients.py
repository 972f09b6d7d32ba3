"""
Generation endpoint clients.

Each client is bound to exactly one API key and exposes a single operation:
generate(request) -> GenerationResult, raising the provider SDK's exception
on failure. The dispatcher owns credential selection and retry; clients
never retry on their own.

Supported providers:
- gemini: google-genai async client (default)
- openai: AsyncOpenAI chat completions
- groq: AsyncGroq chat completions
"""

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from google import genai
from google.genai import types
from groq import AsyncGroq
from openai import AsyncOpenAI
from pydantic import TypeAdapter

logger = logging.getLogger(__name__)


class AIProvider(str, Enum):
    """Supported generation providers."""

    GEMINI = "gemini"
    OPENAI = "openai"
    GROQ = "groq"


@dataclass
class TokenUsage:
    """Token usage reported by the provider for one generation call."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        """Total tokens consumed (input + output)."""
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class GenerationRequest:
    """
    Request envelope for a single generation call.

    The dispatcher treats it as opaque and passes the same instance to
    every attempt.

    Attributes:
        model: Provider model name
        contents: Prompt text
        system_instruction: Optional system prompt
        response_schema: Pydantic model (or list[Model]) for structured output
        temperature: Sampling temperature, provider default when None
        use_search: Ground the answer with web search (Gemini only)
    """

    model: str
    contents: str
    system_instruction: str | None = None
    response_schema: Any = None
    temperature: float | None = None
    use_search: bool = False


@dataclass
class GenerationResult:
    """
    Raw result of a successful generation call.

    Attributes:
        text: Response text (JSON when a schema was requested)
        model: Model name that served the request
        provider: Provider name
        latency_ms: Wall time of the call in milliseconds
        tokens: Token usage for the call
        sources: Grounding links as {"title", "uri"} dicts
    """

    text: str
    model: str
    provider: str
    latency_ms: float
    tokens: TokenUsage = field(default_factory=TokenUsage)
    sources: list[dict] = field(default_factory=list)


class GenerationClient(Protocol):
    """Credential-bound handle to a generation endpoint."""

    async def generate(self, request: GenerationRequest) -> GenerationResult: ...


ClientFactory = Callable[[str], GenerationClient]


def _schema_hint(schema: Any) -> str:
    """Render a JSON schema hint for providers without native schema support."""
    if schema is None:
        return ""
    if isinstance(schema, dict):
        rendered = json.dumps(schema)
    else:
        rendered = json.dumps(TypeAdapter(schema).json_schema())
    return f"\n\nRespond only with JSON matching this schema:\n{rendered}"


class GeminiClient:
    """
    Google Gemini client bound to one API key.

    Uses the async surface of google-genai (client.aio). Structured output
    is requested with response_mime_type=application/json and the pydantic
    schema from the envelope.
    """

    provider = AIProvider.GEMINI.value

    def __init__(self, api_key: str) -> None:
        self._client = genai.Client(api_key=api_key)

    def _build_config(self, request: GenerationRequest) -> types.GenerateContentConfig:
        config: dict[str, Any] = {}
        if request.system_instruction:
            config["system_instruction"] = request.system_instruction
        if request.temperature is not None:
            config["temperature"] = request.temperature
        if request.response_schema is not None:
            config["response_mime_type"] = "application/json"
            config["response_schema"] = request.response_schema
        if request.use_search:
            config["tools"] = [types.Tool(google_search=types.GoogleSearch())]
        return types.GenerateContentConfig(**config)

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        start_time = time.perf_counter()

        response = await self._client.aio.models.generate_content(
            model=request.model,
            contents=request.contents,
            config=self._build_config(request),
        )

        latency_ms = (time.perf_counter() - start_time) * 1000

        usage = getattr(response, "usage_metadata", None)
        tokens = TokenUsage(
            input_tokens=getattr(usage, "prompt_token_count", None) or 0,
            output_tokens=getattr(usage, "candidates_token_count", None) or 0,
        )

        return GenerationResult(
            text=response.text or "",
            model=request.model,
            provider=self.provider,
            latency_ms=latency_ms,
            tokens=tokens,
            sources=_grounding_sources(response),
        )


def _grounding_sources(response: Any) -> list[dict]:
    """Collect web sources from Gemini grounding metadata."""
    sources: list[dict] = []
    for candidate in getattr(response, "candidates", None) or []:
        metadata = getattr(candidate, "grounding_metadata", None)
        for chunk in getattr(metadata, "grounding_chunks", None) or []:
            web = getattr(chunk, "web", None)
            if web is not None and getattr(web, "uri", None):
                sources.append({"title": web.title or web.uri, "uri": web.uri})
    return sources


class ChatCompletionsClient:
    """
    Client for OpenAI-style chat completion APIs (OpenAI, Groq).

    Structured output uses response_format json_object, with the schema
    appended to the prompt since json_object mode does not enforce it.
    """

    def __init__(self, sdk_client: Any, provider: AIProvider) -> None:
        self._client = sdk_client
        self.provider = provider.value

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        messages = []
        if request.system_instruction:
            messages.append({"role": "system", "content": request.system_instruction})
        messages.append(
            {
                "role": "user",
                "content": request.contents + _schema_hint(request.response_schema),
            }
        )

        kwargs: dict[str, Any] = {"model": request.model, "messages": messages}
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        if request.response_schema is not None:
            kwargs["response_format"] = {"type": "json_object"}

        start_time = time.perf_counter()
        response = await self._client.chat.completions.create(**kwargs)
        latency_ms = (time.perf_counter() - start_time) * 1000

        usage = getattr(response, "usage", None)
        return GenerationResult(
            text=response.choices[0].message.content or "",
            model=request.model,
            provider=self.provider,
            latency_ms=latency_ms,
            tokens=TokenUsage(
                input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
        )


def create_client(provider: AIProvider | str, api_key: str) -> GenerationClient:
    """
    Create a generation client bound to a single API key.

    Args:
        provider: Provider name or enum member.
        api_key: Credential the client authenticates with.

    Returns:
        A client exposing generate().

    Raises:
        ValueError: If the provider is unknown.
    """
    provider = AIProvider(provider)
    logger.debug(f"Creating {provider.value} client")

    match provider:
        case AIProvider.GEMINI:
            return GeminiClient(api_key)
        case AIProvider.OPENAI:
            return ChatCompletionsClient(AsyncOpenAI(api_key=api_key), provider)
        case AIProvider.GROQ:
            return ChatCompletionsClient(AsyncGroq(api_key=api_key), provider)


def client_factory_for(provider: AIProvider | str) -> ClientFactory:
    """Return a one-argument factory (api_key -> client) for a provider."""
    provider = AIProvider(provider)

    def _factory(api_key: str) -> GenerationClient:
        return create_client(provider, api_key)

    return _factory
