"""Gemini implementation of the LLM collaborator with Langfuse tracing."""

import os
from contextlib import nullcontext

import structlog
from google import genai
from google.genai import types
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from ..config import Config
from ..errors import LLMError
from ..tracing import TracingClient, current_trace_id, get_tracing
from .base import LLMRequest, LLMResponse

logger = structlog.get_logger(__name__)


class GeminiLLMService:
    """Client for the Gemini API.

    The underlying client is created on first use, so constructing the
    service never needs credentials.
    """

    def __init__(self, config: Config, tracing: TracingClient | None = None):
        self.config = config
        self.model_name = config.gemini.model
        self._tracing = tracing or get_tracing()
        self._client: genai.Client | None = None

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            api_key = (
                self.config.gemini.api_key
                or os.environ.get("GOOGLE_API_KEY")
                or os.environ.get("GEMINI_API_KEY")
            )
            if not api_key:
                raise LLMError("No Gemini API key configured (set GOOGLE_API_KEY)")
            self._client = genai.Client(api_key=api_key)
        return self._client

    async def generate(self, request: LLMRequest) -> LLMResponse:
        """Send one prompt; transient API errors are retried.

        Inside an open trace (a heal attempt) the generation is recorded
        there; otherwise the call gets a trace of its own.
        """
        trace_id = current_trace_id()
        scope = nullcontext(None) if trace_id else self._trace("generate")
        with scope as trace:
            if trace is not None:
                trace_id = trace.id
            response = await self._generate_with_retry(request)
            text = response.text or ""
            if not text:
                raise LLMError("Empty response from Gemini")

            usage = self._usage(response)
            if self._tracing:
                self._tracing.record_generation(
                    trace_id,
                    self.model_name,
                    request.prompt,
                    text,
                    temperature=request.temperature,
                    usage=usage,
                )
            logger.debug("llm_generation", model=self.model_name, chars=len(text))
            return LLMResponse(content=text, usage=usage)

    async def _generate_with_retry(self, request: LLMRequest):
        client = self.client
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.config.gemini.max_retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            reraise=True,
        ):
            with attempt:
                return await client.aio.models.generate_content(
                    model=self.model_name,
                    contents=request.prompt,
                    config=types.GenerateContentConfig(
                        temperature=request.temperature,
                        max_output_tokens=request.max_tokens,
                    ),
                )

    @staticmethod
    def _usage(response) -> dict[str, int]:
        meta = getattr(response, "usage_metadata", None)
        if meta is None:
            return {}
        usage = {
            "input": getattr(meta, "prompt_token_count", None),
            "output": getattr(meta, "candidates_token_count", None),
            "total": getattr(meta, "total_token_count", None),
        }
        return {k: v for k, v in usage.items() if isinstance(v, int)}

    def _trace(self, name: str):
        """Create a trace context."""
        if self._tracing:
            return self._tracing.trace(f"gemini.{name}")
        return nullcontext(None)


def build_llm(config: Config, tracing: TracingClient | None = None) -> GeminiLLMService | None:
    """Return a Gemini service when enabled in config, else None."""
    if not config.gemini.enabled:
        return None
    return GeminiLLMService(config, tracing)
