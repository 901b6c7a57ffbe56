"""Langfuse traces for heal attempts and the LLM calls made inside them."""

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

import structlog
from langfuse import Langfuse

from .config import Config

logger = structlog.get_logger(__name__)

PROMPT_PREVIEW_CHARS = 500
OUTPUT_PREVIEW_CHARS = 1000

# Trace opened by the innermost enclosing TracingClient.trace block
_current_trace: ContextVar[Any | None] = ContextVar("testmind_current_trace", default=None)


def current_trace_id() -> str | None:
    trace = _current_trace.get()
    return trace.id if trace is not None else None


class TracingClient:
    """Thin wrapper over the Langfuse client.

    When tracing is disabled no Langfuse client is built and every method
    returns without doing anything, so callers never branch on ``enabled``.
    """

    def __init__(self, config: Config):
        self.config = config
        self.enabled = config.langfuse.enabled
        self._client: Langfuse | None = None

        if self.enabled:
            self._client = Langfuse(
                public_key=config.langfuse.public_key,
                secret_key=config.langfuse.secret_key,
                host=config.langfuse.host,
            )

    @contextmanager
    def trace(self, name: str, metadata: dict | None = None):
        """Open a trace; yields None when disabled.

        While the block runs the trace is the current one, so LLM calls made
        inside it attach to it. An exception escaping the block is written
        onto the trace and re-raised.
        """
        if self._client is None:
            yield None
            return

        trace = self._client.trace(name=name, metadata=metadata or {})
        token = _current_trace.set(trace)
        try:
            yield trace
        except Exception as e:
            trace.update(metadata={**(metadata or {}), "error": str(e)})
            raise
        finally:
            _current_trace.reset(token)
            trace.update(status="completed")

    def record_generation(
        self,
        trace_id: str | None,
        model: str,
        prompt: str,
        output: str,
        temperature: float | None = None,
        usage: dict[str, int] | None = None,
    ) -> None:
        """Attach one LLM call, with truncated prompt and output, to a trace."""
        if self._client is None:
            return

        self._client.generation(
            trace_id=trace_id,
            name="generate",
            model=model,
            input={"prompt": prompt[:PROMPT_PREVIEW_CHARS], "temperature": temperature},
            output=output[:OUTPUT_PREVIEW_CHARS],
            usage=usage or None,
        )

    def record_heal(self, trace_id: str | None, outcome: dict[str, Any], confidence: float) -> None:
        """Attach a heal outcome as a span and its confidence as a score."""
        if self._client is None:
            return

        self._client.span(trace_id=trace_id, name="heal_result", output=outcome)
        self._client.score(trace_id=trace_id, name="heal_confidence", value=confidence)

    def flush(self) -> None:
        """Flush pending events to Langfuse."""
        if self._client is not None:
            self._client.flush()


# Set by the CLI so services built later can find it
_tracing: TracingClient | None = None


def init_tracing(config: Config) -> TracingClient:
    global _tracing
    _tracing = TracingClient(config)
    logger.debug("tracing_initialized", enabled=_tracing.enabled)
    return _tracing


def get_tracing() -> TracingClient | None:
    return _tracing
