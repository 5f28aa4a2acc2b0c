"""LLM Gateway — retry and call metrics around the review LLM.

Wraps any LlamaIndex LLM as a CustomLLM subclass so the suggestion engine
can depend on the plain LLM interface while every call gets:
- Retry with exponential backoff on transient provider errors
- Call logging (prompt/response size, latency, model)
- Thread-safe in-memory metrics, tagged by purpose
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from collections import defaultdict
from typing import Any, Optional, Sequence

import backoff
import openai
from llama_index.core.base.llms.types import (
    ChatMessage,
    ChatResponse,
    CompletionResponse,
    CompletionResponseGen,
    LLMMetadata,
)
from llama_index.core.llms import CustomLLM
from pydantic import PrivateAttr

logger = logging.getLogger(__name__)

MAX_TRIES = 3
MAX_RETRY_SECONDS = 60

RETRYABLE_EXCEPTIONS = (
    TimeoutError,
    ConnectionError,
    openai.RateLimitError,
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.InternalServerError,
)


@dataclass
class LLMMetrics:
    """In-memory LLM usage counters."""

    total_calls: int = 0
    total_chars_in: int = 0
    total_chars_out: int = 0
    total_latency_ms: float = 0.0
    errors: int = 0
    retries: int = 0
    calls_by_purpose: dict = field(default_factory=lambda: defaultdict(int))

    def to_dict(self) -> dict:
        return {
            "total_calls": self.total_calls,
            "total_chars_in": self.total_chars_in,
            "total_chars_out": self.total_chars_out,
            "avg_latency_ms": round(self.total_latency_ms / max(self.total_calls, 1), 1),
            "errors": self.errors,
            "retries": self.retries,
            "calls_by_purpose": dict(self.calls_by_purpose),
        }


class LLMGateway(CustomLLM):
    """Transparent LLM proxy with retry and metrics.

    Usage:
        from llama_index.llms.openai import OpenAI
        llm = LLMGateway(OpenAI(model="gpt-4o"))
        llm.chat(messages, gateway_purpose="review")
    """

    _llm: Any = PrivateAttr()
    _metrics: LLMMetrics = PrivateAttr()
    _lock: Any = PrivateAttr()

    def __init__(self, llm: Any, **kwargs: Any):
        super().__init__(**kwargs)
        self._llm = llm
        self._metrics = LLMMetrics()
        self._lock = threading.Lock()
        logger.info(
            f"LLMGateway initialized — wrapping {type(llm).__name__}"
            f" (model={getattr(llm, 'model', 'unknown')})"
        )

    @property
    def metadata(self) -> LLMMetadata:
        return self._llm.metadata

    @property
    def model(self) -> str:
        return getattr(self._llm, "model", "unknown")

    # ── Core methods ──────────────────────────────────────────────────

    def complete(self, prompt: str, formatted: bool = False, **kwargs: Any) -> CompletionResponse:
        purpose = kwargs.pop("gateway_purpose", "general")
        t0 = time.time()
        try:
            response = self._retry_call(self._llm.complete, prompt, formatted=formatted, **kwargs)
        except Exception:
            self._record_error(purpose)
            raise
        self._record_success(len(prompt), len(response.text or ""), t0, purpose)
        return response

    def stream_complete(
        self, prompt: str, formatted: bool = False, **kwargs: Any
    ) -> CompletionResponseGen:
        kwargs.pop("gateway_purpose", None)
        return self._llm.stream_complete(prompt, formatted=formatted, **kwargs)

    def chat(self, messages: Sequence[ChatMessage], **kwargs: Any) -> ChatResponse:
        purpose = kwargs.pop("gateway_purpose", "general")
        t0 = time.time()
        try:
            response = self._retry_call(self._llm.chat, messages, **kwargs)
        except Exception:
            self._record_error(purpose)
            raise
        chars_in = sum(len(m.content or "") for m in messages)
        chars_out = len(response.message.content or "") if response.message else 0
        self._record_success(chars_in, chars_out, t0, purpose)
        return response

    # ── Retry ─────────────────────────────────────────────────────────

    def _retry_call(self, fn, *args, **kwargs):
        """Execute fn with exponential backoff on retryable errors."""

        @backoff.on_exception(
            backoff.expo,
            RETRYABLE_EXCEPTIONS,
            max_tries=MAX_TRIES,
            max_time=MAX_RETRY_SECONDS,
            on_backoff=self._on_retry,
        )
        def _do_call():
            return fn(*args, **kwargs)

        return _do_call()

    def _on_retry(self, details: dict):
        with self._lock:
            self._metrics.retries += 1
        logger.warning(
            f"LLMGateway retry {details['tries']}/{MAX_TRIES} "
            f"after {details['wait']:.1f}s — {type(details.get('exception')).__name__}"
        )

    # ── Metrics recording ─────────────────────────────────────────────

    def _record_success(self, chars_in: int, chars_out: int, t0: float, purpose: str):
        latency_ms = (time.time() - t0) * 1000
        with self._lock:
            m = self._metrics
            m.total_calls += 1
            m.total_chars_in += chars_in
            m.total_chars_out += chars_out
            m.total_latency_ms += latency_ms
            m.calls_by_purpose[purpose] += 1
        logger.debug(
            f"LLM call: purpose={purpose} chars_in={chars_in} chars_out={chars_out} "
            f"latency={latency_ms:.0f}ms model={self.model}"
        )

    def _record_error(self, purpose: str):
        with self._lock:
            self._metrics.errors += 1
            self._metrics.calls_by_purpose[f"{purpose}_error"] += 1
        logger.error(f"LLM call failed: purpose={purpose} model={self.model}")

    # ── Public metrics API ────────────────────────────────────────────

    def get_metrics(self) -> dict:
        with self._lock:
            result = self._metrics.to_dict()
        result["model"] = self.model
        return result

    @classmethod
    def class_name(cls) -> str:
        return "LLMGateway"


def create_review_llm(
    model: str = "gpt-4o",
    temperature: float = 0.1,
    max_tokens: int = 4000,
    api_key: Optional[str] = None,
) -> LLMGateway:
    """OpenAI chat model in JSON mode, wrapped in the gateway."""
    from llama_index.llms.openai import OpenAI

    raw_llm = OpenAI(
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,
        api_key=api_key,
        additional_kwargs={"response_format": {"type": "json_object"}},
    )
    logger.info(f"Review LLM: openai/{model}")
    return LLMGateway(raw_llm)
