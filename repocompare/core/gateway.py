"""Completion and embedding gateways over LlamaIndex models.

Every model call in repocompare flows through one of these gateways:
- Model whitelist check with per-model pricing (unknown model = hard error)
- Retry with exponential backoff on rate limits and timeouts
- Token extraction from provider responses
- JSON output parsing with markdown-fence stripping
- Per-call cost recording into the CostLedger
- Thread-safe in-memory metrics
"""

import json
import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

import backoff
from llama_index.core.base.llms.types import ChatMessage, MessageRole

from .errors import CompletionTransientError, ModelNotWhitelistedError

logger = logging.getLogger(__name__)

# ── Pricing whitelist (USD per 1M tokens) ─────────────────────────────
# A model missing here must not be called.
MODEL_PRICING: Dict[str, Dict[str, float]] = {
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "text-embedding-3-small": {"input": 0.02, "output": 0.0},
}


def ensure_whitelisted(model: str) -> Dict[str, float]:
    """Return the pricing entry for ``model`` or raise ModelNotWhitelistedError."""
    pricing = MODEL_PRICING.get(model)
    if pricing is None:
        raise ModelNotWhitelistedError(
            f"Model '{model}' is not whitelisted. Allowed: {', '.join(sorted(MODEL_PRICING))}"
        )
    return pricing


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """input_tokens * input_rate + output_tokens * output_rate (rates per 1M)."""
    pricing = ensure_whitelisted(model)
    return (input_tokens * pricing["input"] + output_tokens * pricing["output"]) / 1_000_000


def _get_retryable_exceptions():
    """Lazy-load retryable exception classes.

    Handles missing provider packages gracefully.
    """
    exceptions = [TimeoutError, ConnectionError]
    try:
        from openai import APIConnectionError, APITimeoutError, RateLimitError
        exceptions.extend([RateLimitError, APITimeoutError, APIConnectionError])
    except ImportError:
        pass
    return tuple(exceptions)


def parse_json_output(raw: str) -> Dict[str, Any]:
    """Parse JSON from model output, stripping markdown fences."""
    cleaned = raw or ""
    if "```json" in cleaned:
        cleaned = cleaned.split("```json", 1)[1]
    if "```" in cleaned:
        cleaned = cleaned.split("```", 1)[0]
    cleaned = cleaned.strip()

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.warning(f"JSON parse failed: {e}. Attempting repair.")
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start >= 0 and end > start:
            try:
                return json.loads(cleaned[start:end + 1])
            except json.JSONDecodeError:
                pass
        return {"parse_error": str(e), "raw_output": (raw or "")[:2000]}


# ── Service boundaries ─────────────────────────────────────────────────

@dataclass
class CompletionResult:
    """Parsed model response plus usage."""

    content: Dict[str, Any]
    raw: str
    input_tokens: int
    output_tokens: int
    model: str

    @property
    def cost_usd(self) -> float:
        return calculate_cost(self.model, self.input_tokens, self.output_tokens)

    @property
    def parse_failed(self) -> bool:
        return "parse_error" in self.content


class TextCompletionService(Protocol):
    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        json_response: bool = True,
        temperature: Optional[float] = None,
        purpose: str = "general",
    ) -> CompletionResult:
        ...


class EmbeddingService(Protocol):
    def embed(self, text: str) -> List[float]:
        ...


# ── Metrics ────────────────────────────────────────────────────────────

@dataclass
class GatewayMetrics:
    """Thread-safe in-memory model usage metrics."""

    total_calls: int = 0
    total_tokens_in: int = 0
    total_tokens_out: int = 0
    total_latency_ms: float = 0.0
    errors: int = 0
    retries: int = 0
    calls_by_purpose: dict = field(default_factory=lambda: defaultdict(int))
    cost_usd: float = 0.0

    def to_dict(self) -> dict:
        return {
            "total_calls": self.total_calls,
            "total_tokens_in": self.total_tokens_in,
            "total_tokens_out": self.total_tokens_out,
            "avg_latency_ms": round(self.total_latency_ms / max(self.total_calls, 1), 1),
            "errors": self.errors,
            "retries": self.retries,
            "calls_by_purpose": dict(self.calls_by_purpose),
            "cost_usd": round(self.cost_usd, 6),
        }


class _RetryingGateway:
    """Shared backoff, metrics, and locking for both gateways."""

    def __init__(self, max_tries: int = 3, max_time: float = 60):
        self.max_tries = max_tries
        self.max_time = max_time
        self._metrics = GatewayMetrics()
        self._lock = threading.Lock()
        self._retryable_exceptions: Optional[tuple] = None

    def _retry_call(self, fn, *args, **kwargs):
        """Execute fn with exponential backoff on retryable errors.

        Raises CompletionTransientError once retries are exhausted.
        """
        if self._retryable_exceptions is None:
            self._retryable_exceptions = _get_retryable_exceptions()

        @backoff.on_exception(
            backoff.expo,
            self._retryable_exceptions,
            max_tries=self.max_tries,
            max_time=self.max_time,
            on_backoff=self._on_retry,
        )
        def _do_call():
            return fn(*args, **kwargs)

        try:
            return _do_call()
        except self._retryable_exceptions as e:
            raise CompletionTransientError(
                f"{type(e).__name__}: {e}",
            ) from e

    def _on_retry(self, details: dict):
        with self._lock:
            self._metrics.retries += 1
        logger.warning(
            f"{type(self).__name__} retry {details['tries']}/{self.max_tries} "
            f"after {details['wait']:.1f}s: {type(details.get('exception')).__name__}"
        )

    def _record_error(self, purpose: str, model: str):
        with self._lock:
            self._metrics.errors += 1
            self._metrics.calls_by_purpose[f"{purpose}_error"] += 1
        logger.error(f"Model call failed: purpose={purpose} model={model}")

    def _record_success(self, purpose: str, tokens_in: int, tokens_out: int, latency_ms: float, cost: float):
        with self._lock:
            m = self._metrics
            m.total_calls += 1
            m.total_tokens_in += tokens_in
            m.total_tokens_out += tokens_out
            m.total_latency_ms += latency_ms
            m.cost_usd += cost
            m.calls_by_purpose[purpose] += 1

    def get_metrics(self) -> dict:
        """Return a thread-safe snapshot of current metrics."""
        with self._lock:
            return self._metrics.to_dict()

    def reset_metrics(self):
        with self._lock:
            self._metrics = GatewayMetrics()


# ── Completion gateway ─────────────────────────────────────────────────

def _default_llm_factory(model: str, temperature: Optional[float], json_response: bool):
    from llama_index.llms.openai import OpenAI

    kwargs: Dict[str, Any] = {"model": model}
    if temperature is not None:
        kwargs["temperature"] = temperature
    if json_response:
        kwargs["additional_kwargs"] = {"response_format": {"type": "json_object"}}
    return OpenAI(**kwargs)


def _extract_usage(response: Any) -> Tuple[Optional[int], Optional[int]]:
    """Pull prompt/completion token counts from a LlamaIndex chat response."""
    raw = getattr(response, "raw", None) or {}
    usage = raw.get("usage") if isinstance(raw, dict) else getattr(raw, "usage", None)
    if usage is not None:
        if isinstance(usage, dict):
            return usage.get("prompt_tokens"), usage.get("completion_tokens")
        return getattr(usage, "prompt_tokens", None), getattr(usage, "completion_tokens", None)
    extra = getattr(response, "additional_kwargs", None) or {}
    return extra.get("prompt_tokens"), extra.get("completion_tokens")


class CompletionGateway(_RetryingGateway):
    """TextCompletionService backed by LlamaIndex chat models.

    Usage:
        gateway = CompletionGateway(ledger=CostLedger(), db_manager=db)
        result = gateway.complete(system, user, model="gpt-4o-mini")
        result.content  # parsed JSON dict
    """

    def __init__(
        self,
        llm_factory: Optional[Callable[[str, Optional[float], bool], Any]] = None,
        ledger=None,
        db_manager=None,
        max_tries: int = 3,
        max_time: float = 60,
    ):
        super().__init__(max_tries=max_tries, max_time=max_time)
        self._llm_factory = llm_factory or _default_llm_factory
        self._ledger = ledger
        self._db = db_manager
        self._llms: Dict[Tuple[str, Optional[float], bool], Any] = {}

    def _get_llm(self, model: str, temperature: Optional[float], json_response: bool):
        key = (model, temperature, json_response)
        with self._lock:
            if key not in self._llms:
                self._llms[key] = self._llm_factory(model, temperature, json_response)
            return self._llms[key]

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        json_response: bool = True,
        temperature: Optional[float] = None,
        purpose: str = "general",
    ) -> CompletionResult:
        """Run one chat completion and record its usage and cost."""
        ensure_whitelisted(model)
        llm = self._get_llm(model, temperature, json_response)
        messages = [
            ChatMessage(role=MessageRole.SYSTEM, content=system_prompt),
            ChatMessage(role=MessageRole.USER, content=user_prompt),
        ]

        t0 = time.time()
        try:
            response = self._retry_call(llm.chat, messages)
        except Exception:
            self._record_error(purpose, model)
            raise
        latency_ms = (time.time() - t0) * 1000

        raw_text = response.message.content or "" if response.message else ""
        tokens_in, tokens_out = _extract_usage(response)
        if tokens_in is None:
            tokens_in = int(len(f"{system_prompt} {user_prompt}".split()) * 1.3)
        if tokens_out is None:
            tokens_out = int(len(raw_text.split()) * 1.3)

        content = parse_json_output(raw_text) if json_response else {"text": raw_text}
        result = CompletionResult(
            content=content,
            raw=raw_text,
            input_tokens=int(tokens_in),
            output_tokens=int(tokens_out),
            model=model,
        )
        cost = result.cost_usd
        self._record_success(purpose, result.input_tokens, result.output_tokens, latency_ms, cost)
        self._record_ledger(model, result.input_tokens, result.output_tokens)

        logger.debug(
            f"Completion: purpose={purpose} model={model} tokens_in={result.input_tokens} "
            f"tokens_out={result.output_tokens} cost=${cost:.5f} latency={latency_ms:.0f}ms"
        )
        return result

    def _record_ledger(self, model: str, tokens_in: int, tokens_out: int):
        if self._ledger is None or self._db is None:
            return
        with self._db.get_session() as session:
            self._ledger.record_usage(session, model, tokens_in, tokens_out)


# ── Embedding gateway ──────────────────────────────────────────────────

def _default_embed_factory(model: str):
    from llama_index.embeddings.openai import OpenAIEmbedding

    return OpenAIEmbedding(model=model)


class EmbeddingGateway(_RetryingGateway):
    """EmbeddingService backed by a LlamaIndex embedding model."""

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        embed_model: Any = None,
        max_tries: int = 3,
        max_time: float = 30,
    ):
        super().__init__(max_tries=max_tries, max_time=max_time)
        ensure_whitelisted(model)
        self.model = model
        self._embed_model = embed_model

    def _get_embed_model(self):
        if self._embed_model is None:
            self._embed_model = _default_embed_factory(self.model)
        return self._embed_model

    def embed(self, text: str) -> List[float]:
        embed_model = self._get_embed_model()
        t0 = time.time()
        try:
            vector = self._retry_call(embed_model.get_text_embedding, text)
        except Exception:
            self._record_error("embedding", self.model)
            raise
        tokens = int(len(text.split()) * 1.3)
        self._record_success(
            "embedding", tokens, 0, (time.time() - t0) * 1000,
            calculate_cost(self.model, tokens, 0),
        )
        return list(vector)
