"""Unit tests for CompletionGateway / EmbeddingGateway.

Tests cover:
- Model whitelist and cost calculation
- JSON output parsing with fence stripping and repair
- Token extraction, metrics and ledger recording
- Transient errors surfaced as CompletionTransientError
"""

from unittest.mock import MagicMock

import pytest

from repocompare.core.budget import CostLedger
from repocompare.core.db.models import CostLedgerEntry
from repocompare.core.errors import CompletionTransientError, ModelNotWhitelistedError
from repocompare.core.gateway import (
    CompletionGateway,
    EmbeddingGateway,
    calculate_cost,
    ensure_whitelisted,
    parse_json_output,
)


# ── Fixtures ──────────────────────────────────────────────────────────────


def _chat_response(content, prompt_tokens=100, completion_tokens=50):
    response = MagicMock()
    response.message.content = content
    response.raw = {"usage": {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens}}
    return response


def _gateway(llm, **kwargs):
    return CompletionGateway(llm_factory=lambda model, temperature, json_response: llm, **kwargs)


# ── Tests: Pricing ───────────────────────────────────────────────────────


class TestPricing:
    """Tests for the model whitelist."""

    def test_known_model(self):
        assert ensure_whitelisted("gpt-4o-mini")["input"] == 0.15

    def test_unknown_model_raises(self):
        with pytest.raises(ModelNotWhitelistedError):
            ensure_whitelisted("gpt-3-davinci")

    def test_cost_per_million_tokens(self):
        assert calculate_cost("gpt-4o", 1_000_000, 1_000_000) == pytest.approx(12.5)
        assert calculate_cost("gpt-4o-mini", 1000, 500) == pytest.approx(0.00045)


# ── Tests: JSON Parsing ──────────────────────────────────────────────────


class TestParseJsonOutput:
    """Tests for parse_json_output."""

    def test_plain_json(self):
        assert parse_json_output('{"a": 1}') == {"a": 1}

    def test_markdown_fence(self):
        assert parse_json_output('```json\n{"a": 1}\n```') == {"a": 1}

    def test_repairs_surrounding_prose(self):
        assert parse_json_output('Here you go: {"a": 1} hope that helps') == {"a": 1}

    def test_unparseable_returns_parse_error(self):
        result = parse_json_output("not json at all")
        assert "parse_error" in result
        assert result["raw_output"] == "not json at all"


# ── Tests: Completion Gateway ────────────────────────────────────────────


class TestCompletionGateway:
    """Tests for completion calls, metrics and ledger recording."""

    def test_complete_parses_and_counts_tokens(self):
        llm = MagicMock()
        llm.chat.return_value = _chat_response('{"summary": "ok"}', 1000, 500)
        gateway = _gateway(llm)

        result = gateway.complete("system", "user", model="gpt-4o-mini", purpose="test")

        assert result.content == {"summary": "ok"}
        assert result.input_tokens == 1000
        assert result.output_tokens == 500
        assert result.cost_usd == pytest.approx(0.00045)
        assert not result.parse_failed
        metrics = gateway.get_metrics()
        assert metrics["total_calls"] == 1
        assert metrics["calls_by_purpose"] == {"test": 1}

    def test_text_mode_skips_json_parsing(self):
        llm = MagicMock()
        llm.chat.return_value = _chat_response("plain prose")
        gateway = _gateway(llm)

        result = gateway.complete("s", "u", model="gpt-4o-mini", json_response=False)
        assert result.content == {"text": "plain prose"}

    def test_unwhitelisted_model_never_calls_llm(self):
        llm = MagicMock()
        gateway = _gateway(llm)

        with pytest.raises(ModelNotWhitelistedError):
            gateway.complete("s", "u", model="claude-unknown")
        llm.chat.assert_not_called()

    def test_timeout_becomes_transient_error(self):
        llm = MagicMock()
        llm.chat.side_effect = TimeoutError("read timed out on 10.0.0.5:443")
        gateway = _gateway(llm, max_tries=1)

        with pytest.raises(CompletionTransientError) as exc_info:
            gateway.complete("s", "u", model="gpt-4o-mini")
        assert "10.0.0.5" in str(exc_info.value)
        assert exc_info.value.user_message == CompletionTransientError.default_user_message
        assert gateway.get_metrics()["errors"] == 1

    def test_three_calls_accumulate_in_ledger(self, db):
        llm = MagicMock()
        llm.chat.return_value = _chat_response('{"a": 1}', 100, 50)
        ledger = CostLedger()
        gateway = _gateway(llm, ledger=ledger, db_manager=db)

        for _ in range(3):
            gateway.complete("s", "u", model="gpt-4o-mini")

        with db.get_session() as session:
            entry = session.query(CostLedgerEntry).one()
            assert entry.model == "gpt-4o-mini"
            assert entry.total_requests == 3
            assert entry.total_input_tokens == 300
            assert entry.total_output_tokens == 150
            assert entry.total_cost_usd == pytest.approx(3 * calculate_cost("gpt-4o-mini", 100, 50))


class TestEmbeddingGateway:
    """Tests for embedding calls."""

    def test_embed_returns_list(self):
        embed_model = MagicMock()
        embed_model.get_text_embedding.return_value = (0.1, 0.2, 0.3)
        gateway = EmbeddingGateway(embed_model=embed_model)

        assert gateway.embed("rails") == [0.1, 0.2, 0.3]
        assert gateway.get_metrics()["calls_by_purpose"] == {"embedding": 1}

    def test_unwhitelisted_embedding_model(self):
        with pytest.raises(ModelNotWhitelistedError):
            EmbeddingGateway(model="text-embedding-unknown")
