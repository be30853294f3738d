from __future__ import annotations

import pytest

from tradeflow.backend.engine.model_selector import DEFAULT_TIERS, ModelSelector, complexity_class
from tradeflow.backend.engine.models import ClassificationResult, ModelTier, SelectionConstraints

LOW = ClassificationResult(strategy="model", confidence=0.3)


def test_simple_command_gets_cheap_recommended_tier():
    selection = ModelSelector().select("buy some AAPL", LOW)
    assert selection.tier_name == "gemini-2.5-flash-lite"
    assert selection.estimated_latency_ms == 150
    assert selection.estimated_cost > 0


def test_selection_is_deterministic():
    selector = ModelSelector()
    first = selector.select("hedge my LULU shares", LOW)
    second = selector.select("hedge my LULU shares", LOW)
    assert first.tier_name == second.tier_name
    assert first.score == second.score


def test_latency_ceiling_filters_tiers():
    selection = ModelSelector().select("buy some AAPL", LOW, SelectionConstraints(max_latency_ms=120))
    assert selection.tier_name == "gemini-2.0-flash-lite"


def test_cost_ceiling_filters_tiers():
    selection = ModelSelector().select("buy some AAPL", LOW, SelectionConstraints(max_cost_per_k_tokens=0.00008))
    assert selection.tier_name == "gemini-2.0-flash-lite"


def test_unsatisfiable_constraints_fall_back_to_recommended():
    selection = ModelSelector().select("buy some AAPL", LOW, SelectionConstraints(max_latency_ms=10))
    assert selection.tier.recommended


def test_ties_keep_catalog_order():
    twin = dict(complexity="simple", cost_per_k_tokens_in=0.001, cost_per_k_tokens_out=0.001, expected_latency_ms=100)
    selector = ModelSelector([ModelTier(name="first", **twin), ModelTier(name="second", **twin)])
    assert selector.select("buy some AAPL", LOW).tier_name == "first"


def test_complexity_bonuses():
    selector = ModelSelector()
    plain = selector.estimate_complexity("hedge AAPL", LOW)
    conditional = selector.estimate_complexity("if AAPL and MSFT drop hedge and analyze", LOW)
    assert plain == pytest.approx(0.3)
    assert conditional == 1.0
    assert complexity_class(plain) == "medium"
    assert complexity_class(0.1) == "simple"
    assert complexity_class(conditional) == "complex"


def test_token_and_cost_estimates():
    assert ModelSelector.estimate_tokens("a" * 40) == 510
    tier = DEFAULT_TIERS[1]
    cost = ModelSelector.estimate_cost(tier, 1000, 1000)
    assert cost == pytest.approx(tier.cost_per_k_tokens_in + tier.cost_per_k_tokens_out)


def test_usage_stats_and_cost_report():
    selector = ModelSelector()
    selector.select("buy some AAPL", LOW)
    selector.select("sell some MSFT", LOW)
    stats = selector.usage_stats()
    assert stats["total_requests"] == 2
    assert stats["usage"]["gemini-2.5-flash-lite"] == 2
    assert stats["average_latency_ms"] == 150
    assert stats["cost_savings"] > 0

    report = selector.cost_report()
    assert report["distribution"]["gemini-2.5-flash-lite"] == 1.0
    assert report["recommendations"] == []
    assert len(report["tiers"]) == len(DEFAULT_TIERS)


def test_empty_catalog_uses_defaults():
    assert [t.name for t in ModelSelector([]).tiers] == [t.name for t in DEFAULT_TIERS]
