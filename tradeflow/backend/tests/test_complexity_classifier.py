from __future__ import annotations

from tradeflow.backend.engine.complexity_classifier import ComplexityClassifier


def test_simple_order_goes_deterministic():
    result = ComplexityClassifier().classify("buy 100 dollars of AAPL")
    assert result.strategy == "deterministic"
    assert result.confidence > 0.8
    assert "simple_buy" in result.matched_patterns


def test_sell_all_goes_deterministic():
    result = ComplexityClassifier().classify("sell all TSLA")
    assert result.strategy == "deterministic"
    assert "simple_sell" in result.matched_patterns


def test_conditional_hedge_goes_to_model():
    result = ComplexityClassifier().classify("if AAPL drops below 150 hedge my shares with puts")
    assert result.strategy == "model"
    assert result.complex_score > 0.6
    assert {"conditional", "hedging", "options"} <= set(result.matched_patterns)


def test_unrecognized_input_falls_back_to_model_with_low_confidence():
    result = ComplexityClassifier().classify("hedge my LULU shares")
    assert result.strategy == "model"
    assert result.confidence == 0.3


def test_invalid_input_goes_to_model():
    classifier = ComplexityClassifier()
    assert classifier.classify("").strategy == "model"
    assert classifier.classify(None).confidence == 0.3


def test_conditional_words_raise_complexity():
    classifier = ComplexityClassifier()
    plain = classifier.classify("buy 100 dollars of AAPL")
    conditional = classifier.classify("buy 100 dollars of AAPL if it dips")
    assert conditional.complex_score > plain.complex_score


def test_cache_strategy_between_thresholds():
    classifier = ComplexityClassifier(simple_threshold=1.5)
    result = classifier.classify("buy 100 dollars of AAPL")
    assert result.strategy == "cache"


def test_classification_is_deterministic():
    classifier = ComplexityClassifier()
    text = "analyze NVDA fundamentals and recommend an entry"
    assert classifier.classify(text) == classifier.classify(text)


def test_estimate_cost_by_strategy():
    classifier = ComplexityClassifier()
    assert classifier.estimate_cost("buy 100 dollars of AAPL") == {"strategy": "deterministic", "time_ms": 1, "tokens": 0}
    estimate = classifier.estimate_cost("should i hedge AAPL and MSFT with options")
    assert estimate["strategy"] == "model"
    assert estimate["tokens"] > 500


def test_details_lists_tickers():
    details = ComplexityClassifier().details("compare AAPL and MSFT outlook")
    assert details["tickers"] == ["AAPL", "MSFT"]
    assert "multi_symbol" in details["complex_matches"]
