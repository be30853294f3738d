import math
import re

from loguru import logger

from tradeflow.backend.engine import lexicon
from tradeflow.backend.engine.models import ClassificationResult

"""
Engine - Complexity Classifier.

Decides which resolution strategy a normalized command should take:
'deterministic' (rule parser), 'cache' (similarity cache) or 'model'
(external resolver). Classification is pure keyword/regex scoring so it
adds no latency and behaves the same on every call.
"""

COMPLEX_PATTERNS = {
    "hedging": re.compile(r"\b(?:hedg\w*|protect\w*|insurance|downside|collar)\b"),
    "analysis": re.compile(r"\b(?:analy[sz]\w*|research|evaluate|assess\w*|outlook|fundamentals?|technicals?|sentiment)\b"),
    "recommendations": re.compile(r"\b(?:recommend\w*|suggest\w*|advice|advise|should\s+i|what\s+do\s+you\s+think|opinion)\b"),
    "institutional": re.compile(r"\b(?:13f|institutional|hedge\s+funds?|berkshire|blackrock|vanguard|whales?)\b"),
    "politician": re.compile(r"\b(?:congress\w*|senators?|politicians?|pelosi|representatives?|capitol)\b"),
    "options": re.compile(r"\b(?:options?|puts?|calls?|strikes?|expir\w*|straddle|strangle|spread)\b"),
    "derivatives": re.compile(r"\b(?:futures?|derivatives?|swaps?|leverag\w*|margin|short\s+sell\w*)\b"),
    "multi_symbol": re.compile(r"\b[A-Z]{1,5}(?:\s+(?:and|&|vs|versus)\s+|\s*,\s*)[A-Z]{1,5}\b"),
    "conditional": re.compile(r"\b(?:if|when|unless|provided|assuming)\b"),
}

SIMPLE_PATTERNS = {
    "simple_buy": re.compile(
        r"^buy\s+\d+(?:\.\d+)?\s+(?:dollars|shares?)\s+(?:worth\s+)?(?:of\s+|in\s+)?[A-Z]{1,5}\b"
    ),
    "simple_sell": re.compile(
        r"^sell\s+(?:\d+(?:\.\d+)?\s+(?:dollars|shares?)\s+(?:worth\s+)?(?:of\s+|in\s+)?"
        r"|all\s+(?:of\s+)?(?:my\s+)?)[A-Z]{1,5}\b"
    ),
    "account": re.compile(
        r"^(?:show\s+)?(?:my\s+)?(?:account|balance|buying\s+power|holdings|shares|portfolio)(?:\s+(?:info|balance|summary))?$"
    ),
    "market_price": re.compile(r"^(?:what\s+is\s+)?(?:the\s+)?(?:price|quote)\s+(?:of\s+|for\s+)?[A-Z]{1,5}$"),
    "market_status": re.compile(r"^(?:is\s+)?(?:the\s+)?market\s+(?:status|open|closed|hours)$"),
    "portfolio_history": re.compile(r"^(?:show\s+)?(?:my\s+)?portfolio\s+(?:history|performance|chart)$"),
}

VERB_RE = re.compile(rf"\b({'|'.join(lexicon.ACTION_VERBS)})\b")
CONDITIONAL_BONUS_RE = re.compile(r"\b(?:if|when|unless)\b")


class ComplexityClassifier:
    """Scores a normalized command against simple and complex pattern families."""

    def __init__(
        self,
        complex_threshold: float = 0.6,
        simple_threshold: float = 0.8,
        cache_threshold: float = 0.4,
    ):
        self.complex_threshold = complex_threshold
        self.simple_threshold = simple_threshold
        self.cache_threshold = cache_threshold

    def _score_complex(self, text: str) -> tuple[float, list[str]]:
        matched = [name for name, pattern in COMPLEX_PATTERNS.items() if pattern.search(text)]
        score = len(matched) / len(COMPLEX_PATTERNS)

        words = text.split()
        if len(words) > 10:
            score += 0.2
        if len(set(VERB_RE.findall(text))) >= 2:
            score += 0.3
        if CONDITIONAL_BONUS_RE.search(text):
            score += 0.4
        return min(1.0, score), matched

    def _score_simple(self, text: str) -> tuple[float, list[str]]:
        matched = [name for name, pattern in SIMPLE_PATTERNS.items() if pattern.search(text)]
        if matched and len(text.split()) <= 6:
            return min(1.0, len(matched) + 0.3), matched
        return len(matched) / len(SIMPLE_PATTERNS), matched

    def classify(self, text: str) -> ClassificationResult:
        """
        Picks a resolution strategy for a normalized command.

        Complex scoring runs first and wins outright above the complex
        threshold; inputs that fit neither family go to the model with low
        confidence rather than being guessed deterministically.

        Args:
            text (str): Normalized command text.

        Returns:
            ClassificationResult: strategy, confidence and both family scores.
        """
        # 1. Validation
        if not text or not isinstance(text, str):
            logger.warning(f"Invalid input received for classification: {type(text)}")
            return ClassificationResult(strategy="model", confidence=0.3)

        # 2. Complex family
        complex_score, complex_matches = self._score_complex(text)
        if complex_score > self.complex_threshold:
            logger.debug(f"Classified as model (complex={complex_score:.2f}, matched={complex_matches})")
            return ClassificationResult(
                strategy="model",
                confidence=complex_score,
                complex_score=complex_score,
                matched_patterns=tuple(complex_matches),
            )

        # 3. Simple family
        simple_score, simple_matches = self._score_simple(text)
        matched = tuple(complex_matches + simple_matches)
        if simple_score > self.simple_threshold:
            strategy, confidence = "deterministic", simple_score
        elif simple_score > self.cache_threshold and complex_score < self.cache_threshold:
            strategy, confidence = "cache", simple_score
        else:
            # 4. Fallback
            strategy, confidence = "model", 0.3

        logger.debug(
            f"Classified as {strategy} (simple={simple_score:.2f}, complex={complex_score:.2f}, matched={list(matched)})"
        )
        return ClassificationResult(
            strategy=strategy,
            confidence=confidence,
            complex_score=complex_score,
            simple_score=simple_score,
            matched_patterns=matched,
        )

    def estimate_cost(self, text: str) -> dict:
        """Rough latency (ms) and token estimate for the path `text` would take."""
        classification = self.classify(text)
        if classification.strategy == "deterministic":
            return {"strategy": "deterministic", "time_ms": 1, "tokens": 0}
        if classification.strategy == "cache":
            return {"strategy": "cache", "time_ms": 5, "tokens": 0}
        tokens = math.ceil(len(text) / 4) + 500
        time_ms = 200 if classification.complex_score > self.complex_threshold else 100
        return {"strategy": "model", "time_ms": time_ms, "tokens": tokens}

    def details(self, text: str) -> dict:
        """Debug view: every matched pattern, extracted tickers and the cost estimate."""
        return {
            "classification": self.classify(text).model_dump(),
            "simple_matches": [n for n, p in SIMPLE_PATTERNS.items() if p.search(text or "")],
            "complex_matches": [n for n, p in COMPLEX_PATTERNS.items() if p.search(text or "")],
            "tickers": lexicon.extract_tickers(text or ""),
            "estimated_cost": self.estimate_cost(text or ""),
        }
