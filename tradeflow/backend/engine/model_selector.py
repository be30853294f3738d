import math
import re

from loguru import logger

from tradeflow.backend.engine import lexicon
from tradeflow.backend.engine.models import ClassificationResult, ModelSelection, ModelTier, SelectionConstraints

"""
Engine - Model Selector.

Chooses which external model tier the resolver should use for a command.
The choice is a weighted score over complexity fit, cost and latency, with
optional accuracy/speed preferences. Usage counters are advisory: they feed
cost reports and never change which tier is picked.
"""

DEFAULT_TIERS = [
    ModelTier(
        name="gemini-2.5-flash-lite",
        complexity="simple",
        cost_per_k_tokens_in=0.0001,
        cost_per_k_tokens_out=0.0004,
        expected_latency_ms=150,
        recommended=True,
    ),
    ModelTier(
        name="gemini-2.5-flash",
        complexity="medium",
        cost_per_k_tokens_in=0.0003,
        cost_per_k_tokens_out=0.0025,
        expected_latency_ms=300,
        recommended=True,
    ),
    ModelTier(
        name="gemini-2.5-pro",
        complexity="complex",
        cost_per_k_tokens_in=0.00125,
        cost_per_k_tokens_out=0.01,
        expected_latency_ms=800,
        recommended=False,
    ),
    ModelTier(
        name="gemini-2.0-flash-lite",
        complexity="simple",
        cost_per_k_tokens_in=0.000075,
        cost_per_k_tokens_out=0.0003,
        expected_latency_ms=100,
        recommended=False,
    ),
]

TIER_COMPLEXITY = {"simple": 0.2, "medium": 0.6, "complex": 1.0}
BASE_PROMPT_TOKENS = 500
EXPECTED_OUTPUT_TOKENS = 150

VERB_RE = re.compile(rf"\b({'|'.join(lexicon.ACTION_VERBS)})\b")
CONDITIONAL_RE = re.compile(r"\b(?:if|when|unless)\b")


def complexity_class(complexity: float) -> str:
    if complexity < 0.3:
        return "simple"
    if complexity < 0.7:
        return "medium"
    return "complex"


class ModelSelector:
    """Scores the tier catalog for each request and keeps advisory usage stats."""

    def __init__(self, tiers: list[ModelTier] | None = None):
        self.tiers = list(tiers) if tiers else list(DEFAULT_TIERS)
        if not self.tiers:
            raise ValueError("ModelSelector needs at least one tier")
        self._usage = {tier.name: 0 for tier in self.tiers}
        self._total_requests = 0
        self._total_estimated_cost = 0.0
        self._savings = 0.0

    def get_tier(self, name: str) -> ModelTier | None:
        return next((tier for tier in self.tiers if tier.name == name), None)

    def estimate_complexity(self, text: str, classification: ClassificationResult) -> float:
        """Classifier confidence plus structural bonuses, clamped to [0, 1]."""
        complexity = classification.confidence
        if len(text.split()) > 15:
            complexity += 0.2
        if len(set(VERB_RE.findall(text))) >= 2:
            complexity += 0.3
        if CONDITIONAL_RE.search(text):
            complexity += 0.4
        if len(lexicon.extract_tickers(text)) > 1:
            complexity += 0.2
        return min(1.0, complexity)

    @staticmethod
    def estimate_tokens(text: str) -> int:
        return math.ceil(len(text) / 4) + BASE_PROMPT_TOKENS

    @staticmethod
    def estimate_cost(tier: ModelTier, tokens_in: int, tokens_out: int = EXPECTED_OUTPUT_TOKENS) -> float:
        return tokens_in / 1000 * tier.cost_per_k_tokens_in + tokens_out / 1000 * tier.cost_per_k_tokens_out

    def _candidates(self, constraints: SelectionConstraints) -> list[ModelTier]:
        candidates = [
            tier for tier in self.tiers
            if (constraints.max_latency_ms is None or tier.expected_latency_ms <= constraints.max_latency_ms)
            and (constraints.max_cost_per_k_tokens is None or tier.cost_per_k_tokens_in <= constraints.max_cost_per_k_tokens)
        ]
        if candidates:
            return candidates
        logger.warning("No model tier satisfies the constraints; falling back to recommended tiers")
        return [tier for tier in self.tiers if tier.recommended] or list(self.tiers)

    def _score(self, tier: ModelTier, complexity: float, constraints: SelectionConstraints) -> float:
        distance = abs(TIER_COMPLEXITY[tier.complexity] - complexity)
        if distance < 0.2:
            match = 1.0
        elif distance < 0.4:
            match = 0.7
        else:
            match = 0.3

        max_cost = max(t.blended_cost for t in self.tiers)
        max_latency = max(t.expected_latency_ms for t in self.tiers)
        cost_score = 1 - tier.blended_cost / max_cost if max_cost else 1.0
        speed_score = 1 - tier.expected_latency_ms / max_latency

        score = 0.4 * match + 0.3 * cost_score + 0.2 * speed_score
        if tier.recommended:
            score += 0.1
        if constraints.prefer_accuracy and tier.complexity == "complex":
            score += 0.2
        if constraints.prefer_speed and tier.expected_latency_ms < 200:
            score += 0.2
        return score

    def select(
        self,
        text: str,
        classification: ClassificationResult,
        constraints: SelectionConstraints | None = None,
    ) -> ModelSelection:
        """
        Picks the best-scoring tier for `text`.

        Ties keep catalog order. Recording usage is a side effect only; the
        same inputs always select the same tier.
        """
        constraints = constraints or SelectionConstraints()
        complexity = self.estimate_complexity(text, classification)

        best, best_score = None, -math.inf
        for tier in self._candidates(constraints):
            score = self._score(tier, complexity, constraints)
            if score > best_score:
                best, best_score = tier, score

        tokens = self.estimate_tokens(text)
        cost = self.estimate_cost(best, tokens)
        self._record(best, tokens, cost)

        reason = f"complexity={complexity:.2f} ({complexity_class(complexity)}), score={best_score:.3f}"
        logger.info(f"Selected model tier {best.name}: {reason}")
        return ModelSelection(
            tier=best,
            complexity=complexity,
            score=best_score,
            estimated_tokens=tokens,
            estimated_cost=cost,
            reason=reason,
        )

    def _record(self, tier: ModelTier, tokens: int, cost: float):
        most_expensive = max(self.estimate_cost(t, tokens) for t in self.tiers)
        self._usage[tier.name] = self._usage.get(tier.name, 0) + 1
        self._total_requests += 1
        self._total_estimated_cost += cost
        self._savings += max(0.0, most_expensive - cost)

    def usage_stats(self) -> dict:
        weighted = sum(tier.expected_latency_ms * self._usage[tier.name] for tier in self.tiers)
        return {
            "total_requests": self._total_requests,
            "average_latency_ms": weighted / self._total_requests if self._total_requests else 0.0,
            "usage": dict(self._usage),
            "total_estimated_cost": self._total_estimated_cost,
            "cost_savings": self._savings,
        }

    def cost_report(self) -> dict:
        """Per-tier share of traffic and the average estimated cost per request."""
        total = self._total_requests
        return {
            "total_requests": total,
            "average_cost": self._total_estimated_cost / total if total else 0.0,
            "cost_savings": self._savings,
            "distribution": {name: (count / total if total else 0.0) for name, count in self._usage.items()},
            "recommendations": self._recommendations(total),
            "tiers": [tier.model_dump() for tier in self.tiers],
        }

    def _recommendations(self, total: int) -> list[str]:
        if not total:
            return []
        notes = []
        complex_share = sum(self._usage[t.name] for t in self.tiers if t.complexity == "complex") / total
        simple_share = sum(self._usage[t.name] for t in self.tiers if t.complexity == "simple") / total
        if complex_share > 0.2:
            notes.append("Over 20% of requests use a complex tier; check whether medium tiers would do")
        if simple_share < 0.5:
            notes.append("Fewer than half of requests use a simple tier; route more simple commands there")
        return notes
