import re
from dataclasses import dataclass
from typing import Callable

from loguru import logger
from pydantic import ValidationError

from tradeflow.backend.engine import lexicon
from tradeflow.backend.engine.models import SELL_ALL, BuyIntent, ParseResult, SellIntent

"""
Engine - Deterministic Parser.

Regex rules for the common buy/sell shapes. Each rule carries a fixed
confidence; rules are tried highest-confidence first and the first match that
also passes structural validation wins. The parser never raises on
unparseable input: it returns a result with confidence 0.
"""

NUM = r"(\d+(?:\.\d+)?)"
TICKER = r"([A-Z]{1,5})"
OF = r"(?:worth\s+)?(?:of\s+|in\s+)?"
SHARES = r"shares?"
LIMIT = r"\s+(?:at|@|limit(?:\s+price)?(?:\s+of)?|with\s+(?:a\s+)?limit(?:\s+price)?(?:\s+of)?)\s+" + NUM + r"(?:\s+dollars)?(?:\s+limit)?"

Extractor = Callable[[re.Match], dict]


@dataclass
class ParsingRule:
    name: str
    pattern: re.Pattern
    confidence: float
    extract: Extractor


def _market(amount_type: str) -> Extractor:
    def extract(m: re.Match) -> dict:
        return {"type": m.group(1), "amount": float(m.group(2)), "amount_type": amount_type, "symbol": m.group(3)}
    return extract


def _limit(amount_type: str) -> Extractor:
    def extract(m: re.Match) -> dict:
        return {
            "type": m.group(1),
            "amount": float(m.group(2)),
            "amount_type": amount_type,
            "symbol": m.group(3),
            "order_type": "limit",
            "limit_price": float(m.group(4)),
        }
    return extract


def _sell_all(m: re.Match) -> dict:
    return {"type": "sell", "amount": SELL_ALL, "amount_type": "shares", "symbol": m.group(1)}


def _natural(amount_type: str) -> Extractor:
    def extract(m: re.Match) -> dict:
        return {
            "type": m.group(1),
            "amount": lexicon.words_to_number(m.group(2)),
            "amount_type": amount_type,
            "symbol": m.group(3),
        }
    return extract


def _fraction(m: re.Match) -> dict:
    word = m.group(2)
    amount = lexicon.FRACTIONS[word] if word in lexicon.FRACTIONS else float(word)
    return {"type": m.group(1), "amount": amount, "amount_type": "shares", "symbol": m.group(3)}


def _rule(name: str, pattern: str, confidence: float, extract: Extractor) -> ParsingRule:
    return ParsingRule(name=name, pattern=re.compile(pattern), confidence=confidence, extract=extract)


DEFAULT_RULES = [
    _rule("dollars_market", rf"^(buy|sell)\s+{NUM}\s+dollars\s+{OF}{TICKER}$", 0.95, _market("dollars")),
    _rule("shares_market", rf"^(buy|sell)\s+{NUM}\s+{SHARES}\s+{OF}{TICKER}$", 0.95, _market("shares")),
    _rule("dollars_limit", rf"^(buy|sell)\s+{NUM}\s+dollars\s+{OF}{TICKER}{LIMIT}$", 0.92, _limit("dollars")),
    _rule("shares_limit", rf"^(buy|sell)\s+{NUM}\s+{SHARES}\s+{OF}{TICKER}{LIMIT}$", 0.92, _limit("shares")),
    _rule(
        "sell_all",
        rf"^sell\s+all\s+(?:of\s+)?(?:my\s+)?(?:shares\s+(?:of\s+|in\s+)?)?{TICKER}(?:\s+shares)?$",
        0.90,
        _sell_all,
    ),
    _rule(
        "natural_dollars",
        rf"^(buy|sell)\s+({lexicon.NUMBER_WORDS_PATTERN})\s+dollars\s+{OF}{TICKER}$",
        0.88,
        _natural("dollars"),
    ),
    _rule(
        "natural_shares",
        rf"^(buy|sell)\s+({lexicon.NUMBER_WORDS_PATTERN})\s+{SHARES}\s+{OF}{TICKER}$",
        0.88,
        _natural("shares"),
    ),
    _rule("implicit_shares", rf"^(buy|sell)\s+(\d+)\s+{TICKER}$", 0.86, _market("shares")),
    _rule(
        "fractional_shares",
        rf"^(buy|sell)\s+(?:a\s+)?(half|quarter|0\.5|0\.25|0\.75)\s+(?:of\s+)?(?:a\s+)?{SHARES}\s+{OF}{TICKER}$",
        0.85,
        _fraction,
    ),
]


class DeterministicParser:
    """Rule-based parser for simple buy/sell commands."""

    def __init__(self, rules: list[ParsingRule] | None = None):
        self.rules: list[ParsingRule] = []
        for rule in rules if rules is not None else DEFAULT_RULES:
            self.add_rule(rule)
        self._counts = {"parsed": 0, "unparsed": 0}

    def add_rule(self, rule: ParsingRule):
        """Inserts a rule, keeping the list ordered by descending confidence."""
        if not 0.0 < rule.confidence <= 1.0:
            raise ValueError(f"rule confidence must be in (0, 1], got {rule.confidence}")
        self.rules.append(rule)
        self.rules.sort(key=lambda r: r.confidence, reverse=True)

    def rule_names(self) -> list[str]:
        return [rule.name for rule in self.rules]

    def _prepare(self, text: str) -> str:
        text = lexicon.collapse_whitespace(text)
        text = re.sub(r"[.!?]+$", "", text)
        text = lexicon.fold_case(text)
        text = lexicon.fold_phrases(text, lexicon.ACTION_SYNONYMS)
        text = lexicon.fold_phrases(text, lexicon.QUANTITY_SYNONYMS)
        text = lexicon.normalize_money(text)
        text = lexicon.map_company_names(text)
        return lexicon.uppercase_ticker_slots(text)

    def _build(self, fields: dict, rule: ParsingRule) -> BuyIntent | SellIntent | None:
        model = BuyIntent if fields.pop("type") == "buy" else SellIntent
        try:
            return model(**fields, confidence=rule.confidence, metadata={"matched_rule": rule.name})
        except (ValidationError, TypeError) as e:
            logger.debug(f"Rule '{rule.name}' matched but failed structural validation: {e}")
            return None

    def parse(self, text: str) -> ParseResult:
        """
        Parses a buy/sell command.

        Args:
            text (str): Raw or normalized command text.

        Returns:
            ParseResult: the intent and the matching rule's confidence, or
            confidence 0 when no rule produced a structurally valid intent.
        """
        if not text or not isinstance(text, str):
            return ParseResult()

        prepared = self._prepare(text)
        for rule in self.rules:
            match = rule.pattern.match(prepared)
            if not match:
                continue
            intent = self._build(rule.extract(match), rule)
            if intent is None:
                continue
            self._counts["parsed"] += 1
            logger.debug(f"Deterministic parse via '{rule.name}': {intent.type} {intent.amount} {intent.amount_type} {intent.symbol}")
            return ParseResult(intent=intent, confidence=rule.confidence, matched_rule=rule.name)

        self._counts["unparsed"] += 1
        return ParseResult()

    def can_parse(self, text: str) -> bool:
        return self.parse(text).parsed

    def stats(self) -> dict:
        return {**self._counts, "rules": len(self.rules)}
