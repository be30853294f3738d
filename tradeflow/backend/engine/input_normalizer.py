import re

from loguru import logger

from tradeflow.backend.engine import lexicon

"""
Engine - Input Normalizer.

Canonicalizes free-text trading commands before classification and parsing.
Every step is a pure string transformation and the pipeline is idempotent:
normalize(normalize(x)) == normalize(x). Tickers are recognised with the
shared lexicon heuristic and are never lower-cased once identified.
"""

CONTRACTIONS = [
    ("i'm", "i am"),
    ("i'd", "i would"),
    ("i'll", "i will"),
    ("i've", "i have"),
    ("don't", "do not"),
    ("doesn't", "does not"),
    ("can't", "cannot"),
    ("won't", "will not"),
    ("shouldn't", "should not"),
    ("what's", "what is"),
    ("how's", "how is"),
    ("it's", "it is"),
    ("let's", "let us"),
    ("wanna", "want to"),
    ("gonna", "going to"),
]

# Misspellings map straight to their canonical (already folded) form.
TYPOS = [
    ("buyy", "buy"),
    ("byu", "buy"),
    ("bui", "buy"),
    ("purchse", "buy"),
    ("purchace", "buy"),
    ("sel", "sell"),
    ("seel", "sell"),
    ("sell1", "sell"),
    ("shaers", "shares"),
    ("shres", "shares"),
    ("shars", "shares"),
    ("sahres", "shares"),
    ("dolars", "dollars"),
    ("dollers", "dollars"),
    ("doller", "dollars"),
    ("hedg", "hedge"),
    ("analyse", "analyze"),
    ("analize", "analyze"),
    ("teh", "the"),
]

# Punctuation is glued to the word before it, except a leading decimal point (".5").
DETACHED_PUNCTUATION_RE = re.compile(r"\s+([,.!?])(?!\d)")

FRACTION_PHRASES = [
    (r"\bthree\s+quarters(?:\s+of)?(?:\s+a)?\b", "0.75"),
    (r"\b(?:a\s+)?half(?:\s+of)?\s+a\b", "0.5"),
    (r"\b(?:a\s+)?quarter(?:\s+of)?\s+a\b", "0.25"),
]


class InputNormalizer:
    """
    Ordered, idempotent text pipeline.

    Steps:
        1. whitespace, detached punctuation and case folding
        2. contraction expansion
        3. action synonyms (purchase -> buy, get rid of -> sell)
        4. quantity synonyms (stocks -> shares)
        5. spelled-out numbers and fractions (two hundred -> 200, half a -> 0.5)
        6. currency and scale notation ($2.5k -> 2500 dollars)
        7. typo correction
        8. ticker case normalization (company names, cashtags, ticker slots)
    """

    def __init__(self):
        self.action_synonyms = list(lexicon.ACTION_SYNONYMS)
        self.quantity_synonyms = list(lexicon.QUANTITY_SYNONYMS)
        self.typos = list(TYPOS)
        self._counts = {"normalized": 0, "changed": 0}

    def add_action_synonym(self, phrase: str, action: str):
        """Registers an extra phrase for 'buy' or 'sell'. Longer phrases take precedence."""
        if action not in ("buy", "sell"):
            raise ValueError(f"action must be 'buy' or 'sell', got {action!r}")
        self.action_synonyms.append((phrase.lower(), action))
        self.action_synonyms.sort(key=lambda pair: len(pair[0]), reverse=True)

    def add_quantity_synonym(self, phrase: str):
        """Registers an extra phrase meaning 'shares'."""
        self.quantity_synonyms.append((phrase.lower(), "shares"))
        self.quantity_synonyms.sort(key=lambda pair: len(pair[0]), reverse=True)

    def _expand_contractions(self, text: str) -> str:
        text = text.replace("’", "'")
        for short, full in CONTRACTIONS:
            text = re.sub(rf"\b{re.escape(short)}\b", full, text)
        return text

    def _convert_number_words(self, text: str) -> str:
        for pattern, value in FRACTION_PHRASES:
            text = re.sub(pattern, value, text)

        def _replace(match: re.Match) -> str:
            value = lexicon.words_to_number(match.group(0))
            return match.group(0) if value is None else lexicon.format_number(value)

        return lexicon.NUMBER_WORDS_RE.sub(_replace, text)

    def _fix_typos(self, text: str) -> str:
        return lexicon.fold_phrases(text, self.typos)

    def _normalize_tickers(self, text: str) -> str:
        text = lexicon.map_company_names(text)
        return lexicon.uppercase_ticker_slots(text)

    def _clean_punctuation(self, text: str) -> str:
        text = DETACHED_PUNCTUATION_RE.sub(r"\1", text)
        text = re.sub(r"[.!?]+$", "", text)
        return lexicon.collapse_whitespace(text)

    def normalize(self, text: str) -> str:
        """Returns the canonical form of `text`. Empty input yields an empty string."""
        if not text or not text.strip():
            return ""

        result = DETACHED_PUNCTUATION_RE.sub(r"\1", lexicon.collapse_whitespace(text))
        result = lexicon.fold_case(result)
        result = self._expand_contractions(result)
        result = lexicon.fold_phrases(result, self.action_synonyms)
        result = lexicon.fold_phrases(result, self.quantity_synonyms)
        result = self._convert_number_words(result)
        result = lexicon.normalize_money(result)
        result = self._fix_typos(result)
        result = self._normalize_tickers(result)
        result = self._clean_punctuation(result)

        self._counts["normalized"] += 1
        if result != text:
            self._counts["changed"] += 1
            logger.debug(f"Normalized input: '{text}' -> '{result}'")
        return result

    def extract_tickers(self, text: str) -> list[str]:
        """Likely tickers in `text`, after normalization."""
        return lexicon.extract_tickers(self.normalize(text))

    def stats(self) -> dict:
        return {
            **self._counts,
            "action_synonyms": len(self.action_synonyms),
            "quantity_synonyms": len(self.quantity_synonyms),
            "typos": len(self.typos),
        }
