import re

"""
Engine - Trading Lexicon.

Shared vocabulary for every component that reads trading text: the ticker
heuristic, the stop-list it depends on, company-name aliases, synonym tables
and spelled-out number handling. The normalizer, classifier, parser, plugins
and orchestrator all import these helpers so that ticker extraction can never
diverge between them.
"""

SYMBOL_RE = re.compile(r"^[A-Z]{1,5}$")
TICKER_TOKEN_RE = re.compile(r"\b[A-Z]{1,5}\b")
CASHTAG_RE = re.compile(r"\$([A-Za-z]{1,5})\b")
NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")

UNKNOWN_SYMBOL = "UNKNOWN"

# Common English and trading words that look like tickers when upper-cased.
STOP_WORDS = frozenset({
    "A", "I", "AM", "AN", "AS", "AT", "BE", "BY", "DO", "GO", "IF", "IN", "IS", "IT",
    "ME", "MY", "NO", "OF", "OK", "ON", "OR", "SO", "TO", "UP", "US", "WE",
    "ALL", "AND", "ANY", "ARE", "BUT", "CAN", "DAY", "DID", "FOR", "GET", "HAD",
    "HAS", "HER", "HIM", "HIS", "HOW", "ITS", "LET", "MAN", "MAY", "NEW", "NOT",
    "NOW", "ONE", "OUR", "OUT", "PUT", "SAY", "SEE", "SHE", "THE", "TOO", "TWO",
    "USD", "USE", "WAS", "WAY", "WHO", "WHY", "YES", "YET", "YOU", "ETF",
    "ABOUT", "AFTER", "ALSO", "BEEN", "BUY", "CALL", "CASH", "COME", "COULD",
    "DOWN", "DROP", "EACH", "EVERY", "FIRST", "FROM", "GIVE", "GOOD", "HALF",
    "HAVE", "HEDGE", "HERE", "HOLD", "INTO", "JUST", "KNOW", "LIKE", "LIMIT",
    "LONG", "MAKE", "MANY", "MORE", "MOST", "MUCH", "ONLY", "OTHER", "OVER",
    "PRICE", "QUOTE", "RISK", "SELL", "SHARE", "SHORT", "SHOW", "SOME", "STOCK",
    "SUCH", "TAKE", "THAN", "THAT", "THEM", "THEN", "THESE", "THEY", "THIS",
    "THOSE", "TIME", "TODAY", "TRADE", "UNDER", "UNTIL", "VERY", "WANT", "WELL",
    "WERE", "WHAT", "WHEN", "WHICH", "WILL", "WITH", "WORTH", "WOULD", "YOUR",
    "ABOVE", "BELOW", "AGAIN", "ENTRY", "EXIT", "ORDER", "PLEASE",
})

COMPANY_TICKERS = {
    "bank of america": "BAC",
    "coca cola": "KO",
    "jp morgan": "JPM",
    "jpmorgan": "JPM",
    "apple": "AAPL",
    "microsoft": "MSFT",
    "google": "GOOGL",
    "alphabet": "GOOGL",
    "amazon": "AMZN",
    "tesla": "TSLA",
    "facebook": "META",
    "netflix": "NFLX",
    "nvidia": "NVDA",
    "intel": "INTC",
    "disney": "DIS",
    "walmart": "WMT",
    "pepsi": "PEP",
    "mastercard": "MA",
    "lululemon": "LULU",
}

# Ordered: multi-word phrases come before the single words they contain.
ACTION_SYNONYMS = [
    ("get rid of", "sell"),
    ("pick up", "buy"),
    ("invest in", "buy"),
    ("purchase", "buy"),
    ("acquire", "buy"),
    ("grab", "buy"),
    ("dispose of", "sell"),
    ("dispose", "sell"),
    ("liquidate", "sell"),
    ("dump", "sell"),
    ("unload", "sell"),
]

QUANTITY_SYNONYMS = [
    ("stocks", "shares"),
    ("stock", "shares"),
    ("equities", "shares"),
    ("units", "shares"),
    ("unit", "shares"),
    ("positions", "shares"),
    ("position", "shares"),
]

CURRENCY_SYNONYMS = [
    ("dollar", "dollars"),
    ("bucks", "dollars"),
    ("buck", "dollars"),
    ("usd", "dollars"),
]

ACTION_VERBS = ("buy", "sell", "analyze", "hedge", "recommend", "compare")

# Words after which a short lowercase token is read as a ticker.
TICKER_SLOT_WORDS = frozenset({
    "of", "in", "on", "for", "buy", "sell", "shares", "share", "dollars",
    "my", "all", "hedge", "analyze", "short", "quote", "price",
})

ONES = {
    "zero": 0, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11, "twelve": 12,
    "thirteen": 13, "fourteen": 14, "fifteen": 15, "sixteen": 16,
    "seventeen": 17, "eighteen": 18, "nineteen": 19,
}
TENS = {
    "twenty": 20, "thirty": 30, "forty": 40, "fifty": 50, "sixty": 60,
    "seventy": 70, "eighty": 80, "ninety": 90,
}
SCALES = {"hundred": 100, "thousand": 1000, "million": 1000000, "billion": 1000000000}
SUFFIX_SCALES = {"k": 1000, "m": 1000000, "b": 1000000000}
FRACTIONS = {"half": 0.5, "quarter": 0.25}
NUMBER_WORDS = frozenset(ONES) | frozenset(TENS) | frozenset(SCALES) | frozenset(FRACTIONS)

_NUMBER_WORD = "|".join(sorted(list(ONES) + list(TENS) + list(SCALES), key=len, reverse=True))
NUMBER_WORDS_PATTERN = rf"(?:a\s+)?(?:{_NUMBER_WORD})(?:\s+(?:and\s+)?(?:{_NUMBER_WORD}))*"
NUMBER_WORDS_RE = re.compile(rf"\b{NUMBER_WORDS_PATTERN}\b")


def is_valid_symbol(symbol) -> bool:
    """True when `symbol` is 1-5 uppercase ASCII letters."""
    return isinstance(symbol, str) and bool(SYMBOL_RE.match(symbol))


def is_likely_ticker(token: str) -> bool:
    """Ticker heuristic: an uppercase 1-5 letter token outside the stop-list."""
    return bool(SYMBOL_RE.match(token)) and token not in STOP_WORDS


def extract_tickers(text: str) -> list[str]:
    """Returns likely tickers in order of first appearance, without duplicates."""
    found: list[str] = []
    for match in CASHTAG_RE.finditer(text or ""):
        symbol = match.group(1).upper()
        if is_likely_ticker(symbol) and symbol not in found:
            found.append(symbol)
    for token in TICKER_TOKEN_RE.findall(text or ""):
        if is_likely_ticker(token) and token not in found:
            found.append(token)
    return found


def format_number(value: float) -> str:
    """Renders 2500.0 as '2500' and 0.5 as '0.5'."""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.6f}".rstrip("0").rstrip(".")


def fold_phrases(text: str, table: list[tuple[str, str]]) -> str:
    """Replaces whole-word phrases using an ordered (phrase, replacement) table."""
    for phrase, replacement in table:
        text = re.sub(rf"\b{re.escape(phrase)}\b", replacement, text, flags=re.IGNORECASE)
    return text


def collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def fold_case(text: str) -> str:
    """Lowercases every token except tokens that already look like tickers."""
    def _fold(match: re.Match) -> str:
        token = match.group(0)
        return token if is_likely_ticker(token) else token.lower()

    return re.sub(r"[A-Za-z]+", _fold, text)


def words_to_number(phrase: str) -> float | None:
    """
    Converts a spelled-out quantity ("two hundred fifty", "a thousand") to a number.

    Returns None when the phrase contains anything that is not a number word.
    """
    tokens = [t for t in phrase.lower().split() if t != "and"]
    if tokens and tokens[0] == "a":
        if len(tokens) < 2 or tokens[1] not in SCALES:
            return None
        tokens[0] = "one"
    if not tokens:
        return None

    total = 0
    current = 0
    for token in tokens:
        if token in ONES:
            current += ONES[token]
        elif token in TENS:
            current += TENS[token]
        elif token == "hundred":
            current = max(current, 1) * 100
        elif token in SCALES:
            total += max(current, 1) * SCALES[token]
            current = 0
        else:
            return None
    return float(total + current)


def normalize_money(text: str) -> str:
    """
    Canonical money phrasing: '$2.5k' -> '2500 dollars', '1,000' -> '1000',
    '500 bucks' -> '500 dollars', '3 thousand' -> '3000'.
    """
    # Thousands separators
    previous = None
    while previous != text:
        previous = text
        text = re.sub(r"(\d),(\d{3})(?!\d)", r"\1\2", text)

    text = fold_phrases(text, CURRENCY_SYNONYMS)

    # Suffix scales glued to a number: 2.5k, 3m
    def _suffix(match: re.Match) -> str:
        return format_number(float(match.group(1)) * SUFFIX_SCALES[match.group(2).lower()])

    text = re.sub(r"(\d+(?:\.\d+)?)([kmbKMB])\b", _suffix, text)

    # Digit followed by a scale word: 3 thousand
    def _scale_word(match: re.Match) -> str:
        return format_number(float(match.group(1)) * SCALES[match.group(2).lower()])

    text = re.sub(r"(\d+(?:\.\d+)?)\s+(thousand|million|billion)\b", _scale_word, text, flags=re.IGNORECASE)

    # Dollar sign before a number becomes a trailing 'dollars'
    text = re.sub(r"\$\s*(\d+(?:\.\d+)?)(?:\s+dollars)?", r"\1 dollars", text)

    # '500 dollars worth of' and '500 worth of' read the same
    text = re.sub(r"(\d+(?:\.\d+)?)\s+worth\s+of\b", r"\1 dollars worth of", text)
    return text


def uppercase_ticker_slots(text: str) -> str:
    """
    Upper-cases short lowercase tokens that sit where a ticker is expected
    ("buy 10 shares of aapl"), and cashtags ("$msft").
    """
    text = CASHTAG_RE.sub(
        lambda m: m.group(1).upper() if is_likely_ticker(m.group(1).upper()) else m.group(0),
        text,
    )

    tokens = text.split(" ")
    for i, token in enumerate(tokens):
        match = re.fullmatch(r"([a-z]{1,5})([.,!?]?)", token)
        if not match or i == 0 or match.group(1) in NUMBER_WORDS:
            continue
        candidate = match.group(1).upper()
        if not is_likely_ticker(candidate):
            continue
        previous = tokens[i - 1].rstrip(",")
        after_list = previous in ("and", "&") and i >= 2 and is_likely_ticker(tokens[i - 2].rstrip(","))
        after_comma = tokens[i - 1].endswith(",") and is_likely_ticker(previous)
        if previous in TICKER_SLOT_WORDS or after_list or after_comma:
            tokens[i] = candidate + match.group(2)
    return " ".join(tokens)


def map_company_names(text: str) -> str:
    """Replaces well-known company names with their tickers."""
    for name, ticker in COMPANY_TICKERS.items():
        text = re.sub(rf"\b{re.escape(name)}\b", ticker, text, flags=re.IGNORECASE)
    return text
