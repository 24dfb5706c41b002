from __future__ import annotations

SUPPORTED_CURRENCIES: frozenset[str] = frozenset(
    {
        "USD",
        "CAD",
        "EUR",
        "GBP",
        "AUD",
        "NZD",
        "JPY",
        "CHF",
        "SGD",
        "HKD",
        "INR",
        "MXN",
        "CNY",
        "SEK",
        "NOK",
        "DKK",
    }
)

_SYMBOLS: dict[str, str] = {
    "$": "USD",
    "US$": "USD",
    "C$": "CAD",
    "CA$": "CAD",
    "A$": "AUD",
    "NZ$": "NZD",
    "S$": "SGD",
    "HK$": "HKD",
    "€": "EUR",
    "£": "GBP",
    "¥": "JPY",
    "₹": "INR",
}


def normalize_currency(value: str | None) -> str | None:
    """Return the ISO-4217 code for ``value`` if it is one we support."""
    if not value:
        return None
    raw = value.strip()
    if raw in _SYMBOLS:
        return _SYMBOLS[raw]
    code = raw.upper()
    if code in SUPPORTED_CURRENCIES:
        return code
    return None
