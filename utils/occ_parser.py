"""
OCC Symbol Codec

Parses OCC-format option symbols into underlying, expiry, option type and
strike, and builds symbols back from those parts.
Format: O:{UNDERLYING}{YYMMDD}{C/P}{STRIKE x 1000, 8 digits}
Example: O:AAPL250117C00150000 <-> AAPL, 2025-01-17, call, $150.00
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union

# Matches: optional "O:" prefix, letters (underlying), 6 digits (date), C/P, 8 digits (strike)
OCC_PATTERN = re.compile(r'^(?:O:)?([A-Z]+)(\d{6})([CP])(\d{8})$')

OCC_PREFIX = "O:"
MAX_ENCODED_STRIKE = 99_999_999


class OCCParseError(ValueError):
    """Raised when a symbol or its parts do not form a valid OCC contract."""


@dataclass(frozen=True)
class ParsedOption:
    """Decoded OCC option symbol."""
    underlying: str
    expiry: date
    option_type: str  # 'call' or 'put'
    strike: float
    raw_symbol: str

    @property
    def is_call(self) -> bool:
        return self.option_type == 'call'

    @property
    def is_put(self) -> bool:
        return self.option_type == 'put'

    def to_symbol(self, prefix: bool = True) -> str:
        return encode(self.underlying, self.expiry, self.option_type, self.strike, prefix=prefix)


def decode(symbol: str) -> ParsedOption:
    """
    Decode an OCC option symbol.

    Args:
        symbol: OCC format symbol (e.g., "O:AAPL250117C00150000")

    Returns:
        ParsedOption

    Raises:
        OCCParseError: symbol is empty, malformed, or names an impossible date

    Examples:
        >>> decode("O:A260620P00025000").strike
        25.0
        >>> decode("BRKB250321C00450000").underlying
        'BRKB'
    """
    if not symbol or not isinstance(symbol, str):
        raise OCCParseError(f"Empty or non-string symbol: {symbol!r}")

    match = OCC_PATTERN.match(symbol.upper())
    if not match:
        raise OCCParseError(f"Not an OCC symbol: {symbol!r}")

    underlying, date_str, right_char, strike_str = match.groups()

    try:
        expiry = date(2000 + int(date_str[:2]), int(date_str[2:4]), int(date_str[4:6]))
    except ValueError as e:
        raise OCCParseError(f"Invalid expiry in {symbol!r}: {e}") from e

    return ParsedOption(
        underlying=underlying,
        expiry=expiry,
        option_type='call' if right_char == 'C' else 'put',
        strike=int(strike_str) / 1000.0,
        raw_symbol=symbol,
    )


def encode(
    underlying: str,
    expiry: Union[date, str],
    option_type: str,
    strike: float,
    prefix: bool = True,
) -> str:
    """
    Build an OCC option symbol.

    Args:
        underlying: Ticker (letters only)
        expiry: Expiration as a date or a YYMMDD string
        option_type: 'call'/'put' or 'C'/'P'
        strike: Strike price in dollars
        prefix: Prepend the Polygon "O:" prefix

    Returns:
        Symbol such as "O:SPY241025C00425000"
    """
    if not underlying or not underlying.isalpha():
        raise OCCParseError(f"Invalid underlying: {underlying!r}")

    if isinstance(expiry, (date, datetime)):
        date_str = expiry.strftime("%y%m%d")
    elif isinstance(expiry, str) and len(expiry) == 6 and expiry.isdigit():
        date_str = expiry
    else:
        raise OCCParseError(f"Invalid expiry: {expiry!r}")

    kind = (option_type or "").lower()
    if kind in ('call', 'c'):
        right_char = 'C'
    elif kind in ('put', 'p'):
        right_char = 'P'
    else:
        raise OCCParseError(f"Invalid option type: {option_type!r}")

    strike_int = int(round(strike * 1000))
    if strike_int < 0 or strike_int > MAX_ENCODED_STRIKE:
        raise OCCParseError(f"Strike out of range: {strike}")

    body = f"{underlying.upper()}{date_str}{right_char}{strike_int:08d}"
    return f"{OCC_PREFIX}{body}" if prefix else body


def parse_occ_symbol(symbol: str) -> Optional[ParsedOption]:
    """Decode a symbol, returning None instead of raising."""
    try:
        return decode(symbol)
    except OCCParseError:
        return None


def extract_underlying(symbol: str) -> Optional[str]:
    """
    Extract just the underlying symbol (fastest path).
    Use when you only need the underlying ticker.
    """
    if not symbol:
        return None

    s = symbol[2:] if symbol.startswith(OCC_PREFIX) else symbol

    i = 0
    while i < len(s) and s[i].isalpha():
        i += 1

    return s[:i].upper() if i > 0 else None


def is_valid_occ_symbol(symbol: str) -> bool:
    """Check if symbol is valid OCC format."""
    return parse_occ_symbol(symbol) is not None


def group_by_underlying(symbols: list[str]) -> dict[str, list[str]]:
    """
    Group symbols by their underlying ticker.

    Args:
        symbols: List of OCC symbols

    Returns:
        Dict mapping underlying to list of option symbols
    """
    groups = {}
    for sym in symbols:
        underlying = extract_underlying(sym)
        if underlying:
            groups.setdefault(underlying, []).append(sym)
    return groups


if __name__ == "__main__":
    test_symbols = [
        "O:AAPL250117C00150000",
        "O:A260620P00025000",
        "O:BRKB250321C00450000",
        "O:SPY250231P00400000",
        "INVALID",
        "",
    ]

    print("OCC Codec Tests")
    print("=" * 60)

    for sym in test_symbols:
        try:
            result = decode(sym)
            print(f"{sym} -> {result.underlying} {result.expiry} {result.option_type} ${result.strike}"
                  f" -> {result.to_symbol()}")
        except OCCParseError as e:
            print(f"{sym!r} -> INVALID ({e})")
