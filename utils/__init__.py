"""Utils module - OCC symbol codec and expiration calendar."""

from .occ_parser import (
    decode,
    encode,
    parse_occ_symbol,
    extract_underlying,
    ParsedOption,
    OCCParseError,
    is_valid_occ_symbol,
    group_by_underlying,
)
from .expirations import (
    generate_expirations,
    format_expiry,
    is_third_friday,
    is_last_friday,
)

__all__ = [
    'decode',
    'encode',
    'parse_occ_symbol',
    'extract_underlying',
    'ParsedOption',
    'OCCParseError',
    'is_valid_occ_symbol',
    'group_by_underlying',
    'generate_expirations',
    'format_expiry',
    'is_third_friday',
    'is_last_friday',
]
