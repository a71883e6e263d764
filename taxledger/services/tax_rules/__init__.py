"""Tax Rules Module.

Tax-year keyed configuration consumed by every engine.

Sub-modules:
- rate_table: rates, thresholds, bracket tables, deadlines and money rounding
"""
from .rate_table import (
    PIT_BRACKETS_2026,
    WHT_SERVICE_TYPES,
    TaxBracket,
    TaxYearRules,
    get_rules,
    parse_payment_type,
    round_money,
    taxable_base,
    validate_brackets,
)

__all__ = [
    # Constants
    "PIT_BRACKETS_2026",
    "WHT_SERVICE_TYPES",
    # Types
    "TaxBracket",
    "TaxYearRules",
    # Functions
    "get_rules",
    "parse_payment_type",
    "round_money",
    "taxable_base",
    "validate_brackets",
]
