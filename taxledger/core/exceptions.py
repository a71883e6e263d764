"""Custom exception hierarchy for the tax engine.

Every error carries a stable ``code``, a user-facing ``message``, a ``kind``
(so callers can tell the category apart without isinstance chains) and a
``retryable`` hint.

Error codes follow pattern: [CATEGORY][NUMBER]
- CFG: Configuration errors (300-399) - fatal, never defaulted
- IDN: Identity errors (400-499) - fatal for tax-effect creation
- CMP: Compliance-assertion conflicts (500-599) - rejected with guidance
- DRV: Derived-value errors (600-699) - fatal for single values
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any


class TaxEngineException(Exception):
    """Base exception for all tax engine errors.

    All custom exceptions inherit from this to enable centralized error handling.
    """

    kind: str = "unknown"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ):
        """Initialize exception with user-friendly message and metadata.

        Args:
            message: User-friendly error message
            code: Unique error code (e.g., "CFG300")
            status_code: HTTP status code a transport layer should map this to
            details: Optional additional context
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response format."""
        return {
            "error": {
                "message": self.message,
                "code": self.code,
                "kind": self.kind,
                "retryable": self.retryable,
                "details": self.details,
            }
        }


# ============================================================================
# CONFIGURATION ERRORS (CFG300-399)
# ============================================================================

class ConfigurationError(TaxEngineException):
    """Rate table, threshold or tax-year configuration is missing or invalid."""

    kind = "configuration"

    def __init__(self, message: str, code: str = "CFG300", details: dict[str, Any] | None = None):
        super().__init__(message=message, code=code, status_code=500, details=details)


class UnsupportedTaxYearError(ConfigurationError):
    """Tax year falls outside the configured window or has no rules."""

    def __init__(self, tax_year: int, min_year: int, max_year: int):
        message = (
            f"Tax year {tax_year} is not supported. "
            f"Supported tax years are {min_year} to {max_year}."
        )
        super().__init__(
            message=message,
            code="CFG301",
            details={"tax_year": tax_year, "min_year": min_year, "max_year": max_year},
        )


class MissingRateError(ConfigurationError):
    """A rate or threshold lookup found no configured value."""

    def __init__(self, name: str, tax_year: int, key: str | None = None):
        message = f"No {name} configured for tax year {tax_year}"
        if key:
            message = f"{message} (key: {key})"
        super().__init__(
            message=message,
            code="CFG302",
            details={"name": name, "tax_year": tax_year, "key": key},
        )


class MalformedBracketTableError(ConfigurationError):
    """Bracket table does not tile [0, infinity) without gaps or overlaps."""

    def __init__(self, reason: str, tax_year: int | None = None):
        message = f"Malformed tax bracket table: {reason}"
        if tax_year is not None:
            message = f"{message} (tax year {tax_year})"
        super().__init__(
            message=message,
            code="CFG303",
            details={"reason": reason, "tax_year": tax_year},
        )


class InvalidPeriodError(ConfigurationError):
    """Tax period key is malformed (e.g. month outside 1-12)."""

    def __init__(self, year: int, month: int | None):
        message = f"Invalid tax period: year={year} month={month}. Month must be between 1 and 12."
        super().__init__(
            message=message,
            code="CFG304",
            details={"year": year, "month": month},
        )


# ============================================================================
# IDENTITY ERRORS (IDN400-499)
# ============================================================================

class IdentityError(TaxEngineException):
    """A tax effect cannot be attributed to a party."""

    kind = "identity"


class MissingPayeeIdentityError(IdentityError):
    """Withholding indicated but the beneficiary's tax ID (or tier) is absent."""

    def __init__(self, transaction_id: int | None = None, missing: str = "payee_tin"):
        message = (
            "Withholding tax cannot be recorded without the beneficiary's "
            f"{'tax identification number' if missing == 'payee_tin' else missing.replace('_', ' ')}. "
            "The transaction was saved, but no withholding credit was created."
        )
        super().__init__(
            message=message,
            code="IDN400",
            status_code=422,
            details={"transaction_id": transaction_id, "missing": missing},
        )


class EntityNotFoundError(IdentityError):
    """Taxable entity does not exist."""

    def __init__(self, entity_id: int):
        super().__init__(
            message=f"Taxable entity {entity_id} not found",
            code="IDN401",
            status_code=404,
            details={"entity_id": entity_id},
        )


# ============================================================================
# COMPLIANCE-ASSERTION CONFLICTS (CMP500-599)
# ============================================================================

class ComplianceAssertionError(TaxEngineException):
    """The caller explicitly asserted a choice the classification disallows."""

    kind = "compliance_assertion"


class VATChargeNotAllowedError(ComplianceAssertionError):
    """Entity is not eligible to charge VAT but the transaction asserts it."""

    def __init__(self, annual_turnover: Decimal | None, threshold: Decimal, tax_year: int):
        turnover_text = (
            f"annual turnover of ₦{annual_turnover:,.2f}"
            if annual_turnover is not None
            else "annual turnover"
        )
        message = (
            f"Your business is not eligible to charge VAT: {turnover_text} for {tax_year} "
            f"is below the ₦{threshold:,.2f} registration threshold and no VAT registration "
            "number is on file. Mark the transaction as VAT exempt or add a VAT registration number."
        )
        super().__init__(
            message=message,
            code="CMP500",
            status_code=422,
            details={
                "annual_turnover": None if annual_turnover is None else str(annual_turnover),
                "threshold": str(threshold),
                "tax_year": tax_year,
            },
        )


class InvalidWithholdingSelectionError(ComplianceAssertionError):
    """An explicitly selected withholding type produced no withholding."""

    def __init__(self, payment_type: str, base_amount: Decimal, reason: str):
        message = (
            f"Withholding type '{payment_type}' cannot be applied: {reason}. "
            "Remove the withholding type or correct the amount."
        )
        super().__init__(
            message=message,
            code="CMP501",
            status_code=422,
            details={"payment_type": payment_type, "base_amount": str(base_amount), "reason": reason},
        )


class InvalidRemittanceError(ComplianceAssertionError):
    """A remittance record cannot be accepted as entered."""

    def __init__(self, tax: str, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Cannot record {tax.upper()} remittance: {reason}.",
            code="CMP502",
            status_code=422,
            details={"tax": tax, "reason": reason, **(details or {})},
        )


# ============================================================================
# DERIVED-VALUE ERRORS (DRV600-699)
# ============================================================================

class DerivedValueError(TaxEngineException):
    """A computation produced (or was fed) a value that cannot exist."""

    kind = "derived_value"

    def __init__(self, field: str, value: Any, reason: str = "must be a finite, non-negative amount"):
        super().__init__(
            message=f"Invalid {field}: {value!r} ({reason})",
            code="DRV600",
            status_code=422,
            details={"field": field, "value": str(value), "reason": reason},
        )
