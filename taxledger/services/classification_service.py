"""
Entity tax classification.

Maps an annual turnover to a tier for each tax concern. Each concern has its
own threshold:
- Consumption tax (VAT) eligibility: turnover >= registration threshold, or registered
- Withholding exemption: turnover <= small-supplier threshold
- Income tax tier: turnover <= small-company threshold is "small"

Classification is read-through. Nothing here is persisted; a profile is
memoized only for the lifetime of one ``EntityClassifier`` instance.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Union

from taxledger.core.exceptions import DerivedValueError
from taxledger.models.models import TaxableEntity
from taxledger.models.tax_models import (
    EntityKind,
    IncomeTaxTier,
    TaxConcern,
    TurnoverBasis,
    VATEligibility,
    WHTExemption,
)
from taxledger.services.stores import TransactionStore
from taxledger.services.tax_rules import get_rules
from taxledger.services.turnover_service import TurnoverCalculator

logger = logging.getLogger(__name__)

Tier = Union[VATEligibility, WHTExemption, IncomeTaxTier]


def _as_turnover(value: Any) -> Decimal:
    try:
        turnover = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise DerivedValueError("turnover", value, "not a number") from exc
    if not turnover.is_finite() or turnover < 0:
        raise DerivedValueError("turnover", value)
    return turnover


class ClassificationEngine:
    """Turnover -> tier, one concern at a time."""

    @staticmethod
    def classify(
        turnover: Any,
        tax_year: int,
        concern: TaxConcern,
        *,
        registered: bool = False,
    ) -> Tier:
        """
        Classify an entity for a single tax concern.

        Args:
            turnover: Annual turnover for ``tax_year`` (non-negative, finite)
            tax_year: Selects the threshold table
            concern: Which tax the tier is for
            registered: Entity holds a VAT registration number (VAT concern only)

        Returns:
            VATEligibility, WHTExemption or IncomeTaxTier depending on ``concern``

        Raises:
            DerivedValueError: Negative or non-finite turnover
            UnsupportedTaxYearError: Year outside the supported window
        """
        amount = _as_turnover(turnover)
        rules = get_rules(tax_year)
        concern = TaxConcern(concern)

        if concern is TaxConcern.CONSUMPTION_TAX_ELIGIBILITY:
            if registered or amount >= rules.vat_registration_threshold:
                return VATEligibility.ELIGIBLE
            return VATEligibility.INELIGIBLE

        if concern is TaxConcern.WITHHOLDING_EXEMPTION:
            if amount <= rules.wht_exemption_threshold:
                return WHTExemption.EXEMPT
            return WHTExemption.LIABLE

        if amount <= rules.cit_small_company_threshold:
            return IncomeTaxTier.SMALL
        return IncomeTaxTier.STANDARD


@dataclass(frozen=True)
class EntityTaxProfile:
    entity_id: int
    entity_kind: EntityKind
    tax_year: int
    annual_turnover: Decimal
    is_vat_registered: bool
    vat_eligibility: VATEligibility
    wht_exemption: WHTExemption
    income_tax_tier: IncomeTaxTier

    @property
    def can_charge_vat(self) -> bool:
        return self.vat_eligibility is VATEligibility.ELIGIBLE

    @property
    def is_small_supplier(self) -> bool:
        return self.wht_exemption is WHTExemption.EXEMPT


class EntityClassifier:
    """Read-through classification of taxable entities.

    Turnover is recomputed from the transaction store on the first lookup for
    each (entity, year) and reused for the rest of this instance's life.
    Create one per request or recompute, never share across them.
    """

    def __init__(self, transactions: TransactionStore):
        self.turnover = TurnoverCalculator(transactions)
        self.engine = ClassificationEngine()
        self._profiles: dict[tuple[int, int], EntityTaxProfile] = {}

    def profile(self, entity: TaxableEntity, tax_year: int) -> EntityTaxProfile:
        key = (entity.id, tax_year)
        cached = self._profiles.get(key)
        if cached is not None:
            return cached

        turnover = self.turnover.annual_turnover(entity.id, tax_year, TurnoverBasis.ACCRUAL)
        registered = entity.is_vat_registered
        profile = EntityTaxProfile(
            entity_id=entity.id,
            entity_kind=EntityKind(entity.kind),
            tax_year=tax_year,
            annual_turnover=turnover,
            is_vat_registered=registered,
            vat_eligibility=self.engine.classify(
                turnover, tax_year, TaxConcern.CONSUMPTION_TAX_ELIGIBILITY, registered=registered
            ),
            wht_exemption=self.engine.classify(turnover, tax_year, TaxConcern.WITHHOLDING_EXEMPTION),
            income_tax_tier=self.engine.classify(turnover, tax_year, TaxConcern.INCOME_TAX_TIER),
        )
        logger.debug(
            f"Classified entity {entity.id} for {tax_year}: turnover={turnover} "
            f"vat={profile.vat_eligibility.value} wht={profile.wht_exemption.value} "
            f"income={profile.income_tax_tier.value}"
        )
        self._profiles[key] = profile
        return profile

    def invalidate(self, entity_id: int | None = None) -> None:
        if entity_id is None:
            self._profiles.clear()
            return
        for key in [k for k in self._profiles if k[0] == entity_id]:
            del self._profiles[key]
