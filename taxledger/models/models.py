from __future__ import annotations

import datetime as dt
from decimal import Decimal

from sqlalchemy import Date, DateTime, Enum, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from taxledger.db.base_class import Base
from taxledger.models.tax_models import EntityKind, PayeeTier, TransactionKind, TransactionStatus


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class TaxableEntity(Base):
    """A business that files taxes.

    Turnover and tiers are never stored here; they are derived per tax year.
    """
    __tablename__ = "taxable_entity"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    kind: Mapped[EntityKind] = mapped_column(
        Enum(EntityKind, native_enum=False, length=20),
        default=EntityKind.INCORPORATED,
        nullable=False,
    )
    tin: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)
    vat_registration_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
    )

    transactions: Mapped[list[TaxTransaction]] = relationship(
        "TaxTransaction",
        back_populates="entity",
        cascade="all, delete-orphan",
    )  # type: ignore

    @property
    def is_vat_registered(self) -> bool:
        return bool(self.vat_registration_number and self.vat_registration_number.strip())


class TaxTransaction(Base):
    """Source-of-truth transaction row.

    ``amount`` is the tax-exclusive base unless ``is_tax_inclusive`` is set, in
    which case VAT is backed out at the rate for the transaction's tax year.
    ``vat_amount`` is output VAT for sales and input VAT for purchases.
    """
    __tablename__ = "tax_transaction"
    __table_args__ = (
        Index("ix_tax_transaction_entity_date", "entity_id", "transaction_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    entity_id: Mapped[int] = mapped_column(ForeignKey("taxable_entity.id"), index=True)
    kind: Mapped[TransactionKind] = mapped_column(Enum(TransactionKind, native_enum=False, length=20))
    reference: Mapped[str | None] = mapped_column(String(60), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2))
    is_tax_inclusive: Mapped[bool] = mapped_column(default=False)
    transaction_date: Mapped[dt.date] = mapped_column(Date)
    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus, native_enum=False, length=20),
        default=TransactionStatus.DRAFT,
    )

    # VAT
    is_vat_exempt: Mapped[bool | None] = mapped_column(nullable=True)  # None = derive from eligibility
    vat_explicit: Mapped[bool] = mapped_column(default=False)  # exemption flag chosen by the user
    vat_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), default=0, nullable=True)
    is_tax_deductible: Mapped[bool] = mapped_column(default=True)

    # Withholding
    wht_payment_type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    wht_explicit: Mapped[bool] = mapped_column(default=False)  # payment type chosen by the user
    wht_non_resident: Mapped[bool] = mapped_column(default=False)
    payee_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    payee_tin: Mapped[str | None] = mapped_column(String(20), nullable=True)
    payee_tier: Mapped[PayeeTier | None] = mapped_column(
        Enum(PayeeTier, native_enum=False, length=20),
        nullable=True,
    )

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )

    entity: Mapped[TaxableEntity] = relationship("TaxableEntity", back_populates="transactions")  # type: ignore

    @property
    def is_settled(self) -> bool:
        return self.status == TransactionStatus.SETTLED

    @property
    def has_withholding(self) -> bool:
        return bool(self.wht_payment_type and self.wht_payment_type.strip())
