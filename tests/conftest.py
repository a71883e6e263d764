from __future__ import annotations

import os

os.environ.setdefault("APP_ENV", "test")

import datetime as dt  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from taxledger.core.config import settings  # noqa: E402
from taxledger.db import session as db_session_module  # noqa: E402
from taxledger.db.base_class import Base  # noqa: E402
from taxledger.db.session import SessionLocal  # noqa: E402
from taxledger.models import models as _models  # noqa: E402,F401
from taxledger.models import tax_models as _tax_models  # noqa: E402,F401
from taxledger.models.models import TaxableEntity, TaxTransaction  # noqa: E402
from taxledger.models.tax_models import (  # noqa: E402
    EntityKind,
    TransactionKind,
    TransactionStatus,
)

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")

test_engine = create_engine(
    TEST_DATABASE_URL,
    future=True,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Ensure application code uses the test engine
settings.ENV = "test"  # type: ignore[attr-defined]
db_session_module.engine = test_engine  # type: ignore[assignment]
SessionLocal.configure(bind=test_engine)


@pytest.fixture(autouse=True)
def _reset_database_state():
    """Ensure each test sees a fresh database schema."""
    Base.metadata.drop_all(bind=test_engine)
    Base.metadata.create_all(bind=test_engine)
    yield


@pytest.fixture
def db_session():
    """Provide a database session for tests."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    finally:
        session.close()


@pytest.fixture
def entity_factory(db_session):
    """Factory to create taxable entities."""
    def _create(**overrides) -> TaxableEntity:
        data = {
            "name": "Adaeze Ventures Ltd",
            "kind": EntityKind.INCORPORATED,
            "tin": "12345678-0001",
            "vat_registration_number": None,
        }
        data.update(overrides)
        entity = TaxableEntity(**data)
        db_session.add(entity)
        db_session.commit()
        return entity
    return _create


@pytest.fixture
def txn_factory(db_session):
    """Factory to create transactions; amounts are tax-exclusive unless stated."""
    def _create(entity: TaxableEntity, **overrides) -> TaxTransaction:
        data = {
            "entity_id": entity.id,
            "kind": TransactionKind.SALE,
            "amount": Decimal("100000.00"),
            "transaction_date": dt.date(2026, 3, 15),
            "status": TransactionStatus.SETTLED,
        }
        data.update(overrides)
        txn = TaxTransaction(**data)
        db_session.add(txn)
        db_session.commit()
        return txn
    return _create
