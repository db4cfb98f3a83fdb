from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parent
sys.path.append(str(ROOT))

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["DATABASE_WRITE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key"

from bizdash.database import Base  # noqa: E402
from bizdash.apps.accounts import models as account_models  # noqa: E402
from bizdash.apps.billing import models as billing_models  # noqa: E402


@pytest.fixture()
def db_session():
    # StaticPool keeps one connection so router tests (run in a worker
    # thread by TestClient) see the same in-memory database.
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(
        bind=engine,
        tables=[
            account_models.Organization.__table__,
            account_models.User.__table__,
            billing_models.BillingRecord.__table__,
            billing_models.SubscriptionHistory.__table__,
            billing_models.BillingAuditLog.__table__,
        ],
    )
    TestingSession = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()
