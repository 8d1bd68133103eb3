from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parent
sys.path.append(str(ROOT))

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["DATABASE_WRITE_URL"] = "sqlite+pysqlite:///:memory:"

import bizdb  # noqa: E402,F401  registers every model on Base.metadata
from bizdb.database import Base  # noqa: E402
from bizdb.apps.companies import models as company_models  # noqa: E402


@pytest.fixture()
def db_session():
    engine = create_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
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


@pytest.fixture()
def company(db_session):
    company = company_models.Company(name="Acme Ltda", slug="acme")
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture()
def no_backoff(monkeypatch):
    from bizdb import transactions

    monkeypatch.setattr(transactions, "BASE_BACKOFF_MS", 0)
