import os
import uuid
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from monjapro.db import Base
from monjapro.models.billing import Subscription, SubscriptionPlan, SubscriptionStatus
from monjapro.models.profile import Profile
from tests.mocks import FakeMercadoPagoClient


@pytest.fixture(scope="session")
def engine():
    database_url = os.getenv("TEST_DATABASE_URL")
    if database_url:
        engine = create_engine(database_url)
    else:
        engine = create_engine(
            "sqlite+pysqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

        # Let SQLAlchemy own BEGIN so savepoints work under pysqlite.
        @event.listens_for(engine, "connect")
        def _connect(dbapi_connection, _connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _begin(conn):
            conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)

    return engine


@pytest.fixture()
def db_session(engine):
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autoflush=False,
        autocommit=False,
        join_transaction_mode="create_savepoint",
    )
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture()
def profile(db_session):
    profile = Profile(id=uuid.uuid4(), plan="free", premium=False)
    db_session.add(profile)
    db_session.commit()
    db_session.refresh(profile)
    return profile


@pytest.fixture()
def make_subscription(db_session, profile):
    def _create(plan=SubscriptionPlan.monthly, status=SubscriptionStatus.pending, **kwargs):
        kwargs.setdefault("user_id", profile.id)
        subscription = Subscription(
            plan=plan,
            status=status,
            price=Decimal("29.90") if plan == SubscriptionPlan.monthly else Decimal("239.00"),
            **kwargs,
        )
        db_session.add(subscription)
        db_session.commit()
        db_session.refresh(subscription)
        return subscription

    return _create


@pytest.fixture()
def subscription(make_subscription):
    return make_subscription()


@pytest.fixture()
def mp_client():
    return FakeMercadoPagoClient()


@pytest.fixture()
def stale_snapshot():
    """What a concurrent delivery read before another one committed."""

    def _snapshot(subscription, status, activated_by=None):
        return SimpleNamespace(
            id=subscription.id,
            user_id=subscription.user_id,
            plan=subscription.plan,
            status=status,
            mercadopago_subscription_id=activated_by,
        )

    return _snapshot
