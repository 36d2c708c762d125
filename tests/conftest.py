"""Shared fixtures: an in-memory SQLite database per test."""

import os

import pytest

# Must be set before any usersegments module import
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SWEEPER_ENABLED", "false")
os.environ.setdefault("YANDEX_TOKEN", "test-token")

from datetime import datetime  # noqa: E402

from sqlalchemy import func, select  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from usersegments.core.db import build_engine, create_tables  # noqa: E402
from usersegments.models.orm.membership import MembershipORM, OperationLogORM  # noqa: E402
from usersegments.models.orm.segment import SegmentORM  # noqa: E402
from usersegments.models.orm.user import UserORM  # noqa: E402

T0 = datetime(2026, 3, 14, 12, 0, 0)


class FixedClock:
    """Manually advanced clock for expiry tests."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def engine():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def seed(session_factory):
    """Insert users and segments directly, bypassing the services."""

    def _seed(user_ids=(), segment_names=()):
        with session_factory() as session, session.begin():
            session.add_all([UserORM(id=user_id) for user_id in user_ids])
            session.add_all([SegmentORM(name=name) for name in segment_names])

    return _seed


@pytest.fixture
def store(session_factory):
    """Read-only helpers that inspect the tables from a separate session."""

    class Store:
        def memberships(self, segment_name=None):
            stmt = select(MembershipORM).order_by(
                MembershipORM.user_id, MembershipORM.segment_name
            )
            if segment_name is not None:
                stmt = stmt.where(MembershipORM.segment_name == segment_name)
            with session_factory() as session:
                return [
                    (m.user_id, m.segment_name, m.expire)
                    for m in session.scalars(stmt).all()
                ]

        def log(self, user_id=None):
            stmt = select(OperationLogORM).order_by(OperationLogORM.id)
            if user_id is not None:
                stmt = stmt.where(OperationLogORM.user_id == user_id)
            with session_factory() as session:
                return [
                    (e.user_id, e.segment_name, e.operation.value, e.operation_time)
                    for e in session.scalars(stmt).all()
                ]

        def segment_names(self):
            with session_factory() as session:
                return list(session.scalars(select(SegmentORM.name).order_by(SegmentORM.name)))

        def count(self, model):
            with session_factory() as session:
                return session.scalar(select(func.count()).select_from(model))

    return Store()
