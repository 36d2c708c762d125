import re
from datetime import timedelta

import pytest
from sqlalchemy import event

from usersegments.models.orm.membership import MembershipORM, OperationLogORM
from usersegments.models.schemas.user import AddSegmentModel
from usersegments.repositories.operation_log_repo import OperationLogRepository
from usersegments.services.expiration_service import ExpirationService
from usersegments.services.user_service import UserService

from conftest import T0


@pytest.fixture
def users(db, clock):
    return UserService(db, clock=clock)


@pytest.fixture
def sweeper(db, clock):
    return ExpirationService(db, clock=clock)


def test_sweep_removes_only_expired_memberships(users, sweeper, clock, seed, store):
    seed(user_ids=[1, 2], segment_names=["trial", "forever"])
    users.update_user_segments(
        1, [AddSegmentModel(name="trial", expire="1h"), AddSegmentModel(name="forever")], []
    )
    users.update_user_segments(2, [AddSegmentModel(name="trial", expire="3h")], [])

    clock.now = T0 + timedelta(hours=2)
    removed = sweeper.sweep()

    assert removed == 1
    assert store.memberships() == [
        (1, "forever", None),
        (2, "trial", T0 + timedelta(hours=3)),
    ]
    assert store.log(1)[-1] == (1, "trial", "delete", T0 + timedelta(hours=2))
    assert len(store.log(2)) == 1


def test_sweep_before_expiry_keeps_membership(users, sweeper, clock, seed, store):
    seed(user_ids=[1], segment_names=["trial"])
    users.update_user_segments(1, [AddSegmentModel(name="trial", expire="1h")], [])

    clock.now = T0 + timedelta(minutes=59)

    assert sweeper.sweep() == 0
    assert len(store.memberships()) == 1


def test_sweep_at_exact_expiry_keeps_membership(users, sweeper, clock, seed, store):
    seed(user_ids=[1], segment_names=["trial"])
    users.update_user_segments(1, [AddSegmentModel(name="trial", expire="1h")], [])

    clock.now = T0 + timedelta(hours=1)

    assert sweeper.sweep() == 0


def test_sweep_with_nothing_expired_still_commits(db, sweeper, store):
    commits = []
    event.listen(db, "after_commit", lambda session: commits.append(session))

    assert sweeper.sweep() == 0
    assert commits == [db]
    assert store.count(OperationLogORM) == 0


def test_sweep_many_users(users, sweeper, clock, seed, store):
    seed(user_ids=range(1, 6), segment_names=["promo"])
    for user_id in range(1, 6):
        users.update_user_segments(user_id, [AddSegmentModel(name="promo", expire="10m")], [])

    clock.now = T0 + timedelta(days=1)

    assert sweeper.sweep() == 5
    assert store.count(MembershipORM) == 0
    deletes = [entry for entry in store.log() if entry[2] == "delete"]
    assert sorted(entry[0] for entry in deletes) == [1, 2, 3, 4, 5]


def test_sweep_rolls_back_when_logging_fails(
    users, sweeper, clock, seed, store, monkeypatch
):
    seed(user_ids=[1, 2], segment_names=["promo"])
    users.update_user_segments(1, [AddSegmentModel(name="promo", expire="1m")], [])
    users.update_user_segments(2, [AddSegmentModel(name="promo", expire="1m")], [])
    clock.now = T0 + timedelta(hours=1)

    original_append = OperationLogRepository.append
    calls = []

    def failing_append(self, *args, **kwargs):
        calls.append(args)
        if len(calls) == 2:
            raise RuntimeError("log insert failed")
        return original_append(self, *args, **kwargs)

    monkeypatch.setattr(OperationLogRepository, "append", failing_append)

    with pytest.raises(RuntimeError):
        sweeper.sweep()

    monkeypatch.undo()
    assert len(store.memberships()) == 2
    assert [entry[2] for entry in store.log()] == ["add", "add"]


def test_sweep_deletes_and_reports_in_one_statement(
    users, sweeper, clock, seed, store, engine
):
    seed(user_ids=[1, 2, 3], segment_names=["promo", "trial"])
    users.update_user_segments(1, [AddSegmentModel(name="promo", expire="1m")], [])
    users.update_user_segments(2, [AddSegmentModel(name="trial", expire="1m")], [])
    users.update_user_segments(3, [AddSegmentModel(name="promo", expire="1h")], [])
    clock.now = T0 + timedelta(minutes=30)

    statements = []

    def record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(engine, "before_cursor_execute", record)
    try:
        removed = sweeper.sweep()
    finally:
        event.remove(engine, "before_cursor_execute", record)

    touching_memberships = [
        " ".join(s.split()).upper()
        for s in statements
        if re.search(r"\buser_segments\b", s, re.IGNORECASE)
    ]
    assert len(touching_memberships) == 1
    assert touching_memberships[0].startswith("DELETE FROM USER_SEGMENTS")
    assert "RETURNING" in touching_memberships[0]

    assert removed == 2
    swept = [entry for entry in store.log() if entry[3] == clock.now]
    assert [(entry[0], entry[1], entry[2]) for entry in swept] == [
        (1, "promo", "delete"),
        (2, "trial", "delete"),
    ]
    assert store.memberships() == [(3, "promo", T0 + timedelta(hours=1))]
