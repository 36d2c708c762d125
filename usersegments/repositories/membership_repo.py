"""Membership writes and their audit trail.

Every insert or delete of a ``user_segments`` row goes through
:class:`MembershipLedger`, which appends exactly one ``user_segments_log`` row
per change to the same session. Callers own the transaction boundary, so the
membership rows and their log rows commit or roll back together.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import and_, delete
from sqlalchemy.orm import Session

from usersegments.models.orm.membership import MembershipORM, Operation
from usersegments.repositories.operation_log_repo import OperationLogRepository
from usersegments.repositories.segment_repo import SegmentRepository


@dataclass(frozen=True)
class MembershipChange:
    user_id: int
    segment_name: str
    operation: Operation
    expire: Optional[datetime] = None


class MembershipLedger:
    def __init__(self, db: Session):
        self.db = db
        self.log_repo = OperationLogRepository(db)

    def add(
        self,
        user_id: int,
        segment_name: str,
        now: datetime,
        expire: Optional[datetime] = None,
    ) -> None:
        """Insert the membership, or overwrite its expiry if it already exists."""
        db_membership = self.db.get(MembershipORM, (user_id, segment_name))
        if db_membership is None:
            self.db.add(
                MembershipORM(user_id=user_id, segment_name=segment_name, expire=expire)
            )
        else:
            db_membership.expire = expire
        self.db.flush()

        self.log_repo.append(user_id, segment_name, Operation.ADD, now)

    def remove(self, user_id: int, segment_name: str, now: datetime) -> int:
        """
        Delete the membership and log it. The log row is written even when no
        membership existed; returns the number of rows actually deleted.
        """
        result = self.db.execute(
            delete(MembershipORM)
            .where(
                MembershipORM.user_id == user_id,
                MembershipORM.segment_name == segment_name,
            )
            .execution_options(synchronize_session="fetch")
        )

        self.log_repo.append(user_id, segment_name, Operation.DELETE, now)
        return result.rowcount

    def apply(self, changes: Iterable[MembershipChange], now: datetime) -> None:
        """Apply changes strictly in the given order."""
        for change in changes:
            if change.operation is Operation.ADD:
                self.add(change.user_id, change.segment_name, now, expire=change.expire)
            elif change.operation is Operation.DELETE:
                self.remove(change.user_id, change.segment_name, now)
            else:
                raise ValueError(f"Unknown membership operation: {change.operation}")

    def purge_expired(self, now: datetime) -> List[Tuple[int, str]]:
        """
        Remove every membership whose expiry is before ``now``.

        A single ``DELETE ... RETURNING`` both removes the rows and reports
        them, so one delete entry is logged for exactly each removed row.
        """
        is_expired = and_(MembershipORM.expire.is_not(None), MembershipORM.expire < now)

        rows = self.db.execute(
            delete(MembershipORM)
            .where(is_expired)
            .returning(MembershipORM.user_id, MembershipORM.segment_name)
            .execution_options(synchronize_session="fetch")
        ).all()
        expired = sorted((row.user_id, row.segment_name) for row in rows)

        for user_id, segment_name in expired:
            self.log_repo.append(user_id, segment_name, Operation.DELETE, now)

        return expired

    def purge_segment(self, segment_name: str, now: datetime) -> List[int]:
        """
        Log a delete for every current member of a segment that is about to be
        dropped. The rows themselves go with the segment via ON DELETE CASCADE.
        """
        member_ids = SegmentRepository(self.db).get_member_ids(segment_name)
        for user_id in member_ids:
            self.log_repo.append(user_id, segment_name, Operation.DELETE, now)
        return member_ids
