from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from usersegments.models.orm.membership import Operation, OperationLogORM


class OperationLogRepository:
    def __init__(self, db: Session):
        """Initializes the repository with a database session."""
        self.db = db

    def append(
        self,
        user_id: int,
        segment_name: str,
        operation: Operation,
        operation_time: datetime,
    ) -> OperationLogORM:
        """Adds one audit row to the current transaction."""
        db_entry = OperationLogORM(
            user_id=user_id,
            segment_name=segment_name,
            operation=operation,
            operation_time=operation_time,
        )
        self.db.add(db_entry)
        self.db.flush()
        return db_entry

    def get_operations(
        self,
        user_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[OperationLogORM]:
        """
        Retrieves a user's log entries in insertion order, optionally limited
        to ``start <= operation_time < end``.
        """
        stmt = select(OperationLogORM).where(OperationLogORM.user_id == user_id)

        if start is not None:
            stmt = stmt.where(OperationLogORM.operation_time >= start)

        if end is not None:
            stmt = stmt.where(OperationLogORM.operation_time < end)

        return list(self.db.scalars(stmt.order_by(OperationLogORM.id)).all())
