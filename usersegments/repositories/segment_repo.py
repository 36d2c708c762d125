from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from usersegments.models.orm.membership import MembershipORM
from usersegments.models.orm.segment import SegmentORM


class SegmentRepository:
    def __init__(self, db: Session):
        """Initializes the repository with a database session."""
        self.db = db

    def get_segment(self, name: str) -> Optional[SegmentORM]:
        return self.db.get(SegmentORM, name)

    def create_segment(self, name: str, amount: Optional[float] = None) -> SegmentORM:
        """Inserts a segment row and flushes so a duplicate name fails here."""
        db_segment = SegmentORM(name=name, amount=amount)
        self.db.add(db_segment)
        self.db.flush()
        return db_segment

    def delete_segment(self, name: str) -> int:
        """
        Deletes the segment row. Memberships go with it through the
        ON DELETE CASCADE on user_segments.
        """
        result = self.db.execute(
            delete(SegmentORM)
            .where(SegmentORM.name == name)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    def list_segment_names(self) -> List[str]:
        return list(self.db.scalars(select(SegmentORM.name).order_by(SegmentORM.name)).all())

    def get_member_ids(self, name: str) -> List[int]:
        stmt = (
            select(MembershipORM.user_id)
            .where(MembershipORM.segment_name == name)
            .order_by(MembershipORM.user_id)
        )
        return list(self.db.scalars(stmt).all())
