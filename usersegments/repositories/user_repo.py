from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from usersegments.models.orm.membership import MembershipORM
from usersegments.models.orm.user import UserORM


class UserRepository:
    def __init__(self, db: Session):
        """Initializes the repository with a database session."""
        self.db = db

    def get_user(self, user_id: int) -> Optional[UserORM]:
        return self.db.get(UserORM, user_id)

    def create_user(self, user_id: int) -> UserORM:
        """Inserts a user row and flushes so key violations surface immediately."""
        db_user = UserORM(id=user_id)
        self.db.add(db_user)
        self.db.flush()
        return db_user

    def count_users(self) -> int:
        return self.db.scalar(select(func.count()).select_from(UserORM))

    def sample_user_ids(self, limit: int) -> List[int]:
        """
        Picks up to ``limit`` distinct user ids uniformly at random.

        Ordering by random() and taking a prefix is a uniform sample without
        replacement.
        """
        if limit <= 0:
            return []
        stmt = select(UserORM.id).order_by(func.random()).limit(limit)
        return list(self.db.scalars(stmt).all())

    def get_user_segments(self, user_id: int) -> List[str]:
        """Segment names the user currently belongs to, sorted by name."""
        stmt = (
            select(MembershipORM.segment_name)
            .where(MembershipORM.user_id == user_id)
            .order_by(MembershipORM.segment_name)
        )
        return list(self.db.scalars(stmt).all())
