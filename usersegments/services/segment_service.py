# services/segment_service.py
import logging
import math
from typing import List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from usersegments.core.db import unit_of_work
from usersegments.core.durations import Clock, utcnow
from usersegments.core.exceptions import (
    ConflictException,
    SegmentNotFoundException,
    ValidationException,
)
from usersegments.models.orm.membership import Operation
from usersegments.repositories.membership_repo import MembershipChange, MembershipLedger
from usersegments.repositories.segment_repo import SegmentRepository
from usersegments.repositories.user_repo import UserRepository

logger = logging.getLogger(__name__)


def _validate_segment_name(name: str) -> None:
    if not name or not name.strip():
        raise ValidationException("Segment name must not be empty")
    if len(name) > 255:
        raise ValidationException("Segment name must be at most 255 characters")


class SegmentService:
    def __init__(self, db: Session, clock: Clock = utcnow):
        self.db = db
        self.segment_repo = SegmentRepository(db)
        self.user_repo = UserRepository(db)
        self.ledger = MembershipLedger(db)
        self.clock = clock

    def create_segment(self, name: str) -> None:
        _validate_segment_name(name)

        with unit_of_work(self.db):
            self._insert_segment(name)

        logger.info(f"Created segment '{name}'")

    def _insert_segment(self, name: str, amount=None) -> None:
        if self.segment_repo.get_segment(name) is not None:
            raise ConflictException(f"Segment '{name}' already exists")
        self.segment_repo.create_segment(name, amount=amount)

    def create_auto_segment(self, name: str, percentage: float) -> int:
        """
        Creates a segment and fills it with a random ``percentage`` of all users.

        The population is counted and sampled inside the same transaction that
        writes the segment and its memberships. Returns the number of users
        assigned.
        """
        _validate_segment_name(name)
        if percentage is None or math.isnan(percentage) or not 0 <= percentage <= 100:
            raise ValidationException(
                f"Percentage must be between 0 and 100, got {percentage}"
            )

        with unit_of_work(self.db):
            now = self.clock()
            self._insert_segment(name, amount=percentage)

            total_users = self._count_users()
            sample_size = math.floor(total_users * percentage / 100)
            user_ids = self.user_repo.sample_user_ids(sample_size)

            self.ledger.apply(
                [MembershipChange(user_id, name, Operation.ADD) for user_id in user_ids],
                now,
            )

        logger.info(
            f"Created auto segment '{name}' with {len(user_ids)} of {total_users} users "
            f"({percentage}%)"
        )
        return len(user_ids)

    def _count_users(self) -> int:
        """
        Population size for cohort assignment.

        A failed count is treated as zero users, which yields an empty segment
        instead of an error. The savepoint keeps the outer transaction usable.
        """
        try:
            with self.db.begin_nested():
                return self.user_repo.count_users()
        except SQLAlchemyError:
            logger.warning(
                "Failed to count users for cohort assignment, assuming 0",
                exc_info=True,
            )
            return 0

    def delete_segment(self, name: str) -> None:
        """Deletes a segment, logging a delete for each of its members."""
        with unit_of_work(self.db):
            if self.segment_repo.get_segment(name) is None:
                raise SegmentNotFoundException(name)

            member_ids = self.ledger.purge_segment(name, self.clock())
            self.segment_repo.delete_segment(name)

        logger.info(f"Deleted segment '{name}' and {len(member_ids)} memberships")

    def get_segments(self) -> List[str]:
        with unit_of_work(self.db):
            return self.segment_repo.list_segment_names()
