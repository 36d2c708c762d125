# services/user_service.py
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from usersegments.clients.disk import YandexDiskClient
from usersegments.core.db import unit_of_work
from usersegments.core.durations import Clock, parse_duration, utcnow
from usersegments.core.exceptions import (
    ConflictException,
    ReportStorageUnavailableException,
    SegmentNotFoundException,
    UserNotFoundException,
    ValidationException,
)
from usersegments.models.orm.membership import Operation
from usersegments.models.schemas.operation import OperationLogModel
from usersegments.models.schemas.user import AddSegmentModel
from usersegments.repositories.membership_repo import MembershipChange, MembershipLedger
from usersegments.repositories.operation_log_repo import OperationLogRepository
from usersegments.repositories.segment_repo import SegmentRepository
from usersegments.repositories.user_repo import UserRepository

logger = logging.getLogger(__name__)


def parse_year_month(year_month: str) -> Tuple[datetime, datetime]:
    """Return ``[start, end)`` bounds of a ``YYYY-MM`` calendar month."""
    try:
        start = datetime.strptime(year_month, "%Y-%m")
    except (TypeError, ValueError):
        raise ValidationException(f"Invalid month, expected YYYY-MM: {year_month!r}")

    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


class UserService:
    def __init__(
        self,
        db: Session,
        disk_client: Optional[YandexDiskClient] = None,
        clock: Clock = utcnow,
    ):
        """Initializes the service with repositories it needs."""
        self.db = db
        self.user_repo = UserRepository(db)
        self.segment_repo = SegmentRepository(db)
        self.log_repo = OperationLogRepository(db)
        self.ledger = MembershipLedger(db)
        self.disk_client = disk_client
        self.clock = clock

    def create_user(self, user_id: int) -> None:
        if user_id < 1:
            raise ValidationException(f"User id must be a positive integer, got {user_id}")

        with unit_of_work(self.db):
            if self.user_repo.get_user(user_id) is not None:
                raise ConflictException(f"User {user_id} already exists")
            self.user_repo.create_user(user_id)

        logger.info(f"Created user {user_id}")

    def get_user_segments(self, user_id: int) -> List[str]:
        with unit_of_work(self.db):
            if self.user_repo.get_user(user_id) is None:
                raise UserNotFoundException(user_id)
            return self.user_repo.get_user_segments(user_id)

    def update_user_segments(
        self,
        user_id: int,
        add_segments: List[AddSegmentModel],
        remove_segments: List[str],
    ) -> None:
        """
        Adds and removes a user's segments in one all-or-nothing transaction.

        1. Checks the user and every referenced segment exist.
        2. Applies all additions in order, then all removals in order; a
           segment present in both lists ends up removed.
        3. Writes one log entry per addition and per removal, including
           removals of segments the user did not hold.
        """
        with unit_of_work(self.db):
            now = self.clock()

            if self.user_repo.get_user(user_id) is None:
                raise UserNotFoundException(user_id)

            changes: List[MembershipChange] = []
            for segment in add_segments:
                self._require_segment(segment.name)
                expire = None
                if segment.expire:
                    expire = self._expiry_from(now, segment.expire)
                changes.append(
                    MembershipChange(user_id, segment.name, Operation.ADD, expire)
                )

            for segment_name in remove_segments:
                self._require_segment(segment_name)
                changes.append(MembershipChange(user_id, segment_name, Operation.DELETE))

            self.ledger.apply(changes, now)

        logger.info(
            f"Updated segments of user {user_id}: "
            f"added {[s.name for s in add_segments]}, removed {remove_segments}"
        )

    def _expiry_from(self, now: datetime, duration: str) -> datetime:
        try:
            return now + parse_duration(duration)
        except OverflowError:
            raise ValidationException(f"Expiry out of range: {duration!r}")

    def _require_segment(self, segment_name: str) -> None:
        if self.segment_repo.get_segment(segment_name) is None:
            raise SegmentNotFoundException(segment_name)

    def get_user_operations(
        self, user_id: int, year_month: Optional[str] = None
    ) -> List[str]:
        """
        Returns the user's operation history as report lines, oldest first,
        optionally restricted to one calendar month (``YYYY-MM``).
        """
        start = end = None
        if year_month:
            start, end = parse_year_month(year_month)

        with unit_of_work(self.db):
            entries = self.log_repo.get_operations(user_id, start=start, end=end)
            return [
                OperationLogModel.model_validate(entry).to_report_line()
                for entry in entries
            ]

    def build_operations_report(
        self, user_id: int, year_month: Optional[str] = None
    ) -> str:
        """Uploads the user's operation history and returns a download link."""
        if self.disk_client is None:
            raise ReportStorageUnavailableException("Report storage is not configured")

        operations = self.get_user_operations(user_id, year_month)

        if year_month:
            file_name = f"{user_id}_{year_month}.csv"
        else:
            file_name = f"{user_id}.csv"

        return self.disk_client.upload_and_return_download_url(file_name, operations)
