# services/expiration_service.py
import logging

from sqlalchemy.orm import Session

from usersegments.core.db import unit_of_work
from usersegments.core.durations import Clock, utcnow
from usersegments.repositories.membership_repo import MembershipLedger

logger = logging.getLogger(__name__)


class ExpirationService:
    def __init__(self, db: Session, clock: Clock = utcnow):
        self.db = db
        self.ledger = MembershipLedger(db)
        self.clock = clock

    def sweep(self) -> int:
        """
        Removes every membership whose expiry has passed and logs a delete
        for each one. Always runs one transaction, even when nothing expired.

        Returns the number of memberships removed.
        """
        with unit_of_work(self.db):
            expired = self.ledger.purge_expired(self.clock())

        if expired:
            logger.info(f"Removed {len(expired)} expired memberships")
        return len(expired)
