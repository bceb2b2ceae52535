"""
Document numbering - INV-<year>-<seq>, SALE-<year>-<seq>, PO-<year>-<seq>

Each (owner, prefix, year) has one counter row. The increment is a single
UPDATE so concurrent allocations serialize on the row lock instead of reading
the current maximum and adding one.
"""
from datetime import date
from typing import Optional
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backoffice.models import DocumentSequence

logger = logging.getLogger(__name__)


class SequenceService:
    INVOICE = "INV"
    SALE = "SALE"
    PURCHASE = "PO"

    def __init__(self, db: Session):
        self.db = db

    def _counter(self, owner_id: int, prefix: str, year: int):
        return self.db.query(DocumentSequence).filter(
            DocumentSequence.owner_id == owner_id,
            DocumentSequence.prefix == prefix,
            DocumentSequence.year == year
        )

    def next_value(self, owner_id: int, prefix: str, year: int) -> int:
        """Allocate the next value. Rolled back with the caller's transaction."""
        updated = self._counter(owner_id, prefix, year).update(
            {DocumentSequence.last_value: DocumentSequence.last_value + 1},
            synchronize_session=False
        )

        if not updated:
            # First number of the year; a concurrent insert loses on the
            # unique constraint and retries the increment
            savepoint = self.db.begin_nested()
            try:
                self.db.add(DocumentSequence(owner_id=owner_id, prefix=prefix, year=year, last_value=1))
                self.db.flush()
                savepoint.commit()
                value = 1
            except IntegrityError:
                savepoint.rollback()
                logger.debug("Sequence %s/%s created concurrently, retrying", prefix, year)
                return self.next_value(owner_id, prefix, year)
        else:
            value = self._counter(owner_id, prefix, year).with_entities(
                DocumentSequence.last_value
            ).scalar()

        logger.debug("Allocated %s-%s-%s for owner %s", prefix, year, value, owner_id)
        return value

    def current_value(self, owner_id: int, prefix: str, year: int) -> int:
        value = self._counter(owner_id, prefix, year).with_entities(
            DocumentSequence.last_value
        ).scalar()
        return value or 0

    @staticmethod
    def format_number(prefix: str, year: int, value: int) -> str:
        return f"{prefix}-{year}-{value:04d}"

    def next_number(self, owner_id: int, prefix: str, on: Optional[date] = None) -> str:
        year = (on or date.today()).year
        return self.format_number(prefix, year, self.next_value(owner_id, prefix, year))

    def peek_number(self, owner_id: int, prefix: str, on: Optional[date] = None) -> str:
        """The number the next allocation would return; nothing is reserved."""
        year = (on or date.today()).year
        return self.format_number(prefix, year, self.current_value(owner_id, prefix, year) + 1)
