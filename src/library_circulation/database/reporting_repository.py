"""
Read-only circulation reporting.

Counts and listings for dashboards and exports. Nothing here writes; every
query runs inside the caller's session, so a report sees one consistent
snapshot of the three tables.
"""

from datetime import datetime

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..models.circulation import QueueSnapshot, Transaction
from .book_repository import BookRepository
from .reservation_repository import ReservationRepository
from .transaction_repository import TransactionRepository


class CirculationCounts(BaseModel):
    """Row counts per status for each circulation table."""

    books: dict[str, int] = Field(default_factory=dict)
    transactions: dict[str, int] = Field(default_factory=dict)
    reservations: dict[str, int] = Field(default_factory=dict)

    @property
    def total_books(self) -> int:
        return sum(self.books.values())

    @property
    def open_loans(self) -> int:
        return self.transactions.get("CHECKED_OUT", 0) + self.transactions.get("OVERDUE", 0)


class ReportingRepository:
    """Aggregates across the book, loan and reservation repositories."""

    def __init__(self, session: Session):
        self.session = session
        self.books = BookRepository(session)
        self.transactions = TransactionRepository(session)
        self.reservations = ReservationRepository(session)

    def count_by_status(self) -> CirculationCounts:
        return CirculationCounts(
            books=self.books.count_by_status(),
            transactions=self.transactions.count_by_status(),
            reservations=self.reservations.count_by_status(),
        )

    def transactions_in_range(self, start: datetime, end: datetime) -> list[Transaction]:
        """Loans checked out in ``[start, end)``."""
        return self.transactions.in_range(start, end)

    def reservation_queue_snapshot(
        self, book_id: str, now: datetime, loan_days: int = 14
    ) -> QueueSnapshot:
        # Imported here: circulation.queue imports this package.
        from ..circulation.queue import ReservationQueue

        return ReservationQueue(self.session).snapshot(book_id, now, loan_days)
