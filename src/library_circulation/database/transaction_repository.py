"""
Transaction repository for the library circulation service.

This is the circulation ledger: one row per loan. Open loans
(CHECKED_OUT or OVERDUE) are what the book status invariant is checked
against; closed loans are history and are only ever read.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select

from ..models.circulation import (
    OPEN_TRANSACTION_STATUSES,
    ReturnCondition,
    TransactionStatus,
)
from ..models.circulation import Transaction as TransactionModel
from .repository import BaseRepository, PaginatedResponse, PaginationParams, generate_id
from .schema import Transaction as TransactionDB


class TransactionRepository(BaseRepository[TransactionDB, TransactionModel]):
    """Repository for loan rows."""

    @property
    def model_class(self) -> type[TransactionDB]:
        return TransactionDB

    @property
    def response_schema(self) -> type[TransactionModel]:
        return TransactionModel

    def add(
        self,
        book_id: str,
        member_id: str,
        checkout_date: datetime,
        due_date: datetime,
        notes: str | None = None,
    ) -> TransactionDB:
        """Insert an open CHECKED_OUT loan."""
        transaction = TransactionDB(
            id=generate_id("txn"),
            book_id=book_id,
            member_id=member_id,
            checkout_date=checkout_date,
            due_date=due_date,
            status=TransactionStatus.CHECKED_OUT,
            fine=Decimal("0.00"),
            notes=notes,
            created_at=checkout_date,
            updated_at=checkout_date,
        )
        self.session.add(transaction)
        self.session.flush()
        return transaction

    def close(
        self,
        transaction: TransactionDB,
        status: TransactionStatus,
        return_date: datetime,
        fine: Decimal,
        condition: ReturnCondition,
        notes: str | None = None,
    ) -> None:
        """Record the return of an open loan."""
        transaction.status = status
        transaction.return_date = return_date
        transaction.fine = fine
        transaction.return_condition = condition
        if notes:
            transaction.notes = f"{transaction.notes}\n{notes}" if transaction.notes else notes
        transaction.updated_at = return_date

    def _open_rows_query(self):
        return select(TransactionDB).where(TransactionDB.status.in_(OPEN_TRANSACTION_STATUSES))

    def active_row_for_book(self, book_id: str) -> TransactionDB | None:
        query = self._open_rows_query().where(TransactionDB.book_id == book_id)
        return self.session.execute(query).scalars().first()

    def active_transaction_for_book(self, book_id: str) -> TransactionModel | None:
        """Get the open loan of a book, if it is on loan."""
        row = self.active_row_for_book(book_id)
        return self._to_response_model(row) if row else None

    def active_row_for_member(self, book_id: str, member_id: str) -> TransactionDB | None:
        """Get the open loan of a book held by one member."""
        query = self._open_rows_query().where(
            TransactionDB.book_id == book_id,
            TransactionDB.member_id == member_id,
        )
        return self.session.execute(query).scalars().first()

    def active_transaction_count_for_member(self, member_id: str) -> int:
        """Count the member's open loans."""
        query = (
            select(func.count())
            .select_from(TransactionDB)
            .where(
                TransactionDB.member_id == member_id,
                TransactionDB.status.in_(OPEN_TRANSACTION_STATUSES),
            )
        )
        return self.session.execute(query).scalar() or 0

    def overdue_rows(self, now: datetime) -> list[TransactionDB]:
        """CHECKED_OUT loans whose due date has passed."""
        query = (
            select(TransactionDB)
            .where(
                TransactionDB.status == TransactionStatus.CHECKED_OUT,
                TransactionDB.due_date < now,
            )
            .order_by(TransactionDB.due_date, TransactionDB.id)
        )
        return list(self.session.execute(query).scalars().all())

    def history_for_member(
        self,
        member_id: str,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResponse[TransactionModel]:
        """All loans of a member, most recent first."""
        query = (
            select(TransactionDB)
            .where(TransactionDB.member_id == member_id)
            .order_by(TransactionDB.checkout_date.desc(), TransactionDB.id)
        )
        return self._paginate(query, pagination)

    def in_range(self, start: datetime, end: datetime) -> list[TransactionModel]:
        """Loans checked out in ``[start, end)``, oldest first."""
        query = (
            select(TransactionDB)
            .where(TransactionDB.checkout_date >= start, TransactionDB.checkout_date < end)
            .order_by(TransactionDB.checkout_date, TransactionDB.id)
        )
        return [self._to_response_model(row) for row in self.session.execute(query).scalars()]

    def count_by_status(self) -> dict[str, int]:
        return self._count_by(TransactionDB.status)
