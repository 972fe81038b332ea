"""
Reservation queue for the library circulation service.

Each book has one FIFO queue of PENDING reservations, plus at most one
READY_FOR_PICKUP reservation that currently holds the book.

``promote_next`` is the only place a reservation becomes READY_FOR_PICKUP.
Returns, cancellations, expiry and administrative status changes all
reach the queue through it.
"""

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from ..database.reservation_repository import ReservationRepository
from ..database.schema import Reservation as ReservationDB
from ..database.transaction_repository import TransactionRepository
from ..dates import ONE_DAY
from ..errors import ConflictError, NotFoundError
from ..models.circulation import QueueEntry, QueueSnapshot, Reservation, ReservationStatus

DEFAULT_LOAN_DAYS = 14
PROCESSING_DAYS = 1
OVERDUE_WAIT_DAYS = 3


@dataclass(frozen=True)
class Promoted:
    """The reservation moved to READY_FOR_PICKUP."""

    reservation: ReservationDB


@dataclass(frozen=True)
class NoneAvailable:
    """No PENDING reservation was eligible for promotion."""


PromotionOutcome = Promoted | NoneAvailable


class ReservationQueue:
    """FIFO queue operations over a session's reservation rows."""

    def __init__(self, session: Session):
        self.session = session
        self.reservations = ReservationRepository(session)

    def get_queue_position(self, book_id: str, reservation_id: str) -> int:
        """
        1-based rank of a PENDING reservation in its book's queue.

        Raises:
            NotFoundError: If the reservation does not exist for this book
            ConflictError: If the reservation is not PENDING
        """
        reservation = self.reservations.get_row(reservation_id)
        if reservation is None or reservation.book_id != book_id:
            raise NotFoundError("Reservation", reservation_id)
        if reservation.status != ReservationStatus.PENDING:
            raise ConflictError(
                f"Reservation {reservation_id} is not waiting in the queue "
                f"(status: {reservation.status.value})"
            )

        for position, row in enumerate(self.reservations.pending_rows(book_id), start=1):
            if row.id == reservation_id:
                return position
        raise NotFoundError("Reservation", reservation_id)

    def peek_next(
        self,
        book_id: str,
        now: datetime,
        exclude_reservation_id: str | None = None,
    ) -> ReservationDB | None:
        """The reservation ``promote_next`` would pick, without changing it."""
        # Pending writes must be visible to the query (autoflush is off).
        self.session.flush()
        for row in self.reservations.pending_rows(book_id):
            if row.id == exclude_reservation_id:
                continue
            if row.expiry_date > now:
                return row
        return None

    def promote_next(
        self,
        book_id: str,
        now: datetime,
        exclude_reservation_id: str | None = None,
    ) -> PromotionOutcome:
        """
        Move the earliest unexpired PENDING reservation to READY_FOR_PICKUP.

        PENDING reservations already past their expiry date are passed over
        and left for the expiry sweep. The caller owns the book row and
        decides its status from the outcome.
        """
        candidate = self.peek_next(book_id, now, exclude_reservation_id)
        if candidate is None:
            return NoneAvailable()

        self.reservations.set_status(candidate, ReservationStatus.READY_FOR_PICKUP, now)
        return Promoted(candidate)

    def snapshot(
        self,
        book_id: str,
        now: datetime,
        loan_days: int = DEFAULT_LOAN_DAYS,
    ) -> QueueSnapshot:
        """
        The book's active queue with a rough wait estimate per entry.

        The READY_FOR_PICKUP holder (if any) comes first without a position,
        followed by PENDING reservations numbered from 1.

        Wait estimates:
        - the holder, or the head of the queue while the book is on the
          shelf, waits 0 days
        - the head of the queue while the book is out waits until the due
          date plus a processing day, or a flat 3 days once the loan is
          overdue
        - every later entry waits until the due date plus one loan period
          per entry ahead of it
        """
        loan = TransactionRepository(self.session).active_row_for_book(book_id)
        days_until_due = _days_until(loan.due_date, now) if loan is not None else None

        rows = []
        ready = self.reservations.ready_row(book_id)
        if ready is not None:
            rows.append((ready, None))
        rows.extend(
            (row, position)
            for position, row in enumerate(self.reservations.pending_rows(book_id), start=1)
        )

        entries = []
        for index, (row, position) in enumerate(rows):
            if index == 0:
                if position is None or days_until_due is None:
                    wait = 0
                elif days_until_due < 0:
                    wait = OVERDUE_WAIT_DAYS
                else:
                    wait = days_until_due + PROCESSING_DAYS
            else:
                wait = max(0, days_until_due or 0) + index * loan_days
            entries.append(
                QueueEntry(
                    reservation=Reservation.model_validate(row),
                    position=position,
                    estimated_wait_days=wait,
                )
            )

        return QueueSnapshot(
            book_id=book_id,
            as_of=now,
            current_due_date=loan.due_date if loan is not None else None,
            entries=entries,
        )


def _days_until(moment: datetime, now: datetime) -> int:
    """Started days from ``now`` until ``moment``; negative once it has passed."""
    return -((now - moment) // ONE_DAY)
