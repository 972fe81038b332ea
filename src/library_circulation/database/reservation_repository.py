"""
Reservation repository for the library circulation service.

Persistence for hold queues. Queue order for a book is ``reservation_date``
ascending, then ``sequence``. The FIFO promotion rules themselves live in
``circulation.queue``; this module only answers queries and writes rows.
"""

from datetime import datetime

from sqlalchemy import func, select

from ..models.circulation import ACTIVE_RESERVATION_STATUSES, ReservationStatus
from ..models.circulation import Reservation as ReservationModel
from .repository import BaseRepository, generate_id
from .schema import Reservation as ReservationDB


class ReservationRepository(BaseRepository[ReservationDB, ReservationModel]):
    """Repository for reservation rows."""

    @property
    def model_class(self) -> type[ReservationDB]:
        return ReservationDB

    @property
    def response_schema(self) -> type[ReservationModel]:
        return ReservationModel

    def next_sequence(self, book_id: str) -> int:
        query = select(func.max(ReservationDB.sequence)).where(ReservationDB.book_id == book_id)
        return (self.session.execute(query).scalar() or 0) + 1

    def add(
        self,
        book_id: str,
        member_id: str,
        reservation_date: datetime,
        expiry_date: datetime,
        notes: str | None = None,
    ) -> ReservationDB:
        """Append a PENDING reservation to the end of the book's queue."""
        reservation = ReservationDB(
            id=generate_id("reservation"),
            book_id=book_id,
            member_id=member_id,
            reservation_date=reservation_date,
            expiry_date=expiry_date,
            status=ReservationStatus.PENDING,
            sequence=self.next_sequence(book_id),
            notes=notes,
            created_at=reservation_date,
            updated_at=reservation_date,
        )
        self.session.add(reservation)
        self.session.flush()
        return reservation

    def set_status(
        self, reservation: ReservationDB, status: ReservationStatus, now: datetime
    ) -> None:
        reservation.status = status
        reservation.updated_at = now

    def _queue_order(self, query):
        return query.order_by(
            ReservationDB.reservation_date, ReservationDB.sequence, ReservationDB.id
        )

    def pending_rows(self, book_id: str) -> list[ReservationDB]:
        """PENDING reservations of a book in queue order."""
        query = select(ReservationDB).where(
            ReservationDB.book_id == book_id,
            ReservationDB.status == ReservationStatus.PENDING,
        )
        return list(self.session.execute(self._queue_order(query)).scalars().all())

    def ready_row(self, book_id: str) -> ReservationDB | None:
        """The READY_FOR_PICKUP reservation holding a book, if any."""
        query = select(ReservationDB).where(
            ReservationDB.book_id == book_id,
            ReservationDB.status == ReservationStatus.READY_FOR_PICKUP,
        )
        return self.session.execute(query).scalars().first()

    def active_row_for_member(self, book_id: str, member_id: str) -> ReservationDB | None:
        """The member's PENDING or READY_FOR_PICKUP reservation for a book."""
        query = select(ReservationDB).where(
            ReservationDB.book_id == book_id,
            ReservationDB.member_id == member_id,
            ReservationDB.status.in_(ACTIVE_RESERVATION_STATUSES),
        )
        return self.session.execute(query).scalars().first()

    def expired_candidate_ids(self, now: datetime) -> list[str]:
        """IDs of active reservations whose expiry date is before ``now``."""
        query = select(ReservationDB.id).where(
            ReservationDB.status.in_(ACTIVE_RESERVATION_STATUSES),
            ReservationDB.expiry_date < now,
        )
        return list(self.session.execute(self._queue_order(query)).scalars().all())

    def for_member(self, member_id: str) -> list[ReservationModel]:
        """All reservations of a member, newest first."""
        query = (
            select(ReservationDB)
            .where(ReservationDB.member_id == member_id)
            .order_by(ReservationDB.reservation_date.desc(), ReservationDB.id)
        )
        return [self._to_response_model(row) for row in self.session.execute(query).scalars()]

    def count_by_status(self) -> dict[str, int]:
        return self._count_by(ReservationDB.status)
