"""
Circulation models for the library circulation service.

These models represent the circulation of books:
- Transaction: a loan, from checkout until the copy comes back (or doesn't)
- Reservation: a member's place in a book's hold queue

They also carry the two state machines. The engine consults them before every
status change; nothing else writes a status.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ..dates import as_datetime, late_days
from .book import BookStatus


class TransactionStatus(str, Enum):
    """Status of a loan."""

    CHECKED_OUT = "CHECKED_OUT"
    OVERDUE = "OVERDUE"
    RETURNED = "RETURNED"
    DAMAGED = "DAMAGED"
    LOST = "LOST"
    CLAIMED_RETURNED = "CLAIMED_RETURNED"


class ReservationStatus(str, Enum):
    """Status of a reservation."""

    PENDING = "PENDING"
    READY_FOR_PICKUP = "READY_FOR_PICKUP"
    FULFILLED = "FULFILLED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class ReturnCondition(str, Enum):
    """Condition of an item at return time."""

    GOOD = "GOOD"
    DAMAGED = "DAMAGED"
    LOST = "LOST"


OPEN_TRANSACTION_STATUSES = frozenset({TransactionStatus.CHECKED_OUT, TransactionStatus.OVERDUE})

ACTIVE_RESERVATION_STATUSES = frozenset(
    {ReservationStatus.PENDING, ReservationStatus.READY_FOR_PICKUP}
)

RESERVATION_TRANSITIONS: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    ReservationStatus.PENDING: frozenset(
        {
            ReservationStatus.READY_FOR_PICKUP,
            ReservationStatus.CANCELLED,
            ReservationStatus.EXPIRED,
        }
    ),
    ReservationStatus.READY_FOR_PICKUP: frozenset(
        {
            ReservationStatus.FULFILLED,
            ReservationStatus.CANCELLED,
            ReservationStatus.EXPIRED,
        }
    ),
    ReservationStatus.FULFILLED: frozenset(),
    ReservationStatus.CANCELLED: frozenset(),
    ReservationStatus.EXPIRED: frozenset(),
}


def is_reservation_transition_allowed(
    current: ReservationStatus, target: ReservationStatus
) -> bool:
    return target in RESERVATION_TRANSITIONS[current]


# (transaction status, book status) reached by each return condition
RETURN_OUTCOMES: dict[ReturnCondition, tuple[TransactionStatus, BookStatus]] = {
    ReturnCondition.GOOD: (TransactionStatus.RETURNED, BookStatus.AVAILABLE),
    ReturnCondition.DAMAGED: (TransactionStatus.DAMAGED, BookStatus.DAMAGED),
    ReturnCondition.LOST: (TransactionStatus.LOST, BookStatus.LOST),
}


class Transaction(BaseModel):
    """
    Represents a loan.

    Created by checkout and closed by return. Closed transactions are kept as
    history and never change again.
    """

    id: str = Field(
        ...,
        description="Unique identifier for the loan",
        pattern=r"^txn_[a-zA-Z0-9]{6,}$",
        examples=["txn_9c2e41ab07d3"],
    )

    book_id: str = Field(..., description="ID of the borrowed book")

    member_id: str = Field(..., description="ID of the borrowing member", min_length=1)

    checkout_date: datetime = Field(..., description="When the book was checked out")

    due_date: datetime = Field(..., description="When the book is due back")

    return_date: datetime | None = Field(
        None,
        description="When the book came back; empty while the loan is open",
    )

    status: TransactionStatus = Field(
        default=TransactionStatus.CHECKED_OUT,
        description="Stored status of the loan",
    )

    fine: Decimal = Field(
        default=Decimal("0.00"),
        description="Fine assessed at return",
        ge=0,
        decimal_places=2,
    )

    return_condition: ReturnCondition | None = Field(
        None,
        description="Condition reported at return",
    )

    notes: str | None = Field(None, max_length=1000)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_TRANSACTION_STATUSES

    def effective_status(self, now: datetime) -> TransactionStatus:
        """Status as of ``now``, deriving OVERDUE from the due date."""
        if self.status == TransactionStatus.CHECKED_OUT and as_datetime(now) > self.due_date:
            return TransactionStatus.OVERDUE
        return self.status

    def days_overdue(self, now: datetime) -> int:
        """Started days past the due date; the same count the late fee uses."""
        if not self.is_open:
            return 0
        return late_days(self.due_date, now)

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": "txn_9c2e41ab07d3",
                "book_id": "book_3f9a1c2d4e5b",
                "member_id": "member_0042",
                "checkout_date": "2024-01-01T10:30:00",
                "due_date": "2024-01-15T10:30:00",
                "status": "CHECKED_OUT",
                "fine": "0.00",
            }
        },
    )


class Reservation(BaseModel):
    """
    Represents a hold on a book.

    Queue order is ``reservation_date`` ascending, then ``sequence`` for
    reservations created in the same instant.
    """

    id: str = Field(
        ...,
        description="Unique identifier for the reservation",
        pattern=r"^reservation_[a-zA-Z0-9]{6,}$",
        examples=["reservation_51d0be7a92c4"],
    )

    book_id: str = Field(..., description="ID of the reserved book")

    member_id: str = Field(..., description="ID of the member holding the reservation")

    reservation_date: datetime = Field(..., description="When the reservation was made")

    expiry_date: datetime = Field(..., description="When the reservation lapses")

    status: ReservationStatus = Field(
        default=ReservationStatus.PENDING,
        description="Current status of the reservation",
    )

    sequence: int = Field(..., description="Creation sequence within the book's queue", ge=1)

    notes: str | None = Field(None, max_length=1000)

    updated_at: datetime | None = None

    queue_position: int | None = Field(
        None,
        description="Position in the queue when the reservation was placed",
        ge=1,
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_RESERVATION_STATUSES

    def is_expired(self, now: datetime) -> bool:
        return self.is_active and self.expiry_date < as_datetime(now)

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": "reservation_51d0be7a92c4",
                "book_id": "book_3f9a1c2d4e5b",
                "member_id": "member_0042",
                "reservation_date": "2024-01-02T09:00:00",
                "expiry_date": "2024-01-09T09:00:00",
                "status": "PENDING",
                "sequence": 1,
            }
        },
    )


class ReturnResult(BaseModel):
    """Outcome of a return: the closed loan and any reservation it promoted."""

    transaction: Transaction
    promoted_reservation: Reservation | None = None


class QueueEntry(BaseModel):
    """One line of a book's reservation queue snapshot."""

    reservation: Reservation
    position: int | None = Field(
        None,
        description="1-based rank among PENDING reservations; empty for the pickup holder",
    )
    estimated_wait_days: int = Field(
        0,
        description="Rough number of days until the book reaches this member",
        ge=0,
    )


class QueueSnapshot(BaseModel):
    """A book's active reservation queue at one point in time."""

    book_id: str
    as_of: datetime
    current_due_date: datetime | None = Field(
        None,
        description="Due date of the open loan, if the book is checked out",
    )
    entries: list[QueueEntry] = Field(default_factory=list)

    @property
    def queue_length(self) -> int:
        return len(self.entries)

    @property
    def holder(self) -> Reservation | None:
        """The READY_FOR_PICKUP reservation, if the book is held."""
        if self.entries and self.entries[0].position is None:
            return self.entries[0].reservation
        return None


class ExpirationOutcome(BaseModel):
    """Per-reservation result of an expiry sweep."""

    reservation_id: str
    outcome: str = Field(..., pattern=r"^(succeeded|skipped|failed)$")
    previous_status: ReservationStatus | None = None
    promoted_reservation_id: str | None = None
    error: str | None = None


class ExpirationReport(BaseModel):
    """Result of ``expire_reservations``."""

    processed_at: datetime
    outcomes: list[ExpirationOutcome] = Field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.outcome == "succeeded")

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.outcome == "failed")

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.outcome == "skipped")
