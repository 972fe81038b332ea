"""
Circulation engine for the library circulation service.

The engine is the only writer of book, loan and reservation statuses. Each
public operation:

1. Opens one database transaction through ``DatabaseManager.session_scope``
2. Locks the affected book row before reading anything that depends on it
3. Checks the preconditions and raises a ``CirculationError`` if they fail
4. Writes every change, then commits them together

Storage contention (a competing writer bumped a version counter, SQLite was
busy, two reservations raced for the same queue sequence) is retried once
with a fresh transaction. A second failure surfaces as ``InternalError``.
"""

import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import TypeVar

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..database.book_repository import BookCreateSchema, BookRepository
from ..database.reporting_repository import CirculationCounts, ReportingRepository
from ..database.reservation_repository import ReservationRepository
from ..database.schema import Book as BookDB
from ..database.schema import Reservation as ReservationDB
from ..database.session import DatabaseManager
from ..database.transaction_repository import TransactionRepository
from ..dates import as_datetime, utcnow
from ..errors import (
    CirculationError,
    ConflictError,
    InternalError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from ..models.book import ADMINISTRATIVE_STATUSES, CIRCULATION_OWNED_STATUSES, Book, BookStatus
from ..models.circulation import (
    ACTIVE_RESERVATION_STATUSES,
    OPEN_TRANSACTION_STATUSES,
    RETURN_OUTCOMES,
    ExpirationOutcome,
    ExpirationReport,
    QueueSnapshot,
    Reservation,
    ReservationStatus,
    ReturnCondition,
    ReturnResult,
    Transaction,
    TransactionStatus,
    is_reservation_transition_allowed,
)
from .fines import FineCalculator
from .membership import MembershipService, OpenMembership
from .queue import Promoted, ReservationQueue

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors caused by a competing transaction rather than by the request itself
TRANSIENT_ERRORS = (StaleDataError, OperationalError, IntegrityError)
MAX_ATTEMPTS = 2

DEFAULT_LOAN_DAYS = 14
DEFAULT_HOLD_DAYS = 7


def _parse_enum(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(field, f"must be one of {allowed}, got {value!r}") from None


class CirculationEngine:
    """
    Orchestrates checkout, return and the reservation lifecycle.

    All collaborators are injected. ``clock`` supplies "now" for every
    operation that does not take it as an argument; tests pass a fixed one.
    """

    def __init__(
        self,
        db: DatabaseManager,
        membership: MembershipService | None = None,
        fine_calculator: FineCalculator | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        default_loan_days: int = DEFAULT_LOAN_DAYS,
        reservation_hold_days: int = DEFAULT_HOLD_DAYS,
    ):
        self.db = db
        self.membership = membership or OpenMembership()
        self.fines = fine_calculator or FineCalculator()
        self.clock = clock
        self.default_loan_days = default_loan_days
        self.reservation_hold_days = reservation_hold_days

    # ------------------------------------------------------------------
    # Transaction handling
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        return as_datetime(self.clock())

    def _run(self, operation: str, work: Callable[[Session], T]) -> T:
        """Run ``work`` in its own transaction, retrying once on contention."""
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                with self.db.session_scope() as session:
                    return work(session)
            except CirculationError:
                raise
            except TRANSIENT_ERRORS as e:
                if attempt < MAX_ATTEMPTS:
                    logger.warning(
                        "%s hit concurrent modification (%s), retrying",
                        operation,
                        type(e).__name__,
                    )
                    continue
                logger.error("%s failed after %d attempts: %s", operation, attempt, e)
                raise InternalError(e) from e
            except SQLAlchemyError as e:
                logger.exception("%s failed with a storage error", operation)
                raise InternalError(e) from e
        raise AssertionError("unreachable")

    def _require_member(self, member_id: str) -> None:
        if not member_id or not member_id.strip():
            raise ValidationError("member_id", "must not be empty")
        if not self.membership.member_exists(member_id):
            raise NotFoundError("Member", member_id)
        if not self.membership.is_eligible(member_id):
            raise ConflictError(f"Member {member_id} is not eligible to borrow or reserve")

    @staticmethod
    def _lock_book(books: BookRepository, book_id: str, now: datetime) -> BookDB:
        book = books.lock(book_id, now)
        if book is None:
            raise NotFoundError("Book", book_id)
        return book

    def _advance_queue(
        self,
        session: Session,
        book: BookDB,
        now: datetime,
        exclude_reservation_id: str | None = None,
    ) -> ReservationDB | None:
        """
        Offer a free book to the next reservation in its queue.

        The book ends up RESERVED for the promoted reservation, or AVAILABLE
        if nobody eligible is waiting.
        """
        outcome = ReservationQueue(session).promote_next(book.id, now, exclude_reservation_id)
        books = BookRepository(session)
        if isinstance(outcome, Promoted):
            books.set_status(book, BookStatus.RESERVED, now)
            logger.info(
                "Book %s now held for reservation %s (member %s)",
                book.id,
                outcome.reservation.id,
                outcome.reservation.member_id,
            )
            return outcome.reservation
        books.set_status(book, BookStatus.AVAILABLE, now)
        return None

    def _finish_reservation(
        self,
        session: Session,
        reservation: ReservationDB,
        book: BookDB,
        target: ReservationStatus,
        now: datetime,
    ) -> ReservationDB | None:
        """
        Move a reservation into a terminal status.

        If it was holding the book, the hold passes down the queue. Returns
        the newly promoted reservation, if any.
        """
        was_holding = (
            reservation.status == ReservationStatus.READY_FOR_PICKUP
            and book.status == BookStatus.RESERVED
        )
        ReservationRepository(session).set_status(reservation, target, now)
        if was_holding and target != ReservationStatus.FULFILLED:
            return self._advance_queue(session, book, now, exclude_reservation_id=reservation.id)
        return None

    def _load_reservation(
        self, session: Session, reservation_id: str, now: datetime
    ) -> tuple[ReservationDB, BookDB]:
        reservations = ReservationRepository(session)
        reservation = reservations.get_row(reservation_id)
        if reservation is None:
            raise NotFoundError("Reservation", reservation_id)
        book = self._lock_book(BookRepository(session), reservation.book_id, now)
        # Re-read under the book lock; the first read may predate it.
        session.refresh(reservation)
        return reservation, book

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def register_book(self, title: str, isbn: str | None = None) -> Book:
        """Add a new AVAILABLE book to the catalog."""
        try:
            book_data = BookCreateSchema(title=title, isbn=isbn)
        except PydanticValidationError as e:
            error = e.errors()[0]
            field = str(error["loc"][0]) if error["loc"] else "book"
            raise ValidationError(field, error["msg"]) from None

        def work(session: Session) -> Book:
            book = BookRepository(session).add(book_data, self._now())
            return Book.model_validate(book)

        book = self._run("register_book", work)
        logger.info("Registered book %s: %s", book.id, book.title)
        return book

    def update_book_status(self, book_id: str, new_status: BookStatus | str) -> Book:
        """
        Administrative status change: maintenance, repair, loss, discard.

        Raises:
            InvalidTransitionError: For circulation-owned targets or a
                discarded book
            ConflictError: While the book is on loan or held for pickup
        """
        target = _parse_enum(BookStatus, new_status, "status")

        def work(session: Session) -> Book:
            now = self._now()
            book = self._lock_book(BookRepository(session), book_id, now)
            current = book.status

            if target not in ADMINISTRATIVE_STATUSES:
                raise InvalidTransitionError(current, target)
            if current == BookStatus.DISCARDED:
                raise InvalidTransitionError(current, target)
            if current in CIRCULATION_OWNED_STATUSES:
                raise ConflictError(
                    f"Book {book_id} is {current.value}; it must come back into the "
                    "library before its status can be changed"
                )

            if target == current:
                return Book.model_validate(book)
            if target == BookStatus.AVAILABLE:
                self._advance_queue(session, book, now)
            else:
                BookRepository(session).set_status(book, target, now)
            session.flush()
            return Book.model_validate(book)

        book = self._run("update_book_status", work)
        logger.info("Book %s status set to %s", book_id, book.status.value)
        return book

    # ------------------------------------------------------------------
    # Loans
    # ------------------------------------------------------------------

    def checkout(
        self,
        book_id: str,
        member_id: str,
        due_date: date | datetime | None = None,
        notes: str | None = None,
    ) -> Transaction:
        """
        Lend a book to a member.

        An AVAILABLE book can go to anyone. A RESERVED book can only go to
        the member holding its READY_FOR_PICKUP reservation, which becomes
        FULFILLED.

        Args:
            book_id: Book to lend
            member_id: Borrowing member
            due_date: Defaults to ``default_loan_days`` from now
            notes: Free text stored on the loan

        Raises:
            NotFoundError: If the book or member does not exist
            ConflictError: If the book cannot be lent to this member
            ValidationError: If the due date is not after the checkout time
        """
        self._require_member(member_id)

        def work(session: Session) -> Transaction:
            now = self._now()
            due = (
                as_datetime(due_date)
                if due_date is not None
                else now + timedelta(days=self.default_loan_days)
            )
            if due <= now:
                raise ValidationError("due_date", "must be after the checkout time")

            books = BookRepository(session)
            ledger = TransactionRepository(session)
            reservations = ReservationRepository(session)
            book = self._lock_book(books, book_id, now)

            pickup = None
            if book.status == BookStatus.RESERVED:
                pickup = reservations.ready_row(book_id)
                if pickup is None or pickup.member_id != member_id:
                    raise ConflictError(f"Book {book_id} is reserved for another member")
            elif book.status != BookStatus.AVAILABLE:
                raise ConflictError(
                    f"Book {book_id} is not available for checkout "
                    f"(status: {book.status.value})"
                )

            open_loan = ledger.active_row_for_book(book_id)
            if open_loan is not None:
                raise ConflictError(f"Book {book_id} already has open loan {open_loan.id}")

            transaction = ledger.add(book_id, member_id, now, due, notes)
            books.set_status(book, BookStatus.CHECKED_OUT, now)
            if pickup is not None:
                reservations.set_status(pickup, ReservationStatus.FULFILLED, now)
            session.flush()
            return Transaction.model_validate(transaction)

        transaction = self._run("checkout", work)
        logger.info(
            "Book %s checked out to %s as %s, due %s",
            book_id,
            member_id,
            transaction.id,
            transaction.due_date.isoformat(),
        )
        return transaction

    def return_item(
        self,
        transaction_id: str,
        condition: ReturnCondition | str = ReturnCondition.GOOD,
        notes: str | None = None,
    ) -> ReturnResult:
        """
        Close an open loan.

        The fine is computed from the due date and the return time. A book
        returned in GOOD condition goes to the next reservation in its
        queue, or back on the shelf. DAMAGED and LOST books leave
        circulation; their queues are left alone.

        Raises:
            NotFoundError: If the transaction does not exist
            ConflictError: If the transaction is already closed
            ValidationError: If the condition is unknown
        """
        condition = _parse_enum(ReturnCondition, condition, "condition")

        def work(session: Session) -> ReturnResult:
            now = self._now()
            ledger = TransactionRepository(session)
            transaction = ledger.get_row(transaction_id)
            if transaction is None:
                raise NotFoundError("Transaction", transaction_id)
            book = self._lock_book(BookRepository(session), transaction.book_id, now)
            session.refresh(transaction)

            if transaction.status not in OPEN_TRANSACTION_STATUSES:
                raise ConflictError(
                    f"Transaction {transaction_id} is already closed "
                    f"(status: {transaction.status.value})"
                )

            fine = self.fines.calculate(transaction.due_date, now, condition)
            transaction_status, book_status = RETURN_OUTCOMES[condition]
            ledger.close(transaction, transaction_status, now, fine, condition, notes)

            promoted = None
            if book_status == BookStatus.AVAILABLE:
                promoted = self._advance_queue(session, book, now)
            else:
                BookRepository(session).set_status(book, book_status, now)
            session.flush()

            return ReturnResult(
                transaction=Transaction.model_validate(transaction),
                promoted_reservation=Reservation.model_validate(promoted) if promoted else None,
            )

        result = self._run("return_item", work)
        logger.info(
            "Transaction %s returned as %s with fine %s",
            transaction_id,
            result.transaction.status.value,
            result.transaction.fine,
        )
        return result

    def mark_overdue(self, now: datetime | None = None) -> list[Transaction]:
        """Persist OVERDUE on every CHECKED_OUT loan past its due date."""

        def work(session: Session) -> list[Transaction]:
            as_of = as_datetime(now) if now is not None else self._now()
            rows = TransactionRepository(session).overdue_rows(as_of)
            for row in rows:
                row.status = TransactionStatus.OVERDUE
                row.updated_at = as_of
            session.flush()
            return [Transaction.model_validate(row) for row in rows]

        marked = self._run("mark_overdue", work)
        if marked:
            logger.info("Marked %d loans overdue", len(marked))
        return marked

    # ------------------------------------------------------------------
    # Reservations
    # ------------------------------------------------------------------

    def reserve(
        self,
        book_id: str,
        member_id: str,
        expiry_date: date | datetime | None = None,
        notes: str | None = None,
    ) -> Reservation:
        """
        Place a member at the end of a book's queue.

        Only books that are on loan or held for someone else can be
        reserved.

        Raises:
            NotFoundError: If the book or member does not exist
            ConflictError: If the book is on the shelf or out of circulation,
                or the member already has it or is already queued for it
            ValidationError: If the expiry date is not in the future
        """
        self._require_member(member_id)

        def work(session: Session) -> Reservation:
            now = self._now()
            expiry = (
                as_datetime(expiry_date)
                if expiry_date is not None
                else now + timedelta(days=self.reservation_hold_days)
            )
            if expiry <= now:
                raise ValidationError("expiry_date", "must be in the future")

            reservations = ReservationRepository(session)
            book = self._lock_book(BookRepository(session), book_id, now)

            if book.status == BookStatus.AVAILABLE:
                raise ConflictError(
                    f"Book {book_id} is available; check it out instead of reserving it"
                )
            if book.status not in CIRCULATION_OWNED_STATUSES:
                raise ConflictError(
                    f"Book {book_id} cannot be reserved (status: {book.status.value})"
                )
            if reservations.active_row_for_member(book_id, member_id) is not None:
                raise ConflictError(
                    f"Member {member_id} already has an active reservation for book {book_id}"
                )
            if TransactionRepository(session).active_row_for_member(book_id, member_id):
                raise ConflictError(f"Member {member_id} already has book {book_id} checked out")

            reservation = reservations.add(book_id, member_id, now, expiry, notes)
            position = ReservationQueue(session).get_queue_position(book_id, reservation.id)
            return Reservation.model_validate(reservation).model_copy(
                update={"queue_position": position}
            )

        reservation = self._run("reserve", work)
        logger.info(
            "Member %s reserved book %s as %s (queue position %d)",
            member_id,
            book_id,
            reservation.id,
            reservation.queue_position,
        )
        return reservation

    def cancel_reservation(self, reservation_id: str) -> Reservation:
        """
        Cancel an active reservation.

        Cancelling the reservation that holds a book passes the hold down the
        queue.

        Raises:
            NotFoundError: If the reservation does not exist
            ConflictError: If it is already FULFILLED, CANCELLED or EXPIRED
        """

        def work(session: Session) -> Reservation:
            now = self._now()
            reservation, book = self._load_reservation(session, reservation_id, now)
            if reservation.status not in ACTIVE_RESERVATION_STATUSES:
                raise ConflictError(
                    f"Reservation {reservation_id} is already {reservation.status.value}"
                )
            self._finish_reservation(session, reservation, book, ReservationStatus.CANCELLED, now)
            session.flush()
            return Reservation.model_validate(reservation)

        reservation = self._run("cancel_reservation", work)
        logger.info("Reservation %s cancelled", reservation_id)
        return reservation

    def update_reservation_status(
        self, reservation_id: str, new_status: ReservationStatus | str
    ) -> Reservation:
        """
        Move a reservation along its state machine.

        - READY_FOR_PICKUP: only for the head of the queue of an AVAILABLE
          book, which becomes RESERVED
        - FULFILLED: only once the member has the book checked out
        - CANCELLED / EXPIRED: passes the hold on if the reservation had it

        Raises:
            NotFoundError: If the reservation does not exist
            InvalidTransitionError: If the state machine forbids the change
            ConflictError: If the book or queue state forbids it
        """
        target = _parse_enum(ReservationStatus, new_status, "status")

        def work(session: Session) -> Reservation:
            now = self._now()
            reservation, book = self._load_reservation(session, reservation_id, now)
            current = reservation.status
            if not is_reservation_transition_allowed(current, target):
                raise InvalidTransitionError(current, target)

            if target == ReservationStatus.READY_FOR_PICKUP:
                if book.status != BookStatus.AVAILABLE:
                    raise ConflictError(
                        f"Book {book.id} is not available (status: {book.status.value})"
                    )
                queue = ReservationQueue(session)
                head = queue.peek_next(book.id, now)
                if head is None or head.id != reservation.id:
                    raise ConflictError(
                        f"Reservation {reservation_id} is not at the head of the queue"
                    )
                self._advance_queue(session, book, now)
            elif target == ReservationStatus.FULFILLED:
                loan = TransactionRepository(session).active_row_for_member(
                    book.id, reservation.member_id
                )
                if loan is None:
                    raise ConflictError(
                        f"Book {book.id} is not checked out to member {reservation.member_id}"
                    )
                self._finish_reservation(session, reservation, book, target, now)
            else:
                self._finish_reservation(session, reservation, book, target, now)

            session.flush()
            return Reservation.model_validate(reservation)

        reservation = self._run("update_reservation_status", work)
        logger.info("Reservation %s moved to %s", reservation_id, reservation.status.value)
        return reservation

    def expire_reservations(self, now: datetime | None = None) -> ExpirationReport:
        """
        Expire every active reservation whose expiry date is before ``now``.

        Each reservation is handled in its own transaction. A reservation
        that changed since the scan is skipped; one that fails is reported
        and the sweep carries on. Running the sweep twice with the same
        ``now`` changes nothing the second time.
        """
        as_of = as_datetime(now) if now is not None else self._now()
        candidate_ids = self._run(
            "expire_reservations.scan",
            lambda session: ReservationRepository(session).expired_candidate_ids(as_of),
        )

        report = ExpirationReport(processed_at=as_of)
        for reservation_id in candidate_ids:
            try:
                outcome = self._run(
                    "expire_reservation",
                    lambda session, rid=reservation_id: self._expire_one(session, rid, as_of),
                )
            except Exception as e:  # noqa: BLE001
                logger.exception("Failed to expire reservation %s", reservation_id)
                outcome = ExpirationOutcome(
                    reservation_id=reservation_id, outcome="failed", error=str(e)
                )
            report.outcomes.append(outcome)

        logger.info(
            "Expiry sweep at %s: %d expired, %d skipped, %d failed",
            as_of.isoformat(),
            report.succeeded,
            report.skipped,
            report.failed,
        )
        return report

    def _expire_one(
        self, session: Session, reservation_id: str, now: datetime
    ) -> ExpirationOutcome:
        reservation, book = self._load_reservation(session, reservation_id, now)
        previous = reservation.status
        if previous not in ACTIVE_RESERVATION_STATUSES or reservation.expiry_date >= now:
            return ExpirationOutcome(
                reservation_id=reservation_id, outcome="skipped", previous_status=previous
            )

        promoted = self._finish_reservation(
            session, reservation, book, ReservationStatus.EXPIRED, now
        )
        session.flush()
        return ExpirationOutcome(
            reservation_id=reservation_id,
            outcome="succeeded",
            previous_status=previous,
            promoted_reservation_id=promoted.id if promoted else None,
        )

    # ------------------------------------------------------------------
    # Read-only queries
    # ------------------------------------------------------------------

    def get_book(self, book_id: str) -> Book:
        book = self._run("get_book", lambda session: BookRepository(session).get_by_id(book_id))
        if book is None:
            raise NotFoundError("Book", book_id)
        return book

    def get_transaction(self, transaction_id: str) -> Transaction:
        transaction = self._run(
            "get_transaction",
            lambda session: TransactionRepository(session).get_by_id(transaction_id),
        )
        if transaction is None:
            raise NotFoundError("Transaction", transaction_id)
        return transaction

    def get_reservation(self, reservation_id: str) -> Reservation:
        reservation = self._run(
            "get_reservation",
            lambda session: ReservationRepository(session).get_by_id(reservation_id),
        )
        if reservation is None:
            raise NotFoundError("Reservation", reservation_id)
        return reservation

    def get_queue_position(self, book_id: str, reservation_id: str) -> int:
        return self._run(
            "get_queue_position",
            lambda session: ReservationQueue(session).get_queue_position(book_id, reservation_id),
        )

    def reservation_queue_snapshot(self, book_id: str) -> QueueSnapshot:
        """The book's active queue with wait estimates; NotFound for an unknown book."""
        now = self._now()

        def work(session: Session) -> QueueSnapshot:
            if BookRepository(session).get_row(book_id) is None:
                raise NotFoundError("Book", book_id)
            return ReportingRepository(session).reservation_queue_snapshot(
                book_id, now, self.default_loan_days
            )

        return self._run("reservation_queue_snapshot", work)

    def count_by_status(self) -> CirculationCounts:
        return self._run(
            "count_by_status", lambda session: ReportingRepository(session).count_by_status()
        )

    def transactions_in_range(self, start: datetime, end: datetime) -> list[Transaction]:
        start, end = as_datetime(start), as_datetime(end)
        if end <= start:
            raise ValidationError("end", "must be after start")
        return self._run(
            "transactions_in_range",
            lambda session: ReportingRepository(session).transactions_in_range(start, end),
        )
