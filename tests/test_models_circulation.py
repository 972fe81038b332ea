"""
Tests for the circulation models.

These tests verify that the models:
1. Validate identifiers and amounts
2. Encode the reservation state machine
3. Derive OVERDUE from the due date
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError

from library_circulation.dates import late_days
from library_circulation.models.book import Book, BookStatus
from library_circulation.models.circulation import (
    RETURN_OUTCOMES,
    ExpirationOutcome,
    ExpirationReport,
    Reservation,
    ReservationStatus,
    ReturnCondition,
    Transaction,
    TransactionStatus,
    is_reservation_transition_allowed,
)

CHECKOUT = datetime(2024, 1, 1, 10, 0)


def make_transaction(**overrides) -> Transaction:
    data = {
        "id": "txn_9c2e41ab07d3",
        "book_id": "book_3f9a1c2d4e5b",
        "member_id": "member_alice",
        "checkout_date": CHECKOUT,
        "due_date": CHECKOUT + timedelta(days=14),
    }
    data.update(overrides)
    return Transaction(**data)


class TestBook:
    def test_isbn_hyphens_are_removed(self):
        book = Book(id="book_3f9a1c2d4e5b", title="Kindred", isbn="978-0-8070-8305-8")
        assert book.isbn == "9780807083058"
        assert book.is_available

    def test_invalid_isbn_rejected(self):
        with pytest.raises(ValidationError):
            Book(id="book_3f9a1c2d4e5b", title="Kindred", isbn="12345")

    def test_id_prefix_required(self):
        with pytest.raises(ValidationError):
            Book(id="B-KINDRED01", title="Kindred")

    def test_on_loan(self):
        book = Book(id="book_3f9a1c2d4e5b", title="Kindred", status=BookStatus.CHECKED_OUT)
        assert book.is_on_loan
        assert not book.is_available


class TestTransaction:
    """Test suite for the Transaction model."""

    def test_defaults(self):
        transaction = make_transaction()
        assert transaction.status == TransactionStatus.CHECKED_OUT
        assert transaction.fine == Decimal("0.00")
        assert transaction.return_date is None
        assert transaction.is_open

    def test_id_validation(self):
        with pytest.raises(ValidationError):
            make_transaction(id="checkout_202312150001")

    def test_negative_fine_rejected(self):
        with pytest.raises(ValidationError):
            make_transaction(fine=Decimal("-1.00"))

    def test_effective_status_derives_overdue(self):
        transaction = make_transaction()
        due = transaction.due_date
        assert transaction.effective_status(due) == TransactionStatus.CHECKED_OUT
        assert transaction.effective_status(due + timedelta(seconds=1)) == TransactionStatus.OVERDUE

    def test_closed_transaction_is_never_overdue(self):
        transaction = make_transaction(
            status=TransactionStatus.RETURNED,
            return_date=CHECKOUT + timedelta(days=20),
        )
        later = CHECKOUT + timedelta(days=60)
        assert transaction.effective_status(later) == TransactionStatus.RETURNED
        assert transaction.days_overdue(later) == 0
        assert not transaction.is_open

    def test_days_overdue(self):
        transaction = make_transaction()
        assert transaction.days_overdue(CHECKOUT + timedelta(days=3)) == 0
        assert transaction.days_overdue(CHECKOUT + timedelta(days=17)) == 3

    def test_days_overdue_matches_late_fee_days(self):
        # Due at 10:00, back at 11:00 the next day: one calendar day, two started days
        transaction = make_transaction()
        returned = transaction.due_date + timedelta(hours=25)

        assert transaction.days_overdue(returned) == 2
        assert transaction.days_overdue(returned) == late_days(transaction.due_date, returned)
        assert transaction.days_overdue(transaction.due_date + timedelta(minutes=1)) == 1


class TestReservationStateMachine:
    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (ReservationStatus.PENDING, ReservationStatus.READY_FOR_PICKUP),
            (ReservationStatus.PENDING, ReservationStatus.CANCELLED),
            (ReservationStatus.PENDING, ReservationStatus.EXPIRED),
            (ReservationStatus.READY_FOR_PICKUP, ReservationStatus.FULFILLED),
            (ReservationStatus.READY_FOR_PICKUP, ReservationStatus.CANCELLED),
            (ReservationStatus.READY_FOR_PICKUP, ReservationStatus.EXPIRED),
        ],
    )
    def test_allowed(self, current, target):
        assert is_reservation_transition_allowed(current, target)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (ReservationStatus.PENDING, ReservationStatus.FULFILLED),
            (ReservationStatus.READY_FOR_PICKUP, ReservationStatus.PENDING),
            (ReservationStatus.FULFILLED, ReservationStatus.CANCELLED),
            (ReservationStatus.CANCELLED, ReservationStatus.PENDING),
            (ReservationStatus.EXPIRED, ReservationStatus.READY_FOR_PICKUP),
        ],
    )
    def test_forbidden(self, current, target):
        assert not is_reservation_transition_allowed(current, target)

    def test_reservation_expiry(self):
        reservation = Reservation(
            id="reservation_51d0be7a92c4",
            book_id="book_3f9a1c2d4e5b",
            member_id="member_bob",
            reservation_date=CHECKOUT,
            expiry_date=CHECKOUT + timedelta(days=7),
            sequence=1,
        )
        assert not reservation.is_expired(CHECKOUT + timedelta(days=7))
        assert reservation.is_expired(CHECKOUT + timedelta(days=8))

        cancelled = reservation.model_copy(update={"status": ReservationStatus.CANCELLED})
        assert not cancelled.is_expired(CHECKOUT + timedelta(days=8))


def test_return_outcomes_cover_every_condition():
    assert set(RETURN_OUTCOMES) == set(ReturnCondition)
    assert RETURN_OUTCOMES[ReturnCondition.GOOD] == (
        TransactionStatus.RETURNED,
        BookStatus.AVAILABLE,
    )
    assert RETURN_OUTCOMES[ReturnCondition.LOST] == (TransactionStatus.LOST, BookStatus.LOST)


def test_expiration_report_counts():
    report = ExpirationReport(
        processed_at=CHECKOUT,
        outcomes=[
            ExpirationOutcome(reservation_id="reservation_aaaaaa", outcome="succeeded"),
            ExpirationOutcome(reservation_id="reservation_bbbbbb", outcome="succeeded"),
            ExpirationOutcome(reservation_id="reservation_cccccc", outcome="skipped"),
            ExpirationOutcome(reservation_id="reservation_dddddd", outcome="failed", error="x"),
        ],
    )
    assert (report.succeeded, report.skipped, report.failed) == (2, 1, 1)

    with pytest.raises(ValidationError):
        ExpirationOutcome(reservation_id="reservation_eeeeee", outcome="maybe")
