"""
Tests for database schema and session management.

These tests verify:
1. Database tables are created correctly
2. Constraints are enforced
3. Version columns reject stale writes
4. Session scopes commit or roll back as a unit
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from library_circulation.database import Book, Reservation, Transaction
from library_circulation.models.book import BookStatus
from library_circulation.models.circulation import ReservationStatus, TransactionStatus

NOW = datetime(2024, 3, 1, 9, 0)


def make_book(book_id="book_schema0001", **overrides):
    values = {"id": book_id, "title": "Kindred", "status": BookStatus.AVAILABLE}
    values.update(overrides)
    return Book(**values)


def make_reservation(reservation_id, sequence, book_id="book_schema0001"):
    return Reservation(
        id=reservation_id,
        book_id=book_id,
        member_id="member_bob",
        reservation_date=NOW,
        expiry_date=NOW + timedelta(days=7),
        status=ReservationStatus.PENDING,
        sequence=sequence,
    )


class TestDatabaseSchema:
    """Test database schema creation and constraints."""

    def test_tables_created(self, db_manager):
        """Verify all expected tables are created."""
        tables = inspect(db_manager.engine).get_table_names()
        assert set(tables) == {"books", "transactions", "reservations"}

    def test_new_rows_start_at_version_one(self, db_manager):
        with db_manager.session_scope() as session:
            session.add(make_book())

        with db_manager.session_scope() as session:
            assert session.get(Book, "book_schema0001").version == 1

    def test_book_id_format(self, db_manager):
        with pytest.raises(IntegrityError), db_manager.session_scope() as session:
            session.add(make_book(book_id="B-1"))

    def test_fine_cannot_be_negative(self, db_manager):
        with db_manager.session_scope() as session:
            session.add(make_book())

        with pytest.raises(IntegrityError), db_manager.session_scope() as session:
            session.add(
                Transaction(
                    id="txn_schema0001",
                    book_id="book_schema0001",
                    member_id="member_alice",
                    checkout_date=NOW,
                    due_date=NOW + timedelta(days=14),
                    status=TransactionStatus.CHECKED_OUT,
                    fine=Decimal("-1.00"),
                )
            )

    def test_due_date_after_checkout(self, db_manager):
        with db_manager.session_scope() as session:
            session.add(make_book())

        with pytest.raises(IntegrityError), db_manager.session_scope() as session:
            session.add(
                Transaction(
                    id="txn_schema0001",
                    book_id="book_schema0001",
                    member_id="member_alice",
                    checkout_date=NOW,
                    due_date=NOW,
                    status=TransactionStatus.CHECKED_OUT,
                    fine=Decimal("0.00"),
                )
            )

    def test_queue_sequence_is_unique_per_book(self, db_manager):
        with db_manager.session_scope() as session:
            session.add(make_book())
            session.add(make_reservation("reservation_schema01", 1))

        with pytest.raises(IntegrityError), db_manager.session_scope() as session:
            session.add(make_reservation("reservation_schema02", 1))

    def test_reservation_needs_existing_book(self, db_manager):
        with pytest.raises(IntegrityError), db_manager.session_scope() as session:
            session.add(make_reservation("reservation_schema01", 1, book_id="book_missing0001"))


class TestSessionManagement:
    def test_scope_rolls_back_on_error(self, db_manager):
        with pytest.raises(RuntimeError), db_manager.session_scope() as session:
            session.add(make_book())
            session.flush()
            raise RuntimeError("abort")

        with db_manager.session_scope() as session:
            assert session.get(Book, "book_schema0001") is None

    def test_stale_write_is_rejected(self, db_manager):
        with db_manager.session_scope() as session:
            session.add(make_book())

        first = db_manager.create_session()
        second = db_manager.create_session()
        try:
            mine = first.get(Book, "book_schema0001")
            first.commit()
            theirs = second.get(Book, "book_schema0001")
            second.commit()

            mine.status = BookStatus.UNDER_MAINTENANCE
            first.commit()

            theirs.status = BookStatus.LOST
            with pytest.raises(StaleDataError):
                second.commit()
            second.rollback()
        finally:
            first.close()
            second.close()

        with db_manager.session_scope() as session:
            book = session.get(Book, "book_schema0001")
            assert book.status == BookStatus.UNDER_MAINTENANCE
            assert book.version == 2

    def test_verify_connection(self, db_manager):
        assert db_manager.verify_connection() is True
