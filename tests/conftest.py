"""Test configuration and fixtures for the library circulation service.

1. Isolated test databases - each test gets its own SQLite file
2. A fixed, advanceable clock - circulation rules depend on "now"
3. A static member registry - known, unknown and suspended members
4. An invariant checker run against the raw tables
"""

from collections.abc import Callable, Generator
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy import func, select

from library_circulation.circulation.engine import CirculationEngine
from library_circulation.circulation.fines import FineCalculator
from library_circulation.circulation.membership import StaticMembership
from library_circulation.config import CirculationConfig, reset_config
from library_circulation.database.schema import Book as BookDB
from library_circulation.database.schema import Reservation as ReservationDB
from library_circulation.database.schema import Transaction as TransactionDB
from library_circulation.database.session import DatabaseManager
from library_circulation.models.book import Book, BookStatus
from library_circulation.models.circulation import (
    OPEN_TRANSACTION_STATUSES,
    ReservationStatus,
)

START = datetime(2024, 1, 1, 10, 0)


class FixedClock:
    """Clock that only moves when a test moves it."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


# === Test Database Fixtures ===


@pytest.fixture
def test_db_path(tmp_path: Path) -> Path:
    """Provide a temporary database path for each test."""
    return tmp_path / "test_circulation.db"


@pytest.fixture
def test_database_url(test_db_path: Path) -> str:
    """Provide a SQLAlchemy database URL for testing."""
    return f"sqlite:///{test_db_path}"


@pytest.fixture
def db_manager(test_database_url: str) -> Generator[DatabaseManager, None, None]:
    """Provide a database manager with the schema created."""
    manager = DatabaseManager(test_database_url)
    manager.init_database()
    yield manager
    manager.close()


@pytest.fixture
def test_db_session(db_manager: DatabaseManager):
    """Provide a transactional session for repository tests."""
    with db_manager.session_scope() as session:
        yield session


# === Engine Fixtures ===


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def membership() -> StaticMembership:
    members = StaticMembership(
        {
            "member_alice": True,
            "member_bob": True,
            "member_carol": True,
            "member_dave": True,
        }
    )
    members.add("member_eve", eligible=False)
    return members


@pytest.fixture
def engine(
    db_manager: DatabaseManager, membership: StaticMembership, clock: FixedClock
) -> CirculationEngine:
    return CirculationEngine(db_manager, membership, FineCalculator(), clock=clock)


@pytest.fixture
def book(engine: CirculationEngine) -> Book:
    """A freshly registered AVAILABLE book."""
    return engine.register_book("The Dispossessed", "978-0-06-105488-4")


@pytest.fixture
def checked_out_book(engine: CirculationEngine, book: Book):
    """A book on loan to member_alice; returns ``(book, transaction)``."""
    transaction = engine.checkout(book.id, "member_alice")
    return book, transaction


# === Invariants ===


@pytest.fixture
def assert_invariants(db_manager: DatabaseManager) -> Callable[[], None]:
    """
    Check the book status invariants directly against the tables.

    - CHECKED_OUT iff exactly one open loan
    - RESERVED iff exactly one READY_FOR_PICKUP reservation
    - never more than one open loan or READY reservation per book
    """

    def check() -> None:
        with db_manager.session_scope() as session:
            for book in session.execute(select(BookDB)).scalars():
                open_loans = session.execute(
                    select(func.count())
                    .select_from(TransactionDB)
                    .where(
                        TransactionDB.book_id == book.id,
                        TransactionDB.status.in_(OPEN_TRANSACTION_STATUSES),
                    )
                ).scalar()
                ready = session.execute(
                    select(func.count())
                    .select_from(ReservationDB)
                    .where(
                        ReservationDB.book_id == book.id,
                        ReservationDB.status == ReservationStatus.READY_FOR_PICKUP,
                    )
                ).scalar()

                assert open_loans <= 1, f"{book.id} has {open_loans} open loans"
                assert ready <= 1, f"{book.id} has {ready} ready reservations"
                assert (book.status == BookStatus.CHECKED_OUT) == (open_loans == 1), book.id
                assert (book.status == BookStatus.RESERVED) == (ready == 1), book.id

    return check


# === Configuration Fixtures ===


@pytest.fixture
def test_config(test_db_path: Path) -> Generator[CirculationConfig, None, None]:
    """Provide a test-specific configuration with an isolated database."""
    reset_config()
    config = CirculationConfig(
        server_name="test-library-circulation",
        database_path=test_db_path,
        debug=True,
    )
    yield config
    reset_config()
