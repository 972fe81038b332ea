"""
Demo data seeding for the library circulation service.

Generates a catalog with Faker and then simulates several weeks of library
traffic day by day: checkouts, returns in various conditions, reservations,
pickups, cancellations and the nightly expiry and overdue sweeps.

Everything goes through ``CirculationEngine`` with a simulated clock, so the
seeded database satisfies the same invariants as live data.

Usage:
    library-circulation-seed [--database-url URL] [--books N] [--members N] [--days N]
"""

import argparse
import logging
import random
import sys
from datetime import datetime, timedelta

from faker import Faker

from ..circulation.engine import CirculationEngine
from ..circulation.membership import StaticMembership
from ..config import get_config
from ..dates import utcnow
from ..errors import ConflictError
from ..models.book import BookStatus
from ..models.circulation import ReturnCondition
from .book_repository import BookRepository
from .reporting_repository import ReportingRepository
from .repository import PaginationParams
from .session import DatabaseManager

logger = logging.getLogger(__name__)


class SimulatedClock:
    """A clock the seeder moves forward by hand."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


def generate_isbn13(rng: random.Random) -> str:
    """Generate a valid ISBN-13 number."""
    digits = f"978{rng.randint(0, 999_999_999):09d}"
    total = sum(int(digit) * (3 if i % 2 else 1) for i, digit in enumerate(digits))
    return f"{digits}{(10 - total % 10) % 10}"


def generate_title(fake: Faker) -> str:
    patterns = [
        lambda: f"The {fake.word().title()} of {fake.city()}",
        lambda: fake.catch_phrase().title(),
        lambda: f"{fake.first_name()}'s {fake.word().title()}",
        lambda: f"A {fake.color_name()} {fake.word().title()}",
    ]
    return fake.random_element(patterns)()


def _books_in(engine: CirculationEngine, status: BookStatus) -> list:
    with engine.db.session_scope() as session:
        page = BookRepository(session).list_by_status(status, PaginationParams(page_size=100))
        return page.items


def simulate_day(
    engine: CirculationEngine,
    clock: SimulatedClock,
    rng: random.Random,
    members: list[str],
    open_loans: dict[str, str],
) -> None:
    """
    One day of traffic.

    Args:
        open_loans: book_id -> transaction_id, kept up to date
    """
    # Pickups: most members collect their held book
    for book in _books_in(engine, BookStatus.RESERVED):
        holder = engine.reservation_queue_snapshot(book.id).holder
        if holder is None:
            continue
        if rng.random() < 0.6:
            transaction = engine.checkout(book.id, holder.member_id)
            open_loans[book.id] = transaction.id
        elif rng.random() < 0.1:
            engine.cancel_reservation(holder.id)

    # Returns
    for book_id, transaction_id in list(open_loans.items()):
        if rng.random() < 0.15:
            condition = rng.choices(
                [ReturnCondition.GOOD, ReturnCondition.DAMAGED, ReturnCondition.LOST],
                weights=[90, 7, 3],
            )[0]
            engine.return_item(transaction_id, condition)
            del open_loans[book_id]

    # New checkouts
    available = _books_in(engine, BookStatus.AVAILABLE)
    for book in rng.sample(available, k=min(len(available), rng.randint(1, 6))):
        due = clock.now + timedelta(days=rng.choice([7, 14, 14, 14, 21]))
        transaction = engine.checkout(book.id, rng.choice(members), due)
        open_loans[book.id] = transaction.id

    # Reservations on books that are out
    for book_id in rng.sample(sorted(open_loans), k=min(len(open_loans), rng.randint(0, 3))):
        try:
            engine.reserve(book_id, rng.choice(members))
        except ConflictError as e:
            logger.debug("Skipped reservation: %s", e)

    # Maintenance: damaged books come back from repair
    for book in _books_in(engine, BookStatus.DAMAGED):
        if rng.random() < 0.2:
            engine.update_book_status(book.id, BookStatus.AVAILABLE)

    engine.mark_overdue()
    engine.expire_reservations()


def seed_database(
    db: DatabaseManager,
    num_books: int = 200,
    num_members: int = 40,
    days: int = 45,
    seed: int = 42,
) -> dict:
    """
    Populate ``db`` with a catalog and simulated circulation history.

    Returns:
        Status counts per table after seeding
    """
    fake = Faker()
    Faker.seed(seed)
    rng = random.Random(seed)

    members = [f"member_{i:04d}" for i in range(1, num_members + 1)]
    membership = StaticMembership({member_id: True for member_id in members})
    clock = SimulatedClock(utcnow().replace(microsecond=0) - timedelta(days=days + 1))
    engine = CirculationEngine(db, membership, clock=clock)

    logger.info("Registering %d books", num_books)
    for _ in range(num_books):
        engine.register_book(generate_title(fake), generate_isbn13(rng))

    open_loans: dict[str, str] = {}
    for day in range(days):
        clock.advance(timedelta(days=1))
        simulate_day(engine, clock, rng, members, open_loans)
        if (day + 1) % 10 == 0:
            logger.info("Simulated %d/%d days", day + 1, days)

    with db.session_scope() as session:
        counts = ReportingRepository(session).count_by_status()
    return counts.model_dump()


def main() -> None:
    """Entry point for the ``library-circulation-seed`` command."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    parser = argparse.ArgumentParser(description="Seed the library circulation database")
    parser.add_argument("--database-url", help="Override the configured database URL")
    parser.add_argument("--drop-existing", action="store_true", help="Drop existing tables")
    parser.add_argument("--books", type=int, default=200)
    parser.add_argument("--members", type=int, default=40)
    parser.add_argument("--days", type=int, default=45)
    args = parser.parse_args()

    database_url = args.database_url or get_config().get_database_url()

    db = DatabaseManager(database_url)
    if not db.verify_connection():
        logger.error("Failed to connect to database")
        sys.exit(1)
    db.init_database(drop_existing=args.drop_existing)

    try:
        counts = seed_database(db, args.books, args.members, args.days)
    finally:
        db.close()

    print("=" * 50)
    print("DATABASE SEEDING COMPLETE")
    print("=" * 50)
    for table, by_status in counts.items():
        print(f"{table.title()}: {sum(by_status.values()):,}")
        for status, count in sorted(by_status.items()):
            print(f"  - {status}: {count}")
    print("=" * 50)


if __name__ == "__main__":
    main()
