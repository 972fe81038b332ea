"""
SQLAlchemy database schema for the library circulation service.

Three relations hold all circulation state:

1. ``books`` - one row per circulating copy, carrying its status
2. ``transactions`` - loans, open and historical
3. ``reservations`` - hold queues, one FIFO queue per book

Books and reservations are versioned (``version_id_col``). Every UPDATE is
issued as ``... WHERE version = :expected``, so two sessions that read the
same row and both try to write it cannot both commit; the second flush raises
``StaleDataError``.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from ..models.book import BookStatus
from ..models.circulation import ReservationStatus, ReturnCondition, TransactionStatus

Base = declarative_base()


class Book(Base):
    """
    Books table - the item catalog.

    ``status`` is written only from inside a circulation engine transaction.
    """

    __tablename__ = "books"

    id = Column(String(50), primary_key=True)
    title = Column(String(500), nullable=False)
    isbn = Column(String(13), nullable=True)
    status = Column(Enum(BookStatus), nullable=False, default=BookStatus.AVAILABLE)
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=True, default=func.now(), onupdate=func.now())

    transactions = relationship("Transaction", back_populates="book")
    reservations = relationship("Reservation", back_populates="book")

    __table_args__ = (
        Index("idx_book_status", "status"),
        Index("idx_book_isbn", "isbn"),
        CheckConstraint("id LIKE 'book_%'", name="check_book_id_format"),
    )

    __mapper_args__ = {"version_id_col": version}


class Transaction(Base):
    """
    Transactions table - loans.

    A row is inserted by checkout and updated once, by return. Closed rows
    are history and are never deleted.
    """

    __tablename__ = "transactions"

    id = Column(String(50), primary_key=True)
    book_id = Column(String(50), ForeignKey("books.id"), nullable=False)
    member_id = Column(String(50), nullable=False)
    checkout_date = Column(DateTime, nullable=False)
    due_date = Column(DateTime, nullable=False)
    return_date = Column(DateTime, nullable=True)
    status = Column(
        Enum(TransactionStatus), nullable=False, default=TransactionStatus.CHECKED_OUT
    )
    fine = Column(Numeric(10, 2), nullable=False, default=0)
    return_condition = Column(Enum(ReturnCondition), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    book = relationship("Book", back_populates="transactions")

    __table_args__ = (
        Index("idx_transaction_book_status", "book_id", "status"),
        Index("idx_transaction_member_status", "member_id", "status"),
        Index("idx_transaction_checkout_date", "checkout_date"),
        Index("idx_transaction_due_date", "due_date"),
        CheckConstraint("id LIKE 'txn_%'", name="check_transaction_id_format"),
        CheckConstraint("fine >= 0", name="check_fine_non_negative"),
        CheckConstraint("due_date > checkout_date", name="check_due_after_checkout"),
    )


class Reservation(Base):
    """
    Reservations table - hold queues.

    ``sequence`` numbers reservations per book in creation order and breaks
    ties between equal ``reservation_date`` values. The unique constraint
    turns two concurrent inserts with the same sequence into an
    ``IntegrityError`` instead of a silent tie.
    """

    __tablename__ = "reservations"

    id = Column(String(50), primary_key=True)
    book_id = Column(String(50), ForeignKey("books.id"), nullable=False)
    member_id = Column(String(50), nullable=False)
    reservation_date = Column(DateTime, nullable=False)
    expiry_date = Column(DateTime, nullable=False)
    status = Column(
        Enum(ReservationStatus), nullable=False, default=ReservationStatus.PENDING
    )
    sequence = Column(Integer, nullable=False)
    notes = Column(Text, nullable=True)
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    book = relationship("Book", back_populates="reservations")

    __table_args__ = (
        Index("idx_reservation_book_status", "book_id", "status"),
        Index("idx_reservation_member", "member_id"),
        Index("idx_reservation_expiry", "expiry_date"),
        Index("idx_reservation_queue", "book_id", "reservation_date", "sequence"),
        UniqueConstraint("book_id", "sequence", name="unique_queue_sequence"),
        CheckConstraint("id LIKE 'reservation_%'", name="check_reservation_id_format"),
        CheckConstraint("sequence > 0", name="check_sequence_positive"),
        CheckConstraint("expiry_date > reservation_date", name="check_expiry_after_reservation"),
    )

    __mapper_args__ = {"version_id_col": version}
