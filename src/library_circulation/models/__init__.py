"""
Library Circulation Models.

Pydantic models returned by the circulation engine and its repositories:
- Book: a single circulating copy and its status
- Transaction: a loan
- Reservation: a place in a book's hold queue
"""

from .book import Book, BookStatus
from .circulation import (
    ExpirationOutcome,
    ExpirationReport,
    QueueEntry,
    QueueSnapshot,
    Reservation,
    ReservationStatus,
    ReturnCondition,
    ReturnResult,
    Transaction,
    TransactionStatus,
)

__all__ = [
    "Book",
    "BookStatus",
    "ExpirationOutcome",
    "ExpirationReport",
    "QueueEntry",
    "QueueSnapshot",
    "Reservation",
    "ReservationStatus",
    "ReturnCondition",
    "ReturnResult",
    "Transaction",
    "TransactionStatus",
]
