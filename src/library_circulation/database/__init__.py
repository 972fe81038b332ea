"""
Database package for the library circulation service.

This package provides:
- SQLAlchemy schema definitions (schema.py)
- Session management and connection handling (session.py)
- One repository per table, plus read-only reporting
- Demo data seeding (seed.py, needs the ``seed`` extra)
"""

from .book_repository import BookCreateSchema, BookRepository
from .reporting_repository import CirculationCounts, ReportingRepository
from .repository import BaseRepository, PaginatedResponse, PaginationParams, generate_id
from .reservation_repository import ReservationRepository
from .schema import Base, Book, Reservation, Transaction
from .session import DatabaseManager
from .transaction_repository import TransactionRepository

__all__ = [
    "Base",
    "BaseRepository",
    "Book",
    "BookCreateSchema",
    "BookRepository",
    "CirculationCounts",
    "DatabaseManager",
    "PaginatedResponse",
    "PaginationParams",
    "ReportingRepository",
    "Reservation",
    "ReservationRepository",
    "Transaction",
    "TransactionRepository",
    "generate_id",
]
