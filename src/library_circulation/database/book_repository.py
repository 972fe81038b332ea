"""
Book repository for the library circulation service.

This is the item catalog. It offers:

1. Lookups returning pydantic ``Book`` models for callers outside the engine
2. ``lock`` which reads a book row under ``SELECT ... FOR UPDATE``, the first
   step of every circulation operation that may change the book's status
3. Status writes, used only by the circulation engine inside its transaction
"""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select

from ..models.book import Book as BookModel
from ..models.book import BookStatus
from .repository import BaseRepository, PaginatedResponse, PaginationParams, generate_id
from .schema import Book as BookDB


class BookCreateSchema(BaseModel):
    """Schema for registering a new book."""

    title: str = Field(..., min_length=1, max_length=500)
    isbn: str | None = Field(None, pattern=r"^\d{13}$")

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Title cannot be blank")
        return v

    @field_validator("isbn", mode="before")
    @classmethod
    def normalize_isbn(cls, v):
        if isinstance(v, str):
            return v.replace("-", "").replace(" ", "") or None
        return v


class BookRepository(BaseRepository[BookDB, BookModel]):
    """Repository for book rows."""

    @property
    def model_class(self) -> type[BookDB]:
        return BookDB

    @property
    def response_schema(self) -> type[BookModel]:
        return BookModel

    def add(self, book_data: BookCreateSchema, now: datetime) -> BookDB:
        """
        Insert a new AVAILABLE book.

        Args:
            book_data: Validated title and ISBN
            now: Creation timestamp

        Returns:
            The pending ORM row
        """
        book = BookDB(
            id=generate_id("book"),
            title=book_data.title,
            isbn=book_data.isbn,
            status=BookStatus.AVAILABLE,
            created_at=now,
            updated_at=now,
        )
        self.session.add(book)
        self.session.flush()
        return book

    def lock(self, book_id: str, now: datetime) -> BookDB | None:
        """
        Lock a book row for the rest of the current transaction.

        The row is selected ``FOR UPDATE`` and its ``updated_at`` is touched,
        which also bumps the version counter. A second transaction that read
        the same book can then no longer commit a write to it.
        """
        book = self.get_row(book_id, lock=True)
        if book is not None:
            book.updated_at = now
        return book

    def set_status(self, book: BookDB, status: BookStatus, now: datetime) -> None:
        book.status = status
        book.updated_at = now

    def list_by_status(
        self,
        status: BookStatus,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResponse[BookModel]:
        """List books in one status, oldest first."""
        query = select(BookDB).where(BookDB.status == status).order_by(BookDB.created_at, BookDB.id)
        return self._paginate(query, pagination)

    def count_by_status(self) -> dict[str, int]:
        return self._count_by(BookDB.status)
