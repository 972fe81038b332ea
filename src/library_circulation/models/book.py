"""
Book model for the circulation service.

A book is a single circulating copy. Its ``status`` says where that copy is
in the circulation lifecycle; only the circulation engine changes it.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BookStatus(str, Enum):
    """Availability status of a circulating item."""

    AVAILABLE = "AVAILABLE"
    CHECKED_OUT = "CHECKED_OUT"
    RESERVED = "RESERVED"
    LOST = "LOST"
    DAMAGED = "DAMAGED"
    UNDER_MAINTENANCE = "UNDER_MAINTENANCE"
    DISCARDED = "DISCARDED"


# Statuses owned by the loan/reservation flow; never set administratively.
CIRCULATION_OWNED_STATUSES = frozenset({BookStatus.CHECKED_OUT, BookStatus.RESERVED})

# Statuses a librarian may set through update_book_status.
ADMINISTRATIVE_STATUSES = frozenset(
    {
        BookStatus.AVAILABLE,
        BookStatus.UNDER_MAINTENANCE,
        BookStatus.DAMAGED,
        BookStatus.LOST,
        BookStatus.DISCARDED,
    }
)


class Book(BaseModel):
    """Represents a circulating copy in the catalog."""

    id: str = Field(
        ...,
        description="Unique identifier for the book",
        pattern=r"^book_[a-zA-Z0-9_]{6,}$",
        examples=["book_3f9a1c2d4e5b"],
    )

    title: str = Field(
        ...,
        description="The title of the book",
        min_length=1,
        max_length=500,
        examples=["The Great Gatsby"],
    )

    isbn: str | None = Field(
        default=None,
        description="ISBN-13 without hyphens",
        pattern=r"^\d{13}$",
        examples=["9780134685479"],
    )

    status: BookStatus = Field(
        default=BookStatus.AVAILABLE,
        description="Current circulation status",
    )

    created_at: datetime = Field(
        default_factory=datetime.now,
        description="Timestamp when the book was added to the catalog",
    )

    updated_at: datetime | None = Field(
        default=None,
        description="Timestamp when the book record was last updated",
    )

    @field_validator("isbn", mode="before")
    @classmethod
    def normalize_isbn(cls, v: str | None) -> str | None:
        """Accept hyphenated ISBNs and store the bare digits."""
        if v is None:
            return None
        return v.replace("-", "").strip()

    @property
    def is_available(self) -> bool:
        return self.status == BookStatus.AVAILABLE

    @property
    def is_on_loan(self) -> bool:
        return self.status == BookStatus.CHECKED_OUT

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": "book_3f9a1c2d4e5b",
                "title": "The Great Gatsby",
                "isbn": "9780134685479",
                "status": "AVAILABLE",
            }
        },
    )
