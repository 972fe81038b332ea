"""
Circulation tools for the library circulation MCP server.

Each tool maps one MCP ``tools/call`` onto one circulation engine operation:

1. Validate the raw arguments against the tool's pydantic input schema
2. Call the engine
3. Render a text summary plus structured ``data``, or an ``isError`` result

Error results carry the error kind (``not_found``, ``conflict``,
``invalid_transition``, ``validation``, ``internal``) so a client can tell a
refused request from a failed one.
"""

import logging
from collections.abc import Callable
from datetime import date, datetime
from typing import Any, TypeVar

from pydantic import BaseModel, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from ..circulation.engine import CirculationEngine
from ..errors import (
    CirculationError,
    ConflictError,
    InternalError,
    InvalidTransitionError,
    NotFoundError,
)
from ..errors import ValidationError as CirculationValidationError
from ..models.book import BookStatus
from ..models.circulation import ReservationStatus, ReturnCondition

logger = logging.getLogger(__name__)

T = TypeVar("T")

ERROR_KINDS: list[tuple[type[CirculationError], str]] = [
    (NotFoundError, "not_found"),
    (ConflictError, "conflict"),
    (InvalidTransitionError, "invalid_transition"),
    (CirculationValidationError, "validation"),
    (InternalError, "internal"),
]


# =============================================================================
# INPUT SCHEMAS
# =============================================================================


class RegisterBookInput(BaseModel):
    """Input schema for the register_book tool."""

    title: str = Field(
        ...,
        description="Title of the book",
        min_length=1,
        max_length=500,
        examples=["The Left Hand of Darkness"],
    )

    isbn: str | None = Field(
        default=None,
        description="Optional ISBN-13; hyphens are ignored",
        examples=["978-0-441-47812-5"],
    )


class CheckoutBookInput(BaseModel):
    """
    Input schema for the checkout_book tool.

    A RESERVED book can only be checked out by the member it is held for.
    """

    book_id: str = Field(
        ...,
        description="ID of the book to check out",
        pattern=r"^book_[a-zA-Z0-9_]{6,}$",
        examples=["book_3f9a1c2d4e5b"],
    )

    member_id: str = Field(
        ...,
        description="ID of the borrowing member",
        min_length=1,
        max_length=50,
        examples=["member_0042"],
    )

    due_date: date | None = Field(
        default=None,
        description="Optional due date. If not provided, the standard loan period applies",
        examples=["2024-02-15"],
    )

    notes: str | None = Field(default=None, max_length=500)


class ReturnBookInput(BaseModel):
    """Input schema for the return_book tool."""

    transaction_id: str = Field(
        ...,
        description="ID of the open loan",
        pattern=r"^txn_[a-zA-Z0-9]{6,}$",
        examples=["txn_9c2e41ab07d3"],
    )

    condition: ReturnCondition = Field(
        default=ReturnCondition.GOOD,
        description="Condition of the returned book; DAMAGED and LOST add a fee",
    )

    notes: str | None = Field(
        default=None,
        max_length=500,
        examples=["Coffee stain on the back cover"],
    )


class ReserveBookInput(BaseModel):
    """Input schema for the reserve_book tool."""

    book_id: str = Field(
        ...,
        description="ID of a book that is checked out or held for someone else",
        pattern=r"^book_[a-zA-Z0-9_]{6,}$",
    )

    member_id: str = Field(..., min_length=1, max_length=50)

    expiry_date: date | None = Field(
        default=None,
        description="When the reservation lapses. Defaults to the standard hold period",
    )

    notes: str | None = Field(default=None, max_length=500)


class ReservationIdInput(BaseModel):
    """Input schema for tools acting on a single reservation."""

    reservation_id: str = Field(
        ...,
        pattern=r"^reservation_[a-zA-Z0-9]{6,}$",
        examples=["reservation_51d0be7a92c4"],
    )


class UpdateReservationStatusInput(ReservationIdInput):
    """Input schema for the update_reservation_status tool."""

    status: ReservationStatus = Field(..., description="Target reservation status")


class QueuePositionInput(ReservationIdInput):
    """Input schema for the get_queue_position tool."""

    book_id: str = Field(..., pattern=r"^book_[a-zA-Z0-9_]{6,}$")


class SweepInput(BaseModel):
    """Input schema for the scheduled sweep tools."""

    as_of: datetime | None = Field(
        default=None,
        description="Point in time to evaluate against, UTC unless it has an offset",
    )


class UpdateBookStatusInput(BaseModel):
    """Input schema for the update_book_status tool."""

    book_id: str = Field(..., pattern=r"^book_[a-zA-Z0-9_]{6,}$")

    status: BookStatus = Field(
        ...,
        description="AVAILABLE, UNDER_MAINTENANCE, DAMAGED, LOST or DISCARDED",
    )


class CirculationReportInput(BaseModel):
    """Input schema for the circulation_report tool."""

    start: datetime | None = Field(default=None, description="Start of the loan listing window")
    end: datetime | None = Field(default=None, description="End of the loan listing window")
    book_id: str | None = Field(
        default=None,
        description="Include this book's reservation queue",
        pattern=r"^book_[a-zA-Z0-9_]{6,}$",
    )

    @model_validator(mode="after")
    def check_window(self) -> "CirculationReportInput":
        if (self.start is None) != (self.end is None):
            raise ValueError("start and end must be given together")
        return self


# =============================================================================
# RESPONSE HELPERS
# =============================================================================


def _error_response(text: str, kind: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "isError": True,
        "content": [{"type": "text", "text": text}],
        "error": {"kind": kind, **(details or {})},
    }


def _success_response(text: str, data: dict[str, Any]) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": text}], "data": data}


def _error_details(error: CirculationError) -> dict[str, Any]:
    if isinstance(error, NotFoundError):
        return {"entity": error.entity, "id": error.entity_id}
    if isinstance(error, InvalidTransitionError):
        return {"from": error.from_status, "to": error.to_status}
    if isinstance(error, CirculationValidationError):
        return {"field": error.field}
    return {}


def _parse(schema: type[T], tool_name: str, arguments: dict[str, Any]) -> T | dict[str, Any]:
    try:
        return schema.model_validate(arguments)
    except PydanticValidationError as e:
        logger.warning("Invalid %s parameters: %s", tool_name, e)
        return _error_response(f"Invalid {tool_name} parameters: {e}", "validation")


def _call(tool_name: str, operation: Callable[[], T]) -> T | dict[str, Any]:
    """
    Run one engine call and turn circulation errors into tool errors.

    Expected refusals are logged at INFO; internal failures with a traceback.
    """
    try:
        return operation()
    except CirculationError as e:
        kind = next(k for cls, k in ERROR_KINDS if isinstance(e, cls))
        if kind == "internal":
            logger.exception("%s failed", tool_name)
        else:
            logger.info("%s refused - %s: %s", tool_name, kind, e)
        return _error_response(str(e), kind, _error_details(e))


def _is_error(result: Any) -> bool:
    return isinstance(result, dict) and result.get("isError") is True


# =============================================================================
# TOOL FACTORY
# =============================================================================


def build_circulation_tools(engine: CirculationEngine) -> list[dict[str, Any]]:
    """
    Build the circulation tool definitions bound to ``engine``.

    Returns:
        Tool dicts with ``name``, ``description``, ``inputSchema`` and an
        async ``handler(arguments)``, ready to register with the MCP server
    """

    async def register_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
        params = _parse(RegisterBookInput, "register_book", arguments)
        if _is_error(params):
            return params
        book = _call("register_book", lambda: engine.register_book(params.title, params.isbn))
        if _is_error(book):
            return book
        return _success_response(
            f"Registered '{book.title}' as {book.id}.",
            {"book": book.model_dump(mode="json")},
        )

    async def checkout_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
        params = _parse(CheckoutBookInput, "checkout_book", arguments)
        if _is_error(params):
            return params
        transaction = _call(
            "checkout_book",
            lambda: engine.checkout(
                params.book_id, params.member_id, params.due_date, params.notes
            ),
        )
        if _is_error(transaction):
            return transaction
        return _success_response(
            f"Checked out book {transaction.book_id} to member {transaction.member_id}. "
            f"Due date: {transaction.due_date.strftime('%B %d, %Y')}",
            {"transaction": transaction.model_dump(mode="json")},
        )

    async def return_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
        params = _parse(ReturnBookInput, "return_book", arguments)
        if _is_error(params):
            return params
        result = _call(
            "return_book",
            lambda: engine.return_item(params.transaction_id, params.condition, params.notes),
        )
        if _is_error(result):
            return result

        transaction = result.transaction
        message = f"Returned book {transaction.book_id} ({transaction.status.value})."
        if transaction.fine > 0:
            message += f" Fine due: ${transaction.fine:.2f}."
        if result.promoted_reservation:
            message += (
                f" Now held for member {result.promoted_reservation.member_id}"
                f" (reservation {result.promoted_reservation.id})."
            )
        return _success_response(message, result.model_dump(mode="json"))

    async def reserve_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
        params = _parse(ReserveBookInput, "reserve_book", arguments)
        if _is_error(params):
            return params
        reservation = _call(
            "reserve_book",
            lambda: engine.reserve(
                params.book_id, params.member_id, params.expiry_date, params.notes
            ),
        )
        if _is_error(reservation):
            return reservation
        position = reservation.queue_position
        return _success_response(
            f"Reserved book {reservation.book_id} for member {reservation.member_id}. "
            f"Queue position: {position}. "
            f"Expires: {reservation.expiry_date.strftime('%B %d, %Y')}",
            {"reservation": reservation.model_dump(mode="json"), "queue_position": position},
        )

    async def cancel_reservation_handler(arguments: dict[str, Any]) -> dict[str, Any]:
        params = _parse(ReservationIdInput, "cancel_reservation", arguments)
        if _is_error(params):
            return params
        reservation = _call(
            "cancel_reservation", lambda: engine.cancel_reservation(params.reservation_id)
        )
        if _is_error(reservation):
            return reservation
        return _success_response(
            f"Cancelled reservation {reservation.id}.",
            {"reservation": reservation.model_dump(mode="json")},
        )

    async def update_reservation_status_handler(arguments: dict[str, Any]) -> dict[str, Any]:
        params = _parse(UpdateReservationStatusInput, "update_reservation_status", arguments)
        if _is_error(params):
            return params
        reservation = _call(
            "update_reservation_status",
            lambda: engine.update_reservation_status(params.reservation_id, params.status),
        )
        if _is_error(reservation):
            return reservation
        return _success_response(
            f"Reservation {reservation.id} is now {reservation.status.value}.",
            {"reservation": reservation.model_dump(mode="json")},
        )

    async def get_queue_position_handler(arguments: dict[str, Any]) -> dict[str, Any]:
        params = _parse(QueuePositionInput, "get_queue_position", arguments)
        if _is_error(params):
            return params
        position = _call(
            "get_queue_position",
            lambda: engine.get_queue_position(params.book_id, params.reservation_id),
        )
        if _is_error(position):
            return position
        return _success_response(
            f"Reservation {params.reservation_id} is number {position} in the queue.",
            {"reservation_id": params.reservation_id, "queue_position": position},
        )

    async def expire_reservations_handler(arguments: dict[str, Any]) -> dict[str, Any]:
        params = _parse(SweepInput, "expire_reservations", arguments)
        if _is_error(params):
            return params
        report = _call("expire_reservations", lambda: engine.expire_reservations(params.as_of))
        if _is_error(report):
            return report
        return _success_response(
            f"Expired {report.succeeded} reservations "
            f"({report.skipped} skipped, {report.failed} failed).",
            {
                "report": report.model_dump(mode="json"),
                "succeeded": report.succeeded,
                "skipped": report.skipped,
                "failed": report.failed,
            },
        )

    async def mark_overdue_handler(arguments: dict[str, Any]) -> dict[str, Any]:
        params = _parse(SweepInput, "mark_overdue", arguments)
        if _is_error(params):
            return params
        marked = _call("mark_overdue", lambda: engine.mark_overdue(params.as_of))
        if _is_error(marked):
            return marked
        return _success_response(
            f"Marked {len(marked)} loans overdue.",
            {"transactions": [t.model_dump(mode="json") for t in marked]},
        )

    async def update_book_status_handler(arguments: dict[str, Any]) -> dict[str, Any]:
        params = _parse(UpdateBookStatusInput, "update_book_status", arguments)
        if _is_error(params):
            return params
        book = _call(
            "update_book_status", lambda: engine.update_book_status(params.book_id, params.status)
        )
        if _is_error(book):
            return book
        return _success_response(
            f"Book {book.id} is now {book.status.value}.",
            {"book": book.model_dump(mode="json")},
        )

    async def circulation_report_handler(arguments: dict[str, Any]) -> dict[str, Any]:
        params = _parse(CirculationReportInput, "circulation_report", arguments)
        if _is_error(params):
            return params

        def build_report() -> dict[str, Any]:
            counts = engine.count_by_status()
            data: dict[str, Any] = {"counts": counts.model_dump(mode="json")}
            if params.start is not None:
                loans = engine.transactions_in_range(params.start, params.end)
                data["transactions"] = [t.model_dump(mode="json") for t in loans]
            if params.book_id is not None:
                queue = engine.reservation_queue_snapshot(params.book_id)
                data["queue"] = [entry.model_dump(mode="json") for entry in queue.entries]
                data["queue_length"] = queue.queue_length
                data["current_due_date"] = (
                    queue.current_due_date.isoformat() if queue.current_due_date else None
                )
            return data

        data = _call("circulation_report", build_report)
        if _is_error(data):
            return data
        counts = data["counts"]
        open_loans = counts["transactions"].get("CHECKED_OUT", 0) + counts["transactions"].get(
            "OVERDUE", 0
        )
        return _success_response(
            f"{sum(counts['books'].values())} books, {open_loans} open loans, "
            f"{counts['reservations'].get('PENDING', 0)} pending reservations.",
            data,
        )

    return [
        {
            "name": "register_book",
            "description": "Add a new book to the catalog. New books start AVAILABLE.",
            "inputSchema": RegisterBookInput.model_json_schema(),
            "handler": register_book_handler,
        },
        {
            "name": "checkout_book",
            "description": (
                "Check out a book to a member. The book must be AVAILABLE, or RESERVED "
                "for this member, whose reservation is then fulfilled."
            ),
            "inputSchema": CheckoutBookInput.model_json_schema(),
            "handler": checkout_book_handler,
        },
        {
            "name": "return_book",
            "description": (
                "Return a checked-out book. Computes the fine from the due date and "
                "condition, and holds the book for the next reservation if there is one."
            ),
            "inputSchema": ReturnBookInput.model_json_schema(),
            "handler": return_book_handler,
        },
        {
            "name": "reserve_book",
            "description": (
                "Join the reservation queue of a book that is checked out or held for "
                "another member. Returns the queue position."
            ),
            "inputSchema": ReserveBookInput.model_json_schema(),
            "handler": reserve_book_handler,
        },
        {
            "name": "cancel_reservation",
            "description": (
                "Cancel a pending or ready reservation. A cancelled pickup hold passes "
                "to the next member in the queue."
            ),
            "inputSchema": ReservationIdInput.model_json_schema(),
            "handler": cancel_reservation_handler,
        },
        {
            "name": "update_reservation_status",
            "description": "Move a reservation to another status, following its lifecycle rules.",
            "inputSchema": UpdateReservationStatusInput.model_json_schema(),
            "handler": update_reservation_status_handler,
        },
        {
            "name": "get_queue_position",
            "description": "Get the 1-based position of a pending reservation in its queue.",
            "inputSchema": QueuePositionInput.model_json_schema(),
            "handler": get_queue_position_handler,
        },
        {
            "name": "expire_reservations",
            "description": (
                "Expire every active reservation past its expiry date. Safe to run "
                "repeatedly; each reservation is handled on its own."
            ),
            "inputSchema": SweepInput.model_json_schema(),
            "handler": expire_reservations_handler,
        },
        {
            "name": "mark_overdue",
            "description": "Mark every checked-out loan past its due date as OVERDUE.",
            "inputSchema": SweepInput.model_json_schema(),
            "handler": mark_overdue_handler,
        },
        {
            "name": "update_book_status",
            "description": (
                "Send a book to maintenance, mark it damaged, lost or discarded, or put "
                "it back into circulation. Not allowed while the book is on loan or held."
            ),
            "inputSchema": UpdateBookStatusInput.model_json_schema(),
            "handler": update_book_status_handler,
        },
        {
            "name": "circulation_report",
            "description": (
                "Counts of books, loans and reservations by status, optionally with the "
                "loans checked out in a time window and one book's reservation queue "
                "with estimated wait times."
            ),
            "inputSchema": CirculationReportInput.model_json_schema(),
            "handler": circulation_report_handler,
        },
    ]
