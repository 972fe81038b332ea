"""
Concurrency tests.

Threads share one SQLite file through the engine's connection pool, the way
concurrent MCP requests would. A barrier lines the threads up so their
transactions actually overlap.
"""

import threading
from collections.abc import Callable
from datetime import timedelta

from library_circulation.errors import ConflictError
from library_circulation.models.book import BookStatus
from library_circulation.models.circulation import Reservation, ReservationStatus, Transaction


def run_concurrently(calls: list[Callable[[], object]]) -> tuple[list, list]:
    """Run each call on its own thread; return (results, errors)."""
    barrier = threading.Barrier(len(calls))
    results: list = []
    errors: list = []
    lock = threading.Lock()

    def worker(call):
        barrier.wait()
        try:
            result = call()
        except Exception as e:  # noqa: BLE001
            with lock:
                errors.append(e)
        else:
            with lock:
                results.append(result)

    threads = [threading.Thread(target=worker, args=(call,)) for call in calls]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return results, errors


def test_concurrent_checkout_has_one_winner(engine, book, assert_invariants):
    results, errors = run_concurrently(
        [
            lambda: engine.checkout(book.id, "member_alice"),
            lambda: engine.checkout(book.id, "member_bob"),
        ]
    )

    assert len(results) == 1
    assert isinstance(results[0], Transaction)
    assert len(errors) == 1
    assert isinstance(errors[0], ConflictError)
    assert engine.get_book(book.id).status == BookStatus.CHECKED_OUT
    assert engine.count_by_status().transactions == {"CHECKED_OUT": 1}
    assert_invariants()


def test_concurrent_reservations_get_distinct_sequences(engine, checked_out_book):
    book, _ = checked_out_book
    members = ["member_bob", "member_carol", "member_dave"]

    results, errors = run_concurrently(
        [lambda m=member: engine.reserve(book.id, m) for member in members]
    )

    assert errors == []
    assert all(isinstance(r, Reservation) for r in results)
    assert sorted(r.sequence for r in results) == [1, 2, 3]


def test_cancel_racing_expiry_sweep(engine, checked_out_book, clock, assert_invariants):
    book, transaction = checked_out_book
    r1 = engine.reserve(book.id, "member_bob", clock.now + timedelta(days=1))
    r2 = engine.reserve(book.id, "member_carol")
    engine.return_item(transaction.id)

    sweep_time = clock.now + timedelta(days=2)
    _, errors = run_concurrently(
        [
            lambda: engine.cancel_reservation(r1.id),
            lambda: engine.expire_reservations(sweep_time),
        ]
    )

    # Whichever ran second found r1 already closed
    assert all(isinstance(e, ConflictError) for e in errors)
    assert engine.get_reservation(r1.id).status in {
        ReservationStatus.CANCELLED,
        ReservationStatus.EXPIRED,
    }
    assert engine.get_reservation(r2.id).status == ReservationStatus.READY_FOR_PICKUP
    assert engine.get_book(book.id).status == BookStatus.RESERVED
    assert_invariants()
