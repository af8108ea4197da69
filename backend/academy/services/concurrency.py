# Overview: Row locking and compare-and-set helpers for read-modify-write sequences.

from __future__ import annotations


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Writes that must be race-free on every backend go through conditional_update.
    """
    return query.with_for_update()


def conditional_update(query, values: dict) -> int:
    """
    Issue a single UPDATE ... WHERE <query criteria> and return the matched row count.

    The WHERE clause carries the precondition (e.g. remaining_sessions > 0,
    status = 'completed'), so the check and the write happen in one statement
    against the persisted value. Callers must treat 0 as "precondition failed";
    nothing is retried here.

    synchronize_session=False: callers refresh any loaded instances themselves.
    """
    return query.update(values, synchronize_session=False)
