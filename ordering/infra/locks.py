"""
Transaction-scoped locks using PostgreSQL advisory locks.
"""
from contextlib import contextmanager
from uuid import UUID

from django.db import connection


@contextmanager
def cart_lock(customer_id: UUID):
    """
    Serialize checkouts of one customer's cart.

    Must be entered inside ``transaction.atomic``; the lock is released when
    the transaction ends. Other backends rely on the row locks taken on the
    cart lines.

    Usage:
        with transaction.atomic(), cart_lock(customer_id):
            ...
    """
    if connection.vendor == "postgresql":
        with connection.cursor() as cursor:
            cursor.execute(
                "SELECT pg_advisory_xact_lock(hashtext(%s)::bigint)",
                [f"cart:{customer_id}"],
            )
    yield
