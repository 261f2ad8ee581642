"""Persistence layer for accounts and subscription projections."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ...app_context import get_conn
from .models import Account, AccountRole, SubscriptionRecord, SubscriptionTier


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def _row_to_account(row: dict) -> Account:
    return Account(
        account_id=str(row["id"]),
        email=row["email"],
        display_name=row.get("display_name") or row["email"],
        role=AccountRole(row["role"]),
        external_customer_id=row.get("external_customer_id"),
        subscription_tier=SubscriptionTier(row["subscription_tier"]),
    )


def _row_to_subscription(row: dict) -> SubscriptionRecord:
    return SubscriptionRecord(
        external_subscription_id=row["external_subscription_id"],
        account_id=str(row["account_id"]),
        tier=SubscriptionTier(row["tier"]),
        status=row["status"],
        current_period_start=row.get("current_period_start"),
        current_period_end=row.get("current_period_end"),
        cancel_at_period_end=bool(row["cancel_at_period_end"]),
        last_event_at=row.get("last_event_at"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresBillingRepository:
    """Concrete repository persisting billing state in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterator[PgCursor]:
        with managed_connection(self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if managed:
                    connection.commit()
            except Exception:
                if managed:
                    connection.rollback()
                raise
            finally:
                cursor.close()

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT id, email, display_name, role, external_customer_id, subscription_tier
                FROM accounts
                WHERE id = %s
                LIMIT 1
                """,
                (account_id,),
            )
            row = cursor.fetchone()
            return _row_to_account(row) if row else None

    def claim_external_customer_id(self, account_id: str, customer_id: str) -> Optional[Account]:
        """Set the customer id only if none is stored yet and return the stored account."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE accounts
                SET external_customer_id = %s, updated_at = NOW()
                WHERE id = %s AND external_customer_id IS NULL
                """,
                (customer_id, account_id),
            )
            cursor.execute(
                """
                SELECT id, email, display_name, role, external_customer_id, subscription_tier
                FROM accounts
                WHERE id = %s
                LIMIT 1
                """,
                (account_id,),
            )
            row = cursor.fetchone()
            return _row_to_account(row) if row else None

    def get_subscription(self, external_subscription_id: str) -> Optional[SubscriptionRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM billing_subscriptions
                WHERE external_subscription_id = %s
                LIMIT 1
                """,
                (external_subscription_id,),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def save_subscription_projection(
        self,
        record: SubscriptionRecord,
        *,
        account_tier: SubscriptionTier,
        external_customer_id: Optional[str],
    ) -> Optional[SubscriptionRecord]:
        with self._cursor() as cursor:
            # The subscription row is written first; the account update only
            # happens when the upsert was not rejected as stale.
            cursor.execute(
                """
                INSERT INTO billing_subscriptions (
                    external_subscription_id,
                    account_id,
                    tier,
                    status,
                    current_period_start,
                    current_period_end,
                    cancel_at_period_end,
                    last_event_at
                )
                VALUES (%(external_subscription_id)s, %(account_id)s, %(tier)s, %(status)s,
                        %(current_period_start)s, %(current_period_end)s,
                        %(cancel_at_period_end)s, %(last_event_at)s)
                ON CONFLICT (external_subscription_id) DO UPDATE SET
                    tier = EXCLUDED.tier,
                    status = EXCLUDED.status,
                    current_period_start = EXCLUDED.current_period_start,
                    current_period_end = EXCLUDED.current_period_end,
                    cancel_at_period_end = EXCLUDED.cancel_at_period_end,
                    last_event_at = COALESCE(EXCLUDED.last_event_at, billing_subscriptions.last_event_at),
                    updated_at = NOW()
                WHERE billing_subscriptions.last_event_at IS NULL
                   OR EXCLUDED.last_event_at IS NULL
                   OR EXCLUDED.last_event_at >= billing_subscriptions.last_event_at
                RETURNING *
                """,
                {
                    "external_subscription_id": record.external_subscription_id,
                    "account_id": record.account_id,
                    "tier": record.tier.value,
                    "status": record.status,
                    "current_period_start": record.current_period_start,
                    "current_period_end": record.current_period_end,
                    "cancel_at_period_end": record.cancel_at_period_end,
                    "last_event_at": record.last_event_at,
                },
            )
            row = cursor.fetchone()
            if not row:
                return None

            cursor.execute(
                """
                UPDATE accounts
                SET subscription_tier = %s,
                    external_customer_id = COALESCE(external_customer_id, %s),
                    updated_at = NOW()
                WHERE id = %s
                """,
                (account_tier.value, external_customer_id, record.account_id),
            )
            return _row_to_subscription(row)

    def update_subscription_status(
        self,
        external_subscription_id: str,
        *,
        status: str,
        event_at: Optional[datetime],
    ) -> Optional[SubscriptionRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE billing_subscriptions
                SET status = %s,
                    last_event_at = COALESCE(%s, last_event_at),
                    updated_at = NOW()
                WHERE external_subscription_id = %s
                RETURNING *
                """,
                (status, event_at, external_subscription_id),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None


__all__ = ["PostgresBillingRepository", "managed_connection"]
