"""Persistence layer for billing accounts."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterable, Optional

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ...app_context import get_conn
from ..entitlements.catalog import FREE_PLAN
from ..entitlements.models import PlanKey
from .models import AccountPatch, BillingAccount, PendingPayment, Subscription, UsageCounter


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


def _row_to_account(row: dict) -> BillingAccount:
    pending = None
    if row.get("pending_order_id"):
        pending = PendingPayment(
            order_id=row["pending_order_id"],
            plan_key=row.get("pending_plan_key") or "",
            created_at=row.get("pending_created_at") or row["updated_at"],
        )
    amount = row.get("last_payment_amount")
    return BillingAccount(
        account_id=row["account_id"],
        subscription=Subscription(
            status=PlanKey(row["status"]),
            plan_key=PlanKey(row["plan_key"]),
            customer_id=row.get("customer_id"),
            order_id=row.get("order_id"),
            start_date=row.get("start_date"),
            end_date=row.get("end_date"),
            last_payment_at=row.get("last_payment_at"),
            last_payment_amount=int(amount) if amount is not None else None,
        ),
        pending=pending,
        usage=UsageCounter(
            usage_count=int(row["usage_count"]),
            usage_limit=int(row["usage_limit"]),
        ),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _patch_params(account_id: str, patch: AccountPatch, expected_status: Optional[PlanKey]) -> Dict[str, Any]:
    subscription = patch.subscription or Subscription()
    pending = patch.pending
    return {
        "account_id": account_id,
        "expected_status": expected_status.value if expected_status is not None else None,
        "set_subscription": patch.subscription is not None,
        "status": subscription.status.value,
        "plan_key": subscription.plan_key.value,
        "customer_id": subscription.customer_id,
        "order_id": subscription.order_id,
        "start_date": subscription.start_date,
        "end_date": subscription.end_date,
        "last_payment_at": subscription.last_payment_at,
        "last_payment_amount": subscription.last_payment_amount,
        "set_pending": pending is not None,
        "clear_pending": patch.clear_pending,
        "pending_order_id": pending.order_id if pending else None,
        "pending_plan_key": pending.plan_key if pending else None,
        "pending_created_at": pending.created_at if pending else None,
        "usage_limit": patch.usage_limit,
        "reset_usage": patch.reset_usage,
    }


class PostgresAccountRepository:
    """Concrete repository persisting billing accounts in PostgreSQL.

    Each account is one row of ``billing_accounts``. Every patch is applied by a
    single ``UPDATE`` so subscription, pending order and quota never disagree.
    """

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
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

    def create_account(self, account_id: str) -> BillingAccount:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO billing_accounts (account_id, status, plan_key, usage_count, usage_limit)
                VALUES (%s, %s, %s, 0, %s)
                ON CONFLICT (account_id) DO NOTHING
                RETURNING *
                """,
                (account_id, PlanKey.FREE.value, PlanKey.FREE.value, FREE_PLAN.usage_quota),
            )
            row = cursor.fetchone()
            if not row:
                cursor.execute(
                    """
                    SELECT *
                    FROM billing_accounts
                    WHERE account_id = %s
                    LIMIT 1
                    """,
                    (account_id,),
                )
                row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist billing account")
            return _row_to_account(row)

    def get_account(self, account_id: str) -> Optional[BillingAccount]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM billing_accounts
                WHERE account_id = %s
                LIMIT 1
                """,
                (account_id,),
            )
            row = cursor.fetchone()
            return _row_to_account(row) if row else None

    def find_account_by_order(self, order_id: str) -> Optional[BillingAccount]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM billing_accounts
                WHERE order_id = %s OR pending_order_id = %s
                ORDER BY updated_at DESC
                LIMIT 1
                """,
                (order_id, order_id),
            )
            row = cursor.fetchone()
            return _row_to_account(row) if row else None

    def update_account(
        self,
        account_id: str,
        patch: AccountPatch,
        *,
        expected_status: Optional[PlanKey] = None,
    ) -> Optional[BillingAccount]:
        """Apply ``patch`` atomically.

        Returns ``None`` when the account does not exist or its status no longer
        matches ``expected_status``.
        """

        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE billing_accounts
                SET status = CASE WHEN %(set_subscription)s THEN %(status)s ELSE status END,
                    plan_key = CASE WHEN %(set_subscription)s THEN %(plan_key)s ELSE plan_key END,
                    customer_id = CASE WHEN %(set_subscription)s THEN %(customer_id)s ELSE customer_id END,
                    order_id = CASE WHEN %(set_subscription)s THEN %(order_id)s ELSE order_id END,
                    start_date = CASE WHEN %(set_subscription)s THEN %(start_date)s ELSE start_date END,
                    end_date = CASE WHEN %(set_subscription)s THEN %(end_date)s ELSE end_date END,
                    last_payment_at = CASE WHEN %(set_subscription)s
                        THEN %(last_payment_at)s ELSE last_payment_at END,
                    last_payment_amount = CASE WHEN %(set_subscription)s
                        THEN %(last_payment_amount)s ELSE last_payment_amount END,
                    pending_order_id = CASE
                        WHEN %(set_pending)s THEN %(pending_order_id)s
                        WHEN %(clear_pending)s THEN NULL
                        ELSE pending_order_id END,
                    pending_plan_key = CASE
                        WHEN %(set_pending)s THEN %(pending_plan_key)s
                        WHEN %(clear_pending)s THEN NULL
                        ELSE pending_plan_key END,
                    pending_created_at = CASE
                        WHEN %(set_pending)s THEN %(pending_created_at)s
                        WHEN %(clear_pending)s THEN NULL
                        ELSE pending_created_at END,
                    usage_limit = COALESCE(%(usage_limit)s, usage_limit),
                    usage_count = CASE WHEN %(reset_usage)s THEN 0 ELSE usage_count END,
                    updated_at = NOW()
                WHERE account_id = %(account_id)s
                  AND (CAST(%(expected_status)s AS TEXT) IS NULL OR status = %(expected_status)s)
                RETURNING *
                """,
                _patch_params(account_id, patch, expected_status),
            )
            row = cursor.fetchone()
            return _row_to_account(row) if row else None

    def increment_usage(self, account_id: str) -> Optional[BillingAccount]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE billing_accounts
                SET usage_count = usage_count + 1,
                    updated_at = NOW()
                WHERE account_id = %s
                RETURNING *
                """,
                (account_id,),
            )
            row = cursor.fetchone()
            return _row_to_account(row) if row else None


__all__ = ["PostgresAccountRepository", "managed_connection"]
