"""
Read adapters for the user dashboard: profile, applications, notifications,
gig orders and escrow activity.
"""

from collections.abc import Sequence

from app.features.dashboards.domain.records import (
    ApplicationRecord,
    ApplicationReviewRecord,
    DisputeRecord,
    EscrowAccountRecord,
    EscrowTransactionRecord,
    GigOrderRecord,
    GigRequirementRecord,
    NotificationRecord,
    StatusCountRecord,
    TargetRecord,
    UserRecord,
)
from app.features.dashboards.repository.base import (
    NO_FILTERS,
    RecordFilters,
    build_conditions,
    query_source,
    to_float,
    to_int,
    to_money,
    unique_ids,
)

APPLICATION_LIMIT = 40
NOTIFICATION_LIMIT = 12
GIG_ORDER_LIMIT = 8
ESCROW_ACCOUNT_LIMIT = 20
ESCROW_TRANSACTION_LIMIT = 75
DISPUTE_LIMIT = 30

# Application target types with a backing table
TARGET_TABLES = {
    "job": "jobs",
    "gig": "gigs",
    "project": "projects",
}


class UserActivityRepository:
    """Raw SQL adapters for the user dashboard."""

    @classmethod
    async def get_user(cls, user_id: int) -> UserRecord | None:
        query = """
            SELECT id, "firstName" AS first_name, "lastName" AS last_name, email,
                   "createdAt" AS created_at
            FROM users
            WHERE id = %s
            LIMIT 1
        """
        rows = await query_source("users", query, (user_id,))
        if not rows:
            return None
        row = rows[0]
        return UserRecord(
            id=row["id"],
            first_name=row.get("first_name"),
            last_name=row.get("last_name"),
            email=row.get("email"),
            created_at=row.get("created_at"),
        )

    @classmethod
    async def list_applications(
        cls, user_id: int, filters: RecordFilters = NO_FILTERS
    ) -> list[ApplicationRecord]:
        params: list = [user_id]
        where = build_conditions(['"applicantId" = %s'], params, filters, timestamp_column='"updatedAt"')
        params.append(filters.resolve_limit(APPLICATION_LIMIT))
        query = f"""
            SELECT id, "applicantId" AS applicant_id, "targetType" AS target_type,
                   "targetId" AS target_id, status, "submittedAt" AS submitted_at,
                   "createdAt" AS created_at, "updatedAt" AS updated_at,
                   attachments, metadata
            FROM applications
            WHERE {where}
            ORDER BY "updatedAt" DESC, id DESC
            LIMIT %s
        """
        rows = await query_source("applications", query, params)
        return [
            ApplicationRecord(
                id=row["id"],
                applicant_id=row["applicant_id"],
                target_type=row["target_type"],
                target_id=row["target_id"],
                status=row["status"],
                submitted_at=row.get("submitted_at"),
                created_at=row.get("created_at"),
                updated_at=row.get("updated_at"),
                attachments=tuple(row.get("attachments") or ()),
                metadata=row.get("metadata") or None,
            )
            for row in rows
        ]

    @classmethod
    async def count_applications_by_status(cls, user_id: int) -> list[StatusCountRecord]:
        """Status histogram over every application, not only the recent page."""
        query = """
            SELECT status, COUNT(status) AS count
            FROM applications
            WHERE "applicantId" = %s
            GROUP BY status
        """
        rows = await query_source("application_status_counts", query, (user_id,))
        return [StatusCountRecord(status=row["status"], count=to_int(row.get("count"))) for row in rows]

    @classmethod
    async def list_notifications(
        cls, user_id: int, filters: RecordFilters = NO_FILTERS
    ) -> list[NotificationRecord]:
        params: list = [user_id]
        where = build_conditions(
            ['"userId" = %s'], params, filters, timestamp_column='"createdAt"',
            status_column="category",
        )
        params.append(filters.resolve_limit(NOTIFICATION_LIMIT))
        query = f"""
            SELECT id, "userId" AS user_id, category, priority, title,
                   "readAt" AS read_at, "createdAt" AS created_at
            FROM notifications
            WHERE {where}
            ORDER BY "createdAt" DESC, id DESC
            LIMIT %s
        """
        rows = await query_source("notifications", query, params)
        return [
            NotificationRecord(
                id=row["id"],
                user_id=row["user_id"],
                category=row.get("category"),
                priority=row.get("priority"),
                title=row.get("title") or "",
                read_at=row.get("read_at"),
                created_at=row.get("created_at"),
            )
            for row in rows
        ]

    @classmethod
    async def list_gig_orders(
        cls, user_id: int, filters: RecordFilters = NO_FILTERS
    ) -> list[GigOrderRecord]:
        params: list = [user_id]
        where = build_conditions(
            ['o."freelancerId" = %s'], params, filters, timestamp_column='o."updatedAt"',
            status_column='o.status',
        )
        params.append(filters.resolve_limit(GIG_ORDER_LIMIT))
        query = f"""
            SELECT o.id, o."freelancerId" AS freelancer_id, o."gigId" AS gig_id,
                   g.title AS gig_title, o."orderNumber" AS order_number, o.status,
                   o.amount, o."currencyCode" AS currency_code, o."dueAt" AS due_at,
                   o."kickoffDueAt" AS kickoff_due_at, o."updatedAt" AS updated_at
            FROM gig_orders o
            LEFT JOIN gigs g ON g.id = o."gigId"
            WHERE {where}
            ORDER BY o."updatedAt" DESC, o.id DESC
            LIMIT %s
        """
        rows = await query_source("gig_orders", query, params)
        return [
            GigOrderRecord(
                id=row["id"],
                freelancer_id=row["freelancer_id"],
                gig_id=row.get("gig_id"),
                gig_title=row.get("gig_title"),
                order_number=row.get("order_number") or f"#{row['id']}",
                status=row["status"],
                amount=to_float(row.get("amount")),
                currency_code=row.get("currency_code"),
                due_at=row.get("due_at"),
                kickoff_due_at=row.get("kickoff_due_at"),
                updated_at=row.get("updated_at"),
            )
            for row in rows
        ]

    @classmethod
    async def list_escrow_accounts(
        cls, user_id: int, filters: RecordFilters = NO_FILTERS
    ) -> list[EscrowAccountRecord]:
        params: list = [user_id]
        where = build_conditions(['"userId" = %s'], params, filters, timestamp_column='"createdAt"')
        params.append(filters.resolve_limit(ESCROW_ACCOUNT_LIMIT))
        query = f"""
            SELECT id, "userId" AS user_id, provider, status, "currencyCode" AS currency_code,
                   "currentBalance" AS current_balance,
                   "pendingReleaseTotal" AS pending_release_total, "createdAt" AS created_at
            FROM escrow_accounts
            WHERE {where}
            ORDER BY "createdAt" DESC, id DESC
            LIMIT %s
        """
        rows = await query_source("escrow_accounts", query, params)
        return [
            EscrowAccountRecord(
                id=row["id"],
                user_id=row["user_id"],
                provider=row.get("provider"),
                status=row.get("status") or "pending",
                currency_code=row.get("currency_code"),
                current_balance=to_money(row.get("current_balance")),
                pending_release_total=to_money(row.get("pending_release_total")),
                created_at=row.get("created_at"),
            )
            for row in rows
        ]

    @classmethod
    async def list_escrow_transactions(
        cls, user_id: int, filters: RecordFilters = NO_FILTERS
    ) -> list[EscrowTransactionRecord]:
        """Transactions on any escrow account owned by the user."""
        params: list = [user_id]
        where = build_conditions(
            ['a."userId" = %s'], params, filters, timestamp_column='t."createdAt"',
            status_column="t.status",
        )
        params.append(filters.resolve_limit(ESCROW_TRANSACTION_LIMIT))
        query = f"""
            SELECT t.id, t."accountId" AS account_id, t.reference, t.type, t.status,
                   t.amount, t."feeAmount" AS fee_amount, t."netAmount" AS net_amount,
                   t."currencyCode" AS currency_code, t."milestoneLabel" AS milestone_label,
                   t."scheduledReleaseAt" AS scheduled_release_at,
                   t."releasedAt" AS released_at, t."refundedAt" AS refunded_at,
                   t."createdAt" AS created_at
            FROM escrow_transactions t
            JOIN escrow_accounts a ON a.id = t."accountId"
            WHERE {where}
            ORDER BY t."createdAt" DESC, t.id DESC
            LIMIT %s
        """
        rows = await query_source("escrow_transactions", query, params)
        return [
            EscrowTransactionRecord(
                id=row["id"],
                account_id=row["account_id"],
                reference=row.get("reference"),
                type=row.get("type"),
                status=row["status"],
                amount=to_money(row.get("amount")),
                fee_amount=to_money(row.get("fee_amount")),
                net_amount=to_money(row.get("net_amount")),
                currency_code=row.get("currency_code"),
                milestone_label=row.get("milestone_label"),
                scheduled_release_at=row.get("scheduled_release_at"),
                released_at=row.get("released_at"),
                refunded_at=row.get("refunded_at"),
                created_at=row.get("created_at"),
            )
            for row in rows
        ]

    @classmethod
    async def list_disputes(
        cls, user_id: int, filters: RecordFilters = NO_FILTERS
    ) -> list[DisputeRecord]:
        """Dispute cases raised against transactions on the user's escrow accounts."""
        params: list = [user_id]
        where = build_conditions(
            ['a."userId" = %s'], params, filters, timestamp_column='d."openedAt"',
            status_column="d.status",
        )
        params.append(filters.resolve_limit(DISPUTE_LIMIT))
        query = f"""
            SELECT d.id, d."escrowTransactionId" AS transaction_id, d.stage, d.status,
                   d.priority, d."reasonCode" AS reason_code, d."openedAt" AS opened_at,
                   d."updatedAt" AS updated_at
            FROM dispute_cases d
            JOIN escrow_transactions t ON t.id = d."escrowTransactionId"
            JOIN escrow_accounts a ON a.id = t."accountId"
            WHERE {where}
            ORDER BY d."openedAt" DESC, d.id DESC
            LIMIT %s
        """
        rows = await query_source("dispute_cases", query, params)
        return [
            DisputeRecord(
                id=row["id"],
                transaction_id=row.get("transaction_id"),
                stage=row.get("stage"),
                status=row["status"],
                priority=row.get("priority"),
                reason_code=row.get("reason_code"),
                opened_at=row.get("opened_at"),
                updated_at=row.get("updated_at"),
            )
            for row in rows
        ]

    # --- second-order, batched by parent ids ---------------------------------

    @classmethod
    async def list_targets_by_ids(
        cls, target_type: str, target_ids: Sequence[int], filters: RecordFilters = NO_FILTERS
    ) -> list[TargetRecord]:
        """Jobs, gigs or projects referenced by applications; other types have no table."""
        table = TARGET_TABLES.get(target_type)
        ids = unique_ids(target_ids)
        if table is None or not ids:
            return []
        query = f"""
            SELECT id, title
            FROM {table}
            WHERE id = ANY(%s)
            LIMIT %s
        """
        limit = filters.resolve_batch_limit(len(ids))
        params = (ids, limit)
        rows = await query_source(table, query, params, limit=limit)
        return [TargetRecord(target_type=target_type, id=row["id"], title=row.get("title")) for row in rows]

    @classmethod
    async def list_reviews_by_application_ids(
        cls, application_ids: Sequence[int], filters: RecordFilters = NO_FILTERS
    ) -> list[ApplicationReviewRecord]:
        ids = unique_ids(application_ids)
        if not ids:
            return []
        params: list = [ids]
        where = build_conditions(
            ['"applicationId" = ANY(%s)'], params, filters, timestamp_column='"decidedAt"',
            status_column="decision",
        )
        limit = filters.resolve_batch_limit(len(ids))
        params.append(limit)
        query = f"""
            SELECT id, "applicationId" AS application_id, stage, decision,
                   "decidedAt" AS decided_at, "reviewerId" AS reviewer_id
            FROM application_reviews
            WHERE {where}
            ORDER BY "decidedAt" DESC NULLS LAST, id DESC
            LIMIT %s
        """
        rows = await query_source("application_reviews", query, params, limit=limit)
        return [
            ApplicationReviewRecord(
                id=row["id"],
                application_id=row["application_id"],
                stage=row.get("stage") or "",
                decision=row.get("decision") or "pending",
                decided_at=row.get("decided_at"),
                reviewer_id=row.get("reviewer_id"),
            )
            for row in rows
        ]

    @classmethod
    async def list_requirements_by_order_ids(
        cls, order_ids: Sequence[int], filters: RecordFilters = NO_FILTERS
    ) -> list[GigRequirementRecord]:
        ids = unique_ids(order_ids)
        if not ids:
            return []
        params: list = [ids]
        where = build_conditions(['"orderId" = ANY(%s)'], params, filters, timestamp_column='"dueAt"')
        limit = filters.resolve_batch_limit(len(ids))
        params.append(limit)
        query = f"""
            SELECT id, "orderId" AS order_id, title, status, priority, "dueAt" AS due_at,
                   metadata->>'category' AS category, notes
            FROM gig_order_requirements
            WHERE {where}
            ORDER BY "dueAt" ASC NULLS LAST, id ASC
            LIMIT %s
        """
        rows = await query_source("gig_order_requirements", query, params, limit=limit)
        return [
            GigRequirementRecord(
                id=row["id"],
                order_id=row["order_id"],
                title=row.get("title") or "",
                status=row.get("status") or "pending",
                priority=row.get("priority"),
                due_at=row.get("due_at"),
                category=row.get("category"),
                notes=row.get("notes"),
            )
            for row in rows
        ]
