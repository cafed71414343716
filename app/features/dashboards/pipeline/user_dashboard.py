"""
User dashboard snapshot assembler.

Merges applications, notifications, gig orders, escrow activity and the
nested career pipeline automation snapshot into one UserDashboardSnapshot.
"""

import time
from collections import defaultdict
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime

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
)
from app.features.dashboards.domain.snapshots import (
    ApplicationView,
    AutomationHint,
    CareerPipelineSnapshot,
    DashboardSummary,
    DisputeView,
    EscrowAccountView,
    EscrowSection,
    EscrowSummary,
    EscrowTotals,
    EscrowTransactionView,
    FollowUp,
    GigOrderView,
    InterviewView,
    NotificationSection,
    NotificationView,
    PipelineSection,
    ProfileSummary,
    Reminder,
    ReviewView,
    StatusCount,
    TargetView,
    TaskSection,
    UserDashboardSnapshot,
)
from app.features.dashboards.pipeline.career_pipeline import utc_now
from app.features.dashboards.pipeline.derivations import (
    DEFAULT_REMINDER_LIMIT,
    add_days,
    build_reminder,
    count_where,
    elapsed_days,
    first_present,
    group_by,
    parse_timestamp,
    rank_reminders,
    resolve_next_step,
    sum_money,
)
from app.features.dashboards.pipeline.fanout import join_all
from app.features.dashboards.repository.user_activity_repository import (
    TARGET_TABLES,
    UserActivityRepository,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CareerPipelineLoader = Callable[[int, bool], Awaitable[CareerPipelineSnapshot]]

APPLICATION_STATUSES = (
    "draft",
    "submitted",
    "under_review",
    "shortlisted",
    "interview",
    "offered",
    "hired",
    "rejected",
    "withdrawn",
)
TERMINAL_STATUSES = frozenset({"withdrawn", "rejected", "hired"})
OFFER_STATUSES = frozenset({"offered", "hired"})
INTERVIEW_STATUSES = frozenset({"interview"})
FOLLOW_UP_STATUSES = frozenset({"submitted", "under_review", "shortlisted", "interview", "offered"})
CLOSED_GIG_ORDER_STATUSES = frozenset({"completed", "cancelled"})

ESCROW_PENDING_STATUSES = frozenset({"initiated", "funded", "in_escrow", "disputed"})
ESCROW_RELEASED_STATUSES = frozenset({"released"})
ESCROW_REFUND_STATUSES = frozenset({"refunded"})
CLOSED_DISPUTE_STATUSES = frozenset({"settled", "closed"})
DEFAULT_CURRENCY = "USD"

RECENT_APPLICATION_LIMIT = 10
FOLLOW_UP_LIMIT = 8
GIG_REMINDER_LIMIT = 6
RECENT_TRANSACTION_LIMIT = 25
RELEASE_QUEUE_LIMIT = 20
MIN_LIBRARY_DOCUMENTS = 2


def _follow_up_threshold(status: str) -> int:
    if status == "submitted":
        return 5
    if status == "offered":
        return 2
    return 3


def _timestamp(value: datetime | None, fallback: float = 0.0) -> float:
    parsed = parse_timestamp(value)
    return parsed.timestamp() if parsed else fallback


class UserDashboardAssembler:
    """Builds UserDashboardSnapshot for one user."""

    def __init__(
        self,
        repository=UserActivityRepository,
        *,
        career_pipeline: CareerPipelineLoader | None = None,
        clock: Callable[[], datetime] = utc_now,
        reminder_limit: int = DEFAULT_REMINDER_LIMIT,
    ):
        self.repository = repository
        self._career_pipeline = career_pipeline
        self._clock = clock
        self._reminder_limit = reminder_limit

    async def build(self, user_id: int, *, bypass_cache: bool = False) -> UserDashboardSnapshot:
        now = self._clock()
        started = time.perf_counter()
        repo = self.repository

        user = await repo.get_user(user_id)
        if user is None:
            logger.debug("Unknown user, returning empty dashboard", user_id=user_id)
            return UserDashboardSnapshot.empty(now)

        (
            applications,
            status_counts,
            notifications,
            orders,
            accounts,
            transactions,
            disputes,
            career,
        ) = await join_all(
            repo.list_applications(user_id),
            repo.count_applications_by_status(user_id),
            repo.list_notifications(user_id),
            repo.list_gig_orders(user_id),
            repo.list_escrow_accounts(user_id),
            repo.list_escrow_transactions(user_id),
            repo.list_disputes(user_id),
            self._load_career_pipeline(user_id, bypass_cache, now),
        )

        target_ids: dict[str, list[int]] = defaultdict(list)
        for application in applications:
            if application.target_type in TARGET_TABLES:
                target_ids[application.target_type].append(application.target_id)

        target_batches = [
            repo.list_targets_by_ids(target_type, target_ids.get(target_type, []))
            for target_type in TARGET_TABLES
        ]
        *target_lists, reviews, requirements = await join_all(
            *target_batches,
            repo.list_reviews_by_application_ids([application.id for application in applications]),
            repo.list_requirements_by_order_ids([order.id for order in orders]),
        )

        target_map: dict[str, TargetRecord] = {
            target.lookup_key: target for targets in target_lists for target in targets
        }
        reviews_by_application = group_by(reviews, lambda review: review.application_id)
        requirements_by_order = group_by(requirements, lambda requirement: requirement.order_id)

        application_views = [
            self._application_view(
                application,
                target_map.get(f"{application.target_type}:{application.target_id}"),
                reviews_by_application.get(application.id, []),
                now,
            )
            for application in applications
        ]
        documents_uploaded = sum(len(application.attachments) for application in applications)

        follow_ups = self._follow_ups(applications, target_map, now)
        gig_reminders = self._gig_reminders(orders, requirements_by_order, now)
        escrow = self._escrow_section(accounts, transactions, disputes)
        notification_section = self._notifications(notifications)

        automations = []
        if documents_uploaded < MIN_LIBRARY_DOCUMENTS:
            automations.append(
                AutomationHint(
                    id="document-library",
                    title="Document library",
                    detail=f"{documents_uploaded} uploaded",
                    recommendation=(
                        "Upload at least two tailored CVs to improve conversion tracking per role type."
                    ),
                )
            )

        summary = DashboardSummary(
            total_applications=len(applications),
            active_applications=count_where(
                applications, lambda application: application.status not in TERMINAL_STATUSES
            ),
            interviews_scheduled=count_where(
                applications, lambda application: application.status in INTERVIEW_STATUSES
            ),
            offers_negotiating=count_where(
                applications, lambda application: application.status in OFFER_STATUSES
            ),
            documents_uploaded=documents_uploaded,
            unread_notifications=notification_section.unread_count,
            open_gig_orders=count_where(
                orders, lambda order: order.status not in CLOSED_GIG_ORDER_STATUSES
            ),
            escrow_in_flight=escrow.summary.in_escrow,
            overdue_follow_ups=count_where(follow_ups, lambda follow_up: follow_up.overdue),
            career_overdue_opportunities=career.summary.overdue_opportunities,
        )

        reminders = rank_reminders(
            [
                *self._follow_up_reminders(follow_ups, now),
                *gig_reminders,
                *self._release_reminders(escrow, now),
                *career.reminders,
            ],
            self._reminder_limit,
        )

        snapshot = UserDashboardSnapshot(
            generated_at=now,
            profile=ProfileSummary(
                id=user.id,
                first_name=user.first_name,
                last_name=user.last_name,
                email=user.email,
                member_since=parse_timestamp(user.created_at),
            ),
            summary=summary,
            pipeline=self._pipeline(status_counts, applications),
            applications=tuple(application_views[:RECENT_APPLICATION_LIMIT]),
            interviews=tuple(self._interviews(application_views, reviews_by_application, applications)),
            tasks=TaskSection(
                follow_ups=tuple(follow_ups),
                gig_reminders=gig_reminders,
                automations=tuple(automations),
            ),
            notifications=notification_section,
            gig_orders=tuple(
                self._gig_order_view(order, requirements_by_order.get(order.id, []), now)
                for order in orders
            ),
            escrow=escrow,
            career_pipeline_automation=career,
            reminders=reminders,
        )

        logger.info(
            "User dashboard snapshot built",
            user_id=user_id,
            applications=len(applications),
            gig_orders=len(orders),
            escrow_transactions=len(transactions),
            reminders=len(reminders),
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return snapshot

    async def _load_career_pipeline(
        self, user_id: int, bypass_cache: bool, now: datetime
    ) -> CareerPipelineSnapshot:
        if self._career_pipeline is None:
            return CareerPipelineSnapshot.empty(now)
        return await self._career_pipeline(user_id, bypass_cache)

    # --- applications -----------------------------------------------------------

    def _application_view(
        self,
        application: ApplicationRecord,
        target: TargetRecord | None,
        reviews: Sequence[ApplicationReviewRecord],
        now: datetime,
    ) -> ApplicationView:
        latest = max(reviews, key=lambda review: (_timestamp(review.decided_at), review.id), default=None)
        return ApplicationView(
            id=application.id,
            status=application.status,
            target_type=application.target_type,
            target_id=application.target_id,
            target=TargetView(type=target.target_type, id=target.id, title=target.title)
            if target
            else None,
            submitted_at=parse_timestamp(application.submitted_at),
            updated_at=parse_timestamp(application.updated_at),
            next_step=resolve_next_step(application.status),
            days_since_submission=elapsed_days(
                first_present(application.submitted_at, application.created_at, application.updated_at),
                now,
            ),
            days_since_update=elapsed_days(
                first_present(application.updated_at, application.created_at, application.submitted_at),
                now,
            ),
            attachment_count=len(application.attachments),
            latest_review=ReviewView(
                id=latest.id,
                stage=latest.stage,
                decision=latest.decision,
                decided_at=parse_timestamp(latest.decided_at),
            )
            if latest
            else None,
        )

    def _pipeline(
        self, status_counts: Sequence[StatusCountRecord], applications: Sequence[ApplicationRecord]
    ) -> PipelineSection:
        counts: dict[str, int] = {}
        for row in status_counts:
            counts[row.status] = counts.get(row.status, 0) + row.count
        activity = [parse_timestamp(application.updated_at) for application in applications]
        activity = [value for value in activity if value is not None]
        return PipelineSection(
            statuses=tuple(
                StatusCount(status=status, count=counts.get(status, 0))
                for status in APPLICATION_STATUSES
            ),
            total=sum(counts.values()),
            last_activity_at=max(activity) if activity else None,
        )

    def _interviews(
        self,
        views: Sequence[ApplicationView],
        reviews_by_application: dict[int, list[ApplicationReviewRecord]],
        applications: Sequence[ApplicationRecord],
    ) -> list[InterviewView]:
        metadata_by_id = {application.id: application.metadata or {} for application in applications}
        interviews = []
        for view in views:
            if view.status not in INTERVIEW_STATUSES:
                continue
            scheduled_review = next(
                (
                    review
                    for review in reviews_by_application.get(view.id, [])
                    if review.stage == "interview"
                ),
                None,
            )
            scheduled_at = parse_timestamp(
                first_present(
                    scheduled_review.decided_at if scheduled_review else None,
                    metadata_by_id[view.id].get("interviewScheduledAt"),
                )
            )
            interviews.append(
                InterviewView(
                    application_id=view.id,
                    target_name=self._target_name(view.target_id, view.target),
                    status=view.status,
                    scheduled_at=scheduled_at,
                    next_step=view.next_step,
                )
            )
        return interviews

    @staticmethod
    def _target_name(target_id: int, target: TargetRecord | TargetView | None) -> str:
        if target is not None and target.title:
            return target.title
        return f"#{target_id}"

    def _follow_ups(
        self,
        applications: Sequence[ApplicationRecord],
        target_map: dict[str, TargetRecord],
        now: datetime,
    ) -> list[FollowUp]:
        items = []
        for application in applications:
            if application.status not in FOLLOW_UP_STATUSES:
                continue
            reference = first_present(
                application.updated_at, application.submitted_at, application.created_at
            )
            days_since = elapsed_days(reference, now)
            if days_since is None:
                continue
            threshold = _follow_up_threshold(application.status)
            target = target_map.get(f"{application.target_type}:{application.target_id}")
            items.append(
                FollowUp(
                    application_id=application.id,
                    target_name=self._target_name(application.target_id, target),
                    status=application.status,
                    next_step=resolve_next_step(application.status),
                    due_at=add_days(reference, threshold),
                    overdue=days_since > threshold,
                    days_since_update=days_since,
                )
            )
        items.sort(
            key=lambda item: (not item.overdue, _timestamp(item.due_at, fallback=now.timestamp()))
        )
        return items[:FOLLOW_UP_LIMIT]

    def _follow_up_reminders(self, follow_ups: Sequence[FollowUp], now: datetime) -> list[Reminder]:
        return [
            build_reminder(
                source="application",
                record_id=follow_up.application_id,
                title=f"Follow up on {follow_up.target_name}",
                due_at=follow_up.due_at,
                now=now,
                overdue=follow_up.overdue,
                context=follow_up.status,
            )
            for follow_up in follow_ups
        ]

    # --- gig orders -------------------------------------------------------------

    @staticmethod
    def _requirement_due(requirement: GigRequirementRecord, order: GigOrderRecord) -> datetime | None:
        return parse_timestamp(first_present(requirement.due_at, order.due_at, order.kickoff_due_at))

    def _gig_reminders(
        self,
        orders: Sequence[GigOrderRecord],
        requirements_by_order: dict[int, list[GigRequirementRecord]],
        now: datetime,
    ) -> tuple[Reminder, ...]:
        reminders = []
        for order in orders:
            for requirement in requirements_by_order.get(order.id, []):
                if requirement.status != "pending":
                    continue
                reminders.append(
                    build_reminder(
                        source="gig_requirement",
                        record_id=requirement.id,
                        title=requirement.title,
                        due_at=self._requirement_due(requirement, order),
                        now=now,
                        context=order.gig_title or order.order_number,
                    )
                )
        return rank_reminders(reminders, GIG_REMINDER_LIMIT)

    def _gig_order_view(
        self, order: GigOrderRecord, requirements: Sequence[GigRequirementRecord], now: datetime
    ) -> GigOrderView:
        pending = [requirement for requirement in requirements if requirement.status == "pending"]
        overdue = 0
        for requirement in pending:
            due = self._requirement_due(requirement, order)
            if due is not None and due < now:
                overdue += 1
        return GigOrderView(
            id=order.id,
            order_number=order.order_number,
            gig_title=order.gig_title,
            status=order.status,
            amount=order.amount,
            currency_code=order.currency_code,
            due_at=parse_timestamp(order.due_at),
            pending_requirements=len(pending),
            overdue_requirements=overdue,
        )

    # --- notifications ----------------------------------------------------------

    def _notifications(self, notifications: Sequence[NotificationRecord]) -> NotificationSection:
        return NotificationSection(
            unread_count=count_where(notifications, lambda item: item.read_at is None),
            recent=tuple(
                NotificationView(
                    id=item.id,
                    title=item.title,
                    category=item.category,
                    priority=item.priority,
                    created_at=parse_timestamp(item.created_at),
                    is_unread=item.read_at is None,
                )
                for item in notifications
            ),
        )

    # --- escrow -----------------------------------------------------------------

    def _escrow_section(
        self,
        accounts: Sequence[EscrowAccountRecord],
        transactions: Sequence[EscrowTransactionRecord],
        disputes: Sequence[DisputeRecord],
    ) -> EscrowSection:
        ordered = sorted(
            transactions, key=lambda txn: (-_timestamp(txn.created_at), -txn.id)
        )
        ordered_disputes = sorted(
            disputes, key=lambda dispute: (-_timestamp(dispute.opened_at), -dispute.id)
        )
        open_disputes = [d for d in ordered_disputes if d.status not in CLOSED_DISPUTE_STATUSES]
        disputed_transaction_ids = {
            dispute.transaction_id for dispute in open_disputes if dispute.transaction_id is not None
        }
        views = [self._transaction_view(txn, txn.id in disputed_transaction_ids) for txn in ordered]
        views_by_account = group_by(views, lambda view: view.account_id)

        account_views = [
            self._account_view(account, views_by_account.get(account.id, [])) for account in accounts
        ]
        totals = self._totals(views)

        release_queue = sorted(
            (view for view in views if view.status in ESCROW_PENDING_STATUSES),
            key=lambda view: _timestamp(first_present(view.scheduled_release_at, view.created_at)),
        )[:RELEASE_QUEUE_LIMIT]
        next_release = release_queue[0] if release_queue else None

        currency = next(
            (account.currency_code for account in accounts if account.currency_code), DEFAULT_CURRENCY
        )
        return EscrowSection(
            summary=EscrowSummary(
                total_accounts=len(account_views),
                total_transactions=len(views),
                currency=currency,
                gross_volume=sum_money(view.amount for view in views),
                in_escrow=totals.in_escrow,
                released=totals.released,
                refunded=totals.refunded,
                disputed=totals.disputed,
                net_balance=sum_money(account.current_balance for account in accounts),
                release_queue_size=len(release_queue),
                dispute_count=len(open_disputes),
                next_release_at=first_present(next_release.scheduled_release_at, next_release.created_at)
                if next_release
                else None,
            ),
            accounts=tuple(account_views),
            recent_transactions=tuple(views[:RECENT_TRANSACTION_LIMIT]),
            release_queue=tuple(release_queue),
            disputes=tuple(
                DisputeView(
                    id=dispute.id,
                    transaction_id=dispute.transaction_id,
                    status=dispute.status,
                    stage=dispute.stage,
                    priority=dispute.priority,
                    reason_code=dispute.reason_code,
                    opened_at=parse_timestamp(dispute.opened_at),
                )
                for dispute in open_disputes
            ),
        )

    @staticmethod
    def _transaction_view(txn: EscrowTransactionRecord, has_open_dispute: bool) -> EscrowTransactionView:
        return EscrowTransactionView(
            id=txn.id,
            account_id=txn.account_id,
            reference=txn.reference,
            type=txn.type,
            status=txn.status,
            amount=txn.amount,
            net_amount=txn.net_amount,
            currency_code=txn.currency_code,
            milestone_label=txn.milestone_label,
            scheduled_release_at=parse_timestamp(txn.scheduled_release_at),
            created_at=parse_timestamp(txn.created_at),
            has_open_dispute=has_open_dispute,
        )

    @staticmethod
    def _totals(views: Sequence[EscrowTransactionView]) -> EscrowTotals:
        return EscrowTotals(
            transactions=len(views),
            in_escrow=sum_money(v.amount for v in views if v.status in ESCROW_PENDING_STATUSES),
            released=sum_money(v.amount for v in views if v.status in ESCROW_RELEASED_STATUSES),
            refunded=sum_money(v.amount for v in views if v.status in ESCROW_REFUND_STATUSES),
            disputed=sum_money(v.amount for v in views if v.has_open_dispute),
        )

    def _account_view(
        self, account: EscrowAccountRecord, views: Sequence[EscrowTransactionView]
    ) -> EscrowAccountView:
        scheduled = [
            view.scheduled_release_at
            for view in views
            if view.status in ESCROW_PENDING_STATUSES and view.scheduled_release_at is not None
        ]
        return EscrowAccountView(
            id=account.id,
            provider=account.provider,
            status=account.status,
            currency_code=account.currency_code,
            current_balance=account.current_balance,
            pending_release_total=account.pending_release_total,
            totals=self._totals(views),
            next_release_at=min(scheduled) if scheduled else None,
        )

    def _release_reminders(self, escrow: EscrowSection, now: datetime) -> list[Reminder]:
        return [
            build_reminder(
                source="escrow_release",
                record_id=view.id,
                title=f"Escrow release {view.reference or view.id}",
                due_at=view.scheduled_release_at,
                now=now,
                context=view.milestone_label,
            )
            for view in escrow.release_queue
            if view.scheduled_release_at is not None
        ]
