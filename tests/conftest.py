import asyncio
import itertools
from collections import Counter
from datetime import UTC, datetime, timedelta

import pytest

from app.features.dashboards.domain.records import (
    ApplicationRecord,
    ApplicationReviewRecord,
    AutoApplyAnalyticsRecord,
    AutoApplyRuleRecord,
    AutoApplyTestRunRecord,
    DisputeRecord,
    EscrowAccountRecord,
    EscrowTransactionRecord,
    GigOrderRecord,
    GigRequirementRecord,
    InterviewScorecardRecord,
    InterviewTaskRecord,
    InterviewWorkspaceRecord,
    NotificationRecord,
    NudgeRecord,
    OfferDocumentRecord,
    OfferPackageRecord,
    OfferScenarioRecord,
    OpportunityRecord,
    PipelineBoardRecord,
    PipelineStageRecord,
    StatusCountRecord,
    TargetRecord,
    UserRecord,
)
from app.features.dashboards.errors import DataSourceError

NOW = datetime(2024, 9, 20, 12, 0, tzinfo=UTC)
USER_ID = 42


class FakeRedis:
    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}

    async def ping(self) -> bool:
        return True

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        self.store[key] = value
        self.ttls[key] = ttl_s
        return True

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def delete(self, key: str) -> bool:
        self.ttls.pop(key, None)
        return self.store.pop(key, None) is not None

    async def delete_prefix(self, prefix: str) -> int:
        keys = [key for key in self.store if key.startswith(prefix)]
        for key in keys:
            await self.delete(key)
        return len(keys)


class FakeClock:
    """Epoch-seconds clock for cache expiry tests."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class _FakeRepository:
    """Records every adapter call; optionally fails or stalls named calls."""

    def __init__(self):
        self.calls: Counter[str] = Counter()
        self.fail_on: set[str] = set()
        self.delay = 0.0

    async def _call(self, name: str) -> None:
        self.calls[name] += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if name in self.fail_on:
            raise DataSourceError(f"{name} unavailable", source=name)

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())


class FakeCareerPipelineRepository(_FakeRepository):
    def __init__(self):
        super().__init__()
        self.board: PipelineBoardRecord | None = None
        self.stages: list[PipelineStageRecord] = []
        self.opportunities: list[OpportunityRecord] = []
        self.workspaces: list[InterviewWorkspaceRecord] = []
        self.offer_packages: list[OfferPackageRecord] = []
        self.rules: list[AutoApplyRuleRecord] = []
        self.nudges: list[NudgeRecord] = []
        self.tasks: list[InterviewTaskRecord] = []
        self.scorecards: list[InterviewScorecardRecord] = []
        self.scenarios: list[OfferScenarioRecord] = []
        self.documents: list[OfferDocumentRecord] = []
        self.test_runs: list[AutoApplyTestRunRecord] = []
        self.analytics: list[AutoApplyAnalyticsRecord] = []

    async def get_primary_board(self, user_id):
        await self._call("get_primary_board")
        return self.board

    async def list_stages(self, board_id, filters=None):
        await self._call("list_stages")
        return list(self.stages)

    async def list_opportunities(self, board_id, filters=None):
        await self._call("list_opportunities")
        return list(self.opportunities)

    async def list_interview_workspaces(self, user_id, filters=None):
        await self._call("list_interview_workspaces")
        return list(self.workspaces)

    async def list_offer_packages(self, user_id, filters=None):
        await self._call("list_offer_packages")
        return list(self.offer_packages)

    async def list_auto_apply_rules(self, user_id, filters=None):
        await self._call("list_auto_apply_rules")
        return list(self.rules)

    async def list_nudges_by_opportunity_ids(self, ids, filters=None):
        await self._call("list_nudges_by_opportunity_ids")
        return [n for n in self.nudges if n.opportunity_id in set(ids)]

    async def list_interview_tasks_by_workspace_ids(self, ids, filters=None):
        await self._call("list_interview_tasks_by_workspace_ids")
        return [t for t in self.tasks if t.workspace_id in set(ids)]

    async def list_scorecards_by_workspace_ids(self, ids, filters=None):
        await self._call("list_scorecards_by_workspace_ids")
        return [s for s in self.scorecards if s.workspace_id in set(ids)]

    async def list_offer_scenarios_by_package_ids(self, ids, filters=None):
        await self._call("list_offer_scenarios_by_package_ids")
        return [s for s in self.scenarios if s.package_id in set(ids)]

    async def list_offer_documents_by_package_ids(self, ids, filters=None):
        await self._call("list_offer_documents_by_package_ids")
        return [d for d in self.documents if d.package_id in set(ids)]

    async def list_test_runs_by_rule_ids(self, ids, filters=None):
        await self._call("list_test_runs_by_rule_ids")
        return [r for r in self.test_runs if r.rule_id in set(ids)]

    async def list_analytics_by_rule_ids(self, ids, filters=None):
        await self._call("list_analytics_by_rule_ids")
        return [a for a in self.analytics if a.rule_id in set(ids)]


class FakeUserActivityRepository(_FakeRepository):
    def __init__(self):
        super().__init__()
        self.user: UserRecord | None = None
        self.applications: list[ApplicationRecord] = []
        self.status_counts: list[StatusCountRecord] = []
        self.notifications: list[NotificationRecord] = []
        self.gig_orders: list[GigOrderRecord] = []
        self.escrow_accounts: list[EscrowAccountRecord] = []
        self.escrow_transactions: list[EscrowTransactionRecord] = []
        self.disputes: list[DisputeRecord] = []
        self.targets: list[TargetRecord] = []
        self.reviews: list[ApplicationReviewRecord] = []
        self.requirements: list[GigRequirementRecord] = []

    async def get_user(self, user_id):
        await self._call("get_user")
        return self.user

    async def list_applications(self, user_id, filters=None):
        await self._call("list_applications")
        return list(self.applications)

    async def count_applications_by_status(self, user_id):
        await self._call("count_applications_by_status")
        return list(self.status_counts)

    async def list_notifications(self, user_id, filters=None):
        await self._call("list_notifications")
        return list(self.notifications)

    async def list_gig_orders(self, user_id, filters=None):
        await self._call("list_gig_orders")
        return list(self.gig_orders)

    async def list_escrow_accounts(self, user_id, filters=None):
        await self._call("list_escrow_accounts")
        return list(self.escrow_accounts)

    async def list_escrow_transactions(self, user_id, filters=None):
        await self._call("list_escrow_transactions")
        return list(self.escrow_transactions)

    async def list_disputes(self, user_id, filters=None):
        await self._call("list_disputes")
        return list(self.disputes)

    async def list_targets_by_ids(self, target_type, ids, filters=None):
        await self._call(f"list_targets_by_ids:{target_type}")
        return [t for t in self.targets if t.target_type == target_type and t.id in set(ids)]

    async def list_reviews_by_application_ids(self, ids, filters=None):
        await self._call("list_reviews_by_application_ids")
        return [r for r in self.reviews if r.application_id in set(ids)]

    async def list_requirements_by_order_ids(self, ids, filters=None):
        await self._call("list_requirements_by_order_ids")
        return [r for r in self.requirements if r.order_id in set(ids)]


class RecordFactory:
    """Builds records with sensible defaults relative to a fixed now."""

    def __init__(self, now: datetime):
        self.now = now
        self._ids = itertools.count(1)

    def _id(self, overrides: dict) -> int:
        return overrides.pop("id", None) or next(self._ids)

    def hours_ago(self, hours: float) -> datetime:
        return self.now - timedelta(hours=hours)

    def days_ago(self, days: float) -> datetime:
        return self.now - timedelta(days=days)

    def days_ahead(self, days: float) -> datetime:
        return self.now + timedelta(days=days)

    def board(self, **overrides) -> PipelineBoardRecord:
        values = {
            "user_id": USER_ID,
            "name": "Job search",
            "is_primary": True,
            "timezone": "UTC",
            "created_at": self.days_ago(30),
            "updated_at": self.days_ago(1),
        }
        values.update(overrides)
        return PipelineBoardRecord(id=self._id(values), **values)

    def stage(self, **overrides) -> PipelineStageRecord:
        values = {
            "board_id": 1,
            "key": "applied",
            "name": "Applied",
            "position": 1,
            "stage_type": "applied",
            "outcome_category": "open",
            "sla_hours": 24,
        }
        values.update(overrides)
        return PipelineStageRecord(id=self._id(values), **values)

    def opportunity(self, **overrides) -> OpportunityRecord:
        values = {
            "board_id": 1,
            "stage_id": 1,
            "user_id": USER_ID,
            "application_id": None,
            "title": "Staff Engineer",
            "company_name": "Acme",
            "location": "Remote",
            "salary_min": None,
            "salary_max": None,
            "salary_currency": None,
            "stage_entered_at": self.hours_ago(2),
            "last_activity_at": self.hours_ago(2),
            "next_action_due_at": None,
            "follow_up_status": "on_track",
            "compliance_status": "not_required",
            "created_at": self.days_ago(10),
            "updated_at": self.hours_ago(2),
        }
        values.update(overrides)
        return OpportunityRecord(id=self._id(values), **values)

    def nudge(self, **overrides) -> NudgeRecord:
        values = {
            "opportunity_id": 1,
            "stage_id": 1,
            "severity": "warning",
            "channel": "email",
            "message": "Send a thank-you note",
            "triggered_at": self.hours_ago(1),
            "due_at": None,
            "resolved_at": None,
        }
        values.update(overrides)
        return NudgeRecord(id=self._id(values), **values)

    def workspace(self, **overrides) -> InterviewWorkspaceRecord:
        values = {
            "user_id": USER_ID,
            "opportunity_id": 1,
            "status": "scheduled",
            "room_url": None,
            "calendar_event_id": None,
            "last_synced_at": None,
            "updated_at": self.hours_ago(3),
        }
        values.update(overrides)
        return InterviewWorkspaceRecord(id=self._id(values), **values)

    def task(self, **overrides) -> InterviewTaskRecord:
        values = {
            "workspace_id": 1,
            "title": "Prepare system design notes",
            "status": "pending",
            "priority": "medium",
            "due_at": None,
            "completed_at": None,
        }
        values.update(overrides)
        return InterviewTaskRecord(id=self._id(values), **values)

    def scorecard(self, **overrides) -> InterviewScorecardRecord:
        values = {
            "workspace_id": 1,
            "interviewer_id": None,
            "submitted_at": self.hours_ago(5),
            "overall_score": None,
            "recommendation": "advance",
        }
        values.update(overrides)
        return InterviewScorecardRecord(id=self._id(values), **values)

    def offer(self, **overrides) -> OfferPackageRecord:
        values = {
            "user_id": USER_ID,
            "opportunity_id": None,
            "application_id": None,
            "status": "review",
            "decision_status": "pending",
            "total_comp_value": None,
            "base_salary": None,
            "bonus_target": None,
            "equity_value": None,
            "benefits_value": None,
            "currency_code": "USD",
            "decision_deadline": None,
            "updated_at": self.days_ago(1),
        }
        values.update(overrides)
        return OfferPackageRecord(id=self._id(values), **values)

    def scenario(self, **overrides) -> OfferScenarioRecord:
        values = {
            "package_id": 1,
            "label": "Base case",
            "base_salary": None,
            "equity_value": None,
            "bonus_value": None,
            "benefits_value": None,
            "total_value": None,
        }
        values.update(overrides)
        return OfferScenarioRecord(id=self._id(values), **values)

    def document(self, **overrides) -> OfferDocumentRecord:
        values = {
            "package_id": 1,
            "file_name": "offer.pdf",
            "version": "v1",
            "is_signed": False,
            "signed_at": None,
        }
        values.update(overrides)
        return OfferDocumentRecord(id=self._id(values), **values)

    def rule(self, **overrides) -> AutoApplyRuleRecord:
        values = {
            "user_id": USER_ID,
            "name": "Remote backend roles",
            "status": "active",
            "requires_manual_review": True,
            "auto_send_enabled": False,
            "sandbox_mode": False,
            "premium_role_guardrail": True,
            "last_executed_at": None,
            "updated_at": self.days_ago(1),
        }
        values.update(overrides)
        return AutoApplyRuleRecord(id=self._id(values), **values)

    def test_run(self, **overrides) -> AutoApplyTestRunRecord:
        values = {
            "rule_id": 1,
            "status": "passed",
            "executed_at": self.days_ago(1),
            "evaluated_count": 0,
            "matches_count": 0,
            "auto_sent_count": 0,
        }
        values.update(overrides)
        return AutoApplyTestRunRecord(id=self._id(values), **values)

    def analytics(self, **overrides) -> AutoApplyAnalyticsRecord:
        values = {
            "rule_id": 1,
            "window_start": self.days_ago(7),
            "window_end": self.now,
            "submissions": 0,
            "conversions": 0,
            "rejections": 0,
            "manual_reviews": 0,
        }
        values.update(overrides)
        return AutoApplyAnalyticsRecord(id=self._id(values), **values)

    def user(self, **overrides) -> UserRecord:
        values = {
            "first_name": "Ada",
            "last_name": "Lovelace",
            "email": "ada@example.com",
            "created_at": self.days_ago(400),
        }
        values.update(overrides)
        values.setdefault("id", USER_ID)
        return UserRecord(**values)

    def application(self, **overrides) -> ApplicationRecord:
        values = {
            "applicant_id": USER_ID,
            "target_type": "job",
            "target_id": 100,
            "status": "submitted",
            "submitted_at": self.days_ago(2),
            "created_at": self.days_ago(3),
            "updated_at": self.days_ago(2),
            "attachments": (),
            "metadata": None,
        }
        values.update(overrides)
        return ApplicationRecord(id=self._id(values), **values)

    def review(self, **overrides) -> ApplicationReviewRecord:
        values = {
            "application_id": 1,
            "stage": "screen",
            "decision": "advance",
            "decided_at": self.days_ago(1),
            "reviewer_id": None,
        }
        values.update(overrides)
        return ApplicationReviewRecord(id=self._id(values), **values)

    def notification(self, **overrides) -> NotificationRecord:
        values = {
            "user_id": USER_ID,
            "category": "system",
            "priority": "normal",
            "title": "Profile viewed",
            "read_at": None,
            "created_at": self.hours_ago(1),
        }
        values.update(overrides)
        return NotificationRecord(id=self._id(values), **values)

    def gig_order(self, **overrides) -> GigOrderRecord:
        values = {
            "freelancer_id": USER_ID,
            "gig_id": 7,
            "gig_title": "Brand refresh",
            "order_number": "GO-1001",
            "status": "in_progress",
            "amount": 1200.0,
            "currency_code": "USD",
            "due_at": self.days_ahead(5),
            "kickoff_due_at": self.days_ahead(1),
            "updated_at": self.days_ago(1),
        }
        values.update(overrides)
        return GigOrderRecord(id=self._id(values), **values)

    def requirement(self, **overrides) -> GigRequirementRecord:
        values = {
            "order_id": 1,
            "title": "Upload brand assets",
            "status": "pending",
            "priority": "medium",
            "due_at": None,
            "category": None,
            "notes": None,
        }
        values.update(overrides)
        return GigRequirementRecord(id=self._id(values), **values)

    def escrow_account(self, **overrides) -> EscrowAccountRecord:
        values = {
            "user_id": USER_ID,
            "provider": "stripe",
            "status": "active",
            "currency_code": "USD",
            "current_balance": 0.0,
            "pending_release_total": 0.0,
            "created_at": self.days_ago(60),
        }
        values.update(overrides)
        return EscrowAccountRecord(id=self._id(values), **values)

    def escrow_transaction(self, **overrides) -> EscrowTransactionRecord:
        values = {
            "account_id": 1,
            "reference": None,
            "type": "milestone",
            "status": "in_escrow",
            "amount": 0.0,
            "fee_amount": 0.0,
            "net_amount": 0.0,
            "currency_code": "USD",
            "milestone_label": None,
            "scheduled_release_at": None,
            "released_at": None,
            "refunded_at": None,
            "created_at": self.days_ago(3),
        }
        values.update(overrides)
        return EscrowTransactionRecord(id=self._id(values), **values)

    def dispute(self, **overrides) -> DisputeRecord:
        values = {
            "transaction_id": None,
            "stage": "intake",
            "status": "open",
            "priority": "high",
            "reason_code": "quality",
            "opened_at": self.days_ago(1),
            "updated_at": None,
        }
        values.update(overrides)
        return DisputeRecord(id=self._id(values), **values)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def records():
    return RecordFactory(NOW)


@pytest.fixture
def career_repo():
    return FakeCareerPipelineRepository()


@pytest.fixture
def user_repo():
    return FakeUserActivityRepository()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def fake_clock():
    return FakeClock()
