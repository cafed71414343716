"""
Immutable snapshot models returned by the aggregation facade.

Every model is frozen and every collection is a tuple, so one snapshot can be
handed to any number of concurrent readers. Field names serialise in
camelCase; those names are the contract with the dashboard UI.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

Severity = Literal["critical", "warning", "info"]


class SnapshotModel(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class Reminder(SnapshotModel):
    """A derived prompt for a time-bound follow-up."""

    id: str
    source: str
    record_id: int
    title: str
    due_at: datetime | None = None
    severity: Severity = "info"
    overdue: bool = False
    context: str | None = None


class BucketSummary(SnapshotModel):
    id: str
    label: str
    count: int = 0
    overdue_count: int = 0


class ValueChange(SnapshotModel):
    absolute: float
    percent: float | None = None
    direction: Literal["up", "down", "flat"]


# --- Career pipeline automation ------------------------------------------------


class BoardSummary(SnapshotModel):
    id: int
    name: str
    timezone: str | None = None
    is_primary: bool = False


class NudgeView(SnapshotModel):
    id: int
    severity: str
    channel: str
    message: str
    triggered_at: datetime | None = None
    due_at: datetime | None = None


class OpportunityView(SnapshotModel):
    id: int
    title: str
    company_name: str
    location: str | None = None
    stage_id: int
    stage_key: str | None = None
    application_id: int | None = None
    follow_up_status: str
    compliance_status: str
    stage_entered_at: datetime | None = None
    next_action_due_at: datetime | None = None
    hours_in_stage: float | None = None
    days_in_stage: int | None = None
    sla_hours: int | None = None
    is_overdue: bool = False
    is_at_risk: bool = False
    salary_min: float | None = None
    salary_max: float | None = None
    salary_currency: str | None = None
    open_nudges: tuple[NudgeView, ...] = ()


class StageMetrics(SnapshotModel):
    count: int = 0
    overdue_count: int = 0
    average_days_in_stage: float | None = None


class StageBucket(SnapshotModel):
    id: int
    key: str
    name: str
    position: int
    stage_type: str
    outcome_category: str
    sla_hours: int | None = None
    metrics: StageMetrics
    opportunities: tuple[OpportunityView, ...] = ()


class InterviewTaskView(SnapshotModel):
    id: int
    title: str
    status: str
    priority: str
    due_at: datetime | None = None
    days_until_due: int | None = None
    overdue: bool = False


class ScorecardView(SnapshotModel):
    id: int
    recommendation: str
    overall_score: float | None = None
    submitted_at: datetime | None = None


class InterviewWorkspaceView(SnapshotModel):
    id: int
    opportunity_id: int
    opportunity_title: str | None = None
    status: str
    room_url: str | None = None
    tasks: tuple[InterviewTaskView, ...] = ()
    scorecards: tuple[ScorecardView, ...] = ()
    open_task_count: int = 0
    overdue_task_count: int = 0
    average_score: float | None = None


class InterviewSection(SnapshotModel):
    workspaces: tuple[InterviewWorkspaceView, ...] = ()
    task_board: tuple[BucketSummary, ...] = ()
    average_score: float | None = None
    upcoming_count: int = 0


class OfferScenarioView(SnapshotModel):
    id: int
    label: str
    total_value: float | None = None


class OfferDocumentView(SnapshotModel):
    id: int
    file_name: str
    version: str | None = None
    is_signed: bool = False
    signed_at: datetime | None = None


class OfferPackageView(SnapshotModel):
    id: int
    opportunity_id: int | None = None
    opportunity_title: str | None = None
    status: str
    decision_status: str
    currency_code: str | None = None
    total_comp_value: float = 0.0
    base_salary: float | None = None
    bonus_target: float | None = None
    equity_value: float | None = None
    benefits_value: float | None = None
    decision_deadline: datetime | None = None
    days_until_decision: int | None = None
    best_scenario_value: float | None = None
    signed_document_count: int = 0
    scenarios: tuple[OfferScenarioView, ...] = ()
    documents: tuple[OfferDocumentView, ...] = ()


class OfferSection(SnapshotModel):
    packages: tuple[OfferPackageView, ...] = ()
    total_comp_value: float = 0.0
    negotiating_count: int = 0
    accepted_count: int = 0
    signed_document_count: int = 0


class AutoApplyRunView(SnapshotModel):
    id: int
    status: str
    executed_at: datetime | None = None
    evaluated_count: int = 0
    matches_count: int = 0
    auto_sent_count: int = 0
    match_rate: float = 0


class AutoApplyRuleView(SnapshotModel):
    id: int
    name: str
    status: str
    sandbox_mode: bool = False
    auto_send_enabled: bool = False
    requires_manual_review: bool = True
    last_executed_at: datetime | None = None
    latest_test_run: AutoApplyRunView | None = None
    submissions: int = 0
    conversions: int = 0
    manual_reviews: int = 0
    conversion_rate: float = 0
    conversion_trend: ValueChange | None = None


class AutoApplySection(SnapshotModel):
    rules: tuple[AutoApplyRuleView, ...] = ()
    active_rules: int = 0
    sandbox_rules: int = 0
    total_submissions: int = 0
    total_conversions: int = 0
    conversion_rate: float = 0


class StatusCount(SnapshotModel):
    status: str
    count: int = 0


class ComplianceSection(SnapshotModel):
    statuses: tuple[StatusCount, ...] = ()
    flagged_opportunity_ids: tuple[int, ...] = ()
    completion_rate: float = 0


class CareerPipelineSummary(SnapshotModel):
    total_opportunities: int = 0
    active_opportunities: int = 0
    overdue_opportunities: int = 0
    at_risk_opportunities: int = 0
    open_nudges: int = 0
    average_stage_duration_days: float | None = None
    interview_workspaces: int = 0
    open_interview_tasks: int = 0
    average_interview_score: float | None = None
    offers_negotiating: int = 0
    total_offer_value: float = 0.0
    active_auto_apply_rules: int = 0
    compliance_completion_rate: float = 0


class CareerPipelineSnapshot(SnapshotModel):
    generated_at: datetime
    board: BoardSummary | None = None
    summary: CareerPipelineSummary = CareerPipelineSummary()
    stages: tuple[StageBucket, ...] = ()
    interviews: InterviewSection = InterviewSection()
    offers: OfferSection = OfferSection()
    auto_apply: AutoApplySection = AutoApplySection()
    compliance: ComplianceSection = ComplianceSection()
    reminders: tuple[Reminder, ...] = ()

    @classmethod
    def empty(cls, now: datetime) -> "CareerPipelineSnapshot":
        """Snapshot for a user without a pipeline board."""
        return cls(generated_at=now)


# --- User dashboard -------------------------------------------------------------


class ProfileSummary(SnapshotModel):
    id: int
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    member_since: datetime | None = None


class DashboardSummary(SnapshotModel):
    total_applications: int = 0
    active_applications: int = 0
    interviews_scheduled: int = 0
    offers_negotiating: int = 0
    documents_uploaded: int = 0
    unread_notifications: int = 0
    open_gig_orders: int = 0
    escrow_in_flight: float = 0.0
    overdue_follow_ups: int = 0
    career_overdue_opportunities: int = 0


class PipelineSection(SnapshotModel):
    statuses: tuple[StatusCount, ...] = ()
    total: int = 0
    last_activity_at: datetime | None = None


class TargetView(SnapshotModel):
    type: str
    id: int
    title: str | None = None


class ReviewView(SnapshotModel):
    id: int
    stage: str
    decision: str
    decided_at: datetime | None = None


class ApplicationView(SnapshotModel):
    id: int
    status: str
    target_type: str
    target_id: int
    target: TargetView | None = None
    submitted_at: datetime | None = None
    updated_at: datetime | None = None
    next_step: str
    days_since_submission: int | None = None
    days_since_update: int | None = None
    attachment_count: int = 0
    latest_review: ReviewView | None = None


class InterviewView(SnapshotModel):
    application_id: int
    target_name: str
    status: str
    scheduled_at: datetime | None = None
    next_step: str


class FollowUp(SnapshotModel):
    application_id: int
    target_name: str
    status: str
    next_step: str
    due_at: datetime | None = None
    overdue: bool = False
    days_since_update: int | None = None


class AutomationHint(SnapshotModel):
    id: str
    title: str
    detail: str
    recommendation: str


class TaskSection(SnapshotModel):
    follow_ups: tuple[FollowUp, ...] = ()
    gig_reminders: tuple[Reminder, ...] = ()
    automations: tuple[AutomationHint, ...] = ()


class NotificationView(SnapshotModel):
    id: int
    title: str
    category: str | None = None
    priority: str | None = None
    created_at: datetime | None = None
    is_unread: bool = False


class NotificationSection(SnapshotModel):
    unread_count: int = 0
    recent: tuple[NotificationView, ...] = ()


class GigOrderView(SnapshotModel):
    id: int
    order_number: str
    gig_title: str | None = None
    status: str
    amount: float | None = None
    currency_code: str | None = None
    due_at: datetime | None = None
    pending_requirements: int = 0
    overdue_requirements: int = 0


class EscrowTotals(SnapshotModel):
    transactions: int = 0
    in_escrow: float = 0.0
    released: float = 0.0
    refunded: float = 0.0
    disputed: float = 0.0


class EscrowAccountView(SnapshotModel):
    id: int
    provider: str | None = None
    status: str
    currency_code: str | None = None
    current_balance: float = 0.0
    pending_release_total: float = 0.0
    totals: EscrowTotals = EscrowTotals()
    next_release_at: datetime | None = None


class EscrowTransactionView(SnapshotModel):
    id: int
    account_id: int
    reference: str | None = None
    type: str | None = None
    status: str
    amount: float = 0.0
    net_amount: float = 0.0
    currency_code: str | None = None
    milestone_label: str | None = None
    scheduled_release_at: datetime | None = None
    created_at: datetime | None = None
    has_open_dispute: bool = False


class DisputeView(SnapshotModel):
    id: int
    transaction_id: int | None = None
    status: str
    stage: str | None = None
    priority: str | None = None
    reason_code: str | None = None
    opened_at: datetime | None = None


class EscrowSummary(SnapshotModel):
    total_accounts: int = 0
    total_transactions: int = 0
    currency: str | None = None
    gross_volume: float = 0.0
    in_escrow: float = 0.0
    released: float = 0.0
    refunded: float = 0.0
    disputed: float = 0.0
    net_balance: float = 0.0
    release_queue_size: int = 0
    dispute_count: int = 0
    next_release_at: datetime | None = None


class EscrowSection(SnapshotModel):
    summary: EscrowSummary = EscrowSummary()
    accounts: tuple[EscrowAccountView, ...] = ()
    recent_transactions: tuple[EscrowTransactionView, ...] = ()
    release_queue: tuple[EscrowTransactionView, ...] = ()
    disputes: tuple[DisputeView, ...] = ()


class UserDashboardSnapshot(SnapshotModel):
    generated_at: datetime
    profile: ProfileSummary | None = None
    summary: DashboardSummary = DashboardSummary()
    pipeline: PipelineSection = PipelineSection()
    applications: tuple[ApplicationView, ...] = ()
    interviews: tuple[InterviewView, ...] = ()
    tasks: TaskSection = TaskSection()
    notifications: NotificationSection = NotificationSection()
    gig_orders: tuple[GigOrderView, ...] = ()
    escrow: EscrowSection = EscrowSection()
    career_pipeline_automation: CareerPipelineSnapshot | None = None
    reminders: tuple[Reminder, ...] = ()

    @classmethod
    def empty(cls, now: datetime) -> "UserDashboardSnapshot":
        """Snapshot for an unknown user: zero counts, empty collections."""
        return cls(generated_at=now, career_pipeline_automation=CareerPipelineSnapshot.empty(now))


SNAPSHOT_MODELS: dict[str, type[SnapshotModel]] = {
    CareerPipelineSnapshot.__name__: CareerPipelineSnapshot,
    UserDashboardSnapshot.__name__: UserDashboardSnapshot,
}
