"""
Record types produced by the data source adapters.

Rows are converted into these frozen dataclasses exactly once, at the
repository boundary. Derivation code only ever sees these shapes, never raw
database rows.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

# --- Career pipeline automation ------------------------------------------------


@dataclass(slots=True, frozen=True)
class PipelineBoardRecord:
    """The user's pipeline board; container record for the automation snapshot."""

    id: int
    user_id: int
    name: str
    is_primary: bool
    timezone: str | None
    created_at: datetime | None
    updated_at: datetime | None


@dataclass(slots=True, frozen=True)
class PipelineStageRecord:
    id: int
    board_id: int
    key: str
    name: str
    position: int
    stage_type: str  # sourcing | applied | interview | offer | decision
    outcome_category: str  # open | won | lost | on_hold
    sla_hours: int | None


@dataclass(slots=True, frozen=True)
class OpportunityRecord:
    id: int
    board_id: int
    stage_id: int
    user_id: int
    application_id: int | None
    title: str
    company_name: str
    location: str | None
    salary_min: float | None
    salary_max: float | None
    salary_currency: str | None
    stage_entered_at: datetime | None
    last_activity_at: datetime | None
    next_action_due_at: datetime | None
    follow_up_status: str  # on_track | attention | overdue
    compliance_status: str  # not_required | pending | complete | flagged
    created_at: datetime | None
    updated_at: datetime | None


@dataclass(slots=True, frozen=True)
class NudgeRecord:
    id: int
    opportunity_id: int
    stage_id: int
    severity: str
    channel: str
    message: str
    triggered_at: datetime | None
    due_at: datetime | None
    resolved_at: datetime | None


@dataclass(slots=True, frozen=True)
class InterviewWorkspaceRecord:
    id: int
    user_id: int
    opportunity_id: int
    status: str  # planning | scheduled | in_progress | completed | archived
    room_url: str | None
    calendar_event_id: str | None
    last_synced_at: datetime | None
    updated_at: datetime | None


@dataclass(slots=True, frozen=True)
class InterviewTaskRecord:
    id: int
    workspace_id: int
    title: str
    status: str  # pending | in_progress | completed | blocked
    priority: str  # low | medium | high | critical
    due_at: datetime | None
    completed_at: datetime | None


@dataclass(slots=True, frozen=True)
class InterviewScorecardRecord:
    id: int
    workspace_id: int
    interviewer_id: int | None
    submitted_at: datetime | None
    overall_score: float | None
    recommendation: str  # advance | hold | reject | hire


@dataclass(slots=True, frozen=True)
class OfferPackageRecord:
    id: int
    user_id: int
    opportunity_id: int | None
    application_id: int | None
    status: str  # draft | review | negotiating | accepted | declined | expired
    decision_status: str  # pending | accepted | declined | counter
    total_comp_value: float | None
    base_salary: float | None
    bonus_target: float | None
    equity_value: float | None
    benefits_value: float | None
    currency_code: str | None
    decision_deadline: datetime | None
    updated_at: datetime | None


@dataclass(slots=True, frozen=True)
class OfferScenarioRecord:
    id: int
    package_id: int
    label: str
    base_salary: float | None
    equity_value: float | None
    bonus_value: float | None
    benefits_value: float | None
    total_value: float | None


@dataclass(slots=True, frozen=True)
class OfferDocumentRecord:
    id: int
    package_id: int
    file_name: str
    version: str | None
    is_signed: bool
    signed_at: datetime | None


@dataclass(slots=True, frozen=True)
class AutoApplyRuleRecord:
    id: int
    user_id: int
    name: str
    status: str  # draft | sandbox | active | paused | retired
    requires_manual_review: bool
    auto_send_enabled: bool
    sandbox_mode: bool
    premium_role_guardrail: bool
    last_executed_at: datetime | None
    updated_at: datetime | None


@dataclass(slots=True, frozen=True)
class AutoApplyTestRunRecord:
    id: int
    rule_id: int
    status: str  # pending | running | passed | failed
    executed_at: datetime | None
    evaluated_count: int
    matches_count: int
    auto_sent_count: int


@dataclass(slots=True, frozen=True)
class AutoApplyAnalyticsRecord:
    id: int
    rule_id: int
    window_start: datetime | None
    window_end: datetime | None
    submissions: int
    conversions: int
    rejections: int
    manual_reviews: int


# --- User dashboard -------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class UserRecord:
    """Container record for the user dashboard."""

    id: int
    first_name: str | None
    last_name: str | None
    email: str | None
    created_at: datetime | None


@dataclass(slots=True, frozen=True)
class ApplicationRecord:
    id: int
    applicant_id: int
    target_type: str  # job | gig | project | launchpad | volunteer
    target_id: int
    status: str
    submitted_at: datetime | None
    created_at: datetime | None
    updated_at: datetime | None
    attachments: tuple[dict[str, Any], ...] = ()
    metadata: dict[str, Any] | None = None


@dataclass(slots=True, frozen=True)
class ApplicationReviewRecord:
    id: int
    application_id: int
    stage: str
    decision: str
    decided_at: datetime | None
    reviewer_id: int | None


@dataclass(slots=True, frozen=True)
class StatusCountRecord:
    status: str
    count: int


@dataclass(slots=True, frozen=True)
class TargetRecord:
    target_type: str
    id: int
    title: str | None

    @property
    def lookup_key(self) -> str:
        return f"{self.target_type}:{self.id}"


@dataclass(slots=True, frozen=True)
class NotificationRecord:
    id: int
    user_id: int
    category: str | None
    priority: str | None
    title: str
    read_at: datetime | None
    created_at: datetime | None


@dataclass(slots=True, frozen=True)
class GigOrderRecord:
    id: int
    freelancer_id: int
    gig_id: int | None
    gig_title: str | None
    order_number: str
    status: str
    amount: float | None
    currency_code: str | None
    due_at: datetime | None
    kickoff_due_at: datetime | None
    updated_at: datetime | None


@dataclass(slots=True, frozen=True)
class GigRequirementRecord:
    id: int
    order_id: int
    title: str
    status: str  # pending | received | approved
    priority: str | None
    due_at: datetime | None
    category: str | None
    notes: str | None


@dataclass(slots=True, frozen=True)
class EscrowAccountRecord:
    id: int
    user_id: int
    provider: str | None
    status: str
    currency_code: str | None
    current_balance: float
    pending_release_total: float
    created_at: datetime | None


@dataclass(slots=True, frozen=True)
class EscrowTransactionRecord:
    id: int
    account_id: int
    reference: str | None
    type: str | None
    status: str
    amount: float
    fee_amount: float
    net_amount: float
    currency_code: str | None
    milestone_label: str | None
    scheduled_release_at: datetime | None
    released_at: datetime | None
    refunded_at: datetime | None
    created_at: datetime | None


@dataclass(slots=True, frozen=True)
class DisputeRecord:
    id: int
    transaction_id: int | None
    stage: str | None
    status: str
    priority: str | None
    reason_code: str | None
    opened_at: datetime | None
    updated_at: datetime | None = field(default=None)
