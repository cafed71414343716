"""
Career pipeline automation snapshot assembler.

One build: load the user's primary board, fan out to the first-order
collections, batch-load every child collection, join in memory and derive
stage metrics, interview, offer, auto-apply and compliance sections plus the
ranked reminder list. All derivations share a single ``now``.
"""

import time
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta

from app.features.dashboards.domain.records import (
    AutoApplyAnalyticsRecord,
    AutoApplyRuleRecord,
    AutoApplyTestRunRecord,
    InterviewScorecardRecord,
    InterviewTaskRecord,
    InterviewWorkspaceRecord,
    NudgeRecord,
    OfferDocumentRecord,
    OfferPackageRecord,
    OfferScenarioRecord,
    OpportunityRecord,
    PipelineStageRecord,
)
from app.features.dashboards.domain.snapshots import (
    AutoApplyRuleView,
    AutoApplyRunView,
    AutoApplySection,
    BoardSummary,
    BucketSummary,
    CareerPipelineSnapshot,
    CareerPipelineSummary,
    ComplianceSection,
    InterviewSection,
    InterviewTaskView,
    InterviewWorkspaceView,
    NudgeView,
    OfferDocumentView,
    OfferPackageView,
    OfferScenarioView,
    OfferSection,
    OpportunityView,
    Reminder,
    ScorecardView,
    StageBucket,
    StageMetrics,
    StatusCount,
)
from app.features.dashboards.pipeline.derivations import (
    DEFAULT_REMINDER_LIMIT,
    average,
    bucket_records,
    build_reminder,
    compute_change,
    count_where,
    days_until,
    elapsed_days,
    elapsed_hours,
    group_by,
    is_sla_breached,
    parse_timestamp,
    percentage,
    rank_reminders,
    sum_money,
)
from app.features.dashboards.pipeline.fanout import join_all
from app.features.dashboards.repository.career_pipeline_repository import CareerPipelineRepository
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CLOSED_OUTCOMES = frozenset({"won", "lost"})
TASK_COLUMNS = (
    ("pending", "Pending"),
    ("in_progress", "In progress"),
    ("blocked", "Blocked"),
    ("completed", "Completed"),
)
UPCOMING_WORKSPACE_STATUSES = frozenset({"planning", "scheduled"})
URGENT_TASK_PRIORITIES = frozenset({"high", "critical"})
CLOSED_OFFER_STATUSES = frozenset({"declined", "expired"})
COMPLIANCE_STATUSES = ("not_required", "pending", "complete", "flagged")
NUDGE_SEVERITIES = frozenset({"critical", "warning", "info"})


def utc_now() -> datetime:
    return datetime.now(UTC)


def _latest_first(value: datetime | None) -> float:
    parsed = parse_timestamp(value)
    return -parsed.timestamp() if parsed else float("inf")


class CareerPipelineAssembler:
    """Builds CareerPipelineSnapshot for one user."""

    def __init__(
        self,
        repository=CareerPipelineRepository,
        *,
        clock: Callable[[], datetime] = utc_now,
        default_sla_hours: int | None = None,
        reminder_limit: int = DEFAULT_REMINDER_LIMIT,
    ):
        self.repository = repository
        self._clock = clock
        self._default_sla_hours = default_sla_hours
        self._reminder_limit = reminder_limit

    async def build(self, user_id: int) -> CareerPipelineSnapshot:
        now = self._clock()
        started = time.perf_counter()
        repo = self.repository

        board = await repo.get_primary_board(user_id)
        if board is None:
            logger.debug("No pipeline board for user, returning empty snapshot", user_id=user_id)
            return CareerPipelineSnapshot.empty(now)

        stages, opportunities, workspaces, packages, rules = await join_all(
            repo.list_stages(board.id),
            repo.list_opportunities(board.id),
            repo.list_interview_workspaces(user_id),
            repo.list_offer_packages(user_id),
            repo.list_auto_apply_rules(user_id),
        )

        opportunity_ids = [opportunity.id for opportunity in opportunities]
        workspace_ids = [workspace.id for workspace in workspaces]
        package_ids = [package.id for package in packages]
        rule_ids = [rule.id for rule in rules]

        (
            nudges,
            tasks,
            scorecards,
            scenarios,
            documents,
            test_runs,
            analytics,
        ) = await join_all(
            repo.list_nudges_by_opportunity_ids(opportunity_ids),
            repo.list_interview_tasks_by_workspace_ids(workspace_ids),
            repo.list_scorecards_by_workspace_ids(workspace_ids),
            repo.list_offer_scenarios_by_package_ids(package_ids),
            repo.list_offer_documents_by_package_ids(package_ids),
            repo.list_test_runs_by_rule_ids(rule_ids),
            repo.list_analytics_by_rule_ids(rule_ids),
        )

        stages = sorted(stages, key=lambda stage: (stage.position, stage.id))
        stage_by_id = {stage.id: stage for stage in stages}
        nudges_by_opportunity = group_by(nudges, lambda nudge: nudge.opportunity_id)

        opportunity_views = [
            self._opportunity_view(
                opportunity,
                stage_by_id.get(opportunity.stage_id),
                nudges_by_opportunity.get(opportunity.id, []),
                now,
            )
            for opportunity in opportunities
        ]
        stage_buckets = self._stage_buckets(stages, opportunity_views)
        interviews = self._interview_section(
            workspaces,
            group_by(tasks, lambda task: task.workspace_id),
            group_by(scorecards, lambda card: card.workspace_id),
            {opportunity.id: opportunity.title for opportunity in opportunities},
            now,
        )
        offers = self._offer_section(
            packages,
            group_by(scenarios, lambda scenario: scenario.package_id),
            group_by(documents, lambda document: document.package_id),
            {opportunity.id: opportunity.title for opportunity in opportunities},
            now,
        )
        auto_apply = self._auto_apply_section(
            rules,
            group_by(test_runs, lambda run: run.rule_id),
            group_by(analytics, lambda window: window.rule_id),
        )
        compliance = self._compliance_section(opportunities)
        reminders = self._reminders(opportunity_views, stage_by_id, nudges, tasks, packages, now)

        open_opportunities = [
            view
            for view in opportunity_views
            if stage_by_id.get(view.stage_id) is None
            or stage_by_id[view.stage_id].outcome_category not in CLOSED_OUTCOMES
        ]
        summary = CareerPipelineSummary(
            total_opportunities=len(opportunity_views),
            active_opportunities=len(open_opportunities),
            overdue_opportunities=count_where(opportunity_views, lambda view: view.is_overdue),
            at_risk_opportunities=count_where(opportunity_views, lambda view: view.is_at_risk),
            open_nudges=len(nudges),
            average_stage_duration_days=average(
                view.hours_in_stage / 24 if view.hours_in_stage is not None else None
                for view in opportunity_views
            ),
            interview_workspaces=len(interviews.workspaces),
            open_interview_tasks=sum(workspace.open_task_count for workspace in interviews.workspaces),
            average_interview_score=interviews.average_score,
            offers_negotiating=offers.negotiating_count,
            total_offer_value=offers.total_comp_value,
            active_auto_apply_rules=auto_apply.active_rules,
            compliance_completion_rate=compliance.completion_rate,
        )

        snapshot = CareerPipelineSnapshot(
            generated_at=now,
            board=BoardSummary(
                id=board.id, name=board.name, timezone=board.timezone, is_primary=board.is_primary
            ),
            summary=summary,
            stages=tuple(stage_buckets),
            interviews=interviews,
            offers=offers,
            auto_apply=auto_apply,
            compliance=compliance,
            reminders=reminders,
        )

        logger.info(
            "Career pipeline snapshot built",
            user_id=user_id,
            board_id=board.id,
            opportunities=len(opportunity_views),
            reminders=len(reminders),
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return snapshot

    # --- opportunities and stages ---------------------------------------------

    def _sla_for(self, stage: PipelineStageRecord | None) -> int | None:
        if stage is not None and stage.sla_hours is not None:
            return stage.sla_hours
        return self._default_sla_hours

    def _opportunity_view(
        self,
        opportunity: OpportunityRecord,
        stage: PipelineStageRecord | None,
        nudges: Sequence[NudgeRecord],
        now: datetime,
    ) -> OpportunityView:
        hours = elapsed_hours(opportunity.stage_entered_at, now)
        sla_hours = self._sla_for(stage)
        is_overdue = is_sla_breached(opportunity.follow_up_status, hours, sla_hours)
        return OpportunityView(
            id=opportunity.id,
            title=opportunity.title,
            company_name=opportunity.company_name,
            location=opportunity.location,
            stage_id=opportunity.stage_id,
            stage_key=stage.key if stage else None,
            application_id=opportunity.application_id,
            follow_up_status=opportunity.follow_up_status,
            compliance_status=opportunity.compliance_status,
            stage_entered_at=parse_timestamp(opportunity.stage_entered_at),
            next_action_due_at=parse_timestamp(opportunity.next_action_due_at),
            hours_in_stage=round(hours, 1) if hours is not None else None,
            days_in_stage=elapsed_days(opportunity.stage_entered_at, now),
            sla_hours=sla_hours,
            is_overdue=is_overdue,
            is_at_risk=opportunity.follow_up_status == "attention"
            or opportunity.compliance_status == "flagged",
            salary_min=opportunity.salary_min,
            salary_max=opportunity.salary_max,
            salary_currency=opportunity.salary_currency,
            open_nudges=tuple(
                NudgeView(
                    id=nudge.id,
                    severity=nudge.severity,
                    channel=nudge.channel,
                    message=nudge.message,
                    triggered_at=parse_timestamp(nudge.triggered_at),
                    due_at=parse_timestamp(nudge.due_at),
                )
                for nudge in nudges
            ),
        )

    def _stage_buckets(
        self, stages: Sequence[PipelineStageRecord], views: Sequence[OpportunityView]
    ) -> list[StageBucket]:
        buckets = bucket_records(
            [(str(stage.id), stage.name) for stage in stages],
            views,
            key_fn=lambda view: str(view.stage_id),
            overdue_fn=lambda view: view.is_overdue,
        )
        result = []
        for stage, bucket in zip(stages, buckets, strict=True):
            result.append(
                StageBucket(
                    id=stage.id,
                    key=stage.key,
                    name=stage.name,
                    position=stage.position,
                    stage_type=stage.stage_type,
                    outcome_category=stage.outcome_category,
                    sla_hours=self._sla_for(stage),
                    metrics=StageMetrics(
                        count=bucket.count,
                        overdue_count=bucket.overdue_count,
                        average_days_in_stage=average(
                            view.hours_in_stage / 24 if view.hours_in_stage is not None else None
                            for view in bucket.items
                        ),
                    ),
                    opportunities=tuple(bucket.items),
                )
            )
        return result

    # --- interviews -----------------------------------------------------------

    def _interview_section(
        self,
        workspaces: Sequence[InterviewWorkspaceRecord],
        tasks_by_workspace: dict[int, list[InterviewTaskRecord]],
        scorecards_by_workspace: dict[int, list[InterviewScorecardRecord]],
        opportunity_titles: dict[int, str],
        now: datetime,
    ) -> InterviewSection:
        workspace_views = []
        all_tasks: list[InterviewTaskView] = []
        all_scores: list[float | None] = []

        for workspace in workspaces:
            task_views = [
                self._task_view(task, now) for task in tasks_by_workspace.get(workspace.id, [])
            ]
            scorecards = scorecards_by_workspace.get(workspace.id, [])
            scores = [card.overall_score for card in scorecards]
            all_tasks.extend(task_views)
            all_scores.extend(scores)
            workspace_views.append(
                InterviewWorkspaceView(
                    id=workspace.id,
                    opportunity_id=workspace.opportunity_id,
                    opportunity_title=opportunity_titles.get(workspace.opportunity_id),
                    status=workspace.status,
                    room_url=workspace.room_url,
                    tasks=tuple(task_views),
                    scorecards=tuple(
                        ScorecardView(
                            id=card.id,
                            recommendation=card.recommendation,
                            overall_score=card.overall_score,
                            submitted_at=parse_timestamp(card.submitted_at),
                        )
                        for card in scorecards
                    ),
                    open_task_count=count_where(task_views, lambda task: task.status != "completed"),
                    overdue_task_count=count_where(task_views, lambda task: task.overdue),
                    average_score=average(scores),
                )
            )

        board = bucket_records(
            TASK_COLUMNS,
            all_tasks,
            key_fn=lambda task: task.status,
            overdue_fn=lambda task: task.overdue,
        )
        return InterviewSection(
            workspaces=tuple(workspace_views),
            task_board=tuple(
                BucketSummary(
                    id=column.key,
                    label=column.label,
                    count=column.count,
                    overdue_count=column.overdue_count,
                )
                for column in board
            ),
            average_score=average(all_scores),
            upcoming_count=count_where(
                workspaces, lambda workspace: workspace.status in UPCOMING_WORKSPACE_STATUSES
            ),
        )

    def _task_view(self, task: InterviewTaskRecord, now: datetime) -> InterviewTaskView:
        due = parse_timestamp(task.due_at)
        return InterviewTaskView(
            id=task.id,
            title=task.title,
            status=task.status,
            priority=task.priority,
            due_at=due,
            days_until_due=days_until(due, now),
            overdue=task.status != "completed" and due is not None and due < now,
        )

    # --- offers ---------------------------------------------------------------

    def _offer_section(
        self,
        packages: Sequence[OfferPackageRecord],
        scenarios_by_package: dict[int, list[OfferScenarioRecord]],
        documents_by_package: dict[int, list[OfferDocumentRecord]],
        opportunity_titles: dict[int, str],
        now: datetime,
    ) -> OfferSection:
        views = []
        for package in packages:
            scenarios = scenarios_by_package.get(package.id, [])
            documents = documents_by_package.get(package.id, [])
            if package.total_comp_value is not None:
                total = sum_money([package.total_comp_value])
            else:
                total = sum_money(
                    [
                        package.base_salary,
                        package.bonus_target,
                        package.equity_value,
                        package.benefits_value,
                    ]
                )
            scenario_values = [s.total_value for s in scenarios if s.total_value is not None]
            views.append(
                OfferPackageView(
                    id=package.id,
                    opportunity_id=package.opportunity_id,
                    opportunity_title=opportunity_titles.get(package.opportunity_id),
                    status=package.status,
                    decision_status=package.decision_status,
                    currency_code=package.currency_code,
                    total_comp_value=total,
                    base_salary=package.base_salary,
                    bonus_target=package.bonus_target,
                    equity_value=package.equity_value,
                    benefits_value=package.benefits_value,
                    decision_deadline=parse_timestamp(package.decision_deadline),
                    days_until_decision=days_until(package.decision_deadline, now),
                    best_scenario_value=max(scenario_values) if scenario_values else None,
                    signed_document_count=count_where(documents, lambda doc: doc.is_signed),
                    scenarios=tuple(
                        OfferScenarioView(id=s.id, label=s.label, total_value=s.total_value)
                        for s in scenarios
                    ),
                    documents=tuple(
                        OfferDocumentView(
                            id=doc.id,
                            file_name=doc.file_name,
                            version=doc.version,
                            is_signed=doc.is_signed,
                            signed_at=parse_timestamp(doc.signed_at),
                        )
                        for doc in documents
                    ),
                )
            )

        live = [view for view in views if view.status not in CLOSED_OFFER_STATUSES]
        return OfferSection(
            packages=tuple(views),
            total_comp_value=sum_money(view.total_comp_value for view in live),
            negotiating_count=count_where(views, lambda view: view.status == "negotiating"),
            accepted_count=count_where(
                views,
                lambda view: view.status == "accepted" or view.decision_status == "accepted",
            ),
            signed_document_count=sum(view.signed_document_count for view in views),
        )

    # --- auto-apply -----------------------------------------------------------

    def _auto_apply_section(
        self,
        rules: Sequence[AutoApplyRuleRecord],
        runs_by_rule: dict[int, list[AutoApplyTestRunRecord]],
        analytics_by_rule: dict[int, list[AutoApplyAnalyticsRecord]],
    ) -> AutoApplySection:
        views = []
        for rule in rules:
            runs = sorted(
                runs_by_rule.get(rule.id, []), key=lambda run: (_latest_first(run.executed_at), -run.id)
            )
            windows = sorted(
                analytics_by_rule.get(rule.id, []),
                key=lambda window: (_latest_first(window.window_start), -window.id),
            )
            submissions = sum(window.submissions for window in windows)
            conversions = sum(window.conversions for window in windows)
            trend = None
            if len(windows) >= 2:
                trend = compute_change(
                    percentage(windows[0].conversions, windows[0].submissions, 1),
                    percentage(windows[1].conversions, windows[1].submissions, 1),
                )
            latest = runs[0] if runs else None
            views.append(
                AutoApplyRuleView(
                    id=rule.id,
                    name=rule.name,
                    status=rule.status,
                    sandbox_mode=rule.sandbox_mode,
                    auto_send_enabled=rule.auto_send_enabled,
                    requires_manual_review=rule.requires_manual_review,
                    last_executed_at=parse_timestamp(rule.last_executed_at),
                    latest_test_run=AutoApplyRunView(
                        id=latest.id,
                        status=latest.status,
                        executed_at=parse_timestamp(latest.executed_at),
                        evaluated_count=latest.evaluated_count,
                        matches_count=latest.matches_count,
                        auto_sent_count=latest.auto_sent_count,
                        match_rate=percentage(latest.matches_count, latest.evaluated_count, 1),
                    )
                    if latest
                    else None,
                    submissions=submissions,
                    conversions=conversions,
                    manual_reviews=sum(window.manual_reviews for window in windows),
                    conversion_rate=percentage(conversions, submissions, 1),
                    conversion_trend=trend,
                )
            )

        total_submissions = sum(view.submissions for view in views)
        total_conversions = sum(view.conversions for view in views)
        return AutoApplySection(
            rules=tuple(views),
            active_rules=count_where(rules, lambda rule: rule.status == "active"),
            sandbox_rules=count_where(
                rules, lambda rule: rule.sandbox_mode or rule.status == "sandbox"
            ),
            total_submissions=total_submissions,
            total_conversions=total_conversions,
            conversion_rate=percentage(total_conversions, total_submissions, 1),
        )

    # --- compliance -----------------------------------------------------------

    def _compliance_section(self, opportunities: Sequence[OpportunityRecord]) -> ComplianceSection:
        counts = {status: 0 for status in COMPLIANCE_STATUSES}
        for opportunity in opportunities:
            if opportunity.compliance_status in counts:
                counts[opportunity.compliance_status] += 1
        required = counts["pending"] + counts["complete"] + counts["flagged"]
        return ComplianceSection(
            statuses=tuple(StatusCount(status=status, count=count) for status, count in counts.items()),
            flagged_opportunity_ids=tuple(
                sorted(o.id for o in opportunities if o.compliance_status == "flagged")
            ),
            completion_rate=percentage(counts["complete"], required),
        )

    # --- reminders ------------------------------------------------------------

    def _reminders(
        self,
        views: Sequence[OpportunityView],
        stage_by_id: dict[int, PipelineStageRecord],
        nudges: Sequence[NudgeRecord],
        tasks: Sequence[InterviewTaskRecord],
        packages: Sequence[OfferPackageRecord],
        now: datetime,
    ) -> tuple[Reminder, ...]:
        reminders: list[Reminder] = []

        for view in views:
            stage = stage_by_id.get(view.stage_id)
            if stage is not None and stage.outcome_category in CLOSED_OUTCOMES:
                continue
            due = view.next_action_due_at
            if due is None and view.stage_entered_at is not None and view.sla_hours is not None:
                due = view.stage_entered_at + timedelta(hours=view.sla_hours)
            if due is None and not view.is_overdue:
                continue
            reminders.append(
                build_reminder(
                    source="opportunity",
                    record_id=view.id,
                    title=f"Follow up on {view.title} at {view.company_name}",
                    due_at=due,
                    now=now,
                    overdue=view.is_overdue or (due is not None and due < now),
                    at_risk=view.is_at_risk,
                    context=stage.name if stage else None,
                )
            )

        for nudge in nudges:
            if nudge.due_at is None:
                continue
            reminders.append(
                build_reminder(
                    source="nudge",
                    record_id=nudge.id,
                    title=nudge.message or "Pipeline nudge",
                    due_at=nudge.due_at,
                    now=now,
                    severity=nudge.severity if nudge.severity in NUDGE_SEVERITIES else None,
                    context=nudge.channel,
                )
            )

        for task in tasks:
            if task.status == "completed" or (task.due_at is None and task.status != "blocked"):
                continue
            reminders.append(
                build_reminder(
                    source="interview_task",
                    record_id=task.id,
                    title=task.title,
                    due_at=task.due_at,
                    now=now,
                    at_risk=task.priority in URGENT_TASK_PRIORITIES or task.status == "blocked",
                    context=task.priority,
                )
            )

        for package in packages:
            if package.decision_deadline is None or package.decision_status != "pending":
                continue
            if package.status in CLOSED_OFFER_STATUSES or package.status == "accepted":
                continue
            reminders.append(
                build_reminder(
                    source="offer",
                    record_id=package.id,
                    title="Offer decision due",
                    due_at=package.decision_deadline,
                    now=now,
                    at_risk=package.status == "negotiating",
                    context=package.status,
                )
            )

        return rank_reminders(reminders, self._reminder_limit)
