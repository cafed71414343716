"""
Read adapters for the career pipeline automation tables.

Board, stages and opportunities are scoped by board; workspaces, offers and
auto-apply rules by user. Child collections are fetched in one batched
query per parent type.
"""

from collections.abc import Sequence

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
    PipelineBoardRecord,
    PipelineStageRecord,
)
from app.features.dashboards.repository.base import (
    NO_FILTERS,
    RecordFilters,
    build_conditions,
    query_source,
    to_float,
    to_int,
    unique_ids,
)

OPPORTUNITY_LIMIT = 120
INTERVIEW_WORKSPACE_LIMIT = 40
OFFER_PACKAGE_LIMIT = 24
AUTO_APPLY_RULE_LIMIT = 24
STAGE_LIMIT = 50


class CareerPipelineRepository:
    """Raw SQL adapters for career pipeline automation."""

    @classmethod
    async def get_primary_board(cls, user_id: int) -> PipelineBoardRecord | None:
        query = """
            SELECT id, "userId" AS user_id, name, "isPrimary" AS is_primary, timezone,
                   "createdAt" AS created_at, "updatedAt" AS updated_at
            FROM career_pipeline_boards
            WHERE "userId" = %s
            ORDER BY "isPrimary" DESC, "updatedAt" DESC
            LIMIT 1
        """
        rows = await query_source("career_pipeline_boards", query, (user_id,))
        if not rows:
            return None
        row = rows[0]
        return PipelineBoardRecord(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            is_primary=bool(row["is_primary"]),
            timezone=row.get("timezone"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    @classmethod
    async def list_stages(
        cls, board_id: int, filters: RecordFilters = NO_FILTERS
    ) -> list[PipelineStageRecord]:
        params: list = [board_id]
        where = build_conditions(
            ['"boardId" = %s'], params, filters, timestamp_column='"updatedAt"',
            status_column='"outcomeCategory"',
        )
        params.append(filters.resolve_limit(STAGE_LIMIT))
        query = f"""
            SELECT id, "boardId" AS board_id, key, name, position,
                   "stageType" AS stage_type, "outcomeCategory" AS outcome_category,
                   "slaHours" AS sla_hours
            FROM career_pipeline_stages
            WHERE {where}
            ORDER BY position ASC, id ASC
            LIMIT %s
        """
        rows = await query_source("career_pipeline_stages", query, params)
        return [
            PipelineStageRecord(
                id=row["id"],
                board_id=row["board_id"],
                key=row["key"],
                name=row["name"],
                position=to_int(row.get("position")),
                stage_type=row.get("stage_type") or "applied",
                outcome_category=row.get("outcome_category") or "open",
                sla_hours=row.get("sla_hours"),
            )
            for row in rows
        ]

    @classmethod
    async def list_opportunities(
        cls, board_id: int, filters: RecordFilters = NO_FILTERS
    ) -> list[OpportunityRecord]:
        params: list = [board_id]
        where = build_conditions(
            ['"boardId" = %s'], params, filters, timestamp_column='"updatedAt"',
            status_column='"followUpStatus"',
        )
        params.append(filters.resolve_limit(OPPORTUNITY_LIMIT))
        query = f"""
            SELECT id, "boardId" AS board_id, "stageId" AS stage_id, "userId" AS user_id,
                   "applicationId" AS application_id, title, "companyName" AS company_name,
                   location, "salaryMin" AS salary_min, "salaryMax" AS salary_max,
                   "salaryCurrency" AS salary_currency, "stageEnteredAt" AS stage_entered_at,
                   "lastActivityAt" AS last_activity_at, "nextActionDueAt" AS next_action_due_at,
                   "followUpStatus" AS follow_up_status, "complianceStatus" AS compliance_status,
                   "createdAt" AS created_at, "updatedAt" AS updated_at
            FROM career_opportunities
            WHERE {where}
            ORDER BY "updatedAt" DESC, id DESC
            LIMIT %s
        """
        rows = await query_source("career_opportunities", query, params)
        return [
            OpportunityRecord(
                id=row["id"],
                board_id=row["board_id"],
                stage_id=row["stage_id"],
                user_id=row["user_id"],
                application_id=row.get("application_id"),
                title=row["title"],
                company_name=row["company_name"],
                location=row.get("location"),
                salary_min=to_float(row.get("salary_min")),
                salary_max=to_float(row.get("salary_max")),
                salary_currency=row.get("salary_currency"),
                stage_entered_at=row.get("stage_entered_at"),
                last_activity_at=row.get("last_activity_at"),
                next_action_due_at=row.get("next_action_due_at"),
                follow_up_status=row.get("follow_up_status") or "on_track",
                compliance_status=row.get("compliance_status") or "not_required",
                created_at=row.get("created_at"),
                updated_at=row.get("updated_at"),
            )
            for row in rows
        ]

    @classmethod
    async def list_interview_workspaces(
        cls, user_id: int, filters: RecordFilters = NO_FILTERS
    ) -> list[InterviewWorkspaceRecord]:
        params: list = [user_id]
        where = build_conditions(['"userId" = %s'], params, filters, timestamp_column='"updatedAt"')
        params.append(filters.resolve_limit(INTERVIEW_WORKSPACE_LIMIT))
        query = f"""
            SELECT id, "userId" AS user_id, "opportunityId" AS opportunity_id, status,
                   "roomUrl" AS room_url, "calendarEventId" AS calendar_event_id,
                   "lastSyncedAt" AS last_synced_at, "updatedAt" AS updated_at
            FROM career_interview_workspaces
            WHERE {where}
            ORDER BY "updatedAt" DESC, id DESC
            LIMIT %s
        """
        rows = await query_source("career_interview_workspaces", query, params)
        return [
            InterviewWorkspaceRecord(
                id=row["id"],
                user_id=row["user_id"],
                opportunity_id=row["opportunity_id"],
                status=row.get("status") or "planning",
                room_url=row.get("room_url"),
                calendar_event_id=row.get("calendar_event_id"),
                last_synced_at=row.get("last_synced_at"),
                updated_at=row.get("updated_at"),
            )
            for row in rows
        ]

    @classmethod
    async def list_offer_packages(
        cls, user_id: int, filters: RecordFilters = NO_FILTERS
    ) -> list[OfferPackageRecord]:
        params: list = [user_id]
        where = build_conditions(['"userId" = %s'], params, filters, timestamp_column='"updatedAt"')
        params.append(filters.resolve_limit(OFFER_PACKAGE_LIMIT))
        query = f"""
            SELECT id, "userId" AS user_id, "opportunityId" AS opportunity_id,
                   "applicationId" AS application_id, status, "decisionStatus" AS decision_status,
                   "totalCompValue" AS total_comp_value, "baseSalary" AS base_salary,
                   "bonusTarget" AS bonus_target, "equityValue" AS equity_value,
                   "benefitsValue" AS benefits_value, "currencyCode" AS currency_code,
                   "decisionDeadline" AS decision_deadline, "updatedAt" AS updated_at
            FROM career_offer_packages
            WHERE {where}
            ORDER BY "decisionDeadline" ASC NULLS LAST, id ASC
            LIMIT %s
        """
        rows = await query_source("career_offer_packages", query, params)
        return [
            OfferPackageRecord(
                id=row["id"],
                user_id=row["user_id"],
                opportunity_id=row.get("opportunity_id"),
                application_id=row.get("application_id"),
                status=row.get("status") or "draft",
                decision_status=row.get("decision_status") or "pending",
                total_comp_value=to_float(row.get("total_comp_value")),
                base_salary=to_float(row.get("base_salary")),
                bonus_target=to_float(row.get("bonus_target")),
                equity_value=to_float(row.get("equity_value")),
                benefits_value=to_float(row.get("benefits_value")),
                currency_code=row.get("currency_code"),
                decision_deadline=row.get("decision_deadline"),
                updated_at=row.get("updated_at"),
            )
            for row in rows
        ]

    @classmethod
    async def list_auto_apply_rules(
        cls, user_id: int, filters: RecordFilters = NO_FILTERS
    ) -> list[AutoApplyRuleRecord]:
        params: list = [user_id]
        where = build_conditions(['"userId" = %s'], params, filters, timestamp_column='"updatedAt"')
        params.append(filters.resolve_limit(AUTO_APPLY_RULE_LIMIT))
        query = f"""
            SELECT id, "userId" AS user_id, name, status,
                   "requiresManualReview" AS requires_manual_review,
                   "autoSendEnabled" AS auto_send_enabled, "sandboxMode" AS sandbox_mode,
                   "premiumRoleGuardrail" AS premium_role_guardrail,
                   "lastExecutedAt" AS last_executed_at, "updatedAt" AS updated_at
            FROM career_auto_apply_rules
            WHERE {where}
            ORDER BY "updatedAt" DESC, id DESC
            LIMIT %s
        """
        rows = await query_source("career_auto_apply_rules", query, params)
        return [
            AutoApplyRuleRecord(
                id=row["id"],
                user_id=row["user_id"],
                name=row["name"],
                status=row.get("status") or "draft",
                requires_manual_review=bool(row.get("requires_manual_review", True)),
                auto_send_enabled=bool(row.get("auto_send_enabled")),
                sandbox_mode=bool(row.get("sandbox_mode")),
                premium_role_guardrail=bool(row.get("premium_role_guardrail")),
                last_executed_at=row.get("last_executed_at"),
                updated_at=row.get("updated_at"),
            )
            for row in rows
        ]

    # --- second-order, batched by parent ids ---------------------------------

    @classmethod
    async def list_nudges_by_opportunity_ids(
        cls, opportunity_ids: Sequence[int], filters: RecordFilters = NO_FILTERS
    ) -> list[NudgeRecord]:
        """Unresolved nudges for the given opportunities."""
        ids = unique_ids(opportunity_ids)
        if not ids:
            return []
        params: list = [ids]
        where = build_conditions(
            ['"opportunityId" = ANY(%s)', '"resolvedAt" IS NULL'], params, filters,
            timestamp_column='"triggeredAt"', status_column="severity",
        )
        limit = filters.resolve_batch_limit(len(ids))
        params.append(limit)
        query = f"""
            SELECT id, "opportunityId" AS opportunity_id, "stageId" AS stage_id, severity,
                   channel, message, "triggeredAt" AS triggered_at, "dueAt" AS due_at,
                   "resolvedAt" AS resolved_at
            FROM career_opportunity_nudges
            WHERE {where}
            ORDER BY "triggeredAt" DESC, id DESC
            LIMIT %s
        """
        rows = await query_source("career_opportunity_nudges", query, params, limit=limit)
        return [
            NudgeRecord(
                id=row["id"],
                opportunity_id=row["opportunity_id"],
                stage_id=row["stage_id"],
                severity=row.get("severity") or "info",
                channel=row.get("channel") or "in_app",
                message=row.get("message") or "",
                triggered_at=row.get("triggered_at"),
                due_at=row.get("due_at"),
                resolved_at=row.get("resolved_at"),
            )
            for row in rows
        ]

    @classmethod
    async def list_interview_tasks_by_workspace_ids(
        cls, workspace_ids: Sequence[int], filters: RecordFilters = NO_FILTERS
    ) -> list[InterviewTaskRecord]:
        ids = unique_ids(workspace_ids)
        if not ids:
            return []
        params: list = [ids]
        where = build_conditions(
            ['"workspaceId" = ANY(%s)'], params, filters, timestamp_column='"dueAt"'
        )
        limit = filters.resolve_batch_limit(len(ids))
        params.append(limit)
        query = f"""
            SELECT id, "workspaceId" AS workspace_id, title, status, priority,
                   "dueAt" AS due_at, "completedAt" AS completed_at
            FROM career_interview_tasks
            WHERE {where}
            ORDER BY "dueAt" ASC NULLS LAST, id ASC
            LIMIT %s
        """
        rows = await query_source("career_interview_tasks", query, params, limit=limit)
        return [
            InterviewTaskRecord(
                id=row["id"],
                workspace_id=row["workspace_id"],
                title=row["title"],
                status=row.get("status") or "pending",
                priority=row.get("priority") or "medium",
                due_at=row.get("due_at"),
                completed_at=row.get("completed_at"),
            )
            for row in rows
        ]

    @classmethod
    async def list_scorecards_by_workspace_ids(
        cls, workspace_ids: Sequence[int], filters: RecordFilters = NO_FILTERS
    ) -> list[InterviewScorecardRecord]:
        ids = unique_ids(workspace_ids)
        if not ids:
            return []
        params: list = [ids]
        where = build_conditions(
            ['"workspaceId" = ANY(%s)'], params, filters, timestamp_column='"submittedAt"',
            status_column="recommendation",
        )
        limit = filters.resolve_batch_limit(len(ids))
        params.append(limit)
        query = f"""
            SELECT id, "workspaceId" AS workspace_id, "interviewerId" AS interviewer_id,
                   "submittedAt" AS submitted_at, "overallScore" AS overall_score,
                   recommendation
            FROM career_interview_scorecards
            WHERE {where}
            ORDER BY "submittedAt" DESC NULLS LAST, id DESC
            LIMIT %s
        """
        rows = await query_source("career_interview_scorecards", query, params, limit=limit)
        return [
            InterviewScorecardRecord(
                id=row["id"],
                workspace_id=row["workspace_id"],
                interviewer_id=row.get("interviewer_id"),
                submitted_at=row.get("submitted_at"),
                overall_score=to_float(row.get("overall_score")),
                recommendation=row.get("recommendation") or "hold",
            )
            for row in rows
        ]

    @classmethod
    async def list_offer_scenarios_by_package_ids(
        cls, package_ids: Sequence[int], filters: RecordFilters = NO_FILTERS
    ) -> list[OfferScenarioRecord]:
        ids = unique_ids(package_ids)
        if not ids:
            return []
        params: list = [ids]
        where = build_conditions(['"packageId" = ANY(%s)'], params, filters, timestamp_column='"createdAt"')
        limit = filters.resolve_batch_limit(len(ids))
        params.append(limit)
        query = f"""
            SELECT id, "packageId" AS package_id, label, "baseSalary" AS base_salary,
                   "equityValue" AS equity_value, "bonusValue" AS bonus_value,
                   "benefitsValue" AS benefits_value, "totalValue" AS total_value
            FROM career_offer_scenarios
            WHERE {where}
            ORDER BY id ASC
            LIMIT %s
        """
        rows = await query_source("career_offer_scenarios", query, params, limit=limit)
        return [
            OfferScenarioRecord(
                id=row["id"],
                package_id=row["package_id"],
                label=row["label"],
                base_salary=to_float(row.get("base_salary")),
                equity_value=to_float(row.get("equity_value")),
                bonus_value=to_float(row.get("bonus_value")),
                benefits_value=to_float(row.get("benefits_value")),
                total_value=to_float(row.get("total_value")),
            )
            for row in rows
        ]

    @classmethod
    async def list_offer_documents_by_package_ids(
        cls, package_ids: Sequence[int], filters: RecordFilters = NO_FILTERS
    ) -> list[OfferDocumentRecord]:
        ids = unique_ids(package_ids)
        if not ids:
            return []
        params: list = [ids]
        where = build_conditions(['"packageId" = ANY(%s)'], params, filters, timestamp_column='"createdAt"')
        limit = filters.resolve_batch_limit(len(ids))
        params.append(limit)
        query = f"""
            SELECT id, "packageId" AS package_id, "fileName" AS file_name, version,
                   "isSigned" AS is_signed, "signedAt" AS signed_at
            FROM career_offer_documents
            WHERE {where}
            ORDER BY id ASC
            LIMIT %s
        """
        rows = await query_source("career_offer_documents", query, params, limit=limit)
        return [
            OfferDocumentRecord(
                id=row["id"],
                package_id=row["package_id"],
                file_name=row["file_name"],
                version=row.get("version"),
                is_signed=bool(row.get("is_signed")),
                signed_at=row.get("signed_at"),
            )
            for row in rows
        ]

    @classmethod
    async def list_test_runs_by_rule_ids(
        cls, rule_ids: Sequence[int], filters: RecordFilters = NO_FILTERS
    ) -> list[AutoApplyTestRunRecord]:
        ids = unique_ids(rule_ids)
        if not ids:
            return []
        params: list = [ids]
        where = build_conditions(['"ruleId" = ANY(%s)'], params, filters, timestamp_column='"executedAt"')
        limit = filters.resolve_batch_limit(len(ids))
        params.append(limit)
        query = f"""
            SELECT id, "ruleId" AS rule_id, status, "executedAt" AS executed_at,
                   "evaluatedCount" AS evaluated_count, "matchesCount" AS matches_count,
                   "autoSentCount" AS auto_sent_count
            FROM career_auto_apply_test_runs
            WHERE {where}
            ORDER BY "executedAt" DESC NULLS LAST, id DESC
            LIMIT %s
        """
        rows = await query_source("career_auto_apply_test_runs", query, params, limit=limit)
        return [
            AutoApplyTestRunRecord(
                id=row["id"],
                rule_id=row["rule_id"],
                status=row.get("status") or "pending",
                executed_at=row.get("executed_at"),
                evaluated_count=to_int(row.get("evaluated_count")),
                matches_count=to_int(row.get("matches_count")),
                auto_sent_count=to_int(row.get("auto_sent_count")),
            )
            for row in rows
        ]

    @classmethod
    async def list_analytics_by_rule_ids(
        cls, rule_ids: Sequence[int], filters: RecordFilters = NO_FILTERS
    ) -> list[AutoApplyAnalyticsRecord]:
        ids = unique_ids(rule_ids)
        if not ids:
            return []
        params: list = [ids]
        where = build_conditions(
            ['"ruleId" = ANY(%s)'], params,
            RecordFilters(since=filters.since, until=filters.until, limit=filters.limit),
            timestamp_column='"windowStart"',
        )
        limit = filters.resolve_batch_limit(len(ids))
        params.append(limit)
        query = f"""
            SELECT id, "ruleId" AS rule_id, "windowStart" AS window_start,
                   "windowEnd" AS window_end, submissions, conversions, rejections,
                   "manualReviews" AS manual_reviews
            FROM career_auto_apply_analytics
            WHERE {where}
            ORDER BY "windowStart" DESC NULLS LAST, id DESC
            LIMIT %s
        """
        rows = await query_source("career_auto_apply_analytics", query, params, limit=limit)
        return [
            AutoApplyAnalyticsRecord(
                id=row["id"],
                rule_id=row["rule_id"],
                window_start=row.get("window_start"),
                window_end=row.get("window_end"),
                submissions=to_int(row.get("submissions")),
                conversions=to_int(row.get("conversions")),
                rejections=to_int(row.get("rejections")),
                manual_reviews=to_int(row.get("manual_reviews")),
            )
            for row in rows
        ]
