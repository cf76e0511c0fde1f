"""
Tests for ApprovalSelector read models.

Covers:
- get_approval_detail(): decisions with resolved names, not found
- list_pending_for_approver(): only requests waiting at the user's level,
  pagination
- list_approvals(): filters and newest-first ordering
- get_history() / get_comments(): chronological trail
- list_chain_templates() / get_chain_template()
"""

from uuid import uuid4

import pytest

from approval_kernel.domain.approval import (
    ApprovalStatus,
    DecisionStatus,
    EntityType,
    HistoryAction,
)
from approval_kernel.exceptions import (
    ApprovalRequestNotFoundError,
    ChainTemplateNotFoundError,
)


class TestApprovalDetail:

    def test_detail_resolves_names(
        self, approval_service, approval_selector, submit_quotation,
        team_lead_id, ceo_id,
    ):
        request_id = submit_quotation(description="견적서 Q-9")
        approval_service.approve(request_id, team_lead_id, "확인")

        detail = approval_selector.get_approval_detail(request_id)

        assert detail.entity_type == EntityType.QUOTATION
        assert detail.entity_description == "견적서 Q-9"
        assert detail.status == ApprovalStatus.PENDING
        assert detail.submitted_by_name == "박영업"
        assert detail.current_level == 2
        first, second = detail.level_decisions
        assert first.decision == DecisionStatus.APPROVED
        assert first.expected_approver_name == "김재무"
        assert first.decided_by_name == "김재무"
        assert first.comments == "확인"
        assert second.decision == DecisionStatus.PENDING
        assert second.expected_approver_user_id == ceo_id
        assert second.decided_by_name is None
        assert detail.current_decision == second

    def test_detail_not_found(self, approval_selector, db_tables):
        with pytest.raises(ApprovalRequestNotFoundError):
            approval_selector.get_approval_detail(uuid4())

    def test_exists(self, approval_selector, submit_quotation):
        request_id = submit_quotation()
        assert approval_selector.exists(request_id)
        assert not approval_selector.exists(uuid4())


class TestPendingForApprover:

    def test_only_current_level_shows_up(
        self, approval_service, approval_selector, submit_quotation,
        team_lead_id, ceo_id,
    ):
        first = submit_quotation()
        second = submit_quotation()
        approval_service.approve(first, team_lead_id)

        lead_queue = approval_selector.list_pending_for_approver(team_lead_id)
        ceo_queue = approval_selector.list_pending_for_approver(ceo_id)

        assert [item.id for item in lead_queue.items] == [second]
        assert [item.id for item in ceo_queue.items] == [first]
        assert lead_queue.total == 1

    def test_completed_requests_excluded(
        self, approval_service, approval_selector, submit_quotation, team_lead_id,
    ):
        request_id = submit_quotation()
        approval_service.reject(request_id, team_lead_id, "no")
        assert approval_selector.list_pending_for_approver(team_lead_id).total == 0

    def test_pagination(
        self, approval_selector, submit_quotation, team_lead_id, deterministic_clock,
    ):
        ids = []
        for _ in range(5):
            ids.append(submit_quotation())
            deterministic_clock.advance(60)

        page = approval_selector.list_pending_for_approver(team_lead_id, limit=2, offset=0)
        rest = approval_selector.list_pending_for_approver(team_lead_id, limit=10, offset=2)

        assert page.total == 5
        assert page.has_next
        assert [item.id for item in page.items] == [ids[4], ids[3]]
        assert [item.id for item in rest.items] == [ids[2], ids[1], ids[0]]
        assert not rest.has_next


class TestListApprovals:

    def test_filters_by_status_and_type(
        self, approval_service, approval_selector, submit_quotation, team_lead_id,
        deterministic_clock,
    ):
        rejected = submit_quotation()
        deterministic_clock.advance(60)
        pending = submit_quotation()
        approval_service.reject(rejected, team_lead_id, "no")

        everything = approval_selector.list_approvals(entity_type=EntityType.QUOTATION)
        only_pending = approval_selector.list_approvals(
            entity_type=EntityType.QUOTATION, status=ApprovalStatus.PENDING,
        )
        orders = approval_selector.list_approvals(entity_type=EntityType.PURCHASE_ORDER)

        assert [item.id for item in everything.items] == [pending, rejected]
        assert [item.id for item in only_pending.items] == [pending]
        assert only_pending.items[0].submitted_by_name == "박영업"
        assert orders.total == 0
        assert orders.items == ()


class TestHistoryAndComments:

    def test_history_is_chronological(
        self, approval_service, approval_selector, submit_quotation,
        team_lead_id, ceo_id, deterministic_clock,
    ):
        request_id = submit_quotation()
        deterministic_clock.advance(60)
        approval_service.approve(request_id, team_lead_id, "1차 승인")
        deterministic_clock.advance(60)
        approval_service.reject(request_id, ceo_id, "예산 초과", comments="다음 분기에")

        history = approval_selector.get_history(request_id)

        assert [h.action for h in history] == [
            HistoryAction.SUBMITTED,
            HistoryAction.APPROVED,
            HistoryAction.REJECTED,
        ]
        assert [h.level_order for h in history] == [None, 1, 2]
        assert [h.actor_name for h in history] == ["박영업", "김재무", "관리자"]
        assert history[2].comments == "예산 초과"

        comments = approval_selector.get_comments(request_id)
        assert len(comments) == 1
        assert comments[0].commenter_name == "관리자"
        assert comments[0].comment_text == "다음 분기에"

    def test_history_not_found(self, approval_selector, db_tables):
        with pytest.raises(ApprovalRequestNotFoundError):
            approval_selector.get_history(uuid4())


class TestChainTemplates:

    def test_list_and_get(
        self, approval_service, approval_selector, quotation_template, make_user,
    ):
        approval_service.create_chain_template(EntityType.PURCHASE_ORDER, "발주서 결재")

        templates = approval_selector.list_chain_templates()
        assert [t.entity_type for t in templates] == [
            EntityType.PURCHASE_ORDER,
            EntityType.QUOTATION,
        ]

        quotation = approval_selector.get_chain_template(quotation_template)
        assert quotation.total_levels == 2
        assert [lvl.approver_name for lvl in quotation.levels] == ["김재무", "관리자"]

    def test_get_missing_template(self, approval_selector, db_tables):
        with pytest.raises(ChainTemplateNotFoundError):
            approval_selector.get_chain_template(uuid4())
