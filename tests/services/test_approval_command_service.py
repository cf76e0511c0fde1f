"""
Tests for ApprovalCommandService -- submit, approve and reject.

Covers:
- create_approval_request(): happy path, decision snapshot, missing or
  inactive template, empty chain, unknown submitter/approver, duplicate
  pending request, resubmission after completion, description truncation
- approve(): level advance, final completion, out-of-turn vs stranger,
  finalized guard, unknown request, single event on completion
- reject(): any level, reason required before persistence, comment row,
  finalized guard
- Sequential gating properties (hypothesis)
"""

from uuid import uuid4

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from sqlalchemy import func, select

from approval_kernel.domain.approval import (
    ApprovalStatus,
    DecisionStatus,
    EntityType,
    HistoryAction,
)
from approval_kernel.exceptions import (
    ApprovalAlreadyFinalizedError,
    ApprovalRequestNotFoundError,
    ChainHasNoLevelsError,
    ChainTemplateNotFoundError,
    DuplicateApprovalRequestError,
    NotAtCurrentLevelError,
    RejectionReasonRequiredError,
    UnauthorizedApproverError,
    UserNotFoundError,
)
from approval_kernel.models.approval import ApprovalRequestModel
from approval_kernel.models.history import ApprovalCommentModel, ApprovalHistoryModel
from approval_kernel.services.approval_command_service import (
    ENTITY_DESCRIPTION_MAX_LENGTH,
    ApprovalCommandService,
)
from approval_kernel.services.approval_repository import ApprovalRepository


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _request(session, request_id) -> ApprovalRequestModel:
    return session.get(ApprovalRequestModel, request_id)


def _history(session, request_id) -> list[ApprovalHistoryModel]:
    return list(
        session.scalars(
            select(ApprovalHistoryModel)
            .where(ApprovalHistoryModel.approval_request_id == request_id)
            .order_by(ApprovalHistoryModel.created_at)
        )
    )


def _count(session, model, request_id) -> int:
    return session.scalar(
        select(func.count())
        .select_from(model)
        .where(model.approval_request_id == request_id)
    )


class SpyRepository(ApprovalRepository):
    """Repository that records which operations were reached."""

    def __init__(self, session):
        super().__init__(session)
        self.calls: list[str] = []

    def find_approval_request_by_id(self, request_id, for_update=True):
        self.calls.append("find_approval_request_by_id")
        return super().find_approval_request_by_id(request_id, for_update)

    def save_approval_request(self, request):
        self.calls.append("save_approval_request")
        return super().save_approval_request(request)


# ---------------------------------------------------------------------------
# create_approval_request
# ---------------------------------------------------------------------------


class TestCreateApprovalRequest:

    def test_creates_pending_request_at_level_one(
        self, session, submit_quotation, submitter_id, team_lead_id, ceo_id,
        deterministic_clock,
    ):
        entity_id = uuid4()
        request_id = submit_quotation(entity_id, "견적서 Q-2024-001")

        request = _request(session, request_id)
        assert request.entity_type == EntityType.QUOTATION.value
        assert request.entity_id == entity_id
        assert request.entity_description == "견적서 Q-2024-001"
        assert request.status == ApprovalStatus.PENDING.value
        assert request.current_level == 1
        assert request.total_levels == 2
        assert request.submitted_by_id == submitter_id
        assert request.submitted_at == deterministic_clock.now()
        assert [d.expected_approver_user_id for d in request.level_decisions] == [
            team_lead_id, ceo_id,
        ]

    def test_records_single_submitted_history(self, session, submit_quotation, submitter_id):
        request_id = submit_quotation()

        history = _history(session, request_id)
        assert len(history) == 1
        assert history[0].action == HistoryAction.SUBMITTED.value
        assert history[0].actor_id == submitter_id
        assert history[0].level_order is None

    def test_no_event_on_submission(self, submit_quotation, event_recorder):
        submit_quotation()
        assert event_recorder.events == []

    def test_missing_template(self, approval_service, submitter_id):
        with pytest.raises(ChainTemplateNotFoundError):
            approval_service.create_approval_request(
                EntityType.PURCHASE_ORDER, uuid4(), "PO-1", submitter_id,
            )

    def test_inactive_template(
        self, approval_service, quotation_template, submitter_id,
    ):
        approval_service.deactivate_chain_template(quotation_template)
        with pytest.raises(ChainTemplateNotFoundError):
            approval_service.create_approval_request(
                EntityType.QUOTATION, uuid4(), "Q", submitter_id,
            )

    def test_template_without_levels(self, approval_service, submitter_id):
        approval_service.create_chain_template(EntityType.PURCHASE_ORDER, "발주서 결재")
        with pytest.raises(ChainHasNoLevelsError):
            approval_service.create_approval_request(
                EntityType.PURCHASE_ORDER, uuid4(), "PO", submitter_id,
            )

    def test_unknown_submitter(self, session, approval_service, quotation_template):
        before = session.scalar(select(func.count()).select_from(ApprovalRequestModel))
        with pytest.raises(UserNotFoundError):
            approval_service.create_approval_request(
                EntityType.QUOTATION, uuid4(), "Q", uuid4(),
            )
        after = session.scalar(select(func.count()).select_from(ApprovalRequestModel))
        assert before == after

    def test_approver_missing_from_directory(
        self, session, submitter_id, team_lead_id, quotation_template,
        event_recorder, deterministic_clock,
    ):
        """A directory that no longer knows an approver refuses submission."""

        class ForgetfulDirectory:
            def __init__(self, known):
                self.known = set(known)

            def user_exists(self, user_id):
                return user_id in self.known

            def find_user(self, user_id):
                return None

            def find_users(self, user_ids):
                from approval_kernel.domain.identity import UserInfo

                return {
                    uid: UserInfo(uid, str(uid), str(uid))
                    for uid in user_ids if uid in self.known
                }

            def find_user_by_username(self, username):
                return None

        service = ApprovalCommandService(
            session,
            users=ForgetfulDirectory([submitter_id, team_lead_id]),
            publisher=event_recorder,
            clock=deterministic_clock,
        )
        with pytest.raises(UserNotFoundError):
            service.create_approval_request(EntityType.QUOTATION, uuid4(), "Q", submitter_id)

    def test_duplicate_pending_request(self, submit_quotation):
        entity_id = uuid4()
        first = submit_quotation(entity_id)

        with pytest.raises(DuplicateApprovalRequestError) as exc_info:
            submit_quotation(entity_id)
        assert exc_info.value.existing_request_id == str(first)

    def test_resubmission_after_rejection(
        self, approval_service, submit_quotation, team_lead_id,
    ):
        entity_id = uuid4()
        first = submit_quotation(entity_id)
        approval_service.reject(first, team_lead_id, "수정 필요")

        second = submit_quotation(entity_id)
        assert second != first

    def test_long_description_truncated(self, session, submit_quotation):
        request_id = submit_quotation(description="가" * (ENTITY_DESCRIPTION_MAX_LENGTH + 50))
        assert len(_request(session, request_id).entity_description) == ENTITY_DESCRIPTION_MAX_LENGTH

    def test_logs_creation(self, submit_quotation, captured_logs):
        request_id = submit_quotation()
        created = [r for r in captured_logs() if r["message"] == "approval_request_created"]
        assert len(created) == 1
        assert created[0]["approval_request_id"] == str(request_id)
        assert created[0]["total_levels"] == 2


# ---------------------------------------------------------------------------
# approve
# ---------------------------------------------------------------------------


class TestApprove:

    def test_first_level_advances(
        self, session, approval_service, submit_quotation, team_lead_id,
        event_recorder, deterministic_clock,
    ):
        request_id = submit_quotation()
        deterministic_clock.advance(60)

        approval_service.approve(request_id, team_lead_id, "검토 완료")

        request = _request(session, request_id)
        assert request.status == ApprovalStatus.PENDING.value
        assert request.current_level == 2
        first = request.decision_at(1)
        assert first.decision == DecisionStatus.APPROVED.value
        assert first.decided_by_user_id == team_lead_id
        assert first.decided_at == deterministic_clock.now()
        assert first.comments == "검토 완료"
        assert event_recorder.events == []

        history = _history(session, request_id)
        assert [h.action for h in history] == ["SUBMITTED", "APPROVED"]
        assert history[1].level_order == 1
        assert history[1].comments == "검토 완료"

    def test_final_level_completes_and_publishes_once(
        self, session, approval_service, submit_quotation, team_lead_id, ceo_id,
        event_recorder, deterministic_clock,
    ):
        entity_id = uuid4()
        request_id = submit_quotation(entity_id)
        deterministic_clock.advance(60)
        approval_service.approve(request_id, team_lead_id)
        deterministic_clock.advance(60)
        approval_service.approve(request_id, ceo_id, "승인")

        request = _request(session, request_id)
        assert request.status == ApprovalStatus.APPROVED.value
        assert request.completed_at == deterministic_clock.now()
        assert all(d.decision == "APPROVED" for d in request.level_decisions)

        assert len(event_recorder.events) == 1
        event = event_recorder.last
        assert event.outcome == ApprovalStatus.APPROVED
        assert event.entity_type == EntityType.QUOTATION
        assert event.entity_id == entity_id
        assert event.approval_request_id == request_id
        assert event.actor_id == ceo_id

        assert [h.action for h in _history(session, request_id)] == [
            "SUBMITTED", "APPROVED", "APPROVED",
        ]

    def test_later_level_approver_out_of_turn(
        self, session, approval_service, submit_quotation, ceo_id,
    ):
        request_id = submit_quotation()
        with pytest.raises(NotAtCurrentLevelError) as exc_info:
            approval_service.approve(request_id, ceo_id)
        assert exc_info.value.current_level == 1
        assert _request(session, request_id).current_level == 1
        assert _count(session, ApprovalHistoryModel, request_id) == 1

    def test_stranger_unauthorized(
        self, approval_service, submit_quotation, stranger_id,
    ):
        request_id = submit_quotation()
        with pytest.raises(UnauthorizedApproverError):
            approval_service.approve(request_id, stranger_id)

    def test_same_approver_cannot_decide_twice(
        self, approval_service, submit_quotation, team_lead_id,
    ):
        request_id = submit_quotation()
        approval_service.approve(request_id, team_lead_id)
        with pytest.raises(NotAtCurrentLevelError):
            approval_service.approve(request_id, team_lead_id)

    def test_finalized_request_refused(
        self, session, approval_service, submit_quotation, team_lead_id, ceo_id,
        event_recorder,
    ):
        request_id = submit_quotation()
        approval_service.approve(request_id, team_lead_id)
        approval_service.approve(request_id, ceo_id)

        with pytest.raises(ApprovalAlreadyFinalizedError) as exc_info:
            approval_service.approve(request_id, ceo_id)
        assert exc_info.value.status == "APPROVED"
        assert len(event_recorder.events) == 1
        assert _count(session, ApprovalHistoryModel, request_id) == 3

    def test_unknown_request(self, approval_service, team_lead_id):
        with pytest.raises(ApprovalRequestNotFoundError):
            approval_service.approve(uuid4(), team_lead_id)

    def test_refusal_is_logged_with_code(
        self, approval_service, submit_quotation, stranger_id, captured_logs,
    ):
        request_id = submit_quotation()
        with pytest.raises(UnauthorizedApproverError):
            approval_service.approve(request_id, stranger_id)

        refused = [r for r in captured_logs() if r["message"] == "approval_command_rejected"]
        assert refused[-1]["error_code"] == "UNAUTHORIZED_APPROVER"
        assert refused[-1]["operation"] == "approve"
        assert refused[-1]["approval_request_id"] == str(request_id)

    def test_template_edit_does_not_reach_in_flight_request(
        self, session, approval_service, submit_quotation, quotation_template,
        team_lead_id, ceo_id, make_user,
    ):
        from approval_kernel.domain.approval import ChainLevel

        request_id = submit_quotation()
        newcomer = make_user()
        approval_service.update_chain_levels(
            quotation_template,
            [ChainLevel(1, "신임 팀장", newcomer)],
        )

        approval_service.approve(request_id, team_lead_id)
        approval_service.approve(request_id, ceo_id)
        assert _request(session, request_id).status == ApprovalStatus.APPROVED.value


# ---------------------------------------------------------------------------
# reject
# ---------------------------------------------------------------------------


class TestReject:

    def test_reject_at_first_level(
        self, session, approval_service, submit_quotation, team_lead_id,
        event_recorder,
    ):
        request_id = submit_quotation()

        approval_service.reject(request_id, team_lead_id, "단가 재검토 필요")

        request = _request(session, request_id)
        assert request.status == ApprovalStatus.REJECTED.value
        assert request.current_level == 1
        assert request.decision_at(1).decision == DecisionStatus.REJECTED.value
        assert request.decision_at(1).comments == "단가 재검토 필요"
        assert request.decision_at(2).decision == DecisionStatus.PENDING.value

        history = _history(session, request_id)[-1]
        assert history.action == HistoryAction.REJECTED.value
        assert history.level_order == 1
        assert history.comments == "단가 재검토 필요"

        assert len(event_recorder.events) == 1
        assert event_recorder.last.outcome == ApprovalStatus.REJECTED
        assert event_recorder.last.reason == "단가 재검토 필요"

    def test_reject_at_final_level(
        self, session, approval_service, submit_quotation, team_lead_id, ceo_id,
    ):
        request_id = submit_quotation()
        approval_service.approve(request_id, team_lead_id)
        approval_service.reject(request_id, ceo_id, "예산 초과")

        request = _request(session, request_id)
        assert request.status == ApprovalStatus.REJECTED.value
        assert request.current_level == 2
        assert request.decision_at(1).decision == DecisionStatus.APPROVED.value

    def test_comments_stored_separately(
        self, session, approval_service, submit_quotation, team_lead_id,
    ):
        request_id = submit_quotation()
        approval_service.reject(request_id, team_lead_id, "가격", comments="다음 주 재상신 바랍니다")

        comment = session.scalars(
            select(ApprovalCommentModel)
            .where(ApprovalCommentModel.approval_request_id == request_id)
        ).one()
        assert comment.commenter_id == team_lead_id
        assert comment.comment_text == "다음 주 재상신 바랍니다"

    def test_blank_comments_not_stored(
        self, session, approval_service, submit_quotation, team_lead_id,
    ):
        request_id = submit_quotation()
        approval_service.reject(request_id, team_lead_id, "가격", comments="   ")
        assert _count(session, ApprovalCommentModel, request_id) == 0

    @pytest.mark.parametrize("reason", [None, "", "   ", "\t\n"])
    def test_reason_required_before_any_persistence(
        self, session, submit_quotation, team_lead_id, event_recorder,
        deterministic_clock, reason,
    ):
        request_id = submit_quotation()
        spy = SpyRepository(session)
        service = ApprovalCommandService(
            session, publisher=event_recorder, clock=deterministic_clock, repository=spy,
        )

        with pytest.raises(RejectionReasonRequiredError):
            service.reject(request_id, team_lead_id, reason)

        assert spy.calls == []
        assert _request(session, request_id).is_pending
        assert event_recorder.events == []

    def test_reason_checked_even_for_unknown_request(self, approval_service, team_lead_id):
        with pytest.raises(RejectionReasonRequiredError):
            approval_service.reject(uuid4(), team_lead_id, " ")

    def test_out_of_turn_reject(self, approval_service, submit_quotation, ceo_id):
        request_id = submit_quotation()
        with pytest.raises(NotAtCurrentLevelError):
            approval_service.reject(request_id, ceo_id, "안 됨")

    def test_rejected_request_refuses_everything(
        self, approval_service, submit_quotation, team_lead_id, ceo_id,
    ):
        request_id = submit_quotation()
        approval_service.reject(request_id, team_lead_id, "no")

        with pytest.raises(ApprovalAlreadyFinalizedError):
            approval_service.approve(request_id, team_lead_id)
        with pytest.raises(ApprovalAlreadyFinalizedError):
            approval_service.reject(request_id, ceo_id, "again")

    def test_subscriber_failure_propagates(
        self, session, submit_quotation, team_lead_id, deterministic_clock,
    ):
        from approval_kernel.services.event_dispatch import InProcessEventPublisher

        publisher = InProcessEventPublisher()

        def exploding_handler(event):
            raise RuntimeError("quotation module unavailable")

        publisher.subscribe(exploding_handler)
        service = ApprovalCommandService(session, publisher=publisher, clock=deterministic_clock)

        request_id = submit_quotation()
        with pytest.raises(RuntimeError, match="quotation module unavailable"):
            service.reject(request_id, team_lead_id, "no")


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


class TestSequentialGatingProperties:

    @given(n=st.integers(min_value=1, max_value=5), data=st.data())
    @settings(
        max_examples=15,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    def test_only_current_level_approver_may_act(
        self, session, approval_service, make_user, n, data,
    ):
        approvers = [make_user() for _ in range(n)]
        submitter = make_user()
        entity_type = EntityType.PURCHASE_ORDER
        template_id = _ensure_template(session, approval_service, entity_type, approvers)
        request_id = approval_service.create_approval_request(
            entity_type, uuid4(), "PO", submitter,
        )

        for level in range(1, n + 1):
            wrong = data.draw(
                st.sampled_from([a for i, a in enumerate(approvers, start=1) if i != level])
                if n > 1 else st.just(submitter)
            )
            expected_error = NotAtCurrentLevelError if wrong in approvers else UnauthorizedApproverError
            with pytest.raises(expected_error):
                approval_service.approve(request_id, wrong)
            assert _request(session, request_id).current_level == level

            approval_service.approve(request_id, approvers[level - 1])

        request = _request(session, request_id)
        assert request.status == ApprovalStatus.APPROVED.value
        assert _count(session, ApprovalHistoryModel, request_id) == n + 1
        assert template_id is not None

    @given(n=st.integers(min_value=1, max_value=5), data=st.data())
    @settings(
        max_examples=15,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    def test_reject_at_any_level_is_terminal(
        self, session, approval_service, make_user, event_recorder, n, data,
    ):
        k = data.draw(st.integers(min_value=1, max_value=n))
        approvers = [make_user() for _ in range(n)]
        submitter = make_user()
        _ensure_template(session, approval_service, EntityType.PURCHASE_ORDER, approvers)
        request_id = approval_service.create_approval_request(
            EntityType.PURCHASE_ORDER, uuid4(), "PO", submitter,
        )
        events_before = len(event_recorder.events)

        for level in range(1, k):
            approval_service.approve(request_id, approvers[level - 1])
        approval_service.reject(request_id, approvers[k - 1], "reason")

        request = _request(session, request_id)
        assert request.status == ApprovalStatus.REJECTED.value
        assert request.current_level == k
        decisions = [d.decision for d in request.level_decisions]
        assert decisions == ["APPROVED"] * (k - 1) + ["REJECTED"] + ["PENDING"] * (n - k)
        assert len(event_recorder.events) == events_before + 1

        for actor in approvers:
            with pytest.raises(ApprovalAlreadyFinalizedError):
                approval_service.approve(request_id, actor)


def _ensure_template(session, service, entity_type, approvers):
    """Create the template on first use, then reconfigure it for each example."""
    from approval_kernel.domain.approval import ChainLevel
    from approval_kernel.selectors.approval_selector import ApprovalSelector

    levels = [
        ChainLevel(level_order=i, level_name=f"L{i}", approver_user_id=a)
        for i, a in enumerate(approvers, start=1)
    ]
    existing = {
        view.entity_type: view.id
        for view in ApprovalSelector(session).list_chain_templates()
    }
    if entity_type not in existing:
        return service.create_chain_template(entity_type, "property chain", levels=levels)
    return service.update_chain_levels(existing[entity_type], levels)
