"""
Tests for chain template administration.

Covers:
- update_chain_levels(): wholesale replacement, 1..n enforcement,
  unknown approver, unknown template, version bump
- create_chain_template(): with and without levels, duplicate entity type
- deactivate / activate
"""

from uuid import uuid4

import pytest

from approval_kernel.domain.approval import ChainLevel, EntityType
from approval_kernel.exceptions import (
    ChainTemplateNotFoundError,
    DuplicateChainTemplateError,
    NonSequentialLevelOrderError,
    UserNotFoundError,
)
from approval_kernel.models.chain_template import ChainTemplateModel


def _levels(*pairs):
    return [
        ChainLevel(level_order=order, level_name=f"L{order}", approver_user_id=approver)
        for order, approver in pairs
    ]


class TestUpdateChainLevels:

    def test_three_sequential_levels(
        self, approval_service, approval_selector, quotation_template, make_user,
    ):
        a, b, c = make_user(), make_user(), make_user()

        approval_service.update_chain_levels(
            quotation_template, _levels((1, a), (2, b), (3, c)),
        )

        view = approval_selector.get_chain_template(quotation_template)
        assert view.total_levels == 3
        assert [lvl.approver_user_id for lvl in view.levels] == [a, b, c]

    def test_gap_rejected_and_levels_kept(
        self, approval_service, approval_selector, quotation_template,
        team_lead_id, ceo_id, make_user,
    ):
        with pytest.raises(NonSequentialLevelOrderError) as exc_info:
            approval_service.update_chain_levels(
                quotation_template, _levels((1, make_user()), (3, make_user())),
            )
        assert exc_info.value.level_orders == [1, 3]

        view = approval_selector.get_chain_template(quotation_template)
        assert [lvl.approver_user_id for lvl in view.levels] == [team_lead_id, ceo_id]

    def test_unknown_approver_rejected(
        self, approval_service, quotation_template, team_lead_id,
    ):
        missing = uuid4()
        with pytest.raises(UserNotFoundError) as exc_info:
            approval_service.update_chain_levels(
                quotation_template, _levels((1, team_lead_id), (2, missing)),
            )
        assert exc_info.value.user_id == str(missing)

    def test_unknown_template(self, approval_service, team_lead_id):
        with pytest.raises(ChainTemplateNotFoundError):
            approval_service.update_chain_levels(uuid4(), _levels((1, team_lead_id)))

    def test_version_bumped(
        self, session, approval_service, quotation_template, team_lead_id,
    ):
        before = session.get(ChainTemplateModel, quotation_template).version
        approval_service.update_chain_levels(quotation_template, _levels((1, team_lead_id)))
        assert session.get(ChainTemplateModel, quotation_template).version == before + 1

    def test_logs_replacement(
        self, approval_service, quotation_template, team_lead_id, captured_logs,
    ):
        approval_service.update_chain_levels(quotation_template, _levels((1, team_lead_id)))
        replaced = [r for r in captured_logs() if r["message"] == "chain_levels_replaced"]
        assert replaced[0]["total_levels"] == 1
        assert replaced[0]["template_id"] == str(quotation_template)


class TestCreateChainTemplate:

    def test_without_levels(self, approval_service, approval_selector):
        template_id = approval_service.create_chain_template(
            EntityType.PURCHASE_ORDER, "발주서 결재", "PO approval chain",
        )
        view = approval_selector.get_chain_template(template_id)
        assert view.entity_type == EntityType.PURCHASE_ORDER
        assert view.description == "PO approval chain"
        assert view.is_active
        assert view.levels == ()

    def test_duplicate_entity_type(self, approval_service, quotation_template):
        with pytest.raises(DuplicateChainTemplateError):
            approval_service.create_chain_template(EntityType.QUOTATION, "another")

    def test_duplicate_even_when_inactive(self, approval_service, quotation_template):
        approval_service.deactivate_chain_template(quotation_template)
        with pytest.raises(DuplicateChainTemplateError):
            approval_service.create_chain_template(EntityType.QUOTATION, "another")

    def test_non_sequential_levels_rejected(self, approval_service, make_user):
        with pytest.raises(NonSequentialLevelOrderError):
            approval_service.create_chain_template(
                EntityType.PURCHASE_ORDER, "bad", levels=_levels((2, make_user())),
            )


class TestActivation:

    def test_deactivate_then_activate(
        self, approval_service, approval_selector, quotation_template, submitter_id,
    ):
        approval_service.deactivate_chain_template(quotation_template)
        assert not approval_selector.get_chain_template(quotation_template).is_active

        approval_service.activate_chain_template(quotation_template)
        assert approval_selector.get_chain_template(quotation_template).is_active

        request_id = approval_service.create_approval_request(
            EntityType.QUOTATION, uuid4(), "Q", submitter_id,
        )
        assert request_id is not None

    def test_unknown_template(self, approval_service):
        with pytest.raises(ChainTemplateNotFoundError):
            approval_service.deactivate_chain_template(uuid4())
