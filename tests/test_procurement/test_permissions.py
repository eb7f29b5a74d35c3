"""
Permission Model Tests

Tests for role/ownership decisions: which role may invoke which action, and
the owner-only rules for project managers.
"""

import pytest

from service_procurement.kernel.errors import Forbidden
from service_procurement.procurement.models import RequestStatus, Role
from service_procurement.procurement.permissions import (
    ACTION_RULES,
    WorkflowAction,
    allowed_roles,
    can_see_all_offers,
    check_permission,
    require_permission,
)
from tests.helpers import make_actor, make_request


@pytest.fixture
def owned_request():
    return make_request(created_by="pm.alice", status=RequestStatus.DRAFT)


def test_every_action_has_a_rule():
    assert set(ACTION_RULES) == set(WorkflowAction)


@pytest.mark.parametrize(
    "action,role",
    [
        (WorkflowAction.RP_APPROVE, "RESOURCE_PLANNER"),
        (WorkflowAction.RP_REJECT, "RESOURCE_PLANNER"),
        (WorkflowAction.SAVE_EVALUATION, "RESOURCE_PLANNER"),
        (WorkflowAction.RP_RECOMMEND_OFFER, "RESOURCE_PLANNER"),
        (WorkflowAction.SUBMIT_OFFER, "SERVICE_PROVIDER"),
        (WorkflowAction.ORDER, "PROCUREMENT_OFFICER"),
        (WorkflowAction.VIEW_EVALUATION, "SYSTEM_ADMIN"),
    ],
)
def test_role_actions_allowed(action, role, owned_request):
    actor = make_actor("someone", role)
    assert check_permission(actor, action, owned_request).allowed


@pytest.mark.parametrize(
    "action",
    [
        WorkflowAction.RP_APPROVE,
        WorkflowAction.RP_RECOMMEND_OFFER,
        WorkflowAction.SUBMIT_OFFER,
        WorkflowAction.ORDER,
        WorkflowAction.SAVE_EVALUATION,
    ],
)
def test_project_manager_denied_other_roles_actions(action, owned_request):
    decision = check_permission(make_actor("pm.alice", "PROJECT_MANAGER"), action, owned_request)

    assert not decision.allowed
    assert "PROJECT_MANAGER" in decision.reason


def test_system_admin_does_not_inherit_write_actions(owned_request):
    admin = make_actor("admin.eve", "SYSTEM_ADMIN")

    for action in (
        WorkflowAction.CREATE_REQUEST,
        WorkflowAction.RP_APPROVE,
        WorkflowAction.SAVE_EVALUATION,
        WorkflowAction.ORDER,
    ):
        assert not check_permission(admin, action, owned_request).allowed


@pytest.mark.parametrize(
    "action",
    [
        WorkflowAction.EDIT_REQUEST,
        WorkflowAction.DELETE_REQUEST,
        WorkflowAction.SUBMIT_FOR_REVIEW,
        WorkflowAction.SUBMIT_FOR_BIDDING,
        WorkflowAction.SEND_TO_PO,
        WorkflowAction.REACTIVATE,
    ],
)
def test_owner_only_actions(action, owned_request):
    owner = make_actor("pm.alice", "PROJECT_MANAGER")
    other = make_actor("pm.carol", "PROJECT_MANAGER")

    assert check_permission(owner, action, owned_request).allowed
    decision = check_permission(other, action, owned_request)
    assert not decision.allowed
    assert "owner" in decision.reason


def test_owner_only_action_without_request_is_denied():
    pm = make_actor("pm.alice", "PROJECT_MANAGER")
    assert not check_permission(pm, WorkflowAction.SUBMIT_FOR_REVIEW).allowed


def test_only_owning_pm_lists_offers(owned_request):
    owner = make_actor("pm.alice", "PROJECT_MANAGER")
    other = make_actor("pm.carol", "PROJECT_MANAGER")

    assert check_permission(owner, WorkflowAction.LIST_OFFERS, owned_request).allowed
    assert not check_permission(other, WorkflowAction.LIST_OFFERS, owned_request).allowed


def test_require_permission_raises_forbidden(owned_request):
    with pytest.raises(Forbidden) as exc_info:
        require_permission(
            make_actor("sp.acme", "SERVICE_PROVIDER"), WorkflowAction.RP_APPROVE, owned_request
        )

    assert exc_info.value.action == "rp-approve"
    assert exc_info.value.allowed_roles == ["RESOURCE_PLANNER"]


def test_allowed_roles_in_enum_order():
    assert allowed_roles(WorkflowAction.VIEW_EVALUATION) == ["RESOURCE_PLANNER", "SYSTEM_ADMIN"]
    assert allowed_roles(WorkflowAction.VIEW_REQUEST) == [r.value for r in Role]


def test_only_service_providers_are_restricted_to_own_offers():
    assert not can_see_all_offers(make_actor("sp.acme", "SERVICE_PROVIDER"))
    assert can_see_all_offers(make_actor("rp.bob", "RESOURCE_PLANNER"))
    assert can_see_all_offers(make_actor("po.dave", "PROCUREMENT_OFFICER"))
