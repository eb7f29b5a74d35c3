"""
Role & Permission Model

Pure functions mapping (role, action, ownership) to allow/deny. A denial is a
first-class decision carrying its reason; `require_permission` turns it into a
Forbidden error before any storage access happens.

SYSTEM_ADMIN is granted only where it is listed explicitly (evaluation views
and read access); it never inherits the write actions of PM, RP or PO.
"""

from enum import Enum
from typing import NamedTuple

from service_procurement.kernel.errors import Forbidden
from service_procurement.procurement.models import Actor, Role, ServiceRequest


class WorkflowAction(str, Enum):
    """Every external action the orchestrator exposes"""

    CREATE_REQUEST = "create-request"
    EDIT_REQUEST = "edit-request"
    DELETE_REQUEST = "delete-request"
    VIEW_REQUEST = "view-request"
    SUBMIT_FOR_REVIEW = "submit-for-review"
    RP_APPROVE = "rp-approve"
    RP_REJECT = "rp-reject"
    SUBMIT_FOR_BIDDING = "submit-for-bidding"
    SUBMIT_OFFER = "submit-offer"
    LIST_OFFERS = "list-offers"
    SAVE_EVALUATION = "save-evaluation"
    VIEW_EVALUATION = "view-evaluation"
    RP_RECOMMEND_OFFER = "rp-recommend-offer"
    SEND_TO_PO = "send-to-po"
    ORDER = "order"
    REACTIVATE = "reactivate"


class ActionRule(NamedTuple):
    roles: frozenset[Role]
    owner_only: bool = False


_PM = frozenset({Role.PROJECT_MANAGER})
_RP = frozenset({Role.RESOURCE_PLANNER})
_ALL = frozenset(Role)

ACTION_RULES: dict[WorkflowAction, ActionRule] = {
    WorkflowAction.CREATE_REQUEST: ActionRule(_PM),
    WorkflowAction.EDIT_REQUEST: ActionRule(_PM, owner_only=True),
    WorkflowAction.DELETE_REQUEST: ActionRule(_PM, owner_only=True),
    WorkflowAction.VIEW_REQUEST: ActionRule(_ALL),
    WorkflowAction.SUBMIT_FOR_REVIEW: ActionRule(_PM, owner_only=True),
    WorkflowAction.RP_APPROVE: ActionRule(_RP),
    WorkflowAction.RP_REJECT: ActionRule(_RP),
    WorkflowAction.SUBMIT_FOR_BIDDING: ActionRule(_PM, owner_only=True),
    WorkflowAction.SUBMIT_OFFER: ActionRule(frozenset({Role.SERVICE_PROVIDER})),
    WorkflowAction.LIST_OFFERS: ActionRule(
        frozenset(
            {
                Role.PROJECT_MANAGER,
                Role.RESOURCE_PLANNER,
                Role.PROCUREMENT_OFFICER,
                Role.SERVICE_PROVIDER,
                Role.SYSTEM_ADMIN,
            }
        )
    ),
    WorkflowAction.SAVE_EVALUATION: ActionRule(_RP),
    WorkflowAction.VIEW_EVALUATION: ActionRule(
        frozenset({Role.RESOURCE_PLANNER, Role.SYSTEM_ADMIN})
    ),
    WorkflowAction.RP_RECOMMEND_OFFER: ActionRule(_RP),
    WorkflowAction.SEND_TO_PO: ActionRule(_PM, owner_only=True),
    WorkflowAction.ORDER: ActionRule(frozenset({Role.PROCUREMENT_OFFICER})),
    WorkflowAction.REACTIVATE: ActionRule(_PM, owner_only=True),
}


class PermissionDecision(NamedTuple):
    allowed: bool
    reason: str | None = None


def allowed_roles(action: WorkflowAction) -> list[str]:
    """Role names permitted to invoke the action, in enum order"""
    rule = ACTION_RULES[action]
    return [role.value for role in Role if role in rule.roles]


def check_permission(
    actor: Actor,
    action: WorkflowAction,
    request: ServiceRequest | None = None,
) -> PermissionDecision:
    """
    Decide whether the actor may invoke the action

    Args:
        actor: Calling identity
        action: Workflow action being attempted
        request: Target request (required for owner-only actions)

    Returns:
        (allowed, reason_if_not)
    """
    rule = ACTION_RULES[action]

    if actor.role not in rule.roles:
        return PermissionDecision(
            False,
            f"{action.value} requires role {' or '.join(allowed_roles(action))} "
            f"(actor {actor.username} is {actor.role.value})",
        )

    if rule.owner_only:
        if request is None:
            return PermissionDecision(
                False, f"{action.value} requires an owned request"
            )
        if not request.is_owned_by(actor.username):
            return PermissionDecision(
                False,
                f"{action.value} is reserved for the request owner "
                f"{request.created_by} (actor: {actor.username})",
            )

    # The owning PM is the only PM who may see a request's offers
    if (
        action == WorkflowAction.LIST_OFFERS
        and actor.role == Role.PROJECT_MANAGER
        and request is not None
        and not request.is_owned_by(actor.username)
    ):
        return PermissionDecision(
            False,
            f"Only the owner {request.created_by} may list offers of this request",
        )

    return PermissionDecision(True)


def require_permission(
    actor: Actor,
    action: WorkflowAction,
    request: ServiceRequest | None = None,
) -> None:
    """
    Raise Forbidden unless the actor may invoke the action

    Raises:
        Forbidden: Naming the required roles or the ownership rule
    """
    decision = check_permission(actor, action, request)
    if not decision.allowed:
        raise Forbidden(
            action=action.value,
            role=actor.role.value,
            allowed_roles=allowed_roles(action),
            reason=decision.reason or "",
        )


def can_see_all_offers(actor: Actor) -> bool:
    """Service providers only ever see their own offers"""
    return actor.role != Role.SERVICE_PROVIDER
