"""
Service Procurement CLI

Command-line interface driving the procurement workflow over a SQLite store.
The caller's identity is passed per command (--user / --role); the CLI does
not authenticate.

Usage:
    procure init --db procurement.db
    procure request create --user pm.alice --role PROJECT_MANAGER --title "Java team" --max-offers 3
    procure request submit --user pm.alice --role PROJECT_MANAGER --id <request_id>
    procure request approve --user rp.bob --role RESOURCE_PLANNER --id <request_id>
    procure request bid --user pm.alice --role PROJECT_MANAGER --id <request_id>
    procure offer submit --user sp.acme --role SERVICE_PROVIDER --request <id> --price 50000
    procure evaluation save --user rp.bob --role RESOURCE_PLANNER --request <id> --score <offer>:8,7,9
    procure request recommend --user rp.bob --role RESOURCE_PLANNER --id <id> --offer <offer_id>
    procure tick
"""

import json
import os
from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterator, Optional

import typer
from typing_extensions import Annotated

from service_procurement.kernel.errors import ProcurementError
from service_procurement.kernel.logging import (
    configure_logging,
    new_correlation_id,
)
from service_procurement.kernel.policy import WorkflowPolicy
from service_procurement.orchestrator import Workflow, create_workflow
from service_procurement.procurement.commands import (
    CreateServiceRequest,
    LanguageSpec,
    OfferScoreSpec,
    SaveEvaluation,
    SubmitOffer,
    UpdateServiceRequest,
)
from service_procurement.procurement.models import Actor, RequestStatus, ServiceRequest
from service_procurement.procurement.sqlite_store import SQLiteWorkflowStore

# Logs go to stderr; PROCURE_LOG_FORMAT=json switches to JSON lines
configure_logging(
    json_output=os.getenv("PROCURE_LOG_FORMAT", "console").lower() == "json",
    log_level=os.getenv("PROCURE_LOG_LEVEL", "WARNING"),
)

app = typer.Typer(
    name="procure",
    help="Service procurement workflow - requests, offers, evaluation, ordering",
    add_completion=False,
)

# Sub-apps
request_app = typer.Typer(help="Service request lifecycle commands")
offer_app = typer.Typer(help="Provider offer commands")
evaluation_app = typer.Typer(help="Offer evaluation commands")

app.add_typer(request_app, name="request")
app.add_typer(offer_app, name="offer")
app.add_typer(evaluation_app, name="evaluation")

# Global state
DEFAULT_DB = Path(".procure.db")
POLICY_ENV = "PROCURE_POLICY"

DbOption = Annotated[Optional[Path], typer.Option("--db", help="Database path")]
UserOption = Annotated[str, typer.Option("--user", help="Acting username")]
RoleOption = Annotated[
    str,
    typer.Option(
        "--role",
        help="Acting role (PROJECT_MANAGER, RESOURCE_PLANNER, PROCUREMENT_OFFICER, "
        "SERVICE_PROVIDER, SYSTEM_ADMIN)",
    ),
]
JsonOption = Annotated[bool, typer.Option("--json", help="Output as JSON")]
CommandIdOption = Annotated[
    Optional[str], typer.Option("--command-id", help="Idempotency key for retries")
]


def load_policy() -> WorkflowPolicy:
    """Policy from the JSON file named by $PROCURE_POLICY (defaults otherwise)"""
    path = os.getenv(POLICY_ENV)
    return WorkflowPolicy.from_json_file(path) if path else WorkflowPolicy()


def get_workflow(db_path: Optional[Path] = None) -> Workflow:
    """Get a workflow bound to an existing database"""
    db = db_path or DEFAULT_DB
    if not db.exists():
        typer.echo(f"Error: Database not found: {db}", err=True)
        typer.echo(f"Run 'procure init --db {db}' to initialize", err=True)
        raise typer.Exit(1)
    new_correlation_id()
    return create_workflow(SQLiteWorkflowStore(db), policy=load_policy())


def make_actor(user: str, role: str) -> Actor:
    try:
        return Actor(user_id=user, username=user, role=role)
    except ValueError as e:
        typer.echo(f"Error: Invalid identity: {e}", err=True)
        raise typer.Exit(2)


@contextmanager
def workflow_errors() -> Iterator[None]:
    """Render workflow rejections as 'Error: ...' on stderr with exit code 1"""
    try:
        yield
    except ProcurementError as e:
        typer.echo(f"Error [{e.code}]: {e}", err=True)
        raise typer.Exit(1)
    except ValueError as e:
        # pydantic and json decode errors are ValueErrors
        typer.echo(f"Error: Invalid input: {e}", err=True)
        raise typer.Exit(1)


def parse_weights(weights: Optional[str]) -> Optional[dict[str, Any]]:
    """'0.6,0.25,0.15' -> {'price': '0.6', 'delivery': '0.25', 'quality': '0.15'}"""
    if not weights:
        return None
    parts = [p.strip() for p in weights.split(",")]
    if len(parts) != 3:
        typer.echo("Error: --weights needs three values: price,delivery,quality", err=True)
        raise typer.Exit(2)
    return dict(zip(("price", "delivery", "quality"), parts))


def parse_scores(scores: Optional[list[str]]) -> list[OfferScoreSpec]:
    """'<offer_id>:8,7,9' entries -> OfferScoreSpec rows"""
    rows = []
    for entry in scores or []:
        offer_id, _, values = entry.rpartition(":")
        parts = [p.strip() for p in values.split(",")]
        if not offer_id or len(parts) != 3:
            typer.echo(
                f"Error: Invalid --score '{entry}' (expected <offer_id>:price,delivery,quality)",
                err=True,
            )
            raise typer.Exit(2)
        rows.append(
            OfferScoreSpec(offer_id=offer_id, price=parts[0], delivery=parts[1], quality=parts[2])
        )
    return rows


def parse_languages(languages: Optional[list[str]]) -> list[LanguageSpec]:
    """'German:C1' or 'English' entries -> LanguageSpec rows"""
    specs = []
    for entry in languages or []:
        language, _, level = entry.partition(":")
        specs.append(LanguageSpec(language=language.strip(), level=level.strip() or None))
    return specs


def echo_request(request: ServiceRequest, json_output: bool = False) -> None:
    if json_output:
        typer.echo(request.model_dump_json(indent=2))
        return
    typer.echo(f"\nRequest: {request.request_id}")
    typer.echo(f"  Title: {request.title}")
    typer.echo(f"  Type: {request.type.value}")
    typer.echo(f"  Owner: {request.created_by}")
    typer.echo(f"  Status: {request.status.value}")
    typer.echo(
        f"  Max offers: {request.max_offers if request.has_offer_quota() else 'unlimited'}"
    )
    typer.echo(f"  Bidding cycle: {request.bidding_cycle_days} days")
    if request.recommended_offer_id:
        typer.echo(f"  Recommended offer: {request.recommended_offer_id}")
    for name, value in request.audit_trail().items():
        typer.echo(f"  {name}: {value}")


# Initialization command


@app.command()
def init(
    db: Annotated[
        Path,
        typer.Option(help="Database path"),
    ] = DEFAULT_DB,
) -> None:
    """Initialize a new procurement database"""
    if db.exists():
        typer.echo(f"Error: Database already exists: {db}", err=True)
        raise typer.Exit(1)

    store = SQLiteWorkflowStore(db)
    typer.echo(f"✓ Initialized procurement database: {db}")
    typer.echo(f"  Tables: {', '.join(store.stats())}")


# Request commands


@request_app.command("create")
def request_create(
    user: UserOption,
    role: RoleOption,
    title: Annotated[str, typer.Option("--title", help="Request title")],
    request_type: Annotated[
        str, typer.Option("--type", help="SINGLE, MULTI, TEAM or WORK_CONTRACT")
    ] = "SINGLE",
    max_offers: Annotated[
        int, typer.Option("--max-offers", help="Offer quota (0 = unlimited)")
    ] = 0,
    cycle_days: Annotated[
        Optional[int], typer.Option("--cycle-days", help="Bidding window in days")
    ] = None,
    must: Annotated[
        Optional[list[str]], typer.Option("--must", help="Must-have criterion (repeatable)")
    ] = None,
    nice: Annotated[
        Optional[list[str]], typer.Option("--nice", help="Nice-to-have criterion (repeatable)")
    ] = None,
    language: Annotated[
        Optional[list[str]],
        typer.Option("--language", help="Required language, e.g. German:C1 (repeatable)"),
    ] = None,
    roles: Annotated[
        Optional[str], typer.Option("--roles", help="Role demand rows (JSON list)")
    ] = None,
    description: Annotated[
        str, typer.Option("--description", help="Task description")
    ] = "",
    command_id: CommandIdOption = None,
    db: DbOption = None,
) -> None:
    """Draft a new service request"""
    workflow = get_workflow(db)
    actor = make_actor(user, role)

    with workflow_errors():
        command = CreateServiceRequest(
            title=title,
            type=request_type.upper(),
            max_offers=max_offers,
            bidding_cycle_days=cycle_days,
            must_have_criteria=must or [],
            nice_to_have_criteria=nice or [],
            required_languages=parse_languages(language),
            roles=json.loads(roles) if roles else [],
            task_description=description,
        )
        request = workflow.orchestrator.create_request(actor, command, command_id=command_id)

    typer.echo(f"✓ Created request: {request.request_id}")
    typer.echo(f"  Title: {request.title}")
    typer.echo(f"  Status: {request.status.value}")


@request_app.command("update")
def request_update(
    user: UserOption,
    role: RoleOption,
    request_id: Annotated[str, typer.Option("--id", help="Request ID")],
    title: Annotated[Optional[str], typer.Option("--title", help="New title")] = None,
    max_offers: Annotated[
        Optional[int], typer.Option("--max-offers", help="New offer quota")
    ] = None,
    cycle_days: Annotated[
        Optional[int], typer.Option("--cycle-days", help="New bidding window in days")
    ] = None,
    description: Annotated[
        Optional[str], typer.Option("--description", help="New task description")
    ] = None,
    command_id: CommandIdOption = None,
    db: DbOption = None,
) -> None:
    """Edit a DRAFT request"""
    workflow = get_workflow(db)
    actor = make_actor(user, role)

    changes: dict[str, Any] = {}
    if title is not None:
        changes["title"] = title
    if max_offers is not None:
        changes["max_offers"] = max_offers
    if cycle_days is not None:
        changes["bidding_cycle_days"] = cycle_days
    if description is not None:
        changes["task_description"] = description

    with workflow_errors():
        request = workflow.orchestrator.update_request(
            actor, request_id, UpdateServiceRequest(**changes), command_id=command_id
        )

    typer.echo(f"✓ Updated request: {request.request_id}")
    typer.echo(f"  Changed: {', '.join(sorted(changes)) or '-'}")


@request_app.command("delete")
def request_delete(
    user: UserOption,
    role: RoleOption,
    request_id: Annotated[str, typer.Option("--id", help="Request ID")],
    db: DbOption = None,
) -> None:
    """Delete a DRAFT request"""
    workflow = get_workflow(db)
    actor = make_actor(user, role)

    with workflow_errors():
        workflow.orchestrator.delete_request(actor, request_id)

    typer.echo(f"✓ Deleted request: {request_id}")


@request_app.command("show")
def request_show(
    user: UserOption,
    role: RoleOption,
    request_id: Annotated[str, typer.Option("--id", help="Request ID")],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show request details"""
    workflow = get_workflow(db)
    actor = make_actor(user, role)

    with workflow_errors():
        request = workflow.orchestrator.get_request(actor, request_id)
    echo_request(request, json_output)


@request_app.command("list")
def request_list(
    user: UserOption,
    role: RoleOption,
    status: Annotated[
        Optional[str],
        typer.Option("--status", help="Filter by status (DRAFT, BIDDING, etc.)"),
    ] = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """List requests"""
    workflow = get_workflow(db)
    actor = make_actor(user, role)

    with workflow_errors():
        status_filter = RequestStatus(status.upper()) if status else None
        requests = workflow.orchestrator.list_requests(actor, status=status_filter)

    if json_output:
        typer.echo(json.dumps([r.model_dump(mode="json") for r in requests], indent=2))
        return

    if not requests:
        typer.echo(f"No requests{f' with status {status}' if status else ''}")
        return

    typer.echo(f"Requests ({len(requests)}):")
    for r in requests:
        typer.echo(f"  {r.request_id}: {r.title} [{r.status.value}] owner={r.created_by}")


def _transition_command(
    label: str, operation: str, user: str, role: str, request_id: str,
    db: Optional[Path], **kwargs: Any,
) -> None:
    workflow = get_workflow(db)
    actor = make_actor(user, role)

    with workflow_errors():
        request = getattr(workflow.orchestrator, operation)(actor, request_id, **kwargs)

    typer.echo(f"✓ {label}: {request.request_id}")
    typer.echo(f"  Status: {request.status.value}")


@request_app.command("submit")
def request_submit(
    user: UserOption,
    role: RoleOption,
    request_id: Annotated[str, typer.Option("--id", help="Request ID")],
    command_id: CommandIdOption = None,
    db: DbOption = None,
) -> None:
    """Submit a request for RP review (DRAFT → IN_REVIEW)"""
    _transition_command(
        "Submitted for review", "submit_for_review", user, role, request_id, db,
        command_id=command_id,
    )


@request_app.command("approve")
def request_approve(
    user: UserOption,
    role: RoleOption,
    request_id: Annotated[str, typer.Option("--id", help="Request ID")],
    command_id: CommandIdOption = None,
    db: DbOption = None,
) -> None:
    """Approve a request for bidding (IN_REVIEW → APPROVED_FOR_SUBMISSION)"""
    _transition_command(
        "Approved", "rp_approve", user, role, request_id, db, command_id=command_id
    )


@request_app.command("reject")
def request_reject(
    user: UserOption,
    role: RoleOption,
    request_id: Annotated[str, typer.Option("--id", help="Request ID")],
    reason: Annotated[Optional[str], typer.Option("--reason", help="Rejection reason")] = None,
    command_id: CommandIdOption = None,
    db: DbOption = None,
) -> None:
    """Reject a request (IN_REVIEW → REJECTED)"""
    _transition_command(
        "Rejected", "rp_reject", user, role, request_id, db,
        reason=reason, command_id=command_id,
    )


@request_app.command("bid")
def request_bid(
    user: UserOption,
    role: RoleOption,
    request_id: Annotated[str, typer.Option("--id", help="Request ID")],
    command_id: CommandIdOption = None,
    db: DbOption = None,
) -> None:
    """Open bidding (APPROVED_FOR_SUBMISSION → BIDDING)"""
    _transition_command(
        "Bidding started", "submit_for_bidding", user, role, request_id, db,
        command_id=command_id,
    )


@request_app.command("recommend")
def request_recommend(
    user: UserOption,
    role: RoleOption,
    request_id: Annotated[str, typer.Option("--id", help="Request ID")],
    offer_id: Annotated[str, typer.Option("--offer", help="Offer to recommend")],
    command_id: CommandIdOption = None,
    db: DbOption = None,
) -> None:
    """Recommend an offer (BIDDING | BID_EVALUATION → RECOMMENDED)"""
    _transition_command(
        "Recommended", "rp_recommend_offer", user, role, request_id, db,
        offer_id=offer_id, command_id=command_id,
    )


@request_app.command("send-to-po")
def request_send_to_po(
    user: UserOption,
    role: RoleOption,
    request_id: Annotated[str, typer.Option("--id", help="Request ID")],
    command_id: CommandIdOption = None,
    db: DbOption = None,
) -> None:
    """Forward the recommendation to procurement (RECOMMENDED → SENT_TO_PO)"""
    _transition_command(
        "Sent to procurement", "send_to_po", user, role, request_id, db,
        command_id=command_id,
    )


@request_app.command("order")
def request_order(
    user: UserOption,
    role: RoleOption,
    request_id: Annotated[str, typer.Option("--id", help="Request ID")],
    offer_id: Annotated[str, typer.Option("--offer", help="Recommended offer ID")],
    order_id: Annotated[
        Optional[str], typer.Option("--order-id", help="Order reference (generated if omitted)")
    ] = None,
    command_id: CommandIdOption = None,
    db: DbOption = None,
) -> None:
    """Place the order (SENT_TO_PO → ORDERED)"""
    _transition_command(
        "Ordered", "order", user, role, request_id, db,
        offer_id=offer_id, order_id=order_id, command_id=command_id,
    )


@request_app.command("reactivate")
def request_reactivate(
    user: UserOption,
    role: RoleOption,
    request_id: Annotated[str, typer.Option("--id", help="Request ID")],
    command_id: CommandIdOption = None,
    db: DbOption = None,
) -> None:
    """Return an EXPIRED or REJECTED request to DRAFT"""
    _transition_command(
        "Reactivated", "reactivate", user, role, request_id, db, command_id=command_id
    )


# Offer commands


@offer_app.command("submit")
def offer_submit(
    user: UserOption,
    role: RoleOption,
    request_id: Annotated[str, typer.Option("--request", help="Request ID")],
    price: Annotated[str, typer.Option("--price", help="Total offered price")],
    currency: Annotated[str, typer.Option("--currency", help="ISO currency code")] = "EUR",
    delivery_days: Annotated[
        Optional[int], typer.Option("--delivery-days", help="Delivery time in days")
    ] = None,
    risk: Annotated[str, typer.Option("--risk", help="Delivery risk (LOW, MEDIUM, HIGH)")] = "",
    provider_name: Annotated[
        str, typer.Option("--provider-name", help="Provider company name")
    ] = "",
    title: Annotated[Optional[str], typer.Option("--title", help="Offer title")] = None,
    notes: Annotated[str, typer.Option("--notes", help="Free-text notes")] = "",
    command_id: CommandIdOption = None,
    db: DbOption = None,
) -> None:
    """Submit an offer to a BIDDING request"""
    workflow = get_workflow(db)
    actor = make_actor(user, role)

    try:
        amount = Decimal(price)
    except ArithmeticError:
        typer.echo(f"Error: Invalid price: {price}", err=True)
        raise typer.Exit(2)

    with workflow_errors():
        command = SubmitOffer(
            price=amount,
            currency=currency,
            delivery_days=delivery_days,
            delivery_risk=risk,
            provider_name=provider_name,
            offer_title=title,
            notes=notes,
        )
        result = workflow.orchestrator.submit_offer(actor, request_id, command, command_id)

    typer.echo(f"✓ Submitted offer: {result.offer.offer_id}")
    typer.echo(f"  Request: {request_id}")
    typer.echo(f"  Price: {result.offer.price} {result.offer.currency}")
    typer.echo(f"  Offers in round: {result.offers_count}")
    typer.echo(f"  Request status: {result.request.status.value}")


@offer_app.command("list")
def offer_list(
    user: UserOption,
    role: RoleOption,
    request_id: Annotated[str, typer.Option("--request", help="Request ID")],
    all_rounds: Annotated[
        bool, typer.Option("--all-rounds", help="Include offers of earlier bidding rounds")
    ] = False,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """List offers visible to the caller"""
    workflow = get_workflow(db)
    actor = make_actor(user, role)

    with workflow_errors():
        offers = workflow.orchestrator.list_offers(actor, request_id, all_rounds=all_rounds)

    if json_output:
        typer.echo(json.dumps([o.model_dump(mode="json") for o in offers], indent=2))
        return

    if not offers:
        typer.echo("No offers")
        return

    typer.echo(f"Offers ({len(offers)}):")
    for o in offers:
        typer.echo(
            f"  {o.offer_id}: {o.provider_name or o.provider_username} "
            f"{o.price} {o.currency} risk={o.delivery_risk or '-'} round={o.bidding_round}"
        )


# Evaluation commands


@evaluation_app.command("preview")
def evaluation_preview(
    user: UserOption,
    role: RoleOption,
    request_id: Annotated[str, typer.Option("--request", help="Request ID")],
    weights: Annotated[
        Optional[str], typer.Option("--weights", help="price,delivery,quality weights")
    ] = None,
    score: Annotated[
        Optional[list[str]],
        typer.Option("--score", help="<offer_id>:price,delivery,quality (repeatable)"),
    ] = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Rank offers with the given scores without saving"""
    workflow = get_workflow(db)
    actor = make_actor(user, role)

    with workflow_errors():
        scores = {row.offer_id: row for row in parse_scores(score)}
        rows = workflow.orchestrator.preview_ranking(
            actor, request_id, weights=parse_weights(weights), scores=scores
        )

    if json_output:
        typer.echo(json.dumps([r.model_dump(mode="json") for r in rows], indent=2))
        return

    if not rows:
        typer.echo("No offers to rank")
        return

    typer.echo("Ranking:")
    for row in rows:
        typer.echo(f"  #{row.rank} {row.offer_id}: {row.total_score:.4f}")


@evaluation_app.command("save")
def evaluation_save(
    user: UserOption,
    role: RoleOption,
    request_id: Annotated[str, typer.Option("--request", help="Request ID")],
    weights: Annotated[
        Optional[str], typer.Option("--weights", help="price,delivery,quality weights")
    ] = None,
    score: Annotated[
        Optional[list[str]],
        typer.Option("--score", help="<offer_id>:price,delivery,quality (repeatable)"),
    ] = None,
    comment: Annotated[str, typer.Option("--comment", help="Evaluation comment")] = "",
    recommend: Annotated[
        Optional[str], typer.Option("--recommend", help="Recommended offer ID")
    ] = None,
    command_id: CommandIdOption = None,
    db: DbOption = None,
) -> None:
    """Save the RP evaluation (replaces the previous one)"""
    workflow = get_workflow(db)
    actor = make_actor(user, role)

    with workflow_errors():
        command = SaveEvaluation(
            weights=parse_weights(weights),
            comment=comment,
            recommended_offer_id=recommend,
            offers=parse_scores(score),
        )
        evaluation = workflow.orchestrator.save_evaluation(
            actor, request_id, command, command_id=command_id
        )

    typer.echo(f"✓ Saved evaluation for request: {request_id}")
    typer.echo(f"  Offers ranked: {len(evaluation.offers)}")
    if evaluation.offers:
        top = evaluation.offers[0]
        typer.echo(f"  Top offer: {top.offer_id} ({top.total_score:.4f})")
    if evaluation.recommended_offer_id:
        typer.echo(f"  Recommended: {evaluation.recommended_offer_id}")


@evaluation_app.command("show")
def evaluation_show(
    user: UserOption,
    role: RoleOption,
    request_id: Annotated[str, typer.Option("--request", help="Request ID")],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show the saved evaluation"""
    workflow = get_workflow(db)
    actor = make_actor(user, role)

    with workflow_errors():
        evaluation = workflow.orchestrator.get_evaluation(actor, request_id)

    if evaluation is None:
        typer.echo(f"Error: No evaluation saved for request: {request_id}", err=True)
        raise typer.Exit(1)

    if json_output:
        typer.echo(evaluation.model_dump_json(indent=2))
        return

    weights = evaluation.weights
    typer.echo(f"\nEvaluation: {request_id}")
    typer.echo(f"  By: {evaluation.evaluated_by} at {evaluation.saved_at}")
    typer.echo(
        f"  Weights: price={weights.price} delivery={weights.delivery} quality={weights.quality}"
    )
    for row in evaluation.offers:
        typer.echo(
            f"  #{row.rank} {row.offer_id}: {row.total_score:.4f} "
            f"({row.score_price}/{row.score_delivery}/{row.score_quality})"
        )
    if evaluation.recommended_offer_id:
        typer.echo(f"  Recommended: {evaluation.recommended_offer_id}")
    if evaluation.comment:
        typer.echo(f"  Comment: {evaluation.comment}")


# Monitoring commands


@app.command()
def tick(
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Expire (or close) requests whose bidding window elapsed"""
    workflow = get_workflow(db)

    with workflow_errors():
        result = workflow.orchestrator.tick()

    if json_output:
        typer.echo(
            json.dumps(
                {
                    "tick_id": result.tick_id,
                    "tick_at": result.tick_at.isoformat(),
                    "inspected": result.inspected_count,
                    "expired": result.expired_request_ids,
                    "closed": result.closed_request_ids,
                },
                indent=2,
            )
        )
        return

    typer.echo(f"✓ Tick completed: {result.tick_id}")
    typer.echo(f"  Inspected: {result.inspected_count}")
    for request_id in result.expired_request_ids:
        typer.echo(f"  Expired: {request_id}")
    for request_id in result.closed_request_ids:
        typer.echo(f"  Closed for evaluation: {request_id}")


@app.command()
def status(
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show request counts per status"""
    workflow = get_workflow(db)
    counts = workflow.dashboard.counts()

    if json_output:
        typer.echo(json.dumps(counts, indent=2, sort_keys=True))
        return

    typer.echo("Requests by status:")
    for s in RequestStatus:
        typer.echo(f"  {s.value}: {counts.get(s.value, 0)}")


if __name__ == "__main__":
    app()
