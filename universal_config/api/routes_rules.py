"""Routes for managing rules."""

from fastapi import APIRouter, HTTPException, status

from universal_config.core.models import Rule, RuleInput, SaveResult
from universal_config.engine import get_rule_engine
from .models import (
    RuleHistoryResponse,
    RuleListResponse,
    SimulateRequest,
    SimulateResponse,
    StatusUpdateRequest,
)

router = APIRouter(prefix="/rules", tags=["Rules"])


def stored_or_422(result: SaveResult) -> Rule:
    if not result.ok:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=[e.model_dump() for e in result.errors],
        )
    return result.rule


@router.post("", response_model=Rule, status_code=status.HTTP_201_CREATED)
def save_rule(rule: RuleInput) -> Rule:
    """Create a rule, or update one when ``id`` names an existing rule.

    Validation problems are returned as a 422 with one entry per problem.
    """
    return stored_or_422(get_rule_engine().save_rule(rule))


@router.post("/simulate", response_model=SimulateResponse)
def simulate_rule(request: SimulateRequest) -> SimulateResponse:
    """Test a draft rule, or a stored one, against sample scenarios.

    Nothing is stored. An invalid draft is returned as a 422 with one entry
    per problem, like ``POST /rules``.
    """
    engine = get_rule_engine()
    if request.rule is not None:
        report = engine.simulate_rule(request.rule, request.scenarios, now=request.now)
    elif request.rule_id is not None and request.organization_id is not None:
        report = engine.simulate_rule(
            request.rule_id,
            request.scenarios,
            organization_id=request.organization_id,
            now=request.now,
        )
    else:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Provide either rule, or rule_id with organization_id",
        )

    if report.errors:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=[e.model_dump() for e in report.errors],
        )
    return SimulateResponse(**report.model_dump(), coverage=report.coverage)


@router.get("/{organization_id}/{family}", response_model=RuleListResponse)
def list_active_rules(organization_id: str, family: str) -> RuleListResponse:
    """List the active rules of a family."""
    rules = get_rule_engine().list_active_rules(organization_id, family)
    return RuleListResponse(
        organization_id=organization_id, family=family, rules=rules, total=len(rules)
    )


@router.get("/{organization_id}/id/{rule_id}", response_model=Rule)
def get_rule(organization_id: str, rule_id: str) -> Rule:
    """Get the latest version of a rule."""
    return get_rule_engine().get_rule(organization_id, rule_id)


@router.get("/{organization_id}/id/{rule_id}/history", response_model=RuleHistoryResponse)
def get_rule_history(organization_id: str, rule_id: str) -> RuleHistoryResponse:
    """Get every version of a rule and its lifecycle events."""
    engine = get_rule_engine()
    return RuleHistoryResponse(
        organization_id=organization_id,
        rule_id=rule_id,
        versions=engine.get_rule_history(organization_id, rule_id),
        events=engine.list_events(organization_id, rule_id),
    )


@router.post("/{organization_id}/id/{rule_id}/status", response_model=Rule)
def set_rule_status(organization_id: str, rule_id: str, request: StatusUpdateRequest) -> Rule:
    """Change the status of a rule, e.g. activate a draft."""
    return stored_or_422(get_rule_engine().set_status(organization_id, rule_id, request.status))


@router.post("/{organization_id}/id/{rule_id}/archive", response_model=Rule)
def archive_rule(organization_id: str, rule_id: str) -> Rule:
    """Archive a rule. Archiving twice is harmless."""
    engine = get_rule_engine()
    engine.archive_rule(organization_id, rule_id)
    return engine.get_rule(organization_id, rule_id)
