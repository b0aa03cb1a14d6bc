"""Routes for evaluating rules."""

from fastapi import APIRouter

from universal_config.core.models import Decision
from universal_config.engine import get_rule_engine
from .models import EvaluateRequest

router = APIRouter(prefix="/evaluate", tags=["Evaluation"])


@router.post("", response_model=Decision)
def evaluate(request: EvaluateRequest) -> Decision:
    """Evaluate the active rules of a family against a context.

    Returns the family default payload (``is_default``) when no rule matches.
    """
    decision = get_rule_engine().evaluate(
        request.organization_id,
        request.family,
        request.context,
        timeout=request.timeout_seconds,
        now=request.now,
    )
    if not request.include_trace:
        decision = decision.model_copy(update={"trace": []})
    return decision
