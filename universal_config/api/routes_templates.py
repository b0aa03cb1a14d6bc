"""Routes for rule families and starter templates."""

from fastapi import APIRouter

from universal_config.core.models import Rule
from universal_config.engine import get_rule_engine, rule_input_from
from .models import FamilyInfo, FamilyListResponse, InstantiateRequest, TemplateListResponse
from .routes_rules import stored_or_422

router = APIRouter(prefix="/templates", tags=["Templates"])
families_router = APIRouter(prefix="/families", tags=["Families"])


@router.get("/{family}", response_model=TemplateListResponse)
def list_templates(family: str) -> TemplateListResponse:
    """List the templates registered for a family."""
    templates = get_rule_engine().list_templates(family)
    return TemplateListResponse(family=family, templates=templates, total=len(templates))


@router.post("/{family}/{template_name}/instantiate", response_model=Rule)
def instantiate_template(family: str, template_name: str, request: InstantiateRequest) -> Rule:
    """Copy a template as a draft rule for an organization.

    With ``save`` the draft is also stored.
    """
    engine = get_rule_engine()
    rule = engine.instantiate_template(family, template_name, request.organization_id)
    if request.save:
        rule = stored_or_422(engine.save_rule(rule_input_from(rule)))
    return rule


@families_router.get("", response_model=FamilyListResponse)
def list_families() -> FamilyListResponse:
    """List the registered rule families."""
    families = [
        FamilyInfo(
            name=f.name,
            strategy=f.strategy,
            required_context=list(f.required_context),
            condition_keys=sorted(f.condition_keys),
            default_payload=f.default_copy(),
            description=f.description,
        )
        for f in get_rule_engine().families.families()
    ]
    return FamilyListResponse(families=families, total=len(families))
