"""HTTP API routers."""

from .routes_evaluate import router as evaluate_router
from .routes_rules import router as rules_router
from .routes_templates import families_router, router as templates_router

__all__ = ["evaluate_router", "rules_router", "templates_router", "families_router"]
