"""Starter rule templates loaded from YAML, used to bootstrap organizations.

Templates are never evaluated. ``instantiate`` materializes a draft rule
owned by one organization; only that copy can later be activated.
"""

from __future__ import annotations

import copy
import logging
from pathlib import Path

import yaml

from universal_config.core.models import Rule, RuleConditions, RuleInput, RuleStatus, RuleTemplate
from universal_config.errors import TemplateNotFound
from universal_config.families.registry import FamilyRegistry
from .validator import RuleValidator

logger = logging.getLogger(__name__)

BUILTIN_TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "families" / "templates"

# Placeholder tenant used when validating template content
_TEMPLATE_ORG = "template"


class TemplateRegistry:
    """Named starter templates per family."""

    def __init__(self, families: FamilyRegistry, templates_dir: str | Path | None = None):
        self.families = families
        self.templates_dir = Path(templates_dir) if templates_dir else None
        self._validator = RuleValidator(families)
        self._templates: dict[str, dict[str, RuleTemplate]] = {}

    def add(self, template: RuleTemplate) -> RuleTemplate:
        """Register a template after validating it against its family.

        Raises UnknownFamily for unregistered families and ValueError for
        invalid template content.
        """
        family = self.families.get(template.family)
        errors = self._validator.validate(
            RuleInput(
                organization_id=_TEMPLATE_ORG,
                family=template.family,
                sub_family=template.sub_family,
                priority=template.priority,
                conditions=template.conditions,
                payload=template.payload,
                smart_code=template.smart_code,
                name=template.name,
            ),
            family,
        )
        if errors:
            raise ValueError(
                f"Invalid template '{template.name}' for family '{template.family}': "
                + "; ".join(str(e) for e in errors)
            )
        self._templates.setdefault(template.family, {})[template.name] = template
        return template

    def load_file(self, path: str | Path) -> list[RuleTemplate]:
        """Load templates from a single YAML file.

        The file holds either a list of templates or a mapping with a
        ``family`` key and a ``templates`` list that inherit it.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Template file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            content = yaml.safe_load(f) or []

        if isinstance(content, dict):
            default_family = content.get("family")
            items = content.get("templates", [])
        else:
            default_family = None
            items = content

        templates = []
        for item in items:
            data = dict(item)
            if default_family and "family" not in data:
                data["family"] = default_family
            templates.append(self.add(RuleTemplate(**data)))
        return templates

    def load_directory(self, path: str | Path | None = None) -> list[RuleTemplate]:
        """Load all YAML template files from a directory."""
        path = Path(path) if path else self.templates_dir
        if not path:
            raise ValueError("No templates directory specified")
        if not path.exists():
            raise FileNotFoundError(f"Templates directory not found: {path}")

        templates = []
        for yaml_file in sorted(path.glob("*.yaml")):
            try:
                templates.extend(self.load_file(yaml_file))
            except Exception as e:
                logger.warning("Failed to load templates from %s: %s", yaml_file, e)
        return templates

    def load_builtin(self) -> list[RuleTemplate]:
        """Load the templates shipped with the built-in families."""
        return self.load_directory(BUILTIN_TEMPLATES_DIR)

    def get(self, family: str, template_name: str) -> RuleTemplate:
        self.families.get(family)
        template = self._templates.get(family, {}).get(template_name)
        if template is None:
            raise TemplateNotFound(family, template_name)
        return template

    def list_templates(self, family: str) -> list[RuleTemplate]:
        self.families.get(family)
        templates = self._templates.get(family, {})
        return [templates[name] for name in sorted(templates)]

    def instantiate(self, family: str, template_name: str, organization_id: str) -> Rule:
        """Materialize a template as a draft rule owned by ``organization_id``."""
        template = self.get(family, template_name)
        return Rule(
            organization_id=organization_id,
            family=template.family,
            sub_family=template.sub_family,
            status=RuleStatus.DRAFT,
            priority=template.priority,
            conditions=RuleConditions.model_validate(copy.deepcopy(template.conditions)),
            payload=copy.deepcopy(template.payload),
            smart_code=template.smart_code,
            name=template.name,
            description=template.description,
        )
