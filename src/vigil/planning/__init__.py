"""Planning plane: action templates and the action planner."""

from vigil.planning.planner import (
    ActionPlanner,
    IssueGroup,
    PlannerSettings,
    group_issues,
    parallel_bands,
)
from vigil.planning.templates import (
    ActionTemplate,
    TemplateCatalog,
    default_catalog,
    load_templates,
    parse_catalog,
)

__all__ = [
    "ActionPlanner",
    "ActionTemplate",
    "IssueGroup",
    "PlannerSettings",
    "TemplateCatalog",
    "default_catalog",
    "group_issues",
    "load_templates",
    "parallel_bands",
    "parse_catalog",
]
