"""Template engine: declarative blueprints expanded into item graphs."""

from .expand import ExpansionResult, RenderedItem, assign_step_ids, bind_variables, instantiate_template, render_item
from .loader import list_templates, load_template, parse_template
from .model import Step, Template, Variable, VariableKind
from .render import render_text, sanitize_title

__all__ = [
    "ExpansionResult",
    "RenderedItem",
    "Step",
    "Template",
    "Variable",
    "VariableKind",
    "assign_step_ids",
    "bind_variables",
    "instantiate_template",
    "list_templates",
    "load_template",
    "parse_template",
    "render_item",
    "render_text",
    "sanitize_title",
]
