"""Validation constants for template YAML."""

VALID_TOP_KEYS = {"title", "description", "variables", "steps"}
VALID_VARIABLE_KEYS = {"description", "optional", "default"}
VALID_STEP_KEYS = {"id", "title", "description", "depends"}
TEMPLATE_EXTENSIONS = (".yaml", ".yml")
