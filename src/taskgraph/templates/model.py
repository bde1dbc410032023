"""Template, step and variable records."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path


class VariableKind(enum.Enum):
    REQUIRED = "required"
    DEFAULT = "default"
    OPTIONAL_EMPTY = "optional_empty"


@dataclass(frozen=True)
class Variable:
    name: str
    kind: VariableKind
    description: str = ""
    default: str = ""

    @classmethod
    def from_raw(cls, name: str, raw: dict) -> Variable:
        description = str(raw.get("description") or "")
        if raw.get("default") not in (None, ""):
            return cls(name, VariableKind.DEFAULT, description, str(raw["default"]))
        if raw.get("optional"):
            return cls(name, VariableKind.OPTIONAL_EMPTY, description)
        return cls(name, VariableKind.REQUIRED, description)

    def resolve(self, supplied: dict[str, str]) -> str | None:
        """Bound value, or None when a required variable has nothing to bind."""
        if self.name in supplied:
            return supplied[self.name]
        if self.kind is VariableKind.DEFAULT:
            return self.default
        if self.kind is VariableKind.OPTIONAL_EMPTY:
            return ""
        return None


@dataclass(frozen=True)
class Step:
    id: str = ""
    title: str = ""
    description: str = ""
    depends: tuple[str, ...] = ()


@dataclass(frozen=True)
class Template:
    id: str
    hash: str
    title: str = ""
    description: str = ""
    variables: dict[str, Variable] = field(default_factory=dict)
    steps: tuple[Step, ...] = ()
    path: Path | None = None
    source: str = ""
