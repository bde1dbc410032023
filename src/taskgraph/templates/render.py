"""Placeholder rendering for template titles and descriptions.

Supported actions inside ``{{ }}``:

    .name                     variable value ("" when unbound)
    if <expr> / else / end    conditional block, nestable
    hasValue .name            true when the value is not blank
    default "x" .name         value, or "x" when blank
    slugify .name             lowercase, hyphenated, [a-z0-9-] only
    upper .name / lower .name

A ``-`` just inside the braces (``{{- ...}}`` / ``{{... -}}``) trims the
adjacent whitespace. Text that does not parse is returned unchanged.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

log = logging.getLogger(__name__)

_ACTION = re.compile(r"\{\{(-\s)?\s*(.*?)\s*(\s-)?\}\}", re.DOTALL)
_ARG = re.compile(r'"(?:[^"\\]|\\.)*"|\S+')


class TemplateSyntaxError(ValueError):
    pass


def _slugify(text: str) -> str:
    slug = text.lower()
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"[^a-z0-9\-]", "", slug)
    slug = re.sub(r"-{2,}", "-", slug)
    return slug.strip("-")


def sanitize_title(title: str) -> str:
    """Collapse newlines and runs of whitespace into single spaces."""
    return re.sub(r"\s+", " ", title).strip()


_FUNCS = {
    "slugify": (1, lambda v: _slugify(v)),
    "upper": (1, lambda v: v.upper()),
    "lower": (1, lambda v: v.lower()),
    "hasValue": (1, lambda v: bool(v.strip())),
    "default": (2, lambda fallback, v: v if v.strip() else fallback),
}


# ---------------------------------------------------------------------------
# Parse tree
# ---------------------------------------------------------------------------


@dataclass
class _Text:
    value: str


@dataclass
class _Expr:
    words: list[str]


@dataclass
class _If:
    cond: _Expr
    then: list = field(default_factory=list)
    otherwise: list = field(default_factory=list)


def _tokenize(text: str) -> list[tuple[str, str]]:
    """Split into ("text", ...) and ("action", ...) pieces, applying trim markers."""
    tokens: list[tuple[str, str]] = []
    pos = 0
    trim_next = False
    for m in _ACTION.finditer(text):
        chunk = text[pos:m.start()]
        if "{{" in chunk:
            raise TemplateSyntaxError("unterminated action")
        if trim_next:
            chunk = chunk.lstrip()
        if m.group(1):
            chunk = chunk.rstrip()
        if chunk:
            tokens.append(("text", chunk))
        tokens.append(("action", m.group(2)))
        trim_next = bool(m.group(3))
        pos = m.end()
    tail = text[pos:]
    if trim_next:
        tail = tail.lstrip()
    if "{{" in tail:
        raise TemplateSyntaxError("unterminated action")
    if tail:
        tokens.append(("text", tail))
    return tokens


def _words(action: str) -> list[str]:
    words = _ARG.findall(action)
    if not words:
        raise TemplateSyntaxError("empty action")
    return words


def _parse(tokens: list[tuple[str, str]]) -> list:
    root: list = []
    # Stack of (if-node, currently filling else branch)
    stack: list[tuple[_If, bool]] = []

    def target() -> list:
        if not stack:
            return root
        node, in_else = stack[-1]
        return node.otherwise if in_else else node.then

    for kind, value in tokens:
        if kind == "text":
            target().append(_Text(value))
            continue
        words = _words(value)
        head = words[0]
        if head == "if":
            if len(words) < 2:
                raise TemplateSyntaxError("if without condition")
            node = _If(_Expr(words[1:]))
            target().append(node)
            stack.append((node, False))
        elif head == "else":
            if not stack or stack[-1][1] or len(words) > 1:
                raise TemplateSyntaxError("unexpected else")
            stack[-1] = (stack[-1][0], True)
        elif head == "end":
            if not stack or len(words) > 1:
                raise TemplateSyntaxError("unexpected end")
            stack.pop()
        else:
            target().append(_Expr(words))
    if stack:
        raise TemplateSyntaxError("unclosed if")
    return root


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def _arg(word: str, variables: dict[str, str]) -> str:
    if word.startswith('"'):
        if len(word) < 2 or not word.endswith('"'):
            raise TemplateSyntaxError(f"bad string literal {word}")
        return re.sub(r"\\(.)", r"\1", word[1:-1])
    if word.startswith("."):
        return str(variables.get(word[1:], ""))
    raise TemplateSyntaxError(f"unexpected argument {word}")


def _eval(expr: _Expr, variables: dict[str, str]) -> str | bool:
    head, *args = expr.words
    if head in _FUNCS:
        arity, func = _FUNCS[head]
        if len(args) != arity:
            raise TemplateSyntaxError(f"{head} expects {arity} argument(s)")
        return func(*(_arg(a, variables) for a in args))
    if args:
        raise TemplateSyntaxError(f"unknown function {head}")
    return _arg(head, variables)


def _emit(nodes: list, variables: dict[str, str], out: list[str]) -> None:
    for node in nodes:
        if isinstance(node, _Text):
            out.append(node.value)
        elif isinstance(node, _If):
            value = _eval(node.cond, variables)
            _emit(node.then if value else node.otherwise, variables, out)
        else:
            value = _eval(node, variables)
            out.append(value if isinstance(value, str) else str(value).lower())


def render_text(text: str, variables: dict[str, str] | None = None) -> str:
    """Substitute variables into text. Malformed input comes back unchanged."""
    if not text:
        return text or ""
    variables = variables or {}
    try:
        tree = _parse(_tokenize(text))
        out: list[str] = []
        _emit(tree, variables, out)
    except TemplateSyntaxError as exc:
        log.debug("render_text: leaving text unrendered: %s", exc)
        return text
    return "".join(out)


def render_title(text: str, variables: dict[str, str] | None = None) -> str:
    return sanitize_title(render_text(text, variables))
