"""
Template renderer -- logic-less placeholder substitution over a token tree.

Responsibility:
    Parse stored template markup once into an immutable token tree and render
    it against a data mapping.  Rendering is a pure function of
    (template, data): no clock, no I/O, no expression evaluation.

Grammar:
    {{path}}                 HTML-escaped value; missing/None -> ""
    {{{path}}}               unescaped value (pre-escaped fragments only)
    {{a.b.c}}                dotted path; a missing segment -> ""
    {{../path}}              resolve against the enclosing scope
    {{.}}                    the current scope itself
    {{#list}}...{{/list}}    repeat per element, element becomes the scope;
                             a truthy non-list value renders once with itself
                             as scope; falsy or missing renders nothing
    {{#if cond}}...{{else}}...{{/if}}
                             cond is ``path``, ``path == 'x'`` or
                             ``path != 'x'``
    {{! comment }}           dropped

Invariants enforced:
    - Output is deterministic for identical inputs.
    - Template content is never evaluated as code; conditions are limited to
      truthiness and equality against a literal.
    - Unbalanced or mismatched section tags fail at compile time with
      TemplateSyntaxError, never at render time.

Failure modes:
    - TemplateSyntaxError (a ConfigurationError) from ``compile_template``.
"""

from __future__ import annotations

import functools
import html
import json
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Union
from uuid import UUID

from procure_kernel.exceptions import TemplateSyntaxError

_MISSING = object()

_CONDITION = re.compile(
    r"""^(?P<path>[^\s=!]+)\s*(?P<op>==|!=)\s*(?:'(?P<sq>[^']*)'|"(?P<dq>[^"]*)"|(?P<bare>\S+))$"""
)
_PATH = re.compile(r"^(\.\./)*(\.|[A-Za-z0-9_]+(\.[A-Za-z0-9_]+)*)$")

def escape_html(text: str) -> str:
    """Escape ``&<>"'`` for element and attribute content."""
    return html.escape(text, quote=True)


# ---------------------------------------------------------------------------
# Token tree
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextNode:
    text: str


@dataclass(frozen=True)
class VariableNode:
    path: str
    escape: bool = True


@dataclass(frozen=True)
class SectionNode:
    path: str
    children: tuple[Node, ...]


@dataclass(frozen=True)
class Condition:
    path: str
    operator: str | None = None
    literal: str | None = None


@dataclass(frozen=True)
class IfNode:
    condition: Condition
    then_children: tuple[Node, ...]
    else_children: tuple[Node, ...] = ()


Node = Union[TextNode, VariableNode, SectionNode, IfNode]


@dataclass(frozen=True)
class CompiledTemplate:
    """Parsed template, safe to share between threads and requests."""

    nodes: tuple[Node, ...]
    source_length: int = 0

    def render(self, data: Mapping[str, Any] | None) -> str:
        out: list[str] = []
        _render_nodes(self.nodes, [data or {}], out)
        return "".join(out)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


@dataclass
class _Frame:
    kind: str  # "root" | "section" | "if"
    name: str
    position: int
    nodes: list
    condition: Condition | None = None
    then_nodes: list | None = None


def _check_path(path: str, tag: str, position: int) -> str:
    if not _PATH.match(path):
        raise TemplateSyntaxError("Invalid placeholder", tag, position)
    return path


def _parse_condition(expr: str, tag: str, position: int) -> Condition:
    expr = expr.strip()
    match = _CONDITION.match(expr)
    if match:
        literal = next(
            (match.group(g) for g in ("sq", "dq", "bare") if match.group(g) is not None),
            "",
        )
        return Condition(_check_path(match.group("path"), tag, position), match.group("op"), literal)
    return Condition(_check_path(expr, tag, position))


def _tokenize(source: str):
    """Yield (kind, payload, position) tuples."""
    pos = 0
    length = len(source)
    while pos < length:
        start = source.find("{{", pos)
        if start < 0:
            yield "text", source[pos:], pos
            return
        if start > pos:
            yield "text", source[pos:start], pos

        if source.startswith("{{{", start):
            end = source.find("}}}", start + 3)
            if end < 0:
                raise TemplateSyntaxError("Unterminated tag", source[start:start + 20], start)
            yield "raw", source[start + 3:end].strip(), start
            pos = end + 3
            continue

        end = source.find("}}", start + 2)
        if end < 0:
            raise TemplateSyntaxError("Unterminated tag", source[start:start + 20], start)
        yield "tag", source[start + 2:end].strip(), start
        pos = end + 2


@functools.lru_cache(maxsize=256)
def compile_template(source: str) -> CompiledTemplate:
    """Parse template markup into a CompiledTemplate."""
    stack: list[_Frame] = [_Frame("root", "", 0, [])]

    for kind, payload, position in _tokenize(source):
        frame = stack[-1]
        if kind == "text":
            frame.nodes.append(TextNode(payload))
            continue
        if kind == "raw":
            frame.nodes.append(VariableNode(_check_path(payload, payload, position), escape=False))
            continue

        tag = payload
        if tag.startswith("!"):
            continue
        if tag.startswith("#if ") or tag == "#if":
            condition = _parse_condition(tag[3:], tag, position)
            stack.append(_Frame("if", "if", position, [], condition=condition))
        elif tag == "else":
            if frame.kind != "if" or frame.then_nodes is not None:
                raise TemplateSyntaxError("Unexpected else", tag, position)
            frame.then_nodes = frame.nodes
            frame.nodes = []
        elif tag == "/if":
            if frame.kind != "if":
                raise TemplateSyntaxError("Unmatched closing tag", tag, position)
            stack.pop()
            then_nodes = frame.then_nodes if frame.then_nodes is not None else frame.nodes
            else_nodes = frame.nodes if frame.then_nodes is not None else []
            stack[-1].nodes.append(
                IfNode(frame.condition, tuple(then_nodes), tuple(else_nodes))
            )
        elif tag.startswith("#"):
            name = _check_path(tag[1:].strip(), tag, position)
            stack.append(_Frame("section", name, position, []))
        elif tag.startswith("/"):
            name = tag[1:].strip()
            if frame.kind != "section" or frame.name != name:
                raise TemplateSyntaxError("Unmatched closing tag", tag, position)
            stack.pop()
            stack[-1].nodes.append(SectionNode(frame.name, tuple(frame.nodes)))
        else:
            frame.nodes.append(VariableNode(_check_path(tag, tag, position)))

    if len(stack) > 1:
        open_frame = stack[-1]
        label = "#if" if open_frame.kind == "if" else f"#{open_frame.name}"
        raise TemplateSyntaxError("Unclosed section", label, open_frame.position)

    return CompiledTemplate(tuple(stack[0].nodes), len(source))


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def resolve_path(scopes: Sequence[Any], path: str) -> Any:
    """Look up a dotted path in the innermost scope (``../`` climbs)."""
    depth = 0
    while path.startswith("../"):
        path = path[3:]
        depth += 1
    if depth >= len(scopes):
        return _MISSING
    current = scopes[len(scopes) - 1 - depth]
    if path == ".":
        return current

    for segment in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(segment, _MISSING)
        elif isinstance(current, (list, tuple)) and segment.isdigit():
            index = int(segment)
            current = current[index] if index < len(current) else _MISSING
        else:
            return _MISSING
        if current is _MISSING or current is None:
            return current
    return current


def to_display_text(value: Any) -> str:
    """String form of a value before escaping."""
    if value is _MISSING or value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    return str(value)


def is_truthy(value: Any) -> bool:
    if value is _MISSING or value is None or value is False:
        return False
    if isinstance(value, str):
        return value not in ("", "false", "0")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value != 0
    if isinstance(value, (Mapping, list, tuple)):
        return len(value) > 0
    return bool(value)


def _evaluate(condition: Condition, scopes: list[Any]) -> bool:
    value = resolve_path(scopes, condition.path)
    if condition.operator is None:
        return is_truthy(value)
    equal = to_display_text(value) == condition.literal
    return equal if condition.operator == "==" else not equal


def _render_nodes(nodes: Sequence[Node], scopes: list[Any], out: list[str]) -> None:
    for node in nodes:
        if isinstance(node, TextNode):
            out.append(node.text)
        elif isinstance(node, VariableNode):
            text = to_display_text(resolve_path(scopes, node.path))
            out.append(escape_html(text) if node.escape else text)
        elif isinstance(node, SectionNode):
            value = resolve_path(scopes, node.path)
            if isinstance(value, (list, tuple)):
                for item in value:
                    scopes.append(item)
                    _render_nodes(node.children, scopes, out)
                    scopes.pop()
            elif is_truthy(value):
                scopes.append(value)
                _render_nodes(node.children, scopes, out)
                scopes.pop()
        else:
            branch = node.then_children if _evaluate(node.condition, scopes) else node.else_children
            _render_nodes(branch, scopes, out)


def render(template: str | CompiledTemplate, data: Mapping[str, Any] | None) -> str:
    """Render a template (markup or precompiled) against ``data``."""
    compiled = template if isinstance(template, CompiledTemplate) else compile_template(template)
    return compiled.render(data)
