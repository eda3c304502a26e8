"""Template substitution for block text fields.

Placeholders:
- `{{input}}`: the current data flowing through the flow
- `{{line}}`: the current line inside a For Each Line body
- `{{getVar("name")}}` (also `{{getVar('name')}}` and the legacy `{{get:name}}`):
  the value of a variable

Substitution is a single regex pass over the template, so text inserted for
one placeholder is never re-scanned for others. Unresolved placeholders are
left as-is; only blocks that require a variable treat a missing one as an error.
"""

from __future__ import annotations

import re
from typing import List, Mapping, Optional

VARIABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_PLACEHOLDER_RE = re.compile(
    r"\{\{(?:"
    r"(?P<input>input)"
    r"|(?P<line>line)"
    r"|getVar\((?P<q>[\"'])(?P<var>[A-Za-z_][A-Za-z0-9_]*)(?P=q)\)"
    r"|get:(?P<legacy>[A-Za-z_][A-Za-z0-9_]*)"
    r")\}\}"
)


def is_valid_variable_name(name: str) -> bool:
    return bool(VARIABLE_NAME_RE.match(name or ""))


def substitute(
    template: str,
    current_data: Optional[str],
    variables: Optional[Mapping[str, str]] = None,
    line: Optional[str] = None,
) -> str:
    """Resolve every placeholder in `template`.

    `{{line}}` is only replaced when `line` is given (i.e. inside a loop body).
    Passing `current_data=None` leaves `{{input}}` untouched, which is how the
    operator evaluator resolves variable references on their own.
    """
    if not template:
        return template or ""
    store = variables or {}

    def _replace(match: "re.Match[str]") -> str:
        if match.group("input") is not None:
            return current_data if current_data is not None else match.group(0)
        if match.group("line") is not None:
            return line if line is not None else match.group(0)
        name = match.group("var") or match.group("legacy")
        value = store.get(name)
        return value if value is not None else match.group(0)

    return _PLACEHOLDER_RE.sub(_replace, template)


def substitute_variables(template: str, variables: Optional[Mapping[str, str]] = None) -> str:
    """Resolve only the variable placeholders of `template`."""
    return substitute(template, None, variables)


def find_variable_references(template: str) -> List[str]:
    """Variable names referenced by `template`, in order of first appearance."""
    names: List[str] = []
    for match in _PLACEHOLDER_RE.finditer(template or ""):
        name = match.group("var") or match.group("legacy")
        if name and name not in names:
            names.append(name)
    return names


def uses_input(template: str) -> bool:
    return any(m.group("input") is not None for m in _PLACEHOLDER_RE.finditer(template or ""))
