"""
Post-render field masking for form markup.

Form templates often hardcode their controls.  ``apply_field_permissions``
enforces the resolved capabilities on the rendered HTML:

* hidden field  -> its ``<input>``, ``<select>``, ``<textarea>`` and any
  ``<th|td|div data-field="name">`` wrapper are removed
* visible but not editable -> its controls gain a ``disabled`` attribute

Data for hidden fields is already absent from the record (the data service
never projects it); this pass only removes the empty affordances.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from procure_kernel.domain.capabilities import FieldCapabilitySet


def _name_attr(field_name: str) -> str:
    return rf"""\bname=["']{re.escape(field_name)}["']"""


def _data_field_attr(field_name: str) -> str:
    return rf"""\bdata-field=["']{re.escape(field_name)}["']"""


def _remove_field(html: str, field_name: str) -> str:
    name = _name_attr(field_name)
    data_field = _data_field_attr(field_name)
    patterns = (
        rf"<(th|td|div)\b[^>]*{data_field}[^>]*>.*?</\1>",
        rf"<label\b[^>]*\bfor=[\"']{re.escape(field_name)}[\"'][^>]*>.*?</label>",
        rf"<(select|textarea)\b[^>]*{name}[^>]*>.*?</\1>",
        rf"<input\b[^>]*{name}[^>]*/?>",
    )
    for pattern in patterns:
        html = re.sub(pattern, "", html, flags=re.IGNORECASE | re.DOTALL)
    return html


def _disable_field(html: str, field_name: str) -> str:
    pattern = re.compile(
        rf"<(input|select|textarea)\b([^>]*{_name_attr(field_name)}[^>]*?)(\s*/?)>",
        re.IGNORECASE,
    )

    def _add_disabled(match: re.Match) -> str:
        tag, attrs, close = match.group(1), match.group(2), match.group(3)
        if re.search(r"\bdisabled\b", attrs, re.IGNORECASE):
            return match.group(0)
        return f"<{tag}{attrs} disabled{close}>"

    return pattern.sub(_add_disabled, html)


def apply_field_permissions(
    html: str,
    capabilities: FieldCapabilitySet,
    field_names: Iterable[str] | None = None,
) -> str:
    """Strip hidden and disable read-only controls in rendered form HTML."""
    if not html:
        return ""
    names = list(field_names) if field_names is not None else [c.field_name for c in capabilities]
    for field_name in names:
        if not capabilities.can_see(field_name):
            html = _remove_field(html, field_name)
        elif not capabilities.can_edit(field_name):
            html = _disable_field(html, field_name)
    return html
