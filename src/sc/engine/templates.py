"""Template engine: substitute a flat value map into ordered template sections."""

from __future__ import annotations

import re
from collections.abc import Mapping

from sc.errors import TemplateInvalid
from sc.models import ContractTemplate, TemplateSection

PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z0-9_.\-]+)\s*\}\}")


def placeholder_for(key: str) -> str:
    """Visible marker for a value the draft is still missing.

    speaker_fee -> [SPEAKER FEE]
    """
    label = re.sub(r"[_.\-]+", " ", key).strip().upper()
    return f"[{label}]"


def ordered_sections(template: ContractTemplate) -> list[TemplateSection]:
    """Sections by ascending order; ties keep declaration order."""
    indexed = list(enumerate(template.sections))
    return [s for _, s in sorted(indexed, key=lambda p: (p[1].order, p[0]))]


def template_keys(template: ContractTemplate) -> list[str]:
    """All placeholder keys used by the template, in document order, deduplicated."""
    seen: list[str] = []
    for section in ordered_sections(template):
        for key in PLACEHOLDER_RE.findall(section.body):
            if key not in seen:
                seen.append(key)
    return seen


def validate_template(template: ContractTemplate) -> None:
    """Raise TemplateInvalid if the template cannot produce a document."""
    if not template.sections:
        raise TemplateInvalid(f"Template '{template.id}' has no sections")

    ids = [s.id for s in template.sections]
    dupes = sorted({i for i in ids if ids.count(i) > 1})
    if dupes:
        raise TemplateInvalid(f"Template '{template.id}' repeats section ids: {', '.join(dupes)}")

    missing = [sid for sid in template.required_sections if sid not in ids]
    if missing:
        raise TemplateInvalid(
            f"Template '{template.id}' is missing required sections: {', '.join(missing)}"
        )

    empty = [s.id for s in template.sections if s.required and not s.body.strip()]
    if empty:
        raise TemplateInvalid(
            f"Template '{template.id}' has empty required sections: {', '.join(empty)}"
        )


def substitute(text: str, values: Mapping[str, object]) -> str:
    """Single-pass {{key}} substitution; absent or blank values become placeholders."""

    def _sub(match: re.Match) -> str:
        key = match.group(1)
        value = values.get(key)
        if value is None or str(value) == "":
            return placeholder_for(key)
        return str(value)

    return PLACEHOLDER_RE.sub(_sub, text)


def render(template: ContractTemplate, values: Mapping[str, object]) -> str:
    """Render the full document body.

    The title becomes a level-1 heading and each section a level-2 heading
    followed by its substituted body. Pure: no I/O, safe for live preview.
    """
    validate_template(template)

    parts = [f"# {template.name}"]
    for section in ordered_sections(template):
        parts.append(f"## {section.title}")
        parts.append(substitute(section.body.strip("\n"), values))
    return "\n\n".join(parts) + "\n"


def unresolved_placeholders(document_body: str) -> list[str]:
    """Bracketed placeholders still present in a rendered document."""
    found = re.findall(r"\[([A-Z0-9 ]+)\]", document_body)
    return list(dict.fromkeys(found))
