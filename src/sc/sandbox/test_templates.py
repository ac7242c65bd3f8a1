"""Template engine: rendering, placeholders, validation, packaged templates."""
import pytest

from sc.engine.templates import (
    placeholder_for, render, substitute, template_keys, unresolved_placeholders,
    validate_template,
)
from sc.errors import TemplateInvalid
from sc.models import ContractTemplate, TemplateSection
from sc.templates.loader import (
    IN_PERSON_TEMPLATE, VIRTUAL_TEMPLATE, builtin_templates, select_template_id,
)


def _template(*sections, required=()):
    return ContractTemplate(id="t", name="Test Agreement", sections=list(sections),
                            required_sections=list(required))


def test_placeholder_label():
    """Missing keys render as bracketed upper-case labels."""
    assert placeholder_for("speaker_fee") == "[SPEAKER FEE]"
    assert placeholder_for("event.date") == "[EVENT DATE]"


def test_render_layout():
    """Title heading, section headings, blank-line separated, one trailing newline."""
    t = _template(TemplateSection(id="a", title="Fees", body="Fee: {{fee}}\n", order=1))
    assert render(t, {"fee": "$10.00"}) == "# Test Agreement\n\n## Fees\n\nFee: $10.00\n"


def test_render_is_idempotent():
    """Same template and values give byte-identical output."""
    t = _template(TemplateSection(id="a", title="A", body="{{x}} and {{y}}"))
    values = {"x": "1"}
    assert render(t, values) == render(t, values)


def test_missing_none_and_empty_become_placeholders():
    """Absent, None and empty-string values all fall back to the placeholder."""
    t = _template(TemplateSection(id="a", title="A", body="{{speaker_fee}}|{{a}}|{{b}}"))
    out = render(t, {"a": None, "b": ""})
    assert "[SPEAKER FEE]|[A]|[B]" in out


def test_sections_sorted_by_order_ties_stable():
    """Ascending order; equal orders keep declaration order."""
    t = _template(
        TemplateSection(id="c", title="Third", body="c", order=2),
        TemplateSection(id="a", title="First", body="a", order=1),
        TemplateSection(id="b", title="Second", body="b", order=1),
    )
    out = render(t, {})
    assert out.index("## First") < out.index("## Second") < out.index("## Third")


def test_whitespace_inside_braces():
    assert substitute("Hi {{ name }}!", {"name": "Ray"}) == "Hi Ray!"


def test_substitution_is_single_pass():
    """Substituted values are never scanned again."""
    assert substitute("{{a}}", {"a": "{{b}}", "b": "boom"}) == "{{b}}"


def test_zero_sections_invalid():
    with pytest.raises(TemplateInvalid):
        render(_template(), {})


def test_missing_required_section_invalid():
    t = _template(TemplateSection(id="a", title="A", body="x"), required=["signatures"])
    with pytest.raises(TemplateInvalid, match="signatures"):
        validate_template(t)


def test_empty_required_body_invalid():
    t = _template(TemplateSection(id="a", title="A", body="   \n", required=True))
    with pytest.raises(TemplateInvalid):
        render(t, {})


def test_empty_optional_body_allowed():
    t = _template(
        TemplateSection(id="a", title="A", body="text"),
        TemplateSection(id="b", title="Notes", body="", required=False),
    )
    assert "## Notes" in render(t, {})


def test_template_keys_in_order_deduplicated():
    t = _template(
        TemplateSection(id="b", title="B", body="{{z}} {{x}}", order=2),
        TemplateSection(id="a", title="A", body="{{x}} {{y}}", order=1),
    )
    assert template_keys(t) == ["x", "y", "z"]


def test_unresolved_placeholders_listed():
    assert unresolved_placeholders("Fee [SPEAKER FEE], date [EVENT DATE], [SPEAKER FEE]") == [
        "SPEAKER FEE", "EVENT DATE",
    ]


def test_packaged_templates_load():
    """Both shipped agreements parse, validate and carry a signatures section."""
    templates = {t.id: t for t in builtin_templates()}
    assert {IN_PERSON_TEMPLATE, VIRTUAL_TEMPLATE} <= set(templates)
    for t in templates.values():
        validate_template(t)
        assert "signatures" in t.required_sections
        declared = {v.key for v in t.variables}
        assert set(template_keys(t)) <= declared


def test_template_selection_by_event_type():
    assert select_template_id("Virtual") == VIRTUAL_TEMPLATE
    assert select_template_id("webinar") == VIRTUAL_TEMPLATE
    assert select_template_id("online") == VIRTUAL_TEMPLATE
    assert select_template_id("conference") == IN_PERSON_TEMPLATE
    assert select_template_id("") == IN_PERSON_TEMPLATE
    assert select_template_id(None) == IN_PERSON_TEMPLATE
