"""Contract template loader.

Templates ship as YAML files next to this module; extra ones can be dropped
into ``templates_dir``. Seeding copies them into the store, where edits are
versioned once a contract references them.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError as PydanticValidationError

from sc import store
from sc.engine.templates import validate_template
from sc.errors import TemplateInvalid, TemplateNotFound
from sc.models import ContractTemplate

logger = logging.getLogger(__name__)

BUILTIN_DIR = Path(__file__).parent

IN_PERSON_TEMPLATE = "standard-speaker-agreement"
VIRTUAL_TEMPLATE = "virtual-speaker-agreement"
VIRTUAL_EVENT_TYPES = {"virtual", "webinar", "online"}


def load_template(path: str | Path) -> ContractTemplate:
    """Parse and validate one template YAML file."""
    path = Path(path)
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    try:
        template = ContractTemplate.model_validate(data)
    except PydanticValidationError as e:
        raise TemplateInvalid(f"{path.name}: {e.errors()[0]['msg']}") from e
    validate_template(template)
    return template


def load_dir(directory: str | Path) -> list[ContractTemplate]:
    directory = Path(directory)
    if not directory.is_dir():
        return []
    return [load_template(p) for p in sorted(directory.glob("*.yaml"))]


def builtin_templates(extra_dir: str | Path | None = None) -> list[ContractTemplate]:
    """Packaged templates plus any from ``extra_dir`` (same id replaces packaged)."""
    by_id = {t.id: t for t in load_dir(BUILTIN_DIR)}
    if extra_dir:
        for t in load_dir(extra_dir):
            by_id[t.id] = t
    return list(by_id.values())


def seed_templates(db, extra_dir: str | Path | None = None) -> list[ContractTemplate]:
    """Store every template not yet in the database; existing ones are left alone."""
    seeded = []
    with db.transaction() as c:
        for template in builtin_templates(extra_dir):
            if store.get_template(c, template.id) is None:
                seeded.append(store.save_template(c, template))
                logger.info("Seeded template %s v%d", template.id, template.version)
    return seeded


def select_template_id(event_type: str | None) -> str:
    """Virtual-style events get the virtual agreement, everything else in-person."""
    if event_type and event_type.strip().lower() in VIRTUAL_EVENT_TYPES:
        return VIRTUAL_TEMPLATE
    return IN_PERSON_TEMPLATE


def require_template(c, template_id: str, version: int | None = None) -> ContractTemplate:
    template = store.get_template(c, template_id, version)
    if template is None:
        raise TemplateNotFound(f"Template '{template_id}' not found")
    return template
