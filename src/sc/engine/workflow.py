"""Contract workflow: create, review, send, cancel and close out contracts.

Every operation takes the Database explicitly and runs as its own unit of
work. Status changes driven by signatures live in sc.engine.signing; this
module only performs the administrative moves.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

from sc import store
from sc.config import Settings, get_settings
from sc.engine.binder import bind
from sc.engine.status import ensure_transition
from sc.engine.templates import render, validate_template
from sc.engine.tokens import issue_tokens, short, signer_statuses
from sc.errors import ContractNotFound, InvalidTransition
from sc.models import (
    Contract, ContractDetail, ContractStatus, ContractTemplate, Deal, SignerToken,
)
from sc.templates.loader import require_template, select_template_id

logger = logging.getLogger(__name__)

S = ContractStatus


def new_contract_number(now: datetime | None = None) -> str:
    """CTR-20250304-9F2A1C"""
    now = now or datetime.now()
    return f"CTR-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


def default_title(deal: Deal) -> str:
    event = deal.event.title or deal.client.company or deal.client.name
    return f"Speaker Engagement Agreement - {event}" if event else "Speaker Engagement Agreement"


def require_contract(c, contract_id: int) -> Contract:
    contract = store.get_contract(c, contract_id)
    if contract is None:
        raise ContractNotFound(f"Contract {contract_id} not found")
    return contract


# ---------------------------------------------------------------------------
# Drafting
# ---------------------------------------------------------------------------

def render_document(template: ContractTemplate, deal: Deal | None,
                    overrides: Mapping[str, Any] | None,
                    base: Mapping[str, Any]) -> tuple[str, dict[str, str]]:
    values = bind(deal, overrides, template.variables, base=base)
    return render(template, values), values


def preview_contract(db, template_id: str | None, deal: Deal | None = None,
                     overrides: Mapping[str, Any] | None = None) -> str:
    """Render exactly as create_contract would, without writing anything."""
    deal = deal or Deal()
    template_id = template_id or select_template_id(deal.event.event_type)
    with db.connect() as c:
        template = require_template(c, template_id)
    base = {"contract_number": "DRAFT", "agreement_date": datetime.now().date()}
    body, _ = render_document(template, deal, overrides, base)
    return body


def create_contract(db, template_id: str | None, deal: Deal | None = None,
                    overrides: Mapping[str, Any] | None = None, *,
                    requires_admin_signature: bool = False,
                    created_by: str = "", title: str | None = None) -> Contract:
    """Bind, render and persist a new contract in draft.

    With no ``template_id`` the template is chosen from the deal's event type.
    Raises TemplateNotFound, TemplateInvalid or MissingRequiredField; nothing
    is stored in those cases.
    """
    deal = deal or Deal()
    template_id = template_id or select_template_id(deal.event.event_type)
    now = datetime.now()
    number = new_contract_number(now)

    with db.transaction() as c:
        template = require_template(c, template_id)
        body, values = render_document(
            template, deal, overrides,
            base={"contract_number": number, "agreement_date": now.date()},
        )
        contract = store.insert_contract(c, Contract(
            contract_number=number,
            title=title or default_title(deal),
            contract_type=template.contract_type,
            template_id=template.id,
            template_version=template.version,
            deal_id=deal.id,
            client=deal.client,
            speaker=deal.speaker,
            event=deal.event,
            total_amount=deal.financial.deal_value,
            document_body=body,
            field_values=values,
            status=S.DRAFT,
            requires_admin_signature=requires_admin_signature,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        ))
        store.log(c, contract.id, "created",
                  f"{contract.contract_number} from {template.id} v{template.version}")

    logger.info("Created contract %s (%s v%d)", contract.contract_number,
                template.id, template.version)
    return contract


def save_template(db, template: ContractTemplate) -> ContractTemplate:
    """Validate and store a template; returns it with the version it was saved under."""
    validate_template(template)
    with db.transaction() as c:
        saved = store.save_template(c, template)
    logger.info("Saved template %s v%d", saved.id, saved.version)
    return saved


# ---------------------------------------------------------------------------
# Review & send
# ---------------------------------------------------------------------------

def _move(db, contract_id: int, target: ContractStatus, action: str,
          detail: str = "", **stamps: datetime) -> Contract:
    with db.transaction() as c:
        contract = require_contract(c, contract_id)
        ensure_transition(contract.status, target)
        store.update_status(c, contract_id, target, **stamps)
        store.log(c, contract_id, action,
                  detail or f"{contract.status.value} -> {target.value}")
        contract = require_contract(c, contract_id)
    logger.info("Contract %s %s", contract.contract_number, action)
    return contract


def request_review(db, contract_id: int) -> Contract:
    """draft -> pending_review"""
    return _move(db, contract_id, S.PENDING_REVIEW, "review_requested")


def _issue(db, contract_id: int, expected: ContractStatus, action: str,
           mailer=None, settings: Settings | None = None) -> tuple[Contract, list[SignerToken]]:
    s = settings or get_settings()
    now = datetime.now()
    with db.transaction() as c:
        contract = require_contract(c, contract_id)
        if contract.status != expected:
            raise InvalidTransition(contract.status, S.SENT_FOR_SIGNATURE)
        ensure_transition(contract.status, S.SENT_FOR_SIGNATURE)
        tokens = issue_tokens(contract, s)
        store.insert_tokens(c, tokens)
        store.update_status(c, contract_id, S.SENT_FOR_SIGNATURE, sent_at=now,
                            expires_at=now + timedelta(days=s.signing_window_days))
        store.log(c, contract_id, action,
                  ", ".join(t.signer_type.value for t in tokens))
        contract = require_contract(c, contract_id)

    logger.info("Contract %s sent for signature to %s", contract.contract_number,
                ", ".join(t.signer_type.value for t in tokens))
    if mailer is not None:
        _invite(db, contract, tokens, mailer)
    return contract, tokens


def send_contract(db, contract_id: int, *, mailer=None,
                  settings: Settings | None = None) -> tuple[Contract, list[SignerToken]]:
    """draft -> sent_for_signature; issues one token per required signer."""
    return _issue(db, contract_id, S.DRAFT, "sent", mailer, settings)


def approve_review(db, contract_id: int, *, mailer=None,
                   settings: Settings | None = None) -> tuple[Contract, list[SignerToken]]:
    """pending_review -> sent_for_signature, issuing tokens like send_contract."""
    return _issue(db, contract_id, S.PENDING_REVIEW, "review_approved", mailer, settings)


def _invite(db, contract: Contract, tokens: list[SignerToken], mailer) -> None:
    """Email each signer their link; failures are recorded and skipped."""
    for tok in tokens:
        try:
            sent = mailer.send_signing_invitation(contract, tok)
        except Exception as e:
            logger.exception("Invitation to %s failed for %s (token %s)",
                             tok.signer_type.value, contract.contract_number, short(tok.token))
            sent, detail = False, f"{tok.signer_type.value}: {type(e).__name__}: {e}"
        else:
            detail = tok.signer_type.value
        with db.connect() as c:
            store.log(c, contract.id, "invited" if sent else "invite_failed", detail)


# ---------------------------------------------------------------------------
# Administrative moves
# ---------------------------------------------------------------------------

def cancel_contract(db, contract_id: int, reason: str = "") -> Contract:
    """Cancel from any state before execution; outstanding tokens stop working."""
    return _move(db, contract_id, S.CANCELLED, "cancelled", reason,
                 cancelled_at=datetime.now())


def activate_contract(db, contract_id: int) -> Contract:
    return _move(db, contract_id, S.ACTIVE, "activated", activated_at=datetime.now())


def complete_contract(db, contract_id: int) -> Contract:
    return _move(db, contract_id, S.COMPLETED, "completed", completed_at=datetime.now())


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def get_contract(db, contract_id: int) -> Contract:
    with db.connect() as c:
        return require_contract(c, contract_id)


def list_contracts(db, status: ContractStatus | None = None) -> list[Contract]:
    with db.connect() as c:
        return store.list_contracts(c, status)


def get_contract_detail(db, contract_id: int) -> ContractDetail:
    with db.connect() as c:
        contract = require_contract(c, contract_id)
        signatures = store.list_signatures(c, contract_id)
        return ContractDetail(
            contract=contract,
            signers=signer_statuses(contract, signatures),
            signatures=signatures,
            tokens=store.list_tokens(c, contract_id),
            events=store.list_events(c, contract_id),
        )
