"""Contract workflow: create, preview, send, review, cancel, close out."""
import re
from datetime import timedelta

import pytest

from sc import store
from sc.engine import workflow
from sc.engine.signing import submit_signature
from sc.errors import ContractNotFound, InvalidTransition, MissingRequiredField, TemplateNotFound
from sc.models import ContractStatus, SignerRole
from sc.templates.loader import IN_PERSON_TEMPLATE, VIRTUAL_TEMPLATE

from .fixtures import (
    RecordingMailer, SPEAKER_EMAIL, fresh_db, make_deal, sandbox_settings, sent_contract,
    submission,
)

S = ContractStatus


def _actions(db, contract_id):
    with db.connect() as c:
        return [e.action for e in store.list_events(c, contract_id)]


def test_create_from_deal():
    db = fresh_db()
    contract = workflow.create_contract(db, None, make_deal(), created_by="ops")
    assert re.match(r"^CTR-\d{8}-[0-9A-F]{6}$", contract.contract_number)
    assert contract.status == S.DRAFT
    assert contract.template_id == IN_PERSON_TEMPLATE
    assert contract.template_version == 1
    assert contract.title == "Speaker Engagement Agreement - AI Leadership Summit"
    assert contract.total_amount == 12500
    assert contract.client.company == "Acme Corp"
    assert contract.speaker.name == "Ray Speaker"
    assert contract.contract_number in contract.document_body
    assert "$12,500.00" in contract.document_body
    assert "Tuesday, March 4, 2025" in contract.document_body
    assert contract.field_values["speaker_fee"] == "$12,500.00"
    assert _actions(db, contract.id) == ["created"]


def test_virtual_events_use_virtual_template():
    db = fresh_db()
    contract = workflow.create_contract(db, None, make_deal(event_type="webinar"))
    assert contract.template_id == VIRTUAL_TEMPLATE


def test_overrides_change_text_not_snapshot():
    db = fresh_db()
    contract = workflow.create_contract(db, IN_PERSON_TEMPLATE, make_deal(),
                                        {"governing_state": "New York", "client_company": "Acme Holdings"})
    assert "New York" in contract.document_body
    assert "Acme Holdings" in contract.document_body
    assert contract.client.company == "Acme Corp"


def test_missing_required_fields_store_nothing():
    db = fresh_db()
    with pytest.raises(MissingRequiredField) as exc:
        workflow.create_contract(db, None, make_deal(email=""))
    assert exc.value.labels == ["Client Email"]
    assert exc.value.status_code == 422
    assert workflow.list_contracts(db) == []


def test_unknown_template():
    db = fresh_db()
    with pytest.raises(TemplateNotFound):
        workflow.create_contract(db, "no-such-template", make_deal())
    assert workflow.list_contracts(db) == []


def test_preview_writes_nothing():
    db = fresh_db()
    body = workflow.preview_contract(db, None, make_deal())
    assert "DRAFT" in body
    assert "$12,500.00" in body
    assert workflow.list_contracts(db) == []


def test_send_issues_tokens_and_window():
    db = fresh_db()
    settings = sandbox_settings(signing_window_days=30)
    contract = workflow.create_contract(db, None, make_deal())
    sent, tokens = workflow.send_contract(db, contract.id, settings=settings)
    assert sent.status == S.SENT_FOR_SIGNATURE
    assert sent.expires_at - sent.sent_at == timedelta(days=30)
    assert [t.signer_type for t in tokens] == [SignerRole.CLIENT, SignerRole.SPEAKER]
    with db.connect() as c:
        assert {t.token for t in store.list_tokens(c, contract.id)} == {t.token for t in tokens}
    assert _actions(db, contract.id) == ["created", "sent"]


def test_send_twice_rejected():
    db = fresh_db()
    contract, _ = sent_contract(db)
    with pytest.raises(InvalidTransition) as exc:
        workflow.send_contract(db, contract.id, settings=sandbox_settings())
    assert exc.value.current == "sent_for_signature"
    with db.connect() as c:
        assert len(store.list_tokens(c, contract.id)) == 2


def test_review_then_approve():
    db = fresh_db()
    contract = workflow.create_contract(db, None, make_deal())
    pending = workflow.request_review(db, contract.id)
    assert pending.status == S.PENDING_REVIEW
    with pytest.raises(InvalidTransition):
        workflow.send_contract(db, contract.id, settings=sandbox_settings())
    approved, tokens = workflow.approve_review(db, contract.id, settings=sandbox_settings())
    assert approved.status == S.SENT_FOR_SIGNATURE
    assert len(tokens) == 2
    assert _actions(db, contract.id) == ["created", "review_requested", "review_approved"]


def test_approve_requires_pending_review():
    db = fresh_db()
    contract = workflow.create_contract(db, None, make_deal())
    with pytest.raises(InvalidTransition):
        workflow.approve_review(db, contract.id, settings=sandbox_settings())


def test_cancel_rules():
    db = fresh_db()
    draft = workflow.create_contract(db, None, make_deal())
    cancelled = workflow.cancel_contract(db, draft.id, "deal lost")
    assert cancelled.status == S.CANCELLED
    assert cancelled.cancelled_at is not None
    with pytest.raises(InvalidTransition):
        workflow.cancel_contract(db, draft.id)

    contract, tokens = sent_contract(db, speaker=False)
    submit_signature(db, tokens["client"], submission())
    with pytest.raises(InvalidTransition):
        workflow.cancel_contract(db, contract.id)


def test_activate_and_complete_after_execution():
    db = fresh_db()
    contract, tokens = sent_contract(db)
    with pytest.raises(InvalidTransition):
        workflow.activate_contract(db, contract.id)
    submit_signature(db, tokens["client"], submission())
    submit_signature(db, tokens["speaker"], submission("Ray Speaker", SPEAKER_EMAIL))
    active = workflow.activate_contract(db, contract.id)
    assert active.status == S.ACTIVE and active.activated_at is not None
    done = workflow.complete_contract(db, contract.id)
    assert done.status == S.COMPLETED and done.completed_at is not None
    with pytest.raises(InvalidTransition):
        workflow.cancel_contract(db, contract.id)


def test_invitations_sent_and_failures_recorded():
    db = fresh_db()
    mailer = RecordingMailer(fail_for="speaker")
    contract = workflow.create_contract(db, None, make_deal())
    sent, tokens = workflow.send_contract(db, contract.id, mailer=mailer,
                                          settings=sandbox_settings())
    assert sent.status == S.SENT_FOR_SIGNATURE
    assert [(n, role) for n, role, _ in mailer.sent] == [(contract.contract_number, "client")]
    assert _actions(db, contract.id) == ["created", "sent", "invited", "invite_failed"]


def test_issued_contract_keeps_template_version():
    db = fresh_db()
    contract, _ = sent_contract(db)
    with db.connect() as c:
        template = store.get_template(c, IN_PERSON_TEMPLATE)
    saved = workflow.save_template(db, template.model_copy(update={"description": "revised"}))
    assert saved.version == 2
    loaded = workflow.get_contract(db, contract.id)
    assert loaded.template_version == 1
    assert loaded.document_body == contract.document_body


def test_contract_detail():
    db = fresh_db()
    contract, tokens = sent_contract(db)
    submit_signature(db, tokens["client"], submission())
    detail = workflow.get_contract_detail(db, contract.id)
    assert detail.contract.status == S.PARTIALLY_SIGNED
    assert [(s.signer_type, s.signed) for s in detail.signers] == [
        (SignerRole.CLIENT, True), (SignerRole.SPEAKER, False),
    ]
    assert len(detail.signatures) == 1
    assert len(detail.tokens) == 2
    assert [e.action for e in detail.events][:3] == ["created", "sent", "signed"]


def test_unknown_contract():
    db = fresh_db()
    with pytest.raises(ContractNotFound):
        workflow.get_contract(db, 999)
    with pytest.raises(ContractNotFound):
        workflow.cancel_contract(db, 999)


def test_list_by_status():
    db = fresh_db()
    a = workflow.create_contract(db, None, make_deal())
    b, _ = sent_contract(db)
    assert [c.id for c in workflow.list_contracts(db, S.DRAFT)] == [a.id]
    assert [c.id for c in workflow.list_contracts(db, S.SENT_FOR_SIGNATURE)] == [b.id]
    assert len(workflow.list_contracts(db)) == 2
