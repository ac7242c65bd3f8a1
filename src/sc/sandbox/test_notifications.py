"""Notifications: push payloads, channel fallbacks, SMTP invitations."""
import httpx
import pytest

from sc import store
from sc.engine import workflow
from sc.engine.signing import submit_signature
from sc.errors import DeliveryError
from sc.integrations.email_client import SmtpMailer, send_email
from sc.integrations.notifications import (
    PUSHOVER_URL, PushNotifier, build_completion_notification, send_push,
)
from sc.models import Notification

from .fixtures import (
    CLIENT_EMAIL, SPEAKER_EMAIL, FakeSMTP, fresh_db, make_deal, sandbox_settings, sent_contract,
    submission,
)

PUSH = {"pushover_user_key": "u-key", "pushover_api_token": "a-token"}
SMTP = {"smtp_user": "agency@example.com", "smtp_password": "app-password"}


def _client(requests, status=200):
    def handler(request):
        requests.append(request)
        return httpx.Response(status)
    return httpx.Client(transport=httpx.MockTransport(handler))


def _down(request):
    raise httpx.ConnectError("push service down", request=request)


def test_completion_notification_content():
    db = fresh_db()
    contract, _ = sent_contract(db)
    note = build_completion_notification(contract, sandbox_settings())
    assert note.title == f"Contract signed: {contract.contract_number}"
    assert note.body.splitlines() == [
        "Client: Acme Corp",
        "Speaker: Ray Speaker",
        "Event: AI Leadership Summit (Tuesday, March 4, 2025)",
        "Location: San Francisco, CA",
        "Amount: $12,500.00",
    ]
    assert note.priority == "high"
    assert note.url == f"https://contracts.example.com/admin/contracts/{contract.id}"


def test_pushover_and_ntfy_payloads():
    requests = []
    settings = sandbox_settings(**PUSH, ntfy_topic="agency-contracts")
    note = Notification(title="Contract signed: CTR-1", body="Client: Acme",
                        priority="high", url="https://x.example.com/admin/contracts/1")
    assert send_push(note, settings, _client(requests)) is True

    pushover, ntfy = requests
    assert str(pushover.url) == PUSHOVER_URL
    form = dict(x.split("=", 1) for x in pushover.content.decode().split("&"))
    assert form["priority"] == "1"
    assert form["url_title"] == "Open+Contract"
    assert str(ntfy.url) == "https://ntfy.sh/agency-contracts"
    assert ntfy.headers["Priority"] == "4"
    assert ntfy.headers["Title"] == "Contract signed: CTR-1"
    assert ntfy.content == b"Client: Acme"


def test_push_failure_is_false_not_raised():
    settings = sandbox_settings(**PUSH)
    note = Notification(title="t", body="b")
    assert send_push(note, settings, httpx.Client(transport=httpx.MockTransport(_down))) is False
    assert send_push(note, settings, _client([], status=500)) is False


def test_notifier_without_channels_is_quiet():
    db = fresh_db()
    contract, _ = sent_contract(db)
    notifier = PushNotifier(sandbox_settings(), client=_client([]))
    assert notifier.channels() == []
    assert notifier.notify_contract_fully_executed(contract) is False


def test_notifier_raises_when_every_channel_fails():
    db = fresh_db()
    contract, _ = sent_contract(db)
    notifier = PushNotifier(sandbox_settings(**PUSH),
                            client=httpx.Client(transport=httpx.MockTransport(_down)))
    assert notifier.channels() == ["pushover"]
    with pytest.raises(DeliveryError) as exc:
        notifier.notify_contract_fully_executed(contract)
    assert exc.value.status_code == 502


def test_notifier_succeeds_with_one_channel():
    db = fresh_db()
    contract, _ = sent_contract(db)
    requests = []
    notifier = PushNotifier(sandbox_settings(**PUSH), client=_client(requests))
    assert notifier.notify_contract_fully_executed(contract) is True
    assert len(requests) == 1


def test_send_email_requires_configuration():
    FakeSMTP.instances.clear()
    assert send_email("a@b.co", "s", "body", settings=sandbox_settings(),
                      smtp_factory=FakeSMTP) is False
    assert FakeSMTP.instances == []


def test_invitation_email():
    FakeSMTP.instances.clear()
    settings = sandbox_settings(**SMTP, smtp_host="smtp.example.com")
    db = fresh_db()
    contract = workflow.create_contract(db, None, make_deal())
    mailer = SmtpMailer(settings, smtp_factory=FakeSMTP)
    contract, tokens = workflow.send_contract(db, contract.id, mailer=mailer, settings=settings)

    assert len(FakeSMTP.instances) == 2
    server = FakeSMTP.instances[0]
    assert (server.host, server.port) == ("smtp.example.com", 587)
    assert server.logged_in == "agency@example.com"
    msg = server.messages[0]
    assert msg["To"] == CLIENT_EMAIL
    assert contract.contract_number in msg["Subject"]
    text = msg.get_payload()[0].get_payload(decode=True).decode()
    assert settings.signing_url(tokens[0].token) in text
    assert tokens[1].token not in text


def test_invitation_skipped_without_address():
    FakeSMTP.instances.clear()
    settings = sandbox_settings(**SMTP)
    db = fresh_db()
    contract, tokens = sent_contract(db, admin=True)
    with db.connect() as c:
        admin = store.get_token(c, tokens["admin"])
    mailer = SmtpMailer(settings, smtp_factory=FakeSMTP)
    assert mailer.send_signing_invitation(contract, admin) is False
    assert FakeSMTP.instances == []


def test_completion_emailed_to_client_and_speaker():
    FakeSMTP.instances.clear()
    settings = sandbox_settings(**SMTP)
    db = fresh_db()
    _, tokens = sent_contract(db, settings=settings)
    mailer = SmtpMailer(settings, smtp_factory=FakeSMTP)
    notifier = PushNotifier(settings, client=_client([]), mailer=mailer)
    assert notifier.channels() == ["parties"]

    submit_signature(db, tokens["client"], submission(), notifier=notifier)
    assert FakeSMTP.instances == []
    result = submit_signature(db, tokens["speaker"], submission("Ray Speaker", SPEAKER_EMAIL),
                              notifier=notifier)

    sent = [m for server in FakeSMTP.instances for m in server.messages]
    assert [m["To"] for m in sent] == [CLIENT_EMAIL, SPEAKER_EMAIL]
    assert all(result.contract.contract_number in m["Subject"] for m in sent)
    text = sent[1].get_payload()[0].get_payload(decode=True).decode()
    assert text.startswith("Hello Ray Speaker,")
    assert "All parties have signed" in text


def test_completion_email_skips_missing_speaker():
    FakeSMTP.instances.clear()
    settings = sandbox_settings(**SMTP)
    db = fresh_db()
    contract, _ = sent_contract(db, speaker=False)
    mailer = SmtpMailer(settings, smtp_factory=FakeSMTP)
    assert mailer.send_completion_notice(contract) == [CLIENT_EMAIL]
