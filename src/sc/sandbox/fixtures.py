"""Shared test data and helpers for sandbox tests."""
import base64
from datetime import date

import fitz  # PyMuPDF

from sc.config import Settings
from sc.engine import workflow
from sc.models import (
    ClientInfo, Deal, EventInfo, FinancialTerms, SignatureSubmission, SpeakerInfo,
    TravelArrangements,
)
from sc.store import Database
from sc.templates.loader import seed_templates

CLIENT_EMAIL = "jane@acme.example.com"
SPEAKER_EMAIL = "ray@speakers.example.com"


def sandbox_settings(**overrides) -> Settings:
    """Settings that ignore any local .env file."""
    values = {
        "public_base_url": "https://contracts.example.com",
        "database_path": ":memory:",
        "pushover_user_key": "",
        "pushover_api_token": "",
        "ntfy_topic": "",
        "smtp_user": "",
        "smtp_password": "",
        "admin_email": "",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def fresh_db() -> Database:
    """Private in-memory database seeded with the packaged templates."""
    db = Database(":memory:")
    seed_templates(db)
    return db


def make_deal(speaker: bool = True, event_type: str = "conference", **client) -> Deal:
    return Deal(
        id=101,
        client=ClientInfo(
            name=client.get("name", "Jane Client"),
            company=client.get("company", "Acme Corp"),
            email=client.get("email", CLIENT_EMAIL),
            phone="555-0100",
            address="1 Market St, San Francisco, CA",
        ),
        speaker=SpeakerInfo(name="Ray Speaker", email=SPEAKER_EMAIL, fee=12500)
        if speaker else SpeakerInfo(),
        event=EventInfo(
            title="AI Leadership Summit",
            starts_on=date(2025, 3, 4),
            time="9:00 AM",
            location="San Francisco, CA",
            venue="Moscone West",
            event_type=event_type,
            attendee_count=400,
        ),
        financial=FinancialTerms(deal_value=12500, payment_terms="Net 30 days after event"),
        travel=TravelArrangements(travel_required=True, flight_required=True, hotel_required=True),
    )


# ---------------------------------------------------------------------------
# Signature canvases
# ---------------------------------------------------------------------------

def canvas_png(ink: bool = True, background: str = "transparent",
               width: int = 60, height: int = 20) -> bytes:
    """PNG like the one a browser canvas exports; ink is one black stroke."""
    pix = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, width, height), 1)
    if background == "transparent":
        pix.clear_with()  # every byte, alpha included, to 0
    else:
        pix.clear_with(255)  # opaque white
    if ink:
        for x in range(5, width - 5):
            pix.set_pixel(x, height // 2, (0, 0, 0, 255))
    return pix.tobytes("png")


def canvas_data_url(ink: bool = True, background: str = "transparent") -> str:
    data = base64.b64encode(canvas_png(ink, background)).decode()
    return f"data:image/png;base64,{data}"


def submission(name: str = "Jane Client", email: str = CLIENT_EMAIL,
               ink: bool = True, background: str = "transparent") -> SignatureSubmission:
    return SignatureSubmission(
        name=name, email=email, title="VP Events",
        image_data=canvas_data_url(ink, background),
        ip_address="203.0.113.7", user_agent="sandbox",
    )


def sent_contract(db: Database, speaker: bool = True, admin: bool = False, settings=None):
    """Create and send a contract; returns (contract, {role: token string})."""
    contract = workflow.create_contract(db, None, make_deal(speaker=speaker),
                                        requires_admin_signature=admin)
    contract, tokens = workflow.send_contract(db, contract.id,
                                              settings=settings or sandbox_settings())
    return contract, {t.signer_type.value: t.token for t in tokens}


# ---------------------------------------------------------------------------
# Collaborator doubles
# ---------------------------------------------------------------------------

class RecordingNotifier:
    def __init__(self):
        self.calls = []

    def notify_contract_fully_executed(self, contract):
        self.calls.append(contract)
        return True


class FailingNotifier:
    def __init__(self):
        self.calls = 0

    def notify_contract_fully_executed(self, contract):
        self.calls += 1
        raise RuntimeError("push service down")


class RecordingMailer:
    def __init__(self, fail_for: str = ""):
        self.sent = []
        self.fail_for = fail_for

    def send_signing_invitation(self, contract, token):
        if token.signer_type.value == self.fail_for:
            raise ConnectionError("smtp unreachable")
        self.sent.append((contract.contract_number, token.signer_type.value, token.token))
        return True


class FakeSMTP:
    """Stands in for smtplib.SMTP; records what would have been sent."""

    instances = []

    def __init__(self, host, port):
        self.host, self.port = host, port
        self.messages = []
        self.logged_in = None
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        self.logged_in = user

    def send_message(self, msg):
        self.messages.append(msg)
