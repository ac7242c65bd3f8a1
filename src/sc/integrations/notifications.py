"""Push notification system: Pushover and ntfy support.

Tells the agency when a contract becomes fully executed, with an email copy
to the admin address and a completion email to the signing parties when SMTP
is configured.
"""

from __future__ import annotations

import logging

import httpx

from sc.config import Settings, get_settings
from sc.engine.binder import format_currency, format_long_date
from sc.errors import DeliveryError
from sc.integrations.email_client import send_email
from sc.models import Contract, Notification

logger = logging.getLogger(__name__)

PUSHOVER_URL = "https://api.pushover.net/1/messages.json"


def send_push(notification: Notification, settings: Settings | None = None,
              client: httpx.Client | None = None) -> bool:
    """Send a push notification via all configured providers.

    Returns True if at least one provider succeeded.
    """
    settings = settings or get_settings()
    http = client or httpx
    sent = False

    if settings.has_pushover():
        sent = _send_pushover(notification, settings, http) or sent

    if settings.has_ntfy():
        sent = _send_ntfy(notification, settings, http) or sent

    return sent


def _send_pushover(notification: Notification, settings, http) -> bool:
    """Send via Pushover (https://pushover.net)."""
    priority_map = {
        "low": -1,
        "normal": 0,
        "high": 1,
        "urgent": 2,  # requires acknowledgment
    }
    priority = priority_map.get(notification.priority, 0)

    payload: dict = {
        "token": settings.pushover_api_token,
        "user": settings.pushover_user_key,
        "title": notification.title,
        "message": notification.body,
        "priority": priority,
    }

    if notification.url:
        payload["url"] = notification.url
        payload["url_title"] = "Open Contract"

    if priority == 2:
        payload["retry"] = 300
        payload["expire"] = 3600

    try:
        resp = http.post(PUSHOVER_URL, data=payload)
        return resp.status_code == 200
    except httpx.HTTPError as e:
        logger.warning("Pushover delivery failed: %s", e)
        return False


def _send_ntfy(notification: Notification, settings, http) -> bool:
    """Send via ntfy (https://ntfy.sh)."""
    priority_map = {
        "low": "2",
        "normal": "3",
        "high": "4",
        "urgent": "5",
    }

    headers: dict = {
        "Title": notification.title,
        "Priority": priority_map.get(notification.priority, "3"),
        "Tags": "page_facing_up,white_check_mark",
    }

    if notification.url:
        headers["Click"] = notification.url
        headers["Actions"] = f"view, Open Contract, {notification.url}"

    url = f"{settings.ntfy_server.rstrip('/')}/{settings.ntfy_topic}"
    try:
        resp = http.post(url, content=notification.body.encode(), headers=headers)
        return resp.status_code == 200
    except httpx.HTTPError as e:
        logger.warning("ntfy delivery failed: %s", e)
        return False


# ---------------------------------------------------------------------------
# Contract notifications
# ---------------------------------------------------------------------------

def build_completion_notification(contract: Contract, settings: Settings | None = None) -> Notification:
    """Summary of a fully executed contract: parties, event, amount."""
    settings = settings or get_settings()
    client = contract.client.company or contract.client.name or "Client"
    lines = [f"Client: {client}"]
    if contract.has_speaker:
        lines.append(f"Speaker: {contract.speaker.name}")
    if contract.event.title:
        when = format_long_date(contract.event.starts_on)
        lines.append(f"Event: {contract.event.title}" + (f" ({when})" if when else ""))
    if contract.event.location:
        lines.append(f"Location: {contract.event.location}")
    amount = format_currency(contract.total_amount) if contract.total_amount is not None else None
    if amount:
        lines.append(f"Amount: {amount}")

    return Notification(
        title=f"Contract signed: {contract.contract_number}",
        body="\n".join(lines),
        priority="high",
        url=f"{settings.public_base_url.rstrip('/')}/admin/contracts/{contract.id}",
        contract_id=contract.id,
    )


class PushNotifier:
    """Notifier the signing flow calls once a contract is fully executed.

    The agency gets a push and an admin email; with a ``mailer`` the client
    and speaker also get a completion email.
    """

    def __init__(self, settings: Settings | None = None, client: httpx.Client | None = None,
                 mailer=None):
        self.settings = settings or get_settings()
        self.client = client
        self.mailer = mailer

    def channels(self) -> list[str]:
        out = []
        if self.settings.has_pushover():
            out.append("pushover")
        if self.settings.has_ntfy():
            out.append("ntfy")
        if self.settings.has_smtp() and self.settings.admin_email:
            out.append("email")
        if self.settings.has_smtp() and self.mailer is not None:
            out.append("parties")
        return out

    def notify_contract_fully_executed(self, contract: Contract) -> bool:
        """Push and email the summary, then email the signing parties.

        Returns False when nothing is configured; raises DeliveryError when
        channels are configured but none of them accepted the message.
        """
        channels = self.channels()
        if not channels:
            logger.info("No notification channels configured; %s not announced",
                        contract.contract_number)
            return False

        note = build_completion_notification(contract, self.settings)
        sent = send_push(note, self.settings, self.client)
        if "email" in channels:
            body = f"{note.body}\n\n{note.url}"
            sent = send_email(self.settings.admin_email, note.title, body,
                              settings=self.settings) or sent
        if "parties" in channels:
            sent = bool(self.mailer.send_completion_notice(contract)) or sent
        if not sent:
            raise DeliveryError(f"No channel delivered the notice for {contract.contract_number}")
        return True
