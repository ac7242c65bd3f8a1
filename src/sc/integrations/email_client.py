"""SMTP email client: signing invitations, completion notices and admin summaries."""

from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from sc.config import Settings, get_settings
from sc.models import Contract, SignerRole, SignerToken

logger = logging.getLogger(__name__)


def send_email(
    to: str | list[str],
    subject: str,
    body_text: str,
    body_html: str = "",
    settings: Settings | None = None,
    smtp_factory=smtplib.SMTP,
) -> bool:
    """Send one email over SMTP with STARTTLS.

    Returns False (and logs) when SMTP is not configured or delivery fails.
    """
    s = settings or get_settings()
    if not s.has_smtp():
        logger.warning("SMTP not configured; not sending %r", subject)
        return False

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = s.smtp_from or s.smtp_user
    msg["To"] = ", ".join(to) if isinstance(to, list) else to
    msg.attach(MIMEText(body_text, "plain"))
    if body_html:
        msg.attach(MIMEText(body_html, "html"))

    try:
        with smtp_factory(s.smtp_host, s.smtp_port) as server:
            server.starttls()
            server.login(s.smtp_user, s.smtp_password)
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("SMTP delivery of %r failed: %s", subject, e)
        return False
    return True


# ---------------------------------------------------------------------------
# Signing invitations
# ---------------------------------------------------------------------------

def recipient_for(contract: Contract, role: SignerRole, settings: Settings) -> tuple[str, str]:
    """(name, email) of the person who signs as ``role``."""
    if role == SignerRole.CLIENT:
        return contract.client.name, contract.client.email
    if role == SignerRole.SPEAKER:
        return contract.speaker.name, contract.speaker.email
    return settings.agency_name, settings.admin_email


def invitation_text(contract: Contract, name: str, url: str, settings: Settings) -> str:
    lines = [
        f"Hello {name or 'there'},",
        "",
        f"{settings.agency_name} has sent you a contract to review and sign:",
        "",
        f"  {contract.title}",
        f"  Contract No. {contract.contract_number}",
    ]
    if contract.event.title:
        lines.append(f"  Event: {contract.event.title}")
    lines += ["", f"Review and sign here: {url}", ""]
    if contract.expires_at:
        lines.append(f"This link expires on {contract.expires_at:%B} {contract.expires_at.day}, "
                     f"{contract.expires_at.year}.")
    lines.append("This link is personal to you; please do not forward it.")
    return "\n".join(lines)


def completion_text(contract: Contract, name: str, settings: Settings) -> str:
    lines = [
        f"Hello {name or 'there'},",
        "",
        "All parties have signed:",
        "",
        f"  {contract.title}",
        f"  Contract No. {contract.contract_number}",
    ]
    if contract.event.title:
        lines.append(f"  Event: {contract.event.title}")
    if contract.executed_at:
        lines.append(f"  Executed: {contract.executed_at:%B} {contract.executed_at.day}, "
                     f"{contract.executed_at.year}")
    lines += ["", "Thank you,", settings.agency_name]
    return "\n".join(lines)


class SmtpMailer:
    """Emails each signer their personal signing link."""

    def __init__(self, settings: Settings | None = None, smtp_factory=smtplib.SMTP):
        self.settings = settings or get_settings()
        self.smtp_factory = smtp_factory

    def send_signing_invitation(self, contract: Contract, token: SignerToken) -> bool:
        name, email = recipient_for(contract, token.signer_type, self.settings)
        if not email:
            logger.warning("No email for %s on %s; invitation skipped",
                           token.signer_type.value, contract.contract_number)
            return False
        url = self.settings.signing_url(token.token)
        return send_email(
            email,
            f"Please sign: {contract.title} ({contract.contract_number})",
            invitation_text(contract, name, url, self.settings),
            settings=self.settings,
            smtp_factory=self.smtp_factory,
        )

    def send_completion_notice(self, contract: Contract) -> list[str]:
        """Tell the client (and speaker) the contract is fully executed.

        Returns the addresses that accepted the message.
        """
        roles = [SignerRole.CLIENT]
        if contract.has_speaker:
            roles.append(SignerRole.SPEAKER)

        delivered = []
        for role in roles:
            name, email = recipient_for(contract, role, self.settings)
            if not email:
                logger.warning("No email for %s on %s; completion notice skipped",
                               role.value, contract.contract_number)
                continue
            if send_email(
                email,
                f"Fully executed: {contract.title} ({contract.contract_number})",
                completion_text(contract, name, self.settings),
                settings=self.settings,
                smtp_factory=self.smtp_factory,
            ):
                delivered.append(email)
        return delivered
