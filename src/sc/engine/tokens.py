"""Signer access: issue per-role tokens and resolve them back to a contract."""

from __future__ import annotations

import logging
import re
import secrets
from datetime import datetime

from sc import store
from sc.config import Settings, get_settings
from sc.engine.status import SIGNABLE, required_signers
from sc.errors import TokenNotFound
from sc.models import (
    Contract, Resolution, Signature, SignerRole, SignerStatus, SignerToken, SigningView,
)

logger = logging.getLogger(__name__)

# token_urlsafe alphabet; anything else never reaches the database
TOKEN_RE = re.compile(r"^[A-Za-z0-9_\-]{16,128}$")


def short(token: str) -> str:
    """Loggable prefix of a token."""
    return f"{token[:6]}…"


def new_token(settings: Settings | None = None) -> str:
    s = settings or get_settings()
    return secrets.token_urlsafe(s.token_bytes)


def issue_tokens(contract: Contract, settings: Settings | None = None) -> list[SignerToken]:
    """One fresh token per required signer role."""
    now = datetime.now()
    return [
        SignerToken(token=new_token(settings), contract_id=contract.id,
                    signer_type=role, created_at=now)
        for role in required_signers(contract)
    ]


def is_expired(contract: Contract, now: datetime | None = None) -> bool:
    return contract.expires_at is not None and (now or datetime.now()) >= contract.expires_at


def signing_state(contract: Contract, role: SignerRole,
                  signatures: list[Signature], now: datetime | None = None) -> tuple[bool, str | None]:
    """(can_sign, reason) for one role; reason names the first failed condition."""
    if contract.status not in SIGNABLE:
        return False, "contract_not_signable"
    if any(s.signer_type == role for s in signatures):
        return False, "already_signed"
    if is_expired(contract, now):
        return False, "expired"
    return True, None


def lookup(c, token: str) -> tuple[SignerToken, Contract]:
    """Token and its contract on an open connection, or TokenNotFound."""
    if not token or not TOKEN_RE.match(token):
        raise TokenNotFound()
    tok = store.get_token(c, token)
    if tok is None:
        raise TokenNotFound()
    contract = store.get_contract(c, tok.contract_id)
    if contract is None:
        raise TokenNotFound()
    return tok, contract


def resolve(db, token: str) -> Resolution:
    """Authorize a signing link.

    Unknown or malformed tokens raise TokenNotFound with a generic message.
    Known tokens always resolve, with ``can_sign`` and ``reason`` describing
    whether a signature would be accepted. The first view of a token is
    stamped on the token and (once) on the contract; status never changes here.
    """
    now = datetime.now()
    with db.transaction() as c:
        tok, contract = lookup(c, token)
        signatures = store.list_signatures(c, contract.id)
        if store.mark_token_viewed(c, token, now):
            tok = tok.model_copy(update={"viewed_at": now})
            if store.mark_contract_viewed(c, contract.id, now):
                contract = contract.model_copy(update={"viewed_at": now})
            store.log(c, contract.id, "viewed", tok.signer_type.value)
            logger.debug("Token %s viewed for contract %s", short(token), contract.contract_number)

    can_sign, reason = signing_state(contract, tok.signer_type, signatures, now)
    return Resolution(contract=contract, token=tok, signer_type=tok.signer_type,
                      can_sign=can_sign, reason=reason, signatures=signatures)


def signer_statuses(contract: Contract, signatures: list[Signature]) -> list[SignerStatus]:
    """Per-role signature status: required roles first, then any extra signers."""
    by_role = {s.signer_type: s for s in signatures}
    required = required_signers(contract)
    out = []
    for role in required + [r for r in by_role if r not in required]:
        sig = by_role.get(role)
        out.append(SignerStatus(
            signer_type=role,
            required=role in required,
            signed=sig is not None,
            signer_name=sig.signer_name if sig else "",
            signed_at=sig.signed_at if sig else None,
        ))
    return out


def signing_view(res: Resolution) -> SigningView:
    """Read-only projection for the signer; carries no emails or tokens."""
    c = res.contract
    return SigningView(
        contract_number=c.contract_number,
        title=c.title,
        status=c.status,
        document_body=c.document_body,
        client_name=c.client.name,
        client_company=c.client.company,
        speaker_name=c.speaker.name,
        event_title=c.event.title,
        event_date=c.event.starts_on,
        event_location=c.event.location,
        total_amount=c.total_amount,
        expires_at=c.expires_at,
        signer_type=res.signer_type,
        can_sign=res.can_sign,
        reason=res.reason,
        signers=signer_statuses(c, res.signatures),
    )
