"""Signature capture and completion detection.

A signature is accepted only through a resolvable token whose role has not
signed yet. The check, the insert and the status recompute share a single
BEGIN IMMEDIATE transaction, and the (contract_id, signer_type) unique
constraint settles any remaining race.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import struct
from datetime import datetime

import fitz  # PyMuPDF

from sc import store
from sc.engine.status import recompute_status
from sc.engine.tokens import lookup, short, signing_state
from sc.errors import NotSignable, PersistenceError, ValidationError
from sc.models import (
    ContractStatus, Signature, SignatureSubmission, SigningResult,
)

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
DATA_URL_RE = re.compile(r"^data:image/[a-z+.\-]+;base64,", re.I)

# Channel value at or above which a pixel counts as background paper
NEAR_WHITE = 245

# Largest canvas accepted, in pixels (a 2x retina pad is well under this)
MAX_CANVAS_PIXELS = 2_000_000

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

# Maps every channel byte to 0 (ink) or 255 (paper)
_INK_TABLE = bytes(0 if i < NEAR_WHITE else 255 for i in range(256))

_TOO_LARGE = "Signature image is too large"


# ---------------------------------------------------------------------------
# Ink detection
# ---------------------------------------------------------------------------

def decode_image(image_data: str) -> bytes:
    """Bytes of a data-URL or bare base64 image; ValidationError if undecodable."""
    payload = DATA_URL_RE.sub("", image_data.strip(), count=1)
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(["Signature image is not valid base64"]) from e


def _png_size(data: bytes) -> tuple[int, int] | None:
    """(width, height) from a PNG header, without decoding the pixels."""
    if len(data) < 24 or not data.startswith(PNG_SIGNATURE) or data[12:16] != b"IHDR":
        return None
    return struct.unpack(">II", data[16:24])


def _flatten(png: bytes, width: int, height: int) -> fitz.Pixmap:
    """RGB rendering of the canvas laid over white paper."""
    doc = fitz.open()
    try:
        page = doc.new_page(width=width, height=height)
        page.insert_image(page.rect, stream=png)
        return page.get_pixmap(alpha=False)
    finally:
        doc.close()


def has_ink(png: bytes) -> bool:
    """True if the canvas holds at least one visible, non-white pixel."""
    size = _png_size(png)
    if size and size[0] * size[1] > MAX_CANVAS_PIXELS:
        raise ValidationError([_TOO_LARGE])
    try:
        pix = fitz.Pixmap(png)
    except Exception as e:  # error classes vary across PyMuPDF releases
        raise ValidationError(["Signature image could not be decoded"]) from e
    if pix.width * pix.height > MAX_CANVAS_PIXELS:
        raise ValidationError([_TOO_LARGE])

    flat = _flatten(png, pix.width, pix.height)
    if flat.is_unicolor:
        return min(flat.samples[:flat.n]) < NEAR_WHITE
    return b"\x00" in flat.samples.translate(_INK_TABLE)


def validate_submission(sub: SignatureSubmission) -> None:
    """Raise ValidationError listing every problem with a submission."""
    errors = []
    if not sub.name.strip():
        errors.append("Signer name is required")
    if not sub.email.strip():
        errors.append("Signer email is required")
    elif not EMAIL_RE.match(sub.email.strip()):
        errors.append("Signer email is not a valid address")
    if not sub.image_data.strip():
        errors.append("Signature image is required")
    if errors:
        raise ValidationError(errors)

    if not has_ink(decode_image(sub.image_data)):
        raise ValidationError(["Signature is blank"])


# ---------------------------------------------------------------------------
# Submit
# ---------------------------------------------------------------------------

def submit_signature(db, token: str, submission: SignatureSubmission, *,
                     notifier=None) -> SigningResult:
    """Record one signer's signature and recompute the contract status.

    Raises TokenNotFound, NotSignable(reason) or ValidationError; nothing is
    written in those cases. When the contract becomes fully executed the
    notifier is told after commit; its failure is logged, never raised.
    """
    # Cheap rejection before decoding the image
    with db.connect() as c:
        tok, contract = lookup(c, token)
        can_sign, reason = signing_state(contract, tok.signer_type,
                                         store.list_signatures(c, contract.id))
    if not can_sign:
        raise NotSignable(reason)

    validate_submission(submission)

    now = datetime.now()
    with db.transaction() as c:
        tok, contract = lookup(c, token)
        signatures = store.list_signatures(c, contract.id)
        can_sign, reason = signing_state(contract, tok.signer_type, signatures, now)
        if not can_sign:
            raise NotSignable(reason)

        sig = store.insert_signature(c, Signature(
            contract_id=contract.id,
            signer_type=tok.signer_type,
            signer_name=submission.name.strip(),
            signer_email=submission.email.strip(),
            signer_title=submission.title.strip(),
            image_data=submission.image_data.strip(),
            ip_address=submission.ip_address,
            user_agent=submission.user_agent,
            signed_at=now,
        ))
        if sig is None:
            raise NotSignable("already_signed")
        store.mark_token_used(c, token)
        store.log(c, contract.id, "signed",
                  f"{tok.signer_type.value}: {sig.signer_name} <{sig.signer_email}>")

        signatures.append(sig)
        new_status = recompute_status(contract, (s.signer_type for s in signatures))
        if new_status != contract.status:
            stamps = {"executed_at": now} if new_status == ContractStatus.FULLY_EXECUTED else {}
            store.update_status(c, contract.id, new_status, **stamps)
            store.log(c, contract.id, "status",
                      f"{contract.status.value} -> {new_status.value}")
        contract = store.get_contract(c, contract.id)

    executed = new_status == ContractStatus.FULLY_EXECUTED
    logger.info("Contract %s signed by %s (token %s), status %s",
                contract.contract_number, sig.signer_type.value, short(token),
                contract.status.value)

    if executed:
        _notify(db, contract, notifier)

    return SigningResult(contract=contract, signature=sig,
                         signatures=signatures, executed=executed)


def _notify(db, contract, notifier) -> None:
    """Best-effort completion notice; a failure is recorded, not raised."""
    if notifier is None:
        return
    try:
        notifier.notify_contract_fully_executed(contract)
        action, detail = "notified", "fully_executed"
    except Exception as e:
        logger.exception("Completion notice failed for %s", contract.contract_number)
        action, detail = "notify_failed", f"{type(e).__name__}: {e}"
    try:
        with db.connect() as c:
            store.log(c, contract.id, action, detail)
    except PersistenceError:
        logger.exception("Could not record %s for %s", action, contract.contract_number)
