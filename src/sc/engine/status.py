"""Contract status model: allowed transitions and signature-driven recompute."""

from __future__ import annotations

from collections.abc import Iterable

from sc.errors import InvalidTransition
from sc.models import Contract, ContractStatus, SignerRole

S = ContractStatus

ALLOWED: dict[ContractStatus, set[ContractStatus]] = {
    S.DRAFT: {S.PENDING_REVIEW, S.SENT_FOR_SIGNATURE, S.CANCELLED},
    S.PENDING_REVIEW: {S.SENT_FOR_SIGNATURE, S.CANCELLED},
    S.SENT_FOR_SIGNATURE: {S.PARTIALLY_SIGNED, S.FULLY_EXECUTED, S.CANCELLED},
    S.PARTIALLY_SIGNED: {S.FULLY_EXECUTED, S.CANCELLED},
    S.FULLY_EXECUTED: {S.ACTIVE},
    S.ACTIVE: {S.COMPLETED},
    S.COMPLETED: set(),
    S.CANCELLED: set(),
}

SIGNABLE = {S.SENT_FOR_SIGNATURE, S.PARTIALLY_SIGNED}
CANCELLABLE = {S.DRAFT, S.PENDING_REVIEW, S.SENT_FOR_SIGNATURE, S.PARTIALLY_SIGNED}
TERMINAL = {S.COMPLETED, S.CANCELLED}


def can_transition(current: ContractStatus, target: ContractStatus) -> bool:
    return target in ALLOWED.get(current, set())


def ensure_transition(current: ContractStatus, target: ContractStatus) -> None:
    """Raise InvalidTransition unless current -> target is an allowed edge."""
    if not can_transition(current, target):
        raise InvalidTransition(current, target)


def is_signable(status: ContractStatus) -> bool:
    return status in SIGNABLE


def required_signers(contract: Contract) -> list[SignerRole]:
    """Roles that must sign before the contract is fully executed.

    The client always signs. The speaker signs only when the contract names
    one, and the admin only when a counter-signature was requested.
    """
    roles = [SignerRole.CLIENT]
    if contract.has_speaker:
        roles.append(SignerRole.SPEAKER)
    if contract.requires_admin_signature:
        roles.append(SignerRole.ADMIN)
    return roles


def recompute_status(contract: Contract, signed_roles: Iterable[SignerRole]) -> ContractStatus:
    """Status implied by the signatures recorded so far.

    Only meaningful while the contract is out for signature; any other status
    is returned unchanged.
    """
    if contract.status not in SIGNABLE:
        return contract.status
    signed = set(signed_roles)
    required = required_signers(contract)
    if all(role in signed for role in required):
        return S.FULLY_EXECUTED
    if any(role in signed for role in required):
        return S.PARTIALLY_SIGNED
    return contract.status
