"""Status machine: transition table, required signers, recompute."""
import pytest

from sc.engine.status import (
    ALLOWED, CANCELLABLE, ensure_transition, recompute_status, required_signers,
)
from sc.errors import InvalidTransition
from sc.models import ClientInfo, Contract, ContractStatus, SignerRole, SpeakerInfo

S = ContractStatus
LINEAR = [S.DRAFT, S.PENDING_REVIEW, S.SENT_FOR_SIGNATURE, S.PARTIALLY_SIGNED,
          S.FULLY_EXECUTED, S.ACTIVE, S.COMPLETED]


def _contract(status=S.SENT_FOR_SIGNATURE, speaker="Ray Speaker", admin=False):
    return Contract(contract_number="CTR-1", title="t", status=status,
                    client=ClientInfo(name="Jane"), speaker=SpeakerInfo(name=speaker),
                    requires_admin_signature=admin)


def test_required_signers():
    assert required_signers(_contract(speaker="")) == [SignerRole.CLIENT]
    assert required_signers(_contract()) == [SignerRole.CLIENT, SignerRole.SPEAKER]
    assert required_signers(_contract(admin=True)) == [
        SignerRole.CLIENT, SignerRole.SPEAKER, SignerRole.ADMIN,
    ]
    assert required_signers(_contract(speaker="  ", admin=True)) == [
        SignerRole.CLIENT, SignerRole.ADMIN,
    ]


def test_transitions_only_move_forward_except_cancel():
    for current, targets in ALLOWED.items():
        for target in targets:
            if target == S.CANCELLED:
                assert current in CANCELLABLE
            else:
                assert LINEAR.index(target) > LINEAR.index(current), (current, target)


def test_terminal_states_have_no_exits():
    assert ALLOWED[S.COMPLETED] == set()
    assert ALLOWED[S.CANCELLED] == set()


def test_cancel_forbidden_after_execution():
    for status in (S.FULLY_EXECUTED, S.ACTIVE, S.COMPLETED, S.CANCELLED):
        with pytest.raises(InvalidTransition) as exc:
            ensure_transition(status, S.CANCELLED)
        assert exc.value.current == status.value
        assert exc.value.attempted == "cancelled"
        assert exc.value.status_code == 409


def test_skipping_ahead_forbidden():
    with pytest.raises(InvalidTransition):
        ensure_transition(S.DRAFT, S.ACTIVE)
    with pytest.raises(InvalidTransition):
        ensure_transition(S.PARTIALLY_SIGNED, S.SENT_FOR_SIGNATURE)
    ensure_transition(S.DRAFT, S.SENT_FOR_SIGNATURE)
    ensure_transition(S.PENDING_REVIEW, S.SENT_FOR_SIGNATURE)


def test_recompute_two_signers():
    c = _contract()
    assert recompute_status(c, []) == S.SENT_FOR_SIGNATURE
    assert recompute_status(c, [SignerRole.CLIENT]) == S.PARTIALLY_SIGNED
    assert recompute_status(c, [SignerRole.SPEAKER]) == S.PARTIALLY_SIGNED
    assert recompute_status(c, [SignerRole.CLIENT, SignerRole.SPEAKER]) == S.FULLY_EXECUTED


def test_recompute_single_signer_jumps_to_executed():
    assert recompute_status(_contract(speaker=""), [SignerRole.CLIENT]) == S.FULLY_EXECUTED


def test_recompute_waits_for_admin():
    c = _contract(admin=True)
    assert recompute_status(c, [SignerRole.CLIENT, SignerRole.SPEAKER]) == S.PARTIALLY_SIGNED
    assert recompute_status(
        c, [SignerRole.CLIENT, SignerRole.SPEAKER, SignerRole.ADMIN]) == S.FULLY_EXECUTED


def test_recompute_ignores_non_signable_states():
    for status in (S.DRAFT, S.CANCELLED, S.ACTIVE):
        c = _contract(status=status)
        assert recompute_status(c, [SignerRole.CLIENT, SignerRole.SPEAKER]) == status
