"""Wallet signature checks for signed claim requests."""
import pytest
from solders.keypair import Keypair

from auth import (
    ACTION_CLAIM_WINNINGS,
    ACTION_CASH_OUT,
    build_auth_message,
    is_timestamp_fresh,
    require_signed_action,
    validate_username,
    verify_wallet_signature,
)
from dares import AuthError

NOW_MS = 1_772_366_400_000


def sign(keypair: Keypair, action: str, dare_id: str, timestamp: int) -> str:
    message = build_auth_message(action, dare_id, timestamp)
    return str(keypair.sign_message(message.encode()))


def test_message_format():
    assert build_auth_message("ClaimWinnings", "dare_abc", 123) == "ClaimWinnings:dare_abc:123"


def test_valid_signature():
    kp = Keypair()
    signature = sign(kp, ACTION_CLAIM_WINNINGS, "dare_abc", NOW_MS)
    require_signed_action(ACTION_CLAIM_WINNINGS, "dare_abc", str(kp.pubkey()), signature, NOW_MS, now_ms=NOW_MS)


def test_signature_from_other_wallet():
    kp, other = Keypair(), Keypair()
    signature = sign(other, ACTION_CLAIM_WINNINGS, "dare_abc", NOW_MS)
    with pytest.raises(AuthError, match="Invalid signature"):
        require_signed_action(ACTION_CLAIM_WINNINGS, "dare_abc", str(kp.pubkey()), signature, NOW_MS,
                              now_ms=NOW_MS)


def test_signature_for_other_action():
    kp = Keypair()
    signature = sign(kp, ACTION_CASH_OUT, "dare_abc", NOW_MS)
    with pytest.raises(AuthError, match="Invalid signature"):
        require_signed_action(ACTION_CLAIM_WINNINGS, "dare_abc", str(kp.pubkey()), signature, NOW_MS,
                              now_ms=NOW_MS)


def test_signature_for_other_dare():
    kp = Keypair()
    signature = sign(kp, ACTION_CLAIM_WINNINGS, "dare_other", NOW_MS)
    with pytest.raises(AuthError):
        require_signed_action(ACTION_CLAIM_WINNINGS, "dare_abc", str(kp.pubkey()), signature, NOW_MS,
                              now_ms=NOW_MS)


def test_stale_timestamp():
    kp = Keypair()
    stale = NOW_MS - 301_000
    signature = sign(kp, ACTION_CLAIM_WINNINGS, "dare_abc", stale)
    with pytest.raises(AuthError, match="expired"):
        require_signed_action(ACTION_CLAIM_WINNINGS, "dare_abc", str(kp.pubkey()), signature, stale,
                              now_ms=NOW_MS)


def test_missing_signature():
    kp = Keypair()
    with pytest.raises(AuthError, match="Signature required"):
        require_signed_action(ACTION_CLAIM_WINNINGS, "dare_abc", str(kp.pubkey()), "", NOW_MS, now_ms=NOW_MS)


def test_freshness_window():
    assert is_timestamp_fresh(NOW_MS - 300_000, now_ms=NOW_MS)
    assert is_timestamp_fresh(NOW_MS + 300_000, now_ms=NOW_MS)
    assert not is_timestamp_fresh(NOW_MS + 300_001, now_ms=NOW_MS)


def test_garbage_inputs_do_not_verify():
    assert not verify_wallet_signature("not-a-wallet", "hello", "not-a-signature")


@pytest.mark.parametrize("username,ok", [
    ("dare_devil", True),
    ("ab", False),
    ("9lives", False),
    ("bad name", False),
    ("a" * 21, False),
])
def test_validate_username(username, ok):
    assert validate_username(username)[0] is ok
