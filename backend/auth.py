"""
Wallet authentication for Dare Betting.
Claims are authorized by an ed25519 signature over "<Action>:<dareId>:<timestamp>".
"""
import logging
import re
import time
from typing import Optional, Tuple

from solders.pubkey import Pubkey
from solders.signature import Signature

from config import CLAIM_SIGNATURE_TTL_SECONDS
from dares.errors import AuthError
from security import audit_logger, AuditEventType, AuditSeverity

logger = logging.getLogger(__name__)

# Signed actions. Binding the action name into the message stops a signature
# for one claim type being replayed against another.
ACTION_CASH_OUT = "CashOut"
ACTION_CLAIM_WINNINGS = "ClaimWinnings"
ACTION_CLAIM_CREATOR_FEE = "ClaimCreatorFee"
ACTION_CLAIM_COMPLETER_REWARD = "ClaimCompleterReward"
ACTION_CLAIM_NEXT = "ClaimNext"
ACTION_SUBMIT_PROOF = "SubmitProof"
ACTION_APPROVE_PROOF = "ApproveProof"
ACTION_UPDATE_BET = "UpdateBet"
ACTION_RECONCILE = "Reconcile"
ACTION_VIEW_AUDIT = "ViewAudit"


def build_auth_message(action: str, dare_id: str, timestamp: int) -> str:
    """Message the wallet signs for an action on a dare."""
    return f"{action}:{dare_id}:{timestamp}"


def verify_wallet_signature(wallet_address: str, message: str, signature: str) -> bool:
    """Verify a base58 ed25519 signature of message by wallet_address."""
    try:
        pubkey = Pubkey.from_string(wallet_address)
        sig = Signature.from_string(signature)
        return sig.verify(pubkey, message.encode())
    except Exception as e:
        logger.warning(f"Signature verification failed for {wallet_address}: {e}")
        return False


def is_timestamp_fresh(timestamp_ms: int, now_ms: Optional[int] = None,
                       ttl_seconds: int = CLAIM_SIGNATURE_TTL_SECONDS) -> bool:
    """True if a millisecond timestamp is within the TTL of now (either direction)."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return abs(now_ms - timestamp_ms) <= ttl_seconds * 1000


def require_signed_action(action: str, dare_id: str, wallet: str,
                          signature: Optional[str], timestamp: Optional[int],
                          ip_address: Optional[str] = None,
                          now_ms: Optional[int] = None):
    """Raise AuthError unless wallet signed action for dare_id recently."""
    if not timestamp or not is_timestamp_fresh(timestamp, now_ms):
        audit_logger.log(
            AuditEventType.EXPIRED_SIGNATURE, AuditSeverity.WARNING,
            wallet=wallet, dare_id=dare_id, ip_address=ip_address,
            details=f"action={action} timestamp={timestamp}"
        )
        raise AuthError("Request expired or missing timestamp")

    if not signature:
        raise AuthError("Signature required")

    message = build_auth_message(action, dare_id, timestamp)
    if not verify_wallet_signature(wallet, message, signature):
        audit_logger.log(
            AuditEventType.INVALID_SIGNATURE, AuditSeverity.WARNING,
            wallet=wallet, dare_id=dare_id, ip_address=ip_address,
            details=f"action={action}"
        )
        raise AuthError("Invalid signature")


def validate_username(username: str) -> Tuple[bool, str]:
    """
    Validate username format.
    Returns (is_valid, error_message).
    """
    if not username:
        return False, "Username is required"

    if len(username) < 3:
        return False, "Username must be at least 3 characters"

    if len(username) > 20:
        return False, "Username must be 20 characters or less"

    if not re.match(r'^[a-zA-Z0-9_]+$', username):
        return False, "Username can only contain letters, numbers, and underscores"

    if username[0].isdigit():
        return False, "Username cannot start with a number"

    return True, ""
