"""Dare settlement: pool splits, claims and treasury operations."""
from .errors import (
    SettlementError,
    ValidationError,
    ConflictError,
    IneligibleError,
    NotFoundError,
    ForbiddenError,
    AuthError,
    VerificationError,
)
from .settlement import (
    DareState,
    dare_state,
    winning_side,
    creator_fee,
    completer_reward,
    winners_share,
    bet_winnings,
    cash_out_refund,
    can_cash_out,
)
from .payouts import (
    SettlementEngine,
    ClaimResult,
    Entitlement,
    ClaimStrategy,
    CreatorFeeClaim,
    CompleterRewardClaim,
    WinningsClaim,
    CLAIM_STRATEGIES,
)
from .solana_ops import SolanaTreasury, LAMPORTS_PER_SOL

__all__ = [
    "SettlementError",
    "ValidationError",
    "ConflictError",
    "IneligibleError",
    "NotFoundError",
    "ForbiddenError",
    "AuthError",
    "VerificationError",
    "DareState",
    "dare_state",
    "winning_side",
    "creator_fee",
    "completer_reward",
    "winners_share",
    "bet_winnings",
    "cash_out_refund",
    "can_cash_out",
    "SettlementEngine",
    "ClaimResult",
    "Entitlement",
    "ClaimStrategy",
    "CreatorFeeClaim",
    "CompleterRewardClaim",
    "WinningsClaim",
    "CLAIM_STRATEGIES",
    "SolanaTreasury",
    "LAMPORTS_PER_SOL",
]
