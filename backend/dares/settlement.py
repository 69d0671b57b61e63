"""
Settlement math for dare pools.

Pure functions over a Dare snapshot and the current time. All amounts are
integer lamports and every split rounds down; the remainder stays in the
treasury.
"""
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from database.models import Dare, Bet, BetType

BPS_DENOMINATOR = 10_000

# Split of total_pool (basis points)
CREATOR_FEE_BPS = 200        # 2% to the dare creator
COMPLETER_REWARD_BPS = 5_000  # 50% to whoever completed the dare
WINNERS_SHARE_BPS = 4_800    # 48% pro-rata to the winning side

CASH_OUT_PENALTY_BPS = 1_000  # 10% kept on early cash-out
DEFAULT_CASH_OUT_CUTOFF = timedelta(minutes=10)


class DareState(Enum):
    """Lifecycle of a dare, derived from (is_completed, now, deadline)."""
    OPEN = "open"
    COMPLETED = "completed"
    EXPIRED_UNRESOLVED = "expired_unresolved"


def dare_state(dare: Dare, now: datetime) -> DareState:
    """Derive the dare's lifecycle state."""
    if dare.is_completed:
        return DareState.COMPLETED
    if now >= dare.deadline:
        return DareState.EXPIRED_UNRESOLVED
    return DareState.OPEN


def winning_side(state: DareState) -> Optional[BetType]:
    """WILL_DO wins a completed dare, WONT_DO an expired one, nobody an open one."""
    if state == DareState.COMPLETED:
        return BetType.WILL_DO
    if state == DareState.EXPIRED_UNRESOLVED:
        return BetType.WONT_DO
    return None


def _bps(amount: int, bps: int) -> int:
    return amount * bps // BPS_DENOMINATOR


def creator_fee(dare: Dare) -> int:
    """2% of the total pool."""
    return _bps(dare.total_pool, CREATOR_FEE_BPS)


def completer_reward(dare: Dare) -> int:
    """50% of the total pool."""
    return _bps(dare.total_pool, COMPLETER_REWARD_BPS)


def winners_share(dare: Dare) -> int:
    """48% of the total pool, split among the winning side."""
    return _bps(dare.total_pool, WINNERS_SHARE_BPS)


def bet_winnings(dare: Dare, bet: Bet, winner: BetType) -> int:
    """Pro-rata winnings for one bet.

    payout = total_pool * 48% * (bet.amount / winning_side_pool)

    Zero for losing bets, settled bets, and when the winning side is empty.
    """
    if bet.bet_type != winner or not bet.is_active:
        return 0

    side_pool = dare.side_pool(winner)
    if side_pool <= 0:
        return 0

    return dare.total_pool * WINNERS_SHARE_BPS * bet.amount // (BPS_DENOMINATOR * side_pool)


def cash_out_refund(bet: Bet) -> int:
    """Refund for an early cash-out: the amount minus the 10% penalty."""
    return bet.amount - _bps(bet.amount, CASH_OUT_PENALTY_BPS)


def cash_out_closes_at(dare: Dare, cutoff: timedelta = DEFAULT_CASH_OUT_CUTOFF) -> datetime:
    return dare.deadline - cutoff


def can_cash_out(dare: Dare, bet: Bet, now: datetime,
                 cutoff: timedelta = DEFAULT_CASH_OUT_CUTOFF) -> bool:
    """True while the dare is open and the cutoff before the deadline hasn't been reached."""
    if not bet.is_active:
        return False
    if dare_state(dare, now) != DareState.OPEN:
        return False
    return now < cash_out_closes_at(dare, cutoff)


def split_summary(dare: Dare, now: datetime) -> dict:
    """Every amount the pool is split into, for display."""
    state = dare_state(dare, now)
    winner = winning_side(state)
    return {
        "state": state.value,
        "winning_side": winner.value if winner else None,
        "creator_fee": creator_fee(dare),
        "completer_reward": completer_reward(dare) if state == DareState.COMPLETED else 0,
        "winners_share": winners_share(dare),
        "winning_side_pool": dare.side_pool(winner) if winner else 0,
    }
