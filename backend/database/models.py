"""
Data models for Dare Betting.

All amounts are integer lamports.
"""
from dataclasses import dataclass, field
from typing import Optional
from datetime import datetime
from enum import Enum


class BetType(Enum):
    """Side of a bet."""
    WILL_DO = "WILL_DO"
    WONT_DO = "WONT_DO"


class PayoutKind(Enum):
    """What a treasury payout was for."""
    CREATOR_FEE = "creator_fee"
    COMPLETER_REWARD = "completer_reward"
    WINNINGS = "winnings"
    CASH_OUT = "cash_out"


@dataclass
class CompletionProof:
    """Proof that a dare was done."""
    submitter: str
    proof_hash: str  # IPFS hash of the video
    description: str = ""
    timestamp: datetime = field(default_factory=datetime.utcnow)
    is_approved: bool = False
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None


@dataclass
class Dare:
    """A challenge with a betting pool and a deadline."""
    id: str
    creator: str  # Wallet address
    title: str
    deadline: datetime
    description: str = ""
    on_chain_id: Optional[str] = None  # External correlation key
    min_bet: int = 0

    # Pools (total_pool == will_do_pool + wont_do_pool)
    total_pool: int = 0
    will_do_pool: int = 0
    wont_do_pool: int = 0

    is_completed: bool = False
    completion_proof: Optional[CompletionProof] = None

    # One-way claim flags
    creator_fee_claimed: bool = False
    completer_fee_claimed: bool = False

    logo_url: Optional[str] = None
    banner_url: Optional[str] = None
    tx_signature: Optional[str] = None  # Creation tx, if any
    created_at: datetime = field(default_factory=datetime.utcnow)

    def side_pool(self, bet_type: BetType) -> int:
        """Pool for one side."""
        return self.will_do_pool if bet_type == BetType.WILL_DO else self.wont_do_pool


@dataclass
class Bet:
    """A wager on whether a dare will be completed."""
    id: str
    dare_id: str
    bettor: str
    amount: int
    bet_type: BetType
    tx_signature: str  # Unique: one transfer backs one bet

    on_chain_id: Optional[str] = None

    # Terminal states, mutually exclusive
    is_claimed: bool = False
    is_early_cash_out: bool = False

    payout_signature: Optional[str] = None
    payout_amount: Optional[int] = None
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_active(self) -> bool:
        return not self.is_claimed and not self.is_early_cash_out


@dataclass
class User:
    """Wallet-keyed profile."""
    wallet_address: str
    username: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class Payout:
    """Ledger entry for a treasury transfer."""
    payout_id: str
    dare_id: str
    wallet: str
    kind: PayoutKind
    amount: int
    signature: str
    bet_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
