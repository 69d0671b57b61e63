"""Database module for Dare Betting."""
from .models import User, Dare, Bet, Payout, CompletionProof, BetType, PayoutKind
from .repo import Database

__all__ = ["User", "Dare", "Bet", "Payout", "CompletionProof", "BetType", "PayoutKind", "Database"]
