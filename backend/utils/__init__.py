"""Utility modules for Dare Betting."""
from .formatting import (
    LAMPORTS_PER_SOL,
    sol_to_lamports,
    lamports_to_sol,
    format_sol,
    format_tx_link,
    truncate_address,
)
from .validation import (
    is_valid_solana_address,
    is_valid_amount,
    is_valid_transaction_signature,
    sanitize_text,
)

__all__ = [
    "LAMPORTS_PER_SOL",
    "sol_to_lamports",
    "lamports_to_sol",
    "format_sol",
    "format_tx_link",
    "truncate_address",
    "is_valid_solana_address",
    "is_valid_amount",
    "is_valid_transaction_signature",
    "sanitize_text",
]
