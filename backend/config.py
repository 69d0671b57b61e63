"""
Platform configuration for the Dare Betting backend.

Values come from the environment (or a local .env file).
"""
import os
from dotenv import load_dotenv

load_dotenv()

# =============================================================================
# SOLANA
# =============================================================================

RPC_URL = os.getenv("RPC_URL", "https://api.devnet.solana.com")

# Explorer links: "mainnet", "devnet" or "testnet"
CLUSTER = os.getenv("CLUSTER", "devnet")

# Treasury receives every bet deposit and pays out every claim
TREASURY_WALLET = os.getenv("TREASURY_WALLET")
TREASURY_SECRET = os.getenv("TREASURY_SECRET")  # base58 secret key

# =============================================================================
# STORAGE
# =============================================================================

DATABASE_PATH = os.getenv("DATABASE_PATH", "dares.db")

# =============================================================================
# API
# =============================================================================

CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Wallets allowed to approve proofs and read the reconciliation report
ADMIN_WALLETS = {w.strip() for w in os.getenv("ADMIN_WALLETS", "").split(",") if w.strip()}

# =============================================================================
# SETTLEMENT RULES
# =============================================================================

# Accept proof submissions immediately instead of waiting for admin approval.
# Off by default: a submitted proof stays pending until an admin approves it.
AUTO_APPROVE_PROOFS = os.getenv("AUTO_APPROVE_PROOFS", "false").lower() in ("1", "true", "yes")

# Signed claim requests older than this are rejected
CLAIM_SIGNATURE_TTL_SECONDS = int(os.getenv("CLAIM_SIGNATURE_TTL_SECONDS", "300"))

# Early cash-out closes this many minutes before the deadline
CASH_OUT_CUTOFF_MINUTES = int(os.getenv("CASH_OUT_CUTOFF_MINUTES", "10"))
