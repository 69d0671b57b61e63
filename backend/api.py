"""
FastAPI web backend for Dare Betting.
Bets are SOL transfers to the treasury; claims are signed by the claiming wallet.
"""
import os
import logging
from typing import Literal, Optional
from datetime import datetime, timedelta, timezone
from collections import defaultdict

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from config import (
    CLUSTER,
    CORS_ORIGINS,
    DATABASE_PATH,
    LOG_LEVEL,
    RPC_URL,
    TREASURY_SECRET,
    TREASURY_WALLET,
)
from database import Database, Dare, Bet, BetType, User
from dares import SettlementEngine, SettlementError, SolanaTreasury, ClaimResult
from auth import (
    ACTION_APPROVE_PROOF,
    ACTION_CASH_OUT,
    ACTION_CLAIM_COMPLETER_REWARD,
    ACTION_CLAIM_CREATOR_FEE,
    ACTION_CLAIM_NEXT,
    ACTION_CLAIM_WINNINGS,
    ACTION_RECONCILE,
    ACTION_SUBMIT_PROOF,
    ACTION_UPDATE_BET,
    ACTION_VIEW_AUDIT,
    require_signed_action,
    validate_username,
)
from security import audit_logger, AuditEventType, AuditSeverity
from utils import (
    sol_to_lamports,
    lamports_to_sol,
    format_tx_link,
    is_valid_solana_address,
    is_valid_transaction_signature,
    sanitize_text,
)

# Logging
logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

# Storage, treasury and settlement
db = Database(DATABASE_PATH)
treasury = SolanaTreasury(RPC_URL, TREASURY_SECRET, TREASURY_WALLET)
engine = SettlementEngine(db, treasury)


# SECURITY: Emergency stop flag
def is_emergency_stop_enabled() -> bool:
    """Check if emergency stop is enabled."""
    return os.path.exists("EMERGENCY_STOP")


def check_emergency_stop():
    """Raise exception if emergency stop enabled."""
    if is_emergency_stop_enabled():
        raise HTTPException(
            status_code=503,
            detail="Platform is temporarily unavailable for maintenance. Please try again later."
        )


# SECURITY: Simple in-memory rate limiter
# Format: {ip_address: {endpoint: [timestamp1, timestamp2, ...]}}
rate_limit_store = defaultdict(lambda: defaultdict(list))


def check_rate_limit(request: Request, endpoint: str, max_requests: int, window_seconds: int):
    """Simple rate limiter using IP address.

    Raises:
        HTTPException: If rate limit exceeded
    """
    client_ip = request.client.host if request.client else "unknown"
    now = datetime.utcnow()
    window_start = now - timedelta(seconds=window_seconds)

    requests = [ts for ts in rate_limit_store[client_ip][endpoint] if ts > window_start]
    rate_limit_store[client_ip][endpoint] = requests

    if len(requests) >= max_requests:
        audit_logger.log(
            AuditEventType.RATE_LIMIT_EXCEEDED, AuditSeverity.WARNING,
            ip_address=client_ip, details=f"endpoint={endpoint}"
        )
        raise HTTPException(
            status_code=429,
            detail=f"Rate limit exceeded. Max {max_requests} requests per {window_seconds} seconds."
        )

    requests.append(now)


# FastAPI app
app = FastAPI(title="Dare Betting API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["*"],
)


# ===== MODELS =====

class CamelModel(BaseModel):
    """Request body accepting the web client's camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateDareRequest(CamelModel):
    creator: str
    title: str
    deadline: datetime
    description: str = ""
    min_bet: float = Field(default=0.0, ge=0, allow_inf_nan=False)  # SOL
    on_chain_id: Optional[str] = None
    logo_url: Optional[str] = None
    banner_url: Optional[str] = None
    tx_signature: Optional[str] = None


class PlaceBetRequest(CamelModel):
    bettor: str
    amount: float = Field(gt=0, allow_inf_nan=False)  # SOL
    bet_type: Literal["WILL_DO", "WONT_DO"]
    tx_signature: str
    dare_id: Optional[str] = None
    dare_on_chain_id: Optional[str] = None
    on_chain_id: Optional[str] = None


class UpdateBetRequest(CamelModel):
    """Flag update for a bet settled outside this API (admin signed)."""
    on_chain_id: str
    admin_wallet: str
    signature: str
    timestamp: int
    is_claimed: Optional[bool] = None
    is_early_cash_out: Optional[bool] = None


class SubmitProofRequest(CamelModel):
    """Signed by the submitter: "SubmitProof:<dareId>:<timestamp>"."""
    dare_id: str
    submitter: str
    proof_hash: str  # IPFS hash
    description: str = ""
    signature: Optional[str] = None
    timestamp: Optional[int] = None


class ApproveProofRequest(CamelModel):
    dare_id: str
    admin_wallet: str
    signature: str
    timestamp: int


class ClaimRequest(CamelModel):
    """Signed payout request: message is "<Action>:<dareId>:<timestamp>"."""
    dare_id: str
    user_wallet: str
    signature: str
    timestamp: int  # milliseconds
    bet_id: Optional[str] = None  # Cash-out only: pick one of several bets


class UpdateProfileRequest(CamelModel):
    wallet_address: str
    username: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None


# ===== UTILITY FUNCTIONS =====

def to_utc_naive(dt: datetime) -> datetime:
    """Timestamps are stored as naive UTC."""
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def require_wallet(address: str):
    ok, error = is_valid_solana_address(address)
    if not ok:
        raise HTTPException(status_code=400, detail=error)


def settlement_http_error(e: SettlementError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message)


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def serialize_dare(dare: Dare) -> dict:
    proof = dare.completion_proof
    return {
        "id": dare.id,
        "onChainId": dare.on_chain_id,
        "creator": dare.creator,
        "title": dare.title,
        "description": dare.description,
        "deadline": dare.deadline.isoformat(),
        "minBet": lamports_to_sol(dare.min_bet),
        "totalPool": lamports_to_sol(dare.total_pool),
        "willDoPool": lamports_to_sol(dare.will_do_pool),
        "wontDoPool": lamports_to_sol(dare.wont_do_pool),
        "isCompleted": dare.is_completed,
        "creatorFeeClaimed": dare.creator_fee_claimed,
        "completerFeeClaimed": dare.completer_fee_claimed,
        "completionProof": {
            "submitter": proof.submitter,
            "proofHash": proof.proof_hash,
            "description": proof.description,
            "timestamp": proof.timestamp.isoformat(),
            "isApproved": proof.is_approved,
            "approvedBy": proof.approved_by,
        } if proof else None,
        "logoUrl": dare.logo_url,
        "bannerUrl": dare.banner_url,
        "createdAt": dare.created_at.isoformat(),
    }


def serialize_bet(bet: Bet) -> dict:
    return {
        "id": bet.id,
        "onChainId": bet.on_chain_id,
        "dareId": bet.dare_id,
        "bettor": bet.bettor,
        "amount": lamports_to_sol(bet.amount),
        "betType": bet.bet_type.value,
        "txSignature": bet.tx_signature,
        "isClaimed": bet.is_claimed,
        "isEarlyCashOut": bet.is_early_cash_out,
        "payoutSignature": bet.payout_signature,
        "payoutAmount": lamports_to_sol(bet.payout_amount) if bet.payout_amount is not None else None,
        "createdAt": bet.created_at.isoformat(),
    }


def serialize_user(user: User, counts: dict) -> dict:
    return {
        "walletAddress": user.wallet_address,
        "username": user.username,
        "bio": user.bio,
        "avatarUrl": user.avatar_url,
        "createdAt": user.created_at.isoformat(),
        "betsPlaced": counts["bets_placed"],
        "proofsSubmitted": counts["proofs_submitted"],
        "daresCreated": counts["dares_created"],
    }


def serialize_settlement(view: dict) -> dict:
    """Settlement view with lamport amounts converted to SOL."""
    out = {
        "state": view["state"],
        "winningSide": view["winning_side"],
        "totalPool": lamports_to_sol(view["total_pool"]),
        "willDoPool": lamports_to_sol(view["will_do_pool"]),
        "wontDoPool": lamports_to_sol(view["wont_do_pool"]),
        "creatorFee": lamports_to_sol(view["creator_fee"]),
        "completerReward": lamports_to_sol(view["completer_reward"]),
        "winnersShare": lamports_to_sol(view["winners_share"]),
        "creatorFeeClaimed": view["creator_fee_claimed"],
        "completerFeeClaimed": view["completer_fee_claimed"],
        "cashOutClosesAt": view["cash_out_closes_at"].isoformat(),
    }
    if "claimable" in view:
        out["claimable"] = [
            {"kind": c["kind"], "amount": lamports_to_sol(c["amount"]), "betId": c["bet_id"]}
            for c in view["claimable"]
        ]
        out["canCashOut"] = view["can_cash_out"]
    return out


def serialize_claim(result: ClaimResult) -> dict:
    return {
        "success": True,
        "kind": result.kind.value,
        "signature": result.signature,
        "explorerUrl": format_tx_link(result.signature, CLUSTER),
        "amount": lamports_to_sol(result.amount),
        "betId": result.bet_id,
    }


# ===== API ENDPOINTS =====

@app.get("/health")
async def health_check():
    """Health check."""
    return {"status": "ok", "timestamp": datetime.utcnow().isoformat()}


# === DARES ===

@app.post("/api/dares")
async def create_dare(request: CreateDareRequest, http_request: Request):
    """Create a dare. Re-posting a known onChainId returns the existing dare."""
    check_emergency_stop()
    check_rate_limit(http_request, "create_dare", max_requests=20, window_seconds=60)
    require_wallet(request.creator)

    try:
        dare = engine.create_dare(
            creator=request.creator,
            title=sanitize_text(request.title, max_length=120),
            description=sanitize_text(request.description, max_length=2000),
            deadline=to_utc_naive(request.deadline),
            min_bet=sol_to_lamports(request.min_bet),
            on_chain_id=request.on_chain_id,
            logo_url=request.logo_url,
            banner_url=request.banner_url,
            tx_signature=request.tx_signature,
        )
        logger.info(f"[DARE] {dare.id} created by {request.creator}")
        return {"success": True, "dare": serialize_dare(dare)}

    except SettlementError as e:
        raise settlement_http_error(e)
    except Exception as e:
        logger.error(f"Create dare failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@app.get("/api/dares")
async def list_dares(onChainId: Optional[str] = None, creator: Optional[str] = None, limit: int = 50):
    """List dares, newest first."""
    dares = engine.db.get_dares(creator=creator, on_chain_id=onChainId, limit=min(limit, 200))
    return {"success": True, "data": [serialize_dare(d) for d in dares]}


@app.get("/api/dares/{dare_id}")
async def get_dare(dare_id: str, wallet: Optional[str] = None):
    """Dare with its settlement state; pass wallet to see what it can claim."""
    try:
        dare = engine.get_dare(dare_id)
        view = engine.settlement_view(dare.id, wallet)
        return {
            "success": True,
            "dare": serialize_dare(dare),
            "settlement": serialize_settlement(view),
        }

    except SettlementError as e:
        raise settlement_http_error(e)
    except Exception as e:
        logger.error(f"Get dare failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


# === BETS ===

@app.post("/api/bets")
async def place_bet(request: PlaceBetRequest, http_request: Request):
    """Record a bet after verifying its treasury transfer on-chain.

    Rate limit: 30 requests per 60 seconds per IP
    """
    check_emergency_stop()
    check_rate_limit(http_request, "place_bet", max_requests=30, window_seconds=60)
    require_wallet(request.bettor)

    dare_ref = request.dare_id or request.dare_on_chain_id
    if not dare_ref:
        raise HTTPException(status_code=400, detail="dareId or dareOnChainId is required")

    ok, error = is_valid_transaction_signature(request.tx_signature)
    if not ok:
        raise HTTPException(status_code=400, detail=error)

    try:
        bet = await engine.place_bet(
            dare_id=dare_ref,
            bettor=request.bettor,
            amount=sol_to_lamports(request.amount),
            bet_type=BetType(request.bet_type),
            tx_signature=request.tx_signature,
            on_chain_id=request.on_chain_id,
        )
        return {"success": True, "bet": serialize_bet(bet)}

    except SettlementError as e:
        raise settlement_http_error(e)
    except Exception as e:
        logger.error(f"Place bet failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@app.get("/api/bets")
async def list_bets(onChainId: Optional[str] = None, bettor: Optional[str] = None,
                    dareOnChainId: Optional[str] = None, dareId: Optional[str] = None, limit: int = 200):
    """List bets by on-chain ID, bettor or dare."""
    if onChainId:
        bet = engine.db.get_bet_by_on_chain_id(onChainId)
        return {"success": True, "data": [serialize_bet(bet)] if bet else []}

    dare_ref = dareId or dareOnChainId
    dare_id = None
    if dare_ref:
        dare = engine.db.find_dare(dare_ref)
        if not dare:
            return {"success": True, "data": []}
        dare_id = dare.id

    bets = engine.db.get_bets(dare_id=dare_id, bettor=bettor, limit=min(limit, 500))
    return {"success": True, "data": [serialize_bet(b) for b in bets]}


@app.patch("/api/bets")
async def update_bet(request: UpdateBetRequest, http_request: Request):
    """Apply a one-way isClaimed / isEarlyCashOut update (admin only)."""
    try:
        if request.admin_wallet not in engine.admin_wallets:
            raise HTTPException(status_code=403, detail="Admin access required")
        require_signed_action(
            ACTION_UPDATE_BET, request.on_chain_id, request.admin_wallet,
            request.signature, request.timestamp, client_ip(http_request)
        )

        bet = engine.update_bet_flags(
            request.on_chain_id,
            is_claimed=request.is_claimed,
            is_early_cash_out=request.is_early_cash_out,
        )
        audit_logger.log(
            AuditEventType.ADMIN_ACTION, wallet=request.admin_wallet, dare_id=bet.dare_id,
            details=f"bet={bet.id} claimed={bet.is_claimed} cashed_out={bet.is_early_cash_out}"
        )
        return {"success": True, "bet": serialize_bet(bet)}

    except HTTPException:
        raise
    except SettlementError as e:
        raise settlement_http_error(e)
    except Exception as e:
        logger.error(f"Update bet failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


# === PROOFS ===

@app.post("/api/proofs/submit")
async def submit_proof(request: SubmitProofRequest, http_request: Request):
    """Attach completion proof (an IPFS hash) to a dare."""
    check_emergency_stop()
    check_rate_limit(http_request, "submit_proof", max_requests=10, window_seconds=60)
    require_wallet(request.submitter)

    try:
        require_signed_action(
            ACTION_SUBMIT_PROOF, request.dare_id, request.submitter,
            request.signature, request.timestamp, client_ip(http_request)
        )
        dare = engine.submit_proof(
            request.dare_id,
            request.submitter,
            request.proof_hash,
            sanitize_text(request.description, max_length=2000),
        )
        return {"success": True, "dare": serialize_dare(dare)}

    except SettlementError as e:
        raise settlement_http_error(e)
    except Exception as e:
        logger.error(f"Submit proof failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@app.post("/api/proofs/approve")
async def approve_proof(request: ApproveProofRequest, http_request: Request):
    """Admin approval of a pending proof."""
    try:
        require_signed_action(
            ACTION_APPROVE_PROOF, request.dare_id, request.admin_wallet,
            request.signature, request.timestamp, client_ip(http_request)
        )
        dare = engine.approve_proof(request.dare_id, request.admin_wallet)
        return {"success": True, "dare": serialize_dare(dare)}

    except SettlementError as e:
        raise settlement_http_error(e)
    except Exception as e:
        logger.error(f"Approve proof failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


# === PAYOUTS ===

async def run_signed_claim(action: str, request: ClaimRequest, http_request: Request, claim) -> dict:
    """Shared flow for every payout endpoint: auth, claim, serialize."""
    check_emergency_stop()
    check_rate_limit(http_request, "claim", max_requests=10, window_seconds=60)

    try:
        require_signed_action(
            action, request.dare_id, request.user_wallet,
            request.signature, request.timestamp, client_ip(http_request)
        )
        result = await claim()
        return serialize_claim(result)

    except SettlementError as e:
        raise settlement_http_error(e)
    except Exception as e:
        logger.error(f"{action} failed for {request.user_wallet}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@app.post("/api/bets/cashout")
async def cash_out(request: ClaimRequest, http_request: Request):
    """Cash out an active bet early for 90% of its amount."""
    return await run_signed_claim(
        ACTION_CASH_OUT, request, http_request,
        lambda: engine.cash_out(request.dare_id, request.user_wallet, request.bet_id),
    )


@app.post("/api/payouts/claim")
async def claim_winnings(request: ClaimRequest, http_request: Request):
    """Claim winnings for one winning bet."""
    return await run_signed_claim(
        ACTION_CLAIM_WINNINGS, request, http_request,
        lambda: engine.claim_winnings(request.dare_id, request.user_wallet),
    )


@app.post("/api/payouts/creator")
async def claim_creator_fee(request: ClaimRequest, http_request: Request):
    """Claim the 2% creator fee."""
    return await run_signed_claim(
        ACTION_CLAIM_CREATOR_FEE, request, http_request,
        lambda: engine.claim_creator_fee(request.dare_id, request.user_wallet),
    )


@app.post("/api/payouts/completer")
async def claim_completer_reward(request: ClaimRequest, http_request: Request):
    """Claim the 50% completer reward."""
    return await run_signed_claim(
        ACTION_CLAIM_COMPLETER_REWARD, request, http_request,
        lambda: engine.claim_completer_reward(request.dare_id, request.user_wallet),
    )


@app.post("/api/payouts/next")
async def claim_next(request: ClaimRequest, http_request: Request):
    """Claim the wallet's next entitlement: creator fee, then completer reward, then winnings."""
    return await run_signed_claim(
        ACTION_CLAIM_NEXT, request, http_request,
        lambda: engine.claim_next(request.dare_id, request.user_wallet),
    )


# === USERS ===

@app.post("/api/users")
async def upsert_user(request: UpdateProfileRequest):
    """Create or update a wallet's profile."""
    require_wallet(request.wallet_address)

    user = engine.db.ensure_user(request.wallet_address)

    if request.username is not None and request.username.lower() != (user.username or ""):
        ok, error = validate_username(request.username)
        if not ok:
            raise HTTPException(status_code=400, detail=error)
        if engine.db.username_exists(request.username):
            raise HTTPException(status_code=400, detail="Username already taken")
        user.username = request.username.lower()

    if request.bio is not None:
        user.bio = sanitize_text(request.bio, max_length=280)
    if request.avatar_url is not None:
        user.avatar_url = request.avatar_url

    engine.db.save_user(user)
    return {"success": True, "user": serialize_user(user, engine.db.get_user_counts(user.wallet_address))}


@app.get("/api/users/{wallet_address}")
async def get_user(wallet_address: str):
    """Profile plus derived activity counts."""
    user = engine.db.get_user(wallet_address) or engine.db.get_user_by_username(wallet_address)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {"success": True, "user": serialize_user(user, engine.db.get_user_counts(user.wallet_address))}


# === ADMIN ===

@app.get("/api/admin/reconcile")
async def reconcile(adminWallet: str, signature: str, timestamp: int, http_request: Request):
    """Treasury balance against the bet/payout ledger."""
    if adminWallet not in engine.admin_wallets:
        raise HTTPException(status_code=403, detail="Admin access required")

    try:
        require_signed_action(ACTION_RECONCILE, "all", adminWallet, signature, timestamp,
                              client_ip(http_request))
        report = await engine.reconcile()

        return {
            "success": True,
            "treasury": {
                "address": treasury.address,
                "currentBalance": lamports_to_sol(report["treasury_balance"])
                if report["treasury_balance"] is not None else None,
                "expectedBalance": lamports_to_sol(report["expected_balance"]),
            },
            "stats": {
                "totalBets": report["bet_count"],
                "totalVolume": lamports_to_sol(report["total_deposited"]),
                "totalPaid": lamports_to_sol(report["total_paid"]),
            },
            "dares": [
                {
                    "id": row["id"],
                    "title": row["title"],
                    "totalPool": lamports_to_sol(row["total_pool"]),
                    "activeBetTotal": lamports_to_sol(row["active_total"]),
                    "betCount": row["bet_count"],
                    "consistent": row["consistent"],
                }
                for row in report["dares"]
            ],
        }

    except SettlementError as e:
        raise settlement_http_error(e)
    except Exception as e:
        logger.error(f"Reconciliation failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@app.get("/api/admin/audit")
async def audit_events(adminWallet: str, signature: str, timestamp: int, http_request: Request,
                       hours: int = 24, limit: int = 100, dareId: Optional[str] = None):
    """Recent audit events and a severity summary."""
    if adminWallet not in engine.admin_wallets:
        raise HTTPException(status_code=403, detail="Admin access required")

    try:
        require_signed_action(ACTION_VIEW_AUDIT, "all", adminWallet, signature, timestamp,
                              client_ip(http_request))
    except SettlementError as e:
        raise settlement_http_error(e)

    return {
        "success": True,
        "summary": audit_logger.get_security_summary(hours=hours),
        "events": audit_logger.get_recent_events(limit=min(limit, 500), dare_id=dareId),
    }


# ===== MAIN =====

if __name__ == "__main__":
    import uvicorn

    logger.info("="*50)
    logger.info("Dare Betting API Starting...")
    logger.info("="*50)

    uvicorn.run(app, host="0.0.0.0", port=8000)
