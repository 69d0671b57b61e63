"""
Settlement engine: bets in, payouts out.

Every entitlement is reserved in the database with a conditional update
before the treasury sends anything, so concurrent claims for the same
entitlement pay at most once. A failed treasury transfer releases the
reservation.
"""
import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from config import ADMIN_WALLETS, AUTO_APPROVE_PROOFS, CASH_OUT_CUTOFF_MINUTES
from database import Database, Dare, Bet, BetType, CompletionProof, Payout, PayoutKind
from security import audit_logger, AuditEventType, AuditSeverity
from utils import format_sol, is_valid_amount, truncate_address

from . import settlement
from .errors import (
    ConflictError,
    ForbiddenError,
    IneligibleError,
    NotFoundError,
    ValidationError,
    VerificationError,
)
from .settlement import DareState

logger = logging.getLogger(__name__)


@dataclass
class Entitlement:
    """Something a wallet can be paid for a dare right now."""
    kind: PayoutKind
    dare: Dare
    wallet: str
    amount: int
    bet: Optional[Bet] = None


@dataclass
class ClaimResult:
    """Outcome of a paid claim or cash-out."""
    kind: PayoutKind
    dare_id: str
    wallet: str
    amount: int
    signature: str
    bet_id: Optional[str] = None


# === Claim strategies ===

class ClaimStrategy:
    """One kind of entitlement.

    check() raises the specific reason a wallet cannot claim; find() is the
    quiet version used when walking the priority list. bets are the dare's
    bets; only those placed by wallet are considered.
    """
    kind: PayoutKind

    def check(self, dare: Dare, bets: List[Bet], wallet: str, now: datetime) -> Entitlement:
        raise NotImplementedError

    def find(self, dare: Dare, bets: List[Bet], wallet: str, now: datetime) -> Optional[Entitlement]:
        try:
            return self.check(dare, bets, wallet, now)
        except (ConflictError, ForbiddenError, IneligibleError):
            return None

    def reserve(self, db: Database, entitlement: Entitlement) -> bool:
        raise NotImplementedError

    def release(self, db: Database, entitlement: Entitlement) -> bool:
        raise NotImplementedError


class CreatorFeeClaim(ClaimStrategy):
    kind = PayoutKind.CREATOR_FEE

    def check(self, dare, bets, wallet, now):
        if wallet != dare.creator:
            raise ForbiddenError("Not the creator")
        if settlement.dare_state(dare, now) == DareState.OPEN:
            raise IneligibleError("Dare not finished yet")
        if dare.creator_fee_claimed:
            raise ConflictError("Fee already claimed")

        amount = settlement.creator_fee(dare)
        if amount <= 0:
            raise IneligibleError("Pool is empty")
        return Entitlement(self.kind, dare, wallet, amount)

    def reserve(self, db, entitlement):
        return db.atomic_claim_creator_fee(entitlement.dare.id)

    def release(self, db, entitlement):
        return db.release_creator_fee(entitlement.dare.id)


class CompleterRewardClaim(ClaimStrategy):
    kind = PayoutKind.COMPLETER_REWARD

    def check(self, dare, bets, wallet, now):
        if settlement.dare_state(dare, now) != DareState.COMPLETED:
            raise IneligibleError("Dare not completed")
        proof = dare.completion_proof
        if proof is None or proof.submitter != wallet:
            raise ForbiddenError("Not the winning completer")
        if dare.completer_fee_claimed:
            raise ConflictError("Reward already claimed")

        amount = settlement.completer_reward(dare)
        if amount <= 0:
            raise IneligibleError("Pool is empty")
        return Entitlement(self.kind, dare, wallet, amount)

    def reserve(self, db, entitlement):
        return db.atomic_claim_completer_reward(entitlement.dare.id)

    def release(self, db, entitlement):
        return db.release_completer_reward(entitlement.dare.id)


class WinningsClaim(ClaimStrategy):
    kind = PayoutKind.WINNINGS

    def find_all(self, dare: Dare, bets: List[Bet], wallet: str, now: datetime) -> List[Entitlement]:
        """Every unclaimed winning bet the wallet holds, oldest first."""
        winner = settlement.winning_side(settlement.dare_state(dare, now))
        if winner is None:
            return []

        entitlements = []
        for bet in bets:
            if bet.bettor != wallet:
                continue
            amount = settlement.bet_winnings(dare, bet, winner)
            if amount > 0:
                entitlements.append(Entitlement(self.kind, dare, wallet, amount, bet))
        return entitlements

    def check(self, dare, bets, wallet, now):
        winner = settlement.winning_side(settlement.dare_state(dare, now))
        if winner is None:
            raise IneligibleError("Dare not completed or expired")
        if dare.side_pool(winner) <= 0:
            raise IneligibleError("Winning pool is empty")

        winning_bets = [b for b in bets if b.bettor == wallet and b.bet_type == winner
                        and not b.is_early_cash_out]
        if not winning_bets:
            raise IneligibleError("No winning bet found for this user")

        entitlements = self.find_all(dare, bets, wallet, now)
        if not entitlements:
            if all(b.is_claimed for b in winning_bets):
                raise ConflictError("Winnings already claimed")
            raise IneligibleError("Payout amount is zero")
        return entitlements[0]

    def reserve(self, db, entitlement):
        return db.atomic_claim_bet(entitlement.bet.id)

    def release(self, db, entitlement):
        return db.release_bet_claim(entitlement.bet.id)


# Claim priority for a wallet that holds several roles on one dare
CLAIM_STRATEGIES = (CreatorFeeClaim(), CompleterRewardClaim(), WinningsClaim())


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class SettlementEngine:
    """Bet placement, cash-out, proof handling and claims for dares.

    Args:
        db: Database repository
        treasury: Object with async verify_transfer(tx_signature, sender, min_lamports),
            async send_payout(recipient, lamports) -> signature and async get_balance()
        clock: Returns the current naive UTC time
    """

    def __init__(
        self,
        db: Database,
        treasury,
        clock: Callable[[], datetime] = datetime.utcnow,
        cash_out_cutoff: timedelta = timedelta(minutes=CASH_OUT_CUTOFF_MINUTES),
        auto_approve_proofs: bool = AUTO_APPROVE_PROOFS,
        admin_wallets: Optional[set] = None,
    ):
        self.db = db
        self.treasury = treasury
        self.clock = clock
        self.cash_out_cutoff = cash_out_cutoff
        self.auto_approve_proofs = auto_approve_proofs
        self.admin_wallets = ADMIN_WALLETS if admin_wallets is None else admin_wallets

    # === Dares ===

    def get_dare(self, dare_id: str) -> Dare:
        """Find a dare by ID or on-chain ID."""
        dare = self.db.find_dare(dare_id)
        if not dare:
            raise NotFoundError("Dare not found")
        return dare

    def create_dare(
        self,
        creator: str,
        title: str,
        deadline: datetime,
        min_bet: int = 0,
        description: str = "",
        on_chain_id: Optional[str] = None,
        logo_url: Optional[str] = None,
        banner_url: Optional[str] = None,
        tx_signature: Optional[str] = None,
    ) -> Dare:
        """Create a dare. Re-posting a known on-chain ID returns the stored dare."""
        if on_chain_id:
            existing = self.db.get_dare_by_on_chain_id(on_chain_id)
            if existing:
                return existing

        if not title:
            raise ValidationError("Title is required")
        if min_bet < 0:
            raise ValidationError("Minimum bet cannot be negative")
        if deadline <= self.clock():
            raise ValidationError("Deadline must be in the future")

        dare = Dare(
            id=_new_id("dare"),
            on_chain_id=on_chain_id,
            creator=creator,
            title=title,
            description=description,
            deadline=deadline,
            min_bet=min_bet,
            logo_url=logo_url,
            banner_url=banner_url,
            tx_signature=tx_signature,
            created_at=self.clock(),
        )
        self.db.ensure_user(creator)
        self.db.save_dare(dare)

        audit_logger.log(
            AuditEventType.DARE_CREATED, wallet=creator, dare_id=dare.id,
            details=f"deadline={dare.deadline.isoformat()} min_bet={min_bet}"
        )
        return dare

    # === Bets ===

    async def place_bet(
        self,
        dare_id: str,
        bettor: str,
        amount: int,
        bet_type: BetType,
        tx_signature: str,
        on_chain_id: Optional[str] = None,
    ) -> Bet:
        """Record a bet backed by a verified transfer to the treasury.

        Nothing is written unless the signature is unused and the transfer
        checks out; the bet row and the pool increment commit together.
        """
        if on_chain_id:
            existing = self.db.get_bet_by_on_chain_id(on_chain_id)
            if existing:
                return existing

        ok, error = is_valid_amount(amount)
        if not ok:
            raise ValidationError(error)
        if not tx_signature:
            raise ValidationError("Transaction signature is required")

        dare = self.get_dare(dare_id)
        if settlement.dare_state(dare, self.clock()) != DareState.OPEN:
            raise IneligibleError("Dare is no longer accepting bets")
        if amount < dare.min_bet:
            raise ValidationError("Bet amount is below minimum")

        if self.db.signature_already_used(tx_signature):
            audit_logger.log(
                AuditEventType.SIGNATURE_REUSE, AuditSeverity.WARNING,
                wallet=bettor, dare_id=dare.id, details=f"tx={tx_signature}"
            )
            raise ConflictError("Transaction signature already used")

        try:
            await self.treasury.verify_transfer(tx_signature, bettor, amount)
        except VerificationError as e:
            audit_logger.log(
                AuditEventType.INVALID_TRANSACTION, AuditSeverity.WARNING,
                wallet=bettor, dare_id=dare.id, details=f"tx={tx_signature} reason={e.reason}"
            )
            raise
        except Exception as e:
            logger.error(f"[BET] Transfer verification errored for {tx_signature}: {e}", exc_info=True)
            raise VerificationError("Transfer verification failed", str(e))

        self.db.ensure_user(bettor)
        bet = Bet(
            id=_new_id("bet"),
            on_chain_id=on_chain_id,
            dare_id=dare.id,
            bettor=bettor,
            amount=amount,
            bet_type=bet_type,
            tx_signature=tx_signature,
            created_at=self.clock(),
        )

        try:
            stored = self.db.atomic_place_bet(bet, self.clock())
        except sqlite3.IntegrityError:
            audit_logger.log(
                AuditEventType.SIGNATURE_REUSE, AuditSeverity.WARNING,
                wallet=bettor, dare_id=dare.id, details=f"tx={tx_signature} (concurrent)"
            )
            raise ConflictError("Transaction signature already used")

        if not stored:
            raise IneligibleError("Dare is no longer accepting bets")

        logger.info(f"[BET] {truncate_address(bettor)} bet {format_sol(amount)} SOL {bet_type.value} on {dare.id}")
        audit_logger.log(
            AuditEventType.BET_PLACED, wallet=bettor, dare_id=dare.id,
            details=f"bet={bet.id} amount={amount} side={bet_type.value}"
        )
        return self.db.get_bet(bet.id)

    def update_bet_flags(
        self,
        on_chain_id: str,
        is_claimed: Optional[bool] = None,
        is_early_cash_out: Optional[bool] = None,
    ) -> Bet:
        """Apply a one-way flag update reported for a bet settled elsewhere.

        Early cash-out goes through the same pool decrement as cash_out().
        """
        bet = self.db.get_bet_by_on_chain_id(on_chain_id)
        if not bet:
            raise NotFoundError("Bet not found")

        if is_claimed is False or is_early_cash_out is False:
            raise ValidationError("Claim flags cannot be reset")
        if is_claimed and is_early_cash_out:
            raise ValidationError("A bet cannot be both claimed and cashed out")

        now = self.clock()
        if is_claimed:
            dare = self.get_dare(bet.dare_id)
            winner = settlement.winning_side(settlement.dare_state(dare, now))
            if winner is None or bet.bet_type != winner:
                raise IneligibleError("Only winning bets of a finished dare can be claimed")
            if not self.db.atomic_claim_bet(bet.id):
                raise ConflictError("Bet already settled")
        elif is_early_cash_out:
            if not self.db.atomic_cash_out(bet.id, now + self.cash_out_cutoff):
                raise ConflictError("Bet already settled or cash-out window closed")
        else:
            raise ValidationError("Nothing to update")

        return self.db.get_bet(bet.id)

    async def cash_out(self, dare_id: str, wallet: str, bet_id: Optional[str] = None) -> ClaimResult:
        """Withdraw an active bet for 90% of its amount before the cutoff."""
        dare = self.get_dare(dare_id)
        now = self.clock()

        state = settlement.dare_state(dare, now)
        if state != DareState.OPEN:
            raise IneligibleError("Dare is already completed or expired")
        if now >= settlement.cash_out_closes_at(dare, self.cash_out_cutoff):
            raise IneligibleError("Too close to deadline to cash out")

        active = [b for b in self.db.get_bets(dare_id=dare.id, bettor=wallet)
                  if b.is_active and (bet_id is None or b.id == bet_id)]
        if not active:
            raise IneligibleError("No active bet found")
        bet = active[0]

        if not self.db.atomic_cash_out(bet.id, now + self.cash_out_cutoff):
            audit_logger.log(
                AuditEventType.DOUBLE_CLAIM, AuditSeverity.WARNING,
                wallet=wallet, dare_id=dare.id, details=f"cash-out bet={bet.id}"
            )
            raise ConflictError("Bet already settled or cash-out window closed")

        refund = settlement.cash_out_refund(bet)
        try:
            signature = await self.treasury.send_payout(wallet, refund)
        except Exception as e:
            self.db.revert_cash_out(bet.id)
            audit_logger.log(
                AuditEventType.PAYOUT_FAILED, AuditSeverity.CRITICAL,
                wallet=wallet, dare_id=dare.id, details=f"cash-out bet={bet.id} error={e}"
            )
            raise

        self._record_payout(PayoutKind.CASH_OUT, dare, wallet, refund, signature, bet)
        logger.info(f"[CASHOUT] {truncate_address(wallet)} cashed out {bet.id}: refund {format_sol(refund)} of {format_sol(bet.amount)} SOL")
        audit_logger.log(
            AuditEventType.CASH_OUT, wallet=wallet, dare_id=dare.id,
            details=f"bet={bet.id} refund={refund} tx={signature}"
        )
        return ClaimResult(PayoutKind.CASH_OUT, dare.id, wallet, refund, signature, bet.id)

    # === Proofs ===

    def submit_proof(self, dare_id: str, submitter: str, proof_hash: str, description: str = "") -> Dare:
        """Attach completion proof; auto-approval completes the dare at once."""
        dare = self.get_dare(dare_id)
        now = self.clock()

        if settlement.dare_state(dare, now) != DareState.OPEN:
            raise IneligibleError("Dare is already completed or expired")
        if not proof_hash:
            raise ValidationError("Proof hash is required")

        approved = self.auto_approve_proofs
        proof = CompletionProof(
            submitter=submitter,
            proof_hash=proof_hash,
            description=description,
            timestamp=now,
            is_approved=approved,
            approved_by="auto" if approved else None,
            approved_at=now if approved else None,
        )

        self.db.ensure_user(submitter)
        if not self.db.atomic_submit_proof(dare.id, proof, now):
            raise IneligibleError("Dare is already completed or expired")

        audit_logger.log(
            AuditEventType.PROOF_SUBMITTED, wallet=submitter, dare_id=dare.id,
            details=f"hash={proof_hash} approved={approved}"
        )
        return self.db.get_dare(dare.id)

    def approve_proof(self, dare_id: str, approver: str) -> Dare:
        """Admin approval of a pending proof, which completes the dare."""
        if approver not in self.admin_wallets:
            raise ForbiddenError("Admin access required")

        dare = self.get_dare(dare_id)
        if dare.completion_proof is None:
            raise IneligibleError("No proof has been submitted")
        if dare.is_completed:
            raise ConflictError("Dare is already completed")

        if not self.db.atomic_approve_proof(dare.id, approver, self.clock()):
            raise IneligibleError("Proof can no longer be approved")

        audit_logger.log(
            AuditEventType.PROOF_APPROVED, wallet=approver, dare_id=dare.id,
            details=f"submitter={dare.completion_proof.submitter}"
        )
        return self.db.get_dare(dare.id)

    # === Claims ===

    def claimable(self, dare: Dare, wallet: str, now: Optional[datetime] = None) -> List[Entitlement]:
        """Everything the wallet could claim now, in claim priority order."""
        now = now or self.clock()
        bets = self.db.get_bets(dare_id=dare.id, bettor=wallet)

        entitlements = []
        for strategy in CLAIM_STRATEGIES:
            if isinstance(strategy, WinningsClaim):
                entitlements.extend(strategy.find_all(dare, bets, wallet, now))
            else:
                found = strategy.find(dare, bets, wallet, now)
                if found:
                    entitlements.append(found)
        return entitlements

    async def claim(self, strategy: ClaimStrategy, dare_id: str, wallet: str) -> ClaimResult:
        """Claim one entitlement of a single kind."""
        dare = self.get_dare(dare_id)
        bets = self.db.get_bets(dare_id=dare.id, bettor=wallet)
        entitlement = strategy.check(dare, bets, wallet, self.clock())
        return await self._pay(strategy, entitlement)

    async def claim_creator_fee(self, dare_id: str, wallet: str) -> ClaimResult:
        return await self.claim(CLAIM_STRATEGIES[0], dare_id, wallet)

    async def claim_completer_reward(self, dare_id: str, wallet: str) -> ClaimResult:
        return await self.claim(CLAIM_STRATEGIES[1], dare_id, wallet)

    async def claim_winnings(self, dare_id: str, wallet: str) -> ClaimResult:
        return await self.claim(CLAIM_STRATEGIES[2], dare_id, wallet)

    async def claim_next(self, dare_id: str, wallet: str) -> ClaimResult:
        """Claim the highest-priority unclaimed entitlement; call again for the next."""
        dare = self.get_dare(dare_id)
        bets = self.db.get_bets(dare_id=dare.id, bettor=wallet)
        now = self.clock()

        for strategy in CLAIM_STRATEGIES:
            entitlement = strategy.find(dare, bets, wallet, now)
            if entitlement is not None:
                return await self._pay(strategy, entitlement)

        raise IneligibleError("Nothing to claim for this wallet")

    async def _pay(self, strategy: ClaimStrategy, entitlement: Entitlement) -> ClaimResult:
        dare = entitlement.dare
        wallet = entitlement.wallet

        if not strategy.reserve(self.db, entitlement):
            audit_logger.log(
                AuditEventType.DOUBLE_CLAIM, AuditSeverity.WARNING,
                wallet=wallet, dare_id=dare.id, details=f"kind={strategy.kind.value}"
            )
            raise ConflictError("Already claimed")

        try:
            signature = await self.treasury.send_payout(wallet, entitlement.amount)
        except Exception as e:
            strategy.release(self.db, entitlement)
            audit_logger.log(
                AuditEventType.PAYOUT_FAILED, AuditSeverity.CRITICAL,
                wallet=wallet, dare_id=dare.id,
                details=f"kind={strategy.kind.value} amount={entitlement.amount} error={e}"
            )
            raise

        self._record_payout(strategy.kind, dare, wallet, entitlement.amount, signature, entitlement.bet)
        logger.info(f"[CLAIM] {strategy.kind.value} {format_sol(entitlement.amount)} SOL to {truncate_address(wallet)} for {dare.id}")
        audit_logger.log(
            AuditEventType.PAYOUT_PROCESSED, wallet=wallet, dare_id=dare.id,
            details=f"kind={strategy.kind.value} amount={entitlement.amount} tx={signature}"
        )
        bet_id = entitlement.bet.id if entitlement.bet else None
        return ClaimResult(strategy.kind, dare.id, wallet, entitlement.amount, signature, bet_id)

    def _record_payout(self, kind: PayoutKind, dare: Dare, wallet: str, amount: int,
                       signature: str, bet: Optional[Bet] = None):
        try:
            if bet is not None:
                self.db.set_bet_payout(bet.id, signature, amount)
            self.db.save_payout(Payout(
                payout_id=_new_id("payout"),
                dare_id=dare.id,
                bet_id=bet.id if bet else None,
                wallet=wallet,
                kind=kind,
                amount=amount,
                signature=signature,
                created_at=self.clock(),
            ))
        except Exception as e:
            # Money already left the treasury; the claim flag stays set.
            logger.critical(f"[CLAIM] Paid {amount} lamports to {wallet} (tx {signature}) but failed to record it: {e}",
                            exc_info=True)

    # === Queries ===

    def settlement_view(self, dare_id: str, wallet: Optional[str] = None) -> dict:
        """Pool, split and claim state of a dare; per-wallet claimables when wallet is given."""
        dare = self.get_dare(dare_id)
        now = self.clock()

        view = settlement.split_summary(dare, now)
        view.update({
            "dare_id": dare.id,
            "total_pool": dare.total_pool,
            "will_do_pool": dare.will_do_pool,
            "wont_do_pool": dare.wont_do_pool,
            "creator_fee_claimed": dare.creator_fee_claimed,
            "completer_fee_claimed": dare.completer_fee_claimed,
            "cash_out_closes_at": settlement.cash_out_closes_at(dare, self.cash_out_cutoff),
        })

        if wallet:
            bets = self.db.get_bets(dare_id=dare.id, bettor=wallet)
            view["claimable"] = [
                {"kind": e.kind.value, "amount": e.amount, "bet_id": e.bet.id if e.bet else None}
                for e in self.claimable(dare, wallet, now)
            ]
            view["can_cash_out"] = any(
                settlement.can_cash_out(dare, b, now, self.cash_out_cutoff) for b in bets
            )
        return view

    async def reconcile(self) -> dict:
        """Treasury balance against the ledger, plus per-dare pool consistency."""
        totals = self.db.get_ledger_totals()

        try:
            treasury_balance = await self.treasury.get_balance()
        except Exception as e:
            logger.error(f"[RECONCILE] Could not read treasury balance: {e}")
            treasury_balance = None

        dares = []
        for row in self.db.get_pool_audit():
            row["consistent"] = (
                row["total_pool"] == row["will_do_pool"] + row["wont_do_pool"]
                and row["total_pool"] == row["active_total"]
            )
            if not row["consistent"]:
                logger.warning(f"[RECONCILE] Pool mismatch on dare {row['id']}: {row}")
            dares.append(row)

        return {
            "treasury_balance": treasury_balance,
            "total_deposited": totals["deposited"],
            "total_paid": totals["paid"],
            "expected_balance": totals["deposited"] - totals["paid"],
            "bet_count": totals["bet_count"],
            "dares": dares,
        }
