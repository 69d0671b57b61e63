"""
Database repository for Dare Betting.
SQLite storage; every claim and pool change is a single atomic statement set.
"""
import sqlite3
import logging
from typing import Optional, List
from datetime import datetime
from .models import User, Dare, Bet, Payout, CompletionProof, BetType, PayoutKind

logger = logging.getLogger(__name__)


def _ts(dt: Optional[datetime]) -> Optional[str]:
    """Fixed-width ISO timestamp so stored values compare correctly as text."""
    if dt is None:
        return None
    return dt.isoformat(timespec="microseconds")


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


_POOL_COLUMNS = {
    BetType.WILL_DO: "will_do_pool",
    BetType.WONT_DO: "wont_do_pool",
}


class Database:
    """Database repository."""

    def __init__(self, db_path: str = "dares.db"):
        self.db_path = db_path
        self._init_db()

    def _init_db(self):
        """Initialize database schema."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                wallet_address TEXT PRIMARY KEY,
                username TEXT UNIQUE,
                bio TEXT,
                avatar_url TEXT,
                created_at TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS dares (
                id TEXT PRIMARY KEY,
                on_chain_id TEXT UNIQUE,
                creator TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT,
                deadline TEXT NOT NULL,
                min_bet INTEGER NOT NULL DEFAULT 0,
                total_pool INTEGER NOT NULL DEFAULT 0,
                will_do_pool INTEGER NOT NULL DEFAULT 0,
                wont_do_pool INTEGER NOT NULL DEFAULT 0,
                is_completed INTEGER NOT NULL DEFAULT 0,
                creator_fee_claimed INTEGER NOT NULL DEFAULT 0,
                completer_fee_claimed INTEGER NOT NULL DEFAULT 0,
                proof_submitter TEXT,
                proof_hash TEXT,
                proof_description TEXT,
                proof_timestamp TEXT,
                proof_approved INTEGER NOT NULL DEFAULT 0,
                proof_approved_by TEXT,
                proof_approved_at TEXT,
                logo_url TEXT,
                banner_url TEXT,
                tx_signature TEXT,
                created_at TEXT
            )
        """)

        # tx_signature UNIQUE: one on-chain transfer backs at most one bet
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS bets (
                id TEXT PRIMARY KEY,
                on_chain_id TEXT UNIQUE,
                dare_id TEXT NOT NULL,
                bettor TEXT NOT NULL,
                amount INTEGER NOT NULL,
                bet_type TEXT NOT NULL,
                tx_signature TEXT NOT NULL UNIQUE,
                is_claimed INTEGER NOT NULL DEFAULT 0,
                is_early_cash_out INTEGER NOT NULL DEFAULT 0,
                payout_signature TEXT,
                payout_amount INTEGER,
                created_at TEXT,
                FOREIGN KEY (dare_id) REFERENCES dares(id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS payouts (
                payout_id TEXT PRIMARY KEY,
                dare_id TEXT NOT NULL,
                bet_id TEXT,
                wallet TEXT NOT NULL,
                kind TEXT NOT NULL,
                amount INTEGER NOT NULL,
                signature TEXT NOT NULL,
                created_at TEXT,
                FOREIGN KEY (dare_id) REFERENCES dares(id),
                FOREIGN KEY (bet_id) REFERENCES bets(id)
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_dares_creator ON dares(creator)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_bets_dare ON bets(dare_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_bets_bettor ON bets(bettor)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_payouts_dare ON payouts(dare_id)")

        conn.commit()
        conn.close()
        logger.info(f"Database initialized at {self.db_path}")

    # === User Operations ===

    def get_user(self, wallet_address: str) -> Optional[User]:
        """Get user by wallet."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        cursor = conn.cursor()

        cursor.execute("SELECT * FROM users WHERE wallet_address = ?", (wallet_address,))
        row = cursor.fetchone()
        conn.close()

        if not row:
            return None

        return self._row_to_user(row)

    def get_user_by_username(self, username: str) -> Optional[User]:
        """Get user by username."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        cursor = conn.cursor()

        cursor.execute("SELECT * FROM users WHERE username = ?", (username.lower(),))
        row = cursor.fetchone()
        conn.close()

        if not row:
            return None

        return self._row_to_user(row)

    def _row_to_user(self, row: sqlite3.Row) -> User:
        """Convert database row to User object."""
        return User(
            wallet_address=row["wallet_address"],
            username=row["username"],
            bio=row["bio"],
            avatar_url=row["avatar_url"],
            created_at=_dt(row["created_at"]) or datetime.utcnow(),
        )

    def save_user(self, user: User):
        """Save or update user."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("""
            INSERT OR REPLACE INTO users (
                wallet_address, username, bio, avatar_url, created_at
            ) VALUES (?, ?, ?, ?, ?)
        """, (
            user.wallet_address,
            user.username.lower() if user.username else None,
            user.bio, user.avatar_url, _ts(user.created_at)
        ))

        conn.commit()
        conn.close()

    def ensure_user(self, wallet_address: str) -> User:
        """Get the user for a wallet, creating a bare profile on first sight."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()
        cursor.execute("""
            INSERT OR IGNORE INTO users (wallet_address, created_at) VALUES (?, ?)
        """, (wallet_address, _ts(datetime.utcnow())))
        created = cursor.rowcount > 0
        conn.commit()
        conn.close()

        if created:
            logger.info(f"Created new user for wallet {wallet_address}")

        return self.get_user(wallet_address)

    def username_exists(self, username: str) -> bool:
        """Check if username is already taken."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("SELECT 1 FROM users WHERE username = ?", (username.lower(),))
        result = cursor.fetchone()
        conn.close()

        return result is not None

    def get_user_counts(self, wallet_address: str) -> dict:
        """Derived activity counts for a wallet."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("SELECT COUNT(*) FROM bets WHERE bettor = ?", (wallet_address,))
        bets_placed = cursor.fetchone()[0]
        cursor.execute("SELECT COUNT(*) FROM dares WHERE proof_submitter = ?", (wallet_address,))
        proofs_submitted = cursor.fetchone()[0]
        cursor.execute("SELECT COUNT(*) FROM dares WHERE creator = ?", (wallet_address,))
        dares_created = cursor.fetchone()[0]
        conn.close()

        return {
            "bets_placed": bets_placed,
            "proofs_submitted": proofs_submitted,
            "dares_created": dares_created,
        }

    # === Dare Operations ===

    def save_dare(self, dare: Dare):
        """Insert a new dare."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("""
            INSERT INTO dares (
                id, on_chain_id, creator, title, description, deadline, min_bet,
                total_pool, will_do_pool, wont_do_pool, is_completed,
                creator_fee_claimed, completer_fee_claimed,
                logo_url, banner_url, tx_signature, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            dare.id, dare.on_chain_id, dare.creator, dare.title, dare.description,
            _ts(dare.deadline), dare.min_bet,
            dare.total_pool, dare.will_do_pool, dare.wont_do_pool, int(dare.is_completed),
            int(dare.creator_fee_claimed), int(dare.completer_fee_claimed),
            dare.logo_url, dare.banner_url, dare.tx_signature, _ts(dare.created_at)
        ))

        conn.commit()
        conn.close()

    def get_dare(self, dare_id: str) -> Optional[Dare]:
        """Get dare by ID."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        cursor = conn.cursor()

        cursor.execute("SELECT * FROM dares WHERE id = ?", (dare_id,))
        row = cursor.fetchone()
        conn.close()

        if not row:
            return None

        return self._row_to_dare(row)

    def get_dare_by_on_chain_id(self, on_chain_id: str) -> Optional[Dare]:
        """Get dare by its on-chain correlation key."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        cursor = conn.cursor()

        cursor.execute("SELECT * FROM dares WHERE on_chain_id = ?", (on_chain_id,))
        row = cursor.fetchone()
        conn.close()

        if not row:
            return None

        return self._row_to_dare(row)

    def find_dare(self, dare_id: str) -> Optional[Dare]:
        """Look a dare up by ID first, then by on-chain ID."""
        return self.get_dare(dare_id) or self.get_dare_by_on_chain_id(dare_id)

    def get_dares(self, creator: Optional[str] = None, on_chain_id: Optional[str] = None,
                  limit: int = 50) -> List[Dare]:
        """Get dares with optional filters, newest first."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        cursor = conn.cursor()

        query = "SELECT * FROM dares WHERE 1=1"
        params = []

        if creator:
            query += " AND creator = ?"
            params.append(creator)
        if on_chain_id:
            query += " AND on_chain_id = ?"
            params.append(on_chain_id)

        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        cursor.execute(query, params)
        rows = cursor.fetchall()
        conn.close()

        return [self._row_to_dare(row) for row in rows]

    def _row_to_dare(self, row: sqlite3.Row) -> Dare:
        """Convert database row to Dare object."""
        proof = None
        if row["proof_submitter"]:
            proof = CompletionProof(
                submitter=row["proof_submitter"],
                proof_hash=row["proof_hash"],
                description=row["proof_description"] or "",
                timestamp=_dt(row["proof_timestamp"]) or datetime.utcnow(),
                is_approved=bool(row["proof_approved"]),
                approved_by=row["proof_approved_by"],
                approved_at=_dt(row["proof_approved_at"]),
            )

        return Dare(
            id=row["id"],
            on_chain_id=row["on_chain_id"],
            creator=row["creator"],
            title=row["title"],
            description=row["description"] or "",
            deadline=_dt(row["deadline"]),
            min_bet=row["min_bet"],
            total_pool=row["total_pool"],
            will_do_pool=row["will_do_pool"],
            wont_do_pool=row["wont_do_pool"],
            is_completed=bool(row["is_completed"]),
            completion_proof=proof,
            creator_fee_claimed=bool(row["creator_fee_claimed"]),
            completer_fee_claimed=bool(row["completer_fee_claimed"]),
            logo_url=row["logo_url"],
            banner_url=row["banner_url"],
            tx_signature=row["tx_signature"],
            created_at=_dt(row["created_at"]) or datetime.utcnow(),
        )

    # === Bet Operations ===

    def get_bet(self, bet_id: str) -> Optional[Bet]:
        """Get bet by ID."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        cursor = conn.cursor()

        cursor.execute("SELECT * FROM bets WHERE id = ?", (bet_id,))
        row = cursor.fetchone()
        conn.close()

        if not row:
            return None

        return self._row_to_bet(row)

    def get_bet_by_on_chain_id(self, on_chain_id: str) -> Optional[Bet]:
        """Get bet by its on-chain correlation key."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        cursor = conn.cursor()

        cursor.execute("SELECT * FROM bets WHERE on_chain_id = ?", (on_chain_id,))
        row = cursor.fetchone()
        conn.close()

        if not row:
            return None

        return self._row_to_bet(row)

    def get_bets(self, dare_id: Optional[str] = None, bettor: Optional[str] = None,
                 limit: Optional[int] = None) -> List[Bet]:
        """Get bets with optional filters, oldest first. No limit returns every match."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        cursor = conn.cursor()

        query = "SELECT * FROM bets WHERE 1=1"
        params = []

        if dare_id:
            query += " AND dare_id = ?"
            params.append(dare_id)
        if bettor:
            query += " AND bettor = ?"
            params.append(bettor)

        query += " ORDER BY created_at ASC, rowid ASC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        cursor.execute(query, params)
        rows = cursor.fetchall()
        conn.close()

        return [self._row_to_bet(row) for row in rows]

    def signature_already_used(self, tx_signature: str) -> bool:
        """Check if a transfer signature already backs a bet."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("SELECT 1 FROM bets WHERE tx_signature = ?", (tx_signature,))
        result = cursor.fetchone()
        conn.close()

        return result is not None

    def _row_to_bet(self, row: sqlite3.Row) -> Bet:
        """Convert database row to Bet object."""
        return Bet(
            id=row["id"],
            on_chain_id=row["on_chain_id"],
            dare_id=row["dare_id"],
            bettor=row["bettor"],
            amount=row["amount"],
            bet_type=BetType(row["bet_type"]),
            tx_signature=row["tx_signature"],
            is_claimed=bool(row["is_claimed"]),
            is_early_cash_out=bool(row["is_early_cash_out"]),
            payout_signature=row["payout_signature"],
            payout_amount=row["payout_amount"],
            created_at=_dt(row["created_at"]) or datetime.utcnow(),
        )

    def set_bet_payout(self, bet_id: str, signature: str, amount: int):
        """Record the treasury transfer that settled a bet."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("""
            UPDATE bets SET payout_signature = ?, payout_amount = ? WHERE id = ?
        """, (signature, amount, bet_id))

        conn.commit()
        conn.close()

    # === Atomic Operations (SECURITY: Prevent race conditions) ===

    def atomic_place_bet(self, bet: Bet, now: datetime) -> bool:
        """Insert a bet and grow the dare's pools in one transaction.

        The pool update only applies while the dare is still open, so a bet
        racing the deadline or a completion is refused.

        Returns:
            True if the bet was stored, False if the dare is no longer open

        Raises:
            sqlite3.IntegrityError: tx_signature or on_chain_id already used
        """
        side_column = _POOL_COLUMNS[bet.bet_type]
        conn = sqlite3.connect(self.db_path, isolation_level=None)
        cursor = conn.cursor()

        try:
            cursor.execute("BEGIN IMMEDIATE")

            cursor.execute(f"""
                UPDATE dares
                SET total_pool = total_pool + ?, {side_column} = {side_column} + ?
                WHERE id = ? AND is_completed = 0 AND deadline > ?
            """, (bet.amount, bet.amount, bet.dare_id, _ts(now)))

            if cursor.rowcount == 0:
                cursor.execute("ROLLBACK")
                return False

            cursor.execute("""
                INSERT INTO bets (
                    id, on_chain_id, dare_id, bettor, amount, bet_type, tx_signature,
                    is_claimed, is_early_cash_out, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, 0, 0, ?)
            """, (
                bet.id, bet.on_chain_id, bet.dare_id, bet.bettor, bet.amount,
                bet.bet_type.value, bet.tx_signature, _ts(bet.created_at)
            ))

            cursor.execute("COMMIT")
            return True

        except sqlite3.IntegrityError as e:
            logger.warning(f"Duplicate bet {bet.id} (tx {bet.tx_signature}): {e}")
            if conn.in_transaction:
                cursor.execute("ROLLBACK")
            raise
        except Exception as e:
            logger.error(f"Atomic bet placement failed: {e}", exc_info=True)
            if conn.in_transaction:
                cursor.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def atomic_cash_out(self, bet_id: str, deadline_after: datetime) -> bool:
        """Mark a bet cashed out and remove its full amount from the pools.

        Args:
            bet_id: Bet to cash out
            deadline_after: The dare's deadline must be later than this
                (now + cash-out cutoff)

        Returns:
            True on success, False if the bet is no longer active or the
            dare left its cash-out window
        """
        conn = sqlite3.connect(self.db_path, isolation_level=None)
        conn.row_factory = sqlite3.Row
        cursor = conn.cursor()

        try:
            cursor.execute("BEGIN IMMEDIATE")

            cursor.execute("""
                UPDATE bets SET is_early_cash_out = 1
                WHERE id = ? AND is_claimed = 0 AND is_early_cash_out = 0
            """, (bet_id,))
            if cursor.rowcount == 0:
                cursor.execute("ROLLBACK")
                return False

            cursor.execute("SELECT dare_id, amount, bet_type FROM bets WHERE id = ?", (bet_id,))
            row = cursor.fetchone()
            side_column = _POOL_COLUMNS[BetType(row["bet_type"])]

            cursor.execute(f"""
                UPDATE dares
                SET total_pool = total_pool - ?, {side_column} = {side_column} - ?
                WHERE id = ? AND is_completed = 0 AND deadline > ?
            """, (row["amount"], row["amount"], row["dare_id"], _ts(deadline_after)))
            if cursor.rowcount == 0:
                cursor.execute("ROLLBACK")
                return False

            cursor.execute("COMMIT")
            return True

        except Exception as e:
            logger.error(f"Atomic cash-out failed: {e}", exc_info=True)
            if conn.in_transaction:
                cursor.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def revert_cash_out(self, bet_id: str) -> bool:
        """Undo a cash-out whose refund never left the treasury."""
        conn = sqlite3.connect(self.db_path, isolation_level=None)
        conn.row_factory = sqlite3.Row
        cursor = conn.cursor()

        try:
            cursor.execute("BEGIN IMMEDIATE")

            cursor.execute("""
                UPDATE bets SET is_early_cash_out = 0
                WHERE id = ? AND is_early_cash_out = 1 AND payout_signature IS NULL
            """, (bet_id,))
            if cursor.rowcount == 0:
                cursor.execute("ROLLBACK")
                return False

            cursor.execute("SELECT dare_id, amount, bet_type FROM bets WHERE id = ?", (bet_id,))
            row = cursor.fetchone()
            side_column = _POOL_COLUMNS[BetType(row["bet_type"])]

            cursor.execute(f"""
                UPDATE dares
                SET total_pool = total_pool + ?, {side_column} = {side_column} + ?
                WHERE id = ?
            """, (row["amount"], row["amount"], row["dare_id"]))

            cursor.execute("COMMIT")
            return True

        except Exception as e:
            logger.error(f"Cash-out revert failed: {e}", exc_info=True)
            if conn.in_transaction:
                cursor.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _flip_flag(self, table: str, column: str, row_id: str, new_value: int,
                   extra_condition: str = "") -> bool:
        """Conditionally flip a 0/1 column; True if this call changed it."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute(f"""
            UPDATE {table} SET {column} = ?
            WHERE id = ? AND {column} = ? {extra_condition}
        """, (new_value, row_id, 1 - new_value))
        changed = cursor.rowcount == 1

        conn.commit()
        conn.close()
        return changed

    def atomic_claim_creator_fee(self, dare_id: str) -> bool:
        """Reserve the creator fee. False if already claimed."""
        return self._flip_flag("dares", "creator_fee_claimed", dare_id, 1)

    def release_creator_fee(self, dare_id: str) -> bool:
        return self._flip_flag("dares", "creator_fee_claimed", dare_id, 0)

    def atomic_claim_completer_reward(self, dare_id: str) -> bool:
        """Reserve the completer reward. False if already claimed or not completed."""
        return self._flip_flag("dares", "completer_fee_claimed", dare_id, 1,
                               "AND is_completed = 1")

    def release_completer_reward(self, dare_id: str) -> bool:
        return self._flip_flag("dares", "completer_fee_claimed", dare_id, 0)

    def atomic_claim_bet(self, bet_id: str) -> bool:
        """Reserve a bet's winnings. False if claimed or cashed out."""
        return self._flip_flag("bets", "is_claimed", bet_id, 1,
                               "AND is_early_cash_out = 0")

    def release_bet_claim(self, bet_id: str) -> bool:
        return self._flip_flag("bets", "is_claimed", bet_id, 0,
                               "AND payout_signature IS NULL")

    # === Proof Operations ===

    def atomic_submit_proof(self, dare_id: str, proof: CompletionProof, now: datetime) -> bool:
        """Attach a completion proof while the dare is still open.

        An approved proof also marks the dare completed. A pending proof
        replaces any earlier unapproved one.
        """
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("""
            UPDATE dares SET
                proof_submitter = ?, proof_hash = ?, proof_description = ?, proof_timestamp = ?,
                proof_approved = ?, proof_approved_by = ?, proof_approved_at = ?,
                is_completed = ?
            WHERE id = ? AND is_completed = 0 AND deadline > ?
        """, (
            proof.submitter, proof.proof_hash, proof.description, _ts(proof.timestamp),
            int(proof.is_approved), proof.approved_by, _ts(proof.approved_at),
            int(proof.is_approved),
            dare_id, _ts(now)
        ))
        changed = cursor.rowcount == 1

        conn.commit()
        conn.close()
        return changed

    def atomic_approve_proof(self, dare_id: str, approver: str, now: datetime) -> bool:
        """Accept the pending proof and mark the dare completed.

        Approval closes at the deadline; after it the dare settles as expired.
        """
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("""
            UPDATE dares SET
                proof_approved = 1, proof_approved_by = ?, proof_approved_at = ?, is_completed = 1
            WHERE id = ? AND is_completed = 0 AND proof_submitter IS NOT NULL
                AND proof_approved = 0 AND deadline > ?
        """, (approver, _ts(now), dare_id, _ts(now)))
        changed = cursor.rowcount == 1

        conn.commit()
        conn.close()
        return changed

    # === Payout Ledger ===

    def save_payout(self, payout: Payout):
        """Record a treasury payout."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("""
            INSERT INTO payouts (
                payout_id, dare_id, bet_id, wallet, kind, amount, signature, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            payout.payout_id, payout.dare_id, payout.bet_id, payout.wallet,
            payout.kind.value, payout.amount, payout.signature, _ts(payout.created_at)
        ))

        conn.commit()
        conn.close()

    def get_payouts(self, dare_id: Optional[str] = None) -> List[Payout]:
        """Get payouts, optionally for one dare."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        cursor = conn.cursor()

        if dare_id:
            cursor.execute("SELECT * FROM payouts WHERE dare_id = ? ORDER BY created_at", (dare_id,))
        else:
            cursor.execute("SELECT * FROM payouts ORDER BY created_at")

        rows = cursor.fetchall()
        conn.close()

        return [
            Payout(
                payout_id=row["payout_id"],
                dare_id=row["dare_id"],
                bet_id=row["bet_id"],
                wallet=row["wallet"],
                kind=PayoutKind(row["kind"]),
                amount=row["amount"],
                signature=row["signature"],
                created_at=_dt(row["created_at"]) or datetime.utcnow(),
            )
            for row in rows
        ]

    # === Reconciliation ===

    def get_ledger_totals(self) -> dict:
        """Total deposited (all bets) and total paid out, in lamports."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("SELECT COALESCE(SUM(amount), 0), COUNT(*) FROM bets")
        deposited, bet_count = cursor.fetchone()
        cursor.execute("SELECT COALESCE(SUM(amount), 0) FROM payouts")
        paid = cursor.fetchone()[0]
        conn.close()

        return {"deposited": deposited, "paid": paid, "bet_count": bet_count}

    def get_pool_audit(self) -> List[dict]:
        """Stored pools next to the sums of each dare's active bets."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        cursor = conn.cursor()

        cursor.execute("""
            SELECT d.id, d.title, d.total_pool, d.will_do_pool, d.wont_do_pool,
                COALESCE(SUM(CASE WHEN b.is_early_cash_out = 0 THEN b.amount END), 0) AS active_total,
                COUNT(b.id) AS bet_count
            FROM dares d LEFT JOIN bets b ON b.dare_id = d.id
            GROUP BY d.id
            ORDER BY d.created_at DESC
        """)
        rows = cursor.fetchall()
        conn.close()

        return [dict(row) for row in rows]
