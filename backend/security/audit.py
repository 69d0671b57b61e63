"""
Security audit logging system.
Records claims, payouts and rejected requests for forensics and reconciliation.
"""
import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Optional
from enum import Enum

from config import DATABASE_PATH

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of security events to audit."""
    # Wallet auth
    INVALID_SIGNATURE = "invalid_signature"
    EXPIRED_SIGNATURE = "expired_signature"

    # Bet deposits
    SIGNATURE_REUSE = "signature_reuse"
    INVALID_TRANSACTION = "invalid_transaction"
    BET_PLACED = "bet_placed"

    # Dare lifecycle
    DARE_CREATED = "dare_created"
    PROOF_SUBMITTED = "proof_submitted"
    PROOF_APPROVED = "proof_approved"

    # Payouts
    PAYOUT_PROCESSED = "payout_processed"
    PAYOUT_FAILED = "payout_failed"
    DOUBLE_CLAIM = "double_claim"
    CASH_OUT = "cash_out"

    # Rate limiting / admin
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    ADMIN_ACTION = "admin_action"


class AuditSeverity(Enum):
    """Severity levels for audit events."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AuditLogger:
    """Audit logging system for security events."""

    def __init__(self, db_path: str = "dares.db"):
        self.db_path = db_path
        self._init_audit_table()

    def _init_audit_table(self):
        """Initialize audit log table."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS audit_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                event_type TEXT NOT NULL,
                wallet TEXT,
                dare_id TEXT,
                ip_address TEXT,
                details TEXT,
                severity TEXT NOT NULL,
                timestamp TEXT NOT NULL
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_logs(timestamp)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_audit_wallet ON audit_logs(wallet)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_audit_event_type ON audit_logs(event_type)")

        conn.commit()
        conn.close()

    def log(
        self,
        event_type: AuditEventType,
        severity: AuditSeverity = AuditSeverity.INFO,
        wallet: Optional[str] = None,
        dare_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        details: Optional[str] = None,
    ):
        """Log a security event.

        Audit failures are logged and never interrupt the caller.
        """
        try:
            conn = sqlite3.connect(self.db_path)
            cursor = conn.cursor()

            cursor.execute("""
                INSERT INTO audit_logs (
                    event_type, wallet, dare_id, ip_address, details, severity, timestamp
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                event_type.value,
                wallet,
                dare_id,
                ip_address,
                details,
                severity.value,
                datetime.utcnow().isoformat()
            ))

            conn.commit()
            conn.close()

            log_msg = f"[AUDIT] {event_type.value}"
            if wallet:
                log_msg += f" | wallet={wallet}"
            if dare_id:
                log_msg += f" | dare={dare_id}"
            if ip_address:
                log_msg += f" | ip={ip_address}"
            if details:
                log_msg += f" | {details}"

            if severity == AuditSeverity.CRITICAL:
                logger.critical(log_msg)
            elif severity == AuditSeverity.WARNING:
                logger.warning(log_msg)
            else:
                logger.info(log_msg)

        except Exception as e:
            logger.error(f"Failed to write audit log: {e}", exc_info=True)

    def get_recent_events(
        self,
        limit: int = 100,
        severity: Optional[AuditSeverity] = None,
        event_type: Optional[AuditEventType] = None,
        wallet: Optional[str] = None,
        dare_id: Optional[str] = None,
    ) -> list:
        """Get recent audit events, newest first."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        cursor = conn.cursor()

        query = "SELECT * FROM audit_logs WHERE 1=1"
        params = []

        if severity:
            query += " AND severity = ?"
            params.append(severity.value)

        if event_type:
            query += " AND event_type = ?"
            params.append(event_type.value)

        if wallet:
            query += " AND wallet = ?"
            params.append(wallet)

        if dare_id:
            query += " AND dare_id = ?"
            params.append(dare_id)

        query += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        params.append(limit)

        cursor.execute(query, params)
        rows = cursor.fetchall()
        conn.close()

        return [dict(row) for row in rows]

    def get_security_summary(self, hours: int = 24) -> dict:
        """Counts by severity and event type over the last N hours."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cutoff = (datetime.utcnow() - timedelta(hours=hours)).isoformat()

        cursor.execute("""
            SELECT severity, COUNT(*) as count
            FROM audit_logs
            WHERE timestamp > ?
            GROUP BY severity
        """, (cutoff,))
        severity_counts = dict(cursor.fetchall())

        cursor.execute("""
            SELECT event_type, COUNT(*) as count
            FROM audit_logs
            WHERE timestamp > ?
            GROUP BY event_type
            ORDER BY count DESC
            LIMIT 10
        """, (cutoff,))
        event_counts = dict(cursor.fetchall())

        conn.close()

        return {
            "period_hours": hours,
            "severity_counts": severity_counts,
            "top_events": event_counts,
            "total_critical": severity_counts.get("critical", 0),
            "total_warnings": severity_counts.get("warning", 0),
        }


# Global audit logger instance
audit_logger = AuditLogger(DATABASE_PATH)
