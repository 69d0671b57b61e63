"""Audit trail persistence and summaries."""
from security import AuditLogger, AuditEventType, AuditSeverity


def test_events_are_recorded_and_filtered(tmp_path):
    audit = AuditLogger(str(tmp_path / "audit.db"))
    audit.log(AuditEventType.BET_PLACED, wallet="w1", dare_id="d1", details="amount=1")
    audit.log(AuditEventType.DOUBLE_CLAIM, AuditSeverity.WARNING, wallet="w2", dare_id="d1")
    audit.log(AuditEventType.PAYOUT_FAILED, AuditSeverity.CRITICAL, wallet="w2", dare_id="d2")

    events = audit.get_recent_events()
    assert [e["event_type"] for e in events] == ["payout_failed", "double_claim", "bet_placed"]

    assert len(audit.get_recent_events(dare_id="d1")) == 2
    assert len(audit.get_recent_events(wallet="w2", severity=AuditSeverity.CRITICAL)) == 1

    summary = audit.get_security_summary(hours=1)
    assert summary["total_critical"] == 1
    assert summary["total_warnings"] == 1
    assert summary["top_events"]["bet_placed"] == 1


def test_audit_failure_does_not_raise(tmp_path):
    audit = AuditLogger(str(tmp_path / "audit.db"))
    audit.db_path = str(tmp_path / "missing" / "audit.db")
    audit.log(AuditEventType.CASH_OUT, wallet="w1")
