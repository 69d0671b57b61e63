"""Security utilities for Dare Betting."""
from .audit import audit_logger, AuditEventType, AuditSeverity, AuditLogger

__all__ = ["audit_logger", "AuditEventType", "AuditSeverity", "AuditLogger"]
