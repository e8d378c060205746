"""Audit trail."""

from .recorder import AuditAction, AuditEntry, AuditRecorder, DatabaseAuditRecorder

__all__ = ["AuditAction", "AuditEntry", "AuditRecorder", "DatabaseAuditRecorder"]
