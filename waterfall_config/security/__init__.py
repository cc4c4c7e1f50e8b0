"""
安全模块

提供审计日志和日志脱敏
"""

from .audit import AuditEvent, AuditEventType, AuditLogger, create_audit_logger
from .sanitizer import (
    LogSanitizer,
    MaskStrategy,
    SanitizingFilter,
    sanitize,
    sanitize_string,
    setup_logging_with_sanitization,
)

__all__ = [
    "AuditEvent",
    "AuditEventType",
    "AuditLogger",
    "create_audit_logger",
    "LogSanitizer",
    "MaskStrategy",
    "SanitizingFilter",
    "sanitize",
    "sanitize_string",
    "setup_logging_with_sanitization",
]
