"""
日志脱敏

配置解析过程中会经手口令和 cipher(...) 载荷，这里保证它们不会出现在日志里。
字符串按规则表逐条替换；映射按字段名判断，敏感字段整体按策略遮盖。
"""

import hashlib
import logging
import os
import re
import sys
from enum import Enum
from typing import Any, Callable, Optional, Pattern, Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

Replacement = Union[str, Callable[[re.Match], str]]

_CIPHER_PAYLOAD = re.compile(r"cipher\([^)]*\)")
# db.password=..., keystore_password: "...", secret=...
_SECRET_ASSIGNMENT = re.compile(
    r"(?P<name>[\w.]*(?:password|passwd|secret)[\w.]*['\"]?\s*[:=]\s*)['\"]?[^\s'\",}]+['\"]?",
    re.IGNORECASE,
)
_PEM_PRIVATE_KEY = re.compile(
    r"-----BEGIN [A-Z ]*PRIVATE KEY-----[\s\S]*?-----END [A-Z ]*PRIVATE KEY-----"
)


class MaskStrategy(str, Enum):
    """敏感字段的遮盖方式"""
    FULL = "full"  # ***
    PARTIAL = "partial"  # abc***wxyz
    HASH = "hash"  # 加盐 sha256 前 16 位


class LogSanitizer:
    """日志脱敏器，递归处理字符串、映射、列表和元组"""

    SENSITIVE_FIELDS = frozenset({
        "password", "passwd", "secret", "token", "credential", "private_key",
    })

    def __init__(
        self,
        strategy: MaskStrategy = MaskStrategy.FULL,
        sensitive_fields: Optional[set[str]] = None,
        hash_salt: Optional[str] = None,
    ):
        self._strategy = strategy
        self._fields = {name.lower() for name in (sensitive_fields or self.SENSITIVE_FIELDS)}
        self._salt = hash_salt or os.getenv("WCONF_SANITIZER_SALT", "wconf")
        self._rules: list[tuple[Pattern, Replacement]] = [
            (_CIPHER_PAYLOAD, "cipher(***)"),
            (_SECRET_ASSIGNMENT, lambda m: m.group("name") + "***"),
            (_PEM_PRIVATE_KEY, "***"),
        ]

    def add_pattern(self, pattern: Union[str, Pattern], replacement: Replacement = "***") -> None:
        if isinstance(pattern, str):
            pattern = re.compile(pattern)
        self._rules.append((pattern, replacement))

    def add_sensitive_field(self, name: str) -> None:
        self._fields.add(name.lower())

    def is_sensitive(self, name: Any) -> bool:
        lowered = str(name).lower()
        return any(word in lowered for word in self._fields)

    def mask(self, value: Any) -> str:
        """按策略遮盖整个值"""
        text = str(value)
        if self._strategy is MaskStrategy.PARTIAL and len(text) > 8:
            return f"{text[:3]}***{text[-4:]}"
        if self._strategy is MaskStrategy.HASH:
            return hashlib.sha256(f"{self._salt}:{text}".encode("utf-8")).hexdigest()[:16]
        return "***"

    def sanitize_string(self, text: str) -> str:
        for pattern, replacement in self._rules:
            text = pattern.sub(replacement, text)
        return text

    def sanitize_dict(self, data: dict) -> dict:
        return {
            name: self.mask(value) if self.is_sensitive(name) else self.sanitize(value)
            for name, value in data.items()
        }

    def sanitize(self, data: Any) -> Any:
        if isinstance(data, str):
            return self.sanitize_string(data)
        if isinstance(data, dict):
            return self.sanitize_dict(data)
        if isinstance(data, (list, tuple)):
            return type(data)(self.sanitize(item) for item in data)
        return data


_default = LogSanitizer()


def sanitize(data: Any) -> Any:
    """使用默认脱敏器"""
    return _default.sanitize(data)


def sanitize_string(text: str) -> str:
    return _default.sanitize_string(text)


class SanitizingFilter(logging.Filter):
    """在格式化之前脱敏消息和参数"""

    def __init__(self, sanitizer: Optional[LogSanitizer] = None):
        super().__init__()
        self._sanitizer = sanitizer or _default

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._sanitizer.sanitize_string(record.msg)
        if record.args:
            record.args = self._sanitizer.sanitize(record.args)
        return True


def setup_logging_with_sanitization(
    level: int = logging.INFO,
    sanitizer: Optional[LogSanitizer] = None,
) -> logging.Handler:
    """
    把根日志输出到 stderr，并挂上脱敏过滤器

        setup_logging_with_sanitization(logging.DEBUG)
        logger.info("value=%s", "cipher(abc==)")  # value=cipher(***)
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(SanitizingFilter(sanitizer))
    logging.basicConfig(level=level, handlers=[handler], force=True)
    return handler
