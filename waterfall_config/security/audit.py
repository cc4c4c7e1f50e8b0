"""
审计日志

只记录两类事件：加密配置值的读取，以及解密引擎的初始化。
事件写成 JSON Lines，可选 HMAC-SHA256 签名，读取时校验。
事件中从不出现明文、密文或口令。
"""

import dataclasses
import getpass
import hashlib
import hmac
import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Optional, Union

logger = logging.getLogger(__name__)

SIGNING_KEY_ENV = "WCONF_AUDIT_SIGNING_KEY"

# extra 中字段名包含这些词时整体抹掉
_REDACTED_WORDS = ("password", "secret", "key", "value", "plaintext", "iv")
REDACTED = "***REDACTED***"


class AuditEventType(str, Enum):
    """审计事件类型"""
    SECRET_READ = "secret_read"
    CIPHER_INIT = "cipher_init"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "system"


def redact(extra: dict[str, Any]) -> dict[str, Any]:
    """递归抹掉敏感字段"""
    cleaned: dict[str, Any] = {}
    for name, item in extra.items():
        if any(word in name.lower() for word in _REDACTED_WORDS):
            cleaned[name] = REDACTED
        elif isinstance(item, dict):
            cleaned[name] = redact(item)
        else:
            cleaned[name] = item
    return cleaned


@dataclass(frozen=True)
class AuditEvent:
    """
    单条审计事件

    subject 是配置键 (SECRET_READ) 或密钥库路径 (CIPHER_INIT)。
    """
    event_type: AuditEventType
    subject: str
    outcome: str = "success"  # success / failure
    actor: str = "system"
    recorded_at: datetime = field(default_factory=_now)
    extra: dict[str, Any] = field(default_factory=dict)
    signature: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.outcome != "success"

    def payload(self) -> dict[str, Any]:
        """签名覆盖的内容"""
        return {
            "event_type": self.event_type.value,
            "subject": self.subject,
            "outcome": self.outcome,
            "actor": self.actor,
            "recorded_at": self.recorded_at.isoformat(),
            "extra": self.extra,
        }

    def _digest(self, signing_key: bytes) -> str:
        message = json.dumps(self.payload(), sort_keys=True).encode("utf-8")
        return hmac.new(signing_key, message, hashlib.sha256).hexdigest()

    def signed(self, signing_key: bytes) -> "AuditEvent":
        return dataclasses.replace(self, signature=self._digest(signing_key))

    def verify(self, signing_key: bytes) -> bool:
        if self.signature is None:
            return False
        return hmac.compare_digest(self.signature, self._digest(signing_key))

    def to_json(self) -> str:
        return json.dumps({**self.payload(), "signature": self.signature}, ensure_ascii=False)

    @classmethod
    def from_json(cls, line: str) -> "AuditEvent":
        raw = json.loads(line)
        return cls(
            event_type=AuditEventType(raw["event_type"]),
            subject=raw["subject"],
            outcome=raw.get("outcome", "success"),
            actor=raw.get("actor", "system"),
            recorded_at=datetime.fromisoformat(raw["recorded_at"]),
            extra=raw.get("extra") or {},
            signature=raw.get("signature"),
        )


class AuditLogger:
    """
    审计日志记录器

    事件先进入内存缓冲，达到 flush_every 条或显式调用 flush 时追加到文件；
    未配置文件时事件只保留在缓冲中 (可通过 pending 查看)。
    缓冲区由锁保护，并发读取配置时可以共用一个实例。
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        signing_key: Optional[bytes] = None,
        flush_every: int = 100,
    ):
        self.path = Path(path) if path else None
        self._signing_key = signing_key
        self._flush_every = flush_every
        self._pending: list[AuditEvent] = []
        self._lock = threading.Lock()
        self._actor = _current_user()

        if self.path:
            self.path.parent.mkdir(parents=True, exist_ok=True)

    def record(
        self,
        event_type: AuditEventType,
        subject: str,
        outcome: str = "success",
        **extra: Any,
    ) -> AuditEvent:
        event = AuditEvent(
            event_type=event_type,
            subject=subject,
            outcome=outcome,
            actor=self._actor,
            extra=redact(extra),
        )
        if self._signing_key:
            event = event.signed(self._signing_key)

        with self._lock:
            self._pending.append(event)
            if self.path and len(self._pending) >= self._flush_every:
                self._write_pending()
        return event

    def secret_read(self, key: str, error: Optional[str] = None) -> AuditEvent:
        if error:
            return self.record(AuditEventType.SECRET_READ, key, outcome="failure", error=error)
        return self.record(AuditEventType.SECRET_READ, key)

    def cipher_init(self, keystore: str, transformation: str, error: Optional[str] = None) -> AuditEvent:
        if error:
            return self.record(
                AuditEventType.CIPHER_INIT, keystore, outcome="failure",
                transformation=transformation, error=error,
            )
        return self.record(AuditEventType.CIPHER_INIT, keystore, transformation=transformation)

    @property
    def pending(self) -> list[AuditEvent]:
        with self._lock:
            return list(self._pending)

    def flush(self) -> None:
        with self._lock:
            self._write_pending()

    def _write_pending(self) -> None:
        if not self.path or not self._pending:
            return
        with self.path.open("a", encoding="utf-8") as f:
            f.writelines(event.to_json() + "\n" for event in self._pending)
        self._pending.clear()

    def _read_file(self) -> Iterator[AuditEvent]:
        if not self.path or not self.path.exists():
            return
        with self.path.open(encoding="utf-8") as f:
            for number, line in enumerate(f, 1):
                try:
                    event = AuditEvent.from_json(line)
                except (json.JSONDecodeError, KeyError, ValueError) as e:
                    logger.debug(f"Skipping unreadable audit line {number}: {e}")
                    continue
                if self._signing_key and not event.verify(self._signing_key):
                    logger.warning(f"Audit line {number} failed signature verification")
                    continue
                yield event

    def read(
        self,
        event_type: Optional[AuditEventType] = None,
        subject: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """读取已写入文件的事件；签名校验失败的行被跳过"""
        matches = []
        for event in self._read_file():
            if event_type is not None and event.event_type is not event_type:
                continue
            if subject is not None and event.subject != subject:
                continue
            if since is not None and event.recorded_at < since:
                continue
            if until is not None and event.recorded_at > until:
                continue
            matches.append(event)
            if len(matches) >= limit:
                break
        return matches


def create_audit_logger(path: Union[str, Path], signing_key: Optional[bytes] = None) -> AuditLogger:
    """创建写文件的审计日志；签名密钥默认取自 WCONF_AUDIT_SIGNING_KEY (hex)"""
    if signing_key is None:
        from_env = os.getenv(SIGNING_KEY_ENV)
        if from_env:
            signing_key = bytes.fromhex(from_env)
        else:
            signing_key = os.urandom(32)
            logger.warning(
                f"No audit signing key configured, using a random one. "
                f"Set {SIGNING_KEY_ENV} to verify the log across restarts."
            )
    return AuditLogger(path, signing_key=signing_key)
