"""
密钥库访问模块

KeyStoreAccessor: 别名 + 口令 -> 原始对称密钥字节
FileKeyStore: 口令保护的 JSON 密钥库文件

文件格式:
    {
      "format": "wconf-keystore", "version": 1, "kdf": "pbkdf2-sha256",
      "entries": {iterations, salt, nonce, ciphertext}
    }

外层 entries 由存储口令封装 (附加数据为格式名)，打开后为
    {alias: {"algorithm", "created_at", "key": {iterations, salt, nonce, ciphertext}}}
每个条目的 key 再由该条目自己的口令封装 (附加数据为别名)，
因此条目不能被挪到其他别名下使用。
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .crypto import PBKDF2_ITERATIONS, EncryptionError, Sealed, seal, unseal

logger = logging.getLogger(__name__)

KEYSTORE_FORMAT = "wconf-keystore"
KEYSTORE_VERSION = 1


@dataclass
class KeyEntry:
    """密钥条目元数据 (不含密钥本身)"""
    alias: str
    algorithm: str
    created_at: Optional[datetime] = None


class KeyStoreError(Exception):
    """密钥库操作失败"""


class KeyStoreAccessor(ABC):
    """密钥库抽象基类"""

    @abstractmethod
    def load_key(self, alias: str, key_password: str) -> bytes:
        """按别名取出原始密钥字节"""

    @abstractmethod
    def aliases(self) -> list[str]:
        """列出所有别名"""

    def contains_alias(self, alias: str) -> bool:
        return alias in self.aliases()


class FileKeyStore(KeyStoreAccessor):
    """
    口令保护的文件密钥库

    - 存储口令错误时无法打开 (AES-GCM 认证)
    - 每个密钥条目有独立口令
    - 新条目和重新保存时使用构造时的 PBKDF2 迭代次数
    """

    def __init__(
        self,
        store_password: str,
        entries: Optional[Dict[str, Dict[str, Any]]] = None,
        iterations: int = PBKDF2_ITERATIONS,
        source: str = "<memory>",
    ):
        self._store_password = store_password
        self._entries: Dict[str, Dict[str, Any]] = dict(entries or {})
        self._iterations = iterations
        self.source = source

    @classmethod
    def from_bytes(cls, data: bytes, store_password: str, source: str = "<memory>") -> "FileKeyStore":
        """
        解析并打开密钥库

        Raises:
            KeyStoreError: 格式错误或存储口令错误
        """
        try:
            document = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise KeyStoreError(f"Malformed key store {source}: {e}") from e

        if not isinstance(document, dict) or document.get("format") != KEYSTORE_FORMAT:
            raise KeyStoreError(f"Not a key store file: {source}")
        if document.get("version") != KEYSTORE_VERSION:
            raise KeyStoreError(f"Unsupported key store version: {document.get('version')}")

        try:
            sealed = Sealed.from_dict(document["entries"])
            entries = json.loads(
                unseal(store_password, sealed, KEYSTORE_FORMAT.encode("ascii"))
            )
        except EncryptionError as e:
            raise KeyStoreError(
                f"Cannot authenticate key store {source}: wrong password or corrupted file"
            ) from e
        except (KeyError, ValueError, TypeError) as e:
            raise KeyStoreError(f"Malformed key store {source}: {e}") from e

        return cls(store_password, entries=entries, iterations=sealed.iterations, source=source)

    @classmethod
    def open(cls, path: Union[str, Path], store_password: str) -> "FileKeyStore":
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise KeyStoreError(f"Cannot read key store {path}: {e}") from e
        return cls.from_bytes(data, store_password, source=str(path))

    @classmethod
    def create(
        cls,
        path: Union[str, Path],
        store_password: str,
        iterations: int = PBKDF2_ITERATIONS,
    ) -> "FileKeyStore":
        """创建空密钥库并写入磁盘"""
        store = cls(store_password, iterations=iterations, source=str(path))
        store.save(path)
        return store

    def aliases(self) -> list[str]:
        return sorted(self._entries)

    def entry(self, alias: str) -> KeyEntry:
        if alias not in self._entries:
            raise KeyStoreError(f"Key alias not found in {self.source}: {alias}")
        raw = self._entries[alias]
        created_at = raw.get("created_at")
        return KeyEntry(
            alias=alias,
            algorithm=raw.get("algorithm", ""),
            created_at=datetime.fromisoformat(created_at) if created_at else None,
        )

    def load_key(self, alias: str, key_password: str) -> bytes:
        if alias not in self._entries:
            logger.error(f"The key {alias} was not found in the key store {self.source}")
            raise KeyStoreError(f"Key alias not found in {self.source}: {alias}")

        try:
            sealed = Sealed.from_dict(self._entries[alias]["key"])
            return unseal(key_password, sealed, alias.encode("utf-8"))
        except EncryptionError as e:
            raise KeyStoreError(f"Cannot recover key {alias}: wrong key password") from e
        except (KeyError, ValueError, TypeError) as e:
            raise KeyStoreError(f"Malformed key entry {alias}: {e}") from e

    def set_key(
        self,
        alias: str,
        key: bytes,
        key_password: str,
        algorithm: str = "AES",
    ) -> KeyEntry:
        """添加或替换密钥条目 (仅内存，调用 save 持久化)"""
        if not key:
            raise KeyStoreError("Key material cannot be empty")
        created_at = datetime.now(timezone.utc)
        self._entries[alias] = {
            "algorithm": algorithm,
            "created_at": created_at.isoformat(),
            "key": seal(key_password, key, self._iterations, alias.encode("utf-8")).to_dict(),
        }
        return KeyEntry(alias=alias, algorithm=algorithm, created_at=created_at)

    def to_bytes(self) -> bytes:
        sealed = seal(
            self._store_password,
            json.dumps(self._entries).encode("utf-8"),
            self._iterations,
            KEYSTORE_FORMAT.encode("ascii"),
        )
        document = {
            "format": KEYSTORE_FORMAT,
            "version": KEYSTORE_VERSION,
            "kdf": "pbkdf2-sha256",
            "entries": sealed.to_dict(),
        }
        return json.dumps(document, indent=2).encode("utf-8")

    def save(self, path: Union[str, Path]) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            path.write_bytes(self.to_bytes())
            os.chmod(path, 0o600)
        except OSError as e:
            raise KeyStoreError(f"Failed to save key store {path}: {e}") from e
        self.source = str(path)
        logger.info(f"Key store saved: {path}")
