"""
元配置键

这些保留键控制解析器和加密引擎的行为，而不是应用数据本身。
"""

import base64
import binascii
from enum import Enum

from pydantic import BaseModel, ConfigDict, SecretStr, field_validator


class MetaKey(str, Enum):
    """保留的元配置键"""
    ACTIVE_PROFILE = "wconf_active_profile"
    APP_RESOURCE = "wconf_app_properties"
    ENCRYPTION_ENABLED = "wconf_encryption.enabled"
    ENCRYPTION_ALGORITHM = "wconf_encryption.algorithm"
    ENCRYPTION_KEY_TYPE = "wconf_encryption.key_type"
    ENCRYPTION_KEYSTORE_PATH = "wconf_encryption.keystore_path"
    ENCRYPTION_KEYSTORE_PASSWORD = "wconf_encryption.keystore_password"
    ENCRYPTION_KEY_ALIAS = "wconf_encryption.key_alias"
    ENCRYPTION_KEY_PASSWORD = "wconf_encryption.key_password"
    ENCRYPTION_IV = "wconf_encryption.iv"


# EncryptionSettings 字段 -> 元配置键
ENCRYPTION_FIELDS = {
    "algorithm": MetaKey.ENCRYPTION_ALGORITHM,
    "key_type": MetaKey.ENCRYPTION_KEY_TYPE,
    "keystore_path": MetaKey.ENCRYPTION_KEYSTORE_PATH,
    "keystore_password": MetaKey.ENCRYPTION_KEYSTORE_PASSWORD,
    "key_alias": MetaKey.ENCRYPTION_KEY_ALIAS,
    "key_password": MetaKey.ENCRYPTION_KEY_PASSWORD,
    "iv": MetaKey.ENCRYPTION_IV,
}


class EncryptionSettings(BaseModel):
    """加密引擎初始化参数 (全部必填)"""

    model_config = ConfigDict(frozen=True)

    algorithm: str
    key_type: str
    keystore_path: str
    keystore_password: SecretStr
    key_alias: str
    key_password: SecretStr
    iv: str

    @field_validator("algorithm", "key_type", "keystore_path", "key_alias")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()

    @field_validator("iv")
    @classmethod
    def _valid_base64(cls, value: str) -> str:
        try:
            base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"initialization vector is not valid base64: {e}") from e
        return value

    @property
    def iv_bytes(self) -> bytes:
        return base64.b64decode(self.iv, validate=True)

    def summary(self) -> dict[str, str]:
        """用于日志输出，不含口令"""
        return {
            "algorithm": self.algorithm,
            "key_type": self.key_type,
            "keystore_path": self.keystore_path,
            "key_alias": self.key_alias,
        }
