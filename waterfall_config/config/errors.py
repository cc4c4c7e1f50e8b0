"""
配置错误类型

所有对外抛出的异常都继承自 ConfigError，并携带 ErrorKind：
- CONFIGURATION_MISSING: 单次查找失败，键不存在
- ENCRYPTION_NOT_ENABLED: 遇到 cipher(...) 值但未启用加密
- DECRYPTION_FAILED: 密文无法解密 (不重试)
- INITIALIZATION_FAILED: 构造阶段失败，不返回任何实例
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """错误类别"""
    CONFIGURATION_MISSING = "configuration_missing"
    ENCRYPTION_NOT_ENABLED = "encryption_not_enabled"
    DECRYPTION_FAILED = "decryption_failed"
    INITIALIZATION_FAILED = "initialization_failed"


class ConfigError(Exception):
    """配置错误基类"""

    kind: ErrorKind = ErrorKind.INITIALIZATION_FAILED

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class ConfigurationMissing(ConfigError):
    """键在最终配置视图中不存在"""

    kind = ErrorKind.CONFIGURATION_MISSING

    def __init__(self, key: str, message: Optional[str] = None):
        super().__init__(message or f"No configuration setting found for key '{key}'", key=key)


class ConfigurationWrongType(ConfigurationMissing):
    """键存在，但无法表示为所请求的类型 (视为缺失)"""

    def __init__(self, key: str, expected: str, found: str):
        super().__init__(key, f"Configuration key '{key}' has type {found} rather than {expected}")
        self.expected = expected
        self.found = found


class EncryptionNotEnabled(ConfigError):
    """读取到加密值，但加密引擎未就绪"""

    kind = ErrorKind.ENCRYPTION_NOT_ENABLED

    def __init__(self, key: Optional[str] = None):
        super().__init__(
            f"Encryption has not been enabled (encrypted value found for '{key}')",
            key=key,
        )


class DecryptionFailed(ConfigError):
    """密文被拒绝 (填充/块大小/认证标签错误)"""

    kind = ErrorKind.DECRYPTION_FAILED


class InitializationFailed(ConfigError):
    """初始化失败，致命"""

    kind = ErrorKind.INITIALIZATION_FAILED


class SourceError(Exception):
    """配置源无法读取或解析"""
