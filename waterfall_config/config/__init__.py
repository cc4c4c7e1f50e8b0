"""
分层配置模块

- 多源优先级合并 (SourceProvider / EffectiveConfig)
- profile 作用域
- cipher(...) 值自动解密 (SecretCipherEngine + KeyStoreAccessor)
"""

from .errors import (
    ConfigError,
    ConfigurationMissing,
    ConfigurationWrongType,
    DecryptionFailed,
    EncryptionNotEnabled,
    ErrorKind,
    InitializationFailed,
)
from .sources import ConfigSource, EncryptedValue, PlainValue, ResourceLocator, SourceProvider
from .precedence import EffectiveConfig, merge
from .profile import scope
from .meta import EncryptionSettings, MetaKey
from .crypto import CipherState, SecretCipherEngine, SecureBytes, Transformation, seal, unseal
from .keystore import FileKeyStore, KeyStoreAccessor, KeyStoreError
from .loader import WaterfallConfig, load_config

__all__ = [
    "ConfigError",
    "ConfigurationMissing",
    "ConfigurationWrongType",
    "DecryptionFailed",
    "EncryptionNotEnabled",
    "ErrorKind",
    "InitializationFailed",
    "ConfigSource",
    "EncryptedValue",
    "PlainValue",
    "ResourceLocator",
    "SourceProvider",
    "EffectiveConfig",
    "merge",
    "scope",
    "EncryptionSettings",
    "MetaKey",
    "CipherState",
    "Transformation",
    "seal",
    "unseal",
    "SecretCipherEngine",
    "SecureBytes",
    "FileKeyStore",
    "KeyStoreAccessor",
    "KeyStoreError",
    "WaterfallConfig",
    "load_config",
]
