"""
waterfall-config

分层配置解析与加密配置值的透明解密。
"""

from .config import (
    ConfigError,
    ConfigurationMissing,
    ConfigurationWrongType,
    DecryptionFailed,
    EncryptionNotEnabled,
    InitializationFailed,
    WaterfallConfig,
    load_config,
)

__version__ = "0.1.0"

__all__ = [
    "ConfigError",
    "ConfigurationMissing",
    "ConfigurationWrongType",
    "DecryptionFailed",
    "EncryptionNotEnabled",
    "InitializationFailed",
    "WaterfallConfig",
    "load_config",
]
