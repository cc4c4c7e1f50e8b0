"""
瀑布式配置加载器

核心功能：
- 多源加载与优先级合并 (外部文件 > 环境变量 > 进程属性 > 包内应用配置 > 参考配置)
- profile 作用域
- cipher(...) 值读取时自动解密
- 可选审计日志

WaterfallConfig 在进程启动时显式构造一次，然后按引用传给使用方；
构造失败时抛出 InitializationFailed，不存在半初始化的实例。
"""

import logging
import time
import uuid
from functools import partial
from pathlib import Path
from typing import Any, Callable, Literal, Mapping, Optional, Union, overload

from pydantic import ValidationError

from ..security.audit import AuditLogger
from .crypto import SecretCipherEngine
from .errors import (
    ConfigurationMissing,
    ConfigurationWrongType,
    DecryptionFailed,
    EncryptionNotEnabled,
    InitializationFailed,
    SourceError,
)
from .keystore import FileKeyStore, KeyStoreAccessor, KeyStoreError
from .meta import ENCRYPTION_FIELDS, EncryptionSettings, MetaKey
from .precedence import (
    EffectiveConfig,
    discover_active_profile,
    discover_app_resource,
    merge,
    parse_boolean,
)
from .profile import scope
from .sources import EncryptedValue, ResourceLocator, SourceProvider

logger = logging.getLogger(__name__)

# (密钥库路径, 存储口令) -> 密钥库；打不开时应抛出 KeyStoreError 或 OSError
KeyStoreLoader = Callable[[str, str], KeyStoreAccessor]


def open_keystore(resources: ResourceLocator, path: str, store_password: str) -> FileKeyStore:
    """先在资源根目录查找密钥库，再回退到文件系统"""
    try:
        data = resources.read_bytes(path)
    except OSError as e:
        raise KeyStoreError(f"Cannot read key store {path}: {e}") from e
    if data is not None:
        return FileKeyStore.from_bytes(data, store_password, source=path)
    if Path(path).is_file():
        return FileKeyStore.open(path, store_password)
    raise KeyStoreError(f"Key store not found: {path}")


class WaterfallConfig:
    """
    配置门面

    只读：构造完成后配置视图、profile 和解密引擎都不再改变，
    可以在多线程中直接读取。
    """

    REFERENCE_RESOURCE = "config/common"
    DEFAULT_APPLICATION_RESOURCE = "config/application.yaml"

    def __init__(
        self,
        config: EffectiveConfig,
        active_profile: Optional[str] = None,
        cipher: Optional[SecretCipherEngine] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._config = config
        self._active_profile = active_profile
        self._cipher = cipher
        self._audit = audit_logger
        self.instance_id = uuid.uuid4()

    @classmethod
    def load(
        cls,
        *,
        resource_package: Optional[str] = None,
        resource_dir: Optional[Union[str, Path]] = None,
        working_dir: Optional[Union[str, Path]] = None,
        environ: Optional[Mapping[str, str]] = None,
        properties: Optional[Mapping[str, Any]] = None,
        keystore_loader: Optional[KeyStoreLoader] = None,
        audit_logger: Optional[AuditLogger] = None,
    ) -> "WaterfallConfig":
        """
        加载并解析全部配置源

        Args:
            resource_package: 包内资源所在的 Python 包
            resource_dir: 包内资源目录 (未指定包时使用，默认当前目录)
            working_dir: 外部应用配置文件所在目录 (默认当前目录)
            environ: 环境变量 (默认 os.environ)
            properties: 进程属性
            keystore_loader: 自定义密钥库打开方式
            audit_logger: 审计日志记录器

        Raises:
            InitializationFailed: 配置源无法解析，或加密已启用但无法初始化
        """
        start = time.perf_counter()
        try:
            resources = ResourceLocator(package=resource_package, base_dir=resource_dir)
            provider = SourceProvider(
                resources, working_dir=working_dir, environ=environ, properties=properties
            )

            common = provider.reference(cls.REFERENCE_RESOURCE)
            environment = provider.environment()
            props = provider.properties()

            app_resource_name = discover_app_resource(
                environment, props, common, cls.DEFAULT_APPLICATION_RESOURCE
            )
            external = provider.external_file(app_resource_name)
            app_resource = provider.application_resource(app_resource_name)

            active_profile = discover_active_profile(
                merge([external, environment, props, app_resource, common])
            )
            config = scope(active_profile, external, environment, props, app_resource, common)

            cipher = None
            if config.has_path(MetaKey.ENCRYPTION_ENABLED.value) and config.get_boolean(
                MetaKey.ENCRYPTION_ENABLED.value
            ):
                cipher = cls._init_cipher(
                    config,
                    keystore_loader or partial(open_keystore, resources),
                    audit_logger,
                )
        except SourceError as e:
            logger.error(f"Could not load configuration sources: {e}")
            raise InitializationFailed(f"Could not load configuration sources: {e}") from e
        except ConfigurationMissing as e:
            logger.error(f"Invalid meta configuration: {e}")
            raise InitializationFailed(f"Invalid meta configuration: {e}", key=e.key) from e

        instance = cls(config, active_profile, cipher, audit_logger)
        logger.debug(
            f"Config {instance.instance_id} initialization took "
            f"{time.perf_counter() - start:.6f}s"
        )
        logger.debug(f"Encryption configured: {cipher is not None}")
        return instance

    @staticmethod
    def _init_cipher(
        config: EffectiveConfig,
        keystore_loader: KeyStoreLoader,
        audit_logger: Optional[AuditLogger],
    ) -> SecretCipherEngine:
        """读取加密设置、打开密钥库并初始化解密引擎"""
        values = {
            field_name: config.get_string(meta_key.value)
            for field_name, meta_key in ENCRYPTION_FIELDS.items()
            if config.has_path(meta_key.value)
        }
        try:
            settings = EncryptionSettings(**values)
        except ValidationError as e:
            problems = ", ".join(
                f"{ENCRYPTION_FIELDS[str(err['loc'][0])].value}: {err['msg']}"
                for err in e.errors()
            )
            logger.error(f"Invalid encryption settings: {problems}")
            raise InitializationFailed(f"Invalid encryption settings: {problems}") from e

        logger.debug(f"Initializing encryption with {settings.summary()}")
        try:
            keystore = keystore_loader(
                settings.keystore_path, settings.keystore_password.get_secret_value()
            )
            if not keystore.contains_alias(settings.key_alias):
                raise KeyStoreError(
                    f"The key {settings.key_alias} was not found in the key store {settings.keystore_path}"
                )
            key = keystore.load_key(settings.key_alias, settings.key_password.get_secret_value())
            cipher = SecretCipherEngine(settings.algorithm, settings.key_type, key, settings.iv_bytes)
        except (KeyStoreError, OSError, InitializationFailed) as e:
            logger.error(
                "Could not initialize the encryption scheme from the provided keystore and config data"
            )
            if audit_logger:
                audit_logger.cipher_init(settings.keystore_path, settings.algorithm, error=str(e))
            if isinstance(e, InitializationFailed):
                raise
            raise InitializationFailed(f"Could not initialize the encryption scheme: {e}") from e

        if audit_logger:
            audit_logger.cipher_init(settings.keystore_path, str(cipher.transformation))
        logger.info(f"Encryption enabled with {cipher.transformation}")
        return cipher

    @property
    def active_profile(self) -> Optional[str]:
        return self._active_profile

    @property
    def encryption_enabled(self) -> bool:
        return self._cipher is not None and self._cipher.ready

    @overload
    def get(self, key: str) -> str: ...

    @overload
    def get(self, key: str, multivalued: Literal[True]) -> list[str]: ...

    @overload
    def get(self, key: str, multivalued: bool) -> Union[str, list[str]]: ...

    def get(self, key: str, multivalued: bool = False) -> Union[str, list[str]]:
        """
        获取配置值

        Args:
            key: 点号路径，如 "database.host"
            multivalued: 为 True 时按字符串列表读取 (实验性)。
                列表元素不做 cipher(...) 解密，加密列表不受支持。

        Raises:
            ConfigurationMissing: 键不存在 (或类型不符，ConfigurationWrongType)
            EncryptionNotEnabled: 值已加密但未启用加密
            DecryptionFailed: 密文无法解密
        """
        start = time.perf_counter()
        if multivalued:
            values = self._config.get_list(key)
            logger.debug(f"Access to config {self.instance_id} took {time.perf_counter() - start:.6f}s")
            return values

        value = self._config.get_value(key)
        if isinstance(value, EncryptedValue):
            text = self._decrypt(key, value)
        else:
            text = value.text
        logger.debug(
            f"Access to config {self.instance_id} to read {key} took {time.perf_counter() - start:.6f}s"
        )
        return text

    def get_bool(self, key: str) -> bool:
        return parse_boolean(key, self.get(key))

    def get_int(self, key: str) -> int:
        text = self.get(key)
        try:
            return int(text.strip())
        except ValueError:
            raise ConfigurationWrongType(key, expected="integer", found=f"string '{text}'")

    def _decrypt(self, key: str, value: EncryptedValue) -> str:
        if self._cipher is None:
            raise EncryptionNotEnabled(key)

        try:
            text = self._cipher.decrypt(value.ciphertext).decode("utf-8")
        except (DecryptionFailed, UnicodeDecodeError) as e:
            logger.error(f"Error trying to decrypt key {key}")
            if self._audit:
                self._audit.secret_read(key, error=type(e).__name__)
            raise DecryptionFailed(f"Could not decrypt config value for key '{key}'", key=key) from e

        if self._audit:
            self._audit.secret_read(key)
        return text

    def keys(self) -> list[str]:
        return self._config.keys()

    def __contains__(self, key: str) -> bool:
        return self._config.has_path(key)

    def __repr__(self) -> str:
        return (
            f"WaterfallConfig(id={self.instance_id}, profile={self._active_profile!r}, "
            f"encryption={self.encryption_enabled})"
        )


def load_config(**kwargs: Any) -> WaterfallConfig:
    """便捷函数：加载配置"""
    return WaterfallConfig.load(**kwargs)
