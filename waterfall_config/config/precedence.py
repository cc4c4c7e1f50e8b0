"""
优先级合并

按给定顺序组合配置源，第一个定义某键的源胜出。
"""

import logging
from typing import Iterable, Optional, Sequence

from .errors import ConfigurationMissing, ConfigurationWrongType
from .meta import MetaKey
from .sources import ConfigSource, ConfigValue, EncryptedValue, PlainValue

logger = logging.getLogger(__name__)

_TRUE_WORDS = {"true", "yes", "on"}
_FALSE_WORDS = {"false", "no", "off"}


def parse_boolean(key: str, text: str) -> bool:
    """true/yes/on 与 false/no/off，大小写不敏感"""
    word = text.strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    raise ConfigurationWrongType(key, expected="boolean", found=f"string '{word}'")


class EffectiveConfig:
    """
    合并后的配置视图 (不可变)

    对任一键，返回链中第一个定义它的源的值；
    较低优先级的源只在所有较高优先级源都未定义该键时才被查询。
    """

    def __init__(self, sources: Iterable[ConfigSource]):
        self._sources: tuple[ConfigSource, ...] = tuple(sources)

    @property
    def sources(self) -> tuple[ConfigSource, ...]:
        return self._sources

    def with_fallback(self, source: ConfigSource) -> "EffectiveConfig":
        return EffectiveConfig(self._sources + (source,))

    def _owner(self, key: str) -> Optional[ConfigSource]:
        """第一个涉及该键的源：定义了该键、以它为对象，或把它的某个上级定义为值"""
        for source in self._sources:
            if key in source or source.has_subtree(key) or source.value_prefix(key):
                return source
        return None

    def find(self, key: str) -> Optional[ConfigValue]:
        source = self._owner(key)
        return source.get(key) if source is not None else None

    def origin(self, key: str) -> Optional[str]:
        """定义该键的源名称"""
        source = self._owner(key)
        if source is not None and key in source:
            return source.name
        return None

    def has_path(self, key: str) -> bool:
        return self.find(key) is not None

    def lookup(self, key: str) -> ConfigValue:
        source = self._owner(key)
        if source is None:
            raise ConfigurationMissing(key)
        value = source.get(key)
        if value is not None:
            return value
        if source.has_subtree(key):
            raise ConfigurationWrongType(key, expected="value", found="object")
        prefix = source.value_prefix(key)
        raise ConfigurationWrongType(prefix, expected="object", found="value")

    def get_value(self, key: str) -> ConfigValue:
        """标量值 (PlainValue 或 EncryptedValue)"""
        value = self.lookup(key)
        if isinstance(value, tuple):
            raise ConfigurationWrongType(key, expected="string", found="list")
        return value

    def get_string(self, key: str) -> str:
        """原始字符串，加密值按原样返回"""
        value = self.get_value(key)
        if isinstance(value, EncryptedValue):
            return value.raw
        return value.text

    def get_boolean(self, key: str) -> bool:
        return parse_boolean(key, self.get_string(key))

    def get_list(self, key: str) -> list[str]:
        value = self.lookup(key)
        if not isinstance(value, tuple):
            raise ConfigurationWrongType(key, expected="list", found="string")
        return list(value)

    def keys(self) -> list[str]:
        seen: set[str] = set()
        for source in self._sources:
            seen.update(source)
        # 被高优先级源遮蔽的键不可见
        return sorted(key for key in seen if self.find(key) is not None)

    def as_dict(self) -> dict[str, object]:
        """所有键的原始值 (加密值不解密)"""
        result: dict[str, object] = {}
        for key in self.keys():
            value = self.find(key)
            if isinstance(value, tuple):
                result[key] = list(value)
            elif isinstance(value, EncryptedValue):
                result[key] = value.raw
            elif isinstance(value, PlainValue):
                result[key] = value.text
        return result

    def __repr__(self) -> str:
        chain = " -> ".join(source.name for source in self._sources)
        return f"EffectiveConfig({chain})"


def merge(sources: Sequence[ConfigSource]) -> EffectiveConfig:
    """按优先级合并配置源"""
    return EffectiveConfig(sources)


def discover_app_resource(
    environment: ConfigSource,
    properties: ConfigSource,
    reference: ConfigSource,
    default: str,
) -> str:
    """
    计算应用配置资源名

    外部文件和包内应用配置都依赖这个名字，因此只能从
    环境变量 -> 进程属性 -> 参考配置 中读取覆盖值。
    """
    chain = merge([environment, properties, reference])
    if chain.has_path(MetaKey.APP_RESOURCE.value):
        name = chain.get_string(MetaKey.APP_RESOURCE.value)
        logger.debug(f"Application resource overridden: {name}")
        return name
    return default


def discover_active_profile(chain: EffectiveConfig) -> Optional[str]:
    """从完整优先级链读取激活的 profile，空白视为未设置"""
    if not chain.has_path(MetaKey.ACTIVE_PROFILE.value):
        return None
    profile = chain.get_string(MetaKey.ACTIVE_PROFILE.value).strip()
    if not profile:
        logger.warning("Active profile key is set but blank, ignoring it")
        return None
    return profile
