"""
配置源加载模块

把各种来源统一为扁平的 "点号路径 -> 值" 映射：
- 包内参考配置 (config/common.*)
- 包内应用配置 (config/application.yaml)
- 工作目录下的外部应用配置文件
- 环境变量
- 进程属性 (由宿主程序传入)

值在加载时一次性分类为 PlainValue / EncryptedValue / 字符串列表，
之后的读取不再做字符串前后缀判断。
"""

import io
import json
import logging
import os
import re
import tomllib
from dataclasses import dataclass, field
from importlib import resources as importlib_resources
from importlib.resources.abc import Traversable
from pathlib import Path, PurePosixPath
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional, Union

import yaml
from dotenv import dotenv_values

from .errors import SourceError

logger = logging.getLogger(__name__)

CIPHER_MARKER = re.compile(r"^cipher\((?P<payload>.*)\)$", re.DOTALL)

# 未指定扩展名时依次尝试
ANY_SYNTAX_SUFFIXES = (".yaml", ".yml", ".json", ".toml", ".env")


@dataclass(frozen=True)
class PlainValue:
    """普通字符串值"""
    text: str


@dataclass(frozen=True)
class EncryptedValue:
    """cipher(<base64>) 形式的加密值"""
    ciphertext: str

    @property
    def raw(self) -> str:
        return f"cipher({self.ciphertext})"


ConfigValue = Union[PlainValue, EncryptedValue, tuple[str, ...]]


def classify(text: str) -> Union[PlainValue, EncryptedValue]:
    """识别 cipher 标记"""
    match = CIPHER_MARKER.match(text)
    if match:
        return EncryptedValue(match.group("payload"))
    return PlainValue(text)


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _to_value(value: Any) -> ConfigValue:
    if isinstance(value, (list, tuple)):
        # 列表元素保持原样，不识别 cipher 标记
        return tuple(_scalar_text(item) for item in value if item is not None)
    if isinstance(value, str):
        return classify(value)
    return PlainValue(_scalar_text(value))


def flatten(data: Mapping[str, Any], prefix: str = "") -> dict[str, ConfigValue]:
    """将嵌套映射展开为点号路径"""
    flat: dict[str, ConfigValue] = {}
    for key, value in data.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping):
            flat.update(flatten(value, path))
        elif value is not None:
            flat[path] = _to_value(value)
    return flat


@dataclass(frozen=True)
class ConfigSource:
    """
    单个配置源

    加载后不可变；优先级由它在链中的位置决定。
    """
    name: str
    entries: Mapping[str, ConfigValue] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "entries", MappingProxyType(dict(self.entries)))

    @classmethod
    def from_mapping(cls, name: str, data: Mapping[str, Any]) -> "ConfigSource":
        return cls(name=name, entries=flatten(data))

    @classmethod
    def empty(cls, name: str) -> "ConfigSource":
        return cls(name=name)

    def get(self, key: str) -> Optional[ConfigValue]:
        return self.entries.get(key)

    def __contains__(self, key: str) -> bool:
        return key in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self.entries)

    def has_subtree(self, path: str) -> bool:
        """是否存在以 path 为前缀的对象"""
        prefix = path + "."
        return any(key.startswith(prefix) for key in self.entries)

    def value_prefix(self, path: str) -> Optional[str]:
        """path 的某个上级路径在本源中被定义为值时，返回该上级路径"""
        parts = path.split(".")
        for end in range(1, len(parts)):
            prefix = ".".join(parts[:end])
            if prefix in self.entries:
                return prefix
        return None

    def subtree(self, path: str) -> "ConfigSource":
        """以 path 为新根的子配置"""
        prefix = path + "."
        return ConfigSource(
            name=f"{self.name}[{path}]",
            entries={
                key[len(prefix):]: value
                for key, value in self.entries.items()
                if key.startswith(prefix)
            },
        )


def parse_document(name: str, text: str) -> dict[str, Any]:
    """按扩展名解析配置文档"""
    suffix = PurePosixPath(name).suffix.lower()

    try:
        if suffix == ".json":
            data = json.loads(text)
        elif suffix in (".yml", ".yaml"):
            data = yaml.safe_load(text)
        elif suffix == ".toml":
            data = tomllib.loads(text)
        elif suffix == ".env":
            data = {
                key: value
                for key, value in dotenv_values(stream=io.StringIO(text)).items()
                if value is not None
            }
        else:
            logger.warning(f"Unknown config file format: {suffix}")
            return {}
    except (json.JSONDecodeError, yaml.YAMLError, tomllib.TOMLDecodeError) as e:
        raise SourceError(f"Failed to parse {name}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise SourceError(
            f"Config root of {name} must be a mapping, got {type(data).__name__}"
        )
    return data


class ResourceLocator:
    """
    包内资源定位

    资源根目录可以是一个 Python 包 (importlib.resources)，
    也可以是一个普通目录 (默认当前工作目录)。
    """

    def __init__(
        self,
        package: Optional[str] = None,
        base_dir: Optional[Union[str, Path]] = None,
    ):
        if package is not None:
            try:
                self._root: Traversable = importlib_resources.files(package)
            except ModuleNotFoundError as e:
                raise SourceError(f"Resource package not found: {package}") from e
        else:
            self._root = Path(base_dir) if base_dir is not None else Path.cwd()

    def find(self, name: str) -> Optional[Traversable]:
        candidate = self._root.joinpath(*PurePosixPath(name).parts)
        return candidate if candidate.is_file() else None

    def read_bytes(self, name: str) -> Optional[bytes]:
        resource = self.find(name)
        return resource.read_bytes() if resource is not None else None

    def load(self, name: str) -> ConfigSource:
        """加载资源；资源不存在时返回空配置源"""
        resource = self.find(name)
        if resource is None:
            logger.debug(f"Resource {name} not found under {self._root}")
            return ConfigSource.empty(name)
        try:
            text = resource.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise SourceError(f"Failed to read resource {name}: {e}") from e
        return ConfigSource.from_mapping(name, parse_document(name, text))

    def load_any_syntax(self, name: str) -> ConfigSource:
        """name 无扩展名时依次尝试支持的格式，取第一个存在的"""
        if PurePosixPath(name).suffix:
            return self.load(name)
        for suffix in ANY_SYNTAX_SUFFIXES:
            if self.find(name + suffix) is not None:
                return self.load(name + suffix)
        logger.debug(f"No resource found for {name} in any syntax")
        return ConfigSource.empty(name)


def load_file(path: Union[str, Path]) -> ConfigSource:
    """加载文件系统上的配置文件；文件不存在时返回空配置源"""
    path = Path(path)
    if not path.is_file():
        logger.debug(f"Config file {path} not found")
        return ConfigSource.empty(str(path))
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise SourceError(f"Failed to read {path}: {e}") from e
    return ConfigSource.from_mapping(str(path), parse_document(path.name, text))


class SourceProvider:
    """
    配置源提供者

    Args:
        resources: 包内资源定位器
        working_dir: 外部应用配置文件所在目录 (默认当前工作目录)
        environ: 环境变量映射 (默认 os.environ)
        properties: 进程属性映射
    """

    def __init__(
        self,
        resources: ResourceLocator,
        working_dir: Optional[Union[str, Path]] = None,
        environ: Optional[Mapping[str, str]] = None,
        properties: Optional[Mapping[str, Any]] = None,
    ):
        self.resources = resources
        self.working_dir = Path(working_dir) if working_dir is not None else Path.cwd()
        self._environ = environ
        self._properties = properties or {}

    def reference(self, name: str) -> ConfigSource:
        return self.resources.load_any_syntax(name)

    def application_resource(self, name: str) -> ConfigSource:
        return self.resources.load(name)

    def external_file(self, app_resource: str) -> ConfigSource:
        """外部文件只按文件名在工作目录中查找"""
        return load_file(self.working_dir / PurePosixPath(app_resource).name)

    def environment(self) -> ConfigSource:
        environ = self._environ if self._environ is not None else os.environ
        return ConfigSource.from_mapping("environment", dict(environ))

    def properties(self) -> ConfigSource:
        return ConfigSource.from_mapping("properties", self._properties)
