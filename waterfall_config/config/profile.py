"""
Profile 作用域

激活 profile 后，查找被重新定位到该 profile 的子树：
1. 外部应用文件包含该子树时，以子树为基础，回退到环境变量、进程属性
2. 否则以环境变量为基础，回退到进程属性
3. 包内应用配置也包含该子树时，追加为下一层回退
4. 参考配置始终作为最后一层回退

外部文件和包内应用配置中位于子树之外的键在此模式下不可见。
"""

import logging
from typing import Optional

from .precedence import EffectiveConfig, merge
from .sources import ConfigSource

logger = logging.getLogger(__name__)


def scope(
    active_profile: Optional[str],
    external: ConfigSource,
    environment: ConfigSource,
    properties: ConfigSource,
    app_resource: ConfigSource,
    common: ConfigSource,
) -> EffectiveConfig:
    """按 profile 构造最终配置视图"""
    if active_profile is None:
        return merge([external, environment, properties, app_resource, common])

    chain: list[ConfigSource] = []
    if external.has_subtree(active_profile):
        chain.append(external.subtree(active_profile))
    else:
        logger.debug(f"{external.name} has no section for profile {active_profile}")
    chain.extend([environment, properties])

    if app_resource.has_subtree(active_profile):
        chain.append(app_resource.subtree(active_profile))

    chain.append(common)

    effective = merge(chain)
    logger.info(f"Configuration scoped to profile {active_profile}: {effective!r}")
    return effective
