"""pkgengine - 安装器依赖包获取与解析引擎

对外只暴露一个入口 ensure()：保证一组包已安装到当前系统，
在线时走系统包管理器 / 远程下载，离线时走本地预置缓存。
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pkgengine.core.config import Config
    from pkgengine.core.models import InstallationResult

__version__ = "0.3.0"


def ensure(keys: list[str], config: Config | None = None) -> InstallationResult:
    """保证 keys 中的包均已安装，返回聚合结果（供其他安装阶段调用）"""
    from pkgengine.services.container import ServiceContainer
    with ServiceContainer(config=config) as container:
        return container.orchestrator.ensure(keys)
