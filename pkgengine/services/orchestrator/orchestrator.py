"""安装编排器 - 驱动具名状态机

职责:
- 按状态转移依次调用步骤，直到 DONE / PARTIAL_FAILURE
- 单个包失败不终止运行，结果中逐个列出失败原因
- 离线缓存预置（populate）与按命令补装（ensure_commands）
"""

from __future__ import annotations

import logging
import shutil
from typing import Callable, Iterable

from pkgengine.core.dep.catalog import missing_commands, packages_for_commands
from pkgengine.core.models import InstallationResult
from pkgengine.services.container import ServiceContainer
from pkgengine.services.orchestrator.models import (
    TERMINAL_STATES,
    OrchestratorState,
    RunContext,
)
from pkgengine.services.orchestrator.steps import InstallSteps

logger = logging.getLogger(__name__)


def _normalize(keys: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(k.strip() for k in keys if k and k.strip()))


class InstallOrchestrator:
    """安装状态机: 检查 → 系统包管理器 → 解析获取 → 缓存安装"""

    def __init__(self, container: ServiceContainer | None = None) -> None:
        self.c = container or ServiceContainer()
        self.steps = InstallSteps(self.c)
        self._handlers: dict[OrchestratorState, Callable[[RunContext], OrchestratorState]] = {
            OrchestratorState.CHECK_INSTALLED: self.steps.check_installed,
            OrchestratorState.TRY_SYSTEM_MANAGER: self.steps.try_system_manager,
            OrchestratorState.RESOLVE_AND_ACQUIRE: self.steps.resolve_and_acquire,
            OrchestratorState.INSTALL_FROM_CACHE: self.steps.install_from_cache,
        }

    def ensure(self, keys: Iterable[str]) -> InstallationResult:
        """确保一组包已安装；返回聚合结果，不因单包失败抛异常"""
        ctx = RunContext(result=InstallationResult(requested=_normalize(keys)))
        if not ctx.result.requested:
            logger.info("没有需要安装的包")
            return ctx.result

        state = OrchestratorState.CHECK_INSTALLED
        while state not in TERMINAL_STATES:
            logger.debug("状态: %s", state.value)
            state = self._handlers[state](ctx)

        if state == OrchestratorState.PARTIAL_FAILURE:
            for key in ctx.result.failed:
                logger.error("  %s: %s", key, ctx.result.reasons.get(key, ""))
        logger.info("安装结束 [%s]: %s", state.value, ctx.result.summary())
        return ctx.result

    def populate(self, keys: Iterable[str]) -> InstallationResult:
        """只获取不安装: 把完整依赖闭包下载到缓存，供离线环境使用

        结果中的 installed 表示已缓存（并校验通过）的包。
        """
        result = InstallationResult(requested=_normalize(keys))
        if not result.requested:
            return result

        self.c.cache.purge_partials()
        resolution = self.c.resolver(
            offline=self.c.config.offline, skip_installed=False,
        ).resolve(result.requested)

        for key in resolution.order:
            if resolution.outcomes[key].ok:
                result.installed.append(key)
        for key in resolution.failed:
            result.mark_failed(key, resolution.outcomes[key].reason)
        result.unresolved_dependencies = sorted(resolution.unresolved)
        result.steps.append({
            "step": "populate", "status": "done",
            "cached": list(result.installed), "failed": list(result.failed),
        })
        logger.info("缓存预置完成: 已缓存 %d 个, 失败 %d 个", result.installed_count, result.failed_count)
        return result

    def ensure_commands(
        self,
        commands: Iterable[str],
        which: Callable[[str], str | None] = shutil.which,
    ) -> InstallationResult:
        """为 PATH 中缺失的命令安装对应的包"""
        missing = missing_commands(commands, which)
        if not missing:
            logger.info("所需命令均已存在")
            return InstallationResult()
        packages = packages_for_commands(missing)
        logger.info("缺少命令 %s，安装: %s", ", ".join(missing), ", ".join(packages))
        return self.ensure(packages)
