"""编排器步骤实现 - 4 步安装流程

步骤顺序（每步返回下一个状态）:
1. check_installed - 检查已安装 + 网络探测
2. try_system_manager - 在线时交给系统包管理器
3. resolve_and_acquire - 解析依赖闭包并获取制品
4. install_from_cache - 按依赖顺序安装已校验的制品，复查安装状态
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pkgengine.core.exceptions import InstallationError
from pkgengine.services.orchestrator.models import (
    OrchestratorState,
    RunContext,
    next_after_check,
    next_after_install,
    next_after_resolve,
    next_after_system_manager,
)

if TYPE_CHECKING:
    from pkgengine.services.container import ServiceContainer

logger = logging.getLogger(__name__)


class InstallSteps:
    """安装步骤集合"""

    def __init__(self, container: ServiceContainer) -> None:
        self.c = container

    def check_installed(self, ctx: RunContext) -> OrchestratorState:
        """步骤1: 区分已满足与缺失的包，缺失时探测网络"""
        result = ctx.result
        db = self.c.database
        for key in result.requested:
            if db.is_installed(key):
                result.already_satisfied.append(key)
            else:
                ctx.missing.append(key)

        if ctx.missing:
            ctx.online = self._connectivity()

        result.steps.append({
            "step": "check_installed", "status": "done",
            "satisfied": list(result.already_satisfied),
            "missing": list(ctx.missing), "online": ctx.online,
        })
        logger.info(
            "[Step 1] 已安装 %d 个, 缺失 %d 个%s",
            len(result.already_satisfied), len(ctx.missing),
            f": {', '.join(ctx.missing)}" if ctx.missing else "",
        )
        return next_after_check(ctx.missing, online=ctx.online)

    def try_system_manager(self, ctx: RunContext) -> OrchestratorState:
        """步骤2: 通过系统包管理器安装缺失的包"""
        db = self.c.database
        r = db.install_from_repositories(ctx.missing)

        still_missing: list[str] = []
        for key in ctx.missing:
            if db.is_installed(key):
                ctx.result.installed.append(key)
            else:
                still_missing.append(key)
        ctx.missing = still_missing

        ctx.result.steps.append({
            "step": "try_system_manager",
            "status": "done" if r.success else "failed",
            "returncode": r.returncode, "missing": list(still_missing),
        })
        logger.info(
            "[Step 2] 系统包管理器: rc=%d, 仍缺失 %d 个",
            r.returncode, len(still_missing),
        )
        return next_after_system_manager(still_missing)

    def resolve_and_acquire(self, ctx: RunContext) -> OrchestratorState:
        """步骤3: 解析传递闭包，获取并校验全部制品

        离线或网络不可达时只使用缓存中已有的制品。
        """
        self.c.cache.purge_partials()

        resolver = self.c.resolver(offline=not ctx.online)
        resolution = resolver.resolve(ctx.missing)
        ctx.resolution = resolution

        for dep in resolution.unresolved:
            if dep not in ctx.result.unresolved_dependencies:
                ctx.result.unresolved_dependencies.append(dep)

        ctx.result.steps.append({
            "step": "resolve_and_acquire", "status": "done",
            "mode": "online" if ctx.online else "cache_only",
            "order": list(resolution.order),
            "failed": list(resolution.failed),
            "unresolved": sorted(resolution.unresolved),
        })
        logger.info(
            "[Step 3] 依赖闭包 %d 个包, 获取失败 %d 个",
            len(resolution.order), len(resolution.failed),
        )
        return next_after_resolve()

    def install_from_cache(self, ctx: RunContext) -> OrchestratorState:
        """步骤4: 整批安装，失败则修复后逐个安装；最后复查安装状态"""
        db = self.c.database
        artifacts = ctx.resolution.artifacts() if ctx.resolution else []
        mode = "skipped"

        if artifacts:
            batch = db.install_files([entry.path for _, entry in artifacts])
            mode = "batch"
            if not batch.success:
                logger.warning(
                    "整批安装失败 (rc=%d)，修复依赖后逐个安装以定位失败的包",
                    batch.returncode,
                )
                mode = "individual"
                db.fix_broken()
                for key, entry in artifacts:
                    r = db.install_files([entry.path])
                    if not r.success:
                        detail = r.stderr.strip().splitlines()
                        ctx.install_errors[key] = InstallationError(
                            f"安装失败 (rc={r.returncode})"
                            + (f": {detail[-1]}" if detail else "")
                        )

        result = ctx.result
        for key in ctx.missing:
            if db.is_installed(key):
                result.installed.append(key)
            else:
                result.mark_failed(key, self._failure_reason(key, ctx))

        dep_failures = [k for k in ctx.install_errors if k not in result.requested]
        if dep_failures:
            logger.warning("依赖包安装失败: %s", ", ".join(dep_failures))

        result.steps.append({
            "step": "install_from_cache", "status": "done", "mode": mode,
            "artifacts": [key for key, _ in artifacts],
            "failed": list(result.failed),
        })
        logger.info("[Step 4] 安装完成: %s", result.summary())
        return next_after_install(result)

    # ------------------------------------------------------------------

    def _connectivity(self) -> bool:
        if self.c.config.offline:
            logger.info("已配置离线模式，跳过系统包管理器")
            return False
        return self.c.probe.is_online()

    @staticmethod
    def _failure_reason(key: str, ctx: RunContext) -> str:
        if key in ctx.install_errors:
            return str(ctx.install_errors[key])
        if ctx.resolution is not None:
            outcome = ctx.resolution.outcomes.get(key)
            if outcome is not None and not outcome.ok:
                return outcome.reason
        return "安装后仍未检测到该包"
