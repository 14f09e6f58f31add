"""编排器数据模型

- OrchestratorState: 安装状态机的具名状态
- RunContext: 单次运行的显式状态（按引用在步骤间传递）
- next_after_*: 状态转移判定，纯函数，可单独测试
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from pkgengine.core.dep.resolver import Resolution
from pkgengine.core.exceptions import InstallationError
from pkgengine.core.models import InstallationResult


class OrchestratorState(str, Enum):
    CHECK_INSTALLED = "check_installed"
    TRY_SYSTEM_MANAGER = "try_system_manager"
    RESOLVE_AND_ACQUIRE = "resolve_and_acquire"
    INSTALL_FROM_CACHE = "install_from_cache"
    DONE = "done"
    PARTIAL_FAILURE = "partial_failure"


TERMINAL_STATES = frozenset({OrchestratorState.DONE, OrchestratorState.PARTIAL_FAILURE})


@dataclass
class RunContext:
    """单次 ensure 运行的状态，不跨运行保留"""

    result: InstallationResult
    missing: list[str] = field(default_factory=list)
    online: bool = False
    resolution: Resolution | None = None
    install_errors: dict[str, InstallationError] = field(default_factory=dict)


# =========================================================================
# 状态转移
# =========================================================================

def next_after_check(missing: list[str], *, online: bool) -> OrchestratorState:
    """检查已安装之后: 全部满足则结束；离线或探测失败时跳过系统包管理器"""
    if not missing:
        return OrchestratorState.DONE
    if online:
        return OrchestratorState.TRY_SYSTEM_MANAGER
    return OrchestratorState.RESOLVE_AND_ACQUIRE


def next_after_system_manager(still_missing: list[str]) -> OrchestratorState:
    if not still_missing:
        return OrchestratorState.DONE
    return OrchestratorState.RESOLVE_AND_ACQUIRE


def next_after_resolve() -> OrchestratorState:
    # 部分失败也要继续安装已获取到的制品
    return OrchestratorState.INSTALL_FROM_CACHE


def next_after_install(result: InstallationResult) -> OrchestratorState:
    if result.failed:
        return OrchestratorState.PARTIAL_FAILURE
    return OrchestratorState.DONE
