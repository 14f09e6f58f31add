"""核心数据模型

所有核心数据类集中定义，消除 registry ↔ fetcher ↔ orchestrator 的循环依赖。
其他模块统一从此处导入 PackageSource / CacheEntry / AcquisitionOutcome /
InstallationResult。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from pathlib import Path
from typing import Any

from pkgengine.utils.net import filename_from_url

# =========================================================================
# 源注册表与缓存
# =========================================================================


@dataclass(frozen=True)
class PackageSource:
    """单个包的下载源（加载后不可变，按 key 唯一）"""

    key: str
    url: str
    checksum: str = ""          # sha256 十六进制，空表示未声明
    version: str = ""
    arch: str = ""
    display_name: str = ""

    @property
    def filename(self) -> str:
        """缓存中的文件名，由 URL 推导"""
        return filename_from_url(self.url)

    @property
    def label(self) -> str:
        return self.display_name or self.key


@dataclass(frozen=True)
class CacheEntry:
    """缓存目录中的一个制品文件"""

    path: Path
    source_key: str

    def exists(self) -> bool:
        return self.path.is_file()


# =========================================================================
# 获取结果
# =========================================================================


class OutcomeStatus(str, Enum):
    """单包获取的终态"""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED_ALREADY_VALID = "skipped_already_valid"


@dataclass
class AcquisitionOutcome:
    """单包单次运行的获取结果

    error_kind 取值: registry / network / integrity / offline / error
    """

    key: str
    status: OutcomeStatus
    reason: str = ""
    entry: CacheEntry | None = None
    attempts: int = 0
    error_kind: str = ""

    @property
    def ok(self) -> bool:
        return self.status != OutcomeStatus.FAILED

    @classmethod
    def failed(
        cls, key: str, reason: str, *, error_kind: str = "error", attempts: int = 0,
    ) -> AcquisitionOutcome:
        return cls(
            key=key, status=OutcomeStatus.FAILED, reason=reason,
            error_kind=error_kind, attempts=attempts,
        )


# =========================================================================
# 安装结果
# =========================================================================


class ExitStatus(IntEnum):
    """对外退出码约定"""

    OK = 0        # 全部满足
    CRITICAL = 1  # 一个都没满足
    PARTIAL = 2   # 部分满足，由调用方决定是否继续


@dataclass
class InstallationResult:
    """一组请求包的聚合安装结果

    failed 始终保留（即使整体成功），部分失败不会被吞掉。
    """

    requested: list[str] = field(default_factory=list)
    installed: list[str] = field(default_factory=list)
    already_satisfied: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    reasons: dict[str, str] = field(default_factory=dict)
    unresolved_dependencies: list[str] = field(default_factory=list)
    steps: list[dict[str, Any]] = field(default_factory=list)

    @property
    def installed_count(self) -> int:
        return len(self.installed)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def satisfied(self) -> list[str]:
        return [*self.already_satisfied, *self.installed]

    def mark_failed(self, key: str, reason: str) -> None:
        if key not in self.failed:
            self.failed.append(key)
        self.reasons[key] = reason

    @property
    def exit_status(self) -> ExitStatus:
        if not self.failed:
            return ExitStatus.OK
        if not self.satisfied:
            return ExitStatus.CRITICAL
        return ExitStatus.PARTIAL

    @property
    def exit_code(self) -> int:
        return int(self.exit_status)

    @property
    def success(self) -> bool:
        return self.exit_status == ExitStatus.OK

    def summary(self) -> str:
        parts = [
            f"已满足 {len(self.already_satisfied)}",
            f"已安装 {self.installed_count}",
            f"失败 {self.failed_count}",
        ]
        text = ", ".join(parts)
        if self.failed:
            text += f" ({', '.join(self.failed)})"
        return text
