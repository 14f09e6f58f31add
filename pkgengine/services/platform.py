"""平台协作者 - 包数据库与网络连通性

引擎只通过这几个窄接口接触目标系统:
  - 包 X 是否已安装？              PackageDatabase.is_installed
  - 安装已校验的制品文件           PackageDatabase.install_files
  - 从系统仓库安装（在线第一层）   PackageDatabase.install_from_repositories
  - 修复残缺依赖                   PackageDatabase.fix_broken
  - 网络是否可达？                 ConnectivityProbe.is_online

默认实现基于 dpkg / apt-get / ping，经由 CommandExecutor 调用，测试时可替换。
包管理器持有系统级锁，这里的所有调用都是同步串行的。
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Protocol, Sequence

from pkgengine.utils.shell import CommandExecutor, CommandResult, LocalExecutor

logger = logging.getLogger(__name__)


# =========================================================================
# 协议
# =========================================================================

class PackageDatabase(Protocol):
    """平台包数据库协议"""

    def is_installed(self, key: str) -> bool:
        ...

    def install_files(self, paths: Sequence[Path]) -> CommandResult:
        ...

    def install_from_repositories(self, keys: Sequence[str]) -> CommandResult:
        ...

    def fix_broken(self) -> CommandResult:
        ...


class ConnectivityProbe(Protocol):
    """网络可达性探测协议"""

    def is_online(self) -> bool:
        ...


# =========================================================================
# 默认实现: apt / dpkg
# =========================================================================

class AptPackageDatabase:
    """基于 dpkg-query / apt-get 的包数据库"""

    def __init__(
        self,
        executor: CommandExecutor | None = None,
        *,
        install_timeout: float = 1800,
    ) -> None:
        self._executor = executor or LocalExecutor()
        self.install_timeout = install_timeout

    @staticmethod
    def _env() -> dict[str, str]:
        return {**os.environ, "DEBIAN_FRONTEND": "noninteractive"}

    def is_installed(self, key: str) -> bool:
        r = self._executor.execute(["dpkg-query", "-W", "-f=${Status}", key])
        return r.success and "ok installed" in r.stdout

    def install_files(self, paths: Sequence[Path]) -> CommandResult:
        """安装本地制品文件，依赖展开交给 apt"""
        args = [str(Path(p).resolve()) for p in paths]
        logger.info("安装本地制品 (%d 个): %s", len(args), ", ".join(Path(a).name for a in args))
        return self._run_apt(["apt-get", "install", "-y", "--no-install-recommends", *args])

    def install_from_repositories(self, keys: Sequence[str]) -> CommandResult:
        update = self._executor.execute(
            ["apt-get", "update"], env=self._env(), timeout=self.install_timeout,
        )
        if not update.success:
            logger.warning("apt-get update 失败，仓库或网络可能有问题: %s", update.stderr.strip()[:300])
        logger.info("从系统仓库安装: %s", ", ".join(keys))
        return self._run_apt(["apt-get", "install", "-y", "--no-install-recommends", *keys])

    def fix_broken(self) -> CommandResult:
        logger.info("尝试修复残缺依赖: apt-get --fix-broken install")
        return self._run_apt(["apt-get", "--fix-broken", "install", "-y"])

    def _run_apt(self, argv: list[str]) -> CommandResult:
        r = self._executor.execute(argv, env=self._env(), timeout=self.install_timeout)
        if not r.success:
            logger.warning(
                "%s 失败 (rc=%d): %s", " ".join(argv[:2]), r.returncode, r.stderr.strip()[:500],
            )
        return r


# =========================================================================
# 默认实现: ping 探测
# =========================================================================

class PingProbe:
    """依次 ping 若干知名主机，任一可达即视为在线"""

    def __init__(
        self,
        hosts: Iterable[str] = ("8.8.8.8", "1.1.1.1"),
        *,
        timeout: int = 3,
        executor: CommandExecutor | None = None,
    ) -> None:
        self.hosts = list(hosts)
        self.timeout = timeout
        self._executor = executor or LocalExecutor()

    def is_online(self) -> bool:
        for host in self.hosts:
            r = self._executor.execute(
                ["ping", "-c", "1", "-W", str(self.timeout), host],
                timeout=self.timeout + 2,
            )
            if r.success:
                logger.info("网络可达: %s", host)
                return True
            logger.debug("ping %s 失败 (rc=%d)", host, r.returncode)
        logger.warning("网络不可达（已探测: %s）", ", ".join(self.hosts) or "无")
        return False
