"""服务容器 - 统一依赖注入，按配置装配引擎各组件

同一容器内的实例共享状态（HTTP 连接池、注册表等）。
平台协作者（包数据库、网络探测、命令执行器、HTTP 客户端）均可注入，
测试时替换为 fake 即可跑通完整流程。

用法:
    with ServiceContainer(config=Config.load("configs/pkgengine.yml")) as c:
        result = c.orchestrator.ensure(["curl", "wget"])
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from pkgengine.core.config import Config

if TYPE_CHECKING:
    from pkgengine.core.dep.cache import CacheStore
    from pkgengine.core.dep.fetcher import ArtifactFetcher
    from pkgengine.core.dep.inspector import MetadataReader
    from pkgengine.core.dep.registry import SourceRegistry
    from pkgengine.core.dep.resolver import DependencyResolver
    from pkgengine.core.dep.verifier import IntegrityVerifier
    from pkgengine.services.orchestrator.orchestrator import InstallOrchestrator
    from pkgengine.services.platform import ConnectivityProbe, PackageDatabase
    from pkgengine.utils.shell import CommandExecutor

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器 - 每个实例持有一组共享的组件"""

    def __init__(
        self,
        config: Config | None = None,
        *,
        executor: CommandExecutor | None = None,
        client: httpx.Client | None = None,
        database: PackageDatabase | None = None,
        probe: ConnectivityProbe | None = None,
        reader: MetadataReader | None = None,
    ) -> None:
        self._config = config if config is not None else Config.load()
        self._instances: dict[str, object] = {}
        if executor is not None:
            self._instances["executor"] = executor
        if database is not None:
            self._instances["database"] = database
        if probe is not None:
            self._instances["probe"] = probe
        if reader is not None:
            self._instances["reader"] = reader
        self._client = client
        self._owns_client = client is None

    @property
    def config(self) -> Config:
        return self._config

    # ---- 平台协作者 ----

    @property
    def executor(self) -> CommandExecutor:
        if "executor" not in self._instances:
            from pkgengine.utils.shell import LocalExecutor
            self._instances["executor"] = LocalExecutor()
        return self._instances["executor"]  # type: ignore[return-value]

    @property
    def database(self) -> PackageDatabase:
        if "database" not in self._instances:
            from pkgengine.services.platform import AptPackageDatabase
            self._instances["database"] = AptPackageDatabase(
                self.executor, install_timeout=self._config.install_timeout,
            )
        return self._instances["database"]  # type: ignore[return-value]

    @property
    def probe(self) -> ConnectivityProbe:
        if "probe" not in self._instances:
            from pkgengine.services.platform import PingProbe
            self._instances["probe"] = PingProbe(
                self._config.probe_hosts,
                timeout=self._config.probe_timeout,
                executor=self.executor,
            )
        return self._instances["probe"]  # type: ignore[return-value]

    @property
    def http_client(self) -> httpx.Client:
        if self._client is None:
            cfg = self._config
            self._client = httpx.Client(
                timeout=httpx.Timeout(cfg.transfer_timeout, connect=cfg.connect_timeout),
                proxy=cfg.proxy_url,
                follow_redirects=True,
            )
            if cfg.proxy_url:
                logger.info("使用代理: %s", cfg.proxy_url)
        return self._client

    # ---- 引擎组件 ----

    @property
    def registry(self) -> SourceRegistry:
        if "registry" not in self._instances:
            from pkgengine.core.dep.registry import SourceRegistry
            self._instances["registry"] = SourceRegistry.load(self._config.registry_file)
        return self._instances["registry"]  # type: ignore[return-value]

    @property
    def cache(self) -> CacheStore:
        if "cache" not in self._instances:
            from pkgengine.core.dep.cache import CacheStore
            self._instances["cache"] = CacheStore(self._config.cache_dir)
        return self._instances["cache"]  # type: ignore[return-value]

    @property
    def verifier(self) -> IntegrityVerifier:
        if "verifier" not in self._instances:
            from pkgengine.core.dep.verifier import IntegrityVerifier
            cfg = self._config
            self._instances["verifier"] = IntegrityVerifier(
                skip_checksum=cfg.skip_checksum,
                verify_signature=cfg.verify_signature,
                gpg_keyring=cfg.gpg_keyring,
                verify_archive=cfg.verify_archive,
                executor=self.executor,
            )
        return self._instances["verifier"]  # type: ignore[return-value]

    @property
    def reader(self) -> MetadataReader:
        if "reader" not in self._instances:
            from pkgengine.core.dep.inspector import DebMetadataReader
            self._instances["reader"] = DebMetadataReader(self.executor)
        return self._instances["reader"]  # type: ignore[return-value]

    def fetcher(self, *, offline: bool | None = None) -> ArtifactFetcher:
        """按联网模式取获取器；同一模式复用同一实例"""
        mode = self._config.offline if offline is None else offline
        name = f"fetcher:{'offline' if mode else 'online'}"
        if name not in self._instances:
            from pkgengine.core.dep.fetcher import ArtifactFetcher
            cfg = self._config
            self._instances[name] = ArtifactFetcher(
                self.cache,
                self.verifier,
                max_retries=cfg.max_retries,
                retry_interval=cfg.retry_interval,
                connect_timeout=cfg.connect_timeout,
                transfer_timeout=cfg.transfer_timeout,
                offline=mode,
                force_redownload=cfg.force_redownload,
                client=self.http_client,
            )
        return self._instances[name]  # type: ignore[return-value]

    def resolver(
        self, *, offline: bool | None = None, skip_installed: bool = True,
    ) -> DependencyResolver:
        """构造一次运行用的解析器；skip_installed 时跳过系统中已安装的依赖"""
        from pkgengine.core.dep.resolver import DependencyResolver
        from pkgengine.core.dep.scheduler import BatchScheduler

        scheduler = BatchScheduler(
            self.fetcher(offline=offline).acquire_outcome,
            max_workers=self._config.max_workers,
        )
        return DependencyResolver(
            self.registry,
            scheduler,
            self.reader,
            is_satisfied=self.database.is_installed if skip_installed else None,
        )

    @property
    def orchestrator(self) -> InstallOrchestrator:
        if "orchestrator" not in self._instances:
            from pkgengine.services.orchestrator.orchestrator import InstallOrchestrator
            self._instances["orchestrator"] = InstallOrchestrator(self)
        return self._instances["orchestrator"]  # type: ignore[return-value]

    # ---- 生命周期 ----

    def close(self) -> None:
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> ServiceContainer:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
