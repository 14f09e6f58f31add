"""制品获取引擎

职责:
- 拉取单个制品（缓存优先 + 远程回退）
- 连接超时 / 读超时 / 整体传输时限，代理感知
- 有限次重试，线性退避（第 n 次失败后等待 n × retry_interval 秒）
- 下载写入 .part 临时文件，完成后才改名，失败立即删除
- 下载后强制校验；校验失败删除文件，不重试

不变量: 目标路径上的文件要么完整可信，要么不存在。
"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Callable

import httpx
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from pkgengine.core.dep.cache import CacheStore, signature_path
from pkgengine.core.dep.verifier import IntegrityVerifier
from pkgengine.core.exceptions import (
    AcquisitionError,
    IntegrityError,
    NetworkError,
    ValidationError,
)
from pkgengine.core.models import (
    AcquisitionOutcome,
    CacheEntry,
    OutcomeStatus,
    PackageSource,
)
from pkgengine.utils.net import validate_url_scheme

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024
_SIGNATURE_TIMEOUT = 30.0

# 这些 HTTP 状态码视为暂时性错误，值得重试
_RETRYABLE_STATUS = frozenset((408, 425, 429, 500, 502, 503, 504))


def _is_retryable(exc: BaseException) -> bool:
    """网络类错误可重试；4xx（除限流/超时类）重试无意义"""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in _RETRYABLE_STATUS
    return isinstance(exc, httpx.TransportError)


def _log_before_retry(retry_state: RetryCallState) -> None:
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    next_attempt_in = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(
        "  第 %d 次下载失败 (%s: %s)，%.1f 秒后重试",
        retry_state.attempt_number,
        type(exception).__name__, exception, next_attempt_in,
    )


class ArtifactFetcher:
    """单制品获取引擎 - 缓存优先 + 远程下载"""

    def __init__(
        self,
        cache: CacheStore,
        verifier: IntegrityVerifier,
        *,
        max_retries: int = 3,
        retry_interval: float = 2.0,
        connect_timeout: float = 10.0,
        transfer_timeout: float = 300.0,
        proxy: str | None = None,
        offline: bool = False,
        force_redownload: bool = False,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.cache = cache
        self.verifier = verifier
        self.max_retries = max(1, max_retries)
        self.retry_interval = retry_interval
        self.transfer_timeout = transfer_timeout
        self.offline = offline
        self.force_redownload = force_redownload
        self._sleep = sleep
        self._owns_client = client is None
        self.client = client or httpx.Client(
            timeout=httpx.Timeout(transfer_timeout, connect=connect_timeout),
            proxy=proxy,
            follow_redirects=True,
        )

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    # ------------------------------------------------------------------
    # 对外接口
    # ------------------------------------------------------------------

    def acquire(self, source: PackageSource, dest_dir: Path | None = None) -> CacheEntry:
        """获取单个制品，返回已校验的缓存条目

        Raises:
            NetworkError: 重试耗尽
            IntegrityError: 下载后校验失败（文件已删除）
            AcquisitionError: 离线且缓存中无有效制品
        """
        entry, _status, _attempts = self._acquire(source, dest_dir)
        return entry

    def acquire_outcome(
        self, source: PackageSource, dest_dir: Path | None = None,
    ) -> AcquisitionOutcome:
        """获取单个制品，异常归因到该包的 FAILED 结果，不向上抛"""
        try:
            entry, status, attempts = self._acquire(source, dest_dir)
        except NetworkError as e:
            logger.error("获取失败（网络）: %s - %s", source.key, e)
            return AcquisitionOutcome.failed(
                source.key, str(e), error_kind="network", attempts=e.attempts,
            )
        except IntegrityError as e:
            logger.error("获取失败（完整性）: %s - %s", source.key, e)
            return AcquisitionOutcome.failed(source.key, str(e), error_kind="integrity", attempts=1)
        except AcquisitionError as e:
            logger.error("获取失败: %s - %s", source.key, e)
            return AcquisitionOutcome.failed(source.key, str(e), error_kind="offline")
        except ValidationError as e:
            logger.error("下载源非法: %s - %s", source.key, e)
            return AcquisitionOutcome.failed(source.key, str(e), error_kind="registry")
        except OSError as e:
            logger.exception("获取 %s 时出错", source.key)
            return AcquisitionOutcome.failed(source.key, str(e))
        return AcquisitionOutcome(
            key=source.key, status=status, entry=entry, attempts=attempts,
        )

    # ------------------------------------------------------------------
    # 获取流程
    # ------------------------------------------------------------------

    def _acquire(
        self, source: PackageSource, dest_dir: Path | None,
    ) -> tuple[CacheEntry, OutcomeStatus, int]:
        dest = self.cache.path_for(source, dest_dir)
        dest.parent.mkdir(parents=True, exist_ok=True)

        # ---- 1. 缓存优先：就地校验，通过则零网络访问 ----
        use_cache = not self.force_redownload
        if self.force_redownload and self.offline:
            logger.warning("离线模式无法强制重新下载，改为校验缓存: %s", source.key)
            use_cache = True
        if use_cache:
            cached = self.cache.lookup(source, dest_dir)
            if cached is not None:
                try:
                    self.verifier.verify(cached, source)
                except IntegrityError as e:
                    logger.warning("缓存制品校验失败，已丢弃: %s (%s)", cached.path, e)
                    self.cache.remove(cached.path)
                else:
                    logger.info("缓存命中且校验通过: %s -> %s", source.key, cached.path)
                    return cached, OutcomeStatus.SKIPPED_ALREADY_VALID, 0

        # ---- 2. 离线模式不做远程下载 ----
        if self.offline:
            raise AcquisitionError(
                f"离线模式下缓存中没有 '{source.key}' 的有效制品: {dest}"
            )

        # ---- 3. 远程下载 + 强制校验 ----
        logger.info("远程拉取: %s@%s <- %s", source.key, source.version or "-", source.url)
        attempts = self._download_with_retry(source.url, dest)
        entry = CacheEntry(path=dest, source_key=source.key)
        if self.verifier.verify_signature:
            self._fetch_signature(source.url, dest)
        try:
            self.verifier.verify(entry, source)
        except IntegrityError:
            self.cache.remove(dest)
            raise
        return entry, OutcomeStatus.SUCCESS, attempts

    def _download_with_retry(self, url: str, dest: Path) -> int:
        """按重试策略下载，返回实际尝试次数"""
        validate_url_scheme(url, context=f"download {dest.name}")
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_incrementing(start=self.retry_interval, increment=self.retry_interval),
            retry=retry_if_exception(_is_retryable),
            before_sleep=_log_before_retry,
            sleep=self._sleep,
            reraise=True,
        )
        attempts = 0
        try:
            for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    self._download_once(url, dest)
        except httpx.HTTPError as e:
            raise NetworkError(
                f"下载失败（共尝试 {attempts} 次）: {url} - {e}", attempts=attempts,
            ) from e
        logger.info("  已保存: %s", dest)
        return attempts

    def _download_once(self, url: str, dest: Path) -> None:
        """单次下载: 流式写入 .part，完整后原子改名"""
        part = CacheStore.partial_path(dest)
        deadline = time.monotonic() + self.transfer_timeout
        try:
            with self.client.stream("GET", url) as response:
                response.raise_for_status()
                with open(part, "wb") as f:
                    for chunk in response.iter_bytes(_CHUNK_SIZE):
                        if time.monotonic() > deadline:
                            raise httpx.ReadTimeout(
                                f"传输超过 {self.transfer_timeout} 秒",
                                request=response.request,
                            )
                        f.write(chunk)
            os.replace(part, dest)
        finally:
            part.unlink(missing_ok=True)

    def _fetch_signature(self, url: str, dest: Path) -> None:
        """获取与新制品对应的 <url>.sig；失败仅告警"""
        sig = signature_path(dest)
        sig.unlink(missing_ok=True)
        try:
            response = self.client.get(url + ".sig", timeout=_SIGNATURE_TIMEOUT)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("  签名文件下载失败，跳过: %s.sig (%s)", url, e)
            return
        sig.write_bytes(response.content)
        logger.info("  已获取签名文件: %s", sig.name)
