"""批量获取调度器 - 管理制品的并行下载

- 派发前按包 key 去重，保证同一目标路径只有一个写入者
- 线程池并行度 = min(配置值, CPU 数, MAX_WORKER_CAP)，避免压垮网络和磁盘
- 每个包的结果独立记录，单包异常只转换为该包的 FAILED，不影响其他包
- 返回结果与去重后的输入一一对应，调用方不应依赖顺序
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Iterable

from pkgengine.core.models import AcquisitionOutcome, PackageSource

logger = logging.getLogger(__name__)

MAX_WORKER_CAP = 4

# 单包获取策略：接受 PackageSource，返回该包的终态
AcquireFn = Callable[[PackageSource], AcquisitionOutcome]


def worker_count(requested: int, cpu_count: int | None = None) -> int:
    """并行度: 不超过配置值、CPU 数和硬上限"""
    cpus = cpu_count if cpu_count is not None else (os.cpu_count() or 1)
    return max(1, min(requested, cpus, MAX_WORKER_CAP))


def dedupe_sources(sources: Iterable[PackageSource]) -> list[PackageSource]:
    """按 key 去重，保留首次出现的顺序"""
    seen: dict[str, PackageSource] = {}
    for src in sources:
        if src.key in seen:
            logger.debug("批次内重复的包已合并: %s", src.key)
            continue
        seen[src.key] = src
    return list(seen.values())


class BatchScheduler:
    """可配置并行度的获取调度器

    通过 acquire 参数注入单包获取策略（通常为 ArtifactFetcher.acquire_outcome），
    测试时可替换为 fake。
    """

    def __init__(self, acquire: AcquireFn, max_workers: int = MAX_WORKER_CAP) -> None:
        self._acquire = acquire
        self.max_workers = worker_count(max_workers)

    def _run_one(self, source: PackageSource) -> AcquisitionOutcome:
        try:
            return self._acquire(source)
        except Exception as e:  # noqa: BLE001 - 单包失败不能拖垮整批
            logger.exception("获取 %s 时出现未预期错误", source.key)
            return AcquisitionOutcome.failed(source.key, f"未预期错误: {e}")

    def acquire_all(self, sources: Iterable[PackageSource]) -> list[AcquisitionOutcome]:
        """并行获取一批制品，每个不同的 key 恰好一个结果"""
        unique = dedupe_sources(sources)
        if not unique:
            return []

        if self.max_workers == 1 or len(unique) == 1:
            outcomes = [self._run_one(src) for src in unique]
        else:
            outcomes = []
            workers = min(self.max_workers, len(unique))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="acquire") as executor:
                futures = {executor.submit(self._run_one, src): src for src in unique}
                for future in as_completed(futures):
                    outcome = future.result()
                    logger.info("完成: %s -> %s", outcome.key, outcome.status.value)
                    outcomes.append(outcome)

        failed = [o.key for o in outcomes if not o.ok]
        logger.info(
            "批次汇总: %d 成功, %d 失败%s",
            len(outcomes) - len(failed), len(failed),
            f" ({', '.join(failed)})" if failed else "",
        )
        return outcomes
