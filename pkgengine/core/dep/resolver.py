"""依赖解析器

把请求的包展开为完整传递闭包，并在展开过程中完成制品获取:
依赖只有在制品下载后才能读到，因此解析与获取交替进行。

算法: 显式栈的深度优先遍历
  - visited 集合按包 key 记录，入栈前先标记（环保护: 自依赖 / 互相依赖只访问一次）
  - 每个包的新依赖作为一批交给 BatchScheduler 并行获取，再逐个下探
  - 后序输出: 包总是排在它已发现的依赖之后
  - 不在源清单中的依赖只记录和告警，不算失败（很多依赖由基础系统满足）
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator

from pkgengine.core.dep.inspector import MetadataReader
from pkgengine.core.dep.registry import SourceRegistry
from pkgengine.core.dep.scheduler import BatchScheduler
from pkgengine.core.models import AcquisitionOutcome, CacheEntry

logger = logging.getLogger(__name__)


@dataclass
class Resolution:
    """一次解析的结果"""

    order: list[str] = field(default_factory=list)
    outcomes: dict[str, AcquisitionOutcome] = field(default_factory=dict)
    not_found: list[str] = field(default_factory=list)
    unresolved: dict[str, list[str]] = field(default_factory=dict)  # 依赖名 → 需要它的包
    satisfied: list[str] = field(default_factory=list)              # 已在系统中、无需获取的依赖

    @property
    def failed(self) -> list[str]:
        """获取失败的包（含不在源清单中的请求包），按解析顺序"""
        failed = [k for k in self.order if not self.outcomes[k].ok]
        return [*self.not_found, *failed]

    def artifacts(self) -> list[tuple[str, CacheEntry]]:
        """已校验通过的制品，按依赖顺序（依赖在前）"""
        result: list[tuple[str, CacheEntry]] = []
        for key in self.order:
            outcome = self.outcomes[key]
            if outcome.ok and outcome.entry is not None:
                result.append((key, outcome.entry))
        return result


class DependencyResolver:
    """传递闭包解析器"""

    def __init__(
        self,
        registry: SourceRegistry,
        scheduler: BatchScheduler,
        reader: MetadataReader,
        *,
        is_satisfied: Callable[[str], bool] | None = None,
    ) -> None:
        self.registry = registry
        self.scheduler = scheduler
        self.reader = reader
        self._is_satisfied = is_satisfied

    def resolve(self, keys: Iterable[str]) -> Resolution:
        """解析一组请求包；空输入返回空结果"""
        result = Resolution()
        roots: list[str] = []
        for key in dict.fromkeys(keys):
            if key in self.registry:
                roots.append(key)
                continue
            logger.error("包 '%s' 不在源清单中", key)
            result.not_found.append(key)
            result.outcomes[key] = AcquisitionOutcome.failed(
                key, f"包 '{key}' 不在源清单中", error_kind="registry",
            )

        # 请求的包是已知的，先整批获取
        self._acquire_missing(roots, result)

        visited: set[str] = set()
        for root in roots:
            if root in visited:
                continue
            visited.add(root)
            self._walk(root, visited, result)

        if result.unresolved:
            logger.warning(
                "%d 个依赖不在源清单中，假定由基础系统提供: %s",
                len(result.unresolved), ", ".join(result.unresolved),
            )
        logger.info(
            "解析完成: 闭包 %d 个包, 失败 %d 个",
            len(result.order), len(result.failed),
        )
        return result

    def _walk(self, root: str, visited: set[str], result: Resolution) -> None:
        stack: list[tuple[str, Iterator[str]]] = [
            (root, iter(self._children(root, visited, result))),
        ]
        while stack:
            key, children = stack[-1]
            child = next(children, None)
            if child is None:
                stack.pop()
                result.order.append(key)
                continue
            # 兄弟子树可能已访问过
            if child in visited:
                continue
            visited.add(child)
            stack.append((child, iter(self._children(child, visited, result))))

    def _children(self, key: str, visited: set[str], result: Resolution) -> list[str]:
        """读取 key 的直接依赖，过滤后整批获取，返回待下探的依赖"""
        outcome = result.outcomes[key]
        if not outcome.ok or outcome.entry is None:
            return []

        children: list[str] = []
        for dep in self.reader.dependencies(outcome.entry.path):
            if dep == key or dep in visited or dep in children:
                continue
            if dep not in self.registry:
                requirers = result.unresolved.setdefault(dep, [])
                if not requirers:
                    logger.info("  依赖 %s (来自 %s) 不在源清单中，跳过", dep, key)
                requirers.append(key)
                continue
            if self._is_satisfied is not None and self._is_satisfied(dep):
                if dep not in result.satisfied:
                    logger.info("  依赖 %s 已安装，跳过", dep)
                    result.satisfied.append(dep)
                continue
            children.append(dep)

        if children:
            logger.info("  %s 的依赖: %s", key, ", ".join(children))
        self._acquire_missing(children, result)
        return children

    def _acquire_missing(self, keys: list[str], result: Resolution) -> None:
        sources = [
            self.registry.get(k) for k in keys if k not in result.outcomes
        ]
        for outcome in self.scheduler.acquire_all(sources):
            result.outcomes[outcome.key] = outcome
