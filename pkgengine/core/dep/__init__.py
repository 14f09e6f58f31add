"""依赖包获取与解析

拆分说明:
- registry.py: 源注册表加载与查询
- cache.py: 缓存目录
- verifier.py: 完整性校验（校验和 / 归档 / 签名）
- fetcher.py: 单制品获取（重试、超时、代理）
- scheduler.py: 批量并行获取
- inspector.py: 制品依赖元数据读取
- resolver.py: 传递闭包解析
- catalog.py: 内置包分组与命令映射
"""

from pkgengine.core.dep.cache import CacheStore
from pkgengine.core.dep.fetcher import ArtifactFetcher
from pkgengine.core.dep.inspector import DebMetadataReader, MetadataReader
from pkgengine.core.dep.registry import SourceRegistry
from pkgengine.core.dep.resolver import DependencyResolver, Resolution
from pkgengine.core.dep.scheduler import BatchScheduler
from pkgengine.core.dep.verifier import IntegrityVerifier

__all__ = [
    "ArtifactFetcher",
    "BatchScheduler",
    "CacheStore",
    "DebMetadataReader",
    "DependencyResolver",
    "IntegrityVerifier",
    "MetadataReader",
    "Resolution",
    "SourceRegistry",
]
