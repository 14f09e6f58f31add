"""制品缓存目录管理

职责:
- 按 URL 推导的文件名定位缓存制品
- 下载中的临时文件统一使用 .part 后缀，完成后才改名为正式文件
- 清理残留的 .part 文件和校验失败的制品

缓存目录是外部可写位置，这里只回答"文件在不在"，
"文件是否可信"每次运行都交给 IntegrityVerifier 重新判断。
"""

from __future__ import annotations

import logging
from pathlib import Path

from pkgengine.core.models import CacheEntry, PackageSource

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".part"
SIGNATURE_SUFFIX = ".sig"


def signature_path(artifact: Path) -> Path:
    return artifact.with_name(artifact.name + SIGNATURE_SUFFIX)


class CacheStore:
    """缓存目录"""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def path_for(self, source: PackageSource, dest_dir: Path | None = None) -> Path:
        """制品在缓存中的目标路径"""
        return (dest_dir or self.root) / source.filename

    @staticmethod
    def partial_path(dest: Path) -> Path:
        return dest.with_name(dest.name + PARTIAL_SUFFIX)

    def lookup(self, source: PackageSource, dest_dir: Path | None = None) -> CacheEntry | None:
        """缓存中存在目标文件时返回 CacheEntry（尚未校验）"""
        path = self.path_for(source, dest_dir)
        if path.is_file():
            return CacheEntry(path=path, source_key=source.key)
        return None

    def remove(self, path: Path) -> None:
        """删除制品及其 .part 残留和签名文件"""
        for p in (path, self.partial_path(path), signature_path(path)):
            if p.exists():
                p.unlink(missing_ok=True)
                logger.info("  已删除缓存文件: %s", p)

    def purge_partials(self) -> int:
        """清理上次运行中断留下的 .part 文件"""
        if not self.root.exists():
            return 0
        count = 0
        for p in self.root.glob(f"*{PARTIAL_SUFFIX}"):
            p.unlink(missing_ok=True)
            count += 1
        if count:
            logger.info("已清理 %d 个残留的未完成下载", count)
        return count

    def list_artifacts(self) -> list[Path]:
        """列出缓存中的全部制品（不含 .part / .sig）"""
        if not self.root.exists():
            return []
        return sorted(
            p for p in self.root.iterdir()
            if p.is_file()
            and not p.name.startswith(".")
            and p.suffix not in (PARTIAL_SUFFIX, SIGNATURE_SUFFIX)
        )
