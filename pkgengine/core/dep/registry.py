"""源注册表管理

职责:
- 从清单文件加载包下载源，解析一次为 PackageSource，下游不再重复解析字符串
- 支持两种清单格式:
    文本: 每行 key;url;checksum;version;architecture[;显示名]，# 开头为注释
    YAML: packages 段，字段 url / checksum_sha256 / version / arch / display_name
- 非法记录（URL 不完整、占位符未展开、校验和格式错误、重复 key）跳过并记录原因
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Iterable, Iterator

from pkgengine.core.exceptions import RegistryError, ValidationError
from pkgengine.core.models import PackageSource
from pkgengine.utils.net import validate_artifact_url
from pkgengine.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

_SHA256_RE = re.compile(r"^[0-9a-fA-F]{64}$")
_YAML_SUFFIXES = (".yml", ".yaml")


def build_source(
    key: str,
    url: str,
    checksum: str = "",
    version: str = "",
    arch: str = "",
    display_name: str = "",
) -> PackageSource:
    """校验字段并构造 PackageSource

    URL 中的 {version} / {arch} 用本记录的字段替换，其余占位符视为未展开。

    Raises:
        ValidationError: 任一字段不合法
    """
    key = key.strip()
    if not key:
        raise ValidationError("包 key 为空")
    version = version.strip()
    arch = arch.strip()
    url = url.strip().replace("{version}", version).replace("{arch}", arch)
    validate_artifact_url(url, context=key)

    checksum = checksum.strip()
    if checksum.lower().startswith("sha256:"):
        checksum = checksum[len("sha256:"):]
    if checksum and not _SHA256_RE.match(checksum):
        raise ValidationError(f"校验和不是合法的 sha256 ({key}): {checksum}")

    return PackageSource(
        key=key,
        url=url,
        checksum=checksum.lower(),
        version=version,
        arch=arch,
        display_name=display_name.strip(),
    )


def parse_record(line: str) -> PackageSource:
    """解析一行 key;url;checksum;version;architecture[;显示名]"""
    fields = [f.strip() for f in line.split(";")]
    if len(fields) < 5:
        raise ValidationError(f"字段数不足（需要 5 个，实际 {len(fields)}）: {line}")
    key, url, checksum, version, arch = fields[:5]
    display_name = ";".join(fields[5:])
    return build_source(key, url, checksum, version, arch, display_name)


class SourceRegistry:
    """源注册表 - key → PackageSource 的只读映射"""

    def __init__(self, sources: Iterable[PackageSource] = ()) -> None:
        self._sources: dict[str, PackageSource] = {}
        self._filenames: dict[str, str] = {}
        self.rejected: list[tuple[str, str]] = []
        for src in sources:
            self._add(src, origin=src.key)

    # ------------------------------------------------------------------
    # 加载
    # ------------------------------------------------------------------

    @classmethod
    def load(cls, path: str | Path) -> SourceRegistry:
        """从清单文件加载；文件不存在时返回空注册表"""
        p = Path(path)
        registry = cls()
        if not p.exists():
            logger.warning("源清单不存在: %s，仅能依赖系统包管理器", p)
            return registry

        if p.suffix in _YAML_SUFFIXES:
            registry._load_yaml(p)
        else:
            registry._load_text(p)

        logger.info(
            "已加载 %d 个包下载源（跳过 %d 条非法记录）",
            len(registry), len(registry.rejected),
        )
        return registry

    def _load_text(self, path: Path) -> None:
        for lineno, raw in enumerate(path.read_text(encoding="utf-8").splitlines(), 1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            origin = f"{path.name}:{lineno}"
            try:
                src = parse_record(line)
            except ValidationError as e:
                self._reject(origin, str(e))
                continue
            self._add(src, origin=origin)

    def _load_yaml(self, path: Path) -> None:
        data = load_yaml(path)
        for key, info in (data.get("packages") or {}).items():
            origin = f"{path.name}:{key}"
            if not isinstance(info, dict):
                self._reject(origin, "记录不是映射类型")
                continue
            try:
                src = build_source(
                    str(key),
                    str(info.get("url", "")),
                    str(info.get("checksum_sha256", info.get("checksum", "")) or ""),
                    str(info.get("version", "")),
                    str(info.get("arch", "")),
                    str(info.get("display_name", "")),
                )
            except ValidationError as e:
                self._reject(origin, str(e))
                continue
            self._add(src, origin=origin)

    def _add(self, src: PackageSource, *, origin: str) -> None:
        if src.key in self._sources:
            self._reject(origin, f"重复的包 key '{src.key}'，保留首次声明")
            return
        # 同一缓存路径只能有一个写入者
        owner = self._filenames.get(src.filename)
        if owner is not None:
            self._reject(origin, f"文件名 {src.filename} 与包 '{owner}' 冲突")
            return
        self._sources[src.key] = src
        self._filenames[src.filename] = src.key

    def _reject(self, origin: str, reason: str) -> None:
        logger.warning("跳过非法源记录 %s: %s", origin, reason)
        self.rejected.append((origin, reason))

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def lookup(self, key: str) -> PackageSource | None:
        """按 key 查找，不存在返回 None（NotFound，不可重试）"""
        return self._sources.get(key)

    def get(self, key: str) -> PackageSource:
        src = self._sources.get(key)
        if src is None:
            raise RegistryError(f"包 '{key}' 不在源清单中")
        return src

    def keys(self) -> list[str]:
        return list(self._sources)

    def __contains__(self, key: object) -> bool:
        return key in self._sources

    def __len__(self) -> int:
        return len(self._sources)

    def __iter__(self) -> Iterator[PackageSource]:
        return iter(self._sources.values())

    def list_sources(self) -> list[dict[str, Any]]:
        """格式化源列表用于展示"""
        return [
            {
                "key": s.key,
                "name": s.label,
                "version": s.version,
                "arch": s.arch,
                "url": s.url,
                "checksum": s.checksum or "-",
            }
            for s in self._sources.values()
        ]
