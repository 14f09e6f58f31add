"""制品依赖元数据读取

依赖边只能在制品下载后才得知：通过平台工具读取制品自身声明的
Depends / Pre-Depends 字段，不做任何包格式解析。

  dpkg-deb --field <file> Depends Pre-Depends

字段语法示例:
  libc6 (>= 2.34), libzfs6linux (= 2.1.11-1) | zfs-fuse, python3:any
取每组备选的第一个包名，去掉版本约束和架构限定。
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Protocol

from pkgengine.utils.shell import CommandExecutor, LocalExecutor

logger = logging.getLogger(__name__)

DEPENDENCY_FIELDS = ("Depends", "Pre-Depends")

_NAME_RE = re.compile(r"^([A-Za-z0-9][A-Za-z0-9+.\-]*)")


class MetadataReader(Protocol):
    """制品依赖读取协议"""

    def dependencies(self, artifact: Path) -> list[str]:
        """返回制品声明的直接依赖包名（去重、保持声明顺序）"""
        ...


def parse_depends(value: str) -> list[str]:
    """解析 Depends 字段值为包名列表"""
    names: list[str] = []
    for group in value.replace("\n", " ").split(","):
        first = group.split("|", 1)[0].strip()
        if not first:
            continue
        m = _NAME_RE.match(first)
        if m is None:
            logger.debug("无法解析依赖项: %r", first)
            continue
        name = m.group(1)
        if name not in names:
            names.append(name)
    return names


def parse_control_fields(text: str) -> dict[str, str]:
    """解析 deb822 风格的 "Field: value" 输出（支持续行）"""
    result: dict[str, str] = {}
    current = ""
    for line in text.splitlines():
        if line[:1] in (" ", "\t") and current:
            result[current] += " " + line.strip()
            continue
        if ":" in line:
            name, _, value = line.partition(":")
            current = name.strip()
            result[current] = value.strip()
    return result


class DebMetadataReader:
    """通过 dpkg-deb 读取 .deb 制品的依赖字段"""

    def __init__(self, executor: CommandExecutor | None = None) -> None:
        self._executor = executor or LocalExecutor()

    def dependencies(self, artifact: Path) -> list[str]:
        r = self._executor.execute(
            ["dpkg-deb", "--field", str(artifact), *DEPENDENCY_FIELDS],
        )
        if not r.success:
            logger.warning(
                "读取依赖元数据失败，按无依赖处理: %s (rc=%d) %s",
                artifact.name, r.returncode, r.stderr.strip()[:200],
            )
            return []
        fields = parse_control_fields(r.stdout)
        names: list[str] = []
        for field_name in DEPENDENCY_FIELDS:
            for name in parse_depends(fields.get(field_name, "")):
                if name not in names:
                    names.append(name)
        return names
