"""制品完整性校验

校验项:
- sha256 校验和（强制；不匹配即判定失败，除非全局 skip_checksum）
- 归档可读性（可选；zip / tar / deb 的结构检查，失败同样视为完整性失败）
- GPG 签名（可选；仅告警，不阻断安装）

本模块只做判断，不删除文件；删除由调用方（ArtifactFetcher）负责。
"""

from __future__ import annotations

import bz2
import gzip
import hashlib
import logging
import lzma
import tarfile
import zipfile
import zlib
from dataclasses import dataclass, field
from pathlib import Path

from pkgengine.core.dep.cache import signature_path
from pkgengine.core.exceptions import IntegrityError, SignatureError
from pkgengine.core.models import CacheEntry, PackageSource
from pkgengine.utils.shell import CommandExecutor, LocalExecutor

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024
_AR_MAGIC = b"!<arch>\n"
_TAR_SUFFIXES = (".tar", ".tar.gz", ".tgz", ".tar.xz", ".txz", ".tar.bz2", ".tbz2")
_STREAM_OPENERS = {
    ".gz": gzip.open, ".tgz": gzip.open,
    ".xz": lzma.open, ".txz": lzma.open,
    ".bz2": bz2.open, ".tbz2": bz2.open,
}


def sha256_file(path: Path) -> str:
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


@dataclass
class VerificationReport:
    """单个制品的校验结论"""

    path: Path
    checksum: str = "unchecked"    # passed / skipped / undeclared
    archive: str = "disabled"      # passed / disabled / unknown_format
    signature: str = "disabled"    # verified / failed / unavailable / disabled
    warnings: list[str] = field(default_factory=list)


class IntegrityVerifier:
    """单个制品文件的校验器"""

    def __init__(
        self,
        *,
        skip_checksum: bool = False,
        verify_signature: bool = False,
        gpg_keyring: str = "",
        verify_archive: bool = False,
        executor: CommandExecutor | None = None,
    ) -> None:
        self.skip_checksum = skip_checksum
        self.verify_signature = verify_signature
        self.gpg_keyring = gpg_keyring
        self.verify_archive = verify_archive
        self._executor = executor or LocalExecutor()

    def verify(self, entry: CacheEntry, source: PackageSource) -> VerificationReport:
        """校验一个缓存制品

        Raises:
            IntegrityError: 校验和不匹配或归档损坏
        """
        report = VerificationReport(path=entry.path)
        report.checksum = self._check_checksum(entry.path, source)
        if self.verify_archive:
            report.archive = self._check_archive(entry.path)
        if self.verify_signature:
            report.signature = self._check_signature(entry.path, report)
        return report

    # ------------------------------------------------------------------
    # 校验和
    # ------------------------------------------------------------------

    def _check_checksum(self, path: Path, source: PackageSource) -> str:
        if self.skip_checksum:
            logger.warning("  已按配置跳过校验和: %s", path.name)
            return "skipped"
        if not source.checksum:
            logger.warning("  %s 未声明校验和，无法校验: %s", source.key, path.name)
            return "undeclared"
        actual = sha256_file(path)
        if actual != source.checksum:
            raise IntegrityError(
                f"校验和不匹配 {path}: 期望 {source.checksum}, 实际 {actual}"
            )
        logger.info("  校验和通过: %s", path.name)
        return "passed"

    # ------------------------------------------------------------------
    # 归档结构
    # ------------------------------------------------------------------

    def _check_archive(self, path: Path) -> str:
        name = path.name.lower()
        try:
            if name.endswith(".zip"):
                with zipfile.ZipFile(path) as zf:
                    bad = zf.testzip()
                if bad is not None:
                    raise IntegrityError(f"归档损坏 {path}: 成员 {bad} CRC 错误")
            elif name.endswith(_TAR_SUFFIXES):
                opener = _STREAM_OPENERS.get(path.suffix.lower())
                if opener is not None:
                    # 读完整个压缩流，尾部 CRC 才会被检查
                    with opener(path, "rb") as f:
                        while f.read(_CHUNK_SIZE):
                            pass
                with tarfile.open(path) as tf:
                    tf.getmembers()
            elif name.endswith((".deb", ".udeb")):
                with open(path, "rb") as f:
                    if f.read(len(_AR_MAGIC)) != _AR_MAGIC:
                        raise IntegrityError(f"不是有效的 deb 归档: {path}")
            else:
                logger.debug("  未知归档格式，跳过结构检查: %s", path.name)
                return "unknown_format"
        except (
            zipfile.BadZipFile, tarfile.TarError, EOFError, zlib.error, lzma.LZMAError,
            OSError, RuntimeError, NotImplementedError,
        ) as e:
            raise IntegrityError(f"归档损坏 {path}: {e}") from e
        logger.info("  归档结构检查通过: %s", path.name)
        return "passed"

    # ------------------------------------------------------------------
    # 签名（仅告警）
    # ------------------------------------------------------------------

    def _check_signature(self, path: Path, report: VerificationReport) -> str:
        sig = signature_path(path)
        if not self.gpg_keyring or not Path(self.gpg_keyring).is_file():
            msg = f"未配置可用的 GPG 公钥环，跳过签名校验: {path.name}"
            logger.warning("  %s", msg)
            report.warnings.append(msg)
            return "unavailable"
        if not sig.is_file():
            msg = f"签名文件不可用，仅依赖校验和: {path.name}"
            logger.warning("  %s", msg)
            report.warnings.append(msg)
            return "unavailable"

        try:
            self._gpg_verify(path, sig)
        except SignatureError as e:
            msg = f"签名校验失败，继续安装（仅校验和保护）: {path.name}"
            logger.warning("  %s: %s", msg, e)
            report.warnings.append(msg)
            return "failed"
        logger.info("  签名校验通过: %s", path.name)
        return "verified"

    def _gpg_verify(self, path: Path, sig: Path) -> None:
        r = self._executor.execute([
            "gpg", "--batch", "--no-default-keyring",
            "--keyring", self.gpg_keyring,
            "--verify", str(sig), str(path),
        ])
        if not r.success:
            raise SignatureError(
                f"gpg --verify 失败 (rc={r.returncode}): {r.stderr.strip()[:300]}"
            )
