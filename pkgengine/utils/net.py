"""网络工具 - URL 安全校验与文件名推导"""

from __future__ import annotations

import re
from urllib.parse import unquote, urlparse

from pkgengine.core.exceptions import ValidationError

_ALLOWED_SCHEMES = frozenset(("http", "https"))

# 未展开的占位符: {version}、${VERSION}、<version>、@VERSION@
_PLACEHOLDER_RE = re.compile(r"\{[^}]*\}|\$\{?[A-Za-z_]|<[^>]*>|@[A-Za-z_]+@")


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https，防止 file:// 等非预期协议访问

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https: {url}"
        )


def has_placeholder(url: str) -> bool:
    """URL 中是否残留未替换的版本占位符"""
    return bool(_PLACEHOLDER_RE.search(url))


def filename_from_url(url: str) -> str:
    """由 URL 推导缓存文件名（最后一段路径，已反转义）"""
    path = urlparse(url).path
    return unquote(path.rstrip("/").rsplit("/", 1)[-1])


def validate_artifact_url(url: str, *, context: str = "") -> None:
    """校验制品 URL: 绝对、http/https、有主机名、有文件名、无占位符

    Raises:
        ValidationError: 任一条件不满足
    """
    label = f" ({context})" if context else ""
    if not url:
        raise ValidationError(f"URL 为空{label}")
    if has_placeholder(url):
        raise ValidationError(f"URL 含未展开的占位符{label}: {url}")
    validate_url_scheme(url, context=context)
    parsed = urlparse(url)
    if not parsed.netloc or not parsed.hostname:
        raise ValidationError(f"URL 缺少主机名{label}: {url}")
    name = filename_from_url(url)
    if not name or name in (".", ".."):
        raise ValidationError(f"无法从 URL 解析文件名{label}: {url}")
