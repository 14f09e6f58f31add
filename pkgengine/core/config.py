"""集中配置管理

所有可调参数集中在 Config 数据类中，替代散落的默认常量。
加载顺序: 字段默认值 → YAML 配置文件 → PKGENGINE_* 环境变量。

配置对象由入口（CLI / ensure()）显式构造并传给服务容器，
不存在跨运行的全局单例。
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from typing import Mapping

from pkgengine.core.exceptions import ConfigError
from pkgengine.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "PKGENGINE_"

_TRUE_VALUES = frozenset(("1", "true", "yes", "on"))
_FALSE_VALUES = frozenset(("0", "false", "no", "off", ""))


@dataclass
class Config:
    """引擎全局配置"""

    # 目录
    registry_file: str = "deps/sources.list"
    cache_dir: str = "debs"

    # 网络
    max_retries: int = 3
    retry_interval: float = 2.0   # 线性退避基数: 第 n 次失败后等待 n × retry_interval 秒
    connect_timeout: float = 10.0
    transfer_timeout: float = 300.0
    proxy_host: str = ""
    proxy_port: int = 0
    probe_hosts: list[str] = field(default_factory=lambda: ["8.8.8.8", "1.1.1.1"])
    probe_timeout: int = 3

    # 行为开关
    offline: bool = False
    force_redownload: bool = False
    skip_checksum: bool = False
    verify_signature: bool = False
    gpg_keyring: str = ""
    verify_archive: bool = False

    # 执行
    max_workers: int = 4
    install_timeout: int = 1800

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str = "configs/pkgengine.yml") -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        data = load_yaml(path)
        if not data:
            return cls()
        cfg = cls()
        known = {f.name for f in fields(cls)} - {"extra"}
        for key, value in data.items():
            if key not in known:
                cfg.extra[key] = value
            elif value is not None:
                setattr(cfg, key, _coerce(getattr(cfg, key), value, origin=f"配置项 {key}"))
        logger.info("配置已加载: %s", path)
        return cfg

    @classmethod
    def from_env(
        cls, base: Config | None = None, environ: Mapping[str, str] | None = None,
    ) -> Config:
        """在 base（默认为字段默认值）之上应用环境变量覆盖"""
        cfg = replace(base) if base is not None else cls()
        cfg.apply_env(os.environ if environ is None else environ)
        return cfg

    @classmethod
    def load(cls, path: str = "", environ: Mapping[str, str] | None = None) -> Config:
        """配置文件 + 环境变量覆盖，并做合法性校验"""
        cfg = cls.from_env(cls.from_file(path) if path else None, environ)
        cfg.validate()
        return cfg

    def apply_env(self, environ: Mapping[str, str]) -> None:
        """用 PKGENGINE_<FIELD> 环境变量覆盖对应字段"""
        for f in fields(self):
            if f.name == "extra":
                continue
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            setattr(self, f.name, _coerce(
                getattr(self, f.name), raw,
                origin=f"环境变量 {ENV_PREFIX}{f.name.upper()}",
            ))

    def validate(self) -> None:
        """校验字段取值，非法时抛 ConfigError"""
        problems: list[str] = []
        if self.max_retries < 1:
            problems.append(f"max_retries 必须 >= 1，当前 {self.max_retries}")
        if self.retry_interval < 0:
            problems.append(f"retry_interval 不能为负，当前 {self.retry_interval}")
        if self.connect_timeout <= 0 or self.transfer_timeout <= 0:
            problems.append("connect_timeout / transfer_timeout 必须为正数")
        if self.max_workers < 1:
            problems.append(f"max_workers 必须 >= 1，当前 {self.max_workers}")
        if self.proxy_host and not self.proxy_port:
            problems.append("配置了 proxy_host 但未配置 proxy_port")
        if problems:
            raise ConfigError("配置无效: " + "; ".join(problems))

    @property
    def proxy_url(self) -> str | None:
        if not self.proxy_host:
            return None
        host = self.proxy_host
        if "://" not in host:
            host = f"http://{host}"
        return f"{host}:{self.proxy_port}"


def _coerce(current: object, raw: object, *, origin: str) -> object:
    """按字段当前值的类型转换配置值

    raw 可以是环境变量字符串，也可以是 YAML 已解析出的值；类型不符时抛 ConfigError。
    """
    if isinstance(current, bool):
        if isinstance(raw, bool):
            return raw
        lowered = raw.strip().lower() if isinstance(raw, str) else None
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ConfigError(f"{origin} 不是布尔值: {raw!r}")
    if isinstance(current, list):
        if isinstance(raw, str):
            return [item.strip() for item in raw.split(",") if item.strip()]
        if isinstance(raw, list):
            return [str(item) for item in raw]
        raise ConfigError(f"{origin} 必须是列表: {raw!r}")
    if isinstance(current, (int, float)):
        if isinstance(raw, bool):
            raise ConfigError(f"{origin} 不是数字: {raw!r}")
        if isinstance(current, int) and isinstance(raw, int):
            return raw
        if isinstance(current, float) and isinstance(raw, (int, float)):
            return float(raw)
        if not isinstance(raw, str):
            raise ConfigError(f"{origin} 不是数字: {raw!r}")
        try:
            return int(raw.strip()) if isinstance(current, int) else float(raw.strip())
        except ValueError as e:
            raise ConfigError(f"{origin} 不是数字: {raw!r}") from e
    if isinstance(raw, (dict, list)):
        raise ConfigError(f"{origin} 必须是字符串: {raw!r}")
    return str(raw).strip()
