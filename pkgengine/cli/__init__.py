"""pkgengine 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Any, Callable, Iterator

import click

from pkgengine import __version__
from pkgengine.core.config import Config
from pkgengine.core.exceptions import PkgEngineError
from pkgengine.services.container import ServiceContainer
from pkgengine.utils.logger import setup_logging

ContainerFactory = Callable[[Config], ServiceContainer]


def load_config(ctx: click.Context, **overrides: Any) -> Config:
    """按全局选项加载配置，命令行开关优先于文件和环境变量"""
    obj = ctx.find_root().obj
    cfg = Config.load(obj["config_path"])
    if obj["offline"]:
        cfg.offline = True
    for name, value in overrides.items():
        if value:
            setattr(cfg, name, value)
    cfg.validate()
    return cfg


def make_container(ctx: click.Context, **overrides: Any) -> ServiceContainer:
    factory: ContainerFactory = ctx.find_root().obj.get("container_factory") or ServiceContainer
    return factory(load_config(ctx, **overrides))


@contextmanager
def friendly_errors() -> Iterator[None]:
    """把领域异常转换为一行错误提示和退出码 1"""
    try:
        yield
    except PkgEngineError as e:
        click.echo(f"错误: {e}", err=True)
        raise click.exceptions.Exit(1) from e


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", "config_path",
              default=lambda: os.getenv("PKGENGINE_CONFIG", "configs/pkgengine.yml"),
              help="配置文件路径")
@click.option("--offline", is_flag=True, help="离线模式: 只使用本地缓存")
@click.pass_context
def main(ctx: click.Context, config_path: str, offline: bool) -> None:
    """pkgengine - 安装器依赖包获取与解析引擎"""
    setup_logging(
        level=os.getenv("PKGENGINE_LOG_LEVEL", "INFO"),
        json_output=os.getenv("PKGENGINE_LOG_JSON", "") == "1",
        log_file=os.getenv("PKGENGINE_LOG_FILE", ""),
    )
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["offline"] = offline


# 注册各领域子命令
from pkgengine.cli.cmd_ensure import register as _reg_ensure  # noqa: E402
from pkgengine.cli.cmd_deps import register as _reg_deps  # noqa: E402
from pkgengine.cli.cmd_misc import register as _reg_misc  # noqa: E402

_reg_ensure(main)
_reg_deps(main)
_reg_misc(main)
