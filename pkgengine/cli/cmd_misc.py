"""CLI - 杂项命令（网络探测、缓存维护）"""

from __future__ import annotations

import click

from pkgengine.cli import friendly_errors, make_container


def register(group: click.Group) -> None:
    group.add_command(check_online)
    group.add_command(cache_group)


@click.command(name="check-online")
@click.pass_context
def check_online(ctx: click.Context) -> None:
    """探测网络连通性（退出码 0 在线 / 1 离线）"""
    with friendly_errors(), make_container(ctx) as container:
        online = container.probe.is_online()
    click.echo("在线" if online else "离线")
    ctx.exit(0 if online else 1)


# ---- 缓存 ----

@click.group(name="cache")
def cache_group() -> None:
    """本地制品缓存维护"""


@cache_group.command(name="list")
@click.pass_context
def cache_list(ctx: click.Context) -> None:
    """列出缓存中的制品"""
    with friendly_errors(), make_container(ctx) as container:
        artifacts = container.cache.list_artifacts()
    if not artifacts:
        click.echo("缓存为空。")
    for path in artifacts:
        click.echo(f"  {path.name:50s} {path.stat().st_size:>12d}")


@cache_group.command(name="purge-partials")
@click.pass_context
def cache_purge(ctx: click.Context) -> None:
    """清理中断下载遗留的临时文件"""
    with friendly_errors(), make_container(ctx) as container:
        removed = container.cache.purge_partials()
    click.echo(f"已清理 {removed} 个临时文件")
