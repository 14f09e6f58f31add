"""CLI - 安装与缓存预置命令"""

from __future__ import annotations

import click

from pkgengine.cli import friendly_errors, make_container
from pkgengine.core.dep.catalog import packages_for_group
from pkgengine.core.models import InstallationResult


def register(group: click.Group) -> None:
    group.add_command(ensure)
    group.add_command(ensure_commands)
    group.add_command(populate)


def _collect_keys(keys: tuple[str, ...], groups: tuple[str, ...]) -> list[str]:
    collected = list(keys)
    for name in groups:
        collected.extend(packages_for_group(name))
    if not collected:
        raise click.UsageError("至少指定一个包名或 --group")
    return list(dict.fromkeys(collected))


def _print_result(result: InstallationResult, *, verb: str = "已安装") -> None:
    if result.already_satisfied:
        click.echo(f"已满足: {', '.join(result.already_satisfied)}")
    if result.installed:
        click.echo(f"{verb}: {', '.join(result.installed)}")
    for key in result.failed:
        click.echo(f"失败: {key} - {result.reasons.get(key, '')}")
    if result.unresolved_dependencies:
        click.echo(f"未在源清单中的依赖: {', '.join(result.unresolved_dependencies)}")
    click.echo(f"结果: {result.exit_status.name} ({result.summary()})")


@click.command()
@click.argument("keys", nargs=-1)
@click.option("--group", "-g", "groups", multiple=True, help="包分组（base / zfs / yubikey / all，可多次指定）")
@click.option("--force", is_flag=True, help="忽略缓存，强制重新下载")
@click.option("--skip-checksum", is_flag=True, help="跳过校验和检查")
@click.pass_context
def ensure(
    ctx: click.Context, keys: tuple[str, ...], groups: tuple[str, ...],
    force: bool, skip_checksum: bool,
) -> None:
    """确保指定的包已安装（退出码: 0 全部满足 / 1 全部失败 / 2 部分失败）"""
    with friendly_errors():
        wanted = _collect_keys(keys, groups)
        with make_container(
            ctx, force_redownload=force, skip_checksum=skip_checksum,
        ) as container:
            result = container.orchestrator.ensure(wanted)
    _print_result(result)
    ctx.exit(result.exit_code)


@click.command(name="ensure-commands")
@click.argument("commands", nargs=-1, required=True)
@click.pass_context
def ensure_commands(ctx: click.Context, commands: tuple[str, ...]) -> None:
    """为 PATH 中缺失的命令安装对应的包"""
    with friendly_errors(), make_container(ctx) as container:
        result = container.orchestrator.ensure_commands(commands)
    if not result.requested:
        click.echo("所需命令均已存在")
    else:
        _print_result(result)
    ctx.exit(result.exit_code)


@click.command()
@click.argument("keys", nargs=-1)
@click.option("--group", "-g", "groups", multiple=True, help="包分组（base / zfs / yubikey / all，可多次指定）")
@click.option("--force", is_flag=True, help="忽略缓存，强制重新下载")
@click.pass_context
def populate(
    ctx: click.Context, keys: tuple[str, ...], groups: tuple[str, ...], force: bool,
) -> None:
    """只下载不安装: 把依赖闭包预置到缓存目录，供离线安装使用"""
    with friendly_errors():
        wanted = _collect_keys(keys, groups)
        with make_container(ctx, force_redownload=force) as container:
            result = container.orchestrator.populate(wanted)
            cache_dir = container.config.cache_dir
    _print_result(result, verb="已缓存")
    click.echo(f"缓存目录: {cache_dir}")
    ctx.exit(result.exit_code)
