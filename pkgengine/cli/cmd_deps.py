"""CLI - 源清单、依赖解析与缓存校验命令"""

from __future__ import annotations

import click

from pkgengine.cli import friendly_errors, make_container
from pkgengine.core.dep.catalog import PACKAGE_GROUPS


def register(group: click.Group) -> None:
    group.add_command(resolve_deps)
    group.add_command(list_sources)
    group.add_command(verify_cached)
    group.add_command(list_groups)


@click.command(name="resolve")
@click.argument("keys", nargs=-1, required=True)
@click.pass_context
def resolve_deps(ctx: click.Context, keys: tuple[str, ...]) -> None:
    """解析依赖闭包（会获取制品到缓存，不安装）"""
    with friendly_errors(), make_container(ctx) as container:
        resolution = container.resolver(skip_installed=False).resolve(keys)

    click.echo("安装顺序:")
    for i, key in enumerate(resolution.order, 1):
        outcome = resolution.outcomes[key]
        click.echo(f"  {i:3d}. {key:30s} [{outcome.status.value}]")
    for dep, requirers in sorted(resolution.unresolved.items()):
        click.echo(f"  未在源清单中: {dep} (来自 {', '.join(requirers)})")
    for key in resolution.failed:
        click.echo(f"  失败: {key} - {resolution.outcomes[key].reason}")
    ctx.exit(1 if resolution.failed else 0)


@click.command(name="sources")
@click.pass_context
def list_sources(ctx: click.Context) -> None:
    """列出源清单中的包及被拒绝的记录"""
    with friendly_errors(), make_container(ctx) as container:
        registry = container.registry
    sources = registry.list_sources()
    if not sources:
        click.echo("源清单为空。")
    for s in sources:
        click.echo(
            f"  {s['key']:30s} {s['version']:14s} {s['arch']:6s} "
            f"sha256={s['checksum'][:12]}  {s['url']}"
        )
    if registry.rejected:
        click.echo(f"被拒绝的记录 ({len(registry.rejected)}):")
        for origin, reason in registry.rejected:
            click.echo(f"  {origin}: {reason}")


@click.command(name="verify")
@click.argument("key")
@click.pass_context
def verify_cached(ctx: click.Context, key: str) -> None:
    """校验缓存中某个包的制品（不联网）"""
    with friendly_errors(), make_container(ctx) as container:
        source = container.registry.get(key)
        entry = container.cache.lookup(source)
        if entry is None:
            click.echo(f"缓存中没有 {key} ({source.filename})", err=True)
            ctx.exit(1)
        report = container.verifier.verify(entry, source)

    click.echo(f"制品: {report.path}")
    click.echo(f"  校验和: {report.checksum}")
    click.echo(f"  归档:   {report.archive}")
    click.echo(f"  签名:   {report.signature}")
    for warning in report.warnings:
        click.echo(f"  警告: {warning}")


@click.command(name="groups")
def list_groups() -> None:
    """列出内置包分组"""
    for name, packages in PACKAGE_GROUPS.items():
        click.echo(f"{name} ({len(packages)}):")
        click.echo(f"  {' '.join(packages)}")
