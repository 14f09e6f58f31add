"""安装器内置包目录

- 标准包分组: base / zfs / yubikey（离线缓存预置与 ensure --group 使用）
- 命令 → 包名映射: 其他安装阶段按"缺哪个命令"申请依赖时使用
"""

from __future__ import annotations

import shutil
from typing import Callable, Iterable

from pkgengine.core.exceptions import ValidationError

PACKAGE_GROUPS: dict[str, tuple[str, ...]] = {
    "base": (
        "grub-efi-amd64", "grub-pc", "efibootmgr", "postfix", "open-iscsi",
        "cryptsetup-bin", "debootstrap", "wget", "curl", "gdisk", "rsync",
        "usbutils", "dialog", "pv",
    ),
    "zfs": (
        "zfsutils-linux", "libnvpair3linux", "libutil3linux",
        "libzfs6linux", "libzpool6linux", "zfs-zed",
    ),
    "yubikey": (
        "yubikey-luks", "cryptsetup-run", "yubikey-manager", "python3-ykman",
        "python3-click", "python3-cryptography", "python3-fido2",
        "yubikey-personalization", "libyubikey-udev", "libpam-yubico",
        "ykcs11", "libykpers-1-1", "libyubikey0", "pcscd",
    ),
}

# 命令名与包名不一致的情况；未列出的命令按同名包处理
COMMAND_PACKAGES: dict[str, str] = {
    "mkfs.vfat": "dosfstools",
    "mkfs.ext4": "e2fsprogs",
    "dhclient": "isc-dhcp-client",
    "zfs": "zfsutils-linux",
    "zpool": "zfsutils-linux",
    "cryptsetup": "cryptsetup-bin",
    "yubikey-luks-enroll": "yubikey-luks",
    "lsusb": "usbutils",
    "grub-install": "grub-pc",
    "update-grub": "grub-pc",
    "sgdisk": "gdisk",
    "ykman": "yubikey-manager",
}


def packages_for_group(name: str) -> list[str]:
    """按分组名取包列表；"all" 为全部分组去重合并"""
    if name == "all":
        merged: dict[str, None] = {}
        for pkgs in PACKAGE_GROUPS.values():
            merged.update(dict.fromkeys(pkgs))
        return list(merged)
    if name not in PACKAGE_GROUPS:
        raise ValidationError(
            f"未知的包分组 '{name}'，可用: {', '.join([*PACKAGE_GROUPS, 'all'])}"
        )
    return list(PACKAGE_GROUPS[name])


def packages_for_commands(commands: Iterable[str]) -> list[str]:
    """命令名映射为包名（去重，保持顺序）"""
    return list(dict.fromkeys(COMMAND_PACKAGES.get(c, c) for c in commands))


def missing_commands(
    commands: Iterable[str],
    which: Callable[[str], str | None] = shutil.which,
) -> list[str]:
    """返回当前 PATH 中找不到的命令"""
    return [c for c in commands if which(c) is None]
