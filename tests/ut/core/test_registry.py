"""源注册表测试"""

from __future__ import annotations

from pathlib import Path

import pytest

from pkgengine.core.dep.registry import SourceRegistry, build_source, parse_record
from pkgengine.core.exceptions import RegistryError, ValidationError

SHA = "a" * 64


class TestParseRecord:
    def test_five_fields(self) -> None:
        src = parse_record(f"zfs-zed;https://m.test/pool/zfs-zed_2.1_amd64.deb;{SHA};2.1;amd64")
        assert src.key == "zfs-zed"
        assert src.filename == "zfs-zed_2.1_amd64.deb"
        assert src.checksum == SHA
        assert src.version == "2.1"
        assert src.label == "zfs-zed"

    def test_display_name(self) -> None:
        src = parse_record(f"pv;https://m.test/pv.deb;{SHA};1;all;Pipe Viewer")
        assert src.label == "Pipe Viewer"

    def test_too_few_fields(self) -> None:
        with pytest.raises(ValidationError, match="字段数不足"):
            parse_record("pv;https://m.test/pv.deb;abc")

    def test_version_and_arch_substituted(self) -> None:
        src = build_source("pv", "https://m.test/pv_{version}_{arch}.deb", "", "1.6", "amd64")
        assert src.url == "https://m.test/pv_1.6_amd64.deb"

    @pytest.mark.parametrize("url", [
        "https://m.test/pv_${VERSION}.deb",
        "https://m.test/pv_<ver>.deb",
        "https://m.test/pv_@VERSION@.deb",
        "https://m.test/pv_{release}.deb",
    ])
    def test_placeholder_rejected(self, url: str) -> None:
        with pytest.raises(ValidationError, match="占位符"):
            build_source("pv", url)

    @pytest.mark.parametrize("url", ["pool/pv.deb", "file:///tmp/pv.deb", "https:///pv.deb", "https://m.test/"])
    def test_incomplete_url_rejected(self, url: str) -> None:
        with pytest.raises(ValidationError):
            build_source("pv", url)

    def test_checksum_prefix_and_case(self) -> None:
        src = build_source("pv", "https://m.test/pv.deb", "sha256:" + "AB" * 32)
        assert src.checksum == "ab" * 32

    def test_bad_checksum_rejected(self) -> None:
        with pytest.raises(ValidationError, match="sha256"):
            build_source("pv", "https://m.test/pv.deb", "deadbeef")


class TestLoadText:
    def test_skips_comments_and_invalid(self, tmp_path: Path) -> None:
        f = tmp_path / "sources.list"
        f.write_text(
            "# 注释\n"
            "\n"
            f"pv;https://m.test/pv.deb;{SHA};1;all\n"
            "bad;pool/bad.deb;;1;all\n"
            f"rsync;https://m.test/rsync.deb;;3;amd64\n",
            encoding="utf-8",
        )
        reg = SourceRegistry.load(f)
        assert reg.keys() == ["pv", "rsync"]
        assert len(reg.rejected) == 1
        assert reg.rejected[0][0] == "sources.list:4"

    def test_duplicate_key_keeps_first(self, tmp_path: Path) -> None:
        f = tmp_path / "sources.list"
        f.write_text(
            "pv;https://m.test/a/pv.deb;;1;all\n"
            "pv;https://m.test/b/pv2.deb;;2;all\n",
            encoding="utf-8",
        )
        reg = SourceRegistry.load(f)
        assert reg.get("pv").version == "1"
        assert "重复" in reg.rejected[0][1]

    def test_filename_collision_rejected(self, tmp_path: Path) -> None:
        f = tmp_path / "sources.list"
        f.write_text(
            "pv;https://m.test/a/pv.deb;;1;all\n"
            "pv-alt;https://m.test/b/pv.deb;;1;all\n",
            encoding="utf-8",
        )
        reg = SourceRegistry.load(f)
        assert "pv-alt" not in reg
        assert "冲突" in reg.rejected[0][1]

    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        reg = SourceRegistry.load(tmp_path / "nope.list")
        assert len(reg) == 0
        assert reg.lookup("pv") is None


class TestLoadYaml:
    def test_packages_section(self, tmp_path: Path) -> None:
        f = tmp_path / "sources.yml"
        f.write_text(
            "packages:\n"
            "  pv:\n"
            "    url: https://m.test/pv_{version}.deb\n"
            "    version: '1.6'\n"
            f"    checksum_sha256: {SHA}\n"
            "  broken: not-a-mapping\n",
            encoding="utf-8",
        )
        reg = SourceRegistry.load(f)
        assert reg.get("pv").url == "https://m.test/pv_1.6.deb"
        assert reg.get("pv").checksum == SHA
        assert [r[0] for r in reg.rejected] == ["sources.yml:broken"]


class TestQuery:
    def test_get_unknown_raises(self) -> None:
        reg = SourceRegistry()
        with pytest.raises(RegistryError, match="不在源清单中"):
            reg.get("pv")

    def test_list_sources(self) -> None:
        reg = SourceRegistry([build_source("pv", "https://m.test/pv.deb", "", "1", "all", "Pipe Viewer")])
        rows = reg.list_sources()
        assert rows == [{
            "key": "pv", "name": "Pipe Viewer", "version": "1", "arch": "all",
            "url": "https://m.test/pv.deb", "checksum": "-",
        }]
        assert [s.key for s in reg] == ["pv"]
