"""制品获取测试 - 缓存优先 + 重试 + 强制校验"""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from conftest import BASE_URL, FakeMirror, deb_name, flip_middle, make_tgz, make_zip, noise
from pkgengine.core.dep.cache import CacheStore, signature_path
from pkgengine.core.dep.fetcher import ArtifactFetcher
from pkgengine.core.dep.registry import build_source
from pkgengine.core.dep.verifier import IntegrityVerifier
from pkgengine.core.exceptions import AcquisitionError, IntegrityError, NetworkError
from pkgengine.core.models import OutcomeStatus


def _fetcher(tmp_path: Path, mirror: FakeMirror, **kwargs) -> ArtifactFetcher:
    kwargs.setdefault("retry_interval", 0)
    verifier = kwargs.pop("verifier", IntegrityVerifier())
    return ArtifactFetcher(
        CacheStore(tmp_path / "cache"), verifier, client=mirror.client(), **kwargs,
    )


class TestDownload:
    def test_download_and_verify(self, tmp_path: Path, mirror: FakeMirror) -> None:
        src = mirror.add("pv")
        outcome = _fetcher(tmp_path, mirror).acquire_outcome(src)
        assert outcome.status == OutcomeStatus.SUCCESS
        assert outcome.attempts == 1
        assert outcome.entry is not None
        assert outcome.entry.path.read_bytes() == mirror.files[deb_name("pv")]
        assert not CacheStore.partial_path(outcome.entry.path).exists()

    def test_cache_hit_makes_no_request(self, tmp_path: Path, mirror: FakeMirror) -> None:
        src = mirror.add("pv")
        fetcher = _fetcher(tmp_path, mirror)
        fetcher.acquire(src)
        outcome = fetcher.acquire_outcome(src)
        assert outcome.status == OutcomeStatus.SKIPPED_ALREADY_VALID
        assert outcome.attempts == 0
        assert mirror.count("pv") == 1

    def test_force_redownload(self, tmp_path: Path, mirror: FakeMirror) -> None:
        src = mirror.add("pv")
        _fetcher(tmp_path, mirror).acquire(src)
        outcome = _fetcher(tmp_path, mirror, force_redownload=True).acquire_outcome(src)
        assert outcome.status == OutcomeStatus.SUCCESS
        assert mirror.count("pv") == 2

    def test_dest_dir(self, tmp_path: Path, mirror: FakeMirror) -> None:
        src = mirror.add("pv")
        entry = _fetcher(tmp_path, mirror).acquire(src, dest_dir=tmp_path / "elsewhere")
        assert entry.path == tmp_path / "elsewhere" / deb_name("pv")


class TestRetry:
    def test_exactly_max_retries_attempts(self, tmp_path: Path, mirror: FakeMirror) -> None:
        src = mirror.add("pv")
        mirror.fail_next("pv", httpx.ConnectError, httpx.ConnectError, httpx.ConnectError, httpx.ConnectError)
        outcome = _fetcher(tmp_path, mirror, max_retries=3).acquire_outcome(src)
        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.error_kind == "network"
        assert outcome.attempts == 3
        assert mirror.count("pv") == 3
        assert not (tmp_path / "cache" / deb_name("pv")).exists()

    def test_linear_backoff(self, tmp_path: Path, mirror: FakeMirror) -> None:
        src = mirror.add("pv")
        mirror.fail_next("pv", 503, 503)
        sleeps: list[float] = []
        fetcher = _fetcher(tmp_path, mirror, max_retries=3, retry_interval=2.0, sleep=sleeps.append)
        outcome = fetcher.acquire_outcome(src)
        assert outcome.status == OutcomeStatus.SUCCESS
        assert outcome.attempts == 3
        assert sleeps == [2.0, 4.0]

    def test_not_found_is_not_retried(self, tmp_path: Path, mirror: FakeMirror) -> None:
        src = build_source("ghost", "https://mirror.test/pool/ghost_1.0_amd64.deb")
        with pytest.raises(NetworkError) as exc_info:
            _fetcher(tmp_path, mirror).acquire(src)
        assert exc_info.value.attempts == 1
        assert mirror.count("ghost") == 1


class TestIntegrity:
    def test_corrupt_download_deleted_without_retry(self, tmp_path: Path, mirror: FakeMirror) -> None:
        src = mirror.add("pv")
        mirror.files[deb_name("pv")] = b"!<arch>\nwrong content"
        outcome = _fetcher(tmp_path, mirror).acquire_outcome(src)
        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.error_kind == "integrity"
        assert mirror.count("pv") == 1
        assert not (tmp_path / "cache" / deb_name("pv")).exists()

    def test_corrupt_cache_refetched_online(self, tmp_path: Path, mirror: FakeMirror) -> None:
        src = mirror.add("pv")
        fetcher = _fetcher(tmp_path, mirror)
        entry = fetcher.acquire(src)
        entry.path.write_bytes(b"bit rot")
        outcome = fetcher.acquire_outcome(src)
        assert outcome.status == OutcomeStatus.SUCCESS
        assert entry.path.read_bytes() == mirror.files[deb_name("pv")]
        assert mirror.count("pv") == 2

    def test_corrupt_cache_offline_fails(self, tmp_path: Path, mirror: FakeMirror) -> None:
        src = mirror.add("pv")
        entry = _fetcher(tmp_path, mirror).acquire(src)
        entry.path.write_bytes(b"bit rot")
        offline = _fetcher(tmp_path, mirror, offline=True)
        with pytest.raises(AcquisitionError, match="离线模式"):
            offline.acquire(src)
        assert not entry.path.exists()
        assert mirror.count("pv") == 1

    def test_integrity_error_raised_from_acquire(self, tmp_path: Path, mirror: FakeMirror) -> None:
        src = mirror.add("pv")
        mirror.files[deb_name("pv")] = b"tampered"
        with pytest.raises(IntegrityError):
            _fetcher(tmp_path, mirror).acquire(src)



class TestArchiveCheck:
    def _archive_fetcher(self, tmp_path: Path, mirror: FakeMirror) -> ArtifactFetcher:
        return _fetcher(tmp_path, mirror, verifier=IntegrityVerifier(verify_archive=True))

    def test_corrupt_tgz_deleted_and_refetched_after_fix(self, tmp_path: Path, mirror: FakeMirror) -> None:
        good = make_tgz(noise(64 * 1024))
        mirror.files["pkg_1.0.tar.gz"] = flip_middle(good)
        src = build_source("pkg", f"{BASE_URL}/pkg_1.0.tar.gz")
        fetcher = self._archive_fetcher(tmp_path, mirror)

        outcome = fetcher.acquire_outcome(src)
        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.error_kind == "integrity"
        assert not (tmp_path / "cache" / "pkg_1.0.tar.gz").exists()

        mirror.files["pkg_1.0.tar.gz"] = good
        outcome = fetcher.acquire_outcome(src)
        assert outcome.status == OutcomeStatus.SUCCESS
        assert mirror.requests == ["pkg_1.0.tar.gz", "pkg_1.0.tar.gz"]

    def test_corrupt_zip_is_integrity_failure(self, tmp_path: Path, mirror: FakeMirror) -> None:
        mirror.files["pkg_1.0.zip"] = flip_middle(make_zip(noise(32 * 1024).hex()))
        src = build_source("pkg", f"{BASE_URL}/pkg_1.0.zip")
        outcome = self._archive_fetcher(tmp_path, mirror).acquire_outcome(src)
        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.error_kind == "integrity"
        assert not (tmp_path / "cache" / "pkg_1.0.zip").exists()

    def test_corrupt_cached_archive_replaced(self, tmp_path: Path, mirror: FakeMirror) -> None:
        good = make_zip(noise(32 * 1024).hex())
        mirror.files["pkg_1.0.zip"] = good
        cached = tmp_path / "cache" / "pkg_1.0.zip"
        cached.parent.mkdir()
        cached.write_bytes(flip_middle(good))
        src = build_source("pkg", f"{BASE_URL}/pkg_1.0.zip")
        outcome = self._archive_fetcher(tmp_path, mirror).acquire_outcome(src)
        assert outcome.status == OutcomeStatus.SUCCESS
        assert cached.read_bytes() == good

class TestOffline:
    def test_valid_cache_used_offline(self, tmp_path: Path, mirror: FakeMirror) -> None:
        src = mirror.add("pv")
        _fetcher(tmp_path, mirror).acquire(src)
        outcome = _fetcher(tmp_path, mirror, offline=True).acquire_outcome(src)
        assert outcome.status == OutcomeStatus.SKIPPED_ALREADY_VALID
        assert mirror.count("pv") == 1

    def test_empty_cache_offline(self, tmp_path: Path, mirror: FakeMirror) -> None:
        src = mirror.add("pv")
        outcome = _fetcher(tmp_path, mirror, offline=True).acquire_outcome(src)
        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.error_kind == "offline"
        assert mirror.requests == []

    def test_force_offline_uses_valid_cache(self, tmp_path: Path, mirror: FakeMirror) -> None:
        src = mirror.add("pv")
        _fetcher(tmp_path, mirror).acquire(src)
        outcome = _fetcher(tmp_path, mirror, offline=True, force_redownload=True).acquire_outcome(src)
        assert outcome.status == OutcomeStatus.SKIPPED_ALREADY_VALID
        assert mirror.count("pv") == 1


class TestSignature:
    def test_signature_fetched_when_enabled(self, tmp_path: Path, mirror: FakeMirror) -> None:
        src = mirror.add("pv")
        mirror.files[deb_name("pv") + ".sig"] = b"signature"
        verifier = IntegrityVerifier(verify_signature=True)
        entry = _fetcher(tmp_path, mirror, verifier=verifier).acquire(src)
        assert signature_path(entry.path).read_bytes() == b"signature"

    def test_missing_signature_only_warns(self, tmp_path: Path, mirror: FakeMirror) -> None:
        src = mirror.add("pv")
        verifier = IntegrityVerifier(verify_signature=True)
        outcome = _fetcher(tmp_path, mirror, verifier=verifier).acquire_outcome(src)
        assert outcome.ok
        assert not signature_path(outcome.entry.path).exists()

    def test_force_redownload_refreshes_signature(self, tmp_path: Path, mirror: FakeMirror) -> None:
        src = mirror.add("pv")
        mirror.files[deb_name("pv") + ".sig"] = b"old signature"
        verifier = IntegrityVerifier(verify_signature=True)
        _fetcher(tmp_path, mirror, verifier=verifier).acquire(src)

        mirror.files[deb_name("pv") + ".sig"] = b"new signature"
        entry = _fetcher(tmp_path, mirror, verifier=verifier, force_redownload=True).acquire(src)
        assert signature_path(entry.path).read_bytes() == b"new signature"

    def test_stale_signature_dropped_when_unavailable(self, tmp_path: Path, mirror: FakeMirror) -> None:
        src = mirror.add("pv")
        mirror.files[deb_name("pv") + ".sig"] = b"old signature"
        verifier = IntegrityVerifier(verify_signature=True)
        _fetcher(tmp_path, mirror, verifier=verifier).acquire(src)

        del mirror.files[deb_name("pv") + ".sig"]
        entry = _fetcher(tmp_path, mirror, verifier=verifier, force_redownload=True).acquire(src)
        assert not signature_path(entry.path).exists()

    def test_integrity_failure_removes_signature(self, tmp_path: Path, mirror: FakeMirror) -> None:
        src = mirror.add("pv")
        mirror.files[deb_name("pv")] = b"!<arch>\ntampered"
        mirror.files[deb_name("pv") + ".sig"] = b"signature"
        verifier = IntegrityVerifier(verify_signature=True)
        outcome = _fetcher(tmp_path, mirror, verifier=verifier).acquire_outcome(src)
        assert outcome.error_kind == "integrity"
        assert not signature_path(tmp_path / "cache" / deb_name("pv")).exists()
