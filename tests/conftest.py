"""测试公共夹具 - 内存中的平台协作者与模拟镜像站

约定:
- 制品文件名为 <key>_1.0_amd64.deb，fake 通过文件名反查包 key
- 镜像站通过 httpx.MockTransport 提供，记录每次请求
"""

from __future__ import annotations

import hashlib
import io
import tarfile
import zipfile
from pathlib import Path
from typing import Callable, Iterable

import httpx
import pytest

from pkgengine.core.config import Config
from pkgengine.core.dep.registry import build_source
from pkgengine.core.models import PackageSource
from pkgengine.services.container import ServiceContainer
from pkgengine.utils.logger import reset_logging
from pkgengine.utils.shell import CommandResult

BASE_URL = "https://mirror.test/pool"


def deb_name(key: str) -> str:
    return f"{key}_1.0_amd64.deb"


def key_of(path: Path | str) -> str:
    return Path(path).name.split("_", 1)[0]


def ok(stdout: str = "") -> CommandResult:
    return CommandResult(returncode=0, stdout=stdout, stderr="")


def fail(returncode: int = 1, stderr: str = "error") -> CommandResult:
    return CommandResult(returncode=returncode, stdout="", stderr=stderr)


def noise(size: int) -> bytes:
    """确定性的不可压缩字节"""
    blocks = (hashlib.sha256(str(i).encode()).digest() for i in range(size // 32 + 1))
    return b"".join(blocks)[:size]


def make_tgz(data: bytes, member: str = "payload.bin") -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        info = tarfile.TarInfo(member)
        info.size = len(data)
        tf.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def make_zip(text: str, member: str = "payload.txt") -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(member, text)
    return buf.getvalue()


def flip_middle(data: bytes, count: int = 64) -> bytes:
    """翻转中间 count 个字节，模拟传输损坏"""
    damaged = bytearray(data)
    mid = len(damaged) // 2
    for i in range(mid, mid + count):
        damaged[i] ^= 0xFF
    return bytes(damaged)


# =========================================================================
# 模拟镜像站
# =========================================================================

class FakeMirror:
    """按文件名提供制品内容；可为某个文件预置若干次失败响应"""

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.requests: list[str] = []
        self._failures: dict[str, list[int | type[Exception]]] = {}

    def add(self, key: str, content: bytes | None = None, *, checksum: bool = True) -> PackageSource:
        data = content if content is not None else b"!<arch>\n" + key.encode() * 64
        self.files[deb_name(key)] = data
        return build_source(
            key, f"{BASE_URL}/{deb_name(key)}",
            hashlib.sha256(data).hexdigest() if checksum else "",
            "1.0", "amd64",
        )

    def fail_next(self, key: str, *responses: int | type[Exception]) -> None:
        self._failures.setdefault(deb_name(key), []).extend(responses)

    def count(self, key: str) -> int:
        return self.requests.count(deb_name(key))

    def handler(self, request: httpx.Request) -> httpx.Response:
        name = request.url.path.rsplit("/", 1)[-1]
        self.requests.append(name)
        queue = self._failures.get(name)
        if queue:
            item = queue.pop(0)
            if isinstance(item, int):
                return httpx.Response(item)
            raise item("模拟网络故障", request=request)
        if name in self.files:
            return httpx.Response(200, content=self.files[name])
        return httpx.Response(404)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))


# =========================================================================
# 平台协作者
# =========================================================================

class FakeDatabase:
    """内存包数据库

    installed: 当前已安装的包
    repository: 系统仓库能提供的包（install_from_repositories 可装上）
    broken: 安装必然失败的包；整批安装包含其中任一个时整批失败
    """

    def __init__(
        self,
        installed: Iterable[str] = (),
        repository: Iterable[str] = (),
        broken: Iterable[str] = (),
    ) -> None:
        self.installed = set(installed)
        self.repository = set(repository)
        self.broken = set(broken)
        self.file_batches: list[list[str]] = []
        self.repo_calls: list[list[str]] = []
        self.fix_broken_calls = 0

    def is_installed(self, key: str) -> bool:
        return key in self.installed

    def install_files(self, paths) -> CommandResult:
        keys = [key_of(p) for p in paths]
        self.file_batches.append(keys)
        bad = [k for k in keys if k in self.broken]
        if bad:
            return fail(1, f"dpkg: 处理 {bad[0]} 时出错")
        self.installed.update(keys)
        return ok()

    def install_from_repositories(self, keys) -> CommandResult:
        self.repo_calls.append(list(keys))
        available = [k for k in keys if k in self.repository]
        self.installed.update(available)
        return ok() if len(available) == len(keys) else fail(100, "无法定位软件包")

    def fix_broken(self) -> CommandResult:
        self.fix_broken_calls += 1
        return ok()


class FakeProbe:
    def __init__(self, online: bool = False) -> None:
        self.online = online
        self.calls = 0

    def is_online(self) -> bool:
        self.calls += 1
        return self.online


class FakeReader:
    """按包 key 返回预置的依赖列表"""

    def __init__(self, deps: dict[str, list[str]] | None = None) -> None:
        self.deps = deps or {}
        self.reads: list[str] = []

    def dependencies(self, artifact: Path) -> list[str]:
        key = key_of(artifact)
        self.reads.append(key)
        return list(self.deps.get(key, []))


class FakeExecutor:
    """按命令首词返回预置结果，记录全部调用"""

    def __init__(self, responses: dict[str, CommandResult] | None = None) -> None:
        self.responses = responses or {}
        self.calls: list[list[str]] = []
        self.envs: list[dict[str, str] | None] = []

    def execute(self, cmd, *, cwd=".", env=None, timeout=None) -> CommandResult:
        argv = cmd.split() if isinstance(cmd, str) else list(cmd)
        self.calls.append(argv)
        self.envs.append(env)
        return self.responses.get(argv[0], ok())


# =========================================================================
# 夹具
# =========================================================================

@pytest.fixture(autouse=True)
def _clean_logging():
    yield
    reset_logging()


@pytest.fixture
def mirror() -> FakeMirror:
    return FakeMirror()


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def fake_probe() -> FakeProbe:
    return FakeProbe(online=True)


@pytest.fixture
def fake_reader() -> FakeReader:
    return FakeReader()


def write_registry(path: Path, sources: Iterable[PackageSource]) -> Path:
    lines = ["# key;url;checksum;version;arch"]
    lines += [f"{s.key};{s.url};{s.checksum};{s.version};{s.arch}" for s in sources]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def make_container(
    tmp_path: Path, mirror: FakeMirror, fake_db: FakeDatabase,
    fake_probe: FakeProbe, fake_reader: FakeReader,
) -> Callable[..., ServiceContainer]:
    """构造全部协作者为 fake 的容器；关键字参数覆盖 Config 字段"""
    created: list[ServiceContainer] = []

    def factory(sources: Iterable[PackageSource] = (), **overrides) -> ServiceContainer:
        registry = write_registry(tmp_path / "sources.list", sources)
        fields = dict(
            registry_file=str(registry),
            cache_dir=str(tmp_path / "cache"),
            retry_interval=0,
            max_retries=3,
        )
        fields.update(overrides)
        cfg = Config(**fields)
        container = ServiceContainer(
            cfg,
            executor=FakeExecutor(),
            client=mirror.client(),
            database=fake_db,
            probe=fake_probe,
            reader=fake_reader,
        )
        created.append(container)
        return container

    yield factory
    for c in created:
        c.close()
