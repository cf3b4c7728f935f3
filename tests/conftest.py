"""nvx 测试共用的 pytest fixture。"""

import io
import os
import shutil
import tarfile
import tempfile
import zipfile

# 日志写到临时主目录，必须在导入 nvx 之前设置
os.environ.setdefault("NVX_HOME", tempfile.mkdtemp(prefix="nvx-test-home-"))

import pytest

from nvx.core.interfaces import IArchiveFetcher, IPathPublisher
from nvx.core.version_store import VersionStore


def _write_zip(path, entries):
    with zipfile.ZipFile(path, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, value in entries.items():
            if value is None:
                info = zipfile.ZipInfo(name if name.endswith("/") else name + "/")
                info.external_attr = (0o40755 << 16) | 0x10
                zf.writestr(info, b"")
                continue
            data, mode = value if isinstance(value, tuple) else (value, 0o644)
            info = zipfile.ZipInfo(name)
            info.external_attr = (0o100000 | mode) << 16
            info.compress_type = zipfile.ZIP_DEFLATED
            zf.writestr(info, data)
    return str(path)


def _write_tar(path, entries, compression="xz", symlinks=None):
    mode = f"w:{compression}" if compression else "w"
    with tarfile.open(path, mode) as tf:
        for name, value in entries.items():
            if value is None:
                info = tarfile.TarInfo(name.rstrip("/"))
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tf.addfile(info)
                continue
            data, file_mode = value if isinstance(value, tuple) else (value, 0o644)
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = file_mode
            tf.addfile(info, io.BytesIO(data))
        for name, target in (symlinks or {}).items():
            info = tarfile.TarInfo(name)
            info.type = tarfile.SYMTYPE
            info.linkname = target
            info.mode = 0o777
            tf.addfile(info)
    return str(path)


@pytest.fixture
def make_zip(tmp_path):
    """根据 {名称: 内容 | (内容, 权限) | None 表示目录} 生成 zip 归档。"""
    def _make(entries, name="archive.zip"):
        return _write_zip(tmp_path / name, entries)
    return _make


@pytest.fixture
def make_tar(tmp_path):
    """用与 make_zip 相同的条目映射生成 tar 归档，默认 xz 压缩。"""
    def _make(entries, name="archive.tar.xz", compression="xz", symlinks=None):
        return _write_tar(tmp_path / name, entries, compression, symlinks)
    return _make


@pytest.fixture
def versions_root(tmp_path):
    root = tmp_path / "versions"
    root.mkdir()
    return root


@pytest.fixture
def store(versions_root):
    return VersionStore(str(versions_root))


@pytest.fixture
def install_version(store):
    """创建包含指定文件的已安装版本目录。"""
    def _install(version, files=None):
        install_dir = store.install_dir_for(version)
        os.makedirs(install_dir, exist_ok=True)
        for rel, data in (files or {}).items():
            path = os.path.join(install_dir, *rel.split("/"))
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as f:
                f.write(data)
        return install_dir
    return _install


class RecordingPublisher(IPathPublisher):
    def __init__(self):
        self.published = []

    def publish(self, directory):
        self.published.append(directory)


@pytest.fixture
def publisher():
    return RecordingPublisher()


class FakeFetcher(IArchiveFetcher):
    """不联网，直接提供预先生成的归档文件。"""

    def __init__(self, archive_path, download_dir):
        self.archive_path = archive_path
        self.download_dir = download_dir
        self.calls = []

    def open_stream(self, version, platform_tag, extension):
        self.calls.append(("open_stream", version, platform_tag, extension))
        stream = open(self.archive_path, "rb")
        return stream, os.path.getsize(self.archive_path)

    def download(self, version, platform_tag, extension, progress_callback=None):
        self.calls.append(("download", version, platform_tag, extension))
        os.makedirs(self.download_dir, exist_ok=True)
        target = os.path.join(self.download_dir, os.path.basename(self.archive_path))
        shutil.copyfile(self.archive_path, target)
        if progress_callback:
            size = os.path.getsize(target)
            progress_callback(size, size)
        return target


@pytest.fixture
def fake_fetcher_factory(tmp_path):
    def _factory(archive_path):
        return FakeFetcher(archive_path, str(tmp_path / "downloads"))
    return _factory
