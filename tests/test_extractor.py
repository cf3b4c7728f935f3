"""并发归档解压测试。"""

import io
import os
import stat
import sys
import threading

import pytest

from nvx.core.extractor import ArchiveExtractor, ExtractionJob
from nvx.errors import ExtractionError

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="仅 POSIX 支持权限位和符号链接")


def _tree(root):
    """返回 root 下每个文件的 相对路径 -> (内容, 权限)。"""
    result = {}
    for dirpath, _, files in os.walk(root):
        for name in files:
            path = os.path.join(dirpath, name)
            rel = os.path.relpath(path, root).replace(os.sep, "/")
            with open(path, "rb") as f:
                result[rel] = (f.read(), stat.S_IMODE(os.stat(path).st_mode))
    return result


def _many_files(count=40):
    return {
        f"pkg/dir{i % 5}/file{i}.txt": (f"content-{i}".encode() * (i + 1), 0o644 if i % 2 else 0o755)
        for i in range(count)
    }


def test_zip_extracts_files_with_content(make_zip, tmp_path):
    archive = make_zip({
        "node/": None,
        "node/node.exe": (b"MZ-binary", 0o755),
        "node/README.md": b"readme",
    })
    dest = tmp_path / "out"

    written = ArchiveExtractor(workers=2).extract(archive, str(dest))

    assert written == 2
    assert (dest / "node" / "node.exe").read_bytes() == b"MZ-binary"
    assert (dest / "node" / "README.md").read_bytes() == b"readme"


def test_tar_xz_extracts_files_with_content(make_tar, tmp_path):
    archive = make_tar({
        "node-v20.11.1-linux-x64": None,
        "node-v20.11.1-linux-x64/bin/node": (b"\x7fELF", 0o755),
        "node-v20.11.1-linux-x64/LICENSE": b"MIT",
    })
    dest = tmp_path / "out"

    written = ArchiveExtractor().extract(archive, str(dest))

    assert written == 2
    assert (dest / "node-v20.11.1-linux-x64" / "bin" / "node").read_bytes() == b"\x7fELF"
    assert (dest / "node-v20.11.1-linux-x64" / "LICENSE").read_bytes() == b"MIT"


@pytest.mark.parametrize("compression", ["xz", "gz", "bz2", ""])
def test_tar_compression_detected_by_content(make_tar, tmp_path, compression):
    archive = make_tar({"a/b.txt": b"payload"}, name="archive.bin", compression=compression)
    dest = tmp_path / "out"

    ArchiveExtractor().extract(archive, str(dest))

    assert (dest / "a" / "b.txt").read_bytes() == b"payload"


def test_compressed_tar_temp_file_is_removed(make_tar, tmp_path):
    archive = make_tar({"a.txt": b"x"})
    before = set(os.listdir(tmp_path))

    ArchiveExtractor().extract(archive, str(tmp_path / "out"))

    after = set(os.listdir(tmp_path)) - {"out"}
    assert after == before


@posix_only
@pytest.mark.parametrize("builder", ["make_zip", "make_tar"])
def test_permission_bits_preserved(request, builder, tmp_path):
    make = request.getfixturevalue(builder)
    archive = make({"bin/node": (b"exe", 0o755), "lib/data.json": (b"{}", 0o640)})
    dest = tmp_path / "out"

    ArchiveExtractor().extract(archive, str(dest))

    assert stat.S_IMODE(os.stat(dest / "bin" / "node").st_mode) == 0o755
    assert stat.S_IMODE(os.stat(dest / "lib" / "data.json").st_mode) == 0o640


@pytest.mark.parametrize("builder", ["make_zip", "make_tar"])
def test_single_worker_and_pool_produce_identical_trees(request, builder, tmp_path):
    make = request.getfixturevalue(builder)
    entries = _many_files()
    archive = make(entries)

    ArchiveExtractor(workers=1).extract(archive, str(tmp_path / "serial"))
    ArchiveExtractor(workers=os.cpu_count() or 4).extract(archive, str(tmp_path / "parallel"))

    serial = _tree(tmp_path / "serial")
    assert len(serial) == len(entries)
    assert serial == _tree(tmp_path / "parallel")
    for name, (data, _) in entries.items():
        assert serial[name][0] == data


def test_empty_directory_entry_is_materialized(make_zip, tmp_path):
    archive = make_zip({"lib/": None, "bin/node": b"x"})
    dest = tmp_path / "out"

    ArchiveExtractor().extract(archive, str(dest))

    assert (dest / "lib").is_dir()
    assert list((dest / "lib").iterdir()) == []


def test_empty_archive_succeeds(make_zip, tmp_path):
    archive = make_zip({})
    dest = tmp_path / "out"

    assert ArchiveExtractor().extract(archive, str(dest)) == 0
    assert dest.is_dir()


def test_missing_archive_fails_before_extraction(tmp_path):
    with pytest.raises(ExtractionError) as exc_info:
        ArchiveExtractor().extract(str(tmp_path / "missing.zip"), str(tmp_path / "out"))
    assert exc_info.value.entry is None
    assert not (tmp_path / "out").exists()


def test_corrupt_archive_fails_before_extraction(tmp_path):
    bogus = tmp_path / "bogus.tar.xz"
    bogus.write_bytes(b"\xfd7zXZ\x00" + b"not really xz data" * 10)

    with pytest.raises(ExtractionError):
        ArchiveExtractor().extract(str(bogus), str(tmp_path / "out"))
    assert not (tmp_path / "out").exists()


@pytest.mark.parametrize("bad_name", ["../escape.txt", "a/../../escape.txt", "/etc/passwd"])
def test_path_traversal_is_rejected(make_zip, tmp_path, bad_name):
    archive = make_zip({"ok.txt": b"ok", bad_name: b"evil"})

    with pytest.raises(ExtractionError):
        ArchiveExtractor().extract(archive, str(tmp_path / "out"))
    assert not (tmp_path / "escape.txt").exists()
    assert not (tmp_path / "out" / "ok.txt").exists()


def test_strip_root_removes_single_top_level_directory(make_zip, tmp_path):
    archive = make_zip({
        "node-v20.11.1-win-x64/": None,
        "node-v20.11.1-win-x64/node.exe": b"exe",
        "node-v20.11.1-win-x64/node_modules/npm/package.json": b"{}",
    })
    dest = tmp_path / "out"

    ArchiveExtractor().extract(archive, str(dest), strip_root=True)

    assert (dest / "node.exe").read_bytes() == b"exe"
    assert (dest / "node_modules" / "npm" / "package.json").exists()
    assert not (dest / "node-v20.11.1-win-x64").exists()


def test_strip_root_keeps_layout_when_entries_have_several_roots(make_zip, tmp_path):
    archive = make_zip({"a/x.txt": b"x", "b/y.txt": b"y"})
    dest = tmp_path / "out"

    ArchiveExtractor().extract(archive, str(dest), strip_root=True)

    assert (dest / "a" / "x.txt").exists()
    assert (dest / "b" / "y.txt").exists()


@posix_only
def test_tar_symlinks_are_created_after_files(make_tar, tmp_path):
    archive = make_tar(
        {"root/lib/npm-cli.js": b"#!/usr/bin/env node", "root/bin/node": (b"elf", 0o755)},
        symlinks={"root/bin/npm": "../lib/npm-cli.js"},
    )
    dest = tmp_path / "out"

    ArchiveExtractor().extract(archive, str(dest), strip_root=True)

    link = dest / "bin" / "npm"
    assert link.is_symlink()
    assert os.readlink(link) == "../lib/npm-cli.js"
    assert link.read_bytes() == b"#!/usr/bin/env node"


@posix_only
def test_tar_symlink_escaping_destination_is_rejected(make_tar, tmp_path):
    archive = make_tar({"a.txt": b"a"}, symlinks={"evil": "../../outside"})

    with pytest.raises(ExtractionError):
        ArchiveExtractor().extract(archive, str(tmp_path / "out"))


def test_progress_reports_every_file(make_zip, tmp_path):
    archive = make_zip(_many_files(12))
    calls = []
    lock = threading.Lock()

    def progress(done, total):
        with lock:
            calls.append((done, total))

    ArchiveExtractor(workers=3).extract(archive, str(tmp_path / "out"), progress_callback=progress)

    assert sorted(done for done, _ in calls) == list(range(1, 13))
    assert {total for _, total in calls} == {12}


class _FailingStream(io.RawIOBase):
    def readable(self):
        return True

    def readinto(self, b):
        raise OSError("simulated read failure")


def _ok_job(name, data=b"data"):
    return ExtractionJob(name, open_source=lambda: io.BytesIO(data))


@pytest.mark.parametrize("workers", [1, 2, 8])
def test_single_failing_entry_fails_extraction_and_joins_workers(tmp_path, workers):
    jobs = [_ok_job(f"f{i}.txt") for i in range(20)]
    jobs.insert(7, ExtractionJob("broken.bin", open_source=_FailingStream))

    with pytest.raises(ExtractionError) as exc_info:
        ArchiveExtractor(workers=workers).extract_entries(jobs, str(tmp_path / "out"))

    assert exc_info.value.entry == "broken.bin"
    assert isinstance(exc_info.value.cause, OSError)
    assert "simulated read failure" in str(exc_info.value)
    assert not any(t.name.startswith("nvx-extract-") for t in threading.enumerate())
    assert not (tmp_path / "out" / "broken.bin").exists()


def test_failure_opening_source_is_reported(tmp_path):
    def _open():
        raise FileNotFoundError("entry vanished")

    jobs = [_ok_job("good.txt"), ExtractionJob("gone.txt", open_source=_open)]

    with pytest.raises(ExtractionError) as exc_info:
        ArchiveExtractor(workers=1).extract_entries(jobs, str(tmp_path / "out"))

    assert exc_info.value.entry == "gone.txt"


def test_extract_entries_with_only_directories(tmp_path):
    jobs = [ExtractionJob("lib", is_dir=True), ExtractionJob("share/doc", is_dir=True)]

    assert ArchiveExtractor().extract_entries(jobs, str(tmp_path / "out")) == 0
    assert (tmp_path / "out" / "share" / "doc").is_dir()


def test_failure_stops_remaining_jobs_and_keeps_written_files(tmp_path):
    failing_index = 5
    jobs = [_ok_job(f"f{i}.txt", f"data-{i}".encode()) for i in range(12)]
    jobs[failing_index] = ExtractionJob("broken.bin", open_source=_FailingStream)
    out = tmp_path / "out"

    with pytest.raises(ExtractionError):
        ArchiveExtractor(workers=1).extract_entries(jobs, str(out))

    for i in range(failing_index):
        assert (out / f"f{i}.txt").read_bytes() == f"data-{i}".encode()
    for i in range(failing_index + 1, len(jobs)):
        assert not (out / f"f{i}.txt").exists()
    assert sorted(os.listdir(out)) == sorted(f"f{i}.txt" for i in range(failing_index))
