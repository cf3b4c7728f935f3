"""
归档解压模块。

使用固定大小的线程池把 zip / tar 归档解压到版本安装目录，汇总各条目的失败。

目录条目在启动线程池之前同步创建；文件条目放入预先填充好的任务队列，
由各工作线程取用。任一条目失败后，其余线程完成手头的条目即停止取新任务，
所有线程退出后报告最先记录的错误。
"""

import bz2
import gzip
import io
import lzma
import os
import queue
import shutil
import tarfile
import tempfile
import threading
import zipfile
from dataclasses import dataclass, replace
from functools import partial
from typing import Optional, List, Callable, BinaryIO, Iterable, Tuple

from nvx.errors import ExtractionError
from nvx.core.interfaces import IArchiveExtractor, ProgressCallback
from nvx.utils.logger import get_logger

logger = get_logger()

BUFFER_SIZE = 32 * 1024
DEFAULT_FILE_MODE = 0o644
DEFAULT_DIR_MODE = 0o755

_O_BINARY = getattr(os, "O_BINARY", 0)

_COMPRESSED_TAR_OPENERS = (
    (b"\xfd7zXZ\x00", lzma.open),
    (b"\x1f\x8b", gzip.open),
    (b"BZh", bz2.open),
)


@dataclass(frozen=True)
class ExtractionJob:
    """
    单个归档条目。

    open_source 返回条目内容的二进制流，由且仅由一个工作线程调用一次。
    symlink_target 不为空时表示符号链接条目。
    """

    entry_path: str
    is_dir: bool = False
    mode: int = DEFAULT_FILE_MODE
    open_source: Optional[Callable[[], BinaryIO]] = None
    symlink_target: Optional[str] = None


class _MemberStream(io.RawIOBase):
    """按偏移从未压缩的 tar 文件读取单个成员，每个实例持有独立的文件句柄。"""

    def __init__(self, path: str, offset: int, size: int):
        super().__init__()
        self._file = None
        self._file = open(path, "rb")
        self._file.seek(offset)
        self._remaining = size

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        if self._remaining <= 0:
            return 0
        view = memoryview(b)
        if len(view) > self._remaining:
            view = view[:self._remaining]
        n = self._file.readinto(view)
        if not n:
            raise EOFError("归档条目数据不完整")
        self._remaining -= n
        return n

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
        super().close()


class _ZipArchive:
    """zip 归档条目枚举。"""

    def __init__(self, path: str):
        self._zip = zipfile.ZipFile(path)

    def jobs(self) -> List[ExtractionJob]:
        jobs = []
        for info in self._zip.infolist():
            mode = (info.external_attr >> 16) & 0o777
            if info.is_dir():
                jobs.append(ExtractionJob(info.filename, is_dir=True, mode=mode or DEFAULT_DIR_MODE))
            else:
                jobs.append(ExtractionJob(
                    info.filename,
                    mode=mode or DEFAULT_FILE_MODE,
                    open_source=partial(self._zip.open, info),
                ))
        return jobs

    def close(self) -> None:
        self._zip.close()


class _TarArchive:
    """
    tar 归档条目枚举。

    压缩的 tar 先整体解压成临时的普通 tar 文件，之后各线程按成员偏移独立读取。
    """

    def __init__(self, path: str):
        self._temp_path: Optional[str] = None
        self._plain_path = self._decompress(path)
        try:
            self._tar = tarfile.open(self._plain_path, "r:")
            self._members = self._tar.getmembers()
        except BaseException:
            self._remove_temp()
            raise

    def _decompress(self, path: str) -> str:
        with open(path, "rb") as f:
            magic = f.read(6)

        opener = next((op for prefix, op in _COMPRESSED_TAR_OPENERS if magic.startswith(prefix)), None)
        if opener is None:
            return path

        fd, temp_path = tempfile.mkstemp(
            prefix=".nvx-", suffix=".tar", dir=os.path.dirname(os.path.abspath(path))
        )
        self._temp_path = temp_path
        try:
            with os.fdopen(fd, "wb") as out, opener(path, "rb") as compressed:
                shutil.copyfileobj(compressed, out, BUFFER_SIZE)
        except BaseException:
            self._remove_temp()
            raise
        logger.debug(f"已解压缩 {path} 到临时文件 {temp_path}")
        return temp_path

    def _member_source(self, member: tarfile.TarInfo) -> Callable[[], BinaryIO]:
        return partial(_MemberStream, self._plain_path, member.offset_data, member.size)

    def jobs(self) -> List[ExtractionJob]:
        by_name = {m.name: m for m in self._members}
        jobs = []
        for member in self._members:
            mode = member.mode & 0o777
            if member.isdir():
                jobs.append(ExtractionJob(member.name, is_dir=True, mode=mode or DEFAULT_DIR_MODE))
            elif member.isreg():
                jobs.append(ExtractionJob(
                    member.name,
                    mode=mode or DEFAULT_FILE_MODE,
                    open_source=self._member_source(member),
                ))
            elif member.issym():
                jobs.append(ExtractionJob(member.name, mode=mode, symlink_target=member.linkname))
            elif member.islnk():
                linked = by_name.get(member.linkname)
                if linked is None or not linked.isreg():
                    raise ExtractionError(
                        f"硬链接 {member.name} 指向无效条目: {member.linkname}", entry=member.name
                    )
                jobs.append(ExtractionJob(
                    member.name,
                    mode=mode or DEFAULT_FILE_MODE,
                    open_source=self._member_source(linked),
                ))
            else:
                logger.debug(f"跳过不支持的 tar 条目类型: {member.name}")
        return jobs

    def _remove_temp(self) -> None:
        if self._temp_path and os.path.exists(self._temp_path):
            os.remove(self._temp_path)
        self._temp_path = None

    def close(self) -> None:
        self._tar.close()
        self._remove_temp()


def _open_archive(archive_path: str):
    """
    按内容识别并打开归档。

    抛出:
        ExtractionError: 归档不存在、损坏或格式不受支持
    """
    try:
        if zipfile.is_zipfile(archive_path):
            return _ZipArchive(archive_path)
        return _TarArchive(archive_path)
    except (OSError, EOFError, zipfile.BadZipFile, tarfile.TarError, lzma.LZMAError) as e:
        raise ExtractionError(f"无法打开归档 {archive_path}: {e}", cause=e) from e


def _entry_parts(entry_path: str) -> List[str]:
    """
    把条目路径拆分为相对路径分段。

    抛出:
        ExtractionError: 绝对路径或包含 .. 的路径
    """
    normalized = entry_path.replace("\\", "/")
    if normalized.startswith("/") or (len(normalized) > 1 and normalized[1] == ":"):
        raise ExtractionError(f"压缩包包含非法路径: {entry_path}", entry=entry_path)
    parts = [p for p in normalized.split("/") if p not in ("", ".")]
    if ".." in parts:
        raise ExtractionError(f"压缩包包含非法路径: {entry_path}", entry=entry_path)
    return parts


def _is_within(base: str, path: str) -> bool:
    return path == base or path.startswith(base.rstrip(os.sep) + os.sep)


def _strip_common_root(jobs: List[ExtractionJob]) -> List[ExtractionJob]:
    """所有条目位于同一顶层目录下时去掉该层目录。"""
    split = [(job, _entry_parts(job.entry_path)) for job in jobs]
    split = [(job, parts) for job, parts in split if parts]
    roots = {parts[0] for _, parts in split}
    if len(roots) != 1:
        return jobs
    if any(len(parts) == 1 and not job.is_dir for job, parts in split):
        return jobs
    if not any(len(parts) > 1 for _, parts in split):
        return jobs

    logger.debug(f"去掉归档顶层目录: {roots.pop()}")
    return [
        replace(job, entry_path="/".join(parts[1:]))
        for job, parts in split
        if len(parts) > 1
    ]


def _copy_stream(source: BinaryIO, out: BinaryIO, buffer: bytearray) -> None:
    view = memoryview(buffer)
    while True:
        n = source.readinto(view)
        if not n:
            break
        out.write(view[:n])


def _discard_partial(path: str) -> None:
    try:
        os.remove(path)
    except OSError as e:
        logger.warning(f"清理未写完的文件 {path} 失败: {e}")


class _Progress:
    """已完成条目计数，回调在锁外执行。"""

    def __init__(self, total: int, callback: Optional[ProgressCallback]):
        self.total = total
        self.done = 0
        self._callback = callback
        self._lock = threading.Lock()

    def advance(self) -> None:
        with self._lock:
            self.done += 1
            done = self.done
        if self._callback:
            self._callback(done, self.total)


class ArchiveExtractor(IArchiveExtractor):
    """
    并发归档解压器类。

    线程池大小默认为主机 CPU 数，每个工作线程使用私有的复制缓冲区。
    """

    def __init__(self, workers: int = 0, buffer_size: int = BUFFER_SIZE):
        """
        初始化解压器。

        参数:
            workers: 工作线程数，0 表示使用 CPU 数
            buffer_size: 每个线程的复制缓冲区大小（字节）
        """
        self.workers = workers if workers and workers > 0 else (os.cpu_count() or 1)
        self.buffer_size = buffer_size

    def extract(
        self,
        archive_path: str,
        dest_dir: str,
        strip_root: bool = False,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> int:
        """
        解压归档到目标目录。

        参数:
            archive_path: 归档路径（zip 或 tar，tar 可为 xz/gz/bz2 压缩）
            dest_dir: 目标目录
            strip_root: 所有条目位于同一顶层目录下时是否去掉该层
            progress_callback: 进度回调 (已完成文件数, 文件总数)

        返回:
            写入的文件数

        抛出:
            ExtractionError: 归档无法打开，或任一条目解压失败
        """
        archive = _open_archive(archive_path)
        try:
            jobs = archive.jobs()
            if strip_root:
                jobs = _strip_common_root(jobs)
            logger.info(f"正在解压 {archive_path} 到 {dest_dir}，共 {len(jobs)} 个条目")
            return self.extract_entries(jobs, dest_dir, progress_callback)
        finally:
            archive.close()

    def extract_entries(
        self,
        jobs: Iterable[ExtractionJob],
        dest_dir: str,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> int:
        """
        解压已枚举的条目。

        所有条目路径在启动线程池之前完成校验；目录条目同步创建；
        文件条目由线程池并发写入；符号链接在所有文件写完后创建。

        参数:
            jobs: 条目列表
            dest_dir: 目标目录
            progress_callback: 进度回调 (已完成文件数, 文件总数)

        返回:
            写入的文件数

        抛出:
            ExtractionError: 路径非法、目录创建失败，或任一文件条目失败
        """
        dest = os.path.abspath(dest_dir)
        directories: List[Tuple[ExtractionJob, str]] = []
        files: List[Tuple[ExtractionJob, str]] = []
        links: List[Tuple[ExtractionJob, str]] = []

        for job in jobs:
            parts = _entry_parts(job.entry_path)
            if not parts:
                continue
            target = os.path.join(dest, *parts)
            if job.is_dir:
                directories.append((job, target))
            elif job.symlink_target is not None:
                links.append((job, target))
            else:
                files.append((job, target))

        try:
            os.makedirs(dest, exist_ok=True)
            for job, target in directories:
                os.makedirs(target, exist_ok=True)
        except OSError as e:
            raise ExtractionError(f"创建目录失败: {e}", cause=e) from e

        written = self._run_pool(files, progress_callback)
        self._create_links(links, dest)
        logger.info(f"解压完成: {dest}，写入 {written} 个文件")
        return written

    def _run_pool(
        self,
        files: List[Tuple[ExtractionJob, str]],
        progress_callback: Optional[ProgressCallback],
    ) -> int:
        if not files:
            return 0

        jobs_queue: "queue.Queue[Tuple[ExtractionJob, str]]" = queue.Queue()
        for item in files:
            jobs_queue.put(item)
        errors: "queue.Queue[Tuple[str, Exception]]" = queue.Queue(maxsize=len(files))
        cancelled = threading.Event()
        progress = _Progress(len(files), progress_callback)

        worker_count = min(self.workers, len(files))
        logger.debug(f"启动 {worker_count} 个解压线程，{len(files)} 个文件")
        threads = [
            threading.Thread(
                target=self._worker,
                args=(jobs_queue, errors, cancelled, progress),
                name=f"nvx-extract-{i}",
                daemon=True,
            )
            for i in range(worker_count)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        if not errors.empty():
            entry, exc = errors.get_nowait()
            logger.error(f"解压 {entry} 失败: {exc}")
            raise ExtractionError(f"解压 {entry} 失败: {exc}", entry=entry, cause=exc) from exc
        return progress.done

    def _worker(
        self,
        jobs_queue: "queue.Queue[Tuple[ExtractionJob, str]]",
        errors: "queue.Queue[Tuple[str, Exception]]",
        cancelled: threading.Event,
        progress: _Progress,
    ) -> None:
        buffer = bytearray(self.buffer_size)
        while not cancelled.is_set():
            try:
                job, target = jobs_queue.get_nowait()
            except queue.Empty:
                return
            try:
                self._extract_file(job, target, buffer)
                progress.advance()
            except Exception as e:
                # 线程内异常必须记录下来，否则汇总时会被误判为成功
                errors.put_nowait((job.entry_path, e))
                cancelled.set()
                return

    def _extract_file(self, job: ExtractionJob, target: str, buffer: bytearray) -> None:
        os.makedirs(os.path.dirname(target), exist_ok=True)
        with job.open_source() as source:
            fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC | _O_BINARY, job.mode)
            try:
                with os.fdopen(fd, "wb") as out:
                    _copy_stream(source, out, buffer)
            except BaseException:
                _discard_partial(target)
                raise
        if os.name != "nt":
            os.chmod(target, job.mode)

    def _create_links(self, links: List[Tuple[ExtractionJob, str]], dest: str) -> None:
        for job, target in links:
            link_target = job.symlink_target.replace("\\", "/")
            resolved = os.path.abspath(os.path.join(os.path.dirname(target), link_target))
            if os.path.isabs(link_target) or not _is_within(dest, resolved):
                raise ExtractionError(
                    f"符号链接 {job.entry_path} 指向目标目录之外: {job.symlink_target}",
                    entry=job.entry_path,
                )
            try:
                os.makedirs(os.path.dirname(target), exist_ok=True)
                if os.path.lexists(target):
                    os.remove(target)
                os.symlink(link_target, target)
            except OSError as e:
                raise ExtractionError(
                    f"创建符号链接 {job.entry_path} 失败: {e}", entry=job.entry_path, cause=e
                ) from e
