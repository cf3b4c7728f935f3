"""
版本目录存储模块。

管理版本根目录下的磁盘布局：每个已安装版本一个 v<版本号> 子目录，
外加一个名为 current 的当前版本入口。目录存在与否是版本是否已安装的唯一依据。
"""

import os
import re
import shutil
from typing import Optional, List

from nvx.errors import VersionNotInstalledError, RemovalError, CopyError, InstallError
from nvx.core import version_utils
from nvx.core.interfaces import ProgressCallback
from nvx.utils.logger import get_logger

logger = get_logger()

CURRENT_NAME = "current"
VERSION_MARKER = ".nvx-version"
STAGING_SUFFIX = ".partial"
_VERSION_DIR_PATTERN = re.compile(r'v([0-9]+\.[0-9]+\.[0-9]+)')


class VersionStore:
    """
    版本目录存储类。

    负责安装目录的定位、存在性检查、删除和复制。
    """

    def __init__(self, versions_root: str):
        """
        初始化版本目录存储。

        参数:
            versions_root: 版本根目录路径
        """
        self.versions_root = os.path.abspath(versions_root)

    @property
    def current_path(self) -> str:
        """current 入口的路径。"""
        return os.path.join(self.versions_root, CURRENT_NAME)

    def ensure_root(self) -> None:
        """确保版本根目录存在。"""
        os.makedirs(self.versions_root, exist_ok=True)

    def install_dir_for(self, version: str) -> str:
        """
        获取版本的安装目录，不访问磁盘。

        参数:
            version: 版本号（不带 v 前缀）

        返回:
            安装目录路径
        """
        return os.path.join(self.versions_root, version_utils.dir_name(version))

    def staging_dir_for(self, version: str) -> str:
        """
        获取版本的解压暂存目录，如 .v20.11.1.partial。

        暂存目录以点开头且不匹配版本目录名，不会出现在版本列表中。
        """
        return os.path.join(
            self.versions_root, f".{version_utils.dir_name(version)}{STAGING_SUFFIX}"
        )

    def discard_staging(self, version: str) -> None:
        """
        删除上一次失败安装留下的暂存目录，不存在时什么也不做。

        抛出:
            RemovalError: 删除失败
        """
        path = self.staging_dir_for(version)
        if not os.path.lexists(path):
            return
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.error(f"删除暂存目录 {path} 失败: {e}")
            raise RemovalError(f"删除暂存目录 {path} 失败: {e}") from e
        logger.info(f"已删除上次未完成安装的暂存目录 {path}")

    def commit_staging(self, version: str) -> str:
        """
        把解压完成的暂存目录重命名为安装目录。

        返回:
            安装目录路径

        抛出:
            InstallError: 重命名失败
        """
        staging = self.staging_dir_for(version)
        install_dir = self.install_dir_for(version)
        try:
            os.replace(staging, install_dir)
        except OSError as e:
            logger.error(f"重命名 {staging} 为 {install_dir} 失败: {e}")
            raise InstallError(f"无法完成 {version_utils.dir_name(version)} 的安装: {e}") from e
        return install_dir

    def exists(self, version: str) -> bool:
        """
        检查版本是否已安装。

        参数:
            version: 版本号

        返回:
            安装目录存在返回 True
        """
        return os.path.isdir(self.install_dir_for(version))

    def list_versions(self) -> List[str]:
        """
        列出已安装的版本，按版本号降序排列。

        返回:
            版本号列表（不带 v 前缀）
        """
        if not os.path.isdir(self.versions_root):
            return []
        versions = []
        for entry in os.scandir(self.versions_root):
            if entry.name == CURRENT_NAME or not entry.is_dir(follow_symlinks=False):
                continue
            match = _VERSION_DIR_PATTERN.fullmatch(entry.name)
            if match:
                versions.append(match.group(1))
        return version_utils.sort_versions_desc(versions)

    def remove(self, version: str) -> None:
        """
        删除已安装的版本目录。

        删除中途失败时不做回滚，目录可能处于部分删除的状态。

        参数:
            version: 版本号

        抛出:
            VersionNotInstalledError: 版本未安装
            RemovalError: 删除失败
        """
        path = self.install_dir_for(version)
        if not os.path.isdir(path):
            raise VersionNotInstalledError(f"版本 {version_utils.dir_name(version)} 未安装")
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.error(f"删除 {path} 失败: {e}")
            raise RemovalError(f"删除版本 {version_utils.dir_name(version)} 失败: {e}") from e
        logger.info(f"已删除 {path}")

    def remove_current(self) -> None:
        """
        删除 current 入口，无论它是符号链接、目录还是文件。

        current 不存在时什么也不做。

        抛出:
            RemovalError: 删除失败
        """
        path = self.current_path
        try:
            if os.path.islink(path) or os.path.isfile(path):
                os.remove(path)
            elif os.path.isdir(path):
                shutil.rmtree(path)
            else:
                return
        except OSError as e:
            logger.error(f"清理 current 失败: {e}")
            raise RemovalError(f"清理 current 失败: {e}") from e
        logger.debug(f"已清理 {path}")

    def read_current(self) -> Optional[str]:
        """
        获取 current 指向的版本。

        返回:
            版本号；current 不存在或无法识别时返回 None
        """
        path = self.current_path
        if os.path.islink(path):
            target = os.path.basename(os.path.normpath(os.readlink(path)))
            match = _VERSION_DIR_PATTERN.fullmatch(target)
            return match.group(1) if match else None
        marker = os.path.join(path, VERSION_MARKER)
        if os.path.isfile(marker):
            with open(marker, "r", encoding="utf-8") as f:
                version = f.read().strip()
            return version or None
        return None

    @staticmethod
    def copy_tree(src: str, dst: str, progress_callback: Optional[ProgressCallback] = None) -> int:
        """
        逐文件复制目录树，保留相对结构和权限位。

        符号链接按链接本身复制，不展开为目标文件。

        参数:
            src: 源目录
            dst: 目标目录
            progress_callback: 进度回调 (已复制文件数, 文件总数)

        返回:
            复制的文件数

        抛出:
            CopyError: 任一文件或目录复制失败
        """
        try:
            files = []
            for root, dirs, names in os.walk(src):
                rel_root = os.path.relpath(root, src)
                target_root = dst if rel_root == "." else os.path.join(dst, rel_root)
                os.makedirs(target_root, exist_ok=True)
                # os.walk 不进入指向目录的符号链接，这些链接同样按文件处理
                linked_dirs = [d for d in dirs if os.path.islink(os.path.join(root, d))]
                for name in names + linked_dirs:
                    files.append((os.path.join(root, name), os.path.join(target_root, name)))

            for i, (src_file, dst_file) in enumerate(files, start=1):
                shutil.copy2(src_file, dst_file, follow_symlinks=False)
                if progress_callback:
                    progress_callback(i, len(files))
        except OSError as e:
            logger.error(f"复制 {src} 到 {dst} 失败: {e}")
            raise CopyError(f"复制 {src} 失败: {e}") from e

        logger.debug(f"已复制 {len(files)} 个文件: {src} -> {dst}")
        return len(files)
