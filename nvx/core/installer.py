"""
安装模块。

串联下载、解压两个步骤，把指定版本安装到版本根目录。
"""

import os
from typing import Optional, Tuple

from nvx.errors import UnsupportedPlatformError
from nvx.core import version_utils
from nvx.core.interfaces import IArchiveFetcher, IArchiveExtractor, ProgressCallback
from nvx.core.platform_resolver import require_platform
from nvx.core.version_store import VersionStore
from nvx.utils.logger import get_logger

logger = get_logger()


class Installer:
    """
    安装器类。

    归档先解压到暂存目录，全部成功后才重命名为安装目录，安装目录存在即表示安装完整。
    解压失败时已写入的文件留在暂存目录中，不做回滚；下次安装同一版本时清除暂存目录并重新下载。
    """

    def __init__(
        self,
        store: VersionStore,
        fetcher: IArchiveFetcher,
        extractor: IArchiveExtractor,
        platform: Optional[Tuple[str, str]] = None,
        strip_archive_root: bool = True,
        keep_archive: bool = False,
    ):
        """
        初始化安装器。

        参数:
            store: 版本目录存储
            fetcher: 归档下载器
            extractor: 归档解压器
            platform: (平台标签, 归档扩展名)，None 表示识别当前主机
            strip_archive_root: 是否去掉归档顶层目录
            keep_archive: 安装后是否保留下载的归档
        """
        self.store = store
        self.fetcher = fetcher
        self.extractor = extractor
        self.platform = platform
        self.strip_archive_root = strip_archive_root
        self.keep_archive = keep_archive

    def install(
        self,
        version: str,
        download_callback: Optional[ProgressCallback] = None,
        extract_callback: Optional[ProgressCallback] = None,
    ) -> str:
        """
        下载并解压指定版本。

        参数:
            version: 已验证的版本号
            download_callback: 下载进度回调 (已下载字节数, 总字节数)
            extract_callback: 解压进度回调 (已完成文件数, 文件总数)

        返回:
            安装目录路径

        抛出:
            UnsupportedPlatformError: 当前平台不受支持
            FetchError: 下载失败
            ExtractionError: 解压失败
            RemovalError: 清除上次残留的暂存目录失败
            InstallError: 暂存目录重命名失败
        """
        if self.platform is None:
            platform_tag, extension = require_platform()
        else:
            platform_tag, extension = self.platform
        if not platform_tag or not extension:
            raise UnsupportedPlatformError("不支持的操作系统，无法确定发行包格式")

        install_dir = self.store.install_dir_for(version)
        if self.store.exists(version):
            logger.info(f"{version_utils.dir_name(version)} 已安装: {install_dir}")
            return install_dir

        self.store.ensure_root()
        self.store.discard_staging(version)
        archive_path = self.fetcher.download(version, platform_tag, extension, download_callback)
        staging_dir = self.store.staging_dir_for(version)
        try:
            self.extractor.extract(
                archive_path,
                staging_dir,
                strip_root=self.strip_archive_root,
                progress_callback=extract_callback,
            )
        finally:
            if not self.keep_archive and os.path.exists(archive_path):
                os.remove(archive_path)
                logger.debug(f"已删除归档 {archive_path}")

        self.store.commit_staging(version)
        logger.info(f"成功安装 {version_utils.dir_name(version)} 到 {install_dir}")
        return install_dir
