"""
版本管理器模块。

提供版本的安装、切换、卸载和列出功能。
"""

from typing import Optional, List, Dict, Any, Tuple

from nvx.errors import VersionInUseError
from nvx.core import version_utils
from nvx.core.activation import ActivationEngine, select_strategy
from nvx.core.config_manager import ConfigManager
from nvx.core.extractor import ArchiveExtractor
from nvx.core.fetcher import HttpArchiveFetcher
from nvx.core.installer import Installer
from nvx.core.interfaces import IArchiveFetcher, IArchiveExtractor, IPathPublisher, ProgressCallback
from nvx.core.path_publisher import get_path_publisher
from nvx.core.platform_resolver import executable_name
from nvx.core.version_store import VersionStore
from nvx.utils.input_validator import InputValidator
from nvx.utils.logger import get_logger

logger = get_logger()


class VersionManager:
    """
    版本管理器类。

    作为协调者，先校验版本号，再把具体工作委托给安装器、版本目录存储和激活引擎。
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        fetcher: Optional[IArchiveFetcher] = None,
        extractor: Optional[IArchiveExtractor] = None,
        publisher: Optional[IPathPublisher] = None,
        platform: Optional[Tuple[str, str]] = None,
        copy_callback: Optional[ProgressCallback] = None,
    ):
        """
        初始化版本管理器。

        参数:
            config_manager: 配置管理器实例
            fetcher: 归档下载器，None 表示按配置创建 HTTP 下载器
            extractor: 归档解压器，None 表示按配置创建
            publisher: PATH 发布器，None 表示使用当前平台的实现
            platform: (平台标签, 归档扩展名)，None 表示识别当前主机
            copy_callback: 复制策略激活时的进度回调
        """
        self.config_manager = config_manager
        self.store = VersionStore(config_manager.get_versions_root())

        if fetcher is None:
            fetcher = HttpArchiveFetcher(
                download_dir=config_manager.get_download_dir(),
                mirror_url=config_manager.get_mirror_url(),
                timeout=config_manager.get_download_timeout(),
                retry_count=config_manager.get_download_retry_count(),
            )
        if extractor is None:
            extractor = ArchiveExtractor(workers=config_manager.get_extract_workers())
        if publisher is None:
            publisher = get_path_publisher(config_manager.get_profile_file() or None)

        self.installer = Installer(
            self.store,
            fetcher,
            extractor,
            platform=platform,
            strip_archive_root=config_manager.get_strip_archive_root(),
            keep_archive=config_manager.get_keep_archive(),
        )
        strategy = select_strategy(
            config_manager.get_activation_strategy(),
            executable_name(),
            publisher,
            copy_callback,
        )
        self.engine = ActivationEngine(self.store, strategy)

    def validate(self, version: str) -> str:
        """
        校验用户输入的版本号。

        抛出:
            InvalidVersionFormatError: 版本号格式无效
        """
        return InputValidator.validate_version_arg(
            version, self.config_manager.get_max_version_length()
        )

    def install(
        self,
        version: str,
        download_callback: Optional[ProgressCallback] = None,
        extract_callback: Optional[ProgressCallback] = None,
        use: bool = False,
    ) -> str:
        """
        下载并安装指定版本。

        参数:
            version: 版本号（不带 v 前缀）
            download_callback: 下载进度回调
            extract_callback: 解压进度回调
            use: 安装后是否立即激活

        返回:
            安装目录路径
        """
        version = self.validate(version)
        install_dir = self.installer.install(version, download_callback, extract_callback)
        if use:
            self.engine.activate(version)
        return install_dir

    def use(self, version: str) -> str:
        """
        切换到指定版本。

        参数:
            version: 版本号

        返回:
            current 入口路径
        """
        version = self.validate(version)
        logger.info(f"正在切换到 {version_utils.dir_name(version)}")
        return self.engine.activate(version)

    def uninstall(self, version: str) -> None:
        """
        卸载指定版本，当前正在使用的版本不允许卸载。

        参数:
            version: 版本号

        抛出:
            VersionInUseError: 版本正在使用
            VersionNotInstalledError: 版本未安装
            RemovalError: 删除失败
        """
        version = self.validate(version)
        if self.store.exists(version) and self.current_version() == version:
            raise VersionInUseError(
                f"无法卸载当前正在使用的版本 {version_utils.dir_name(version)}"
            )
        self.store.remove(version)

    def current_version(self) -> Optional[str]:
        """获取当前使用的版本，未设置返回 None。"""
        return self.engine.current_version()

    def list_versions(self) -> List[Dict[str, Any]]:
        """
        列出已安装的版本。

        返回:
            版本信息列表，每个元素包含 version、path、current
        """
        current = self.current_version()
        return [
            {
                "version": version,
                "path": self.store.install_dir_for(version),
                "current": version == current,
            }
            for version in self.store.list_versions()
        ]
