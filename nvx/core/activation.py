"""
版本激活模块。

把 current 入口切换到指定的已安装版本。激活方式由平台能力决定，
在启动时选定一次：

- 链接策略：current 是指向版本目录的符号链接；
- 复制策略：current/bin 是版本可执行文件所在目录的完整副本，
  复制完成后把 current/bin 发布到用户 PATH。
"""

import os
from enum import Enum
from typing import Optional

from nvx.errors import ActivationError, ExecutableNotFoundError, VersionNotInstalledError, ConfigError
from nvx.core import version_utils
from nvx.core.interfaces import IActivationStrategy, IPathPublisher, ProgressCallback
from nvx.core.platform_resolver import supports_symlinks
from nvx.core.version_store import VersionStore, VERSION_MARKER
from nvx.utils.logger import get_logger

logger = get_logger()

STRATEGY_AUTO = "auto"
STRATEGY_LINK = "link"
STRATEGY_COPY = "copy"
STRATEGY_CHOICES = (STRATEGY_AUTO, STRATEGY_LINK, STRATEGY_COPY)


class ActivationState(str, Enum):
    """current 入口的状态。"""

    INACTIVE = "inactive"
    ACTIVE_VIA_LINK = "link"
    ACTIVE_VIA_COPY = "copy"


def find_executable_dir(install_dir: str, executable: str) -> Optional[str]:
    """
    查找安装目录中实际包含可执行文件的目录。

    归档可能把可执行文件放在根目录，也可能嵌套一层，两种情况都要处理。

    参数:
        install_dir: 版本安装目录
        executable: 可执行文件名，如 node.exe

    返回:
        包含可执行文件的目录，找不到返回 None
    """
    if os.path.isfile(os.path.join(install_dir, executable)):
        return install_dir
    try:
        entries = sorted(os.scandir(install_dir), key=lambda e: e.name)
    except OSError as e:
        logger.warning(f"读取版本目录 {install_dir} 失败: {e}")
        return None
    for entry in entries:
        if entry.is_dir() and os.path.isfile(os.path.join(entry.path, executable)):
            return entry.path
    return None


class LinkActivationStrategy(IActivationStrategy):
    """用符号链接激活版本。"""

    name = STRATEGY_LINK

    def activate(self, store: VersionStore, version: str) -> str:
        # 使用相对目标，版本根目录整体移动后链接仍然有效
        os.symlink(version_utils.dir_name(version), store.current_path, target_is_directory=True)
        logger.info(f"已创建符号链接 {store.current_path} -> {version_utils.dir_name(version)}")
        return store.current_path


class CopyActivationStrategy(IActivationStrategy):
    """
    用目录复制激活版本。

    适用于不能可靠使用符号链接的平台（Windows）。
    """

    name = STRATEGY_COPY

    def __init__(
        self,
        executable: str,
        publisher: IPathPublisher,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        """
        初始化复制策略。

        参数:
            executable: 用于定位源目录的可执行文件名
            publisher: PATH 发布器
            progress_callback: 复制进度回调 (已复制文件数, 文件总数)
        """
        self.executable = executable
        self.publisher = publisher
        self.progress_callback = progress_callback

    def activate(self, store: VersionStore, version: str) -> str:
        install_dir = store.install_dir_for(version)
        source_dir = find_executable_dir(install_dir, self.executable)
        if source_dir is None:
            raise ExecutableNotFoundError(
                f"在版本 {version_utils.dir_name(version)} 中找不到 {self.executable}"
            )

        bin_dir = os.path.join(store.current_path, "bin")
        os.makedirs(bin_dir)
        count = store.copy_tree(source_dir, bin_dir, self.progress_callback)
        with open(os.path.join(store.current_path, VERSION_MARKER), "w", encoding="utf-8") as f:
            f.write(version)
        logger.info(f"已复制 {count} 个文件到 {bin_dir}")

        self.publisher.publish(os.path.abspath(bin_dir))
        return store.current_path


def select_strategy(
    mode: str,
    executable: str,
    publisher: IPathPublisher,
    progress_callback: Optional[ProgressCallback] = None,
) -> IActivationStrategy:
    """
    根据配置和平台能力选择激活策略。

    参数:
        mode: auto / link / copy
        executable: 可执行文件名
        publisher: PATH 发布器（复制策略使用）
        progress_callback: 复制进度回调

    返回:
        激活策略实例
    """
    if mode not in STRATEGY_CHOICES:
        raise ConfigError(f"未知的激活策略: {mode}，可选值: {', '.join(STRATEGY_CHOICES)}")
    if mode == STRATEGY_LINK or (mode == STRATEGY_AUTO and supports_symlinks()):
        return LinkActivationStrategy()
    return CopyActivationStrategy(executable, publisher, progress_callback)


class ActivationEngine:
    """
    版本激活引擎类。

    同一时刻只有一个版本处于激活状态，激活新版本是停用旧版本的唯一方式。
    """

    def __init__(self, store: VersionStore, strategy: IActivationStrategy):
        """
        初始化激活引擎。

        参数:
            store: 版本目录存储
            strategy: 激活策略，构造后不再改变
        """
        self.store = store
        self.strategy = strategy

    @property
    def state(self) -> ActivationState:
        """根据 current 入口的实际形态返回当前状态。"""
        path = self.store.current_path
        if os.path.islink(path):
            return ActivationState.ACTIVE_VIA_LINK
        if os.path.isdir(os.path.join(path, "bin")):
            return ActivationState.ACTIVE_VIA_COPY
        return ActivationState.INACTIVE

    def current_version(self) -> Optional[str]:
        """获取当前激活的版本号，未激活返回 None。"""
        return self.store.read_current()

    def activate(self, version: str) -> str:
        """
        激活指定版本。

        参数:
            version: 版本号

        返回:
            current 入口路径

        抛出:
            VersionNotInstalledError: 版本未安装，此时不做任何改动
            RemovalError: 清理旧的 current 失败
            ActivationError: 创建符号链接或 current/bin 失败
            CopyError: 复制策略下复制文件失败
            ExecutableNotFoundError: 复制策略下找不到可执行文件，current 被清理
            PathPublishError: 写入 PATH 失败
        """
        if not self.store.exists(version):
            raise VersionNotInstalledError(f"版本 {version_utils.dir_name(version)} 未安装")

        self.store.remove_current()
        logger.info(f"正在使用 {self.strategy.name} 策略激活 {version_utils.dir_name(version)}")

        try:
            path = self.strategy.activate(self.store, version)
        except ExecutableNotFoundError:
            self.store.remove_current()
            raise
        except OSError as e:
            logger.error(f"激活 {version_utils.dir_name(version)} 失败: {e}")
            raise ActivationError(f"激活 {version_utils.dir_name(version)} 失败: {e}") from e

        logger.info(f"已激活 {version_utils.dir_name(version)}")
        return path
