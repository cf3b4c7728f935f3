"""
核心模块抽象接口定义。

定义归档下载、解压、PATH 发布和版本激活策略的抽象接口。
"""

from abc import ABC, abstractmethod
from typing import Optional, Callable, Tuple, Iterable, BinaryIO

ProgressCallback = Callable[[int, int], None]


class IArchiveFetcher(ABC):
    """归档下载器抽象接口。"""

    @abstractmethod
    def open_stream(self, version: str, platform_tag: str, extension: str) -> Tuple[BinaryIO, int]:
        """打开指定版本归档的字节流，返回 (字节流, 声明长度)。"""
        pass

    @abstractmethod
    def download(
        self,
        version: str,
        platform_tag: str,
        extension: str,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> str:
        """下载归档到本地，返回归档文件路径。"""
        pass


class IArchiveExtractor(ABC):
    """归档解压器抽象接口。"""

    @abstractmethod
    def extract(
        self,
        archive_path: str,
        dest_dir: str,
        strip_root: bool = False,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> int:
        """解压归档到目标目录，返回写入的文件数。"""
        pass

    @abstractmethod
    def extract_entries(
        self,
        jobs: Iterable,
        dest_dir: str,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> int:
        """解压已枚举的条目，返回写入的文件数。"""
        pass


class IPathPublisher(ABC):
    """PATH 发布器抽象接口。"""

    @abstractmethod
    def publish(self, directory: str) -> None:
        """把目录持久化到用户的命令搜索路径并通知系统。"""
        pass


class IActivationStrategy(ABC):
    """版本激活策略抽象接口。"""

    name: str = ""

    @abstractmethod
    def activate(self, store, version: str) -> str:
        """在已清理的 current 位置创建指向该版本的产物，返回 current 路径。"""
        pass
