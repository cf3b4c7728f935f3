"""
归档下载模块。

从 Node.js 发行站点（或其镜像）下载指定版本、平台的发行包。
"""

import os
from typing import Optional, Tuple, BinaryIO

import requests

from nvx.errors import FetchError
from nvx.core import version_utils
from nvx.core.interfaces import IArchiveFetcher, ProgressCallback
from nvx.core.platform_resolver import archive_suffix, machine_arch
from nvx.utils.logger import get_logger
from nvx.utils.retry import RetryHandler

logger = get_logger()

DEFAULT_MIRROR_URL = "https://nodejs.org/dist/"
CHUNK_SIZE = 64 * 1024


class HttpArchiveFetcher(IArchiveFetcher):
    """
    HTTP 归档下载器类。

    临时性网络错误按配置重试，非 200 状态直接失败。
    """

    def __init__(
        self,
        download_dir: str,
        mirror_url: str = DEFAULT_MIRROR_URL,
        timeout: int = 300,
        retry_count: int = 3,
        arch: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        初始化下载器。

        参数:
            download_dir: 归档保存目录
            mirror_url: 发行站点地址
            timeout: 请求超时时间（秒）
            retry_count: 临时性错误的重试次数
            arch: CPU 架构标签，None 表示自动识别
            session: requests 会话，None 表示新建
        """
        self.download_dir = download_dir
        self.mirror_url = mirror_url if mirror_url.endswith("/") else mirror_url + "/"
        self.timeout = timeout
        self.arch = arch or machine_arch()
        self.retry_handler = RetryHandler(max_retries=retry_count)
        self.session = session or requests.Session()

    def archive_name(self, version: str, platform_tag: str, extension: str) -> str:
        """返回发行包文件名，如 node-v20.11.1-linux-x64.tar.xz。"""
        tag = version_utils.dir_name(version)
        return f"node-{tag}-{platform_tag}-{self.arch}.{archive_suffix(extension)}"

    def build_url(self, version: str, platform_tag: str, extension: str) -> str:
        """构建发行包下载地址。"""
        tag = version_utils.dir_name(version)
        return f"{self.mirror_url}{tag}/{self.archive_name(version, platform_tag, extension)}"

    def open_stream(self, version: str, platform_tag: str, extension: str) -> Tuple[BinaryIO, int]:
        """
        打开发行包的字节流。

        参数:
            version: 版本号
            platform_tag: 平台标签
            extension: 归档扩展名

        返回:
            (响应对象, 声明长度) 元组，声明长度未知时为 0

        抛出:
            FetchError: 网络错误或服务端返回非 200 状态
        """
        url = self.build_url(version, platform_tag, extension)
        logger.info(f"正在下载 {url}")

        def _do_request():
            response = self.session.get(url, stream=True, timeout=self.timeout)
            if response.status_code >= 500 or response.status_code in (408, 429):
                response.close()
                response.raise_for_status()
            return response

        try:
            response = self.retry_handler.execute(_do_request)
        except requests.RequestException as e:
            logger.error(f"下载 {url} 失败: {e}")
            raise FetchError(f"下载失败: {e}") from e

        if response.status_code != 200:
            response.close()
            logger.error(f"下载 {url} 失败: 状态码 {response.status_code}")
            raise FetchError(f"下载失败: 状态码 {response.status_code} ({url})")

        declared = int(response.headers.get("content-length", 0) or 0)
        return response, declared

    def download(
        self,
        version: str,
        platform_tag: str,
        extension: str,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> str:
        """
        下载发行包到下载目录。

        先写入 .part 文件，完整下载后再重命名。

        参数:
            version: 版本号
            platform_tag: 平台标签
            extension: 归档扩展名
            progress_callback: 下载进度回调 (已下载字节数, 总字节数)

        返回:
            归档文件路径

        抛出:
            FetchError: 下载失败或实际长度与声明长度不一致
        """
        os.makedirs(self.download_dir, exist_ok=True)
        target = os.path.join(self.download_dir, self.archive_name(version, platform_tag, extension))
        temp_path = target + ".part"

        response, declared = self.open_stream(version, platform_tag, extension)
        downloaded = 0
        try:
            with open(temp_path, "wb") as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if not chunk:
                        continue
                    f.write(chunk)
                    downloaded += len(chunk)
                    if progress_callback:
                        progress_callback(downloaded, declared)
        except (requests.RequestException, OSError) as e:
            logger.error(f"保存 {target} 失败: {e}")
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise FetchError(f"下载中断: {e}") from e
        finally:
            response.close()

        if declared and downloaded != declared:
            os.remove(temp_path)
            raise FetchError(f"下载不完整: 期望 {declared} 字节，实际 {downloaded} 字节")

        os.replace(temp_path, target)
        logger.info(f"下载完成: {target} ({downloaded} 字节)")
        return target
