"""
异常定义模块。

nvx 所有对外报告的错误都继承自 NvxError，命令行层据此统一输出一行错误信息。
"""

from typing import Optional


class NvxError(Exception):
    """nvx 错误基类。"""
    pass


class InvalidVersionFormatError(NvxError):
    """版本号格式错误异常。"""
    pass


class UnsupportedPlatformError(NvxError):
    """不支持的平台异常。"""
    pass


class FetchError(NvxError):
    """归档下载失败异常。"""
    pass


class ExtractionError(NvxError):
    """
    解压失败异常。

    entry 为出错的归档条目（归档本身无法打开时为 None），
    cause 为底层异常。
    """

    def __init__(self, message: str, entry: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.entry = entry
        self.cause = cause


class InstallError(NvxError):
    """安装目录提交失败异常。"""
    pass


class VersionNotInstalledError(NvxError):
    """版本未安装异常。"""
    pass


class VersionInUseError(NvxError):
    """版本正在使用异常。"""
    pass


class ActivationError(NvxError):
    """激活版本失败异常。"""
    pass


class ExecutableNotFoundError(NvxError):
    """安装目录中找不到可执行文件异常。"""
    pass


class RemovalError(NvxError):
    """删除目录失败异常。"""
    pass


class CopyError(NvxError):
    """复制目录失败异常。"""
    pass


class PathPublishError(NvxError):
    """写入 PATH 失败异常。"""
    pass


class ConfigError(NvxError):
    """配置错误异常。"""
    pass
