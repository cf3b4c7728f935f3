"""
平台识别模块。

把当前主机映射到 Node.js 发行包的命名约定（平台标签 + 归档扩展名）。
"""

import platform
import sys
from typing import Optional, Tuple

from nvx.errors import UnsupportedPlatformError

ZIP = "zip"
TARXZ = "tarxz"

_PLATFORMS = {
    "windows": ("win", ZIP),
    "darwin": ("darwin", TARXZ),
    "linux": ("linux", TARXZ),
}

_ARCHIVE_SUFFIXES = {
    ZIP: "zip",
    TARXZ: "tar.xz",
}

_ARCH_MAP = {
    "x86_64": "x64",
    "amd64": "x64",
    "x64": "x64",
    "arm64": "arm64",
    "aarch64": "arm64",
    "armv7l": "armv7l",
    "i386": "x86",
    "i686": "x86",
    "x86": "x86",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
}


def _host_system() -> str:
    if sys.platform == "win32":
        return "windows"
    return platform.system().lower()


def resolve_platform(system: Optional[str] = None) -> Tuple[str, str]:
    """
    解析平台描述。

    参数:
        system: 系统名称（windows/darwin/linux），None 表示当前主机

    返回:
        (平台标签, 归档扩展名) 元组；未知系统返回 ("", "")
    """
    name = (system if system is not None else _host_system()).lower()
    return _PLATFORMS.get(name, ("", ""))


def require_platform(system: Optional[str] = None) -> Tuple[str, str]:
    """
    解析平台描述，未知系统直接报错。

    抛出:
        UnsupportedPlatformError: 当前系统不在支持列表中
    """
    tag, extension = resolve_platform(system)
    if not tag or not extension:
        name = system if system is not None else _host_system()
        raise UnsupportedPlatformError(f"不支持的操作系统: {name}")
    return tag, extension


def archive_suffix(extension: str) -> str:
    """返回归档扩展名对应的文件后缀，如 tarxz -> tar.xz。"""
    try:
        return _ARCHIVE_SUFFIXES[extension]
    except KeyError:
        raise UnsupportedPlatformError(f"不支持的归档格式: {extension!r}") from None


def machine_arch(machine: Optional[str] = None) -> str:
    """
    返回 Node.js 发行包使用的 CPU 架构标签。

    未识别的架构按 x64 处理。
    """
    name = (machine if machine is not None else platform.machine()).lower()
    return _ARCH_MAP.get(name, "x64")


def executable_name(system: Optional[str] = None) -> str:
    """返回平台上 node 可执行文件的名称。"""
    tag, _ = resolve_platform(system)
    return "node.exe" if tag == "win" else "node"


def supports_symlinks(system: Optional[str] = None) -> bool:
    """
    判断平台是否可以用符号链接发布可执行文件。

    Windows 创建符号链接需要管理员权限或开发者模式，视为不支持。
    """
    tag, _ = resolve_platform(system)
    return tag not in ("", "win")
