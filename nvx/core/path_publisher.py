"""
PATH 发布模块。

把目录持久化到用户的命令搜索路径：
Windows 写入当前用户注册表的 Path 并广播环境变量更改，
其他平台在 shell 配置文件中维护一段由 nvx 管理的 export 语句。
"""

import ctypes
import os
import re
import sys
from typing import List, Optional

from nvx.errors import PathPublishError
from nvx.core.interfaces import IPathPublisher
from nvx.utils.logger import get_logger

logger = get_logger()

ENV_KEY_PATH = "Environment"
PATH_VALUE_NAME = "Path"
WM_SETTINGCHANGE = 0x001A
HWND_BROADCAST = 0xFFFF
SMTO_ABORTIFHUNG = 0x0002

BLOCK_BEGIN = "# >>> nvx >>>"
BLOCK_END = "# <<< nvx <<<"
_BLOCK_PATTERN = re.compile(
    re.escape(BLOCK_BEGIN) + r".*?" + re.escape(BLOCK_END) + r"\n?", re.DOTALL
)


def _normalize_entry(entry: str) -> str:
    return entry.strip().rstrip("\\/").lower()


def merge_path_entries(existing: str, entry: str, separator: str = ";") -> str:
    """
    把新条目放到 PATH 最前面，并去掉已有的重复项和空项。

    参数:
        existing: 原有 PATH 值
        entry: 要添加的目录
        separator: 分隔符

    返回:
        新的 PATH 值
    """
    normalized = _normalize_entry(entry)
    parts: List[str] = [entry]
    for part in (existing or "").split(separator):
        part = part.strip()
        if not part or _normalize_entry(part) == normalized:
            continue
        parts.append(part)
    return separator.join(parts)


class RegistryPathPublisher(IPathPublisher):
    """
    Windows 注册表 PATH 发布器类。

    修改 HKEY_CURRENT_USER\\Environment 下的 Path，不需要管理员权限。
    """

    def publish(self, directory: str) -> None:
        """
        把目录加入当前用户的 Path 最前面并广播更改。

        参数:
            directory: 绝对路径

        抛出:
            PathPublishError: 注册表读写失败
        """
        import winreg

        entry = os.path.normpath(os.path.abspath(directory))
        try:
            with winreg.CreateKeyEx(
                winreg.HKEY_CURRENT_USER, ENV_KEY_PATH, 0,
                winreg.KEY_READ | winreg.KEY_SET_VALUE,
            ) as key:
                try:
                    existing, _ = winreg.QueryValueEx(key, PATH_VALUE_NAME)
                except FileNotFoundError:
                    existing = ""
                new_path = merge_path_entries(existing, entry)
                winreg.SetValueEx(key, PATH_VALUE_NAME, 0, winreg.REG_EXPAND_SZ, new_path)
        except OSError as e:
            logger.error(f"写入用户 PATH 失败: {e}")
            raise PathPublishError(f"写入用户 PATH 失败: {e}") from e

        logger.info(f"已添加 {entry} 到用户 PATH")
        self.broadcast_change()

    def broadcast_change(self) -> None:
        """
        广播环境变量更改消息。

        通知系统和其他应用程序环境变量已更改。
        """
        try:
            result = ctypes.c_long()
            ctypes.windll.user32.SendMessageTimeoutW(
                HWND_BROADCAST,
                WM_SETTINGCHANGE,
                0,
                "Environment",
                SMTO_ABORTIFHUNG,
                5000,
                ctypes.byref(result)
            )
            logger.debug("已广播 WM_SETTINGCHANGE 消息")
        except Exception as e:
            logger.warning(f"广播环境变量更改消息失败: {e}")


class ProfilePathPublisher(IPathPublisher):
    """
    shell 配置文件 PATH 发布器类。

    在配置文件中维护一段以标记行包围的 export 语句，每次发布替换整段内容。
    """

    def __init__(self, profile_file: Optional[str] = None):
        """
        初始化发布器。

        参数:
            profile_file: shell 配置文件路径，默认 ~/.profile
        """
        self.profile_file = os.path.expanduser(profile_file or "~/.profile")

    def publish(self, directory: str) -> None:
        """
        把目录写入 shell 配置文件的 PATH。

        参数:
            directory: 绝对路径

        抛出:
            PathPublishError: 配置文件读写失败
        """
        entry = os.path.abspath(directory)
        block = f'{BLOCK_BEGIN}\nexport PATH="{entry}:$PATH"\n{BLOCK_END}\n'
        try:
            content = ""
            if os.path.exists(self.profile_file):
                with open(self.profile_file, "r", encoding="utf-8") as f:
                    content = f.read()
            content = _BLOCK_PATTERN.sub("", content)
            if content and not content.endswith("\n"):
                content += "\n"
            with open(self.profile_file, "w", encoding="utf-8") as f:
                f.write(content + block)
        except OSError as e:
            logger.error(f"写入 {self.profile_file} 失败: {e}")
            raise PathPublishError(f"写入 {self.profile_file} 失败: {e}") from e

        logger.info(f"已在 {self.profile_file} 中添加 {entry} 到 PATH，新开终端后生效")


def get_path_publisher(profile_file: Optional[str] = None) -> IPathPublisher:
    """
    返回当前平台的 PATH 发布器。

    参数:
        profile_file: 非 Windows 平台使用的 shell 配置文件

    返回:
        PATH 发布器实例
    """
    if sys.platform == "win32":
        return RegistryPathPublisher()
    return ProfilePathPublisher(profile_file)
