"""
版本工具模块。

提供版本号解析、排序和目录命名等工具函数。
"""

import re
from typing import List

VERSION_PREFIX = "v"


def _parse_version(version_str: str) -> tuple:
    """
    解析版本字符串为可比较的元组。

    参数:
        version_str: 版本字符串

    返回:
        版本元组 (major, minor, patch)
    """
    parts = re.findall(r'\d+', version_str)
    return tuple(int(p) for p in parts) if parts else (0,)


def sort_versions_desc(versions: List[str]) -> List[str]:
    """
    按版本号降序排列。

    参数:
        versions: 版本号列表

    返回:
        排序后的版本号列表
    """
    return sorted(versions, key=_parse_version, reverse=True)


def dir_name(version: str) -> str:
    """返回版本的目录名，如 20.11.1 -> v20.11.1。"""
    return f"{VERSION_PREFIX}{version}"
