"""
输入验证模块。

在任何 I/O 发生之前校验用户输入的版本号。
"""

import re

from nvx.errors import InvalidVersionFormatError
from nvx.utils.logger import get_logger

logger = get_logger()

USAGE_HINT = "示例: 20.5.1"


class InputValidator:
    """
    输入验证器类。

    版本号由用户以纯数字形式给出（如 20.11.1），"v" 前缀由程序内部添加。
    """

    VERSION_PATTERN = re.compile(r'[0-9]+\.[0-9]+\.[0-9]+')
    # TODO: 8 字符上限会拒绝 100.0.0 这类合法版本，确认策略后放宽默认值
    MAX_VERSION_LENGTH = 8

    @classmethod
    def validate_version_arg(cls, version: str, max_length: int = MAX_VERSION_LENGTH) -> str:
        """
        验证命令行给出的版本号。

        先检查长度，再检查格式：必须恰好是三段点分隔的非负整数，
        不允许前后空白，也不允许 "v" 前缀。

        参数:
            version: 用户输入的版本号
            max_length: 允许的最大字符数

        返回:
            验证通过的版本号

        抛出:
            InvalidVersionFormatError: 长度超限或格式无效
        """
        if version is None:
            raise InvalidVersionFormatError(f"版本号不能为空，{USAGE_HINT}")

        if len(version) > max_length:
            logger.debug(f"版本号长度超限: {version!r}")
            raise InvalidVersionFormatError(
                f"版本号长度无效，最多 {max_length} 个字符，{USAGE_HINT}"
            )

        if not cls.VERSION_PATTERN.fullmatch(version):
            logger.debug(f"版本号格式无效: {version!r}")
            raise InvalidVersionFormatError(f"版本号格式无效，{USAGE_HINT}")

        return version
