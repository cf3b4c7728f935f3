"""
配置管理器模块。

提供应用程序配置的加载、保存和验证功能。
"""

import json
import os
from pathlib import Path
from typing import Any, Optional

from nvx.errors import ConfigError
from nvx.utils.logger import get_logger, get_app_dir

logger = get_logger()

ACTIVATION_STRATEGIES = ("auto", "link", "copy")


def _atomic_save_json(file_path: Path, data: Any, indent: int = 2) -> None:
    """
    原子保存 JSON 数据到文件，防止写入中断导致文件损坏。

    参数:
        file_path: 目标文件路径
        data: 要保存的数据
        indent: JSON 缩进
    """
    temp_path = file_path.with_suffix(file_path.suffix + ".tmp")
    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, ensure_ascii=False)
        os.replace(temp_path, file_path)
    except BaseException:
        if temp_path.exists():
            temp_path.unlink()
        raise


class ConfigManager:
    """
    配置管理器类。

    负责管理应用程序配置的加载、保存、验证和访问。
    """

    SETTINGS_FIELDS = {
        "versions_root": str,
        "download_dir": str,
        "mirror_url": str,
        "download_timeout": int,
        "download_retry_count": int,
        "extract_workers": int,
        "strip_archive_root": bool,
        "keep_archive": bool,
        "activation_strategy": str,
        "max_version_length": int,
        "profile_file": str,
    }

    def __init__(self, config_file: Optional[str] = None):
        """
        初始化配置管理器。

        参数:
            config_file: 配置文件路径，默认为主目录下的 config/config.json
        """
        self.app_dir = get_app_dir()
        self.config_file = Path(config_file) if config_file else self.app_dir / "config" / "config.json"
        self._config: dict[str, Any] = {}

    def get_default_config(self) -> dict[str, Any]:
        """获取内置默认配置。"""
        return {
            "settings": {
                "versions_root": "",
                "download_dir": "",
                "mirror_url": "https://nodejs.org/dist/",
                "download_timeout": 300,
                "download_retry_count": 3,
                "extract_workers": 0,
                "strip_archive_root": True,
                "keep_archive": False,
                "activation_strategy": "auto",
                "max_version_length": 8,
                "profile_file": "",
            }
        }

    def load_config(self) -> dict[str, Any]:
        """
        加载配置文件。

        如果配置文件不存在，则创建默认配置文件；文件损坏或验证失败时使用默认配置。

        返回:
            配置字典
        """
        try:
            if not self.config_file.exists():
                logger.info(f"配置文件不存在，创建默认配置: {self.config_file}")
                self._config = self.get_default_config()
                self.save_config()
                return self._config

            logger.debug(f"从文件加载配置: {self.config_file}")
            with open(self.config_file, "r", encoding="utf-8") as f:
                self._config = json.load(f)

            self._ensure_backward_compatibility()
            self.validate_config(self._config)
            logger.debug("配置加载成功")
            return self._config
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"加载配置文件失败，使用默认配置: {e}")
            self._config = self.get_default_config()
            return self._config
        except ConfigError as e:
            logger.error(f"配置验证失败，使用默认配置: {e}")
            self._config = self.get_default_config()
            return self._config

    def _ensure_backward_compatibility(self) -> None:
        """为旧版本配置补齐新字段。"""
        if not isinstance(self._config, dict):
            raise ConfigError("配置必须是字典类型")
        settings = self._config.setdefault("settings", {})
        if not isinstance(settings, dict):
            raise ConfigError("settings 必须是字典类型")
        for field, value in self.get_default_config()["settings"].items():
            settings.setdefault(field, value)

    def validate_config(self, config: dict[str, Any]) -> bool:
        """
        验证配置的有效性。

        参数:
            config: 配置字典

        返回:
            验证通过返回 True

        抛出:
            ConfigError: 字段类型或取值无效
        """
        if not isinstance(config, dict):
            raise ConfigError("配置必须是字典类型")
        settings = config.get("settings")
        if not isinstance(settings, dict):
            raise ConfigError("settings 必须是字典类型")

        for field, field_type in self.SETTINGS_FIELDS.items():
            if field not in settings:
                continue
            value = settings[field]
            # bool 是 int 的子类，需单独排除
            if not isinstance(value, field_type) or (field_type is int and isinstance(value, bool)):
                raise ConfigError(f"settings.{field} 必须是 {field_type.__name__} 类型")

        if settings.get("activation_strategy", "auto") not in ACTIVATION_STRATEGIES:
            raise ConfigError(
                f"settings.activation_strategy 必须是 {', '.join(ACTIVATION_STRATEGIES)} 之一"
            )
        for field in ("download_timeout", "max_version_length"):
            if field in settings and settings[field] <= 0:
                raise ConfigError(f"settings.{field} 必须大于 0")
        for field in ("download_retry_count", "extract_workers"):
            if field in settings and settings[field] < 0:
                raise ConfigError(f"settings.{field} 不能为负数")
        return True

    def save_config(self, config: Optional[dict[str, Any]] = None) -> None:
        """
        保存配置到文件。

        参数:
            config: 要保存的配置，None 表示保存当前配置

        抛出:
            ConfigError: 配置无效或写入失败
        """
        if config is not None:
            self._config = config
        self.validate_config(self._config)
        try:
            self.config_file.parent.mkdir(parents=True, exist_ok=True)
            logger.debug(f"保存配置到 {self.config_file}")
            _atomic_save_json(self.config_file, self._config)
        except OSError as e:
            logger.error(f"保存配置失败: {e}")
            raise ConfigError(f"无法保存配置到 {self.config_file}: {e}") from e

    def get_config(self) -> dict[str, Any]:
        """获取配置字典，首次访问时加载。"""
        if not self._config:
            self.load_config()
        return self._config

    def get_settings(self) -> dict[str, Any]:
        """获取 settings 配置部分。"""
        return self.get_config().get("settings", {})

    def get(self, key: str, default: Any = None) -> Any:
        """
        按点分隔的键获取配置值，如 settings.mirror_url。

        参数:
            key: 键名
            default: 默认值

        返回:
            配置值或默认值
        """
        value: Any = self.get_config()
        for k in key.split("."):
            if not isinstance(value, dict) or k not in value:
                return default
            value = value[k]
        return value

    def set(self, key: str, value: Any) -> None:
        """
        按点分隔的键设置配置值并保存。

        参数:
            key: 键名
            value: 配置值

        抛出:
            ConfigError: 设置后配置无效
        """
        config = json.loads(json.dumps(self.get_config()))
        keys = key.split(".")
        obj = config
        for k in keys[:-1]:
            if not isinstance(obj.get(k), dict):
                obj[k] = {}
            obj = obj[k]
        obj[keys[-1]] = value
        self.save_config(config)

    def get_versions_root(self) -> str:
        """获取版本根目录，未配置时为主目录下的 versions。"""
        root = self.get_settings().get("versions_root")
        return os.path.expanduser(root) if root else str(self.app_dir / "versions")

    def get_download_dir(self) -> str:
        """获取下载目录，未配置时为主目录下的 downloads。"""
        path = self.get_settings().get("download_dir")
        return os.path.expanduser(path) if path else str(self.app_dir / "downloads")

    def get_mirror_url(self) -> str:
        """获取发行站点地址。"""
        return self.get_settings().get("mirror_url") or "https://nodejs.org/dist/"

    def get_download_timeout(self) -> int:
        """获取下载超时时间（秒）。"""
        return self.get_settings().get("download_timeout", 300)

    def get_download_retry_count(self) -> int:
        """获取下载重试次数。"""
        return self.get_settings().get("download_retry_count", 3)

    def get_extract_workers(self) -> int:
        """获取解压线程数，0 表示使用 CPU 数。"""
        return self.get_settings().get("extract_workers", 0)

    def get_strip_archive_root(self) -> bool:
        """获取是否去掉归档顶层目录。"""
        return self.get_settings().get("strip_archive_root", True)

    def get_keep_archive(self) -> bool:
        """获取安装后是否保留下载的归档。"""
        return self.get_settings().get("keep_archive", False)

    def get_activation_strategy(self) -> str:
        """获取激活策略（auto / link / copy）。"""
        return self.get_settings().get("activation_strategy", "auto")

    def get_max_version_length(self) -> int:
        """获取版本号的最大长度。"""
        return self.get_settings().get("max_version_length", 8)

    def get_profile_file(self) -> str:
        """获取非 Windows 平台写入 PATH 的 shell 配置文件，空字符串表示默认。"""
        return self.get_settings().get("profile_file", "")
