"""
nvx 核心模块。

提供归档下载与解压、版本目录管理、版本激活和配置管理功能。
"""

from .interfaces import IArchiveFetcher, IArchiveExtractor, IPathPublisher, IActivationStrategy
from .config_manager import ConfigManager
from .platform_resolver import resolve_platform, require_platform
from .extractor import ArchiveExtractor, ExtractionJob
from .version_store import VersionStore
from .activation import (
    ActivationEngine, ActivationState, LinkActivationStrategy, CopyActivationStrategy, select_strategy,
)
from .path_publisher import RegistryPathPublisher, ProfilePathPublisher, get_path_publisher
from .fetcher import HttpArchiveFetcher
from .installer import Installer
from .version_manager import VersionManager
from . import version_utils

__all__ = [
    "IArchiveFetcher", "IArchiveExtractor", "IPathPublisher", "IActivationStrategy",
    "ConfigManager",
    "resolve_platform", "require_platform",
    "ArchiveExtractor", "ExtractionJob",
    "VersionStore",
    "ActivationEngine", "ActivationState", "LinkActivationStrategy", "CopyActivationStrategy", "select_strategy",
    "RegistryPathPublisher", "ProfilePathPublisher", "get_path_publisher",
    "HttpArchiveFetcher",
    "Installer",
    "VersionManager",
    "version_utils",
]
