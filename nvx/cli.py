"""
nvx 命令行接口模块。
"""

import argparse
import json
import logging
import os

from nvx import __version__
from nvx.errors import NvxError
from nvx.core.activation import ActivationState
from nvx.core.config_manager import ConfigManager
from nvx.core.version_manager import VersionManager
from nvx.utils.logger import get_logger, set_log_level

logger = get_logger()


def create_parser() -> argparse.ArgumentParser:
    """
    创建并配置命令行参数解析器。

    返回:
        配置好的 ArgumentParser 实例
    """
    parser = argparse.ArgumentParser(
        prog="nvx",
        description="nvx - Node.js 多版本管理器",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
  nvx install 20.11.1        安装 Node.js v20.11.1
  nvx install 20.11.1 --use  安装并切换到 v20.11.1
  nvx use 18.20.0            切换到 v18.20.0
  nvx uninstall 18.20.0      卸载 v18.20.0
  nvx list                   列出已安装版本
  nvx current                显示当前版本
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="启用详细输出",
    )

    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="配置文件路径",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="命令",
        description="可用的 CLI 命令",
    )

    install_parser = subparsers.add_parser(
        "install",
        help="下载并安装指定版本",
    )
    install_parser.add_argument(
        "version",
        help="要安装的版本（如 20.11.1，不带 v 前缀）",
    )
    install_parser.add_argument(
        "--use",
        action="store_true",
        help="安装后立即切换到该版本",
    )

    use_parser = subparsers.add_parser(
        "use",
        help="切换到指定版本",
    )
    use_parser.add_argument(
        "version",
        help="要切换到的版本",
    )

    uninstall_parser = subparsers.add_parser(
        "uninstall",
        help="卸载指定版本",
    )
    uninstall_parser.add_argument(
        "version",
        help="要卸载的版本",
    )

    list_parser = subparsers.add_parser(
        "list",
        help="列出已安装版本",
    )
    list_parser.add_argument(
        "--format",
        "-f",
        choices=["json", "simple"],
        default="simple",
        help="输出格式",
    )

    subparsers.add_parser(
        "current",
        help="显示当前使用的版本",
    )

    root_parser = subparsers.add_parser(
        "root",
        help="设置或显示版本根目录",
    )
    root_parser.add_argument(
        "path",
        nargs="?",
        default=None,
        help="根目录路径（省略则显示当前路径）",
    )

    config_parser = subparsers.add_parser(
        "config",
        help="显示或修改配置",
    )
    config_parser.add_argument(
        "--set",
        "-s",
        type=str,
        help="设置配置值（格式：key=value，如 settings.extract_workers=4）",
    )

    return parser


def run_cli(args: argparse.Namespace) -> int:
    """
    运行命令行接口。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码（0 表示成功）
    """
    if args.verbose:
        set_log_level(logging.DEBUG)

    if args.command is None:
        print("未指定命令。使用 --help 查看帮助信息。")
        return 1

    command_handlers = {
        "install": handle_install,
        "use": handle_use,
        "uninstall": handle_uninstall,
        "list": handle_list,
        "current": handle_current,
        "root": handle_root,
        "config": handle_config,
    }

    handler = command_handlers.get(args.command)
    if handler is None:
        print(f"未知命令: {args.command}")
        return 1

    try:
        return handler(args)
    except NvxError as e:
        logger.debug(f"命令 {args.command} 失败", exc_info=True)
        print(f"错误: {e}")
        return 1


def _print_bar(prefix: str, done: int, total: int, unit: str) -> None:
    percent = int(done / total * 100) if total > 0 else 0
    bar_len = 40
    filled = int(bar_len * percent / 100)
    bar = "=" * filled + "-" * (bar_len - filled)
    print(f"\r{prefix} [{bar}] {percent}% ({done}/{total} {unit})", end="", flush=True)


def _get_manager(args: argparse.Namespace) -> VersionManager:
    """
    获取版本管理器实例。

    参数:
        args: 解析后的命令行参数

    返回:
        VersionManager 实例
    """
    config_manager = ConfigManager(args.config)

    def copy_progress(done: int, total: int):
        _print_bar("复制", done, total, "个文件")
        if done == total:
            print()

    return VersionManager(config_manager, copy_callback=copy_progress)


def handle_install(args: argparse.Namespace) -> int:
    """
    处理 install 命令：下载并安装指定版本。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    version_manager = _get_manager(args)

    def download_progress(downloaded: int, total: int):
        _print_bar("下载", downloaded, total, "字节")
        if downloaded == total:
            print()

    def extract_progress(done: int, total: int):
        _print_bar("解压", done, total, "个文件")

    print(f"正在安装 Node.js v{args.version}...")
    try:
        install_dir = version_manager.install(
            args.version, download_progress, extract_progress, use=args.use
        )
    finally:
        print()

    print(f"成功安装 Node.js v{args.version}: {install_dir}")
    if args.use:
        _print_use_hint(version_manager, args.version)
    return 0


def _print_use_hint(version_manager: VersionManager, version: str) -> None:
    print(f"正在使用 Node.js v{version}")
    bin_dir = os.path.join(version_manager.store.current_path, "bin")
    if version_manager.engine.state == ActivationState.ACTIVE_VIA_LINK:
        print(f"请确保 {bin_dir} 已加入 PATH。")
    else:
        print("注意：可能需要重启终端才能使更改生效。")


def handle_use(args: argparse.Namespace) -> int:
    """
    处理 use 命令：切换到指定版本。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    version_manager = _get_manager(args)
    version_manager.use(args.version)
    _print_use_hint(version_manager, args.version)
    return 0


def handle_uninstall(args: argparse.Namespace) -> int:
    """
    处理 uninstall 命令：卸载指定版本。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    version_manager = _get_manager(args)
    print(f"正在卸载 Node.js v{args.version}...")
    version_manager.uninstall(args.version)
    print(f"成功卸载 Node.js v{args.version}")
    return 0


def handle_list(args: argparse.Namespace) -> int:
    """
    处理 list 命令：列出已安装版本。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    version_manager = _get_manager(args)
    versions = version_manager.list_versions()
    current = version_manager.current_version()

    if args.format == "json":
        print(json.dumps({"current": current, "versions": versions}, indent=2, ensure_ascii=False))
        return 0

    if not versions:
        print("未找到已安装的 Node.js 版本")
        print(f"版本根目录: {version_manager.store.versions_root}")
        return 0

    print("已安装的 Node.js 版本:")
    for v in versions:
        marker = " *" if v["current"] else "  "
        print(f"{marker} v{v['version']}")
        if args.verbose:
            print(f"     路径: {v['path']}")
    print(f"\n当前版本: {'v' + current if current else '未设置'}")
    return 0


def handle_current(args: argparse.Namespace) -> int:
    """
    处理 current 命令：显示当前使用的版本。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    version_manager = _get_manager(args)
    current = version_manager.current_version()
    if current is None:
        print("当前未使用任何版本")
        return 1
    print(f"v{current}")
    return 0


def handle_root(args: argparse.Namespace) -> int:
    """
    处理 root 命令：设置或显示版本根目录。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    config_manager = ConfigManager(args.config)

    if args.path:
        new_path = os.path.abspath(os.path.expanduser(args.path))
        config_manager.set("settings.versions_root", new_path)
        print(f"已设置版本根目录为: {new_path}")
    else:
        print(f"版本根目录: {config_manager.get_versions_root()}")

    return 0


def handle_config(args: argparse.Namespace) -> int:
    """
    处理 config 命令：显示或修改配置。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    config_manager = ConfigManager(args.config)

    if args.set:
        key, _, value = args.set.partition("=")
        if not key or not value:
            print("格式无效。请使用: key=value")
            return 1

        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            pass

        config_manager.set(key, value)
        print(f"已设置 {key} = {value}")
    else:
        print(json.dumps(config_manager.get_config(), indent=2, ensure_ascii=False))

    return 0
