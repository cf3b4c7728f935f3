"""
nvx: Node.js 多版本管理器。
"""

__version__ = "0.1.0"
