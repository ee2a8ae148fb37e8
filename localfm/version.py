"""
localfm 版本管理模块

统一管理项目版本号，确保版本一致性。
"""

__version__ = "0.3.0"
__version_info__ = (0, 3, 0)


def get_version() -> str:
    """获取当前版本号"""
    return __version__


def get_version_string() -> str:
    """获取完整版本字符串"""
    return f"localfm v{__version__}"
