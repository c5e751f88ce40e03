# -*- coding: utf-8 -*-

"""
辅助工具函数
"""

from datetime import datetime, timezone
from pathlib import PurePosixPath


def utc_now():
    """返回 ISO 8601 格式的当前 UTC 时间，例如 2024-01-01T00:00:00.000Z"""
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def safe_name(name):
    """去掉文件名中不安全的字符"""
    return "".join(c for c in name if c.isalnum() or c in " ._-").strip()


def name_from_filename(filename):
    """从上传的文件名中提取角色名（去掉扩展名）"""
    return PurePosixPath(filename.replace("\\", "/")).stem
