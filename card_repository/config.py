# -*- coding: utf-8 -*-
"""
角色卡仓库
config.py - 配置文件读写模块
"""

import json
from pathlib import Path

CONFIG_FILE = Path("config.json")

DEFAULT_SETTINGS = {
    # "local" 使用本地目录，"object" 使用对象存储服务
    "storage_backend": "local",
    "public_dir": "public",
    "object_storage_url": "",
    "object_storage_token": "",
    "request_timeout": 30,
    "max_workers": 8,
    "max_file_size": 10 * 1024 * 1024,
    # tEXt 块的解码方式: "latin-1" 或 "ascii"
    "text_encoding": "latin-1",
    "repository_version": "1.0.0",
}


def load_settings(path=None):
    """从 config.json 加载设置"""
    config_file = Path(path) if path else CONFIG_FILE
    if not config_file.exists():
        return dict(DEFAULT_SETTINGS)
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            settings = json.load(f)
        if not isinstance(settings, dict):
            return dict(DEFAULT_SETTINGS)
        # 确保所有默认键都存在
        for key, value in DEFAULT_SETTINGS.items():
            settings.setdefault(key, value)
        return settings
    except (json.JSONDecodeError, IOError):
        return dict(DEFAULT_SETTINGS)


def save_settings(settings, path=None):
    """将设置保存到 config.json"""
    config_file = Path(path) if path else CONFIG_FILE
    with open(config_file, "w", encoding="utf-8") as f:
        json.dump(settings, f, indent=4, ensure_ascii=False)
