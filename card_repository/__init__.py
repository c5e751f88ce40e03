# -*- coding: utf-8 -*-

"""
角色卡仓库
管理内嵌 JSON 元数据的 PNG 角色卡。
"""

__version__ = "1.0.0"
