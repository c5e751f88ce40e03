# -*- coding: utf-8 -*-

"""
角色卡仓库
errors.py - 异常类型
"""


class CardError(Exception):
    """所有角色卡处理错误的基类"""


class FormatError(CardError):
    """PNG 分块结构损坏：签名错误或分块长度越界"""


class DecodeError(CardError):
    """找不到角色卡数据，或所有解码方式均失败"""


class StorageError(CardError):
    """存储后端读写失败"""


class CharacterNotFound(CardError):
    """索引中不存在指定的角色"""


class ValidationFailed(CardError):
    """上传的文件未通过校验"""

    def __init__(self, validation):
        self.validation = validation
        super().__init__("; ".join(validation.errors) or "validation failed")
