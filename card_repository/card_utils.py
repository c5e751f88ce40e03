# -*- coding: utf-8 -*-

"""
角色卡仓库
card_utils.py - 角色卡数据的解码，以及写入 PNG 的工具函数
"""

import base64
import binascii
import io
import json
import logging
import zlib
from dataclasses import dataclass, field, fields
from typing import Optional

from PIL import Image, PngImagePlugin

from .errors import DecodeError
from .png_chunks import read_text_chunks

logger = logging.getLogger(__name__)

# 按优先级排列的角色卡关键字
CARD_KEYWORDS = ("chara", "chara_card_v2")

DEFAULT_SPEC = "chara_card_v2"
DEFAULT_SPEC_VERSION = "2.0"


@dataclass
class CardSpecV2:
    name: Optional[str] = None
    description: Optional[str] = None
    first_mes: Optional[str] = None
    creator: Optional[str] = None
    character_version: Optional[str] = None
    # 其余字段（character_book、tags 等）原样保留
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data):
        known = {f.name for f in fields(cls)} - {"extra"}
        values = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        return cls(extra=extra, **values)

    def to_dict(self):
        result = dict(self.extra)
        for f in fields(self):
            if f.name == "extra":
                continue
            value = getattr(self, f.name)
            if value is not None:
                result[f.name] = value
        return result


@dataclass
class CardRecord:
    spec: str = DEFAULT_SPEC
    spec_version: str = DEFAULT_SPEC_VERSION
    data: CardSpecV2 = field(default_factory=CardSpecV2)

    @classmethod
    def from_dict(cls, obj):
        """
        从 JSON 对象构建角色卡记录。

        V2/V3 卡的字段位于 "data" 之下；没有 "data" 的旧版 (V1) 卡把字段放在顶层。
        """
        data = obj.get("data")
        if not isinstance(data, dict):
            data = {k: v for k, v in obj.items() if k not in ("spec", "spec_version")}
        return cls(
            spec=obj.get("spec", DEFAULT_SPEC),
            spec_version=obj.get("spec_version", DEFAULT_SPEC_VERSION),
            data=CardSpecV2.from_dict(data),
        )

    def to_dict(self):
        return {
            "spec": self.spec,
            "spec_version": self.spec_version,
            "data": self.data.to_dict(),
        }


def _b64decode(text):
    cleaned = "".join(text.split())
    cleaned += "=" * (-len(cleaned) % 4)
    return base64.b64decode(cleaned)


def _inflate(blob):
    try:
        return zlib.decompress(blob)
    except zlib.error:
        # 部分工具写入的是不带 zlib 头的原始 deflate 流
        return zlib.decompress(blob, -zlib.MAX_WBITS)


def _parse_json(raw_text):
    stripped = raw_text.strip()
    if not stripped.startswith(("{", "[")):
        raise ValueError("not a JSON document")
    return json.loads(stripped)


def _parse_base64_json(raw_text):
    return json.loads(_b64decode(raw_text).decode("utf-8"))


def _parse_base64_deflate_json(raw_text):
    return json.loads(_inflate(_b64decode(raw_text)).decode("utf-8"))


# 按顺序尝试，第一个成功的结果生效
PAYLOAD_STRATEGIES = (
    ("json", _parse_json),
    ("base64", _parse_base64_json),
    ("base64+deflate", _parse_base64_deflate_json),
)


def decode_card_payload(raw_text):
    """
    解码 chara 文本。不同的制卡工具使用不同的编码方式：
    纯 JSON、base64 编码的 JSON、或 base64 编码的 deflate 压缩 JSON。

    本函数只负责解析，不填充任何默认值。

    Args:
        raw_text (str): 文本块中 chara 关键字对应的内容。

    Returns:
        CardRecord: 解码后的角色卡。

    Raises:
        DecodeError: 所有解码方式均失败。
    """
    for name, strategy in PAYLOAD_STRATEGIES:
        try:
            obj = strategy(raw_text)
        # 嵌套过深的 JSON 会触发 RecursionError，同样视为该方式失败
        except (ValueError, RecursionError, zlib.error, binascii.Error):
            continue
        if isinstance(obj, dict):
            logger.debug(f"角色卡数据以 {name} 方式解码成功")
            return CardRecord.from_dict(obj)
    raise DecodeError("cannot decode character payload")


def find_card_text(text_map):
    for keyword in CARD_KEYWORDS:
        if text_map.get(keyword):
            return text_map[keyword]
    return None


def read_card_data(buffer, text_encoding="latin-1"):
    """
    从 PNG 字节中读取并解码角色卡。

    Raises:
        FormatError: PNG 分块结构损坏。
        DecodeError: 未找到角色卡元数据或无法解码。
    """
    raw_text = find_card_text(read_text_chunks(buffer, text_encoding))
    if raw_text is None:
        raise DecodeError("character data not found in PNG metadata")
    return decode_card_payload(raw_text)


def write_card_data(image_bytes, card, keyword="chara"):
    """
    将角色卡数据以 base64 JSON 的形式写入一个新的 PNG。

    Args:
        image_bytes (bytes): 原始图片，任何 Pillow 可读取的格式。
        card (CardRecord | dict): 要写入的角色卡。
        keyword (str): 文本块关键字。

    Returns:
        bytes: 新 PNG 文件的内容。
    """
    card_dict = card.to_dict() if isinstance(card, CardRecord) else card
    card_str = json.dumps(card_dict, ensure_ascii=False)
    card_base64 = base64.b64encode(card_str.encode("utf-8")).decode("ascii")

    png_info = PngImagePlugin.PngInfo()
    png_info.add_text(keyword, card_base64)

    output = io.BytesIO()
    with Image.open(io.BytesIO(image_bytes)) as image:
        image.save(output, "PNG", pnginfo=png_info)
    return output.getvalue()
