# -*- coding: utf-8 -*-

import base64
import io
import json
import struct
import zlib

import pytest
from PIL import Image

from card_repository.card_utils import write_card_data
from card_repository.catalog import CardCatalog
from card_repository.png_chunks import PNG_SIGNATURE
from card_repository.storage import IndexStore, LocalStorage

# 1x1 8 位灰度
IHDR_DATA = struct.pack(">IIBBBBB", 1, 1, 8, 0, 0, 0, 0)
# 一条扫描线：过滤字节 + 一个像素
IDAT_DATA = zlib.compress(b"\x00\x7f")


def make_chunk(chunk_type, data):
    type_bytes = chunk_type.encode("latin-1")
    crc = zlib.crc32(type_bytes + data) & 0xFFFFFFFF
    return struct.pack(">I", len(data)) + type_bytes + data + struct.pack(">I", crc)


def text_chunk(keyword, text):
    return make_chunk("tEXt", keyword.encode("latin-1") + b"\x00" + text.encode("latin-1"))


def ztxt_chunk(keyword, text, method=0):
    payload = zlib.compress(text.encode("utf-8"))
    return make_chunk("zTXt", keyword.encode("latin-1") + b"\x00" + bytes([method]) + payload)


def itxt_chunk(keyword, text, compressed=False, language="", translated=""):
    body = text.encode("utf-8")
    if compressed:
        body = zlib.compress(body)
    data = (
        keyword.encode("latin-1")
        + b"\x00"
        + bytes([1 if compressed else 0, 0])
        + language.encode("ascii")
        + b"\x00"
        + translated.encode("utf-8")
        + b"\x00"
        + body
    )
    return make_chunk("iTXt", data)


def make_png(*middle, idat=IDAT_DATA):
    """签名 + IHDR + middle + IDAT + IEND"""
    return (
        PNG_SIGNATURE
        + make_chunk("IHDR", IHDR_DATA)
        + b"".join(middle)
        + make_chunk("IDAT", idat)
        + make_chunk("IEND", b"")
    )


def encode_card(card):
    return base64.b64encode(json.dumps(card).encode("utf-8")).decode("ascii")


@pytest.fixture
def image_bytes():
    output = io.BytesIO()
    Image.new("RGB", (4, 4), (200, 30, 30)).save(output, "PNG")
    return output.getvalue()


@pytest.fixture
def card_dict():
    return {
        "spec": "chara_card_v2",
        "spec_version": "2.0",
        "data": {
            "name": "Rin",
            "description": "Test",
            "first_mes": "Hello!",
            "creator": "someone",
            "character_version": "2.1",
        },
    }


@pytest.fixture
def card_png(image_bytes, card_dict):
    return write_card_data(image_bytes, card_dict)


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(tmp_path / "public")


@pytest.fixture
def catalog(storage):
    return CardCatalog(storage, IndexStore(storage), max_workers=4)
