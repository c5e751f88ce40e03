# -*- coding: utf-8 -*-

"""
角色卡仓库
png_chunks.py - PNG 分块的解析、文本块提取与元数据剥离

像素数据只作为不透明的字节处理，不解压也不校验 CRC。
"""

import logging
import struct
import zlib
from dataclasses import dataclass

from .errors import FormatError

logger = logging.getLogger(__name__)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

# 长度(4) + 类型(4) + CRC(4)
CHUNK_OVERHEAD = 12

# 无论长度如何都保留的分块
ESSENTIAL_CHUNK_TYPES = ("IHDR", "IDAT", "IEND")
# 仅在非空时保留的分块
OPTIONAL_IMAGE_CHUNK_TYPES = ("PLTE", "tRNS")


@dataclass
class Chunk:
    type: str
    length: int
    data: bytes
    crc: bytes

    def to_bytes(self):
        """按原样重新编码，CRC 直接复制"""
        return (
            struct.pack(">I", self.length)
            + self.type.encode("latin-1")
            + self.data
            + self.crc
        )

    def __repr__(self):
        return f"<Chunk {self.type} len={self.length}>"


def check_signature(buffer):
    if bytes(buffer[:8]) != PNG_SIGNATURE:
        raise FormatError("not a valid PNG")


def parse_chunks(buffer, stop_at_iend=True):
    """
    将 PNG 字节流按顺序解析为分块列表。

    Args:
        buffer (bytes): 完整的 PNG 文件内容，不会被修改。
        stop_at_iend (bool): 读到 IEND 后是否立即停止。读取元数据时为 True；
            需要重放所有分块（例如剥离元数据）时为 False，此时只依靠长度判断结束。

    Returns:
        list[Chunk]: 文件中的分块，保持原有顺序。

    Raises:
        FormatError: 签名不正确，或某个分块的长度超出了缓冲区末尾。
    """
    buffer = bytes(buffer)
    check_signature(buffer)

    chunks = []
    total = len(buffer)
    offset = len(PNG_SIGNATURE)

    while offset < total - 8:
        (length,) = struct.unpack_from(">I", buffer, offset)
        end = offset + CHUNK_OVERHEAD + length
        if end > total:
            raise FormatError("truncated chunk")

        chunk_type = buffer[offset + 4 : offset + 8].decode("latin-1")
        data_start = offset + 8
        data = buffer[data_start : data_start + length]
        crc = buffer[data_start + length : end]
        chunks.append(Chunk(chunk_type, length, data, crc))
        offset = end

        if stop_at_iend and chunk_type == "IEND":
            break

    return chunks


def serialize_chunks(chunks):
    """输出签名加上各分块的原始编码"""
    return PNG_SIGNATURE + b"".join(chunk.to_bytes() for chunk in chunks)


# --- 文本块解码 ---
# 每个解码函数返回 (keyword, text)，无法解析时返回 None


def _decode_text(data, text_encoding):
    keyword, sep, text = data.partition(b"\x00")
    if not sep:
        return None
    return (
        keyword.decode(text_encoding, errors="replace"),
        text.decode(text_encoding, errors="replace"),
    )


def _decode_ztxt(data, text_encoding):
    keyword, sep, rest = data.partition(b"\x00")
    if not sep or not rest:
        logger.warning("跳过 zTXt 分块：缺少压缩方式字段")
        return None
    method = rest[0]
    if method != 0:
        logger.warning(f"跳过 zTXt 分块 {keyword!r}：不支持的压缩方式 {method}")
        return None
    try:
        text = zlib.decompress(rest[1:]).decode("utf-8")
    except (zlib.error, UnicodeDecodeError) as e:
        logger.warning(f"跳过 zTXt 分块 {keyword!r}：{e}")
        return None
    return keyword.decode(text_encoding, errors="replace"), text


def _decode_itxt(data, text_encoding):
    keyword, sep, rest = data.partition(b"\x00")
    if not sep or len(rest) < 2:
        logger.warning("跳过 iTXt 分块：头部不完整")
        return None

    compression_flag, compression_method = rest[0], rest[1]
    _language, sep_lang, rest = rest[2:].partition(b"\x00")
    _translated, sep_trans, text = rest.partition(b"\x00")
    if not (sep_lang and sep_trans):
        logger.warning(f"跳过 iTXt 分块 {keyword!r}：缺少分隔符")
        return None

    try:
        if compression_flag == 1:
            if compression_method != 0:
                logger.warning(
                    f"跳过 iTXt 分块 {keyword!r}：不支持的压缩方式 {compression_method}"
                )
                return None
            text = zlib.decompress(text)
        elif compression_flag != 0:
            logger.warning(f"跳过 iTXt 分块 {keyword!r}：无效的压缩标志 {compression_flag}")
            return None
        text = text.decode("utf-8")
    except (zlib.error, UnicodeDecodeError) as e:
        logger.warning(f"跳过 iTXt 分块 {keyword!r}：{e}")
        return None

    return keyword.decode(text_encoding, errors="replace"), text


TEXT_DECODERS = {
    "tEXt": _decode_text,
    "zTXt": _decode_ztxt,
    "iTXt": _decode_itxt,
}


def extract_text(chunks, text_encoding="latin-1"):
    """
    从分块列表中收集所有文本块，得到 keyword -> text 的映射。

    同名关键字按文件顺序后者覆盖前者。单个 zTXt/iTXt 分块损坏时只跳过该分块。

    Args:
        chunks (list[Chunk]): parse_chunks 的结果。
        text_encoding (str): tEXt 及关键字的单字节编码，"latin-1" 或 "ascii"。

    Returns:
        dict: 关键字到文本的映射。
    """
    text_map = {}
    for chunk in chunks:
        decoder = TEXT_DECODERS.get(chunk.type)
        if decoder is None:
            continue
        entry = decoder(chunk.data, text_encoding)
        if entry is not None:
            keyword, text = entry
            text_map[keyword] = text
    return text_map


def read_text_chunks(buffer, text_encoding="latin-1"):
    return extract_text(parse_chunks(buffer), text_encoding)


def _is_image_chunk(chunk):
    if chunk.type in ESSENTIAL_CHUNK_TYPES:
        return True
    return chunk.type in OPTIONAL_IMAGE_CHUNK_TYPES and chunk.length > 0


def strip_metadata(buffer):
    """
    去除 PNG 中所有非必要分块，只保留 IHDR、IDAT、IEND 以及非空的 PLTE/tRNS。

    保留的分块原样写出（包括原有 CRC），因此结果与输入的像素数据完全一致。
    对结果再次调用本函数得到相同的字节。

    Raises:
        FormatError: 输入不是有效的 PNG。
    """
    chunks = parse_chunks(buffer, stop_at_iend=False)
    kept = [chunk for chunk in chunks if _is_image_chunk(chunk)]
    dropped = len(chunks) - len(kept)
    if dropped:
        logger.debug(f"已移除 {dropped} 个元数据分块")
    return serialize_chunks(kept)
