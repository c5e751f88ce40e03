# -*- coding: utf-8 -*-

"""
角色卡仓库
catalog.py - 角色卡的校验、上传、修改、删除与下载
"""

import copy
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import List, Optional

from .card_utils import CardSpecV2, read_card_data
from .errors import CardError, CharacterNotFound, StorageError, ValidationFailed
from .png_chunks import strip_metadata
from .storage import (
    IndexStore,
    avatar_path,
    card_path,
    create_storage,
    delete_character_files,
)
from .utils import name_from_filename, safe_name, utc_now

logger = logging.getLogger(__name__)

MAX_WORKERS = 8
MAX_FILE_SIZE = 10 * 1024 * 1024
PNG_CONTENT_TYPE = "image/png"

DEFAULT_NAME = "Unnamed"
DEFAULT_AUTHOR = "Unknown Author"
DEFAULT_DESCRIPTION = "No description."
DEFAULT_VERSION = "1.0"


@dataclass
class UploadFile:
    name: str
    data: bytes
    content_type: str = PNG_CONTENT_TYPE


@dataclass
class ValidationResult:
    original_name: str
    # valid / invalid / uploaded / failed
    status: str = "invalid"
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    parsed_data: Optional[CardSpecV2] = None
    character_id: Optional[str] = None
    character: Optional[dict] = None


@dataclass
class BatchResult:
    total: int
    successful: List[ValidationResult]
    failed: List[ValidationResult]
    skipped: List[ValidationResult]

    @property
    def summary(self):
        return {
            "successCount": len(self.successful),
            "failCount": len(self.failed),
            "skipCount": len(self.skipped),
        }


def card_text(value, default=""):
    """空值使用默认值，其余值统一转为字符串（部分制卡工具会写入数字版本号）"""
    if value is None or value == "":
        return default
    return value if isinstance(value, str) else str(value)


def apply_card_defaults(spec_data, name_hint):
    """
    为缺失的字段填充默认值，返回产生的警告列表。
    名称、描述和版本号同时被转换为字符串。

    Args:
        spec_data (CardSpecV2): 会被原地修改。
        name_hint (str): 角色名缺失时使用的名字，一般来自文件名。
    """
    warnings = []
    if not spec_data.name:
        spec_data.name = name_hint
        warnings.append("角色名称缺失，已从文件名提取")
    if not spec_data.description:
        spec_data.description = DEFAULT_DESCRIPTION
        warnings.append("描述缺失，已使用默认描述")
    if not spec_data.character_version:
        spec_data.character_version = DEFAULT_VERSION
        warnings.append(f"版本号缺失，已使用默认版本{DEFAULT_VERSION}")
    spec_data.name = card_text(spec_data.name, name_hint)
    spec_data.description = card_text(spec_data.description, DEFAULT_DESCRIPTION)
    spec_data.character_version = card_text(spec_data.character_version, DEFAULT_VERSION)
    return warnings


def validate_card(
    filename,
    buffer,
    content_type=PNG_CONTENT_TYPE,
    max_file_size=MAX_FILE_SIZE,
    text_encoding="latin-1",
):
    """
    校验单个上传文件并解析其中的角色卡，不会抛出异常。

    Returns:
        ValidationResult: status 为 "valid" 时 parsed_data 已填充默认值。
    """
    result = ValidationResult(original_name=filename)

    if content_type != PNG_CONTENT_TYPE:
        result.errors.append("文件类型不正确，只支持PNG格式")
        return result

    if len(buffer) > max_file_size:
        limit_mb = max_file_size // (1024 * 1024)
        result.errors.append(f"文件大小超过{limit_mb}MB限制")
        return result

    try:
        card = read_card_data(buffer, text_encoding)
    except CardError as e:
        result.errors.append(f"文件解析失败: {e}")
        return result

    spec_data = card.data
    result.warnings.extend(apply_card_defaults(spec_data, name_from_filename(filename)))
    result.parsed_data = spec_data
    result.status = "valid"
    return result


def build_character(character_id, spec_data, card_url, avatar_url):
    """根据角色卡数据生成索引条目"""
    now = utc_now()
    return {
        "id": character_id,
        "name": card_text(spec_data.name, DEFAULT_NAME),
        "author": card_text(spec_data.creator, DEFAULT_AUTHOR),
        "version": card_text(spec_data.character_version, DEFAULT_VERSION),
        "description": card_text(spec_data.description, DEFAULT_DESCRIPTION),
        "tags": [],
        "first_mes": card_text(spec_data.first_mes),
        "avatar_url": avatar_url,
        "card_url": card_url,
        "last_updated": now,
        "upload_time": now,
        "download_count": 0,
    }


def find_character(index, character_id):
    for character in index["characters"]:
        if character.get("id") == character_id:
            return character
    raise CharacterNotFound(character_id)


class CardCatalog:
    def __init__(
        self,
        storage,
        index_store=None,
        max_workers=MAX_WORKERS,
        max_file_size=MAX_FILE_SIZE,
        text_encoding="latin-1",
    ):
        self.storage = storage
        self.index_store = index_store if index_store is not None else IndexStore(storage)
        self.max_workers = max_workers
        self.max_file_size = max_file_size
        self.text_encoding = text_encoding

    @classmethod
    def from_settings(cls, settings):
        storage = create_storage(settings)
        return cls(
            storage,
            IndexStore(storage, settings.get("repository_version", "1.0.0")),
            max_workers=settings.get("max_workers", MAX_WORKERS),
            max_file_size=settings.get("max_file_size", MAX_FILE_SIZE),
            text_encoding=settings.get("text_encoding", "latin-1"),
        )

    def _run_parallel(self, func, items):
        """并发执行 func，结果按输入顺序返回"""
        results = [None] * len(items)
        if not items:
            return results
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {executor.submit(func, item): i for i, item in enumerate(items)}
            for future in as_completed(futures):
                results[futures[future]] = future.result()
        return results

    # --- 校验 ---

    def validate(self, file):
        return validate_card(
            file.name,
            file.data,
            file.content_type,
            self.max_file_size,
            self.text_encoding,
        )

    def validate_many(self, files):
        return self._run_parallel(self.validate, list(files))

    # --- 上传 ---

    def _save_card_files(self, character_id, buffer, avatar):
        card_url = self.storage.save_file(card_path(character_id), buffer, PNG_CONTENT_TYPE)
        avatar_url = self.storage.save_file(avatar_path(character_id), avatar, PNG_CONTENT_TYPE)
        return card_url, avatar_url

    def _upload_validated(self, file, validation):
        character_id = str(uuid.uuid4())
        validation.character_id = character_id
        try:
            # 头像使用去除了所有元数据的图片
            avatar = strip_metadata(file.data)
            card_url, avatar_url = self._save_card_files(character_id, file.data, avatar)
            character = build_character(
                character_id, validation.parsed_data, card_url, avatar_url
            )
            self.index_store.update(lambda index: index["characters"].append(character))
        except CardError as e:
            logger.warning(f"上传 {file.name} 失败: {e}")
            delete_character_files(self.storage, character_id)
            validation.status = "failed"
            validation.errors.append(f"上传失败: {e}")
            return validation

        logger.info(f"已上传角色卡 {character['name']} ({character_id})")
        validation.character = character
        validation.status = "uploaded"
        return validation

    def upload(self, file):
        """
        校验并上传单个角色卡。

        Returns:
            ValidationResult: status 为 "uploaded"、"invalid" 或 "failed"。
        """
        validation = self.validate(file)
        if validation.status != "valid":
            return validation
        return self._upload_validated(file, validation)

    def batch_upload(self, files):
        """
        批量上传：先并发校验全部文件，再并发上传其中有效的文件。
        单个文件的失败不影响其他文件。
        """
        files = list(files)
        validations = self.validate_many(files)
        pending = [
            (file, validation)
            for file, validation in zip(files, validations)
            if validation.status == "valid"
        ]
        self._run_parallel(lambda pair: self._upload_validated(*pair), pending)

        result = BatchResult(
            total=len(files),
            successful=[v for v in validations if v.status == "uploaded"],
            failed=[v for v in validations if v.status == "failed"],
            skipped=[v for v in validations if v.status == "invalid"],
        )
        logger.info(
            f"批量上传完成：成功 {len(result.successful)} 个，"
            f"失败 {len(result.failed)} 个，跳过 {len(result.skipped)} 个"
        )
        return result

    # --- 查询、修改、删除、下载 ---

    def list_characters(self):
        return self.index_store.read_index()["characters"]

    def get(self, character_id):
        return find_character(self.index_store.read_index(), character_id)

    def update(self, character_id, name=None, version=None, description=None, file=None):
        """
        修改角色。提供新文件时替换卡片和头像，并以新卡片中的数据为准；
        否则只修改给出的文本字段。

        Raises:
            CharacterNotFound: 角色不存在。
            ValidationFailed: 新文件未通过校验。
        """
        validation = None
        if file is not None:
            validation = self.validate(file)
            if validation.status != "valid":
                raise ValidationFailed(validation)
            avatar = strip_metadata(file.data)

        def transform(index):
            character = find_character(index, character_id)
            if validation is not None:
                # 新文件写入相同路径，直接覆盖旧文件；保存失败时旧卡片保持不变
                card_url, avatar_url = self._save_card_files(character_id, file.data, avatar)
                spec_data = validation.parsed_data
                character.update(
                    name=card_text(spec_data.name, DEFAULT_NAME),
                    author=card_text(spec_data.creator, DEFAULT_AUTHOR),
                    version=card_text(spec_data.character_version, DEFAULT_VERSION),
                    description=card_text(spec_data.description, DEFAULT_DESCRIPTION),
                    first_mes=card_text(spec_data.first_mes),
                    card_url=card_url,
                    avatar_url=avatar_url,
                )
            else:
                for key, value in (
                    ("name", name),
                    ("version", version),
                    ("description", description),
                ):
                    if value is not None:
                        character[key] = value
            character["last_updated"] = utc_now()
            return copy.deepcopy(character)

        return self.index_store.update(transform)

    def delete(self, character_id):
        def transform(index):
            character = find_character(index, character_id)
            index["characters"].remove(character)
            return character

        character = self.index_store.update(transform)
        delete_character_files(self.storage, character_id)
        logger.info(f"已删除角色 {character.get('name')} ({character_id})")
        return character

    def download(self, character_id):
        """
        读取角色卡文件并增加下载次数。

        Returns:
            tuple: (下载文件名, PNG 字节)
        """
        character = self.get(character_id)
        try:
            data = self.storage.read_file(card_path(character_id))
        except FileNotFoundError as e:
            raise StorageError(f"角色卡文件不存在: {e}") from e

        def transform(index):
            entry = find_character(index, character_id)
            entry["download_count"] = entry.get("download_count", 0) + 1
            entry["last_updated"] = utc_now()
            return copy.deepcopy(entry)

        character = self.index_store.update(transform)
        filename = f"{safe_name(str(character['name']))}_v{character['version']}.png"
        return filename, data
