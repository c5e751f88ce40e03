# -*- coding: utf-8 -*-

"""
角色卡仓库
storage.py - 文件存储后端与索引文件

存储后端在启动时根据配置选定一次，之后以参数的形式传递给调用方。
"""

import json
import logging
import shutil
import threading
from pathlib import Path
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import StorageError
from .utils import utc_now

logger = logging.getLogger(__name__)

INDEX_PATH = "index.json"


def card_path(character_id):
    return f"characters/{character_id}/card.png"


def avatar_path(character_id):
    return f"characters/{character_id}/avatar.png"


class StorageBackend:
    """存储后端接口。路径均为以 / 分隔的相对路径。"""

    def save_file(self, relative_path, data, content_type="application/octet-stream"):
        """保存文件并返回其访问 URL"""
        raise NotImplementedError

    def read_file(self, relative_path):
        """读取文件内容，文件不存在时抛出 FileNotFoundError"""
        raise NotImplementedError

    def delete_file(self, relative_path):
        """删除文件，文件不存在时不报错"""
        raise NotImplementedError

    def read_text(self, relative_path):
        return self.read_file(relative_path).decode("utf-8")

    def write_text(self, relative_path, text, content_type="text/plain"):
        return self.save_file(relative_path, text.encode("utf-8"), content_type)


class LocalStorage(StorageBackend):
    """将文件保存在本地目录（通常是网站的 public 目录）下"""

    def __init__(self, public_dir):
        self.public_dir = Path(public_dir)

    def _full_path(self, relative_path):
        root = self.public_dir.resolve()
        full_path = (root / relative_path.lstrip("/")).resolve()
        if full_path != root and root not in full_path.parents:
            raise StorageError(f"路径超出存储目录: {relative_path}")
        return full_path

    def save_file(self, relative_path, data, content_type="application/octet-stream"):
        full_path = self._full_path(relative_path)
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_bytes(data)
        except OSError as e:
            raise StorageError(f"写入 {relative_path} 失败: {e}") from e
        return "/" + relative_path.lstrip("/")

    def read_file(self, relative_path):
        full_path = self._full_path(relative_path)
        if not full_path.is_file():
            raise FileNotFoundError(relative_path)
        try:
            return full_path.read_bytes()
        except OSError as e:
            raise StorageError(f"读取 {relative_path} 失败: {e}") from e

    def delete_file(self, relative_path):
        full_path = self._full_path(relative_path)
        try:
            if full_path.is_dir():
                shutil.rmtree(full_path)
            elif full_path.exists():
                full_path.unlink()
        except OSError as e:
            raise StorageError(f"删除 {relative_path} 失败: {e}") from e


def create_session(token=None):
    session = requests.Session()
    retries = Retry(total=2, backoff_factor=0.5, status_forcelist=[500, 502, 503, 504])
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    if token:
        session.headers.update({"Authorization": f"Bearer {token}"})
    return session


class ObjectStorage(StorageBackend):
    """
    通过 HTTP 访问的对象存储服务。

    PUT {base_url}/{path} 上传，GET 读取，DELETE 删除。上传响应为 JSON 且含有
    "url" 字段时使用该地址作为公开 URL，否则使用对象本身的地址。
    """

    def __init__(self, base_url, token=None, timeout=30, session=None):
        if not base_url:
            raise StorageError("未配置对象存储地址 (object_storage_url)")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session if session is not None else create_session(token)

    def _url(self, relative_path):
        return f"{self.base_url}/{quote(relative_path.lstrip('/'))}"

    def save_file(self, relative_path, data, content_type="application/octet-stream"):
        url = self._url(relative_path)
        try:
            response = self.session.put(
                url,
                data=data,
                headers={"Content-Type": content_type},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise StorageError(f"上传 {relative_path} 失败: {e}") from e

        try:
            body = response.json()
        except ValueError:
            return url
        if isinstance(body, dict) and body.get("url"):
            return body["url"]
        return url

    def read_file(self, relative_path):
        try:
            response = self.session.get(self._url(relative_path), timeout=self.timeout)
        except requests.RequestException as e:
            raise StorageError(f"读取 {relative_path} 失败: {e}") from e
        if response.status_code == 404:
            raise FileNotFoundError(relative_path)
        try:
            response.raise_for_status()
        except requests.RequestException as e:
            raise StorageError(f"读取 {relative_path} 失败: {e}") from e
        return response.content

    def delete_file(self, relative_path):
        try:
            response = self.session.delete(self._url(relative_path), timeout=self.timeout)
            if response.status_code == 404:
                return
            response.raise_for_status()
        except requests.RequestException as e:
            raise StorageError(f"删除 {relative_path} 失败: {e}") from e


def create_storage(settings):
    """根据配置创建存储后端，应在程序启动时调用一次"""
    backend = settings.get("storage_backend", "local")
    if backend == "local":
        return LocalStorage(settings.get("public_dir", "public"))
    if backend == "object":
        return ObjectStorage(
            settings.get("object_storage_url", ""),
            token=settings.get("object_storage_token") or None,
            timeout=settings.get("request_timeout", 30),
        )
    raise StorageError(f"未知的存储后端: {backend}")


def delete_character_files(storage, character_id):
    """尽量删除角色的卡片和头像文件，失败时只记录日志"""
    for path in (card_path(character_id), avatar_path(character_id)):
        try:
            storage.delete_file(path)
        except StorageError as e:
            logger.warning(f"删除文件 {path} 失败: {e}")


class IndexStore:
    """
    index.json 的读写。

    所有修改都通过 update() 完成：加锁、读取当前索引、执行调用方提供的变换函数、
    写回、解锁。锁是可重入的，变换函数内部可以再次读取索引。
    """

    def __init__(self, storage, repository_version="1.0.0"):
        self.storage = storage
        self.repository_version = repository_version
        self._lock = threading.RLock()

    def default_index(self):
        return {
            "repository_version": self.repository_version,
            "last_updated": utc_now(),
            "characters": [],
        }

    def read_index(self):
        try:
            text = self.storage.read_text(INDEX_PATH)
        except FileNotFoundError:
            logger.info("未找到索引文件，使用空索引")
            return self.default_index()
        try:
            index = json.loads(text)
        except json.JSONDecodeError as e:
            raise StorageError(f"索引文件已损坏: {e}") from e
        if not isinstance(index, dict):
            raise StorageError("索引文件已损坏: 顶层不是对象")
        index.setdefault("characters", [])
        return index

    def update(self, transform):
        """
        在锁内对索引执行 transform(index)，并写回存储。

        transform 抛出异常时不写入任何内容。

        Returns:
            transform 的返回值。
        """
        with self._lock:
            index = self.read_index()
            result = transform(index)
            index["last_updated"] = utc_now()
            self.storage.write_text(
                INDEX_PATH,
                json.dumps(index, indent=2, ensure_ascii=False),
                "application/json",
            )
            return result
