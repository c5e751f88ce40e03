# -*- coding: utf-8 -*-
"""
角色卡仓库
cli.py - 命令行接口
"""

import argparse
import logging
import mimetypes
import sys
from pathlib import Path

from .catalog import CardCatalog, UploadFile
from .config import load_settings as config_load
from .errors import CardError
from .png_chunks import extract_text, parse_chunks, strip_metadata


def build_parser():
    parser = argparse.ArgumentParser(description="角色卡仓库命令行工具")

    # 可选参数，如果未提供则从config.json读取
    parser.add_argument("--config", type=str, default=None, help="配置文件路径")
    parser.add_argument(
        "--public-dir", type=str, default=None, help="本地存储目录（public 文件夹）"
    )
    parser.add_argument(
        "--storage-backend",
        choices=["local", "object"],
        default=None,
        help="存储后端",
    )
    parser.add_argument("--workers", type=int, default=None, help="批量处理的并发数")
    parser.add_argument("-v", "--verbose", action="store_true", help="输出调试日志")

    subparsers = parser.add_subparsers(dest="command", required=True)

    inspect_parser = subparsers.add_parser("inspect", help="列出PNG的分块和文本元数据")
    inspect_parser.add_argument("file", type=str)

    validate_parser = subparsers.add_parser("validate", help="校验角色卡文件")
    validate_parser.add_argument("files", nargs="+")

    upload_parser = subparsers.add_parser("upload", help="上传角色卡（支持批量）")
    upload_parser.add_argument("files", nargs="+")

    strip_parser = subparsers.add_parser("strip", help="去除PNG中的全部元数据")
    strip_parser.add_argument("input", type=str)
    strip_parser.add_argument("output", type=str)

    subparsers.add_parser("list", help="列出仓库中的角色")

    delete_parser = subparsers.add_parser("delete", help="删除角色")
    delete_parser.add_argument("id", type=str)

    download_parser = subparsers.add_parser("download", help="下载角色卡")
    download_parser.add_argument("id", type=str)
    download_parser.add_argument("-o", "--output-dir", type=str, default=".")

    return parser


def load_upload_file(path):
    path = Path(path)
    content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    return UploadFile(path.name, path.read_bytes(), content_type)


def print_validation(validation):
    print(f"{validation.original_name}: {validation.status}")
    for error in validation.errors:
        print(f"  [ERROR] {error}")
    for warning in validation.warnings:
        print(f"  [WARNING] {warning}")


def cmd_inspect(args, settings):
    data = Path(args.file).read_bytes()
    chunks = parse_chunks(data, stop_at_iend=False)
    print(f"--- 正在分析文件: {args.file} ---")
    for chunk in chunks:
        print(f"  {chunk.type} ({chunk.length} 字节)")
    text_map = extract_text(chunks, settings["text_encoding"])
    if not text_map:
        print("文件中未找到文本元数据。")
    for key, value in text_map.items():
        # 只打印值的开头部分，以防内容过长
        print(f"  - 键 (Key): '{key}'")
        print(f"    值 (Value Preview): '{value[:200]}'")
    return 0


def cmd_validate(args, catalog):
    files = [load_upload_file(path) for path in args.files]
    results = catalog.validate_many(files)
    for validation in results:
        print_validation(validation)
    return 0 if all(v.status == "valid" for v in results) else 1


def cmd_upload(args, catalog):
    files = [load_upload_file(path) for path in args.files]
    result = catalog.batch_upload(files)
    for validation in result.successful:
        print(f"{validation.original_name}: 已上传 -> {validation.character_id}")
    for validation in result.failed + result.skipped:
        print_validation(validation)
    summary = result.summary
    print(
        f"批量上传完成：成功 {summary['successCount']} 个，"
        f"失败 {summary['failCount']} 个，跳过 {summary['skipCount']} 个"
    )
    return 0 if not (result.failed or result.skipped) else 1


def cmd_strip(args):
    clean = strip_metadata(Path(args.input).read_bytes())
    Path(args.output).write_bytes(clean)
    print(f"已保存去除元数据的图片: {args.output}")
    return 0


def cmd_list(args, catalog):
    characters = catalog.list_characters()
    if not characters:
        print("仓库中还没有角色。")
    for character in characters:
        print(
            f"{character['id']}  {character['name']} v{character['version']}"
            f"  作者: {character['author']}  下载: {character.get('download_count', 0)}"
        )
    return 0


def cmd_delete(args, catalog):
    character = catalog.delete(args.id)
    print(f"已删除角色: {character['name']}")
    return 0


def cmd_download(args, catalog):
    filename, data = catalog.download(args.id)
    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    output_path = output_dir / filename
    output_path.write_bytes(data)
    print(f"已下载至: {output_path}")
    return 0


CATALOG_COMMANDS = {
    "validate": cmd_validate,
    "upload": cmd_upload,
    "list": cmd_list,
    "delete": cmd_delete,
    "download": cmd_download,
}


def main(argv=None):
    """命令行主函数"""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s: %(message)s",
    )

    # --- 1. 加载配置 ---
    settings = config_load(args.config)

    # 如果命令行提供了参数，则覆盖配置文件中的设置
    if args.public_dir is not None:
        settings["public_dir"] = args.public_dir
    if args.storage_backend is not None:
        settings["storage_backend"] = args.storage_backend
    if args.workers is not None:
        settings["max_workers"] = args.workers

    # --- 2. 执行请求的功能 ---
    try:
        if args.command == "inspect":
            return cmd_inspect(args, settings)
        if args.command == "strip":
            return cmd_strip(args)
        catalog = CardCatalog.from_settings(settings)
        return CATALOG_COMMANDS[args.command](args, catalog)
    except CardError as e:
        print(f"错误: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"错误: 无法读取或写入文件 -> {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
