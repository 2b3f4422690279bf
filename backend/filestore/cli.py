"""CLI: filestore upload | info | list | url | delete | restore | purge | integrity."""
import argparse
import asyncio
import json
import sys
from pathlib import Path

from filestore.core.config import get_settings
from filestore.core.exceptions import StorageError
from filestore.core.logging import configure_logging
from filestore.db import FileStatus, get_engine, get_session_factory, init_db
from filestore.schemas import UploadRequest
from filestore.services.file_records import FileRecordService
from filestore.services.storage import get_storage


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="filestore", description="Manage stored files")
    parser.add_argument("--init-db", action="store_true", help="Create tables before running the command")
    sub = parser.add_subparsers(dest="command", required=True)

    # upload
    p_upload = sub.add_parser("upload", help="Upload local files")
    p_upload.add_argument("files", nargs="+", help="Local file paths to upload")
    p_upload.add_argument("--path", default="files", help="Logical path, e.g. avatars, articles, docs")
    p_upload.add_argument("--uploader", default=None, help="Uploader identity recorded on the file")
    p_upload.add_argument("--private", action="store_true", help="Mark files as not public")
    p_upload.set_defaults(func=cmd_upload)

    # info
    p_info = sub.add_parser("info", help="Show the active storage backend")
    p_info.set_defaults(func=cmd_info)

    # list
    p_list = sub.add_parser("list", help="List file records, newest first")
    p_list.add_argument("--uploader", default=None, help="Only files from this uploader")
    p_list.add_argument("--status", choices=["active", "deleted", "all"], default="active")
    p_list.add_argument("--category", default=None, help="image, document, or a single extension")
    p_list.add_argument("--keyword", default=None, help="Match original name, stored name or remark")
    p_list.add_argument("--offset", type=int, default=0)
    p_list.add_argument("--limit", type=int, default=50)
    p_list.set_defaults(func=cmd_list)

    # url
    p_url = sub.add_parser("url", help="Resolve the URL of a file")
    p_url.add_argument("file_id", type=int)
    p_url.set_defaults(func=cmd_url)

    # delete
    p_delete = sub.add_parser("delete", help="Soft-delete (default) or permanently delete a file")
    p_delete.add_argument("file_id", type=int)
    p_delete.add_argument("--permanent", action="store_true", help="Also remove the stored object")
    p_delete.set_defaults(func=cmd_delete)

    # restore
    p_restore = sub.add_parser("restore", help="Restore a soft-deleted file")
    p_restore.add_argument("file_id", type=int)
    p_restore.set_defaults(func=cmd_restore)

    # purge
    p_purge = sub.add_parser("purge", help="Permanently delete files soft-deleted more than N days ago")
    p_purge.add_argument("--days", type=int, default=30)
    p_purge.set_defaults(func=cmd_purge)

    # integrity
    p_integrity = sub.add_parser("integrity", help="List active files whose stored object is missing")
    p_integrity.set_defaults(func=cmd_integrity)

    args = parser.parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_json, settings.log_level)
    try:
        return asyncio.run(_run(args))
    except StorageError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


async def _run(args: argparse.Namespace) -> int:
    settings = get_settings()
    storage = get_storage(settings)
    if args.command == "info":
        return args.func(storage, args)
    if args.init_db:
        await init_db()
    try:
        async with get_session_factory()() as session:
            service = FileRecordService(session, storage, settings.upload_policies())
            return await args.func(service, args)
    finally:
        await get_engine().dispose()


async def cmd_upload(service: FileRecordService, args: argparse.Namespace) -> int:
    paths = [Path(f) for f in args.files]
    missing = [p for p in paths if not p.is_file()]
    if missing:
        print(f"Missing files: {missing}", file=sys.stderr)
        return 1
    requests = [UploadRequest.from_path(p, logical_path=args.path) for p in paths]
    result = await service.upload_many(requests, uploader_id=args.uploader, is_public=not args.private)
    print(json.dumps(result.model_dump(mode="json"), indent=2))
    for f in result.files:
        print(f"  {f.original_name} -> {f.id} ({f.storage_key})", file=sys.stderr)
    for err in result.errors:
        print(f"  {err.filename}: {err.reason}", file=sys.stderr)
    return 1 if result.partial else 0


def cmd_info(storage, args: argparse.Namespace) -> int:
    print(storage.diagnostic_info())
    print(get_settings().storage_summary())
    return 0


async def cmd_list(service: FileRecordService, args: argparse.Namespace) -> int:
    files = await service.list_files(
        uploader_id=args.uploader,
        status=None if args.status == "all" else FileStatus(args.status),
        category=args.category,
        keyword=args.keyword,
        offset=args.offset,
        limit=args.limit,
    )
    print(json.dumps([f.model_dump(mode="json") for f in files], indent=2))
    return 0


async def cmd_url(service: FileRecordService, args: argparse.Namespace) -> int:
    url = await service.get_url(args.file_id)
    if url is None:
        print(f"No active file with id {args.file_id}", file=sys.stderr)
        return 1
    print(url)
    return 0


async def cmd_delete(service: FileRecordService, args: argparse.Namespace) -> int:
    await service.delete(args.file_id, permanent=args.permanent)
    print(f"Deleted {args.file_id}", file=sys.stderr)
    return 0


async def cmd_restore(service: FileRecordService, args: argparse.Namespace) -> int:
    await service.restore(args.file_id)
    print(f"Restored {args.file_id}", file=sys.stderr)
    return 0


async def cmd_purge(service: FileRecordService, args: argparse.Namespace) -> int:
    count = await service.purge_deleted(args.days)
    print(json.dumps({"purged": count}))
    return 0


async def cmd_integrity(service: FileRecordService, args: argparse.Namespace) -> int:
    report = await service.check_integrity()
    print(json.dumps(report.model_dump(), indent=2))
    return 1 if report.missing else 0


if __name__ == "__main__":
    sys.exit(main())
