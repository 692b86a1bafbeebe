"""Command-line interface for the gallery service."""

from __future__ import annotations

import argparse
import asyncio
import mimetypes
from pathlib import Path
from typing import List, Optional, Sequence

from colorama import Fore, Style, init as colorama_init
from tqdm import tqdm

from . import users
from .blob_store import BlobStore
from .config import Config
from .database import init_database
from .models import User
from .utils import GalleryError, atomic_write_bytes, format_bytes, setup_logging


def _print_user(user: User) -> None:
    print(f"{Fore.CYAN}#{user.id}{Style.RESET_ALL} {user.name}")
    print(f"  Created: {user.created_at}  Updated: {user.updated_at}")
    if not user.pictures:
        print("  No pictures.")
        return
    for picture in user.pictures:
        print(f"  - {picture.filename} ({format_bytes(picture.byte_size)})")


def _read_uploads(paths: Sequence[str]) -> List[users.Upload]:
    uploads = []
    for raw in paths:
        path = Path(raw).expanduser()
        if not path.is_file():
            raise GalleryError(f"Picture not found: {path}")
        uploads.append(
            users.Upload(
                filename=path.name,
                data=path.read_bytes(),
                content_type=mimetypes.guess_type(path.name)[0],
            )
        )
    return uploads


def cmd_list(config: Config, args: argparse.Namespace) -> None:
    records = users.list_users(config.db_path)
    if not records:
        print("No users.")
        return
    for user in records:
        print(
            f"{Fore.CYAN}#{user.id:<5}{Style.RESET_ALL} {user.name:<30} "
            f"{len(user.pictures)} picture(s)"
        )


def cmd_show(config: Config, args: argparse.Namespace) -> None:
    _print_user(users.find_user(args.user_id, config.db_path))


def cmd_create(config: Config, args: argparse.Namespace) -> None:
    uploads = _read_uploads(args.pictures)
    user = asyncio.run(
        users.create_user(
            {"name": args.name},
            uploads,
            BlobStore(config.storage_dir),
            config.db_path,
        )
    )
    print(f"{Fore.GREEN}✓ Created user #{user.id}.{Style.RESET_ALL}")


def cmd_delete(config: Config, args: argparse.Namespace) -> None:
    users.destroy_user(args.user_id, BlobStore(config.storage_dir), config.db_path)
    print(f"{Fore.GREEN}✓ Deleted user #{args.user_id}.{Style.RESET_ALL}")


async def _export(config: Config, user_id: int, output: Path) -> int:
    user = users.find_user(user_id, config.db_path)
    progress = tqdm(total=len(user.pictures), desc="Downloading", unit="file")

    def _progress(done: int, total: int) -> None:
        progress.n = done
        progress.total = total
        progress.refresh()

    try:
        data = await users.export_pictures(
            user, BlobStore(config.storage_dir), config, progress_callback=_progress
        )
    finally:
        progress.close()
    await asyncio.to_thread(atomic_write_bytes, output, data)
    return len(data)


def cmd_export(config: Config, args: argparse.Namespace) -> None:
    output = Path(args.output).expanduser().resolve()
    size = asyncio.run(_export(config, args.user_id, output))
    print(
        f"{Fore.GREEN}✓ Wrote {output} ({format_bytes(size)}).{Style.RESET_ALL}")


def cmd_serve(config: Config, args: argparse.Namespace) -> None:
    from .web_app import run

    run(config, host=args.host, port=args.port)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gallery", description="User gallery service")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the web server")
    serve.add_argument("--host", default="0.0.0.0", help="Host to bind")
    serve.add_argument("--port", type=int, default=8080, help="Port to bind")
    serve.set_defaults(func=cmd_serve)

    list_cmd = subparsers.add_parser("list", help="List users")
    list_cmd.set_defaults(func=cmd_list)

    show = subparsers.add_parser("show", help="Show a user")
    show.add_argument("user_id", type=int)
    show.set_defaults(func=cmd_show)

    create = subparsers.add_parser("create", help="Create a user")
    create.add_argument("name")
    create.add_argument("pictures", nargs="*", help="Picture files to attach")
    create.set_defaults(func=cmd_create)

    delete = subparsers.add_parser("delete", help="Delete a user")
    delete.add_argument("user_id", type=int)
    delete.set_defaults(func=cmd_delete)

    export = subparsers.add_parser(
        "export", help="Export a user's pictures as a zip")
    export.add_argument("user_id", type=int)
    export.add_argument("output", help="Destination .zip path")
    export.set_defaults(func=cmd_export)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    colorama_init()
    args = build_parser().parse_args(argv)
    try:
        config = Config.get_instance()
        setup_logging(config.log_level)
        init_database(config.db_path)
        args.func(config, args)
    except GalleryError as exc:
        print(f"{Fore.RED}Error:{Style.RESET_ALL} {exc}")
        return 1
    return 0
