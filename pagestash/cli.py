import argparse
import getpass
import logging
import sys
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

from .errors import PagestashError
from .library import Library, StatusEvent
from .settings import (
    DEFAULT_API_URL,
    DEFAULT_ROOT,
    Settings,
    flatten_config,
    load_config_file,
)
from .store import SnapshotRecord
from .sync import SYNC_BUSY, SYNC_OK

# -------------------- CLI --------------------


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="pagestash",
        description="Save web pages for offline reading and sync them with "
        "a saved-articles service.",
        add_help=True,
    )
    p.add_argument("--config", type=str, help="path to config.toml|.yaml", default=None)
    p.add_argument(
        "--root", type=str, default=str(DEFAULT_ROOT), help="application data dir"
    )
    p.add_argument(
        "--api-url", type=str, default=DEFAULT_API_URL, help="articles service URL"
    )
    p.add_argument(
        "--timeout", type=float, default=15.0, help="request timeout seconds"
    )
    p.add_argument("--workers", type=int, default=16, help="concurrent asset downloads")
    p.add_argument(
        "--page-workers", type=int, default=4, help="concurrent page captures on sync"
    )
    p.add_argument(
        "--max-bytes", type=int, default=50_000_000, help="max bytes per asset"
    )
    p.add_argument(
        "--header",
        action="append",
        default=[],
        dest="extra_headers",
        help="extra request header 'Name: value'",
    )
    p.add_argument("--verbose", action="store_true", help="debug logging")

    sub = p.add_subparsers(dest="command", required=True)

    login = sub.add_parser("login", help="sign in to the articles service")
    login.add_argument("email")
    login.add_argument("--password", default=None, help="prompted when omitted")
    sub.add_parser("logout", help="forget stored credentials")

    save = sub.add_parser("save", help="capture a page and add it to the catalog")
    save.add_argument("url", help="http(s) URL")
    save.add_argument("--favorite", action="store_true", help="mark as favorite")

    sub.add_parser("sync", help="merge the remote list and cache missing pages")

    ls = sub.add_parser("list", help="list saved pages")
    which = ls.add_mutually_exclusive_group()
    which.add_argument("--archived", action="store_true", help="archived pages only")
    which.add_argument("--all", action="store_true", help="all pages")

    for name, help_text in (
        ("archive", "archive a page"),
        ("unarchive", "move a page back to the reading list"),
        ("favorite", "mark a page as favorite"),
        ("unfavorite", "clear the favorite mark"),
        ("delete", "delete a page and its snapshot"),
        ("path", "print the snapshot index.html path"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("id", help="local id or unique prefix")

    return p


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = build_arg_parser()
    preliminary, _ = parser.parse_known_args(argv)
    if preliminary.config:
        cfg = load_config_file(preliminary.config)
        if isinstance(cfg, dict):
            parser.set_defaults(**flatten_config(cfg))
    return parser.parse_args(argv)


def settings_from_args(args: argparse.Namespace) -> Settings:
    return Settings(
        root=Path(args.root).expanduser(),
        api_url=args.api_url,
        timeout=max(1.0, args.timeout),
        workers=max(1, args.workers),
        page_workers=max(1, args.page_workers),
        max_bytes=max(1024, args.max_bytes),
        extra_headers=list(args.extra_headers or []),
    )


def is_http_url(url: str) -> bool:
    try:
        p = urlparse(url)
    except ValueError:
        return False
    return p.scheme in {"http", "https"} and bool(p.netloc)


def format_record(rec: SnapshotRecord, cached: bool) -> str:
    flags = ("*" if rec.favorited else " ") + ("c" if cached else "-")
    added = rec.added_at.strftime("%Y-%m-%d")
    return f"{rec.local_id[:8]}  {flags}  {added}  {rec.title}  <{rec.source_url}>"


def print_status(event: StatusEvent) -> None:
    print(event.message)


def run_command(lib: Library, args: argparse.Namespace) -> int:
    cmd = args.command
    if cmd == "login":
        password = args.password or getpass.getpass("Password: ")
        lib.login(args.email, password)
        print("Signed in.")
    elif cmd == "logout":
        lib.logout()
        print("Signed out.")
    elif cmd == "save":
        if not is_http_url(args.url):
            print("Invalid URL. Use http:// or https://")
            return 1
        rec = lib.save(args.url, favorited=args.favorite)
        print(f"Saved to: {lib.store.index_path(rec)}")
    elif cmd == "sync":
        report = lib.sync()
        print(report.message or f"Merged {report.fetched} remote items.")
        if report.failed:
            print(f"Failed to cache {len(report.failed)} page(s):")
            for url in report.failed:
                print(f"  {url}")
        return 0 if report.status in (SYNC_OK, SYNC_BUSY) else 1
    elif cmd == "list":
        if args.all:
            records = lib.pages()
        elif args.archived:
            records = lib.archived()
        else:
            records = lib.active()
        for rec in records:
            print(format_record(rec, lib.store.has_cache(rec)))
    elif cmd in ("archive", "unarchive"):
        lib.set_archived(args.id, cmd == "archive")
    elif cmd in ("favorite", "unfavorite"):
        lib.set_favorited(args.id, cmd == "favorite")
    elif cmd == "delete":
        lib.delete(args.id)
    elif cmd == "path":
        rec = lib.get(args.id)
        if not lib.store.has_cache(rec):
            print("Not cached yet. Run 'pagestash sync'.")
            return 1
        print(lib.store.index_path(rec))
    if lib.auth_expired:
        print("Session expired. Run 'pagestash login' to sign in again.")
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )
    settings = settings_from_args(args)
    lib = Library.open(settings, on_status=print_status)
    try:
        code = run_command(lib, args)
    except KeyError as e:
        print(e.args[0] if e.args else e)
        code = 1
    except PagestashError as e:
        print(f"Error: {e}")
        code = 1
    except OSError as e:
        print(f"I/O error: {e}")
        code = 1
    finally:
        lib.close()
    sys.exit(code)


if __name__ == "__main__":
    main()
