import hashlib
import posixpath
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from urllib.parse import quote, unquote, urlsplit

UNSAFE_HOST_CHARS_RE = re.compile(r"[^A-Za-z0-9.-]")
INVALID_FILENAME_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')

ASSETS_DIR = "assets"
INDEX_FILE = "index.html"
DIR_INDEX_NAME = "index.txt"


def sha1_hex(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def short_h(text: str) -> str:
    return sha1_hex(text)[:8]


def sanitize_host(host: str) -> str:
    return UNSAFE_HOST_CHARS_RE.sub("_", host)


def sanitize_filename(name: str) -> str:
    name = INVALID_FILENAME_CHARS_RE.sub("_", name)
    name = name or "file"
    if name.startswith("."):
        name = "_" + name[1:]
    return name[:200]


# -------------------- Snapshot layout --------------------


def snapshot_timestamp(when: Optional[datetime] = None) -> str:
    when = when or datetime.now(timezone.utc)
    return when.astimezone(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")


def snapshot_dir_name(url: str, when: Optional[datetime] = None) -> str:
    host = urlsplit(url).hostname or "site"
    return f"{sanitize_host(host)}__{sha1_hex(url)}__{snapshot_timestamp(when)}"


def relative_asset_path(asset_url: str) -> str:
    """Map an asset URL to ``assets/<host><path>`` inside a snapshot.

    A trailing slash maps to ``index.txt``. A non-empty query string is
    hashed into the file name just before the extension, so
    ``foo.js?v=2`` becomes ``foo_<hash8>.js``.
    """
    p = urlsplit(asset_url)
    host = sanitize_host(p.hostname or "") or "local"
    if p.port:
        host = f"{host}_{p.port}"
    path = p.path or "/"
    segs = [sanitize_filename(unquote(s)) for s in path.split("/") if s]
    if path.endswith("/") or not segs:
        segs.append(DIR_INDEX_NAME)
    if p.query:
        stem, ext = posixpath.splitext(segs[-1])
        segs[-1] = f"{stem}_{short_h(p.query)}{ext}"
    return "/".join([ASSETS_DIR, host, *segs])


def local_asset_path(asset_url: str, snapshot_root: Path) -> Path:
    return snapshot_root.joinpath(*relative_asset_path(asset_url).split("/"))


def href_for(relative_path: str) -> str:
    return quote(relative_path, safe="/")
