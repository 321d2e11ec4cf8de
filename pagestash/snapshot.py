import logging
import os
import re
import shutil
import tempfile
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional, Set, Tuple
from urllib.parse import urlsplit

import requests

from .errors import BadResponse, InvalidContent, UnsupportedScheme
from .paths import INDEX_FILE, href_for, relative_asset_path, snapshot_dir_name
from .scanner import (
    ATTR_URL_RE,
    BASE_TAG_RE,
    CSS_URL_RE,
    FETCHABLE_SCHEMES,
    effective_base_url,
    extract_asset_urls,
    extract_title,
    resolve_reference,
)
from .settings import Settings
from .store import atomic_write_bytes, utc_now

PAGE_ENCODINGS = ("utf-8", "iso-8859-1")
CHUNK_SIZE = 64 * 1024


@dataclass
class CaptureResult:
    cache_dir: str
    asset_count: int
    title: str
    index_path: Path


# -------------------- Page fetch --------------------


def fetch_page(session: requests.Session, url: str, timeout: float) -> bytes:
    try:
        r = session.get(url, timeout=timeout)
    except requests.RequestException as e:
        raise BadResponse(url, reason=str(e)) from e
    if r.status_code >= 400:
        raise BadResponse(url, r.status_code)
    return r.content


def decode_body(body: bytes, url: str) -> Tuple[str, str]:
    for enc in PAGE_ENCODINGS:
        try:
            return body.decode(enc), enc
        except UnicodeDecodeError:
            continue
    raise InvalidContent(url)


# -------------------- Downloaders --------------------


def download_one(
    session: requests.Session,
    asset_url: str,
    snapshot_root: Path,
    settings: Settings,
) -> Optional[str]:
    try:
        resp = session.get(asset_url, timeout=settings.timeout, stream=True)
    except requests.RequestException as e:
        logging.warning("error downloading %s: %s", asset_url, e)
        return None
    tmp_path: Optional[Path] = None
    try:
        if resp.status_code >= 400:
            logging.warning("failed %s -> HTTP %s", asset_url, resp.status_code)
            return None
        cl = resp.headers.get("Content-Length")
        if cl:
            try:
                if int(cl) > settings.max_bytes:
                    logging.warning("skip large file %s (%s bytes)", asset_url, cl)
                    return None
            except ValueError:
                pass
        rel = relative_asset_path(asset_url)
        local_path = snapshot_root.joinpath(*rel.split("/"))
        local_path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp = tempfile.mkstemp(
            prefix=local_path.name + ".", suffix=".tmp", dir=local_path.parent
        )
        tmp_path = Path(tmp)
        written = 0
        with os.fdopen(fd, "wb") as f:
            for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                if not chunk:
                    continue
                written += len(chunk)
                if written > settings.max_bytes:
                    logging.warning(
                        "skip large file %s (> %d bytes)", asset_url, written
                    )
                    return None
                f.write(chunk)
        os.replace(tmp_path, local_path)
        tmp_path = None
        logging.debug("downloaded asset: %s -> %s", asset_url, rel)
        return rel
    except (requests.RequestException, OSError) as e:
        logging.warning("error downloading %s: %s", asset_url, e)
        return None
    finally:
        if tmp_path is not None:
            tmp_path.unlink(missing_ok=True)
        resp.close()


def download_all(
    session: requests.Session,
    urls: Iterable[str],
    snapshot_root: Path,
    settings: Settings,
) -> Dict[str, str]:
    url_set: Set[str] = set(urls)
    result: Dict[str, str] = {}
    if not url_set:
        return result
    with ThreadPoolExecutor(max_workers=min(settings.workers, len(url_set))) as pool:
        future_map = {
            pool.submit(download_one, session, u, snapshot_root, settings): u
            for u in url_set
        }
        for fut in as_completed(future_map):
            u = future_map[fut]
            rel = fut.result()
            if rel is not None:
                result[u] = rel
    return result


# -------------------- Rewriters --------------------


def apply_replacements(html: str, replacements: Iterable[Tuple[str, str]]) -> str:
    """Replace each original string with its local path in one pass.

    Alternatives are tried longest-first at every position, so a URL that
    is a prefix of another never matches inside the longer one.
    """
    table = dict(replacements)
    if not table:
        return html
    pattern = re.compile(
        "|".join(re.escape(o) for o in sorted(table, key=len, reverse=True))
    )
    return pattern.sub(lambda m: table[m.group(0)], html)


def _sub_group1(
    pattern: re.Pattern, text: str, lookup: Callable[[str], Optional[str]]
) -> str:
    def repl(m: re.Match) -> str:
        new = lookup(m.group(1))
        if new is None:
            return m.group(0)
        start = m.start(0)
        whole = m.group(0)
        return whole[: m.start(1) - start] + new + whole[m.end(1) - start :]

    return pattern.sub(repl, text)


def rewrite_references(html: str, base_url: str, mapping: Dict[str, str]) -> str:
    def lookup(raw: str) -> Optional[str]:
        absu = resolve_reference(raw, base_url)
        if absu is None or absu not in mapping:
            return None
        frag = urlsplit(raw.strip()).fragment
        href = href_for(mapping[absu])
        return f"{href}#{frag}" if frag else href

    for pattern in (ATTR_URL_RE, CSS_URL_RE):
        html = _sub_group1(pattern, html, lookup)
    return html


def rewrite_html(html: str, page_url: str, mapping: Dict[str, str]) -> str:
    if not mapping:
        return html
    base = effective_base_url(html, page_url)
    html = rewrite_references(html, base, mapping)
    html = apply_replacements(html, ((u, href_for(rel)) for u, rel in mapping.items()))
    # local paths must resolve against the snapshot directory
    return BASE_TAG_RE.sub("", html)


# -------------------- Engine --------------------


class SnapshotEngine:
    def __init__(
        self,
        root: Path,
        session: requests.Session,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.root = Path(root)
        self.session = session
        self.settings = settings
        self.clock = clock

    def capture(self, url: str) -> CaptureResult:
        try:
            p = urlsplit(url)
        except ValueError as e:
            raise UnsupportedScheme(url) from e
        if p.scheme.lower() not in FETCHABLE_SCHEMES or not p.netloc:
            raise UnsupportedScheme(url)
        dir_name = snapshot_dir_name(url, self.clock())
        site_dir = self.root / dir_name
        shutil.rmtree(site_dir, ignore_errors=True)
        site_dir.mkdir(parents=True)
        try:
            return self._capture_into(url, dir_name, site_dir)
        except BaseException:
            shutil.rmtree(site_dir, ignore_errors=True)
            raise

    def _capture_into(self, url: str, dir_name: str, site_dir: Path) -> CaptureResult:
        logging.info("GET %s", url)
        body = fetch_page(self.session, url, self.settings.timeout)
        html, encoding = decode_body(body, url)
        title = extract_title(html) or urlsplit(url).hostname or "Untitled"

        asset_urls = extract_asset_urls(html, url)
        logging.info("%s: %d assets discovered", url, len(asset_urls))
        downloaded = download_all(self.session, asset_urls, site_dir, self.settings)

        html = rewrite_html(html, url, downloaded)
        index_path = site_dir / INDEX_FILE
        data = html.encode(encoding, errors="xmlcharrefreplace")
        atomic_write_bytes(index_path, data)
        logging.info(
            "saved %s -> %s (%d/%d assets)",
            url,
            dir_name,
            len(downloaded),
            len(asset_urls),
        )
        return CaptureResult(
            cache_dir=dir_name,
            asset_count=len(downloaded),
            title=title,
            index_path=index_path,
        )
