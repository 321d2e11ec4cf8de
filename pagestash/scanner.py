import logging
import re
from pathlib import PurePosixPath
from typing import Optional, Set
from urllib.parse import urldefrag, urljoin, urlsplit

from bs4 import BeautifulSoup

# src= / href= attribute values, and the argument of CSS url(...)
ATTR_URL_RE = re.compile(r"""(?:src|href)\s*=\s*["']([^"']+)["']""", re.IGNORECASE)
CSS_URL_RE = re.compile(r"""url\(\s*['"]?([^'")]+)['"]?\s*\)""", re.IGNORECASE)
TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)
BASE_TAG_RE = re.compile(r"<base\b[^>]*>", re.IGNORECASE)
WS_RE = re.compile(r"\s+")

ASSET_EXTS = {
    "js",
    "css",
    "png",
    "jpg",
    "jpeg",
    "gif",
    "webp",
    "svg",
    "ico",
    "woff",
    "woff2",
    "ttf",
    "otf",
    "mp4",
    "webm",
    "mp3",
    "m4a",
}
SKIP_PREFIXES = ("data:", "mailto:", "tel:")
FETCHABLE_SCHEMES = {"http", "https"}


def bs4_parse(html: str) -> BeautifulSoup:
    try:
        return BeautifulSoup(html, "lxml")
    except Exception:
        return BeautifulSoup(html, "html.parser")


def effective_base_url(html: str, fallback: str) -> str:
    m = BASE_TAG_RE.search(html)
    if not m:
        return fallback
    tag = bs4_parse(m.group(0)).find("base", href=True)
    if tag is None or not tag.get("href"):
        return fallback
    try:
        return urljoin(fallback, tag["href"].strip())
    except ValueError:
        logging.debug("ignoring malformed base href: %s", tag["href"])
        return fallback


def resolve_reference(raw: str, base_url: str) -> Optional[str]:
    ref = raw.strip()
    if not ref or ref.lower().startswith(SKIP_PREFIXES):
        return None
    try:
        absolute, _ = urldefrag(urljoin(base_url, ref))
        urlsplit(absolute).port
    except ValueError:
        # unbalanced IPv6 brackets and similar
        logging.debug("skipping malformed reference: %s", ref)
        return None
    return absolute


def is_asset_url(url: str) -> bool:
    p = urlsplit(url)
    if p.scheme.lower() not in FETCHABLE_SCHEMES or not p.netloc:
        return False
    ext = PurePosixPath(p.path).suffix.lower().lstrip(".")
    return ext in ASSET_EXTS


def extract_asset_urls(html: str, base_url: str) -> Set[str]:
    base = effective_base_url(html, base_url)
    urls: Set[str] = set()
    for pattern in (ATTR_URL_RE, CSS_URL_RE):
        for m in pattern.finditer(html):
            u = resolve_reference(m.group(1), base)
            if u is not None and is_asset_url(u):
                urls.add(u)
    return urls


def extract_title(html: str) -> Optional[str]:
    m = TITLE_RE.search(html)
    if not m:
        return None
    text = bs4_parse(f"<p>{m.group(1)}</p>").get_text()
    title = WS_RE.sub(" ", text).strip()
    return title or None
