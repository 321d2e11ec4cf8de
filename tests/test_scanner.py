from __future__ import annotations

from pathlib import PurePosixPath
from urllib.parse import urlsplit

from pagestash.scanner import (
    ASSET_EXTS,
    effective_base_url,
    extract_asset_urls,
    extract_title,
    resolve_reference,
)

BASE = "https://example.com/dir/page.html"


class TestExtractAssetUrls:
    def test_attributes_and_css_urls(self):
        html = """
        <html><head>
          <link rel="stylesheet" href="style.css">
          <script src="/app.js"></script>
          <style>body { background: url( "img/bg.JPG" ) }</style>
        </head><body>
          <img src='https://cdn.example.org/a.PNG'>
          <div style="background-image:url(tile.webp)"></div>
          <a href="/about.html">About</a>
        </body></html>
        """
        assert extract_asset_urls(html, BASE) == {
            "https://example.com/dir/style.css",
            "https://example.com/app.js",
            "https://example.com/dir/img/bg.JPG",
            "https://cdn.example.org/a.PNG",
            "https://example.com/dir/tile.webp",
        }

    def test_duplicates_collapse(self):
        html = '<img src="/a.png"><img src="https://example.com/a.png"><p style="x:url(/a.png)">'
        assert extract_asset_urls(html, BASE) == {"https://example.com/a.png"}

    def test_skips_non_fetchable_schemes(self):
        html = """
        <img src="data:image/png;base64,iVBORw0KGgo=.png">
        <a href="mailto:someone@example.com.png">mail</a>
        <a href="TEL:+15551234.js">call</a>
        <a href="javascript:void(0).js">js</a>
        <script src="ftp://files.example.com/lib.js"></script>
        <div style="background:url(data:image/svg+xml;utf8,<svg/>.svg)"></div>
        """
        assert extract_asset_urls(html, BASE) == set()

    def test_never_returns_disallowed_urls(self):
        refs = [
            "a.js",
            "b.exe",
            "c.html",
            "/d/",
            "e.css?x=1",
            "f.woff2#frag",
            "data:text/css,x.css",
            "mailto:x@y.z",
            "tel:123",
            "//cdn.example.net/g.mp4",
            "h.m4a",
            "i.pdf",
            "ws://example.com/j.js",
        ]
        html = "".join(f'<img src="{r}"><i style="u:url({r})">' for r in refs)
        found = extract_asset_urls(html, BASE)
        assert found
        for u in found:
            p = urlsplit(u)
            assert p.scheme in {"http", "https"}
            assert PurePosixPath(p.path).suffix.lower().lstrip(".") in ASSET_EXTS
            assert not u.startswith(("data:", "mailto:", "tel:"))

    def test_protocol_relative_and_fragment(self):
        html = '<script src="//cdn.example.net/lib.js"></script><img src="icons.svg#star">'
        assert extract_asset_urls(html, BASE) == {
            "https://cdn.example.net/lib.js",
            "https://example.com/dir/icons.svg",
        }

    def test_base_href_changes_resolution(self):
        html = '<head><base href="https://static.example.org/v2/"></head><img src="logo.svg">'
        assert extract_asset_urls(html, BASE) == {
            "https://static.example.org/v2/logo.svg"
        }


def test_effective_base_url_without_base_tag():
    assert effective_base_url("<html></html>", BASE) == BASE


def test_resolve_reference_strips_whitespace():
    assert resolve_reference("  /x.css ", BASE) == "https://example.com/x.css"
    assert resolve_reference("   ", BASE) is None


class TestExtractTitle:
    def test_multiline_and_entities(self):
        html = "<HTML><TITLE lang='en'>\n   Hello &amp;\n  World </TITLE></HTML>"
        assert extract_title(html) == "Hello & World"

    def test_first_title_wins(self):
        assert extract_title("<title>One</title><title>Two</title>") == "One"

    def test_missing_or_blank(self):
        assert extract_title("<html><body>no title</body></html>") is None
        assert extract_title("<title>   </title>") is None


class TestMalformedReferences:
    def test_unbalanced_bracket_does_not_break_the_scan(self):
        html = '<a href="http://[oops/">x</a><img src="https://example.com/a.png">'
        assert extract_asset_urls(html, "https://example.com/") == {
            "https://example.com/a.png"
        }

    def test_resolve_returns_none(self):
        assert resolve_reference("http://[oops/", BASE) is None
        assert resolve_reference("https://example.com:99999/x.png", BASE) is None

    def test_malformed_base_href_falls_back(self):
        html = '<base href="http://[broken/"><img src="a.png">'
        assert effective_base_url(html, BASE) == BASE
        assert extract_asset_urls(html, BASE) == {"https://example.com/dir/a.png"}
