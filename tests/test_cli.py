from __future__ import annotations

import pytest

from pagestash.cli import main, parse_args, settings_from_args
from pagestash.settings import flatten_config, load_config_file
from pagestash.store import Catalog, SnapshotRecord, SnapshotStore

TOML = """
[general]
root = "/srv/pagestash"

[capture]
workers = 3
max-bytes = 2048

[sync]
page_workers = 2
"""

YAML = """
api:
  api-url: https://read.example.com/api/v1
  timeout: 7.5
"""


class TestConfig:
    def test_toml_groups_are_flattened(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text(TOML, encoding="utf-8")
        flat = flatten_config(load_config_file(str(path)))
        assert flat == {
            "root": "/srv/pagestash",
            "workers": 3,
            "max_bytes": 2048,
            "page_workers": 2,
        }

    def test_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(YAML, encoding="utf-8")
        flat = flatten_config(load_config_file(str(path)))
        assert flat == {"api_url": "https://read.example.com/api/v1", "timeout": 7.5}

    def test_yaml_must_be_a_mapping(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(RuntimeError):
            load_config_file(str(path))

    def test_unknown_format(self, tmp_path):
        path = tmp_path / "config.ini"
        path.write_text("[x]\n", encoding="utf-8")
        with pytest.raises(RuntimeError):
            load_config_file(str(path))

    def test_flags_override_config_file(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text(TOML, encoding="utf-8")
        args = parse_args(["--config", str(path), "--workers", "9", "list"])
        assert args.workers == 9
        assert args.max_bytes == 2048
        assert args.root == "/srv/pagestash"
        assert args.command == "list"


def test_settings_are_clamped(tmp_path):
    args = parse_args(
        [
            "--root",
            str(tmp_path),
            "--workers",
            "0",
            "--page-workers",
            "-2",
            "--timeout",
            "0",
            "--max-bytes",
            "10",
            "--header",
            "X-Test: 1",
            "sync",
        ]
    )
    settings = settings_from_args(args)
    assert settings.root == tmp_path
    assert settings.workers == 1
    assert settings.page_workers == 1
    assert settings.timeout == 1.0
    assert settings.max_bytes == 1024
    assert settings.extra_headers == ["X-Test: 1"]
    assert settings.catalog_root == tmp_path / "sites"


class TestMain:
    @pytest.fixture
    def root(self, tmp_path):
        root = tmp_path / "data"
        store = SnapshotStore(root / "sites")
        (store.root / "snap").mkdir(parents=True)
        (store.root / "snap" / "index.html").write_text("<html></html>")
        store.save(
            Catalog(
                [
                    SnapshotRecord(
                        source_url="https://example.com/a",
                        title="Cached page",
                        local_id="aaaa1111",
                        cache_dir="snap",
                    ),
                    SnapshotRecord(
                        source_url="https://example.com/b",
                        title="Old page",
                        local_id="bbbb2222",
                        archived=True,
                    ),
                ]
            )
        )
        return root

    def run(self, root, *argv):
        with pytest.raises(SystemExit) as exc:
            main(["--root", str(root), *argv])
        return exc.value.code

    def test_list_shows_active_pages(self, root, capsys):
        assert self.run(root, "list") == 0
        out = capsys.readouterr().out
        assert "Cached page" in out
        assert "Old page" not in out

    def test_list_archived(self, root, capsys):
        assert self.run(root, "list", "--archived") == 0
        out = capsys.readouterr().out
        assert "Old page" in out
        assert "Cached page" not in out

    def test_path_prints_index(self, root, capsys):
        assert self.run(root, "path", "aaaa") == 0
        out = capsys.readouterr().out.strip()
        assert out == str(root / "sites" / "snap" / "index.html")

    def test_path_of_uncached_page_fails(self, root, capsys):
        assert self.run(root, "path", "bbbb") == 1
        assert "Not cached yet" in capsys.readouterr().out

    def test_unknown_id_fails(self, root, capsys):
        assert self.run(root, "delete", "zzzz") == 1
        assert "zzzz" in capsys.readouterr().out

    def test_save_rejects_non_http_url(self, root, capsys):
        assert self.run(root, "save", "ftp://example.com/file") == 1
        assert "Invalid URL" in capsys.readouterr().out

    def test_favorite_is_persisted(self, root):
        assert self.run(root, "favorite", "aaaa") == 0
        rec = SnapshotStore(root / "sites").load().by_local_id("aaaa1111")
        assert rec.favorited is True

    def test_sync_signed_out_fails_cleanly(self, root, capsys):
        assert self.run(root, "sync") == 1
        assert "Sign in" in capsys.readouterr().out

    def test_save_rejects_unparseable_url(self, root, capsys):
        assert self.run(root, "save", "http://[bad") == 1
        assert "Invalid URL" in capsys.readouterr().out
