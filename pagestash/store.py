import json
import logging
import os
import shutil
import tempfile
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import urlsplit

from .paths import INDEX_FILE

CATALOG_FILE = "_index.json"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_ts(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_ts(value: str) -> datetime:
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if not dt.tzinfo:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def new_local_id() -> str:
    return uuid.uuid4().hex


# -------------------- Records --------------------


@dataclass
class SnapshotRecord:
    source_url: str
    title: str
    added_at: datetime = field(default_factory=utc_now)
    local_id: str = field(default_factory=new_local_id)
    remote_id: Optional[int] = None
    cache_dir: Optional[str] = None
    archived: bool = False
    favorited: bool = False

    @property
    def host(self) -> str:
        try:
            return urlsplit(self.source_url).hostname or ""
        except ValueError:
            return ""

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["added_at"] = format_ts(self.added_at)
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SnapshotRecord":
        remote_id = d.get("remote_id")
        return cls(
            local_id=str(d["local_id"]),
            remote_id=int(remote_id) if remote_id is not None else None,
            title=str(d.get("title") or ""),
            source_url=str(d["source_url"]),
            cache_dir=d.get("cache_dir") or None,
            added_at=parse_ts(d["added_at"]),
            archived=bool(d.get("archived", False)),
            favorited=bool(d.get("favorited", False)),
        )


class Catalog:
    def __init__(self, records: Optional[List[SnapshotRecord]] = None):
        self.records: List[SnapshotRecord] = list(records or [])

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[SnapshotRecord]:
        return iter(self.records)

    def sort(self) -> None:
        # stable: records with equal timestamps keep their relative order
        self.records.sort(key=lambda r: r.added_at, reverse=True)

    def sorted(self) -> List[SnapshotRecord]:
        return sorted(self.records, key=lambda r: r.added_at, reverse=True)

    def active(self) -> List[SnapshotRecord]:
        return [r for r in self.sorted() if not r.archived]

    def archived(self) -> List[SnapshotRecord]:
        return [r for r in self.sorted() if r.archived]

    def add(self, record: SnapshotRecord) -> None:
        if self.by_local_id(record.local_id) is not None:
            raise ValueError(f"duplicate local id: {record.local_id}")
        if (
            record.remote_id is not None
            and self.by_remote_id(record.remote_id) is not None
        ):
            raise ValueError(f"duplicate remote id: {record.remote_id}")
        self.records.append(record)

    def remove(self, local_id: str) -> Optional[SnapshotRecord]:
        rec = self.by_local_id(local_id)
        if rec is not None:
            self.records.remove(rec)
        return rec

    def by_local_id(self, local_id: str) -> Optional[SnapshotRecord]:
        for r in self.records:
            if r.local_id == local_id:
                return r
        return None

    def by_remote_id(self, remote_id: int) -> Optional[SnapshotRecord]:
        for r in self.records:
            if r.remote_id == remote_id:
                return r
        return None

    def by_url(
        self, url: str, *, unmatched_only: bool = False
    ) -> Optional[SnapshotRecord]:
        for r in self.records:
            if r.source_url != url:
                continue
            if unmatched_only and r.remote_id is not None:
                continue
            return r
        return None

    def resolve_id(self, prefix: str) -> Optional[SnapshotRecord]:
        exact = self.by_local_id(prefix)
        if exact is not None:
            return exact
        hits = [r for r in self.records if r.local_id.startswith(prefix)]
        return hits[0] if len(hits) == 1 else None

    def to_dict(self) -> Dict[str, Any]:
        return {"pages": [r.to_dict() for r in self.records]}


# -------------------- Durable storage --------------------


def atomic_write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=path.name + ".", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def atomic_write_json(path: Path, data: dict) -> None:
    atomic_write_bytes(path, json.dumps(data, indent=2).encode("utf-8"))


class SnapshotStore:
    def __init__(self, root: Path):
        self.root = Path(root)

    @property
    def catalog_path(self) -> Path:
        return self.root / CATALOG_FILE

    def ensure_root(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def load(self) -> Catalog:
        self.ensure_root()
        p = self.catalog_path
        if not p.exists():
            return Catalog()
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
            records = [SnapshotRecord.from_dict(d) for d in data["pages"]]
        except Exception as e:
            logging.warning("failed to load catalog %s: %s", p, e)
            return Catalog()
        catalog = Catalog(records)
        catalog.sort()
        return catalog

    def save(self, catalog: Catalog) -> None:
        catalog.sort()
        atomic_write_json(self.catalog_path, catalog.to_dict())
        logging.debug("catalog saved: %s (%d pages)", self.catalog_path, len(catalog))

    def snapshot_dir(self, record: SnapshotRecord) -> Optional[Path]:
        if not record.cache_dir:
            return None
        return self.root / record.cache_dir

    def index_path(self, record: SnapshotRecord) -> Optional[Path]:
        d = self.snapshot_dir(record)
        return None if d is None else d / INDEX_FILE

    def has_cache(self, record: SnapshotRecord) -> bool:
        p = self.index_path(record)
        return p is not None and p.is_file()

    def remove_cache(self, dir_name: Optional[str]) -> None:
        if not dir_name:
            return
        target = self.root / dir_name
        if target.resolve().parent != self.root.resolve():
            logging.warning("refusing to remove %s outside %s", target, self.root)
            return
        try:
            shutil.rmtree(target)
        except FileNotFoundError:
            pass
        except OSError as e:
            logging.warning("failed to remove cache %s: %s", target, e)
