import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlsplit

from .api import ArticlesClient, RemoteArticle
from .auth import AuthenticatedCaller
from .errors import ApiError, MustReauthenticate, PagestashError
from .snapshot import CaptureResult, SnapshotEngine
from .store import Catalog, SnapshotRecord, SnapshotStore, utc_now

SYNC_OK = "ok"
SYNC_BUSY = "busy"
SYNC_SESSION_EXPIRED = "session_expired"
SYNC_FAILED = "failed"


@dataclass
class SyncReport:
    status: str
    fetched: int = 0
    added: int = 0
    updated: int = 0
    cached: int = 0
    failed: List[str] = field(default_factory=list)
    message: str = ""
    error: Optional[Exception] = None


# -------------------- Merge --------------------


def match_record(catalog: Catalog, item: RemoteArticle) -> Optional[SnapshotRecord]:
    rec = catalog.by_remote_id(item.id)
    if rec is not None:
        return rec
    # a record already linked to another remote item is never re-linked by URL
    return catalog.by_url(item.url, unmatched_only=True)


def merge_remote_items(
    catalog: Catalog,
    items: Iterable[RemoteArticle],
    clock: Callable[[], datetime] = utc_now,
) -> Tuple[int, int]:
    added = updated = 0
    for item in items:
        try:
            urlsplit(item.url).port
        except ValueError:
            logging.warning(
                "skipping remote item %s: malformed url %r", item.id, item.url
            )
            continue
        rec = match_record(catalog, item)
        if rec is not None:
            rec.remote_id = item.id
            rec.archived = item.archived
            rec.favorited = item.favorited
            if item.date_added is not None:
                rec.added_at = item.date_added
            updated += 1
            continue
        rec = SnapshotRecord(
            source_url=item.url,
            title="",
            added_at=item.date_added or clock(),
            remote_id=item.id,
            archived=item.archived,
            favorited=item.favorited,
        )
        rec.title = rec.host or "Untitled"
        catalog.add(rec)
        added += 1
    catalog.sort()
    return added, updated


# -------------------- Engine --------------------


class ReconciliationEngine:
    def __init__(
        self,
        store: SnapshotStore,
        catalog: Catalog,
        caller: AuthenticatedCaller,
        client: ArticlesClient,
        engine: SnapshotEngine,
        page_workers: int = 4,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.catalog = catalog
        self.caller = caller
        self.client = client
        self.engine = engine
        self.page_workers = max(1, page_workers)
        self.clock = clock
        self._lock = Lock()

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    def sync(self) -> SyncReport:
        if not self._lock.acquire(blocking=False):
            logging.info("sync already in progress, skipping")
            return SyncReport(status=SYNC_BUSY, message="Sync already in progress.")
        try:
            return self._sync()
        finally:
            self._lock.release()

    def _sync(self) -> SyncReport:
        logging.info("fetching remote list")
        try:
            items = self.caller.call(self.client.list_articles)
        except MustReauthenticate as e:
            return SyncReport(status=SYNC_SESSION_EXPIRED, message=str(e), error=e)
        except ApiError as e:
            logging.error("sync failed: %s", e)
            return SyncReport(status=SYNC_FAILED, message=f"Sync failed: {e}", error=e)

        added, updated = merge_remote_items(self.catalog, items, self.clock)
        self.store.save(self.catalog)
        logging.info("merged %d remote items (%d new)", len(items), added)
        report = SyncReport(
            status=SYNC_OK, fetched=len(items), added=added, updated=updated
        )

        to_cache = [
            r for r in self.catalog if not r.archived and not self.store.has_cache(r)
        ]
        if not to_cache:
            report.message = "Everything is already cached."
            return report

        self.store.ensure_root()
        logging.info("caching %d pages for offline", len(to_cache))
        results = self._capture_all(to_cache, report)
        for rec in to_cache:
            res = results.get(rec.local_id)
            if res is None:
                continue
            if rec.cache_dir and rec.cache_dir != res.cache_dir:
                self.store.remove_cache(rec.cache_dir)
            rec.cache_dir = res.cache_dir
            if not rec.title or rec.title == rec.host:
                rec.title = res.title
        report.cached = len(results)
        self.store.save(self.catalog)
        report.message = f"Cached {report.cached} of {len(to_cache)} pages."
        return report

    def _capture_all(
        self, records: List[SnapshotRecord], report: SyncReport
    ) -> Dict[str, CaptureResult]:
        results: Dict[str, CaptureResult] = {}
        workers = min(self.page_workers, len(records))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            future_map = {
                pool.submit(self.engine.capture, r.source_url): r for r in records
            }
            for fut in as_completed(future_map):
                rec = future_map[fut]
                try:
                    results[rec.local_id] = fut.result()
                except (PagestashError, OSError, ValueError) as e:
                    logging.warning("failed to cache %s: %s", rec.source_url, e)
                    report.failed.append(rec.source_url)
        return results
