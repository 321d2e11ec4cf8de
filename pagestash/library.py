import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Tuple, TypeVar

import requests

from .api import ArticlesClient, RemoteArticle
from .auth import AuthenticatedCaller
from .credentials import DBMSecrets, SecretStore, TokenStore
from .errors import ApiError, MustReauthenticate
from .http import apply_extra_headers, build_session
from .settings import Settings
from .snapshot import SnapshotEngine
from .store import Catalog, SnapshotRecord, SnapshotStore, utc_now
from .sync import SYNC_SESSION_EXPIRED, ReconciliationEngine, SyncReport

T = TypeVar("T")

STATUS_LOCAL = "local"
STATUS_REMOTE = "remote"
STATUS_REMOTE_FAILED = "remote_failed"
STATUS_AUTH_EXPIRED = "auth_expired"


@dataclass
class StatusEvent:
    kind: str
    message: str


def log_status(event: StatusEvent) -> None:
    logging.info("%s", event.message)


class Library:
    """Local catalog operations with best-effort remote follow-up.

    Every mutation is committed locally (catalog saved) before any remote
    call starts. The remote outcome is reported through ``on_status`` and
    never rolls the local change back.
    """

    def __init__(
        self,
        store: SnapshotStore,
        tokens: TokenStore,
        client: ArticlesClient,
        engine: SnapshotEngine,
        *,
        page_workers: int = 4,
        clock: Callable[[], datetime] = utc_now,
        on_status: Callable[[StatusEvent], None] = log_status,
    ):
        self.store = store
        self.tokens = tokens
        self.client = client
        self.engine = engine
        self.clock = clock
        self.on_status = on_status
        self.auth_expired = False
        self.catalog: Catalog = store.load()
        self.caller = AuthenticatedCaller(tokens, client)
        self.reconciler = ReconciliationEngine(
            store, self.catalog, self.caller, client, engine, page_workers, clock
        )

    @classmethod
    def open(
        cls,
        settings: Settings,
        *,
        secrets: Optional[SecretStore] = None,
        session: Optional[requests.Session] = None,
        on_status: Callable[[StatusEvent], None] = log_status,
    ) -> "Library":
        if session is None:
            # sync runs page_workers captures, each with its own asset fan-out
            pool_size = max(settings.workers * settings.page_workers, 10)
            session = build_session(pool_size=pool_size)
            apply_extra_headers(session, settings.extra_headers)
        if secrets is None:
            secrets = DBMSecrets(settings.credentials_path)
        store = SnapshotStore(settings.catalog_root)
        client = ArticlesClient(settings.api_url, session, settings.timeout)
        engine = SnapshotEngine(store.root, session, settings)
        return cls(
            store,
            TokenStore(secrets),
            client,
            engine,
            page_workers=settings.page_workers,
            on_status=on_status,
        )

    def close(self) -> None:
        self.tokens.secrets.close()

    def _status(self, kind: str, message: str) -> None:
        self.on_status(StatusEvent(kind, message))

    # -------------------- Views --------------------

    def pages(self) -> List[SnapshotRecord]:
        return self.catalog.sorted()

    def active(self) -> List[SnapshotRecord]:
        return self.catalog.active()

    def archived(self) -> List[SnapshotRecord]:
        return self.catalog.archived()

    def get(self, id_or_prefix: str) -> SnapshotRecord:
        rec = self.catalog.resolve_id(id_or_prefix)
        if rec is None:
            raise KeyError(f"no unique page matches {id_or_prefix!r}")
        return rec

    # -------------------- Session --------------------

    def login(self, email: str, password: str) -> None:
        token, refresh_token = self.client.login(email, password)
        self.tokens.set_access_token(token)
        if refresh_token:
            self.tokens.set_refresh_token(refresh_token)
        self.auth_expired = False
        logging.info("signed in as %s", email)

    def logout(self) -> None:
        self.tokens.clear()
        logging.info("signed out")

    # -------------------- Mutations --------------------

    def _remote(
        self, what: str, operation: Callable[[str], T]
    ) -> Tuple[bool, Optional[T]]:
        if not self.tokens.signed_in:
            return False, None
        try:
            return True, self.caller.call(operation)
        except MustReauthenticate:
            self.auth_expired = True
            self._status(
                STATUS_AUTH_EXPIRED, f"Local change saved. Sign in again to sync {what}."
            )
        except ApiError as e:
            self._status(
                STATUS_REMOTE_FAILED, f"Local change saved. Server {what} failed: {e}"
            )
        return False, None

    def save(self, url: str, favorited: bool = False) -> SnapshotRecord:
        result = self.engine.capture(url)
        rec = SnapshotRecord(
            source_url=url,
            title=result.title,
            added_at=self.clock(),
            cache_dir=result.cache_dir,
            favorited=favorited,
        )
        self.catalog.add(rec)
        self.store.save(self.catalog)
        self._status(
            STATUS_LOCAL,
            f'Saved "{rec.title}" locally ({result.asset_count} assets).',
        )

        ok, created = self._remote(
            "create", lambda token: self.client.create_article(token, url, favorited)
        )
        if ok and created is not None:
            self._link_created(rec, created)
        return rec

    def _link_created(self, rec: SnapshotRecord, created: RemoteArticle) -> None:
        other = self.catalog.by_remote_id(created.id)
        if other is not None and other is not rec:
            logging.warning(
                "server id %s already belongs to page %s", created.id, other.local_id
            )
            return
        rec.remote_id = created.id
        rec.archived = created.archived
        rec.favorited = created.favorited
        if created.date_added is not None:
            rec.added_at = created.date_added
        self.store.save(self.catalog)
        self._status(STATUS_REMOTE, f"Synced to server (id {created.id}).")

    def set_archived(self, id_or_prefix: str, archived: bool) -> SnapshotRecord:
        rec = self.get(id_or_prefix)
        rec.archived = archived
        self.store.save(self.catalog)
        self._status(
            STATUS_LOCAL, "Archived locally." if archived else "Unarchived locally."
        )
        if rec.remote_id is not None:
            remote_id = rec.remote_id
            ok, _ = self._remote(
                "archive state",
                lambda token: self.client.set_archived(token, remote_id, archived),
            )
            if ok:
                self._status(
                    STATUS_REMOTE,
                    "Archived on server." if archived else "Unarchived on server.",
                )
        return rec

    def set_favorited(self, id_or_prefix: str, favorited: bool) -> SnapshotRecord:
        rec = self.get(id_or_prefix)
        rec.favorited = favorited
        self.store.save(self.catalog)
        self._status(
            STATUS_LOCAL, "Favorited locally." if favorited else "Unfavorited locally."
        )
        return rec

    def delete(self, id_or_prefix: str) -> SnapshotRecord:
        rec = self.get(id_or_prefix)
        self.store.remove_cache(rec.cache_dir)
        self.catalog.remove(rec.local_id)
        self.store.save(self.catalog)
        self._status(STATUS_LOCAL, "Deleted locally.")
        if rec.remote_id is not None:
            remote_id = rec.remote_id
            ok, _ = self._remote(
                "delete", lambda token: self.client.delete_article(token, remote_id)
            )
            if ok:
                self._status(STATUS_REMOTE, "Deleted on server.")
        return rec

    def sync(self) -> SyncReport:
        report = self.reconciler.sync()
        if report.status == SYNC_SESSION_EXPIRED:
            self.auth_expired = True
            self._status(STATUS_AUTH_EXPIRED, "Session expired. Sign in again to sync.")
        return report
