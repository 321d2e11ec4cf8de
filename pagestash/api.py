import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import requests

from .errors import ApiError, CredentialExpired

SERVER_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def parse_server_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.strptime(value, SERVER_DATE_FORMAT).replace(
            tzinfo=timezone.utc
        )
    except ValueError:
        logging.debug("unparseable server date: %r", value)
        return None


@dataclass(frozen=True)
class RemoteArticle:
    id: int
    url: str
    archived: bool
    favorited: bool
    date_added: Optional[datetime]
    updated_at: Optional[str] = None

    @classmethod
    def from_json(cls, d: Dict[str, Any]) -> "RemoteArticle":
        try:
            return cls(
                id=int(d["id"]),
                url=str(d["url"]),
                archived=bool(int(d.get("archived") or 0)),
                favorited=bool(int(d.get("favorited") or 0)),
                date_added=parse_server_date(d.get("date_added")),
                updated_at=d.get("updated_at"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ApiError(f"malformed article: {e}") from e


class ArticlesClient:
    """Thin client for the saved-articles service.

    Every call raises ``CredentialExpired`` on HTTP 401 and ``ApiError`` on
    any other non-2xx status. Bearer tokens are passed per call so the
    caller decides which credential is current.
    """

    def __init__(self, base_url: str, session: requests.Session, timeout: float):
        self.base_url = base_url.rstrip("/")
        self.session = session
        self.timeout = timeout

    def _request(
        self,
        method: str,
        path: str,
        *,
        token: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> requests.Response:
        headers = {"Accept": "application/json"}
        if token is not None:
            headers["Authorization"] = f"Bearer {token}"
        url = f"{self.base_url}{path}"
        try:
            r = self.session.request(
                method, url, json=payload, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise ApiError(f"{method} {path} failed: {e}") from e
        if r.status_code == 401:
            raise CredentialExpired(f"{method} {path} -> HTTP 401")
        if not 200 <= r.status_code < 300:
            raise ApiError(f"{method} {path} -> HTTP {r.status_code}", r.status_code)
        return r

    def _json(self, r: requests.Response) -> Any:
        try:
            return r.json()
        except ValueError as e:
            raise ApiError(f"invalid JSON from {r.url}", r.status_code) from e

    # -------------------- Auth --------------------

    def login(self, email: str, password: str) -> Tuple[str, Optional[str]]:
        r = self._request(
            "POST", "/auth/login", payload={"email": email, "password": password}
        )
        data = self._json(r)
        if not isinstance(data, dict) or not data.get("token"):
            raise ApiError("login response has no token", r.status_code)
        return data["token"], data.get("refreshToken")

    def refresh(self, refresh_token: str) -> str:
        r = self._request(
            "POST", "/auth/refresh", payload={"refreshToken": refresh_token}
        )
        data = self._json(r)
        if not isinstance(data, dict) or not data.get("token"):
            raise ApiError("refresh response has no token", r.status_code)
        return data["token"]

    # -------------------- Articles --------------------

    def list_articles(self, token: str) -> List[RemoteArticle]:
        data = self._json(self._request("GET", "/articles", token=token))
        items = data.get("items") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise ApiError("article list has no items")
        return [RemoteArticle.from_json(d) for d in items]

    def create_article(self, token: str, url: str, favorited: bool) -> RemoteArticle:
        r = self._request(
            "POST",
            "/articles",
            token=token,
            payload={"url": url, "favorited": favorited},
        )
        return RemoteArticle.from_json(self._json(r))

    def set_archived(self, token: str, article_id: int, archived: bool) -> None:
        self._request(
            "PATCH",
            f"/articles/{article_id}",
            token=token,
            payload={"archived": archived},
        )

    def delete_article(self, token: str, article_id: int) -> None:
        self._request("DELETE", f"/articles/{article_id}", token=token)
