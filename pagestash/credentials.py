import dbm
import logging
from pathlib import Path
from threading import Lock
from typing import Dict, Optional

ACCESS_TOKEN_KEY = "authToken"
REFRESH_TOKEN_KEY = "refreshToken"

# -------------------- Secret stores --------------------


class SecretStore:
    def save(self, key: str, value: str) -> None:
        raise NotImplementedError

    def read(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class MemSecrets(SecretStore):
    def __init__(self, init: Optional[Dict[str, str]] = None):
        self._m: Dict[str, str] = dict(init or {})

    def save(self, key: str, value: str) -> None:
        self._m[key] = value

    def read(self, key: str) -> Optional[str]:
        return self._m.get(key)

    def delete(self, key: str) -> None:
        self._m.pop(key, None)


class DBMSecrets(SecretStore):
    def __init__(self, path: Path):
        path.parent.mkdir(parents=True, exist_ok=True)
        self._db = dbm.open(str(path), "c", 0o600)
        self._lock = Lock()

    def save(self, key: str, value: str) -> None:
        with self._lock:
            self._db[key.encode("utf-8")] = value.encode("utf-8")

    def read(self, key: str) -> Optional[str]:
        with self._lock:
            v = self._db.get(key.encode("utf-8"))
        return None if v is None else v.decode("utf-8")

    def delete(self, key: str) -> None:
        with self._lock:
            try:
                del self._db[key.encode("utf-8")]
            except KeyError:
                pass

    def close(self) -> None:
        try:
            self._db.close()
        except Exception as e:
            logging.debug("closing credential store: %s", e)


# -------------------- Tokens --------------------


class TokenStore:
    """Access and refresh credentials, kept under two independent keys."""

    def __init__(self, secrets: SecretStore):
        self.secrets = secrets
        self.access_token = secrets.read(ACCESS_TOKEN_KEY)
        self.refresh_token = secrets.read(REFRESH_TOKEN_KEY)

    def set_access_token(self, value: str) -> None:
        self.secrets.save(ACCESS_TOKEN_KEY, value)
        self.access_token = value

    def set_refresh_token(self, value: str) -> None:
        self.secrets.save(REFRESH_TOKEN_KEY, value)
        self.refresh_token = value

    @property
    def signed_in(self) -> bool:
        return self.access_token is not None

    def clear(self) -> None:
        self.secrets.delete(ACCESS_TOKEN_KEY)
        self.secrets.delete(REFRESH_TOKEN_KEY)
        self.access_token = None
        self.refresh_token = None
