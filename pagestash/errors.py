from typing import Optional


class PagestashError(Exception):
    pass


# -------------------- Capture --------------------


class SnapshotError(PagestashError):
    pass


class UnsupportedScheme(SnapshotError):
    def __init__(self, url: str):
        super().__init__(f"unsupported scheme: {url}")
        self.url = url


class BadResponse(SnapshotError):
    def __init__(self, url: str, status_code: Optional[int] = None, reason: str = ""):
        detail = f"HTTP {status_code}" if status_code is not None else reason
        super().__init__(f"bad response for {url}: {detail}".rstrip(": "))
        self.url = url
        self.status_code = status_code


class InvalidContent(SnapshotError):
    def __init__(self, url: str):
        super().__init__(f"cannot decode page body as text: {url}")
        self.url = url


# -------------------- Remote --------------------


class AuthError(PagestashError):
    pass


class CredentialExpired(AuthError):
    pass


class MustReauthenticate(AuthError):
    pass


class ApiError(PagestashError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
