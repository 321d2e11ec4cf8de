import logging
from typing import Callable, TypeVar

from .api import ArticlesClient
from .credentials import TokenStore
from .errors import ApiError, CredentialExpired, MustReauthenticate

T = TypeVar("T")


class AuthenticatedCaller:
    """Run a remote operation with the current access token.

    On ``CredentialExpired`` the refresh token is exchanged once and the
    operation retried once. The retry budget lives in the call frame, so
    concurrent or successive calls on one instance never share it. Any
    failure of the refresh, or a second expiry, raises
    ``MustReauthenticate``.
    """

    def __init__(self, tokens: TokenStore, client: ArticlesClient):
        self.tokens = tokens
        self.client = client

    def call(self, operation: Callable[[str], T]) -> T:
        retried = False
        while True:
            token = self.tokens.access_token
            try:
                if token is None:
                    raise CredentialExpired("no access token")
                return operation(token)
            except CredentialExpired as e:
                if retried:
                    logging.warning("credential rejected after refresh: %s", e)
                    raise MustReauthenticate("session expired; sign in again") from e
                self._refresh()
                retried = True

    def _refresh(self) -> None:
        refresh_token = self.tokens.refresh_token
        if not refresh_token:
            raise MustReauthenticate("no refresh token; sign in again")
        logging.info("access token expired, refreshing")
        try:
            new_token = self.client.refresh(refresh_token)
        except (CredentialExpired, ApiError) as e:
            logging.warning("token refresh failed: %s", e)
            raise MustReauthenticate("token refresh failed; sign in again") from e
        self.tokens.set_access_token(new_token)
