"""
OAuth client-credentials tokens for the analytics API.

One TokenCache instance lives for the whole run and is handed to every
entity sync. Tokens are cached in memory per application client id and
never persisted.

Concurrency: two calls for the same client id may both fetch a token if they
race. The engine syncs scopes sequentially so this cannot happen today; a
parallel engine would need per-key single-flight refresh.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

import requests

from ledgersync.config import DEFAULT_AUTH_HOST, DEFAULT_TOKEN_SCOPE
from ledgersync.errors import AuthError
from ledgersync.utils import utcnow

logger = logging.getLogger(__name__)

__all__ = ['CachedToken', 'TokenCache', 'REFRESH_MARGIN']

# Tokens this close to expiry are refreshed, never handed out
REFRESH_MARGIN = timedelta(seconds=60)


@dataclass(frozen=True)
class CachedToken:
    access_token: str
    expires_at: datetime

    def is_fresh(self, now: datetime) -> bool:
        return self.expires_at > now + REFRESH_MARGIN


class TokenCache:
    """
    Acquires and caches bearer tokens per (directory tenant, client id).

    Args:
        client_secret: Secret shared by the application clients
        session: requests.Session used for the token endpoint
        auth_host: Identity provider host
        scope: OAuth scope requested for the API
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        client_secret: str,
        session: Optional[requests.Session] = None,
        auth_host: str = DEFAULT_AUTH_HOST,
        scope: str = DEFAULT_TOKEN_SCOPE,
        timeout: int = 60,
    ):
        self._client_secret = client_secret
        self._session = session or requests.Session()
        self.auth_host = auth_host
        self.scope = scope
        self.timeout = timeout
        self._tokens: Dict[str, CachedToken] = {}

    def __len__(self) -> int:
        return len(self._tokens)

    def token_url(self, directory_tenant_id: str) -> str:
        return f"https://{self.auth_host}/{directory_tenant_id}/oauth2/v2.0/token"

    def get_token(self, directory_tenant_id: str, client_id: str) -> str:
        """
        Return a bearer token for the client, fetching a new one when needed.

        A cached token is reused only while it expires more than
        REFRESH_MARGIN from now.

        Raises:
            AuthError: If the token endpoint fails or its response is unusable
        """
        key = str(client_id)
        cached = self._tokens.get(key)
        if cached is not None and cached.is_fresh(utcnow()):
            logger.info(f"Using cached token for client {key}")
            return cached.access_token

        logger.info(f"Fetching new OAuth token for client {key}")
        token = self._fetch_token(str(directory_tenant_id), key)
        self._tokens[key] = token
        return token.access_token

    def invalidate(self, client_id: Optional[str] = None) -> None:
        """Drop one cached token (or all of them when client_id is None)."""
        if client_id is None:
            self._tokens.clear()
        else:
            self._tokens.pop(str(client_id), None)

    def _fetch_token(self, directory_tenant_id: str, client_id: str) -> CachedToken:
        url = self.token_url(directory_tenant_id)
        body = {
            'grant_type': 'client_credentials',
            'client_id': client_id,
            'client_secret': self._client_secret,
            'scope': self.scope,
        }

        try:
            response = self._session.post(url, data=body, timeout=self.timeout)
        except requests.RequestException as e:
            raise AuthError(f"Token request to {url} failed: {e}") from e

        if not response.ok:
            logger.error(f"Failed to get token ({response.status_code}): {response.text}")
            raise AuthError(f"Token request failed ({response.status_code}): {response.text}")

        try:
            payload = response.json()
        except ValueError as e:
            raise AuthError(f"Token response is not JSON: {response.text[:200]}") from e

        access_token = payload.get('access_token') if isinstance(payload, dict) else None
        expires_in = payload.get('expires_in') if isinstance(payload, dict) else None
        if not access_token or expires_in is None:
            logger.error("Token response missing access_token/expires_in")
            raise AuthError("Token response missing access_token or expires_in")

        try:
            lifetime = timedelta(seconds=int(expires_in))
        except (TypeError, ValueError) as e:
            raise AuthError(f"Token response has invalid expires_in: {expires_in!r}") from e

        # Stored expiry already carries the safety margin
        expires_at = utcnow() + lifetime - REFRESH_MARGIN
        logger.info(f"Token acquired for client {client_id}, expires in {int(expires_in)}s")
        return CachedToken(access_token=access_token, expires_at=expires_at)
