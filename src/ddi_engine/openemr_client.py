"""Read-only HTTP client for the OpenEMR REST API.

The interaction engine only needs one thing from OpenEMR: the list of a
patient's current medications. This client authenticates with the OAuth2
password grant, keeps the access token fresh (refresh grant first, full
password grant as a fallback) and performs authenticated GET requests.

Usage:
    client = OpenEMRClient()
    data = await client.get("/patient/1/medication")
    await client.close()
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from ddi_engine.config import (
    OPENEMR_BASE_URL,
    OPENEMR_CLIENT_ID,
    OPENEMR_CLIENT_SECRET,
    OPENEMR_PASSWORD,
    OPENEMR_SITE,
    OPENEMR_SSL_VERIFY,
    OPENEMR_USERNAME,
)

logger = logging.getLogger(__name__)

# Only what medication lookups need
DEFAULT_SCOPES = "openid offline_access api:oemr user/patient.read user/medication.read"

# Refresh this many seconds before the token actually expires
TOKEN_EXPIRY_MARGIN = 60


class OpenEMRAuthError(Exception):
    """Raised when a token cannot be obtained or refreshed."""


class OpenEMRAPIError(Exception):
    """Raised when an API request fails or returns an error status."""

    def __init__(self, status_code: int, detail: str) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"HTTP {status_code}: {detail}")


class OpenEMRClient:
    """Async OpenEMR API client with automatic token management.

    Attributes:
        base_url: The OpenEMR server URL (e.g. "https://localhost:9300").
        site: The OpenEMR site name (usually "default").
        api_base: Base URL for data endpoints.
    """

    def __init__(
        self,
        base_url: str = OPENEMR_BASE_URL,
        site: str = OPENEMR_SITE,
        client_id: str = OPENEMR_CLIENT_ID,
        client_secret: str = OPENEMR_CLIENT_SECRET,
        username: str = OPENEMR_USERNAME,
        password: str = OPENEMR_PASSWORD,
        verify_ssl: bool = OPENEMR_SSL_VERIFY,
        scopes: str = DEFAULT_SCOPES,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.site = site
        self.client_id = client_id
        self.client_secret = client_secret
        self.username = username
        self.password = password
        self.scopes = scopes

        self.token_url = f"{self.base_url}/oauth2/{self.site}/token"
        self.api_base = f"{self.base_url}/apis/{self.site}/api"

        self._access_token = ""
        self._refresh_token = ""
        self._expires_at = 0.0

        self._http = http or httpx.AsyncClient(verify=verify_ssl, timeout=httpx.Timeout(30.0))

    async def close(self) -> None:
        await self._http.aclose()

    # --- Tokens ---

    async def _password_grant(self) -> None:
        await self._request_token(
            {
                "grant_type": "password",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "username": self.username,
                "password": self.password,
                "scope": self.scopes,
                "user_role": "users",
            }
        )

    async def _refresh_grant(self) -> None:
        try:
            await self._request_token(
                {
                    "grant_type": "refresh_token",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": self._refresh_token,
                }
            )
        except OpenEMRAuthError:
            logger.warning("Token refresh failed, falling back to password grant")
            await self._password_grant()

    async def _request_token(self, form: dict[str, str]) -> None:
        """POST a form-encoded token request and store the result.

        Raises:
            OpenEMRAuthError: On transport errors or a non-2xx response.
        """
        try:
            response = await self._http.post(self.token_url, data=form)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise OpenEMRAuthError(
                f"Token request failed (HTTP {exc.response.status_code}): {exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise OpenEMRAuthError(f"Token request failed: {exc}") from exc

        data = response.json()
        self._access_token = data["access_token"]
        self._refresh_token = data.get("refresh_token", self._refresh_token)
        expires_in = int(data.get("expires_in", 3600))
        self._expires_at = time.time() + expires_in - TOKEN_EXPIRY_MARGIN
        logger.debug("OpenEMR token acquired, expires in %d seconds", expires_in)

    async def _ensure_token(self) -> None:
        if self._access_token and time.time() < self._expires_at:
            return
        if self._refresh_token:
            await self._refresh_grant()
        else:
            await self._password_grant()

    # --- Requests ---

    async def get(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        """Authenticated GET against the API, returning the parsed JSON body.

        A 401 triggers one re-authentication and retry, since tokens can be
        revoked server-side before they expire.

        Raises:
            OpenEMRAuthError: If authentication fails.
            OpenEMRAPIError: On transport errors or error statuses.
        """
        await self._ensure_token()
        url = f"{self.api_base}{endpoint}"

        response = await self._send(url, params)
        if response.status_code == 401:
            logger.warning("Got 401 from OpenEMR, re-authenticating once")
            await self._password_grant()
            response = await self._send(url, params)

        if response.status_code >= 400:
            raise OpenEMRAPIError(status_code=response.status_code, detail=response.text)
        return response.json()

    async def _send(self, url: str, params: dict[str, Any] | None) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Accept": "application/json",
        }
        try:
            return await self._http.get(url, headers=headers, params=params)
        except httpx.HTTPError as exc:
            raise OpenEMRAPIError(status_code=0, detail=f"Request to {url} failed: {exc}") from exc
