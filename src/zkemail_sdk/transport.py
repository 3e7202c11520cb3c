# -*- encoding: utf-8 -*-
"""
ZK Email SDK
zkemail_sdk.transport module

Async HTTP client for the registry API and for artifact downloads.

Registry calls carry the ``x-api-key`` header and, when requested, a bearer
token obtained from an Auth provider. A 401 response notifies the provider
through ``on_token_expired`` before the error is raised. Artifact downloads
(zkeys, wasm, circuits) go to pre-signed URLs and carry no credentials.
"""

from __future__ import annotations

import io
import json
import logging
import zipfile
from typing import Any, Optional, Protocol

import httpx

from zkemail_sdk.errors import ConfigurationError, TransportError

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30.0


class Auth(Protocol):
    """Token provider, e.g. backed by a session store or local storage."""

    async def get_token(self) -> Optional[str]:
        ...

    async def on_token_expired(self) -> None:
        ...


async def get_token_from_auth(auth: Auth) -> str:
    """Return an ``Authorization`` header value, refreshing once if needed."""
    token = await auth.get_token()
    if not token:
        await auth.on_token_expired()
        token = await auth.get_token()
    if not token:
        raise ConfigurationError("Failed to get new token")
    return f"Bearer {token}"


def _raise_for_error(response: httpx.Response) -> None:
    """Raise :class:`TransportError` for non-2xx responses."""
    if response.is_success:
        return
    try:
        body = response.json()
        message = body.get("error", response.text) if isinstance(body, dict) else response.text
    except ValueError:
        message = response.text
    raise TransportError(response.status_code, message, str(response.request.url))


class HttpClient:
    """Async client for the registry API.

    Parameters
    ----------
    base_url:
        Root URL of the registry, e.g. ``https://conductor.zk.email``.
    api_key:
        Value sent in the ``x-api-key`` header of registry calls.
    auth:
        Optional token provider used for calls made with ``use_auth=True``.
    timeout:
        Default request timeout in seconds.
    transport:
        Optional httpx transport, used by tests to serve canned responses.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        auth: Optional[Auth] = None,
        timeout: float = _DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.auth = auth
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    # -- lifecycle -----------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    async def __aenter__(self) -> HttpClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # -- registry API --------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        data: Optional[dict] = None,
        params: Optional[dict] = None,
        use_auth: bool = False,
    ) -> Any:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        if use_auth and self.auth is not None:
            try:
                headers["Authorization"] = await get_token_from_auth(self.auth)
            except Exception as exc:
                logger.warning("Could not get token from auth: %s", exc)

        if params:
            params = {k: v for k, v in params.items() if v}

        try:
            response = await self._client.request(
                method, path, json=data, params=params or None, headers=headers
            )
        except httpx.HTTPError as exc:
            logger.error("%s %s failed: %s", method, path, exc)
            raise TransportError(0, str(exc), path) from exc

        if response.status_code == 401 and self.auth is not None:
            await self.auth.on_token_expired()

        try:
            _raise_for_error(response)
        except TransportError as exc:
            logger.error("%s %s returned an error: %s", method, path, exc)
            raise

        if not response.content:
            return None
        return response.json()

    async def get(self, path: str, params: Optional[dict] = None, use_auth: bool = False) -> Any:
        return await self._request("GET", path, params=params, use_auth=use_auth)

    async def post(self, path: str, data: Optional[dict] = None, use_auth: bool = False) -> Any:
        return await self._request("POST", path, data=data, use_auth=use_auth)

    async def patch(self, path: str, data: Optional[dict] = None, use_auth: bool = False) -> Any:
        return await self._request("PATCH", path, data=data, use_auth=use_auth)

    async def delete(self, path: str, data: Optional[dict] = None, use_auth: bool = False) -> Any:
        return await self._request("DELETE", path, data=data, use_auth=use_auth)

    # -- artifact downloads --------------------------------------------------

    async def download_bytes(self, url: str) -> bytes:
        """Fetch an absolute URL without registry credentials."""
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as exc:
            logger.error("Download of %s failed: %s", url, exc)
            raise TransportError(0, str(exc), url) from exc
        _raise_for_error(response)
        return response.content

    async def download_text(self, url: str) -> str:
        return (await self.download_bytes(url)).decode("utf-8")

    async def download_json(self, url: str) -> Any:
        return json.loads(await self.download_bytes(url))

    async def download_and_unzip(self, url: str) -> dict:
        """Download a zip archive and return ``{filename: content}``.

        ``.json`` members are parsed, everything else is returned as text.
        Directory entries are skipped.
        """
        raw = await self.download_bytes(url)
        files = {}
        with zipfile.ZipFile(io.BytesIO(raw)) as archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                content = archive.read(info).decode("utf-8")
                if info.filename.endswith(".json"):
                    try:
                        files[info.filename] = json.loads(content)
                        continue
                    except ValueError:
                        logger.error("Error parsing JSON in %s", info.filename)
                files[info.filename] = content
        return files
