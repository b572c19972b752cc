from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from .constants import API_VERSION, DEFAULT_TIMEOUT
from .digest import AuthCache
from .errors import (
    AuthenticationError,
    DeviceRequestError,
    DeviceUnreachableError,
    parse_error_response,
)

log = logging.getLogger(__name__)


class RequestChannel:
    """
    One HTTP exchange against the TV, with Digest auth.
    - cached credentials are sent up front (one round trip in the common case)
    - a 401 carries the fresh challenge: cache it, retry once
    - transport failures are never retried here
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        auth: AuthCache,
        *,
        base_url: Optional[str] = None,
        api_version: int = API_VERSION,
    ) -> None:
        self._client = client
        self._auth = auth
        self._base = (base_url or "").rstrip("/")
        self._prefix = f"/{api_version}"

    @property
    def base_url(self) -> str:
        return self._base or str(self._client.base_url).rstrip("/")

    def uri_for(self, path: str) -> str:
        return f"{self._prefix}/{path.lstrip('/')}"

    async def execute(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> httpx.Response:
        method = method.upper()
        uri = self.uri_for(path)

        resp: Optional[httpx.Response] = None
        header = self._auth.build_header(method, uri)
        if header is not None:
            resp = await self._send(method, uri, body, timeout, header)
            if resp.status_code != 401:
                return self._check(resp)
            # nonce expired server-side; this 401 carries the new challenge
            log.debug("Digest nonce expired for %s %s", method, uri)
            self._auth.invalidate()

        if resp is None:
            resp = await self._send(method, uri, body, timeout, None)
            if resp.status_code != 401:
                return self._check(resp)

        challenge = resp.headers.get("www-authenticate")
        if not self._auth.cache_from_challenge(challenge):
            raise AuthenticationError(f"{method} {uri}: 401 without a Digest challenge")

        resp = await self._send(method, uri, body, timeout, self._auth.build_header(method, uri))
        if resp.status_code == 401:
            self._auth.invalidate()
            raise AuthenticationError(f"{method} {uri}: credentials rejected")
        return self._check(resp)

    async def _send(
        self,
        method: str,
        uri: str,
        body: Any,
        timeout: float,
        authorization: Optional[str],
    ) -> httpx.Response:
        headers: Dict[str, str] = {}
        if authorization:
            headers["Authorization"] = authorization
        url = f"{self._base}{uri}" if self._base else uri
        try:
            return await self._client.request(
                method,
                url,
                json=body,
                headers=headers,
                timeout=timeout,
            )
        except httpx.TimeoutException as exc:
            raise DeviceUnreachableError(f"{method} {uri}: timed out after {timeout}s") from exc
        except httpx.TransportError as exc:
            raise DeviceUnreachableError(f"{method} {uri}: {exc!r}") from exc

    def _check(self, resp: httpx.Response) -> httpx.Response:
        if resp.is_success:
            return resp
        raise DeviceRequestError(resp.status_code, parse_error_response(resp.status_code, resp.text))
