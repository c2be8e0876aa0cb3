"""
Thin Matrix client-server API wrapper over aiohttp.

Every call carries the bot's bearer token. Failures are raised as
TransportError (network or non-2xx) or MalformedResponseError (body is not
the JSON shape we expect); callers decide whether to retry.
"""
import asyncio
import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import aiohttp

from matrix_human_bot.errors import MalformedResponseError, TransportError

logger = logging.getLogger("matrix_human_bot.http")

CLIENT_API_PREFIX = "/_matrix/client/v3"
DEFAULT_POLL_TIMEOUT_MS = 30000
# Client-side slack on top of the server-side long-poll wait
CLIENT_TIMEOUT_MARGIN_S = 30.0
DEFAULT_REQUEST_TIMEOUT_S = 60.0
MAX_ERROR_BODY_CHARS = 800

SYNC_FILTER = {
    "room": {"timeline": {"types": ["m.room.message"], "limit": 20}},
}


def _enc(value: str) -> str:
    return quote(value, safe="")


class MatrixHttpApi:
    """Authenticated JSON calls against one homeserver"""

    def __init__(
        self,
        homeserver_url: str,
        access_token: str,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.homeserver_url = homeserver_url.rstrip("/")
        self._access_token = access_token
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> Any:
        url = f"{self.homeserver_url}{path}"
        headers = {"Authorization": f"Bearer {self._access_token}"}
        kwargs: Dict[str, Any] = {
            "headers": headers,
            "timeout": aiohttp.ClientTimeout(total=timeout_seconds or DEFAULT_REQUEST_TIMEOUT_S),
        }
        if params is not None:
            kwargs["params"] = params
        if json_body is not None:
            headers["Content-Type"] = "application/json"
            kwargs["data"] = json.dumps(json_body)

        session = await self._get_session()
        try:
            async with session.request(method, url, **kwargs) as response:
                raw = await response.read()
                if not 200 <= response.status < 300:
                    # Error pages from proxies are not always UTF-8
                    text = raw.decode("utf-8", errors="replace")[:MAX_ERROR_BODY_CHARS]
                    raise TransportError(
                        f"HTTP {response.status} {response.reason} for {path}\n" + text,
                        status_code=response.status,
                        reason=response.reason,
                        response_body=text,
                        path=path,
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"{method} {path} failed: {type(e).__name__}: {e}", path=path) from e

        if not raw:
            return None
        try:
            return json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise MalformedResponseError(f"Invalid JSON from {path}: {e}") from e

    async def whoami(self) -> str:
        data = await self.request("GET", f"{CLIENT_API_PREFIX}/account/whoami")
        user_id = data.get("user_id") if isinstance(data, dict) else None
        if not isinstance(user_id, str) or not user_id:
            raise MalformedResponseError("whoami response has no user_id")
        return user_id

    async def sync(
        self,
        since: Optional[str] = None,
        timeout_ms: int = DEFAULT_POLL_TIMEOUT_MS,
    ) -> Dict[str, Any]:
        params = {}
        if since:
            params["since"] = since
        params["timeout"] = str(timeout_ms)
        params["set_presence"] = "offline"
        params["filter"] = json.dumps(SYNC_FILTER, separators=(",", ":"))

        data = await self.request(
            "GET",
            f"{CLIENT_API_PREFIX}/sync",
            params=params,
            timeout_seconds=timeout_ms / 1000 + CLIENT_TIMEOUT_MARGIN_S,
        )
        if not isinstance(data, dict):
            raise MalformedResponseError("sync response is not a JSON object")
        return data

    async def join_room(self, room_id_or_alias: str) -> None:
        await self.request("POST", f"{CLIENT_API_PREFIX}/join/{_enc(room_id_or_alias)}")

    async def send_room_message(
        self,
        room_id: str,
        txn_id: str,
        content: Dict[str, Any],
    ) -> Optional[str]:
        data = await self.request(
            "PUT",
            f"{CLIENT_API_PREFIX}/rooms/{_enc(room_id)}/send/m.room.message/{_enc(txn_id)}",
            json_body=content,
        )
        if isinstance(data, dict):
            return data.get("event_id")
        return None
