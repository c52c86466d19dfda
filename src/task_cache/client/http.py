from __future__ import annotations

import datetime as dt
import enum
import logging
import typing as t

import httpx

from task_cache.core.errors import ApiError, NetworkError, NotAuthenticatedError, RequestTimeout
from task_cache.utils.config import ApiConfig

_logger = logging.getLogger(__name__)

TokenProvider = t.Callable[[], t.Optional[str]]


def _param(value: t.Any) -> t.Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (dt.date, dt.datetime)):
        return value.isoformat()
    return value


class ApiClient:
    """JSON client for the task API.

    Attaches the bearer token on every request and maps transport failures
    and error statuses onto the task-cache error taxonomy.
    """

    def __init__(
        self,
        config: t.Optional[ApiConfig] = None,
        *,
        token_provider: t.Optional[TokenProvider] = None,
        transport: t.Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config or ApiConfig()
        self._token_provider = token_provider or (lambda: self._config.token)
        self._client = httpx.AsyncClient(
            base_url=self._config.base_url.rstrip("/") + "/",
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            timeout=self._config.timeout_seconds,
            transport=transport,
        )

    @property
    def config(self) -> ApiConfig:
        return self._config

    def _headers(self) -> t.Dict[str, str]:
        token = self._token_provider()
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: t.Optional[t.Mapping[str, t.Any]] = None,
        json: t.Any = None,
        timeout: t.Optional[float] = None,
    ) -> t.Any:
        clean_params = {k: _param(v) for k, v in (params or {}).items() if v is not None}
        kwargs: t.Dict[str, t.Any] = {"params": clean_params, "headers": self._headers()}
        if json is not None:
            kwargs["json"] = json
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            response = await self._client.request(method, path.lstrip("/"), **kwargs)
        except httpx.TimeoutException as exc:
            raise RequestTimeout(f"{method} {path} timed out") from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"{method} {path} failed: {exc}") from exc

        _logger.debug("%s %s -> %d", method, path, response.status_code)
        if response.status_code >= 400:
            payload = self._decode(response)
            message = payload.get("message", "") if isinstance(payload, dict) else ""
            if response.status_code == 401:
                raise NotAuthenticatedError(message or "re-authentication required", payload)
            raise ApiError(response.status_code, message, payload)
        return self._decode(response)

    @staticmethod
    def _decode(response: httpx.Response) -> t.Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def get(self, path: str, **kwargs: t.Any) -> t.Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: t.Any) -> t.Any:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs: t.Any) -> t.Any:
        return await self.request("PUT", path, **kwargs)

    async def patch(self, path: str, **kwargs: t.Any) -> t.Any:
        return await self.request("PATCH", path, **kwargs)

    async def delete(self, path: str, **kwargs: t.Any) -> t.Any:
        return await self.request("DELETE", path, **kwargs)

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: t.Any) -> None:
        await self.close()
