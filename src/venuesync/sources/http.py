"""HTTP data source for the hosted venue backend."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, cast

import httpx

from venuesync.errors import DataSourceError
from venuesync.types import Record

logger = logging.getLogger(__name__)


def _query_params(params: Mapping[str, Any]) -> dict[str, Any]:
    """Flatten frozen descriptor params into query-string values."""
    result: dict[str, Any] = {}
    for name, value in params.items():
        if isinstance(value, tuple):
            value = list(value)
        elif isinstance(value, bool):
            value = "true" if value else "false"
        result[name] = value
    return result


class HttpDataSource:
    """Async REST data source.

    Endpoints follow ``/v1/{entity_type}`` and ``/v1/{entity_type}/{id}``.
    Responses use the ``{success, data, error}`` envelope; failures raise
    :class:`DataSourceError`, transport failures propagate as ``httpx``
    exceptions.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        body: Mapping[str, Any] | None = None,
    ) -> Any:
        """Send a request and unwrap the response envelope."""
        response = await self._client.request(
            method,
            path,
            params=_query_params(params) if params else None,
            json=dict(body) if body is not None else None,
        )
        logger.debug("%s %s -> %d", method, path, response.status_code)

        if response.status_code == 204 or not response.content:
            if response.is_success:
                return None
            raise DataSourceError(response.status_code)

        try:
            payload = response.json()
        except ValueError:
            if response.is_success:
                raise DataSourceError(
                    response.status_code, "Malformed response body"
                ) from None
            raise DataSourceError(response.status_code) from None

        if not isinstance(payload, dict):
            if response.is_success:
                return payload
            raise DataSourceError(response.status_code)

        if not response.is_success or payload.get("success") is False:
            envelope = payload.get("error") or {}
            raise DataSourceError.from_envelope(
                cast(dict[str, Any], envelope), status=response.status_code
            )
        return payload.get("data", payload)

    async def list(
        self, entity_type: str, params: Mapping[str, Any]
    ) -> list[Record] | Record:
        return await self._request("GET", f"/v1/{entity_type}", params=params)

    async def get(self, entity_type: str, entity_id: Any) -> Record:
        return await self._request("GET", f"/v1/{entity_type}/{entity_id}")

    async def create(self, entity_type: str, payload: Mapping[str, Any]) -> Record:
        return await self._request("POST", f"/v1/{entity_type}", body=payload)

    async def update(
        self, entity_type: str, entity_id: Any, changes: Mapping[str, Any]
    ) -> Record:
        return await self._request(
            "PATCH", f"/v1/{entity_type}/{entity_id}", body=changes
        )

    async def delete(self, entity_type: str, entity_id: Any) -> None:
        await self._request("DELETE", f"/v1/{entity_type}/{entity_id}")

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


__all__ = ["HttpDataSource"]
