"""Table reads and writes over the REST endpoint."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

import httpx

from campuslive.core.errors import FetchError

logger = logging.getLogger(__name__)


def eq(value: Any) -> str:
    return f"eq.{value}"


def in_(values: Iterable[Any]) -> str:
    joined = ",".join(str(v) for v in values)
    return f"in.({joined})"


def or_(*clauses: str) -> str:
    return "(" + ",".join(clauses) + ")"


def _json(response: httpx.Response, method: str, table: str) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError as exc:
        detail = response.text[:200]
        logger.debug("%s %s -> non-JSON body: %s", method, table, detail)
        raise FetchError(
            f"{method} {table} returned a non-JSON body: {detail}", status_code=response.status_code
        ) from exc


class RestClient:
    """Thin async wrapper around the table endpoint.

    Filters are passed pre-rendered (``{"channel_id": eq(cid)}``) so callers
    can express any operator the endpoint understands.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        access_token: str | None = None,
        timeout: float = 10.0,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token
        self.http = http or httpx.AsyncClient(timeout=timeout)

    def _headers(self, extra: Mapping[str, str] | None = None) -> dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
            "Accept": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    async def select(
        self,
        table: str,
        *,
        columns: str = "*",
        filters: Mapping[str, str] | None = None,
        order: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, str] = {"select": columns}
        if filters:
            params.update(filters)
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        response = await self._request("GET", table, params=params)
        data = _json(response, "GET", table)
        if not isinstance(data, list):
            raise FetchError(f"unexpected response shape from {table}")
        return data

    async def select_one(self, table: str, **kwargs: Any) -> dict[str, Any] | None:
        rows = await self.select(table, limit=1, **kwargs)
        return rows[0] if rows else None

    async def insert(self, table: str, row: Mapping[str, Any]) -> dict[str, Any]:
        response = await self._request(
            "POST",
            table,
            json=dict(row),
            headers={"Prefer": "return=representation"},
        )
        data = _json(response, "POST", table)
        if isinstance(data, list) and data:
            return data[0]
        if isinstance(data, dict):
            return data
        raise FetchError(f"insert into {table} returned no row")

    async def update(self, table: str, values: Mapping[str, Any], *, filters: Mapping[str, str]) -> list[dict[str, Any]]:
        if not filters:
            raise ValueError("refusing to update without filters")
        response = await self._request(
            "PATCH",
            table,
            params=dict(filters),
            json=dict(values),
            headers={"Prefer": "return=representation"},
        )
        data = _json(response, "PATCH", table)
        return data if isinstance(data, list) else []

    async def aclose(self) -> None:
        await self.http.aclose()

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: Mapping[str, str] | None = None,
        json: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        url = f"{self.base_url}/{table}"
        try:
            response = await self.http.request(method, url, params=params, json=json, headers=self._headers(headers))
        except httpx.HTTPError as exc:
            raise FetchError(f"{method} {table} failed: {exc}") from exc
        if response.status_code >= 400:
            detail = response.text[:200]
            logger.debug("%s %s -> %s %s", method, table, response.status_code, detail)
            raise FetchError(f"{method} {table} returned {response.status_code}: {detail}", status_code=response.status_code)
        return response
