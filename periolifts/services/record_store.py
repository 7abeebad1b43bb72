from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field

from periolifts.core.exceptions import (
    AppError,
    AuthenticationError,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    ServerError,
    UnknownError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class RecordPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    page: int = 1
    per_page: int = Field(0, alias="perPage")
    total_items: int = Field(0, alias="totalItems")
    total_pages: int = Field(0, alias="totalPages")
    items: list[dict[str, Any]] = Field(default_factory=list)


class RecordStore(Protocol):
    async def list(
        self, collection: str, *, filter: str = "", sort: str = "", page: int = 1, per_page: int = 20
    ) -> RecordPage: ...

    async def list_all(
        self, collection: str, *, filter: str = "", sort: str = "", batch: int = 200
    ) -> list[dict[str, Any]]: ...

    async def get(self, collection: str, record_id: str) -> dict[str, Any]: ...

    async def create(self, collection: str, body: dict[str, Any]) -> dict[str, Any]: ...

    async def update(self, collection: str, record_id: str, body: dict[str, Any]) -> dict[str, Any]: ...

    async def delete(self, collection: str, record_id: str) -> None: ...


def _humanize_field(name: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in name.split("_") if word)


def _extract_message(body: Any) -> str:
    if not isinstance(body, dict):
        return ""
    data = body.get("data")
    if isinstance(data, dict):
        field_errors = [
            f"{_humanize_field(field)}: {err['message']}"
            for field, err in data.items()
            if isinstance(err, dict) and err.get("message")
        ]
        if field_errors:
            return "\n".join(field_errors)
    if body.get("message"):
        return str(body["message"])
    if isinstance(data, str):
        return data
    return ""


def error_from_response(status_code: int, body: Any) -> AppError:
    """Map an upstream error response onto the error taxonomy."""
    message = _extract_message(body) or None
    details = {"status_code": status_code, "response": body}
    if status_code == 401:
        return AuthenticationError(message, details=details)
    if status_code == 403:
        return PermissionDeniedError(message, details=details)
    if status_code == 404:
        return NotFoundError(message, details=details)
    if 400 <= status_code < 500:
        return ValidationError(message, details=details)
    if status_code >= 500:
        return ServerError(message, details=details)
    return UnknownError(message or f"Unexpected HTTP {status_code}", details=details)


class PocketBaseClient:
    """Async client for a PocketBase-style record store.

    Only transport failures are retried, with linear backoff; every other
    failure surfaces on the first attempt as a typed ``AppError``.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        token: str | None = None,
        retry_attempts: int = 2,
        retry_backoff_seconds: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._http = http
        self._token = token
        self._retry_attempts = max(retry_attempts, 0)
        self._retry_backoff_seconds = retry_backoff_seconds
        self._sleep = sleep

    def with_token(self, token: str | None) -> "PocketBaseClient":
        return PocketBaseClient(
            self._http,
            token=token,
            retry_attempts=self._retry_attempts,
            retry_backoff_seconds=self._retry_backoff_seconds,
            sleep=self._sleep,
        )

    async def list(
        self, collection: str, *, filter: str = "", sort: str = "", page: int = 1, per_page: int = 20
    ) -> RecordPage:
        params: dict[str, Any] = {"page": page, "perPage": per_page}
        if filter:
            params["filter"] = filter
        if sort:
            params["sort"] = sort
        body = await self._request("GET", f"/api/collections/{collection}/records", params=params)
        return RecordPage.model_validate(body or {})

    async def list_all(
        self, collection: str, *, filter: str = "", sort: str = "", batch: int = 200
    ) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        page = 1
        while True:
            result = await self.list(collection, filter=filter, sort=sort, page=page, per_page=batch)
            items.extend(result.items)
            if not result.items or result.page >= result.total_pages:
                return items
            page += 1

    async def get(self, collection: str, record_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/api/collections/{collection}/records/{record_id}")

    async def create(self, collection: str, body: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", f"/api/collections/{collection}/records", json=body)

    async def update(self, collection: str, record_id: str, body: dict[str, Any]) -> dict[str, Any]:
        return await self._request("PATCH", f"/api/collections/{collection}/records/{record_id}", json=body)

    async def delete(self, collection: str, record_id: str) -> None:
        await self._request("DELETE", f"/api/collections/{collection}/records/{record_id}")

    async def health(self) -> bool:
        await self._request("GET", "/api/health")
        return True

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        attempt = 0
        while True:
            try:
                return await self._send(method, path, **kwargs)
            except NetworkError as exc:
                if attempt >= self._retry_attempts:
                    raise
                attempt += 1
                logger.warning(
                    "%s %s failed (%s); retry %s/%s", method, path, exc.message, attempt, self._retry_attempts
                )
                await self._sleep(self._retry_backoff_seconds * attempt)

    async def _send(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = {"Authorization": self._token} if self._token else None
        try:
            response = await self._http.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as exc:
            raise NetworkError("Request timed out", details={"path": path}) from exc
        except httpx.TransportError as exc:
            raise NetworkError(str(exc) or None, details={"path": path}) from exc

        if response.status_code >= 300:
            try:
                body = response.json()
            except ValueError:
                body = response.text
            error = error_from_response(response.status_code, body)
            log = logger.warning if response.status_code >= 500 else logger.info
            log("%s %s -> %s %s", method, path, response.status_code, error.kind.value)
            raise error

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise UnknownError("Record store returned a malformed body", details={"path": path}) from exc
