"""Qdrant REST adapter.

Issues one HTTP request per operation against a single Qdrant instance.
The adapter owns a pooled ``httpx.AsyncClient`` and no other cross-call
state; the cluster registry keeps one adapter per profile for the process
lifetime.

Notes
-----
- Qdrant wraps responses as ``{"result": ..., "status": "ok", "time": ...}``;
  the adapter returns the ``result`` member.
- Only connection failures are retried. A request that may have reached
  the server (read timeout, error status) is never repeated, because most
  operations here mutate data.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from .. import __version__
from ..errors import BackendError, BackendUnavailableError
from ..utils.correlation import get_request_id
from ..utils.redact import redact_url
from . import PointId

logger = logging.getLogger(__name__)

# Extra client-side slack on top of a server-side ``timeout`` query param
_TIMEOUT_MARGIN_SECONDS = 5.0


class QdrantAdapter:
    """Adapter for the Qdrant REST API.

    Parameters
    ----------
    base_url: str
        Base URL of the Qdrant HTTP API (e.g., "http://localhost:6333").
    api_key: Optional[str]
        Sent as the ``api-key`` header when non-empty.
    timeout: float
        Default request timeout in seconds.
    transport: Optional[httpx.AsyncBaseTransport]
        Custom transport, used by tests to serve requests in memory.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        *,
        max_retries: int = 2,
        backoff_initial_ms: int = 200,
        backoff_multiplier: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._shown_url = redact_url(self.base_url)
        self._timeout_seconds = float(timeout)
        self._max_retries = max(0, int(max_retries))
        self._backoff_initial_ms = max(0, int(backoff_initial_ms))
        self._backoff_multiplier = max(1.0, float(backoff_multiplier))
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self._timeout_seconds,
            headers=self._headers(api_key),
            transport=transport,
        )
        logger.info(
            "qdrant.adapter.init",
            extra={
                "base_url": self._shown_url,
                "timeout_seconds": self._timeout_seconds,
                "authenticated": bool(api_key),
            },
        )

    @staticmethod
    def _headers(api_key: Optional[str]) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": f"qdrant-mcp-server/{__version__}",
        }
        if api_key:
            headers["api-key"] = api_key
        return headers

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Send one request and return the unwrapped ``result``.

        Parameters
        ----------
        timeout: Optional[float]
            Caller-supplied timeout in seconds. Forwarded to Qdrant as the
            ``timeout`` query parameter; the client-side timeout is widened
            so the server gets to answer first.

        Raises
        ------
        BackendError
            Qdrant answered with a non-2xx status.
        BackendUnavailableError
            Qdrant could not be reached or did not answer in time.
        """
        query = {k: v for k, v in (params or {}).items() if v is not None}
        request_timeout: Any = httpx.USE_CLIENT_DEFAULT
        if timeout is not None:
            query["timeout"] = int(timeout)
            request_timeout = max(
                self._timeout_seconds, float(timeout) + _TIMEOUT_MARGIN_SECONDS
            )

        logger.debug(
            "qdrant.http.request",
            extra={"req_id": get_request_id(), "method": method, "path": path},
        )
        attempt = 0
        while True:
            try:
                resp = await self._client.request(
                    method,
                    path,
                    json=json,
                    params=query or None,
                    timeout=request_timeout,
                )
                resp.raise_for_status()
                break
            except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
                if attempt >= self._max_retries:
                    raise BackendUnavailableError(
                        f"Qdrant at {self._shown_url} is unreachable: {exc}"
                    ) from exc
                delay = (self._backoff_initial_ms / 1000.0) * (
                    self._backoff_multiplier**attempt
                )
                logger.warning(
                    "qdrant.http.connect_retry",
                    extra={
                        "req_id": get_request_id(),
                        "path": path,
                        "attempt": attempt + 1,
                        "max_retries": self._max_retries,
                        "delay_seconds": delay,
                    },
                )
                await asyncio.sleep(delay)
                attempt += 1
            except httpx.HTTPStatusError as exc:
                raise self._status_error(path, exc.response) from exc
            except httpx.TimeoutException as exc:
                raise BackendUnavailableError(
                    f"Qdrant at {self._shown_url} timed out on {method} {path}"
                ) from exc
            except httpx.TransportError as exc:
                raise BackendUnavailableError(
                    f"Qdrant at {self._shown_url} transport error: {exc}"
                ) from exc

        logger.debug(
            "qdrant.http.response",
            extra={
                "req_id": get_request_id(),
                "path": path,
                "status_code": resp.status_code,
            },
        )
        if not resp.content:
            return None
        data = resp.json()
        if isinstance(data, dict) and "result" in data:
            return data["result"]
        return data

    def _status_error(self, path: str, response: httpx.Response) -> BackendError:
        text = response.text or ""
        body_preview = text if len(text) <= 500 else text[:500] + "..."
        message = ""
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            status = body.get("status")
            if isinstance(status, dict):
                message = str(status.get("error") or "")
            elif isinstance(status, str) and status != "ok":
                message = status
        if not message:
            message = body_preview or response.reason_phrase
        logger.error(
            "qdrant.http.status_error",
            extra={
                "req_id": get_request_id(),
                "path": path,
                "status": response.status_code,
                "body_preview": body_preview,
            },
        )
        return BackendError(
            f"Qdrant returned {response.status_code}: {message}",
            status_code=response.status_code,
        )

    @staticmethod
    def _collection_path(collection_name: str, suffix: str = "") -> str:
        return f"/collections/{quote(collection_name, safe='')}{suffix}"

    # ---------------- Collections ----------------
    async def list_collections(self) -> Dict[str, Any]:
        return await self._request("GET", "/collections")

    async def get_collection(self, collection_name: str) -> Dict[str, Any]:
        return await self._request("GET", self._collection_path(collection_name))

    async def collection_exists(self, collection_name: str) -> bool:
        result = await self._request(
            "GET", self._collection_path(collection_name, "/exists")
        )
        return bool(isinstance(result, dict) and result.get("exists"))

    async def create_collection(
        self,
        collection_name: str,
        config: Dict[str, Any],
        *,
        timeout: Optional[int] = None,
    ) -> Any:
        return await self._request(
            "PUT",
            self._collection_path(collection_name),
            json=config,
            timeout=timeout,
        )

    async def update_collection(
        self,
        collection_name: str,
        config: Dict[str, Any],
        *,
        timeout: Optional[int] = None,
    ) -> Any:
        return await self._request(
            "PATCH",
            self._collection_path(collection_name),
            json=config,
            timeout=timeout,
        )

    async def delete_collection(
        self, collection_name: str, *, timeout: Optional[int] = None
    ) -> Any:
        return await self._request(
            "DELETE", self._collection_path(collection_name), timeout=timeout
        )

    async def get_collection_cluster_info(self, collection_name: str) -> Any:
        return await self._request(
            "GET", self._collection_path(collection_name, "/cluster")
        )

    # ---------------- Points ----------------
    async def upsert_points(
        self,
        collection_name: str,
        points: List[Dict[str, Any]],
        *,
        wait: Optional[bool] = None,
        ordering: Optional[str] = None,
    ) -> Any:
        return await self._request(
            "PUT",
            self._collection_path(collection_name, "/points"),
            json={"points": points},
            params={"wait": wait, "ordering": ordering},
        )

    async def search_points(
        self,
        collection_name: str,
        request: Dict[str, Any],
        *,
        timeout: Optional[int] = None,
    ) -> Any:
        return await self._request(
            "POST",
            self._collection_path(collection_name, "/points/search"),
            json=request,
            timeout=timeout,
        )

    async def scroll_points(
        self,
        collection_name: str,
        request: Dict[str, Any],
        *,
        timeout: Optional[int] = None,
    ) -> Dict[str, Any]:
        return await self._request(
            "POST",
            self._collection_path(collection_name, "/points/scroll"),
            json=request,
            timeout=timeout,
        )

    async def count_points(
        self,
        collection_name: str,
        request: Dict[str, Any],
        *,
        timeout: Optional[int] = None,
    ) -> Dict[str, Any]:
        return await self._request(
            "POST",
            self._collection_path(collection_name, "/points/count"),
            json=request,
            timeout=timeout,
        )

    async def recommend_points(
        self,
        collection_name: str,
        request: Dict[str, Any],
        *,
        timeout: Optional[int] = None,
    ) -> Any:
        return await self._request(
            "POST",
            self._collection_path(collection_name, "/points/recommend"),
            json=request,
            timeout=timeout,
        )

    async def get_point(self, collection_name: str, point_id: PointId) -> Any:
        return await self._request(
            "GET",
            self._collection_path(
                collection_name, f"/points/{quote(str(point_id), safe='')}"
            ),
        )

    async def delete_points(
        self,
        collection_name: str,
        selector: Dict[str, Any],
        *,
        wait: Optional[bool] = None,
        ordering: Optional[str] = None,
    ) -> Any:
        return await self._request(
            "POST",
            self._collection_path(collection_name, "/points/delete"),
            json=selector,
            params={"wait": wait, "ordering": ordering},
        )

    # ---------------- Payload ----------------
    async def set_payload(
        self, collection_name: str, body: Dict[str, Any], *, wait: Optional[bool] = None
    ) -> Any:
        return await self._request(
            "POST",
            self._collection_path(collection_name, "/points/payload"),
            json=body,
            params={"wait": wait},
        )

    async def overwrite_payload(
        self, collection_name: str, body: Dict[str, Any], *, wait: Optional[bool] = None
    ) -> Any:
        return await self._request(
            "PUT",
            self._collection_path(collection_name, "/points/payload"),
            json=body,
            params={"wait": wait},
        )

    async def delete_payload(
        self, collection_name: str, body: Dict[str, Any], *, wait: Optional[bool] = None
    ) -> Any:
        return await self._request(
            "POST",
            self._collection_path(collection_name, "/points/payload/delete"),
            json=body,
            params={"wait": wait},
        )

    async def clear_payload(
        self, collection_name: str, body: Dict[str, Any], *, wait: Optional[bool] = None
    ) -> Any:
        return await self._request(
            "POST",
            self._collection_path(collection_name, "/points/payload/clear"),
            json=body,
            params={"wait": wait},
        )
