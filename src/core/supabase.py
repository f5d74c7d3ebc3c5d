from __future__ import annotations

import logging
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import httpx

from src.core.config import get_settings
from src.core.deadline import check_deadline, remaining_seconds
from src.core.errors import ConflictError, InternalError, RequestTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class SupabaseClient:
    _shared_client: httpx.Client | None = None
    _client_lock: Lock = Lock()

    def __init__(self) -> None:
        settings = get_settings()
        self.base_url = settings.supabase_url.rstrip("/") + "/rest/v1"
        self.api_key = settings.supabase_service_role_key or settings.supabase_anon_key
        if not self.api_key:
            raise ValueError("Supabase API key is required")
        self._client = self._get_shared_client()

    @classmethod
    def _get_shared_client(cls) -> httpx.Client:
        if cls._shared_client is not None:
            return cls._shared_client
        with cls._client_lock:
            if cls._shared_client is None:
                cls._shared_client = httpx.Client(
                    timeout=DEFAULT_TIMEOUT_SECONDS,
                    limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
                )
        return cls._shared_client

    def _headers(self, write: bool = False) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
        }
        if write:
            headers["Content-Type"] = "application/json"
            headers["Prefer"] = "return=representation"
        return headers

    def _send(self, method: str, url: str, headers: Dict[str, str], json: Any = None) -> httpx.Response:
        check_deadline()
        try:
            response = self._client.request(
                method,
                url,
                headers=headers,
                json=json,
                timeout=remaining_seconds(DEFAULT_TIMEOUT_SECONDS),
            )
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError("Document store did not answer before the request deadline") from exc
        except httpx.HTTPError as exc:
            logger.error("Document store %s %s failed: %s", method, url, exc)
            raise InternalError("Document store request failed") from exc
        if response.status_code == 409:
            raise ConflictError("Unique constraint violated", details={"store": response.text[:500]})
        if response.is_error:
            logger.error(
                "Document store %s %s returned %d: %s", method, url, response.status_code, response.text[:500]
            )
            raise InternalError("Document store request failed")
        return response

    @staticmethod
    def _rows(response: httpx.Response) -> List[Dict[str, Any]]:
        if not response.content:
            return []
        data = response.json()
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            return [data]
        return []

    def select(
        self,
        table: str,
        select: str,
        filters: Optional[List[Tuple[str, str]]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        order: Optional[str] = None,
        count: bool = False,
    ) -> Tuple[List[Dict[str, Any]], Optional[int]]:
        params: List[Tuple[str, str]] = [("select", select), *(filters or [])]
        if limit is not None:
            params.append(("limit", str(limit)))
        if offset is not None:
            params.append(("offset", str(offset)))
        if order:
            params.append(("order", order))

        headers = self._headers()
        if count:
            headers["Prefer"] = "count=exact"
        response = self._send("GET", self._url(table, params), headers)
        return self._rows(response), self._total_count(response) if count else None

    @staticmethod
    def _total_count(response: httpx.Response) -> Optional[int]:
        # content-range looks like "0-19/57"; "*" when the store skipped counting.
        total = response.headers.get("content-range", "").rpartition("/")[2]
        return int(total) if total.isdigit() else None

    def _url(self, table: str, params: Optional[List[Tuple[str, str]]] = None) -> str:
        url = f"{self.base_url}/{table}"
        return f"{url}?{urlencode(params, doseq=True)}" if params else url

    def insert(self, table: str, payload: Dict[str, Any] | List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return self._rows(self._send("POST", self._url(table), self._headers(write=True), json=payload))

    def update(
        self,
        table: str,
        payload: Dict[str, Any],
        filters: List[Tuple[str, str]],
    ) -> List[Dict[str, Any]]:
        if not filters:
            raise ValueError("Refusing to update without filters")
        return self._rows(self._send("PATCH", self._url(table, filters), self._headers(write=True), json=payload))

    def delete(self, table: str, filters: List[Tuple[str, str]]) -> List[Dict[str, Any]]:
        if not filters:
            raise ValueError("Refusing to delete without filters")
        return self._rows(self._send("DELETE", self._url(table, filters), self._headers(write=True)))
