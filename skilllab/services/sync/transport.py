"""
Remote store transports used by the sync coordinator.

``RemoteStore`` is the document-store contract: conditional put and delete
guarded by the stored edit count, plus an equality/membership query.
``BoundRemoteStore`` talks to an in-process ``RemoteDocumentStore``;
``HttpRemoteStore`` talks to the records API over aiohttp.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import aiohttp

from skilllab.core.config import settings
from skilllab.core.errors import TransientNetworkError
from skilllab.models.records import RecordKind
from skilllab.schemas.sync import RecordQuery, RemoteWriteResult, RemoteWriteRequest
from skilllab.security.session import SessionContext

logger = logging.getLogger(__name__)


class RemoteStore(ABC):
    """Authoritative shared document store as seen by one client session."""

    @abstractmethod
    async def put(self, document: Dict[str, Any], expected_edit_count: Optional[int]) -> RemoteWriteResult:
        """
        Write ``document`` if the stored edit count equals ``expected_edit_count``.

        ``expected_edit_count`` is None for a create. Rejections come back as a
        result with ``accepted=False`` and a reason; connectivity problems raise
        ``TransientNetworkError``.
        """

    @abstractmethod
    async def delete(self, kind: RecordKind, record_id: str, expected_edit_count: int) -> RemoteWriteResult:
        pass

    @abstractmethod
    async def query(self, query: RecordQuery) -> List[Dict[str, Any]]:
        pass

    async def fetch(self, kind: RecordKind, record_id: str) -> Optional[Dict[str, Any]]:
        """Authoritative copy of one record, or None when it is gone or not visible."""
        documents = await self.query(RecordQuery(kind=kind, equals={"id": record_id}))
        return documents[0] if documents else None


class BoundRemoteStore(RemoteStore):
    """In-process remote store bound to the acting session."""

    def __init__(self, document_store, actor: SessionContext):
        self.document_store = document_store
        self.actor = actor

    async def put(self, document: Dict[str, Any], expected_edit_count: Optional[int]) -> RemoteWriteResult:
        return await self.document_store.put(self.actor, document, expected_edit_count)

    async def delete(self, kind: RecordKind, record_id: str, expected_edit_count: int) -> RemoteWriteResult:
        return await self.document_store.delete(self.actor, kind, record_id, expected_edit_count)

    async def query(self, query: RecordQuery) -> List[Dict[str, Any]]:
        return await self.document_store.query(self.actor, query)


class HttpRemoteStore(RemoteStore):
    """aiohttp client for the ``/api/v1/records`` service."""

    # Statuses whose body is a RemoteWriteResult rejection
    REJECTION_STATUSES = (403, 404, 409, 422)

    def __init__(self, token: str, base_url: Optional[str] = None, timeout: Optional[float] = None):
        self.base_url = base_url or settings.REMOTE_BASE_URL
        self.token = token
        self.timeout = timeout or settings.REMOTE_TIMEOUT_SECONDS
        self._http_session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        if self._http_session:
            await self._http_session.close()
            self._http_session = None

    async def put(self, document: Dict[str, Any], expected_edit_count: Optional[int]) -> RemoteWriteResult:
        body = RemoteWriteRequest(document=document, expected_edit_count=expected_edit_count)
        endpoint = f"/api/v1/records/{document['kind']}/{document['id']}"
        status, data = await self._request("PUT", endpoint, json=body.model_dump())
        return self._write_result(status, data, endpoint)

    async def delete(self, kind: RecordKind, record_id: str, expected_edit_count: int) -> RemoteWriteResult:
        endpoint = f"/api/v1/records/{RecordKind(kind).value}/{record_id}"
        status, data = await self._request(
            "DELETE", endpoint, params={"expected_edit_count": str(expected_edit_count)}
        )
        return self._write_result(status, data, endpoint)

    async def query(self, query: RecordQuery) -> List[Dict[str, Any]]:
        status, data = await self._request("POST", "/api/v1/records/query", json=query.model_dump(mode="json"))
        if status != 200:
            raise TransientNetworkError(f"Query failed with HTTP {status}", details={"body": data})
        return data.get("records", [])

    def _write_result(self, status: int, data: Dict[str, Any], endpoint: str) -> RemoteWriteResult:
        if status == 200 or status in self.REJECTION_STATUSES:
            return RemoteWriteResult(**data)
        raise TransientNetworkError(f"{endpoint} returned HTTP {status}", details={"body": data})

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={
                    'User-Agent': 'SkillLab-Records/1.0',
                    'Accept': 'application/json',
                    'Authorization': f"Bearer {self.token}"
                }
            )
        return self._http_session

    async def _request(self, method: str, endpoint: str, **kwargs):
        session = await self._ensure_session()
        url = urljoin(self.base_url, endpoint)
        try:
            async with session.request(method, url, **kwargs) as response:
                if response.status == 401:
                    # Expired token; the entry stays queued until the user signs in again
                    raise TransientNetworkError(f"{method} {endpoint}: session token rejected")
                try:
                    data = await response.json()
                except (aiohttp.ContentTypeError, ValueError):
                    data = {"detail": await response.text()}
                return response.status, data
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Remote store request {method} {endpoint} failed: {e}")
            raise TransientNetworkError(
                f"Remote store unreachable: {e}", original_exception=e
            )
