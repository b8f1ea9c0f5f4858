"""
Remote delivery client for the attendance system of record.

The engine only relies on three logical operations:
    create_session(subject_id, meeting_context) -> RemoteSession
    end_session(external_id, ended_at)           -> ack dict
    submit_batch(kind, external_id, payload)     -> ack dict

Each call is a single attempt. Retrying is the sync queue's job, so this
client never loops on failures; it raises RemoteDeliveryError with a
`recoverable` flag derived from the response.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import httpx

from attendance_engine.config import settings
from attendance_engine.infrastructure.observability.logging import get_logger
from attendance_engine.models.domain.records import str_to_dt
from attendance_engine.models.domain.sync_domain import (
    KIND_ATTENDANCE_BATCH,
    KIND_JOIN_EVENT,
    KIND_LEAVE_EVENT,
    KIND_PARTICIPATION_BATCH,
)

logger = get_logger(__name__)

RECOVERABLE_STATUS_CODES = {408, 429}


class RemoteDeliveryError(Exception):
    """Raised when the remote service rejects or cannot be reached for a call."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        recoverable: bool = True,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.recoverable = recoverable
        self.response_data = response_data or {}


@dataclass(slots=True)
class RemoteSession:
    external_id: str
    started_at: datetime


class DeliveryClient:
    """Interface the engine depends on; HttpDeliveryClient is the production implementation."""

    async def create_session(self, subject_id: str, meeting_context: dict[str, Any]) -> RemoteSession:
        raise NotImplementedError

    async def end_session(self, external_id: str, ended_at: datetime) -> dict:
        raise NotImplementedError

    async def submit_batch(self, kind: str, external_id: str, payload: dict[str, Any]) -> dict:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class HttpDeliveryClient(DeliveryClient):
    """httpx implementation of the remote contract."""

    BATCH_ENDPOINTS = {
        KIND_ATTENDANCE_BATCH: "/sessions/{id}/attendance/bulk",
        KIND_PARTICIPATION_BATCH: "/participation/sessions/{id}/logs/bulk",
        KIND_JOIN_EVENT: "/sessions/{id}/attendance/join",
        KIND_LEAVE_EVENT: "/sessions/{id}/attendance/leave",
    }

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.REMOTE_API_BASE_URL).rstrip("/")
        self._token = token if token is not None else settings.REMOTE_API_TOKEN
        self._client = self._create_client(timeout or settings.REMOTE_REQUEST_TIMEOUT, transport)

    def _create_client(
        self, timeout: float, transport: httpx.AsyncBaseTransport | None
    ) -> httpx.AsyncClient:
        limits = httpx.Limits(max_keepalive_connections=5, max_connections=10)
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            limits=limits,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def _get_headers(self) -> dict:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self._token:
            headers["X-Extension-Token"] = self._token
        return headers

    async def _request(self, method: str, path: str, body: dict[str, Any]) -> dict:
        try:
            response = await self._client.request(
                method, path, json=body, headers=self._get_headers()
            )
        except httpx.RequestError as e:
            logger.warning("Remote request error", method=method, path=path, error=str(e))
            raise RemoteDeliveryError(f"Request failed: {e}", recoverable=True) from e

        return self._handle_response(response, f"{method} {path}")

    def _handle_response(self, response: httpx.Response, operation: str) -> dict:
        """
        Parse a response or raise RemoteDeliveryError.

        5xx, 408 and 429 are recoverable; other 4xx are not.
        """
        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {}

        if response.is_success:
            if isinstance(data, dict) and data.get("success") is False:
                message = data.get("message") or data.get("error") or "Remote rejected request"
                raise RemoteDeliveryError(message, response.status_code, False, data)
            return data if isinstance(data, dict) else {"data": data}

        message = "Remote API error"
        if isinstance(data, dict):
            message = data.get("message") or data.get("error") or message
        recoverable = (
            response.status_code >= 500 or response.status_code in RECOVERABLE_STATUS_CODES
        )
        logger.warning(
            "Remote API call failed",
            operation=operation,
            status_code=response.status_code,
            recoverable=recoverable,
            error=message,
        )
        raise RemoteDeliveryError(
            f"{message} (HTTP {response.status_code})",
            status_code=response.status_code,
            recoverable=recoverable,
            response_data=data if isinstance(data, dict) else {},
        )

    async def create_session(self, subject_id: str, meeting_context: dict[str, Any]) -> RemoteSession:
        body = {
            "class_id": subject_id,
            "meeting_link": meeting_context.get("meeting_id"),
            "platform": meeting_context.get("platform"),
            "started_at": datetime.now(UTC).isoformat(),
            "additional_data": meeting_context.get("additional_data", {}),
        }
        data = await self._request("POST", "/sessions/start-from-meeting", body)

        session = (data.get("data") or {}).get("session") or {}
        external_id = session.get("id")
        if not external_id:
            raise RemoteDeliveryError("Remote did not return a session id", recoverable=False)

        started_at = str_to_dt(session.get("started_at")) or datetime.now(UTC)
        logger.info("Remote session created", external_id=external_id, subject_id=subject_id)
        return RemoteSession(external_id=str(external_id), started_at=started_at)

    async def end_session(self, external_id: str, ended_at: datetime) -> dict:
        return await self._request(
            "PUT",
            f"/sessions/{external_id}/end-with-timestamp",
            {"ended_at": ended_at.isoformat()},
        )

    async def submit_batch(self, kind: str, external_id: str, payload: dict[str, Any]) -> dict:
        endpoint = self.BATCH_ENDPOINTS.get(kind)
        if endpoint is None:
            raise RemoteDeliveryError(f"Unknown delivery kind: {kind}", recoverable=False)
        return await self._request("POST", endpoint.format(id=external_id), payload)
