"""
Dify client adapter - Infrastructure implementation of the ChatBackend protocol over httpx.
"""

from __future__ import annotations
import logging
import mimetypes
import os
from typing import List, Dict, Any, Optional

import httpx

from ...domain.interfaces.chat_backend import ChatRequest, UploadedFile
from ...utils import BackendError, StreamTransportError
from ..config.settings import BackendSettings
from .reader import HttpxStreamReader


def build_chat_payload(request: ChatRequest, user: str) -> Dict[str, Any]:
    """Request body for a streaming chat message."""
    return {
        "inputs": dict(request.inputs),
        "query": request.query,
        "user": user,
        "conversation_id": request.conversation_id or "",
        "response_mode": "streaming",
        "files": [
            {"type": "document", "transfer_method": "local_file", "upload_file_id": file_id}
            for file_id in request.file_ids
        ],
    }


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:500] or response.reason_phrase
    if isinstance(data, dict):
        return str(data.get("message") or data.get("code") or data)
    return str(data)


class DifyClient:
    """Async adapter for the Dify chat-messages API."""

    def __init__(
        self,
        settings: BackendSettings,
        http_client: Optional[httpx.AsyncClient] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._settings = settings
        self._logger = logger or logging.getLogger(__name__)
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=settings.connect_timeout_s,
                read=settings.read_timeout_s,
                write=settings.connect_timeout_s,
                pool=settings.connect_timeout_s,
            ),
        )
        self._logger.info(f"Dify client initialized - URL: {settings.api_url}")

    @property
    def user(self) -> str:
        return self._settings.user_id

    def _url(self, path: str) -> str:
        return f"{self._settings.api_url}{path}"

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._settings.api_key}"}

    async def _check(self, response: httpx.Response) -> None:
        if response.status_code >= 400:
            await response.aread()
            message = _error_message(response)
            await response.aclose()
            raise BackendError(response.status_code, message)

    async def open_chat_stream(self, request: ChatRequest) -> HttpxStreamReader:
        """POST /chat-messages in streaming mode and hand back the reader."""
        payload = build_chat_payload(request, self.user)
        headers = {**self._headers(), "Accept": "text/event-stream"}
        http_request = self._client.build_request("POST", self._url("/chat-messages"), json=payload, headers=headers)
        try:
            response = await self._client.send(http_request, stream=True)
        except httpx.HTTPError as e:
            raise StreamTransportError(f"Could not open stream: {e}") from e
        await self._check(response)
        self._logger.debug(f"Chat stream opened ({response.status_code})")
        return HttpxStreamReader(response, logger=self._logger)

    async def stop_generation(self, task_id: str) -> None:
        """POST /chat-messages/{task_id}/stop."""
        response = await self._client.post(
            self._url(f"/chat-messages/{task_id}/stop"),
            json={"user": self.user},
            headers=self._headers(),
            timeout=self._settings.stop_timeout_s,
        )
        await self._check(response)
        self._logger.debug(f"Stop requested for task {task_id}")

    async def fetch_suggestions(self, message_id: str) -> List[str]:
        """GET /messages/{message_id}/suggested."""
        response = await self._client.get(
            self._url(f"/messages/{message_id}/suggested"),
            params={"user": self.user},
            headers=self._headers(),
        )
        await self._check(response)
        data = response.json().get("data") or []
        return [str(s) for s in data if s]

    async def upload_file(self, path: str) -> UploadedFile:
        """POST /files/upload as multipart form data."""
        name = os.path.basename(path)
        mime = mimetypes.guess_type(name)[0] or "application/octet-stream"
        with open(path, "rb") as fh:
            content = fh.read()
        response = await self._client.post(
            self._url("/files/upload"),
            files={"file": (name, content, mime)},
            data={"user": self.user},
            headers=self._headers(),
        )
        await self._check(response)
        data = response.json()
        self._logger.info(f"Uploaded file {name} as {data.get('id')}")
        return UploadedFile(id=str(data["id"]), name=str(data.get("name") or name))

    async def fetch_messages(self, conversation_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """GET /messages for a conversation, oldest first."""
        response = await self._client.get(
            self._url("/messages"),
            params={"conversation_id": conversation_id, "user": self.user, "limit": limit},
            headers=self._headers(),
        )
        await self._check(response)
        items = response.json().get("data") or []
        return [item for item in items if isinstance(item, dict)]

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
