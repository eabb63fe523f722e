"""
Async REST client for the messaging API, used by the reconciler and composer.

Server errors come back as the same exception classes the server raised
(`ChatClosed`, `Forbidden`, ...), matched on the `code` field of the error
body. Network failures become `TransportUnavailable`.
"""
import logging
from typing import List, Optional

import httpx

from bookingchat.core.exceptions import ERRORS_BY_CODE, ChatServiceError, TransportUnavailable

logger = logging.getLogger(__name__)


class ApiError(ChatServiceError):
    """Error response without a known domain code (401, request validation, 500...)."""
    code = "api_error"

    def __init__(self, status_code: int, detail=None):
        super().__init__(detail)
        self.status_code = status_code


def error_from_response(response: httpx.Response) -> ChatServiceError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    detail = body.get("detail") or response.reason_phrase
    error_cls = ERRORS_BY_CODE.get(body.get("code"))
    if error_cls is not None:
        return error_cls(detail if isinstance(detail, str) else None)
    return ApiError(response.status_code, detail if isinstance(detail, str) else str(detail))


class ChatApiClient:
    def __init__(self, base_url: str, token: str, transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 10.0):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {token}"},
            transport=transport,
            timeout=timeout,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            logger.warning("[ChatApi] %s %s failed: %s", method, path, e)
            raise TransportUnavailable(str(e) or None) from e
        if response.is_error:
            raise error_from_response(response)
        return response

    async def _json(self, method: str, path: str, **kwargs):
        return (await self._request(method, path, **kwargs)).json()

    # --- Booking chats ---

    async def get_chat(self, chat_id: int) -> dict:
        return await self._json("GET", f"/v1/chats/{chat_id}")

    async def get_chat_for_booking(self, booking_id: int) -> dict:
        return await self._json("GET", f"/v1/chats/booking/{booking_id}")

    async def list_messages(self, chat_id: int) -> List[dict]:
        return await self._json("GET", f"/v1/chats/{chat_id}/messages")

    async def post_message(
        self,
        chat_id: int,
        content: str = "",
        is_private: bool = False,
        is_quotation: bool = False,
        quotation_amount: Optional[int] = None,
        attachment_url: Optional[str] = None,
        attachment_type: Optional[str] = None,
    ) -> dict:
        body = {"content": content, "isPrivate": is_private, "isQuotation": is_quotation}
        if quotation_amount is not None:
            body["quotationAmount"] = quotation_amount
        if attachment_url is not None:
            body["attachmentUrl"] = attachment_url
            body["attachmentType"] = attachment_type
        return await self._json("POST", f"/v1/chats/{chat_id}/messages", json=body)

    async def close_chat(self, chat_id: int) -> dict:
        return await self._json("POST", f"/v1/chats/{chat_id}/close")

    async def download_transcript(self, chat_id: int) -> str:
        return (await self._request("GET", f"/v1/chats/{chat_id}/transcript")).text

    # --- Internal chats ---

    async def open_direct_chat(self, participant_id: int) -> dict:
        return await self._json("POST", "/v1/internal-chats", json={"participantId": participant_id})

    async def list_internal_chats(self) -> List[dict]:
        return await self._json("GET", "/v1/internal-chats")

    async def list_internal_users(self) -> List[dict]:
        return await self._json("GET", "/v1/internal-chats/users")

    async def list_internal_messages(self, chat_id: int) -> List[dict]:
        return await self._json("GET", f"/v1/internal-chats/{chat_id}/messages")

    async def send_internal_message(
        self,
        chat_id: int,
        content: str = "",
        attachment_url: Optional[str] = None,
        attachment_type: Optional[str] = None,
    ) -> dict:
        body = {"content": content}
        if attachment_url is not None:
            body["attachmentUrl"] = attachment_url
            body["attachmentType"] = attachment_type
        return await self._json("POST", f"/v1/internal-chats/{chat_id}/messages", json=body)

    async def mark_internal_read(self, chat_id: int) -> dict:
        return await self._json("POST", f"/v1/internal-chats/{chat_id}/read")

    # --- Uploads ---

    async def upload(self, data: bytes, filename: str, mime_type: str) -> dict:
        files = {"file": (filename, data, mime_type)}
        return await self._json("POST", "/v1/uploads", files=files)

    async def upload_status(self) -> dict:
        return await self._json("GET", "/v1/uploads/status")
