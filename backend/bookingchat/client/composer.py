"""
Sending side of the client: text, quotations, attachments and voice notes.

Attachments go out in two steps. The bytes are uploaded first; only when
the upload succeeds is a message posted that refers to the returned url
and type. A failed upload raises UploadFailed and posts nothing.
"""
import logging
from datetime import datetime
from typing import Optional

from bookingchat.client.api import ChatApiClient
from bookingchat.core.exceptions import TransportUnavailable, UploadFailed, ValidationFailed
from bookingchat.services.media_service import DEFAULT_MIME_TYPE, is_voice

logger = logging.getLogger(__name__)

VOICE_MIME_TYPE = "audio/webm"
VOICE_MESSAGE_TEXT = "Voice message"
ATTACHMENT_MESSAGE_TEXT = "Shared a file"


class MessageComposer:
    def __init__(self, api: ChatApiClient):
        self.api = api

    async def _upload(self, data: bytes, filename: str, mime_type: str) -> dict:
        try:
            return await self.api.upload(data, filename, mime_type)
        except TransportUnavailable as e:
            logger.error("[Composer] upload of %s failed: %s", filename, e.detail)
            raise UploadFailed() from e

    async def _post(self, chat_id: int, internal: bool, content: str, is_private: bool = False, **attachment) -> dict:
        if internal:
            return await self.api.send_internal_message(chat_id, content=content, **attachment)
        return await self.api.post_message(chat_id, content=content, is_private=is_private, **attachment)

    # --- Text ---

    async def send_text(self, chat_id: int, content: str, is_private: bool = False, internal: bool = False) -> dict:
        if not content.strip():
            raise ValidationFailed("Message content is required")
        return await self._post(chat_id, internal, content.strip(), is_private)

    async def send_quotation(self, chat_id: int, amount: int, description: str = "", is_private: bool = False) -> dict:
        """Each call creates a new, independent quotation; earlier ones are left as they are."""
        return await self.api.post_message(
            chat_id,
            content=description.strip(),
            is_private=is_private,
            is_quotation=True,
            quotation_amount=amount,
        )

    # --- Media ---

    async def send_attachment(
        self,
        chat_id: int,
        data: bytes,
        filename: str,
        mime_type: Optional[str] = None,
        content: str = "",
        is_private: bool = False,
        internal: bool = False,
    ) -> dict:
        uploaded = await self._upload(data, filename, mime_type or DEFAULT_MIME_TYPE)
        return await self._post(
            chat_id,
            internal,
            content.strip() or ATTACHMENT_MESSAGE_TEXT,
            is_private,
            attachment_url=uploaded["url"],
            attachment_type=uploaded.get("mimeType") or mime_type or DEFAULT_MIME_TYPE,
        )

    async def send_voice(
        self,
        chat_id: int,
        audio: bytes,
        mime_type: str = VOICE_MIME_TYPE,
        content: str = VOICE_MESSAGE_TEXT,
        is_private: bool = False,
        internal: bool = False,
    ) -> dict:
        """Uploads one recorded audio blob and posts it as a voice message."""
        if not is_voice(mime_type):
            raise ValidationFailed("Voice messages must have an audio/* MIME type")
        if not audio:
            raise ValidationFailed("Recording is empty")

        subtype = mime_type.split("/", 1)[1].split(";", 1)[0].strip() or "webm"
        filename = f"voice-message-{datetime.utcnow():%Y%m%d%H%M%S}.{subtype}"
        uploaded = await self._upload(audio, filename, mime_type)

        # The stored type must stay audio/* so receivers render a player
        stored_type = uploaded.get("mimeType")
        if not is_voice(stored_type):
            stored_type = mime_type
        return await self._post(
            chat_id,
            internal,
            content.strip() or VOICE_MESSAGE_TEXT,
            is_private,
            attachment_url=uploaded["url"],
            attachment_type=stored_type,
        )
