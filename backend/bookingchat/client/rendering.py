from bookingchat.client.composer import ATTACHMENT_MESSAGE_TEXT, VOICE_MESSAGE_TEXT
from bookingchat.services.media_service import is_voice
from bookingchat.services.quotation import format_amount

QUOTATION_CARD = "quotation_card"
VOICE = "voice"
IMAGE = "image"
ATTACHMENT = "attachment"
BUBBLE = "bubble"

# Default texts the composer fills in; not worth showing under the media itself
PLACEHOLDER_TEXTS = (ATTACHMENT_MESSAGE_TEXT, VOICE_MESSAGE_TEXT)


def render_kind(message: dict) -> str:
    """How a message from the API should be drawn."""
    if message.get("isQuotation"):
        return QUOTATION_CARD
    attachment_type = message.get("attachmentType") or ""
    if message.get("attachmentUrl"):
        if is_voice(attachment_type):
            return VOICE
        if attachment_type.lower().startswith("image/"):
            return IMAGE
        return ATTACHMENT
    return BUBBLE


def quotation_card(message: dict) -> dict:
    return {
        "title": "Quotation",
        "amount": format_amount(message["quotationAmount"]),
        "description": (message.get("content") or "").strip(),
    }


def caption(message: dict) -> str:
    """Text shown with the message, without the composer's placeholder for media."""
    content = (message.get("content") or "").strip()
    if message.get("attachmentUrl") and content in PLACEHOLDER_TEXTS:
        return ""
    return content
