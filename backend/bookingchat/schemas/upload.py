from bookingchat.schemas.chat import CamelModel


class UploadRead(CamelModel):
    url: str
    mime_type: str


class UploadStatus(CamelModel):
    configured: bool
    backend: str
