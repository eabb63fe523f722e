# backend/bookingchat/api/v1/uploads.py
from fastapi import APIRouter, Depends, File, UploadFile, status

from bookingchat.core.security import Actor, get_current_actor
from bookingchat.schemas.upload import UploadRead, UploadStatus
from bookingchat.services import media_service

router = APIRouter(tags=["uploads"])


@router.post("", response_model=UploadRead, status_code=status.HTTP_201_CREATED)
async def upload_file(
    file: UploadFile = File(...),
    actor: Actor = Depends(get_current_actor),
    store=Depends(media_service.get_media_store),
):
    """
    Stores a file (image, document or voice recording) and returns its url and
    MIME type. The file is attached to a chat by posting a message that refers
    to them.
    """
    data = await file.read()
    result = await media_service.upload(store, data, file.filename, file.content_type)
    return UploadRead(url=result.url, mime_type=result.mime_type)


@router.get("/status", response_model=UploadStatus)
async def upload_status(
    actor: Actor = Depends(get_current_actor),
    store=Depends(media_service.get_media_store),
):
    return UploadStatus(configured=store.is_configured(), backend=store.name)
