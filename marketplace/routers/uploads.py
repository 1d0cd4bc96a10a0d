"""File upload endpoints. Each returns a blob key the uploader can then reference."""

from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel

from marketplace.auth.middleware import AuthenticatedUser, verify_request
from marketplace.auth.rate_limit import check_rate_limit
from marketplace.config import settings
from marketplace.errors import ValidationFailed
from marketplace.services.storage import (
    JOB_ATTACHMENTS,
    SERVICE_COVERS,
    attachment_key,
    get_blob_store,
)

router = APIRouter(prefix="/uploads", tags=["uploads"], dependencies=[Depends(check_rate_limit)])

_IMAGE_TYPES = ("image/jpeg", "image/png", "image/webp")


class UploadResponse(BaseModel):
    key: str
    content_type: str
    size: int


async def _store_upload(
    file: UploadFile, auth: AuthenticatedUser, namespace: str, allowed: list[str]
) -> UploadResponse:
    content_type = file.content_type or "application/octet-stream"
    if content_type not in allowed:
        raise ValidationFailed(f"Unsupported file type {content_type}. Allowed: {', '.join(allowed)}")
    # Read one byte past the limit to detect oversize files without buffering them whole
    data = await file.read(settings.max_upload_bytes + 1)
    if len(data) > settings.max_upload_bytes:
        raise ValidationFailed(
            f"File exceeds maximum size of {settings.max_upload_bytes // (1024 * 1024)}MB"
        )
    if not data:
        raise ValidationFailed("File is empty")

    key = attachment_key(str(auth.user_id), file.filename or "file", namespace)
    await get_blob_store().upload(key, data, content_type)
    return UploadResponse(key=key, content_type=content_type, size=len(data))


@router.post("/job-attachments", response_model=UploadResponse, status_code=201)
async def upload_job_attachment(
    file: UploadFile = File(...),
    auth: AuthenticatedUser = Depends(verify_request),
) -> UploadResponse:
    return await _store_upload(file, auth, JOB_ATTACHMENTS, settings.allowed_upload_types)


@router.post("/service-covers", response_model=UploadResponse, status_code=201)
async def upload_service_cover(
    file: UploadFile = File(...),
    auth: AuthenticatedUser = Depends(verify_request),
) -> UploadResponse:
    """Cover images only; the returned key goes into a listing's ``cover_image``."""
    allowed = [t for t in settings.allowed_upload_types if t in _IMAGE_TYPES]
    return await _store_upload(file, auth, SERVICE_COVERS, allowed)
