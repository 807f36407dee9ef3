from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, File, Request, UploadFile

from app.adapters.storage.local import StoredFile
from app.core.auth import AuthenticatedUser, get_current_user
from app.services.upload_service import UploadService

router = APIRouter(prefix="/upload", tags=["Upload"])


def _upload_service(request: Request) -> UploadService:
    return UploadService(request.app.state.upload_storage, request.app.state.settings.upload)


def _file_payload(stored: StoredFile) -> dict[str, Any]:
    return {
        "filename": stored.filename,
        "originalname": stored.original_name,
        "mimetype": stored.content_type,
        "size": stored.size,
        "url": f"/uploads/{stored.filename}",
    }


@router.post("/single")
async def upload_single(
    current: AuthenticatedUser = Depends(get_current_user),
    image: UploadFile | None = File(None, description="JPEG, PNG, GIF or WebP image"),
    service: UploadService = Depends(_upload_service),
) -> dict[str, Any]:
    """Store one image sent in the ``image`` form field.

    Raises:
        AppError: 400 when no file or a disallowed type is sent, 413 when the
            file is over the size limit.
    """
    stored = await service.store_one(current.user_id, image)
    return {"success": True, "message": "File uploaded successfully", "data": _file_payload(stored)}


@router.post("/multiple")
async def upload_multiple(
    current: AuthenticatedUser = Depends(get_current_user),
    images: list[UploadFile] | None = File(None, description="Up to UPLOAD_MAX_FILES images"),
    service: UploadService = Depends(_upload_service),
) -> dict[str, Any]:
    stored = await service.store_many(current.user_id, images)
    return {
        "success": True,
        "message": f"{len(stored)} files uploaded successfully",
        "data": [_file_payload(item) for item in stored],
    }
