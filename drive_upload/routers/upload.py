"""Router for /api/v1/upload-to-drive endpoints."""

import asyncio
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from drive_upload.deps import get_service_uploader, get_user_uploader
from drive_upload.models.common import UploadResult
from drive_upload.models.upload import UploadErrorResponse, UploadRequest, UploadSuccessResponse
from drive_upload.services.gdrive import DriveUploader

logger = logging.getLogger(__name__)
router = APIRouter()


def error_response(status_code: int, **fields) -> JSONResponse:
    payload = UploadErrorResponse(**fields)
    return JSONResponse(
        status_code=status_code,
        content=payload.model_dump(by_alias=True, exclude_none=True)
    )


def result_response(result: UploadResult) -> JSONResponse:
    """Map an UploadResult to the HTTP contract."""
    if result.success:
        payload = UploadSuccessResponse(file_id=result.file_id, public_url=result.public_url)
        return JSONResponse(status_code=200, content=payload.model_dump(by_alias=True))

    if result.is_partial:
        return error_response(502, error=result.error, file_id=result.file_id, partial=True)
    return error_response(502, error=result.error)


async def run_upload(uploader: DriveUploader, request: UploadRequest) -> JSONResponse:
    try:
        content = request.decoded_file()
    except ValueError as e:
        return error_response(400, error=str(e))

    result = await asyncio.to_thread(
        uploader.upload_bytes,
        content,
        request.file_name,
        request.mime_type
    )
    return result_response(result)


@router.post("/upload-to-drive")
async def upload_to_drive_endpoint(
    request: UploadRequest,
    uploader: DriveUploader = Depends(get_service_uploader)
):
    """
    Upload a base64 file to the shared folder as the service account.

    Returns fileId and a public direct-content URL.
    """
    return await run_upload(uploader, request)


@router.post("/upload-to-drive/{file_id}/publish")
async def publish_endpoint(
    file_id: str,
    uploader: DriveUploader = Depends(get_service_uploader)
):
    """Retry making an already uploaded file public."""
    result = await asyncio.to_thread(uploader.publish, file_id)
    return result_response(result)


@router.post("/user/upload-to-drive")
async def user_upload_to_drive_endpoint(
    request: UploadRequest,
    uploader: DriveUploader = Depends(get_user_uploader)
):
    """Upload a base64 file to the connected user's own Drive."""
    return await run_upload(uploader, request)
