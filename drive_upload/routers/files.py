"""Router for /api/v1/files endpoints."""

import asyncio
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from drive_upload.deps import get_user_uploader
from drive_upload.services.gdrive import DriveUploader

logger = logging.getLogger(__name__)
router = APIRouter()


@router.delete("/{file_id}")
async def delete_file_endpoint(
    file_id: str,
    uploader: DriveUploader = Depends(get_user_uploader)
):
    """Delete a file from the connected user's Drive."""
    deleted = await asyncio.to_thread(uploader.delete_file, file_id)

    return JSONResponse(
        status_code=200 if deleted else 502,
        content={"success": deleted}
    )
