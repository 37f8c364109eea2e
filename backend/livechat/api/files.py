"""
Files API - serves attachments stored by the local gateway.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from ..storage import StorageInterface

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/files", tags=["files"])

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def get_blob_storage(request: Request) -> StorageInterface:
    """Blob storage created by the application lifespan."""
    return request.app.state.blob_storage


@router.get("/{bucket}/{path:path}")
async def download_file(
    bucket: str,
    path: str,
    storage: StorageInterface = Depends(get_blob_storage)
):
    """
    Return a stored attachment with the content type recorded at upload.

    Raises:
        HTTPException 404: No such attachment
    """
    blob_path = f"{bucket}/{path}"
    # Metadata sidecars are not attachments
    content = None if path.endswith(".meta") else await storage.load(blob_path)
    if content is None:
        logger.info(f"Attachment not found: {blob_path}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="File not found"
        )

    metadata = await storage.get_metadata(blob_path) or {}
    return Response(
        content=content,
        media_type=metadata.get("content_type", DEFAULT_CONTENT_TYPE),
        headers={"Cache-Control": "max-age=3600"}
    )
