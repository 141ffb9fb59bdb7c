"""
Storage read endpoint.

Serves objects of the local object storage at the URLs it hands out:

    GET /storage/{bucket}/{path}?token=<signed token>

Public buckets are readable without a token. Everything else needs a token
signed for exactly that bucket and path.
"""

import mimetypes
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import FileResponse

from ..core.storage import LocalObjectStorage
from .deps import get_object_storage

router = APIRouter()


def _not_found(bucket: str, path: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={
            "error": "not_found",
            "message": "Object not found",
            "resource_type": "object",
            "resource_id": f"{bucket}/{path}",
        },
    )


@router.get(
    "/{bucket}/{path:path}",
    summary="Read a stored object",
    responses={
        403: {"description": "Missing, expired or mismatched token"},
        404: {"description": "Object not found"},
    },
)
def read_object(
    bucket: str,
    path: str,
    token: Optional[str] = Query(None, description="Signed read token"),
    storage: LocalObjectStorage = Depends(get_object_storage),
) -> FileResponse:
    if not storage.is_public(bucket) and not storage.verify_signed_token(bucket, path, token):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "forbidden",
                "message": "Invalid or expired token",
            },
        )

    try:
        local_path = storage.open_path(bucket, path)
    except (FileNotFoundError, ValueError):
        raise _not_found(bucket, path)

    media_type, _ = mimetypes.guess_type(local_path.name)
    return FileResponse(
        path=str(local_path),
        media_type=media_type or "application/octet-stream",
    )
