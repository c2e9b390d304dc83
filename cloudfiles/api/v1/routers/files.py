"""File API router.

Files are addressed by their ``s3://bucket/key`` identifier, passed as the
``id`` query parameter since it contains slashes. Service and storage errors
propagate to the handlers in :mod:`cloudfiles.api.errors`.
"""

from __future__ import annotations

import io

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import Response, StreamingResponse
from starlette.concurrency import run_in_threadpool

from cloudfiles.api.v1.deps import get_file_storage_service, require_permission
from cloudfiles.api.v1.schemas.files import CloudFileOut, CloudFilesPage
from cloudfiles.app.services.file_storage_service import (
    CloudFileNotFoundError,
    CloudFileStorageService,
    InvalidFileContentError,
)
from cloudfiles.common.auth import FILES_READ, FILES_WRITE, Principal

router = APIRouter()

METADATA_HEADER_PREFIX = "x-file-meta-"
CHECKSUM_HEADER = "X-Checksum-Sha256"


def _extract_metadata(request: Request) -> dict[str, str]:
    """Collect ``X-File-Meta-<name>`` headers as caller metadata."""
    metadata: dict[str, str] = {}
    for raw_key, value in request.headers.items():
        key = raw_key.lower()
        if not key.startswith(METADATA_HEADER_PREFIX):
            continue
        name = key[len(METADATA_HEADER_PREFIX) :].strip()
        if name:
            metadata[name] = value
    return metadata


async def read_upload_body(request: Request, limit: int) -> bytes:
    """Read the request body, stopping as soon as it exceeds ``limit`` bytes."""
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > limit:
        raise InvalidFileContentError(f"Stream too large: exceeds {limit} bytes")

    buffer = bytearray()
    async for chunk in request.stream():
        buffer += chunk
        if len(buffer) > limit:
            raise InvalidFileContentError(f"Stream too large: exceeds {limit} bytes")
    return bytes(buffer)


@router.put(
    "/files",
    response_model=CloudFileOut,
    status_code=status.HTTP_201_CREATED,
    summary="Upload file",
    description=(
        "Store the raw request body under `id`. `Content-Type` is stored as the "
        "file's content type and `X-File-Meta-*` headers as its metadata."
    ),
)
async def upload_file(
    request: Request,
    id: str = Query(min_length=1),
    content_type: str | None = Header(default=None),
    principal: Principal = Depends(require_permission(FILES_WRITE)),
    service: CloudFileStorageService = Depends(get_file_storage_service),
) -> CloudFileOut:
    body = await read_upload_body(request, service.max_upload_bytes)
    cloud_file = await run_in_threadpool(
        service.save,
        user_id=principal.user_id,
        payload=io.BytesIO(body),
        filename=id,
        content_type=content_type,
        metadata=_extract_metadata(request),
    )
    return CloudFileOut.model_validate(cloud_file)


@router.get(
    "/files/metadata",
    response_model=CloudFileOut,
    summary="Get file metadata",
)
def get_file_metadata(
    id: str = Query(min_length=1),
    _: Principal = Depends(require_permission(FILES_READ)),
    service: CloudFileStorageService = Depends(get_file_storage_service),
) -> CloudFileOut:
    cloud_file = service.find_by_id(id)
    if cloud_file is None:
        raise HTTPException(status_code=404, detail=f"File not found: {id}")
    return CloudFileOut.model_validate(cloud_file)


@router.get(
    "/files/content",
    summary="Download file",
    description=f"Stream a stored file. `{CHECKSUM_HEADER}` carries its recorded checksum.",
    response_class=StreamingResponse,
)
def download_file(
    id: str = Query(min_length=1),
    _: Principal = Depends(require_permission(FILES_READ)),
    service: CloudFileStorageService = Depends(get_file_storage_service),
) -> StreamingResponse:
    """Two backend calls: a HEAD for the content type and checksum header, then the GET.

    The HEAD treats access-denied like absence, so an object readable by GET
    but not by HEAD is reported as 404.
    """
    cloud_file = service.find_by_id(id)
    if cloud_file is None:
        raise CloudFileNotFoundError(f"File not found: {id}")
    stream = service.get_input_stream(id)

    headers = {CHECKSUM_HEADER: cloud_file.checksum} if cloud_file.checksum else {}
    return StreamingResponse(stream, media_type=cloud_file.content_type, headers=headers)


@router.get(
    "/files",
    response_model=CloudFilesPage,
    summary="List files",
    description="List every file whose identifier starts with `prefix`.",
)
def list_files(
    prefix: str = Query(min_length=1),
    _: Principal = Depends(require_permission(FILES_READ)),
    service: CloudFileStorageService = Depends(get_file_storage_service),
) -> CloudFilesPage:
    try:
        files = service.list_files(prefix)
    except CloudFileNotFoundError as exc:
        # an object vanished between the listing and its metadata fetch
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    items = [CloudFileOut.model_validate(item) for item in files]
    return CloudFilesPage(total=len(items), items=items)


@router.delete(
    "/files",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete file",
    description="Delete a stored file. Deleting a missing file succeeds.",
    response_class=Response,
)
def delete_file(
    id: str = Query(min_length=1),
    _: Principal = Depends(require_permission(FILES_WRITE)),
    service: CloudFileStorageService = Depends(get_file_storage_service),
) -> Response:
    service.delete_by_id(id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
