import os
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File as FastAPIFile, Form, UploadFile, status
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool

from app.dependencies import get_retrieval_service, get_upload_service
from app.schemas import ErrorResponse, FileDescriptor, VerifyResponse
from app.services.content_store import IncomingFile
from app.services.retrieval import RetrievalService
from app.services.uploads import UploadService

router = APIRouter(prefix="/api", tags=["Files"])

UPLOAD_FIELD = "files"


async def part_size(upload: UploadFile) -> int:
    """Size of a spooled part without reading its body."""
    if upload.size is not None:
        return upload.size
    return await run_in_threadpool(upload.file.seek, 0, os.SEEK_END)


def content_disposition(filename: str) -> str:
    ascii_name = filename.encode("ascii", "ignore").decode().replace('"', "") or "download"
    if ascii_name == filename:
        return f'attachment; filename="{filename}"'
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(filename)}"


# --- upload one or more files ---
@router.post(
    "/files/upload",
    response_model=list[FileDescriptor],
    status_code=status.HTTP_201_CREATED,
    summary="Upload files for a user",
    responses={
        400: {"model": ErrorResponse, "description": "Missing user id, no files, too many files"},
        404: {"model": ErrorResponse, "description": "Unknown user"},
        413: {"model": ErrorResponse, "description": "A file exceeds the size limit"},
        415: {"model": ErrorResponse, "description": "A file has a disallowed extension/MIME type"},
    },
)
async def upload_files(
    user_id: Optional[int] = Form(None),
    files: Optional[list[UploadFile]] = FastAPIFile(None),
    uploads: UploadService = Depends(get_upload_service),
):
    # bodies stay in the spooled part files; they are copied only after admission
    incoming = []
    for upload in files or []:
        incoming.append(
            IncomingFile(
                field_name=UPLOAD_FIELD,
                filename=upload.filename or "",
                content_type=upload.content_type or "",
                size=await part_size(upload),
                stream=upload.file,
            )
        )

    records = await uploads.upload(user_id, incoming)
    return records


# --- show user's files ---
@router.get(
    "/users/{user_id}/files",
    response_model=list[FileDescriptor],
    summary="List a user's files, newest first",
    responses={404: {"model": ErrorResponse, "description": "Unknown user"}},
)
async def list_files(user_id: int, uploads: UploadService = Depends(get_upload_service)):
    return await uploads.list_files(user_id)


# --- download a file ---
@router.get(
    "/files/{storage_name}",
    summary="Download a file by its storage name",
    responses={
        200: {"content": {"application/octet-stream": {}}, "description": "File content"},
        404: {"model": ErrorResponse, "description": "Unknown file, or record without content"},
    },
)
async def download_file(storage_name: str, retrieval: RetrievalService = Depends(get_retrieval_service)):
    download = await retrieval.open(storage_name)
    record = download.record

    return StreamingResponse(
        download.iter_bytes(),
        media_type=record.mime_type,
        headers={
            "Content-Disposition": content_disposition(record.original_name),
            "Content-Length": str(download.size),
        },
    )


# --- check stored bytes against the recorded hash ---
@router.get(
    "/files/{storage_name}/verify",
    response_model=VerifyResponse,
    summary="Re-hash a stored file and compare with its record",
    responses={404: {"model": ErrorResponse, "description": "Unknown file, or record without content"}},
)
async def verify_file(storage_name: str, retrieval: RetrievalService = Depends(get_retrieval_service)):
    result = await retrieval.verify(storage_name)
    return VerifyResponse(
        storage_name=result.record.storage_name,
        recorded_hash=result.record.content_hash,
        actual_hash=result.actual_hash,
        verified=result.verified,
    )
