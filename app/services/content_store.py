"""Local content store for uploaded bytes.

Admission (count, size and type) is checked for the whole batch before any
byte is written, so a rejected request leaves nothing on disk.
"""
import io
import logging
import os
import re
import shutil
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Sequence

from starlette.concurrency import run_in_threadpool

from app.core.errors import (
    ContentMissingError,
    FileTooLargeError,
    StorageError,
    TooManyFilesError,
    UnsupportedFileTypeError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# extension -> MIME types accepted for it
ALLOWED_TYPES: dict[str, frozenset[str]] = {
    ".jpeg": frozenset({"image/jpeg"}),
    ".jpg": frozenset({"image/jpeg"}),
    ".png": frozenset({"image/png"}),
    ".gif": frozenset({"image/gif"}),
    ".pdf": frozenset({"application/pdf"}),
    ".txt": frozenset({"text/plain"}),
    ".doc": frozenset({"application/msword"}),
    ".docx": frozenset({"application/vnd.openxmlformats-officedocument.wordprocessingml.document"}),
}

_UNSAFE_FIELD_CHARS = re.compile(r"[^A-Za-z0-9_]")
_NAME_ATTEMPTS = 5
_COPY_CHUNK = 64 * 1024


@dataclass(frozen=True)
class IncomingFile:
    """One multipart file part.

    ``size`` is known up front so admission never reads the body; ``stream``
    is only copied to disk once the whole batch has been admitted.
    """

    field_name: str
    filename: str
    content_type: str
    size: int
    stream: BinaryIO

    @classmethod
    def from_bytes(cls, field_name: str, filename: str, content_type: str, data: bytes) -> "IncomingFile":
        return cls(field_name, filename, content_type, len(data), io.BytesIO(data))

    @property
    def mime_type(self) -> str:
        # drop parameters such as "; charset=utf-8"
        return self.content_type.split(";", 1)[0].strip().lower()


@dataclass(frozen=True)
class StoredFile:
    storage_name: str
    path: Path
    size: int


def is_allowed_type(filename: str, content_type: str) -> bool:
    extension = Path(filename).suffix.lower()
    mime_type = content_type.split(";", 1)[0].strip().lower()
    return mime_type in ALLOWED_TYPES.get(extension, frozenset())


def generate_storage_name(field_name: str, original_name: str) -> str:
    """<field>-<ns timestamp>-<random><ext>; no coordination between writers needed."""
    field = _UNSAFE_FIELD_CHARS.sub("", field_name) or "file"
    extension = Path(original_name).suffix.lower()
    return f"{field}-{time.time_ns()}-{uuid.uuid4().hex[:12]}{extension}"


class ContentStore:
    def __init__(self, upload_dir: Path, max_file_size: int, max_files: int) -> None:
        self.upload_dir = Path(upload_dir)
        self.max_file_size = max_file_size
        self.max_files = max_files

    def path_for(self, storage_name: str) -> Path:
        return self.upload_dir / storage_name

    # --- directory bootstrap ---
    def ensure_directory(self) -> None:
        try:
            self.upload_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot create upload directory {self.upload_dir}") from exc

    async def ensure_directory_async(self) -> None:
        await run_in_threadpool(self.ensure_directory)

    # --- admission ---
    def admit(self, files: Sequence[IncomingFile]) -> None:
        """Reject the whole batch if any file breaks the upload policy."""
        if len(files) > self.max_files:
            raise TooManyFilesError(len(files), self.max_files)

        for incoming in files:
            if not incoming.filename:
                raise ValidationError("Every uploaded file needs a filename")
            if incoming.size > self.max_file_size:
                raise FileTooLargeError(incoming.filename, incoming.size, self.max_file_size)
            if not is_allowed_type(incoming.filename, incoming.content_type):
                raise UnsupportedFileTypeError(incoming.filename, incoming.mime_type)

    # --- writes ---
    async def save(self, incoming: IncomingFile) -> StoredFile:
        return await run_in_threadpool(self._write, incoming)

    def _write(self, incoming: IncomingFile) -> StoredFile:
        for _ in range(_NAME_ATTEMPTS):
            storage_name = generate_storage_name(incoming.field_name, incoming.filename)
            path = self.path_for(storage_name)
            try:
                # "x" never replaces an existing file
                with open(path, "xb") as fh:
                    incoming.stream.seek(0)
                    shutil.copyfileobj(incoming.stream, fh, _COPY_CHUNK)
            except FileExistsError:
                logger.warning("Storage name collision, regenerating: %s", storage_name)
                continue
            except OSError as exc:
                logger.exception("Failed to write %s for %r", path, incoming.filename)
                raise StorageError(f"Could not write {incoming.filename!r} to storage") from exc
            break
        else:
            raise StorageError(f"Could not find a free storage name for {incoming.filename!r}")

        written = path.stat().st_size
        if written != incoming.size:
            raise StorageError(
                f"Short write for {storage_name}: {written} of {incoming.size} bytes on disk"
            )

        logger.info("Stored %r as %s (%d bytes)", incoming.filename, storage_name, written)
        return StoredFile(storage_name=storage_name, path=path, size=written)

    # --- reads ---
    def is_stored(self, storage_name: str) -> bool:
        return self.path_for(storage_name).is_file()

    def open_stored(self, storage_name: str) -> tuple[BinaryIO, int]:
        """Open stored bytes for reading; the size comes from the open handle."""
        path = self.path_for(storage_name)
        try:
            handle = open(path, "rb")
        except FileNotFoundError as exc:
            raise ContentMissingError("File record exists but its content is missing") from exc
        except OSError as exc:
            logger.exception("Failed to open %s", path)
            raise StorageError(f"Could not open {storage_name}") from exc
        return handle, os.fstat(handle.fileno()).st_size
