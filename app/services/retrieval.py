"""Resolve storage names to stored bytes.

Metadata and disk can drift apart, so a record is never trusted on its own:
the file is checked in the content store, and a missing file is reported as
``ContentMissingError`` rather than a plain not-found. Lengths sent to the
client always come from the bytes on disk.
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Optional

from starlette.concurrency import run_in_threadpool

from app.core.errors import ContentMissingError, NotFoundError, StorageError
from app.models.file import FileRecord
from app.services.content_store import ContentStore
from app.services.hasher import hash_stored_file
from app.services.metadata_store import MetadataStore

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


@dataclass
class Download:
    record: FileRecord
    size: int
    first_chunk: bytes
    handle: BinaryIO

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """Yield the file body. Errors here happen after headers went out."""
        try:
            chunk = self.first_chunk
            while chunk:
                yield chunk
                chunk = await run_in_threadpool(self.handle.read, CHUNK_SIZE)
        except OSError:
            logger.exception(
                "Read failed mid-stream for %s; dropping the connection",
                self.record.storage_name,
            )
            raise
        finally:
            self.handle.close()


@dataclass
class Verification:
    record: FileRecord
    actual_hash: str

    @property
    def verified(self) -> Optional[bool]:
        if self.record.content_hash is None:
            return None
        return self.record.content_hash == self.actual_hash


class RetrievalService:
    def __init__(self, metadata: MetadataStore, content_store: ContentStore) -> None:
        self.metadata = metadata
        self.content_store = content_store

    async def locate(self, storage_name: str) -> tuple[FileRecord, Path]:
        record = await self.metadata.get_file_by_filename(storage_name)
        if record is None:
            raise NotFoundError("File not found")

        if not await run_in_threadpool(self.content_store.is_stored, record.storage_name):
            logger.error(
                "Storage/metadata divergence: record %s exists but %s is missing",
                record.id,
                record.storage_name,
            )
            raise ContentMissingError("File record exists but its content is missing")
        return record, self.content_store.path_for(record.storage_name)

    async def open(self, storage_name: str) -> Download:
        """Open the file and read its first chunk before any response starts."""
        record, _ = await self.locate(storage_name)
        handle, size = await run_in_threadpool(self.content_store.open_stored, record.storage_name)
        if size != record.size:
            logger.warning(
                "Size drift for %s: record says %d bytes, disk has %d",
                record.storage_name,
                record.size,
                size,
            )

        try:
            first_chunk = await run_in_threadpool(handle.read, CHUNK_SIZE)
        except OSError as exc:
            handle.close()
            logger.exception("Failed to read %s", record.storage_name)
            raise StorageError(f"Could not read {record.storage_name}") from exc

        logger.info("Serving %s (%d bytes) as %r", record.storage_name, size, record.original_name)
        return Download(record=record, size=size, first_chunk=first_chunk, handle=handle)

    async def verify(self, storage_name: str) -> Verification:
        record, path = await self.locate(storage_name)
        actual = await hash_stored_file(path)
        if record.content_hash is not None and record.content_hash != actual:
            logger.warning(
                "Hash mismatch for %s: recorded %s, on disk %s",
                record.storage_name,
                record.content_hash,
                actual,
            )
        return Verification(record=record, actual_hash=actual)
