"""Upload pipeline: authorize, admit, store -> hash each file, record the batch."""
import logging
from typing import Optional, Sequence

from app.core.errors import (
    EmptyUploadError,
    FileHostError,
    NotFoundError,
    ValidationError,
)
from app.models.file import FileRecord
from app.services.content_store import ContentStore, IncomingFile, StoredFile
from app.services.hasher import hash_stored_file
from app.services.metadata_store import MetadataStore

logger = logging.getLogger(__name__)


class UploadService:
    def __init__(self, metadata: MetadataStore, content_store: ContentStore, hash_uploads: bool = True) -> None:
        self.metadata = metadata
        self.content_store = content_store
        self.hash_uploads = hash_uploads

    async def upload(self, user_id: Optional[int], files: Sequence[IncomingFile]) -> list[FileRecord]:
        """Store every file of the request or record none of them.

        Nothing touches the disk until the caller is known and the whole batch
        passed admission. Each file is stored then hashed; the records for the
        whole batch are inserted in one commit once every file got that far.
        There is no compensating delete: bytes written for a failed batch stay
        on disk unreferenced (logged as orphans).
        """
        if user_id is None:
            raise ValidationError("User ID is required", code="missing_user_id")
        user = await self.metadata.get_user_by_id(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found", code="user_not_found")

        if not files:
            raise EmptyUploadError()
        self.content_store.admit(files)
        await self.content_store.ensure_directory_async()

        stored: list[StoredFile] = []
        rows = []
        try:
            for incoming in files:
                saved = await self.content_store.save(incoming)
                stored.append(saved)
                content_hash = await hash_stored_file(saved.path) if self.hash_uploads else None
                rows.append(
                    dict(
                        user_id=user.id,
                        original_name=incoming.filename,
                        storage_name=saved.storage_name,
                        storage_path=str(saved.path),
                        size=saved.size,
                        mime_type=incoming.mime_type,
                        content_hash=content_hash,
                    )
                )
            records = await self.metadata.create_files(rows)
        except FileHostError:
            _log_orphans(user.id, stored)
            raise

        logger.info("User %s uploaded %d file(s)", user.id, len(records))
        return records

    async def list_files(self, user_id: int) -> list[FileRecord]:
        if await self.metadata.get_user_by_id(user_id) is None:
            raise NotFoundError(f"User {user_id} not found", code="user_not_found")
        return await self.metadata.get_files_by_user_id(user_id)


def _log_orphans(user_id: int, stored: Sequence[StoredFile]) -> None:
    # known gap: the bytes stay on disk without a record
    for item in stored:
        logger.error(
            "Orphaned stored file for user %s: %s (%d bytes) has no metadata record",
            user_id,
            item.path,
            item.size,
        )
