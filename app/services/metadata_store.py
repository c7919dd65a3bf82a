"""Durable records for users and files.

One ``MetadataStore`` is created per process by the app lifespan: ``start()``
creates the schema (idempotent), ``close()`` releases the engine. Every public
operation is awaitable; the blocking SQLAlchemy work runs in the threadpool so
concurrent requests interleave between queries, never inside one.
"""
import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Sequence

from sqlalchemy import exc as sa_exc
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from app.core.errors import ConflictError, NotFoundError, StorageError
from app.models.database import Base, create_db_engine
from app.models.file import FileRecord
from app.models.user import User

logger = logging.getLogger(__name__)


class MetadataStore:
    def __init__(self, database_url: str) -> None:
        self.database_url = database_url
        self.engine = create_db_engine(database_url)
        self._session_factory = sessionmaker(
            bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False
        )

    # --- lifecycle ---
    def start(self) -> None:
        Base.metadata.create_all(bind=self.engine)
        logger.info("Metadata store ready: %s", self.engine.url.render_as_string(hide_password=True))

    def close(self) -> None:
        self.engine.dispose()
        logger.info("Metadata store connection closed")

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        finally:
            db.close()

    # --- users ---
    async def create_user(self, username: str, email: str, password_hash: str) -> User:
        return await run_in_threadpool(self._create_user, username, email, password_hash)

    def _create_user(self, username: str, email: str, password_hash: str) -> User:
        with self.session() as db:
            if db.query(User).filter(User.username == username).first() is not None:
                raise ConflictError("Username already exists", code="username_taken")
            if db.query(User).filter(User.email == email).first() is not None:
                raise ConflictError("Email already exists", code="email_taken")

            user = User(username=username, email=email, password_hash=password_hash)
            db.add(user)
            try:
                db.commit()
            except sa_exc.IntegrityError as exc:
                # lost a race with a concurrent registration; the unique constraints decided
                db.rollback()
                raise ConflictError("Username or email already exists") from exc
            except sa_exc.SQLAlchemyError as exc:
                db.rollback()
                raise StorageError(f"Could not create user {username!r}") from exc

            logger.info("Created user id=%s username=%s", user.id, user.username)
            return user

    async def get_user_by_username(self, username: str) -> Optional[User]:
        return await run_in_threadpool(self._get_one, User, User.username == username)

    async def get_user_by_id(self, user_id: int) -> Optional[User]:
        return await run_in_threadpool(self._get_one, User, User.id == user_id)

    # --- files ---
    async def create_file(
        self,
        user_id: int,
        original_name: str,
        storage_name: str,
        storage_path: str,
        size: int,
        mime_type: str,
        content_hash: Optional[str],
    ) -> FileRecord:
        record = FileRecord(
            user_id=user_id,
            original_name=original_name,
            storage_name=storage_name,
            storage_path=storage_path,
            size=size,
            mime_type=mime_type,
            content_hash=content_hash,
        )
        [saved] = await run_in_threadpool(self._insert_files, [record])
        return saved

    async def create_files(self, rows: Sequence[dict[str, Any]]) -> list[FileRecord]:
        """Insert several file records in one commit: all of them or none."""
        records = [FileRecord(**row) for row in rows]
        return await run_in_threadpool(self._insert_files, records)

    def _insert_files(self, records: list[FileRecord]) -> list[FileRecord]:
        with self.session() as db:
            db.add_all(records)
            try:
                db.commit()
            except sa_exc.IntegrityError as exc:
                db.rollback()
                # the only constraints on files are the owner foreign key and storage_name
                for user_id in {r.user_id for r in records}:
                    if db.get(User, user_id) is None:
                        raise NotFoundError(f"User {user_id} not found") from exc
                names = ", ".join(r.storage_name for r in records)
                raise ConflictError(f"Storage name already recorded among: {names}") from exc
            except sa_exc.SQLAlchemyError as exc:
                db.rollback()
                raise StorageError(f"Could not record {len(records)} file(s)") from exc
            return records

    async def get_files_by_user_id(self, user_id: int) -> list[FileRecord]:
        return await run_in_threadpool(self._files_for_user, user_id)

    def _files_for_user(self, user_id: int) -> list[FileRecord]:
        with self.session() as db:
            return (
                db.query(FileRecord)
                .filter(FileRecord.user_id == user_id)
                .order_by(FileRecord.uploaded_at.desc(), FileRecord.id.desc())
                .all()
            )

    async def get_file_by_filename(self, storage_name: str) -> Optional[FileRecord]:
        return await run_in_threadpool(self._get_one, FileRecord, FileRecord.storage_name == storage_name)

    async def get_file_by_id(self, file_id: int) -> Optional[FileRecord]:
        return await run_in_threadpool(self._get_one, FileRecord, FileRecord.id == file_id)

    def _get_one(self, model, criterion):
        with self.session() as db:
            try:
                return db.query(model).filter(criterion).first()
            except sa_exc.SQLAlchemyError as exc:
                raise StorageError(f"Lookup on {model.__tablename__} failed") from exc
