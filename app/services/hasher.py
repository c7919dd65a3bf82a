"""Content digests for stored files.

MD5 is used as a checksum for detecting corruption, not as a security
control. Digests are always computed from the bytes on disk, never from the
upload buffer, so a bad write is caught.
"""
import hashlib
import logging
from pathlib import Path
from typing import Final

from starlette.concurrency import run_in_threadpool

from app.core.errors import IntegrityError

logger = logging.getLogger(__name__)

_CHUNK_SIZE: Final = 64 * 1024


def calculate_checksum(path: Path) -> str:
    """Return the lowercase hex MD5 digest of the file at ``path``.

    Raises:
        IntegrityError: If the file cannot be read back.
    """
    digest = hashlib.md5()
    try:
        with open(path, "rb") as fh:
            for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
                digest.update(chunk)
    except OSError as exc:
        logger.exception("Failed to read back %s for hashing", path)
        raise IntegrityError(f"Could not hash stored file {Path(path).name}") from exc
    return digest.hexdigest()


async def hash_stored_file(path: Path) -> str:
    return await run_in_threadpool(calculate_checksum, path)
