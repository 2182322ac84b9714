"""
Storage for task attachments.

Files live under ``UPLOADS_DIR/<user id>/`` and are served publicly from
``/uploads/<user id>/<stored name>``. Stored names are generated; the
client's filename is only kept, sanitized, as a readable suffix.
"""
import logging
import os
import re
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Union

from errors import StoreError, ValidationError

logger = logging.getLogger(__name__)

MAX_FILENAME_LENGTH = 100
COPY_CHUNK_SIZE = 1024 * 1024


@dataclass
class AttachmentUpload:
    """An uploaded file as handed over by the transport layer"""

    filename: str
    file: BinaryIO


@dataclass
class StoredAttachment:
    url: str
    path: Path
    original_name: str


def sanitize_filename(filename: str) -> str:
    """Sanitize filename to prevent path traversal attacks.

    Args:
        filename: Original filename

    Returns:
        Sanitized filename safe for use in file paths
    """
    # Clients may send Windows paths, so treat both separators as directories
    safe_name = (filename or "").replace("\\", "/").rsplit("/", 1)[-1]
    # Remove control characters
    safe_name = re.sub(r"[\x00-\x1f\x7f]", "", safe_name)
    # Remove invalid characters
    safe_name = re.sub(r'[<>:"|?*\s]+', "_", safe_name)
    safe_name = safe_name.lstrip(".")[:MAX_FILENAME_LENGTH]
    return safe_name or "attachment"


class AttachmentStorage:
    def __init__(self, uploads_dir: Union[str, Path], max_bytes: int):
        self._uploads_dir = Path(uploads_dir)
        self._max_bytes = max_bytes

    @property
    def uploads_dir(self) -> Path:
        return self._uploads_dir

    def store(self, user_id: str, upload: AttachmentUpload) -> StoredAttachment:
        """
        Move an upload into the user's directory

        Args:
            user_id: Owner, names the subdirectory
            upload: Client filename and readable stream

        Returns:
            Where the file ended up and the URL that serves it

        Raises:
            ValidationError: The upload exceeds the size limit
            StoreError: The file cannot be written
        """
        safe_name = sanitize_filename(upload.filename)
        stored_name = f"{uuid.uuid4().hex}_{safe_name}"
        user_dir = self._uploads_dir / sanitize_filename(user_id)

        try:
            user_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=str(user_dir), prefix=".upload-")
        except OSError as exc:
            raise StoreError(f"cannot prepare upload directory {user_dir}: {exc}") from exc

        try:
            with os.fdopen(fd, "wb") as out:
                self._copy_limited(upload.file, out)
            target = user_dir / stored_name
            os.replace(tmp_name, target)
        except Exception as exc:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            if isinstance(exc, OSError):
                raise StoreError(f"cannot store upload: {exc}") from exc
            raise

        logger.info(
            "Stored attachment %r for user %s as %s", upload.filename, user_id, stored_name
        )
        return StoredAttachment(
            url=f"/uploads/{user_dir.name}/{stored_name}",
            path=target,
            original_name=upload.filename,
        )

    def discard(self, stored: StoredAttachment) -> None:
        """Remove a stored file whose task was never persisted."""
        try:
            stored.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove orphaned upload %s: %s", stored.path, exc)

    def _copy_limited(self, src: BinaryIO, dst: BinaryIO) -> None:
        written = 0
        while True:
            chunk = src.read(COPY_CHUNK_SIZE)
            if not chunk:
                break
            written += len(chunk)
            if written > self._max_bytes:
                raise ValidationError("attachment too large")
            dst.write(chunk)
