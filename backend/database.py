"""
JSON document store.

The database is a single file holding ``{"users": [...], "tasks": [...]}``.
Every operation re-reads the file; mutations rewrite it whole through a
temporary file that is renamed over the original, so readers never observe a
half-written document.

Thread-safety:
- ``transaction()`` and ``read()`` hold one re-entrant lock per store, so two
  concurrent read-modify-write cycles can never interleave inside a process.
- Nothing protects the file against a second process.
"""
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

import pydantic

from errors import StoreCorrupt, StoreError, ValidationError
from schemas import Document

logger = logging.getLogger(__name__)


class DocumentStore:
    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def initialize(self) -> None:
        """Create the data directory and an empty document if missing."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreError(f"cannot create data directory {self._path.parent}: {exc}") from exc
        with self._lock:
            if not self._path.exists():
                self.save(Document())
                logger.info("Created empty document at %s", self._path)
            else:
                doc = self.load()
                logger.info(
                    "DocumentStore ready db=%s users=%d tasks=%d",
                    self._path,
                    len(doc.users),
                    len(doc.tasks),
                )

    # ---- low-level helpers ----

    def load(self) -> Document:
        """
        Read and validate the whole document.

        A missing file is initialized to an empty document and persisted.

        Raises:
            StoreCorrupt: The file is not JSON or not shaped like a document
            StoreError: The file cannot be read
        """
        with self._lock:
            if not self._path.exists():
                doc = Document()
                self.save(doc)
                return doc
            try:
                raw = self._path.read_text(encoding="utf-8")
            except OSError as exc:
                raise StoreError(f"cannot read {self._path}: {exc}") from exc
        try:
            return Document.model_validate(json.loads(raw))
        except (ValueError, pydantic.ValidationError) as exc:
            # json.JSONDecodeError is a ValueError
            raise StoreCorrupt(f"{self._path} is not a valid document: {exc}") from exc

    def save(self, doc: Document) -> None:
        """
        Serialize ``doc`` and atomically replace the persisted copy.

        Raises:
            ValidationError: The document holds text UTF-8 cannot encode
            StoreError: The file cannot be written
        """
        payload = json.dumps(doc.to_json(), indent=2, ensure_ascii=False)
        try:
            data = payload.encode("utf-8")
        except UnicodeEncodeError as exc:
            # JSON escapes allow lone surrogates, UTF-8 does not
            raise ValidationError("text contains invalid characters") from exc
        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=str(self._path.parent), prefix=f".{self._path.name}.", suffix=".tmp"
            )
        except OSError as exc:
            raise StoreError(f"cannot write {self._path}: {exc}") from exc
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self._path)
        except BaseException as exc:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            if isinstance(exc, OSError):
                raise StoreError(f"cannot write {self._path}: {exc}") from exc
            raise

    # ---- public API ----

    def read(self) -> Document:
        """Load a consistent snapshot, never one taken mid-transaction."""
        with self._lock:
            return self.load()

    @contextmanager
    def transaction(self) -> Iterator[Document]:
        """
        Exclusive read-modify-write cycle.

        Yields the freshly loaded document; if the block finishes without
        raising, the (mutated) document is saved before the lock is released.
        """
        with self._lock:
            doc = self.load()
            yield doc
            self.save(doc)
