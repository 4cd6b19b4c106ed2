"""Blob store: uploaded file bytes on the local filesystem.

One flat directory, one file per object, named by object id. The store knows
nothing about expiry; the lifecycle manager decides when to delete.
"""

import logging
import os
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path
from typing import BinaryIO, NamedTuple

from store.errors import InvalidType, NotFound, SizeExceeded, StorageIO
from store.ids import generate_id, is_valid_id

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

# Accepted extensions, each with the exact MIME types it may be uploaded as
MIME_TYPES = {
    "jpeg": {"image/jpeg", "image/pjpeg"},
    "jpg": {"image/jpeg", "image/pjpeg"},
    "png": {"image/png"},
    "gif": {"image/gif"},
    "pdf": {"application/pdf"},
    "zip": {"application/zip", "application/x-zip-compressed"},
    "doc": {"application/msword"},
    "docx": {"application/vnd.openxmlformats-officedocument.wordprocessingml.document"},
}

DEFAULT_ALLOWED_EXTENSIONS = frozenset(MIME_TYPES)


class StoredBlob(NamedTuple):
    path: Path
    size_bytes: int


def _extension(filename: str) -> str:
    _, dot, ext = filename.rpartition(".")
    return ext.lower() if dot else ""


def _normalize_mime(mime_type: str) -> str:
    return mime_type.split(";", 1)[0].strip().lower()


def _iter_chunks(stream: BinaryIO | Iterable[bytes]) -> Iterator[bytes]:
    read = getattr(stream, "read", None)
    if read is None:
        for chunk in stream:
            if chunk:
                yield chunk
        return
    while True:
        chunk = read(CHUNK_SIZE)
        if not chunk:
            return
        yield chunk


class BlobStore:
    def __init__(
        self,
        root: str | Path,
        allowed_extensions: Iterable[str] | None = DEFAULT_ALLOWED_EXTENSIONS,
        id_generator: Callable[[], str] = generate_id,
    ) -> None:
        """
        Args:
            root: directory that holds nothing but blobs
            allowed_extensions: extension allowlist, None accepts any type
            id_generator: source of fresh blob names
        """
        self.root = Path(root)
        self._allowed = (
            frozenset(e.lower().lstrip(".") for e in allowed_extensions)
            if allowed_extensions is not None
            else None
        )
        self._generate = id_generator

    def ensure_root(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageIO(f"Cannot create storage root {self.root}: {e}") from e

    def path_for(self, name: str) -> Path:
        if not is_valid_id(name):
            raise ValueError(f"invalid blob name: {name!r}")
        return self.root / name

    def check_type(self, filename: str, mime_type: str) -> None:
        """Raise InvalidType unless the upload matches the allowlist."""
        if self._allowed is None:
            return
        ext = _extension(filename)
        if ext not in self._allowed:
            raise InvalidType()
        known = MIME_TYPES.get(ext)
        if known is not None and _normalize_mime(mime_type) not in known:
            raise InvalidType()

    def put(
        self,
        stream: BinaryIO | Iterable[bytes],
        size_limit: int,
        *,
        name: str | None = None,
        filename: str = "",
        mime_type: str = "",
    ) -> StoredBlob:
        """Write the stream to a new blob, enforcing size_limit while copying.

        A partial file never survives a failed write.
        """
        self.check_type(filename, mime_type)
        path = self.path_for(name or self._generate())

        written = 0
        try:
            with open(path, "xb") as out:
                for chunk in _iter_chunks(stream):
                    written += len(chunk)
                    if written > size_limit:
                        raise SizeExceeded(
                            f"File exceeds the maximum allowed size of {size_limit} bytes"
                        )
                    out.write(chunk)
        except FileExistsError as e:
            # Never unlink here: the existing file belongs to someone else
            raise StorageIO(f"Blob already exists: {path.name}") from e
        except SizeExceeded:
            self._discard_partial(path)
            raise
        except OSError as e:
            self._discard_partial(path)
            raise StorageIO(f"Failed to write blob {path.name}: {e}") from e
        except BaseException:
            self._discard_partial(path)
            raise

        return StoredBlob(path, written)

    def open_for_read(self, path: Path) -> BinaryIO:
        try:
            return open(path, "rb")
        except FileNotFoundError as e:
            raise NotFound() from e
        except OSError as e:
            raise StorageIO(f"Failed to open blob {path.name}: {e}") from e

    def delete(self, path: Path) -> bool:
        """Unlink a blob. Returns False if it was already gone."""
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageIO(f"Failed to delete blob {path.name}: {e}") from e
        return True

    def list_all(self) -> Iterator[Path]:
        """Yield every file currently in the root. One pass only."""
        try:
            with os.scandir(self.root) as entries:
                for entry in entries:
                    if entry.is_file(follow_symlinks=False):
                        yield Path(entry.path)
        except FileNotFoundError:
            return

    def _discard_partial(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError:
            logger.warning("Could not remove partial blob %s", path.name, exc_info=True)
