import hashlib
from abc import ABC, abstractmethod
from typing import Sequence

from chunked_upload.core.status import BackendStatus

HASH_LEVELS = 2

# status key of a write that found the chunk already stored
CHUNK_EXISTS = "backend-fail-alreadyexists"


def hash_path(key: str, levels: int = HASH_LEVELS) -> str:
    """Directory prefix spreading keys over ``levels`` of md5 based buckets: ``a/ab/``."""
    digest = hashlib.md5(key.encode("utf-8")).hexdigest()
    return "".join(digest[: i + 1] + "/" for i in range(levels))


class ChunkStore(ABC):
    zone = "temp"

    def hashed_location(self, key: str) -> str:
        return f"{self.zone}/{hash_path(key)}{key}"

    @abstractmethod
    def write(self, key: str, data: bytes) -> BackendStatus:
        """Durably store ``data`` under ``key``; readable from any process once OK.

        Chunks are immutable: if ``key`` is already stored the write fails with
        a ``CHUNK_EXISTS`` entry and the stored blob is left as it is.
        """

    @abstractmethod
    def read(self, key: str) -> bytes:
        """Stored bytes of ``key``; raises the backend error if it cannot be read."""

    @abstractmethod
    def concatenate(self, keys: Sequence[str], dest_path: str, delete_sources: bool = False) -> BackendStatus:
        """Write the blobs of ``keys``, in order, to the local file ``dest_path``.

        All-or-nothing: on failure ``dest_path`` is untouched and no source is
        deleted. Sources are deleted only after the destination is complete.
        """

    @abstractmethod
    def delete(self, keys: Sequence[str]) -> BackendStatus:
        """Delete blobs; keys that do not exist are ignored."""


class FinalStorage(ABC):
    @abstractmethod
    def promote(self, file_path: str, dest_name: str) -> str:
        """Move a verified file into permanent storage and return its location."""
