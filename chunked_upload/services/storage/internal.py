import os
import shutil
import logging
import tempfile
from typing import Optional, Sequence
from .base import CHUNK_EXISTS, ChunkStore, FinalStorage
from chunked_upload.core.config import settings
from chunked_upload.core.status import BackendStatus

logger = logging.getLogger(__name__)


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove {path}: {e}")


class InternalChunkStore(ChunkStore):
    """Chunk zone on a local (or shared network) filesystem."""

    def __init__(self, root: Optional[str] = None):
        self.root = root or settings.LOCAL_CHUNK_STORE_PATH

    def path_for(self, key: str) -> str:
        return os.path.join(self.root, self.hashed_location(key))

    def write(self, key: str, data: bytes) -> BackendStatus:
        chunk_path = self.path_for(key)
        tmp_path = None
        try:
            chunk_dir = os.path.dirname(chunk_path)
            os.makedirs(chunk_dir, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=chunk_dir, prefix=".store-")
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            # link, unlike rename, fails when the chunk already exists
            try:
                os.link(tmp_path, chunk_path)
            except FileExistsError:
                return BackendStatus.new_fatal(CHUNK_EXISTS, chunk_path)
        except OSError as e:
            return BackendStatus.new_fatal("backend-fail-store", chunk_path, e)
        finally:
            if tmp_path:
                _remove_quietly(tmp_path)

        logger.debug(f"Chunk saved successfully: {chunk_path} ({len(data)} bytes)")
        return BackendStatus.good(chunk_path)

    def read(self, key: str) -> bytes:
        with open(self.path_for(key), "rb") as f:
            return f.read()

    def concatenate(self, keys: Sequence[str], dest_path: str, delete_sources: bool = False) -> BackendStatus:
        paths = [self.path_for(key) for key in keys]

        status = BackendStatus()
        for path in paths:
            if not os.path.isfile(path):
                status.fatal("backend-fail-notexists", path)
        if not status.is_ok():
            return status

        dest_path = str(dest_path)
        staging_path = f"{dest_path}.staging"
        total_size = 0
        try:
            with open(staging_path, "wb") as merged:
                for i, path in enumerate(paths):
                    with open(path, "rb") as chunk_file:
                        shutil.copyfileobj(chunk_file, merged)
                    logger.debug(f"Chunk {i + 1}/{len(paths)} merged: {path}")
                merged.flush()
                os.fsync(merged.fileno())
                total_size = merged.tell()
            os.replace(staging_path, dest_path)
        except OSError as e:
            return BackendStatus.new_fatal("backend-fail-concatenate", dest_path, e)
        finally:
            if os.path.exists(staging_path):
                _remove_quietly(staging_path)

        logger.info(f"Merged {len(paths)} chunks into {dest_path} ({total_size / 1024 / 1024:.2f}MB)")

        status = BackendStatus.good(dest_path)
        if delete_sources:
            # The destination is complete; a source left behind only wastes space.
            for entry in self._delete_paths(paths).entries:
                status.warning(entry.message, *entry.params)
        return status

    def delete(self, keys: Sequence[str]) -> BackendStatus:
        return self._delete_paths([self.path_for(key) for key in keys])

    def _delete_paths(self, paths: Sequence[str]) -> BackendStatus:
        status = BackendStatus()
        for path in paths:
            try:
                os.remove(path)
            except FileNotFoundError:
                continue
            except OSError as e:
                status.fatal("backend-fail-delete", path, e)
        return status


class InternalFinalStorage(FinalStorage):
    def __init__(self, root: Optional[str] = None):
        self.root = os.path.normpath(os.path.join(root or settings.PERSISTENT_LOCAL_STORAGE_PATH, "final"))

    def promote(self, file_path: str, dest_name: str) -> str:
        final_path = os.path.normpath(os.path.join(self.root, dest_name))
        if os.path.commonpath([self.root, final_path]) != self.root:
            raise ValueError(f"Destination {dest_name!r} escapes the storage root")
        os.makedirs(os.path.dirname(final_path), exist_ok=True)
        shutil.move(str(file_path), final_path)
        logger.info(f"Promoted {file_path} to {final_path}")
        return final_path
