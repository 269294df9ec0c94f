import os
import time
import uuid
import logging
from dataclasses import dataclass
from typing import Optional

from chunked_upload.core.config import settings
from chunked_upload.core.errors import (
    BackendWriteError,
    ChunkSizeMismatch,
    ChunkVerificationFailed,
    ConcatenationFailed,
    FileTooLarge,
    InvalidChunkOffset,
    InvalidSessionState,
    PromotionFailed,
    SessionNotFound,
    UploadError,
    UploadIncomplete,
    VerificationFailed,
)
from chunked_upload.core.session import SessionStatus, UploadSession, chunk_key
from chunked_upload.core.status import log_backend_status
from chunked_upload.services.session_store import UploadSessionStore
from chunked_upload.services.storage.base import CHUNK_EXISTS, ChunkStore, FinalStorage
from chunked_upload.services.storage.factory import get_chunk_store, get_final_storage
from chunked_upload.services.tempfiles import TempFileFactory
from chunked_upload.services.verifier import VERIFICATION_ERROR, FailureReason, IntegrityVerifier, file_sha256

logger = logging.getLogger(__name__)

EXPIRABLE = (SessionStatus.ACTIVE, SessionStatus.FAILED)


@dataclass(frozen=True)
class FinalFileHandle:
    session_key: str
    location: str
    size: int
    sha256: str


class ChunkedUploadCoordinator:
    """Creates, extends and assembles chunked uploads.

    Nothing is kept between calls: each operation reloads the session from
    the record store, so consecutive calls may be served by different
    processes. A chunk is always stored before the record that accounts for
    it, so the record never claims more bytes than the chunk store holds.
    """

    def __init__(
        self,
        sessions: UploadSessionStore,
        store: ChunkStore,
        final_storage: FinalStorage,
        verifier: Optional[IntegrityVerifier] = None,
        temp_files: Optional[TempFileFactory] = None,
        max_upload_size: Optional[int] = None,
        session_ttl: Optional[float] = None,
    ):
        self.sessions = sessions
        self.store = store
        self.final_storage = final_storage
        self.verifier = verifier or IntegrityVerifier()
        self.temp_files = temp_files or TempFileFactory()
        self.max_upload_size = settings.MAX_UPLOAD_SIZE if max_upload_size is None else max_upload_size
        self.session_ttl = settings.SESSION_TTL_SECONDS if session_ttl is None else session_ttl

    def _load(self, session_key: str) -> UploadSession:
        session = self.sessions.get(session_key)
        if session is None:
            raise SessionNotFound(session_key)
        return session

    def _store_chunk(self, key: str, data: bytes) -> bool:
        """Store a chunk; False when ``key`` already holds different bytes."""
        status = self.store.write(key, data)
        if status.is_ok():
            return True
        if status.first_failure()[0] == CHUNK_EXISTS:
            return self._holds(key, data)
        error = log_backend_status(
            logger,
            status,
            '[{type}] Error storing chunk for {file_key} ({details})',
            {"file_key": key},
        )
        raise BackendWriteError("store", self.store.hashed_location(key), error)

    def _holds(self, key: str, data: bytes) -> bool:
        # a retry after a crash between chunk write and record update finds its own bytes
        try:
            return self.store.read(key) == data
        except Exception as e:
            logger.error(f"Could not read back stored chunk {key}: {str(e)}")
            raise BackendWriteError("read", self.store.hashed_location(key), (str(e),)) from e

    def _delete_chunks(self, session: UploadSession) -> None:
        status = self.store.delete(session.chunk_keys())
        if not status.is_ok():
            log_backend_status(
                logger,
                status,
                '[{type}] Error deleting chunks of {file_key} ({details})',
                {"file_key": session.key},
            )

    def _fail(self, session: UploadSession, error: UploadError) -> None:
        if isinstance(error, (ChunkVerificationFailed, VerificationFailed)):
            failure_code = error.reason.code
        else:
            failure_code = error.code
        self.sessions.transition(
            session.key,
            (SessionStatus.ACTIVE, SessionStatus.FINALIZING),
            SessionStatus.FAILED,
            failure_code=failure_code,
        )
        logger.info(f"Upload session {session.key} failed: {error}")

    def create_session(
        self,
        initial_bytes: bytes,
        total_declared_size: Optional[int] = None,
        file_name: Optional[str] = None,
        expected_sha256: Optional[str] = None,
    ) -> UploadSession:
        """Store the first chunk and open a session for it."""
        size = len(initial_bytes)
        if size > self.max_upload_size:
            raise FileTooLarge(size, self.max_upload_size)
        if total_declared_size is not None and total_declared_size > self.max_upload_size:
            raise FileTooLarge(total_declared_size, self.max_upload_size)

        reason = self.verifier.check_partial(initial_bytes)
        if reason:
            raise ChunkVerificationFailed(reason)

        key = uuid.uuid4().hex
        first_key = chunk_key(key, 0)
        self._store_chunk(first_key, initial_bytes)

        session = self.sessions.insert(UploadSession(
            key=key,
            offset=size,
            chunk_index=0,
            first_chunk_path=self.store.hashed_location(first_key),
            file_name=file_name,
            declared_size=total_declared_size,
            expected_sha256=expected_sha256,
        ))
        logger.info(f"Created upload session {key} with first chunk of {size} bytes")
        return session

    def append_chunk(
        self,
        session_key: str,
        chunk_bytes: bytes,
        chunk_size: Optional[int],
        claimed_offset: int,
    ) -> UploadSession:
        """Append the next chunk; ``claimed_offset`` must equal the stored offset."""
        session = self._load(session_key)
        if session.status != SessionStatus.ACTIVE:
            raise InvalidSessionState(session_key, session.status.value)

        actual_size = len(chunk_bytes)
        if chunk_size is None:
            chunk_size = actual_size
        elif chunk_size != actual_size:
            raise ChunkSizeMismatch(chunk_size, actual_size)

        pre_append_offset = session.offset
        if pre_append_offset + chunk_size > self.max_upload_size:
            error = FileTooLarge(pre_append_offset + chunk_size, self.max_upload_size)
            # a resent chunk from before the last append must not end the session
            if claimed_offset == pre_append_offset:
                self._fail(session, error)
            raise error

        if claimed_offset != pre_append_offset:
            raise InvalidChunkOffset(pre_append_offset, claimed_offset)

        reason = self.verifier.check_partial(chunk_bytes)
        if reason:
            error = ChunkVerificationFailed(reason)
            self._fail(session, error)
            raise error

        new_index = session.chunk_index + 1
        if not self._store_chunk(chunk_key(session_key, new_index), chunk_bytes):
            current = self._load(session_key)
            logger.warning(
                f"Chunk {new_index} of upload session {session_key} was stored by another request, "
                f"session at {current.offset} ({current.status.value})"
            )
            raise InvalidChunkOffset(current.offset, claimed_offset)

        new_offset = pre_append_offset + chunk_size
        if not self.sessions.advance(session_key, pre_append_offset, new_offset, new_index):
            # another request with the same bytes moved the session first
            current = self._load(session_key)
            logger.warning(
                f"Lost update for upload session {session_key} at offset {pre_append_offset}, "
                f"now at {current.offset} ({current.status.value})"
            )
            raise InvalidChunkOffset(current.offset, claimed_offset)

        logger.debug(f"Appended chunk {new_index} to {session_key} offset:{new_offset}")
        return self._load(session_key)

    def get_chunk_status(self, session_key: str) -> UploadSession:
        return self._load(session_key)

    def finalize(self, session_key: str, dest_name: Optional[str] = None) -> FinalFileHandle:
        """Concatenate all chunks, verify the result and promote it."""
        session = self._load(session_key)
        if session.status == SessionStatus.COMPLETE:
            return FinalFileHandle(session_key, session.final_location, session.offset, session.final_sha256)
        if session.status != SessionStatus.ACTIVE:
            raise InvalidSessionState(session_key, session.status.value)
        if session.declared_size is not None and session.declared_size != session.offset:
            raise UploadIncomplete(session.declared_size, session.offset)

        chunk_keys = session.chunk_keys()
        suffix = os.path.splitext(session.file_name or "")[1]

        with self.temp_files.new_temp_file(suffix) as tmp_path:
            if not self.sessions.transition(session_key, (SessionStatus.ACTIVE,), SessionStatus.FINALIZING):
                current = self._load(session_key)
                raise InvalidSessionState(session_key, current.status.value)

            logger.debug(
                f"Concatenate {len(chunk_keys)} chunks for {session_key} "
                f"offset:{session.offset} inx:{session.chunk_index}"
            )
            started = time.monotonic()
            try:
                status = self.store.concatenate(chunk_keys, str(tmp_path), delete_sources=True)
            except Exception as e:
                logger.error(f"Unexpected error concatenating chunks of {session_key}: {e!r}")
                self.sessions.transition(session_key, (SessionStatus.FINALIZING,), SessionStatus.ACTIVE)
                raise ConcatenationFailed(("backend-fail-concatenate", str(tmp_path), str(e))) from e
            elapsed = time.monotonic() - started
            if not status.is_ok():
                # backend errors are not user related, so they are safe to log
                failure = log_backend_status(
                    logger,
                    status,
                    '[{type}] Error on concatenate {chunks} stashed files ({details})',
                    {"chunks": session.chunk_index},
                )
                self.sessions.transition(session_key, (SessionStatus.FINALIZING,), SessionStatus.ACTIVE)
                raise ConcatenationFailed(failure)
            if status.warnings:
                log_backend_status(
                    logger,
                    status,
                    '[{type}] Leftover chunk after concatenating {chunks} stashed files ({details})',
                    {"chunks": session.chunk_index},
                )
            logger.info(f"Combined {len(chunk_keys)} chunks in {elapsed:.3f} seconds.")

            # the chunks are gone from here on, so every failure is terminal
            try:
                reason = self.verifier.check_full(
                    str(tmp_path),
                    expected_size=session.offset,
                    expected_sha256=session.expected_sha256,
                    file_name=session.file_name,
                )
                digest = None if reason else file_sha256(str(tmp_path))
            except Exception as e:
                logger.error(f"Could not verify assembled upload {session_key}: {e!r}")
                error = VerificationFailed(FailureReason(VERIFICATION_ERROR, str(e)))
                self._fail(session, error)
                raise error from e
            if reason:
                logger.info(f"Verification failed for chunked upload {session_key}: {reason.code}")
                error = VerificationFailed(reason)
                self._fail(session, error)
                raise error

            destination = dest_name or f"{session_key}/{session.file_name or session_key}"
            try:
                location = self.final_storage.promote(str(tmp_path), destination)
            except Exception as e:
                logger.error(f"Promotion of upload {session_key} to {destination} failed: {str(e)}")
                error = PromotionFailed(str(e))
                self._fail(session, error)
                raise error from e

        if not self.sessions.transition(
            session_key,
            (SessionStatus.FINALIZING,),
            SessionStatus.COMPLETE,
            final_location=location,
            final_sha256=digest,
        ):
            logger.warning(f"Upload session {session_key} left finalizing before completion was recorded")

        logger.info(f"Completed upload {session_key}: {session.offset} bytes at {location}")
        return FinalFileHandle(session_key, location, session.offset, digest)

    def abandon(self, session_key: str) -> None:
        """Drop an unfinished session and its chunks."""
        session = self._load(session_key)
        if not self.sessions.delete(session_key, statuses=EXPIRABLE):
            current = self._load(session_key)
            raise InvalidSessionState(session_key, current.status.value)
        self._delete_chunks(session)
        logger.info(f"Abandoned upload session {session_key} ({session.chunk_index + 1} chunks)")

    def expire_stale_sessions(self, now: Optional[float] = None) -> int:
        """Remove sessions idle for longer than the TTL; returns how many records went away.

        Sessions that are finalizing are never touched.
        """
        now = time.time() if now is None else now
        cutoff = now - self.session_ttl
        removed = 0

        for session in self.sessions.list_stale(cutoff, EXPIRABLE):
            if self.sessions.delete(session.key, statuses=EXPIRABLE, updated_before=cutoff):
                self._delete_chunks(session)
                removed += 1
                logger.info(f"Expired upload session {session.key} ({session.status.value}, offset {session.offset})")

        for session in self.sessions.list_stale(cutoff, (SessionStatus.COMPLETE,)):
            if self.sessions.delete(session.key, statuses=(SessionStatus.COMPLETE,), updated_before=cutoff):
                removed += 1

        return removed


_coordinator_instance = None

def get_coordinator() -> ChunkedUploadCoordinator:
    global _coordinator_instance
    if _coordinator_instance is not None:
        return _coordinator_instance
    _coordinator_instance = ChunkedUploadCoordinator(
        sessions=UploadSessionStore(),
        store=get_chunk_store(),
        final_storage=get_final_storage(),
    )
    return _coordinator_instance
