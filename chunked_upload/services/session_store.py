import logging
import time
from typing import Iterable, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.orm import sessionmaker

from chunked_upload.core.session import SessionStatus, UploadSession
from chunked_upload.models.upload_session import UploadSessionRecord

logger = logging.getLogger(__name__)

_FIELDS = (
    "offset", "chunk_index", "first_chunk_path", "status", "file_name", "declared_size",
    "expected_sha256", "failure_code", "final_location", "final_sha256", "created_at", "updated_at",
)


def _status_values(statuses: Iterable) -> List[str]:
    return [SessionStatus(s).value for s in statuses]


class UploadSessionStore:
    """Durable upload session records.

    Every call opens its own database session and commits before returning,
    so a read issued after a write for the same key always observes it. The
    session factory must be bound to the primary database.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        if session_factory is None:
            from chunked_upload.core.database import SessionLocal
            session_factory = SessionLocal
        self._session_factory = session_factory

    @staticmethod
    def _to_session(row: UploadSessionRecord) -> UploadSession:
        data = {name: getattr(row, name) for name in _FIELDS}
        data["key"] = row.key
        return UploadSession.from_dict(data)

    @staticmethod
    def _to_columns(fields: dict) -> dict:
        values = {}
        for name, value in fields.items():
            if name not in _FIELDS:
                raise ValueError(f"Unknown upload session field: {name}")
            values[name] = value.value if isinstance(value, SessionStatus) else value
        return values

    def get(self, key: str) -> Optional[UploadSession]:
        with self._session_factory() as db:
            row = db.get(UploadSessionRecord, key)
            return self._to_session(row) if row is not None else None

    def insert(self, session: UploadSession) -> UploadSession:
        now = time.time()
        session.created_at = session.created_at or now
        session.updated_at = session.updated_at or now
        data = session.to_dict()
        with self._session_factory() as db:
            db.add(UploadSessionRecord(key=data.pop("key"), **self._to_columns(data)))
            db.commit()
        logger.debug(f"Inserted upload session {session.key} offset:{session.offset} inx:{session.chunk_index}")
        return session

    def upsert(self, key: str, **fields) -> UploadSession:
        values = self._to_columns(fields)
        now = time.time()
        values.setdefault("updated_at", now)
        with self._session_factory() as db:
            row = db.get(UploadSessionRecord, key)
            if row is None:
                values.setdefault("created_at", now)
                row = UploadSessionRecord(key=key, **values)
                db.add(row)
            else:
                for name, value in values.items():
                    setattr(row, name, value)
            db.commit()
            return self._to_session(row)

    def advance(self, key: str, expected_offset: int, offset: int, chunk_index: int) -> bool:
        """Move an active session forward only if it still sits at ``expected_offset``."""
        stmt = (
            update(UploadSessionRecord)
            .where(
                UploadSessionRecord.key == key,
                UploadSessionRecord.status == SessionStatus.ACTIVE.value,
                UploadSessionRecord.offset == expected_offset,
            )
            .values(offset=offset, chunk_index=chunk_index, updated_at=time.time())
        )
        with self._session_factory() as db:
            result = db.execute(stmt)
            db.commit()
        logger.debug(f"Update chunk status for {key} offset:{offset} inx:{chunk_index} applied:{result.rowcount == 1}")
        return result.rowcount == 1

    def transition(self, key: str, from_statuses: Iterable, to_status: SessionStatus, **fields) -> bool:
        values = self._to_columns(fields)
        values["status"] = SessionStatus(to_status).value
        values.setdefault("updated_at", time.time())
        stmt = (
            update(UploadSessionRecord)
            .where(
                UploadSessionRecord.key == key,
                UploadSessionRecord.status.in_(_status_values(from_statuses)),
            )
            .values(**values)
        )
        with self._session_factory() as db:
            result = db.execute(stmt)
            db.commit()
        return result.rowcount == 1

    def delete(
        self,
        key: str,
        statuses: Optional[Iterable] = None,
        updated_before: Optional[float] = None,
    ) -> bool:
        stmt = delete(UploadSessionRecord).where(UploadSessionRecord.key == key)
        if statuses is not None:
            stmt = stmt.where(UploadSessionRecord.status.in_(_status_values(statuses)))
        if updated_before is not None:
            stmt = stmt.where(UploadSessionRecord.updated_at < updated_before)
        with self._session_factory() as db:
            result = db.execute(stmt)
            db.commit()
        return result.rowcount == 1

    def list_stale(self, cutoff: float, statuses: Iterable) -> List[UploadSession]:
        stmt = (
            select(UploadSessionRecord)
            .where(
                UploadSessionRecord.updated_at < cutoff,
                UploadSessionRecord.status.in_(_status_values(statuses)),
            )
            .order_by(UploadSessionRecord.updated_at)
        )
        with self._session_factory() as db:
            return [self._to_session(row) for row in db.scalars(stmt)]
