from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Optional


class SessionStatus(str, Enum):
    ACTIVE = "active"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    FAILED = "failed"


def chunk_key(session_key: str, index: int) -> str:
    return f"{session_key}.{index}"


@dataclass
class UploadSession:
    """State of one chunked upload, as stored in the durable record.

    Instances are snapshots: every coordinator operation reloads one from the
    record store and nothing keeps them around between calls.
    """

    key: str
    offset: int
    chunk_index: int
    first_chunk_path: str
    status: SessionStatus = SessionStatus.ACTIVE
    file_name: Optional[str] = None
    declared_size: Optional[int] = None
    expected_sha256: Optional[str] = None
    failure_code: Optional[str] = None
    final_location: Optional[str] = None
    final_sha256: Optional[str] = None
    created_at: float = 0.0
    updated_at: float = 0.0

    def chunk_keys(self) -> list:
        return [chunk_key(self.key, i) for i in range(self.chunk_index + 1)]

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "UploadSession":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["status"] = SessionStatus(values.get("status", SessionStatus.ACTIVE))
        return cls(**values)
