from pydantic import BaseModel
from typing import Optional

from chunked_upload.core.session import UploadSession


class SessionStatusData(BaseModel):
    session_key: str
    offset: int
    chunk_index: int
    status: str
    file_name: Optional[str] = None
    declared_size: Optional[int] = None
    failure_code: Optional[str] = None

    @classmethod
    def from_session(cls, session: UploadSession) -> "SessionStatusData":
        return cls(
            session_key=session.key,
            offset=session.offset,
            chunk_index=session.chunk_index,
            status=session.status.value,
            file_name=session.file_name,
            declared_size=session.declared_size,
            failure_code=session.failure_code,
        )

class SessionStatusResponse(BaseModel):
    status: str = "success"
    message: str = "Upload session status."
    data: SessionStatusData

class CompleteSessionRequest(BaseModel):
    dest_name: Optional[str] = None

class CompleteSessionResponseData(BaseModel):
    session_key: str
    location: str
    size: int
    sha256: str

class CompleteSessionResponse(BaseModel):
    status: str = "success"
    message: str = "File upload completed."
    data: CompleteSessionResponseData

class ErrorDetail(BaseModel):
    code: str
    category: str
    message: str
