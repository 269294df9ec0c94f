"""Database model for chunked upload sessions."""
from sqlalchemy import BigInteger, Column, Float, Integer, String

from chunked_upload.core.database import Base


class UploadSessionRecord(Base):
    """Coordination row for one chunked upload."""

    __tablename__ = "upload_sessions"

    key = Column(String(64), primary_key=True)
    offset = Column("byte_offset", BigInteger, nullable=False, default=0)
    chunk_index = Column(Integer, nullable=False, default=0)
    first_chunk_path = Column(String(1024), nullable=False)
    status = Column(String(20), nullable=False, default="active", index=True)

    file_name = Column(String(512), nullable=True)
    declared_size = Column(BigInteger, nullable=True)
    expected_sha256 = Column(String(64), nullable=True)
    failure_code = Column(String(64), nullable=True)
    final_location = Column(String(1024), nullable=True)
    final_sha256 = Column(String(64), nullable=True)

    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False, index=True)

    def __repr__(self):
        return f"<UploadSessionRecord(key={self.key}, offset={self.offset}, chunk_index={self.chunk_index}, status={self.status})>"
