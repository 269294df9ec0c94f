from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional

class Settings(BaseSettings):
    ENV: str = "local"
    LOG_LEVEL: str = "INFO"

    # Durable session records (any SQLAlchemy URL; must point at the primary, not a replica)
    DATABASE_URL: str = "sqlite:///./chunked_upload.db"

    S3_ACCESS_KEY: str = ""
    S3_SECRET_KEY: str = ""
    S3_BUCKET_NAME: str = "chunked-uploads"
    S3_ENDPOINT_URL: str = ""
    S3_REGION_NAME: Optional[str] = None
    S3_CHUNK_PREFIX: str = ""

    # Chunk zone for the local backend
    LOCAL_CHUNK_STORE_PATH: str = "/tmp/chunked_upload/chunks"

    # Scratch directory for concatenation
    TEMP_DIR: str = "/tmp/chunked_upload/tmp"

    # Persistent Local Storage for completed files (if not using S3 as primary)
    PERSISTENT_LOCAL_STORAGE_PATH: str = "/var/data/chunked_uploads"

    STORAGE_BACKEND: str = "local"  # 's3' or 'local'
    SERVICE_PORT: int = 8000

    MAX_UPLOAD_SIZE: int = 4 * 1024 * 1024 * 1024
    SESSION_TTL_SECONDS: int = 6 * 3600

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env" if ENV == "local" else None,
        env_file_encoding="utf-8",
    )

settings = Settings()
