from chunked_upload.core.config import settings
from .s3 import S3ChunkStore, S3FinalStorage
from .internal import InternalChunkStore, InternalFinalStorage
from .base import ChunkStore, FinalStorage

_chunk_store_instance = None
_final_storage_instance = None

def get_chunk_store() -> ChunkStore:
    global _chunk_store_instance
    if _chunk_store_instance is not None:
        return _chunk_store_instance
    if settings.STORAGE_BACKEND == "s3":
        _chunk_store_instance = S3ChunkStore()
    elif settings.STORAGE_BACKEND == "local":
        _chunk_store_instance = InternalChunkStore()
    else:
        raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND}")
    return _chunk_store_instance

def get_final_storage() -> FinalStorage:
    global _final_storage_instance
    if _final_storage_instance is not None:
        return _final_storage_instance
    if settings.STORAGE_BACKEND == "s3":
        _final_storage_instance = S3FinalStorage()
    elif settings.STORAGE_BACKEND == "local":
        _final_storage_instance = InternalFinalStorage()
    else:
        raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND}")
    return _final_storage_instance
