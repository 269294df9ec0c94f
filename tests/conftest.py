import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy.orm import sessionmaker

from chunked_upload.core.database import init_db, make_engine
from chunked_upload.services.session_store import UploadSessionStore
from chunked_upload.services.storage.internal import InternalChunkStore, InternalFinalStorage
from chunked_upload.services.tempfiles import TempFileFactory
from chunked_upload.services.upload_coordinator import ChunkedUploadCoordinator

MAX_UPLOAD_SIZE = 1000
SESSION_TTL = 3600


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'sessions.db'}")
    init_db(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def session_store(session_factory):
    return UploadSessionStore(session_factory)


@pytest.fixture
def chunk_root(tmp_path):
    return str(tmp_path / "chunks")


@pytest.fixture
def chunk_store(chunk_root):
    return InternalChunkStore(chunk_root)


@pytest.fixture
def final_root(tmp_path):
    return str(tmp_path / "persistent")


@pytest.fixture
def temp_dir(tmp_path):
    return str(tmp_path / "tmp")


@pytest.fixture
def make_coordinator(session_factory, chunk_root, final_root, temp_dir):
    """Builds a coordinator with fresh collaborators sharing the same durable state."""

    def _make(store=None, final_storage=None, verifier=None, max_upload_size=MAX_UPLOAD_SIZE):
        return ChunkedUploadCoordinator(
            sessions=UploadSessionStore(session_factory),
            store=store or InternalChunkStore(chunk_root),
            final_storage=final_storage or InternalFinalStorage(final_root),
            verifier=verifier,
            temp_files=TempFileFactory(temp_dir),
            max_upload_size=max_upload_size,
            session_ttl=SESSION_TTL,
        )

    return _make


@pytest.fixture
def coordinator(make_coordinator):
    return make_coordinator()
