"""Shared fixtures: every test gets its own storage root under tmp_path."""
import pytest
from fastapi.testclient import TestClient

from resumable_upload.core import Settings, create_db_engine
from resumable_upload.main import create_app
from resumable_upload.services import (
    Assembler,
    ChunkStore,
    HashIndex,
    IntegrityVerifier,
    UploadSessionController,
)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        upload_dir=str(tmp_path / "files"),
        CHUNK_DIR=tmp_path / "files" / "chunks",
        COMPLETE_DIR=tmp_path / "files" / "complete",
        LEGACY_HASH_FILE=tmp_path / "files" / "hashes.json",
        DATABASE_URL=f"sqlite:///{tmp_path / 'files' / 'hashes.db'}",
        HASH_ALGORITHM="md5",
        PUBLIC_URL_PREFIX="/files/complete",
        MAX_CHUNK_BYTES=1024 * 1024,
        MAX_TOTAL_CHUNKS=1000,
        SESSION_TTL_SECONDS=3600,
        LOCK_TIMEOUT_SECONDS=5.0,
    )


@pytest.fixture
def hash_index(tmp_path):
    index = HashIndex(create_db_engine(f"sqlite:///{tmp_path / 'index.db'}"))
    index.create_tables()
    yield index
    index.engine.dispose()


@pytest.fixture
def chunk_store(tmp_path):
    return ChunkStore(tmp_path / "chunks")


@pytest.fixture
def complete_dir(tmp_path):
    path = tmp_path / "complete"
    path.mkdir()
    return path


@pytest.fixture
def assembler(chunk_store, complete_dir):
    return Assembler(chunk_store, complete_dir)


@pytest.fixture
def verifier(complete_dir):
    return IntegrityVerifier(complete_dir, "md5")


@pytest.fixture
def controller(settings):
    controller = UploadSessionController.from_settings(settings)
    yield controller
    controller.hash_index.engine.dispose()


@pytest.fixture
def client(settings):
    app = create_app(settings)
    with TestClient(app) as test_client:
        yield test_client
