"""Shared fixtures: in-memory database, fake Drive store and a test client."""

import base64
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import auth
import database
import main
import models
from config import Settings
from drive import BlobStore
from errors import StorageError

PARENT_FOLDER_ID = "1AbCdEfGhIjKlMnOpQrStUvWxYz012345"


class FakeBlobStore(BlobStore):
    """In-memory stand-in for Google Drive with failure injection."""

    def __init__(self):
        self.folders = {}  # (parent_id, name) -> [folder ids]
        self.objects = {}  # object id -> dict
        self.public = set()
        self.fail_names = set()
        self.unavailable = False
        self._next_id = 0

    def _new_id(self, prefix):
        self._next_id += 1
        return f"{prefix}{self._next_id:04d}"

    def _check(self):
        if self.unavailable:
            raise StorageError("Drive unavailable")

    def find_folders(self, name, parent_id):
        self._check()
        return list(self.folders.get((parent_id, name), []))

    def create_folder(self, name, parent_id):
        self._check()
        folder_id = self._new_id("folder")
        self.folders.setdefault((parent_id, name), []).append(folder_id)
        return folder_id

    def put_object(self, folder_id, name, local_path, mime_type):
        self._check()
        if name in self.fail_names:
            raise StorageError(f"Drive upload failed for {name}")
        with open(local_path, "rb") as f:
            content = f.read()
        object_id = self._new_id("obj")
        self.objects[object_id] = {
            "folder_id": folder_id,
            "name": name,
            "mime_type": mime_type,
            "content": content,
        }
        return object_id

    def set_public_readable(self, object_id):
        self._check()
        self.public.add(object_id)


def data_uri(content: bytes, mime: str = "audio/mp3") -> str:
    return f"data:{mime};base64,{base64.b64encode(content).decode()}"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    models.Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def upload_dir(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def settings(upload_dir):
    return Settings(
        google_drive_parent_folder_id=PARENT_FOLDER_ID,
        upload_dir=str(upload_dir),
    )


@pytest.fixture
def app(settings, blob_store, session_factory):
    app = main.create_app(settings, blob_store=blob_store, session_factory=session_factory)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[database.get_db] = override_get_db
    return app


@pytest.fixture
def client(app):
    # Lifespan is not entered, so no background sweeper and no Drive login.
    return TestClient(app)


@pytest.fixture
def make_user(db):
    """Factory for persisted users with a bcrypt password."""

    def _make(username="alice", password="s3cret!"):
        return auth.create_user(db, username=username, password=password, age=30,
                                gender="f", city="Lahore", language="ur")

    return _make


@pytest.fixture
def make_file_record(db):
    def _make(owner_id, age_hours=0.0, filepath=None, file_name="clip.mp3"):
        record = models.File(
            owner_id=owner_id,
            file_id="obj-existing",
            file_name=file_name,
            folder_name="alice",
            drive_url="https://drive.google.com/uc?id=obj-existing&export=download",
            filepath=filepath,
            created_at=datetime.utcnow() - timedelta(hours=age_hours),
        )
        db.add(record)
        db.commit()
        db.refresh(record)
        return record

    return _make


@pytest.fixture
def make_public_entry(db):
    def _make(code, age_hours=0.0, owner="alice", filename="clip.mp3"):
        entry = models.PublicRecording(
            code=code,
            owner=owner,
            recording='{"filename": "%s", "driveUrl": "https://drive.google.com/uc?id=x&export=download"}' % filename,
            created_at=datetime.utcnow() - timedelta(hours=age_hours),
        )
        db.add(entry)
        db.commit()
        db.refresh(entry)
        return entry

    return _make
