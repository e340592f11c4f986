import os
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, get_db
from app.models import file_transfer  # noqa: F401
from app.services.object_store import LocalObjectStore
from app.services.record_store import TransferRecordStore
from app.services.transfer_service import TransferService

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeClock:
    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture()
def db_session():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def object_store(tmp_path):
    return LocalObjectStore(str(tmp_path / "blobs"))


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def records(db_session):
    return TransferRecordStore(db_session)


@pytest.fixture()
def service(records, object_store, clock):
    return TransferService(
        records,
        object_store,
        clock=clock,
        ttl=timedelta(hours=24),
        max_file_size=1024 * 1024,
        default_max_downloads=1,
        allowed_mime_types=[],
    )


@pytest.fixture()
def client(db_session, object_store):
    from app.main import app
    from app.routers.transfers import get_object_store

    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_object_store] = lambda: object_store

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
