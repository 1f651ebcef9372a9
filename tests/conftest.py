import os

# must be set before anything imports rosterhub.core.config
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rosterhub.api.imports import get_import_processor
from rosterhub.core.config import settings
from rosterhub.db.base import Base
from rosterhub.db.session import get_db
from rosterhub.main import app
from rosterhub.services.import_worker import ImportProcessor
from rosterhub.services.storage import LocalFileStorage, get_storage

from tests.helpers import FakeClock, FakeIdentityProvider, RecordingNotifier, SleepRecorder

# One shared in-memory database. The import worker and the identity provider
# open their own sessions, so every session must see the same connection.
engine = create_engine(
    "sqlite+pysqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture(autouse=True)
def reset_schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def session_factory():
    return TestingSessionLocal


@pytest.fixture()
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def test_settings():
    return settings.model_copy(update={"IMPORT_BATCH_SIZE": 2})


@pytest.fixture()
def storage(tmp_path):
    return LocalFileStorage(tmp_path / "staging")


@pytest.fixture()
def provider():
    return FakeIdentityProvider(TestingSessionLocal)


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def sleeper():
    return SleepRecorder()


@pytest.fixture()
def clock():
    return FakeClock(step=0.0)


@pytest.fixture()
def processor(provider, notifier, storage, test_settings, sleeper, clock):
    return ImportProcessor(
        TestingSessionLocal,
        provider,
        notifier,
        storage,
        settings=test_settings,
        sleep=sleeper,
        clock=clock,
    )


@pytest.fixture(autouse=True)
def override_dependencies(request):
    def _get_db_override():
        db = TestingSessionLocal()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db_override
    if "processor" in request.fixturenames:
        processor = request.getfixturevalue("processor")
        storage = request.getfixturevalue("storage")
        app.dependency_overrides[get_import_processor] = lambda: processor
        app.dependency_overrides[get_storage] = lambda: storage
    yield
    app.dependency_overrides.clear()
