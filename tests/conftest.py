import os
import tempfile

# Configure the environment before any citypulse module reads it
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-access-secret-do-not-use")
os.environ.setdefault("REFRESH_TOKEN_SECRET", "test-refresh-secret-do-not-use")
os.environ.setdefault("MEDIA_ROOT", tempfile.mkdtemp(prefix="citypulse_media_"))
os.environ.setdefault("LOG_JSON", "false")
os.environ.pop("CLOUDINARY_URL", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from citypulse.database import Base  # noqa: E402
from citypulse.main import app, get_db  # noqa: E402
from citypulse.media import MediaStore, StoredMedia, get_media_store  # noqa: E402


# -------------------------------------------------------
# ⚙️ Test Database Setup
# -------------------------------------------------------
# Use in-memory SQLite for fast, isolated tests
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeMediaStore(MediaStore):
    """In-memory media store. Uploads of any filename in ``fail_names`` raise."""

    def __init__(self):
        self.files = {}
        self.deleted = []
        self.fail_names = set()
        self._counter = 0

    def upload(self, data, folder, filename=None):
        if filename in self.fail_names:
            raise RuntimeError(f"upload rejected: {filename}")
        self._counter += 1
        public_id = f"{folder}/{self._counter}-{filename}"
        self.files[public_id] = data
        return StoredMedia(url=f"https://media.test/{public_id}", public_id=public_id)

    def delete(self, public_id):
        self.deleted.append(public_id)
        self.files.pop(public_id, None)


# -------------------------------------------------------
# 🧪 Fixtures
# -------------------------------------------------------
@pytest.fixture(scope="function")
def db_session():
    """Create a new database session for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        # Drop tables to ensure clean slate for next test
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def media_store():
    return FakeMediaStore()


@pytest.fixture(scope="function")
def client(db_session, media_store):
    """Create a new test client for each test with DB and media overrides."""

    def override_get_db():
        try:
            yield db_session
        finally:
            db_session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_media_store] = lambda: media_store
    yield TestClient(app)
    app.dependency_overrides.clear()


REGISTRATION = {
    "firstName": "Asha",
    "lastName": "Rao",
    "email": "a@x.com",
    "password": "Passw0rd",
    "phone": "555-0100",
}


@pytest.fixture
def register(client):
    def _register(**overrides):
        form = {**REGISTRATION, **overrides}
        return client.post("/auth/register", data=form)
    return _register


@pytest.fixture
def login(client, register):
    """Register the default user and return the login response body."""
    def _login(email=REGISTRATION["email"], password=REGISTRATION["password"]):
        response = client.post("/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        return response.json()
    register()
    return _login


@pytest.fixture
def auth_headers(login):
    token = login()["token"]
    return {"Authorization": f"Bearer {token}"}
