import os

# Must be in place before qrhub.config is imported anywhere
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["ENVIRONMENT"] = "dev"
os.environ["DATABASE_URL"] = "sqlite://"

from io import BytesIO  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from PIL import Image  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from qrhub import crud, database, models  # noqa: E402
from qrhub.config import Settings, get_settings  # noqa: E402
from qrhub.main import app  # noqa: E402

PASSWORD = "Str0ng!Pass"


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        environment="dev",
        database_url="sqlite://",
        public_base_url="http://testserver",
        secret_key="test-secret-key",
        bcrypt_rounds=4,
        upload_dir=tmp_path / "logos",
    )
    values.update(overrides)
    return Settings(**values)


def png_bytes(color="red", size=(64, 64), mode="RGBA") -> bytes:
    buf = BytesIO()
    Image.new(mode, size, color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def make_png():
    return png_bytes


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def prod_settings(tmp_path):
    return make_settings(tmp_path, environment="prod")


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
def file_session_factory(tmp_path):
    """Sessions on a SQLite file, so each thread gets its own connection."""
    engine = database.make_engine(f"sqlite:///{tmp_path / 'qrhub.db'}")
    models.Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def owner(db, settings):
    return crud.register_account(db, settings, "alice", "alice@qrhub.io", PASSWORD)


@pytest.fixture
def client(session_factory, settings):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[database.get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(client):
    client.post("/auth/register", json={"handle": "alice", "email": "alice@qrhub.io", "password": PASSWORD})
    resp = client.post("/auth/login", data={"username": "alice", "password": PASSWORD})
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}
