"""Shared fixtures.

The app runs against an in-memory SQLite database (one connection shared
through ``StaticPool``) and a fake image provider that never leaves the
process. ``TestClient`` is always used as a context manager so the
lifespan connects and disposes the database.
"""
import itertools

import pytest
from fastapi.testclient import TestClient

from imaginify.actions.users import create_user
from imaginify.auth.security import create_access_token
from imaginify.config import Settings
from imaginify.database import Database
from imaginify.main import create_app
from imaginify.models.schemas import UploadedAsset, UserCreate
from imaginify.services.cloudinary_service import CloudinaryService

_ids = itertools.count(1)


class FakeCloudinary(CloudinaryService):
    """Keeps URL building real; upload, delete and search are canned."""

    def __init__(self, settings):
        super().__init__(settings)
        self.search_results = []
        self.searches = []
        self.destroyed = []
        self.uploads = []

    def upload_image(self, file_content, public_id, **options):
        self.uploads.append(public_id)
        return UploadedAsset(
            public_id=f"{self.folder}/{public_id}",
            width=640,
            height=480,
            secure_url=f"https://res.cloudinary.com/demo/image/upload/{self.folder}/{public_id}.png",
        )

    def destroy_image(self, public_id):
        self.destroyed.append(public_id)
        return {"result": "ok"}

    def search_public_ids(self, query):
        self.searches.append(query)
        return list(self.search_results)

    def ping(self):
        return True


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        secret_key="test-secret",
        google_client_id="google-id",
        google_client_secret="google-secret",
        cloudinary_cloud_name="demo",
        cloudinary_api_key="key",
        cloudinary_api_secret="secret",
        database_url="sqlite://",
        redis_url=None,
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret="whsec_test",
        secure_cookies=False,
        debounce_seconds=0.05,
    )


@pytest.fixture
def cloudinary(settings):
    return FakeCloudinary(settings)


@pytest.fixture
def database(settings):
    database = Database(settings.database_url)
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def db(database):
    session = database.session()
    yield session
    session.close()


@pytest.fixture
def app(settings, database, cloudinary):
    return create_app(settings, database=database, cloudinary=cloudinary)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


def make_user(db, **overrides):
    n = next(_ids)
    data = {
        "provider_id": f"google|{n}",
        "email": f"user{n}@example.com",
        "username": f"user{n}",
        "first_name": "Test",
        "last_name": f"User{n}",
    }
    data.update(overrides)
    return create_user(db, UserCreate(**data))


def auth_headers(settings, user):
    token = create_access_token(settings, data={"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_factory(db):
    return lambda **overrides: make_user(db, **overrides)


@pytest.fixture
def auth(settings):
    return lambda user: auth_headers(settings, user)
