"""
Pytest configuration and fixtures

Every test runs against in-memory collaborators: a dict-backed document
store, the local HS256 token verifier and an in-memory identity provider.
Nothing requires Firebase, Postgres or Redis.
"""
import os
import sys

import pytest

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

TEST_SECRET_KEY = "test-secret-key-that-is-long-enough-for-hs256"

# Importing main builds an app from the environment; keep it local-only.
os.environ.setdefault("AUTH_PROVIDER", "jwt")
os.environ.setdefault("SECRET_KEY", TEST_SECRET_KEY)
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "text")

from fastapi.testclient import TestClient

from core.cache import JsonCache
from core.config import Settings
from core.container import build_container
from core.token_validator import JwtTokenVerifier
from services.document_store import InMemoryDocumentStore
from services.form_schema import FormTemplate


class FakeRedis:
    """Just enough of the redis client API for JsonCache and the rate limiter."""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    def get(self, key):
        return self.data.get(key)

    def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    def scan_iter(self, match=None):
        prefix = (match or "*").rstrip("*")
        return [k for k in list(self.data) if k.startswith(prefix)]

    def incr(self, key):
        self.data[key] = int(self.data.get(key, 0)) + 1
        return self.data[key]

    def expire(self, key, ttl):
        self.ttls[key] = ttl

    def ttl(self, key):
        return self.ttls.get(key, -1)


def make_settings(**overrides) -> Settings:
    values = {
        "AUTH_PROVIDER": "jwt",
        "SECRET_KEY": TEST_SECRET_KEY,
        "STORE_BACKEND": "memory",
        "REDIS_URL": "",
        "RATE_LIMIT_ENABLED": False,
        "REQUIRE_VERIFIED_EMAIL": True,
        "ADMIN_SETUP_SECRET": "bootstrap-secret",
        "LOG_FORMAT": "text",
        "SENTRY_DSN": None,
        "CONTENT_SERVICE_URL": None,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def test_settings():
    return make_settings()


@pytest.fixture
def store():
    """Fresh in-memory document store per test."""
    return InMemoryDocumentStore(batch_limit=500)


@pytest.fixture
def verifier():
    return JwtTokenVerifier(TEST_SECRET_KEY, require_verified_email=True)


@pytest.fixture
def issue_token(verifier):
    """Factory for signed tokens: issue_token("uid", role="admin")."""
    def _issue(uid: str = "student-1", role=None, email=None, **kwargs):
        return verifier.issue_token(uid, email or f"{uid}@example.com", role=role, **kwargs)
    return _issue


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def container(test_settings, store, verifier, fake_redis):
    return build_container(
        test_settings,
        store=store,
        verifier=verifier,
        cache=JsonCache(client=fake_redis),
    )


@pytest.fixture
def app(container, test_settings):
    from main import create_app
    return create_app(container=container, app_settings=test_settings)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def auth_header(issue_token):
    """Factory for Authorization headers."""
    def _header(uid: str = "student-1", role=None, **kwargs):
        return {"Authorization": f"Bearer {issue_token(uid, role=role, **kwargs)}"}
    return _header


@pytest.fixture
def sample_template_data():
    """A training-log template with one plain and one repeatable section."""
    return {
        "name": "Training Log",
        "description": "Daily session check-in",
        "sport": "tennis",
        "sections": [
            {
                "id": "drills",
                "title": "Drills",
                "order": 2,
                "isRepeatable": True,
                "fields": [
                    {
                        "id": "reps",
                        "label": "Reps",
                        "type": "numeric",
                        "order": 1,
                        "validation": {"min": 0},
                        "analytics": {"enabled": True, "type": "sum", "category": "volume"},
                    },
                ],
            },
            {
                "id": "session",
                "title": "Session",
                "order": 1,
                "fields": [
                    {
                        "id": "effort",
                        "label": "Effort",
                        "type": "scale",
                        "order": 1,
                        "validation": {"required": True, "min": 1, "max": 10},
                        "analytics": {"enabled": True, "type": "average", "category": "performance"},
                    },
                    {
                        "id": "attended",
                        "label": "Attended warm-up",
                        "type": "yesno",
                        "order": 2,
                        "analytics": {"enabled": True, "type": "percentage", "category": "engagement"},
                    },
                    {
                        "id": "focus",
                        "label": "Focus area",
                        "type": "radio",
                        "order": 3,
                        "options": ["serve", "volley", "footwork"],
                        "analytics": {"enabled": True, "type": "distribution", "category": "performance"},
                    },
                    {
                        "id": "notes",
                        "label": "Notes",
                        "type": "textarea",
                        "order": 4,
                        "validation": {"maxLength": 200},
                    },
                ],
            },
        ],
    }


@pytest.fixture
def sample_template(sample_template_data):
    return FormTemplate.model_validate(sample_template_data)
