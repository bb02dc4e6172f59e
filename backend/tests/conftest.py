"""Shared pytest fixtures for all tests."""

import pytest

from auth_state import AuthStateStore
from config import Settings
from entities import AuthMethod, AuthType, PrivilegeLevel, User, utc_now
from security_utils import hash_password
from services.site_config import PASS_SALT, SiteConfig


@pytest.fixture(params=["json", "sql"])
def data(request, tmp_path):
    """A fresh data backend; every data-layer test runs against both."""
    from db import get_data_connector

    if request.param == "json":
        connector = get_data_connector("json", str(tmp_path / "data.json"))
    else:
        connector = get_data_connector("sql", f"sqlite:///{tmp_path / 'moviepolls.db'}")
    yield connector
    connector.close()


@pytest.fixture
def json_data(tmp_path):
    """Document backend only (persistence tests)."""
    from db import get_data_connector

    return get_data_connector("json", str(tmp_path / "data.json"))


@pytest.fixture
def site_config(data):
    cfg = SiteConfig(data)
    cfg.load_defaults_if_not_set()
    return cfg


@pytest.fixture
def auth_state():
    return AuthStateStore(max_oauth_states=10)


@pytest.fixture
def make_user(data):
    """Factory fixture creating users with a local login."""
    def _create(name="alice", password="secret", privilege=PrivilegeLevel.USER, email=""):
        salt = SiteConfig(data).get_secret(PASS_SALT)
        user = User(
            name=name,
            email=email,
            privilege=privilege,
            auth_methods=[
                AuthMethod(type=AuthType.LOCAL, password=hash_password(password, salt), date=utc_now())
            ],
        )
        data.add_user(user)
        return data.get_user(user.id)

    return _create


@pytest.fixture
def settings(tmp_path):
    return Settings(
        posters_dir=str(tmp_path / "posters"),
        static_dir=str(tmp_path / "static"),
        log_level="error",
    )


@pytest.fixture
def app(data, settings):
    """Flask app wired to the parametrised backend."""
    from app import create_app

    flask_app = create_app(testing=True, data=data, settings=settings)
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    """Create a test client for Flask app."""
    with app.test_client() as client:
        yield client


@pytest.fixture
def services(app):
    from extensions import EXTENSION_KEY

    return app.extensions[EXTENSION_KEY]


class MockResponse:
    def __init__(self, json_data=None, status_code=200, content=b""):
        self.json_data = json_data
        self.status_code = status_code
        self.content = content
        self.text = str(json_data)

    def json(self):
        if self.json_data is None:
            raise ValueError("No JSON body")
        return self.json_data

    def raise_for_status(self):
        import requests

        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"HTTP {self.status_code}")


@pytest.fixture
def mock_requests(monkeypatch):
    """Route requests.Session GET/POST calls to per-URL canned responses.

    Tests register responses with ``mock_requests["get"][url_prefix] = MockResponse(...)``;
    unmatched URLs get a 404. Every call is recorded in ``mock_requests["calls"]``.
    """
    import requests

    routes = {"get": {}, "post": {}, "calls": []}

    def _lookup(method, url, kwargs):
        routes["calls"].append((method, url, kwargs))
        for prefix, response in routes[method].items():
            if url.startswith(prefix):
                return response
        return MockResponse({}, status_code=404)

    def mock_get(self, url, **kwargs):
        return _lookup("get", url, kwargs)

    def mock_post(self, url, **kwargs):
        return _lookup("post", url, kwargs)

    monkeypatch.setattr(requests.Session, "get", mock_get)
    monkeypatch.setattr(requests.Session, "post", mock_post)
    monkeypatch.setattr(requests, "get", lambda url, **kw: _lookup("get", url, kw))
    return routes
