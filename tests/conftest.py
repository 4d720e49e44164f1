"""Shared test fixtures.

Provides:
- ``SECRET`` — the shared secret every test app is configured with
- ``config`` — a server config pointing at a per-test cache directory
- ``origin`` — fake upstream: URL → bytes, used by the fake fetchers
- ``app`` / ``client`` — coordination server built around the fake fetchers
"""

import pytest

from prostagma.coordination_server import create_app
from prostagma.errors import NotFoundError

SECRET = "test-secret"


class FakeOrigin:
    """Stands in for the remote hosts the coordinator downloads from."""

    def __init__(self):
        self.files: dict = {}
        self.calls: list = []

    def fetch(self, url, path):
        self.calls.append(url)
        if url not in self.files:
            raise NotFoundError(f"upstream has no {url}")
        with open(path, "wb") as f:
            f.write(self.files[url])


@pytest.fixture
def config(tmp_path):
    return {
        "secret": SECRET,
        "cache_dir": str(tmp_path / "cache"),
        "request_timeout": 5,
        "aws_cli": "aws",
    }


@pytest.fixture
def origin():
    return FakeOrigin()


@pytest.fixture
def app(config, origin):
    app = create_app(config, fetchers={"http": origin.fetch, "s3": origin.fetch})
    app.extensions["prostagma"]["cache"].reset()
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def cache(app):
    return app.extensions["prostagma"]["cache"]


@pytest.fixture
def triggers(app):
    return app.extensions["prostagma"]["triggers"]
