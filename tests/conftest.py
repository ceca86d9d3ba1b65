"""
Shared fixtures for vcblobstore tests.

Local-backend tests run the real git executable inside tmp_path with an
isolated HOME, so the host's git configuration never leaks in. GitLab
tests talk to a FakeSession that replays prepared responses.
"""

import json
import logging
import os
import shutil
from typing import Any, Dict, List, Optional, Union

import pytest
import requests

from vcblobstore.backends.base import SIMULATE_COMMIT_FAILURE_ENV
from vcblobstore.backends.gitlab import GitLabConfig, GitLabRepository
from vcblobstore.backends.local import LocalGitRepository
from vcblobstore.infra.client_pool import ClientPool
from vcblobstore.infra.gitlab_client import GitLabClient
from vcblobstore.infra.job_queue import JobSerializer

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git executable not available")


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep tests independent of the host's config, git identity and toggles."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.delenv(SIMULATE_COMMIT_FAILURE_ENV, raising=False)
    monkeypatch.delenv("GITLAB_ACCESS_TOKEN", raising=False)
    for key in list(os.environ):
        if key.startswith("VCBLOBSTORE_") or key.startswith("GIT_AUTHOR_") or key.startswith("GIT_COMMITTER_"):
            monkeypatch.delenv(key, raising=False)
    return home


@pytest.fixture
def serializer():
    jobs = JobSerializer(name="test-jobs")
    yield jobs
    jobs.shutdown()


@pytest.fixture
def repo_location(tmp_path):
    return tmp_path / "blobs"


@pytest.fixture
def local_repo(repo_location, serializer):
    """An initialized, empty local repository."""
    repo = LocalGitRepository(repo_location, serializer=serializer)
    repo.create_repository()
    return repo


# GitLab fakes

NAMESPACE_PATH = "my-group"
PROJECT_PATH = "blobs"
NAMESPACE_ID = 4242


def make_response(
    status: int = 200,
    json_body: Any = None,
    headers: Optional[Dict[str, str]] = None,
    text: Optional[str] = None,
) -> requests.Response:
    """Build a requests.Response without touching the network."""
    response = requests.Response()
    response.status_code = status
    if json_body is not None:
        response._content = json.dumps(json_body).encode("utf-8")
    elif text is not None:
        response._content = text.encode("utf-8")
    else:
        response._content = b""
    response.encoding = "utf-8"
    response.headers.update(headers or {})
    return response


def namespaces_response() -> requests.Response:
    return make_response(200, [
        {"id": 1, "path": "someone-else"},
        {"id": NAMESPACE_ID, "path": NAMESPACE_PATH},
    ])


class FakeSession:
    """Stands in for a pooled requests.Session; replays responses in order."""

    def __init__(self, responses: List[Union[requests.Response, Exception]]):
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"Unexpected request: {method} {url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def queue(self, *responses: Union[requests.Response, Exception]) -> None:
        self.responses.extend(responses)

    def close(self):
        pass


@pytest.fixture
def fake_session():
    return FakeSession([])


@pytest.fixture
def gitlab_client(fake_session):
    pool = ClientPool(lambda: fake_session, size=1)
    return GitLabClient("secret-token", pool=pool)


@pytest.fixture
def gitlab_config():
    return GitLabConfig(
        namespace_path=NAMESPACE_PATH,
        project_path=PROJECT_PATH,
        access_token="secret-token",
        create_max_attempts=3,
    )


@pytest.fixture
def gitlab_repo(fake_session, gitlab_client, gitlab_config):
    """GitLabRepository whose namespace lookup has already been answered."""
    fake_session.queue(namespaces_response())
    repo = GitLabRepository(gitlab_config, client=gitlab_client)
    fake_session.calls.clear()
    return repo


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo setup_logging() so handlers never outlive the test's captured streams."""
    package_logger = logging.getLogger("vcblobstore")
    yield
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)
