"""
Tests for the vcblobstore command line.

Tests cover:
- End-to-end local workflow (init, add, get, ls, version, meta, rm, status)
- JSON output by default, rich tables with --pretty
- Error reporting and exit codes
- config show / config path
"""

import json
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from vcblobstore import exit_codes
from vcblobstore.cli import cli
from vcblobstore.errors import BlobNotFoundError, RetryBudgetExceeded

from conftest import requires_git


def json_lines(output):
    return [json.loads(line) for line in output.splitlines() if line.strip()]


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def location(tmp_path):
    return str(tmp_path / "cli-blobs")


@pytest.fixture
def blob_file(tmp_path):
    path = tmp_path / "metro-zazie.bin"
    path.write_bytes(b"\x00metro zazie\xff" * 100)
    return path


@requires_git
class TestLocalWorkflow:
    """Tests running the CLI against a real local repository."""

    def invoke(self, runner, location, *args, **kwargs):
        return runner.invoke(cli, ["--location", location, *args], **kwargs)

    def test_init(self, runner, location):
        result = self.invoke(runner, location, "init")
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["status"] == "ready"
        assert location in data["repository"]

    def test_add_get_roundtrip(self, runner, location, blob_file, tmp_path):
        self.invoke(runner, location, "init")

        result = self.invoke(runner, location, "add", "metro-zazie", str(blob_file), "--user", "ux")
        assert result.exit_code == 0, result.output
        added = json.loads(result.output)
        assert added["key"] == "metro-zazie"
        assert added["size"] == len(blob_file.read_bytes())
        assert len(added["version"]) == 40

        result = self.invoke(runner, location, "get", "metro-zazie")
        assert result.exit_code == 0
        assert result.stdout_bytes == blob_file.read_bytes()

        output = tmp_path / "out.bin"
        result = self.invoke(runner, location, "get", "metro-zazie", "--output", str(output))
        assert result.exit_code == 0
        assert output.read_bytes() == blob_file.read_bytes()

    def test_add_from_stdin(self, runner, location):
        self.invoke(runner, location, "init")
        result = self.invoke(runner, location, "add", "zazie-icon", "-", "--user", "ux", input=b"icon bytes")
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["size"] == len(b"icon bytes")

    def test_ls_state_version_meta(self, runner, location, blob_file):
        self.invoke(runner, location, "init")
        self.invoke(runner, location, "add", "metro-zazie", str(blob_file), "--user", "ux")
        self.invoke(runner, location, "copy", "metro-zazie", "zazie-copy", "--user", "ux")

        result = self.invoke(runner, location, "ls")
        assert json_lines(result.output) == [{"key": "metro-zazie"}, {"key": "zazie-copy"}]

        state = json.loads(self.invoke(runner, location, "state").output)["state_id"]
        version = json.loads(self.invoke(runner, location, "version", "zazie-copy").output)["version"]
        assert version == state

        meta = json.loads(self.invoke(runner, location, "meta", state).output)
        assert meta["author"] == "ux <ux>"
        assert meta["message"] == "blob file version added by ux"

        status = json.loads(self.invoke(runner, location, "status").output)
        assert status["clean"] is True

    def test_pretty_output(self, runner, location, blob_file):
        self.invoke(runner, location, "init")
        self.invoke(runner, location, "add", "metro-zazie", str(blob_file), "--user", "ux")

        result = self.invoke(runner, location, "ls", "--pretty")
        assert result.exit_code == 0
        assert "metro-zazie" in result.output

    def test_rm_missing_blob(self, runner, location):
        self.invoke(runner, location, "init")

        result = self.invoke(runner, location, "rm", "metro-zazie", "--user", "ux")

        assert result.exit_code == exit_codes.NOT_FOUND
        assert "metro-zazie" in result.output

    def test_version_of_unknown_key(self, runner, location):
        self.invoke(runner, location, "init")
        result = self.invoke(runner, location, "version", "never-written")
        assert json.loads(result.output) == {"key": "never-written", "version": ""}

    def test_invalid_key(self, runner, location, blob_file):
        self.invoke(runner, location, "init")
        result = self.invoke(runner, location, "add", "a/b", str(blob_file), "--user", "ux")
        assert result.exit_code == exit_codes.DATA_ERROR

    def test_add_before_init(self, runner, location, blob_file):
        result = self.invoke(runner, location, "add", "metro-zazie", str(blob_file), "--user", "ux")

        assert result.exit_code == exit_codes.GENERAL_ERROR
        assert "RepositoryError" in result.output

    def test_get_git_directory(self, runner, location):
        self.invoke(runner, location, "init")
        result = self.invoke(runner, location, "get", ".git")
        assert result.exit_code == exit_codes.DATA_ERROR

    def test_destroy_requires_confirmation(self, runner, location):
        self.invoke(runner, location, "init")
        result = self.invoke(runner, location, "destroy", input="n\n")
        assert result.exit_code != 0

        result = self.invoke(runner, location, "destroy", "--yes")
        assert result.exit_code == 0
        assert json.loads(result.output)["status"] == "deleted"


class TestWithMockStore:
    """Tests with the backend replaced by a mock."""

    @pytest.fixture
    def store(self):
        store = MagicMock()
        store.__str__.return_value = "mock repository"
        with patch("vcblobstore.cli.make_blob_store", return_value=store):
            yield store

    def test_backend_option(self, runner, store):
        store.check_status.return_value = True
        with patch("vcblobstore.cli.make_blob_store", return_value=store) as factory:
            result = runner.invoke(cli, ["--backend", "gitlab", "status"])

        assert result.exit_code == 0
        assert factory.call_args.args[0]["backend"] == "gitlab"

    def test_get_missing_blob(self, runner, store):
        store.get_blob.side_effect = BlobNotFoundError("metro-zazie")

        result = runner.invoke(cli, ["get", "metro-zazie"])

        assert result.exit_code == exit_codes.NOT_FOUND

    def test_unrecoverable_exit_code(self, runner, store):
        store.reset_repository.side_effect = RetryBudgetExceeded("create GitLab repository", 20)

        result = runner.invoke(cli, ["reset", "--yes"])

        assert result.exit_code == exit_codes.UNRECOVERABLE

    def test_add_requires_user(self, runner, store, blob_file):
        result = runner.invoke(cli, ["add", "metro-zazie", str(blob_file)])
        assert result.exit_code == exit_codes.USAGE_ERROR
        store.add_blob.assert_not_called()

    def test_timeout_creates_deadline(self, runner, store):
        store.get_state_id.return_value = "abc"

        result = runner.invoke(cli, ["--timeout", "30", "state"])

        assert result.exit_code == 0
        ctx = store.get_state_id.call_args.kwargs["ctx"]
        assert 0 < ctx.remaining() <= 30


class TestConfigCommands:
    """Tests for config show / config path."""

    def test_config_path(self, runner, isolated_env):
        result = runner.invoke(cli, ["config", "path"])
        assert result.exit_code == 0
        assert json.loads(result.output)["config_path"] == str(isolated_env / ".vcblobstore" / "config.json")

    def test_config_show_masks_token(self, runner, monkeypatch):
        monkeypatch.setenv("GITLAB_ACCESS_TOKEN", "super-secret")

        result = runner.invoke(cli, ["config", "show"])

        assert result.exit_code == 0
        assert "super-secret" not in result.output
        assert json.loads(result.output)["gitlab"]["access_token"] == "***"

    def test_config_show_location_override(self, runner):
        result = runner.invoke(cli, ["--location", "/srv/blobs", "config", "show", "--pretty"])
        assert json.loads(result.output)["local"]["location"] == "/srv/blobs"

    def test_malformed_config_file(self, runner, tmp_path, monkeypatch):
        path = tmp_path / "config.json"
        path.write_text("{broken")
        monkeypatch.setenv("VCBLOBSTORE_CONFIG", str(path))

        result = runner.invoke(cli, ["config", "show"])

        assert result.exit_code == exit_codes.CONFIG_ERROR
