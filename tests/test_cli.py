"""Tests for the filecrab command line."""

from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from filecrab.cli import cli
from filecrab.errors import PassphraseRequired, RemoteNotFound
from filecrab.lib.collector import SweepReport

URL_ENV = {"FILECRAB_URL": "http://filecrab.test", "FILECRAB_API_KEY": "k"}


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def fake_client():
    """Patch the client factory; the mock doubles as its own context manager."""
    client = MagicMock()
    client.__enter__.return_value = client
    with patch("filecrab.cli._client", return_value=client) as factory:
        client.factory = factory
        yield client


class TestUpload:
    def test_prints_memo_id(self, runner, fake_client, tmp_path):
        source = tmp_path / "report.pdf"
        source.write_bytes(b"%PDF")
        fake_client.upload.return_value = "apple_banana_cherry_delta"

        result = runner.invoke(cli, ["upload", str(source), "-p", "pw"], env=URL_ENV)

        assert result.exit_code == 0, result.output
        assert "apple_banana_cherry_delta" in result.output
        fake_client.factory.assert_called_once_with("http://filecrab.test", "k")
        args, kwargs = fake_client.upload.call_args
        assert args[1] == "report.pdf"
        assert kwargs["passphrase"] == "pw"
        assert kwargs["expire_at"] is None

    def test_requires_url(self, runner, fake_client, tmp_path):
        source = tmp_path / "a.txt"
        source.write_bytes(b"a")
        result = runner.invoke(cli, ["upload", str(source)], env={"FILECRAB_URL": None})
        assert result.exit_code != 0
        fake_client.upload.assert_not_called()

    def test_parses_expiry(self, runner, fake_client, tmp_path):
        source = tmp_path / "a.txt"
        source.write_bytes(b"a")
        fake_client.upload.return_value = "m"

        result = runner.invoke(cli, ["upload", str(source), "--expire-at", "2030-01-02"], env=URL_ENV)

        assert result.exit_code == 0, result.output
        assert fake_client.upload.call_args.kwargs["expire_at"].year == 2030


class TestDownload:
    def test_writes_file(self, runner, fake_client, tmp_path):
        fake_client.download.return_value = ("photo.jpg", b"\xff\xd8")

        result = runner.invoke(cli, ["download", "memo", "-o", str(tmp_path)], env=URL_ENV)

        assert result.exit_code == 0, result.output
        assert (tmp_path / "photo.jpg").read_bytes() == b"\xff\xd8"

    def test_server_file_name_cannot_escape_directory(self, runner, fake_client, tmp_path):
        fake_client.download.return_value = ("../../etc/passwd", b"x")

        result = runner.invoke(cli, ["download", "memo", "-o", str(tmp_path)], env=URL_ENV)

        assert result.exit_code == 0, result.output
        assert (tmp_path / "passwd").read_bytes() == b"x"

    def test_errors_become_click_errors(self, runner, fake_client):
        fake_client.download.side_effect = RemoteNotFound("Not found")

        result = runner.invoke(cli, ["download", "memo"], env=URL_ENV)

        assert result.exit_code == 1
        assert "Not found" in result.output

    def test_passphrase_required(self, runner, fake_client):
        fake_client.download.side_effect = PassphraseRequired("memo is encrypted")
        result = runner.invoke(cli, ["download", "memo"], env=URL_ENV)
        assert result.exit_code == 1
        assert "encrypted" in result.output


class TestText:
    def test_paste_reads_stdin(self, runner, fake_client):
        fake_client.paste.return_value = "one_two_three_four"

        result = runner.invoke(cli, ["paste", "-p", "pw"], input="from stdin", env=URL_ENV)

        assert result.exit_code == 0, result.output
        fake_client.paste.assert_called_once_with("from stdin", "pw")
        assert "one_two_three_four" in result.output

    def test_copy_prints_text(self, runner, fake_client):
        fake_client.copy.return_value = "hello"

        result = runner.invoke(cli, ["copy", "memo", "-p", "pw"], env=URL_ENV)

        assert result.exit_code == 0
        assert result.output == "hello"
        fake_client.copy.assert_called_once_with("memo", "pw")


class TestSweep:
    def test_reports_counts(self, runner):
        report = SweepReport(assets_removed=["a", "b"], texts_removed=["c"])
        with patch("filecrab.cli._run_sweep", return_value=report):
            result = runner.invoke(cli, ["sweep"])

        assert result.exit_code == 0
        assert "Removed 2 assets and 1 texts" in result.output

    def test_aborted_sweep_exits_nonzero(self, runner):
        report = SweepReport(aborted=True)
        with patch("filecrab.cli._run_sweep", return_value=report):
            result = runner.invoke(cli, ["sweep"])

        assert result.exit_code == 1


class TestDb:
    def test_without_arguments_prints_help(self, runner):
        result = runner.invoke(cli, ["db"])
        assert result.exit_code == 0
        assert "Alembic" in result.output

    def test_passes_arguments_to_alembic(self, runner):
        with patch("filecrab.cli._run_alembic") as run:
            result = runner.invoke(cli, ["db", "upgrade", "head"])
        assert result.exit_code == 0
        run.assert_called_once_with(["upgrade", "head"])
