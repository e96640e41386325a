"""Tests for fbiview.cli module."""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from fbiview.cli import main
from fbiview.config import CONFIG_FILENAME

POPEN_PATH = "fbiview.launcher.subprocess.Popen"
RUN_PATH = "fbiview.launcher.subprocess.run"


@pytest.fixture
def runner():
    """Create a CLI runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep FBIVIEW_* variables from the outer environment out of tests."""
    for name in ("FBIVIEW_BINARY", "FBIVIEW_DEVICE", "FBIVIEW_ELEVATE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def sleeps(monkeypatch):
    """Replace time.sleep in the viewer with a recorder."""
    calls = []
    monkeypatch.setattr("fbiview.viewer.time.sleep", calls.append)
    return calls


@pytest.fixture
def popen():
    """Patch Popen with a running fake viewer, and run with a working kill."""
    fake = MagicMock()
    fake.pid = 321
    fake.returncode = None
    fake.poll.return_value = None

    def stop():
        fake.returncode = -15
        fake.poll.return_value = -15

    def run(args, **kwargs):
        if "kill" in args:
            stop()
        return subprocess.CompletedProcess(args=args, returncode=0)

    fake.terminate.side_effect = stop
    with patch(POPEN_PATH, return_value=fake) as mock_popen:
        with patch(RUN_PATH, side_effect=run) as mock_run:
            mock_popen.fake = fake
            mock_popen.run = mock_run
            yield mock_popen


@pytest.fixture
def sample_config():
    """Sample configuration file content."""
    return """
binary: fbi
elevate: "sudo -n"
device: /dev/fb1
display_for: 0
"""


class TestShow:
    """Tests for the show command."""

    def test_show_indefinitely(self, runner, tmp_path, popen, sleeps):
        """Test -t 0 launches and returns without stopping the viewer."""
        with runner.isolated_filesystem(temp_dir=tmp_path):
            result = runner.invoke(main, ["show", "photo.jpg", "-t", "0"])

        assert result.exit_code == 0, result.output
        assert "pid 321" in result.output
        assert sleeps == []
        popen.fake.terminate.assert_not_called()
        popen.run.assert_not_called()
        assert popen.call_args[0][0] == [
            "sudo",
            "fbi",
            "-T",
            "1",
            "-d",
            "/dev/fb0",
            "--noverbose",
            "-t",
            "0",
            "photo.jpg",
        ]

    def test_show_for_duration(self, runner, tmp_path, popen, sleeps):
        """Test a positive duration sleeps and stops the launched viewer."""
        with runner.isolated_filesystem(temp_dir=tmp_path):
            result = runner.invoke(main, ["show", "photo.jpg", "-t", "4"])

        assert result.exit_code == 0, result.output
        assert "for 4s" in result.output
        assert sleeps == [4]
        popen.run.assert_called_once()
        assert popen.run.call_args[0][0] == ["sudo", "kill", "-TERM", "321"]
        popen.fake.terminate.assert_not_called()

    def test_show_options(self, runner, tmp_path, popen, sleeps):
        """Test viewer options map to fbi flags."""
        with runner.isolated_filesystem(temp_dir=tmp_path):
            result = runner.invoke(
                main,
                [
                    "show",
                    "photo.jpg",
                    "-t",
                    "0",
                    "-a",
                    "--status-bar",
                    "--autoup",
                    "-u",
                    "--comments",
                    "-m",
                    "800x600-75",
                    "-s",
                    "10",
                    "-d",
                    "/dev/fb1",
                ],
            )

        assert result.exit_code == 0, result.output
        args = popen.call_args[0][0]
        assert args[:2] == ["sudo", "fbi"]
        assert "-a" in args
        assert "-v" in args
        assert "--noverbose" not in args
        assert "--autoup" in args
        assert "-u" in args
        assert "--comments" in args
        assert args[args.index("-m") + 1] == "800x600-75"
        assert args[args.index("-s") + 1] == "10"
        assert args[args.index("-d") + 1] == "/dev/fb1"
        assert args[-1] == "photo.jpg"

    def test_show_by_name(self, runner, tmp_path, popen, sleeps):
        """Test --by-name stops with killall."""
        completed = subprocess.CompletedProcess(args=[], returncode=0)
        with runner.isolated_filesystem(temp_dir=tmp_path):
            with patch(RUN_PATH, return_value=completed) as mock_run:
                result = runner.invoke(
                    main, ["show", "photo.jpg", "-t", "1", "--by-name"]
                )

        assert result.exit_code == 0, result.output
        mock_run.assert_called_once()
        assert mock_run.call_args[0][0] == ["sudo", "killall", "fbi"]
        popen.fake.terminate.assert_not_called()

    def test_show_uses_config(self, runner, tmp_path, popen, sleeps, sample_config):
        """Test config file values are applied."""
        with runner.isolated_filesystem(temp_dir=tmp_path):
            Path(CONFIG_FILENAME).write_text(sample_config)
            result = runner.invoke(main, ["show", "photo.jpg"])

        assert result.exit_code == 0, result.output
        args = popen.call_args[0][0]
        assert args[:3] == ["sudo", "-n", "fbi"]
        assert args[args.index("-d") + 1] == "/dev/fb1"
        assert sleeps == []

    def test_show_check_failure(self, runner, tmp_path, popen, sleeps):
        """Test --check reports a viewer that exited with an error."""
        popen.fake.returncode = 1
        popen.fake.poll.return_value = 1
        with runner.isolated_filesystem(temp_dir=tmp_path):
            result = runner.invoke(main, ["show", "photo.jpg", "-t", "1", "--check"])

        assert result.exit_code != 0
        assert "exited with 1" in result.output

    def test_show_missing_binary(self, runner, tmp_path):
        """Test a missing launcher binary is reported."""
        with runner.isolated_filesystem(temp_dir=tmp_path):
            with patch(POPEN_PATH, side_effect=FileNotFoundError("sudo")):
                result = runner.invoke(main, ["show", "photo.jpg"])

        assert result.exit_code != 0
        assert "Cannot start sudo" in result.output

    def test_show_stop_refused(self, runner, tmp_path, popen, sleeps):
        """Test a refused stop is reported as an error, not a traceback."""
        refused = subprocess.CompletedProcess(args=[], returncode=1)
        with runner.isolated_filesystem(temp_dir=tmp_path):
            with patch(RUN_PATH, return_value=refused):
                result = runner.invoke(main, ["show", "photo.jpg", "-t", "1"])

        assert result.exit_code == 1
        assert "Cannot send SIGTERM to viewer pid 321" in result.output
        assert not isinstance(result.exception, PermissionError)


class TestCommand:
    """Tests for the command command."""

    def test_prints_argv(self, runner, tmp_path):
        """Test the argv is printed shell-quoted."""
        with runner.isolated_filesystem(temp_dir=tmp_path):
            result = runner.invoke(main, ["command", "my photo.jpg", "-a"])

        assert result.exit_code == 0, result.output
        assert (
            result.output.strip()
            == "sudo fbi -T 1 -d /dev/fb0 --noverbose -a 'my photo.jpg'"
        )

    def test_legacy(self, runner, tmp_path):
        """Test --legacy prints the compiled option string."""
        with runner.isolated_filesystem(temp_dir=tmp_path):
            result = runner.invoke(main, ["command", "photo.jpg", "--legacy"])

        assert result.exit_code == 0, result.output
        assert "-T1-d/dev/fb0--noverbose" in result.output

    def test_does_not_execute(self, runner, tmp_path):
        """Test nothing is launched."""
        with runner.isolated_filesystem(temp_dir=tmp_path):
            with patch(POPEN_PATH) as mock_popen, patch(RUN_PATH) as mock_run:
                runner.invoke(main, ["command", "photo.jpg"])

        mock_popen.assert_not_called()
        mock_run.assert_not_called()


class TestKill:
    """Tests for the kill command."""

    def test_kill(self, runner, tmp_path):
        """Test kill runs killall once."""
        completed = subprocess.CompletedProcess(args=[], returncode=0)
        with runner.isolated_filesystem(temp_dir=tmp_path):
            with patch(RUN_PATH, return_value=completed) as mock_run:
                result = runner.invoke(main, ["kill"])

        assert result.exit_code == 0, result.output
        assert "Stopped all fbi processes" in result.output
        mock_run.assert_called_once()
        assert mock_run.call_args[0][0] == ["sudo", "killall", "fbi"]

    def test_kill_nothing_running(self, runner, tmp_path):
        """Test killall failure is reported."""
        completed = subprocess.CompletedProcess(args=[], returncode=1)
        with runner.isolated_filesystem(temp_dir=tmp_path):
            with patch(RUN_PATH, return_value=completed):
                result = runner.invoke(main, ["kill"])

        assert result.exit_code != 0
        assert "killall exited with 1" in result.output


class TestConfigInit:
    """Tests for config init command."""

    def test_creates_config_file(self, runner, tmp_path):
        """Test creating a new config file."""
        with runner.isolated_filesystem(temp_dir=tmp_path):
            result = runner.invoke(main, ["config", "init"])

            assert result.exit_code == 0
            assert "Created:" in result.output
            assert Path(CONFIG_FILENAME).exists()

    def test_creates_in_directory(self, runner, tmp_path):
        """Test creating config in specified directory."""
        result = runner.invoke(main, ["config", "init", "-d", str(tmp_path)])

        assert result.exit_code == 0
        assert (tmp_path / CONFIG_FILENAME).exists()

    def test_fails_if_exists(self, runner, tmp_path):
        """Test fails if config already exists."""
        (tmp_path / CONFIG_FILENAME).write_text("existing: true")

        result = runner.invoke(main, ["config", "init", "-d", str(tmp_path)])

        assert result.exit_code != 0
        assert "already exists" in result.output


class TestConfigShow:
    """Tests for config show command."""

    def test_shows_config(self, runner, tmp_path, sample_config):
        """Test showing configuration."""
        config_path = tmp_path / CONFIG_FILENAME
        config_path.write_text(sample_config)

        result = runner.invoke(main, ["config", "show", "-c", str(config_path)])

        assert result.exit_code == 0
        assert "device: /dev/fb1" in result.output
        assert "display_for: 0" in result.output

    def test_invalid_config(self, runner, tmp_path):
        """Test invalid config is reported."""
        config_path = tmp_path / CONFIG_FILENAME
        config_path.write_text("display_for: -3")

        result = runner.invoke(main, ["config", "show", "-c", str(config_path)])

        assert result.exit_code != 0
        assert "non-negative" in result.output


class TestConfigWhere:
    """Tests for config where command."""

    def test_finds_config(self, runner, tmp_path):
        """Test showing found config path."""
        (tmp_path / CONFIG_FILENAME).write_text("device: /dev/fb0")

        result = runner.invoke(main, ["config", "where", "-d", str(tmp_path)])

        assert result.exit_code == 0
        assert str(tmp_path / CONFIG_FILENAME) in result.output

    def test_no_config(self, runner, tmp_path):
        """Test message when no config found."""
        result = runner.invoke(main, ["config", "where", "-d", str(tmp_path)])

        assert result.exit_code == 0
        assert "No .fbiview.yaml found" in result.output


class TestVersion:
    """Tests for --version."""

    def test_version(self, runner):
        """Test version output."""
        result = runner.invoke(main, ["--version"])

        assert result.exit_code == 0
        assert "fbiview" in result.output
