"""Unit tests for CLI parsing and shutdown helpers."""

from __future__ import annotations

import logging
from collections import namedtuple
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from loxone_controller.main import parse_cli
from loxone_controller.utils import _async_signal_cleanup, check_python_version, ensure_persistent_dir

_VersionInfo = namedtuple("_VersionInfo", ["major", "minor", "micro"])


class TestParseCli:
    def test_debug_flag_lowers_package_level(self):
        with (
            patch("sys.argv", ["loxone-controller", "--debug"]),
            patch("loxone_controller.main.set_package_level") as mock_set_level,
            patch("loxone_controller.main.g") as mock_g,
        ):
            parse_cli()

        mock_set_level.assert_called_once_with(logging.DEBUG)
        mock_g.reload_env.assert_called_once()
        assert mock_g.cli_args.debug is True

    def test_env_file_is_loaded(self, tmp_path: Path):
        env_file = tmp_path / ".env"
        _ = env_file.write_text("LOXONE_HOST=from-dotenv\n", encoding="utf-8")

        with (
            patch("sys.argv", ["loxone-controller", "--env", str(env_file)]),
            patch("loxone_controller.main.dotenv.load_dotenv", return_value=True) as mock_load,
            patch("loxone_controller.main.g"),
        ):
            parse_cli()

        mock_load.assert_called_once_with(env_file.resolve(), override=True)

    def test_missing_env_file_is_logged(self, tmp_path: Path):
        with (
            patch("sys.argv", ["loxone-controller", "--env", str(tmp_path / "missing.env")]),
            patch("loxone_controller.main.dotenv.load_dotenv") as mock_load,
            patch("loxone_controller.main.logger") as mock_logger,
            patch("loxone_controller.main.g"),
        ):
            parse_cli()

        mock_load.assert_not_called()
        mock_logger.error.assert_called_once()


class TestSignalCleanup:
    @pytest.mark.asyncio
    async def test_stops_services_and_saves_snapshot(self):
        mock_g = MagicMock()
        mock_g.status_server.stop = AsyncMock()
        mock_g.mqtt_client.stop = AsyncMock()
        mock_g.bridge.stop = AsyncMock()
        mock_g.env.snapshot_path = "/tmp/snapshot.yaml"
        task = MagicMock()
        task.done.return_value = False
        mock_g.tasks = [task]

        with patch("loxone_controller.utils.g", mock_g):
            await _async_signal_cleanup()

        mock_g.status_server.stop.assert_awaited_once()
        mock_g.mqtt_client.stop.assert_awaited_once()
        mock_g.bridge.stop.assert_awaited_once()
        mock_g.bridge.store.save_snapshot.assert_called_once_with("/tmp/snapshot.yaml")
        task.cancel.assert_called_once()


class TestStartupHelpers:
    def test_python_version_ok(self):
        check_python_version()

    def test_python_version_too_old(self):
        with patch("loxone_controller.utils.sys.version_info", _VersionInfo(3, 11, 0)), pytest.raises(RuntimeError):
            check_python_version()

    def test_ensure_persistent_dir_creates(self, tmp_path: Path):
        target = tmp_path / "a" / "b"

        assert ensure_persistent_dir(str(target)) == target.resolve()
        assert target.is_dir()
