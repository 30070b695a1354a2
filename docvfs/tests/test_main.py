from unittest import mock
import logging
import signal

import semver
import pytest

from docvfs.__main__ import main
import docvfs.constants as constants
from docvfs.logger import log, NOTICE


@pytest.fixture(autouse=True)
def restore_level():
    level = log.level
    yield
    log.setLevel(level)


@pytest.fixture
def serve_mocks():
    with mock.patch("docvfs.__main__.Bridge") as mock_bridge:
        with mock.patch("docvfs.rpc.Server") as mock_server:
            with mock.patch("signal.signal") as mock_signal:
                yield mock_bridge, mock_server, mock_signal


def serve_args(tmp_path, *extra):
    return [f"--config={tmp_path / 'config'}", *extra, "serve", "ipc:///tmp/test.sock"]


def test_no_args():
    with pytest.raises(SystemExit):
        main([])


def test_protocol_check(caplog):
    mismatching_major = semver.VersionInfo.parse("0.0.0")

    with pytest.raises(SystemExit) as e:
        main([f"--protocol={mismatching_major}", "version"])

    assert e.value.code == constants.DOCVFS_ERROR_CODE
    assert "incompatible protocol" in caplog.text


def test_version(capsys):
    with pytest.raises(SystemExit) as e:
        main(["version"])

    assert e.value.code == 0
    assert capsys.readouterr().out.strip() == (
        f"docvfs {constants.VERSION} (protocol {constants.PROTOCOL_VERSION})"
    )


def test_debug_flag_set(tmp_path, serve_mocks):
    with pytest.raises(SystemExit):
        main(serve_args(tmp_path, "--debug"))

    assert log.getEffectiveLevel() == logging.DEBUG


def test_debug_flag_not_set(tmp_path, serve_mocks):
    with pytest.raises(SystemExit):
        main(serve_args(tmp_path))

    assert log.getEffectiveLevel() == NOTICE


def test_verbose_flag(tmp_path, serve_mocks):
    with pytest.raises(SystemExit):
        main(serve_args(tmp_path, "-v"))

    assert log.getEffectiveLevel() == logging.INFO


def test_serve(tmp_path, serve_mocks):
    mock_bridge, mock_server, mock_signal = serve_mocks

    with pytest.raises(SystemExit) as e:
        main(serve_args(tmp_path))

    assert e.value.code == 0

    assert mock_bridge().init.called
    mock_server().serve.assert_called_once_with("ipc:///tmp/test.sock")
    assert mock_bridge().shutdown.called

    assert mock_signal.call_args[0][0] == signal.SIGTERM


def test_serve_remotes_override(tmp_path, serve_mocks):
    mock_bridge, _, _ = serve_mocks

    with pytest.raises(SystemExit):
        main(
            [
                f"--config={tmp_path / 'config'}",
                "serve",
                f"--remotes={tmp_path / 'remotes.conf'}",
                "ipc:///tmp/test.sock",
            ]
        )

    config = mock_bridge.call_args[0][0]
    assert config.remotes.path == str(tmp_path / "remotes.conf")


def test_serve_interrupted(tmp_path, serve_mocks):
    mock_bridge, mock_server, _ = serve_mocks
    mock_server().serve.side_effect = KeyboardInterrupt()

    with pytest.raises(SystemExit) as e:
        main(serve_args(tmp_path))

    assert e.value.code == 128 + signal.SIGINT
    assert mock_bridge().shutdown.called


def test_serve_failure(tmp_path, serve_mocks, caplog):
    mock_bridge, mock_server, _ = serve_mocks
    mock_bridge().init.side_effect = Exception("foo")

    with pytest.raises(SystemExit) as e:
        main(serve_args(tmp_path))

    assert e.value.code == constants.DOCVFS_ERROR_CODE
    assert "failed to serve: foo" in caplog.text
    assert not mock_server().serve.called
