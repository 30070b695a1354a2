import pytest

from docvfs.args import Arguments


def test_no_args():
    with pytest.raises(SystemExit):
        Arguments.parse([])


def test_serve():
    args = Arguments.parse(["serve", "ipc:///tmp/docvfs.sock"])

    assert args.command == "serve"
    assert args.endpoint == "ipc:///tmp/docvfs.sock"
    assert args.config == "~/.docvfs/config"
    assert args.remotes is None
    assert args.token is None
    assert args.workers == 4

    assert not args.debug
    assert args.verbose == 0


def test_serve_without_endpoint():
    with pytest.raises(SystemExit):
        Arguments.parse(["serve"])


def test_serve_options():
    args = Arguments.parse(
        [
            "--config=/etc/docvfs.conf",
            "serve",
            "--remotes=/tmp/remotes.conf",
            "--token=secret",
            "--workers=8",
            "tcp://127.0.0.1:1234",
        ]
    )

    assert args.config == "/etc/docvfs.conf"
    assert args.remotes == "/tmp/remotes.conf"
    assert args.token == "secret"
    assert args.workers == 8
    assert args.endpoint == "tcp://127.0.0.1:1234"


def test_workers():
    with pytest.raises(SystemExit):
        Arguments.parse(["serve", "--workers=0", "ipc:///tmp/docvfs.sock"])

    with pytest.raises(SystemExit):
        Arguments.parse(["serve", "--workers=abc", "ipc:///tmp/docvfs.sock"])


def test_version_command():
    args = Arguments.parse(["version"])

    assert args.command == "version"


def test_protocol_parsing():
    args = Arguments.parse(["--protocol=1.2.3", "version"])

    assert args.protocol.major == 1
    assert args.protocol.minor == 2
    assert args.protocol.patch == 3

    with pytest.raises(SystemExit):
        Arguments.parse(["--protocol=abc", "version"])


def test_verbosity():
    assert Arguments.parse(["-vv", "version"]).verbose == 2
    assert Arguments.parse(["--debug", "version"]).debug


def test_unknown_command():
    with pytest.raises(SystemExit):
        Arguments.parse(["mount", "gdrive:"])
