"""
Unit tests for the command-line entry point.
"""

import os
import signal
import threading

import pytest

from identd.__main__ import build_config, build_parser, main, resolve_identity


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("IDENTD_USER", "IDENTD_HOST", "IDENTD_PORT", "IDENTD_TIMEOUT",
                 "IDENTD_WORKERS", "IDENTD_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


class TestArguments:
    def test_defaults(self):
        args = build_parser().parse_args([])
        config = build_config(args)

        assert config.host == "0.0.0.0"
        assert config.port == 113
        assert config.timeout == 10000

    def test_overrides(self):
        args = build_parser().parse_args(
            ["-u", "alice", "-H", "127.0.0.1", "-p", "11300", "-t", "500", "-w", "1", "-l", "DEBUG"]
        )
        config = build_config(args)

        assert resolve_identity(args) == "alice"
        assert config.host == "127.0.0.1"
        assert config.port == 11300
        assert config.timeout == 500
        assert config.min_workers == 1
        assert config.log_level == "DEBUG"

    def test_command_line_beats_environment(self, monkeypatch):
        monkeypatch.setenv("IDENTD_PORT", "2000")
        args = build_parser().parse_args(["--port", "3000"])

        assert build_config(args).port == 3000

    def test_identity_from_environment(self, monkeypatch):
        monkeypatch.setenv("IDENTD_USER", "bob")
        args = build_parser().parse_args([])

        assert resolve_identity(args) == "bob"

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["--version"])

        assert exc_info.value.code == 0
        assert "identd" in capsys.readouterr().out


class TestMain:
    def test_invalid_config_exits_2(self, capsys):
        assert main(["--user", "alice", "--port", "-5"]) == 2
        assert "error" in capsys.readouterr().err

    def test_blank_user_exits_2(self):
        assert main(["--user", "   ", "--port", "11300"]) == 2

    def test_bind_failure_exits_1(self, free_port):
        import socket

        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
            blocker.bind(("127.0.0.1", free_port))
            blocker.listen(1)

            code = main(["--user", "alice", "--host", "127.0.0.1", "--port", str(free_port)])

        assert code == 1

    def test_signal_shuts_down_cleanly(self, free_port):
        # main() installs its handlers on the main thread, which is where
        # pytest runs tests, so a timer can deliver SIGTERM to ourselves.
        timer = threading.Timer(0.5, os.kill, args=(os.getpid(), signal.SIGTERM))
        original = signal.getsignal(signal.SIGTERM)
        timer.start()
        try:
            code = main(["--user", "alice", "--host", "127.0.0.1", "--port", str(free_port)])
        finally:
            timer.cancel()

        assert code == 0
        assert signal.getsignal(signal.SIGTERM) is original
