"""Tests for subcommand execution, output filtering and process-tree shutdown."""

import io
import logging
import subprocess
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from pbkeeper.local.supervisor import process_utils, shutdown

PUBLIC_URL = "http://203.0.113.7:8090"


# -------------------------------------------------------------------
# run_command
# -------------------------------------------------------------------


def test_run_command_success(tmp_path):
    completed = subprocess.CompletedProcess(args=[], returncode=0, stdout=b"ok\n", stderr=b"")
    with patch("pbkeeper.local.supervisor.process_utils.subprocess.run", return_value=completed) as run:
        result = process_utils.run_command([Path("/bin/pb"), "update"], cwd=tmp_path, timeout=30)

    assert result == process_utils.CommandResult(0, "ok\n", "")
    assert run.call_args.args[0] == ["/bin/pb", "update"]
    assert run.call_args.kwargs["timeout"] == 30


def test_run_command_timeout_has_no_code(tmp_path):
    error = subprocess.TimeoutExpired(cmd="pb", timeout=5, output=b"partial")
    with patch("pbkeeper.local.supervisor.process_utils.subprocess.run", side_effect=error):
        result = process_utils.run_command(["pb", "superuser"], cwd=tmp_path, timeout=5)

    assert result.code is None
    assert result.stdout == "partial"
    assert result.stderr == ""


def test_run_command_spawn_error(tmp_path):
    with patch("pbkeeper.local.supervisor.process_utils.subprocess.run", side_effect=FileNotFoundError("no such file")):
        result = process_utils.run_command(["missing"], cwd=tmp_path, timeout=5)

    assert result.code == -1
    assert "no such file" in result.stderr


# -------------------------------------------------------------------
# Output filtering
# -------------------------------------------------------------------


def test_wildcard_urls_are_rewritten():
    line = "GET http://0.0.0.0:8090/api/health and http://0.0.0.0:1234"
    assert process_utils.rewrite_wildcard_urls(line, PUBLIC_URL) == f"GET {PUBLIC_URL}/api/health and {PUBLIC_URL}"


@pytest.mark.parametrize("line", [
    "2024/05/01 10:00:00 Server started at http://0.0.0.0:8090",
    "├─ REST API:  http://0.0.0.0:8090/api/",
    "└─ Dashboard: http://0.0.0.0:8090/_/",
    "(!) Launch the URL below in the browser if it hasn't been open already to create your first superuser account:",
    "http://0.0.0.0:8090/_/#/pbinstal/eyJhbGciOi",
])
def test_banner_and_setup_lines_are_suppressed(line):
    assert process_utils.is_suppressed_line(line) is True


def test_output_filter_logs_remaining_lines(caplog):
    handler = process_utils.make_output_filter(PUBLIC_URL, "pocketbase", logging.DEBUG)

    with caplog.at_level(logging.DEBUG, logger="proc.pocketbase"):
        handler("Server started at http://0.0.0.0:8090")
        handler("New request from http://0.0.0.0:8090/api/collections")

    records = [r for r in caplog.records if r.name == "proc.pocketbase"]
    assert [r.getMessage() for r in records] == [f"New request from {PUBLIC_URL}/api/collections"]
    assert records[0].levelno == logging.DEBUG


def test_read_pipe_feeds_non_empty_lines():
    pipe = io.BytesIO(b"first\n\n  second  \n")
    lines = []
    process_utils._read_pipe(pipe, "pocketbase", lines.append)
    assert lines == ["first", "second"]
    assert pipe.closed


# -------------------------------------------------------------------
# Process-tree shutdown
# -------------------------------------------------------------------


def _spawn_python(code):
    return subprocess.Popen([sys.executable, "-c", code], stdout=subprocess.PIPE)


def test_shutdown_of_missing_process_is_noop():
    with patch("pbkeeper.local.supervisor.shutdown.psutil.Process", side_effect=shutdown.psutil.NoSuchProcess(99999)):
        assert shutdown.identify_processes_to_stop(99999) == set()
        assert shutdown.graceful_shutdown_sequence(99999) is False


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signal semantics")
def test_graceful_termination():
    proc = _spawn_python("import sys, time; print('ready', flush=True); time.sleep(30)")
    proc.stdout.readline()

    assert shutdown.graceful_shutdown_sequence(proc.pid, timeout=5) is False
    proc.wait(timeout=5)
    proc.stdout.close()


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signal semantics")
def test_stubborn_process_is_killed():
    proc = _spawn_python(
        "import signal, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); "
        "print('ready', flush=True); time.sleep(30)"
    )
    proc.stdout.readline()

    assert shutdown.graceful_shutdown_sequence(proc.pid, timeout=0.5) is True
    proc.wait(timeout=5)
    proc.stdout.close()
