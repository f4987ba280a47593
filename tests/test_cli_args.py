from __future__ import annotations

import argparse
import asyncio
import io
from contextlib import redirect_stderr
from pathlib import Path
from typing import Any

from codesync import cli
from codesync.channel import EventHandler
from codesync.client import SessionClient
from codesync.config import AppConfig
from codesync.errors import CodeSyncError, ExitCode
from codesync.execution import ExecutionService
from codesync.identity import Identity
from codesync.languages import Language
from codesync.models import EntryKind, TerminalEntry


class _FakeChannel:
    def __init__(self) -> None:
        self.emitted: list[tuple[str, Any]] = []
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def open(self, on_event: EventHandler) -> None:
        self._connected = True

    def emit(self, event: str, data: object) -> None:
        self.emitted.append((event, data))

    async def close(self) -> None:
        self._connected = False


def _write_config(tmp_path: Path) -> Path:
    config_path = tmp_path / "config.toml"
    identity_path = (tmp_path / "identity.json").as_posix()
    config_path.write_text(f'identity_path = "{identity_path}"\n', encoding="utf-8")
    return config_path


def test_cli_help_includes_public_flags() -> None:
    help_text = cli.build_parser().format_help()

    for flag in ("--server", "--session", "--name", "--language", "--file", "--run", "--config", "--log-level"):
        assert flag in help_text


def test_invalid_log_level_returns_error_code() -> None:
    with redirect_stderr(io.StringIO()):
        code = cli.main(["--log-level", "chatty"])

    assert code == int(ExitCode.INVALID_ARGS)


def test_unsupported_language_is_rejected_by_parser() -> None:
    with redirect_stderr(io.StringIO()):
        code = cli.main(["--language", "ruby"])

    assert code != 0


def test_main_builds_client_and_delegates_to_runner(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)
    seen: dict[str, object] = {}

    async def runner(client: SessionClient, namespace: argparse.Namespace) -> int:
        seen["client"] = client
        return 0

    code = cli.main(
        ["--config", str(config_path), "--session", "room-9", "--name", "Grace", "--log-file", str(tmp_path / "cs.log")],
        session_runner=runner,
    )

    assert code == 0
    client = seen["client"]
    assert isinstance(client, SessionClient)
    assert client.session_id == "room-9"
    assert client.is_host is False
    assert client.identity.name == "Grace"
    assert (tmp_path / "identity.json").exists()


def test_main_reports_handled_errors(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)

    async def runner(client: SessionClient, namespace: argparse.Namespace) -> int:
        raise CodeSyncError("Could not connect to relay server.", code=ExitCode.CHANNEL_ERROR, hint="Start it.")

    stream = io.StringIO()
    with redirect_stderr(stream):
        code = cli.main(["--config", str(config_path), "--log-file", str(tmp_path / "cs.log")], session_runner=runner)

    assert code == int(ExitCode.CHANNEL_ERROR)
    assert "Error: Could not connect to relay server.. Next step: Start it." in stream.getvalue()


def test_resolve_language_prefers_flag_then_extension() -> None:
    config = AppConfig(default_language="javascript")

    assert cli.resolve_language(cli.parse_args(["--language", "python"]), config) == Language.PYTHON
    assert cli.resolve_language(cli.parse_args(["--file", "solution.py"]), config) == Language.PYTHON
    assert cli.resolve_language(cli.parse_args(["--file", "notes.txt"]), config) == Language.JAVASCRIPT


def test_format_entry_marks_input_and_errors() -> None:
    assert cli.format_entry(TerminalEntry(kind=EntryKind.INPUT, content="run main.py")) == "$ run main.py"
    assert cli.format_entry(TerminalEntry(kind=EntryKind.OUTPUT, content="5\n")) == "5"
    assert cli.format_entry(TerminalEntry(kind=EntryKind.ERROR, content="boom\n")) == "[stderr] boom"


def test_run_session_publishes_file_and_prints_execution(tmp_path: Path) -> None:
    source = tmp_path / "main.py"
    source.write_text("print(5)\n", encoding="utf-8")
    channel = _FakeChannel()

    def requester(url: str, body: bytes, headers: dict[str, str]) -> tuple[int, str, dict[str, str]]:
        return 200, '{"run": {"stdout": "5\\n", "stderr": "", "code": 0}}', {}

    client = SessionClient(
        Identity(user_id="me", name="Grace"),
        channel,
        session_id="room-1",
        language=Language.PYTHON,
        execution_service=ExecutionService(requester=requester),
    )
    namespace = cli.parse_args(["--file", str(source), "--run"])
    out = io.StringIO()

    code = asyncio.run(cli.run_session(client, namespace, stream=out))

    assert code == 0
    assert [name for name, _ in channel.emitted] == [
        "joinSession",
        "userJoined",
        "getParticipants",
        "getLanguageState",
        "languageUpdate",
        "codeUpdate",
        "executionResult",
    ]
    assert out.getvalue().splitlines()[1:] == ["$ run main.py", "5"]
    assert channel.connected is False


def test_run_session_reports_lost_connection() -> None:
    channel = _FakeChannel()
    client = SessionClient(Identity(user_id="me"), channel, session_id="room-1")
    out = io.StringIO()

    async def scenario() -> int:
        async def drop() -> None:
            await asyncio.sleep(0.02)
            channel._connected = False

        dropper = asyncio.create_task(drop())
        code = await cli.run_session(client, cli.parse_args([]), stream=out, poll_interval=0.01)
        await dropper
        return code

    code = asyncio.run(scenario())

    assert code == int(ExitCode.CHANNEL_ERROR)
    assert out.getvalue().strip().endswith("Connected: No")
