"""Public CLI contract and entrypoint."""

from __future__ import annotations

import argparse
import asyncio
import logging as py_logging
import sys
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path
from typing import TextIO

from .channel import WebSocketChannel
from .client import SessionClient
from .config import AppConfig, load_config
from .errors import CodeSyncError, ExitCode, user_facing_error
from .events import EXECUTION_RESULT
from .execution import ExecutionService
from .identity import IdentityStore
from .languages import Language, parse_language, supported_languages
from .logging import configure_logging, default_log_path
from .models import EntryKind, TerminalEntry

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")
_EXTENSION_LANGUAGES = {".js": Language.JAVASCRIPT, ".py": Language.PYTHON}

SessionRunner = Callable[[SessionClient, argparse.Namespace], Awaitable[int]]


def _log_level_type(value: str) -> str:
    normalized = value.upper()
    if normalized == "WARNING":
        normalized = "WARN"
    if normalized not in _VALID_LOG_LEVELS:
        accepted = ", ".join(_VALID_LOG_LEVELS)
        raise argparse.ArgumentTypeError(f"--log-level must be one of: {accepted}")
    return normalized


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="codesync")
    parser.add_argument("--server", default=None, help="Relay server WebSocket URL")
    parser.add_argument("--session", default=None, help="Join an existing session instead of hosting")
    parser.add_argument("--name", default=None, help="Display name stored for this machine")
    parser.add_argument("--language", choices=supported_languages(), default=None)
    parser.add_argument("--file", type=Path, default=None, help="Publish this file as the shared code")
    parser.add_argument("--run", action="store_true", help="Execute the shared code and exit")
    parser.add_argument("--config", type=Path, default=None)
    parser.add_argument("--log-level", type=_log_level_type, default=None)
    parser.add_argument("--log-file", type=Path, default=None)
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    return parser.parse_args(argv)


def format_entry(entry: TerminalEntry) -> str:
    if entry.kind == EntryKind.INPUT:
        return f"$ {entry.content}"
    if entry.kind == EntryKind.ERROR:
        return f"[stderr] {entry.content.rstrip()}"
    return entry.content.rstrip()


def resolve_language(namespace: argparse.Namespace, config: AppConfig) -> Language:
    explicit = parse_language(namespace.language)
    if explicit is not None:
        return explicit
    if namespace.file is not None:
        detected = _EXTENSION_LANGUAGES.get(namespace.file.suffix.lower())
        if detected is not None:
            return detected
    return parse_language(config.default_language) or Language.JAVASCRIPT


def read_source(path: Path) -> str:
    try:
        return path.expanduser().read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise CodeSyncError(
            f"Could not read source file: {path}",
            code=ExitCode.INVALID_ARGS,
            hint=str(exc),
        ) from exc


def build_client(
    namespace: argparse.Namespace,
    config: AppConfig,
    *,
    stream: TextIO | None = None,
) -> SessionClient:
    store = IdentityStore(config.identity_path)
    identity = store.rename(namespace.name) if namespace.name else store.load()
    service = ExecutionService(
        base_url=config.execution_api_url,
        compile_timeout_ms=config.compile_timeout_ms,
        run_timeout_ms=config.run_timeout_ms,
        request_timeout_seconds=config.request_timeout_seconds,
    )
    channel = WebSocketChannel(namespace.server or config.server_url)
    out = stream or sys.stdout
    printed = 0
    client: SessionClient

    def on_change(event: str) -> None:
        nonlocal printed
        if event != EXECUTION_RESULT or namespace.run:
            return
        entries = client.terminal.entries()
        for entry in entries[printed:]:
            print(format_entry(entry), file=out)
        printed = len(entries)

    client = SessionClient(
        identity,
        channel,
        session_id=namespace.session,
        language=resolve_language(namespace, config),
        execution_service=service,
        on_change=on_change,
    )
    return client


async def run_session(
    client: SessionClient,
    namespace: argparse.Namespace,
    *,
    stream: TextIO | None = None,
    poll_interval: float = 0.5,
) -> int:
    out = stream or sys.stdout
    async with client:
        print(f"Joined session {client.session_id} as {client.identity.name} (host={client.is_host})", file=out)
        if namespace.language is not None or namespace.file is not None:
            client.set_language(client.document.language)
        if namespace.file is not None:
            client.set_code(read_source(namespace.file))

        if namespace.run:
            for entry in await client.execute():
                print(format_entry(entry), file=out)
            return int(ExitCode.SUCCESS)

        while client.connected:
            await asyncio.sleep(poll_interval)
    print("Connected: No", file=out)
    return int(ExitCode.CHANNEL_ERROR)


def main(
    argv: Sequence[str] | None = None,
    *,
    session_runner: SessionRunner | None = None,
) -> int:
    log_path = default_log_path()
    logger = configure_logging(log_file=log_path)
    parser = build_parser()
    try:
        namespace = parser.parse_args(argv)
    except SystemExit as exc:
        if exc.code not in (None, 0):
            logger.warning("Argument parsing failed with exit code %s", exc.code)
        return int(exc.code or 0)

    config = load_config(namespace.config)
    if namespace.log_file is not None:
        log_path = namespace.log_file.expanduser()
    logger = configure_logging(level=namespace.log_level or config.log_level, log_file=log_path)

    try:
        client = build_client(namespace, config)
        runner = session_runner or run_session
        logger.debug("Starting session flow session=%s", client.session_id)
        return asyncio.run(runner(client, namespace))
    except KeyboardInterrupt:
        logger.info("Interrupted; session closed")
        return int(ExitCode.SUCCESS)
    except CodeSyncError as exc:
        logger.error(
            "Handled CodeSyncError (code=%s): %s",
            int(exc.code),
            exc.message,
            exc_info=logger.isEnabledFor(py_logging.DEBUG),
        )
        print(user_facing_error(exc.message, hint=exc.hint), file=sys.stderr)
        return int(exc.code)
    except Exception:
        logger.exception("Unhandled exception in CLI entrypoint")
        try:
            hint = f"Inspect logs: {log_path}"
            print(user_facing_error("Unexpected runtime failure", hint=hint), file=sys.stderr)
        except Exception:
            pass
        return int(ExitCode.RUNTIME_ERROR)


def run(argv: Sequence[str] | None = None) -> int:
    return main(argv)
