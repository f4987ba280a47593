"""Remote code execution and fan-out of results into the shared terminal log."""

from __future__ import annotations

import asyncio
import json
import logging as py_logging
from collections.abc import Callable
from typing import Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import Request, urlopen

from codesync.document import SharedDocument
from codesync.errors import CodeSyncError, ExitCode
from codesync.events import EXECUTION_RESULT, ExecutionResultPayload
from codesync.languages import Language, file_name_for, profile_for
from codesync.models import EntryKind, ExecutionResult, TerminalEntry
from codesync.terminal import TerminalLog

logger = py_logging.getLogger(__name__)

DEFAULT_EXECUTION_URL = "https://emkc.org/api/v2/piston"
DEFAULT_COMPILE_TIMEOUT_MS = 10000
DEFAULT_RUN_TIMEOUT_MS = 10000
PROGRESS_MESSAGE = "Executing code..."

HttpResponse = tuple[int, str, dict[str, str]]
Publisher = Callable[[str, object], None]


class HttpRequester(Protocol):
    def __call__(self, url: str, body: bytes, headers: dict[str, str]) -> HttpResponse: ...


def _validate_execution_url(url: str) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise CodeSyncError(
            f"Invalid execution service URL: {url}",
            code=ExitCode.VALIDATION_ERROR,
            hint="Use an http(s) URL such as https://emkc.org/api/v2/piston.",
        )


def _build_requester(timeout: float) -> HttpRequester:
    def request(url: str, body: bytes, headers: dict[str, str]) -> HttpResponse:
        _validate_execution_url(url)
        outbound = Request(url, data=body, headers=headers, method="POST")
        try:
            with urlopen(outbound, timeout=timeout) as response:  # nosec B310
                status = int(getattr(response, "status", response.getcode()))
                payload = response.read().decode("utf-8")
                response_headers = {key.lower(): value for key, value in response.headers.items()}
                return status, payload, response_headers
        except HTTPError as exc:
            payload = ""
            if exc.fp is not None:
                payload = exc.read().decode("utf-8", errors="replace")
            response_headers = {key.lower(): value for key, value in (exc.headers.items() if exc.headers else [])}
            return exc.code, payload, response_headers
        except (URLError, TimeoutError) as exc:
            reason = getattr(exc, "reason", exc)
            raise CodeSyncError(
                f"Could not reach execution service: {reason}",
                code=ExitCode.EXECUTION_ERROR,
                hint="Check network access and the execution service URL.",
            ) from exc

    return request


class ExecutionService:
    """Client for a Piston-compatible ``POST /execute`` endpoint."""

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_EXECUTION_URL,
        compile_timeout_ms: int = DEFAULT_COMPILE_TIMEOUT_MS,
        run_timeout_ms: int = DEFAULT_RUN_TIMEOUT_MS,
        request_timeout_seconds: float = 20.0,
        requester: HttpRequester | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.compile_timeout_ms = compile_timeout_ms
        self.run_timeout_ms = run_timeout_ms
        self._requester = requester or _build_requester(request_timeout_seconds)

    def build_request(self, code: str, language: Language) -> dict[str, object]:
        profile = profile_for(language)
        return {
            "language": profile.service_name,
            "version": profile.service_version,
            "files": [{"content": code}],
            "stdin": "",
            "args": [],
            "compile_timeout": self.compile_timeout_ms,
            "run_timeout": self.run_timeout_ms,
        }

    def run(self, code: str, language: Language) -> ExecutionResult:
        body = json.dumps(self.build_request(code, language)).encode("utf-8")
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        logger.debug("Executing %s code via %s/execute", language.value, self.base_url)
        status, payload, _ = self._requester(f"{self.base_url}/execute", body, headers)
        if status < 200 or status >= 300:
            raise CodeSyncError(
                f"API responded with status: {status}",
                code=ExitCode.EXECUTION_ERROR,
                hint="Retry later or check the execution service status.",
            )
        return _parse_result(payload)


def _parse_result(payload: str) -> ExecutionResult:
    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise CodeSyncError(
            "Execution service returned invalid JSON.",
            code=ExitCode.EXECUTION_ERROR,
        ) from exc

    run = parsed.get("run") if isinstance(parsed, dict) else None
    if not isinstance(run, dict):
        raise CodeSyncError(
            "Execution service response is missing the run section.",
            code=ExitCode.EXECUTION_ERROR,
        )

    stdout = run.get("stdout") or ""
    stderr = run.get("stderr") or ""
    exit_code = run.get("code")
    if not isinstance(stdout, str) or not isinstance(stderr, str):
        raise CodeSyncError(
            "Execution service returned non-text output.",
            code=ExitCode.EXECUTION_ERROR,
        )
    if not isinstance(exit_code, int) or isinstance(exit_code, bool):
        exit_code = 0
    return ExecutionResult(stdout=stdout, stderr=stderr, exit_code=exit_code)


def result_entries(result: ExecutionResult) -> list[TerminalEntry]:
    entries: list[TerminalEntry] = []
    if result.stdout:
        entries.append(TerminalEntry(kind=EntryKind.OUTPUT, content=result.stdout))
    if result.stderr:
        entries.append(TerminalEntry(kind=EntryKind.ERROR, content=result.stderr))
    return entries


class ExecutionRelay:
    """Runs the shared buffer and broadcasts the resulting terminal entries.

    At most one execution is in flight per client; a second ``execute`` call
    while one is pending returns immediately without touching the log.
    """

    def __init__(
        self,
        document: SharedDocument,
        log: TerminalLog,
        *,
        service: ExecutionService,
        publish: Publisher,
    ) -> None:
        self._document = document
        self._log = log
        self._service = service
        self._publish = publish
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def execute(
        self,
        code: str | None = None,
        language: Language | None = None,
    ) -> list[TerminalEntry]:
        if self._in_flight:
            logger.info("Execution already in flight; ignoring run request")
            return []

        self._in_flight = True
        try:
            run_code = self._document.code if code is None else code
            run_language = language or self._document.language
            command = TerminalEntry(kind=EntryKind.INPUT, content=f"run {file_name_for(run_language)}")
            marker = TerminalEntry(kind=EntryKind.OUTPUT, content=PROGRESS_MESSAGE)
            self._log.append(command)
            self._log.append(marker)

            try:
                result = await asyncio.to_thread(self._service.run, run_code, run_language)
            except CodeSyncError as exc:
                logger.warning("Code execution failed: %s", exc.message)
                outcome = [TerminalEntry(kind=EntryKind.ERROR, content=f"Error executing code: {exc.message}")]
            except Exception as exc:
                logger.exception("Unexpected code execution failure")
                outcome = [TerminalEntry(kind=EntryKind.ERROR, content=f"Error executing code: {exc}")]
            else:
                logger.debug("Execution finished exit_code=%s", result.exit_code)
                outcome = result_entries(result)

            self._log.replace_marker(marker, outcome)
            broadcast = [command, *outcome]
            payload: ExecutionResultPayload = {
                "sessionId": self._document.session_id,
                "terminalEntries": [entry.to_dict() for entry in broadcast],
            }
            self._publish(EXECUTION_RESULT, payload)
            return broadcast
        finally:
            self._in_flight = False
