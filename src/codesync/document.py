"""Shared code buffer and language selection."""

from __future__ import annotations

import logging as py_logging
from collections.abc import Callable

from codesync.events import CODE_UPDATE, LANGUAGE_UPDATE, CodeUpdatePayload, LanguageUpdatePayload
from codesync.languages import (
    DEFAULT_LANGUAGE,
    Language,
    default_template,
    file_name_for,
    is_default_code,
    parse_language,
)
from codesync.models import SessionState

logger = py_logging.getLogger(__name__)

Publisher = Callable[[str, object], None]


class SharedDocument:
    """Whole-buffer replicated document; the last update processed wins.

    Two near-simultaneous edits from different participants race, and each
    observer keeps whichever ``codeUpdate`` it processes last.
    """

    def __init__(
        self,
        session_id: str,
        *,
        publish: Publisher,
        language: Language = DEFAULT_LANGUAGE,
    ) -> None:
        self._publish = publish
        self._state = SessionState(
            session_id=session_id,
            language=language,
            code=default_template(language),
            file_name=file_name_for(language),
        )

    @property
    def session_id(self) -> str:
        return self._state.session_id

    @property
    def code(self) -> str:
        return self._state.code

    @property
    def language(self) -> Language:
        return self._state.language

    @property
    def file_name(self) -> str:
        return self._state.file_name

    def snapshot(self) -> SessionState:
        return SessionState(
            session_id=self._state.session_id,
            language=self._state.language,
            code=self._state.code,
            file_name=self._state.file_name,
        )

    def set_local_code(self, code: str) -> None:
        self._state.code = code
        payload: CodeUpdatePayload = {"sessionId": self.session_id, "code": code}
        self._publish(CODE_UPDATE, payload)

    def apply_remote_code(self, code: str) -> None:
        self._state.code = code

    def set_local_language(self, language: Language | str) -> bool:
        resolved = parse_language(language)
        if resolved is None:
            logger.debug("ignoring unsupported local language value=%r", language)
            return False
        self._switch_language(resolved)
        payload: LanguageUpdatePayload = {"sessionId": self.session_id, "language": resolved.value}
        self._publish(LANGUAGE_UPDATE, payload)
        return True

    def apply_remote_language(self, language: Language | None) -> bool:
        if language is None or language == self._state.language:
            return False
        self._switch_language(language)
        return True

    def _switch_language(self, language: Language) -> None:
        # Only starter code is swapped; user edits survive a language switch.
        if is_default_code(self._state.code):
            self._state.code = default_template(language)
        self._state.language = language
        self._state.file_name = file_name_for(language)
        logger.info(
            "session-event session=%s event=language-switch language=%s file=%s",
            self.session_id,
            language.value,
            self._state.file_name,
        )
