"""Supported execution languages and their per-language constants."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Language(str, Enum):
    JAVASCRIPT = "javascript"
    PYTHON = "python"


@dataclass(frozen=True)
class LanguageProfile:
    extension: str
    template: str
    service_name: str
    service_version: str


INITIAL_PLACEHOLDER = "// Start writing your code here!"
DEFAULT_LANGUAGE = Language.JAVASCRIPT

_PROFILES: dict[Language, LanguageProfile] = {
    Language.JAVASCRIPT: LanguageProfile(
        extension="js",
        template='console.log("Hello World");\n',
        service_name="javascript",
        service_version="18.x",
    ),
    Language.PYTHON: LanguageProfile(
        extension="py",
        template='print("Hello World")\n\n',
        service_name="python3",
        service_version="3.10.0",
    ),
}


def supported_languages() -> tuple[str, ...]:
    return tuple(item.value for item in Language)


def parse_language(value: object) -> Language | None:
    """Return the matching language, or ``None`` for anything outside the closed set.

    Matching is exact: ``"Python"`` or ``" python"`` are not members.
    """
    if isinstance(value, Language):
        return value
    if not isinstance(value, str):
        return None
    for item in Language:
        if item.value == value:
            return item
    return None


def profile_for(language: Language) -> LanguageProfile:
    return _PROFILES[language]


def file_name_for(language: Language) -> str:
    return f"main.{_PROFILES[language].extension}"


def default_template(language: Language) -> str:
    return _PROFILES[language].template


def is_default_code(code: str) -> bool:
    if code == INITIAL_PLACEHOLDER:
        return True
    return any(code == profile.template for profile in _PROFILES.values())
