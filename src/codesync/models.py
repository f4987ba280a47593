"""Shared-session domain models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from codesync.languages import Language


class EntryKind(str, Enum):
    INPUT = "input"
    OUTPUT = "output"
    ERROR = "error"


class ToggleField(str, Enum):
    MUTED = "isMuted"
    VIDEO_OFF = "isVideoOff"
    SCREEN_SHARING = "isScreenSharing"


@dataclass(frozen=True)
class Participant:
    id: str
    name: str
    is_host: bool = False
    is_muted: bool = False
    is_video_off: bool = False
    is_screen_sharing: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "isHost": self.is_host,
            "isMuted": self.is_muted,
            "isVideoOff": self.is_video_off,
            "isScreenSharing": self.is_screen_sharing,
        }


@dataclass(frozen=True)
class TerminalEntry:
    kind: EntryKind
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"type": self.kind.value, "content": self.content}


@dataclass(frozen=True)
class ExecutionResult:
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0


@dataclass
class SessionState:
    session_id: str
    language: Language
    code: str
    file_name: str


_TOGGLE_ATTRIBUTES = {
    ToggleField.MUTED: "is_muted",
    ToggleField.VIDEO_OFF: "is_video_off",
    ToggleField.SCREEN_SHARING: "is_screen_sharing",
}


def toggle_attribute(field: ToggleField) -> str:
    return _TOGGLE_ATTRIBUTES[field]
