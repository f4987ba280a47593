"""Channel event names, outbound payload shapes, and inbound normalization.

Inbound payloads come from other clients through the relay and are not
trusted. Every ``normalize_*`` function turns a raw payload into one canonical
shape or returns ``None`` so handlers can no-op on malformed input.
"""

from __future__ import annotations

from typing_extensions import TypedDict

from codesync.languages import Language, parse_language
from codesync.models import EntryKind, Participant, TerminalEntry

JOIN_SESSION = "joinSession"
USER_JOINED = "userJoined"
GET_PARTICIPANTS = "getParticipants"
GET_LANGUAGE_STATE = "getLanguageState"
CODE_UPDATE = "codeUpdate"
LANGUAGE_UPDATE = "languageUpdate"
EXECUTION_RESULT = "executionResult"
PARTICIPANTS_LIST = "participantsList"
PARTICIPANT_JOINED = "participantJoined"
PARTICIPANT_LEFT = "participantLeft"
AUDIO_TOGGLED = "audioToggled"
VIDEO_TOGGLED = "videoToggled"
SCREEN_SHARING_STARTED = "screenSharingStarted"
SCREEN_SHARING_ENDED = "screenSharingEnded"
RTC_NEW_PARTICIPANT = "rtcNewParticipant"


class UserJoinedPayload(TypedDict):
    userId: str
    name: str
    isHost: bool
    sessionId: str


class CodeUpdatePayload(TypedDict):
    sessionId: str
    code: str


class LanguageUpdatePayload(TypedDict):
    sessionId: str
    language: str


class ExecutionResultPayload(TypedDict):
    sessionId: str
    terminalEntries: list[dict[str, str]]


class AudioToggledPayload(TypedDict):
    sessionId: str
    userId: str
    isMuted: bool


class VideoToggledPayload(TypedDict):
    sessionId: str
    userId: str
    isVideoOff: bool


class ScreenSharingPayload(TypedDict):
    sessionId: str
    userId: str


class RtcNewParticipantPayload(TypedDict):
    sessionId: str
    participantId: str


def normalize_id(value: object) -> str | None:
    # Relays hand out numeric ids (millisecond timestamps) as often as strings.
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _flag(raw: dict[str, object], key: str) -> bool:
    value = raw.get(key, False)
    return value if isinstance(value, bool) else False


def normalize_participant(raw: object) -> Participant | None:
    if not isinstance(raw, dict):
        return None
    participant_id = normalize_id(raw.get("id"))
    if participant_id is None:
        return None
    name = raw.get("name")
    return Participant(
        id=participant_id,
        name=name if isinstance(name, str) else "",
        is_host=_flag(raw, "isHost"),
        is_muted=_flag(raw, "isMuted"),
        is_video_off=_flag(raw, "isVideoOff"),
        is_screen_sharing=_flag(raw, "isScreenSharing"),
    )


def normalize_participants_list(raw: object) -> list[Participant] | None:
    if not isinstance(raw, list):
        return None
    participants: list[Participant] = []
    for item in raw:
        participant = normalize_participant(item)
        if participant is not None:
            participants.append(participant)
    return participants


def normalize_code(raw: object) -> str | None:
    if isinstance(raw, dict):
        raw = raw.get("code")
    return raw if isinstance(raw, str) else None


def normalize_language(raw: object) -> Language | None:
    """Accept ``{"language": ...}`` or the legacy bare-string payload."""
    if isinstance(raw, dict):
        raw = raw.get("language")
    return parse_language(raw)


def normalize_user_id(raw: object) -> str | None:
    if isinstance(raw, dict):
        return normalize_id(raw.get("userId"))
    return None


def normalize_toggle(raw: object, key: str) -> tuple[str, bool] | None:
    if not isinstance(raw, dict):
        return None
    user_id = normalize_id(raw.get("userId"))
    if user_id is None:
        return None
    value = raw.get(key)
    if not isinstance(value, bool):
        return None
    return user_id, value


def _normalize_entry(raw: object) -> TerminalEntry | None:
    if not isinstance(raw, dict):
        return None
    content = raw.get("content")
    if not isinstance(content, str):
        return None
    kind_raw = raw.get("type")
    for kind in EntryKind:
        if kind.value == kind_raw:
            return TerminalEntry(kind=kind, content=content)
    return None


def normalize_terminal_entries(raw: object) -> list[TerminalEntry] | None:
    if not isinstance(raw, dict):
        return None
    entries_raw = raw.get("terminalEntries")
    if entries_raw is None:
        output = raw.get("output")
        if isinstance(output, str) and output:
            return [TerminalEntry(kind=EntryKind.OUTPUT, content=output)]
        return None
    if not isinstance(entries_raw, list):
        return None
    entries: list[TerminalEntry] = []
    for item in entries_raw:
        entry = _normalize_entry(item)
        if entry is None:
            return None
        entries.append(entry)
    return entries
