from __future__ import annotations

import asyncio
from typing import Any

import pytest

from codesync.channel import EventHandler
from codesync.client import DEFAULT_SESSION_ID, ConnectionState, SessionClient
from codesync.errors import CodeSyncError, ExitCode
from codesync.execution import ExecutionService
from codesync.identity import Identity
from codesync.languages import Language, default_template
from codesync.models import EntryKind, Participant, TerminalEntry


class _FakeChannel:
    def __init__(self, *, fail_open: bool = False) -> None:
        self.fail_open = fail_open
        self.emitted: list[tuple[str, Any]] = []
        self.handler: EventHandler | None = None
        self.closed = False
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def open(self, on_event: EventHandler) -> None:
        if self.fail_open:
            raise CodeSyncError("relay down", code=ExitCode.CHANNEL_ERROR)
        self.handler = on_event
        self._connected = True

    def emit(self, event: str, data: object) -> None:
        self.emitted.append((event, data))

    async def close(self) -> None:
        self.closed = True
        self._connected = False

    def deliver(self, event: str, data: Any) -> None:
        assert self.handler is not None
        self.handler(event, data)

    def names(self) -> list[str]:
        return [name for name, _ in self.emitted]


def _ok_requester(url: str, body: bytes, headers: dict[str, str]) -> tuple[int, str, dict[str, str]]:
    return 200, '{"run": {"stdout": "5", "stderr": "", "code": 0}}', {}


def _connected_client(session_id: str | None = "room-1", **kwargs: Any) -> tuple[SessionClient, _FakeChannel]:
    channel = _FakeChannel()
    client = SessionClient(
        Identity(user_id="me", name="Grace"),
        channel,
        session_id=session_id,
        execution_service=ExecutionService(requester=_ok_requester),
        **kwargs,
    )
    asyncio.run(client.connect())
    channel.emitted.clear()
    return client, channel


def test_connect_announces_identity_then_requests_state() -> None:
    channel = _FakeChannel()
    client = SessionClient(Identity(user_id="me", name="Grace"), channel, session_id="room-1")

    asyncio.run(client.connect())

    assert client.state == ConnectionState.CONNECTED
    assert client.connected is True
    assert channel.emitted == [
        ("joinSession", "room-1"),
        ("userJoined", {"userId": "me", "name": "Grace", "isHost": False, "sessionId": "room-1"}),
        ("getParticipants", "room-1"),
        ("getLanguageState", "room-1"),
    ]


def test_client_without_session_id_hosts_default_session() -> None:
    channel = _FakeChannel()
    client = SessionClient(Identity(user_id="me"), channel)

    asyncio.run(client.connect())

    assert client.session_id == DEFAULT_SESSION_ID
    assert client.is_host is True
    assert channel.emitted[1][1]["isHost"] is True
    assert client.presence.local() == Participant(id="me", name="Anonymous", is_host=True)


def test_connect_failure_leaves_client_idle() -> None:
    client = SessionClient(Identity(user_id="me"), _FakeChannel(fail_open=True), session_id="room-1")

    with pytest.raises(CodeSyncError) as exc:
        asyncio.run(client.connect())

    assert exc.value.code == ExitCode.CHANNEL_ERROR
    assert client.state == ConnectionState.IDLE
    assert client.connected is False


def test_connect_twice_is_rejected() -> None:
    client, _ = _connected_client()

    with pytest.raises(CodeSyncError):
        asyncio.run(client.connect())


def test_disconnect_closes_channel_and_drops_later_events() -> None:
    client, channel = _connected_client()
    before = client.document.code

    asyncio.run(client.disconnect())
    channel.deliver("codeUpdate", {"sessionId": "room-1", "code": "late"})

    assert channel.closed is True
    assert client.state == ConnectionState.CLOSED
    assert client.connected is False
    assert client.document.code == before


def test_context_manager_releases_channel_on_error() -> None:
    channel = _FakeChannel()
    client = SessionClient(Identity(user_id="me"), channel, session_id="room-1")

    async def scenario() -> None:
        async with client:
            raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        asyncio.run(scenario())

    assert channel.closed is True
    assert client.state == ConnectionState.CLOSED


def test_local_edits_are_published_but_not_echoed() -> None:
    client, channel = _connected_client()

    client.set_code("x = 1")

    assert client.document.code == "x = 1"
    assert channel.emitted == [("codeUpdate", {"sessionId": "room-1", "code": "x = 1"})]


def test_inbound_code_update_overwrites_buffer() -> None:
    client, channel = _connected_client()
    client.set_code("mine")

    channel.deliver("codeUpdate", {"sessionId": "room-1", "code": "theirs"})

    assert client.document.code == "theirs"


def test_inbound_language_update_accepts_bare_string() -> None:
    client, channel = _connected_client()

    channel.deliver("languageUpdate", "python")

    assert client.document.language == Language.PYTHON
    assert client.document.code == default_template(Language.PYTHON)
    assert client.document.file_name == "main.py"
    assert channel.emitted == []


def test_inbound_unsupported_language_is_ignored() -> None:
    client, channel = _connected_client()

    channel.deliver("languageUpdate", {"sessionId": "room-1", "language": "haskell"})

    assert client.document.language == Language.JAVASCRIPT
    assert client.document.file_name == "main.js"


def test_local_language_switch_publishes_update() -> None:
    client, channel = _connected_client()

    assert client.set_language("python") is True

    assert channel.emitted == [("languageUpdate", {"sessionId": "room-1", "language": "python"})]


def test_participants_list_keeps_local_entry_with_toggle_state() -> None:
    client, channel = _connected_client()
    client.toggle_audio()

    channel.deliver("participantsList", [{"id": 11, "name": "Ada", "isHost": True}])

    participants = client.presence.list_participants()
    assert [item.id for item in participants] == ["me", "11"]
    assert participants[0] == Participant(id="me", name="Grace", is_host=False, is_muted=True)


def test_participant_joined_triggers_peer_invite_for_others_only() -> None:
    client, channel = _connected_client()

    channel.deliver("participantJoined", {"id": "p2", "name": "Ada"})
    channel.deliver("participantJoined", {"id": "me", "name": "Grace"})
    channel.deliver("participantJoined", {"id": "p2", "name": "Ada"})

    assert [item.id for item in client.presence.list_participants()] == ["me", "p2"]
    assert channel.emitted == [
        ("rtcNewParticipant", {"sessionId": "room-1", "participantId": "p2"}),
        ("rtcNewParticipant", {"sessionId": "room-1", "participantId": "p2"}),
    ]


def test_participant_left_removes_entry() -> None:
    client, channel = _connected_client()
    channel.deliver("participantJoined", {"id": "p2", "name": "Ada"})

    channel.deliver("participantLeft", "p2")
    channel.deliver("participantLeft", "p404")

    assert [item.id for item in client.presence.list_participants()] == ["me"]


def test_remote_toggles_update_known_participants_only() -> None:
    client, channel = _connected_client()
    channel.deliver("participantJoined", {"id": "p2", "name": "Ada"})

    channel.deliver("audioToggled", {"userId": "p2", "isMuted": True})
    channel.deliver("videoToggled", {"userId": "p2", "isVideoOff": True})
    channel.deliver("screenSharingStarted", {"userId": "p2"})
    channel.deliver("audioToggled", {"userId": "p9", "isMuted": True})
    channel.deliver("videoToggled", {"userId": "p2", "isVideoOff": "maybe"})

    assert client.presence.get("p2") == Participant(
        id="p2", name="Ada", is_muted=True, is_video_off=True, is_screen_sharing=True
    )
    assert client.presence.get("p9") is None

    channel.deliver("screenSharingEnded", {"userId": "p2"})
    assert client.presence.get("p2").is_screen_sharing is False  # type: ignore[union-attr]


def test_toggle_audio_and_video_publish_post_flip_state() -> None:
    client, channel = _connected_client()

    assert client.toggle_audio() is False
    assert client.toggle_video() is False
    assert client.toggle_video() is True

    assert channel.emitted == [
        ("audioToggled", {"sessionId": "room-1", "userId": "me", "isMuted": True}),
        ("videoToggled", {"sessionId": "room-1", "userId": "me", "isVideoOff": True}),
        ("videoToggled", {"sessionId": "room-1", "userId": "me", "isVideoOff": False}),
    ]
    local = client.presence.local()
    assert local is not None
    assert local.is_muted is True
    assert local.is_video_off is False


def test_screen_share_publishes_start_and_end_once() -> None:
    client, channel = _connected_client()

    client.start_screen_share()
    client.start_screen_share()
    client.stop_screen_share()

    assert channel.names() == ["screenSharingStarted", "screenSharingEnded"]
    assert client.presence.local().is_screen_sharing is False  # type: ignore[union-attr]


def test_inbound_execution_result_appends_entries() -> None:
    client, channel = _connected_client()

    channel.deliver(
        "executionResult",
        {
            "sessionId": "room-1",
            "terminalEntries": [
                {"type": "input", "content": "run main.js"},
                {"type": "error", "content": "ReferenceError"},
            ],
        },
    )
    channel.deliver("executionResult", {"sessionId": "room-1", "terminalEntries": "garbage"})

    assert client.terminal.entries() == [
        TerminalEntry(kind=EntryKind.INPUT, content="run main.js"),
        TerminalEntry(kind=EntryKind.ERROR, content="ReferenceError"),
    ]


def test_execute_broadcasts_result_over_channel() -> None:
    client, channel = _connected_client()

    entries = asyncio.run(client.execute())

    assert entries == [
        TerminalEntry(kind=EntryKind.INPUT, content="run main.js"),
        TerminalEntry(kind=EntryKind.OUTPUT, content="5"),
    ]
    assert channel.names() == ["executionResult"]


def test_unknown_and_malformed_events_do_not_notify_listeners() -> None:
    seen: list[str] = []
    client, channel = _connected_client(on_change=seen.append)

    channel.deliver("somethingElse", {})
    channel.deliver("codeUpdate", {"sessionId": "room-1"})
    channel.deliver("codeUpdate", {"sessionId": "room-1", "code": "ok"})

    assert seen == ["codeUpdate"]


def test_local_actions_while_disconnected_update_state_without_publishing() -> None:
    channel = _FakeChannel()
    client = SessionClient(Identity(user_id="me"), channel, session_id="room-1")

    client.set_code("offline edit")
    client.toggle_audio()

    assert client.document.code == "offline edit"
    assert client.presence.local().is_muted is True  # type: ignore[union-attr]
    assert channel.emitted == []
