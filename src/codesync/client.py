"""Session client: channel lifecycle and the reducers for every session event."""

from __future__ import annotations

import logging as py_logging
from collections.abc import Callable
from enum import Enum
from types import TracebackType
from typing import Any

from codesync import events
from codesync.channel import Channel
from codesync.document import SharedDocument
from codesync.errors import CodeSyncError, ExitCode
from codesync.execution import ExecutionRelay, ExecutionService
from codesync.identity import Identity
from codesync.languages import DEFAULT_LANGUAGE, Language
from codesync.models import Participant, TerminalEntry, ToggleField
from codesync.presence import PresenceRegistry
from codesync.terminal import TerminalLog

logger = py_logging.getLogger(__name__)

DEFAULT_SESSION_ID = "demo-session"

ChangeListener = Callable[[str], None]


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTED = "connected"
    CLOSED = "closed"


class SessionClient:
    """One client's view of a shared session.

    Local actions and inbound channel events go through the same reducers.
    Handlers run to completion on the event loop; the only suspension point is
    the execution-service call inside :meth:`execute`.
    """

    def __init__(
        self,
        identity: Identity,
        channel: Channel,
        *,
        session_id: str | None = None,
        language: Language = DEFAULT_LANGUAGE,
        execution_service: ExecutionService | None = None,
        on_change: ChangeListener | None = None,
    ) -> None:
        supplied = (session_id or "").strip()
        self.identity = identity
        self.session_id = supplied or DEFAULT_SESSION_ID
        self.is_host = not supplied
        self.audio_on = True
        self.video_on = True
        self.screen_sharing = False

        self._channel = channel
        self._state = ConnectionState.IDLE
        self._on_change = on_change
        self.presence = PresenceRegistry(self._local_participant())
        self.document = SharedDocument(self.session_id, publish=self._emit, language=language)
        self.terminal = TerminalLog()
        self.relay = ExecutionRelay(
            self.document,
            self.terminal,
            service=execution_service or ExecutionService(),
            publish=self._emit,
        )
        self._handlers: dict[str, Callable[[Any], bool]] = {
            events.CODE_UPDATE: self._on_code_update,
            events.LANGUAGE_UPDATE: self._on_language_update,
            events.EXECUTION_RESULT: self._on_execution_result,
            events.PARTICIPANTS_LIST: self._on_participants_list,
            events.PARTICIPANT_JOINED: self._on_participant_joined,
            events.PARTICIPANT_LEFT: self._on_participant_left,
            events.AUDIO_TOGGLED: self._on_audio_toggled,
            events.VIDEO_TOGGLED: self._on_video_toggled,
            events.SCREEN_SHARING_STARTED: self._on_screen_sharing_started,
            events.SCREEN_SHARING_ENDED: self._on_screen_sharing_ended,
        }

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED and self._channel.connected

    @property
    def local_id(self) -> str:
        return self.identity.user_id

    async def __aenter__(self) -> SessionClient:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.disconnect()

    async def connect(self) -> None:
        if self._state != ConnectionState.IDLE:
            raise CodeSyncError(
                f"Session client is {self._state.value}; connect is allowed once.",
                code=ExitCode.CHANNEL_ERROR,
                hint="Create a new session client to reconnect.",
            )
        await self._channel.open(self.dispatch)
        self._state = ConnectionState.CONNECTED
        logger.info(
            "session-event session=%s event=connect user=%s host=%s",
            self.session_id,
            self.local_id,
            self.is_host,
        )
        self._emit(events.JOIN_SESSION, self.session_id)
        announce: events.UserJoinedPayload = {
            "userId": self.local_id,
            "name": self.identity.name,
            "isHost": self.is_host,
            "sessionId": self.session_id,
        }
        self._emit(events.USER_JOINED, announce)
        self._emit(events.GET_PARTICIPANTS, self.session_id)
        self._emit(events.GET_LANGUAGE_STATE, self.session_id)

    async def disconnect(self) -> None:
        if self._state == ConnectionState.CLOSED:
            return
        # Flip state first so anything still in flight is dropped by dispatch.
        self._state = ConnectionState.CLOSED
        await self._channel.close()
        logger.info("session-event session=%s event=disconnect", self.session_id)

    def dispatch(self, event: str, payload: Any) -> None:
        if self._state != ConnectionState.CONNECTED:
            logger.debug("Dropping inbound event after disconnect event=%s", event)
            return
        handler = self._handlers.get(event)
        if handler is None:
            logger.debug("Ignoring unknown inbound event=%s", event)
            return
        if not handler(payload):
            logger.debug("Ignoring malformed inbound payload event=%s", event)
            return
        self._notify(event)

    def set_code(self, code: str) -> None:
        self.document.set_local_code(code)
        self._notify(events.CODE_UPDATE)

    def set_language(self, language: Language | str) -> bool:
        changed = self.document.set_local_language(language)
        if changed:
            self._notify(events.LANGUAGE_UPDATE)
        return changed

    async def execute(self) -> list[TerminalEntry]:
        entries = await self.relay.execute()
        if entries:
            self._notify(events.EXECUTION_RESULT)
        return entries

    def toggle_audio(self) -> bool:
        self.audio_on = not self.audio_on
        is_muted = not self.audio_on
        self.presence.apply_toggle(self.local_id, ToggleField.MUTED, is_muted)
        payload: events.AudioToggledPayload = {
            "sessionId": self.session_id,
            "userId": self.local_id,
            "isMuted": is_muted,
        }
        self._emit(events.AUDIO_TOGGLED, payload)
        self._notify(events.AUDIO_TOGGLED)
        return self.audio_on

    def toggle_video(self) -> bool:
        self.video_on = not self.video_on
        is_video_off = not self.video_on
        self.presence.apply_toggle(self.local_id, ToggleField.VIDEO_OFF, is_video_off)
        payload: events.VideoToggledPayload = {
            "sessionId": self.session_id,
            "userId": self.local_id,
            "isVideoOff": is_video_off,
        }
        self._emit(events.VIDEO_TOGGLED, payload)
        self._notify(events.VIDEO_TOGGLED)
        return self.video_on

    def start_screen_share(self) -> None:
        self._set_screen_sharing(True, events.SCREEN_SHARING_STARTED)

    def stop_screen_share(self) -> None:
        self._set_screen_sharing(False, events.SCREEN_SHARING_ENDED)

    def _set_screen_sharing(self, active: bool, event: str) -> None:
        if self.screen_sharing == active:
            return
        self.screen_sharing = active
        self.presence.apply_toggle(self.local_id, ToggleField.SCREEN_SHARING, active)
        payload: events.ScreenSharingPayload = {"sessionId": self.session_id, "userId": self.local_id}
        self._emit(event, payload)
        self._notify(event)

    def _local_participant(self) -> Participant:
        return Participant(
            id=self.local_id,
            name=self.identity.name,
            is_host=self.is_host,
            is_muted=not self.audio_on,
            is_video_off=not self.video_on,
            is_screen_sharing=self.screen_sharing,
        )

    def _emit(self, event: str, payload: object) -> None:
        if self._state != ConnectionState.CONNECTED:
            logger.debug("Not connected; skipping publish event=%s", event)
            return
        self._channel.emit(event, payload)

    def _notify(self, event: str) -> None:
        if self._on_change is not None:
            self._on_change(event)

    def _on_code_update(self, payload: Any) -> bool:
        code = events.normalize_code(payload)
        if code is None:
            return False
        self.document.apply_remote_code(code)
        return True

    def _on_language_update(self, payload: Any) -> bool:
        language = events.normalize_language(payload)
        if language is None:
            return False
        self.document.apply_remote_language(language)
        return True

    def _on_execution_result(self, payload: Any) -> bool:
        entries = events.normalize_terminal_entries(payload)
        if entries is None:
            return False
        self.terminal.extend(entries)
        return True

    def _on_participants_list(self, payload: Any) -> bool:
        participants = events.normalize_participants_list(payload)
        if participants is None:
            return False
        self.presence.apply_participants_list(participants, local=self._local_participant())
        return True

    def _on_participant_joined(self, payload: Any) -> bool:
        participant = events.normalize_participant(payload)
        if participant is None:
            return False
        self.presence.apply_join(participant)
        if participant.id != self.local_id:
            # Only the newcomer is signalled; existing peers are not re-invited.
            invite: events.RtcNewParticipantPayload = {
                "sessionId": self.session_id,
                "participantId": participant.id,
            }
            self._emit(events.RTC_NEW_PARTICIPANT, invite)
        return True

    def _on_participant_left(self, payload: Any) -> bool:
        participant_id = events.normalize_id(payload)
        if participant_id is None:
            return False
        self.presence.apply_leave(participant_id)
        return True

    def _on_audio_toggled(self, payload: Any) -> bool:
        toggle = events.normalize_toggle(payload, "isMuted")
        if toggle is None:
            return False
        self.presence.apply_toggle(toggle[0], ToggleField.MUTED, toggle[1])
        return True

    def _on_video_toggled(self, payload: Any) -> bool:
        toggle = events.normalize_toggle(payload, "isVideoOff")
        if toggle is None:
            return False
        self.presence.apply_toggle(toggle[0], ToggleField.VIDEO_OFF, toggle[1])
        return True

    def _on_screen_sharing_started(self, payload: Any) -> bool:
        user_id = events.normalize_user_id(payload)
        if user_id is None:
            return False
        self.presence.apply_toggle(user_id, ToggleField.SCREEN_SHARING, True)
        return True

    def _on_screen_sharing_ended(self, payload: Any) -> bool:
        user_id = events.normalize_user_id(payload)
        if user_id is None:
            return False
        self.presence.apply_toggle(user_id, ToggleField.SCREEN_SHARING, False)
        return True
