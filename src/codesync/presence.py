"""Participant registry for one shared session."""

from __future__ import annotations

import logging as py_logging
from dataclasses import replace

from codesync.models import Participant, ToggleField, toggle_attribute

logger = py_logging.getLogger(__name__)


class PresenceRegistry:
    """Ordered participant list keyed by id.

    At most one entry per id exists at any time. The local participant is
    guaranteed to be present after every ``apply_participants_list`` call.
    """

    def __init__(self, local: Participant) -> None:
        self._local_id = local.id
        self._participants: list[Participant] = [local]

    @property
    def local_id(self) -> str:
        return self._local_id

    def list_participants(self) -> list[Participant]:
        return list(self._participants)

    def get(self, participant_id: str) -> Participant | None:
        for participant in self._participants:
            if participant.id == participant_id:
                return participant
        return None

    def local(self) -> Participant | None:
        return self.get(self._local_id)

    def apply_participants_list(self, participants: list[Participant], *, local: Participant) -> None:
        """Replace the registry wholesale, prepending ``local`` when the list lacks it."""
        deduplicated: dict[str, Participant] = {}
        for participant in participants:
            # Later duplicates win but keep the slot of the first occurrence.
            deduplicated[participant.id] = participant
        incoming = list(deduplicated.values())
        if self._local_id not in deduplicated:
            incoming.insert(0, local)
        self._participants = incoming
        logger.debug("presence sync count=%s", len(incoming))

    def apply_join(self, participant: Participant) -> None:
        for index, existing in enumerate(self._participants):
            if existing.id == participant.id:
                self._participants[index] = participant
                logger.debug("presence rejoin participant=%s", participant.id)
                return
        self._participants.append(participant)
        logger.debug("presence join participant=%s", participant.id)

    def apply_leave(self, participant_id: str) -> None:
        remaining = [item for item in self._participants if item.id != participant_id]
        if len(remaining) != len(self._participants):
            logger.debug("presence leave participant=%s", participant_id)
        self._participants = remaining

    def apply_toggle(self, participant_id: str, field: ToggleField, value: bool) -> None:
        attribute = toggle_attribute(field)
        for index, existing in enumerate(self._participants):
            if existing.id == participant_id:
                self._participants[index] = replace(existing, **{attribute: value})
                return
        logger.debug("presence toggle dropped participant=%s field=%s", participant_id, field.value)
