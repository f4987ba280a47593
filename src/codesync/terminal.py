"""Append-only terminal log shared by execution broadcasts."""

from __future__ import annotations

from collections.abc import Iterable

from codesync.models import TerminalEntry


class TerminalLog:
    def __init__(self) -> None:
        self._entries: list[TerminalEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> list[TerminalEntry]:
        return list(self._entries)

    def last(self) -> TerminalEntry | None:
        return self._entries[-1] if self._entries else None

    def append(self, entry: TerminalEntry) -> None:
        self._entries.append(entry)

    def extend(self, entries: Iterable[TerminalEntry]) -> None:
        self._entries.extend(entries)

    def replace_marker(self, marker: TerminalEntry, entries: Iterable[TerminalEntry]) -> None:
        """Swap the progress ``marker`` instance for ``entries`` in place.

        Remote entries may land after the marker while an execution is in
        flight, so the marker is located by identity rather than assumed to be
        the last slot. A marker that is gone (log cleared) turns into an append.
        """
        replacement = list(entries)
        for index in range(len(self._entries) - 1, -1, -1):
            if self._entries[index] is marker:
                self._entries[index : index + 1] = replacement
                return
        self._entries.extend(replacement)

    def clear(self) -> None:
        self._entries.clear()
