"""Persistent local participant identity."""

from __future__ import annotations

import json
import logging as py_logging
import time
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path

logger = py_logging.getLogger(__name__)

DEFAULT_IDENTITY_PATH = Path("~/.config/codesync/identity.json")
DEFAULT_NAME = "Anonymous"
_ID_KEY = "userId"
_NAME_KEY = "userName"


@dataclass(frozen=True)
class Identity:
    user_id: str
    name: str = DEFAULT_NAME


def _millisecond_id() -> str:
    return str(int(time.time() * 1000))


class IdentityStore:
    def __init__(
        self,
        path: str | Path | None = None,
        *,
        id_factory: Callable[[], str] = _millisecond_id,
    ) -> None:
        self.path = Path(path or DEFAULT_IDENTITY_PATH).expanduser()
        self._id_factory = id_factory

    def _read(self) -> dict[str, object]:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError):
            logger.warning("Identity file is unreadable; a new identity will be written: %s", self.path)
            return {}
        return raw if isinstance(raw, dict) else {}

    def _write(self, identity: Identity) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {_ID_KEY: identity.user_id, _NAME_KEY: identity.name}
        self.path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
        with suppress(OSError):
            self.path.chmod(0o600)

    def load(self) -> Identity:
        """Return the stored identity, creating and persisting one on first use."""
        raw = self._read()
        user_id = raw.get(_ID_KEY)
        name = raw.get(_NAME_KEY)
        stored_id = user_id.strip() if isinstance(user_id, str) else ""
        stored_name = name.strip() if isinstance(name, str) else ""

        identity = Identity(
            user_id=stored_id or self._id_factory(),
            name=stored_name or DEFAULT_NAME,
        )
        if identity.user_id != stored_id or identity.name != stored_name:
            self._write(identity)
            logger.debug("Persisted local identity user_id=%s", identity.user_id)
        return identity

    def rename(self, name: str) -> Identity:
        current = self.load()
        updated = Identity(user_id=current.user_id, name=name.strip() or DEFAULT_NAME)
        self._write(updated)
        return updated
