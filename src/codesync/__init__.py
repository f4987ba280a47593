"""Client-side state reconciliation for shared code editing sessions."""

from codesync.client import DEFAULT_SESSION_ID, ConnectionState, SessionClient
from codesync.identity import Identity, IdentityStore
from codesync.languages import Language
from codesync.models import EntryKind, ExecutionResult, Participant, TerminalEntry

__all__ = [
    "ConnectionState",
    "DEFAULT_SESSION_ID",
    "EntryKind",
    "ExecutionResult",
    "Identity",
    "IdentityStore",
    "Language",
    "Participant",
    "SessionClient",
    "TerminalEntry",
]

__version__ = "0.1.0"
