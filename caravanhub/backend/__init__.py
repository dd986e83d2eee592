"""Backend clients for rows, storage, auth and change events."""

from caravanhub.backend.base import BaseBackend, Query, SignUpResult
from caravanhub.backend.changes import AuthEvent, ChangeEvent, EventHub, Subscription, TableWatcher
from caravanhub.backend.local import LocalBackend
from caravanhub.backend.supabase import SupabaseBackend

__all__ = [
    "BaseBackend",
    "Query",
    "SignUpResult",
    "AuthEvent",
    "ChangeEvent",
    "EventHub",
    "Subscription",
    "TableWatcher",
    "LocalBackend",
    "SupabaseBackend",
]
