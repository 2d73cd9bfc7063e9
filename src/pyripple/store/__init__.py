"""Live-value store implementations.

The cache layer only depends on :class:`LiveStore`; pick
:class:`InMemoryStore` for tests and local development or
:class:`RestStore` for a hosted realtime database.
"""

from pyripple.store.base import CasResult, LiveStore, Unsubscribe
from pyripple.store.memory import InMemoryStore
from pyripple.store.rest import RestStore

__all__ = [
    "CasResult",
    "InMemoryStore",
    "LiveStore",
    "RestStore",
    "Unsubscribe",
]
