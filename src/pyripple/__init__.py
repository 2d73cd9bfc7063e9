"""pyripple - Realtime subscription and aggregation cache for live databases."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyripple")
except PackageNotFoundError:
    __version__ = "0+local"
from pyripple.client import RippleClient
from pyripple.config import RippleConfig
from pyripple.counter import ABORT, TransactionalCounter
from pyripple.exceptions import (
    ConflictExhaustedError,
    RippleConfigError,
    RippleError,
    StoreError,
    StoreNetworkError,
    StorePermissionError,
    SubscriptionClosedError,
    ViewComputeError,
)
from pyripple.registry import SubscriptionRegistry, get_registry, reset_registry
from pyripple.snapshot import Snapshot
from pyripple.store import InMemoryStore, LiveStore, RestStore
from pyripple.subscription import PathSubscription, SnapshotStream, SubscriptionState, subscribe
from pyripple.view import UNRESOLVED, SwitchViewHandle, ViewHandle, ViewState, derive, derive_switch

__all__ = [
    "__version__",
    "ABORT",
    "ConflictExhaustedError",
    "InMemoryStore",
    "LiveStore",
    "PathSubscription",
    "RestStore",
    "RippleClient",
    "RippleConfig",
    "RippleConfigError",
    "RippleError",
    "Snapshot",
    "SnapshotStream",
    "StoreError",
    "StoreNetworkError",
    "StorePermissionError",
    "SubscriptionClosedError",
    "SubscriptionRegistry",
    "SubscriptionState",
    "SwitchViewHandle",
    "TransactionalCounter",
    "UNRESOLVED",
    "ViewComputeError",
    "ViewHandle",
    "ViewState",
    "derive",
    "derive_switch",
    "get_registry",
    "reset_registry",
    "subscribe",
]
