"""Offline-first sync engine for the shop's business records."""

from .auth import Session, SessionProvider, SupabaseAuth
from .coordinator import CollectionClient, SyncCoordinator
from .drain import DrainPass, DrainReport
from .errors import (
    AuthError,
    GatewayError,
    LocalStorageError,
    RecordNotFoundError,
    ServerError,
    SyncError,
    TransportError,
)
from .gateway import RemoteGateway
from .identifiers import LocalId, RemoteId, new_local_id, parse_identifier
from .models import ActivityItem, Customer, Employee, ExtrasPreset, Order, OrderItem, OrderItemExtra, Payment
from .remapper import IdentifierRemapper
from .state import SyncState
from .store import EntityStore

__all__ = [
    "ActivityItem",
    "AuthError",
    "CollectionClient",
    "Customer",
    "DrainPass",
    "DrainReport",
    "Employee",
    "EntityStore",
    "ExtrasPreset",
    "GatewayError",
    "IdentifierRemapper",
    "LocalId",
    "LocalStorageError",
    "Order",
    "OrderItem",
    "OrderItemExtra",
    "Payment",
    "RecordNotFoundError",
    "RemoteGateway",
    "RemoteId",
    "ServerError",
    "Session",
    "SessionProvider",
    "SupabaseAuth",
    "SyncCoordinator",
    "SyncError",
    "SyncState",
    "TransportError",
    "new_local_id",
    "parse_identifier",
]
