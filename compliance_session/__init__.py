"""
Compliance Session Engine
=========================

Client-side session/term reconciliation for contract compliance review:
1. Holds a contract's analyzed terms
2. Merges AI, user, re-review and expert judgments into one effective verdict
3. Keeps compliance statistics consistent with every term change
4. Guards overlapping calls to the remote analysis service

Usage:
    from compliance_session import SessionStore, HttpAnalysisClient

    store = SessionStore(HttpAnalysisClient.from_settings())
    await store.init()
"""

from .client import AnalysisClient, HttpAnalysisClient
from .errors import (
    ConcurrentOperationError,
    EngineError,
    ErrorKind,
    NotFoundError,
    OperationResult,
    ServerError,
    StaleOperationError,
    TransportError,
    ValidationError,
)
from .models import ComplianceStats, ContractFile, RemoteFileInfo, Session, StoreSnapshot, Term
from .persistence import MemoryStorage, PersistenceAdapter, RedisStorage, SqlStorage, TieredStorage
from .reconciler import TermState, compute_stats, describe_state, effective_compliance
from .store import SessionStore, build_session_store
from .tracker import OperationTracker, SessionOperation, TermOperation

__version__ = "1.0.0"

__all__ = [
    # Store
    "SessionStore", "build_session_store",
    # Reconciliation
    "effective_compliance", "compute_stats", "describe_state", "TermState",
    # Tracking
    "OperationTracker", "SessionOperation", "TermOperation",
    # Models
    "Session", "Term", "ComplianceStats", "ContractFile", "RemoteFileInfo", "StoreSnapshot",
    # Client
    "AnalysisClient", "HttpAnalysisClient",
    # Persistence
    "PersistenceAdapter", "MemoryStorage", "RedisStorage", "SqlStorage", "TieredStorage",
    # Errors
    "EngineError", "ErrorKind", "OperationResult",
    "ValidationError", "ConcurrentOperationError", "TransportError",
    "ServerError", "NotFoundError", "StaleOperationError",
]
